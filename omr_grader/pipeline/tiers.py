"""
Detection tier contract shared by the pixel analyzer and vision models.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..core.constants import MULTIPLE_MARK
from .image_processing import RectifiedSheet


@dataclass(frozen=True)
class DetectionResult:
    """Mark state of one question as seen by one tier"""
    question_number: int
    options: Tuple[str, ...]
    confidence: float
    tier: str

    @property
    def is_blank(self) -> bool:
        return not self.options

    @property
    def is_multiple(self) -> bool:
        # A bare sentinel means "several marks, letters unknown"
        return len(self.options) > 1 or MULTIPLE_MARK in self.options

    @property
    def detected_option(self) -> Optional[str]:
        """None when blank, the sentinel when ambiguous, else the letter"""
        if not self.options:
            return None
        if self.is_multiple:
            return MULTIPLE_MARK
        return self.options[0]


class DetectionTier(ABC):
    """
    One detection strategy in the fallback chain.

    Every implementation classifies the whole sheet in one call and returns
    one result per question.
    """

    #: Remote tiers block on network I/O and run under a timeout
    remote: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier recorded as the processing method"""
        pass

    @abstractmethod
    def detect(self, sheet: RectifiedSheet) -> List[DetectionResult]:
        """
        Classify every bubble on the rectified sheet.

        Raises:
            TierInvocationError: If the tier cannot produce a result
        """
        pass

    def get_info(self) -> Dict[str, object]:
        return {"tier": self.name, "remote": self.remote}


def check_cardinality(results: Sequence[DetectionResult], question_count: int) -> Optional[str]:
    """Return a problem description unless there is exactly one result per question"""
    numbers = [r.question_number for r in results]
    if sorted(numbers) != list(range(1, question_count + 1)):
        return (
            f"expected one result for each of questions 1..{question_count}, "
            f"got {len(numbers)} results"
        )
    return None

"""
Persistence port for submissions, exams and results
"""
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Iterable, List, Optional

from ..core.constants import SubmissionStatus
if TYPE_CHECKING:
    from ..pipeline.grading_engine import Exam, GradingResult
from .models import Submission


class GradingRepository(ABC):
    """
    Storage the processor depends on.

    Implementations must make begin_processing and complete_processing
    atomic with respect to each other.
    """

    @abstractmethod
    def add_exam(self, exam: "Exam") -> "Exam":
        pass

    @abstractmethod
    def get_exam(self, exam_id: str) -> "Exam":
        """Raises NotFoundException for an unknown exam"""
        pass

    @abstractmethod
    def add_submission(self, submission: Submission) -> Submission:
        pass

    @abstractmethod
    def get_submission(self, submission_id: str) -> Submission:
        """Raises NotFoundException for an unknown submission"""
        pass

    @abstractmethod
    def begin_processing(
        self,
        submission_id: str,
        allowed_from: Iterable[SubmissionStatus],
        lease_seconds: Optional[float] = None
    ) -> Submission:
        """
        Compare-and-swap the submission into `processing`.

        Args:
            submission_id: Submission to acquire
            allowed_from: States the transition may start from
            lease_seconds: When given, a `processing` row older than this may
                be taken over

        Returns:
            Snapshot of the submission carrying a fresh attempt_id

        Raises:
            NotFoundException: Unknown submission
            ConcurrencyConflict: Another attempt holds the submission
            InvalidTransitionError: Current state is not in allowed_from
        """
        pass

    @abstractmethod
    def complete_processing(
        self,
        submission_id: str,
        attempt_id: str,
        result: "GradingResult"
    ) -> Optional["GradingResult"]:
        """
        Upsert the result and mark the submission processed.

        Returns:
            The stored result, or None if the attempt is no longer current
        """
        pass

    @abstractmethod
    def fail_processing(self, submission_id: str, attempt_id: str, error_message: str) -> bool:
        """Mark the submission failed and drop any earlier result; False if the attempt is no longer current"""
        pass

    @abstractmethod
    def get_result(self, submission_id: str) -> Optional["GradingResult"]:
        pass

    @abstractmethod
    def list_results(self, exam_id: str) -> List["GradingResult"]:
        pass

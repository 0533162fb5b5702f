"""
Answer Analysis Module
Deterministic pixel-intensity detection of filled bubbles
"""
import cv2
import numpy as np
from typing import List, Sequence, Tuple
import logging

from ..config import Settings, settings as default_settings
from ..core.constants import CV_TIER
from .image_processing import BubbleROI, RectifiedSheet
from .tiers import DetectionResult, DetectionTier

logger = logging.getLogger(__name__)


def binarize_cell(cell: np.ndarray, threshold: int = 128) -> np.ndarray:
    """
    Convert cell to binary image (inverse threshold).

    Args:
        cell: Cell image
        threshold: Binarization threshold

    Returns:
        Binary image with dark (marked) areas as white
    """
    gray = cell if len(cell.shape) == 2 else cv2.cvtColor(cell, cv2.COLOR_BGR2GRAY)
    _, binary = cv2.threshold(gray, threshold, 255, cv2.THRESH_BINARY_INV)
    return binary


def fill_ratio(cell: np.ndarray, threshold: int = 128, inner_ratio: float = 0.6) -> float:
    """
    Fraction of dark pixels inside the bubble's inner disc.

    The disc excludes the printed outline so an empty bubble scores near 0.

    Args:
        cell: Square crop around one bubble
        threshold: Binarization threshold
        inner_ratio: Disc radius as a fraction of the crop half-size

    Returns:
        Fill ratio in [0, 1]
    """
    if cell.size == 0:
        return 0.0

    binary = binarize_cell(cell, threshold)
    h, w = binary.shape[:2]

    mask = np.zeros((h, w), dtype=np.uint8)
    radius = max(1, int(round(min(h, w) / 2 * inner_ratio)))
    cv2.circle(mask, (w // 2, h // 2), radius, 255, -1)

    total = cv2.countNonZero(mask)
    if total == 0:
        return 0.0
    filled = cv2.countNonZero(cv2.bitwise_and(binary, mask))
    return filled / total


def mark_confidence(ratios: Sequence[float], fill_threshold: float) -> float:
    """
    Confidence of a question's classification.

    Each option contributes its distance from the fill threshold, normalized
    so that a solid fill or a clean empty bubble scores 1; the question
    scores its least certain option.
    """
    if not ratios:
        return 0.0
    scale = max(fill_threshold, 1.0 - fill_threshold)
    return min(min(1.0, abs(r - fill_threshold) / scale) for r in ratios)


def analyze_question(
    sheet: RectifiedSheet,
    rois: List[BubbleROI],
    fill_threshold: float = 0.5,
    bin_threshold: int = 128
) -> Tuple[Tuple[str, ...], float, List[float]]:
    """
    Analyze which options are marked for a single question.

    Returns:
        Tuple of (marked options, confidence, fill ratios)
    """
    ratios = [fill_ratio(sheet.crop(roi), bin_threshold) for roi in rois]
    marked = tuple(roi.option for roi, ratio in zip(rois, ratios) if ratio >= fill_threshold)
    return marked, mark_confidence(ratios, fill_threshold), ratios


class CVTier(DetectionTier):
    """
    Pixel-intensity tier: fast, free and deterministic.
    """

    remote = False

    def __init__(self, fill_threshold: float = 0.5, bin_threshold: int = 128):
        self.fill_threshold = fill_threshold
        self.bin_threshold = bin_threshold

    @classmethod
    def from_settings(cls, config: Settings = None) -> "CVTier":
        config = config or default_settings
        return cls(fill_threshold=config.FILL_THRESHOLD, bin_threshold=config.BIN_THRESHOLD)

    @property
    def name(self) -> str:
        return CV_TIER

    def detect(self, sheet: RectifiedSheet) -> List[DetectionResult]:
        results = []
        for question in sheet.template.questions:
            q_num = question.question_number
            marked, confidence, ratios = analyze_question(
                sheet, sheet.rois_for(q_num), self.fill_threshold, self.bin_threshold
            )
            logger.debug(f"Q{q_num}: ratios={[round(r, 3) for r in ratios]} marked={marked}")
            results.append(DetectionResult(
                question_number=q_num,
                options=marked,
                confidence=confidence,
                tier=self.name,
            ))
        return results

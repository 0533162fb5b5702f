"""
Tiered Detector Module
======================
Runs detection tiers in a fixed order and accepts the first one whose
aggregate confidence clears the threshold.

Flow:
    1. Run tier (remote tiers under a timeout)
    2. Check one result per question
    3. Aggregate per-question confidences
    4. Accept, or fall through to the next tier
"""
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from ..config import Settings, settings as default_settings
from ..core.constants import AggregationMethod, Messages
from ..core.logger import detection_logger
from ..core.exceptions import ConfigurationError, DetectionError, TierInvocationError
from .image_processing import RectifiedSheet
from .tiers import DetectionResult, DetectionTier, check_cardinality
from .vision_providers import build_tiers, create_tier

logger = logging.getLogger(__name__)


def aggregate_confidence(
    values: Sequence[float],
    method: str = AggregationMethod.MIN.value,
    percentile: float = 10.0
) -> float:
    """
    Collapse per-question confidences into one tier score.

    Args:
        values: Per-question confidences
        method: "min", "mean" or "percentile"
        percentile: Percentile used by the "percentile" method (linear interpolation)

    Returns:
        Aggregate score, 0.0 for no values
    """
    if not values:
        return 0.0

    try:
        method = AggregationMethod(method)
    except ValueError:
        raise ConfigurationError(f"Unknown confidence aggregation: {method}")

    if method == AggregationMethod.MIN:
        return float(min(values))
    if method == AggregationMethod.MEAN:
        return float(sum(values) / len(values))
    if not 0.0 <= percentile <= 100.0:
        raise ConfigurationError(f"Percentile must be between 0 and 100, got {percentile}")
    return float(np.percentile(np.asarray(values, dtype=float), percentile))


@dataclass
class DetectorConfig:
    """Configuration for tiered detection"""
    tier_order: List[str] = field(default_factory=lambda: ["cv"])
    confidence_threshold: float = 0.7
    aggregation: str = AggregationMethod.MIN.value
    percentile: float = 10.0
    tier_timeout: float = 30.0

    def __post_init__(self):
        if not self.tier_order:
            raise ConfigurationError("At least one detection tier must be configured")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ConfigurationError(
                f"Confidence threshold must be between 0 and 1, got {self.confidence_threshold}"
            )
        if self.tier_timeout <= 0:
            raise ConfigurationError(f"Tier timeout must be positive, got {self.tier_timeout}")
        # Fail early on an unknown method rather than on the first sheet
        aggregate_confidence([1.0], self.aggregation, self.percentile)

    @classmethod
    def from_settings(cls, config: Settings = None) -> "DetectorConfig":
        config = config or default_settings
        return cls(
            tier_order=list(config.TIER_ORDER),
            confidence_threshold=config.CONFIDENCE_THRESHOLD,
            aggregation=config.CONFIDENCE_AGGREGATION,
            percentile=config.CONFIDENCE_PERCENTILE,
            tier_timeout=config.TIER_TIMEOUT_SECONDS,
        )


@dataclass
class TierOutcome:
    """What one tier produced during a detection run"""
    tier: str
    detections: List[DetectionResult] = field(default_factory=list)
    confidence: float = 0.0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict:
        return {
            "tier": self.tier,
            "confidence": round(self.confidence, 4),
            "error": self.error,
        }


@dataclass
class DetectionOutcome:
    """Accepted answer set for a sheet plus the audit trail of attempted tiers"""
    tier: str
    detections: List[DetectionResult]
    confidence: float
    low_confidence: bool = False
    attempts: List[TierOutcome] = field(default_factory=list)
    issues: List[str] = field(default_factory=list)

    def by_question(self) -> Dict[int, DetectionResult]:
        return {d.question_number: d for d in self.detections}


def question_issues(detections: Sequence[DetectionResult]) -> List[str]:
    """Blank and multiple-mark notes for the accepted answers"""
    issues = []
    for d in sorted(detections, key=lambda r: r.question_number):
        if d.is_blank:
            issues.append(Messages.QUESTION_BLANK.format(question=d.question_number))
        elif d.is_multiple:
            issues.append(Messages.QUESTION_MULTIPLE.format(
                question=d.question_number, options=", ".join(d.options)
            ))
    return issues


def detection_stats(detections: Sequence[DetectionResult]) -> Dict[str, int]:
    """Count answered, blank and multiple-mark questions"""
    blank = sum(1 for d in detections if d.is_blank)
    multiple = sum(1 for d in detections if d.is_multiple)
    return {
        "total": len(detections),
        "answered": len(detections) - blank - multiple,
        "blank": blank,
        "multiple": multiple,
    }


class TieredDetector:
    """
    Ordered fallback chain of detection tiers.

    Stateless after construction; concurrent sheets may share one instance.
    """

    def __init__(
        self,
        tiers: List[DetectionTier],
        config: DetectorConfig = None,
        tier_factory: Callable[[str], DetectionTier] = None
    ):
        if not tiers:
            raise ConfigurationError("At least one detection tier must be configured")
        self.tiers = list(tiers)
        self.config = config or DetectorConfig(tier_order=[t.name for t in self.tiers])
        self._tier_factory = tier_factory or create_tier

    @classmethod
    def from_settings(cls, config: Settings = None) -> "TieredDetector":
        config = config or default_settings
        detector_config = DetectorConfig.from_settings(config)
        return cls(
            tiers=build_tiers(detector_config.tier_order, config),
            config=detector_config,
            tier_factory=lambda name: create_tier(name, config),
        )

    @property
    def tier_names(self) -> List[str]:
        return [t.name for t in self.tiers]

    def resolve_tier(self, name: str) -> DetectionTier:
        """
        Find a tier by name, building it through the registry when it is
        not part of the configured chain.

        Raises:
            ConfigurationError: If no tier is registered under the name
        """
        for tier in self.tiers:
            if tier.name == name:
                return tier
        return self._tier_factory(name)

    def _invoke(self, tier: DetectionTier, sheet: RectifiedSheet) -> List[DetectionResult]:
        if not tier.remote:
            return tier.detect(sheet)

        timeout = self.config.tier_timeout
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"tier-{tier.name}")
        try:
            future = executor.submit(tier.detect, sheet)
            return future.result(timeout=timeout)
        except FuturesTimeout:
            raise TierInvocationError(tier.name, f"timed out after {timeout}s", timed_out=True)
        finally:
            # A timed-out call is abandoned; its late answer is never read
            executor.shutdown(wait=False)

    def run_tier(self, tier: DetectionTier, sheet: RectifiedSheet) -> TierOutcome:
        """Run one tier, converting every tier failure into an outcome"""
        cfg = self.config
        try:
            detections = self._invoke(tier, sheet)
        except TierInvocationError as e:
            if e.timed_out:
                error = Messages.TIER_TIMED_OUT.format(tier=tier.name, timeout=cfg.tier_timeout)
            else:
                error = Messages.TIER_FAILED.format(tier=tier.name, reason=e.reason)
            logger.warning(error)
            return TierOutcome(tier=tier.name, error=error)
        except Exception as e:
            logger.exception(f"Unexpected error in tier {tier.name}")
            return TierOutcome(tier=tier.name, error=Messages.TIER_FAILED.format(tier=tier.name, reason=e))

        problem = check_cardinality(detections, sheet.template.question_count)
        if problem:
            error = Messages.TIER_FAILED.format(tier=tier.name, reason=problem)
            logger.warning(error)
            return TierOutcome(tier=tier.name, error=error)

        detections = sorted(detections, key=lambda d: d.question_number)
        confidence = aggregate_confidence(
            [d.confidence for d in detections], cfg.aggregation, cfg.percentile
        )
        logger.info(f"Tier {tier.name}: aggregate confidence {confidence:.3f}")
        return TierOutcome(tier=tier.name, detections=detections, confidence=confidence)

    def detect(self, sheet: RectifiedSheet, tier: Optional[str] = None) -> DetectionOutcome:
        """
        Detect marked answers on a rectified sheet.

        Args:
            sheet: Rectified sheet from the preprocessor
            tier: Run only this tier instead of the fallback chain

        Returns:
            DetectionOutcome from the accepted tier

        Raises:
            ConfigurationError: If the pinned tier is unknown
            DetectionError: If every attempted tier failed
        """
        chain = [self.resolve_tier(tier)] if tier else self.tiers
        threshold = self.config.confidence_threshold

        attempts: List[TierOutcome] = []
        for candidate in chain:
            outcome = self.run_tier(candidate, sheet)
            attempts.append(outcome)
            if outcome.succeeded and outcome.confidence >= threshold:
                return self._accept(outcome, attempts, low_confidence=False)

        successful = [a for a in attempts if a.succeeded]
        if not successful:
            issues = [a.error for a in attempts]
            raise DetectionError(Messages.ALL_TIERS_FAILED, issues=issues)

        # max() keeps the earliest tier on ties
        best = max(successful, key=lambda a: a.confidence)
        return self._accept(best, attempts, low_confidence=True)

    def _accept(self, outcome: TierOutcome, attempts: List[TierOutcome], low_confidence: bool) -> DetectionOutcome:
        issues = [a.error for a in attempts if a.error]
        if low_confidence:
            issues.append(Messages.LOW_CONFIDENCE.format(
                tier=outcome.tier,
                score=outcome.confidence,
                threshold=self.config.confidence_threshold,
            ))
        issues.extend(question_issues(outcome.detections))

        stats = detection_stats(outcome.detections)
        detection_logger.info(
            f"Accepted tier {outcome.tier} (confidence={outcome.confidence:.3f}, "
            f"low_confidence={low_confidence}): {stats}"
        )
        return DetectionOutcome(
            tier=outcome.tier,
            detections=outcome.detections,
            confidence=outcome.confidence,
            low_confidence=low_confidence,
            attempts=attempts,
            issues=issues,
        )

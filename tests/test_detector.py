"""
Unit tests for the tiered detector
"""
import time

import pytest

from omr_grader.core import ConfigurationError, DetectionError, TierInvocationError
from omr_grader.pipeline.detector import (
    DetectorConfig,
    TieredDetector,
    aggregate_confidence,
    detection_stats,
)
from omr_grader.pipeline.sheet_layout import layout_for
from omr_grader.pipeline.tiers import DetectionResult

from .sheet_factory import StaticTier, blank_rectified


class SlowTier(StaticTier):
    """Remote tier that answers after a delay"""

    def __init__(self, name, delay, **kwargs):
        super().__init__(name, remote=True, **kwargs)
        self.delay = delay

    def detect(self, sheet):
        time.sleep(self.delay)
        return super().detect(sheet)


class ShortTier(StaticTier):
    """Tier that omits the last question"""

    def detect(self, sheet):
        return super().detect(sheet)[:-1]


@pytest.fixture
def sheet():
    return blank_rectified(layout_for(5, 4))


def make_detector(tiers, threshold=0.7, timeout=5.0, **kwargs):
    config = DetectorConfig(
        tier_order=[t.name for t in tiers],
        confidence_threshold=threshold,
        tier_timeout=timeout,
        **kwargs
    )
    return TieredDetector(tiers, config)


class TestAggregateConfidence:
    """Test cases for confidence aggregation"""

    def test_min_and_mean(self):
        assert aggregate_confidence([0.9, 0.5, 1.0], "min") == 0.5
        assert aggregate_confidence([0.9, 0.6, 0.9], "mean") == pytest.approx(0.8)

    def test_percentile_interpolates(self):
        assert aggregate_confidence([0.0, 1.0], "percentile", 50) == pytest.approx(0.5)
        assert aggregate_confidence([0.2, 0.4, 0.6, 0.8, 1.0], "percentile", 10) == pytest.approx(0.28)

    def test_empty(self):
        assert aggregate_confidence([], "min") == 0.0

    def test_unknown_method(self):
        with pytest.raises(ConfigurationError):
            aggregate_confidence([0.5], "median")

    def test_config_validation(self):
        with pytest.raises(ConfigurationError):
            DetectorConfig(tier_order=[])
        with pytest.raises(ConfigurationError):
            DetectorConfig(confidence_threshold=1.5)
        with pytest.raises(ConfigurationError):
            DetectorConfig(aggregation="median")


class TestTieredDetector:
    """Test cases for fallback behaviour"""

    def test_first_confident_tier_wins(self, sheet):
        """Test later tiers are never called once a tier is accepted"""
        calls = []
        detector = make_detector([
            StaticTier("cv", {1: "A"}, confidence=0.95, calls=calls),
            StaticTier("groq", {1: "B"}, confidence=0.99, calls=calls),
        ])
        outcome = detector.detect(sheet)
        assert outcome.tier == "cv"
        assert outcome.low_confidence is False
        assert outcome.by_question()[1].detected_option == "A"
        assert calls == ["cv"]

    def test_falls_through_low_confidence(self, sheet):
        calls = []
        detector = make_detector([
            StaticTier("cv", {1: "A"}, confidence=0.4, calls=calls),
            StaticTier("groq", {1: "B"}, confidence=0.9, calls=calls),
        ])
        outcome = detector.detect(sheet)
        assert outcome.tier == "groq"
        assert outcome.by_question()[1].detected_option == "B"
        assert calls == ["cv", "groq"]
        assert [a.tier for a in outcome.attempts] == ["cv", "groq"]

    def test_threshold_is_inclusive(self, sheet):
        detector = make_detector([StaticTier("cv", confidence=0.7)], threshold=0.7)
        assert detector.detect(sheet).low_confidence is False

    def test_best_tier_when_none_clears(self, sheet):
        """Test low-confidence acceptance of the best tier"""
        detector = make_detector([
            StaticTier("cv", {1: "A"}, confidence=0.3),
            StaticTier("groq", {1: "B"}, confidence=0.6),
            StaticTier("openrouter", {1: "C"}, confidence=0.5),
        ])
        outcome = detector.detect(sheet)
        assert outcome.tier == "groq"
        assert outcome.low_confidence is True
        assert any("low confidence" in issue for issue in outcome.issues)

    def test_ties_go_to_earlier_tier(self, sheet):
        detector = make_detector([
            StaticTier("cv", confidence=0.5),
            StaticTier("groq", confidence=0.5),
        ])
        assert detector.detect(sheet).tier == "cv"

    def test_failed_tier_is_skipped(self, sheet):
        detector = make_detector([
            StaticTier("groq", error=TierInvocationError("groq", "HTTP 503")),
            StaticTier("cv", {1: "D"}, confidence=0.9),
        ])
        outcome = detector.detect(sheet)
        assert outcome.tier == "cv"
        assert "tier groq failed: HTTP 503" in outcome.issues

    def test_unexpected_tier_error_is_skipped(self, sheet):
        detector = make_detector([
            StaticTier("groq", error=ValueError("boom")),
            StaticTier("cv", confidence=0.9),
        ])
        assert detector.detect(sheet).tier == "cv"

    def test_remote_timeout_falls_through(self, sheet):
        """Test a slow remote tier counts as failed"""
        detector = make_detector([
            SlowTier("groq", delay=1.0, confidence=0.99),
            StaticTier("cv", confidence=0.9),
        ], timeout=0.05)
        started = time.monotonic()
        outcome = detector.detect(sheet)
        assert time.monotonic() - started < 0.9
        assert outcome.tier == "cv"
        assert any("timed out" in issue for issue in outcome.issues)

    def test_fast_remote_tier_succeeds(self, sheet):
        detector = make_detector([SlowTier("groq", delay=0.0, confidence=0.9)])
        assert detector.detect(sheet).tier == "groq"

    def test_cardinality_violation_is_a_failure(self, sheet):
        detector = make_detector([
            ShortTier("groq", confidence=1.0),
            StaticTier("cv", confidence=0.8),
        ])
        outcome = detector.detect(sheet)
        assert outcome.tier == "cv"
        assert outcome.attempts[0].error is not None

    def test_all_tiers_failed(self, sheet):
        detector = make_detector([
            StaticTier("cv", error=TierInvocationError("cv", "bad")),
            StaticTier("groq", error=TierInvocationError("groq", "down")),
        ])
        with pytest.raises(DetectionError) as exc:
            detector.detect(sheet)
        assert exc.value.issues == ["tier cv failed: bad", "tier groq failed: down"]

    def test_pinned_tier_runs_alone(self, sheet):
        calls = []
        detector = make_detector([
            StaticTier("cv", confidence=0.95, calls=calls),
            StaticTier("groq", {1: "C"}, confidence=0.9, calls=calls),
        ])
        outcome = detector.detect(sheet, tier="groq")
        assert outcome.tier == "groq"
        assert calls == ["groq"]

    def test_pinned_tier_below_threshold(self, sheet):
        detector = make_detector([StaticTier("cv", confidence=0.2), StaticTier("groq", confidence=0.99)])
        outcome = detector.detect(sheet, tier="cv")
        assert outcome.tier == "cv"
        assert outcome.low_confidence is True

    def test_pinned_unknown_tier(self, sheet):
        detector = make_detector([StaticTier("cv")])
        with pytest.raises(ConfigurationError):
            detector.detect(sheet, tier="tesseract")

    def test_question_issues(self, sheet):
        """Test blank and multiple marks are reported for the accepted tier"""
        detector = make_detector([StaticTier("cv", {1: "A", 2: "AB", 3: "C", 4: "D", 5: "A"}, confidence=0.9)])
        outcome = detector.detect(sheet)
        assert outcome.issues == ["question 2: multiple marks detected (A, B)"]

    def test_mean_aggregation(self, sheet):
        class MixedTier(StaticTier):
            def detect(self, sheet):
                return [
                    DetectionResult(q, ("A",), 0.5 if q == 1 else 1.0, self.name)
                    for q in range(1, 6)
                ]

        strict = make_detector([MixedTier("cv")], aggregation="min")
        lenient = make_detector([MixedTier("cv")], aggregation="mean")
        assert strict.detect(sheet).low_confidence is True
        assert lenient.detect(sheet).confidence == pytest.approx(0.9)
        assert lenient.detect(sheet).low_confidence is False


class TestDetectionStats:
    def test_counts(self):
        results = [
            DetectionResult(1, ("A",), 1.0, "cv"),
            DetectionResult(2, (), 1.0, "cv"),
            DetectionResult(3, ("A", "B"), 1.0, "cv"),
        ]
        assert detection_stats(results) == {"total": 3, "answered": 1, "blank": 1, "multiple": 1}

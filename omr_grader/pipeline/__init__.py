"""
Pipeline Module
Provides bubble-sheet grading from photographed answer sheets

Usage:
    from omr_grader.pipeline import Exam, AnswerKey, SubmissionProcessor

    exam = Exam.from_json_file("path/to/key.json")
    processor = SubmissionProcessor.from_settings(repository, image_store)

    # Grade a photo without storage
    graded = processor.process_image(image_bytes, exam)

    # Grade a stored submission
    response = processor.process("sub_123")
"""

from .sheet_layout import (
    LayoutTemplate,
    layout_for,
    layout_to_dict,
    option_letters,
    to_pixels,
)

from .image_processing import (
    PreprocessorConfig,
    RectifiedSheet,
    SheetPreprocessor,
    decode_image,
    validate_image,
    detect_fiducials,
    read_header_code,
)

from .tiers import (
    DetectionResult,
    DetectionTier,
)

from .answer_analysis import (
    CVTier,
    fill_ratio,
)

from .vision_providers import (
    VisionTier,
    OpenAICompatibleVisionTier,
    OllamaVisionTier,
    TierFactory,
    create_tier,
    build_tiers,
)

from .detector import (
    DetectorConfig,
    DetectionOutcome,
    TieredDetector,
    aggregate_confidence,
)

from .grading_engine import (
    AnswerKey,
    AnswerKeyEntry,
    Exam,
    GradeScale,
    GradingEngine,
    GradingResult,
    save_results,
    load_results,
)

from .statistics import (
    ClassStatistics,
    compute_statistics,
    student_rank,
)

from .processor import (
    GradedSheet,
    ProcessorConfig,
    SubmissionProcessor,
)

__all__ = [
    # Layout
    "LayoutTemplate",
    "layout_for",
    "layout_to_dict",
    "option_letters",
    "to_pixels",
    # Image processing
    "PreprocessorConfig",
    "RectifiedSheet",
    "SheetPreprocessor",
    "decode_image",
    "validate_image",
    "detect_fiducials",
    "read_header_code",
    # Detection
    "DetectionResult",
    "DetectionTier",
    "CVTier",
    "fill_ratio",
    "VisionTier",
    "OpenAICompatibleVisionTier",
    "OllamaVisionTier",
    "TierFactory",
    "create_tier",
    "build_tiers",
    "DetectorConfig",
    "DetectionOutcome",
    "TieredDetector",
    "aggregate_confidence",
    # Grading
    "AnswerKey",
    "AnswerKeyEntry",
    "Exam",
    "GradeScale",
    "GradingEngine",
    "GradingResult",
    "save_results",
    "load_results",
    # Statistics
    "ClassStatistics",
    "compute_statistics",
    "student_rank",
    # Processor
    "GradedSheet",
    "ProcessorConfig",
    "SubmissionProcessor",
]

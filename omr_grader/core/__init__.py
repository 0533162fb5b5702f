# Core package
from .constants import (
    SubmissionStatus,
    ResultStatus,
    QuestionOutcome,
    AggregationMethod,
    MultiMarkPolicy,
    Messages,
    ImageLimits,
    CV_TIER,
    MULTIPLE_MARK,
    EMPTY_MARK,
    OPTION_LETTERS,
)
from .exceptions import (
    BaseAPIException,
    NotFoundException,
    ConfigurationError,
    InvalidImageError,
    AlignmentError,
    TierInvocationError,
    DetectionError,
    ConcurrencyConflict,
    InvalidTransitionError,
)
from .logger import logger, setup_logger, grading_logger, detection_logger

__all__ = [
    # Constants
    "SubmissionStatus",
    "ResultStatus",
    "QuestionOutcome",
    "AggregationMethod",
    "MultiMarkPolicy",
    "Messages",
    "ImageLimits",
    "CV_TIER",
    "MULTIPLE_MARK",
    "EMPTY_MARK",
    "OPTION_LETTERS",
    # Exceptions
    "BaseAPIException",
    "NotFoundException",
    "ConfigurationError",
    "InvalidImageError",
    "AlignmentError",
    "TierInvocationError",
    "DetectionError",
    "ConcurrencyConflict",
    "InvalidTransitionError",
    # Logging
    "logger",
    "setup_logger",
    "grading_logger",
    "detection_logger",
]

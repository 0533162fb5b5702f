"""
Application constants
"""
from enum import Enum


class SubmissionStatus(str, Enum):
    """Lifecycle states of a photographed submission"""
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class ResultStatus(str, Enum):
    """Pass/fail outcome of a graded submission"""
    PASS = "pass"
    FAIL = "fail"


class QuestionOutcome(str, Enum):
    """Per-question grading outcome"""
    CORRECT = "correct"
    WRONG = "wrong"
    BLANK = "blank"
    MULTIPLE = "multiple"
    UNGRADED = "ungraded"


class AggregationMethod(str, Enum):
    """How per-question confidences collapse into a tier score"""
    MIN = "min"
    MEAN = "mean"
    PERCENTILE = "percentile"


class MultiMarkPolicy(str, Enum):
    """Scoring of questions with more than one marked bubble"""
    ZERO = "zero"
    PARTIAL = "partial"


# Tier name of the deterministic pixel-intensity detector
CV_TIER = "cv"

# Sentinel recorded for questions with more than one mark
MULTIPLE_MARK = "MULTIPLE"

# Sentinel used by vision models for unmarked questions
EMPTY_MARK = "EMPTY"

OPTION_LETTERS = "ABCDE"


# API Response Messages
class Messages:
    """Failure and issue messages"""

    FIDUCIALS_NOT_FOUND = "fiducial markers not found ({found} of {expected} detected)"
    RECAPTURE_SHEET = "re-capture the sheet with all four corner markers visible"
    IMAGE_LOAD_FAILED = "Failed to load image"
    IMAGE_UNDECODABLE = "Image could not be decoded"
    IMAGE_TOO_SMALL = "Image too small. Minimum {min_w}x{min_h} pixels. Got {w}x{h}"
    IMAGE_BLANK = "Image appears to be blank or has insufficient content"
    IMAGE_TOO_DARK = "Image is too dark or corrupted"
    IMAGE_LOW_CONTRAST = "Image has very low contrast"
    TIER_TIMED_OUT = "tier {tier} timed out after {timeout}s"
    TIER_FAILED = "tier {tier} failed: {reason}"
    ALL_TIERS_FAILED = "All detection tiers failed"
    LOW_CONFIDENCE = "low confidence: best tier {tier} scored {score:.2f} (threshold {threshold:.2f})"
    ALREADY_IN_PROGRESS = "Submission is already being processed"
    ATTEMPT_SUPERSEDED = "A newer processing attempt superseded this one"
    ALREADY_FINISHED = "Submission is already {status}; request reprocessing to grade again"
    NO_GRADABLE_QUESTIONS = "Exam has no gradable questions"
    STUDENT_NOT_IDENTIFIED = "Could not identify student from sheet header; result stored as anonymous"
    HEADER_EXAM_MISMATCH = "Sheet header names exam {found}, submission is for exam {expected}"
    QUESTION_BLANK = "question {question}: no mark detected"
    QUESTION_MULTIPLE = "question {question}: multiple marks detected ({options})"


class ImageLimits:
    """Image size limits"""
    MAX_IMAGE_SIZE = 10 * 1024 * 1024  # 10MB
    ALLOWED_EXTENSIONS = (".jpg", ".jpeg", ".png")

"""
Submission record tracked by the grading repository
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..core.constants import SubmissionStatus
from ..utils.helpers import utcnow


@dataclass
class Submission:
    """One uploaded sheet photo and its processing state"""
    submission_id: str
    exam_id: str
    image_reference: str
    student_id: Optional[str] = None
    status: SubmissionStatus = SubmissionStatus.PENDING
    error_message: Optional[str] = None
    submitted_at: datetime = field(default_factory=utcnow)
    processed_at: Optional[datetime] = None

    # Bookkeeping for the in-flight attempt
    attempt_id: Optional[str] = None
    processing_started_at: Optional[datetime] = None
    result_id: Optional[str] = None

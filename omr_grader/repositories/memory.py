"""
Thread-safe in-memory grading repository
"""
import copy
import logging
import threading
from datetime import timedelta
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from ..core.constants import Messages, SubmissionStatus
from ..core.exceptions import ConcurrencyConflict, InvalidTransitionError, NotFoundException
from ..utils.helpers import generate_id, utcnow
from .base import GradingRepository
from .models import Submission

if TYPE_CHECKING:
    from ..pipeline.grading_engine import Exam, GradingResult

logger = logging.getLogger(__name__)


class InMemoryGradingRepository(GradingRepository):
    """
    Dictionary-backed repository.

    Every read returns a copy, so callers never share mutable records.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._exams: Dict[str, "Exam"] = {}
        self._submissions: Dict[str, Submission] = {}
        self._results: Dict[str, "GradingResult"] = {}

    def add_exam(self, exam: "Exam") -> "Exam":
        with self._lock:
            self._exams[exam.exam_id] = copy.deepcopy(exam)
        return exam

    def get_exam(self, exam_id: str) -> "Exam":
        with self._lock:
            exam = self._exams.get(exam_id)
            if exam is None:
                raise NotFoundException("Exam", exam_id)
            return copy.deepcopy(exam)

    def add_submission(self, submission: Submission) -> Submission:
        with self._lock:
            self._submissions[submission.submission_id] = copy.deepcopy(submission)
        return submission

    def get_submission(self, submission_id: str) -> Submission:
        with self._lock:
            return copy.deepcopy(self._get(submission_id))

    def _get(self, submission_id: str) -> Submission:
        submission = self._submissions.get(submission_id)
        if submission is None:
            raise NotFoundException("Submission", submission_id)
        return submission

    def begin_processing(
        self,
        submission_id: str,
        allowed_from: Iterable[SubmissionStatus],
        lease_seconds: Optional[float] = None
    ) -> Submission:
        allowed = set(allowed_from)
        with self._lock:
            submission = self._get(submission_id)
            now = utcnow()

            if submission.status == SubmissionStatus.PROCESSING:
                started = submission.processing_started_at
                expired = (
                    lease_seconds is not None
                    and started is not None
                    and now - started >= timedelta(seconds=lease_seconds)
                )
                if not expired:
                    raise ConcurrencyConflict(submission_id, Messages.ALREADY_IN_PROGRESS)
                logger.warning(
                    f"Taking over stale attempt {submission.attempt_id} for {submission_id}"
                )
            elif submission.status not in allowed:
                raise InvalidTransitionError(
                    submission_id,
                    Messages.ALREADY_FINISHED.format(status=submission.status.value)
                )

            submission.status = SubmissionStatus.PROCESSING
            submission.attempt_id = generate_id("att")
            submission.processing_started_at = now
            submission.error_message = None
            return copy.deepcopy(submission)

    def complete_processing(
        self,
        submission_id: str,
        attempt_id: str,
        result: "GradingResult"
    ) -> Optional["GradingResult"]:
        with self._lock:
            submission = self._get(submission_id)
            if submission.attempt_id != attempt_id:
                logger.warning(f"Discarding stale attempt {attempt_id} for {submission_id}")
                return None

            stored = copy.deepcopy(result)
            existing = self._results.get(submission_id)
            if existing is not None:
                stored.result_id = existing.result_id
            self._results[submission_id] = stored

            submission.status = SubmissionStatus.PROCESSED
            submission.processed_at = stored.processed_at
            submission.result_id = stored.result_id
            submission.error_message = None
            submission.attempt_id = None
            submission.processing_started_at = None
            if submission.student_id is None:
                submission.student_id = stored.student_id
            return copy.deepcopy(stored)

    def fail_processing(self, submission_id: str, attempt_id: str, error_message: str) -> bool:
        with self._lock:
            submission = self._get(submission_id)
            if submission.attempt_id != attempt_id:
                logger.warning(f"Discarding stale failure {attempt_id} for {submission_id}")
                return False

            # A failed submission has no result, even when it was graded before
            self._results.pop(submission_id, None)
            submission.result_id = None
            submission.status = SubmissionStatus.FAILED
            submission.error_message = error_message
            submission.processed_at = utcnow()
            submission.attempt_id = None
            submission.processing_started_at = None
            return True

    def get_result(self, submission_id: str) -> Optional["GradingResult"]:
        with self._lock:
            result = self._results.get(submission_id)
            return copy.deepcopy(result) if result is not None else None

    def list_results(self, exam_id: str) -> List["GradingResult"]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._results.values() if r.exam_id == exam_id]

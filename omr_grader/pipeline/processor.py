"""
Submission Processor Module
Main entry point for grading sheet photos and recording results
"""
from dataclasses import dataclass, field
from typing import List, Optional, Union
import logging

from ..config import Settings, settings as default_settings
from ..core.constants import Messages, SubmissionStatus
from ..core.exceptions import BaseAPIException, ConcurrencyConflict
from ..core.logger import grading_logger
from ..repositories.base import GradingRepository
from ..repositories.images import ImageStore
from ..schemas import ProcessingFailure, ProcessingResponse, QuestionDetail
from ..utils.helpers import generate_id, utcnow
from .detector import DetectionOutcome, TieredDetector
from .grading_engine import Exam, GradeSummary, GradingEngine, GradingResult
from .image_processing import HeaderCode, PreprocessorConfig, SheetPreprocessor, read_header_code

logger = logging.getLogger(__name__)

ProcessingOutcome = Union[ProcessingResponse, ProcessingFailure]


@dataclass
class ProcessorConfig:
    """Configuration for submission processing"""
    processing_lease_seconds: float = 600
    resolve_student_from_header: bool = True

    @classmethod
    def from_settings(cls, config: Settings = None) -> "ProcessorConfig":
        config = config or default_settings
        return cls(processing_lease_seconds=config.PROCESSING_LEASE_SECONDS)


@dataclass
class GradedSheet:
    """Everything the pure chain learned from one photo"""
    detection: DetectionOutcome
    summary: GradeSummary
    header: Optional[HeaderCode] = None
    issues: List[str] = field(default_factory=list)

    @property
    def needs_review(self) -> bool:
        return self.detection.low_confidence

    def to_dict(self) -> dict:
        result = self.summary.to_dict()
        result.update({
            "processing_method": self.detection.tier,
            "confidence": round(self.detection.confidence, 4),
            "needs_review": self.needs_review,
            "student_id": self.header.student_id if self.header else None,
            "issues": self.issues,
            "tiers": [a.to_dict() for a in self.detection.attempts],
        })
        return result


class SubmissionProcessor:
    """
    Orchestrates grading of a stored submission.

    Pipeline:
    1. Acquire the submission (pending -> processing)
    2. Rectify the photo
    3. Tiered detection
    4. Grading
    5. Commit the result, or record the failure
    """

    def __init__(
        self,
        repository: GradingRepository,
        image_store: ImageStore,
        preprocessor: SheetPreprocessor = None,
        detector: TieredDetector = None,
        engine: GradingEngine = None,
        config: ProcessorConfig = None
    ):
        self.repository = repository
        self.image_store = image_store
        self.preprocessor = preprocessor or SheetPreprocessor()
        self.detector = detector or TieredDetector.from_settings()
        self.engine = engine or GradingEngine.from_settings()
        self.config = config or ProcessorConfig()

        logger.info(f"SubmissionProcessor initialized with tiers {self.detector.tier_names}")

    @classmethod
    def from_settings(
        cls,
        repository: GradingRepository,
        image_store: ImageStore,
        config: Settings = None
    ) -> "SubmissionProcessor":
        config = config or default_settings
        return cls(
            repository=repository,
            image_store=image_store,
            preprocessor=SheetPreprocessor(PreprocessorConfig.from_settings(config)),
            detector=TieredDetector.from_settings(config),
            engine=GradingEngine.from_settings(config),
            config=ProcessorConfig.from_settings(config),
        )

    def process_image(
        self,
        image_bytes: bytes,
        exam: Exam,
        tier: Optional[str] = None,
        read_header: bool = True
    ) -> GradedSheet:
        """
        Grade one photo against an exam without touching storage.

        Raises:
            InvalidImageError, AlignmentError, ConfigurationError, DetectionError
        """
        sheet = self.preprocessor.process(image_bytes, exam.template)
        detection = self.detector.detect(sheet, tier=tier)
        summary = self.engine.grade(exam, detection.detections)

        header = read_header_code(sheet) if read_header else None
        issues = list(detection.issues)
        if header and header.exam_id and header.exam_id != exam.exam_id:
            issues.append(Messages.HEADER_EXAM_MISMATCH.format(found=header.exam_id, expected=exam.exam_id))

        return GradedSheet(detection=detection, summary=summary, header=header, issues=issues)

    def process(
        self,
        submission_id: str,
        tier: Optional[str] = None,
        reprocess: bool = False
    ) -> ProcessingOutcome:
        """
        Grade a stored submission and record the outcome.

        Args:
            submission_id: Submission to grade
            tier: Run only this tier instead of the fallback chain
            reprocess: Allow grading a processed or failed submission again;
                also allows taking over an attempt older than the lease

        Returns:
            ProcessingResponse on success, ProcessingFailure otherwise
        """
        allowed = {SubmissionStatus.PENDING}
        lease = None
        if reprocess:
            allowed |= {SubmissionStatus.PROCESSED, SubmissionStatus.FAILED}
            lease = self.config.processing_lease_seconds

        try:
            if tier:
                # Unknown tier names are rejected before the submission changes state
                self.detector.resolve_tier(tier)
            submission = self.repository.begin_processing(submission_id, allowed, lease)
        except BaseAPIException as e:
            logger.warning(f"Cannot process {submission_id}: {e.detail}")
            return self._failure(submission_id, e)

        attempt_id = submission.attempt_id
        grading_logger.info(f"Processing {submission_id} (attempt {attempt_id}, tier={tier or 'auto'})")

        try:
            exam = self.repository.get_exam(submission.exam_id)
            image_bytes = self.image_store.load(submission.image_reference)
            graded = self.process_image(
                image_bytes,
                exam,
                tier=tier,
                read_header=self.config.resolve_student_from_header and submission.student_id is None
            )
        except BaseAPIException as e:
            grading_logger.warning(f"Failed {submission_id}: {e.detail}")
            self.repository.fail_processing(submission_id, attempt_id, e.detail)
            return self._failure(submission_id, e)
        except Exception as e:
            logger.exception(f"Unexpected error processing {submission_id}")
            message = f"Unexpected error: {str(e)}"
            self.repository.fail_processing(submission_id, attempt_id, message)
            return ProcessingFailure(
                submission_id=submission_id,
                error=message,
                error_code="INTERNAL_ERROR",
                issues=[message],
            )

        issues = list(graded.issues)
        student_id = submission.student_id
        if student_id is None:
            student_id = graded.header.student_id if graded.header else None
            if student_id is None:
                issues.append(Messages.STUDENT_NOT_IDENTIFIED)

        summary = graded.summary
        result = GradingResult(
            result_id=submission.result_id or generate_id("res"),
            submission_id=submission_id,
            exam_id=submission.exam_id,
            student_id=student_id,
            obtained_marks=summary.obtained_marks,
            total_marks=summary.total_marks,
            percentage=summary.percentage,
            grade=summary.grade,
            status=summary.status,
            processing_method=graded.detection.tier,
            confidence_score=round(graded.detection.confidence, 4),
            needs_review=graded.needs_review,
            processed_at=utcnow(),
            question_results=summary.question_results,
        )

        stored = self.repository.complete_processing(submission_id, attempt_id, result)
        if stored is None:
            return self._failure(
                submission_id, ConcurrencyConflict(submission_id, Messages.ATTEMPT_SUPERSEDED)
            )

        grading_logger.info(
            f"Processed {submission_id}: "
            f"Student={stored.student_id}, "
            f"Score={stored.obtained_marks}/{stored.total_marks} ({stored.percentage}%), "
            f"Grade={stored.grade}, Method={stored.processing_method}"
        )
        return self._response(stored, issues)

    @staticmethod
    def _response(result: GradingResult, issues: List[str]) -> ProcessingResponse:
        return ProcessingResponse(
            submission_id=result.submission_id,
            result_id=result.result_id,
            student_id=result.student_id,
            obtained_marks=result.obtained_marks,
            total_marks=result.total_marks,
            percentage=result.percentage,
            grade=result.grade,
            status=result.status,
            processing_method=result.processing_method,
            confidence=result.confidence_score,
            needs_review=result.needs_review,
            issues=issues,
            questions=[
                QuestionDetail(
                    question_number=q.question_number,
                    detected_option=q.detected_option,
                    correct_option=q.correct_option,
                    awarded_marks=q.awarded_marks,
                    max_marks=q.max_marks,
                    outcome=q.outcome,
                    confidence=q.confidence,
                )
                for q in result.question_results
            ],
        )

    @staticmethod
    def _failure(submission_id: str, error: BaseAPIException) -> ProcessingFailure:
        return ProcessingFailure(
            submission_id=submission_id,
            error=error.detail,
            error_code=error.error_code,
            issues=error.issues or [error.detail],
        )

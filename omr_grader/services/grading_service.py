"""
Grading Service
Handles submission grading and result management
"""
import logging
from typing import List, Optional
from datetime import datetime

from openpyxl import Workbook
from openpyxl.styles import Font

from ..config import Settings, settings as default_settings
from ..core import InvalidImageError, Messages, NotFoundException
from ..pipeline.grading_engine import Exam, GradeScale, GradingResult
from ..pipeline.processor import ProcessingOutcome, SubmissionProcessor
from ..pipeline.statistics import compute_statistics, student_rank
from ..repositories import (
    GradingRepository,
    ImageStore,
    InMemoryGradingRepository,
    LocalImageStore,
    Submission,
)
from ..schemas import RankedResult, StatisticsResponse
from ..utils import ensure_directory, generate_id

logger = logging.getLogger(__name__)


class GradingService:
    """Service for sheet grading and result management"""

    def __init__(
        self,
        repository: GradingRepository = None,
        image_store: ImageStore = None,
        processor: SubmissionProcessor = None,
        config: Settings = None
    ):
        self.config = config or default_settings
        self.repository = repository or InMemoryGradingRepository()
        self.image_store = image_store or LocalImageStore(self.config.IMAGES_DIR)
        self.processor = processor or SubmissionProcessor.from_settings(
            self.repository, self.image_store, self.config
        )
        self.scale = GradeScale.from_settings(self.config)
        self.exports_dir = ensure_directory(self.config.EXPORTS_DIR)

    # ===== Registration =====
    def register_exam(self, exam: Exam) -> Exam:
        self.repository.add_exam(exam)
        logger.info(f"Registered exam {exam.exam_id} ({exam.question_count} questions)")
        return exam

    def register_submission(
        self,
        exam_id: str,
        image_bytes: bytes = None,
        image_reference: str = None,
        student_id: Optional[str] = None,
        filename: str = "sheet.jpg"
    ) -> Submission:
        """Store a sheet photo (or reference an existing one) as a pending submission"""
        self.repository.get_exam(exam_id)

        if image_bytes is not None:
            image_reference = self.image_store.save(image_bytes, filename)
        elif not image_reference:
            raise InvalidImageError(Messages.IMAGE_LOAD_FAILED)

        submission = Submission(
            submission_id=generate_id("sub"),
            exam_id=exam_id,
            image_reference=image_reference,
            student_id=student_id,
        )
        self.repository.add_submission(submission)
        logger.info(f"Registered submission {submission.submission_id} for exam {exam_id}")
        return submission

    # ===== Processing =====
    def process_submission(self, submission_id: str, tier: Optional[str] = None) -> ProcessingOutcome:
        return self.processor.process(submission_id, tier=tier)

    def reprocess_submission(self, submission_id: str, tier: Optional[str] = None) -> ProcessingOutcome:
        return self.processor.process(submission_id, tier=tier, reprocess=True)

    # ===== Results =====
    def get_submission(self, submission_id: str) -> Submission:
        return self.repository.get_submission(submission_id)

    def get_result(self, submission_id: str) -> GradingResult:
        result = self.repository.get_result(submission_id)
        if result is None:
            raise NotFoundException("Result for submission", submission_id)
        return result

    def _results_for(self, exam_id: str) -> List[GradingResult]:
        results = self.repository.list_results(exam_id)
        if not results:
            raise NotFoundException("Results for exam", exam_id)
        return results

    def get_statistics(self, exam_id: str) -> StatisticsResponse:
        """Class statistics for an exam; NotFoundException when nothing is graded yet"""
        stats = compute_statistics(self._results_for(exam_id), self.scale)
        return StatisticsResponse(
            exam_id=exam_id,
            count=stats.count,
            mean_percentage=stats.mean_percentage,
            median_percentage=stats.median_percentage,
            pass_count=stats.pass_count,
            fail_count=stats.fail_count,
            pass_percentage=stats.pass_percentage,
            highest_percentage=stats.highest_percentage,
            lowest_percentage=stats.lowest_percentage,
            grade_distribution=stats.grade_distribution,
            ranked_results=[
                RankedResult(
                    rank=entry.rank,
                    submission_id=entry.result.submission_id,
                    student_id=entry.result.student_id,
                    obtained_marks=entry.result.obtained_marks,
                    total_marks=entry.result.total_marks,
                    percentage=entry.result.percentage,
                    grade=entry.result.grade,
                    status=entry.result.status,
                    processed_at=entry.result.processed_at,
                )
                for entry in stats.ranked
            ],
        )

    def get_student_rank(self, exam_id: str, student_id: str) -> int:
        rank = student_rank(self._results_for(exam_id), student_id)
        if rank is None:
            raise NotFoundException("Result for student", student_id)
        return rank

    def export_statistics_to_excel(self, exam_id: str) -> str:
        """Export class statistics and ranked results to an Excel file"""
        stats = self.get_statistics(exam_id)

        wb = Workbook()

        # Summary sheet
        ws_summary = wb.active
        ws_summary.title = "Summary"

        rows = [
            ("Exam ID", exam_id),
            ("Submissions", stats.count),
            ("Mean %", stats.mean_percentage),
            ("Median %", stats.median_percentage),
            ("Highest %", stats.highest_percentage),
            ("Lowest %", stats.lowest_percentage),
            ("Passed", stats.pass_count),
            ("Failed", stats.fail_count),
            ("Pass %", stats.pass_percentage),
        ]
        for label, value in rows:
            ws_summary.append([label, value])
            ws_summary.cell(row=ws_summary.max_row, column=1).font = Font(bold=True)

        ws_summary.append([])
        ws_summary.append(["Grade", "Count"])
        for col in (1, 2):
            ws_summary.cell(row=ws_summary.max_row, column=col).font = Font(bold=True)
        for grade, count in stats.grade_distribution.items():
            ws_summary.append([grade, count])

        # Results sheet
        ws_results = wb.create_sheet("Results")
        headers = ["Rank", "Submission ID", "Student ID", "Marks", "Total", "Percentage", "Grade", "Status"]
        ws_results.append(headers)

        for col in range(1, len(headers) + 1):
            ws_results.cell(row=1, column=col).font = Font(bold=True)

        for r in stats.ranked_results:
            ws_results.append([
                r.rank, r.submission_id, r.student_id or "",
                r.obtained_marks, r.total_marks, r.percentage, r.grade, r.status
            ])

        # Auto-adjust column width
        for col in ws_results.columns:
            max_len = max(len(str(cell.value)) if cell.value is not None else 0 for cell in col)
            ws_results.column_dimensions[col[0].column_letter].width = max_len + 2

        # Save file
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"exam_summary_{exam_id}_{timestamp}.xlsx"
        file_path = self.exports_dir / filename
        wb.save(file_path)

        logger.info(f"Exported to Excel: {filename}")
        return str(file_path)

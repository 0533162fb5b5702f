"""
Integration tests for the submission processor
"""
import json

import pytest

from omr_grader.core import SubmissionStatus, TierInvocationError
from omr_grader.pipeline.answer_analysis import CVTier
from omr_grader.pipeline.detector import DetectorConfig, TieredDetector
from omr_grader.pipeline.grading_engine import GradingEngine
from omr_grader.pipeline.image_processing import SheetPreprocessor
from omr_grader.pipeline.processor import SubmissionProcessor
from omr_grader.pipeline.statistics import compute_statistics
from omr_grader.repositories import InMemoryGradingRepository, InMemoryImageStore, Submission
from omr_grader.schemas import ProcessingFailure, ProcessingResponse

from .sheet_factory import StaticTier, encode_png, make_exam, render_sheet, tilt


def build_processor(tiers=None, threshold=0.7):
    tiers = tiers or [CVTier()]
    repository = InMemoryGradingRepository()
    store = InMemoryImageStore()
    detector = TieredDetector(
        tiers,
        DetectorConfig(tier_order=[t.name for t in tiers], confidence_threshold=threshold),
    )
    processor = SubmissionProcessor(
        repository,
        store,
        preprocessor=SheetPreprocessor(),
        detector=detector,
        engine=GradingEngine(),
    )
    return processor, repository, store


def submit(repository, store, image, submission_id="sub1", student_id="S1", exam=None):
    if exam is not None:
        repository.add_exam(exam)
    reference = store.put(f"{submission_id}.png", encode_png(image))
    repository.add_submission(Submission(
        submission_id=submission_id,
        exam_id="EXAM1",
        image_reference=reference,
        student_id=student_id,
    ))


class TestProcess:
    """Test cases for grading stored submissions"""

    def test_full_marks(self, template_20x4, answers_20):
        """Test a correctly filled sheet scores 100%"""
        processor, repository, store = build_processor()
        submit(repository, store, render_sheet(template_20x4, answers_20), exam=make_exam(answers_20))

        response = processor.process("sub1")

        assert isinstance(response, ProcessingResponse)
        assert response.obtained_marks == 20
        assert response.percentage == 100.0
        assert response.grade == "A"
        assert response.status == "pass"
        assert response.processing_method == "cv"
        assert response.needs_review is False
        assert repository.get_submission("sub1").status == SubmissionStatus.PROCESSED
        assert repository.get_result("sub1").result_id == response.result_id

    def test_mixed_answers_on_tilted_photo(self, template_20x4, answers_20):
        marks = dict(answers_20)
        marks[1] = "B"       # wrong
        marks[2] = "AB"      # multiple
        del marks[3]         # blank
        processor, repository, store = build_processor()
        submit(repository, store, tilt(render_sheet(template_20x4, marks)), exam=make_exam(answers_20))

        response = processor.process("sub1")

        assert response.obtained_marks == 17
        assert response.percentage == 85.0
        assert response.grade == "B"
        outcomes = {q.question_number: q.outcome for q in response.questions}
        assert outcomes[1] == "wrong"
        assert outcomes[2] == "multiple"
        assert outcomes[3] == "blank"
        assert "question 3: no mark detected" in response.issues

    def test_payload_uses_camel_case(self, template_20x4, answers_20):
        processor, repository, store = build_processor()
        submit(repository, store, render_sheet(template_20x4, answers_20), exam=make_exam(answers_20))
        payload = processor.process("sub1").to_payload()
        assert payload["success"] is True
        assert {"submissionId", "resultId", "obtainedMarks", "processingMethod", "needsReview"} <= set(payload)
        json.dumps(payload)

    def test_alignment_failure(self, template_20x4, answers_20):
        """Test a sheet without markers fails with recapture guidance"""
        processor, repository, store = build_processor()
        image = render_sheet(template_20x4, answers_20, skip_markers=("top_left", "top_right", "bottom_left"))
        submit(repository, store, image, exam=make_exam(answers_20))

        response = processor.process("sub1")

        assert isinstance(response, ProcessingFailure)
        assert response.success is False
        assert response.issues[0] == "fiducial markers not found (1 of 4 detected)"
        submission = repository.get_submission("sub1")
        assert submission.status == SubmissionStatus.FAILED
        assert submission.error_message == response.error
        assert repository.get_result("sub1") is None

    def test_all_tiers_failed(self, template_20x4, answers_20):
        processor, repository, store = build_processor(tiers=[
            StaticTier("groq", error=TierInvocationError("groq", "timeout")),
        ])
        submit(repository, store, render_sheet(template_20x4, answers_20), exam=make_exam(answers_20))

        response = processor.process("sub1")

        assert isinstance(response, ProcessingFailure)
        assert response.error_code == "DETECTION_ERROR"
        assert response.issues == ["tier groq failed: timeout"]
        assert repository.get_submission("sub1").status == SubmissionStatus.FAILED

    def test_low_confidence_flags_review(self, template_20x4, answers_20):
        processor, repository, store = build_processor(tiers=[StaticTier("groq", answers_20, confidence=0.5)])
        submit(repository, store, render_sheet(template_20x4), exam=make_exam(answers_20))

        response = processor.process("sub1")

        assert response.processing_method == "groq"
        assert response.needs_review is True
        assert response.confidence == 0.5
        assert repository.get_result("sub1").needs_review is True

    def test_unreadable_image(self, answers_20):
        processor, repository, store = build_processor()
        repository.add_exam(make_exam(answers_20))
        store.put("junk", b"not an image")
        repository.add_submission(Submission(submission_id="sub1", exam_id="EXAM1", image_reference="junk"))

        response = processor.process("sub1")

        assert isinstance(response, ProcessingFailure)
        assert response.error_code == "INVALID_IMAGE"

    def test_unexpected_error_marks_failed(self, template_20x4, answers_20):
        processor, repository, store = build_processor(tiers=[StaticTier("cv")])
        submit(repository, store, render_sheet(template_20x4), exam=make_exam(answers_20))

        def explode(*args, **kwargs):
            raise RuntimeError("disk on fire")

        processor.engine.grade = explode
        response = processor.process("sub1")
        assert response.error_code == "INTERNAL_ERROR"
        assert repository.get_submission("sub1").status == SubmissionStatus.FAILED


class TestStateMachine:
    """Test cases for lifecycle transitions"""

    def test_processed_requires_reprocess(self, template_20x4, answers_20):
        processor, repository, store = build_processor()
        submit(repository, store, render_sheet(template_20x4, answers_20), exam=make_exam(answers_20))
        first = processor.process("sub1")

        rejected = processor.process("sub1")
        assert isinstance(rejected, ProcessingFailure)
        assert rejected.error_code == "INVALID_TRANSITION"

        again = processor.process("sub1", reprocess=True)
        assert isinstance(again, ProcessingResponse)
        assert again.result_id == first.result_id
        assert len(repository.list_results("EXAM1")) == 1

    def test_failed_can_be_reprocessed(self, template_20x4, answers_20):
        processor, repository, store = build_processor()
        submit(repository, store, render_sheet(template_20x4, skip_markers=("top_left", "top_right")),
               exam=make_exam(answers_20))
        assert isinstance(processor.process("sub1"), ProcessingFailure)

        store.put("sub1.png", encode_png(render_sheet(template_20x4, answers_20)))
        response = processor.process("sub1", reprocess=True)
        assert isinstance(response, ProcessingResponse)
        submission = repository.get_submission("sub1")
        assert submission.status == SubmissionStatus.PROCESSED
        assert submission.error_message is None

    def test_reprocess_is_idempotent(self, template_20x4, answers_20):
        marks = dict(answers_20)
        marks[4] = "A"
        processor, repository, store = build_processor()
        submit(repository, store, render_sheet(template_20x4, marks), exam=make_exam(answers_20))

        first = processor.process("sub1")
        again = processor.process("sub1", reprocess=True)

        assert again.result_id == first.result_id
        assert (again.obtained_marks, again.percentage, again.grade, again.status) == \
            (first.obtained_marks, first.percentage, first.grade, first.status)
        assert [q.outcome for q in again.questions] == [q.outcome for q in first.questions]

    def test_reprocess_after_key_correction(self, template_20x4, answers_20):
        """Test a corrected answer key replaces the stored scores"""
        processor, repository, store = build_processor()
        submit(repository, store, render_sheet(template_20x4, answers_20), exam=make_exam(answers_20))
        first = processor.process("sub1")
        assert first.percentage == 100.0

        corrected = dict(answers_20)
        for q in range(1, 6):
            corrected[q] = "D" if answers_20[q] != "D" else "A"
        repository.add_exam(make_exam(corrected))
        again = processor.process("sub1", reprocess=True)

        assert again.result_id == first.result_id
        assert again.obtained_marks == 15
        assert again.percentage == 75.0
        assert again.grade == "B"
        stored = repository.list_results("EXAM1")
        assert len(stored) == 1
        assert stored[0].percentage == 75.0

    def test_failed_reprocess_with_pinned_tier(self, template_20x4, answers_20):
        calls = []
        processor, repository, store = build_processor(tiers=[
            CVTier(),
            StaticTier("groq", answers_20, confidence=0.95, calls=calls),
        ])
        submit(repository, store, render_sheet(template_20x4, skip_markers=("top_left", "top_right")),
               exam=make_exam(answers_20))
        assert isinstance(processor.process("sub1"), ProcessingFailure)

        store.put("sub1.png", encode_png(render_sheet(template_20x4)))
        response = processor.process("sub1", tier="groq", reprocess=True)

        assert isinstance(response, ProcessingResponse)
        assert calls == ["groq"]
        assert response.processing_method == "groq"
        assert response.percentage == 100.0
        assert repository.get_submission("sub1").status == SubmissionStatus.PROCESSED

    def test_failed_reprocess_drops_previous_result(self, template_20x4, answers_20):
        processor, repository, store = build_processor()
        submit(repository, store, render_sheet(template_20x4, answers_20), exam=make_exam(answers_20))
        assert isinstance(processor.process("sub1"), ProcessingResponse)

        store.put("sub1.png", encode_png(render_sheet(template_20x4, answers_20, skip_markers=("top_left", "top_right"))))
        response = processor.process("sub1", reprocess=True)

        assert isinstance(response, ProcessingFailure)
        assert repository.get_submission("sub1").status == SubmissionStatus.FAILED
        assert repository.get_result("sub1") is None
        assert repository.list_results("EXAM1") == []
        assert compute_statistics(repository.list_results("EXAM1")).count == 0

    def test_in_flight_submission_conflicts(self, template_20x4, answers_20):
        processor, repository, store = build_processor()
        submit(repository, store, render_sheet(template_20x4, answers_20), exam=make_exam(answers_20))
        repository.begin_processing("sub1", {SubmissionStatus.PENDING})

        response = processor.process("sub1")
        assert response.error_code == "ALREADY_IN_PROGRESS"
        assert repository.get_submission("sub1").status == SubmissionStatus.PROCESSING

    def test_unknown_pinned_tier_leaves_state(self, template_20x4, answers_20):
        processor, repository, store = build_processor()
        submit(repository, store, render_sheet(template_20x4, answers_20), exam=make_exam(answers_20))

        response = processor.process("sub1", tier="tesseract")
        assert response.error_code == "CONFIGURATION_ERROR"
        assert repository.get_submission("sub1").status == SubmissionStatus.PENDING

    def test_unknown_submission(self):
        processor, _, _ = build_processor()
        assert processor.process("missing").error_code == "NOT_FOUND"


class TestStudentResolution:
    """Test cases for identifying the student from the sheet header"""

    def test_student_from_qr(self, template_20x4, answers_20):
        processor, repository, store = build_processor()
        image = render_sheet(template_20x4, answers_20, qr_payload=json.dumps({"e": "EXAM1", "s": "S777"}))
        submit(repository, store, image, student_id=None, exam=make_exam(answers_20))

        response = processor.process("sub1")
        assert response.student_id == "S777"
        assert repository.get_submission("sub1").student_id == "S777"

    def test_anonymous_when_unidentified(self, template_20x4, answers_20):
        processor, repository, store = build_processor()
        submit(repository, store, render_sheet(template_20x4, answers_20), student_id=None,
               exam=make_exam(answers_20))

        response = processor.process("sub1")
        assert response.student_id is None
        assert any("anonymous" in issue for issue in response.issues)

    def test_known_student_kept(self, template_20x4, answers_20):
        processor, repository, store = build_processor()
        image = render_sheet(template_20x4, answers_20, qr_payload=json.dumps({"e": "EXAM1", "s": "OTHER"}))
        submit(repository, store, image, student_id="S1", exam=make_exam(answers_20))
        assert processor.process("sub1").student_id == "S1"


class TestProcessImage:
    def test_pure_chain(self, template_20x4, answers_20):
        processor, repository, _ = build_processor()
        graded = processor.process_image(encode_png(render_sheet(template_20x4, answers_20)), make_exam(answers_20))
        assert graded.summary.percentage == 100.0
        assert graded.to_dict()["processing_method"] == "cv"
        assert repository.list_results("EXAM1") == []

"""
Unit tests for the grading engine
"""
import json

import pytest

from omr_grader.core import ConfigurationError
from omr_grader.pipeline.grading_engine import (
    AnswerKey,
    AnswerKeyEntry,
    Exam,
    GradeScale,
    GradingEngine,
    load_results,
    save_results,
)
from omr_grader.pipeline.tiers import DetectionResult

from .sheet_factory import make_exam


def detections(marks, question_count):
    return [
        DetectionResult(q, tuple(marks.get(q, ())), 0.95, "cv")
        for q in range(1, question_count + 1)
    ]


class TestAnswerKey:
    """Test cases for answer key validation"""

    def test_duplicate_question(self):
        key = AnswerKey([AnswerKeyEntry(1, "A"), AnswerKeyEntry(1, "B")])
        with pytest.raises(ConfigurationError):
            key.validate(2, 4)

    def test_out_of_range_question(self):
        with pytest.raises(ConfigurationError):
            make_exam({1: "A", 5: "B"}, question_count=4)

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError):
            make_exam({1: "E"}, options=4)

    def test_non_positive_marks(self):
        with pytest.raises(ConfigurationError):
            make_exam({1: "A"}, marks={1: 0})

    def test_from_data_shapes(self):
        """Test mapping and list answer key formats"""
        flat = AnswerKey.from_data({"1": "a", "2": None})
        assert flat.get(1).correct_option == "A"
        assert flat.get(2).correct_option is None

        listed = AnswerKey.from_data([{"question": 2, "answer": "C", "marks": 2}, {"question": 1, "answer": "B"}])
        assert [e.question_number for e in listed.entries] == [1, 2]
        assert listed.total_marks == 3

    @pytest.mark.parametrize("data", [
        {"one": "A"},
        [{"answer": "A"}],
        [{"question": "x", "answer": "A"}],
        ["A"],
    ])
    def test_malformed_key(self, data):
        with pytest.raises(ConfigurationError):
            AnswerKey.from_data(data)

    def test_exam_from_dict(self):
        exam = Exam.from_dict({"exam_code": "M1", "answers": {"1": "A", "3": "C"}})
        assert exam.exam_id == "M1"
        assert exam.question_count == 3
        assert exam.options_per_question == 4


class TestGradeScale:
    """Test cases for letter grades"""

    @pytest.mark.parametrize("percentage,grade", [
        (100.0, "A"), (90.0, "A"), (89.99, "B"), (75.0, "B"),
        (60.0, "C"), (40.0, "D"), (39.99, "F"), (0.0, "F"),
    ])
    def test_default_cutoffs(self, percentage, grade):
        assert GradeScale().grade_for(percentage) == grade

    def test_cutoffs_must_descend(self):
        with pytest.raises(ConfigurationError):
            GradeScale(cutoffs=[(60, "C"), (75, "B")])
        with pytest.raises(ConfigurationError):
            GradeScale(cutoffs=[(75, "B"), (75, "C")])

    def test_grades_listing(self):
        assert GradeScale().grades == ["A", "B", "C", "D", "F"]


class TestGradingEngine:
    """Test cases for scoring"""

    def test_all_correct(self, answers_20):
        exam = make_exam(answers_20)
        summary = GradingEngine().grade(exam, detections(answers_20, 20))
        assert summary.obtained_marks == 20
        assert summary.total_marks == 20
        assert summary.percentage == 100.0
        assert summary.grade == "A"
        assert summary.status == "pass"

    def test_outcomes(self):
        """Test correct, wrong, blank and multiple classification"""
        exam = make_exam({1: "A", 2: "B", 3: "C", 4: "D"})
        summary = GradingEngine().grade(exam, detections({1: "A", 2: "C", 4: "AD"}, 4))
        outcomes = [q.outcome for q in summary.question_results]
        assert outcomes == ["correct", "wrong", "blank", "multiple"]
        assert summary.obtained_marks == 1
        assert summary.question_results[3].detected_option == "MULTIPLE"
        assert summary.question_results[3].detected_options == ["A", "D"]

    def test_partial_policy(self):
        exam = make_exam({1: "A", 2: "B"})
        detected = detections({1: "AB", 2: "AC"}, 2)
        assert GradingEngine(multi_mark_policy="zero").grade(exam, detected).obtained_marks == 0
        summary = GradingEngine(multi_mark_policy="partial").grade(exam, detected)
        assert summary.question_results[0].awarded_marks == 0.5
        assert summary.question_results[1].awarded_marks == 0
        assert summary.percentage == 25.0

    def test_partial_percentage_from_unrounded_marks(self):
        """Test one third of a mark on a 3-question exam reports 11.11%"""
        exam = make_exam({1: "A", 2: "B", 3: "C"})
        summary = GradingEngine(multi_mark_policy="partial").grade(exam, detections({1: "ABC"}, 3))
        assert summary.obtained_marks == 0.33
        assert summary.percentage == 11.11

    def test_partial_pass_uses_unrounded_marks(self):
        """Test 2/3 of a mark fails a 0.67 pass mark although it reports as 0.67"""
        exam = make_exam({1: "A", 2: "B"}, marks={1: 2}, passing_marks=0.67)
        summary = GradingEngine(multi_mark_policy="partial").grade(exam, detections({1: "ABC"}, 2))
        assert summary.obtained_marks == 0.67
        assert summary.status == "fail"

    def test_fifteen_of_twenty(self, answers_20):
        """Test 15 correct answers out of 20 give 75.00% and grade B"""
        marks = {q: a for q, a in answers_20.items() if q <= 15}
        summary = GradingEngine().grade(make_exam(answers_20), detections(marks, 20))
        assert summary.obtained_marks == 15
        assert summary.total_marks == 20
        assert summary.percentage == 75.00
        assert summary.grade == "B"
        assert summary.status == "pass"

    def test_weighted_marks(self):
        exam = make_exam({1: "A", 2: "B", 3: "C"}, marks={1: 2, 2: 3, 3: 5})
        summary = GradingEngine().grade(exam, detections({1: "A", 3: "C"}, 3))
        assert summary.obtained_marks == 7
        assert summary.total_marks == 10
        assert summary.percentage == 70.0

    def test_ungraded_questions_excluded(self):
        """Test questions without a correct option do not count toward the total"""
        exam = make_exam({1: "A", 2: None, 3: "C"})
        summary = GradingEngine().grade(exam, detections({1: "A", 2: "B", 3: "C"}, 3))
        assert summary.total_marks == 2
        assert summary.question_results[1].outcome == "ungraded"
        assert summary.question_results[1].detected_option == "B"
        assert summary.percentage == 100.0

    def test_no_gradable_questions(self):
        exam = make_exam({1: None, 2: None})
        with pytest.raises(ConfigurationError):
            GradingEngine().grade(exam, detections({}, 2))

    def test_missing_detection_counts_as_blank(self):
        exam = make_exam({1: "A", 2: "B"})
        summary = GradingEngine().grade(exam, detections({1: "A"}, 1))
        assert summary.question_results[1].outcome == "blank"

    def test_percentage_rounds_half_up(self):
        """Test 2/3 -> 66.67 and 1/8 -> 12.5"""
        exam = make_exam({1: "A", 2: "A", 3: "A"})
        assert GradingEngine().grade(exam, detections({1: "A", 2: "A"}, 3)).percentage == 66.67
        exam = make_exam({q: "A" for q in range(1, 9)})
        assert GradingEngine().grade(exam, detections({1: "A"}, 8)).percentage == 12.5

    def test_pass_is_inclusive(self):
        exam = make_exam({q: "A" for q in range(1, 11)}, passing_marks=5)
        engine = GradingEngine()
        assert engine.grade(exam, detections({q: "A" for q in range(1, 6)}, 10)).status == "pass"
        assert engine.grade(exam, detections({q: "A" for q in range(1, 5)}, 10)).status == "fail"

    def test_default_passing_ratio(self):
        exam = make_exam({q: "A" for q in range(1, 11)})
        engine = GradingEngine(default_passing_ratio=0.4)
        assert engine.grade(exam, detections({q: "A" for q in range(1, 5)}, 10)).status == "pass"
        assert engine.grade(exam, detections({q: "A" for q in range(1, 4)}, 10)).status == "fail"

    def test_unknown_policy(self):
        with pytest.raises(ConfigurationError):
            GradingEngine(multi_mark_policy="half")


class TestResultFiles:
    def test_save_and_load(self, tmp_path):
        path = tmp_path / "results.json"
        save_results([{"image_name": "a.png", "success": True}, {"image_name": "b.png", "success": False}], str(path))
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["successful"] == 1
        assert data["failed"] == 1
        assert [r["image_name"] for r in load_results(str(path))] == ["a.png", "b.png"]

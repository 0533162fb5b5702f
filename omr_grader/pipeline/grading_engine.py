"""
Grading Engine Module
Handles score calculation and result generation
"""
import json
import math
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
import logging

from ..config import Settings, settings as default_settings
from ..core.constants import Messages, MultiMarkPolicy, QuestionOutcome, ResultStatus
from ..core.exceptions import ConfigurationError
from ..utils.helpers import calculate_percentage, round_half_up
from .sheet_layout import LayoutTemplate, layout_for, option_letters
from .tiers import DetectionResult

logger = logging.getLogger(__name__)


DEFAULT_CUTOFFS: Tuple[Tuple[float, str], ...] = (
    (90.0, "A"),
    (75.0, "B"),
    (60.0, "C"),
    (40.0, "D"),
)


@dataclass(frozen=True)
class AnswerKeyEntry:
    """Correct option and weight of one question; None leaves it ungraded"""
    question_number: int
    correct_option: Optional[str]
    marks: float = 1.0


@dataclass
class AnswerKey:
    """Ordered answer key of an exam"""
    entries: List[AnswerKeyEntry] = field(default_factory=list)

    def __post_init__(self):
        self.entries = sorted(self.entries, key=lambda e: e.question_number)
        self._by_question = {e.question_number: e for e in self.entries}

    def get(self, question_number: int) -> Optional[AnswerKeyEntry]:
        return self._by_question.get(question_number)

    @property
    def total_marks(self) -> float:
        return sum(e.marks for e in self.entries if e.correct_option is not None)

    def validate(self, question_count: int, options_per_question: int) -> None:
        """
        Check the key against the exam's shape.

        Raises:
            ConfigurationError: On duplicate or out-of-range questions, unknown
                options or non-positive weights
        """
        letters = option_letters(options_per_question)
        seen = set()
        for entry in self.entries:
            q = entry.question_number
            if q in seen:
                raise ConfigurationError(f"Duplicate answer key entry for question {q}")
            seen.add(q)
            if not 1 <= q <= question_count:
                raise ConfigurationError(
                    f"Answer key question {q} is outside 1..{question_count}"
                )
            if entry.correct_option is not None and entry.correct_option not in letters:
                raise ConfigurationError(
                    f"Question {q}: option {entry.correct_option!r} not in {', '.join(letters)}"
                )
            if not isinstance(entry.marks, (int, float)) or isinstance(entry.marks, bool) \
                    or not math.isfinite(entry.marks) or entry.marks <= 0:
                raise ConfigurationError(f"Question {q}: marks must be a positive number")

    @classmethod
    def from_data(cls, data: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]) -> "AnswerKey":
        """
        Build a key from {"1": "A", ...} or [{"question": 1, "answer": "A", "marks": 2}, ...]

        Raises:
            ConfigurationError: If an entry has no usable question number
        """
        entries = []
        try:
            if isinstance(data, Mapping):
                for question, answer in data.items():
                    entries.append(AnswerKeyEntry(
                        question_number=int(question),
                        correct_option=_clean_option(answer),
                    ))
            else:
                for item in data:
                    entries.append(AnswerKeyEntry(
                        question_number=int(item["question"]),
                        correct_option=_clean_option(item.get("answer")),
                        marks=item.get("marks", 1.0),
                    ))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Malformed answer key entry: {e}")
        return cls(entries)

    def to_list(self) -> List[Dict[str, Any]]:
        return [
            {"question": e.question_number, "answer": e.correct_option, "marks": e.marks}
            for e in self.entries
        ]


def _clean_option(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip().upper()
    return value or None


@dataclass
class Exam:
    """Exam configuration the sheets are graded against"""
    exam_id: str
    question_count: int
    options_per_question: int
    answer_key: AnswerKey
    passing_marks: Optional[float] = None
    layout_version: str = "v1"
    title: str = ""

    def __post_init__(self):
        # Range checks live in the layout codec
        layout_for(self.question_count, self.options_per_question, self.layout_version)
        self.answer_key.validate(self.question_count, self.options_per_question)
        if self.passing_marks is not None and self.passing_marks < 0:
            raise ConfigurationError("passing_marks must not be negative")

    @property
    def template(self) -> LayoutTemplate:
        return layout_for(self.question_count, self.options_per_question, self.layout_version)

    @property
    def total_marks(self) -> float:
        return self.answer_key.total_marks

    def effective_passing_marks(self, default_ratio: float) -> float:
        if self.passing_marks is not None:
            return self.passing_marks
        return default_ratio * self.total_marks

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Exam":
        """
        Build an exam from an answer-key JSON document.

        question_count defaults to the highest keyed question.
        """
        key = AnswerKey.from_data(data.get("answers", {}))
        question_count = data.get("question_count") or max(
            (e.question_number for e in key.entries), default=0
        )
        return cls(
            exam_id=str(data.get("exam_id") or data.get("exam_code") or "exam"),
            question_count=question_count,
            options_per_question=data.get("options_per_question", 4),
            answer_key=key,
            passing_marks=data.get("passing_marks"),
            layout_version=data.get("layout_version", "v1"),
            title=data.get("title", ""),
        )

    @classmethod
    def from_json_file(cls, path: str) -> "Exam":
        with open(path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Answer key file {path} is not valid JSON: {e}")
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Answer key file {path} must hold a JSON object")
        return cls.from_dict(data)


@dataclass
class GradeScale:
    """Percentage cutoffs, highest first, and the grade below the last cutoff"""
    cutoffs: Sequence[Tuple[float, str]] = DEFAULT_CUTOFFS
    fallback: str = "F"

    def __post_init__(self):
        self.cutoffs = tuple((float(c), str(g)) for c, g in self.cutoffs)
        previous = None
        for cutoff, grade in self.cutoffs:
            if not 0.0 <= cutoff <= 100.0:
                raise ConfigurationError(f"Grade cutoff {cutoff} for {grade} is outside 0..100")
            if previous is not None and cutoff >= previous:
                raise ConfigurationError("Grade cutoffs must be strictly descending")
            previous = cutoff

    @classmethod
    def from_settings(cls, config: Settings = None) -> "GradeScale":
        config = config or default_settings
        return cls(cutoffs=config.GRADE_CUTOFFS, fallback=config.FAIL_GRADE)

    @property
    def grades(self) -> List[str]:
        return [g for _, g in self.cutoffs] + [self.fallback]

    def grade_for(self, percentage: float) -> str:
        for cutoff, grade in self.cutoffs:
            if percentage >= cutoff:
                return grade
        return self.fallback


@dataclass
class QuestionResult:
    """Result for a single question"""
    question_number: int
    detected_option: Optional[str]
    detected_options: List[str]
    correct_option: Optional[str]
    awarded_marks: float
    max_marks: float
    outcome: str
    confidence: float = 0.0


@dataclass
class GradeSummary:
    """Scores of one graded sheet"""
    obtained_marks: float
    total_marks: float
    percentage: float
    grade: str
    status: str
    passing_marks: float
    question_results: List[QuestionResult] = field(default_factory=list)

    def count(self, outcome: QuestionOutcome) -> int:
        return sum(1 for q in self.question_results if q.outcome == outcome.value)

    def to_dict(self) -> Dict:
        result = asdict(self)
        result.update({
            "correct": self.count(QuestionOutcome.CORRECT),
            "wrong": self.count(QuestionOutcome.WRONG),
            "blank": self.count(QuestionOutcome.BLANK),
            "multiple": self.count(QuestionOutcome.MULTIPLE),
        })
        return result


@dataclass
class GradingResult:
    """Persisted outcome of a processed submission (one per submission)"""
    result_id: str
    submission_id: str
    exam_id: str
    student_id: Optional[str]
    obtained_marks: float
    total_marks: float
    percentage: float
    grade: str
    status: str
    processing_method: str
    confidence_score: float
    needs_review: bool
    processed_at: datetime
    question_results: List[QuestionResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status == ResultStatus.PASS.value

    def to_dict(self) -> Dict:
        result = asdict(self)
        result["processed_at"] = self.processed_at.isoformat()
        return result


class GradingEngine:
    """
    Engine for grading detected answers against an exam's answer key.
    Pure: the same exam and detections always give the same summary.
    """

    def __init__(
        self,
        scale: GradeScale = None,
        multi_mark_policy: str = MultiMarkPolicy.ZERO.value,
        default_passing_ratio: float = 0.4
    ):
        try:
            self.multi_mark_policy = MultiMarkPolicy(multi_mark_policy)
        except ValueError:
            raise ConfigurationError(f"Unknown multi-mark policy: {multi_mark_policy}")
        if not 0.0 <= default_passing_ratio <= 1.0:
            raise ConfigurationError("Default passing ratio must be between 0 and 1")
        self.scale = scale or GradeScale()
        self.default_passing_ratio = default_passing_ratio

    @classmethod
    def from_settings(cls, config: Settings = None) -> "GradingEngine":
        config = config or default_settings
        return cls(
            scale=GradeScale.from_settings(config),
            multi_mark_policy=config.MULTI_MARK_POLICY,
            default_passing_ratio=config.DEFAULT_PASSING_RATIO,
        )

    def grade_question(
        self,
        entry: Optional[AnswerKeyEntry],
        question_number: int,
        detection: Optional[DetectionResult]
    ) -> QuestionResult:
        options = list(detection.options) if detection else []
        detected = detection.detected_option if detection else None
        confidence = detection.confidence if detection else 0.0

        if entry is None or entry.correct_option is None:
            return QuestionResult(
                question_number=question_number,
                detected_option=detected,
                detected_options=options,
                correct_option=None,
                awarded_marks=0.0,
                max_marks=0.0,
                outcome=QuestionOutcome.UNGRADED.value,
                confidence=confidence,
            )

        correct = entry.correct_option
        awarded = 0.0
        if not options:
            outcome = QuestionOutcome.BLANK
        elif detection.is_multiple:
            outcome = QuestionOutcome.MULTIPLE
            if self.multi_mark_policy == MultiMarkPolicy.PARTIAL and correct in options:
                awarded = entry.marks / len(options)
        elif options[0] == correct:
            outcome = QuestionOutcome.CORRECT
            awarded = float(entry.marks)
        else:
            outcome = QuestionOutcome.WRONG

        return QuestionResult(
            question_number=question_number,
            detected_option=detected,
            detected_options=options,
            correct_option=correct,
            awarded_marks=awarded,
            max_marks=float(entry.marks),
            outcome=outcome.value,
            confidence=confidence,
        )

    def grade(self, exam: Exam, detections: Sequence[DetectionResult]) -> GradeSummary:
        """
        Grade detected answers.

        Args:
            exam: Exam with its answer key
            detections: One detection per question; missing ones count as blank

        Returns:
            GradeSummary with per-question results

        Raises:
            ConfigurationError: If the exam has no gradable question
        """
        by_question = {d.question_number: d for d in detections}

        question_results = [
            self.grade_question(exam.answer_key.get(q), q, by_question.get(q))
            for q in range(1, exam.question_count + 1)
        ]

        total = sum(q.max_marks for q in question_results)
        if total == 0:
            raise ConfigurationError(Messages.NO_GRADABLE_QUESTIONS)

        raw_obtained = sum(q.awarded_marks for q in question_results)
        obtained = round_half_up(raw_obtained, 2)
        percentage = calculate_percentage(raw_obtained, total)
        passing = exam.effective_passing_marks(self.default_passing_ratio)
        status = ResultStatus.PASS if raw_obtained >= passing else ResultStatus.FAIL

        logger.debug(f"Exam {exam.exam_id}: {obtained}/{total} ({percentage}%) {status.value}")

        return GradeSummary(
            obtained_marks=obtained,
            total_marks=total,
            percentage=percentage,
            grade=self.scale.grade_for(percentage),
            status=status.value,
            passing_marks=passing,
            question_results=question_results,
        )


def save_results(results: List[Dict[str, Any]], output_path: str) -> None:
    """
    Save batch grading results to JSON file.

    Args:
        results: Result dictionaries, each carrying a 'success' flag
        output_path: Path to output JSON file
    """
    successful = sum(1 for r in results if r.get("success"))
    failed = len(results) - successful

    output_data = {
        "total_images": len(results),
        "successful": successful,
        "failed": failed,
        "results": results
    }

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(output_data, f, ensure_ascii=False, indent=4, default=str)

    logger.info(f"Saved {len(results)} results to {output_path}")


def load_results(input_path: str) -> List[Dict]:
    """
    Load batch grading results from JSON file.

    Args:
        input_path: Path to input JSON file

    Returns:
        List of result dictionaries
    """
    with open(input_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return data.get("results", [])

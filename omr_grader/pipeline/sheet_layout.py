"""
Sheet Layout Module
Single source of truth for bubble-sheet geometry.

All coordinates are normalized to the page: x is a fraction of the page
width, y a fraction of the page height. Sizes (bubble radius, marker side)
are fractions of the page width so that circles stay circular on any canvas
with the page's aspect ratio.
"""
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Tuple

from ..core.constants import OPTION_LETTERS
from ..core.exceptions import ConfigurationError

# A4 portrait, millimetres
PAGE_SIZE_MM = (210.0, 297.0)
PAGE_ASPECT = PAGE_SIZE_MM[1] / PAGE_SIZE_MM[0]

MIN_QUESTIONS = 1
MAX_QUESTIONS = 100
ALLOWED_OPTION_COUNTS = (3, 4, 5)

# v1 geometry
FIDUCIAL_SIZE = 0.04
FIDUCIAL_POSITIONS = (
    ("top_left", 0.06, 0.04),
    ("top_right", 0.94, 0.04),
    ("bottom_left", 0.06, 0.96),
    ("bottom_right", 0.94, 0.96),
)
HEADER_FIELDS = (
    ("title", 0.10, 0.07, 0.64, 0.05),
    ("student_info", 0.10, 0.13, 0.64, 0.09),
    ("qr_code", 0.78, 0.07, 0.14, 0.14 / PAGE_ASPECT),
)
GRID_LEFT = 0.10
GRID_RIGHT = 0.90
GRID_TOP = 0.25
GRID_BOTTOM = 0.92
QUESTIONS_PER_COLUMN = 25
MAX_COLUMNS = math.ceil(MAX_QUESTIONS / QUESTIONS_PER_COLUMN)
LABEL_FRACTION = 0.2
BUBBLE_RADIUS = 0.011

SUPPORTED_VERSIONS = ("v1",)


@dataclass(frozen=True)
class FiducialMarker:
    """Square alignment mark printed at a fixed page position"""
    name: str
    cx: float
    cy: float
    size: float


@dataclass(frozen=True)
class BubblePosition:
    """Center of one option bubble"""
    option: str
    cx: float
    cy: float


@dataclass(frozen=True)
class QuestionBubbles:
    """All option bubbles of one question, in option order"""
    question_number: int
    bubbles: Tuple[BubblePosition, ...]


@dataclass(frozen=True)
class HeaderField:
    """Rectangular metadata region in the sheet header"""
    name: str
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class LayoutTemplate:
    """Immutable geometry of one sheet variant"""
    question_count: int
    options_per_question: int
    version: str
    page_size_mm: Tuple[float, float]
    bubble_radius: float
    fiducials: Tuple[FiducialMarker, ...]
    questions: Tuple[QuestionBubbles, ...]
    header_fields: Tuple[HeaderField, ...]

    @property
    def key(self) -> Tuple[int, int, str]:
        return (self.question_count, self.options_per_question, self.version)

    @property
    def option_letters(self) -> Tuple[str, ...]:
        return option_letters(self.options_per_question)

    @property
    def aspect_ratio(self) -> float:
        return self.page_size_mm[1] / self.page_size_mm[0]

    def question(self, question_number: int) -> QuestionBubbles:
        return self.questions[question_number - 1]

    def fiducial(self, name: str) -> FiducialMarker:
        for marker in self.fiducials:
            if marker.name == name:
                return marker
        raise KeyError(name)

    def header_field(self, name: str) -> HeaderField:
        for field in self.header_fields:
            if field.name == name:
                return field
        raise KeyError(name)

    def canvas_size(self, width: int) -> Tuple[int, int]:
        """Pixel (width, height) of a canvas with the page's aspect ratio"""
        return width, int(round(width * self.aspect_ratio))

    def to_dict(self) -> Dict[str, Any]:
        return layout_to_dict(self)


def option_letters(count: int) -> Tuple[str, ...]:
    """Option letters for a question with `count` options"""
    return tuple(OPTION_LETTERS[:count])


def _validate(question_count: int, options_per_question: int, version: str) -> None:
    if isinstance(question_count, bool) or not isinstance(question_count, int):
        raise ConfigurationError(f"question_count must be an integer, got {question_count!r}")
    if isinstance(options_per_question, bool) or not isinstance(options_per_question, int):
        raise ConfigurationError(
            f"options_per_question must be an integer, got {options_per_question!r}"
        )
    if not MIN_QUESTIONS <= question_count <= MAX_QUESTIONS:
        raise ConfigurationError(
            f"question_count must be between {MIN_QUESTIONS} and {MAX_QUESTIONS}, got {question_count}"
        )
    if options_per_question not in ALLOWED_OPTION_COUNTS:
        raise ConfigurationError(
            f"options_per_question must be one of {ALLOWED_OPTION_COUNTS}, got {options_per_question}"
        )
    if version not in SUPPORTED_VERSIONS:
        raise ConfigurationError(f"Unknown layout version: {version}")


def _question_bubbles(question_number: int, options_per_question: int) -> QuestionBubbles:
    column = (question_number - 1) // QUESTIONS_PER_COLUMN
    row = (question_number - 1) % QUESTIONS_PER_COLUMN

    column_width = (GRID_RIGHT - GRID_LEFT) / MAX_COLUMNS
    row_height = (GRID_BOTTOM - GRID_TOP) / QUESTIONS_PER_COLUMN

    column_left = GRID_LEFT + column * column_width
    label_width = column_width * LABEL_FRACTION
    spacing = (column_width - label_width) / options_per_question
    cy = GRID_TOP + (row + 0.5) * row_height

    bubbles = tuple(
        BubblePosition(
            option=letter,
            cx=column_left + label_width + (i + 0.5) * spacing,
            cy=cy,
        )
        for i, letter in enumerate(option_letters(options_per_question))
    )
    return QuestionBubbles(question_number=question_number, bubbles=bubbles)


@lru_cache(maxsize=None)
def _build_layout(question_count: int, options_per_question: int, version: str) -> LayoutTemplate:
    return LayoutTemplate(
        question_count=question_count,
        options_per_question=options_per_question,
        version=version,
        page_size_mm=PAGE_SIZE_MM,
        bubble_radius=BUBBLE_RADIUS,
        fiducials=tuple(
            FiducialMarker(name=name, cx=cx, cy=cy, size=FIDUCIAL_SIZE)
            for name, cx, cy in FIDUCIAL_POSITIONS
        ),
        questions=tuple(
            _question_bubbles(q, options_per_question)
            for q in range(1, question_count + 1)
        ),
        header_fields=tuple(
            HeaderField(name=name, x=x, y=y, width=w, height=h)
            for name, x, y, w, h in HEADER_FIELDS
        ),
    )


def layout_for(question_count: int, options_per_question: int, version: str = "v1") -> LayoutTemplate:
    """
    Get the sheet layout for an exam configuration.

    Args:
        question_count: Number of questions (1-100)
        options_per_question: Options per question (3, 4 or 5)
        version: Layout version tag

    Returns:
        LayoutTemplate shared by sheet generation and recognition

    Raises:
        ConfigurationError: If the parameters are out of range
    """
    _validate(question_count, options_per_question, version)
    return _build_layout(question_count, options_per_question, version)


def layout_to_dict(template: LayoutTemplate) -> Dict[str, Any]:
    """Serialize a layout for the sheet-printing collaborator"""
    return {
        "version": template.version,
        "question_count": template.question_count,
        "options_per_question": template.options_per_question,
        "page_size_mm": list(template.page_size_mm),
        "bubble_radius": template.bubble_radius,
        "fiducials": [
            {"name": m.name, "cx": m.cx, "cy": m.cy, "size": m.size}
            for m in template.fiducials
        ],
        "questions": [
            {
                "question_number": q.question_number,
                "bubbles": [{"option": b.option, "cx": b.cx, "cy": b.cy} for b in q.bubbles],
            }
            for q in template.questions
        ],
        "header_fields": [
            {"name": f.name, "x": f.x, "y": f.y, "width": f.width, "height": f.height}
            for f in template.header_fields
        ],
    }


def layout_metadata(template: LayoutTemplate) -> Dict[str, Any]:
    """Compact description of a layout for vision-model prompts"""
    return {
        "question_count": template.question_count,
        "options_per_question": template.options_per_question,
        "options": list(template.option_letters),
        "questions_per_column": QUESTIONS_PER_COLUMN,
        "columns": math.ceil(template.question_count / QUESTIONS_PER_COLUMN),
        "numbering": "top-to-bottom within a column, columns left-to-right",
        "version": template.version,
    }


def to_pixels(template: LayoutTemplate, width: int, x: float, y: float) -> Tuple[int, int]:
    """Map a normalized page point onto a canvas of the given pixel width"""
    canvas_w, canvas_h = template.canvas_size(width)
    return int(round(x * canvas_w)), int(round(y * canvas_h))

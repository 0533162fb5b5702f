"""
Pydantic schemas for outward payloads
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional
from datetime import datetime


class CamelModel(BaseModel):
    """Serializes with camelCase keys, accepts both spellings on input"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict:
        return self.model_dump(by_alias=True, mode="json")


# ===== Processing Schemas =====
class QuestionDetail(CamelModel):
    question_number: int
    detected_option: Optional[str] = None
    correct_option: Optional[str] = None
    awarded_marks: float = 0.0
    max_marks: float = 0.0
    outcome: str
    confidence: float = 0.0


class ProcessingResponse(CamelModel):
    success: bool = True
    submission_id: str
    result_id: str
    student_id: Optional[str] = None
    obtained_marks: float
    total_marks: float
    percentage: float
    grade: str
    status: str = Field(..., description="pass or fail")
    processing_method: str = Field(..., description="Tier whose answers were accepted")
    confidence: float
    needs_review: bool = False
    issues: List[str] = []
    questions: List[QuestionDetail] = []


class ProcessingFailure(CamelModel):
    success: bool = False
    submission_id: Optional[str] = None
    error: str
    error_code: Optional[str] = None
    issues: List[str] = []


# ===== Statistics Schemas =====
class RankedResult(CamelModel):
    rank: int
    submission_id: str
    student_id: Optional[str] = None
    obtained_marks: float
    total_marks: float
    percentage: float
    grade: str
    status: str
    processed_at: Optional[datetime] = None


class StatisticsResponse(CamelModel):
    exam_id: str
    count: int
    mean_percentage: float
    median_percentage: float
    pass_count: int
    fail_count: int
    pass_percentage: float
    highest_percentage: float
    lowest_percentage: float
    grade_distribution: Dict[str, int] = {}
    ranked_results: List[RankedResult] = []

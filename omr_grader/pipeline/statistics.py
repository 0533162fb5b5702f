"""
Class statistics over graded results
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from ..utils.helpers import round_half_up
from .grading_engine import GradeScale, GradingResult

# Results without a processing time rank after every dated one
_NO_TIME = datetime.max.replace(tzinfo=timezone.utc)


@dataclass
class RankedEntry:
    rank: int
    result: GradingResult


@dataclass
class ClassStatistics:
    """Aggregate view of one exam's results"""
    count: int = 0
    mean_percentage: float = 0.0
    median_percentage: float = 0.0
    pass_count: int = 0
    fail_count: int = 0
    pass_percentage: float = 0.0
    highest_percentage: float = 0.0
    lowest_percentage: float = 0.0
    grade_distribution: Dict[str, int] = field(default_factory=dict)
    ranked: List[RankedEntry] = field(default_factory=list)


def _median(values: List[float]) -> float:
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def _ranking_key(result: GradingResult):
    processed_at = result.processed_at or _NO_TIME
    if processed_at.tzinfo is None:
        processed_at = processed_at.replace(tzinfo=timezone.utc)
    return (-result.percentage, processed_at, result.submission_id)


def rank_results(results: Sequence[GradingResult]) -> List[RankedEntry]:
    """
    Order results best first.

    Ties on percentage go to the earlier processing time, then to the
    submission id, so the order never depends on input order.
    """
    ordered = sorted(results, key=_ranking_key)
    return [RankedEntry(rank=i, result=r) for i, r in enumerate(ordered, start=1)]


def compute_statistics(
    results: Sequence[GradingResult],
    scale: Optional[GradeScale] = None
) -> ClassStatistics:
    """
    Compute class statistics for a set of graded results.

    Args:
        results: Results of one exam
        scale: Grade scale whose grades seed the distribution

    Returns:
        ClassStatistics; all counts are zero for an empty input
    """
    scale = scale or GradeScale()
    distribution = {grade: 0 for grade in scale.grades}

    if not results:
        return ClassStatistics(grade_distribution=distribution)

    percentages = [r.percentage for r in results]
    pass_count = sum(1 for r in results if r.passed)
    for r in results:
        distribution[r.grade] = distribution.get(r.grade, 0) + 1

    count = len(results)
    return ClassStatistics(
        count=count,
        mean_percentage=round_half_up(sum(percentages) / count, 2),
        median_percentage=round_half_up(_median(percentages), 2),
        pass_count=pass_count,
        fail_count=count - pass_count,
        pass_percentage=round_half_up(100 * pass_count / count, 2),
        highest_percentage=max(percentages),
        lowest_percentage=min(percentages),
        grade_distribution=distribution,
        ranked=rank_results(results),
    )


def student_rank(results: Sequence[GradingResult], student_id: str) -> Optional[int]:
    """Rank of a student's best result within the exam, or None if absent"""
    for entry in rank_results(results):
        if entry.result.student_id == student_id:
            return entry.rank
    return None

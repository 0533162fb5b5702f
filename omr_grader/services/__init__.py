# Services package
from .grading_service import GradingService

__all__ = [
    "GradingService",
]

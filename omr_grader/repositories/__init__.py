"""
Persistence port and adapters
"""
from .models import Submission
from .base import GradingRepository
from .memory import InMemoryGradingRepository
from .images import ImageStore, LocalImageStore, InMemoryImageStore

__all__ = [
    "Submission",
    "GradingRepository",
    "InMemoryGradingRepository",
    "ImageStore",
    "LocalImageStore",
    "InMemoryImageStore",
]

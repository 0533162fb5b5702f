"""
OMR Grader - photographed bubble-sheet grading core
"""

from .config import settings

__version__ = "0.1.0"

__all__ = [
    "settings",
]

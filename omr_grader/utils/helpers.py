"""
Utility functions for the application
"""
import uuid
import logging
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from datetime import datetime, timezone
from typing import List, Union

from ..core.constants import ImageLimits

logger = logging.getLogger(__name__)


def ensure_directory(path: Union[str, Path]) -> Path:
    """Ensure a directory exists, create if not"""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def generate_id(prefix: str = "") -> str:
    """Generate a unique identifier"""
    value = uuid.uuid4().hex
    if prefix:
        return f"{prefix}_{value}"
    return value


def utcnow() -> datetime:
    """Timezone-aware current time"""
    return datetime.now(timezone.utc)


def get_file_extension(filename: str) -> str:
    """Get file extension without dot"""
    return Path(filename).suffix.lstrip(".")


def is_valid_image(filename: str) -> bool:
    """Check if file has a gradable image extension"""
    return Path(filename).suffix.lower() in ImageLimits.ALLOWED_EXTENSIONS


def list_images(directory: Union[str, Path]) -> List[Path]:
    """List gradable images in a directory, sorted by name"""
    directory = Path(directory)
    if not directory.exists():
        logger.warning(f"Directory not found: {directory}")
        return []
    return sorted(
        (p for p in directory.iterdir() if p.is_file() and is_valid_image(p.name)),
        key=lambda p: p.name.lower()
    )


def round_half_up(value: float, places: int = 2) -> float:
    """Round half away from zero, independent of float representation quirks"""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def calculate_percentage(obtained: float, total: float) -> float:
    """Percentage rounded to two decimals"""
    if total == 0:
        return 0.0
    return round_half_up(100 * obtained / total, 2)

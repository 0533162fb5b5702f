# Utils package
from .helpers import (
    ensure_directory,
    generate_id,
    utcnow,
    get_file_extension,
    is_valid_image,
    list_images,
    round_half_up,
    calculate_percentage,
)

__all__ = [
    "ensure_directory",
    "generate_id",
    "utcnow",
    "get_file_extension",
    "is_valid_image",
    "list_images",
    "round_half_up",
    "calculate_percentage",
]

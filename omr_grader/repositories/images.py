"""
Image storage for uploaded sheet photos
"""
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Union

from ..core.constants import ImageLimits, Messages
from ..core.exceptions import InvalidImageError
from ..utils.helpers import ensure_directory, generate_id, get_file_extension

logger = logging.getLogger(__name__)


class ImageStore(ABC):
    """Resolves image references to raw bytes"""

    @abstractmethod
    def save(self, image_bytes: bytes, filename: str = "sheet.jpg") -> str:
        """Store bytes and return a reference"""
        pass

    @abstractmethod
    def load(self, reference: str) -> bytes:
        """
        Raises:
            InvalidImageError: If the reference cannot be loaded
        """
        pass


def _check_size(image_bytes: bytes) -> None:
    if not image_bytes:
        raise InvalidImageError(Messages.IMAGE_LOAD_FAILED)
    if len(image_bytes) > ImageLimits.MAX_IMAGE_SIZE:
        raise InvalidImageError(
            f"Image exceeds {ImageLimits.MAX_IMAGE_SIZE // (1024 * 1024)}MB limit"
        )


class LocalImageStore(ImageStore):
    """Files under a directory (default: DATA_DIR/images)"""

    def __init__(self, root: Union[str, Path] = None):
        if root is None:
            from ..config import settings
            root = settings.IMAGES_DIR
        self.root = ensure_directory(root)

    def save(self, image_bytes: bytes, filename: str = "sheet.jpg") -> str:
        _check_size(image_bytes)
        extension = f".{get_file_extension(filename).lower() or 'jpg'}"
        if extension not in ImageLimits.ALLOWED_EXTENSIONS:
            raise InvalidImageError(f"Unsupported image type: {extension}")
        name = f"{generate_id('sheet')}{extension}"
        (self.root / name).write_bytes(image_bytes)
        logger.info(f"Stored image {name} ({len(image_bytes)} bytes)")
        return name

    def load(self, reference: str) -> bytes:
        path = Path(reference)
        if not path.is_absolute():
            path = self.root / path
        try:
            return path.read_bytes()
        except OSError as e:
            logger.error(f"Failed to read image {path}: {e}")
            raise InvalidImageError(f"{Messages.IMAGE_LOAD_FAILED}: {reference}")


class InMemoryImageStore(ImageStore):
    """Dictionary-backed store for tests and one-off runs"""

    def __init__(self):
        self._lock = threading.Lock()
        self._images: Dict[str, bytes] = {}

    def save(self, image_bytes: bytes, filename: str = "sheet.jpg") -> str:
        _check_size(image_bytes)
        reference = generate_id("mem")
        with self._lock:
            self._images[reference] = image_bytes
        return reference

    def put(self, reference: str, image_bytes: bytes) -> str:
        with self._lock:
            self._images[reference] = image_bytes
        return reference

    def load(self, reference: str) -> bytes:
        with self._lock:
            data = self._images.get(reference)
        if data is None:
            raise InvalidImageError(f"{Messages.IMAGE_LOAD_FAILED}: {reference}")
        return data

"""
Image Processing Module
Handles image validation, fiducial detection, perspective rectification
and bubble region-of-interest mapping
"""
import json
import cv2
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging

from ..config import Settings, settings as default_settings
from ..core.constants import Messages
from ..core.exceptions import AlignmentError, InvalidImageError
from .sheet_layout import LayoutTemplate

logger = logging.getLogger(__name__)

# Placeholders printed on sheets generated without exam/student context
QR_PLACEHOLDERS = {"NO_EXAM", "NO_STUDENT", ""}


@dataclass
class PreprocessorConfig:
    """Configuration for sheet preprocessing"""
    canvas_width: int = 1240
    min_fiducials: int = 3
    min_width: int = 800
    min_height: int = 1000
    denoise: bool = False

    # Fiducial candidate filters
    marker_size_range: Tuple[float, float] = (0.3, 3.0)
    marker_aspect_range: Tuple[float, float] = (0.6, 1.6)
    min_rectangularity: float = 0.85

    @classmethod
    def from_settings(cls, config: Settings = None) -> "PreprocessorConfig":
        config = config or default_settings
        return cls(
            canvas_width=config.RECTIFIED_WIDTH,
            min_fiducials=config.MIN_FIDUCIALS,
            min_width=config.MIN_IMAGE_WIDTH,
            min_height=config.MIN_IMAGE_HEIGHT,
            denoise=config.DENOISE,
        )


@dataclass(frozen=True)
class BubbleROI:
    """Pixel-space region of one bubble on the rectified sheet"""
    question_number: int
    option: str
    cx: float
    cy: float
    radius: float
    x: int
    y: int
    width: int
    height: int


@dataclass
class RectifiedSheet:
    """Canonical, perspective-corrected sheet plus its bubble regions"""
    image: np.ndarray
    template: LayoutTemplate
    rois: Tuple[BubbleROI, ...]
    header_regions: Dict[str, Tuple[int, int, int, int]] = field(default_factory=dict)
    fiducials_found: Tuple[str, ...] = ()

    def rois_for(self, question_number: int) -> List[BubbleROI]:
        per_question = self.template.options_per_question
        start = (question_number - 1) * per_question
        return list(self.rois[start:start + per_question])

    def crop(self, roi: BubbleROI) -> np.ndarray:
        return self.image[roi.y:roi.y + roi.height, roi.x:roi.x + roi.width]

    def header_region(self, name: str, margin: float = 0.1) -> np.ndarray:
        x, y, w, h = self.header_regions[name]
        dx, dy = int(w * margin), int(h * margin)
        img_h, img_w = self.image.shape[:2]
        x1, y1 = max(0, x - dx), max(0, y - dy)
        x2, y2 = min(img_w, x + w + dx), min(img_h, y + h + dy)
        return self.image[y1:y2, x1:x2]

    def to_jpeg_bytes(self, quality: int = 90) -> bytes:
        ok, encoded = cv2.imencode(".jpg", self.image, [cv2.IMWRITE_JPEG_QUALITY, quality])
        if not ok:
            raise InvalidImageError("Failed to encode rectified sheet")
        return encoded.tobytes()


@dataclass(frozen=True)
class HeaderCode:
    """Identifiers decoded from the sheet's QR code"""
    raw: str
    exam_id: Optional[str] = None
    student_id: Optional[str] = None


def decode_image(data: bytes) -> np.ndarray:
    """
    Decode raw image bytes into a grayscale array.

    Raises:
        InvalidImageError: If the bytes are not a decodable image
    """
    if not data:
        raise InvalidImageError(Messages.IMAGE_UNDECODABLE)

    buffer = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(buffer, cv2.IMREAD_GRAYSCALE)
    if img is None:
        raise InvalidImageError(Messages.IMAGE_UNDECODABLE)
    return img


def validate_image(img: np.ndarray, config: PreprocessorConfig) -> None:
    """
    Reject images that are too small, blank, black or without contrast.

    Raises:
        InvalidImageError: Describing the first failed check
    """
    h, w = img.shape[:2]
    short_side, long_side = sorted((w, h))
    min_short, min_long = sorted((config.min_width, config.min_height))
    if short_side < min_short or long_side < min_long:
        raise InvalidImageError(Messages.IMAGE_TOO_SMALL.format(
            min_w=config.min_width, min_h=config.min_height, w=w, h=h
        ))

    mean, std = cv2.meanStdDev(img)
    mean, std = float(mean[0][0]), float(std[0][0])

    if mean > 240 and std < 10:
        raise InvalidImageError(Messages.IMAGE_BLANK)
    if mean < 15 and std < 10:
        raise InvalidImageError(Messages.IMAGE_TOO_DARK)
    if std < 15:
        raise InvalidImageError(Messages.IMAGE_LOW_CONTRAST)


def normalize_illumination(img: np.ndarray, denoise: bool = False) -> np.ndarray:
    """
    Stretch contrast and equalize uneven lighting.

    Args:
        img: Grayscale image
        denoise: Apply non-local-means denoising first

    Returns:
        Normalized grayscale image
    """
    if denoise:
        img = cv2.fastNlMeansDenoising(img, None, h=10, templateWindowSize=7, searchWindowSize=21)

    stretched = cv2.normalize(img, None, 0, 255, cv2.NORM_MINMAX)
    clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
    return clahe.apply(stretched)


def _marker_candidates(
    img: np.ndarray,
    expected_side: float,
    config: PreprocessorConfig
) -> List[Tuple[float, float, float]]:
    """Centers and areas of solid, roughly square dark blobs"""
    blurred = cv2.GaussianBlur(img, (5, 5), 0)
    _, binary = cv2.threshold(blurred, 0, 255, cv2.THRESH_BINARY_INV + cv2.THRESH_OTSU)

    # RETR_LIST so markers inside a dark photo background are still found
    contours, _ = cv2.findContours(binary, cv2.RETR_LIST, cv2.CHAIN_APPROX_SIMPLE)

    min_side = expected_side * config.marker_size_range[0]
    max_side = expected_side * config.marker_size_range[1]
    candidates = []

    for cnt in contours:
        area = cv2.contourArea(cnt)
        if area <= 0:
            continue

        side = float(np.sqrt(area))
        if side < min_side or side > max_side:
            continue

        (_, _), (rw, rh), _ = cv2.minAreaRect(cnt)
        if rw <= 0 or rh <= 0:
            continue

        aspect = rw / rh
        if not (config.marker_aspect_range[0] <= aspect <= config.marker_aspect_range[1]):
            continue

        if area / (rw * rh) < config.min_rectangularity:
            continue

        moments = cv2.moments(cnt)
        if moments["m00"] == 0:
            continue
        candidates.append((moments["m10"] / moments["m00"], moments["m01"] / moments["m00"], area))

    return candidates


def detect_fiducials(
    img: np.ndarray,
    template: LayoutTemplate,
    config: PreprocessorConfig = None
) -> Dict[str, Tuple[float, float]]:
    """
    Locate the template's corner markers in a raw image.

    For every marker the candidate inside the marker's page quadrant that is
    nearest to the matching image corner wins.

    Args:
        img: Grayscale raw image
        template: Expected layout
        config: Preprocessor configuration

    Returns:
        Mapping of marker name to (x, y) pixel center, only for found markers
    """
    config = config or PreprocessorConfig()
    h, w = img.shape[:2]

    expected_side = template.fiducials[0].size * w
    candidates = _marker_candidates(img, expected_side, config)

    found: Dict[str, Tuple[float, float]] = {}
    for marker in template.fiducials:
        left = marker.cx < 0.5
        top = marker.cy < 0.5
        corner = (0.0 if left else float(w), 0.0 if top else float(h))

        in_quadrant = [
            (cx, cy) for cx, cy, _ in candidates
            if (cx < w / 2) == left and (cy < h / 2) == top
        ]
        if not in_quadrant:
            continue

        best = min(in_quadrant, key=lambda p: (p[0] - corner[0]) ** 2 + (p[1] - corner[1]) ** 2)
        found[marker.name] = (float(best[0]), float(best[1]))

    logger.debug(f"Detected {len(found)} of {len(template.fiducials)} fiducial markers")
    return found


def compute_rois(template: LayoutTemplate, canvas_width: int) -> Tuple[BubbleROI, ...]:
    """Map every template bubble to pixel space on the rectified canvas"""
    canvas_w, canvas_h = template.canvas_size(canvas_width)
    radius = template.bubble_radius * canvas_w
    size = int(round(2 * radius))

    rois = []
    for question in template.questions:
        for bubble in question.bubbles:
            cx = bubble.cx * canvas_w
            cy = bubble.cy * canvas_h
            rois.append(BubbleROI(
                question_number=question.question_number,
                option=bubble.option,
                cx=cx,
                cy=cy,
                radius=radius,
                x=int(round(cx - radius)),
                y=int(round(cy - radius)),
                width=size,
                height=size,
            ))
    return tuple(rois)


def compute_header_regions(
    template: LayoutTemplate,
    canvas_width: int
) -> Dict[str, Tuple[int, int, int, int]]:
    canvas_w, canvas_h = template.canvas_size(canvas_width)
    return {
        f.name: (
            int(round(f.x * canvas_w)),
            int(round(f.y * canvas_h)),
            int(round(f.width * canvas_w)),
            int(round(f.height * canvas_h)),
        )
        for f in template.header_fields
    }


class SheetPreprocessor:
    """
    Turns a raw sheet photo into a canonical rectified sheet.

    Stateless after construction, so one instance can serve concurrent
    submissions.
    """

    def __init__(self, config: PreprocessorConfig = None):
        self.config = config or PreprocessorConfig()

    def process(self, image_bytes: bytes, template: LayoutTemplate) -> RectifiedSheet:
        """
        Decode, validate and rectify a raw sheet image.

        Raises:
            InvalidImageError: If the image cannot be graded at all
            AlignmentError: If too few fiducial markers are found
        """
        img = decode_image(image_bytes)
        return self.process_array(img, template)

    def process_array(self, img: np.ndarray, template: LayoutTemplate) -> RectifiedSheet:
        cfg = self.config
        gray = img if len(img.shape) == 2 else cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
        validate_image(gray, cfg)

        found = detect_fiducials(gray, template, cfg)
        expected = len(template.fiducials)
        if len(found) < cfg.min_fiducials:
            message = Messages.FIDUCIALS_NOT_FOUND.format(found=len(found), expected=expected)
            raise AlignmentError(message, issues=[message, Messages.RECAPTURE_SHEET])

        canvas_w, canvas_h = template.canvas_size(cfg.canvas_width)
        names = [m.name for m in template.fiducials if m.name in found]
        src = np.float32([found[name] for name in names])
        dst = np.float32([
            (template.fiducial(name).cx * canvas_w, template.fiducial(name).cy * canvas_h)
            for name in names
        ])

        if len(names) >= 4:
            matrix = cv2.getPerspectiveTransform(src[:4], dst[:4])
            warped = cv2.warpPerspective(
                gray, matrix, (canvas_w, canvas_h),
                flags=cv2.INTER_LINEAR,
                borderMode=cv2.BORDER_CONSTANT,
                borderValue=255
            )
        else:
            matrix = cv2.getAffineTransform(src[:3], dst[:3])
            warped = cv2.warpAffine(
                gray, matrix, (canvas_w, canvas_h),
                flags=cv2.INTER_LINEAR,
                borderMode=cv2.BORDER_CONSTANT,
                borderValue=255
            )

        normalized = normalize_illumination(warped, cfg.denoise)

        return RectifiedSheet(
            image=normalized,
            template=template,
            rois=compute_rois(template, cfg.canvas_width),
            header_regions=compute_header_regions(template, cfg.canvas_width),
            fiducials_found=tuple(names),
        )


def read_header_code(sheet: RectifiedSheet) -> Optional[HeaderCode]:
    """
    Decode the QR code printed in the sheet header.

    Accepts the compact JSON payload {"e": exam_id, "s": student_id} or a
    bare student identifier.
    """
    if "qr_code" not in sheet.header_regions:
        return None

    region = sheet.header_region("qr_code")
    try:
        data, _, _ = cv2.QRCodeDetector().detectAndDecode(region)
    except cv2.error as e:
        logger.warning(f"QR decoding failed: {e}")
        return None

    if not data:
        return None

    try:
        payload = json.loads(data)
    except ValueError:
        payload = data.strip()

    if isinstance(payload, dict):
        return HeaderCode(
            raw=data,
            exam_id=_clean_code(payload.get("e")),
            student_id=_clean_code(payload.get("s")),
        )

    return HeaderCode(raw=data, student_id=_clean_code(payload))


def _clean_code(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return None if value in QR_PLACEHOLDERS else value

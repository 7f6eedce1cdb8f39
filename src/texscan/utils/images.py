"""
Image utilities for the document reconstruction pipeline.

Provides:
- Normalized (0-1000) bounding boxes for figure regions
- Figure cropping from a page raster
- JPEG encoding/decoding of rasters
- Image measurement for export scaling
"""

import base64
import io
import logging
import math
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

NORMALIZED_SCALE = 1000


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class BoundingBox:
    """
    Figure region on the 0-1000 normalized scale.

    Coordinates are relative to the full page raster, whatever its native
    resolution. Field order follows the model output: [y_min, x_min, y_max, x_max].
    """
    y_min: int
    x_min: int
    y_max: int
    x_max: int

    def __post_init__(self):
        if not (0 <= self.y_min < self.y_max <= NORMALIZED_SCALE):
            raise ValueError(f"Invalid vertical extent: {self.y_min}..{self.y_max}")
        if not (0 <= self.x_min < self.x_max <= NORMALIZED_SCALE):
            raise ValueError(f"Invalid horizontal extent: {self.x_min}..{self.x_max}")

    @classmethod
    def from_list(cls, value: Any) -> 'BoundingBox':
        """
        Build a box from a raw `box_2d` value.

        Raises:
            ValueError: If the value is not four numbers forming a valid box
        """
        if not isinstance(value, (list, tuple)) or len(value) != 4:
            raise ValueError(f"Expected four coordinates, got: {value!r}")

        coords = []
        for coord in value:
            # bool is an int subclass but never a coordinate
            if isinstance(coord, bool) or not isinstance(coord, (int, float)):
                raise ValueError(f"Non-numeric coordinate: {coord!r}")
            if isinstance(coord, float) and not math.isfinite(coord):
                raise ValueError(f"Non-finite coordinate: {coord!r}")
            coords.append(int(round(coord)))

        return cls(*coords)

    def to_list(self) -> list:
        return [self.y_min, self.x_min, self.y_max, self.x_max]

    def to_pixels(self, width: int, height: int) -> Tuple[float, float, float, float]:
        """Map to (x1, y1, x2, y2) in pixel units of a width x height raster."""
        x1 = self.x_min / NORMALIZED_SCALE * width
        y1 = self.y_min / NORMALIZED_SCALE * height
        x2 = self.x_max / NORMALIZED_SCALE * width
        y2 = self.y_max / NORMALIZED_SCALE * height
        return x1, y1, x2, y2


@dataclass(frozen=True, eq=False)
class CroppedImage:
    """A figure cut out of a page, with its JPEG encoding."""
    image: np.ndarray
    data: bytes
    mime_type: str = "image/jpeg"

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


# ============================================================================
# Encoding / Decoding
# ============================================================================

def decode_image(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes (JPEG, PNG, ...) into a BGR raster.

    Raises:
        ValueError: If the data cannot be decoded
    """
    import cv2

    if not data:
        raise ValueError("Could not decode image: no data")

    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)

    if image is None:
        raise ValueError("Could not decode image data")

    return image


def encode_jpeg(image: np.ndarray, quality: int = 100) -> bytes:
    """
    Encode a raster as JPEG.

    Args:
        image: BGR or grayscale raster
        quality: JPEG quality (1-100)

    Raises:
        ValueError: If OpenCV cannot encode the raster
    """
    import cv2

    ok, buffer = cv2.imencode('.jpg', image, [cv2.IMWRITE_JPEG_QUALITY, int(quality)])
    if not ok:
        raise ValueError(f"Failed to encode image of shape {image.shape} as JPEG")
    return buffer.tobytes()


def measure_image(data: bytes) -> Tuple[int, int]:
    """
    Return the natural (width, height) of encoded image bytes.

    Raises:
        OSError: If Pillow cannot identify the image
    """
    from PIL import Image

    with Image.open(io.BytesIO(data)) as img:
        width, height = img.size
    return int(width), int(height)


# ============================================================================
# Cropping
# ============================================================================

def _check_raster(image: Any) -> None:
    if not isinstance(image, np.ndarray):
        raise ValueError(f"Expected a decoded raster, got {type(image).__name__}")
    if image.ndim not in (2, 3) or image.size == 0:
        raise ValueError(f"Unreadable raster with shape {image.shape}")


def crop_region(
    image: np.ndarray,
    box: BoundingBox,
    quality: int = 100
) -> Optional[CroppedImage]:
    """
    Crop a normalized bounding box out of a page raster.

    The pixel rectangle is taken straight from the source (no resizing), from
    floor(x1), floor(y1) up to ceil(x2), ceil(y2), clamped to the raster.

    Args:
        image: Full page raster (BGR or grayscale)
        box: Region on the 0-1000 scale
        quality: JPEG quality for the encoded crop

    Returns:
        CroppedImage, or None when the region has no area

    Raises:
        ValueError: If the raster is unreadable or the crop cannot be encoded
    """
    _check_raster(image)

    h, w = image.shape[:2]
    x1, y1, x2, y2 = box.to_pixels(w, h)

    if x2 - x1 <= 0 or y2 - y1 <= 0:
        logger.debug(f"Degenerate crop for box {box.to_list()} on {w}x{h} raster")
        return None

    left = max(0, int(math.floor(x1)))
    top = max(0, int(math.floor(y1)))
    right = min(w, int(math.ceil(x2)))
    bottom = min(h, int(math.ceil(y2)))

    if right <= left or bottom <= top:
        logger.debug(f"Empty pixel rectangle for box {box.to_list()}")
        return None

    crop = np.ascontiguousarray(image[top:bottom, left:right])
    data = encode_jpeg(crop, quality=quality)

    logger.debug(
        f"Cropped box {box.to_list()} -> {right - left}x{bottom - top} px"
    )
    return CroppedImage(image=crop, data=data)

"""
I/O utilities for the document reconstruction pipeline.

Handles:
- PDF rasterization to page images
- Image loading and validation
- JSON serialization
- Directory management
"""

import json
import logging
import tempfile
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Union

import numpy as np

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.tiff', '.tif', '.bmp', '.webp')

# Formats the transcription backend accepts as-is; others are re-encoded to JPEG
_PASSTHROUGH_MIME_TYPES = {
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.webp': 'image/webp',
}


@dataclass(frozen=True)
class PageImage:
    """An encoded page image as sent to the transcription backend."""
    data: bytes
    mime_type: str = "image/jpeg"
    source: str = ""


# ============================================================================
# PDF Rasterization
# ============================================================================

_POPPLER_HINT = (
    "Poppler is not installed. Install with:\n"
    "  Windows: Download from https://github.com/oschwartz10612/poppler-windows\n"
    "  macOS: brew install poppler\n"
    "  Linux: sudo apt-get install poppler-utils"
)


def load_pdf(
    pdf_path: Union[str, Path],
    dpi: int = 144,
    first_page: Optional[int] = None,
    last_page: Optional[int] = None,
    jpeg_quality: int = 95
) -> List[PageImage]:
    """
    Rasterize a PDF into one JPEG page image per physical page.

    Poppler writes the JPEGs itself (into a temporary folder) so pages are
    never decoded and re-encoded on the Python side.

    Args:
        pdf_path: PDF file
        dpi: Rendering resolution; 144 is twice the 72 DPI PDF user space
        first_page: First page to render, 1-indexed (None = from the start)
        last_page: Last page to render, 1-indexed (None = to the end)
        jpeg_quality: Quality of the rendered JPEGs

    Returns:
        Page images in page order

    Raises:
        FileNotFoundError: If the PDF does not exist
        ImportError: If pdf2image is not installed
        RuntimeError: If the PDF is unreadable or poppler is missing
    """
    pdf_path = Path(pdf_path)
    if not pdf_path.is_file():
        raise FileNotFoundError(f"PDF file not found: {pdf_path}")

    try:
        from pdf2image import convert_from_path
        from pdf2image.exceptions import (
            PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
        )
    except ImportError:
        raise ImportError(
            "pdf2image is required for PDF input. Install with: pip install pdf2image\n"
            "Poppler must be installed on your system as well."
        )

    logger.info(f"Rasterizing {pdf_path} at {dpi} DPI")

    with tempfile.TemporaryDirectory(prefix="texscan_") as tmp_dir:
        try:
            paths = convert_from_path(
                pdf_path,
                dpi=dpi,
                first_page=first_page,
                last_page=last_page,
                fmt="jpeg",
                jpegopt={"quality": jpeg_quality, "progressive": False, "optimize": False},
                output_folder=tmp_dir,
                paths_only=True
            )
        except PDFInfoNotInstalledError:
            raise RuntimeError(_POPPLER_HINT)
        except (PDFPageCountError, PDFSyntaxError) as e:
            raise RuntimeError(f"Failed to parse PDF: {e}")

        # pdf2image names the files with zero-padded page numbers
        offset = first_page or 1
        pages = [
            PageImage(
                data=Path(path).read_bytes(),
                mime_type="image/jpeg",
                source=f"{pdf_path.name}#page={offset + i}"
            )
            for i, path in enumerate(sorted(paths))
        ]

    logger.info(f"Rendered {len(pages)} page(s)")
    return pages


# ============================================================================
# Image Loading
# ============================================================================

def load_image(image_path: Union[str, Path], jpeg_quality: int = 95) -> PageImage:
    """
    Load a page image from file.

    PNG, JPEG and WebP files are passed through untouched; other formats
    (TIFF, BMP) are decoded and re-encoded as JPEG.

    Raises:
        FileNotFoundError: If image file doesn't exist
        ValueError: If image cannot be decoded
    """
    from .images import decode_image, encode_jpeg

    image_path = Path(image_path)
    if not image_path.exists():
        raise FileNotFoundError(f"Image file not found: {image_path}")

    data = image_path.read_bytes()
    suffix = image_path.suffix.lower()

    if suffix in _PASSTHROUGH_MIME_TYPES:
        # Validate early so a broken file fails here, not mid-run
        decode_image(data)
        mime_type = _PASSTHROUGH_MIME_TYPES[suffix]
    else:
        data = encode_jpeg(decode_image(data), quality=jpeg_quality)
        mime_type = "image/jpeg"

    logger.debug(f"Loaded image: {image_path} ({mime_type}, {len(data)} bytes)")
    return PageImage(data=data, mime_type=mime_type, source=image_path.name)


def load_images_from_folder(
    folder_path: Union[str, Path],
    extensions: tuple = IMAGE_EXTENSIONS
) -> List[PageImage]:
    """
    Load every page image of a folder, in file-name order.

    Unreadable images are skipped with a warning so one bad scan does not
    block the rest of the folder.
    """
    folder_path = Path(folder_path)
    if not folder_path.is_dir():
        raise NotADirectoryError(f"Not a directory: {folder_path}")

    candidates = sorted(
        p for p in folder_path.iterdir()
        if p.is_file() and p.suffix.lower() in extensions
    )
    logger.info(f"Found {len(candidates)} page images in {folder_path}")

    pages = []
    for path in candidates:
        try:
            pages.append(load_image(path))
        except ValueError as e:
            logger.warning(f"Skipping {path.name}: {e}")
    return pages


# ============================================================================
# JSON Output
# ============================================================================

def _json_default(obj):
    """Serialize the numpy scalars/arrays and paths that end up in page dicts."""
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, Path):
        return str(obj)
    if hasattr(obj, '__dataclass_fields__'):
        return asdict(obj)
    raise TypeError(f"{type(obj).__name__} is not JSON serializable")


def save_json(data: Any, output_path: Union[str, Path], indent: int = 2) -> Path:
    """
    Write data as UTF-8 JSON (non-ASCII characters kept as-is).

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(
        json.dumps(data, indent=indent, ensure_ascii=False, default=_json_default),
        encoding='utf-8'
    )
    logger.debug(f"Saved JSON: {output_path}")
    return output_path


def ensure_dir(path: Union[str, Path]) -> Path:
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


# ============================================================================
# Input Detection
# ============================================================================

def detect_input_type(input_path: Union[str, Path]) -> str:
    """
    Classify a CLI input.

    Returns:
        'pdf', 'image', 'image_folder' (a directory holding at least one
        page image) or 'unknown'
    """
    input_path = Path(input_path)

    if input_path.is_dir():
        if any(f.suffix.lower() in IMAGE_EXTENSIONS for f in input_path.iterdir()):
            return 'image_folder'
        return 'unknown'

    if input_path.is_file():
        suffix = input_path.suffix.lower()
        if suffix == '.pdf':
            return 'pdf'
        if suffix in IMAGE_EXTENSIONS:
            return 'image'

    return 'unknown'


# ============================================================================
# Progress Tracking
# ============================================================================

@dataclass
class ProcessingProgress:
    """Where a run is: pages done, current page and stage, errors so far."""
    total_pages: int = 0
    processed_pages: int = 0
    current_stage: str = ""
    current_page: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def percent_complete(self) -> float:
        if not self.total_pages:
            return 0.0
        return 100.0 * self.processed_pages / self.total_pages

    def update(self, stage: str, page: Optional[int] = None):
        self.current_stage = stage
        if page is not None:
            self.current_page = page
        logger.debug(f"Page {self.current_page}: {stage}")

    def complete_page(self):
        self.processed_pages += 1

    def add_error(self, error: str):
        self.errors.append(error)
        logger.error(error)

"""
Document assembler module for document reconstruction.

Provides:
- Document data model (Document, Page, PageSnapshot)
- Segment -> Markdown assembly
- The Markdown image-reference convention shared with the exporters
- Pipeline orchestration (one page at a time, in page order)
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..config import JSON_SCHEMA_VERSION
from .io import PageImage, ProcessingProgress
from .parser import ContentSegment, FigureSegment, ResponseParser, TextSegment
from .transcriber import Transcriber, TranscriptionError

logger = logging.getLogger(__name__)


# ============================================================================
# Markdown Image References
# ============================================================================

# ![<alt>](data:image/<type>;base64,<payload>) - group 1 is the data URL,
# group 2 the base64 payload
IMAGE_REF_PATTERN = re.compile(r"!\[.*?\]\((data:image/.*?;base64,(.*?))\)")

PAGE_SEPARATOR = "\n\n"


def markdown_image(payload: str, alt: str = "Figure", mime_type: str = "image/jpeg") -> str:
    """Build a Markdown image reference with an embedded base64 data URL."""
    return f"![{alt}](data:{mime_type};base64,{payload})"


def match_image_reference(line: str) -> Optional["re.Match"]:
    """Return the image-reference match in a Markdown line, if any."""
    return IMAGE_REF_PATTERN.search(line)


def assemble_markdown(segments: Iterable[ContentSegment]) -> str:
    """
    Fold ordered segments into one Markdown string.

    Text is appended as-is; figures become embedded JPEG references. Every
    segment is followed by a blank line. Figures without a crop are skipped.
    """
    chunks = []
    for segment in segments:
        if isinstance(segment, TextSegment):
            chunks.append(segment.content + "\n\n")
        elif isinstance(segment, FigureSegment):
            if segment.cropped_image is None:
                continue
            image = segment.cropped_image
            chunks.append(
                markdown_image(image.to_base64(), mime_type=image.mime_type) + "\n\n"
            )
    return "".join(chunks)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class PageSnapshot:
    """Read-only view of a page handed to the exporters."""
    index: int
    markdown: str


@dataclass(eq=False)
class Page:
    """A processed page."""
    index: int
    source_raster: Optional[np.ndarray] = field(default=None, repr=False)
    source: str = ""
    segments: List[ContentSegment] = field(default_factory=list)
    markdown: str = ""
    reconstructed: bool = True
    edited: bool = False

    @property
    def width(self) -> int:
        return int(self.source_raster.shape[1]) if self.source_raster is not None else 0

    @property
    def height(self) -> int:
        return int(self.source_raster.shape[0]) if self.source_raster is not None else 0

    @property
    def figure_count(self) -> int:
        return sum(1 for s in self.segments if isinstance(s, FigureSegment))

    def edit(self, markdown: str) -> None:
        """Replace the page Markdown with user-authored text.

        The edited text becomes authoritative; segments are discarded and the
        page is never re-assembled.
        """
        self.markdown = markdown
        self.segments = []
        self.edited = True

    def snapshot(self) -> PageSnapshot:
        return PageSnapshot(index=self.index, markdown=self.markdown)

    def to_dict(self) -> Dict[str, Any]:
        segments = []
        for segment in self.segments:
            if isinstance(segment, TextSegment):
                segments.append({"type": "text", "content": segment.content})
            else:
                image = segment.cropped_image
                segments.append({
                    "type": "figure",
                    "box_2d": segment.box.to_list(),
                    "width": image.width if image is not None else 0,
                    "height": image.height if image is not None else 0,
                })

        return {
            "page_number": self.index,
            "source": self.source,
            "width": self.width,
            "height": self.height,
            "reconstructed": self.reconstructed,
            "edited": self.edited,
            "segments": segments,
            "markdown": self.markdown,
        }


@dataclass
class Document:
    """An ordered set of pages; the unit of export."""
    source_file: str = ""
    pages: List[Page] = field(default_factory=list)
    task_id: str = ""
    created_at: str = ""
    schema_version: str = JSON_SCHEMA_VERSION

    def __post_init__(self):
        if not self.task_id:
            self.task_id = str(uuid.uuid4())
        if not self.created_at:
            self.created_at = datetime.now().isoformat()

    @property
    def markdown(self) -> str:
        return PAGE_SEPARATOR.join(page.markdown for page in self.pages)

    def add_page(self, page: Page) -> None:
        if self.pages and page.index <= self.pages[-1].index:
            raise ValueError(
                f"Page {page.index} added after page {self.pages[-1].index}"
            )
        self.pages.append(page)

    def get_page(self, index: int) -> Page:
        for page in self.pages:
            if page.index == index:
                return page
        raise IndexError(f"No page {index} in document")

    def edit_page(self, index: int, markdown: str) -> Page:
        """Overwrite a page's Markdown. Last write wins."""
        page = self.get_page(index)
        page.edit(markdown)
        logger.debug(f"Page {index} edited ({len(markdown)} chars)")
        return page

    def clear(self) -> None:
        self.pages = []

    def snapshot(self) -> Tuple[PageSnapshot, ...]:
        return tuple(page.snapshot() for page in self.pages)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "schema_version": self.schema_version,
            "source_file": self.source_file,
            "created_at": self.created_at,
            "pages": [p.to_dict() for p in self.pages],
            "markdown": self.markdown,
        }


# ============================================================================
# Document Assembler
# ============================================================================

class DocumentAssembler:
    """
    Orchestrates the document reconstruction pipeline.

    Coordinates, per page and strictly in page order:
    - Raster decoding
    - Transcription (external backend)
    - Response parsing and figure cropping
    - Markdown assembly

    The assembler owns its Document. If the backend fails, processing stops
    and the pages finished so far remain in `self.document`.
    """

    def __init__(
        self,
        transcriber: Optional[Transcriber] = None,
        crop_quality: int = 100,
        crop_workers: int = 4,
        debug_mode: bool = False,
        output_dir: Optional[Union[str, Path]] = None
    ):
        self._transcriber = transcriber
        self.crop_quality = crop_quality
        self.crop_workers = crop_workers
        self.debug_mode = debug_mode
        self.output_dir = Path(output_dir) if output_dir else None

        self._parser = None
        self.document = Document()
        self.progress = ProcessingProgress()

    @property
    def transcriber(self) -> Transcriber:
        if self._transcriber is None:
            from ..config import get_config
            from .transcriber import create_transcriber

            cfg = get_config().transcriber
            self._transcriber = create_transcriber(
                engine=cfg.engine,
                api_key=cfg.api_key,
                model=cfg.model,
                temperature=cfg.temperature,
                timeout=cfg.timeout
            )
        return self._transcriber

    @property
    def parser(self) -> ResponseParser:
        if self._parser is None:
            self._parser = ResponseParser(
                crop_quality=self.crop_quality,
                max_workers=self.crop_workers
            )
        return self._parser

    def process_page(self, image: PageImage, page_number: int = 1) -> Page:
        """
        Process a single page image.

        Args:
            image: Encoded page image
            page_number: Page number (1-indexed)

        Returns:
            Page with segments and assembled Markdown

        Raises:
            TranscriptionError: If the backend fails for this page
        """
        from .images import decode_image

        try:
            raster = decode_image(image.data)
            h, w = raster.shape[:2]
            logger.info(f"Processing page {page_number} ({w}x{h})")
        except ValueError as e:
            # Text can still be recovered; figures of this page will be dropped
            logger.warning(f"Page {page_number}: could not decode raster ({e})")
            raster = None

        self.progress.update("transcribing", page_number)
        raw_text = self.transcriber.transcribe(image.data, image.mime_type)

        if self.debug_mode and self.output_dir:
            self._save_response(raw_text, page_number)

        self.progress.update("parsing", page_number)
        result = self.parser.parse(raw_text, raster)

        if result.reconstructed:
            markdown = assemble_markdown(result.segments)
        else:
            logger.warning(
                f"Page {page_number}: response was not structured, using raw text"
            )
            markdown = result.raw_text

        page = Page(
            index=page_number,
            source_raster=raster,
            source=image.source,
            segments=result.segments,
            markdown=markdown,
            reconstructed=result.reconstructed,
        )

        logger.info(
            f"Page {page_number}: {len(result.text_segments)} text segments, "
            f"{len(result.figure_segments)} figures"
        )
        return page

    def process_document(
        self,
        images: Sequence[PageImage],
        source_file: str = "",
        on_page: Optional[Callable[[Page], None]] = None
    ) -> Document:
        """
        Process all pages of a document, one after another.

        Args:
            images: Encoded page images in page order
            source_file: Name of the input, for the JSON output
            on_page: Called with each page as soon as it is recorded

        Returns:
            The assembled Document

        Raises:
            TranscriptionError: On the first backend failure; earlier pages
                are kept in `self.document`
        """
        self.document = Document(source_file=source_file)
        self.progress = ProcessingProgress(total_pages=len(images))

        for page_number, image in enumerate(images, start=1):
            try:
                page = self.process_page(image, page_number)
            except TranscriptionError as e:
                self.progress.add_error(f"Page {page_number}: {e}")
                raise

            self.document.add_page(page)
            self.progress.complete_page()

            if on_page is not None:
                on_page(page)

        self.progress.update("done")
        logger.info(f"Processed {len(self.document.pages)} page(s)")
        return self.document

    def _save_response(self, raw_text: str, page_number: int) -> None:
        """Keep the raw backend response next to the outputs (debug mode)."""
        responses_dir = self.output_dir / "responses"
        responses_dir.mkdir(parents=True, exist_ok=True)
        path = responses_dir / f"page_{page_number:04d}.json"
        path.write_text(raw_text, encoding="utf-8")
        logger.debug(f"Saved raw response: {path}")

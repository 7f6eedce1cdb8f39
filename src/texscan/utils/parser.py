"""
OCR response parsing for document reconstruction.

Turns the transcription backend's raw text into an ordered sequence of
content segments:
- TextSegment: LaTeX-normalized Markdown
- FigureSegment: a figure region cropped from the page raster

Malformed responses never raise: non-JSON text falls back to the raw text,
and figures that cannot be cropped are dropped.
"""

import json
import logging
import re
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

import numpy as np

from .images import BoundingBox, CroppedImage, crop_region
from .latex import normalize_latex

logger = logging.getLogger(__name__)

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```$")


# ============================================================================
# Segment Types
# ============================================================================

@dataclass(frozen=True)
class TextSegment:
    """Markdown/LaTeX text, already normalized."""
    content: str


@dataclass(frozen=True)
class FigureSegment:
    """A figure region and its crop."""
    box: BoundingBox
    cropped_image: Optional[CroppedImage] = None


ContentSegment = Union[TextSegment, FigureSegment]


@dataclass
class ParseResult:
    """Outcome of parsing one page response."""
    segments: List[ContentSegment] = field(default_factory=list)
    # False when the response was not JSON and raw_text is the page Markdown
    reconstructed: bool = True
    raw_text: str = ""
    figures_dropped: int = 0

    @property
    def text_segments(self) -> List[TextSegment]:
        return [s for s in self.segments if isinstance(s, TextSegment)]

    @property
    def figure_segments(self) -> List[FigureSegment]:
        return [s for s in self.segments if isinstance(s, FigureSegment)]


def strip_code_fences(text: str) -> str:
    """Remove a ```json ... ``` (or bare ```) wrapper around a response."""
    text = text.strip()
    text = _FENCE_START.sub("", text)
    text = _FENCE_END.sub("", text)
    return text


# ============================================================================
# Parser
# ============================================================================

class ResponseParser:
    """
    Classifies response parts into segments and crops figures.

    Figures of a page are cropped concurrently; each crop only reads the
    shared page raster.
    """

    def __init__(
        self,
        crop_quality: int = 100,
        max_workers: int = 4
    ):
        self.crop_quality = crop_quality
        self.max_workers = max(1, max_workers)

    def parse(self, raw_text: str, page_image: np.ndarray) -> ParseResult:
        """
        Parse one page response.

        Args:
            raw_text: Raw backend output for the page
            page_image: Decoded raster of the same page (BGR)

        Returns:
            ParseResult with segments in source order
        """
        raw_text = raw_text or ""
        try:
            data = json.loads(strip_code_fences(raw_text))
        except (ValueError, RecursionError) as e:
            logger.warning(f"Response is not valid JSON, keeping raw text: {e}")
            return ParseResult(reconstructed=False, raw_text=raw_text)

        parts = data.get("parts") if isinstance(data, dict) else None
        if not isinstance(parts, list):
            logger.warning("Response has no 'parts' list; page is empty")
            return ParseResult(raw_text=raw_text)

        result = ParseResult(raw_text=raw_text)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            pending = [
                self._classify(part, page_image, executor, index)
                for index, part in enumerate(parts)
            ]

        for index, item in enumerate(pending):
            if item is None:
                continue
            if isinstance(item, TextSegment):
                result.segments.append(item)
                continue

            box, future = item
            segment = None
            if future is not None:
                segment = self._resolve_figure(box, future, index)
            if segment is None:
                result.figures_dropped += 1
            else:
                result.segments.append(segment)

        logger.debug(
            f"Parsed {len(result.segments)} segments "
            f"({len(result.figure_segments)} figures, {result.figures_dropped} dropped)"
        )
        return result

    def _classify(
        self,
        part: Any,
        page_image: np.ndarray,
        executor: ThreadPoolExecutor,
        index: int
    ):
        """Return a TextSegment, a (box, crop future) pair, or None.

        An invalid figure box yields (None, None) so it is counted as dropped.
        """
        if not isinstance(part, dict):
            logger.debug(f"Skipping part {index}: not an object")
            return None

        part_type = part.get("type")

        if part_type == "text":
            content = part.get("content")
            if not isinstance(content, str) or not content:
                logger.debug(f"Skipping part {index}: empty text")
                return None
            return TextSegment(content=normalize_latex(content))

        if part_type == "figure":
            try:
                box = BoundingBox.from_list(part.get("box_2d"))
            except ValueError as e:
                logger.warning(f"Dropping figure {index}: invalid box ({e})")
                return None, None
            future = executor.submit(crop_region, page_image, box, self.crop_quality)
            return box, future

        logger.debug(f"Skipping part {index}: unknown type {part_type!r}")
        return None

    def _resolve_figure(
        self,
        box: BoundingBox,
        future: Future,
        index: int
    ) -> Optional[FigureSegment]:
        try:
            cropped = future.result()
        except ValueError as e:
            logger.warning(f"Dropping figure {index}: crop failed ({e})")
            return None

        if cropped is None:
            logger.warning(f"Dropping figure {index}: box {box.to_list()} has no area")
            return None

        return FigureSegment(box=box, cropped_image=cropped)


def parse_response(raw_text: str, page_image: np.ndarray) -> ParseResult:
    """Parse a page response with default settings."""
    return ResponseParser().parse(raw_text, page_image)

"""
Export module for document reconstruction.

Provides:
- Markdown export
- Rich clipboard export (text/plain + text/html in one clipboard item)
- DOCX export (using python-docx)

Exporters only read page Markdown (through Document snapshots); they never
touch segments or rasters. Embedded figures are recognized by the
`![alt](data:image/...;base64,...)` convention from the assembler.
"""

import base64
import io
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .assembler import PAGE_SEPARATOR, Document, PageSnapshot, match_image_reference

logger = logging.getLogger(__name__)

# python-docx lengths are EMU; 914400 EMU per inch at 96 px per inch
EMU_PER_PIXEL = 9525

# Control characters WordprocessingML cannot store (tab, LF and CR are allowed)
_XML_INVALID_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")

PageSource = Union[Document, Iterable[PageSnapshot]]


def _snapshot(document: PageSource) -> Tuple[PageSnapshot, ...]:
    if isinstance(document, Document):
        return document.snapshot()
    return tuple(document)


def scale_to_fit(width: float, height: float, max_width: float) -> Tuple[float, float]:
    """
    Scale (width, height) down to max_width, keeping the aspect ratio.

    Images already narrower than max_width are returned unchanged.
    """
    if width > max_width:
        ratio = max_width / width
        return max_width, height * ratio
    return width, height


# ============================================================================
# Markdown Exporter
# ============================================================================

class MarkdownExporter:
    """Export document Markdown, pages separated by a blank line."""

    def render(self, document: PageSource) -> str:
        return PAGE_SEPARATOR.join(page.markdown for page in _snapshot(document))

    def export(
        self,
        document: PageSource,
        output_path: Union[str, Path]
    ) -> Path:
        """
        Export document to Markdown file.

        Args:
            document: Document or page snapshots
            output_path: Output file path

        Returns:
            Path to the generated Markdown file
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(self.render(document))

        logger.info(f"Exported Markdown to: {output_path}")
        return output_path


# ============================================================================
# Clipboard Exporter
# ============================================================================

class ClipboardError(RuntimeError):
    """The system clipboard rejected the write or is unavailable."""


@dataclass(frozen=True)
class ClipboardPayload:
    """Both representations of one clipboard item."""
    text: str
    html: str

    def as_mime_dict(self) -> Dict[str, str]:
        return {"text/plain": self.text, "text/html": self.html}


class ClipboardWriter:
    """Writes a payload to the clipboard as a single multi-format item."""

    def write(self, payload: ClipboardPayload) -> None:
        raise NotImplementedError


class KlembordWriter(ClipboardWriter):
    """System clipboard access through klembord (X11 and Windows)."""

    def write(self, payload: ClipboardPayload) -> None:
        try:
            import klembord
        except ImportError as e:
            raise ClipboardError(
                "klembord is required for clipboard export. "
                "Install with: pip install klembord"
            ) from e

        try:
            klembord.init()
            klembord.set_with_rich_text(payload.text, payload.html)
        except Exception as e:
            raise ClipboardError(f"Failed to copy to clipboard: {e}") from e


def escape_html(text: str) -> str:
    """Escape the characters that would break an HTML paragraph."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
    )


class ClipboardExporter:
    """
    Build and copy a rich clipboard payload.

    The plain-text flavor is the joined Markdown; the HTML flavor has one
    serif paragraph per non-blank line, centered images and a rule after
    every page.
    """

    def __init__(
        self,
        image_max_width: int = 400,
        font_family: str = "'Times New Roman', serif",
        font_size_pt: int = 12,
        writer: Optional[ClipboardWriter] = None
    ):
        self.image_max_width = image_max_width
        self.font_family = font_family
        self.font_size_pt = font_size_pt
        self.writer = writer

    def build_text(self, pages: Sequence[PageSnapshot]) -> str:
        return PAGE_SEPARATOR.join(page.markdown for page in pages)

    def build_html(self, pages: Sequence[PageSnapshot]) -> str:
        body = []
        for page in pages:
            for line in page.markdown.split("\n"):
                match = match_image_reference(line)
                if match and match.group(1):
                    body.append(
                        f'<p align="center"><img src="{match.group(1)}" '
                        f'style="max-width: {self.image_max_width}px;" /></p>'
                    )
                    continue

                if not line.strip():
                    continue

                body.append(
                    f'<p style="font-family: {self.font_family}; '
                    f'font-size: {self.font_size_pt}pt; margin-bottom: 8px;">'
                    f'{escape_html(line)}</p>'
                )
            body.append("<br/><hr/><br/>")

        return (
            "<!DOCTYPE html>\n"
            "<html>\n"
            "<body>\n"
            + "\n".join(body)
            + "\n</body>\n"
            "</html>\n"
        )

    def build_payload(self, document: PageSource) -> ClipboardPayload:
        pages = _snapshot(document)
        return ClipboardPayload(
            text=self.build_text(pages),
            html=self.build_html(pages)
        )

    def copy(self, document: PageSource) -> ClipboardPayload:
        """
        Copy the document to the system clipboard.

        The payload is fully built before the clipboard is touched, so a
        failure never leaves a partial item behind.

        Raises:
            ClipboardError: If the clipboard is unavailable or refuses the write
        """
        payload = self.build_payload(document)
        writer = self.writer or KlembordWriter()
        writer.write(payload)
        logger.info(
            f"Copied {len(payload.text)} chars of text and "
            f"{len(payload.html)} chars of HTML to clipboard"
        )
        return payload

    def export(
        self,
        document: PageSource,
        output_path: Union[str, Path]
    ) -> Path:
        """Write the HTML flavor to a file."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(self.build_payload(document).html)

        logger.info(f"Exported HTML to: {output_path}")
        return output_path


# ============================================================================
# DOCX Exporter
# ============================================================================

class DocxExporter:
    """Export document to DOCX format using python-docx."""

    PLACEHOLDER_TEXT = "[Image Error]"

    def __init__(
        self,
        max_image_width: int = 600,
        fallback_image_size: Tuple[int, int] = (400, 300),
        font_name: str = "Times New Roman",
        font_size_pt: int = 12
    ):
        self.max_image_width = max_image_width
        self.fallback_image_size = fallback_image_size
        self.font_name = font_name
        self.font_size_pt = font_size_pt

    def render(self, document: PageSource) -> bytes:
        """
        Build the DOCX file in memory.

        Args:
            document: Document or page snapshots

        Returns:
            The .docx file contents
        """
        try:
            from docx import Document as DocxDocument
        except ImportError:
            raise ImportError(
                "python-docx is required for DOCX export. "
                "Install with: pip install python-docx"
            )

        doc = DocxDocument()
        pages = _snapshot(document)

        for page in pages:
            self._add_page(doc, page)
            # Break after every page, the last one included
            doc.add_page_break()

        buffer = io.BytesIO()
        doc.save(buffer)
        logger.info(f"Built DOCX with {len(pages)} page(s)")
        return buffer.getvalue()

    def export(
        self,
        document: PageSource,
        output_path: Union[str, Path]
    ) -> Path:
        """Write the DOCX to a file chosen by the caller."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(self.render(document))
        logger.info(f"Exported DOCX to: {output_path}")
        return output_path

    def _add_page(self, doc, page: PageSnapshot):
        from docx.shared import Pt

        for line in page.markdown.split("\n"):
            line = _XML_INVALID_CHARS.sub("", line)
            if line.strip() == "":
                doc.add_paragraph("")
                continue

            match = match_image_reference(line)
            if match and match.group(2):
                self._add_image(doc, match.group(2), page.index)
                continue

            paragraph = doc.add_paragraph()
            run = paragraph.add_run(line)
            run.font.name = self.font_name
            run.font.size = Pt(self.font_size_pt)

    def _measure(self, data: bytes) -> Tuple[int, int]:
        from .images import measure_image

        try:
            return measure_image(data)
        except Exception as e:
            logger.warning(
                f"Could not measure image, using {self.fallback_image_size}: {e}"
            )
            return self.fallback_image_size

    def _add_image(self, doc, payload: str, page_index: int):
        """Insert one embedded image, or a placeholder if it cannot be used."""
        from docx.shared import Emu

        paragraph = doc.add_paragraph()
        try:
            data = base64.b64decode(payload)
            natural_width, natural_height = self._measure(data)
            width, height = scale_to_fit(
                natural_width, natural_height, self.max_image_width
            )
            paragraph.add_run().add_picture(
                io.BytesIO(data),
                width=Emu(int(round(width * EMU_PER_PIXEL))),
                height=Emu(int(round(height * EMU_PER_PIXEL)))
            )
        except Exception as e:
            logger.error(f"Error inserting image on page {page_index}: {e}")
            paragraph.add_run(self.PLACEHOLDER_TEXT)


# ============================================================================
# Multi-Format Exporter
# ============================================================================

class DocumentExporter:
    """Convenience class for exporting to multiple formats."""

    def __init__(
        self,
        output_dir: Union[str, Path],
        base_name: str = "document",
        docx_exporter: Optional[DocxExporter] = None,
        clipboard_exporter: Optional[ClipboardExporter] = None
    ):
        self.output_dir = Path(output_dir)
        self.base_name = base_name

        self.markdown_exporter = MarkdownExporter()
        self.docx_exporter = docx_exporter or DocxExporter()
        self.clipboard_exporter = clipboard_exporter or ClipboardExporter()

    def export(
        self,
        document: PageSource,
        formats: List[str] = None
    ) -> Dict[str, Path]:
        """
        Export document to multiple formats.

        Args:
            document: Document or page snapshots
            formats: List of formats ('markdown', 'docx', 'html', 'all')

        Returns:
            Dictionary mapping format to output path
        """
        if formats is None:
            formats = ["markdown", "docx"]

        if "all" in formats:
            formats = ["markdown", "docx", "html"]

        self.output_dir.mkdir(parents=True, exist_ok=True)
        pages = _snapshot(document)

        results = {}

        if "markdown" in formats:
            path = self.output_dir / f"{self.base_name}.md"
            results["markdown"] = self.markdown_exporter.export(pages, path)

        if "docx" in formats:
            path = self.output_dir / f"{self.base_name}.docx"
            results["docx"] = self.docx_exporter.export(pages, path)

        if "html" in formats:
            path = self.output_dir / f"{self.base_name}.html"
            results["html"] = self.clipboard_exporter.export(pages, path)

        return results

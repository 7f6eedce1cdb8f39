"""
Utility modules for the document reconstruction pipeline.
"""

from .io import load_pdf, load_image, save_json, ensure_dir, PageImage
from .images import BoundingBox, CroppedImage, crop_region, decode_image
from .latex import normalize_latex, RewriteRule, DEFAULT_RULES
from .transcriber import (
    Transcriber, GeminiTranscriber, ReplayTranscriber, TranscriptionError,
    create_transcriber
)
from .parser import ResponseParser, ParseResult, TextSegment, FigureSegment, parse_response
from .assembler import DocumentAssembler, Document, Page, PageSnapshot, assemble_markdown
from .export import (
    MarkdownExporter, DocxExporter, ClipboardExporter, ClipboardError,
    DocumentExporter
)

__all__ = [
    # IO
    "load_pdf", "load_image", "save_json", "ensure_dir", "PageImage",
    # Images
    "BoundingBox", "CroppedImage", "crop_region", "decode_image",
    # LaTeX
    "normalize_latex", "RewriteRule", "DEFAULT_RULES",
    # Transcription
    "Transcriber", "GeminiTranscriber", "ReplayTranscriber", "TranscriptionError",
    "create_transcriber",
    # Parsing
    "ResponseParser", "ParseResult", "TextSegment", "FigureSegment", "parse_response",
    # Assembly
    "DocumentAssembler", "Document", "Page", "PageSnapshot", "assemble_markdown",
    # Export
    "MarkdownExporter", "DocxExporter", "ClipboardExporter", "ClipboardError",
    "DocumentExporter",
]

#!/usr/bin/env python
"""
Command-line interface for texscan.

Usage:
    texscan --input <pdf_or_image> --output <output_dir> [options]

Examples:
    # Convert a PDF to Markdown and DOCX
    texscan --input worksheet.pdf --output ./output --format markdown docx

    # Convert a photo and put the result on the clipboard
    texscan --input page.jpg --output ./output --format clipboard

    # Re-run from responses saved by an earlier --debug run
    texscan --input worksheet.pdf --output ./output --engine replay \\
        --replay-dir ./output/responses
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from . import __version__

logger = logging.getLogger("texscan")

ALL_FORMATS = ["markdown", "docx", "html", "json"]


def setup_logging(verbose: bool = False, quiet: bool = False):
    """Configure root logging for command-line runs."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif quiet:
        logging.getLogger().setLevel(logging.ERROR)


def setup_argparser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="texscan",
        description="Convert scanned math documents to Markdown/LaTeX, DOCX and rich clipboard content",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Convert a PDF to Markdown and DOCX:
    texscan --input worksheet.pdf --output ./output --format markdown docx

  Copy the result of a single image to the clipboard:
    texscan --input page.png --output ./output --format clipboard

  Process only specific pages:
    texscan --input worksheet.pdf --output ./output --pages 1-3,5
        """
    )

    parser.add_argument(
        "--input", "-i",
        required=True,
        help="Input PDF, image, or folder of images"
    )

    parser.add_argument(
        "--output", "-o",
        required=True,
        help="Output directory for generated files"
    )

    parser.add_argument(
        "--format", "-f",
        nargs="+",
        default=["markdown", "docx"],
        choices=ALL_FORMATS + ["clipboard", "all"],
        help="Output format(s) (default: markdown docx)"
    )

    parser.add_argument(
        "--dpi",
        type=int,
        default=None,
        help="DPI for PDF to image conversion (default: 144)"
    )

    parser.add_argument(
        "--pages",
        type=str,
        default=None,
        help="Page range to process, e.g., '1-5' or '1,3,5' (default: all)"
    )

    parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Process at most this many pages (after --pages)"
    )

    parser.add_argument(
        "--engine",
        choices=["gemini", "replay"],
        default="gemini",
        help="Transcription backend (default: gemini)"
    )

    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Gemini model name (default: gemini-2.5-flash)"
    )

    parser.add_argument(
        "--replay-dir",
        type=str,
        default=None,
        help="Directory of saved responses for --engine replay"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (saves raw backend responses to <output>/responses)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def parse_page_range(page_str: str, max_pages: int) -> List[int]:
    """Parse page range string to list of page numbers."""
    pages = []

    for part in page_str.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start, end = part.split("-", 1)
            start = max(int(start), 1)
            end = min(int(end), max_pages)
            pages.extend(range(start, end + 1))
        else:
            page = int(part)
            if 1 <= page <= max_pages:
                pages.append(page)

    return sorted(set(pages))


def check_dependencies() -> bool:
    """Check if required dependencies are available."""
    missing = []
    optional_missing = []

    try:
        import cv2
    except ImportError:
        missing.append("opencv-python")

    try:
        import numpy
    except ImportError:
        missing.append("numpy")

    try:
        import PIL
    except ImportError:
        missing.append("Pillow")

    try:
        import docx
    except ImportError:
        missing.append("python-docx")

    try:
        import pdf2image
    except ImportError:
        optional_missing.append("pdf2image (for PDF support)")

    try:
        from google import genai
    except ImportError:
        optional_missing.append("google-genai (for the Gemini backend)")

    try:
        import klembord
    except ImportError:
        optional_missing.append("klembord (for clipboard export)")

    if missing:
        logger.error("Missing required dependencies:")
        for dep in missing:
            logger.error(f"  - {dep}")
        logger.error("\nInstall with: pip install texscan")
        return False

    if optional_missing:
        logger.warning("Missing optional dependencies (some features may be limited):")
        for dep in optional_missing:
            logger.warning(f"  - {dep}")

    return True


def load_pages(input_path: Path, dpi: int, jpeg_quality: int) -> Optional[list]:
    """Load the input as a list of page images, or None if unsupported."""
    from .utils.io import detect_input_type, load_image, load_images_from_folder, load_pdf

    input_type = detect_input_type(input_path)
    logger.info(f"Input type detected: {input_type}")

    if input_type == "pdf":
        logger.info(f"Converting PDF to images at {dpi} DPI...")
        return load_pdf(input_path, dpi=dpi, jpeg_quality=jpeg_quality)
    if input_type == "image":
        logger.info("Loading single image...")
        return [load_image(input_path, jpeg_quality=jpeg_quality)]
    if input_type == "image_folder":
        logger.info("Loading images from folder...")
        return load_images_from_folder(input_path)

    logger.error(f"Unsupported input type: {input_type}")
    return None


def export_document(document, args, output_dir: Path, base_name: str, config) -> int:
    """Write the requested outputs. Returns an exit code."""
    from .utils.export import (
        ClipboardError, ClipboardExporter, DocumentExporter, DocxExporter
    )
    from .utils.io import save_json

    formats = args.format
    if "all" in formats:
        formats = ALL_FORMATS + [f for f in formats if f == "clipboard"]

    export_cfg = config.export
    docx_exporter = DocxExporter(
        max_image_width=export_cfg.docx_max_image_width,
        fallback_image_size=export_cfg.docx_fallback_image_size,
        font_name=export_cfg.docx_font_name,
        font_size_pt=export_cfg.docx_font_size_pt
    )
    clipboard_exporter = ClipboardExporter(
        image_max_width=export_cfg.html_image_max_width,
        font_family=export_cfg.html_font_family,
        font_size_pt=export_cfg.html_font_size_pt
    )

    if "json" in formats:
        json_path = output_dir / "document.json"
        save_json(document.to_dict(), json_path)
        logger.info(f"Saved JSON: {json_path}")

    file_formats = [f for f in formats if f in ("markdown", "docx", "html")]
    if file_formats:
        exporter = DocumentExporter(
            output_dir,
            base_name,
            docx_exporter=docx_exporter,
            clipboard_exporter=clipboard_exporter
        )
        for fmt, path in exporter.export(document, file_formats).items():
            logger.info(f"Exported {fmt}: {path}")

    if "clipboard" in formats:
        try:
            clipboard_exporter.copy(document)
        except ClipboardError as e:
            logger.error(f"Clipboard export failed: {e}")
            return 1
        logger.info("Copied to clipboard. Paste into Word and use MathType > Toggle TeX.")

    return 0


def run_pipeline(args) -> int:
    """Run the document reconstruction pipeline."""
    from .config import get_config
    from .utils.assembler import DocumentAssembler
    from .utils.io import ensure_dir
    from .utils.transcriber import TranscriptionError, create_transcriber

    start_time = time.time()
    config = get_config()

    if args.dpi:
        config.render.dpi = args.dpi
    if args.model:
        config.transcriber.model = args.model
    if args.max_pages:
        config.max_pages = args.max_pages
    config.transcriber.engine = args.engine
    config.debug_mode = config.debug_mode or args.debug

    output_dir = ensure_dir(args.output)
    input_path = Path(args.input)

    images = load_pages(input_path, config.render.dpi, config.render.jpeg_quality)
    if images is None:
        return 1
    if not images:
        logger.error("No images to process")
        return 1

    logger.info(f"Loaded {len(images)} page(s)")

    if args.pages:
        page_indices = parse_page_range(args.pages, len(images))
        images = [images[i - 1] for i in page_indices]
        logger.info(f"Processing pages: {page_indices}")

    if config.max_pages:
        images = images[:config.max_pages]

    tcfg = config.transcriber
    transcriber = create_transcriber(
        engine=tcfg.engine,
        api_key=tcfg.api_key,
        model=tcfg.model,
        temperature=tcfg.temperature,
        timeout=tcfg.timeout,
        replay_dir=args.replay_dir
    )

    assembler = DocumentAssembler(
        transcriber=transcriber,
        crop_quality=config.crop.jpeg_quality,
        crop_workers=config.crop.max_workers,
        debug_mode=config.debug_mode,
        output_dir=output_dir
    )

    logger.info("Processing document...")
    exit_code = 0
    try:
        assembler.process_document(images, source_file=str(input_path))
    except TranscriptionError as e:
        logger.error(f"Processing stopped: {e}")
        exit_code = 1

    document = assembler.document
    if not document.pages:
        logger.error("No pages were processed; nothing to export")
        return 1

    export_code = export_document(document, args, output_dir, input_path.stem, config)
    exit_code = exit_code or export_code

    elapsed = time.time() - start_time

    if not args.quiet:
        figures = sum(page.figure_count for page in document.pages)
        fallback = sum(1 for page in document.pages if not page.reconstructed)
        print("\n" + "=" * 60)
        print("DOCUMENT CONVERSION " + ("COMPLETE" if exit_code == 0 else "INCOMPLETE"))
        print("=" * 60)
        print(f"Source: {input_path}")
        print(f"Output: {output_dir}")
        print(f"Pages processed: {len(document.pages)} of {len(images)}")
        print(f"Figures embedded: {figures}")
        print(f"Pages kept as raw text: {fallback}")
        print(f"Processing time: {elapsed:.2f}s")
        print("=" * 60)

    return exit_code


def main():
    """Main entry point."""
    parser = setup_argparser()
    args = parser.parse_args()

    setup_logging(verbose=args.verbose, quiet=args.quiet)

    if args.engine == "replay" and not args.replay_dir:
        parser.error("--engine replay requires --replay-dir")

    if not check_dependencies():
        sys.exit(1)

    try:
        exit_code = run_pipeline(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if args.debug:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()

"""
Tests for document assembler module.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class TestAssembleMarkdown:
    """Test segment -> Markdown assembly."""

    @pytest.fixture
    def segments(self):
        """Create a text/figure/text segment sequence."""
        from texscan.utils.images import BoundingBox, crop_region
        from texscan.utils.parser import FigureSegment, TextSegment

        page = np.full((100, 100, 3), 200, dtype=np.uint8)
        box = BoundingBox(0, 0, 500, 500)
        return [
            TextSegment(content="# Exercise 1"),
            FigureSegment(box=box, cropped_image=crop_region(page, box)),
            TextSegment(content="Find $x$."),
        ]

    def test_format(self, segments):
        """Test each segment is followed by a blank line."""
        from texscan.utils.assembler import assemble_markdown

        markdown = assemble_markdown(segments)
        lines = markdown.split("\n")

        assert lines[0] == "# Exercise 1"
        assert lines[1] == ""
        assert lines[2].startswith("![Figure](data:image/jpeg;base64,")
        assert lines[4] == "Find $x$."
        assert markdown.endswith("Find $x$.\n\n")

    def test_deterministic(self, segments):
        """Test identical segments give byte-identical Markdown."""
        from texscan.utils.assembler import assemble_markdown

        assert assemble_markdown(segments) == assemble_markdown(list(segments))

    def test_figure_reference_roundtrip(self, segments):
        """Test the embedded payload is the crop's JPEG."""
        import base64
        from texscan.utils.assembler import assemble_markdown, match_image_reference

        line = assemble_markdown(segments[1:2]).split("\n")[0]
        match = match_image_reference(line)

        assert match is not None
        assert base64.b64decode(match.group(2)) == segments[1].cropped_image.data

    def test_figure_without_crop_skipped(self):
        """Test figures without a crop produce nothing."""
        from texscan.utils.assembler import assemble_markdown
        from texscan.utils.images import BoundingBox
        from texscan.utils.parser import FigureSegment

        assert assemble_markdown([FigureSegment(box=BoundingBox(0, 0, 10, 10))]) == ""

    def test_empty(self):
        """Test no segments gives empty Markdown."""
        from texscan.utils.assembler import assemble_markdown

        assert assemble_markdown([]) == ""


class TestDocument:
    """Test Document model."""

    def test_pages_ordered(self):
        """Test pages must be added in order."""
        from texscan.utils.assembler import Document, Page

        doc = Document()
        doc.add_page(Page(index=1, markdown="a"))
        doc.add_page(Page(index=2, markdown="b"))

        with pytest.raises(ValueError):
            doc.add_page(Page(index=2, markdown="c"))

        assert doc.markdown == "a\n\nb"

    def test_edit_page(self):
        """Test editing replaces a page's Markdown."""
        from texscan.utils.assembler import Document, Page
        from texscan.utils.parser import TextSegment

        doc = Document()
        doc.add_page(Page(index=1, segments=[TextSegment("old")], markdown="old\n\n"))

        doc.edit_page(1, "first")
        page = doc.edit_page(1, "second")

        assert page.markdown == "second"
        assert page.edited is True
        assert page.segments == []
        assert doc.markdown == "second"

    def test_edit_missing_page(self):
        """Test editing an unknown page raises IndexError."""
        from texscan.utils.assembler import Document

        with pytest.raises(IndexError):
            Document().edit_page(3, "x")

    def test_snapshot_is_detached(self):
        """Test snapshots do not follow later edits."""
        from texscan.utils.assembler import Document, Page

        doc = Document()
        doc.add_page(Page(index=1, markdown="before"))
        snapshot = doc.snapshot()
        doc.edit_page(1, "after")

        assert snapshot[0].markdown == "before"
        assert doc.snapshot()[0].markdown == "after"

    def test_to_dict(self):
        """Test document serialization."""
        from texscan.utils.assembler import Document, Page

        doc = Document(source_file="sheet.pdf")
        doc.add_page(Page(index=1, markdown="x"))
        data = doc.to_dict()

        assert data["source_file"] == "sheet.pdf"
        assert data["schema_version"] == "1.0"
        assert data["task_id"]
        assert data["pages"][0]["page_number"] == 1
        assert data["pages"][0]["markdown"] == "x"

    def test_clear(self):
        """Test clearing drops all pages."""
        from texscan.utils.assembler import Document, Page

        doc = Document()
        doc.add_page(Page(index=1))
        doc.clear()

        assert doc.pages == []
        assert doc.markdown == ""


class TestDocumentAssembler:
    """Test pipeline orchestration."""

    def _images(self, data, count):
        from texscan.utils.io import PageImage
        return [PageImage(data=data, mime_type="image/png") for _ in range(count)]

    def test_process_document(self, page_png, make_response):
        """Test pages are transcribed, parsed and assembled in order."""
        from texscan.utils.assembler import DocumentAssembler
        from texscan.utils.transcriber import ReplayTranscriber

        transcriber = ReplayTranscriber([
            make_response({"type": "text", "content": "Page one \\( x \\)"}),
            make_response(
                {"type": "text", "content": "Page two"},
                {"type": "figure", "box_2d": [0, 0, 500, 500]},
            ),
        ])
        assembler = DocumentAssembler(transcriber=transcriber)
        seen = []
        doc = assembler.process_document(
            self._images(page_png, 2), source_file="sheet.png", on_page=seen.append
        )

        assert [p.index for p in doc.pages] == [1, 2]
        assert [p.index for p in seen] == [1, 2]
        assert doc.pages[0].markdown == "Page one $ x $\n\n"
        assert doc.pages[1].markdown.startswith("Page two\n\n![Figure](data:image/jpeg;base64,")
        assert doc.pages[1].figure_count == 1
        assert (doc.pages[1].width, doc.pages[1].height) == (400, 300)
        assert transcriber.calls == ["image/png", "image/png"]
        assert assembler.progress.processed_pages == 2

    def test_raw_text_fallback(self, page_png):
        """Test a non-JSON response becomes the page Markdown."""
        from texscan.utils.assembler import DocumentAssembler
        from texscan.utils.transcriber import ReplayTranscriber

        assembler = DocumentAssembler(transcriber=ReplayTranscriber(["plain words"]))
        doc = assembler.process_document(self._images(page_png, 1))

        assert doc.pages[0].markdown == "plain words"
        assert doc.pages[0].reconstructed is False

    def test_stops_on_transcription_error(self, page_png, make_response):
        """Test the run stops at the first backend failure, keeping earlier pages."""
        from texscan.utils.assembler import DocumentAssembler
        from texscan.utils.transcriber import ReplayTranscriber, TranscriptionError

        transcriber = ReplayTranscriber([make_response({"type": "text", "content": "ok"})])
        assembler = DocumentAssembler(transcriber=transcriber)

        with pytest.raises(TranscriptionError):
            assembler.process_document(self._images(page_png, 3))

        assert [p.index for p in assembler.document.pages] == [1]
        assert len(assembler.progress.errors) == 1

    def test_undecodable_raster(self, make_response):
        """Test text survives when the page raster cannot be decoded."""
        from texscan.utils.assembler import DocumentAssembler
        from texscan.utils.transcriber import ReplayTranscriber

        transcriber = ReplayTranscriber([make_response(
            {"type": "text", "content": "still here"},
            {"type": "figure", "box_2d": [0, 0, 500, 500]},
        )])
        assembler = DocumentAssembler(transcriber=transcriber)
        doc = assembler.process_document(self._images(b"not an image", 1))

        assert doc.pages[0].markdown == "still here\n\n"
        assert doc.pages[0].figure_count == 0

    def test_debug_saves_responses(self, page_png, make_response, tmp_path):
        """Test debug mode keeps raw responses for replay."""
        from texscan.utils.assembler import DocumentAssembler
        from texscan.utils.transcriber import ReplayTranscriber

        raw = make_response({"type": "text", "content": "saved"})
        assembler = DocumentAssembler(
            transcriber=ReplayTranscriber([raw]),
            debug_mode=True,
            output_dir=tmp_path
        )
        assembler.process_document(self._images(page_png, 1))

        saved = tmp_path / "responses" / "page_0001.json"
        assert saved.read_text(encoding="utf-8") == raw

    def test_new_run_replaces_document(self, page_png, make_response):
        """Test each run starts a fresh document."""
        from texscan.utils.assembler import DocumentAssembler
        from texscan.utils.transcriber import ReplayTranscriber

        transcriber = ReplayTranscriber([
            make_response({"type": "text", "content": "first"}),
            make_response({"type": "text", "content": "second"}),
        ])
        assembler = DocumentAssembler(transcriber=transcriber)
        first = assembler.process_document(self._images(page_png, 1))
        second = assembler.process_document(self._images(page_png, 1))

        assert first is not second
        assert second.markdown == "second\n\n"

    def test_page_source_recorded(self, page_png, make_response):
        """Test each page keeps the name of the image it came from."""
        from texscan.utils.assembler import DocumentAssembler
        from texscan.utils.io import PageImage
        from texscan.utils.transcriber import ReplayTranscriber

        transcriber = ReplayTranscriber([
            make_response({"type": "text", "content": "one"}),
            make_response({"type": "text", "content": "two"}),
        ])
        images = [
            PageImage(data=page_png, mime_type="image/png", source="sheet.pdf#page=1"),
            PageImage(data=page_png, mime_type="image/png", source="sheet.pdf#page=2"),
        ]
        doc = DocumentAssembler(transcriber=transcriber).process_document(images)

        assert [p.source for p in doc.pages] == ["sheet.pdf#page=1", "sheet.pdf#page=2"]
        assert doc.to_dict()["pages"][1]["source"] == "sheet.pdf#page=2"

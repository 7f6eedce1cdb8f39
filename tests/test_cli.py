"""
Tests for the command-line interface and configuration.
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class TestParsePageRange:
    """Test page range parsing."""

    @pytest.mark.parametrize("page_str,expected", [
        ("1-3", [1, 2, 3]),
        ("1,3,5", [1, 3, 5]),
        ("2-4,1", [1, 2, 3, 4]),
        ("4-9", [4, 5]),
        ("0,6", []),
    ])
    def test_ranges(self, page_str, expected):
        """Test ranges are clamped and sorted."""
        from texscan.cli import parse_page_range

        assert parse_page_range(page_str, 5) == expected


class TestArgparser:
    """Test argument parsing."""

    def test_defaults(self):
        """Test default options."""
        from texscan.cli import setup_argparser

        args = setup_argparser().parse_args(["-i", "in.pdf", "-o", "out"])

        assert args.format == ["markdown", "docx"]
        assert args.engine == "gemini"
        assert args.dpi is None
        assert args.debug is False

    def test_invalid_format(self):
        """Test unknown formats are rejected."""
        from texscan.cli import setup_argparser

        with pytest.raises(SystemExit):
            setup_argparser().parse_args(["-i", "x", "-o", "y", "-f", "pdf"])


class TestConfig:
    """Test configuration and environment overrides."""

    def test_defaults(self, monkeypatch):
        """Test default configuration values."""
        from texscan.config import get_config

        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("API_KEY", raising=False)
        monkeypatch.delenv("TEXSCAN_MODEL", raising=False)
        monkeypatch.delenv("TEXSCAN_DEBUG", raising=False)
        config = get_config()

        assert config.render.dpi == 144
        assert config.transcriber.model == "gemini-2.5-flash"
        assert config.transcriber.api_key is None
        assert config.export.docx_max_image_width == 600
        assert config.debug_mode is False

    def test_environment(self, monkeypatch):
        """Test environment overrides."""
        from texscan.config import get_config

        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.setenv("API_KEY", "secret")
        monkeypatch.setenv("TEXSCAN_MODEL", "gemini-2.5-pro")
        monkeypatch.setenv("TEXSCAN_DEBUG", "true")
        config = get_config()

        assert config.transcriber.api_key == "secret"
        assert config.transcriber.model == "gemini-2.5-pro"
        assert config.debug_mode is True


class TestRunPipeline:
    """Test the CLI pipeline with saved responses."""

    @pytest.fixture
    def replay_setup(self, tmp_path, page_png, make_response):
        """Create an input image and a directory of saved responses."""
        input_path = tmp_path / "sheet.png"
        input_path.write_bytes(page_png)
        responses = tmp_path / "responses"
        responses.mkdir()
        (responses / "page_0001.json").write_text(
            make_response(
                {"type": "text", "content": "Find \\angle ABC."},
                {"type": "figure", "box_2d": [100, 100, 900, 900]},
            ),
            encoding="utf-8"
        )
        return input_path, responses, tmp_path / "out"

    def _args(self, *argv):
        from texscan.cli import setup_argparser
        return setup_argparser().parse_args(list(argv))

    def test_replay_run(self, replay_setup):
        """Test a full run writes every requested file."""
        from texscan.cli import run_pipeline

        input_path, responses, output = replay_setup
        args = self._args(
            "-i", str(input_path), "-o", str(output), "-f", "all",
            "--engine", "replay", "--replay-dir", str(responses), "-q"
        )

        assert run_pipeline(args) == 0
        markdown = (output / "sheet.md").read_text(encoding="utf-8")
        assert markdown.startswith("Find \\widehat{ABC}.\n\n![Figure](data:image/jpeg;base64,")
        assert (output / "sheet.docx").exists()
        assert (output / "sheet.html").exists()
        assert (output / "document.json").exists()

    def test_backend_failure_on_first_page(self, replay_setup, tmp_path):
        """Test a failing first page returns an error code."""
        from texscan.cli import run_pipeline

        input_path, _, output = replay_setup
        empty = tmp_path / "no_responses"
        empty.mkdir()
        args = self._args(
            "-i", str(input_path), "-o", str(output),
            "--engine", "replay", "--replay-dir", str(empty), "-q"
        )

        assert run_pipeline(args) == 1
        assert not (output / "sheet.md").exists()

    def test_clipboard_failure(self, replay_setup, monkeypatch):
        """Test clipboard failures give an error code after files are written."""
        from texscan.cli import run_pipeline
        from texscan.utils.export import ClipboardError, KlembordWriter

        def denied(self, payload):
            raise ClipboardError("no display")

        monkeypatch.setattr(KlembordWriter, "write", denied)
        input_path, responses, output = replay_setup
        args = self._args(
            "-i", str(input_path), "-o", str(output), "-f", "markdown", "clipboard",
            "--engine", "replay", "--replay-dir", str(responses), "-q"
        )

        assert run_pipeline(args) == 1
        assert (output / "sheet.md").exists()

    def test_unsupported_input(self, tmp_path):
        """Test unknown inputs fail cleanly."""
        from texscan.cli import run_pipeline

        path = tmp_path / "notes.txt"
        path.write_text("x")
        args = self._args("-i", str(path), "-o", str(tmp_path / "out"), "-q")

        assert run_pipeline(args) == 1

    def test_max_pages(self, tmp_path, page_png, make_response):
        """Test --max-pages limits how many pages are transcribed."""
        import json
        from texscan.cli import run_pipeline

        folder = tmp_path / "scans"
        folder.mkdir()
        responses = tmp_path / "responses"
        responses.mkdir()
        for i in range(1, 4):
            (folder / f"page_{i}.png").write_bytes(page_png)
            (responses / f"page_{i:04d}.json").write_text(
                make_response({"type": "text", "content": f"page {i}"}), encoding="utf-8"
            )
        output = tmp_path / "out"
        args = self._args(
            "-i", str(folder), "-o", str(output), "-f", "json", "--max-pages", "2",
            "--engine", "replay", "--replay-dir", str(responses), "-q"
        )

        assert run_pipeline(args) == 0
        data = json.loads((output / "document.json").read_text(encoding="utf-8"))
        assert [p["source"] for p in data["pages"]] == ["page_1.png", "page_2.png"]

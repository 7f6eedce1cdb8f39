"""
Page transcription backends for document reconstruction.

Provides:
- Transcriber interface: page image bytes -> raw model response text
- Gemini vision backend (google-genai)
- Replay backend for saved responses (offline runs and tests)

The response contract is a JSON object with a "parts" list; each part is
either {"type": "text", "content": "..."} or
{"type": "figure", "box_2d": [ymin, xmin, ymax, xmax]} on a 0-1000 scale.
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

logger = logging.getLogger(__name__)


SYSTEM_INSTRUCTION = """
You are a LaTeX OCR engine for mathematics and geometry worksheets.
Rebuild the page as clean Markdown with compile-ready LaTeX.

OUTPUT FORMAT:
Return a JSON object with a "parts" array holding the page content in reading order.
- "text": content transcribed as Markdown.
- "figure": bounding box [ymin, xmin, ymax, xmax] (0-1000) of a chart, graph,
  diagram, geometric drawing or circuit.

MATH RULES:
1. Delimiters:
   - Inline math uses single dollars: $ y = x^2 $. Never \\( ... \\).
   - Display math uses double dollars: $$ \\int_0^1 x dx $$. Never \\[ ... \\].
2. Geometry and symbols:
   - Triangles: write \\Delta, never the Unicode character.
   - Three-letter angles (ABC): write \\widehat{ABC}, not \\angle ABC.
   - Single-letter angles (A): write \\hat{A}.
   - Degrees: write ^\\circ, never the Unicode degree sign.
   - Use \\perp, \\parallel, \\cdot and \\times where they belong.
3. Repair malformed expressions: "x2" becomes $x^2$, broken environments such
   as \\begin{cases} are closed properly, and no Unicode math symbols remain.

FIGURE RULES:
1. Report every chart, graph, diagram, geometric drawing and circuit.
2. The box must contain the whole figure, including its labels, axes, numbers,
   legends and attached captions. Never cut off point labels like $A$ or $x$.
3. Do not transcribe text that sits inside a figure; the figure is kept as an image.
4. If the page is mostly one diagram, return a single large figure.
"""

USER_PROMPT = (
    "Extract content to JSON. Be precise with LaTeX math ($...$ and $$...$$) "
    "and figure bounding boxes."
)


class TranscriptionError(RuntimeError):
    """The transcription backend could not be reached or refused the request."""


# ============================================================================
# Base Interface
# ============================================================================

class Transcriber:
    """Turns one page image into the backend's raw response text."""

    name = "base"

    def transcribe(self, image: bytes, mime_type: str) -> str:
        """
        Transcribe a page image.

        Args:
            image: Encoded page image
            mime_type: MIME type of `image`, e.g. "image/jpeg"

        Returns:
            Raw response text (expected to be JSON, not guaranteed)

        Raises:
            TranscriptionError: If the backend is unavailable
        """
        raise NotImplementedError


# ============================================================================
# Gemini Backend
# ============================================================================

def _response_schema(types):
    """Build the structured-output schema for google-genai."""
    part_schema = types.Schema(
        type=types.Type.OBJECT,
        properties={
            "type": types.Schema(type=types.Type.STRING, enum=["text", "figure"]),
            "content": types.Schema(
                type=types.Type.STRING,
                description="Markdown text content if type is text",
            ),
            "box_2d": types.Schema(
                type=types.Type.ARRAY,
                items=types.Schema(type=types.Type.INTEGER),
                description="Bounding box [ymin, xmin, ymax, xmax] (0-1000 scale) if type is figure",
            ),
        },
        required=["type"],
    )
    return types.Schema(
        type=types.Type.OBJECT,
        properties={"parts": types.Schema(type=types.Type.ARRAY, items=part_schema)},
    )


class GeminiTranscriber(Transcriber):
    """Page transcription using the Gemini API (google-genai)."""

    name = "gemini"
    DEFAULT_MODEL = "gemini-2.5-flash"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.1,
        timeout: float = 120.0
    ):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.timeout = timeout
        self._client = None

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise TranscriptionError(
                    "API key is missing. Set the GEMINI_API_KEY (or API_KEY) environment variable."
                )
            try:
                from google import genai
                from google.genai import types
            except ImportError:
                raise ImportError(
                    "google-genai is required for the Gemini backend. "
                    "Install with: pip install google-genai"
                )
            self._client = genai.Client(
                api_key=self.api_key,
                http_options=types.HttpOptions(timeout=int(self.timeout * 1000)),
            )
            logger.info(f"Initialized Gemini client (model: {self.model})")
        return self._client

    def transcribe(self, image: bytes, mime_type: str) -> str:
        client = self.client
        from google.genai import types

        try:
            response = client.models.generate_content(
                model=self.model,
                contents=[
                    types.Part.from_bytes(data=image, mime_type=mime_type),
                    USER_PROMPT,
                ],
                config=types.GenerateContentConfig(
                    system_instruction=SYSTEM_INSTRUCTION,
                    temperature=self.temperature,
                    response_mime_type="application/json",
                    response_schema=_response_schema(types),
                ),
            )
        except Exception as e:
            logger.error(f"Gemini API error: {e}")
            raise TranscriptionError(f"Failed to process image: {e}") from e

        return response.text or "{}"


# ============================================================================
# Replay Backend
# ============================================================================

class ReplayTranscriber(Transcriber):
    """
    Returns previously captured responses, one per call, in order.

    Raises TranscriptionError once the responses run out, which ends a run
    the same way an unreachable backend would.
    """

    name = "replay"

    def __init__(self, responses: Sequence[str]):
        self.responses = list(responses)
        self.calls: List[str] = []

    @classmethod
    def from_directory(cls, directory: Union[str, Path]) -> 'ReplayTranscriber':
        """Load responses from the files of a directory, sorted by name."""
        directory = Path(directory)
        if not directory.is_dir():
            raise NotADirectoryError(f"Not a directory: {directory}")

        files = sorted(f for f in directory.iterdir() if f.is_file())
        logger.info(f"Loaded {len(files)} saved responses from {directory}")
        return cls([f.read_text(encoding="utf-8") for f in files])

    def transcribe(self, image: bytes, mime_type: str) -> str:
        index = len(self.calls)
        if index >= len(self.responses):
            raise TranscriptionError(f"No saved response for page {index + 1}")
        self.calls.append(mime_type)
        return self.responses[index]


def create_transcriber(
    engine: str = "gemini",
    api_key: Optional[str] = None,
    model: str = GeminiTranscriber.DEFAULT_MODEL,
    temperature: float = 0.1,
    timeout: float = 120.0,
    replay_dir: Optional[Union[str, Path]] = None
) -> Transcriber:
    """Create a transcription backend by engine name."""
    if engine == "gemini":
        return GeminiTranscriber(
            api_key=api_key,
            model=model,
            temperature=temperature,
            timeout=timeout
        )
    if engine == "replay":
        if replay_dir is None:
            raise ValueError("The replay engine needs a directory of saved responses")
        return ReplayTranscriber.from_directory(replay_dir)
    raise ValueError(f"Unknown transcription engine: {engine}")

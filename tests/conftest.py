"""
Shared fixtures for texscan tests.
"""

import json

import numpy as np
import pytest


def encode_png(image: np.ndarray) -> bytes:
    import cv2

    ok, buffer = cv2.imencode(".png", image)
    assert ok
    return buffer.tobytes()


@pytest.fixture
def page_png():
    """PNG bytes of a 400x300 page with a dark rectangle."""
    img = np.full((300, 400, 3), 255, dtype=np.uint8)
    img[100:200, 100:300] = 0
    return encode_png(img)


@pytest.fixture
def make_response():
    """Build a backend response from parts."""
    def _make(*parts):
        return json.dumps({"parts": list(parts)})
    return _make


@pytest.fixture
def image_markdown():
    """Markdown image reference for a JPEG of the given size."""
    import base64

    def _make(width, height):
        import cv2

        ok, buffer = cv2.imencode(".jpg", np.zeros((height, width, 3), dtype=np.uint8))
        assert ok
        payload = base64.b64encode(buffer.tobytes()).decode("ascii")
        return f"![Figure](data:image/jpeg;base64,{payload})"
    return _make

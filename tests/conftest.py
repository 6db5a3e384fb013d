"""
Shared fixtures for the page reconstruction tests.

Real OCR backends are never used: fake adapters return fixed fragments or
read ink regions straight from the synthetic rasters.
"""

import sys
import time
from pathlib import Path

import numpy as np
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from magrecon.utils.layout import BoundingBox, TextFragment
from magrecon.utils.ocr_text import OCREngineAdapter


class FakeAdapter(OCREngineAdapter):
    """Adapter returning canned fragments, optionally slow or failing."""

    def __init__(self, engine_id, fragments=None, responses=None, delay=0.0, error=None):
        self.engine_id = engine_id
        self.fragments = list(fragments or [])
        self.responses = list(responses or [])
        self.delay = delay
        self.error = error
        self.calls = []

    def recognize(self, image, language_hints):
        self.calls.append({"shape": image.shape, "writeable": image.flags.writeable,
                           "hints": list(language_hints)})
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise RuntimeError(self.error)
        if self.responses:
            return list(self.responses.pop(0))
        return list(self.fragments)


class InkAdapter(OCREngineAdapter):
    """Adapter that reports the bounding box of dark pixels as one fragment."""

    engine_id = "ink"

    def __init__(self, text="نص عربي", confidence=0.9):
        self.text = text
        self.confidence = confidence

    def recognize(self, image, language_hints):
        gray = image if image.ndim == 2 else image.mean(axis=2)
        ys, xs = np.where(gray < 128)
        if len(xs) == 0:
            return []
        return [TextFragment(
            text=self.text,
            confidence=self.confidence,
            bbox=BoundingBox(int(xs.min()), int(ys.min()),
                             int(xs.max() - xs.min() + 1), int(ys.max() - ys.min() + 1))
        )]


def make_fragment(text, x, y, width=100, height=21, confidence=0.9, font_size=None):
    return TextFragment(
        text=text,
        confidence=confidence,
        bbox=BoundingBox(x, y, width, height),
        estimated_font_size=font_size
    )


def encode_png(image):
    import cv2
    ok, buffer = cv2.imencode(".png", image)
    assert ok
    return buffer.tobytes()


@pytest.fixture
def two_column_page():
    """White 1200x1600 page with two text columns and a 36px gutter at x=600."""
    img = np.ones((1600, 1200), dtype=np.uint8) * 255
    img[100:1500, 60:582] = 0
    img[100:1500, 618:1140] = 0
    return img


@pytest.fixture
def single_column_page():
    """Portrait page with one wide text block and white margins."""
    img = np.ones((1400, 1000), dtype=np.uint8) * 255
    for y in range(120, 1300, 40):
        img[y:y + 20, 100:900] = 0
    return img


@pytest.fixture
def blank_page_bytes():
    return encode_png(np.ones((600, 400, 3), dtype=np.uint8) * 255)

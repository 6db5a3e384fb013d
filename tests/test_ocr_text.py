"""
Tests for OCR engine adapters.

Engine clients are replaced with small fakes that mimic the response shapes
of pytesseract, EasyOCR, PaddleOCR and Cloud Vision.
"""

import pytest
import numpy as np
import sys
from pathlib import Path
from types import SimpleNamespace

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from conftest import FakeAdapter, make_fragment, encode_png


class FakeTesseract:
    """Stands in for the pytesseract module."""

    Output = SimpleNamespace(DICT="dict")

    def __init__(self, data=None, error=None):
        self.data = data
        self.error = error
        self.calls = []

    def image_to_data(self, image, lang, config, output_type, timeout):
        self.calls.append({"lang": lang, "config": config, "timeout": timeout})
        if self.error:
            raise self.error
        return self.data


def tesseract_data():
    rows = [
        # (block, par, line, text, conf, left, top, width, height)
        (1, 1, 1, "", -1, 0, 0, 400, 100),
        (1, 1, 1, "مرحبا", 90, 200, 10, 80, 20),
        (1, 1, 1, "بكم", 80, 100, 12, 60, 20),
        (1, 1, 2, "جميعا", 70, 150, 40, 90, 20),
        (2, 1, 1, "عالم", 60, 50, 200, 70, 30),
        (2, 1, 1, "   ", 95, 10, 200, 5, 30),
    ]
    keys = ["block_num", "par_num", "line_num", "text", "conf", "left", "top", "width", "height"]
    data = {k: [r[i] for r in rows] for i, k in enumerate(keys)}
    data["page_num"] = [1] * len(rows)
    return data


def vision_block(paragraphs, block_conf=0.5, vertices=((0, 0), (100, 0), (100, 30), (0, 30))):
    """paragraphs: list of lists of (word, confidence)."""
    return SimpleNamespace(
        confidence=block_conf,
        bounding_box=SimpleNamespace(vertices=[SimpleNamespace(x=x, y=y) for x, y in vertices]),
        paragraphs=[
            SimpleNamespace(words=[
                SimpleNamespace(confidence=conf, symbols=[SimpleNamespace(text=c) for c in word])
                for word, conf in words
            ])
            for words in paragraphs
        ]
    )


class FakeVisionClient:
    def __init__(self, blocks=None, error_message=""):
        self.blocks = blocks or []
        self.error_message = error_message
        self.requests = []

    def document_text_detection(self, image, image_context):
        self.requests.append({"image": image, "image_context": image_context})
        return SimpleNamespace(
            error=SimpleNamespace(message=self.error_message),
            full_text_annotation=SimpleNamespace(pages=[SimpleNamespace(blocks=self.blocks)])
        )


@pytest.fixture
def page():
    return np.ones((300, 400, 3), dtype=np.uint8) * 255


class TestEngineResult:
    """Test EngineResult."""

    def test_failure(self):
        from magrecon.utils.ocr_text import EngineResult

        result = EngineResult.failure("tesseract", "boom", processing_time_ms=12)

        assert result.failed is True
        assert result.full_text == ""
        assert result.overall_confidence == 0.0
        assert result.fragments == ()

    def test_to_dict(self):
        from magrecon.utils.ocr_text import EngineResult

        result = EngineResult("easyocr", "نص", 0.87654, (make_fragment("نص", 0, 0),), 40)
        data = result.to_dict()

        assert data["engine"] == "easyocr"
        assert data["confidence"] == 0.8765
        assert data["fragments"][0]["role"] == "body"
        assert data["error"] is None

    def test_frozen(self):
        from dataclasses import FrozenInstanceError
        from magrecon.utils.ocr_text import EngineResult

        result = EngineResult("x")
        with pytest.raises(FrozenInstanceError):
            result.full_text = "changed"


class TestAdapterBase:
    """Test the non-throwing adapter wrapper."""

    def test_run_image_translates_geometry(self, page):
        adapter = FakeAdapter("fake", fragments=[make_fragment("نص", 10, 20)])

        result = adapter.run_image(page, ["ar"], x_offset=600, column_index=1)

        assert result.fragments[0].bbox.x == 610
        assert result.fragments[0].bbox.y == 20
        assert result.fragments[0].column_index == 1

    def test_run_image_drops_empty_text(self, page):
        adapter = FakeAdapter("fake", fragments=[
            make_fragment("  نص  ", 0, 0, confidence=0.8),
            make_fragment("   ", 0, 50, confidence=0.2),
            make_fragment("", 0, 90, confidence=0.1),
        ])

        result = adapter.run_image(page)

        assert [f.text for f in result.fragments] == ["نص"]
        assert result.full_text == "نص"
        assert result.overall_confidence == pytest.approx(0.8)

    def test_run_image_strip_keeps_fields(self, page):
        """Trimming text keeps the role and an explicit font size."""
        from dataclasses import replace
        from magrecon.utils.layout import StructuralRole

        titled = replace(make_fragment("  عنوان  ", 10, 20, font_size=30), role=StructuralRole.TITLE)
        adapter = FakeAdapter("fake", fragments=[titled])

        fragment = adapter.run_image(page, x_offset=100, column_index=2).fragments[0]

        assert fragment.text == "عنوان"
        assert fragment.role == StructuralRole.TITLE
        assert fragment.estimated_font_size == 30
        assert (fragment.bbox.x, fragment.column_index) == (110, 2)

    def test_run_image_strip_reestimates_lost_lines(self, page):
        adapter = FakeAdapter("fake", fragments=[make_fragment("نص\n", 0, 0, height=40)])

        fragment = adapter.run_image(page).fragments[0]

        # 40px box, one line left after trimming
        assert fragment.estimated_font_size == 30

    def test_run_image_captures_errors(self, page):
        adapter = FakeAdapter("fake", error="engine crashed")

        result = adapter.run_image(page)

        assert result.error == "engine crashed"
        assert result.full_text == ""
        assert result.overall_confidence == 0.0

    def test_run_decodes_bytes(self, page):
        adapter = FakeAdapter("fake", fragments=[make_fragment("نص", 0, 0)])

        result = adapter.run(encode_png(page), ["ar"])

        assert result.failed is False
        assert adapter.calls[0]["shape"] == (300, 400, 3)
        assert adapter.calls[0]["hints"] == ["ar"]

    def test_run_bad_bytes(self):
        adapter = FakeAdapter("fake")

        result = adapter.run(b"not an image")

        assert result.failed is True
        assert adapter.calls == []

    def test_default_hints(self, page):
        adapter = FakeAdapter("fake")
        adapter.run_image(page)

        assert adapter.calls[0]["hints"] == ["ar", "ar-EG"]


class TestTesseractAdapter:
    """Test TesseractAdapter with a fake pytesseract."""

    def test_groups_words_into_blocks(self, page):
        from magrecon.utils.ocr_text import TesseractAdapter

        client = FakeTesseract(tesseract_data())
        fragments = TesseractAdapter(client=client).recognize(page, ["ar", "ar-EG"])

        assert len(fragments) == 2
        assert fragments[0].text == "مرحبا بكم\nجميعا"
        assert fragments[0].confidence == pytest.approx(0.8)
        assert fragments[0].bbox.to_tuple() == (100, 10, 180, 50)
        assert fragments[1].text == "عالم"
        assert fragments[1].confidence == pytest.approx(0.6)

    def test_language_mapping(self, page):
        from magrecon.utils.ocr_text import TesseractAdapter

        client = FakeTesseract(tesseract_data())
        adapter = TesseractAdapter(client=client, timeout=30)

        adapter.recognize(page, ["ar", "ar-EG"])
        adapter.recognize(page, ["ar", "en"])
        adapter.recognize(page, ["xx-YY"])

        assert [c["lang"] for c in client.calls] == ["ara", "ara+eng", "ara"]
        assert client.calls[0]["timeout"] == 30
        assert client.calls[0]["config"] == "--oem 3 --psm 3"

    def test_engine_error_becomes_result(self, page):
        from magrecon.utils.ocr_text import TesseractAdapter

        client = FakeTesseract(error=RuntimeError("Tesseract process timeout"))
        result = TesseractAdapter(client=client).run_image(page)

        assert result.engine_id == "tesseract"
        assert "timeout" in result.error


class TestEasyOCRAdapter:
    """Test EasyOCRAdapter with a fake reader."""

    def test_recognize(self, page):
        from magrecon.utils.ocr_text import EasyOCRAdapter

        class Reader:
            def readtext(self, image, paragraph=False):
                return [
                    ([[10, 10], [110, 12], [110, 40], [8, 40]], "نص أول", 0.9),
                    ([[10, 60], [110, 60], [110, 90], [10, 90]], "  ", 0.4),
                ]

        result = EasyOCRAdapter(reader=Reader()).run_image(page)

        assert len(result.fragments) == 1
        assert result.fragments[0].text == "نص أول"
        assert result.fragments[0].bbox.to_tuple() == (8, 10, 102, 30)
        assert result.overall_confidence == pytest.approx(0.9)


class TestPaddleOCRAdapter:
    """Test PaddleOCRAdapter with a fake client."""

    def test_recognize(self, page):
        from magrecon.utils.ocr_text import PaddleOCRAdapter

        class Client:
            def ocr(self, image, cls=True):
                return [[
                    [[[20, 5], [200, 5], [200, 35], [20, 35]], ("عنوان", 0.95)],
                    [[[20, 50], [200, 50], [200, 70], [20, 70]], ("فقرة", 0.75)],
                ]]

        fragments = PaddleOCRAdapter(client=Client()).recognize(page, ["ar"])

        assert [f.text for f in fragments] == ["عنوان", "فقرة"]
        assert fragments[0].bbox.to_tuple() == (20, 5, 180, 30)

    def test_empty_result(self, page):
        from magrecon.utils.ocr_text import PaddleOCRAdapter

        class Client:
            def ocr(self, image, cls=True):
                return [None]

        assert PaddleOCRAdapter(client=Client()).recognize(page, ["ar"]) == []


class TestGoogleVisionAdapter:
    """Test GoogleVisionAdapter with a fake client."""

    def test_block_walk(self, page):
        from magrecon.utils.ocr_text import GoogleVisionAdapter

        client = FakeVisionClient(blocks=[
            vision_block([[("مجلة", 0.9), ("العرب", 0.7)], [("عدد", 0.8)]],
                         vertices=((5, 10), (305, 10), (305, 70), (5, 70))),
        ])

        fragments = GoogleVisionAdapter(client=client).recognize(page, ["ar", "ar-EG"])

        assert len(fragments) == 1
        assert fragments[0].text == "مجلة العرب\nعدد"
        assert fragments[0].confidence == pytest.approx(0.8)
        assert fragments[0].bbox.to_tuple() == (5, 10, 300, 60)

    def test_language_hints_and_content(self, page):
        from magrecon.utils.ocr_text import GoogleVisionAdapter

        client = FakeVisionClient()
        GoogleVisionAdapter(client=client).recognize(page, ["ar", "ar-EG"])

        request = client.requests[0]
        assert request["image_context"] == {"language_hints": ["ar", "ar-EG"]}
        assert request["image"]["content"][:8] == b"\x89PNG\r\n\x1a\n"

    def test_block_confidence_fallback(self, page):
        """Words without confidence fall back to the block confidence."""
        from magrecon.utils.ocr_text import GoogleVisionAdapter

        client = FakeVisionClient(blocks=[vision_block([[("نص", 0.0)]], block_conf=0.65)])
        fragments = GoogleVisionAdapter(client=client).recognize(page, ["ar"])

        assert fragments[0].confidence == pytest.approx(0.65)

    def test_api_error(self, page):
        from magrecon.utils.ocr_text import GoogleVisionAdapter

        client = FakeVisionClient(error_message="quota exceeded")
        result = GoogleVisionAdapter(client=client).run_image(page)

        assert result.engine_id == "google-vision"
        assert "quota exceeded" in result.error


class TestRegistry:
    """Test the adapter registry."""

    def test_registered_engines(self):
        from magrecon.utils.ocr_text import available_engines

        assert set(available_engines()) == {"tesseract", "easyocr", "paddleocr", "google-vision"}

    def test_unknown_engine(self):
        from magrecon.utils.ocr_text import create_adapter

        with pytest.raises(ValueError, match="Unknown OCR engine"):
            create_adapter("abbyy")

    def test_create_with_config(self):
        from magrecon.config import PipelineConfig
        from magrecon.utils.ocr_text import create_adapter, TesseractAdapter

        config = PipelineConfig()
        config.orchestrator.engine_timeout = 45
        adapter = create_adapter("tesseract", config, client=FakeTesseract())

        assert isinstance(adapter, TesseractAdapter)
        assert adapter.timeout == 45
        assert adapter.config == config.ocr.tesseract_config

    def test_create_vision_with_client(self):
        from magrecon.config import PipelineConfig
        from magrecon.utils.ocr_text import create_adapter

        client = FakeVisionClient()
        adapter = create_adapter("google-vision", PipelineConfig(), client=client)

        assert adapter.client is client

"""
Text OCR engine adapters for page reconstruction.

Provides:
- A common adapter interface returning positioned text fragments
- Engine adapters (Tesseract, EasyOCR, PaddleOCR, Google Cloud Vision)
- Failure-as-data engine results
- A name -> adapter registry
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple, Dict, Any, Sequence
import numpy as np

from .layout import BoundingBox, TextFragment

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE_HINTS = ("ar", "ar-EG")


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class EngineResult:
    """Output of one engine on one page."""
    engine_id: str
    full_text: str = ""
    overall_confidence: float = 0.0
    fragments: Tuple[TextFragment, ...] = ()
    processing_time_ms: int = 0
    error: Optional[str] = None
    column_count: int = 1

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def failure(
        cls,
        engine_id: str,
        error: str,
        processing_time_ms: int = 0,
        column_count: int = 1
    ) -> 'EngineResult':
        return cls(
            engine_id=engine_id,
            processing_time_ms=processing_time_ms,
            error=error,
            column_count=column_count
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "engine": self.engine_id,
            "text": self.full_text,
            "confidence": round(self.overall_confidence, 4),
            "fragments": [f.to_dict() for f in self.fragments],
            "processing_time_ms": self.processing_time_ms,
            "error": self.error,
            "column_count": self.column_count,
        }


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _mean(values: Sequence[float]) -> float:
    return float(np.mean(values)) if len(values) else 0.0


# ============================================================================
# Adapter Base Class
# ============================================================================

class OCREngineAdapter:
    """
    Base class for OCR engine adapters.

    Subclasses implement recognize(), which may raise. run() and run_image()
    never raise: any failure is reported in EngineResult.error.
    """

    engine_id = "base"

    def recognize(
        self,
        image: np.ndarray,
        language_hints: Sequence[str]
    ) -> List[TextFragment]:
        raise NotImplementedError

    def run_image(
        self,
        image: np.ndarray,
        language_hints: Optional[Sequence[str]] = None,
        x_offset: int = 0,
        column_index: int = 0
    ) -> EngineResult:
        """
        Recognize a decoded raster (a full page or a column strip).

        Fragment geometry is translated by x_offset into page space and
        fragments with empty text are dropped.
        """
        hints = list(language_hints or DEFAULT_LANGUAGE_HINTS)
        start = time.perf_counter()

        try:
            raw = self.recognize(image, hints)
        except Exception as e:
            logger.error(f"{self.engine_id} error: {e}")
            return EngineResult.failure(self.engine_id, str(e) or type(e).__name__,
                                        _elapsed_ms(start))

        fragments = []
        for fragment in raw:
            text = fragment.text.strip()
            if not text:
                continue
            if text != fragment.text:
                # Font size is per line, re-estimate if stripping removed lines
                size = fragment.estimated_font_size
                if text.count("\n") != fragment.text.count("\n"):
                    size = None
                fragment = replace(fragment, text=text, estimated_font_size=size)
            fragments.append(fragment.translated(x_offset, column_index))

        result = EngineResult(
            engine_id=self.engine_id,
            full_text="\n".join(f.text for f in fragments),
            overall_confidence=_mean([f.confidence for f in fragments]),
            fragments=tuple(fragments),
            processing_time_ms=_elapsed_ms(start)
        )
        logger.debug(
            f"{self.engine_id}: {len(fragments)} fragments, "
            f"confidence={result.overall_confidence:.2f}, {result.processing_time_ms}ms"
        )
        return result

    def run(
        self,
        image_bytes: bytes,
        language_hints: Optional[Sequence[str]] = None
    ) -> EngineResult:
        """Decode encoded page bytes and recognize them."""
        from .io import decode_image

        start = time.perf_counter()
        try:
            image = decode_image(image_bytes)
        except Exception as e:
            logger.error(f"{self.engine_id} could not decode image: {e}")
            return EngineResult.failure(self.engine_id, str(e), _elapsed_ms(start))

        return self.run_image(image, language_hints)


# ============================================================================
# Tesseract Adapter
# ============================================================================

class TesseractAdapter(OCREngineAdapter):
    """OCR using Tesseract via pytesseract."""

    engine_id = "tesseract"

    LANGUAGE_MAP = {
        "ar": "ara",
        "ar-EG": "ara",
        "en": "eng",
        "fr": "fra",
    }

    def __init__(
        self,
        client=None,
        config: str = "--oem 3 --psm 3",
        timeout: float = 0
    ):
        if client is None:
            try:
                import pytesseract
                # Fails fast when the tesseract binary is missing
                pytesseract.get_tesseract_version()
                client = pytesseract
            except Exception as e:
                raise ImportError(
                    f"Tesseract not available: {e}\n"
                    "Install with: pip install pytesseract\n"
                    "Also install Tesseract with Arabic data (tesseract-ocr-ara)"
                )

        self.pytesseract = client
        self.config = config
        self.timeout = timeout or 0

    def _language(self, hints: Sequence[str]) -> str:
        codes = []
        for hint in hints:
            code = self.LANGUAGE_MAP.get(hint)
            if code is None and len(hint) == 3:
                code = hint
            if code and code not in codes:
                codes.append(code)
        return "+".join(codes) or "ara"

    def recognize(self, image: np.ndarray, language_hints: Sequence[str]) -> List[TextFragment]:
        data = self.pytesseract.image_to_data(
            image,
            lang=self._language(language_hints),
            config=self.config,
            output_type=self.pytesseract.Output.DICT,
            timeout=self.timeout
        )

        # Group words into blocks, keeping line structure inside a block
        blocks: Dict[Tuple[int, int], Dict[str, Any]] = {}
        for i in range(len(data['text'])):
            text = str(data['text'][i]).strip()
            conf = float(data['conf'][i])
            if conf < 0 or not text:
                continue

            key = (data.get('page_num', [1] * len(data['text']))[i], data['block_num'][i])
            block = blocks.setdefault(key, {"lines": {}, "confs": [], "boxes": []})
            line_key = (data['par_num'][i], data['line_num'][i])
            block["lines"].setdefault(line_key, []).append(text)
            block["confs"].append(conf / 100.0)
            block["boxes"].append((
                data['left'][i],
                data['top'][i],
                data['left'][i] + data['width'][i],
                data['top'][i] + data['height'][i]
            ))

        fragments = []
        for block in blocks.values():
            text = "\n".join(" ".join(words) for words in block["lines"].values())
            boxes = block["boxes"]
            x1 = min(b[0] for b in boxes)
            y1 = min(b[1] for b in boxes)
            x2 = max(b[2] for b in boxes)
            y2 = max(b[3] for b in boxes)
            fragments.append(TextFragment(
                text=text,
                confidence=_mean(block["confs"]),
                bbox=BoundingBox(x1, y1, x2 - x1, y2 - y1)
            ))

        return fragments


# ============================================================================
# EasyOCR Adapter
# ============================================================================

class EasyOCRAdapter(OCREngineAdapter):
    """OCR using EasyOCR."""

    engine_id = "easyocr"

    LANGUAGE_MAP = {"ar": "ar", "ar-EG": "ar", "en": "en", "fa": "fa", "ur": "ur"}

    def __init__(
        self,
        reader=None,
        languages: Optional[List[str]] = None,
        use_gpu: bool = False
    ):
        if reader is None:
            try:
                import easyocr
            except ImportError:
                raise ImportError(
                    "EasyOCR not available. Install with: pip install easyocr"
                )

            reader = easyocr.Reader(
                languages or ["ar", "en"],
                gpu=use_gpu,
                verbose=False
            )

        self.reader = reader

    def recognize(self, image: np.ndarray, language_hints: Sequence[str]) -> List[TextFragment]:
        # EasyOCR fixes its languages when the reader is built
        detections = self.reader.readtext(image, paragraph=False)

        fragments = []
        for bbox_points, text, conf in detections:
            fragments.append(TextFragment(
                text=text,
                confidence=float(conf),
                bbox=BoundingBox.from_points(bbox_points)
            ))

        return fragments


# ============================================================================
# PaddleOCR Adapter
# ============================================================================

class PaddleOCRAdapter(OCREngineAdapter):
    """OCR using PaddleOCR."""

    engine_id = "paddleocr"

    def __init__(
        self,
        client=None,
        language: str = "arabic",
        use_gpu: bool = False
    ):
        if client is None:
            try:
                from paddleocr import PaddleOCR
                logging.getLogger('ppocr').setLevel(logging.WARNING)

                # Try new API first, fall back to old API
                try:
                    client = PaddleOCR(
                        use_angle_cls=True,
                        lang=language,
                        use_gpu=use_gpu
                    )
                except TypeError:
                    client = PaddleOCR(
                        use_angle_cls=True,
                        lang=language,
                        use_gpu=use_gpu,
                        show_log=False
                    )
            except ImportError:
                raise ImportError(
                    "PaddleOCR not available. Install with: pip install paddleocr"
                )
            except Exception as e:
                raise RuntimeError(f"Failed to initialize PaddleOCR: {e}")

        self.ocr = client

    def recognize(self, image: np.ndarray, language_hints: Sequence[str]) -> List[TextFragment]:
        result = self.ocr.ocr(image, cls=True)

        if not result or not result[0]:
            return []

        fragments = []
        for line_data in result[0]:
            if len(line_data) < 2:
                continue
            bbox_points = line_data[0]
            text, conf = line_data[1]
            fragments.append(TextFragment(
                text=text,
                confidence=float(conf),
                bbox=BoundingBox.from_points(bbox_points)
            ))

        return fragments


# ============================================================================
# Google Cloud Vision Adapter
# ============================================================================

class GoogleVisionAdapter(OCREngineAdapter):
    """
    OCR using Google Cloud Vision document text detection.

    Each Vision block becomes one fragment. Block text is rebuilt from the
    symbol level; the confidence is the mean word confidence, falling back
    to the block confidence when words carry none.
    """

    engine_id = "google-vision"

    def __init__(
        self,
        client=None,
        api_key: Optional[str] = None,
        credentials_path: Optional[str] = None
    ):
        if client is None:
            try:
                from google.cloud import vision
            except ImportError:
                raise ImportError(
                    "Google Cloud Vision not available. "
                    "Install with: pip install google-cloud-vision"
                )

            if api_key:
                client = vision.ImageAnnotatorClient(client_options={"api_key": api_key})
            elif credentials_path:
                client = vision.ImageAnnotatorClient.from_service_account_file(credentials_path)
            else:
                client = vision.ImageAnnotatorClient()

        self.client = client

    def recognize(self, image: np.ndarray, language_hints: Sequence[str]) -> List[TextFragment]:
        from .io import encode_image

        response = self.client.document_text_detection(
            image={"content": encode_image(image)},
            image_context={"language_hints": list(language_hints)}
        )

        if response.error and response.error.message:
            raise RuntimeError(f"Vision API error: {response.error.message}")

        annotation = response.full_text_annotation
        if not annotation:
            return []

        fragments = []
        for page in annotation.pages:
            for block in page.blocks:
                fragment = self._block_to_fragment(block)
                if fragment is not None:
                    fragments.append(fragment)

        return fragments

    @staticmethod
    def _block_to_fragment(block) -> Optional[TextFragment]:
        paragraphs = []
        word_confidences = []

        for paragraph in block.paragraphs:
            words = []
            for word in paragraph.words:
                words.append("".join(symbol.text for symbol in word.symbols))
                if word.confidence:
                    word_confidences.append(word.confidence)
            paragraphs.append(" ".join(words))

        text = "\n".join(paragraphs)
        if not text.strip():
            return None

        confidence = _mean(word_confidences) if word_confidences else float(block.confidence or 0.0)
        vertices = [(v.x or 0, v.y or 0) for v in block.bounding_box.vertices]

        return TextFragment(
            text=text,
            confidence=confidence,
            bbox=BoundingBox.from_points(vertices)
        )


# ============================================================================
# Engine Registry
# ============================================================================

ENGINE_REGISTRY = {
    TesseractAdapter.engine_id: TesseractAdapter,
    EasyOCRAdapter.engine_id: EasyOCRAdapter,
    PaddleOCRAdapter.engine_id: PaddleOCRAdapter,
    GoogleVisionAdapter.engine_id: GoogleVisionAdapter,
}


def available_engines() -> List[str]:
    return list(ENGINE_REGISTRY)


def create_adapter(name: str, config=None, **kwargs) -> OCREngineAdapter:
    """
    Create an OCR engine adapter by name.

    Args:
        name: Registered engine name
        config: Optional PipelineConfig supplying engine settings
        **kwargs: Constructor arguments, overriding config-derived ones

    Raises:
        ValueError: If the engine name is unknown
        ImportError: If the engine's library is not installed
    """
    if name not in ENGINE_REGISTRY:
        raise ValueError(f"Unknown OCR engine: {name}")

    options: Dict[str, Any] = {}
    if config is not None:
        if name == "tesseract":
            options["config"] = config.ocr.tesseract_config
            options["timeout"] = config.orchestrator.engine_timeout or 0
        elif name in ("easyocr", "paddleocr"):
            options["use_gpu"] = config.use_gpu
        elif name == "google-vision":
            options["api_key"] = config.ocr.google_api_key
            options["credentials_path"] = config.ocr.google_credentials
    options.update(kwargs)

    return ENGINE_REGISTRY[name](**options)

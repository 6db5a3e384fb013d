"""
Utility modules for the page reconstruction engine.
"""

from .io import load_pdf, load_image_bytes, decode_image, encode_image, save_json, ensure_dir
from .images import preprocess_image, preprocess_bytes, enhance_page
from .columns import ColumnDetector, ColumnSplitter, ColumnDetectionResult, ColumnStrip
from .layout import (
    BoundingBox, TextFragment, StructuralRole, BlockClassifier, ReadingOrderSorter
)
from .ocr_text import (
    EngineResult, OCREngineAdapter, TesseractAdapter, EasyOCRAdapter,
    PaddleOCRAdapter, GoogleVisionAdapter, ENGINE_REGISTRY, create_adapter
)
from .scoring import QualityScorer
from .assembler import (
    PageReconstructor, EngineSelector, OrchestratedResult, AccuracyMetrics, SelectorState
)
from .export import TextStructureBuilder, MarkdownExporter, DocumentExporter

__all__ = [
    # IO
    "load_pdf", "load_image_bytes", "decode_image", "encode_image", "save_json", "ensure_dir",
    # Images
    "preprocess_image", "preprocess_bytes", "enhance_page",
    # Columns
    "ColumnDetector", "ColumnSplitter", "ColumnDetectionResult", "ColumnStrip",
    # Layout
    "BoundingBox", "TextFragment", "StructuralRole", "BlockClassifier", "ReadingOrderSorter",
    # OCR
    "EngineResult", "OCREngineAdapter", "TesseractAdapter", "EasyOCRAdapter",
    "PaddleOCRAdapter", "GoogleVisionAdapter", "ENGINE_REGISTRY", "create_adapter",
    # Scoring
    "QualityScorer",
    # Assembly
    "PageReconstructor", "EngineSelector", "OrchestratedResult", "AccuracyMetrics", "SelectorState",
    # Export
    "TextStructureBuilder", "MarkdownExporter", "DocumentExporter",
]

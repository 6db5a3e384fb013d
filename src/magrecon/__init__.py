"""
Magazine Page Reconstruction
============================

An OCR orchestration and reconstruction engine for scanned magazine and
newspaper pages, primarily right-to-left Arabic print.

Main components:
- Image preprocessing (EXIF rotation, contrast, denoise, sharpen)
- Column detection and right-to-left column splitting
- OCR engine adapters (Tesseract, EasyOCR, PaddleOCR, Google Cloud Vision)
- Reading order and font-size based structural roles
- Multi-engine selection by quality score
"""

__version__ = "1.0.0"
__author__ = "Magazine Reconstruction Team"

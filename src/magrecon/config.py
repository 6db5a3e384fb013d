"""
Configuration and constants for the magazine page reconstruction engine.

This module provides:
- Logging setup shared by the CLI and library users
- Column detection and reading order parameters
- Block classification and quality scoring weights
- OCR engine and orchestrator settings
"""

import os
from dataclasses import dataclass, field
from typing import Optional, List
import logging

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger("magrecon")


def setup_logging(level: int = logging.INFO) -> None:
    """Configure root logging the way the CLI expects it."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # Engine libraries are chatty at INFO
    logging.getLogger('ppocr').setLevel(logging.WARNING)
    logging.getLogger('easyocr').setLevel(logging.WARNING)


# ============================================================================
# Processing Configuration
# ============================================================================

@dataclass
class ImageConfig:
    """Page preprocessing configuration."""
    preprocess: bool = True
    auto_rotate: bool = True  # EXIF orientation only, no skew detection
    grayscale: bool = True
    normalize: bool = True
    contrast_gain: float = 1.15
    contrast_bias: float = -10.0
    median_kernel: int = 3
    sharpen_sigma: float = 1.2
    sharpen_amount: float = 0.8


@dataclass
class ColumnConfig:
    """Column detection configuration."""
    sample_strips: int = 5
    brightness_threshold: int = 200
    min_gap_ratio: float = 0.015  # Gap candidate width, fraction of page width
    cluster_ratio: float = 0.02  # Gap centers within this fraction are one gap
    min_strip_support: float = 0.6
    min_confidence: float = 0.35
    max_confidence: float = 0.95
    ignore_margin_gaps: bool = True


@dataclass
class ReadingOrderConfig:
    """Reading order configuration."""
    line_tolerance: int = 20
    # Columns whose first fragments start within this many pixels are read
    # strictly right-to-left. Needs calibration against real scans.
    column_alignment_tolerance: int = 200


@dataclass
class ClassifierConfig:
    """Font-size based block classification thresholds."""
    default_font_size: float = 16.0
    title_ratio: float = 1.8
    title_max_words: int = 10
    subtitle_ratio: float = 1.4
    subtitle_max_words: int = 15
    heading_ratio: float = 1.2
    heading_max_words: int = 20
    caption_ratio: float = 0.8
    title_zone: float = 0.15  # Top fraction of content height eligible for titles
    max_detected_titles: int = 5


@dataclass
class ScoringWeights:
    """Quality score weights (0-100 budget)."""
    confidence: float = 40.0
    length_tiers: List[tuple] = field(default_factory=lambda: [
        (100, 10.0), (500, 5.0), (1000, 5.0)
    ])
    script_ratio: float = 20.0
    fragment_tiers: List[tuple] = field(default_factory=lambda: [
        (3, 5.0), (10, 5.0)
    ])
    fragment_confidence: float = 10.0
    close_margin: float = 5.0


@dataclass
class OCRConfig:
    """OCR engine configuration."""
    tesseract_config: str = "--oem 3 --psm 3"
    google_api_key: Optional[str] = None
    google_credentials: Optional[str] = None
    # Confidence buckets for accuracy metrics
    high_confidence_threshold: float = 0.80
    low_confidence_threshold: float = 0.60


@dataclass
class OrchestratorConfig:
    """Engine selection configuration."""
    engines: List[str] = field(default_factory=lambda: ["tesseract", "easyocr"])
    prefer_engine: str = "best"
    run_parallel: bool = True
    parallel_columns: bool = False
    detect_columns: bool = True
    confidence_threshold: float = 0.3
    engine_timeout: Optional[float] = 120.0  # Seconds, None = unbounded
    language_hints: List[str] = field(default_factory=lambda: ["ar", "ar-EG"])


@dataclass
class PipelineConfig:
    """Main pipeline configuration."""
    image: ImageConfig = field(default_factory=ImageConfig)
    columns: ColumnConfig = field(default_factory=ColumnConfig)
    reading_order: ReadingOrderConfig = field(default_factory=ReadingOrderConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    scoring: ScoringWeights = field(default_factory=ScoringWeights)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)

    # Global settings
    use_gpu: bool = False
    debug_mode: bool = False


# ============================================================================
# Default Configuration Instance
# ============================================================================

def get_config() -> PipelineConfig:
    """Get the default pipeline configuration with environment overrides."""
    config = PipelineConfig()

    if os.environ.get("MAGRECON_USE_GPU", "").lower() == "true":
        config.use_gpu = True

    if os.environ.get("MAGRECON_DEBUG", "").lower() == "true":
        config.debug_mode = True

    engines = os.environ.get("MAGRECON_ENGINES")
    if engines:
        config.orchestrator.engines = [e.strip() for e in engines.split(",") if e.strip()]

    prefer = os.environ.get("MAGRECON_PREFER_ENGINE")
    if prefer:
        config.orchestrator.prefer_engine = prefer

    threshold = os.environ.get("MAGRECON_CONFIDENCE_THRESHOLD")
    if threshold:
        config.orchestrator.confidence_threshold = float(threshold)

    timeout = os.environ.get("MAGRECON_ENGINE_TIMEOUT")
    if timeout:
        config.orchestrator.engine_timeout = float(timeout) if float(timeout) > 0 else None

    if os.environ.get("MAGRECON_SEQUENTIAL", "").lower() == "true":
        config.orchestrator.run_parallel = False

    # Cloud Vision credentials from environment
    config.ocr.google_api_key = os.environ.get("GOOGLE_CLOUD_VISION_API_KEY")
    config.ocr.google_credentials = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")

    return config


# ============================================================================
# JSON Schema Version
# ============================================================================

JSON_SCHEMA_VERSION = "1.0"


# ============================================================================
# Utility Functions
# ============================================================================

def check_gpu_available() -> bool:
    """Check if GPU is available for engine inference."""
    try:
        import torch
        return torch.cuda.is_available()
    except ImportError:
        return False

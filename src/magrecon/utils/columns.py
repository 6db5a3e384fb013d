"""
Column detection and splitting for magazine pages.

Provides:
- Whitespace-gap column detection on sampled horizontal strips
- Aspect-ratio fallback for pages without visible gutters
- Right-to-left column splitting with page-space offsets
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Dict, Any
import numpy as np

from magrecon.config import ColumnConfig

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class ColumnDetectionResult:
    """Result of column detection on one page."""
    has_columns: bool
    estimated_columns: int
    confidence: float
    valid_gaps: Tuple[float, ...] = ()
    method: str = "none"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_columns": self.has_columns,
            "estimated_columns": self.estimated_columns,
            "confidence": round(self.confidence, 4),
            "valid_gaps": list(self.valid_gaps),
            "method": self.method,
        }


@dataclass
class ColumnStrip:
    """A vertical strip of the page read as one column."""
    index: int  # 0 = rightmost
    x_offset: int
    width: int
    image: np.ndarray = field(repr=False)

    def to_bytes(self) -> bytes:
        """Encode the strip as PNG."""
        from .io import encode_image
        return encode_image(self.image)


# ============================================================================
# Column Detection
# ============================================================================

class ColumnDetector:
    """
    Detects multi-column layouts from vertical whitespace gutters.

    A fixed number of rows is sampled across the page. On each row, runs of
    bright pixels wide enough to be a gutter are recorded by their center.
    Centers that line up across enough rows are treated as column gaps.
    """

    def __init__(self, config: Optional[ColumnConfig] = None):
        self.config = config or ColumnConfig()

    def detect(
        self,
        image: np.ndarray,
        manual_column_count: Optional[int] = None
    ) -> ColumnDetectionResult:
        """
        Detect the number of columns on a page.

        Args:
            image: Page raster (grayscale or BGR)
            manual_column_count: Caller override; 1 forces single column,
                >1 forces that many columns, None/0 runs detection

        Returns:
            ColumnDetectionResult

        Raises:
            ValueError: If manual_column_count is negative
        """
        if manual_column_count is not None:
            if manual_column_count < 0:
                raise ValueError(f"Invalid column count: {manual_column_count}")
            if manual_column_count > 1:
                return ColumnDetectionResult(True, manual_column_count, 1.0, method="manual")
            if manual_column_count == 1:
                return ColumnDetectionResult(False, 1, 1.0, method="manual")

        if image is None or image.size == 0:
            return ColumnDetectionResult(False, 1, 0.0)

        from .images import to_grayscale
        gray = to_grayscale(image)
        height, width = gray.shape[:2]

        if width == 0 or height == 0:
            return ColumnDetectionResult(False, 1, 0.0)

        strips = self.config.sample_strips
        strip_gaps = [self._find_gaps(gray[y]) for y in self._sample_rows(height)]

        clusters = self._cluster_gaps(strip_gaps, width)
        min_support = math.ceil(self.config.min_strip_support * strips)
        valid = [c for c in clusters if len(c["strips"]) >= min_support]

        if valid:
            columns = len(valid) + 1
            avg_support = np.mean([len(c["strips"]) / strips for c in valid])
            confidence = min(self.config.max_confidence, 0.5 + avg_support * 0.45)
            method = "gaps"
            gaps = tuple(sorted(float(c["center"]) for c in valid))
        else:
            columns, confidence = self._aspect_ratio_fallback(width, height)
            method = "aspect_ratio" if columns > 1 else "none"
            gaps = ()

        has_columns = columns > 1 and confidence > self.config.min_confidence
        if not has_columns:
            columns = 1

        logger.debug(
            f"Column detection: {columns} column(s), confidence={confidence:.2f}, "
            f"method={method}, gaps={list(gaps)}"
        )

        return ColumnDetectionResult(
            has_columns=has_columns,
            estimated_columns=columns,
            confidence=float(confidence),
            valid_gaps=gaps,
            method=method
        )

    def _sample_rows(self, height: int) -> List[int]:
        step = height // (self.config.sample_strips + 1)
        return [min(k * step, height - 1) for k in range(1, self.config.sample_strips + 1)]

    def _find_gaps(self, row: np.ndarray) -> List[float]:
        """Return centers of bright runs wide enough to be a gutter."""
        width = row.shape[0]
        min_gap = width * self.config.min_gap_ratio

        bright = (row > self.config.brightness_threshold).astype(np.int8)
        edges = np.diff(np.concatenate(([0], bright, [0])))
        starts = np.where(edges == 1)[0]
        ends = np.where(edges == -1)[0]

        centers = []
        for start, end in zip(starts, ends):
            if end - start < min_gap:
                continue
            # Runs touching the page border are margins
            if self.config.ignore_margin_gaps and (start == 0 or end == width):
                continue
            centers.append((start + end) / 2.0)

        return centers

    def _cluster_gaps(
        self,
        strip_gaps: List[List[float]],
        width: int
    ) -> List[Dict[str, Any]]:
        """Group gap centers from different strips that line up vertically."""
        tolerance = width * self.config.cluster_ratio
        clusters: List[Dict[str, Any]] = []

        for strip_idx, centers in enumerate(strip_gaps):
            for center in centers:
                for cluster in clusters:
                    if abs(cluster["center"] - center) < tolerance:
                        cluster["strips"].add(strip_idx)
                        break
                else:
                    clusters.append({"center": center, "strips": {strip_idx}})

        return clusters

    @staticmethod
    def _aspect_ratio_fallback(width: int, height: int) -> Tuple[int, float]:
        """Guess columns from page shape when no gutter is visible."""
        ratio = width / height
        if ratio > 2.5:
            return 4, 0.5
        if ratio > 2.0:
            return 3, 0.5
        if ratio > 1.5:
            return 2, 0.4
        return 1, 0.3


# ============================================================================
# Column Splitting
# ============================================================================

class ColumnSplitter:
    """Cuts a page into equal-width column strips, rightmost first."""

    def split(self, image: np.ndarray, num_columns: int) -> List[ColumnStrip]:
        """
        Split a page into column strips.

        Strip 0 is the rightmost column and absorbs the width remainder, so
        strip widths always sum to the page width.

        Args:
            image: Page raster
            num_columns: Number of columns (< 2 returns the whole page)

        Returns:
            List of ColumnStrip ordered right-to-left
        """
        width = image.shape[1]

        if num_columns < 2 or width < num_columns:
            return [ColumnStrip(index=0, x_offset=0, width=width, image=image)]

        column_width = width // num_columns
        strips = []

        for i in range(num_columns):
            left = (num_columns - 1 - i) * column_width
            strip_width = width - left if i == 0 else column_width
            strips.append(ColumnStrip(
                index=i,
                x_offset=left,
                width=strip_width,
                image=image[:, left:left + strip_width]
            ))

        logger.debug(
            f"Split page into {num_columns} columns: "
            f"{[(s.x_offset, s.width) for s in strips]}"
        )
        return strips

"""
Layout module for page reconstruction.

Provides:
- Fragment geometry (page-space bounding boxes)
- Font-size based structural role classification
- Right-to-left reading order within and across columns
"""

import heapq
import logging
import math
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple, Dict, Any, Sequence
from enum import Enum

from magrecon.config import ClassifierConfig, ReadingOrderConfig

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes and Enums
# ============================================================================

class StructuralRole(Enum):
    """Structural roles of text fragments on a magazine page."""
    TITLE = "title"
    SUBTITLE = "subtitle"
    HEADING = "heading"
    BODY = "body"
    CAPTION = "caption"


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in page pixel coordinates."""
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def translated(self, dx: float = 0, dy: float = 0) -> 'BoundingBox':
        return BoundingBox(self.x + dx, self.y + dy, self.width, self.height)

    def to_tuple(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.width, self.height)

    @classmethod
    def from_points(cls, points: Sequence[Sequence[float]]) -> 'BoundingBox':
        """Bounding box of a polygon given as [(x, y), ...]."""
        xs = [float(p[0]) for p in points]
        ys = [float(p[1]) for p in points]
        if not xs:
            return cls(0, 0, 0, 0)
        return cls(min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def estimate_font_size(height: float, text: str) -> int:
    """
    Estimate font size in points from box height and line count.

    A line box is roughly 4/3 of the font size, hence the 0.75 factor.
    """
    line_count = max(1, text.count("\n") + 1)
    return round_half_up(0.75 * height / line_count)


@dataclass
class TextFragment:
    """One OCR-detected text block."""
    text: str
    confidence: float
    bbox: BoundingBox
    estimated_font_size: Optional[float] = None
    role: StructuralRole = StructuralRole.BODY
    column_index: int = 0

    def __post_init__(self):
        if self.estimated_font_size is None:
            self.estimated_font_size = estimate_font_size(self.bbox.height, self.text)

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    def translated(self, dx: float, column_index: int = 0) -> 'TextFragment':
        """Copy moved into page space from a column strip."""
        return replace(self, bbox=self.bbox.translated(dx), column_index=column_index)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "confidence": round(self.confidence, 4),
            "bbox": {
                "x": self.bbox.x,
                "y": self.bbox.y,
                "width": self.bbox.width,
                "height": self.bbox.height,
            },
            "estimated_font_size": self.estimated_font_size,
            "role": self.role.value,
            "column_index": self.column_index,
        }


# ============================================================================
# Block Classification
# ============================================================================

class BlockClassifier:
    """
    Assigns structural roles from font size relative to the page average.

    Large, short fragments are titles; fragments noticeably smaller than
    the page average are captions; everything else is body text.
    """

    def __init__(self, config: Optional[ClassifierConfig] = None):
        self.config = config or ClassifierConfig()

    def average_font_size(self, fragments: Sequence[TextFragment]) -> float:
        if not fragments:
            return self.config.default_font_size
        avg = sum(f.estimated_font_size for f in fragments) / len(fragments)
        return avg if avg > 0 else self.config.default_font_size

    def role_for(self, fragment: TextFragment, avg_font_size: float) -> StructuralRole:
        """Role of one fragment given the page average font size."""
        cfg = self.config
        if avg_font_size <= 0:
            avg_font_size = cfg.default_font_size

        ratio = fragment.estimated_font_size / avg_font_size
        words = fragment.word_count

        if ratio >= cfg.title_ratio and words <= cfg.title_max_words:
            return StructuralRole.TITLE
        if ratio >= cfg.subtitle_ratio and words <= cfg.subtitle_max_words:
            return StructuralRole.SUBTITLE
        if ratio >= cfg.heading_ratio and words <= cfg.heading_max_words:
            return StructuralRole.HEADING
        if ratio <= cfg.caption_ratio:
            return StructuralRole.CAPTION
        return StructuralRole.BODY

    def classify(
        self,
        fragments: Sequence[TextFragment],
        avg_font_size: Optional[float] = None
    ) -> List[TextFragment]:
        """
        Return classified copies of the fragments.

        Args:
            fragments: Fragments to classify (not modified)
            avg_font_size: Page average; computed from fragments if None.
                Pass the page-wide value when classifying a single column.
        """
        if avg_font_size is None:
            avg_font_size = self.average_font_size(fragments)

        return [replace(f, role=self.role_for(f, avg_font_size)) for f in fragments]

    def detect_titles(self, fragments: Sequence[TextFragment]) -> List[str]:
        """Title/subtitle texts in the top band of the content area."""
        if not fragments:
            return []

        min_y = min(f.bbox.y for f in fragments)
        max_y = max(f.bbox.bottom for f in fragments)
        zone = self.config.title_zone * (max_y - min_y)

        titles = [
            f.text for f in fragments
            if f.role in (StructuralRole.TITLE, StructuralRole.SUBTITLE)
            and f.bbox.y - min_y < zone
        ]
        return titles[:self.config.max_detected_titles]


# ============================================================================
# Reading Order
# ============================================================================

class ReadingOrderSorter:
    """Top-to-bottom, right-to-left ordering for Arabic pages."""

    def __init__(self, config: Optional[ReadingOrderConfig] = None):
        self.config = config or ReadingOrderConfig()

    def precedes(self, a: TextFragment, b: TextFragment) -> bool:
        """
        Whether fragment a must be read before fragment b.

        Fragments whose top edges lie within line_tolerance share a line and
        read right to left; otherwise the higher fragment comes first.
        """
        dy = b.bbox.y - a.bbox.y
        if abs(dy) <= self.config.line_tolerance:
            return a.bbox.x > b.bbox.x
        return dy > 0

    def sort(self, fragments: Sequence[TextFragment]) -> List[TextFragment]:
        """
        Sort the fragments of a single column.

        Every pair ends up in the order required by precedes() whenever such
        an order exists. Line membership is pairwise, so a fragment may sit
        on the same line as two fragments that are not on a line together.

        Returns:
            Fragments in reading order (a new list)
        """
        if not fragments:
            return []

        n = len(fragments)
        successors: List[List[int]] = [[] for _ in range(n)]
        indegree = [0] * n
        for i in range(n):
            for j in range(n):
                if i != j and self.precedes(fragments[i], fragments[j]):
                    successors[i].append(j)
                    indegree[j] += 1

        def key(i: int) -> Tuple[float, float, int]:
            return (fragments[i].bbox.y, -fragments[i].bbox.x, i)

        ready = [key(i) for i in range(n) if indegree[i] == 0]
        heapq.heapify(ready)
        placed = [False] * n
        ordered: List[TextFragment] = []

        while len(ordered) < n:
            if ready:
                i = heapq.heappop(ready)[2]
            else:
                # Cyclic line chain: no order satisfies every pair
                i = min((k for k in range(n) if not placed[k]), key=key)
                logger.debug(f"Reading order cycle broken at fragment y={fragments[i].bbox.y}")
            if placed[i]:
                continue
            placed[i] = True
            ordered.append(fragments[i])
            for j in successors[i]:
                indegree[j] -= 1
                if indegree[j] == 0 and not placed[j]:
                    heapq.heappush(ready, key(j))

        if ordered[0].bbox.y > ordered[-1].bbox.y + self.config.line_tolerance:
            logger.warning("Reading order came out bottom-to-top, reversing")
            ordered.reverse()

        return ordered

    def order_columns(
        self,
        columns: Sequence[Sequence[TextFragment]]
    ) -> List[Tuple[int, List[TextFragment]]]:
        """
        Sort each column and decide the order columns are read in.

        Columns are grouped into bands by the page-Y of their topmost
        fragment: a column joins the current band while its top lies within
        column_alignment_tolerance of the band's first top. Bands read top
        to bottom, columns inside a band by index (right to left). Empty
        columns belong to the first band.

        Args:
            columns: Fragment lists indexed by column (0 = rightmost)

        Returns:
            List of (column_index, sorted fragments) in reading order
        """
        sorted_columns = [(idx, self.sort(col)) for idx, col in enumerate(columns)]
        tolerance = self.config.column_alignment_tolerance

        by_top = sorted(
            (col for col in sorted_columns if col[1]),
            key=lambda col: (col[1][0].bbox.y, col[0])
        )

        band_of: Dict[int, int] = {idx: 0 for idx, frags in sorted_columns if not frags}
        band = 0
        anchor = None
        for idx, frags in by_top:
            top = frags[0].bbox.y
            if anchor is not None and top - anchor >= tolerance:
                band += 1
                anchor = top
            elif anchor is None:
                anchor = top
            band_of[idx] = band

        return sorted(sorted_columns, key=lambda col: (band_of[col[0]], col[0]))

    def sort_columns(
        self,
        columns: Sequence[Sequence[TextFragment]]
    ) -> List[TextFragment]:
        """Flattened reading order across columns."""
        return [f for _, col in self.order_columns(columns) for f in col]

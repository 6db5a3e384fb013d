"""
Tests for column detection and splitting.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class TestColumnDetector:
    """Test ColumnDetector."""

    def test_two_column_page(self, two_column_page):
        """A clear gutter on every sampled row gives two columns."""
        from magrecon.utils.columns import ColumnDetector

        result = ColumnDetector().detect(two_column_page)

        assert result.has_columns is True
        assert result.estimated_columns == 2
        assert result.confidence > 0.7
        assert result.confidence == pytest.approx(0.95)
        assert result.valid_gaps == (600.0,)
        assert result.method == "gaps"

    def test_three_column_page(self):
        """Two gutters give three columns."""
        from magrecon.utils.columns import ColumnDetector

        img = np.ones((1600, 1200), dtype=np.uint8) * 255
        img[100:1500, 40:380] = 0
        img[100:1500, 420:780] = 0
        img[100:1500, 820:1160] = 0

        result = ColumnDetector().detect(img)

        assert result.has_columns is True
        assert result.estimated_columns == 3
        assert result.valid_gaps == (400.0, 800.0)

    def test_single_column_page(self, single_column_page):
        """White margins are not column gaps."""
        from magrecon.utils.columns import ColumnDetector

        result = ColumnDetector().detect(single_column_page)

        assert result.has_columns is False
        assert result.estimated_columns == 1
        assert result.confidence == pytest.approx(0.3)

    def test_blank_portrait_page(self):
        """A page without any gap is a single column."""
        from magrecon.utils.columns import ColumnDetector

        img = np.ones((800, 600), dtype=np.uint8) * 255
        result = ColumnDetector().detect(img)

        assert result.has_columns is False
        assert result.estimated_columns == 1
        assert result.method == "none"

    def test_solid_dark_page(self):
        """A page with no bright pixels has no gaps."""
        from magrecon.utils.columns import ColumnDetector

        img = np.zeros((800, 600), dtype=np.uint8)
        result = ColumnDetector().detect(img)

        assert result.estimated_columns == 1
        assert result.has_columns is False

    def test_color_input(self, two_column_page):
        """BGR input is converted to grayscale."""
        import cv2
        from magrecon.utils.columns import ColumnDetector

        color = cv2.cvtColor(two_column_page, cv2.COLOR_GRAY2BGR)
        result = ColumnDetector().detect(color)

        assert result.estimated_columns == 2

    def test_narrow_gap_ignored(self):
        """Bright runs narrower than the minimum gap width are not gutters."""
        from magrecon.utils.columns import ColumnDetector

        img = np.ones((1600, 1200), dtype=np.uint8) * 255
        # 10px gap, below 1.5% of 1200
        img[100:1500, 60:595] = 0
        img[100:1500, 605:1140] = 0

        result = ColumnDetector().detect(img)

        assert result.estimated_columns == 1

    def test_gap_on_few_rows_ignored(self):
        """A gutter visible on too few sampled rows is not a column gap."""
        from magrecon.utils.columns import ColumnDetector

        img = np.ones((1600, 1200), dtype=np.uint8) * 255
        img[100:1500, 60:1140] = 0
        # Gutter only between y=200 and y=400 (one sampled row)
        img[200:400, 582:618] = 255

        result = ColumnDetector().detect(img)

        assert result.estimated_columns == 1

    def test_wide_page_aspect_fallback(self):
        """Very wide pages without gaps fall back to the aspect ratio."""
        from magrecon.utils.columns import ColumnDetector

        detector = ColumnDetector()

        result = detector.detect(np.ones((1000, 3000), dtype=np.uint8) * 255)
        assert result.estimated_columns == 4
        assert result.confidence == pytest.approx(0.5)
        assert result.method == "aspect_ratio"

        result = detector.detect(np.ones((1000, 2200), dtype=np.uint8) * 255)
        assert result.estimated_columns == 3

        result = detector.detect(np.ones((1000, 1700), dtype=np.uint8) * 255)
        assert result.estimated_columns == 2
        assert result.confidence == pytest.approx(0.4)
        assert result.has_columns is True

    def test_manual_column_count(self, single_column_page):
        """Manual overrides short-circuit detection."""
        from magrecon.utils.columns import ColumnDetector

        detector = ColumnDetector()

        result = detector.detect(single_column_page, manual_column_count=3)
        assert (result.has_columns, result.estimated_columns, result.confidence) == (True, 3, 1.0)
        assert result.method == "manual"

        result = detector.detect(single_column_page, manual_column_count=1)
        assert (result.has_columns, result.estimated_columns, result.confidence) == (False, 1, 1.0)

    def test_manual_zero_runs_detection(self, two_column_page):
        from magrecon.utils.columns import ColumnDetector

        result = ColumnDetector().detect(two_column_page, manual_column_count=0)

        assert result.estimated_columns == 2
        assert result.method == "gaps"

    def test_negative_column_count(self, two_column_page):
        from magrecon.utils.columns import ColumnDetector

        with pytest.raises(ValueError):
            ColumnDetector().detect(two_column_page, manual_column_count=-1)

    def test_empty_image(self):
        from magrecon.utils.columns import ColumnDetector

        result = ColumnDetector().detect(np.zeros((0, 0), dtype=np.uint8))

        assert (result.has_columns, result.estimated_columns, result.confidence) == (False, 1, 0.0)

    def test_deterministic(self, two_column_page):
        """The same raster always gives the same result."""
        from magrecon.utils.columns import ColumnDetector

        detector = ColumnDetector()
        assert detector.detect(two_column_page) == detector.detect(two_column_page)

    def test_result_to_dict(self, two_column_page):
        from magrecon.utils.columns import ColumnDetector

        data = ColumnDetector().detect(two_column_page).to_dict()

        assert data["estimated_columns"] == 2
        assert data["valid_gaps"] == [600.0]


class TestColumnSplitter:
    """Test ColumnSplitter."""

    def test_split_two_columns(self, two_column_page):
        """Strip 0 is the rightmost column."""
        from magrecon.utils.columns import ColumnSplitter

        strips = ColumnSplitter().split(two_column_page, 2)

        assert [s.index for s in strips] == [0, 1]
        assert [s.x_offset for s in strips] == [600, 0]
        assert [s.width for s in strips] == [600, 600]
        assert sum(s.width for s in strips) == two_column_page.shape[1]
        assert strips[0].image.shape == (1600, 600)

    def test_remainder_goes_to_rightmost(self):
        from magrecon.utils.columns import ColumnSplitter

        img = np.ones((100, 1001), dtype=np.uint8)
        strips = ColumnSplitter().split(img, 2)

        assert [s.x_offset for s in strips] == [500, 0]
        assert [s.width for s in strips] == [501, 500]
        assert sum(s.width for s in strips) == 1001

    def test_three_columns_cover_page(self):
        from magrecon.utils.columns import ColumnSplitter

        img = np.ones((100, 1000), dtype=np.uint8)
        strips = ColumnSplitter().split(img, 3)

        assert [s.x_offset for s in strips] == [666, 333, 0]
        assert sum(s.width for s in strips) == 1000
        assert strips[0].x_offset + strips[0].width == 1000

    def test_single_column(self, two_column_page):
        from magrecon.utils.columns import ColumnSplitter

        strips = ColumnSplitter().split(two_column_page, 1)

        assert len(strips) == 1
        assert strips[0].x_offset == 0
        assert strips[0].width == 1200

    def test_strip_to_bytes(self, two_column_page):
        import cv2
        from magrecon.utils.columns import ColumnSplitter

        strip = ColumnSplitter().split(two_column_page, 2)[1]
        decoded = cv2.imdecode(np.frombuffer(strip.to_bytes(), np.uint8), cv2.IMREAD_GRAYSCALE)

        assert decoded.shape == (1600, 600)

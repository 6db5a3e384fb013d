"""
Export module for page reconstruction.

Provides:
- Structured text rendering of classified fragments (light Markdown)
- Markdown export of multi-page documents
- JSON export of per-page orchestration results
"""

import logging
import re
from pathlib import Path
from typing import Dict, Any, Optional, List, Union, Sequence, Tuple

from .layout import StructuralRole, TextFragment
from .io import save_json, save_text

logger = logging.getLogger(__name__)

EXCESS_NEWLINES_RE = re.compile(r'\n{4,}')


# ============================================================================
# Structured Text
# ============================================================================

class TextStructureBuilder:
    """
    Renders ordered, classified fragments as structured text.

    The first title on a page becomes a level-1 heading; any later title
    is demoted to level 2 so a page has a single top heading.
    """

    def build(self, columns: Sequence[Sequence[TextFragment]]) -> str:
        """
        Render columns already in reading order.

        Args:
            columns: Fragment lists in the order the columns are read

        Returns:
            Structured text, blocks and columns separated by a blank line
        """
        seen_title = False
        column_texts = []

        for column in columns:
            blocks = []
            for fragment in column:
                text = fragment.text.strip()
                if not text:
                    continue
                block, seen_title = self._render(fragment.role, text, seen_title)
                blocks.append(block)
            if blocks:
                column_texts.append("\n\n".join(blocks))

        return EXCESS_NEWLINES_RE.sub("\n\n\n", "\n\n".join(column_texts)).strip()

    def build_single(self, fragments: Sequence[TextFragment]) -> str:
        return self.build([fragments])

    @staticmethod
    def _render(role: StructuralRole, text: str, seen_title: bool) -> Tuple[str, bool]:
        if role == StructuralRole.TITLE:
            if not seen_title:
                return f"# {text}", True
            return f"## {text}", seen_title
        if role == StructuralRole.SUBTITLE:
            return f"## {text}", seen_title
        if role == StructuralRole.HEADING:
            return f"### {text}", seen_title
        if role == StructuralRole.CAPTION:
            return f"*{text}*", seen_title
        return text, seen_title


# ============================================================================
# Markdown Exporter
# ============================================================================

class MarkdownExporter:
    """Export reconstructed pages to a single Markdown file."""

    def __init__(self, include_page_breaks: bool = True):
        self.include_page_breaks = include_page_breaks

    def render(self, pages: Sequence[Any]) -> str:
        """Join page texts, separated by horizontal rules."""
        parts = [page.best_result.full_text.strip() for page in pages]
        separator = "\n\n---\n\n" if self.include_page_breaks else "\n\n"
        return separator.join(parts) + "\n"

    def export(
        self,
        pages: Sequence[Any],
        output_path: Union[str, Path]
    ) -> Path:
        """
        Export pages to a Markdown file.

        Args:
            pages: OrchestratedResult per page, in page order
            output_path: Output file path

        Returns:
            Path to the generated Markdown file
        """
        path = save_text(self.render(pages), output_path)
        logger.info(f"Exported Markdown to: {path}")
        return path


# ============================================================================
# JSON Exporter
# ============================================================================

class JsonExporter:
    """Export one JSON file per page."""

    def __init__(self, include_fragments: bool = True):
        self.include_fragments = include_fragments

    def export_page(
        self,
        page: Any,
        output_path: Union[str, Path],
        page_number: Optional[int] = None
    ) -> Path:
        data = page.to_dict(include_fragments=self.include_fragments)
        if page_number is not None:
            data = {"page_number": page_number, **data}
        return save_json(data, output_path)


# ============================================================================
# Multi-Format Exporter
# ============================================================================

class DocumentExporter:
    """Convenience class for exporting to multiple formats."""

    def __init__(
        self,
        output_dir: Union[str, Path],
        base_name: str = "document"
    ):
        self.output_dir = Path(output_dir)
        self.base_name = base_name

        self.markdown_exporter = MarkdownExporter()
        self.json_exporter = JsonExporter()

    def export(
        self,
        pages: Sequence[Any],
        formats: List[str] = None
    ) -> Dict[str, Any]:
        """
        Export reconstructed pages.

        Args:
            pages: OrchestratedResult per page
            formats: List of formats ('markdown', 'json', 'all')

        Returns:
            Dictionary mapping format to output path (list of paths for json)
        """
        if formats is None or "all" in formats:
            formats = ["markdown", "json"]

        self.output_dir.mkdir(parents=True, exist_ok=True)

        results: Dict[str, Any] = {}

        if "json" in formats:
            results["json"] = [
                self.json_exporter.export_page(
                    page, self.output_dir / f"page_{i:04d}.json", page_number=i
                )
                for i, page in enumerate(pages, 1)
            ]

        if "markdown" in formats:
            path = self.output_dir / f"{self.base_name}.md"
            results["markdown"] = self.markdown_exporter.export(pages, path)

        return results

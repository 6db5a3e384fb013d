#!/usr/bin/env python
"""
Command-line interface for the magazine page reconstruction engine.

Usage:
    magrecon --input <pdf_image_or_folder> --output <output_dir> [options]

Examples:
    # Process a scanned issue with the default engines
    magrecon --input issue.pdf --output ./output

    # Compare Tesseract and EasyOCR, preferring EasyOCR when both are valid
    magrecon --input page.jpg --output ./output --engines tesseract easyocr --prefer-engine easyocr

    # Force a three-column layout
    magrecon --input page.jpg --output ./output --columns 3
"""

import sys
import argparse
import logging
import time
from pathlib import Path
from typing import List, Optional, Tuple

from magrecon import __version__
from magrecon.config import setup_logging

logger = logging.getLogger("magrecon")


def setup_argparser() -> argparse.ArgumentParser:
    """Create argument parser."""
    from magrecon.utils.ocr_text import available_engines

    parser = argparse.ArgumentParser(
        description="Magazine page reconstruction - OCR Arabic magazine pages into structured text",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Process a PDF issue:
    magrecon --input issue.pdf --output ./output

  Run engines one after another with a 60s limit each:
    magrecon --input page.png --output ./output --sequential --timeout 60

  Process only specific pages:
    magrecon --input issue.pdf --output ./output --pages 1-5
        """
    )

    # Required arguments
    parser.add_argument(
        "--input", "-i",
        required=True,
        help="Input PDF file, page image, or folder of page images"
    )

    parser.add_argument(
        "--output", "-o",
        required=True,
        help="Output directory for generated files"
    )

    # Engine selection
    parser.add_argument(
        "--engines",
        nargs="+",
        choices=available_engines(),
        default=None,
        help="OCR engines to run (default: from configuration)"
    )

    parser.add_argument(
        "--prefer-engine",
        default=None,
        help="Engine to select whenever its result is valid (default: best score)"
    )

    parser.add_argument(
        "--confidence-threshold",
        type=float,
        default=None,
        help="Minimum engine confidence for a valid result (default: 0.3)"
    )

    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-engine timeout in seconds, 0 for none (default: 120)"
    )

    parser.add_argument(
        "--sequential",
        action="store_true",
        help="Run engines one after another instead of in parallel"
    )

    # Page handling
    parser.add_argument(
        "--columns",
        type=int,
        default=None,
        help="Number of columns on every page (default: detect)"
    )

    parser.add_argument(
        "--lang",
        default=None,
        help="Comma-separated language hints (default: ar,ar-EG)"
    )

    parser.add_argument(
        "--no-preprocessing",
        action="store_true",
        help="Disable image enhancement (grayscale, contrast, sharpen)"
    )

    parser.add_argument(
        "--dpi",
        type=int,
        default=300,
        help="DPI for PDF to image conversion (default: 300)"
    )

    parser.add_argument(
        "--pages",
        type=str,
        default=None,
        help="Page range to process, e.g., '1-5' or '1,3,5' (default: all)"
    )

    parser.add_argument(
        "--use-gpu",
        action="store_true",
        help="Use GPU for EasyOCR/PaddleOCR if available"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Show tracebacks on failure"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def parse_page_range(page_str: str, max_pages: int) -> List[int]:
    """Parse page range string to list of page numbers."""
    pages = []

    for part in page_str.split(","):
        part = part.strip()
        if "-" in part:
            start, end = part.split("-")
            start = max(int(start), 1)
            end = min(int(end), max_pages)
            pages.extend(range(start, end + 1))
        else:
            page = int(part)
            if 1 <= page <= max_pages:
                pages.append(page)

    return sorted(set(pages))


def check_dependencies() -> bool:
    """Check if required dependencies are available."""
    missing = []
    optional_missing = []

    try:
        import cv2
    except ImportError:
        missing.append("opencv-python")

    try:
        import numpy
    except ImportError:
        missing.append("numpy")

    try:
        import PIL
    except ImportError:
        missing.append("Pillow")

    # PDF support
    try:
        import pdf2image
    except ImportError:
        optional_missing.append("pdf2image (for PDF support)")

    if missing:
        logger.error("Missing required dependencies:")
        for dep in missing:
            logger.error(f"  - {dep}")
        logger.error("\nInstall with: pip install magrecon")
        return False

    if optional_missing:
        logger.warning("Missing optional dependencies (some features may be limited):")
        for dep in optional_missing:
            logger.warning(f"  - {dep}")

    return True


def build_config(args):
    """Apply command-line options on top of the environment configuration."""
    from magrecon.config import get_config, check_gpu_available

    config = get_config()

    if args.engines:
        config.orchestrator.engines = list(args.engines)
    if args.prefer_engine:
        config.orchestrator.prefer_engine = args.prefer_engine
    if args.confidence_threshold is not None:
        config.orchestrator.confidence_threshold = args.confidence_threshold
    if args.timeout is not None:
        config.orchestrator.engine_timeout = args.timeout if args.timeout > 0 else None
    if args.sequential:
        config.orchestrator.run_parallel = False
    if args.lang:
        config.orchestrator.language_hints = [l.strip() for l in args.lang.split(",") if l.strip()]
    if args.no_preprocessing:
        config.image.preprocess = False

    if args.use_gpu:
        if check_gpu_available():
            logger.info("GPU acceleration enabled")
            config.use_gpu = True
        else:
            logger.warning("GPU requested but not available, using CPU")

    return config


def load_pages(input_path: Path, dpi: int,
               page_range: Optional[str] = None) -> List[Tuple[int, bytes]]:
    """
    Load page images as (page number, encoded bytes) pairs.

    With a page range, a PDF is rendered only over the requested span
    when its page count can be read.
    """
    from magrecon.utils.io import (
        load_pdf, load_image_bytes, load_images_from_folder,
        detect_input_type, get_pdf_page_count
    )

    input_type = detect_input_type(input_path)
    logger.info(f"Input type detected: {input_type}")

    if input_type == "pdf":
        first_page = last_page = None
        if page_range:
            count = get_pdf_page_count(input_path)
            wanted = parse_page_range(page_range, count) if count > 0 else []
            if wanted:
                first_page, last_page = wanted[0], wanted[-1]
        logger.info(f"Converting PDF to images at {dpi} DPI...")
        pages = load_pdf(input_path, dpi=dpi, first_page=first_page, last_page=last_page)
        numbered = list(enumerate(pages, first_page or 1))
    elif input_type == "image":
        numbered = [(1, load_image_bytes(input_path))]
    elif input_type == "image_folder":
        numbered = list(enumerate(load_images_from_folder(input_path), 1))
    else:
        raise ValueError(f"Unsupported input type: {input_path}")

    if page_range and numbered:
        wanted = set(parse_page_range(page_range, numbered[-1][0]))
        numbered = [(n, page) for n, page in numbered if n in wanted]
        logger.info(f"Processing pages: {[n for n, _ in numbered]}")

    return numbered


def run_pipeline(args) -> int:
    """Run page reconstruction over every input page."""
    from magrecon.utils.io import ensure_dir
    from magrecon.utils.assembler import EngineSelector
    from magrecon.utils.export import DocumentExporter

    start_time = time.time()

    output_dir = ensure_dir(args.output)
    input_path = Path(args.input)

    try:
        numbered = load_pages(input_path, args.dpi, args.pages)
    except (ValueError, FileNotFoundError, RuntimeError, ImportError) as e:
        logger.error(str(e))
        return 1

    if not numbered:
        logger.error("No images to process")
        return 1

    logger.info(f"Loaded {len(numbered)} page(s)")
    page_numbers = [n for n, _ in numbered]
    pages = [page for _, page in numbered]

    config = build_config(args)
    selector = EngineSelector.from_config(config)

    results = []
    for number, page_bytes in zip(page_numbers, pages):
        logger.info(f"Processing page {number}")
        results.append(selector.process(page_bytes, manual_column_count=args.columns))

    exporter = DocumentExporter(output_dir, "document")
    export_results = exporter.export(results, ["markdown"])
    for number, result in zip(page_numbers, results):
        exporter.json_exporter.export_page(
            result, output_dir / f"page_{number:04d}.json", page_number=number
        )
    logger.info(f"Exported markdown: {export_results['markdown']}")

    elapsed = time.time() - start_time
    review = [n for n, r in zip(page_numbers, results) if r.needs_review]

    if not args.quiet:
        print("\n" + "=" * 60)
        print("PAGE RECONSTRUCTION COMPLETE")
        print("=" * 60)
        print(f"Source: {input_path}")
        print(f"Output: {output_dir}")
        print(f"Pages processed: {len(results)}")
        print(f"Processing time: {elapsed:.2f}s")
        print()
        for number, result in zip(page_numbers, results):
            metrics = result.accuracy_metrics
            flag = "  [REVIEW]" if result.needs_review else ""
            print(f"  Page {number}: {result.selected_engine} "
                  f"({metrics.overall_confidence_pct:.1f}%, "
                  f"{result.best_result.column_count} column(s)) - "
                  f"{result.selection_reason}{flag}")
        if review:
            print()
            print(f"Low confidence pages needing review: {review}")
        print("=" * 60)

    return 0


def main():
    """Main entry point."""
    parser = setup_argparser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        setup_logging(logging.DEBUG)
    elif args.quiet:
        setup_logging(logging.ERROR)
    else:
        setup_logging(logging.INFO)

    if not check_dependencies():
        sys.exit(1)

    try:
        exit_code = run_pipeline(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if args.debug:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()

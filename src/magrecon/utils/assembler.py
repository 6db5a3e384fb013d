"""
Page assembler module for magazine page reconstruction.

Provides:
- Per-engine page reconstruction (columns -> OCR -> order -> roles -> text)
- Multi-engine orchestration with timeouts and quality-based selection
- Accuracy metrics and the JSON envelope of a processed page
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any, Callable, Sequence, Tuple
import numpy as np

from magrecon.config import PipelineConfig, JSON_SCHEMA_VERSION
from .columns import ColumnDetector, ColumnSplitter, ColumnDetectionResult
from .export import TextStructureBuilder
from .layout import BlockClassifier, ReadingOrderSorter, TextFragment
from .ocr_text import EngineResult, OCREngineAdapter, create_adapter
from .scoring import QualityScorer

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

class SelectorState(Enum):
    """Lifecycle of one orchestration call."""
    IDLE = "idle"
    PREPROCESSING = "preprocessing"
    RUNNING = "running"
    SCORING = "scoring"
    SELECTED = "selected"
    FAILED = "failed"


@dataclass(frozen=True)
class AccuracyMetrics:
    """Confidence and structure summary of the selected result."""
    overall_confidence_pct: float = 0.0
    high_confidence_blocks_pct: float = 0.0
    low_confidence_blocks_pct: float = 0.0
    average_font_size: float = 16.0
    detected_titles: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_confidence_pct": round(self.overall_confidence_pct, 2),
            "high_confidence_blocks_pct": round(self.high_confidence_blocks_pct, 2),
            "low_confidence_blocks_pct": round(self.low_confidence_blocks_pct, 2),
            "average_font_size": round(self.average_font_size, 2),
            "detected_titles": list(self.detected_titles),
        }


@dataclass(frozen=True)
class OrchestratedResult:
    """Final artifact for one page."""
    selected_engine: str
    best_result: EngineResult
    all_results: Tuple[EngineResult, ...]
    selection_reason: str
    accuracy_metrics: AccuracyMetrics
    total_processing_time_ms: int = 0
    column_detection: Optional[ColumnDetectionResult] = None
    applied_preprocessing: Tuple[str, ...] = ()
    state: SelectorState = SelectorState.SELECTED
    confidence_threshold: float = 0.3

    @property
    def needs_review(self) -> bool:
        """True when no engine cleared the confidence threshold."""
        return (
            self.state == SelectorState.FAILED
            or self.best_result.failed
            or self.best_result.overall_confidence < self.confidence_threshold
        )

    def to_dict(self, include_fragments: bool = True) -> Dict[str, Any]:
        best = self.best_result.to_dict()
        if not include_fragments:
            best.pop("fragments")

        return {
            "schema_version": JSON_SCHEMA_VERSION,
            "selected_engine": self.selected_engine,
            "selection_reason": self.selection_reason,
            "state": self.state.value,
            "needs_review": self.needs_review,
            "text": self.best_result.full_text,
            "best_result": best,
            "all_results": [
                {
                    "engine": r.engine_id,
                    "confidence": round(r.overall_confidence, 4),
                    "processing_time_ms": r.processing_time_ms,
                    "error": r.error,
                    "column_count": r.column_count,
                    "characters": len(r.full_text),
                }
                for r in self.all_results
            ],
            "accuracy_metrics": self.accuracy_metrics.to_dict(),
            "column_detection": self.column_detection.to_dict() if self.column_detection else None,
            "applied_preprocessing": list(self.applied_preprocessing),
            "total_processing_time_ms": self.total_processing_time_ms,
        }


def compute_accuracy_metrics(
    result: EngineResult,
    classifier: Optional[BlockClassifier] = None,
    high_threshold: float = 0.80,
    low_threshold: float = 0.60
) -> AccuracyMetrics:
    """Summarize fragment confidences and titles of an engine result."""
    classifier = classifier or BlockClassifier()
    fragments = result.fragments
    total = len(fragments)

    if total == 0:
        return AccuracyMetrics(
            overall_confidence_pct=result.overall_confidence * 100,
            average_font_size=classifier.config.default_font_size
        )

    high = sum(1 for f in fragments if f.confidence >= high_threshold)
    low = sum(1 for f in fragments if f.confidence < low_threshold)

    return AccuracyMetrics(
        overall_confidence_pct=result.overall_confidence * 100,
        high_confidence_blocks_pct=high / total * 100,
        low_confidence_blocks_pct=low / total * 100,
        average_font_size=classifier.average_font_size(fragments),
        detected_titles=tuple(classifier.detect_titles(fragments))
    )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


# ============================================================================
# Page Reconstructor
# ============================================================================

class PageReconstructor:
    """
    Reconstructs one page with one engine.

    Coordinates:
    - Column detection and splitting
    - Per-column OCR through the engine adapter
    - Reading order and role classification
    - Structured text building
    """

    def __init__(
        self,
        adapter: OCREngineAdapter,
        config: Optional[PipelineConfig] = None,
        detector: Optional[ColumnDetector] = None,
        splitter: Optional[ColumnSplitter] = None,
        sorter: Optional[ReadingOrderSorter] = None,
        classifier: Optional[BlockClassifier] = None,
        builder: Optional[TextStructureBuilder] = None
    ):
        self.adapter = adapter
        self.config = config or PipelineConfig()
        self.detector = detector or ColumnDetector(self.config.columns)
        self.splitter = splitter or ColumnSplitter()
        self.sorter = sorter or ReadingOrderSorter(self.config.reading_order)
        self.classifier = classifier or BlockClassifier(self.config.classifier)
        self.builder = builder or TextStructureBuilder()

    @property
    def engine_id(self) -> str:
        return self.adapter.engine_id

    def reconstruct(
        self,
        image: np.ndarray,
        language_hints: Optional[Sequence[str]] = None,
        manual_column_count: Optional[int] = None,
        column_detection: Optional[ColumnDetectionResult] = None,
        parallel_columns: Optional[bool] = None
    ) -> EngineResult:
        """
        Run the full single-engine pipeline on a decoded page.

        Args:
            image: Page raster (not modified)
            language_hints: Language hints for the engine
            manual_column_count: Column override used when detecting here
            column_detection: Precomputed detection shared across engines
            parallel_columns: Recognize columns concurrently

        Returns:
            EngineResult in page coordinates; errors are reported, not raised
        """
        start = time.perf_counter()
        hints = list(language_hints or self.config.orchestrator.language_hints)

        if column_detection is None:
            if self.config.orchestrator.detect_columns or manual_column_count:
                column_detection = self.detector.detect(image, manual_column_count)
            else:
                column_detection = ColumnDetectionResult(False, 1, 1.0, method="disabled")

        num_columns = column_detection.estimated_columns if column_detection.has_columns else 1
        strips = self.splitter.split(image, num_columns)
        num_columns = len(strips)

        if parallel_columns is None:
            parallel_columns = self.config.orchestrator.parallel_columns

        def run_strip(strip):
            return self.adapter.run_image(strip.image, hints, strip.x_offset, strip.index)

        if parallel_columns and num_columns > 1:
            with ThreadPoolExecutor(max_workers=num_columns) as executor:
                column_results = list(executor.map(run_strip, strips))
        else:
            column_results = [run_strip(strip) for strip in strips]

        failures = [r for r in column_results if r.failed]
        if len(failures) == len(column_results):
            error = "; ".join(sorted({r.error for r in failures}))
            logger.error(f"{self.engine_id}: all {num_columns} column(s) failed: {error}")
            return EngineResult.failure(self.engine_id, error, _elapsed_ms(start), num_columns)
        for r in failures:
            logger.warning(f"{self.engine_id}: a column failed and was skipped: {r.error}")

        columns: List[List[TextFragment]] = [[] for _ in strips]
        for r in column_results:
            for fragment in r.fragments:
                columns[fragment.column_index].append(fragment)

        all_fragments = [f for col in columns for f in col]
        avg_font_size = self.classifier.average_font_size(all_fragments)
        classified = [self.classifier.classify(col, avg_font_size) for col in columns]

        ordered = self.sorter.order_columns(classified)
        ordered_columns = [frags for _, frags in ordered]
        fragments = tuple(f for col in ordered_columns for f in col)

        confidence = float(np.mean([f.confidence for f in fragments])) if fragments else 0.0

        result = EngineResult(
            engine_id=self.engine_id,
            full_text=self.builder.build(ordered_columns),
            overall_confidence=confidence,
            fragments=fragments,
            processing_time_ms=_elapsed_ms(start),
            column_count=num_columns
        )

        logger.info(
            f"{self.engine_id}: {len(fragments)} fragments in {num_columns} column(s), "
            f"confidence={confidence:.2f}, {result.processing_time_ms}ms"
        )
        return result


# ============================================================================
# Engine Selector
# ============================================================================

class EngineSelector:
    """
    Runs several OCR engines on a page and selects the best output.

    Preprocessing and column detection run once per page and are shared by
    all engines. One engine's output is selected wholesale; results are
    never merged.
    """

    def __init__(
        self,
        adapters: Dict[str, OCREngineAdapter],
        config: Optional[PipelineConfig] = None,
        preprocessor: Optional[Callable[[bytes], bytes]] = None,
        init_errors: Optional[Dict[str, str]] = None
    ):
        self.config = config or PipelineConfig()
        self.adapters = dict(adapters)
        self.init_errors = dict(init_errors or {})
        self.preprocessor = preprocessor

        if not self.adapters and not self.init_errors:
            raise ValueError("No OCR engines configured")

        self.detector = ColumnDetector(self.config.columns)
        self.classifier = BlockClassifier(self.config.classifier)
        self.scorer = QualityScorer(
            self.config.scoring,
            self.config.orchestrator.confidence_threshold
        )

        splitter = ColumnSplitter()
        sorter = ReadingOrderSorter(self.config.reading_order)
        builder = TextStructureBuilder()
        self.reconstructors = {
            name: PageReconstructor(
                adapter, self.config,
                detector=self.detector,
                splitter=splitter,
                sorter=sorter,
                classifier=self.classifier,
                builder=builder
            )
            for name, adapter in self.adapters.items()
        }

        self._state = SelectorState.IDLE

    @classmethod
    def from_config(
        cls,
        config: Optional[PipelineConfig] = None,
        engines: Optional[List[str]] = None,
        **kwargs
    ) -> 'EngineSelector':
        """
        Build adapters for the configured engines.

        Engines whose library is missing are kept as initialization errors
        and reported as failed results on every page.

        Raises:
            ValueError: If an engine name is unknown or no engine is given
        """
        config = config or PipelineConfig()
        names = engines or config.orchestrator.engines
        if not names:
            raise ValueError("No OCR engines configured")

        adapters = {}
        init_errors = {}
        for name in names:
            try:
                adapters[name] = create_adapter(name, config)
                logger.info(f"Initialized OCR engine: {name}")
            except (ImportError, RuntimeError) as e:
                logger.warning(f"Failed to initialize {name}: {e}")
                init_errors[name] = str(e)

        return cls(adapters, config, init_errors=init_errors, **kwargs)

    @property
    def state(self) -> SelectorState:
        """Terminal state of the most recently finished process() call."""
        return self._state

    @property
    def engine_names(self) -> List[str]:
        return list(self.adapters) + [n for n in self.init_errors if n not in self.adapters]

    @staticmethod
    def _transition(current: SelectorState, state: SelectorState) -> SelectorState:
        logger.debug(f"Selector state: {current.value} -> {state.value}")
        return state

    # ------------------------------------------------------------------
    # Main entry points
    # ------------------------------------------------------------------

    def process(
        self,
        image_bytes: bytes,
        manual_column_count: Optional[int] = None,
        language_hints: Optional[Sequence[str]] = None,
        engines: Optional[Sequence[str]] = None,
        prefer_engine: Optional[str] = None,
        confidence_threshold: Optional[float] = None,
        preprocess: Optional[bool] = None,
        parallel: Optional[bool] = None
    ) -> OrchestratedResult:
        """
        Process one page image with all selected engines.

        Args:
            image_bytes: Encoded page image
            manual_column_count: Column override (None/0 = detect)
            language_hints: Language hints (default from config)
            engines: Subset of configured engines to run
            prefer_engine: Engine to favour when valid ("best" = by score)
            confidence_threshold: Minimum confidence for a valid result
            preprocess: Enhance the image first (default from config)
            parallel: Run engines concurrently (default from config)

        Returns:
            OrchestratedResult

        Raises:
            ValueError: On unknown engine names, an empty engine list or a
                negative column count
        """
        orch = self.config.orchestrator
        names = list(engines) if engines is not None else self.engine_names
        if not names:
            raise ValueError("No OCR engines selected")
        for name in names:
            if name not in self.adapters and name not in self.init_errors:
                raise ValueError(f"Unknown OCR engine: {name}")
        if manual_column_count is not None and manual_column_count < 0:
            raise ValueError(f"Invalid column count: {manual_column_count}")

        hints = list(language_hints or orch.language_hints)
        prefer_engine = prefer_engine or orch.prefer_engine
        threshold = orch.confidence_threshold if confidence_threshold is None else confidence_threshold
        preprocess = self.config.image.preprocess if preprocess is None else preprocess
        parallel = orch.run_parallel if parallel is None else parallel

        start = time.perf_counter()

        # 1. Preprocess once
        state = self._transition(SelectorState.IDLE, SelectorState.PREPROCESSING)
        page_bytes, operations = self._preprocess(image_bytes) if preprocess else (image_bytes, ())

        # 2. Decode once, detect columns once
        image, decode_error = self._decode(page_bytes)
        if image is not None:
            detection = self.detector.detect(image, manual_column_count) if (
                orch.detect_columns or manual_column_count
            ) else ColumnDetectionResult(False, 1, 1.0, method="disabled")
            logger.info(
                f"Columns: {detection.estimated_columns} "
                f"(confidence={detection.confidence:.2f}, method={detection.method})"
            )
        else:
            detection = ColumnDetectionResult(False, 1, 0.0)

        # 3. Run engines
        state = self._transition(state, SelectorState.RUNNING)
        if image is None:
            results = [EngineResult.failure(name, decode_error) for name in names]
        else:
            results = self._run_engines(names, image, hints, detection, parallel, orch.engine_timeout)

        for r in results:
            status = f"error={r.error}" if r.failed else f"confidence={r.overall_confidence:.2f}"
            logger.info(f"Engine {r.engine_id}: {status}, {r.processing_time_ms}ms")

        # 4. Score and select
        state = self._transition(state, SelectorState.SCORING)
        best, reason, valid = self._select(results, prefer_engine, threshold)
        state = self._transition(state, SelectorState.SELECTED if valid else SelectorState.FAILED)
        self._state = state

        logger.info(f"Selected {best.engine_id}: {reason}")

        return OrchestratedResult(
            selected_engine=best.engine_id,
            best_result=best,
            all_results=tuple(results),
            selection_reason=reason,
            accuracy_metrics=compute_accuracy_metrics(
                best,
                self.classifier,
                self.config.ocr.high_confidence_threshold,
                self.config.ocr.low_confidence_threshold
            ),
            total_processing_time_ms=_elapsed_ms(start),
            column_detection=detection,
            applied_preprocessing=tuple(operations),
            state=state,
            confidence_threshold=threshold
        )

    def quick_ocr(
        self,
        image_bytes: bytes,
        engine: Optional[str] = None,
        **kwargs
    ) -> OrchestratedResult:
        """Single engine (the first configured one by default), no comparison."""
        engine = engine or next(iter(self.adapters), None) or self.engine_names[0]
        return self.process(image_bytes, engines=[engine], **kwargs)

    def thorough_ocr(self, image_bytes: bytes, **kwargs) -> OrchestratedResult:
        """All engines in parallel with preprocessing, selected by score."""
        kwargs.setdefault("preprocess", True)
        kwargs.setdefault("parallel", True)
        kwargs.setdefault("prefer_engine", "best")
        return self.process(image_bytes, engines=self.engine_names, **kwargs)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _preprocess(self, image_bytes: bytes) -> Tuple[bytes, Tuple[str, ...]]:
        """Enhance the page once. Any failure falls back to the original bytes."""
        if self.preprocessor is None:
            from .images import preprocess_bytes
            result = preprocess_bytes(image_bytes, self.config.image)
            return result.buffer, tuple(result.applied_operations)

        try:
            enhanced = self.preprocessor(image_bytes)
        except Exception as e:
            logger.warning(f"Preprocessing failed, using original image: {e}")
            return image_bytes, ()

        if not enhanced:
            logger.warning("Preprocessor returned no data, using original image")
            return image_bytes, ()

        return enhanced, (getattr(self.preprocessor, "__name__", "custom"),)

    @staticmethod
    def _decode(page_bytes: bytes) -> Tuple[Optional[np.ndarray], Optional[str]]:
        from .io import decode_image

        try:
            image = decode_image(page_bytes)
        except ValueError as e:
            logger.error(f"Could not decode page image: {e}")
            return None, str(e)

        # Shared by all engines
        image.setflags(write=False)
        return image, None

    def _run_engines(
        self,
        names: Sequence[str],
        image: np.ndarray,
        hints: List[str],
        detection: ColumnDetectionResult,
        parallel: bool,
        timeout: Optional[float]
    ) -> List[EngineResult]:
        results: Dict[str, EngineResult] = {}

        for name in names:
            if name in self.init_errors and name not in self.adapters:
                results[name] = EngineResult.failure(
                    name, f"Engine unavailable: {self.init_errors[name]}"
                )

        runnable = [n for n in names if n in self.reconstructors]

        def task(name: str) -> EngineResult:
            return self.reconstructors[name].reconstruct(
                image, hints, column_detection=detection
            )

        if parallel and runnable:
            executor = ThreadPoolExecutor(max_workers=len(runnable), thread_name_prefix="ocr-engine")
            try:
                futures = {executor.submit(task, name): name for name in runnable}
                done, _ = wait(futures, timeout=timeout)
                for future, name in futures.items():
                    results[name] = self._collect(future, name, future in done, timeout)
            finally:
                # A stuck engine must not block the page
                executor.shutdown(wait=False, cancel_futures=True)
        else:
            for name in runnable:
                executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ocr-engine")
                try:
                    future = executor.submit(task, name)
                    try:
                        future.result(timeout=timeout)
                        finished = True
                    except FutureTimeoutError:
                        finished = False
                    except Exception:
                        finished = True
                    results[name] = self._collect(future, name, finished, timeout)
                finally:
                    executor.shutdown(wait=False, cancel_futures=True)

        return [results[name] for name in names]

    @staticmethod
    def _collect(future, name: str, finished: bool, timeout: Optional[float]) -> EngineResult:
        if not finished:
            logger.error(f"Engine {name} timed out after {timeout}s")
            return EngineResult.failure(name, "timeout", int((timeout or 0) * 1000))

        try:
            return future.result()
        except Exception as e:
            logger.error(f"Engine {name} failed: {e}")
            return EngineResult.failure(name, str(e) or type(e).__name__)

    def _select(
        self,
        results: Sequence[EngineResult],
        prefer_engine: Optional[str],
        threshold: float
    ) -> Tuple[EngineResult, str, bool]:
        """
        Pick the result to return.

        Returns:
            (best result, selection reason, whether it cleared the threshold)
        """
        valid, _ = self.scorer.split_valid(results, threshold)

        if not valid:
            best = max(results, key=lambda r: r.overall_confidence)
            return best, "Only available result (below threshold)", False

        if len(valid) == 1:
            return valid[0], "Only valid result", True

        if prefer_engine and prefer_engine != "best":
            for r in valid:
                if r.engine_id == prefer_engine:
                    return r, f"User preferred engine: {prefer_engine}", True
            logger.info(f"Preferred engine {prefer_engine} has no valid result, using score")

        ranked = self.scorer.rank(valid)
        top = ranked[0]
        reason = f"Highest quality score: {top.score:.1f}"
        if len(ranked) > 1:
            runner_up = ranked[1]
            if top.score - runner_up.score < self.scorer.weights.close_margin:
                reason += f" (close to {runner_up.result.engine_id}: {runner_up.score:.1f})"

        return top.result, reason, True

"""
Quality scoring of engine results.

The score (0-100 with default weights) rewards engine confidence, amount of
text, the share of Arabic script, fragment count and mean fragment
confidence. It is only used to rank results from different engines on the
same page.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence, List, Tuple

from magrecon.config import ScoringWeights
from .ocr_text import EngineResult

logger = logging.getLogger(__name__)

ARABIC_CHAR_RE = re.compile('[\u0600-\u06FF]')


def arabic_ratio(text: str) -> float:
    """Fraction of characters in the Arabic block U+0600-U+06FF."""
    if not text:
        return 0.0
    return len(ARABIC_CHAR_RE.findall(text)) / len(text)


@dataclass(frozen=True)
class ScoredResult:
    result: EngineResult
    score: float


class QualityScorer:
    """Scores and filters engine results."""

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        confidence_threshold: float = 0.3
    ):
        self.weights = weights or ScoringWeights()
        self.confidence_threshold = confidence_threshold

    def score(self, result: EngineResult) -> float:
        w = self.weights
        text = result.full_text
        score = result.overall_confidence * w.confidence

        length = len(text.strip())
        for min_length, bonus in w.length_tiers:
            if length > min_length:
                score += bonus

        score += arabic_ratio(text) * w.script_ratio

        fragments = result.fragments
        for min_count, bonus in w.fragment_tiers:
            if len(fragments) >= min_count:
                score += bonus

        if fragments:
            mean_conf = sum(f.confidence for f in fragments) / len(fragments)
            score += mean_conf * w.fragment_confidence

        return score

    def is_valid(self, result: EngineResult, threshold: Optional[float] = None) -> bool:
        threshold = self.confidence_threshold if threshold is None else threshold
        return not result.failed and result.overall_confidence >= threshold

    def rank(self, results: Sequence[EngineResult]) -> List[ScoredResult]:
        """Scored results, best first. Ties keep input order."""
        scored = [ScoredResult(r, self.score(r)) for r in results]
        scored.sort(key=lambda s: s.score, reverse=True)
        for s in scored:
            logger.debug(f"Score {s.result.engine_id}: {s.score:.1f}")
        return scored

    def split_valid(
        self,
        results: Sequence[EngineResult],
        threshold: Optional[float] = None
    ) -> Tuple[List[EngineResult], List[EngineResult]]:
        """(valid, excluded) results for a confidence threshold."""
        valid = [r for r in results if self.is_valid(r, threshold)]
        excluded = [r for r in results if not self.is_valid(r, threshold)]
        return valid, excluded

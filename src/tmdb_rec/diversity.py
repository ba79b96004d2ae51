"""Diversity adjustment: penalize candidates that repeat the current top picks."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Sequence

import numpy as np

from .config import RecommenderConfig
from .models import ScoredCandidate
from .similarity import ContentSimilarityScorer

logger = logging.getLogger(__name__)


class DiversityAdjuster:
    """
    diversity_factor = 1 - mean(similarity to accepted top window) * penalty.

    With the default window of 5 and penalty of 0.5, a near-duplicate of the
    current top picks has its score roughly halved while a novel candidate
    keeps its score.
    """

    def __init__(self, config: RecommenderConfig | None = None):
        self.config = config or RecommenderConfig()

    def factor(self, similarities: Sequence[float]) -> float:
        window = list(similarities)[:self.config.diversity_window]
        if not window:
            return 1.0
        avg = float(np.mean(window))
        return max(0.0, min(1.0, 1 - avg * self.config.diversity_penalty))

    def apply(
        self,
        candidates: Sequence[ScoredCandidate],
        scorer: ContentSimilarityScorer,
    ) -> list[ScoredCandidate]:
        """
        Walk candidates in combined-score order and penalize each against the
        candidates accepted before it (only the first window of them).

        Returns new candidates with diversity_factor and final_score set, in
        the same order they were accepted.
        """
        ordered = sorted(candidates, key=_combined_sort_key)
        window = self.config.diversity_window
        movies = [c.movie for c in ordered]
        # Every candidate is accepted in order, so the comparison window is
        # always the head of the ordered list
        similarity_matrix = scorer.pairwise(movies, movies[:window])
        accepted: list[ScoredCandidate] = []

        for i, candidate in enumerate(ordered):
            similarities = similarity_matrix[i, :min(i, window)]
            diversity = self.factor(similarities)
            final = max(0.0, min(1.0, candidate.combined_score * diversity))
            accepted.append(replace(candidate, diversity_factor=diversity, final_score=final))

        penalized = sum(1 for c in accepted if c.diversity_factor < 1.0)
        logger.debug(f"Diversity pass penalized {penalized}/{len(accepted)} candidates")
        return accepted


def _combined_sort_key(candidate: ScoredCandidate) -> tuple[float, int, int]:
    return (-candidate.combined_score, -candidate.movie.vote_count, candidate.movie.id)


def final_sort_key(candidate: ScoredCandidate) -> tuple[float, int, int]:
    """finalScore desc, then voteCount desc, then id asc."""
    return (-candidate.final_score, -candidate.movie.vote_count, candidate.movie.id)

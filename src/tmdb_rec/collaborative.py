"""
Collaborative (personalization) score for a candidate.

Approximates collaborative filtering from one user's history: the candidate
is compared by content similarity to every movie the user rated, and the
similarities are averaged with weights that let 4-5 star ratings dominate.
Watchlisted movies join the average as a mild positive signal.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field

import numpy as np

from .cache import MovieDetailCache
from .config import RecommenderConfig
from .models import MovieRecord, UserSignal
from .similarity import ContentSimilarityScorer
from .utils import gather_outcomes

logger = logging.getLogger(__name__)


@dataclass
class UserHistory:
    """A user's rated and watchlisted movies, resolved to records once per request."""

    rated: list[tuple[MovieRecord, int]] = field(default_factory=list)
    watchlist: list[MovieRecord] = field(default_factory=list)
    rating_count: int = 0


def rating_weight(rating: int) -> float:
    """Quadratic emphasis: 1 star -> 0.0, 3 stars -> 0.25, 5 stars -> 1.0."""
    return ((rating - 1) / 4) ** 2


def rating_boost(rating: int) -> float:
    """1-5 stars -> 1.0x to 3.0x multiplier on the similarity."""
    return 0.5 + rating / 2


class CollaborativeScorer:
    def __init__(
        self,
        detail_cache: MovieDetailCache,
        content_scorer: ContentSimilarityScorer,
        config: RecommenderConfig | None = None,
        rng: random.Random | None = None,
    ):
        self.detail_cache = detail_cache
        self.content_scorer = content_scorer
        self.config = config or RecommenderConfig()
        self.rng = rng or random.Random()

    def is_cold_start(self, signal: UserSignal | None) -> bool:
        return signal is None or len(signal.ratings) < self.config.min_rated_movies

    async def load_history(self, signal: UserSignal | None) -> UserHistory:
        """
        Resolve the user's rated and watchlisted movies through the detail cache.

        Movies that fail to load are skipped and logged. Cold-start users need
        no records, so nothing is fetched for them.
        """
        if signal is None:
            return UserHistory()
        history = UserHistory(rating_count=len(signal.ratings))
        if self.is_cold_start(signal):
            return history

        rated_ids = list(signal.ratings)
        watch_ids = [m for m in sorted(signal.watchlist) if m not in signal.ratings]
        watch_ids = watch_ids[:self.config.max_watchlist_items]

        outcomes = await gather_outcomes(rated_ids + watch_ids, self.detail_cache.fetch)
        failed = 0
        for outcome in outcomes:
            if not outcome.ok:
                failed += 1
                logger.warning(f"Skipping history movie {outcome.key}: {outcome.error}")
                continue
            if outcome.key in signal.ratings:
                history.rated.append((outcome.value, signal.ratings[outcome.key]))
            else:
                history.watchlist.append(outcome.value)

        if failed:
            logger.info(f"Loaded {len(outcomes) - failed}/{len(outcomes)} history movies")
        return history

    def score_with_history(self, candidate: MovieRecord, history: UserHistory) -> float:
        """Pure scoring step; no upstream calls."""
        cfg = self.config
        if history.rating_count < cfg.min_rated_movies:
            # Small randomized score keeps new users' lists varied
            if not cfg.randomize:
                return 0.0
            return self.rng.random() * cfg.cold_start_max_factor * cfg.collaborative_weight

        numerators: list[float] = []
        weights: list[float] = []

        for record, rating in history.rated:
            similarity = self.content_scorer.similarity(record, candidate)
            weight = rating_weight(rating)
            numerators.append(similarity * weight * rating_boost(rating))
            weights.append(weight)

        for record in history.watchlist:
            similarity = self.content_scorer.similarity(record, candidate)
            numerators.append(similarity * cfg.watchlist_boost)
            weights.append(cfg.watchlist_boost)

        total_weight = float(np.sum(weights)) if weights else 0.0
        if total_weight <= 0:
            return 0.0

        base = float(np.sum(numerators)) / total_weight * cfg.collaborative_weight
        if cfg.randomize and cfg.random_jitter > 0:
            base *= 1 + self.rng.uniform(-cfg.random_jitter, cfg.random_jitter)
        return max(0.0, min(1.0, base))

    async def score(self, candidate: MovieRecord, signal: UserSignal | None) -> float:
        history = await self.load_history(signal)
        return self.score_with_history(candidate, history)

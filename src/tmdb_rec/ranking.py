"""
Ranking orchestrator: the engine's entry point.

Per request the pipeline moves through
Resolving seed -> Aggregating -> Scoring (batched) -> Diversifying -> Done,
and from any stage to the trending fallback when no ranked result can be
produced. Only seed resolution failure is raised to the caller; total
fallback failure is returned as result.error.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field, replace
from enum import Enum

from .aggregator import CandidateAggregator, CandidateSource
from .cache import MovieDetailCache, ResultCache
from .collaborative import CollaborativeScorer, UserHistory
from .config import RecommenderConfig
from .diversity import DiversityAdjuster, final_sort_key
from .errors import (
    AllSourcesFailed,
    EnrichmentFailed,
    RequestCancelled,
    SeedNotFound,
    UpstreamUnavailable,
)
from .models import (
    Match,
    MatchType,
    MovieRecord,
    RankingRequest,
    RecommendationResult,
    ScoredCandidate,
    UserSignal,
)
from .similarity import ContentSimilarityScorer
from .utils import async_retry_with_backoff, chunked, gather_outcomes

logger = logging.getLogger(__name__)

FALLBACK_LABEL = "Trending this week"


class RankingStage(str, Enum):
    RESOLVING = "resolving"
    AGGREGATING = "aggregating"
    SCORING = "scoring"
    DIVERSIFYING = "diversifying"
    DONE = "done"
    FALLBACK = "fallback"


@dataclass
class _RankingState:
    """Mutable per-request state; survives cancellation so partial work can be returned."""

    limit: int
    signal: UserSignal | None
    exclude: set[int] = field(default_factory=set)
    stage: RankingStage = RankingStage.RESOLVING
    scored: list[ScoredCandidate] = field(default_factory=list)
    dropped: int = 0

    def advance(self, stage: RankingStage) -> None:
        logger.debug(f"Ranking stage: {self.stage.value} -> {stage.value}")
        self.stage = stage


class MovieRecommender:
    """
    Hybrid content + collaborative ranker over the TMDB catalog.

    Usage:
        async with TMDBClient() as client:
            recommender = MovieRecommender(client)
            result = await recommender.get_recommendations(603, signal, limit=5)
    """

    def __init__(
        self,
        client,
        config: RecommenderConfig | None = None,
        rng: random.Random | None = None,
        detail_cache: MovieDetailCache | None = None,
        result_cache: ResultCache | None = None,
        content_scorer: ContentSimilarityScorer | None = None,
    ):
        self.client = client
        self.config = config or RecommenderConfig()
        self.rng = rng or random.Random()
        self.detail_cache = detail_cache or MovieDetailCache(client, ttl=self.config.movie_cache_ttl)
        self.result_cache = result_cache or ResultCache(ttl=self.config.result_cache_ttl)
        self.content_scorer = content_scorer or ContentSimilarityScorer(self.config.content)
        self.aggregator = CandidateAggregator(client, self.config)
        self.collaborative = CollaborativeScorer(
            self.detail_cache, self.content_scorer, self.config, self.rng
        )
        self.diversity = DiversityAdjuster(self.config)

    async def get_recommendations(
        self,
        seed_movie_id: int,
        user_signal: UserSignal | None = None,
        limit: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RecommendationResult:
        """
        Rank movies similar to seed_movie_id, personalized by user_signal.

        Raises SeedNotFound when the seed cannot be resolved and ValueError
        for a non-positive limit. Every other failure degrades to the
        trending fallback or, if that fails too, an empty result carrying
        the error.
        """
        request = RankingRequest(
            seed_movie_id=seed_movie_id,
            user_signal=user_signal,
            result_limit=limit if limit is not None else self.config.default_result_limit,
        )
        key = request.cache_key()
        cached = self.result_cache.get(key)
        if cached is not None:
            logger.debug(f"Result cache hit for {key}")
            return replace(cached, candidates=list(cached.candidates), from_cache=True)

        state = _RankingState(limit=request.result_limit, signal=user_signal)
        result = await self._run_cancellable(self._rank_seed(state, seed_movie_id), state, cancel_event)
        self._remember(key, result)
        return result

    async def recommend_for_user(
        self,
        user_signal: UserSignal,
        limit: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RecommendationResult:
        """
        Rank movies for a user without an explicit seed.

        The user's top-rated movies act as seeds; each candidate keeps its best
        content score over the seeds. Movies the user already rated are
        excluded. Users with no highly rated movie get the trending fallback.
        """
        limit = limit if limit is not None else self.config.default_result_limit
        if limit <= 0:
            raise ValueError(f"result_limit must be positive, got {limit}")

        key = ("for_you", user_signal.cache_key(), limit)
        cached = self.result_cache.get(key)
        if cached is not None:
            logger.debug(f"Result cache hit for {key}")
            return replace(cached, candidates=list(cached.candidates), from_cache=True)

        state = _RankingState(limit=limit, signal=user_signal)
        result = await self._run_cancellable(self._rank_for_user(state), state, cancel_event)
        self._remember(key, result)
        return result

    def _remember(self, key: tuple, result: RecommendationResult) -> None:
        # Degraded and partial results are not worth serving again
        if result.ok and not result.is_fallback and not result.cancelled:
            self.result_cache.put(key, result)

    async def _run_cancellable(
        self,
        pipeline,
        state: _RankingState,
        cancel_event: asyncio.Event | None,
    ) -> RecommendationResult:
        """
        Run the pipeline until it finishes, the caller sets cancel_event, or
        the configured request timeout passes. On cancel/timeout the in-flight
        upstream calls are cancelled and the partial result is returned.
        """
        task = asyncio.ensure_future(pipeline)
        waiters: set[asyncio.Future] = {task}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.config.request_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except BaseException:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task in done:
            return task.result()

        reason = "cancelled by caller" if cancel_waiter in done else "timed out"
        logger.warning(f"Ranking {reason} during {state.stage.value} stage")
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return self._partial_result(state)

    def _partial_result(self, state: _RankingState) -> RecommendationResult:
        if not state.scored:
            return RecommendationResult(
                cancelled=True,
                error=RequestCancelled(f"Request cancelled during {state.stage.value} stage"),
            )
        return RecommendationResult(candidates=self._finalize(state.scored, state.limit), cancelled=True)

    async def _resolve_seed(self, movie_id: int) -> MovieRecord:
        try:
            seed = await self.detail_cache.fetch(movie_id)
        except UpstreamUnavailable as exc:
            logger.error(f"Could not fetch details for seed movie {movie_id}: {exc}")
            raise SeedNotFound(movie_id) from exc
        if not seed.is_enriched:
            logger.error(f"Seed movie {movie_id} has no full details")
            raise SeedNotFound(movie_id)
        return seed

    async def _rank_seed(self, state: _RankingState, seed_movie_id: int) -> RecommendationResult:
        seed = await self._resolve_seed(seed_movie_id)
        logger.info(f"Generating recommendations based on: {seed.title}")

        state.exclude = {seed.id}
        if state.signal:
            state.exclude |= state.signal.not_interested
        return await self._rank_from_seeds(state, [seed])

    async def _rank_for_user(self, state: _RankingState) -> RecommendationResult:
        signal = state.signal
        state.exclude = set(signal.ratings) | set(signal.not_interested)

        favorites = sorted(
            (movie_id for movie_id, rating in signal.ratings.items() if rating >= self.config.for_you_min_rating),
            key=lambda movie_id: (-signal.ratings[movie_id], movie_id),
        )[:self.config.for_you_max_seeds]

        seeds: list[MovieRecord] = []
        for outcome in await gather_outcomes(favorites, self.detail_cache.fetch):
            if outcome.ok and outcome.value.is_enriched:
                seeds.append(outcome.value)
            else:
                logger.warning(f"Skipping favorite {outcome.key} as seed: {outcome.error or 'no full details'}")

        if not seeds:
            return await self._fallback(state, "no highly rated movies to seed from")
        logger.info(f"Generating recommendations for user from {len(seeds)} favorite(s)")
        return await self._rank_from_seeds(state, seeds)

    async def _rank_from_seeds(self, state: _RankingState, seeds: list[MovieRecord]) -> RecommendationResult:
        state.advance(RankingStage.AGGREGATING)
        aggregations = await asyncio.gather(
            *(self.aggregator.aggregate(seed, exclude=state.exclude) for seed in seeds)
        )

        candidates: list[MovieRecord] = []
        sources: dict[int, CandidateSource] = {}
        for aggregation in aggregations:
            for movie in aggregation.candidates:
                if movie.id in sources or len(candidates) >= self.config.max_candidates:
                    continue
                candidates.append(movie)
                sources[movie.id] = aggregation.sources[movie.id]

        if all(a.all_failed for a in aggregations):
            return await self._fallback(state, "all candidate sources failed")
        if not candidates:
            return await self._fallback(state, "no candidates found")

        history = await self.collaborative.load_history(state.signal)

        state.advance(RankingStage.SCORING)
        await self._score_batches(state, seeds, candidates, sources, history)

        if not state.scored:
            return await self._fallback(state, "no candidate passed scoring")

        state.advance(RankingStage.DIVERSIFYING)
        ranked = self._finalize(state.scored, state.limit)
        state.advance(RankingStage.DONE)
        logger.info(
            f"Generated {len(ranked)} recommendations from {len(state.scored)} qualifying "
            f"candidates ({state.dropped} dropped during enrichment)"
        )
        return RecommendationResult(candidates=ranked)

    async def _score_batches(
        self,
        state: _RankingState,
        seeds: list[MovieRecord],
        candidates: list[MovieRecord],
        sources: dict[int, CandidateSource],
        history: UserHistory,
    ) -> None:
        """Enrich and score candidates batch by batch; batches run sequentially."""
        for batch in chunked(candidates, self.config.batch_size):
            outcomes = await gather_outcomes([movie.id for movie in batch], self.detail_cache.fetch)

            for outcome in outcomes:
                if not outcome.ok:
                    error = EnrichmentFailed(outcome.key, outcome.error)
                    logger.warning(f"Dropping candidate: {error}")
                    state.dropped += 1
                    continue
                if not outcome.value.is_enriched:
                    logger.warning(f"Dropping candidate {outcome.key}: no full details")
                    state.dropped += 1
                    continue

                scored = self._score_candidate(outcome.value, seeds, history, sources[outcome.key])
                if scored is not None:
                    state.scored.append(scored)

            # Enough high-quality candidates; stop early for latency
            if len(state.scored) >= self.config.qualifying_superset:
                logger.debug(f"Short-circuiting after {len(state.scored)} qualifying candidates")
                break

    def _score_candidate(
        self,
        movie: MovieRecord,
        seeds: list[MovieRecord],
        history: UserHistory,
        source: CandidateSource,
    ) -> ScoredCandidate | None:
        cfg = self.config
        similarity = self.content_scorer.best_score(seeds, movie)
        if similarity.score < cfg.min_similarity:
            return None

        collaborative = self.collaborative.score_with_history(movie, history)
        combined = similarity.score * cfg.content_blend + collaborative * cfg.collaborative_blend
        combined = max(0.0, min(1.0, combined))
        return ScoredCandidate(
            movie=movie,
            content_score=similarity.score,
            collaborative_score=collaborative,
            combined_score=combined,
            final_score=combined,
            matches=tuple(similarity.matches),
            source=source.value,
        )

    def _finalize(self, scored: list[ScoredCandidate], limit: int) -> list[ScoredCandidate]:
        diversified = self.diversity.apply(scored, self.content_scorer)
        return sorted(diversified, key=final_sort_key)[:limit]

    async def _fallback(self, state: _RankingState, reason: str) -> RecommendationResult:
        """Unscored trending list; an empty result with AllSourcesFailed if that fails too."""
        state.advance(RankingStage.FALLBACK)
        logger.warning(f"Falling back to trending movies: {reason}")

        try:
            await self.client.fetch_genres()
        except UpstreamUnavailable as exc:
            logger.debug(f"Genre names unavailable for fallback labels: {exc}")

        fetch_trending = async_retry_with_backoff(
            max_retries=self.config.fallback_max_retries,
            initial_delay=self.config.fallback_retry_delay,
            exceptions=(UpstreamUnavailable,),
        )(self.client.fetch_trending)

        try:
            trending = await fetch_trending(self.config.trending_window)
        except UpstreamUnavailable as exc:
            logger.error(f"Fallback recommendation failed: {exc}")
            return RecommendationResult(
                is_fallback=True,
                error=AllSourcesFailed(f"{reason}; trending fallback failed: {exc}"),
            )

        fallback_match = (Match(type=MatchType.FALLBACK, label=FALLBACK_LABEL, score=0.0),)
        candidates = [
            ScoredCandidate(
                movie=movie,
                content_score=0.0,
                collaborative_score=0.0,
                combined_score=0.0,
                diversity_factor=1.0,
                final_score=0.0,
                matches=fallback_match,
                source=CandidateSource.TRENDING.value,
            )
            for movie in trending
            if movie.id not in state.exclude
        ]
        return RecommendationResult(candidates=candidates[:state.limit], is_fallback=True)

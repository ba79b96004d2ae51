"""
Candidate aggregation from several catalog strategies.

All sources are queried concurrently; results are merged in source priority
order, deduplicated by id and bounded for cost control. Trending is the
lowest-priority source and acts as filler.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Iterable

from .config import RecommenderConfig
from .models import MovieRecord

logger = logging.getLogger(__name__)


class CandidateSource(str, Enum):
    SIMILAR = "similar"
    RECOMMENDED = "recommended"
    DIRECTOR = "director"
    GENRE = "genre"
    TRENDING = "trending"


@dataclass
class AggregationResult:
    candidates: list[MovieRecord] = field(default_factory=list)
    # id -> first source that surfaced it
    sources: dict[int, CandidateSource] = field(default_factory=dict)
    attempted_sources: list[CandidateSource] = field(default_factory=list)
    failed_sources: dict[CandidateSource, str] = field(default_factory=dict)

    @property
    def all_failed(self) -> bool:
        return bool(self.attempted_sources) and len(self.failed_sources) == len(self.attempted_sources)


class CandidateAggregator:
    def __init__(self, client, config: RecommenderConfig | None = None):
        self.client = client
        self.config = config or RecommenderConfig()

    def _build_queries(self, seed: MovieRecord) -> list[tuple[CandidateSource, Callable[[], Awaitable[list[MovieRecord]]]]]:
        cfg = self.config
        queries = [
            (CandidateSource.SIMILAR, lambda: self.client.fetch_similar(seed.id, 1)),
            (CandidateSource.RECOMMENDED, lambda: self.client.fetch_recommended(seed.id, 1)),
        ]

        if seed.director:
            director_id = seed.director.id
            queries.append((CandidateSource.DIRECTOR, lambda: self.client.fetch_by_director(director_id)))
        else:
            logger.debug(f"No director known for {seed.id}; skipping director source")

        genre_ids = [g.id for g in seed.genres[:cfg.genre_seed_count]]
        if genre_ids:
            queries.append((
                CandidateSource.GENRE,
                lambda: self.client.fetch_by_genres(genre_ids, cfg.discover_min_vote_count),
            ))
        else:
            logger.debug(f"No genres known for {seed.id}; skipping genre source")

        queries.append((CandidateSource.TRENDING, lambda: self.client.fetch_trending(cfg.trending_window)))
        return queries

    async def aggregate(
        self,
        seed: MovieRecord,
        exclude: Iterable[int] = (),
    ) -> AggregationResult:
        """
        Query every applicable source concurrently and merge the results.

        Failed sources are logged and recorded; they never raise. When every
        attempted source fails the result has no candidates and all_failed set.
        """
        queries = self._build_queries(seed)
        result = AggregationResult(attempted_sources=[source for source, _ in queries])

        responses = await asyncio.gather(*(query() for _, query in queries), return_exceptions=True)

        seen = {seed.id, *exclude}
        for (source, _), response in zip(queries, responses):
            if isinstance(response, asyncio.CancelledError):
                raise response
            if isinstance(response, BaseException):
                logger.warning(f"Candidate source '{source.value}' failed: {type(response).__name__}: {response}")
                result.failed_sources[source] = str(response)
                continue

            for movie in response:
                if len(result.candidates) >= self.config.max_candidates:
                    break
                if movie.id in seen:
                    continue
                seen.add(movie.id)
                result.candidates.append(movie)
                result.sources[movie.id] = source

        if result.all_failed:
            logger.error(f"All {len(queries)} candidate sources failed for seed {seed.id}")
        else:
            logger.info(
                f"Aggregated {len(result.candidates)} candidates for '{seed.title}' "
                f"({len(result.failed_sources)}/{len(queries)} sources failed)"
            )
        return result

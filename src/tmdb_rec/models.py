"""
Data model shared by the catalog client, scorers and the ranking pipeline.

MovieRecord is the only shape movie data takes past the client boundary;
upstream fields outside it are dropped while parsing.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Mapping

from .config import DEFAULT_RESULT_LIMIT
from .errors import RecommenderError


@dataclass(frozen=True)
class NamedEntity:
    """An {id, name} pair: genre, keyword or crew member."""

    id: int
    name: str = ""


@dataclass(frozen=True)
class CastMember:
    id: int
    name: str
    character: str = ""


@dataclass(frozen=True)
class MovieRecord:
    id: int
    title: str
    release_date: date | None = None
    vote_average: float = 0.0
    vote_count: int = 0
    popularity: float = 0.0
    genres: tuple[NamedEntity, ...] = ()
    keywords: tuple[NamedEntity, ...] = ()
    director: NamedEntity | None = None
    top_cast: tuple[CastMember, ...] = ()
    related_ids: frozenset[int] = frozenset()
    overview: str = ""
    poster_path: str | None = None
    # False for the partial records list endpoints return
    is_enriched: bool = False

    @property
    def genre_ids(self) -> set[int]:
        return {g.id for g in self.genres}

    @property
    def keyword_ids(self) -> set[int]:
        return {k.id for k in self.keywords}

    @property
    def release_year(self) -> int | None:
        return self.release_date.year if self.release_date else None


@dataclass(frozen=True)
class UserSignal:
    """
    Personalization input owned by the caller.

    ratings maps movie id to a 1-5 star rating. The engine never mutates it.
    """

    ratings: Mapping[int, int] = field(default_factory=dict)
    watchlist: frozenset[int] = frozenset()
    not_interested: frozenset[int] = frozenset()
    user_id: str | None = None

    def __post_init__(self) -> None:
        for movie_id, rating in self.ratings.items():
            if not 1 <= rating <= 5:
                raise ValueError(f"Rating for movie {movie_id} must be 1-5, got {rating}")
        # Accept any iterable of ids from callers
        object.__setattr__(self, "watchlist", frozenset(self.watchlist))
        object.__setattr__(self, "not_interested", frozenset(self.not_interested))

    @property
    def is_empty(self) -> bool:
        return not (self.ratings or self.watchlist or self.not_interested)

    def cache_key(self) -> str:
        """Stable identity for result caching: user id, content digest, or 'anon'."""
        if self.user_id:
            return self.user_id
        if self.is_empty:
            return "anon"
        payload = json.dumps(
            {
                "ratings": sorted((int(k), int(v)) for k, v in self.ratings.items()),
                "watchlist": sorted(self.watchlist),
                "not_interested": sorted(self.not_interested),
            },
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, payload: dict) -> "UserSignal":
        return cls(
            ratings={int(k): int(v) for k, v in payload.get("ratings", {}).items()},
            watchlist=frozenset(int(m) for m in payload.get("watchlist", [])),
            not_interested=frozenset(int(m) for m in payload.get("not_interested", [])),
            user_id=payload.get("user_id"),
        )


class MatchType(str, Enum):
    DIRECTOR = "director"
    ACTOR = "actor"
    GENRE = "genre"
    KEYWORD = "keyword"
    RATING = "rating"
    POPULARITY = "popularity"
    RECENCY = "recency"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class Match:
    """One explained contribution to a content score."""

    type: MatchType
    label: str
    score: float

    def to_dict(self) -> dict:
        return {"type": self.type.value, "label": self.label, "score": self.score}


@dataclass(frozen=True)
class ScoredCandidate:
    movie: MovieRecord
    content_score: float
    collaborative_score: float
    combined_score: float
    diversity_factor: float = 1.0
    final_score: float = 0.0
    matches: tuple[Match, ...] = ()
    source: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.movie.id,
            "title": self.movie.title,
            "year": self.movie.release_year,
            "content_score": round(self.content_score, 4),
            "collaborative_score": round(self.collaborative_score, 4),
            "diversity_factor": round(self.diversity_factor, 4),
            "final_score": round(self.final_score, 4),
            "source": self.source,
            "matches": [m.to_dict() for m in self.matches],
        }


@dataclass(frozen=True)
class RankingRequest:
    seed_movie_id: int
    user_signal: UserSignal | None = None
    result_limit: int = DEFAULT_RESULT_LIMIT

    def __post_init__(self) -> None:
        if self.result_limit <= 0:
            raise ValueError(f"result_limit must be positive, got {self.result_limit}")

    def cache_key(self) -> tuple[int, str, int]:
        signal_key = self.user_signal.cache_key() if self.user_signal else "anon"
        return (self.seed_movie_id, signal_key, self.result_limit)


@dataclass
class RecommendationResult:
    candidates: list[ScoredCandidate] = field(default_factory=list)
    is_fallback: bool = False
    cancelled: bool = False
    from_cache: bool = False
    error: RecommenderError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

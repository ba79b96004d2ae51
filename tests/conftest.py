import importlib
import sys
from datetime import date
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from tmdb_rec.errors import MovieNotFound, UpstreamUnavailable  # noqa: E402
from tmdb_rec.models import CastMember, MovieRecord, NamedEntity  # noqa: E402

TODAY = date(2026, 6, 1)

GENRES = {
    28: "Action",
    18: "Drama",
    35: "Comedy",
    878: "Science Fiction",
    53: "Thriller",
    27: "Horror",
}


def make_movie(
    movie_id: int,
    title: str | None = None,
    director: int | None = None,
    genres=(),
    cast=(),
    keywords=(),
    year: int = 2023,
    vote_average: float = 0.0,
    vote_count: int = 0,
    popularity: float = 0.0,
) -> MovieRecord:
    """Enriched record builder; rating/popularity default to zero so scores stay exact."""
    return MovieRecord(
        id=movie_id,
        title=title or f"Movie {movie_id}",
        release_date=date(year, 1, 1) if year else None,
        vote_average=vote_average,
        vote_count=vote_count,
        popularity=popularity,
        genres=tuple(NamedEntity(g, GENRES.get(g, "")) for g in genres),
        keywords=tuple(NamedEntity(k, f"keyword-{k}") for k in keywords),
        director=NamedEntity(director, f"Director {director}") if director else None,
        top_cast=tuple(CastMember(a, f"Actor {a}", f"Role {a}") for a in cast),
        is_enriched=True,
    )


class FakeCatalog:
    """
    In-memory catalog client with per-method call counts and injectable failures.

    failures maps a method name to an exception (raised on every call) or to
    an int N (the first N calls fail with UpstreamUnavailable).
    """

    def __init__(self, movies=(), similar=(), recommended=(), director=(), genre=(), trending=()):
        self.movies = {m.id: m for m in movies}
        self.lists = {
            "fetch_similar": list(similar),
            "fetch_recommended": list(recommended),
            "fetch_by_director": list(director),
            "fetch_by_genres": list(genre),
            "fetch_trending": list(trending),
        }
        self.calls: dict[str, int] = {}
        self.failures: dict[str, object] = {}
        self.movie_failures: set[int] = set()

    def _record(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1
        failure = self.failures.get(name)
        if isinstance(failure, int):
            if failure > 0:
                self.failures[name] = failure - 1
                raise UpstreamUnavailable(name, 503)
        elif failure is not None:
            raise failure

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def fail_all_sources(self) -> None:
        for name in self.lists:
            self.failures[name] = UpstreamUnavailable(name, 500)

    async def fetch_movie(self, movie_id: int) -> MovieRecord:
        self._record("fetch_movie")
        if movie_id in self.movie_failures:
            raise UpstreamUnavailable(f"/movie/{movie_id}", 500)
        if movie_id not in self.movies:
            raise MovieNotFound(f"/movie/{movie_id}", movie_id)
        return self.movies[movie_id]

    async def fetch_similar(self, movie_id: int, page: int = 1):
        self._record("fetch_similar")
        return list(self.lists["fetch_similar"])

    async def fetch_recommended(self, movie_id: int, page: int = 1):
        self._record("fetch_recommended")
        return list(self.lists["fetch_recommended"])

    async def fetch_by_director(self, person_id: int, min_vote_count: int = 100):
        self._record("fetch_by_director")
        return list(self.lists["fetch_by_director"])

    async def fetch_by_genres(self, genre_ids, min_vote_count: int = 100):
        self._record("fetch_by_genres")
        return list(self.lists["fetch_by_genres"])

    async def fetch_trending(self, window: str = "week"):
        self._record("fetch_trending")
        return list(self.lists["fetch_trending"])

    async def fetch_genres(self):
        self._record("fetch_genres")
        return dict(GENRES)


@pytest.fixture
def movie_factory():
    return make_movie


@pytest.fixture
def catalog_factory():
    return FakeCatalog


@pytest.fixture
def fresh_config(monkeypatch):
    """
    Reload config so environment overrides set by a test take effect.
    """
    import tmdb_rec.config as config

    yield importlib.reload(config)
    monkeypatch.undo()
    importlib.reload(config)


@pytest.fixture
def deterministic_config():
    """Config with randomization off and zero retry delay."""
    from tmdb_rec.config import RecommenderConfig

    return RecommenderConfig(randomize=False, fallback_retry_delay=0.0, request_timeout=None)

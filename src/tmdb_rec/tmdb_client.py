import httpx
import logging
import asyncio
from datetime import date, datetime
from .config import (
    TMDB_API_KEY,
    TMDB_READ_TOKEN,
    TMDB_BASE_URL,
    TMDB_LANGUAGE,
    HTTP_TIMEOUT,
    DEFAULT_MAX_CONCURRENT,
    DEFAULT_RETRY_AFTER,
    MAX_RATE_LIMIT_PAUSE,
    DISCOVER_MIN_VOTE_COUNT,
    GENRE_DISCOVER_MIN_RELEASE_DATE,
)
from .errors import MovieNotFound, UpstreamUnavailable
from .models import CastMember, MovieRecord, NamedEntity

logger = logging.getLogger(__name__)

MAX_TOP_CAST = 5
MAX_RELATED_IDS = 10
DETAIL_APPENDS = "credits,keywords,similar,recommendations"


def _parse_release_date(value: str | None) -> date | None:
    """TMDB sends 'YYYY-MM-DD' or an empty string for unreleased titles."""
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        logger.debug(f"Unparseable release date: '{value}'")
        return None


def _find_director(crew: list[dict]) -> NamedEntity | None:
    """First crew member credited as Director, falling back to the Directing department."""
    crew = [member for member in crew if member.get("id") is not None]
    for member in crew:
        if member.get("job") == "Director":
            return NamedEntity(id=member["id"], name=member.get("name", ""))
    for member in crew:
        if member.get("department") == "Directing":
            return NamedEntity(id=member["id"], name=member.get("name", ""))
    return None


def _parse_named(items: list[dict] | None) -> tuple[NamedEntity, ...]:
    return tuple(
        NamedEntity(id=item["id"], name=item.get("name", ""))
        for item in items or []
        if item.get("id") is not None
    )


def parse_movie_details(payload: dict) -> MovieRecord:
    """
    Build an enriched MovieRecord from a /movie/{id} response that had
    credits, keywords, similar and recommendations appended.
    """
    credits = payload.get("credits") or {}
    cast = sorted(
        (c for c in credits.get("cast") or [] if c.get("id") is not None),
        key=lambda c: c.get("order") or 0,
    )
    top_cast = tuple(
        CastMember(id=c["id"], name=c.get("name", ""), character=c.get("character") or "")
        for c in cast[:MAX_TOP_CAST]
    )

    keywords_block = payload.get("keywords") or {}
    # /movie uses "keywords", /tv uses "results"
    keywords = _parse_named(keywords_block.get("keywords", keywords_block.get("results")))

    related: list[int] = []
    for block in ("recommendations", "similar"):
        for item in (payload.get(block) or {}).get("results") or []:
            movie_id = item.get("id")
            if movie_id is not None and movie_id not in related:
                related.append(movie_id)

    return MovieRecord(
        id=payload["id"],
        title=payload.get("title") or payload.get("original_title") or f"Movie {payload['id']}",
        release_date=_parse_release_date(payload.get("release_date")),
        vote_average=float(payload.get("vote_average") or 0.0),
        vote_count=int(payload.get("vote_count") or 0),
        popularity=float(payload.get("popularity") or 0.0),
        genres=_parse_named(payload.get("genres")),
        keywords=keywords,
        director=_find_director(credits.get("crew") or []),
        top_cast=top_cast,
        related_ids=frozenset(related[:MAX_RELATED_IDS]),
        overview=payload.get("overview") or "",
        poster_path=payload.get("poster_path"),
        is_enriched=True,
    )


def parse_movie_summary(payload: dict, genre_names: dict[int, str] | None = None) -> MovieRecord:
    """Build a partial MovieRecord from a list/discover/trending result entry."""
    genre_names = genre_names or {}
    if payload.get("genres"):
        genres = _parse_named(payload["genres"])
    else:
        genres = tuple(
            NamedEntity(id=gid, name=genre_names.get(gid, ""))
            for gid in payload.get("genre_ids") or []
        )

    return MovieRecord(
        id=payload["id"],
        title=payload.get("title") or payload.get("original_title") or f"Movie {payload['id']}",
        release_date=_parse_release_date(payload.get("release_date")),
        vote_average=float(payload.get("vote_average") or 0.0),
        vote_count=int(payload.get("vote_count") or 0),
        popularity=float(payload.get("popularity") or 0.0),
        genres=genres,
        overview=payload.get("overview") or "",
        poster_path=payload.get("poster_path"),
    )


class TMDBClient:
    """
    Async TMDB catalog client with bounded concurrency.

    Pure I/O boundary: every call either returns parsed MovieRecords or
    raises UpstreamUnavailable (MovieNotFound for 404). Calls are never
    retried here; retry and fallback policy belongs to the callers.
    """

    def __init__(
        self,
        api_key: str = TMDB_API_KEY,
        read_token: str = TMDB_READ_TOKEN,
        base_url: str = TMDB_BASE_URL,
        language: str = TMDB_LANGUAGE,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        timeout: float = HTTP_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.read_token = read_token
        self.base_url = base_url.rstrip("/")
        self.language = language
        self.timeout = timeout
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.client = client
        self._owns_client = client is None
        self._genre_names: dict[int, str] | None = None
        # Coordinated rate limiting: when one call hits 429, all calls pause
        self._rate_limit_event = asyncio.Event()
        self._rate_limit_event.set()  # Start in "not rate limited" state

    def _build_client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json", "User-Agent": "tmdb-rec/1.0"}
        if self.read_token:
            headers["Authorization"] = f"Bearer {self.read_token}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            follow_redirects=True,
            timeout=self.timeout,
        )

    async def __aenter__(self):
        """Async context manager entry."""
        if self.client is None:
            self.client = self._build_client()
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.aclose()
        return False

    async def aclose(self) -> None:
        if self.client and self._owns_client:
            await self.client.aclose()
            self.client = None

    async def _get(self, endpoint: str, params: dict | None = None) -> dict:
        """
        Internal GET returning decoded JSON.
        Requires the context manager (or an injected client) to have set self.client.
        """
        if not self.client:
            raise RuntimeError("TMDBClient must be used as an async context manager")

        query = {"language": self.language}
        if self.api_key and not self.read_token:
            query["api_key"] = self.api_key
        query.update({k: v for k, v in (params or {}).items() if v is not None})

        async with self.semaphore:
            await self._rate_limit_event.wait()

            try:
                resp = await self.client.get(endpoint, params=query)
            except httpx.TimeoutException as exc:
                logger.warning(f"Timeout on {endpoint}")
                raise UpstreamUnavailable(endpoint, message="timeout") from exc
            except httpx.HTTPError as exc:
                logger.error(f"Request error on {endpoint}: {type(exc).__name__}: {exc}")
                raise UpstreamUnavailable(endpoint, message=type(exc).__name__) from exc

            if resp.status_code == 429:
                await self._pause_for_rate_limit(endpoint, resp)
                raise UpstreamUnavailable(endpoint, 429)

            if resp.status_code >= 400:
                logger.warning(f"HTTP {resp.status_code} on {endpoint}")
                raise UpstreamUnavailable(endpoint, resp.status_code)

            try:
                return resp.json()
            except ValueError as exc:
                logger.error(f"Invalid JSON from {endpoint}: {exc}")
                raise UpstreamUnavailable(endpoint, resp.status_code, "invalid JSON") from exc

    async def _pause_for_rate_limit(self, endpoint: str, resp: httpx.Response) -> None:
        try:
            retry_after = float(resp.headers.get("Retry-After", DEFAULT_RETRY_AFTER))
        except ValueError:
            retry_after = DEFAULT_RETRY_AFTER
        retry_after = min(retry_after, MAX_RATE_LIMIT_PAUSE)
        logger.warning(f"Rate limited on {endpoint}, pausing ALL calls for {retry_after:.0f}s")

        # Pause all concurrent calls, then resume
        self._rate_limit_event.clear()
        try:
            await asyncio.sleep(retry_after)
        finally:
            self._rate_limit_event.set()

    async def _get_results(self, endpoint: str, params: dict | None = None) -> list[MovieRecord]:
        payload = await self._get(endpoint, params)
        genre_names = self._genre_names or {}
        return [
            parse_movie_summary(item, genre_names)
            for item in payload.get("results") or []
            if item.get("id") is not None
        ]

    async def fetch_movie(self, movie_id: int) -> MovieRecord:
        """Fetch the enriched record: details, credits, keywords and related lists."""
        endpoint = f"/movie/{movie_id}"
        try:
            payload = await self._get(endpoint, {"append_to_response": DETAIL_APPENDS})
        except UpstreamUnavailable as exc:
            if exc.status_code == 404:
                raise MovieNotFound(endpoint, movie_id) from exc
            raise
        try:
            return parse_movie_details(payload)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.error(f"Malformed details for movie {movie_id}: {type(exc).__name__}: {exc}")
            raise UpstreamUnavailable(endpoint, message="malformed payload") from exc

    async def fetch_similar(self, movie_id: int, page: int = 1) -> list[MovieRecord]:
        return await self._get_results(f"/movie/{movie_id}/similar", {"page": page})

    async def fetch_recommended(self, movie_id: int, page: int = 1) -> list[MovieRecord]:
        return await self._get_results(f"/movie/{movie_id}/recommendations", {"page": page})

    async def fetch_by_director(
        self, person_id: int, min_vote_count: int = DISCOVER_MIN_VOTE_COUNT
    ) -> list[MovieRecord]:
        return await self._get_results(
            "/discover/movie",
            {
                "with_crew": person_id,
                "sort_by": "vote_average.desc",
                "vote_count.gte": min_vote_count,
            },
        )

    async def fetch_by_genres(
        self,
        genre_ids: list[int],
        min_vote_count: int = DISCOVER_MIN_VOTE_COUNT,
        min_release_date: str | None = GENRE_DISCOVER_MIN_RELEASE_DATE,
    ) -> list[MovieRecord]:
        return await self._get_results(
            "/discover/movie",
            {
                "with_genres": ",".join(str(g) for g in genre_ids),
                "sort_by": "vote_average.desc",
                "vote_count.gte": min_vote_count,
                "primary_release_date.gte": min_release_date,
            },
        )

    async def fetch_trending(self, window: str = "week") -> list[MovieRecord]:
        if window not in ("day", "week"):
            raise ValueError(f"Trending window must be 'day' or 'week', got '{window}'")
        return await self._get_results(f"/trending/movie/{window}")

    async def fetch_genres(self) -> dict[int, str]:
        """Genre id -> name map, fetched once per client and used to label list results."""
        if self._genre_names is None:
            payload = await self._get("/genre/movie/list")
            self._genre_names = {g["id"]: g.get("name", "") for g in payload.get("genres") or []}
        return self._genre_names

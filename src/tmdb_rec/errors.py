"""Error taxonomy for the ranking pipeline."""


class RecommenderError(Exception):
    """Base class for all recommendation engine errors."""


class UpstreamUnavailable(RecommenderError):
    """A single catalog call failed (network, timeout, 4xx/5xx)."""

    def __init__(self, endpoint: str, status_code: int | None = None, message: str | None = None):
        self.endpoint = endpoint
        self.status_code = status_code
        detail = message or (f"HTTP {status_code}" if status_code else "request failed")
        super().__init__(f"{endpoint}: {detail}")


class MovieNotFound(UpstreamUnavailable):
    """The catalog has no movie with the requested id."""

    def __init__(self, endpoint: str, movie_id: int):
        self.movie_id = movie_id
        super().__init__(endpoint, 404, f"movie {movie_id} not found")


class SeedNotFound(RecommenderError):
    """The seed movie could not be resolved. Terminal for the request."""

    def __init__(self, movie_id: int):
        self.movie_id = movie_id
        super().__init__(f"Could not resolve seed movie {movie_id}")


class EnrichmentFailed(RecommenderError):
    """A candidate's full record could not be built; the candidate is dropped."""

    def __init__(self, movie_id: int, cause: Exception | None = None):
        self.movie_id = movie_id
        self.cause = cause
        super().__init__(f"Enrichment failed for movie {movie_id}: {cause}")


class AllSourcesFailed(RecommenderError):
    """Neither the candidate sources nor the trending fallback produced results."""


class RequestCancelled(RecommenderError):
    """The caller cancelled the request before any candidate was scored."""

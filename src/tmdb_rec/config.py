"""
Configuration constants for the TMDB recommendation engine.

This module centralizes all tunable weights, TTLs, batch sizes and limits.
Values can be overridden via environment variables; callers that need a
different calibration build a RecommenderConfig and pass it in.
"""
import os
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


# TMDB API
TMDB_API_KEY = os.environ.get("TMDB_API_KEY", "")
TMDB_READ_TOKEN = os.environ.get("TMDB_READ_TOKEN", "")
TMDB_BASE_URL = os.environ.get("TMDB_BASE_URL", "https://api.themoviedb.org/3")
TMDB_LANGUAGE = os.environ.get("TMDB_LANGUAGE", "en-US")

# HTTP client
HTTP_TIMEOUT = _get_float_env("TMDB_REC_HTTP_TIMEOUT", 10.0, min_val=0.1)
DEFAULT_MAX_CONCURRENT = _get_int_env("TMDB_REC_MAX_CONCURRENT", 10, min_val=1)
DEFAULT_RETRY_AFTER = 10  # Pause if a 429 carries no Retry-After header
MAX_RATE_LIMIT_PAUSE = 30.0  # Never stall all requests longer than this

# Caches (seconds)
MOVIE_CACHE_TTL = _get_float_env("TMDB_REC_MOVIE_CACHE_TTL", 60 * 60, min_val=0.0)
RESULT_CACHE_TTL = _get_float_env("TMDB_REC_RESULT_CACHE_TTL", 5 * 60, min_val=0.0)

# Candidate aggregation
MAX_CANDIDATES = _get_int_env("TMDB_REC_MAX_CANDIDATES", 100)
GENRE_SEED_COUNT = 2  # Seed genres used for genre discovery
DISCOVER_MIN_VOTE_COUNT = _get_int_env("TMDB_REC_DISCOVER_MIN_VOTES", 100, min_val=0)
GENRE_DISCOVER_MIN_RELEASE_DATE = "2010-01-01"
TRENDING_WINDOW = "week"

# Ranking pipeline
DEFAULT_RESULT_LIMIT = 5
SCORING_BATCH_SIZE = _get_int_env("TMDB_REC_BATCH_SIZE", 10)
QUALIFYING_SUPERSET = _get_int_env("TMDB_REC_QUALIFYING_SUPERSET", 50)
MIN_SIMILARITY = 0.3  # Candidates below this content score are dropped
CONTENT_BLEND = 0.6
COLLABORATIVE_BLEND = 0.4
REQUEST_TIMEOUT = _get_float_env("TMDB_REC_REQUEST_TIMEOUT", 0.0, min_val=0.0)  # 0 = no deadline
FALLBACK_MAX_RETRIES = 2
FALLBACK_RETRY_DELAY = 0.5

# Content similarity weights
CONTENT_WEIGHTS = {
    'director': 0.20,
    'actor_1': 0.25,    # Lead
    'actor_2': 0.15,
    'actor_3': 0.10,
    'genre': 0.30,      # Scaled by Jaccard index
    'keyword': 0.10,    # Scaled by shared / larger set
    'vote_average': 0.05,
    'popularity': 0.03,
}
RATING_MIN_VOTE_COUNT = 100  # Rating contributes only above this vote count
RATING_CONFIDENCE_LOG_SCALE = 6.0  # log10(vote_count) / 6 reaches 1.0 at 1M votes
POPULARITY_SCALE = 100.0
RECENCY_BONUS = 0.05
RECENCY_BONUS_YEARS = 2
RECENCY_NEUTRAL_YEARS = 5
RECENCY_PENALTY = -0.1  # Per decade beyond the neutral window

# Collaborative scoring
COLLABORATIVE_WEIGHT = 0.5
MIN_RATED_MOVIES_FOR_PERSONALIZATION = 5
COLD_START_MAX_FACTOR = 0.1
WATCHLIST_BOOST = 0.1
MAX_WATCHLIST_ITEMS = 10
RANDOM_JITTER = 0.05  # +/-5% tie breaking

# Diversity
DIVERSITY_WINDOW = 5
DIVERSITY_PENALTY = 0.5

# "For you" mode
FOR_YOU_MIN_RATING = 4
FOR_YOU_MAX_SEEDS = 3


@dataclass
class ContentWeights:
    """Per-dimension weights for content similarity."""

    director: float = CONTENT_WEIGHTS['director']
    actors: tuple[float, ...] = (
        CONTENT_WEIGHTS['actor_1'],
        CONTENT_WEIGHTS['actor_2'],
        CONTENT_WEIGHTS['actor_3'],
    )
    genre: float = CONTENT_WEIGHTS['genre']
    keyword: float = CONTENT_WEIGHTS['keyword']
    vote_average: float = CONTENT_WEIGHTS['vote_average']
    popularity: float = CONTENT_WEIGHTS['popularity']
    rating_min_vote_count: int = RATING_MIN_VOTE_COUNT
    rating_confidence_log_scale: float = RATING_CONFIDENCE_LOG_SCALE
    popularity_scale: float = POPULARITY_SCALE
    recency_bonus: float = RECENCY_BONUS
    recency_bonus_years: int = RECENCY_BONUS_YEARS
    recency_neutral_years: int = RECENCY_NEUTRAL_YEARS
    recency_penalty: float = RECENCY_PENALTY


@dataclass
class RecommenderConfig:
    """
    All knobs of the ranking pipeline in one place.

    Defaults come from the module constants above (and therefore from the
    environment). Tests override fields directly, e.g. zeroing the recency
    penalty or disabling randomization.
    """

    content: ContentWeights = field(default_factory=ContentWeights)

    movie_cache_ttl: float = MOVIE_CACHE_TTL
    result_cache_ttl: float = RESULT_CACHE_TTL

    max_candidates: int = MAX_CANDIDATES
    genre_seed_count: int = GENRE_SEED_COUNT
    discover_min_vote_count: int = DISCOVER_MIN_VOTE_COUNT
    trending_window: str = TRENDING_WINDOW

    default_result_limit: int = DEFAULT_RESULT_LIMIT
    batch_size: int = SCORING_BATCH_SIZE
    qualifying_superset: int = QUALIFYING_SUPERSET
    min_similarity: float = MIN_SIMILARITY
    content_blend: float = CONTENT_BLEND
    collaborative_blend: float = COLLABORATIVE_BLEND
    request_timeout: float | None = REQUEST_TIMEOUT or None
    fallback_max_retries: int = FALLBACK_MAX_RETRIES
    fallback_retry_delay: float = FALLBACK_RETRY_DELAY

    collaborative_weight: float = COLLABORATIVE_WEIGHT
    min_rated_movies: int = MIN_RATED_MOVIES_FOR_PERSONALIZATION
    cold_start_max_factor: float = COLD_START_MAX_FACTOR
    watchlist_boost: float = WATCHLIST_BOOST
    max_watchlist_items: int = MAX_WATCHLIST_ITEMS
    random_jitter: float = RANDOM_JITTER
    randomize: bool = True

    diversity_window: int = DIVERSITY_WINDOW
    diversity_penalty: float = DIVERSITY_PENALTY

    for_you_min_rating: int = FOR_YOU_MIN_RATING
    for_you_max_seeds: int = FOR_YOU_MAX_SEEDS

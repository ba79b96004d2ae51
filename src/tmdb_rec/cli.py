import argparse
import asyncio
import json
import logging
import random
from dataclasses import replace
from pathlib import Path

from .config import DEFAULT_RESULT_LIMIT, TRENDING_WINDOW, RecommenderConfig
from .errors import RecommenderError, SeedNotFound
from .models import RecommendationResult, ScoredCandidate, UserSignal
from .ranking import MovieRecommender
from .similarity import ContentSimilarityScorer
from .tmdb_client import TMDBClient

logger = logging.getLogger(__name__)


def _parse_movie_id(value: str) -> int:
    """
    Validate a TMDB movie id from the command line.
    Raises ValueError for anything but a positive integer.
    """
    try:
        movie_id = int(value.strip())
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid movie id: {value}")
    if movie_id <= 0:
        raise ValueError(f"Invalid movie id: {value}")
    return movie_id


def _load_signal(path: str | None) -> UserSignal | None:
    """
    Load a UserSignal from a JSON file shaped like
    {"user_id": "...", "ratings": {"603": 5}, "watchlist": [...], "not_interested": [...]}.
    """
    if not path:
        return None
    payload = json.loads(Path(path).read_text())
    return UserSignal.from_dict(payload)


def _build_config(args: argparse.Namespace) -> RecommenderConfig:
    config = RecommenderConfig()
    if getattr(args, "no_randomize", False):
        config = replace(config, randomize=False)
    return config


def _build_rng(args: argparse.Namespace) -> random.Random:
    seed = getattr(args, "seed", None)
    return random.Random(seed) if seed is not None else random.Random()


def _format_candidate(rank: int, candidate: ScoredCandidate) -> str:
    movie = candidate.movie
    year = f" ({movie.release_year})" if movie.release_year else ""
    lines = [f"{rank:2}. {movie.title}{year}  [score {candidate.final_score:.3f}]"]
    reasons = [f"{m.type.value}: {m.label}" for m in candidate.matches[:4]]
    if reasons:
        lines.append("      " + "; ".join(reasons))
    return "\n".join(lines)


def _output_result(result: RecommendationResult, as_json: bool) -> None:
    if as_json:
        print(json.dumps(
            {
                "is_fallback": result.is_fallback,
                "cancelled": result.cancelled,
                "error": str(result.error) if result.error else None,
                "results": [c.to_dict() for c in result.candidates],
            },
            indent=2,
        ))
        return

    if result.error:
        logger.error(f"{result.error}")
    if result.is_fallback:
        print("No personalized matches available; showing trending movies instead.")
    for rank, candidate in enumerate(result.candidates, 1):
        print(_format_candidate(rank, candidate))


async def _recommend(args: argparse.Namespace) -> RecommendationResult:
    signal = _load_signal(args.signal)
    async with TMDBClient() as client:
        recommender = MovieRecommender(client, config=_build_config(args), rng=_build_rng(args))
        return await recommender.get_recommendations(args.seed_movie_id, signal, limit=args.limit)


def cmd_recommend(args: argparse.Namespace) -> None:
    """Rank movies similar to a seed movie."""
    try:
        result = asyncio.run(_recommend(args))
    except SeedNotFound as exc:
        logger.error(f"{exc}. Check the movie id on themoviedb.org.")
        raise SystemExit(1)
    _output_result(result, args.json)


async def _for_you(args: argparse.Namespace) -> RecommendationResult:
    signal = _load_signal(args.signal)
    async with TMDBClient() as client:
        recommender = MovieRecommender(client, config=_build_config(args), rng=_build_rng(args))
        return await recommender.recommend_for_user(signal, limit=args.limit)


def cmd_for_you(args: argparse.Namespace) -> None:
    """Rank movies from a user's rating history alone."""
    result = asyncio.run(_for_you(args))
    _output_result(result, args.json)


async def _compare(args: argparse.Namespace):
    async with TMDBClient() as client:
        source, target = await asyncio.gather(
            client.fetch_movie(args.source_id),
            client.fetch_movie(args.target_id),
        )
    return source, target, ContentSimilarityScorer().score(source, target)


def cmd_compare(args: argparse.Namespace) -> None:
    """Explain the content similarity between two movies."""
    try:
        source, target, similarity = asyncio.run(_compare(args))
    except RecommenderError as exc:
        logger.error(f"Could not compare movies: {exc}")
        raise SystemExit(1)

    print(f"{source.title} -> {target.title}: {similarity.score:.3f}")
    for match in similarity.matches:
        print(f"  {match.type.value:<10} {match.score:+.2f}  {match.label}")


async def _trending(args: argparse.Namespace):
    async with TMDBClient() as client:
        await client.fetch_genres()
        return await client.fetch_trending(args.window)


def cmd_trending(args: argparse.Namespace) -> None:
    """List trending movies."""
    try:
        movies = asyncio.run(_trending(args))
    except RecommenderError as exc:
        logger.error(f"Could not load trending movies: {exc}")
        raise SystemExit(1)

    for rank, movie in enumerate(movies[:args.limit], 1):
        genres = ", ".join(g.name for g in movie.genres if g.name)
        year = f" ({movie.release_year})" if movie.release_year else ""
        print(f"{rank:2}. {movie.title}{year}  {movie.vote_average:.1f}/10  {genres}")


def _movie_id_arg(value: str) -> int:
    try:
        return _parse_movie_id(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc))


def main():
    parser = argparse.ArgumentParser(description="TMDB movie recommender")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Recommend command
    recommend_parser = subparsers.add_parser("recommend", help="Recommend movies similar to a seed movie")
    recommend_parser.add_argument("seed_movie_id", type=_movie_id_arg, help="TMDB id of the seed movie")
    recommend_parser.add_argument("--signal", help="JSON file with the user's ratings/watchlist")
    recommend_parser.add_argument("--limit", type=int, default=DEFAULT_RESULT_LIMIT,
                                  help=f"Number of recommendations (default: {DEFAULT_RESULT_LIMIT})")
    recommend_parser.add_argument("--seed", type=int, help="Random seed for reproducible tie-breaking")
    recommend_parser.add_argument("--no-randomize", action="store_true",
                                  help="Disable cold-start and tie-breaking randomization")
    recommend_parser.add_argument("--json", action="store_true", help="Print results as JSON")
    recommend_parser.set_defaults(func=cmd_recommend)

    # For-you command
    for_you_parser = subparsers.add_parser("for-you", help="Recommend from rating history alone")
    for_you_parser.add_argument("--signal", required=True, help="JSON file with the user's ratings/watchlist")
    for_you_parser.add_argument("--limit", type=int, default=DEFAULT_RESULT_LIMIT,
                                help=f"Number of recommendations (default: {DEFAULT_RESULT_LIMIT})")
    for_you_parser.add_argument("--seed", type=int, help="Random seed for reproducible tie-breaking")
    for_you_parser.add_argument("--no-randomize", action="store_true",
                                help="Disable cold-start and tie-breaking randomization")
    for_you_parser.add_argument("--json", action="store_true", help="Print results as JSON")
    for_you_parser.set_defaults(func=cmd_for_you)

    # Compare command
    compare_parser = subparsers.add_parser("compare", help="Explain content similarity between two movies")
    compare_parser.add_argument("source_id", type=_movie_id_arg, help="TMDB id of the source movie")
    compare_parser.add_argument("target_id", type=_movie_id_arg, help="TMDB id of the target movie")
    compare_parser.set_defaults(func=cmd_compare)

    # Trending command
    trending_parser = subparsers.add_parser("trending", help="List trending movies")
    trending_parser.add_argument("--window", choices=["day", "week"], default=TRENDING_WINDOW)
    trending_parser.add_argument("--limit", type=int, default=20, help="Number of movies to show")
    trending_parser.set_defaults(func=cmd_trending)

    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)

"""
Content similarity between two movie records.

A weighted additive model over director, billing-ordered cast, genres,
keywords, rating, popularity and recency. Each dimension is a rule that
returns its score contribution and the matches explaining it; rules run in
a fixed order so the match list is order-stable.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Sequence

import numpy as np

from .config import ContentWeights
from .models import Match, MatchType, MovieRecord

logger = logging.getLogger(__name__)

ACTOR_ROLES = ("Lead", "Supporting", "Supporting")
MAX_KEYWORD_LABELS = 3


@dataclass
class SimilarityResult:
    score: float
    matches: list[Match] = field(default_factory=list)


RuleFunc = Callable[
    ["ContentSimilarityScorer", MovieRecord, MovieRecord],
    tuple[float, list[Match]],
]


def _match(match_type: MatchType, label: str, score: float) -> Match:
    return Match(type=match_type, label=label, score=round(score, 2))


def _director_rule(
    scorer: "ContentSimilarityScorer",
    source: MovieRecord,
    target: MovieRecord,
) -> tuple[float, list[Match]]:
    """Exact director match by person id."""
    if source.director and target.director and source.director.id == target.director.id:
        weight = scorer.weights.director
        return weight, [_match(MatchType.DIRECTOR, source.director.name, weight)]
    return 0.0, []


def _actor_rule(
    scorer: "ContentSimilarityScorer",
    source: MovieRecord,
    target: MovieRecord,
) -> tuple[float, list[Match]]:
    """Target's top-billed actors that also appear in the source's top cast."""
    source_ids = {member.id for member in source.top_cast}
    score = 0.0
    matches: list[Match] = []

    for position, actor in enumerate(target.top_cast[:len(scorer.weights.actors)]):
        if actor.id not in source_ids:
            continue
        weight = scorer.weights.actors[position]
        if weight <= 0:
            continue
        score += weight
        role = ACTOR_ROLES[min(position, len(ACTOR_ROLES) - 1)]
        label = f"{actor.name} ({role})"
        matches.append(_match(MatchType.ACTOR, label, weight))

    return score, matches


def _genre_rule(
    scorer: "ContentSimilarityScorer",
    source: MovieRecord,
    target: MovieRecord,
) -> tuple[float, list[Match]]:
    """Jaccard index of genre id sets."""
    source_ids = source.genre_ids
    target_ids = target.genre_ids
    if not source_ids or not target_ids:
        return 0.0, []

    shared = source_ids & target_ids
    if not shared:
        return 0.0, []

    similarity = len(shared) / len(source_ids | target_ids)
    score = scorer.weights.genre * similarity
    names = [g.name or str(g.id) for g in target.genres if g.id in shared]
    return score, [_match(MatchType.GENRE, ", ".join(names), score)]


def _keyword_rule(
    scorer: "ContentSimilarityScorer",
    source: MovieRecord,
    target: MovieRecord,
) -> tuple[float, list[Match]]:
    """Shared keywords relative to the larger keyword set."""
    source_ids = source.keyword_ids
    target_ids = target.keyword_ids
    if not source_ids or not target_ids:
        return 0.0, []

    shared = source_ids & target_ids
    if not shared:
        return 0.0, []

    score = scorer.weights.keyword * len(shared) / max(len(source_ids), len(target_ids))
    names = [k.name or str(k.id) for k in target.keywords if k.id in shared][:MAX_KEYWORD_LABELS]
    return score, [_match(MatchType.KEYWORD, ", ".join(names), score)]


def _rating_rule(
    scorer: "ContentSimilarityScorer",
    source: MovieRecord,
    target: MovieRecord,
) -> tuple[float, list[Match]]:
    """Community rating, down-weighted by vote-count confidence."""
    weights = scorer.weights
    if not target.vote_average or target.vote_count <= weights.rating_min_vote_count:
        return 0.0, []

    confidence = min(1.0, math.log10(target.vote_count) / weights.rating_confidence_log_scale)
    score = (target.vote_average / 10) * weights.vote_average * confidence
    label = f"Rated {target.vote_average:.1f}/10 ({target.vote_count} votes)"
    return score, [_match(MatchType.RATING, label, score)]


def _popularity_rule(
    scorer: "ContentSimilarityScorer",
    source: MovieRecord,
    target: MovieRecord,
) -> tuple[float, list[Match]]:
    """Popularity with diminishing returns above the scale."""
    if target.popularity <= 0:
        return 0.0, []
    weights = scorer.weights
    score = min(1.0, target.popularity / weights.popularity_scale) * weights.popularity
    return score, [_match(MatchType.POPULARITY, "Popular right now", score)]


def _recency_rule(
    scorer: "ContentSimilarityScorer",
    source: MovieRecord,
    target: MovieRecord,
) -> tuple[float, list[Match]]:
    """Small bonus for recent releases, proportional penalty for old ones."""
    year = target.release_year
    if year is None:
        return 0.0, []

    weights = scorer.weights
    years_ago = scorer.today.year - year
    if years_ago <= weights.recency_bonus_years:
        score = weights.recency_bonus
        label = "Recent release"
    elif years_ago <= weights.recency_neutral_years:
        return 0.0, []
    else:
        score = weights.recency_penalty * (years_ago / 10)
        label = f"Released {years_ago} years ago"

    if score == 0:
        return 0.0, []
    return score, [_match(MatchType.RECENCY, label, score)]


DEFAULT_SIMILARITY_RULES: list[RuleFunc] = [
    _director_rule,
    _actor_rule,
    _genre_rule,
    _keyword_rule,
    _rating_rule,
    _popularity_rule,
    _recency_rule,
]


class ContentSimilarityScorer:
    """
    Score how close target is to source using metadata only.

    The result is clamped to [0, 1]. Matches follow rule order: director,
    actors in billing order, genre, keyword, then rating, popularity and
    recency.
    """

    def __init__(
        self,
        weights: ContentWeights | None = None,
        today: date | None = None,
        rules: list[RuleFunc] | None = None,
    ):
        self.weights = weights or ContentWeights()
        self._today = today
        self.rules = rules or DEFAULT_SIMILARITY_RULES

    @property
    def today(self) -> date:
        return self._today or date.today()

    def score(self, source: MovieRecord, target: MovieRecord) -> SimilarityResult:
        total = 0.0
        matches: list[Match] = []

        for rule in self.rules:
            delta, rule_matches = rule(self, source, target)
            total += delta
            matches.extend(rule_matches)

        return SimilarityResult(score=max(0.0, min(1.0, total)), matches=matches)

    def similarity(self, source: MovieRecord, target: MovieRecord) -> float:
        """Scalar-only shortcut."""
        return self.score(source, target).score

    def best_score(self, sources: Sequence[MovieRecord], target: MovieRecord) -> SimilarityResult:
        """Highest-scoring comparison of target against several sources."""
        best = SimilarityResult(score=0.0)
        for source in sources:
            result = self.score(source, target)
            if result.score > best.score:
                best = result
        return best

    def pairwise(
        self,
        records: Sequence[MovieRecord],
        others: Sequence[MovieRecord] | None = None,
    ) -> np.ndarray:
        """
        Similarity matrix with records as sources and others (default: records)
        as targets: result[i, j] = similarity(records[i], others[j]).
        """
        others = records if others is None else others
        matrix = np.zeros((len(records), len(others)))
        for i, source in enumerate(records):
            for j, target in enumerate(others):
                matrix[i, j] = self.similarity(source, target)
        return matrix

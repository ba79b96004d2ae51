import pytest

from tmdb_rec.config import RecommenderConfig
from tmdb_rec.diversity import DiversityAdjuster, final_sort_key
from tmdb_rec.models import ScoredCandidate
from tmdb_rec.similarity import ContentSimilarityScorer

from conftest import TODAY, make_movie


def scored(movie, combined):
    return ScoredCandidate(
        movie=movie,
        content_score=combined,
        collaborative_score=0.0,
        combined_score=combined,
        final_score=combined,
    )


@pytest.fixture
def adjuster():
    return DiversityAdjuster(RecommenderConfig())


def test_factor_without_prior_picks_is_neutral(adjuster):
    assert adjuster.factor([]) == 1.0


def test_factor_halves_exact_duplicates(adjuster):
    assert adjuster.factor([1.0] * 5) == pytest.approx(0.5)
    assert adjuster.factor([0.4, 0.6]) == pytest.approx(0.75)


def test_factor_only_considers_window(adjuster):
    assert adjuster.factor([0.0, 0.0, 0.0, 0.0, 0.0, 1.0]) == 1.0


def test_near_duplicate_is_penalized_after_first_pick(adjuster):
    scorer = ContentSimilarityScorer(today=TODAY)
    first = make_movie(1, director=7, cast=[1, 2, 3], genres=[28, 18], vote_count=900)
    twin = make_movie(2, director=7, cast=[1, 2, 3], genres=[28, 18], vote_count=800)
    novel = make_movie(3, genres=[35], vote_count=700)

    result = adjuster.apply([scored(twin, 0.6), scored(novel, 0.4), scored(first, 0.6)], scorer)

    assert [c.movie.id for c in result] == [1, 2, 3]
    assert result[0].final_score == pytest.approx(0.6)
    assert result[1].diversity_factor == pytest.approx(0.5)
    assert result[1].final_score < result[1].combined_score
    # Nothing in common with either pick
    assert result[2].diversity_factor == 1.0
    assert result[2].final_score == pytest.approx(0.4)


def test_final_sort_key_breaks_ties_by_votes_then_id():
    candidates = [
        scored(make_movie(3, vote_count=10), 0.5),
        scored(make_movie(1, vote_count=10), 0.5),
        scored(make_movie(2, vote_count=99), 0.5),
        scored(make_movie(4, vote_count=0), 0.9),
    ]

    assert [c.movie.id for c in sorted(candidates, key=final_sort_key)] == [4, 2, 1, 3]


def test_apply_compares_against_head_of_ranking_via_pairwise(adjuster):
    calls = []

    class RecordingScorer(ContentSimilarityScorer):
        def pairwise(self, records, others=None):
            calls.append(([m.id for m in records], [m.id for m in others]))
            return super().pairwise(records, others)

    candidates = [scored(make_movie(i, genres=[28]), 0.9 - i / 100) for i in range(1, 8)]

    result = adjuster.apply(candidates, RecordingScorer(today=TODAY))

    assert calls == [([1, 2, 3, 4, 5, 6, 7], [1, 2, 3, 4, 5])]
    assert result[0].diversity_factor == 1.0
    # Identical genres: 0.3 similarity to each earlier pick
    assert result[6].diversity_factor == pytest.approx(1 - 0.3 * 0.5)

import pytest

from tmdb_rec.config import ContentWeights
from tmdb_rec.models import MatchType
from tmdb_rec.similarity import ContentSimilarityScorer

from conftest import TODAY, make_movie


@pytest.fixture
def scorer():
    return ContentSimilarityScorer(today=TODAY)


def test_director_match_contributes_exact_weight(scorer):
    source = make_movie(1, director=7)
    target = make_movie(2, director=7)

    result = scorer.score(source, target)

    assert result.score == pytest.approx(0.20)
    assert [m.type for m in result.matches] == [MatchType.DIRECTOR]
    assert result.matches[0].label == "Director 7"
    assert result.matches[0].score == 0.2


def test_director_match_uses_configured_weight():
    weights = ContentWeights(director=0.4)
    scorer = ContentSimilarityScorer(weights, today=TODAY)

    result = scorer.score(make_movie(1, director=7), make_movie(2, director=7, genres=[28]))

    director = [m for m in result.matches if m.type == MatchType.DIRECTOR]
    assert director and director[0].score == 0.4


def test_actor_weights_follow_target_billing(scorer):
    source = make_movie(1, cast=[1, 2, 3])
    target = make_movie(2, cast=[3, 1, 9])

    result = scorer.score(source, target)

    assert result.score == pytest.approx(0.25 + 0.15)
    assert [(m.label, m.score) for m in result.matches] == [
        ("Actor 3 (Lead)", 0.25),
        ("Actor 1 (Supporting)", 0.15),
    ]


def test_actors_beyond_third_billing_are_ignored(scorer):
    source = make_movie(1, cast=[1])
    target = make_movie(2, cast=[9, 8, 7, 1])

    assert scorer.score(source, target).score == 0.0


def test_genre_overlap_is_jaccard(scorer):
    source = make_movie(1, genres=[28, 18])
    target = make_movie(2, genres=[28])

    result = scorer.score(source, target)

    assert result.score == pytest.approx(0.15)
    assert result.matches[0].type == MatchType.GENRE
    assert result.matches[0].label == "Action"
    assert result.matches[0].score == 0.15


def test_disjoint_genres_produce_no_match(scorer):
    result = scorer.score(make_movie(1, genres=[28]), make_movie(2, genres=[35]))

    assert result.score == 0.0
    assert result.matches == []


def test_keyword_overlap_relative_to_larger_set(scorer):
    source = make_movie(1, keywords=[1, 2, 3, 4])
    target = make_movie(2, keywords=[1, 2])

    result = scorer.score(source, target)

    assert result.score == pytest.approx(0.05)
    assert result.matches[0].type == MatchType.KEYWORD
    assert result.matches[0].label == "keyword-1, keyword-2"


def test_rating_is_scaled_by_vote_confidence(scorer):
    confident = make_movie(2, vote_average=8.0, vote_count=1000)
    too_few_votes = make_movie(3, vote_average=8.0, vote_count=100)

    # log10(1000) / 6 = 0.5
    assert scorer.score(make_movie(1), confident).score == pytest.approx(0.8 * 0.05 * 0.5)
    assert scorer.score(make_movie(1), too_few_votes).score == 0.0


def test_popularity_has_diminishing_returns(scorer):
    assert scorer.score(make_movie(1), make_movie(2, popularity=50)).score == pytest.approx(0.015)
    assert scorer.score(make_movie(1), make_movie(3, popularity=500)).score == pytest.approx(0.03)


def test_recency_bonus_neutral_window_and_penalty():
    # Neutralize everything but recency, and give the penalty room above zero
    scorer = ContentSimilarityScorer(ContentWeights(director=0.5), today=TODAY)
    source = make_movie(1, director=7)

    recent = scorer.score(source, make_movie(2, director=7, year=2025))
    neutral = scorer.score(source, make_movie(3, director=7, year=2022))
    old = scorer.score(source, make_movie(4, director=7, year=2006))

    assert recent.score == pytest.approx(0.55)
    assert recent.matches[-1].type == MatchType.RECENCY
    assert neutral.score == pytest.approx(0.5)
    assert all(m.type != MatchType.RECENCY for m in neutral.matches)
    # 20 years -> -0.1 * 2
    assert old.score == pytest.approx(0.3)
    assert old.matches[-1].score == -0.2


def test_score_is_clamped_to_unit_interval(scorer):
    source = make_movie(1, director=7, cast=[1, 2, 3], genres=[28, 18], keywords=[5])
    twin = make_movie(2, director=7, cast=[1, 2, 3], genres=[28, 18], keywords=[5],
                      popularity=100, year=2025)
    ancient = make_movie(3, year=1956)

    assert scorer.score(source, twin).score == 1.0
    assert scorer.score(source, ancient).score == 0.0


def test_matches_are_order_stable(scorer):
    source = make_movie(1, director=7, cast=[1, 2], genres=[28], keywords=[5],
                        vote_average=7.0, vote_count=5000, popularity=20)
    target = make_movie(2, director=7, cast=[2, 1], genres=[28], keywords=[5],
                        vote_average=7.0, vote_count=5000, popularity=20, year=2025)

    types = [m.type for m in scorer.score(source, target).matches]

    assert types == [
        MatchType.DIRECTOR,
        MatchType.ACTOR,
        MatchType.ACTOR,
        MatchType.GENRE,
        MatchType.KEYWORD,
        MatchType.RATING,
        MatchType.POPULARITY,
        MatchType.RECENCY,
    ]


def test_best_score_picks_closest_source(scorer):
    target = make_movie(9, director=7, genres=[28])
    sources = [make_movie(1, genres=[28]), make_movie(2, director=7, genres=[28])]

    best = scorer.best_score(sources, target)

    assert best.score == pytest.approx(0.5)
    assert best.matches[0].type == MatchType.DIRECTOR


def test_pairwise_matrix_matches_single_comparisons(scorer):
    a = make_movie(1, director=7, genres=[28])
    b = make_movie(2, director=7, genres=[28, 18])
    c = make_movie(3, genres=[35])

    matrix = scorer.pairwise([a, b, c], [a, b])

    assert matrix.shape == (3, 2)
    assert matrix[0, 0] == pytest.approx(0.5)
    assert matrix[2, 1] == 0.0
    assert matrix[1, 0] == pytest.approx(scorer.similarity(b, a))
    assert scorer.pairwise([a, c]).shape == (2, 2)

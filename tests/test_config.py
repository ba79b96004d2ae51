import importlib

from tmdb_rec import config


def test_env_overrides_and_validation(monkeypatch, fresh_config):
    monkeypatch.setenv("TMDB_REC_HTTP_TIMEOUT", "2.5")
    monkeypatch.setenv("TMDB_REC_MAX_CONCURRENT", "0")  # min clamp
    monkeypatch.setenv("TMDB_REC_MOVIE_CACHE_TTL", "-1")  # should clamp to min
    monkeypatch.setenv("TMDB_REC_MAX_CANDIDATES", "40")

    cfg = importlib.reload(config)

    assert cfg.HTTP_TIMEOUT == 2.5
    assert cfg.DEFAULT_MAX_CONCURRENT == 1
    assert cfg.MOVIE_CACHE_TTL == 0.0
    assert cfg.MAX_CANDIDATES == 40
    assert cfg.RecommenderConfig().max_candidates == 40


def test_invalid_env_values_fall_back_to_defaults(monkeypatch, fresh_config):
    # Use clearly invalid strings to exercise the ValueError branches
    monkeypatch.setenv("TMDB_REC_HTTP_TIMEOUT", "not-a-float")
    monkeypatch.setenv("TMDB_REC_BATCH_SIZE", "bad-int")

    cfg = importlib.reload(config)

    assert cfg.HTTP_TIMEOUT == 10.0
    assert cfg.SCORING_BATCH_SIZE == 10


def test_request_timeout_zero_means_no_deadline(monkeypatch, fresh_config):
    monkeypatch.setenv("TMDB_REC_REQUEST_TIMEOUT", "0")
    assert importlib.reload(config).RecommenderConfig().request_timeout is None

    monkeypatch.setenv("TMDB_REC_REQUEST_TIMEOUT", "1.5")
    assert importlib.reload(config).RecommenderConfig().request_timeout == 1.5


def test_default_weights():
    weights = config.ContentWeights()

    assert weights.director == 0.20
    assert weights.actors == (0.25, 0.15, 0.10)
    assert weights.genre == 0.30
    assert weights.keyword == 0.10
    assert config.CONTENT_BLEND + config.COLLABORATIVE_BLEND == 1.0

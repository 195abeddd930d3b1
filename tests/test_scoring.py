import math
from datetime import datetime, timedelta, timezone

import pytest

from semantic_memory.services.scoring import ScoringConfig, days_since, hybrid_score, recency_score

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_recency_is_one_at_access_time():
    assert recency_score(NOW, 30, now=NOW) == pytest.approx(1.0)


def test_recency_decays_exponentially():
    assert recency_score(NOW - timedelta(days=30), 30, now=NOW) == pytest.approx(math.exp(-1))
    assert recency_score(NOW - timedelta(days=60), 30, now=NOW) == pytest.approx(math.exp(-2))


def test_future_access_is_clamped():
    assert days_since(NOW + timedelta(hours=2), NOW) == 0.0
    assert recency_score(NOW + timedelta(hours=2), 30, now=NOW) == pytest.approx(1.0)


def test_naive_timestamps_are_utc():
    naive = (NOW - timedelta(days=1)).replace(tzinfo=None)
    assert days_since(naive, NOW) == pytest.approx(1.0)


def test_hybrid_formula_defaults():
    assert hybrid_score(1.0, NOW, 0.5, now=NOW) == pytest.approx(1.0)
    expected = (0.8 * 0.6 + 0.2 * math.exp(-10 / 30)) * 1.3
    assert hybrid_score(0.6, NOW - timedelta(days=10), 0.8, now=NOW) == pytest.approx(expected)


def test_importance_multiplier_bounds():
    low = hybrid_score(0.7, NOW, 0.0, now=NOW)
    high = hybrid_score(0.7, NOW, 1.0, now=NOW)
    assert high == pytest.approx(low * 3)


def test_negative_similarity_passes_through():
    assert hybrid_score(-0.5, NOW, 0.5, now=NOW) == pytest.approx(-0.2)


def test_weights_are_not_normalised():
    scoring = ScoringConfig(semantic_weight=1.0, recency_weight=1.0, decay_days=10.0)
    assert scoring.score(1.0, NOW, 0.5, NOW) == pytest.approx(2.0)


def test_more_recent_memory_ranks_higher_at_equal_similarity():
    fresh = hybrid_score(0.5, NOW - timedelta(days=1), 0.5, now=NOW)
    stale = hybrid_score(0.5, NOW - timedelta(days=90), 0.5, now=NOW)
    assert fresh > stale

import numpy as np
import pytest

from faceclock.recognition.embedding import (
    average,
    check_dimension,
    cosine_similarity,
    normalize,
    stability,
)

from .fakes import unit


def test_normalize_produces_unit_vector():
    v = np.array([3.0, 4.0, 0.0, 12.0])
    n = normalize(v)
    assert 0.99 <= np.linalg.norm(n) <= 1.01
    assert n.dtype == np.float32


def test_normalize_is_idempotent():
    v = np.random.default_rng(1).normal(size=192)
    once = normalize(v)
    assert np.allclose(normalize(once), once, atol=1e-6)


@pytest.mark.parametrize("bad", [
    np.zeros(8),
    np.full(8, 1e-9),
    np.array([1.0, np.nan, 0.0]),
    np.array([1.0, np.inf, 0.0]),
    np.array([]),
    np.ones((2, 4)),
    None,
])
def test_normalize_rejects_unusable_input(bad):
    assert normalize(bad) is None


def test_average_renormalizes_mean():
    avg = average([unit(0), unit(1)])
    expected = (unit(0) + unit(1)) / np.sqrt(2)
    assert np.allclose(avg, expected, atol=1e-6)


def test_average_rejects_mismatched_or_empty_input():
    assert average([]) is None
    assert average([unit(0, dim=8), unit(0, dim=4)]) is None
    assert average([unit(0), np.full(8, np.nan)]) is None
    assert average([unit(0), -unit(0)]) is None


def test_stability():
    assert stability([unit(0)]) == 1.0
    assert stability([unit(0), unit(1)]) == pytest.approx(0.0)
    assert stability([unit(0), unit(0) * 3]) == pytest.approx(1.0)
    assert stability([unit(0), np.zeros(8)]) is None


def test_cosine_similarity_clamped_and_validated():
    assert cosine_similarity(unit(0), unit(0) * 5) == pytest.approx(1.0)
    assert cosine_similarity(unit(0), -unit(0)) == pytest.approx(-1.0)
    assert cosine_similarity(unit(0), np.zeros(8)) is None
    assert cosine_similarity(unit(0, dim=8), unit(0, dim=4)) is None


def test_check_dimension():
    assert check_dimension(np.zeros(192), 192)
    assert not check_dimension(np.zeros(128), 192)
    assert not check_dimension(np.zeros((1, 192)), 192)

import numpy as np
import pytest

from faceclock.recognition.gallery import EmployeeTemplate
from faceclock.recognition.matcher import (
    REASON_AMBIGUOUS,
    REASON_BELOW_THRESHOLD,
    REASON_EMPTY_GALLERY,
    IdentityMatcher,
    Invalid,
    Match,
    Unknown,
    outcome_to_dict,
)

from .fakes import mix, unit


def template(employee_id, *embeddings):
    return EmployeeTemplate(employee_id, f"Name {employee_id}", tuple(embeddings))


@pytest.fixture
def matcher():
    return IdentityMatcher(similarity_threshold=0.82, margin_threshold=0.10)


def test_accepts_clear_winner(matcher):
    a = template("A", mix((0, 0.9), (1, np.sqrt(0.19))))
    b = template("B", mix((0, 0.5), (2, np.sqrt(0.75))))
    outcome = matcher.match(unit(0), [a, b])
    assert isinstance(outcome, Match)
    assert outcome.employee_id == "A"
    assert outcome.result.score == pytest.approx(0.9, abs=1e-5)
    assert outcome.result.margin == pytest.approx(0.4, abs=1e-5)


def test_rejects_ambiguous_pair(matcher):
    a = template("A", mix((0, 0.9), (1, np.sqrt(0.19))))
    b = template("B", mix((0, 0.85), (2, np.sqrt(1 - 0.85 ** 2))))
    outcome = matcher.match(unit(0), [a, b])
    assert isinstance(outcome, Unknown)
    assert outcome.reason == REASON_AMBIGUOUS
    assert outcome.best_employee_id == "A"


def test_rejects_below_threshold(matcher):
    a = template("A", mix((0, 0.7), (1, np.sqrt(0.51))))
    outcome = matcher.match(unit(0), [a])
    assert isinstance(outcome, Unknown)
    assert outcome.reason == REASON_BELOW_THRESHOLD


def test_single_employee_margin_is_best_score(matcher):
    outcome = matcher.match(unit(0), [template("A", unit(0))])
    assert isinstance(outcome, Match)
    assert outcome.result.margin == pytest.approx(1.0)


def test_empty_gallery(matcher):
    outcome = matcher.match(unit(0), [])
    assert isinstance(outcome, Unknown)
    assert outcome.reason == REASON_EMPTY_GALLERY


def test_invalid_query_embedding(matcher):
    assert isinstance(matcher.match(np.zeros(8), [template("A", unit(0))]), Invalid)
    assert isinstance(matcher.match(np.full(8, np.nan), [template("A", unit(0))]), Invalid)


def test_best_template_per_employee_counts(matcher):
    a = template("A", unit(3), unit(0))
    b = template("B", unit(1))
    outcome = matcher.match(unit(0), [a, b])
    assert isinstance(outcome, Match)
    assert outcome.employee_id == "A"


def test_invalid_template_is_skipped(matcher):
    broken = template("X", np.zeros(8))
    good = template("A", unit(0))
    outcome = matcher.match(unit(0), [broken, good])
    assert isinstance(outcome, Match)
    assert outcome.employee_id == "A"


def test_outcome_to_dict():
    assert outcome_to_dict(None) is None
    assert outcome_to_dict(Invalid("bad"))['kind'] == 'invalid'
    d = outcome_to_dict(Unknown(0.5, 0.1, REASON_BELOW_THRESHOLD))
    assert d['kind'] == 'unknown'
    assert d['reason'] == REASON_BELOW_THRESHOLD

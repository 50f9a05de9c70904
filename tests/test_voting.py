import pytest

from faceclock.recognition.matcher import Invalid, Match, MatchResult, Unknown
from faceclock.processing.voting import (
    INVALID,
    NO_FACE,
    UNKNOWN,
    EngineState,
    IdentityConfirmed,
    NoDecision,
    TemporalVotingEngine,
    UnknownConfirmed,
    decision_to_dict,
    vote_from_outcome,
)

A = MatchResult("A", "Alice", 0.9, 0.4)
B = MatchResult("B", "Bob", 0.88, 0.3)


@pytest.fixture
def engine():
    e = TemporalVotingEngine()
    e.start(0.0)
    return e


def test_vote_from_outcome():
    assert vote_from_outcome(None) is NO_FACE
    assert vote_from_outcome(Match(A)) is A
    assert vote_from_outcome(Unknown(0.5, 0.1, "below_threshold")) is UNKNOWN
    assert vote_from_outcome(Invalid("bad")) is INVALID


def test_idle_engine_ignores_votes():
    engine = TemporalVotingEngine()
    assert engine.submit(A, 0.0) == NoDecision("idle")
    assert len(engine.buffer) == 0


def test_confirms_identity_on_third_agreeing_vote(engine):
    assert isinstance(engine.submit(A, 0), NoDecision)
    assert isinstance(engine.submit(A, 1), NoDecision)
    decision = engine.submit(A, 2)
    assert isinstance(decision, IdentityConfirmed)
    assert decision.result is A
    assert decision.votes == 3
    assert decision.should_mark
    assert engine.state is EngineState.PROTECTED
    assert engine.protected_identity == "A"
    assert engine.protected_until == pytest.approx(8.0)
    assert len(engine.buffer) == 0
    assert engine.recognition.last_confirmed_identity == "A"

    # the rest of [A, A, A, unknown, A] does not confirm again
    assert isinstance(engine.submit(UNKNOWN, 3), NoDecision)
    assert isinstance(engine.submit(A, 4), NoDecision)


def test_interleaved_unknowns_still_confirm(engine):
    for t, vote in enumerate([A, UNKNOWN, A, B]):
        assert isinstance(engine.submit(vote, t), NoDecision)
    assert isinstance(engine.submit(A, 4), IdentityConfirmed)


def test_window_evicts_old_votes(engine):
    for t, vote in enumerate([A, A, B, B, UNKNOWN, UNKNOWN]):
        assert isinstance(engine.submit(vote, t), NoDecision)
    # window is now [B, B, UNKNOWN, UNKNOWN, A]; A has one vote
    assert isinstance(engine.submit(A, 6), NoDecision)


def test_unknown_confirmed_only_at_fifth(engine):
    for t in range(4):
        assert engine.submit(UNKNOWN, t) == NoDecision("unknown_pending")
    decision = engine.submit(UNKNOWN, 4)
    assert isinstance(decision, UnknownConfirmed)
    assert decision.streak == 5
    assert engine.recognition.consecutive_unknown_count == 0
    assert len(engine.buffer) == 0


def test_identity_vote_resets_unknown_streak(engine):
    for t in range(4):
        engine.submit(UNKNOWN, t)
    engine.submit(A, 4)
    assert engine.recognition.consecutive_unknown_count == 0
    assert isinstance(engine.submit(UNKNOWN, 5), NoDecision)


def test_no_unknown_confirmation_inside_protection(engine):
    for t in range(3):
        engine.submit(A, t)
    # protected until t=8
    for t in range(3, 8):
        assert isinstance(engine.submit(UNKNOWN, t), NoDecision)
    assert isinstance(engine.submit(UNKNOWN, 8), UnknownConfirmed)


def test_no_face_does_not_advance_streak(engine):
    for t in range(10):
        assert engine.submit(NO_FACE, t) == NoDecision("no_face")
    assert engine.recognition.consecutive_unknown_count == 0
    assert engine.buffer.votes[-1] is UNKNOWN


def test_invalid_votes_are_discarded(engine):
    for t in range(4):
        engine.submit(UNKNOWN, t)
    for t in range(4, 14):
        assert engine.submit(INVALID, t) == NoDecision("invalid")
    assert engine.recognition.consecutive_unknown_count == 4
    assert engine.buffer.votes == (UNKNOWN,) * 4
    assert isinstance(engine.submit(UNKNOWN, 14), UnknownConfirmed)


def test_protection_lapses(engine):
    for t in range(3):
        engine.submit(A, t)
    assert engine.is_protected(7.9)
    assert not engine.is_protected(8.0)
    assert engine.state is EngineState.SCANNING
    assert engine.protected_identity is None


def test_debounce_suppresses_repeat_marks():
    engine = TemporalVotingEngine(votes_to_confirm=1, debounce_seconds=2.0)
    engine.start(0.0)
    assert engine.submit(A, 0.0).should_mark
    assert not engine.submit(A, 1.0).should_mark
    assert engine.submit(A, 2.5).should_mark
    assert engine.submit(B, 2.6).should_mark


def test_stop_resets_everything(engine):
    engine.submit(A, 0)
    engine.submit(UNKNOWN, 1)
    engine.stop()
    assert engine.state is EngineState.IDLE
    assert len(engine.buffer) == 0
    assert engine.recognition.consecutive_unknown_count == 0
    assert engine.recognition.last_confirmed_identity is None

    engine.start(10)
    engine.submit(A, 10)
    engine.submit(A, 11)
    assert isinstance(engine.submit(A, 12), IdentityConfirmed)


def test_rejects_impossible_quorum():
    with pytest.raises(ValueError):
        TemporalVotingEngine(window_size=5, votes_to_confirm=6)


def test_decision_to_dict():
    assert decision_to_dict(NoDecision("collecting")) == {'kind': 'none', 'reason': 'collecting'}
    assert decision_to_dict(UnknownConfirmed(1.0, 5))['kind'] == 'unknown'
    d = decision_to_dict(IdentityConfirmed(A, 1.0, 3, True))
    assert d['employee_id'] == 'A'
    assert d['should_mark'] is True

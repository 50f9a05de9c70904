# faceclock/processing/voting.py
"""
Temporal voting / hysteresis state machine.

Turns a stream of noisy per-cycle votes into a single confirmed decision:

    IDLE --start()--> SCANNING --3 of last 5 agree--> PROTECTED(identity, now+6s)
                         ^                                   |
                         +----------- window expires --------+

    SCANNING, 5 consecutive unknown votes, not protected -> UnknownConfirmed

A confirmed identity also passes a short per-identity debounce before the
attendance machine may be invoked again for that person.

Usage:
    engine = TemporalVotingEngine()
    engine.start(now)
    decision = engine.submit(vote_from_outcome(outcome), now)
    if isinstance(decision, IdentityConfirmed) and decision.should_mark:
        attendance.mark_attendance(...)
"""
from collections import Counter, deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, Optional, Tuple, Union

from ..recognition.matcher import Invalid, Match, MatchOutcome, MatchResult


class _VoteSentinel:
    """Non-identity vote marker."""

    def __init__(self, label: str):
        self.label = label

    def __repr__(self):
        return self.label


UNKNOWN = _VoteSentinel("UNKNOWN")
NO_FACE = _VoteSentinel("NO_FACE")      # counts as UNKNOWN in the buffer, not in the streak
INVALID = _VoteSentinel("INVALID")      # discarded: touches neither the buffer nor the streak

Vote = Union[MatchResult, _VoteSentinel]


def vote_from_outcome(outcome: Optional[MatchOutcome]) -> Vote:
    """Match -> its result, no face -> NO_FACE, Invalid -> INVALID, Unknown -> UNKNOWN."""
    if outcome is None:
        return NO_FACE
    if isinstance(outcome, Match):
        return outcome.result
    if isinstance(outcome, Invalid):
        return INVALID
    return UNKNOWN


class EngineState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    PROTECTED = "protected"


@dataclass
class RecognitionState:
    last_confirmed_identity: Optional[str] = None
    last_confirmed_at: Optional[float] = None
    consecutive_unknown_count: int = 0

    def reset(self):
        self.last_confirmed_identity = None
        self.last_confirmed_at = None
        self.consecutive_unknown_count = 0


class VotingBuffer:
    """Sliding window of the last `size` votes (employee ids or UNKNOWN)."""

    def __init__(self, size: int = 5):
        self.size = size
        self._votes: Deque = deque(maxlen=size)

    def push(self, vote):
        self._votes.append(vote)

    def tally(self) -> Counter:
        """Votes per identity; sentinels are not counted."""
        return Counter(v for v in self._votes if not isinstance(v, _VoteSentinel))

    def clear(self):
        self._votes.clear()

    @property
    def votes(self) -> Tuple:
        return tuple(self._votes)

    def __len__(self):
        return len(self._votes)


@dataclass(frozen=True)
class NoDecision:
    reason: str = ""


@dataclass(frozen=True)
class IdentityConfirmed:
    result: MatchResult
    confirmed_at: float
    votes: int
    should_mark: bool        # False while inside the per-identity debounce


@dataclass(frozen=True)
class UnknownConfirmed:
    confirmed_at: float
    streak: int


Decision = Union[NoDecision, IdentityConfirmed, UnknownConfirmed]


def decision_to_dict(decision: Optional[Decision]) -> Optional[dict]:
    if decision is None:
        return None
    if isinstance(decision, IdentityConfirmed):
        return {'kind': 'identity', 'employee_id': decision.result.employee_id,
                'name': decision.result.name, 'votes': decision.votes,
                'should_mark': decision.should_mark}
    if isinstance(decision, UnknownConfirmed):
        return {'kind': 'unknown', 'streak': decision.streak}
    return {'kind': 'none', 'reason': decision.reason}


class TemporalVotingEngine:
    """
    k-of-n voting with protection window, unknown streak and debounce.

    All times are monotonic seconds supplied by the caller.
    """

    def __init__(
        self,
        window_size: int = 5,
        votes_to_confirm: int = 3,
        unknown_streak: int = 5,
        protection_seconds: float = 6.0,
        debounce_seconds: float = 2.0,
    ):
        if not 1 <= votes_to_confirm <= window_size:
            raise ValueError("votes_to_confirm must be within [1, window_size]")
        self.votes_to_confirm = votes_to_confirm
        self.unknown_streak = unknown_streak
        self.protection_seconds = protection_seconds
        self.debounce_seconds = debounce_seconds

        self.buffer = VotingBuffer(window_size)
        self.recognition = RecognitionState()
        self._state = EngineState.IDLE
        self._protected_identity: Optional[str] = None
        self._protected_until: Optional[float] = None
        self._last_marked: Dict[str, float] = {}
        self._results: Dict[str, MatchResult] = {}

    # === STATE ===
    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def protected_identity(self) -> Optional[str]:
        return self._protected_identity

    @property
    def protected_until(self) -> Optional[float]:
        return self._protected_until

    def _refresh(self, now: float):
        if self._state is EngineState.PROTECTED and now >= self._protected_until:
            self._state = EngineState.SCANNING
            self._protected_identity = None
            self._protected_until = None

    def is_protected(self, now: float) -> bool:
        self._refresh(now)
        return self._state is EngineState.PROTECTED

    def start(self, now: float = 0.0):
        """IDLE -> SCANNING. No-op if already running."""
        if self._state is EngineState.IDLE:
            self._state = EngineState.SCANNING

    def stop(self):
        """Back to IDLE; nothing survives a stop/restart."""
        self.buffer.clear()
        self.recognition.reset()
        self._last_marked.clear()
        self._results.clear()
        self._protected_identity = None
        self._protected_until = None
        self._state = EngineState.IDLE

    # === CYCLE ===
    def _debounce(self, employee_id: str, now: float) -> bool:
        last = self._last_marked.get(employee_id)
        if last is not None and now - last < self.debounce_seconds:
            return False
        self._last_marked[employee_id] = now
        return True

    def _confirm(self, result: MatchResult, votes: int, now: float) -> IdentityConfirmed:
        self.recognition.last_confirmed_identity = result.employee_id
        self.recognition.last_confirmed_at = now
        self.recognition.consecutive_unknown_count = 0
        self.buffer.clear()
        self._state = EngineState.PROTECTED
        self._protected_identity = result.employee_id
        self._protected_until = now + self.protection_seconds
        return IdentityConfirmed(
            result=result,
            confirmed_at=now,
            votes=votes,
            should_mark=self._debounce(result.employee_id, now),
        )

    def submit(self, vote: Vote, now: float) -> Decision:
        """
        Feed one cycle's vote.

        Args:
            vote: MatchResult for an accepted face, UNKNOWN, NO_FACE or INVALID
            now: monotonic time in seconds

        Returns:
            IdentityConfirmed, UnknownConfirmed or NoDecision
        """
        if self._state is EngineState.IDLE:
            return NoDecision("idle")
        self._refresh(now)

        if vote is INVALID:
            return NoDecision("invalid")

        if isinstance(vote, MatchResult):
            self.buffer.push(vote.employee_id)
            self._results[vote.employee_id] = vote
        else:
            self.buffer.push(UNKNOWN)

        tally = self.buffer.tally()
        confirmed = [eid for eid, count in tally.items() if count >= self.votes_to_confirm]
        if confirmed:
            if isinstance(vote, MatchResult) and vote.employee_id in confirmed:
                winner = vote
            else:
                # Only reachable when votes_to_confirm <= window / 2
                best_id = max(confirmed, key=lambda eid: tally[eid])
                winner = self._results[best_id]
            return self._confirm(winner, tally[winner.employee_id], now)

        if isinstance(vote, MatchResult):
            self.recognition.consecutive_unknown_count = 0
            return NoDecision("collecting")

        if vote is NO_FACE:
            return NoDecision("no_face")

        self.recognition.consecutive_unknown_count += 1
        streak = self.recognition.consecutive_unknown_count
        if streak >= self.unknown_streak and self._state is not EngineState.PROTECTED:
            self.buffer.clear()
            self.recognition.consecutive_unknown_count = 0
            return UnknownConfirmed(confirmed_at=now, streak=streak)
        return NoDecision("unknown_pending")

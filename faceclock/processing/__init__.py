# faceclock/processing/__init__.py
"""
Processing modules - decisions over the recognition stream.

- voting: Temporal voting / hysteresis engine
- attendance: Attendance session state machine (check-in / check-out)
- scanner: Scanning session loop and CycleEvent stream
"""

from .attendance import AttendanceAction, AttendanceResult, AttendanceStateMachine
from .scanner import CycleEvent, ScanningSession
from .voting import (
    INVALID,
    NO_FACE,
    UNKNOWN,
    EngineState,
    IdentityConfirmed,
    NoDecision,
    TemporalVotingEngine,
    UnknownConfirmed,
    vote_from_outcome,
)

__all__ = [
    'AttendanceAction',
    'AttendanceResult',
    'AttendanceStateMachine',
    'CycleEvent',
    'ScanningSession',
    'INVALID',
    'NO_FACE',
    'UNKNOWN',
    'EngineState',
    'IdentityConfirmed',
    'NoDecision',
    'TemporalVotingEngine',
    'UnknownConfirmed',
    'vote_from_outcome',
]

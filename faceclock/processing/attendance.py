# faceclock/processing/attendance.py
"""
Attendance session state machine.

    NoOpenSession --mark--> OpenSession(check_in)          => CHECK_IN
    OpenSession   --mark, elapsed < gap-->  unchanged      => IGNORED
    OpenSession   --mark, elapsed >= gap--> NoOpenSession  => CHECK_OUT

One employee has at most one open session; this class enforces it, the
store only records. Storage faults come back as ERROR, never as exceptions,
so the scanning loop keeps running.

Usage:
    machine = AttendanceStateMachine(store, min_session_gap=300)
    result = machine.mark_attendance("E1", "Alice", datetime.now())
    if result.action is AttendanceAction.CHECK_OUT:
        print(result.session.duration_seconds)
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from ..data.store import AttendanceSession, AttendanceStore
from ..errors import StorageFault
from ..recognition.gallery import validate_identity

logger = logging.getLogger(__name__)


class AttendanceAction(Enum):
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    IGNORED = "ignored"       # checkout attempted too soon
    ERROR = "error"


@dataclass
class AttendanceResult:
    action: AttendanceAction
    employee_id: str
    name: str
    session: Optional[AttendanceSession] = None
    elapsed_seconds: float = 0.0
    message: str = ""

    @property
    def is_recorded(self) -> bool:
        return self.action in (AttendanceAction.CHECK_IN, AttendanceAction.CHECK_OUT)

    def to_dict(self) -> dict:
        return {
            'action': self.action.value,
            'employee_id': self.employee_id,
            'name': self.name,
            'elapsed_seconds': round(self.elapsed_seconds, 1),
            'message': self.message,
            'session': self.session.to_dict() if self.session else None,
        }


class AttendanceStateMachine:
    """Decides check-in / check-out / ignore for a confirmed identity."""

    def __init__(self, store: AttendanceStore, min_session_gap: float = 300):
        """
        Args:
            store: AttendanceStore implementation
            min_session_gap: Seconds after check-in during which a new
                sighting does not check the employee out
        """
        self.store = store
        self.min_session_gap = min_session_gap

    def mark_attendance(self, employee_id: str, name: str, now: Optional[datetime] = None) -> AttendanceResult:
        if now is None:
            now = datetime.now()

        problem = validate_identity(employee_id, name)
        if problem:
            logger.warning(f"[Attendance] Rejected: {problem}")
            return AttendanceResult(AttendanceAction.ERROR, str(employee_id), str(name), message=problem)
        name = name.strip()

        try:
            open_session = self.store.find_open_session(employee_id)

            if open_session is None:
                session = self.store.insert(employee_id, name, now)
                logger.info(f"[Attendance] {name} ({employee_id}) CHECK-IN")
                return AttendanceResult(AttendanceAction.CHECK_IN, employee_id, name, session=session)

            elapsed = (now - open_session.check_in_time).total_seconds()
            if elapsed < 0 or elapsed < self.min_session_gap:
                logger.debug(f"[Attendance] {name} ignored, {elapsed:.0f}s since check-in")
                return AttendanceResult(
                    AttendanceAction.IGNORED, employee_id, name,
                    session=open_session, elapsed_seconds=elapsed,
                    message=f"Checked in {max(0, int(elapsed))}s ago",
                )

            duration = int(elapsed)
            self.store.close_session(open_session.id, now, duration)
            open_session.check_out_time = now
            open_session.duration_seconds = duration
            logger.info(f"[Attendance] {name} ({employee_id}) CHECK-OUT after {duration}s")
            return AttendanceResult(
                AttendanceAction.CHECK_OUT, employee_id, name,
                session=open_session, elapsed_seconds=elapsed,
            )

        except StorageFault as e:
            logger.error(f"[Attendance] Storage fault for {employee_id}: {e}")
            return AttendanceResult(AttendanceAction.ERROR, employee_id, name, message=str(e))

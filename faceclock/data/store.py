# faceclock/data/store.py
"""
Attendance store interface.

The attendance state machine receives a store at construction; storage
never decides check-in vs check-out, it only records sessions.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class AttendanceSession:
    """One check-in -> check-out work session."""
    id: int
    employee_id: str
    name: str
    check_in_time: datetime
    check_out_time: Optional[datetime] = None
    duration_seconds: int = 0

    @property
    def is_open(self) -> bool:
        return self.check_out_time is None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'employee_id': self.employee_id,
            'name': self.name,
            'check_in_time': self.check_in_time.isoformat(sep=' '),
            'check_out_time': self.check_out_time.isoformat(sep=' ') if self.check_out_time else None,
            'duration_seconds': self.duration_seconds,
            'status': 'working' if self.is_open else 'completed',
        }


class AttendanceStore(ABC):
    """Every method raises StorageFault on persistence failure."""

    @abstractmethod
    def find_open_session(self, employee_id: str) -> Optional[AttendanceSession]:
        raise NotImplementedError("Implement find_open_session method")

    @abstractmethod
    def insert(self, employee_id: str, name: str, check_in_time: datetime) -> AttendanceSession:
        raise NotImplementedError("Implement insert method")

    @abstractmethod
    def close_session(self, session_id: int, check_out_time: datetime, duration_seconds: int) -> None:
        raise NotImplementedError("Implement close_session method")

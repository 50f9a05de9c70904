# faceclock/data/__init__.py
"""
Data layer - storage interfaces and the SQLite implementation.
"""
from .database import (
    SqliteAttendanceStore,
    SqliteGallery,
    get_connection,
    init_db,
)
from .store import AttendanceSession, AttendanceStore

__all__ = [
    'init_db',
    'get_connection',
    'SqliteGallery',
    'SqliteAttendanceStore',
    'AttendanceSession',
    'AttendanceStore',
]

# faceclock/data/database.py
"""
SQLite persistence: enrolled employees, their face templates, and
attendance sessions (check_in -> check_out).

A fresh connection is opened per call, so the scanning loop and the Flask
thread can share a database file. Writes are serialized by a module lock.
Every sqlite3 error surfaces as StorageFault.

Usage:
    init_db("attendance.db")
    gallery = SqliteGallery("attendance.db", dim=192)
    store = SqliteAttendanceStore("attendance.db")
"""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np

from ..errors import DuplicateEmployeeId, EmbeddingInvalid, StorageFault
from ..recognition.embedding import normalize
from ..recognition.gallery import EmployeeTemplate, Gallery
from .store import AttendanceSession, AttendanceStore

logger = logging.getLogger(__name__)

DB_PATH = "attendance.db"

_db_lock = threading.Lock()

SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS employees (
        employee_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS face_templates (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        employee_id TEXT NOT NULL REFERENCES employees(employee_id) ON DELETE CASCADE,
        dim INTEGER NOT NULL,
        embedding BLOB NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS attendance (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        employee_id TEXT NOT NULL,
        name TEXT NOT NULL,
        check_in_time DATETIME NOT NULL,
        check_out_time DATETIME,
        duration_seconds INTEGER DEFAULT 0
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_templates_employee ON face_templates(employee_id)',
    'CREATE INDEX IF NOT EXISTS idx_attendance_employee ON attendance(employee_id)',
    'CREATE INDEX IF NOT EXISTS idx_attendance_open ON attendance(employee_id, check_out_time)',
]


@contextmanager
def get_connection(db_path: str = DB_PATH):
    """
    Connection with Row factory and foreign keys on; commits on success,
    rolls back and raises StorageFault on any sqlite3 error.
    """
    try:
        conn = sqlite3.connect(db_path, timeout=10.0)
    except sqlite3.Error as e:
        raise StorageFault(f"Cannot open database {db_path}: {e}") from e
    conn.row_factory = sqlite3.Row
    try:
        conn.execute('PRAGMA foreign_keys = ON')
        yield conn
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        raise StorageFault(str(e)) from e
    finally:
        conn.close()


def init_db(db_path: str = DB_PATH):
    """Create tables and indexes if missing."""
    with _db_lock, get_connection(db_path) as conn:
        conn.execute('PRAGMA journal_mode = WAL')
        for statement in SCHEMA:
            conn.execute(statement)
    logger.info(f"[DB] Ready: {db_path}")


def _format_datetime(dt: datetime) -> str:
    return dt.isoformat(sep=' ')


def _parse_datetime(dt_str) -> Optional[datetime]:
    """Parse datetime string with or without microseconds."""
    if dt_str is None:
        return None
    if '.' in dt_str:
        return datetime.strptime(dt_str, "%Y-%m-%d %H:%M:%S.%f")
    return datetime.strptime(dt_str, "%Y-%m-%d %H:%M:%S")


def _decode_embedding(blob, dim: int) -> Optional[np.ndarray]:
    if blob is None or len(blob) != dim * 4:
        return None
    vector = np.frombuffer(blob, dtype=np.float32).copy()
    return normalize(vector)


# === GALLERY ===

class SqliteGallery(Gallery):
    """Employees and their templates, stored as float32 BLOBs."""

    def __init__(self, db_path: str = DB_PATH, dim: Optional[int] = None):
        self.db_path = db_path
        self.dim = dim

    def all(self) -> List[EmployeeTemplate]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute('''
                SELECT e.employee_id, e.name, t.id AS template_id, t.dim, t.embedding
                FROM employees e
                JOIN face_templates t ON t.employee_id = e.employee_id
                ORDER BY e.created_at, e.employee_id, t.id
            ''').fetchall()

        names: Dict[str, str] = {}
        vectors: Dict[str, list] = {}
        for row in rows:
            employee_id = row['employee_id']
            names[employee_id] = row['name']
            vectors.setdefault(employee_id, [])
            if self.dim is not None and row['dim'] != self.dim:
                logger.warning(f"[DB] Template {row['template_id']} of {employee_id}: "
                               f"dim {row['dim']} != {self.dim}, skipped")
                continue
            vector = _decode_embedding(row['embedding'], row['dim'])
            if vector is None:
                logger.warning(f"[DB] Template {row['template_id']} of {employee_id} is corrupt, skipped")
                continue
            vectors[employee_id].append(vector)

        templates = []
        for employee_id, embeddings in vectors.items():
            if not embeddings:
                logger.warning(f"[DB] {employee_id} has no usable templates")
                continue
            templates.append(EmployeeTemplate(employee_id, names[employee_id], tuple(embeddings)))
        return templates

    def insert(self, employee_id: str, name: str, embeddings) -> EmployeeTemplate:
        units = []
        for emb in embeddings:
            unit = normalize(emb)
            if unit is None:
                raise EmbeddingInvalid(f"Template for {employee_id} is not a valid embedding")
            if self.dim is not None and unit.shape[0] != self.dim:
                raise EmbeddingInvalid(f"Template for {employee_id} has dim {unit.shape[0]}, expected {self.dim}")
            units.append(unit)
        if not units:
            raise EmbeddingInvalid(f"No templates for {employee_id}")

        with _db_lock, get_connection(self.db_path) as conn:
            try:
                conn.execute(
                    'INSERT INTO employees (employee_id, name) VALUES (?, ?)',
                    (employee_id, name),
                )
            except sqlite3.IntegrityError:
                raise DuplicateEmployeeId(employee_id)
            conn.executemany(
                'INSERT INTO face_templates (employee_id, dim, embedding) VALUES (?, ?, ?)',
                [(employee_id, int(u.shape[0]), u.astype(np.float32).tobytes()) for u in units],
            )
        logger.info(f"[DB] Stored {name} ({employee_id}), {len(units)} template(s)")
        return EmployeeTemplate(employee_id, name, tuple(units))

    def remove(self, employee_id: str) -> bool:
        """Delete an employee and their templates. Attendance history is kept."""
        with _db_lock, get_connection(self.db_path) as conn:
            cursor = conn.execute('DELETE FROM employees WHERE employee_id = ?', (employee_id,))
            return cursor.rowcount > 0

    def list_employees(self) -> List[dict]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute('''
                SELECT e.employee_id, e.name, e.created_at, COUNT(t.id) AS templates
                FROM employees e
                LEFT JOIN face_templates t ON t.employee_id = e.employee_id
                GROUP BY e.employee_id
                ORDER BY e.name
            ''').fetchall()
        return [dict(row) for row in rows]

    def get(self, employee_id: str) -> Optional[dict]:
        with get_connection(self.db_path) as conn:
            row = conn.execute('''
                SELECT e.employee_id, e.name, e.created_at, COUNT(t.id) AS templates
                FROM employees e
                LEFT JOIN face_templates t ON t.employee_id = e.employee_id
                WHERE e.employee_id = ?
                GROUP BY e.employee_id
            ''', (employee_id,)).fetchone()
        return dict(row) if row is not None else None

    def count(self) -> int:
        with get_connection(self.db_path) as conn:
            return conn.execute('SELECT COUNT(*) FROM employees').fetchone()[0]


# === ATTENDANCE ===

def _row_to_session(row) -> AttendanceSession:
    return AttendanceSession(
        id=row['id'],
        employee_id=row['employee_id'],
        name=row['name'],
        check_in_time=_parse_datetime(row['check_in_time']),
        check_out_time=_parse_datetime(row['check_out_time']),
        duration_seconds=row['duration_seconds'] or 0,
    )


class SqliteAttendanceStore(AttendanceStore):
    """Attendance sessions. Never decides check-in vs check-out."""

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path

    def find_open_session(self, employee_id: str) -> Optional[AttendanceSession]:
        with get_connection(self.db_path) as conn:
            row = conn.execute('''
                SELECT * FROM attendance
                WHERE employee_id = ? AND check_out_time IS NULL
                ORDER BY check_in_time DESC LIMIT 1
            ''', (employee_id,)).fetchone()
        return _row_to_session(row) if row else None

    def insert(self, employee_id: str, name: str, check_in_time: datetime) -> AttendanceSession:
        with _db_lock, get_connection(self.db_path) as conn:
            cursor = conn.execute('''
                INSERT INTO attendance (employee_id, name, check_in_time, duration_seconds)
                VALUES (?, ?, ?, 0)
            ''', (employee_id, name, _format_datetime(check_in_time)))
            session_id = cursor.lastrowid
        return AttendanceSession(session_id, employee_id, name, check_in_time)

    def close_session(self, session_id: int, check_out_time: datetime, duration_seconds: int) -> None:
        with _db_lock, get_connection(self.db_path) as conn:
            cursor = conn.execute('''
                UPDATE attendance SET check_out_time = ?, duration_seconds = ?
                WHERE id = ? AND check_out_time IS NULL
            ''', (_format_datetime(check_out_time), int(duration_seconds), session_id))
            if cursor.rowcount == 0:
                raise StorageFault(f"Session {session_id} is not open")

    def list_sessions(self, limit: int = 50) -> List[AttendanceSession]:
        """Most recent sessions first."""
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                'SELECT * FROM attendance ORDER BY check_in_time DESC, id DESC LIMIT ?',
                (int(limit),),
            ).fetchall()
        return [_row_to_session(row) for row in rows]

    def active_sessions(self) -> List[AttendanceSession]:
        """Sessions still waiting for a check-out."""
        with get_connection(self.db_path) as conn:
            rows = conn.execute('''
                SELECT * FROM attendance
                WHERE check_out_time IS NULL
                ORDER BY check_in_time DESC
            ''').fetchall()
        return [_row_to_session(row) for row in rows]

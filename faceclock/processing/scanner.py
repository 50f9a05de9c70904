# faceclock/processing/scanner.py
"""
Scanning session - the periodic recognition cycle.

One cycle:
    capture -> detect -> (per face, largest first) crop -> embed -> match
    -> vote on the largest face -> attendance write if confirmed
    -> CycleEvent to observers

The loop is cooperative: one cycle at a time, a stop flag checked after every
blocking step, and a hard session timeout.

Usage:
    session = ScanningSession(detector, embedder, gallery, matcher,
                              voting, attendance, camera)
    unsubscribe = session.subscribe(lambda event: print(event.decision))
    reason = session.run()      # blocks until stop_scanning() / timeout
"""
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, List, Optional, Tuple

from ..detect.postprocess import FaceBox, crop_face
from ..errors import StorageFault
from ..recognition.embedding import check_dimension
from ..recognition.gallery import EmployeeTemplate, Gallery
from ..recognition.matcher import IdentityMatcher, Invalid, MatchOutcome, outcome_to_dict
from .attendance import AttendanceResult, AttendanceStateMachine
from .voting import (
    Decision, IdentityConfirmed, NoDecision, TemporalVotingEngine,
    decision_to_dict, vote_from_outcome,
)

logger = logging.getLogger(__name__)

STOP_REQUESTED = "stopped"
STOP_TIMEOUT = "timeout"
STOP_CAMERA = "camera_unavailable"

RECENT_EVENTS = 100


@dataclass(frozen=True)
class CycleEvent:
    """Everything one completed cycle saw and decided."""
    timestamp: datetime
    face_boxes: Tuple[FaceBox, ...]
    outcomes: Tuple[MatchOutcome, ...]
    match_outcome: Optional[MatchOutcome]
    decision: Decision
    attendance_result: Optional[AttendanceResult] = None

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp.isoformat(sep=' '),
            'faces': [b.to_dict() for b in self.face_boxes],
            'outcomes': [outcome_to_dict(o) for o in self.outcomes],
            'match': outcome_to_dict(self.match_outcome),
            'decision': decision_to_dict(self.decision),
            'attendance': self.attendance_result.to_dict() if self.attendance_result else None,
        }


class ScanningSession:
    """
    Drives detection, matching, voting and attendance for one camera.

    `frame_source` needs read(), and resume()/pause() around each capture.
    """

    def __init__(
        self,
        detector,
        embedder,
        gallery: Gallery,
        matcher: IdentityMatcher,
        voting: TemporalVotingEngine,
        attendance: AttendanceStateMachine,
        frame_source,
        confidence_threshold: float = 0.75,
        max_faces: int = 4,
        cycle_interval: float = 1.0,
        session_timeout: Optional[float] = 600.0,
        revalidate_gallery: bool = False,
        embedding_dim: Optional[int] = None,
        crop_margin: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = datetime.now,
    ):
        self.detector = detector
        self.embedder = embedder
        self.gallery = gallery
        self.matcher = matcher
        self.voting = voting
        self.attendance = attendance
        self.frame_source = frame_source

        self.confidence_threshold = confidence_threshold
        self.max_faces = max_faces
        self.cycle_interval = cycle_interval
        self.session_timeout = session_timeout
        self.revalidate_gallery = revalidate_gallery
        self.embedding_dim = embedding_dim
        self.crop_margin = crop_margin
        self._clock = clock
        self._wall_clock = wall_clock

        self._stop_event = threading.Event()
        self._cycle_lock = threading.Lock()
        self._observers_lock = threading.Lock()
        self._observers: List[Callable[[CycleEvent], None]] = []

        self._active = False
        self._started_at: Optional[float] = None
        self._stop_reason: Optional[str] = None
        self._templates: List[EmployeeTemplate] = []
        self.cycle_count = 0
        self.recent_events: Deque[CycleEvent] = deque(maxlen=RECENT_EVENTS)

    # === LIFECYCLE ===
    @property
    def is_scanning(self) -> bool:
        return self._active and not self._stop_event.is_set()

    @property
    def stop_reason(self) -> Optional[str]:
        return self._stop_reason

    def start_scanning(self) -> bool:
        """Begin a session. Returns False if one is already running."""
        if self._active:
            return False
        self._stop_event.clear()
        self._stop_reason = None
        self._active = True
        self._started_at = self._clock()
        self.cycle_count = 0
        self._templates = self._load_gallery([])
        self.voting.start(self._started_at)
        logger.info(f"[Scanner] Started, {len(self._templates)} employees enrolled")
        return True

    def stop_scanning(self, reason: str = STOP_REQUESTED):
        """Stop the session and forget all voting state. Idempotent."""
        if not self._active:
            return
        self._active = False
        self._stop_reason = reason
        self._stop_event.set()
        self.voting.stop()
        self.frame_source.pause()
        logger.info(f"[Scanner] Stopped ({reason}) after {self.cycle_count} cycles")

    def _stopped(self) -> bool:
        return self._stop_event.is_set()

    def _timed_out(self, now: float) -> bool:
        return bool(self.session_timeout) and now - self._started_at >= self.session_timeout

    # === OBSERVERS ===
    def subscribe(self, callback: Callable[[CycleEvent], None]) -> Callable[[], None]:
        """Register an observer; returns a function that unregisters it."""
        with self._observers_lock:
            self._observers.append(callback)

        def unsubscribe():
            with self._observers_lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def _emit(self, event: CycleEvent):
        self.recent_events.append(event)
        with self._observers_lock:
            observers = list(self._observers)
        for callback in observers:
            try:
                callback(event)
            except Exception:
                logger.exception("[Scanner] Observer failed")

    # === GALLERY ===
    def _load_gallery(self, fallback: List[EmployeeTemplate]) -> List[EmployeeTemplate]:
        try:
            return list(self.gallery.all())
        except StorageFault as e:
            logger.error(f"[Scanner] Gallery unavailable, keeping previous snapshot: {e}")
            return fallback

    # === CYCLE ===
    def _capture(self):
        self.frame_source.resume()
        try:
            return self.frame_source.read()
        except Exception:
            logger.exception("[Scanner] Capture failed")
            return None
        finally:
            self.frame_source.pause()

    def _detect(self, frame) -> Optional[List[FaceBox]]:
        try:
            boxes = self.detector.detect_faces(frame, self.confidence_threshold)
        except Exception:
            logger.exception("[Scanner] Detector failed")
            return None
        boxes = sorted(boxes, key=lambda b: (b.area, b.confidence), reverse=True)
        return boxes[:self.max_faces]

    def _identify(self, frame, box: FaceBox) -> MatchOutcome:
        face = crop_face(frame, box, self.crop_margin)
        if face is None:
            return Invalid("empty crop")
        try:
            embedding = self.embedder.get_embedding(face)
        except Exception:
            logger.exception("[Scanner] Embedder failed")
            return Invalid("embedder error")
        if embedding is None:
            return Invalid("embedding unavailable")
        if self.embedding_dim is not None and not check_dimension(embedding, self.embedding_dim):
            logger.warning(f"[Scanner] Embedding dimension {getattr(embedding, 'shape', None)} "
                           f"!= {self.embedding_dim}")
            return Invalid("dimension mismatch")
        return self.matcher.match(embedding, self._templates)

    def run_cycle(self) -> Optional[CycleEvent]:
        """
        Run one recognition cycle.

        Returns:
            The emitted CycleEvent, or None when the cycle was skipped
            (another cycle in flight, session stopped, timed out or camera lost)
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("[Scanner] Cycle still in flight, skipping")
            return None
        try:
            return self._cycle()
        finally:
            self._cycle_lock.release()

    def _cycle(self) -> Optional[CycleEvent]:
        if not self.is_scanning:
            return None
        now = self._clock()
        if self._timed_out(now):
            self.stop_scanning(STOP_TIMEOUT)
            return None

        if self.revalidate_gallery:
            self._templates = self._load_gallery(self._templates)

        frame = self._capture()
        if self._stopped():
            return None
        if frame is None:
            logger.error("[Scanner] Camera returned no frame")
            self.stop_scanning(STOP_CAMERA)
            return None

        boxes = self._detect(frame)
        if self._stopped():
            return None
        if boxes is None:
            return self._finish((), (), None, NoDecision("detector_error"))

        outcomes = []
        for box in boxes:
            outcomes.append(self._identify(frame, box))
            if self._stopped():
                return None

        match_outcome = outcomes[0] if outcomes else None
        decision = self.voting.submit(vote_from_outcome(match_outcome), now)

        attendance_result = None
        if isinstance(decision, IdentityConfirmed):
            result = decision.result
            logger.info(f"[Scanner] Confirmed {result.name} ({result.employee_id}) "
                        f"score={result.score:.3f} margin={result.margin:.3f}")
            if decision.should_mark:
                attendance_result = self.attendance.mark_attendance(
                    result.employee_id, result.name, self._wall_clock()
                )

        return self._finish(tuple(boxes), tuple(outcomes), match_outcome, decision, attendance_result)

    def _finish(self, boxes, outcomes, match_outcome, decision, attendance_result=None) -> CycleEvent:
        self.cycle_count += 1
        event = CycleEvent(
            timestamp=self._wall_clock(),
            face_boxes=boxes,
            outcomes=outcomes,
            match_outcome=match_outcome,
            decision=decision,
            attendance_result=attendance_result,
        )
        self._emit(event)
        return event

    # === LOOP ===
    def run(self) -> str:
        """
        Blocking loop: one cycle every `cycle_interval` seconds until stopped.

        Returns:
            Stop reason: "stopped", "timeout" or "camera_unavailable"
        """
        self.start_scanning()
        try:
            while self.is_scanning:
                started = self._clock()
                if self._timed_out(started):
                    self.stop_scanning(STOP_TIMEOUT)
                    break
                try:
                    self.run_cycle()
                except Exception:
                    logger.exception("[Scanner] Cycle failed")
                remaining = self.cycle_interval - (self._clock() - started)
                if remaining > 0:
                    self._stop_event.wait(remaining)
        finally:
            self.stop_scanning(STOP_REQUESTED)
        return self._stop_reason

    def status(self) -> dict:
        now = self._clock()
        return {
            'scanning': self.is_scanning,
            'state': self.voting.state.value,
            'protected_identity': self.voting.protected_identity,
            'cycles': self.cycle_count,
            'enrolled': len(self._templates),
            'uptime_seconds': round(now - self._started_at, 1) if self._started_at is not None else 0.0,
            'stop_reason': self._stop_reason,
        }

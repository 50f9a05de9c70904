import numpy as np
import pytest

from faceclock.data.database import SqliteAttendanceStore, SqliteGallery, init_db
from faceclock.detect.postprocess import FaceBox
from faceclock.processing.attendance import AttendanceAction
from faceclock.processing.voting import IdentityConfirmed, NoDecision
from faceclock.recognition.gallery import register_identity
from faceclock.recognition.matcher import Invalid, Match

from .fakes import (
    BIG, DIM, PROBE, SMALL, FakeDetector, FakeEmbedder, FakeFrameSource, FakeGallery,
    make_session, mix, stable_samples, unit,
)


def test_enroll_then_three_cycles_check_in(tmp_path, clock):
    db_path = str(tmp_path / "attendance.db")
    init_db(db_path)
    gallery = SqliteGallery(db_path, dim=DIM)
    store = SqliteAttendanceStore(db_path)

    register_identity(stable_samples(unit(0)), gallery, "E1", "Alice", dim=DIM)
    register_identity(stable_samples(mix((0, 0.4), (1, np.sqrt(0.84))), seed=1), gallery, "E2", "Bob", dim=DIM)
    [e1] = [t for t in gallery.all() if t.employee_id == "E1"]
    assert len(e1.embeddings) == 1
    assert np.linalg.norm(e1.embeddings[0]) == pytest.approx(1.0, abs=1e-2)

    session = make_session(gallery=gallery, store=store, clock=clock)
    session.start_scanning()

    events = []
    for _ in range(3):
        events.append(session.run_cycle())
        clock.advance(1.0)

    assert isinstance(events[0].decision, NoDecision)
    assert isinstance(events[1].decision, NoDecision)
    decision = events[2].decision
    assert isinstance(decision, IdentityConfirmed)
    assert decision.result.employee_id == "E1"
    assert events[2].attendance_result.action is AttendanceAction.CHECK_IN

    open_session = store.find_open_session("E1")
    assert open_session is not None
    assert open_session.duration_seconds == 0


def test_largest_face_decides_the_vote(clock):
    # detector order is not trusted; the embedder sees faces largest first
    embedder = FakeEmbedder(PROBE, unit(5))
    session = make_session(detector=FakeDetector([SMALL, BIG]), embedder=embedder, clock=clock)
    session.start_scanning()
    event = session.run_cycle()
    assert event.face_boxes == (BIG, SMALL)
    assert len(event.outcomes) == 2
    assert isinstance(event.match_outcome, Match)
    assert event.match_outcome.employee_id == "E1"


def test_max_faces_per_frame(clock):
    boxes = [FaceBox(i * 100, 0, 90, 90, 0.9) for i in range(6)]
    session = make_session(detector=FakeDetector(boxes), clock=clock, max_faces=4)
    session.start_scanning()
    assert len(session.run_cycle().outcomes) == 4


def test_no_face_cycle(clock):
    session = make_session(detector=FakeDetector([]), clock=clock)
    session.start_scanning()
    event = session.run_cycle()
    assert event.match_outcome is None
    assert event.decision == NoDecision("no_face")


def test_uses_verification_threshold(clock):
    detector = FakeDetector([BIG])
    session = make_session(detector=detector, clock=clock, confidence_threshold=0.75)
    session.start_scanning()
    session.run_cycle()
    assert detector.calls == [0.75]


def test_embedder_failure_is_invalid_outcome(clock):
    session = make_session(embedder=FakeEmbedder(None), clock=clock)
    session.start_scanning()
    event = session.run_cycle()
    assert isinstance(event.match_outcome, Invalid)
    assert event.decision == NoDecision("invalid")


def test_broken_embedder_never_reports_unregistered(clock):
    session = make_session(embedder=FakeEmbedder(None), clock=clock)
    session.start_scanning()
    decisions = []
    for _ in range(10):
        decisions.append(session.run_cycle().decision)
        clock.advance(1.0)
    assert decisions == [NoDecision("invalid")] * 10


def test_embedder_exception_is_contained(clock):
    session = make_session(embedder=FakeEmbedder(RuntimeError("boom")), clock=clock)
    session.start_scanning()
    event = session.run_cycle()
    assert isinstance(event.match_outcome, Invalid)


def test_dimension_mismatch_is_invalid(clock):
    session = make_session(embedder=FakeEmbedder(np.ones(DIM + 1)), clock=clock)
    session.start_scanning()
    assert session.run_cycle().match_outcome == Invalid("dimension mismatch")


def test_detector_exception_gives_no_decision(clock):
    detector = FakeDetector(script=[RuntimeError("tflite crashed"), [BIG]])
    session = make_session(detector=detector, clock=clock)
    session.start_scanning()
    assert session.run_cycle().decision == NoDecision("detector_error")
    assert session.is_scanning
    assert isinstance(session.run_cycle().decision, NoDecision)


def test_frame_source_paused_around_capture(clock):
    source = FakeFrameSource()
    session = make_session(frame_source=source, clock=clock)
    session.start_scanning()
    session.run_cycle()
    assert source.resumes == 1
    assert source.pauses == 1
    assert source.paused


def test_camera_loss_stops_session(clock):
    session = make_session(frame_source=FakeFrameSource(frames=[]), clock=clock)
    session.start_scanning()
    assert session.run_cycle() is None
    assert not session.is_scanning
    assert session.stop_reason == "camera_unavailable"


def test_timeout_stops_session(clock):
    session = make_session(clock=clock, session_timeout=10)
    session.start_scanning()
    clock.advance(10)
    assert session.run_cycle() is None
    assert session.stop_reason == "timeout"


def test_stop_during_cycle_discards_result(clock):
    session = None

    def stop():
        session.stop_scanning()

    session = make_session(detector=FakeDetector([BIG], on_detect=stop), clock=clock)
    session.start_scanning()
    assert session.run_cycle() is None
    assert session.cycle_count == 0
    assert len(session.voting.buffer) == 0


def test_cycle_requested_while_in_flight_is_skipped(clock):
    nested = []
    session = None

    def reenter():
        nested.append(session.run_cycle())

    session = make_session(detector=FakeDetector([BIG], on_detect=reenter), clock=clock)
    session.start_scanning()
    assert session.run_cycle() is not None
    assert nested == [None]


def test_cycle_before_start_does_nothing(clock):
    session = make_session(clock=clock)
    assert session.run_cycle() is None


def test_observers_and_unsubscribe(clock):
    seen = []

    def broken(event):
        raise ValueError("ui bug")

    session = make_session(clock=clock)
    session.subscribe(broken)
    unsubscribe = session.subscribe(seen.append)
    session.start_scanning()

    first = session.run_cycle()
    assert seen == [first]
    unsubscribe()
    session.run_cycle()
    assert seen == [first]
    assert len(session.recent_events) == 2


def test_gallery_snapshot_cached_per_session(clock):
    gallery = FakeGallery()
    gallery.add("E1", "Alice", unit(0))
    session = make_session(gallery=gallery, clock=clock)
    session.start_scanning()
    for _ in range(3):
        session.run_cycle()
    assert gallery.all_calls == 1


def test_gallery_revalidated_every_cycle(clock):
    gallery = FakeGallery()
    gallery.add("E1", "Alice", unit(0))
    session = make_session(gallery=gallery, clock=clock, revalidate_gallery=True)
    session.start_scanning()
    for _ in range(3):
        session.run_cycle()
    assert gallery.all_calls == 4


def test_gallery_fault_keeps_previous_snapshot(clock):
    gallery = FakeGallery()
    gallery.add("E1", "Alice", unit(0))
    session = make_session(gallery=gallery, clock=clock, revalidate_gallery=True)
    session.start_scanning()
    gallery.fail = True
    event = session.run_cycle()
    assert isinstance(event.match_outcome, Match)


def test_run_until_timeout(clock):
    source = FakeFrameSource(on_read=lambda: clock.advance(1.0))
    session = make_session(frame_source=source, clock=clock, session_timeout=5, cycle_interval=0)
    assert session.run() == "timeout"
    assert session.cycle_count == 5


def test_run_until_stopped_by_observer(clock):
    session = make_session(clock=clock, cycle_interval=0)

    def stop_after_two(event):
        if session.cycle_count >= 2:
            session.stop_scanning()

    session.subscribe(stop_after_two)
    assert session.run() == "stopped"
    assert session.cycle_count == 2


def test_status_and_event_dict(clock):
    session = make_session(clock=clock)
    session.start_scanning()
    event = session.run_cycle()
    status = session.status()
    assert status['scanning'] is True
    assert status['state'] == 'scanning'
    assert status['enrolled'] == 2
    d = event.to_dict()
    assert d['match']['employee_id'] == 'E1'
    assert d['decision']['kind'] == 'none'

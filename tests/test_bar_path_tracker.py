"""Tests for the tracking pipeline: phases, tracking loss and the full scenario."""

import pytest

from barpath.config import Settings
from barpath.cv.bar_path_tracker import BarPathTracker, FrameStatus, TrackerPhase
from barpath.cv.errors import CalibrationFailed, InsufficientData, TrackerStateError
from barpath.cv.frame_source import ArrayFrameSource, Frame
from tests.helpers import draw_plate

SIZE = (480, 640)


def plate_at(y, x=320, radius=30):
    return draw_plate((x, y), radius, size=SIZE)


def blank():
    return draw_plate(None, 0, size=SIZE)


@pytest.fixture
def tracker(settings):
    return BarPathTracker(settings)


@pytest.fixture
def ready_tracker(tracker):
    tracker.calibrate(plate_at(400), (320, 400))
    return tracker


def test_end_to_end_scenario(settings):
    size = (720, 640)
    tracker = BarPathTracker(settings)
    
    calibration = tracker.calibrate(
        draw_plate((320, 500), 90, size=size), (320, 500), plate_diameter_cm=45.0
    )
    assert calibration.scale.px_per_cm == pytest.approx(2.0, rel=0.02)
    assert tracker.phase == TrackerPhase.READY
    
    session = tracker.begin_recording(calibration)
    assert tracker.phase == TrackerPhase.RECORDING
    
    for i in range(30):
        y = 500 - 300 * i / 29
        status = tracker.on_frame(session, draw_plate((320, y), 90, size=size), i / 29)
        assert status == FrameStatus.TRACKED
    
    result = tracker.end_recording(session)
    assert tracker.phase == TrackerPhase.RESULT
    assert tracker.result is result
    
    assert result.rom_cm == pytest.approx(150.0, rel=0.03)
    assert result.avg_velocity_ms == pytest.approx(1.5, abs=0.05)
    assert result.peak_velocity_ms == pytest.approx(1.5, abs=0.2)
    assert len(result.velocity_profile) == 29
    assert len(result.points) == 30
    assert result.rep_count == 1
    assert result.horizontal_drift_cm == pytest.approx(0.0, abs=0.5)
    assert result.warnings == ()


def test_short_miss_run_is_held(ready_tracker):
    session = ready_tracker.begin_recording()
    frames = [plate_at(400 - 5 * i) for i in range(5)] + [blank()] * 8 + \
             [plate_at(340 - 5 * i) for i in range(5)]
    
    statuses = [ready_tracker.on_frame(session, f, i / 30) for i, f in enumerate(frames)]
    
    assert statuses == [FrameStatus.TRACKED] * 5 + [FrameStatus.HELD] * 8 + [FrameStatus.TRACKED] * 5
    assert session.lost_events == []
    
    trajectory = session.seal()
    assert len(trajectory) == 18
    held = trajectory.points[5:13]
    assert all(p.y == pytest.approx(trajectory.points[4].y) for p in held)


def test_long_miss_run_surfaces_tracking_lost(ready_tracker):
    session = ready_tracker.begin_recording()
    frames = [plate_at(400 - 5 * i) for i in range(3)] + [blank()] * 13 + \
             [plate_at(380 - 5 * i) for i in range(3)]
    
    statuses = [ready_tracker.on_frame(session, f, i / 30) for i, f in enumerate(frames)]
    
    assert statuses[3:13] == [FrameStatus.HELD] * 10
    assert statuses[13:16] == [FrameStatus.LOST] * 3
    assert statuses[16:] == [FrameStatus.TRACKED] * 3
    assert len(session.lost_events) == 1
    assert session.lost_events[0].frame_index == 13
    assert session.lost_events[0].missed_frames == 11
    assert session.is_active
    
    result = ready_tracker.end_recording(session)
    assert len(result.points) == 3 + 10 + 3
    assert len(result.warnings) == 1


def test_custom_miss_bound():
    tracker = BarPathTracker(Settings(max_missed_frames=2))
    tracker.calibrate(plate_at(400), (320, 400))
    session = tracker.begin_recording()
    
    statuses = [tracker.on_frame(session, f, i / 30)
                for i, f in enumerate([plate_at(400), blank(), blank(), blank()])]
    assert statuses == [FrameStatus.TRACKED, FrameStatus.HELD, FrameStatus.HELD, FrameStatus.LOST]


def test_searching_before_first_detection(ready_tracker):
    session = ready_tracker.begin_recording()
    assert ready_tracker.on_frame(session, blank(), 0.0) == FrameStatus.SEARCHING
    assert ready_tracker.on_frame(session, plate_at(400), 0.1) == FrameStatus.TRACKED
    assert len(session.seal()) == 1


def test_out_of_order_timestamp_is_ignored(ready_tracker):
    session = ready_tracker.begin_recording()
    assert ready_tracker.on_frame(session, plate_at(400), 1.0) == FrameStatus.TRACKED
    before = session.last_centroid
    assert ready_tracker.on_frame(session, plate_at(300), 0.5) == FrameStatus.IGNORED
    assert session.last_centroid == before
    assert session.last_centroid.y == pytest.approx(400, abs=1)
    assert session.frames_seen == 1
    assert len(session.seal()) == 1


def test_stale_miss_does_not_count_toward_loss(ready_tracker):
    session = ready_tracker.begin_recording()
    ready_tracker.on_frame(session, plate_at(400), 1.0)
    assert ready_tracker.on_frame(session, blank(), 1.1) == FrameStatus.HELD
    assert session.missed_frames == 1
    
    assert ready_tracker.on_frame(session, blank(), 1.1) == FrameStatus.IGNORED
    assert ready_tracker.on_frame(session, blank(), float("nan")) == FrameStatus.IGNORED
    assert session.missed_frames == 1
    assert session.frames_held == 1
    assert len(session.seal()) == 2


def test_recent_points_for_overlay():
    tracker = BarPathTracker(Settings(overlay_window=5))
    tracker.calibrate(plate_at(400), (320, 400))
    session = tracker.begin_recording()
    for i in range(12):
        tracker.on_frame(session, plate_at(400 - 5 * i), i / 30)
    
    assert len(session.recent_points()) == 5
    assert len(session.seal()) == 12


def test_begin_without_calibration(tracker):
    with pytest.raises(TrackerStateError):
        tracker.begin_recording()
    assert tracker.phase == TrackerPhase.IDLE


def test_failed_calibration_returns_to_idle(ready_tracker):
    assert ready_tracker.phase == TrackerPhase.READY
    with pytest.raises(CalibrationFailed):
        ready_tracker.calibrate(blank(), (1, 1))
    assert ready_tracker.phase == TrackerPhase.IDLE
    assert ready_tracker.calibration is None


def test_cannot_calibrate_or_begin_while_recording(ready_tracker):
    ready_tracker.begin_recording()
    with pytest.raises(TrackerStateError):
        ready_tracker.calibrate(plate_at(400), (320, 400))
    with pytest.raises(TrackerStateError):
        ready_tracker.begin_recording()


def test_insufficient_data_returns_to_ready(ready_tracker):
    session = ready_tracker.begin_recording()
    ready_tracker.on_frame(session, plate_at(400), 0.0)
    
    with pytest.raises(InsufficientData):
        ready_tracker.end_recording(session)
    assert ready_tracker.phase == TrackerPhase.READY
    
    # Ready to record again under the same calibration
    retry = ready_tracker.begin_recording()
    assert retry is not session


def test_frames_after_end_are_ignored(ready_tracker):
    session = ready_tracker.begin_recording()
    for i in range(5):
        ready_tracker.on_frame(session, plate_at(400 - 10 * i), i / 30)
    result = ready_tracker.end_recording(session)
    
    assert ready_tracker.on_frame(session, plate_at(300), 1.0) == FrameStatus.IGNORED
    assert len(session.seal()) == len(result.points) == 5


def test_abort_discards_partial_buffer(ready_tracker):
    session = ready_tracker.begin_recording()
    for i in range(5):
        ready_tracker.on_frame(session, plate_at(400 - 10 * i), i / 30)
    
    ready_tracker.abort(session)
    assert ready_tracker.phase == TrackerPhase.READY
    assert ready_tracker.on_frame(session, plate_at(300), 1.0) == FrameStatus.IGNORED
    assert len(session.buffer) == 0
    with pytest.raises(TrackerStateError):
        ready_tracker.end_recording(session)



def test_stale_session_does_not_move_phase(ready_tracker):
    first = ready_tracker.begin_recording()
    for i in range(10):
        ready_tracker.on_frame(first, plate_at(400 - 10 * i), i / 30)
    ready_tracker.end_recording(first)
    
    second = ready_tracker.begin_recording()
    ready_tracker.on_frame(second, plate_at(400), 1.0)
    
    ready_tracker.end_recording(first)
    assert ready_tracker.phase == TrackerPhase.RECORDING
    assert ready_tracker.session is second
    with pytest.raises(TrackerStateError):
        ready_tracker.calibrate(plate_at(400), (320, 400))
    
    ready_tracker.abort(first)
    assert ready_tracker.phase == TrackerPhase.RECORDING
    assert second.is_active


def test_reset_returns_to_idle(ready_tracker):
    session = ready_tracker.begin_recording()
    ready_tracker.reset()
    assert ready_tracker.phase == TrackerPhase.IDLE
    assert ready_tracker.calibration is None
    assert not session.is_active


def test_frame_objects_and_sources(ready_tracker):
    session = ready_tracker.begin_recording()
    assert ready_tracker.on_frame(session, Frame(image=plate_at(400), timestamp=0.0)) == FrameStatus.TRACKED
    
    images = [plate_at(390 - 10 * i) for i in range(10)]
    counts = ready_tracker.track_source(session, ArrayFrameSource(images, fps=30.0, start_time=1.0))
    
    assert counts[FrameStatus.TRACKED] == 10
    assert len(session.seal()) == 11


def test_raw_frame_requires_timestamp(ready_tracker):
    session = ready_tracker.begin_recording()
    with pytest.raises(ValueError):
        ready_tracker.on_frame(session, plate_at(400))


def test_independent_trackers_share_nothing(settings):
    first = BarPathTracker(settings)
    second = BarPathTracker(settings)
    first.calibrate(plate_at(400), (320, 400))
    
    session = first.begin_recording()
    first.on_frame(session, plate_at(400), 0.0)
    
    assert second.phase == TrackerPhase.IDLE
    assert second.session is None
    with pytest.raises(TrackerStateError):
        second.begin_recording()
    
    # An explicit calibration may be shared, the sessions are not
    other = second.begin_recording(first.calibration)
    assert other.buffer is not session.buffer

"""
Bar path tracking pipeline.

PHASES:
    IDLE -> (calibrate) -> READY -> (begin_recording) -> RECORDING
         -> (end_recording) -> RESULT

Every failure returns control to IDLE or READY so the user can retry:
- CalibrationFailed -> IDLE (tap again)
- InsufficientData  -> READY (record again)

SCHEDULING CONTRACT:
The caller invokes on_frame at most once per physical frame, synchronously.
Each frame is tracked and appended before the next one is accepted, so the
trajectory buffer is never shared between in-flight frames.

TRACKING LOSS:
A frame without a centroid holds the last known centroid (appended with the
new timestamp) for up to max_missed_frames consecutive frames. After that a
TrackingLost event is recorded and held points stop being appended, but the
session keeps recording and resumes as soon as the bar is found again.
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import logging

from barpath.config import Settings, get_settings
from barpath.cv.color_calibrator import Calibration, ColorCalibrator
from barpath.cv.errors import CalibrationFailed, InsufficientData, TrackerStateError, TrackingLost
from barpath.cv.frame_source import Frame, FrameSource
from barpath.cv.frame_tracker import Centroid, FrameTracker
from barpath.cv.kinematics_analyzer import KinematicsAnalyzer, TrackingResult
from barpath.cv.trajectory_buffer import TrackedPoint, Trajectory, TrajectoryBuffer

logger = logging.getLogger(__name__)


class TrackerPhase(Enum):
    IDLE = "idle"
    READY = "ready"
    RECORDING = "recording"
    RESULT = "result"


class FrameStatus(Enum):
    """Outcome of one on_frame call."""
    TRACKED = "tracked"      # Bar found, point appended
    HELD = "held"            # Bar missed, last centroid appended
    SEARCHING = "searching"  # Bar not found yet, nothing to hold
    LOST = "lost"            # Missed for longer than the tolerated run
    IGNORED = "ignored"      # Session closed or timestamp not increasing


class RecordingSession:
    """
    One recording: exclusive owner of a Calibration and a TrajectoryBuffer.
    
    This is the trajectory handle passed back to the tracker for each frame.
    """
    
    def __init__(
        self,
        calibration: Calibration,
        settings: Optional[Settings] = None,
        frame_tracker: Optional[FrameTracker] = None
    ):
        self.settings = settings or get_settings()
        self.calibration = calibration
        self.frame_tracker = frame_tracker or FrameTracker(self.settings)
        self.buffer = TrajectoryBuffer(self.settings.overlay_window)
        
        self.last_centroid: Optional[Centroid] = None
        self.missed_frames = 0
        self.lost_events: List[TrackingLost] = []
        self.aborted = False
        
        # Frame accounting
        self.frames_seen = 0
        self.frames_tracked = 0
        self.frames_held = 0
    
    @property
    def is_active(self) -> bool:
        return not self.aborted and not self.buffer.is_sealed
    
    @property
    def is_lost(self) -> bool:
        return self.missed_frames > self.settings.max_missed_frames
    
    @property
    def warnings(self) -> List[str]:
        return [
            f"Tracking lost at t={e.timestamp:.2f}s (frame {e.frame_index}) "
            f"after {e.missed_frames} missed frames"
            for e in self.lost_events
        ]
    
    def on_frame(self, image: np.ndarray, timestamp: float) -> FrameStatus:
        """Track one frame and append the result to the buffer."""
        if not self.is_active:
            return FrameStatus.IGNORED
        if not self.buffer.accepts_time(timestamp):
            logger.debug(f"Frame at t={timestamp} ignored: timestamp not increasing")
            return FrameStatus.IGNORED
        
        frame_index = self.frames_seen
        self.frames_seen += 1
        
        if self.last_centroid is not None:
            hint = self.last_centroid.as_tuple()
        else:
            hint = self.calibration.tap_point
        
        centroid = self.frame_tracker.locate(image, self.calibration.signature, hint)
        
        if centroid is not None:
            if not self.buffer.append(centroid.x, centroid.y, timestamp):
                return FrameStatus.IGNORED
            if self.is_lost:
                logger.info(f"Bar reacquired at frame {frame_index} after "
                            f"{self.missed_frames} missed frames")
            self.missed_frames = 0
            self.last_centroid = centroid
            self.frames_tracked += 1
            return FrameStatus.TRACKED
        
        missed = self.missed_frames + 1
        
        if missed <= self.settings.max_missed_frames:
            if self.last_centroid is None:
                self.missed_frames = missed
                return FrameStatus.SEARCHING
            if not self.buffer.append(self.last_centroid.x, self.last_centroid.y, timestamp):
                return FrameStatus.IGNORED
            self.missed_frames = missed
            self.frames_held += 1
            return FrameStatus.HELD
        
        self.missed_frames = missed
        if self.missed_frames == self.settings.max_missed_frames + 1:
            event = TrackingLost(
                frame_index=frame_index,
                timestamp=timestamp,
                missed_frames=self.missed_frames
            )
            self.lost_events.append(event)
            logger.warning(f"Tracking lost at frame {frame_index} (t={timestamp:.3f}s), "
                           f"{self.missed_frames} consecutive misses")
        return FrameStatus.LOST
    
    def recent_points(self) -> Tuple[TrackedPoint, ...]:
        """Trailing points for the live overlay."""
        return self.buffer.recent()
    
    def seal(self) -> Trajectory:
        if self.aborted:
            raise TrackerStateError("Session was aborted")
        return self.buffer.seal()
    
    def abort(self) -> None:
        """Stop accepting frames and discard the partial buffer."""
        if self.aborted:
            return
        logger.info(f"Recording aborted after {self.frames_seen} frames")
        self.aborted = True
        self.buffer = TrajectoryBuffer(self.settings.overlay_window)
        self.buffer.seal()


class BarPathTracker:
    """
    Entry point used by the UI layer.
    
    Operations:
    - calibrate(frame, tap_point) -> Calibration
    - begin_recording(calibration) -> RecordingSession
    - on_frame(session, frame, timestamp) -> FrameStatus
    - end_recording(session) -> TrackingResult
    
    One instance per camera. Instances share nothing.
    """
    
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.calibrator = ColorCalibrator(self.settings)
        self.frame_tracker = FrameTracker(self.settings)
        self.analyzer = KinematicsAnalyzer(self.settings)
        
        self.phase = TrackerPhase.IDLE
        self.calibration: Optional[Calibration] = None
        self.session: Optional[RecordingSession] = None
        self.result: Optional[TrackingResult] = None
    
    def calibrate(
        self,
        frame: Union[Frame, np.ndarray],
        tap_point: Tuple[float, float],
        plate_diameter_cm: Optional[float] = None
    ) -> Calibration:
        """
        Calibrate from a tap on the reference plate.
        
        Raises:
            CalibrationFailed: The tracker returns to IDLE
            TrackerStateError: Called while recording
        """
        if self.phase == TrackerPhase.RECORDING:
            raise TrackerStateError("Cannot calibrate while recording")
        
        image = frame.image if isinstance(frame, Frame) else frame
        try:
            calibration = self.calibrator.calibrate(image, tap_point, plate_diameter_cm)
        except CalibrationFailed as e:
            logger.warning(f"Calibration failed: {e}")
            self.calibration = None
            self.phase = TrackerPhase.IDLE
            raise
        
        self.calibration = calibration
        self.result = None
        self.phase = TrackerPhase.READY
        return calibration
    
    def begin_recording(self, calibration: Optional[Calibration] = None) -> RecordingSession:
        """Start a new recording under the given (or last) calibration."""
        calibration = calibration or self.calibration
        if calibration is None:
            raise TrackerStateError("Calibrate before recording")
        if self.session is not None and self.session.is_active:
            raise TrackerStateError("A recording is already in progress")
        
        self.calibration = calibration
        self.session = RecordingSession(calibration, self.settings, self.frame_tracker)
        self.result = None
        self.phase = TrackerPhase.RECORDING
        logger.info(f"Recording started (scale={calibration.scale.px_per_cm:.3f}px/cm)")
        return self.session
    
    def on_frame(
        self,
        session: RecordingSession,
        frame: Union[Frame, np.ndarray],
        timestamp: Optional[float] = None
    ) -> FrameStatus:
        """Ingest one frame. Never raises for a tracking miss."""
        if isinstance(frame, Frame):
            image = frame.image
            timestamp = frame.timestamp if timestamp is None else timestamp
        else:
            image = frame
        if timestamp is None:
            raise ValueError("A timestamp is required for raw image frames")
        return session.on_frame(image, timestamp)
    
    def end_recording(
        self,
        session: RecordingSession,
        load_kg: Optional[float] = None
    ) -> TrackingResult:
        """
        Seal the session and analyze it.
        
        Raises:
            InsufficientData: The tracker returns to READY
        """
        trajectory = session.seal()
        # A stale session must not move the phase under a newer recording
        owns_phase = session is self.session or self.session is None or not self.session.is_active
        if session is self.session:
            self.session = None
        
        try:
            result = self.analyzer.analyze(
                trajectory, session.calibration.scale, load_kg, session.warnings
            )
        except InsufficientData as e:
            logger.warning(f"Rep not captured: {e}")
            if owns_phase:
                self.phase = TrackerPhase.READY
            raise
        
        if owns_phase:
            self.result = result
            self.phase = TrackerPhase.RESULT
        return result
    
    def abort(self, session: RecordingSession) -> None:
        """Discard a recording in progress."""
        session.abort()
        if session is not self.session and self.session is not None and self.session.is_active:
            return
        self.session = None
        self.phase = TrackerPhase.READY if self.calibration else TrackerPhase.IDLE
    
    def reset(self) -> None:
        """Drop calibration, session and result."""
        if self.session is not None:
            self.session.abort()
        self.session = None
        self.calibration = None
        self.result = None
        self.phase = TrackerPhase.IDLE
    
    def track_source(
        self,
        session: RecordingSession,
        source: FrameSource,
        max_frames: Optional[int] = None
    ) -> Dict[FrameStatus, int]:
        """
        Feed every frame of a source into a session.
        
        Returns:
            Count of frames per FrameStatus
        """
        counts = {status: 0 for status in FrameStatus}
        for i, frame in enumerate(source.frames()):
            if max_frames is not None and i >= max_frames:
                break
            if not session.is_active:
                break
            counts[self.on_frame(session, frame)] += 1
        
        logger.info(f"Source consumed: {sum(counts.values())} frames, "
                    f"{counts[FrameStatus.TRACKED]} tracked, {counts[FrameStatus.HELD]} held, "
                    f"{counts[FrameStatus.LOST]} lost")
        return counts

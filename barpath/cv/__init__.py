"""
Computer Vision pipeline for velocity-based training bar path tracking.

PIPELINE COMPONENTS:
1. ColorCalibrator: Tap-to-calibrate plate color signature + px/cm scale
2. FrameTracker: Windowed color blob search, full-frame fallback
3. TrajectoryBuffer: Append-only timestamped centroids (EMPTY -> RECORDING -> SEALED)
4. KinematicsAnalyzer: Velocity, peak, ROM, velocity profile, power
5. RepSegmenter: Direction-reversal concentric/eccentric phases
6. BarPathTracker: Orchestration and tracking-loss policy
7. FrameSource: Camera abstraction (video replay, in-memory frames)

Data flows one way: pixels -> centroid -> trajectory -> kinematics.

Usage:
    from barpath.cv import BarPathTracker
    
    tracker = BarPathTracker()
    tracker.calibrate(frame, tap_point=(320, 240))
    session = tracker.begin_recording()
    for image, timestamp in camera:
        tracker.on_frame(session, image, timestamp)
    result = tracker.end_recording(session)
    print(f"Mean velocity: {result.avg_velocity_ms:.2f} m/s")
"""

from barpath.cv.errors import (
    BarPathError, CalibrationFailed, CalibrationFailure,
    InsufficientData, TrackerStateError, TrackingLost
)
from barpath.cv.color_calibrator import (
    ColorCalibrator, ColorSignature, ScaleCalibration, Calibration
)
from barpath.cv.frame_tracker import FrameTracker, Centroid
from barpath.cv.trajectory_buffer import TrajectoryBuffer, TrackedPoint, Trajectory, BufferState
from barpath.cv.rep_segmenter import RepSegmenter, RepSegment, PhaseDirection
from barpath.cv.kinematics_analyzer import KinematicsAnalyzer, TrackingResult, VelocitySample
from barpath.cv.frame_source import Frame, FrameSource, ArrayFrameSource, VideoFileSource
from barpath.cv.bar_path_tracker import (
    BarPathTracker, RecordingSession, TrackerPhase, FrameStatus
)

__all__ = [
    # Errors
    "BarPathError",
    "CalibrationFailed",
    "CalibrationFailure",
    "InsufficientData",
    "TrackerStateError",
    "TrackingLost",
    
    # Calibration
    "ColorCalibrator",
    "ColorSignature",
    "ScaleCalibration",
    "Calibration",
    
    # Frame tracking
    "FrameTracker",
    "Centroid",
    
    # Trajectory
    "TrajectoryBuffer",
    "TrackedPoint",
    "Trajectory",
    "BufferState",
    
    # Kinematics
    "RepSegmenter",
    "RepSegment",
    "PhaseDirection",
    "KinematicsAnalyzer",
    "TrackingResult",
    "VelocitySample",
    
    # Frame sources
    "Frame",
    "FrameSource",
    "ArrayFrameSource",
    "VideoFileSource",
    
    # Main pipeline
    "BarPathTracker",
    "RecordingSession",
    "TrackerPhase",
    "FrameStatus",
]

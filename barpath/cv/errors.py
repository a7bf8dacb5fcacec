"""
Errors raised by the bar path pipeline.

Only calibration and final analysis fail explicitly. Per-frame misses are
reported as FrameStatus values and TrackingLost events, never as exceptions.
"""

from dataclasses import dataclass
from enum import Enum


class CalibrationFailure(Enum):
    """Why a calibration tap was rejected."""
    EDGE_TAP = "edge_tap"                # Sample disc does not fit in the frame
    HIGH_VARIANCE = "high_variance"      # Tap landed on a boundary, not a solid region
    DEGENERATE_BLOB = "degenerate_blob"  # Blob radius too small or too large
    INVALID_FRAME = "invalid_frame"      # Not a 3/4 channel uint8 image


class BarPathError(Exception):
    """Base class for bar path tracking errors."""


class CalibrationFailed(BarPathError):
    """The tap could not be turned into a calibration. Ask the user to tap again."""
    
    def __init__(self, reason: CalibrationFailure, message: str):
        super().__init__(f"{reason.value}: {message}")
        self.reason = reason


class InsufficientData(BarPathError):
    """Too few usable samples survived filtering. Ask the user to re-record."""
    
    def __init__(self, usable_samples: int, message: str = ""):
        super().__init__(
            message or f"Need at least one velocity sample, got {usable_samples}"
        )
        self.usable_samples = usable_samples


class TrackerStateError(BarPathError):
    """An operation was called in a phase that does not allow it."""


@dataclass(frozen=True)
class TrackingLost:
    """Soft signal: the bar was not found for more than the tolerated run of frames."""
    frame_index: int
    timestamp: float
    missed_frames: int

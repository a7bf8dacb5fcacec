"""
Append-only buffer of tracked bar positions for one recording.

STATE MACHINE:
    EMPTY -> RECORDING -> SEALED

There is no way back from SEALED; a new recording needs a new buffer.
"""

import math
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Iterator, List, Optional, Tuple

import numpy as np
import logging

logger = logging.getLogger(__name__)


class BufferState(Enum):
    EMPTY = "empty"
    RECORDING = "recording"
    SEALED = "sealed"


@dataclass(frozen=True)
class TrackedPoint:
    """Bar position in pixels at a monotonic timestamp (seconds)."""
    x: float
    y: float
    t: float


@dataclass(frozen=True)
class Trajectory:
    """Sealed, read-only sequence of tracked points with increasing timestamps."""
    points: Tuple[TrackedPoint, ...] = ()
    
    def __len__(self) -> int:
        return len(self.points)
    
    def __iter__(self) -> Iterator[TrackedPoint]:
        return iter(self.points)
    
    def __getitem__(self, idx):
        return self.points[idx]
    
    @property
    def xs(self) -> np.ndarray:
        return np.array([p.x for p in self.points], dtype=np.float64)
    
    @property
    def ys(self) -> np.ndarray:
        return np.array([p.y for p in self.points], dtype=np.float64)
    
    @property
    def ts(self) -> np.ndarray:
        return np.array([p.t for p in self.points], dtype=np.float64)
    
    @property
    def duration(self) -> float:
        if len(self.points) < 2:
            return 0.0
        return self.points[-1].t - self.points[0].t


class TrajectoryBuffer:
    """
    Collects centroids while recording is active.
    
    - Points with non-increasing timestamps are rejected
    - The full buffer is never truncated; recent() is a bounded view for
      the live overlay
    - seal() is idempotent and returns the same Trajectory every time
    """
    
    def __init__(self, overlay_window: int = 60):
        self.overlay_window = overlay_window
        self.state = BufferState.EMPTY
        
        self._points: List[TrackedPoint] = []
        self._recent: Deque[TrackedPoint] = deque(maxlen=max(1, overlay_window))
        self._sealed: Optional[Trajectory] = None
        self.rejected = 0
    
    def __len__(self) -> int:
        return len(self._points)
    
    @property
    def is_sealed(self) -> bool:
        return self.state == BufferState.SEALED
    
    @property
    def last_point(self) -> Optional[TrackedPoint]:
        return self._points[-1] if self._points else None
    
    def accepts_time(self, t: float) -> bool:
        """Whether a point at time t would be accepted. Does not change state."""
        if self.state == BufferState.SEALED or not math.isfinite(t):
            return False
        last = self.last_point
        return last is None or t > last.t
    
    def append(self, x: float, y: float, t: float) -> bool:
        """
        Append a point.
        
        Returns:
            True if the point was accepted
        """
        if self.state == BufferState.SEALED:
            logger.debug(f"Append at t={t:.3f} ignored: buffer sealed")
            return False
        
        if not (math.isfinite(x) and math.isfinite(y) and math.isfinite(t)):
            self.rejected += 1
            logger.debug(f"Rejected non-finite point ({x}, {y}, {t})")
            return False
        
        last = self.last_point
        if last is not None and t <= last.t:
            self.rejected += 1
            logger.debug(f"Rejected out-of-order point: t={t:.4f} <= {last.t:.4f}")
            return False
        
        point = TrackedPoint(x=float(x), y=float(y), t=float(t))
        self._points.append(point)
        self._recent.append(point)
        self.state = BufferState.RECORDING
        return True
    
    def recent(self) -> Tuple[TrackedPoint, ...]:
        """Trailing window of points for the live overlay."""
        return tuple(self._recent)
    
    def seal(self) -> Trajectory:
        """Freeze the buffer and return its Trajectory."""
        if self._sealed is None:
            self._sealed = Trajectory(points=tuple(self._points))
            self.state = BufferState.SEALED
            logger.info(f"Trajectory sealed: {len(self._sealed)} points, "
                        f"{self._sealed.duration:.2f}s, {self.rejected} rejected")
        return self._sealed

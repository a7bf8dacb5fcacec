"""
Direction-reversal rep segmentation.

Splits a multi-rep set into movement phases using turning points of the
vertical bar position:
- Bottom turning points are peaks of y (image y grows downward)
- Top turning points are peaks of -y
- Only turning points with prominence >= min ROM count, so tracking jitter
  and small pauses do not split a rep

Upward motion is CONCENTRIC. Each concentric phase is one rep.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import numpy as np
from scipy.ndimage import uniform_filter1d
from scipy.signal import find_peaks
import logging

from barpath.config import Settings, get_settings

logger = logging.getLogger(__name__)


class PhaseDirection(Enum):
    CONCENTRIC = "concentric"  # Bar moving up
    ECCENTRIC = "eccentric"    # Bar moving down


@dataclass(frozen=True)
class RepSegment:
    """One monotonic vertical movement phase."""
    direction: PhaseDirection
    start_index: int
    end_index: int
    start_time: float  # Seconds from trajectory start
    end_time: float
    displacement_cm: float
    mean_velocity_ms: float
    peak_velocity_ms: float
    
    @property
    def duration_seconds(self) -> float:
        return self.end_time - self.start_time
    
    @property
    def is_concentric(self) -> bool:
        return self.direction == PhaseDirection.CONCENTRIC


class RepSegmenter:
    """Finds concentric/eccentric phases from the vertical signal."""
    
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
    
    def segment(
        self,
        ys: np.ndarray,
        ts: np.ndarray,
        px_per_cm: float,
        pair_velocities: np.ndarray
    ) -> List[RepSegment]:
        """
        Segment a trajectory into phases.
        
        Args:
            ys: Vertical pixel positions
            ts: Timestamps (seconds)
            px_per_cm: Calibrated scale
            pair_velocities: Velocity (m/s) per consecutive pair, NaN for
                pairs dropped by the analyzer. Length len(ys) - 1.
                
        Returns:
            Phases in time order
        """
        n = len(ys)
        if n < 2:
            return []
        
        min_rom_px = self.settings.min_rep_rom_cm * px_per_cm
        smooth_ys = uniform_filter1d(ys.astype(np.float64), size=min(3, n), mode="nearest")
        
        bottoms, _ = find_peaks(smooth_ys, prominence=min_rom_px)
        tops, _ = find_peaks(-smooth_ys, prominence=min_rom_px)
        pivots = sorted({0, n - 1, *bottoms.tolist(), *tops.tolist()})
        
        t0 = float(ts[0])
        segments: List[RepSegment] = []
        for start, end in zip(pivots[:-1], pivots[1:]):
            dy = float(smooth_ys[end] - smooth_ys[start])
            if abs(dy) < min_rom_px:
                continue
            
            velocities = pair_velocities[start:end]
            velocities = velocities[np.isfinite(velocities)]
            mean_v = float(np.mean(velocities)) if len(velocities) else 0.0
            peak_v = float(np.max(velocities)) if len(velocities) else 0.0
            
            segments.append(RepSegment(
                direction=PhaseDirection.CONCENTRIC if dy < 0 else PhaseDirection.ECCENTRIC,
                start_index=int(start),
                end_index=int(end),
                start_time=float(ts[start]) - t0,
                end_time=float(ts[end]) - t0,
                displacement_cm=abs(float(ys[end] - ys[start])) / px_per_cm,
                mean_velocity_ms=mean_v,
                peak_velocity_ms=peak_v
            ))
        
        reps = sum(1 for s in segments if s.is_concentric)
        logger.debug(f"Segmented {n} points into {len(segments)} phases, {reps} reps")
        return segments

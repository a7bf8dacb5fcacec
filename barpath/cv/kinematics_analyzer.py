"""
Bar kinematics from a sealed trajectory.

PROCESSING ORDER:
1. Per-pair real-world displacement and velocity (cm via calibration scale)
2. Glitch rejection: pairs with dt <= 0 or velocity above the sanity
   ceiling are DROPPED (never clamped)
3. Moving-average smoothing of the velocity signal only, never of positions
4. Average / peak velocity from the smoothed signal
5. ROM from vertical extrema, independent of horizontal drift
6. Velocity profile for charting, rep segmentation, optional power

All outputs are in real-world units (m/s, cm, W).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np
from scipy.ndimage import uniform_filter1d
import logging

from barpath.config import Settings, get_settings
from barpath.cv.color_calibrator import ScaleCalibration
from barpath.cv.errors import InsufficientData
from barpath.cv.rep_segmenter import RepSegment, RepSegmenter
from barpath.cv.trajectory_buffer import TrackedPoint, Trajectory

logger = logging.getLogger(__name__)

GRAVITY_MS2 = 9.81


@dataclass(frozen=True)
class VelocitySample:
    """Velocity (m/s) at a time relative to the trajectory start (s)."""
    time: float
    velocity: float


@dataclass(frozen=True)
class TrackingResult:
    """
    Finished analysis of one recording.
    
    velocity_profile has one sample per analyzed pair:
    len(points) - 1 - dropped_samples.
    """
    avg_velocity_ms: float
    peak_velocity_ms: float
    rom_cm: float
    velocity_profile: Tuple[VelocitySample, ...]
    points: Tuple[TrackedPoint, ...]
    
    horizontal_drift_cm: float = 0.0
    phases: Tuple[RepSegment, ...] = ()
    mean_power_watts: Optional[float] = None
    load_kg: Optional[float] = None
    dropped_samples: int = 0
    warnings: Tuple[str, ...] = field(default_factory=tuple)
    
    @property
    def reps(self) -> Tuple[RepSegment, ...]:
        """Concentric phases, one per rep."""
        return tuple(p for p in self.phases if p.is_concentric)
    
    @property
    def rep_count(self) -> int:
        return len(self.reps)
    
    def to_dict(self) -> Dict[str, Any]:
        """Plain Python types, for the caller to persist or render."""
        return {
            "avg_velocity_ms": self.avg_velocity_ms,
            "peak_velocity_ms": self.peak_velocity_ms,
            "rom_cm": self.rom_cm,
            "horizontal_drift_cm": self.horizontal_drift_cm,
            "mean_power_watts": self.mean_power_watts,
            "load_kg": self.load_kg,
            "rep_count": self.rep_count,
            "dropped_samples": self.dropped_samples,
            "velocity_profile": [
                {"time": s.time, "velocity": s.velocity} for s in self.velocity_profile
            ],
            "points": [{"x": p.x, "y": p.y, "t": p.t} for p in self.points],
            "phases": [
                {
                    "direction": p.direction.value,
                    "start_time": p.start_time,
                    "end_time": p.end_time,
                    "displacement_cm": p.displacement_cm,
                    "mean_velocity_ms": p.mean_velocity_ms,
                    "peak_velocity_ms": p.peak_velocity_ms,
                }
                for p in self.phases
            ],
            "warnings": list(self.warnings),
        }


class KinematicsAnalyzer:
    """Turns a sealed Trajectory and a ScaleCalibration into a TrackingResult."""
    
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.segmenter = RepSegmenter(self.settings)
    
    def analyze(
        self,
        trajectory: Trajectory,
        scale: ScaleCalibration,
        load_kg: Optional[float] = None,
        warnings: Sequence[str] = ()
    ) -> TrackingResult:
        """
        Analyze a trajectory.
        
        Args:
            trajectory: Sealed trajectory
            scale: Calibration scale the trajectory was recorded under
            load_kg: Optional bar load, enables mean power
            warnings: Session warnings to carry into the result
            
        Raises:
            InsufficientData: No velocity sample survived filtering
        """
        n = len(trajectory)
        if n < 2:
            raise InsufficientData(0, f"Trajectory has {n} point(s), need at least 2")
        if load_kg is not None and load_kg <= 0:
            raise ValueError(f"Load must be positive, got {load_kg}")
        
        xs, ys, ts = trajectory.xs, trajectory.ys, trajectory.ts
        pair_velocities = self._pair_velocities(xs, ys, ts, scale)
        keep = np.isfinite(pair_velocities)
        dropped = int(np.count_nonzero(~keep))
        
        if not np.any(keep):
            raise InsufficientData(0, f"All {n - 1} velocity samples were rejected")
        if dropped:
            logger.warning(f"Dropped {dropped}/{n - 1} velocity samples (dt <= 0 or "
                           f"above {self.settings.max_velocity_ms} m/s)")
        
        smoothed = self._smooth(pair_velocities[keep])
        avg_velocity = float(np.mean(smoothed))
        peak_velocity = float(np.max(np.abs(smoothed)))
        
        rom_cm = float(np.max(ys) - np.min(ys)) / scale.px_per_cm
        drift_cm = float(np.max(np.abs(xs - xs[0]))) / scale.px_per_cm
        
        times = (ts[1:] - ts[0])[keep]
        profile = tuple(
            VelocitySample(time=float(t), velocity=float(v))
            for t, v in zip(times, smoothed)
        )
        
        phases = self.segmenter.segment(ys, ts, scale.px_per_cm, pair_velocities)
        power = load_kg * GRAVITY_MS2 * avg_velocity if load_kg is not None else None
        
        result = TrackingResult(
            avg_velocity_ms=avg_velocity,
            peak_velocity_ms=peak_velocity,
            rom_cm=rom_cm,
            velocity_profile=profile,
            points=trajectory.points,
            horizontal_drift_cm=drift_cm,
            phases=tuple(phases),
            mean_power_watts=power,
            load_kg=load_kg,
            dropped_samples=dropped,
            warnings=tuple(warnings)
        )
        
        logger.info(f"Analysis: avg={avg_velocity:.2f}m/s, peak={peak_velocity:.2f}m/s, "
                    f"rom={rom_cm:.1f}cm, drift={drift_cm:.1f}cm, reps={result.rep_count}")
        return result
    
    def _pair_velocities(
        self,
        xs: np.ndarray,
        ys: np.ndarray,
        ts: np.ndarray,
        scale: ScaleCalibration
    ) -> np.ndarray:
        """Velocity (m/s) per consecutive pair, NaN where the pair is dropped."""
        distance_cm = np.hypot(np.diff(xs), np.diff(ys)) / scale.px_per_cm
        dt = np.diff(ts)
        
        velocities = np.full(len(dt), np.nan)
        valid = dt > 0
        velocities[valid] = (distance_cm[valid] / 100.0) / dt[valid]
        
        glitch = np.zeros(len(dt), dtype=bool)
        glitch[valid] = velocities[valid] > self.settings.max_velocity_ms
        velocities[glitch] = np.nan
        return velocities
    
    def _smooth(self, velocities: np.ndarray) -> np.ndarray:
        """Centered moving average; constant signals pass unchanged."""
        window = min(self.settings.smoothing_window, len(velocities))
        if window <= 1:
            return velocities
        return uniform_filter1d(velocities, size=window, mode="nearest")

"""
Tap-to-calibrate for color-based bar tracking.

The athlete taps the weight plate on screen. From that single tap we derive:
1. ColorSignature: the plate color in HSV plus tolerance radii
2. ScaleCalibration: pixels per centimeter from the known plate diameter

HSV follows the OpenCV convention (H 0-179, S 0-255, V 0-255). Red sits on
the hue wraparound, so a signature may need two inRange windows.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np
import logging

from barpath.config import Settings, get_settings
from barpath.cv.errors import CalibrationFailed, CalibrationFailure

logger = logging.getLogger(__name__)

HUE_RANGE = 180  # OpenCV hue is 0-179
ACHROMATIC_HUE_TOLERANCE = HUE_RANGE // 2  # Accept every hue

HSVBounds = Tuple[Tuple[int, int, int], Tuple[int, int, int]]


def validate_image(image: np.ndarray) -> None:
    """Raise ValueError unless image is a uint8 BGR or BGRA array."""
    if not isinstance(image, np.ndarray) or image.dtype != np.uint8:
        raise ValueError("Frame must be a uint8 numpy array")
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise ValueError(f"Frame must be HxWx3 (BGR) or HxWx4 (BGRA), got shape {image.shape}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise ValueError("Frame is empty")


def to_hsv(image: np.ndarray) -> np.ndarray:
    """Convert a BGR or BGRA frame to OpenCV HSV."""
    if image.shape[2] == 4:
        image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    return cv2.cvtColor(image, cv2.COLOR_BGR2HSV)


def hue_distance(hues: np.ndarray, center: int) -> np.ndarray:
    """Circular distance between hues and a center hue, in hue units."""
    diff = np.abs(hues.astype(np.int16) - int(center))
    return np.minimum(diff, HUE_RANGE - diff)


@dataclass(frozen=True)
class ColorSignature:
    """Calibrated target color with per-channel tolerances."""
    hue: int
    saturation: int
    value: int
    hue_tolerance: int
    saturation_tolerance: int
    value_tolerance: int
    
    @property
    def is_achromatic(self) -> bool:
        return self.hue_tolerance >= ACHROMATIC_HUE_TOLERANCE
    
    def hsv_ranges(self) -> List[HSVBounds]:
        """inRange bounds for this signature. Two windows when hue wraps."""
        s_lo = max(0, self.saturation - self.saturation_tolerance)
        s_hi = min(255, self.saturation + self.saturation_tolerance)
        v_lo = max(0, self.value - self.value_tolerance)
        v_hi = min(255, self.value + self.value_tolerance)
        
        if self.is_achromatic:
            return [((0, s_lo, v_lo), (HUE_RANGE - 1, s_hi, v_hi))]
        
        h_lo = self.hue - self.hue_tolerance
        h_hi = self.hue + self.hue_tolerance
        if h_lo < 0:
            return [
                ((0, s_lo, v_lo), (h_hi, s_hi, v_hi)),
                ((HUE_RANGE + h_lo, s_lo, v_lo), (HUE_RANGE - 1, s_hi, v_hi)),
            ]
        if h_hi >= HUE_RANGE:
            return [
                ((h_lo, s_lo, v_lo), (HUE_RANGE - 1, s_hi, v_hi)),
                ((0, s_lo, v_lo), (h_hi - HUE_RANGE, s_hi, v_hi)),
            ]
        return [((h_lo, s_lo, v_lo), (h_hi, s_hi, v_hi))]
    
    def mask(self, hsv: np.ndarray) -> np.ndarray:
        """Binary mask (0/255) of pixels within tolerance."""
        ranges = self.hsv_ranges()
        mask = cv2.inRange(hsv, ranges[0][0], ranges[0][1])
        for lower, upper in ranges[1:]:
            mask = cv2.bitwise_or(mask, cv2.inRange(hsv, lower, upper))
        return mask
    
    def match_confidence(self, hsv_pixels: np.ndarray) -> np.ndarray:
        """
        Per-pixel match confidence in (0, 1] for an (N, 3) array of HSV pixels.
        
        Pixels at the signature center score 1, pixels at the tolerance edge
        score close to 0.
        """
        pixels = hsv_pixels.reshape(-1, 3).astype(np.float32)
        if self.is_achromatic:
            dh = np.zeros(len(pixels), dtype=np.float32)
        else:
            dh = hue_distance(pixels[:, 0], self.hue) / (self.hue_tolerance + 1)
        ds = np.abs(pixels[:, 1] - self.saturation) / (self.saturation_tolerance + 1)
        dv = np.abs(pixels[:, 2] - self.value) / (self.value_tolerance + 1)
        distance = np.clip(np.maximum(dh, np.maximum(ds, dv)), 0.0, 1.0)
        return 1.0 - distance * 0.99


@dataclass(frozen=True)
class ScaleCalibration:
    """Pixel to real-world scale derived from the reference plate."""
    px_per_cm: float
    reference_diameter_cm: float = 0.0
    blob_radius_px: float = 0.0
    
    def __post_init__(self):
        if not math.isfinite(self.px_per_cm) or self.px_per_cm <= 0:
            raise ValueError(f"Scale must be positive and finite, got {self.px_per_cm}")
    
    def to_cm(self, pixels: float) -> float:
        return pixels / self.px_per_cm


@dataclass(frozen=True)
class Calibration:
    """Color signature and scale a trajectory is collected under."""
    signature: ColorSignature
    scale: ScaleCalibration
    tap_point: Tuple[int, int]


class ColorCalibrator:
    """
    Derives a Calibration from a single tap on the reference plate.
    
    Steps:
    1. Reject taps whose sample disc leaves the frame
    2. Median color of the sample disc (circular mean for hue)
    3. Reject samples with high spread (tap on an edge, not a solid region)
    4. Threshold the frame with the new signature and measure the connected
       blob under the tap
    5. Convert the blob radius to px/cm using the plate diameter
    
    Calibration never falls back to a default scale.
    """
    
    # Below this saturation hue is noise (white, black, grey plates)
    MIN_CHROMATIC_SATURATION = 40
    
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
    
    def calibrate(
        self,
        image: np.ndarray,
        tap_point: Tuple[float, float],
        plate_diameter_cm: Optional[float] = None
    ) -> Calibration:
        """
        Calibrate from a tap on the reference plate.
        
        Args:
            image: BGR or BGRA frame
            tap_point: (x, y) in the frame's pixel space
            plate_diameter_cm: Known plate diameter (default from settings)
            
        Returns:
            Calibration with signature and scale
            
        Raises:
            CalibrationFailed: Edge tap, high sample variance or degenerate blob
        """
        try:
            validate_image(image)
        except ValueError as e:
            raise CalibrationFailed(CalibrationFailure.INVALID_FRAME, str(e)) from e
        
        diameter = plate_diameter_cm
        if diameter is None:
            diameter = self.settings.plate_diameter_cm
        if diameter <= 0:
            raise ValueError(f"Plate diameter must be positive, got {diameter}")
        
        height, width = image.shape[:2]
        x, y = int(round(tap_point[0])), int(round(tap_point[1]))
        r = self.settings.calibration_sample_radius_px
        
        if x - r < 0 or y - r < 0 or x + r >= width or y + r >= height:
            raise CalibrationFailed(
                CalibrationFailure.EDGE_TAP,
                f"Tap ({x}, {y}) is within {r}px of the frame edge ({width}x{height})"
            )
        
        hsv = to_hsv(image)
        signature = self._sample_signature(hsv, x, y, r)
        radius = self._estimate_blob_radius(hsv, signature, x, y)
        
        scale = ScaleCalibration(
            px_per_cm=radius / diameter,
            reference_diameter_cm=diameter,
            blob_radius_px=radius
        )
        
        logger.info(f"Calibrated at ({x}, {y}): hsv=({signature.hue}, {signature.saturation}, "
                    f"{signature.value}), radius={radius:.1f}px, scale={scale.px_per_cm:.3f}px/cm")
        
        return Calibration(signature=signature, scale=scale, tap_point=(x, y))
    
    def _sample_signature(self, hsv: np.ndarray, x: int, y: int, r: int) -> ColorSignature:
        """Median color of the disc of radius r around the tap."""
        patch = hsv[y - r:y + r + 1, x - r:x + r + 1]
        yy, xx = np.ogrid[-r:r + 1, -r:r + 1]
        disc = (xx * xx + yy * yy) <= r * r
        samples = patch[disc].astype(np.float64)
        
        sat = samples[:, 1]
        val = samples[:, 2]
        sat_std = float(np.std(sat))
        val_std = float(np.std(val))
        
        if max(sat_std, val_std) > self.settings.max_sample_std:
            raise CalibrationFailed(
                CalibrationFailure.HIGH_VARIANCE,
                f"Sample spread too high (s_std={sat_std:.1f}, v_std={val_std:.1f})"
            )
        
        saturation = int(round(np.median(sat)))
        value = int(round(np.median(val)))
        
        if saturation < self.MIN_CHROMATIC_SATURATION:
            logger.debug(f"Achromatic sample (s={saturation}), ignoring hue")
            hue = 0
            hue_tolerance = ACHROMATIC_HUE_TOLERANCE
        else:
            hue, hue_spread = self._circular_hue_stats(samples[:, 0])
            if hue_spread > self.settings.max_sample_hue_std:
                raise CalibrationFailed(
                    CalibrationFailure.HIGH_VARIANCE,
                    f"Hue spread too high ({hue_spread:.1f})"
                )
            hue_tolerance = self.settings.hue_tolerance
        
        return ColorSignature(
            hue=hue,
            saturation=saturation,
            value=value,
            hue_tolerance=hue_tolerance,
            saturation_tolerance=self.settings.saturation_tolerance,
            value_tolerance=self.settings.value_tolerance
        )
    
    @staticmethod
    def _circular_hue_stats(hues: np.ndarray) -> Tuple[int, float]:
        """Circular mean and spread of OpenCV hues."""
        angles = hues * (2.0 * np.pi / HUE_RANGE)
        mean_sin = float(np.mean(np.sin(angles)))
        mean_cos = float(np.mean(np.cos(angles)))
        
        mean_angle = math.atan2(mean_sin, mean_cos)
        hue = int(round(mean_angle * HUE_RANGE / (2.0 * np.pi))) % HUE_RANGE
        
        resultant = min(1.0, math.hypot(mean_sin, mean_cos))
        if resultant <= 1e-9:
            return hue, float("inf")
        spread = math.sqrt(-2.0 * math.log(resultant)) * HUE_RANGE / (2.0 * np.pi)
        return hue, spread
    
    def _estimate_blob_radius(
        self,
        hsv: np.ndarray,
        signature: ColorSignature,
        x: int,
        y: int
    ) -> float:
        """Equivalent-circle radius of the matching region connected to the tap."""
        height, width = hsv.shape[:2]
        mask = signature.mask(hsv)
        _, labels, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=8)
        
        label = labels[y, x]
        if label == 0:
            raise CalibrationFailed(
                CalibrationFailure.DEGENERATE_BLOB,
                "Tapped pixel does not match its own neighborhood color"
            )
        
        area = float(stats[label, cv2.CC_STAT_AREA])
        radius = math.sqrt(area / math.pi)
        
        if radius <= 1.0 or radius >= min(width, height) / 2.0:
            raise CalibrationFailed(
                CalibrationFailure.DEGENERATE_BLOB,
                f"Blob radius {radius:.1f}px outside (1, {min(width, height) / 2.0:.0f})"
            )
        
        return radius

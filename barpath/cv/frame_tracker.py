"""
Per-frame plate localization.

Finds the calibrated plate color in a frame and returns its centroid.

SEARCH STRATEGY:
1. Windowed search around the previous centroid (bounded per-frame cost)
2. Full-frame fallback when the window finds no blob large enough
   (occlusion, fast motion) or the blob is clipped by the window edge
3. Among disjoint blobs, the one nearest the previous centroid wins
   (temporal coherence), not the largest. This rejects background objects
   of a similar color.

A miss returns None. This module never aborts a session.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np
import logging

from barpath.config import Settings, get_settings
from barpath.cv.color_calibrator import ColorSignature, to_hsv, validate_image

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Centroid:
    """Confidence-weighted blob center in pixel space."""
    x: float
    y: float
    pixel_count: int = 0
    confidence: float = 1.0
    
    def distance_to(self, point: Tuple[float, float]) -> float:
        return math.hypot(self.x - point[0], self.y - point[1])
    
    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)


class FrameTracker:
    """
    Color blob tracker for a single calibrated signature.
    
    Stateless between calls: the previous centroid is passed in by the caller,
    so one tracker can serve any number of sessions.
    """
    
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.morph_kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (3, 3))
        
        # Diagnostics
        self.full_scans = 0
        self.windowed_scans = 0
    
    def locate(
        self,
        image: np.ndarray,
        signature: ColorSignature,
        previous: Optional[Tuple[float, float]] = None
    ) -> Optional[Centroid]:
        """
        Locate the plate in a frame.
        
        Args:
            image: BGR or BGRA frame
            signature: Calibrated color signature
            previous: Last known (x, y), used as the search window center
            
        Returns:
            Centroid, or None when no sufficiently large region matches
        """
        validate_image(image)
        height, width = image.shape[:2]
        
        if previous is not None:
            half = self.settings.search_window_px
            px, py = int(round(previous[0])), int(round(previous[1]))
            x0, y0 = max(0, px - half), max(0, py - half)
            x1, y1 = min(width, px + half + 1), min(height, py + half + 1)
            
            if x0 < x1 and y0 < y1:
                self.windowed_scans += 1
                centroid, clipped = self._search(
                    image[y0:y1, x0:x1], signature, (x0, y0), (width, height), previous
                )
                if centroid is not None and not clipped:
                    return centroid
                logger.debug(f"Window search at ({px}, {py}) "
                             f"{'clipped' if centroid is not None else 'missed'}, full scan")
        
        self.full_scans += 1
        centroid, _ = self._search(image, signature, (0, 0), (width, height), previous)
        return centroid
    
    def _search(
        self,
        region: np.ndarray,
        signature: ColorSignature,
        offset: Tuple[int, int],
        frame_size: Tuple[int, int],
        previous: Optional[Tuple[float, float]]
    ) -> Tuple[Optional[Centroid], bool]:
        """
        Search one region of the frame.
        
        Returns:
            (centroid in frame coordinates or None, whether the chosen blob
            touches a region border that is not a frame border)
        """
        hsv = to_hsv(region)
        mask = signature.mask(hsv)
        mask = cv2.morphologyEx(mask, cv2.MORPH_OPEN, self.morph_kernel)
        
        count, labels, stats, centers = cv2.connectedComponentsWithStats(mask, connectivity=8)
        candidates = [
            i for i in range(1, count)
            if stats[i, cv2.CC_STAT_AREA] >= self.settings.min_blob_pixels
        ]
        if not candidates:
            return None, False
        
        ox, oy = offset
        if previous is not None:
            best = min(
                candidates,
                key=lambda i: math.hypot(centers[i][0] + ox - previous[0],
                                         centers[i][1] + oy - previous[1])
            )
        else:
            best = max(candidates, key=lambda i: stats[i, cv2.CC_STAT_AREA])
        
        ys, xs = np.nonzero(labels == best)
        weights = signature.match_confidence(hsv[ys, xs])
        total = float(np.sum(weights))
        cx = float(np.sum(xs * weights)) / total + ox
        cy = float(np.sum(ys * weights)) / total + oy
        
        centroid = Centroid(
            x=cx,
            y=cy,
            pixel_count=int(len(xs)),
            confidence=float(np.mean(weights))
        )
        return centroid, self._is_clipped(stats[best], region.shape, offset, frame_size)
    
    @staticmethod
    def _is_clipped(
        stat: np.ndarray,
        region_shape: Tuple[int, ...],
        offset: Tuple[int, int],
        frame_size: Tuple[int, int]
    ) -> bool:
        """True when the blob touches a window edge inside the frame."""
        left = stat[cv2.CC_STAT_LEFT]
        top = stat[cv2.CC_STAT_TOP]
        right = left + stat[cv2.CC_STAT_WIDTH]
        bottom = top + stat[cv2.CC_STAT_HEIGHT]
        region_h, region_w = region_shape[:2]
        ox, oy = offset
        frame_w, frame_h = frame_size
        
        return (
            (left == 0 and ox > 0)
            or (top == 0 and oy > 0)
            or (right == region_w and ox + region_w < frame_w)
            or (bottom == region_h and oy + region_h < frame_h)
        )

"""Synthetic plate frames drawn with OpenCV."""

from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

RED = (0, 0, 255)
GREEN = (0, 255, 0)
BACKGROUND = (40, 40, 40)


def draw_plate(
    center: Optional[Tuple[float, float]],
    radius: int,
    color: Tuple[int, int, int] = RED,
    size: Tuple[int, int] = (480, 640),
    background: Tuple[int, int, int] = BACKGROUND,
    extra_plates: Sequence[Tuple[Tuple[float, float], int]] = ()
) -> np.ndarray:
    """BGR frame (height, width) with a filled disc at center. center=None draws no plate."""
    height, width = size
    frame = np.full((height, width, 3), background, dtype=np.uint8)
    if center is not None:
        cv2.circle(frame, (int(round(center[0])), int(round(center[1]))), radius, color, -1)
    for extra_center, extra_radius in extra_plates:
        cv2.circle(frame, (int(round(extra_center[0])), int(round(extra_center[1]))),
                   extra_radius, color, -1)
    return frame


def hsv_to_bgr(h: int, s: int, v: int) -> Tuple[int, int, int]:
    pixel = np.uint8([[[h, s, v]]])
    b, g, r = cv2.cvtColor(pixel, cv2.COLOR_HSV2BGR)[0, 0]
    return int(b), int(g), int(r)

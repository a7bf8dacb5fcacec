"""
Frame providers.

The tracker never touches camera APIs. Anything that yields Frames can
drive a recording: a live camera wrapper in the UI layer, a video file
replay, or an in-memory list of synthetic frames.
"""

from dataclasses import dataclass
from typing import Iterator, Optional, Protocol, Sequence, runtime_checkable

import cv2
import numpy as np
import logging

from barpath.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Frame:
    """A pixel buffer (BGR/BGRA uint8) and its monotonic timestamp in seconds."""
    image: np.ndarray
    timestamp: float
    index: int = 0
    
    @property
    def width(self) -> int:
        return int(self.image.shape[1])
    
    @property
    def height(self) -> int:
        return int(self.image.shape[0])


@runtime_checkable
class FrameSource(Protocol):
    """Capability interface implemented by whatever supplies frames."""
    
    def frames(self) -> Iterator[Frame]:
        ...


class ArrayFrameSource:
    """Replays in-memory images at a fixed frame rate."""
    
    def __init__(self, images: Sequence[np.ndarray], fps: float = 30.0, start_time: float = 0.0):
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")
        self.images = images
        self.fps = fps
        self.start_time = start_time
    
    def frames(self) -> Iterator[Frame]:
        for i, image in enumerate(self.images):
            yield Frame(image=image, timestamp=self.start_time + i / self.fps, index=i)


class VideoFileSource:
    """
    Replays a video file through cv2.VideoCapture.
    
    Timestamps come from frame index / container fps so replays are
    deterministic. Frames wider than processing_frame_width are resized,
    keeping aspect ratio.
    """
    
    def __init__(
        self,
        video_path: str,
        settings: Optional[Settings] = None,
        max_frames: Optional[int] = None
    ):
        self.video_path = video_path
        self.settings = settings or get_settings()
        self.max_frames = max_frames
    
    def frames(self) -> Iterator[Frame]:
        cap = cv2.VideoCapture(self.video_path)
        if not cap.isOpened():
            raise IOError(f"Failed to open video: {self.video_path}")
        
        try:
            fps = cap.get(cv2.CAP_PROP_FPS)
            if not fps or fps <= 0:
                logger.warning(f"No fps in {self.video_path}, assuming 30")
                fps = 30.0
            
            target_width = self.settings.processing_frame_width
            logger.info(f"Replaying {self.video_path} at {fps:.1f} FPS")
            
            frame_number = 0
            while self.max_frames is None or frame_number < self.max_frames:
                ret, image = cap.read()
                if not ret:
                    break
                
                if target_width and image.shape[1] > target_width:
                    scale = target_width / image.shape[1]
                    new_height = int(image.shape[0] * scale)
                    image = cv2.resize(image, (target_width, new_height), interpolation=cv2.INTER_LINEAR)
                
                yield Frame(image=image, timestamp=frame_number / fps, index=frame_number)
                frame_number += 1
        finally:
            cap.release()

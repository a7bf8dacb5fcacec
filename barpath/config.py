"""Tracker configuration."""

import logging
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Tracker settings loaded from environment variables."""
    
    # Application
    app_name: str = "Bar Path Tracker"
    debug: bool = False
    
    # Calibration
    plate_diameter_cm: float = 45.0  # Standard bumper plate
    calibration_sample_radius_px: int = 6
    max_sample_hue_std: float = 10.0  # Circular hue spread (OpenCV hue units)
    max_sample_std: float = 30.0  # Saturation / value spread
    
    # Color tolerance around the sampled center (OpenCV HSV units)
    hue_tolerance: int = 12
    saturation_tolerance: int = 70
    value_tolerance: int = 70
    
    # Frame tracking
    search_window_px: int = 200  # Half-size of the window around the last centroid
    min_blob_pixels: int = 30
    max_missed_frames: int = 10  # ~330ms at 30fps before tracking is lost
    overlay_window: int = 60  # Points kept for the live overlay
    
    # Kinematics
    max_velocity_ms: float = 6.0  # Above any barbell lift, pairs beyond this are glitches
    smoothing_window: int = 3
    min_rep_rom_cm: float = 5.0
    
    # Frame sources
    processing_frame_width: int = 640  # Resize wider frames (0 = no resize)
    
    class Config:
        env_file = ".env"
        env_prefix = "BARPATH_"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging for scripts embedding the tracker."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

"""Shared fixtures."""

import pytest

from barpath.config import Settings
from tests.helpers import draw_plate


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def plate_frame():
    """480x640 frame with a red plate of radius 60 at (320, 240)."""
    return draw_plate((320, 240), 60)

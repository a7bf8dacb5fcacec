"""Velocity-based training bar path tracking."""

__version__ = "1.0.0"

"""Trackora device registry backend."""

__version__ = "1.0.0"

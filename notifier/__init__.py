"""Reliable notification delivery pipeline."""
__version__ = "1.0.0"

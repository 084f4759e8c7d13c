"""Branching-narrative engine: script parsing, story storage and playback."""

__version__ = "0.1.0"

__all__ = ["__version__"]

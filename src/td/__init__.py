"""td - session-aware issue tracker for coding agents."""

__version__ = "0.1.0"

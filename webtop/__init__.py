"""Live access-log visit tracker for the terminal."""

__version__ = "0.3.0"

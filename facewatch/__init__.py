"""Live face detection, identity matching and spoken alerts."""

__version__ = "1.0.0"

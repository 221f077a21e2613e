"""nbuild: build and deploy tool for b2gos."""

__version__ = "0.1.0"

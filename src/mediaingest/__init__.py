"""Adaptive ingestion of remote media files into local storage."""

__all__ = ["__version__"]
__version__ = "0.1.0"

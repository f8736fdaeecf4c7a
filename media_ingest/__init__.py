"""
Media Ingest - bulk collection ingestion with resumable, multi-stage job tracking.
"""

from .version import __version__

__all__ = ["__version__"]

"""Job feed harvester package public API."""
from importlib import metadata as _metadata

try:
    __version__ = _metadata.version("job-feed-harvester")
except Exception:  # fallback when not installed
    __version__ = "0.1.0"

from .jobfeed.models import JobRecord, JobReference  # re-export

__all__ = ["__version__", "JobRecord", "JobReference"]

"""
Reconciliation pipeline: load, hash, persist and summarise one dataset run
"""

from .batching import BatchProcessor, chunked
from .bulk import run_ignore_failure
from .service import DataLoadException, DatasetNotFoundError, DatasetRecService

__all__ = [
    "BatchProcessor",
    "chunked",
    "DatasetRecService",
    "DataLoadException",
    "DatasetNotFoundError",
    "run_ignore_failure",
]

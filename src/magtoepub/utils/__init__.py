"""Utility module for MagToEpub."""

from magtoepub.utils.fs import atomic_write, safe_filename
from magtoepub.utils.logging import get_logger, run_context, setup_logging, setup_task_logging

__all__ = [
    "atomic_write",
    "safe_filename",
    "get_logger",
    "run_context",
    "setup_logging",
    "setup_task_logging",
]

"""
Utility module.

Common utilities for logging and file handling.
"""

from .logging import setup_logging, get_logger
from .files import ensure_dir, safe_filename, is_hidden_or_system_file, list_submission_files

__all__ = [
    "setup_logging",
    "get_logger",
    "ensure_dir",
    "safe_filename",
    "is_hidden_or_system_file",
    "list_submission_files",
]

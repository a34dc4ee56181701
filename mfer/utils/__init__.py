"""
Utility modules for mfer.

This package contains helper utilities for file management and
logging configuration.
"""

from .file_management import FileManager
from .logging_config import setup_logging

__all__ = [
    "FileManager",
    "setup_logging",
]

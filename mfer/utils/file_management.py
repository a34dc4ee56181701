"""
File management utilities for mfer.
"""

import logging
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)


class FileManager:
    """Utilities for file and directory management."""

    @staticmethod
    def ensure_directory(path: Path) -> Path:
        """Ensure directory exists, create if necessary."""
        path = Path(path)
        if not path.exists():
            logger.debug("Creating directory %s", path)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @staticmethod
    def existing_subdirectories(base: Path, names: List[str]) -> List[str]:
        """Return the names that exist as directories under base, in input order."""
        base = Path(base)
        return [n for n in names if (base / n).is_dir()]

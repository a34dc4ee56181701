"""
Logging configuration for mfer.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

LOG_ENV = "MFER_LOG_FILE"
LOG_PATH = Path.home() / ".mfer" / "mfer.log"


class _SyncingFileHandler(logging.FileHandler):
    """FileHandler that optionally fsyncs after every flush (MFER_LOG_FSYNC=1),
    for tailing ~/.mfer/mfer.log while a long batch runs."""

    def __init__(self, filename, mode="a", encoding=None, delay=False, *, fsync=False):
        super().__init__(filename, mode=mode, encoding=encoding, delay=delay)
        self._fsync = bool(fsync)

    def flush(self):
        super().flush()
        if self._fsync and self.stream and hasattr(self.stream, "fileno"):
            try:
                os.fsync(self.stream.fileno())
            except OSError:
                # logging must not break the batch
                pass


def _env_flag(name: str) -> bool:
    v = os.environ.get(name)
    if v is None:
        return False
    return v not in ("0", "false", "False", "no", "NO", "")


def default_log_path() -> Path:
    env = os.environ.get(LOG_ENV)
    return Path(env).expanduser() if env else LOG_PATH


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    format_string: Optional[str] = None,
    console_level: Optional[str] = None,
) -> logging.Logger:
    """
    Setup logging configuration.

    Args:
        level: Logging level for the log file (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path (default: ~/.mfer/mfer.log or $MFER_LOG_FILE)
        format_string: Custom format string
        console_level: Level for the stderr handler (default: WARNING)

    Returns:
        Configured logger
    """
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    log_path = Path(log_file) if log_file is not None else default_log_path()

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    # Clear existing handlers
    for h in list(root.handlers):
        root.removeHandler(h)

    # File handler; an unwritable home must not stop the CLI
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fh = _SyncingFileHandler(log_path, fsync=_env_flag("MFER_LOG_FSYNC"), delay=True)
    except OSError:
        fh = None
    if fh is not None:
        fh.setFormatter(logging.Formatter(format_string))
        fh.setLevel(getattr(logging, level.upper()))
        root.addHandler(fh)

    # Console handler (quiet by default); stdout belongs to the child processes
    ch = logging.StreamHandler(sys.stderr)
    ch_level = console_level or "WARNING"
    ch.setLevel(getattr(logging, ch_level.upper()))
    ch.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    root.addHandler(ch)

    return logging.getLogger("mfer")

"""
Ctrl-C handling for a batch of child processes.

The controller owns the shared 'cancelled' flag and the registry of live
child processes. The executor registers every child it spawns; on SIGINT the
controller marks the batch cancelled and signals every registered process
group. Children are started with start_new_session=True, so signalling the
group reaches grandchildren too (npm -> node, sh -> git).
"""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import subprocess
import threading
import time
from typing import Callable, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 5.0


def _signal_group(proc: subprocess.Popen, sig: int) -> bool:
    """Send sig to the process group of proc; False if it was already gone."""
    if proc.poll() is not None:
        return False
    try:
        os.killpg(proc.pid, sig)
    except (ProcessLookupError, PermissionError):
        # exited between poll() and killpg(), or the group is already gone
        try:
            proc.send_signal(sig)
        except (ProcessLookupError, OSError):
            return False
    return True


class CancellationController:
    """Process-wide interrupt listener plus the live-process registry."""

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self._cancelled = threading.Event()
        # reentrant: the SIGINT handler runs on the main thread, which may already hold it
        self._lock = threading.RLock()
        self._processes: Dict[int, tuple] = {}
        self._installed = False
        self._previous_handler = None
        self._on_cancel = on_cancel

    # ---------- flag ----------
    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._cancelled.wait(timeout)

    # ---------- registry ----------
    def register(self, key: int, name: str, proc: subprocess.Popen) -> None:
        with self._lock:
            self._processes[key] = (name, proc)
        # a cancel that raced with the spawn must still reach this child
        if self.cancelled:
            _signal_group(proc, signal.SIGTERM)

    def unregister(self, key: int) -> None:
        with self._lock:
            self._processes.pop(key, None)

    def running(self) -> List[str]:
        with self._lock:
            items = list(self._processes.values())
        return [name for name, proc in items if proc.poll() is None]

    def terminate_all(self, exclude: Optional[int] = None, sig: int = signal.SIGTERM) -> List[str]:
        """Signal every registered, still-running child except `exclude`.

        Returns the names that were signalled. Errors from children that exit
        concurrently are ignored.
        """
        with self._lock:
            items = [(k, v) for k, v in self._processes.items() if k != exclude]
        signalled = []
        for _key, (name, proc) in items:
            if _signal_group(proc, sig):
                signalled.append(name)
        if signalled:
            logger.info("Sent %s to: %s", signal.Signals(sig).name, ", ".join(signalled))
        return signalled

    def reap(self, grace: float = DEFAULT_GRACE_SECONDS) -> None:
        """Wait up to grace seconds for registered children, then SIGKILL survivors."""
        deadline = time.monotonic() + max(0.0, grace)
        with self._lock:
            items = list(self._processes.values())
        for name, proc in items:
            remaining = deadline - time.monotonic()
            try:
                proc.wait(timeout=max(0.0, remaining))
            except subprocess.TimeoutExpired:
                logger.warning("%s did not exit within %.1fs; killing", name, grace)
                _signal_group(proc, signal.SIGKILL)
                proc.wait()

    # ---------- cancel ----------
    def cancel(self, reason: str = "interrupt") -> bool:
        """Mark the batch cancelled and terminate all children.

        Only the first call has an effect; a second Ctrl-C during teardown is a
        no-op and returns False.
        """
        with self._lock:
            if self._cancelled.is_set():
                return False
            self._cancelled.set()
        logger.info("Cancellation requested (%s)", reason)
        if self._on_cancel is not None:
            self._on_cancel()
        self.terminate_all()
        return True

    # ---------- signal handler ----------
    def _handle_sigint(self, signum, frame) -> None:
        self.cancel("SIGINT")

    def install(self) -> bool:
        """Install the SIGINT handler once; returns False if nothing was installed."""
        if self._installed:
            return False
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in main thread; SIGINT handler not installed")
            return False
        self._previous_handler = signal.signal(signal.SIGINT, self._handle_sigint)
        self._installed = True
        return True

    def uninstall(self) -> None:
        if not self._installed:
            return
        previous = self._previous_handler if self._previous_handler is not None else signal.default_int_handler
        signal.signal(signal.SIGINT, previous)
        self._installed = False
        self._previous_handler = None

    @property
    def installed_handler(self) -> bool:
        return self._installed

    @contextlib.contextmanager
    def installed(self) -> Iterator["CancellationController"]:
        newly = self.install()
        try:
            yield self
        finally:
            if newly:
                self.uninstall()

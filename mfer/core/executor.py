"""
Executor: run one shell command per target, sequentially or concurrently.

Inputs:
- targets: ordered Target list (already resolved, validated and selected)
- spec: ExecutionSpec (command line, mode, sibling-termination policy)

Behavior:
- Sequential: list order, one child at a time, inherited stdio, continue on error
- Concurrent: spawn every child first, then pump their merged output line by
  line with a "<name> |" prefix from one worker thread per child; the control
  loop drains worker events, records outcomes and, when the policy triggers,
  terminates the still-running siblings
- Every per-target problem becomes a RunOutcome; only RunCancelled escapes
"""

from __future__ import annotations

import logging
import queue
import subprocess
import threading
import time
from typing import Any, Dict, Optional, Sequence

from rich.console import Console
from rich.text import Text

from .cancellation import DEFAULT_GRACE_SECONDS, CancellationController
from .errors import RunCancelled
from .models import ExecutionMode, ExecutionSpec, RunOutcome, RunReport, Target

logger = logging.getLogger(__name__)

# Prefix colors cycle per target so neighbouring streams are easy to tell apart
_PREFIX_STYLES = ("blue", "green", "magenta", "cyan", "yellow", "bright_blue", "bright_green", "bright_magenta")
_EVENT_POLL_SECONDS = 0.2


def spawn_target(target: Target, command: str, *, stream: bool) -> subprocess.Popen:
    """Start `command` through the shell inside the target's working directory.

    stream=False inherits the parent's stdio (sequential mode); stream=True
    merges stdout/stderr into one text pipe for prefixing. Raises OSError when
    the shell cannot be started (missing cwd, permissions, no /bin/sh).
    """
    popen_kwargs: Dict[str, Any] = {
        "cwd": target.working_directory,
        "shell": True,
        # own session so the whole group (sh + grandchildren) can be signalled
        "start_new_session": True,
    }
    if stream:
        popen_kwargs.update({
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.PIPE,
            "stderr": subprocess.STDOUT,
            "text": True,
            "encoding": "utf-8",
            "errors": "replace",
            "bufsize": 1,
        })
    logger.debug("spawn cmd=%s cwd=%s stream=%s", command, target.working_directory, stream)
    return subprocess.Popen(command, **popen_kwargs)


class TargetWorker(threading.Thread):
    """Pump one child's output with a name prefix, then report its exit."""

    def __init__(self, executor: "Executor", target: Target, proc: subprocess.Popen, started_at: float, style: str):
        super().__init__(name=f"worker-{target.name}-{target.index}", daemon=True)
        self.ex = executor
        self.target = target
        self.proc = proc
        self.started_at = started_at
        self.style = style

    def run(self) -> None:
        try:
            if self.proc.stdout is not None:
                for line in self.proc.stdout:
                    self.ex._emit_line(self.target, line.rstrip("\r\n"), self.style)
            rc = self.proc.wait()
        except Exception as ex:
            logger.error("Output pump for %s failed: %s", self.target.name, ex)
            rc = self.proc.wait()
        self.ex._events.put({"type": "exit", "target": self.target, "returncode": rc, "at": time.time()})


class Executor:
    """Run a batch of targets under a cancellation controller.

    Public API:
      - Executor(cancellation: CancellationController | None = None, console: Console | None = None)
      - run(targets, spec) -> RunReport (frozen, in target order)
    """

    def __init__(
        self,
        cancellation: Optional[CancellationController] = None,
        console: Optional[Console] = None,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ):
        self.cancellation = cancellation or CancellationController()
        self.console = console or Console(highlight=False)
        self.grace_seconds = grace_seconds
        self._events: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        self._output_lock = threading.Lock()
        self._workers: Dict[int, TargetWorker] = {}
        # names that caused sibling termination, keyed by target index
        self._terminated_by: Dict[int, str] = {}

    def run(self, targets: Sequence[Target], spec: ExecutionSpec) -> RunReport:
        report = RunReport()
        logger.info("Running '%s' on %d target(s), mode=%s", spec.command_line, len(targets), spec.mode.value)
        if spec.mode is ExecutionMode.CONCURRENT:
            self._run_concurrent(targets, spec, report)
        else:
            self._run_sequential(targets, spec, report)
        final = report.freeze()
        logger.info("Batch finished: %d ok, %d failed", len(final.outcomes) - final.failure_count, final.failure_count)
        return final

    # ---------- sequential ----------
    def _run_sequential(self, targets: Sequence[Target], spec: ExecutionSpec, report: RunReport) -> None:
        for target in targets:
            if self.cancellation.cancelled:
                logger.info("Cancelled; not starting %s", target.name)
                continue
            command = spec.command_for(target)
            self.console.print(
                Text.assemble((f"[{target.name}]", "blue"), f" Running '{command}' in {target.working_directory}")
            )
            outcome = self._run_blocking(target, command)
            report.append(outcome)
            if self.cancellation.cancelled:
                break
            self._print_outcome(outcome)
        if self.cancellation.cancelled:
            raise RunCancelled(report.outcomes)

    def _run_blocking(self, target: Target, command: str) -> RunOutcome:
        started = time.time()
        try:
            proc = spawn_target(target, command, stream=False)
        except OSError as ex:
            logger.error("Failed to start %s in %s: %s", target.name, target.working_directory, ex)
            return RunOutcome.spawn_failed(target, ex, at=started)
        self.cancellation.register(target.index, target.name, proc)
        try:
            while True:
                try:
                    rc = proc.wait(timeout=_EVENT_POLL_SECONDS)
                    break
                except subprocess.TimeoutExpired:
                    if self.cancellation.cancelled:
                        # SIGTERM went out with the cancel; escalate if it is ignored
                        self.cancellation.reap(self.grace_seconds)
                        rc = proc.wait()
                        break
        finally:
            self.cancellation.unregister(target.index)
        outcome = RunOutcome.from_returncode(target, rc, started_at=started, finished_at=time.time())
        logger.info("%s exited with %s", target.name, outcome.exit_code)
        return outcome

    def _print_outcome(self, outcome: RunOutcome) -> None:
        t = outcome.target
        if outcome.succeeded:
            self.console.print(Text(f"  {t.name} completed successfully (cwd: {t.working_directory})", style="green"))
        elif outcome.exit_code is None:
            self.console.print(
                Text(f"  {t.name} could not be started (cwd: {t.working_directory}): {outcome.error_detail}", style="red")
            )
        else:
            self.console.print(
                Text(f"  {t.name} failed (cwd: {t.working_directory}) with exit code {outcome.exit_code}", style="red")
            )

    # ---------- concurrent ----------
    def _run_concurrent(self, targets: Sequence[Target], spec: ExecutionSpec, report: RunReport) -> None:
        self._terminated_by.clear()
        self._events = queue.Queue()
        procs: Dict[int, subprocess.Popen] = {}
        started: Dict[int, float] = {}
        trigger: Optional[RunOutcome] = None

        # 1) spawn everything before awaiting anything
        for target in targets:
            if self.cancellation.cancelled:
                break
            at = time.time()
            try:
                proc = spawn_target(target, spec.command_for(target), stream=True)
            except OSError as ex:
                logger.error("Failed to start %s in %s: %s", target.name, target.working_directory, ex)
                outcome = RunOutcome.spawn_failed(target, ex, at=at)
                report.append(outcome)
                self._emit_line(target, f"failed to start: {outcome.error_detail}", "red")
                if trigger is None and spec.kill_others_on.triggered_by(False):
                    trigger = outcome
                continue
            procs[target.index] = proc
            started[target.index] = at
            self.cancellation.register(target.index, target.name, proc)

        # 2) one output pump per child
        for i, target in enumerate(t for t in targets if t.index in procs):
            worker = TargetWorker(self, target, procs[target.index], started[target.index], _PREFIX_STYLES[i % len(_PREFIX_STYLES)])
            self._workers[target.index] = worker
            worker.start()

        if trigger is not None:
            self._kill_siblings(trigger, exclude=None)

        # 3) drain exit events until every child is terminal
        pending = set(procs)
        try:
            while pending:
                if self.cancellation.cancelled:
                    break
                try:
                    ev = self._events.get(timeout=_EVENT_POLL_SECONDS)
                except queue.Empty:
                    continue
                if ev.get("type") != "exit":
                    continue
                target: Target = ev["target"]
                pending.discard(target.index)
                self.cancellation.unregister(target.index)
                outcome = RunOutcome.from_returncode(
                    target,
                    ev["returncode"],
                    started_at=started.get(target.index),
                    finished_at=ev.get("at"),
                    detail=self._kill_detail(target.index),
                )
                report.append(outcome)
                logger.info("%s exited with %s", target.name, outcome.exit_code)
                if trigger is None and spec.kill_others_on.triggered_by(outcome.succeeded):
                    trigger = outcome
                    self._kill_siblings(outcome, exclude=target.index)
        finally:
            if self.cancellation.cancelled:
                self.cancellation.reap(self.grace_seconds)
            self._join_workers()
            for idx in pending:
                self.cancellation.unregister(idx)

        if self.cancellation.cancelled:
            raise RunCancelled(report.outcomes)

    def _kill_siblings(self, trigger: RunOutcome, exclude: Optional[int]) -> None:
        for idx, worker in self._workers.items():
            if idx != exclude and worker.proc.poll() is None:
                self._terminated_by.setdefault(idx, trigger.target.name)
        signalled = self.cancellation.terminate_all(exclude=exclude)
        if not signalled:
            return
        verb = "succeeded" if trigger.succeeded else "failed"
        logger.info("%s %s; terminating %s", trigger.target.name, verb, ", ".join(signalled))
        with self._output_lock:
            self.console.print(
                Text(f"{trigger.target.name} {verb}; stopping {len(signalled)} other process(es)", style="yellow")
            )

    def _kill_detail(self, index: int) -> Optional[str]:
        name = self._terminated_by.get(index)
        return f"stopped after {name} exited" if name else None

    def _join_workers(self) -> None:
        for worker in list(self._workers.values()):
            worker.join(timeout=self.grace_seconds)
            if worker.is_alive():
                logger.warning("Output pump for %s still running after %.1fs", worker.target.name, self.grace_seconds)
        self._workers.clear()

    def _emit_line(self, target: Target, line: str, style: str) -> None:
        text = Text.assemble((f"{target.name} |", style), " ", line)
        with self._output_lock:
            self.console.print(text, soft_wrap=True, highlight=False, markup=False)

"""
Pydantic models for targets, execution requests and run results.
"""

from __future__ import annotations

import signal
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ExecutionMode(str, Enum):
    SEQUENTIAL = "sequential"
    CONCURRENT = "concurrent"


class KillPolicy(str, Enum):
    """Which exit of one concurrent target terminates its siblings."""
    NONE = "none"
    FAILURE = "failure"
    FAILURE_OR_SUCCESS = "failure_or_success"

    def triggered_by(self, succeeded: bool) -> bool:
        if self is KillPolicy.FAILURE_OR_SUCCESS:
            return True
        if self is KillPolicy.FAILURE:
            return not succeeded
        return False


class FailureKind(str, Enum):
    EXIT_CODE = "exit_code"
    SPAWN_FAILED = "spawn_failed"
    TERMINATED = "terminated"


class Target(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    working_directory: str
    index: int = 0
    # per-target override of the batch command (clone runs one url per target)
    command: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("target name must not be empty")
        return v

    @field_validator("working_directory")
    @classmethod
    def wd_abs(cls, v: str) -> str:
        p = Path(v)
        if not p.is_absolute():
            raise ValueError(f"working_directory must be absolute: {v}")
        return str(p)


class ExecutionSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    command_line: str
    mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    kill_others_on: KillPolicy = KillPolicy.FAILURE

    @field_validator("command_line")
    @classmethod
    def command_not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("custom command cannot be empty")
        return v

    def command_for(self, target: Target) -> str:
        return target.command or self.command_line


class RunOutcome(BaseModel):
    target: Target
    exit_code: Optional[int] = None
    succeeded: bool = False
    error_detail: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @model_validator(mode="after")
    def check_status(self) -> "RunOutcome":
        if self.succeeded != (self.exit_code == 0):
            raise ValueError("succeeded must be true iff exit_code == 0")
        if self.exit_code is None and self.failure_kind is not FailureKind.SPAWN_FAILED:
            raise ValueError("only spawn failures may lack an exit code")
        if self.started_at is not None and self.finished_at is not None:
            if self.finished_at < self.started_at:
                raise ValueError("finished_at must be >= started_at")
        return self

    @classmethod
    def from_returncode(
        cls,
        target: Target,
        returncode: int,
        *,
        started_at: Optional[float] = None,
        finished_at: Optional[float] = None,
        detail: Optional[str] = None,
    ) -> "RunOutcome":
        """Build an outcome from a Popen returncode (negative means killed by signal)."""
        kind: Optional[FailureKind] = None
        if returncode < 0:
            signum = -returncode
            try:
                sig_name = signal.Signals(signum).name
            except ValueError:
                sig_name = f"signal {signum}"
            exit_code = 128 + signum
            kind = FailureKind.TERMINATED
            detail = f"terminated by {sig_name}" + (f" ({detail})" if detail else "")
        else:
            exit_code = returncode
            if returncode != 0:
                kind = FailureKind.EXIT_CODE
        return cls(
            target=target,
            exit_code=exit_code,
            succeeded=exit_code == 0,
            error_detail=detail if kind else None,
            failure_kind=kind,
            started_at=started_at,
            finished_at=finished_at,
        )

    @classmethod
    def spawn_failed(cls, target: Target, error: BaseException, at: Optional[float] = None) -> "RunOutcome":
        return cls(
            target=target,
            exit_code=None,
            succeeded=False,
            error_detail=str(error) or error.__class__.__name__,
            failure_kind=FailureKind.SPAWN_FAILED,
            started_at=at,
            finished_at=at,
        )

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at


class RunReport(BaseModel):
    outcomes: List[RunOutcome] = Field(default_factory=list)
    frozen: bool = False

    def append(self, outcome: RunOutcome) -> None:
        if self.frozen:
            raise RuntimeError("run report is frozen")
        self.outcomes.append(outcome)

    def extend(self, outcomes: Iterable[RunOutcome]) -> None:
        for o in outcomes:
            self.append(o)

    def freeze(self) -> "RunReport":
        """Return a frozen copy ordered like the original target list."""
        ordered = sorted(self.outcomes, key=lambda o: o.target.index)
        return RunReport(outcomes=ordered, frozen=True)

    @property
    def failures(self) -> List[RunOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def all_succeeded(self) -> bool:
        return self.failure_count == 0

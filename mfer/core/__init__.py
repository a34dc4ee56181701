"""
Core modules: configuration, target resolution, execution engine and reporting.
"""

from .configuration import ConfigurationLoader, MferConfig
from .errors import (
    ConfigurationError,
    EmptyGroupError,
    MferError,
    RunCancelled,
    SelectionCancelled,
    UnknownGroupError,
    UsageError,
)
from .models import ExecutionMode, ExecutionSpec, KillPolicy, RunOutcome, RunReport, Target
from .cancellation import CancellationController
from .executor import Executor
from .report import Wording, render
from .targets import build_targets, resolve_group, resolve_libraries, validate_git_repositories

__all__ = [
    "ConfigurationLoader",
    "MferConfig",
    "MferError",
    "UsageError",
    "ConfigurationError",
    "UnknownGroupError",
    "EmptyGroupError",
    "SelectionCancelled",
    "RunCancelled",
    "ExecutionMode",
    "ExecutionSpec",
    "KillPolicy",
    "RunOutcome",
    "RunReport",
    "Target",
    "CancellationController",
    "Executor",
    "Wording",
    "render",
    "build_targets",
    "resolve_group",
    "resolve_libraries",
    "validate_git_repositories",
]

"""
Error taxonomy for mfer.

Usage and resolution errors are raised before any process is spawned;
per-target failures never surface as exceptions (they become RunOutcome
entries). Only cancellation is allowed to end a batch early.
"""

from enum import Enum
from typing import List, Optional, Sequence


class ErrorCategory(Enum):
    """Categories of errors in the system."""
    USAGE = "usage"
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    SPAWN = "spawn"
    RUNTIME = "runtime"
    CANCELLATION = "cancellation"


class MferError(Exception):
    """Base class for errors reported to the operator as a single line."""

    category: ErrorCategory = ErrorCategory.USAGE
    exit_code: int = 1

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint


class UsageError(MferError):
    category = ErrorCategory.USAGE


class ConfigurationError(MferError):
    category = ErrorCategory.CONFIGURATION


class ResolutionError(MferError):
    """A group or library name could not be turned into targets."""
    category = ErrorCategory.USAGE


class UnknownGroupError(ResolutionError):
    def __init__(self, name: str, known: Sequence[str], kind: str = "group"):
        self.name = name
        self.kind = kind
        self.known: List[str] = list(known)
        if kind == "library":
            message = f"Library '{name}' not found in configuration."
            hint = f"Available libraries: {' '.join(self.known)}"
        else:
            message = f"no group found with name '{name}'"
            hint = f"Available groups: {' '.join(self.known)}"
        super().__init__(message, hint=hint)


class EmptyGroupError(ResolutionError):
    def __init__(self, name: str, noun: str = "micro frontends"):
        self.name = name
        if name:
            message = f"group '{name}' has no {noun} defined."
        else:
            message = f"No {noun} configured in config file."
        super().__init__(message)


class SelectionCancelled(MferError):
    """The operator interrupted the interactive selection."""
    category = ErrorCategory.CANCELLATION
    exit_code = 130

    def __init__(self, message: str = "selection cancelled"):
        super().__init__(message)


class RunCancelled(MferError):
    """Ctrl-C during a batch; carries the outcomes recorded so far."""
    category = ErrorCategory.CANCELLATION
    exit_code = 130

    def __init__(self, completed: Optional[list] = None, message: str = "run cancelled"):
        super().__init__(message)
        self.completed = list(completed or [])

"""
Target resolution and validation.

- resolve_group / resolve_libraries: configured name -> ordered list of names
- build_targets: names -> Target models rooted in a base directory
- validate_git_repositories: split names into valid git checkouts and skips
"""

from __future__ import annotations

import logging
import os
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .errors import ConfigurationError, EmptyGroupError, UnknownGroupError
from .models import Target

logger = logging.getLogger(__name__)

ALL_GROUP = "all"

REASON_MISSING = "directory does not exist"
REASON_NOT_GIT = "not a git repository"

# Probes are cheap subprocesses; a small pool keeps large groups fast
_MAX_PROBE_WORKERS = 8


def resolve_group(groups: Mapping[str, Any], requested: Optional[str] = None, noun: str = "micro frontends") -> List[str]:
    """Return the configured target names of a group, order and duplicates preserved."""
    name = requested or ALL_GROUP
    if name not in groups:
        raise UnknownGroupError(name, list(groups.keys()))
    members = groups[name]
    if not isinstance(members, (list, tuple)) or len(members) == 0:
        raise EmptyGroupError(name, noun=noun)
    return [str(m) for m in members]


def resolve_libraries(libs: Optional[Sequence[str]], requested: Optional[str] = None) -> List[str]:
    """Return one library (when requested) or every configured library."""
    if libs is None:
        raise ConfigurationError(
            "Library configuration not found in config file.",
            hint="Please run 'mfer init' to configure library settings.",
        )
    if not isinstance(libs, (list, tuple)) or len(libs) == 0:
        raise EmptyGroupError("", noun="libraries")
    libs = [str(lib) for lib in libs]
    if requested:
        if requested not in libs:
            raise UnknownGroupError(requested, libs, kind="library")
        return [requested]
    return libs


def build_targets(
    names: Sequence[str],
    base_directory: str,
    command_for: Optional[Callable[[str], str]] = None,
    working_directory: Optional[str] = None,
) -> List[Target]:
    """Create targets rooted at base_directory/<name>.

    working_directory pins every target to one directory instead (clone runs
    in the parent directory); command_for gives a per-target command.
    """
    base = os.path.abspath(os.path.expanduser(base_directory))
    targets: List[Target] = []
    for i, name in enumerate(names):
        wd = os.path.abspath(os.path.expanduser(working_directory)) if working_directory else os.path.join(base, name)
        targets.append(
            Target(
                name=name,
                working_directory=wd,
                index=i,
                command=command_for(name) if command_for else None,
            )
        )
    return targets


def is_git_repo(path: Path) -> bool:
    """True when `git rev-parse --git-dir` succeeds inside path."""
    try:
        res = subprocess.run(
            ["git", "rev-parse", "--git-dir"],
            cwd=str(path),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as ex:
        logger.warning("git probe failed for %s: %s", path, ex)
        return False
    return res.returncode == 0


@dataclass
class InvalidTarget:
    name: str
    reason: str

    @property
    def missing(self) -> bool:
        return self.reason.startswith(REASON_MISSING)


@dataclass
class ValidationResult:
    valid: List[str] = field(default_factory=list)
    invalid: List[InvalidTarget] = field(default_factory=list)

    @property
    def any_missing(self) -> bool:
        return any(i.missing for i in self.invalid)


def _check_one(name: str, base: Path, probe: Callable[[Path], bool]) -> Optional[str]:
    path = base / name
    if not path.exists():
        return f"{REASON_MISSING}: {path}"
    if not probe(path):
        return f"{REASON_NOT_GIT}: {path}"
    return None


def validate_git_repositories(
    names: Sequence[str],
    base_directory: str,
    probe: Callable[[Path], bool] = is_git_repo,
) -> ValidationResult:
    """Partition names into git checkouts and skips (with a reason each)."""
    base = Path(os.path.expanduser(base_directory))
    result = ValidationResult()
    if not names:
        return result
    workers = min(_MAX_PROBE_WORKERS, len(names))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        reasons = list(pool.map(lambda n: _check_one(n, base, probe), names))
    for name, reason in zip(names, reasons):
        if reason is None:
            result.valid.append(name)
        else:
            logger.info("Skipping %s: %s", name, reason)
            result.invalid.append(InvalidTarget(name=name, reason=reason))
    return result


def partition_for_clone(
    names: Sequence[str],
    base_directory: str,
    probe: Callable[[Path], bool] = is_git_repo,
) -> Dict[str, List[str]]:
    """Split names into 'missing' (to clone), 'present' git checkouts and 'blocked' non-git dirs."""
    base = Path(os.path.expanduser(base_directory))
    out: Dict[str, List[str]] = {"missing": [], "present": [], "blocked": []}
    for name in names:
        path = base / name
        if not path.exists():
            out["missing"].append(name)
        elif probe(path):
            out["present"].append(name)
        else:
            out["blocked"].append(name)
    return out

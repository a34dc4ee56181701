"""
Render a finished RunReport and map it to a process exit code.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from rich.console import Console
from rich.text import Text

from .models import RunOutcome, RunReport

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130

_FAILURE_LINE = re.compile(
    r"^\s*(?P<noun>\S+) (?P<name>.+?) failed to (?P<action>.+?) \(cwd: (?P<cwd>.*)\)"
    r"(?: with exit code (?P<code>-?\d+)|: (?P<detail>.*))\s*$"
)


@dataclass(frozen=True)
class Wording:
    """Workflow-specific text for the summary."""
    noun: str
    action: str
    success: str
    failure_header: str
    noun_plural: str = "processes"


def failure_line(outcome: RunOutcome, wording: Wording) -> str:
    t = outcome.target
    head = f"  {wording.noun} {t.name} failed to {wording.action} (cwd: {t.working_directory})"
    if outcome.exit_code is None:
        return f"{head}: {outcome.error_detail or 'could not be started'}"
    return f"{head} with exit code {outcome.exit_code}"


def render(report: RunReport, wording: Wording, console: Optional[Console] = None) -> int:
    """Print the summary; 0 when every target succeeded, 1 otherwise."""
    console = console or Console(highlight=False)
    if report.all_succeeded:
        console.print(Text(wording.success, style="green"))
        return EXIT_OK
    console.print(Text(wording.failure_header, style="red"))
    for outcome in sorted(report.failures, key=lambda o: o.target.index):
        line = Text(failure_line(outcome, wording), style="yellow")
        if outcome.error_detail and outcome.exit_code is not None:
            line.append(f" ({outcome.error_detail})", style="dim")
        console.print(line, soft_wrap=True)
    return EXIT_FAILED


def parse_failures(text: str) -> List[Tuple[str, Optional[int]]]:
    """Recover (name, exit_code) pairs from rendered output; spawn failures give None."""
    pairs: List[Tuple[str, Optional[int]]] = []
    for raw in text.splitlines():
        # drop the trailing "(terminated by ...)" note added to killed targets
        line = re.sub(r" \((?:terminated by|stopped after)[^)]*\)+\s*$", "", raw.rstrip())
        m = _FAILURE_LINE.match(line)
        if not m:
            continue
        code = m.group("code")
        pairs.append((m.group("name"), int(code) if code is not None else None))
    return pairs

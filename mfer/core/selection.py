"""
Interactive narrowing of a target list.

The default prompt is a numbered multi-select rendered with rich. Any
callable with the same signature can replace it (tests, other front ends).
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from rich.console import Console
from rich.prompt import Prompt

from .errors import SelectionCancelled

logger = logging.getLogger(__name__)

PromptFn = Callable[[Sequence[str], str], List[str]]


def parse_selection(answer: str, count: int) -> List[int]:
    """Parse '1,3', '2-4', 'all' into sorted zero-based indices.

    Raises ValueError on anything out of range or unparsable.
    """
    answer = (answer or "").strip().lower()
    if answer in ("all", "*"):
        return list(range(count))
    picked = set()
    for part in answer.replace(" ", ",").split(","):
        if not part:
            continue
        if "-" in part:
            lo_s, hi_s = part.split("-", 1)
            lo, hi = int(lo_s), int(hi_s)
            if lo > hi:
                lo, hi = hi, lo
            numbers = range(lo, hi + 1)
        else:
            numbers = [int(part)]
        for n in numbers:
            if n < 1 or n > count:
                raise ValueError(f"{n} is not between 1 and {count}")
            picked.add(n - 1)
    return sorted(picked)


def checkbox_prompt(candidates: Sequence[str], message: str, console: Optional[Console] = None) -> List[str]:
    """Ask for at least one of the candidates; KeyboardInterrupt/EOFError propagate."""
    console = console or Console()
    console.print(f"[bold]{message}[/bold]")
    for i, name in enumerate(candidates, start=1):
        console.print(f"  [cyan]{i:>2}[/cyan]  {name}", highlight=False)
    while True:
        answer = Prompt.ask("Numbers (e.g. 1,3 or 2-4), or 'all'", default="all", console=console)
        try:
            indices = parse_selection(answer, len(candidates))
        except ValueError as e:
            console.print(f"[red]Invalid selection:[/red] {e}")
            continue
        if not indices:
            console.print("[yellow]Select at least one entry[/yellow]")
            continue
        return [candidates[i] for i in indices]


def select_targets(
    candidates: Sequence[str],
    message: str,
    prompt: Optional[PromptFn] = None,
    console: Optional[Console] = None,
) -> List[str]:
    """Return the chosen subset of candidates, in candidate order.

    Raises:
        SelectionCancelled: prompt interrupted, or nothing was chosen
    """
    if prompt is None:
        def prompt(c, m):
            return checkbox_prompt(c, m, console=console)
    try:
        chosen = prompt(list(candidates), message)
    except (KeyboardInterrupt, EOFError) as e:
        raise SelectionCancelled() from e
    chosen_set = set(chosen or [])
    unknown = chosen_set.difference(candidates)
    if unknown:
        logger.warning("Ignoring selections that were not offered: %s", ", ".join(sorted(unknown)))
    result = [c for c in candidates if c in chosen_set]
    if not result:
        # the prompt must enforce a minimum of one; treat a violation as cancel
        raise SelectionCancelled("no targets selected")
    logger.info("Selected %d of %d: %s", len(result), len(candidates), ", ".join(result))
    return result

"""
Command workflows: resolve -> (validate) -> (select) -> execute -> report.

Each public function returns a process exit code. Usage and configuration
problems raise MferError subclasses before anything is spawned;
SelectionCancelled and RunCancelled propagate to the CLI, which exits 130
without a report.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from rich.console import Console
from rich.text import Text

from .cancellation import DEFAULT_GRACE_SECONDS, CancellationController
from .configuration import MferConfig
from .errors import ConfigurationError, UsageError
from .executor import Executor
from .models import ExecutionMode, ExecutionSpec, KillPolicy, Target
from .report import EXIT_FAILED, EXIT_OK, Wording, render
from .selection import PromptFn, select_targets
from .targets import (
    ALL_GROUP,
    build_targets,
    is_git_repo,
    partition_for_clone,
    resolve_group,
    resolve_libraries,
    validate_git_repositories,
)
from ..utils.file_management import FileManager

logger = logging.getLogger(__name__)

DEFAULT_RUN_COMMAND = "npm start"
INSTALL_COMMAND = "npm install"
LIB_INSTALL_COMMAND = "npm install --no-fund"
LIB_BUILD_COMMAND = "npm run build"
PULL_COMMAND = "git pull"


@dataclass
class WorkflowContext:
    """Everything a workflow needs; built once per CLI invocation."""
    config: MferConfig
    console: Console = field(default_factory=lambda: Console(highlight=False))
    prompt: Optional[PromptFn] = None
    probe: Callable[[Path], bool] = is_git_repo
    grace_seconds: float = DEFAULT_GRACE_SECONDS

    def info(self, message: str, style: str = "blue") -> None:
        self.console.print(Text(message, style=style), soft_wrap=True)

    def select(self, names: Sequence[str], message: str) -> List[str]:
        return select_targets(names, message, prompt=self.prompt, console=self.console)


def execute_batch(ctx: WorkflowContext, targets: Sequence[Target], spec: ExecutionSpec, wording: Wording) -> int:
    """Run targets under a freshly installed SIGINT handler and render the report."""
    controller = CancellationController(
        on_cancel=lambda: ctx.console.print(Text(f"\nReceived SIGINT. Stopping all {wording.noun_plural}...", style="yellow"))
    )
    executor = Executor(controller, ctx.console, grace_seconds=ctx.grace_seconds)
    with controller.installed():
        report = executor.run(targets, spec)
    return render(report, wording, ctx.console)


def _require_libraries(config: MferConfig) -> str:
    if not config.lib_directory or config.libs is None:
        raise ConfigurationError(
            "Library configuration not found in config file.",
            hint="Please run 'mfer init' to configure library settings.",
        )
    return config.lib_directory


def _print_skips(ctx: WorkflowContext, invalid) -> None:
    if not invalid:
        return
    ctx.info("\nSkipping invalid repositories:", style="yellow")
    for item in invalid:
        ctx.info(f"  {item.name}: {item.reason}", style="yellow")
    ctx.console.print()


# ----- micro frontend groups -----

def check_run_options(command: Optional[str], concurrent: bool) -> None:
    """Reject --async without --command and blank commands before anything else happens."""
    if concurrent and command is None:
        raise UsageError("--async can only be used with --command option")
    if command is not None and not command.strip():
        raise UsageError("custom command cannot be empty")


def run_group(
    ctx: WorkflowContext,
    group: Optional[str] = None,
    command: Optional[str] = None,
    concurrent: bool = False,
    select: bool = False,
) -> int:
    """`mfer run`: npm start everywhere, or a custom command."""
    check_run_options(command, concurrent)
    group = group or ALL_GROUP
    names = resolve_group(ctx.config.groups, group)
    if select:
        names = ctx.select(names, f"Select micro frontends to operate on from group '{group}':")
    targets = build_targets(names, ctx.config.mfe_directory)

    if command is None:
        spec = ExecutionSpec(
            command_line=DEFAULT_RUN_COMMAND,
            mode=ExecutionMode.CONCURRENT,
            kill_others_on=KillPolicy.FAILURE_OR_SUCCESS,
        )
        ctx.info(f"Running micro frontends in group: {group}...", style="green")
        wording = Wording(
            noun="MFE",
            noun_plural="micro frontends",
            action="start",
            success=f"All micro frontends in group '{group}' exited successfully.",
            failure_header="One or more micro frontends failed to start.",
        )
    else:
        mode = ExecutionMode.CONCURRENT if concurrent else ExecutionMode.SEQUENTIAL
        spec = ExecutionSpec(command_line=command, mode=mode, kill_others_on=KillPolicy.FAILURE)
        ctx.info(
            f"Running custom command '{spec.command_line}' on micro frontends in group '{group}' ({mode.value})...",
            style="green",
        )
        wording = Wording(
            noun="MFE",
            noun_plural="micro frontends",
            action=f"run '{spec.command_line}'",
            success=f"Custom command '{spec.command_line}' completed successfully on all micro frontends.",
            failure_header=f"Custom command '{spec.command_line}' failed on one or more micro frontends.",
        )
    return execute_batch(ctx, targets, spec, wording)


def install_group(ctx: WorkflowContext, group: Optional[str] = None, select: bool = False) -> int:
    """`mfer install`: npm install in each micro frontend, one at a time."""
    group = group or ALL_GROUP
    names = resolve_group(ctx.config.groups, group)
    if select:
        names = ctx.select(names, f"Select micro frontends to operate on from group '{group}':")
    targets = build_targets(names, ctx.config.mfe_directory)
    scope = f"selected items from group: {group}" if select else f"group: {group}"
    ctx.info(f"Running '{INSTALL_COMMAND}' in {scope}", style="green")
    spec = ExecutionSpec(command_line=INSTALL_COMMAND, mode=ExecutionMode.SEQUENTIAL)
    wording = Wording(
        noun="MFE",
        noun_plural="installs",
        action="install",
        success="All installs completed successfully.",
        failure_header="One or more installs failed.",
    )
    return execute_batch(ctx, targets, spec, wording)


def _pull(ctx: WorkflowContext, names: List[str], base: str, context_name: str, select: bool, tip: str, select_message: str) -> int:
    validation = validate_git_repositories(names, base, probe=ctx.probe)
    _print_skips(ctx, validation.invalid)
    if not validation.valid:
        ctx.info("No valid git repositories found to pull from.", style="red")
        if validation.any_missing:
            ctx.info(f"\nTip: {tip}")
        return EXIT_FAILED
    chosen = validation.valid
    if select:
        chosen = ctx.select(chosen, select_message)
    targets = build_targets(chosen, base)
    repo_text = f"selected repositories from {context_name}" if select else f"{len(chosen)} repositories in {context_name}"
    ctx.info(f"Pulling latest changes for {repo_text}...", style="green")
    spec = ExecutionSpec(command_line=PULL_COMMAND, mode=ExecutionMode.CONCURRENT, kill_others_on=KillPolicy.FAILURE)
    done_text = f"selected repositories from {context_name}" if select else f"all repositories in {context_name}"
    wording = Wording(
        noun="Repository",
        noun_plural="git pull operations",
        action="pull",
        success=f"\nSuccessfully pulled latest changes for {done_text}",
        failure_header="One or more repositories failed to pull.",
    )
    return execute_batch(ctx, targets, spec, wording)


def pull_group(ctx: WorkflowContext, group: Optional[str] = None, select: bool = False) -> int:
    """`mfer pull`: git pull in every valid checkout of a group, concurrently."""
    group = group or ALL_GROUP
    names = resolve_group(ctx.config.groups, group, noun="repositories")
    ctx.info(f"Validating repositories in group: {group}...")
    return _pull(
        ctx,
        names,
        ctx.config.mfe_directory,
        f"group: {group}",
        select,
        tip="Run 'mfer clone' to clone repositories that don't exist yet.",
        select_message=f"Select micro frontends to operate on from group '{group}':",
    )


def clone_group(ctx: WorkflowContext, group: Optional[str] = None) -> int:
    """`mfer clone`: git clone every repository of a group that is not checked out yet."""
    group = group or ALL_GROUP
    names = resolve_group(ctx.config.groups, group, noun="repositories")
    base_url = ctx.config.base_github_url
    if not base_url:
        raise ConfigurationError(
            "base_github_url is not set in config file.",
            hint="Add 'base_github_url: https://github.com/<org>' to your configuration.",
        )
    base = ctx.config.mfe_directory
    ctx.info(f"Checking repositories in group: {group}...")
    parts = partition_for_clone(names, base, probe=ctx.probe)
    for name in parts["blocked"]:
        ctx.info(f"  {name}: Directory exists but is not a git repository. Skipping.", style="yellow")
    if parts["present"]:
        ctx.info(f"\nRepositories already exist ({len(parts['present'])}):", style="green")
        for name in parts["present"]:
            ctx.info(f"  ✓ {name}", style="green")
        ctx.console.print()
    if not parts["missing"]:
        ctx.info("All repositories in the group already exist.")
        return EXIT_OK

    if not os.path.isdir(os.path.expanduser(base)):
        try:
            FileManager.ensure_directory(Path(os.path.expanduser(base)))
        except OSError as e:
            raise ConfigurationError(f"Error creating directory {base}: {e}") from e
        ctx.info(f"Created directory: {base}")

    targets = build_targets(
        parts["missing"],
        base,
        command_for=lambda name: f"git clone {base_url}/{name}.git",
        working_directory=base,
    )
    ctx.info(f"Cloning {len(targets)} repositories in group: {group}...", style="green")
    spec = ExecutionSpec(command_line="git clone", mode=ExecutionMode.CONCURRENT, kill_others_on=KillPolicy.FAILURE)
    wording = Wording(
        noun="Repository",
        noun_plural="clone operations",
        action="clone",
        success=f"\nSuccessfully cloned all repositories in group: {group}\nRepositories are located in: {base}",
        failure_header="One or more repositories failed to clone.",
    )
    return execute_batch(ctx, targets, spec, wording)


# ----- libraries -----

def lib_install(ctx: WorkflowContext, lib: Optional[str] = None, select: bool = False) -> int:
    """`mfer lib install`: npm install in library directories, one at a time."""
    lib_dir = _require_libraries(ctx.config)
    names = resolve_libraries(ctx.config.libs, lib)
    if select:
        names = ctx.select(names, "Select libraries to operate on:")
    context_name = f"library '{lib}'" if lib else "all libraries"
    scope = f"selected items from {context_name}" if select else context_name
    ctx.info(f"Running '{LIB_INSTALL_COMMAND}' in {scope}", style="green")
    targets = build_targets(names, lib_dir)
    spec = ExecutionSpec(command_line=LIB_INSTALL_COMMAND, mode=ExecutionMode.SEQUENTIAL)
    wording = Wording(
        noun="Library",
        noun_plural="installs",
        action="install",
        success="All installs completed successfully.",
        failure_header="One or more installs failed.",
    )
    return execute_batch(ctx, targets, spec, wording)


def lib_pull(ctx: WorkflowContext, lib: Optional[str] = None, select: bool = False) -> int:
    """`mfer lib pull`: git pull in every valid library checkout, concurrently."""
    lib_dir = _require_libraries(ctx.config)
    names = resolve_libraries(ctx.config.libs, lib)
    ctx.info("Validating library repositories...")
    return _pull(
        ctx,
        names,
        lib_dir,
        f"library '{lib}'" if lib else "all libraries",
        select,
        tip="Make sure your libraries are cloned to the configured directory.",
        select_message="Select libraries to operate on:",
    )


def lib_build(ctx: WorkflowContext, lib: Optional[str] = None) -> int:
    """`mfer lib build`: npm run build in each library directory, one at a time."""
    lib_dir = _require_libraries(ctx.config)
    names = resolve_libraries(ctx.config.libs, lib)
    present = FileManager.existing_subdirectories(Path(os.path.expanduser(lib_dir)), names)
    missing = [n for n in names if n not in present]
    for name in missing:
        ctx.info(f"Error: Library directory not found: {os.path.join(lib_dir, name)}", style="red")
    if not present:
        ctx.info("No libraries to build.", style="yellow")
        return EXIT_FAILED
    plural = "library" if len(present) == 1 else "libraries"
    ctx.info(f"Building {len(present)} {plural}...")
    targets = build_targets(present, lib_dir)
    spec = ExecutionSpec(command_line=LIB_BUILD_COMMAND, mode=ExecutionMode.SEQUENTIAL)
    wording = Wording(
        noun="Library",
        noun_plural="builds",
        action="build",
        success="\nBuild process completed!",
        failure_header="One or more libraries failed to build.",
    )
    rc = execute_batch(ctx, targets, spec, wording)
    return EXIT_FAILED if missing else rc


def lib_list(ctx: WorkflowContext) -> int:
    """`mfer lib list`: show each configured library and whether it has been built."""
    lib_dir = _require_libraries(ctx.config)
    ctx.info("Configured Libraries:")
    ctx.console.print(Text("─" * 50, style="dim"))
    libs = ctx.config.libs or []
    if not libs:
        ctx.info("No libraries configured.", style="yellow")
        return EXIT_OK
    for lib in libs:
        lib_path = Path(os.path.expanduser(lib_dir)) / lib
        if not lib_path.exists():
            status = Text("✗ Directory not found", style="red")
        elif not (lib_path / "dist").exists():
            status = Text("⚠ Not built", style="yellow")
        else:
            status = Text("✓ Built", style="green")
        ctx.console.print(Text(lib, style="bold"))
        ctx.console.print(f"  Path: {lib_path}", highlight=False, markup=False)
        ctx.console.print(Text.assemble("  Status: ", status))
        ctx.console.print()
    ctx.console.print(Text("─" * 50, style="dim"))
    ctx.info(f"Library Directory: {lib_dir}")
    ctx.info(f"Total Libraries: {len(libs)}")
    return EXIT_OK

#!/usr/bin/env python3
"""
mfer: Micro Frontend Runner CLI

Commands:
  mfer run [GROUP]        # npm start in every MFE of a group (concurrently)
  mfer run -c CMD [-a]    # custom command, sequential or concurrent (--async)
  mfer install [GROUP]    # npm install, one MFE at a time
  mfer pull [GROUP]       # git pull in every valid checkout
  mfer clone [GROUP]      # git clone the repositories that are missing
  mfer lib ...            # install / pull / build / list internal libraries
  mfer config list        # print the configuration
  mfer init               # write a template configuration
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from rich.console import Console
from rich.text import Text

from mfer import __version__
from mfer.core.configuration import EDIT_WARNING, ConfigurationLoader, template_config
from mfer.core.errors import MferError, RunCancelled, SelectionCancelled
from mfer.core.report import EXIT_INTERRUPTED
from mfer.core.workflows import (
    WorkflowContext,
    check_run_options,
    clone_group,
    install_group,
    lib_build,
    lib_install,
    lib_list,
    lib_pull,
    pull_group,
    run_group,
)
from mfer.utils.logging_config import setup_logging

logger = logging.getLogger("mfer")


def _context(args: argparse.Namespace, console: Console) -> WorkflowContext:
    config = ConfigurationLoader(getattr(args, "config", None)).load()
    return WorkflowContext(config=config, console=console)


def cmd_run(args: argparse.Namespace, console: Console) -> int:
    # usage errors come before the config is even read
    check_run_options(args.command, args.async_)
    return run_group(
        _context(args, console),
        args.group,
        command=args.command,
        concurrent=args.async_,
        select=args.select,
    )


def cmd_install(args: argparse.Namespace, console: Console) -> int:
    return install_group(_context(args, console), args.group, select=args.select)


def cmd_pull(args: argparse.Namespace, console: Console) -> int:
    return pull_group(_context(args, console), args.group, select=args.select)


def cmd_clone(args: argparse.Namespace, console: Console) -> int:
    return clone_group(_context(args, console), args.group)


def cmd_lib_install(args: argparse.Namespace, console: Console) -> int:
    return lib_install(_context(args, console), args.lib, select=args.select)


def cmd_lib_pull(args: argparse.Namespace, console: Console) -> int:
    return lib_pull(_context(args, console), args.lib, select=args.select)


def cmd_lib_build(args: argparse.Namespace, console: Console) -> int:
    return lib_build(_context(args, console), args.lib)


def cmd_lib_list(args: argparse.Namespace, console: Console) -> int:
    return lib_list(_context(args, console))


def cmd_config_list(args: argparse.Namespace, console: Console) -> int:
    config = ConfigurationLoader(getattr(args, "config", None)).load()
    console.print(config.to_yaml().rstrip(), markup=False, highlight=False)
    return 0


def cmd_init(args: argparse.Namespace, console: Console) -> int:
    loader = ConfigurationLoader(getattr(args, "config", None))
    if loader.exists():
        console.print(
            Text.assemble(("Error", "red"), f": config already exists, you can edit it at {loader.config_file}")
        )
        return 1
    path = loader.save(template_config())
    path.write_text(f"{EDIT_WARNING}\n{path.read_text(encoding='utf-8')}", encoding="utf-8")
    console.print(Text(f"Created configuration template at {path}", style="green"))
    console.print(Text("Edit mfe_directory and groups to point at your repositories.", style="blue"))
    return 0


def _print_error(console: Console, err: MferError) -> None:
    console.print(Text.assemble(("Error", "red"), f": {err.message}"))
    if err.hint:
        console.print(Text(err.hint, style="green"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mfer",
        description="Micro Frontend Runner (mfer) - A CLI for running your project's micro frontends.",
    )
    parser.add_argument("-v", "--version", action="version", version=__version__, help="mfer CLI version")
    parser.add_argument("--config", default=None, help="Config file (default: ~/.mfer/config.yaml or $MFER_CONFIG)")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="INFO")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="Run micro-frontend applications")
    p_run.add_argument("group", nargs="?", default="all", help="Name of the group as specified in the configuration")
    p_run.add_argument("-s", "--select", action="store_true", help="Prompt to select which micro frontends to run")
    p_run.add_argument("-c", "--command", default=None, help="Custom command to run instead of 'npm start'")
    p_run.add_argument(
        "-a", "--async", dest="async_", action="store_true", help="Run the custom command concurrently (requires --command)"
    )
    p_run.set_defaults(func=cmd_run)

    p_install = sub.add_parser("install", help="Run 'npm install' in micro-frontend applications sequentially")
    p_install.add_argument("group", nargs="?", default="all", help="Name of the group as specified in the configuration")
    p_install.add_argument("-s", "--select", action="store_true", help="Prompt to select which micro frontends to install")
    p_install.set_defaults(func=cmd_install)

    p_pull = sub.add_parser("pull", help="Pull latest changes from git repositories")
    p_pull.add_argument("group", nargs="?", default="all", help="Name of the group as specified in the configuration")
    p_pull.add_argument("-s", "--select", action="store_true", help="Prompt to select which repositories to pull")
    p_pull.set_defaults(func=cmd_pull)

    p_clone = sub.add_parser("clone", help="Clone repositories from the specified group")
    p_clone.add_argument("group", nargs="?", default="all", help="Name of the group as specified in the configuration")
    p_clone.set_defaults(func=cmd_clone)

    p_lib = sub.add_parser("lib", help="Manage internal npm packages")
    lib_sub = p_lib.add_subparsers(dest="lib_cmd")
    pl_install = lib_sub.add_parser("install", help="Run 'npm install' in library directories")
    pl_install.add_argument("lib", nargs="?", default=None, help="Library name (all libraries if omitted)")
    pl_install.add_argument("-s", "--select", action="store_true", help="Prompt to select which libraries to install")
    pl_install.set_defaults(func=cmd_lib_install)
    pl_pull = lib_sub.add_parser("pull", help="Pull latest changes from library git repositories")
    pl_pull.add_argument("lib", nargs="?", default=None, help="Library name (all libraries if omitted)")
    pl_pull.add_argument("-s", "--select", action="store_true", help="Prompt to select which libraries to pull")
    pl_pull.set_defaults(func=cmd_lib_pull)
    pl_build = lib_sub.add_parser("build", help="Build internal npm packages")
    pl_build.add_argument("lib", nargs="?", default=None, help="Library name (all libraries if omitted)")
    pl_build.set_defaults(func=cmd_lib_build)
    pl_list = lib_sub.add_parser("list", help="List configured libraries and their status")
    pl_list.set_defaults(func=cmd_lib_list)

    p_config = sub.add_parser("config", help="Inspect the configuration")
    config_sub = p_config.add_subparsers(dest="config_cmd")
    pc_list = config_sub.add_parser("list", help="Display the current configuration settings")
    pc_list.set_defaults(func=cmd_config_list)

    p_init = sub.add_parser("init", help="Set up a new configuration")
    p_init.set_defaults(func=cmd_init)
    return parser


def main(argv: Optional[List[str]] = None, console: Optional[Console] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 1
    setup_logging(level=args.log_level)
    console = console or Console(highlight=False, soft_wrap=True)
    logger.debug("argv=%s", argv if argv is not None else sys.argv[1:])
    try:
        return int(args.func(args, console))
    except SelectionCancelled:
        console.print(Text("\nReceived SIGINT. Stopping...", style="yellow"))
        return EXIT_INTERRUPTED
    except RunCancelled as e:
        logger.info("Run cancelled after %d completed target(s)", len(e.completed))
        return EXIT_INTERRUPTED
    except MferError as e:
        logger.info("%s error: %s", e.category.value, e.message)
        _print_error(console, e)
        return e.exit_code


if __name__ == "__main__":
    sys.exit(main())

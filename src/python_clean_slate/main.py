"""Main entry point for python-clean-slate."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Callable, Sequence

from rich.console import Console
from rich.table import Table

from .config import CleanSlateConfig
from .errors import InvalidCommand
from .orchestrator import CLEAN_COMMANDS, Orchestrator, setup_logging

COMMANDS: dict[str, str] = {
    "analyze": "Analyze the current Python setup",
    "backup": "Back up package lists and versions to python-backup-<timestamp>/",
    "clean-all": (
        "Remove every Python installation, environment and cache (asks for 'yes')"
    ),
    "clean-system": "Remove system-package-manager Python installs",
    "clean-pyenv": "Remove pyenv, all its versions and its shell lines",
    "clean-packages": "Remove package caches and configs",
    "setup-modern": "Install pyenv + uv + the pinned Python and wire up the shell",
    "full-reset": "clean-all followed by setup-modern (asks for 'yes')",
    "detect": "Show the detected OS",
    "config": "Show the configuration, creating a default file if none exists",
    "help": "Show this help",
}


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments.

    """
    parser = argparse.ArgumentParser(
        prog="python-clean-slate",
        description=(
            "Inventory, back up, clean and re-provision this machine's Python toolchain"
        ),
    )
    # Not restricted with choices: unknown commands exit 1, not argparse's 2
    parser.add_argument(
        "command", nargs="?", default="help", help="Command to run (see 'help')"
    )
    return parser.parse_args(argv)


def cmd_help(console: Console) -> int:
    table = Table(title="python-clean-slate commands")
    table.add_column("Command", style="cyan")
    table.add_column("Description")
    for name, description in COMMANDS.items():
        table.add_row(name, description)
    console.print(table)
    console.print("Recommended order: analyze, backup, full-reset")
    return 0


def cmd_config(config: CleanSlateConfig, console: Console) -> int:
    """Execute config command.

    Args:
        config: Loaded configuration.
        console: Output console.

    Returns:
        Exit code.

    """
    config_path = CleanSlateConfig.get_config_path()
    if not config_path.exists():
        config.save(config_path)
        console.print(f"[green]Created config: {config_path}[/green]")

    toolchain = config.toolchain
    table = Table(title="Current Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Config file", str(config_path))
    table.add_row("Backup root", str(config.backup_root))
    table.add_row("Probe timeout", f"{config.probe_timeout:g}s")
    table.add_row("Tool timeout", f"{config.tool_timeout:g}s")
    table.add_row("Scan workers", str(config.scan_workers))
    table.add_row("Scan project venvs", str(config.scan_project_venvs))
    table.add_row("Log file", str(config.log_file))
    table.add_row("Log level", config.log_level)
    table.add_row("Python version", toolchain.python_version)
    table.add_row("Version manager root", str(toolchain.version_manager_root))
    table.add_row("Package manager", str(toolchain.package_manager_bin))
    table.add_row("Venv root", str(toolchain.venv_root))
    for name, value in toolchain.environment.items():
        table.add_row(name, value)

    console.print(table)
    return 0


def run_command(orchestrator: Orchestrator, command: str) -> int:
    """Dispatch one command to the orchestrator.

    Raises:
        InvalidCommand: The command is unknown.

    """
    if command == "analyze":
        orchestrator.analyze()
    elif command == "backup":
        if not orchestrator.backup().created:
            return 1
    elif command in CLEAN_COMMANDS:
        orchestrator.run_clean_command(command)
    elif command == "setup-modern":
        orchestrator.setup_modern()
    elif command == "full-reset":
        orchestrator.full_reset()
    elif command == "detect":
        orchestrator.detect()
    else:
        raise InvalidCommand(command)
    return 0


def main(
    argv: Sequence[str] | None = None,
    orchestrator_factory: (
        Callable[[CleanSlateConfig, Console], Orchestrator] | None
    ) = None,
) -> int:
    """Main entry point.

    Returns:
        Exit code.

    """
    args = parse_args(argv)
    command = args.command
    console = Console()

    try:
        if command == "help":
            return cmd_help(console)
        if command not in COMMANDS:
            raise InvalidCommand(command)

        try:
            config = CleanSlateConfig.load()
        except (OSError, ValueError, TypeError) as e:
            console.print(f"[red]Cannot load configuration: {e}[/red]")
            return 1

        if command == "config":
            return cmd_config(config, console)

        setup_logging(config)
        factory = orchestrator_factory or (
            lambda cfg, con: Orchestrator(cfg, console=con)
        )
        return run_command(factory(config, console), command)

    except InvalidCommand:
        console.print(f"[red]Unknown command: {command}[/red]")
        console.print("Run 'python-clean-slate help' for usage information")
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())

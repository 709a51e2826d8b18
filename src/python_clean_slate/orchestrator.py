"""Environment lifecycle: scan, back up, confirm, clean and provision."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .backup import BackupManager
from .catalog import catalog_for
from .executor import CleanupExecutor
from .errors import ConfirmationDenied
from .gate import ConfirmationGate, Scope
from .host import OsTag, detect_os
from .installer import StackInstaller
from .models import (
    CATEGORY_ORDER,
    BackupArchive,
    CleanupCategory,
    CleanupPlan,
    CleanupReport,
    EnvironmentSnapshot,
    InstallReport,
    Outcome,
    StepStatus,
)
from .planner import build_plan
from .scanner import InventoryScanner
from .tools import CommandRunner, PyenvTool, system_package_manager_for

if TYPE_CHECKING:
    from .config import CleanSlateConfig
    from .tools import PackageManager, Runner, SystemPackageManager, VersionManager

LOGGER_NAME = "python-clean-slate"


def setup_logging(
    config: CleanSlateConfig, console: Console | None = None
) -> logging.Logger:
    """Set up logging for one CLI run.

    Returns:
        Configured logger instance.

    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, config.log_level, logging.INFO))

    # Clear existing handlers to avoid duplicates if called twice
    if logger.handlers:
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()

    # Reports are printed as tables; the console only shows problems
    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=False,
        show_path=False,
    )
    console_handler.setLevel(logging.WARNING)
    logger.addHandler(console_handler)

    try:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
    except OSError as e:
        logger.warning("Cannot open log file %s: %s", config.log_file, e)
    else:
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
        )
        logger.addHandler(file_handler)

    return logger


def format_size(size: int | None) -> str:
    """Human-readable size; None renders as "unknown"."""
    if size is None:
        return "unknown"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


@dataclass(frozen=True)
class CleanCommand:
    """What one cleanup command removes and how hard it asks first."""

    categories: tuple[CleanupCategory, ...]
    scope: Scope
    question: str


CLEAN_COMMANDS: dict[str, CleanCommand] = {
    "clean-system": CleanCommand(
        (CleanupCategory.SYSTEM_INTERPRETERS,),
        Scope.SCOPED,
        "Remove the system-package-manager Python installs listed above?",
    ),
    "clean-pyenv": CleanCommand(
        (CleanupCategory.VERSION_MANAGER, CleanupCategory.SHELL_CONFIG),
        Scope.SCOPED,
        "Remove ALL pyenv Python versions and pyenv itself?",
    ),
    "clean-packages": CleanCommand(
        (CleanupCategory.CACHES,),
        Scope.SCOPED,
        "Remove the package caches and configs listed above?",
    ),
    "clean-all": CleanCommand(
        CATEGORY_ORDER,
        Scope.NUCLEAR,
        "This removes every Python installation, environment and cache listed above. "
        "Are you absolutely sure?",
    ),
}

FULL_RESET_QUESTION = "Remove everything listed above and set up the modern stack?"
SETUP_QUESTION = "Install and configure the modern Python stack?"


class Orchestrator:
    """Runs one command against a fresh scan of the machine."""

    def __init__(
        self,
        config: CleanSlateConfig,
        *,
        os_tag: OsTag | None = None,
        runner: Runner | None = None,
        gate: ConfirmationGate | None = None,
        console: Console | None = None,
        home: Path | None = None,
        cwd: Path | None = None,
        root: Path | None = None,
        environ: Mapping[str, str] | None = None,
        package_managers: Sequence[PackageManager] | None = None,
        system_package_manager: SystemPackageManager | None = None,
        version_manager_factory: Callable[[Path], VersionManager] | None = None,
        venv_pip_factory: Callable[[Path], PackageManager] | None = None,
        which: Callable[[str], str | None] = shutil.which,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Every collaborator defaults to the real one; tests inject fakes.
        """
        self.config = config
        self.os_tag = os_tag or detect_os(environ=environ)
        self.catalog = catalog_for(self.os_tag)
        self.runner = runner or CommandRunner(timeout=config.probe_timeout)
        self.console = console or Console()
        self.gate = gate or ConfirmationGate(console=self.console)
        self.home = home
        self.cwd = cwd
        self.root = root
        self.environ = environ
        self.package_managers = package_managers
        self.system_package_manager = (
            system_package_manager
            if system_package_manager is not None
            else system_package_manager_for(self.os_tag, self.runner)
        )
        self.version_manager_factory = version_manager_factory or (
            lambda path: PyenvTool(
                self.runner, path, install_timeout=config.tool_timeout
            )
        )
        self.venv_pip_factory = venv_pip_factory
        self.which = which
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    # Collaborators

    def scan(self) -> EnvironmentSnapshot:
        """Take a fresh snapshot. Never reused across commands."""
        scanner = InventoryScanner(
            self.config,
            self.catalog,
            self.runner,
            home=self.home,
            cwd=self.cwd,
            root=self.root,
            environ=self.environ,
            package_managers=self.package_managers,
            system_package_manager=self.system_package_manager,
        )
        return scanner.scan()

    def _backup_manager(self) -> BackupManager:
        package_managers = None
        if self.package_managers is not None:
            package_managers = {pm.name: pm for pm in self.package_managers}
        return BackupManager(
            self.config,
            self.catalog,
            self.runner,
            package_managers=package_managers,
            version_manager_factory=self.version_manager_factory,
            venv_pip_factory=self.venv_pip_factory,
            logger=self.logger,
        )

    def _executor(self) -> CleanupExecutor:
        return CleanupExecutor(
            self.catalog,
            self.runner,
            version_manager_factory=self.version_manager_factory,
            system_package_manager=self.system_package_manager,
            logger=self.logger,
        )

    def _installer(self) -> StackInstaller:
        return StackInstaller(
            self.runner,
            self.os_tag,
            version_manager_factory=self.version_manager_factory,
            environ=self.environ,
            install_timeout=self.config.tool_timeout,
            which=self.which,
            logger=self.logger,
        )

    def _confirm(self, scope: Scope, question: str, cancelled: str) -> bool:
        """Ask the gate; a denial ends only the current command."""
        try:
            self.gate.require(scope, question)
        except ConfirmationDenied:
            self.console.print(f"[yellow]{cancelled}[/yellow]")
            return False
        return True

    # Commands

    def detect(self) -> OsTag:
        """Print the detected OS and the catalog that applies to it."""
        self.console.print(f"Detected OS: [bold]{self.os_tag.value}[/bold]")
        self.console.print(f"Catalog: {type(self.catalog).__name__}")
        return self.os_tag

    def analyze(self) -> EnvironmentSnapshot:
        """Scan and print the current Python setup."""
        snapshot = self.scan()
        self.print_snapshot(snapshot)
        return snapshot

    def backup(self) -> BackupArchive:
        """Scan and write a backup archive of every package list."""
        snapshot = self.scan()
        archive = self._backup_manager().backup(snapshot)
        self.print_archive(archive)
        return archive

    def clean(
        self, categories: Iterable[CleanupCategory], scope: Scope, question: str
    ) -> CleanupReport:
        """Scan, show the plan, confirm and execute it.

        Returns:
            Cleanup report; empty with ``authorized=False`` if the operator declined.

        """
        snapshot = self.scan()
        plan = build_plan(snapshot, categories, self.catalog)
        self.print_plan(plan)
        if not plan.actions:
            self.console.print("[green]Nothing to clean[/green]")
            return CleanupReport()

        if not self._confirm(scope, question, "Cleanup cancelled"):
            return CleanupReport(authorized=False)

        report = self._executor().execute(plan)
        self.print_cleanup_report(report)
        return report

    def run_clean_command(self, command: str) -> CleanupReport:
        clean = CLEAN_COMMANDS[command]
        return self.clean(clean.categories, clean.scope, clean.question)

    def setup_modern(self) -> InstallReport:
        """Confirm, then provision the configured toolchain."""
        self.print_toolchain()
        if not self._confirm(Scope.SCOPED, SETUP_QUESTION, "Setup cancelled"):
            return InstallReport(authorized=False)

        report = self._installer().install(self.config.toolchain)
        self.print_install_report(report)
        return report

    def full_reset(self) -> tuple[CleanupReport, InstallReport]:
        """Remove everything not matching the toolchain, then provision it.

        Artifacts that already match the configured toolchain are kept, so a
        second run right after a successful one changes nothing.
        """
        snapshot = self.scan()
        plan = build_plan(
            snapshot, CATEGORY_ORDER, self.catalog, preserve=self.config.toolchain
        )
        self.print_plan(plan)
        self.print_toolchain()

        cancelled = "Full reset cancelled"
        if not self._confirm(Scope.NUCLEAR, FULL_RESET_QUESTION, cancelled):
            return CleanupReport(authorized=False), InstallReport(authorized=False)

        cleanup = self._executor().execute(plan) if plan.actions else CleanupReport()
        if plan.actions:
            self.print_cleanup_report(cleanup)

        install = self._installer().install(self.config.toolchain)
        self.print_install_report(install)
        return cleanup, install

    # Output

    def print_snapshot(self, snapshot: EnvironmentSnapshot) -> None:
        console = self.console
        console.print(f"[bold]Python environment on {snapshot.os_tag.value}[/bold]")

        if snapshot.interpreters:
            table = Table(title=f"Interpreters ({len(snapshot.interpreters)})")
            table.add_column("Path", style="cyan")
            table.add_column("Version", style="green")
            table.add_column("Origin", style="dim")
            for record in snapshot.interpreters:
                table.add_row(
                    str(record.path), record.version or "no answer", record.origin.value
                )
            console.print(table)
        else:
            console.print("Interpreters: [green]none found[/green]")

        if snapshot.version_manager_root is not None:
            table = Table(title="Version manager")
            table.add_column("Root", style="cyan")
            table.add_column("Versions", style="green")
            table.add_column("Size", justify="right")
            table.add_row(
                str(snapshot.version_manager_root),
                "\n".join(snapshot.managed_versions) or "-",
                format_size(snapshot.version_manager_size),
            )
            console.print(table)
        else:
            console.print("Version manager: not installed")

        if snapshot.virtual_envs:
            table = Table(title=f"Virtual environments ({len(snapshot.virtual_envs)})")
            table.add_column("Path", style="cyan")
            table.add_column("Size", justify="right")
            for venv in snapshot.virtual_envs:
                table.add_row(str(venv.root_path), format_size(venv.size_bytes))
            console.print(table)
        else:
            console.print("Virtual environments: [green]none found[/green]")

        if snapshot.caches:
            table = Table(title=f"Caches and configs ({len(snapshot.caches)})")
            table.add_column("Path", style="cyan")
            table.add_column("Owner", style="dim")
            table.add_column("Size", justify="right")
            for cache in snapshot.caches:
                table.add_row(
                    str(cache.path), cache.owner.value, format_size(cache.size_bytes)
                )
            console.print(table)

        table = Table(title="Package managers")
        table.add_column("Name", style="cyan")
        table.add_column("Version", style="green")
        for name, version in snapshot.package_managers.items():
            table.add_row(name, version or "not installed")
        console.print(table)

        if snapshot.system_packages:
            console.print("System packages: " + ", ".join(snapshot.system_packages))

        total = format_size(snapshot.total_size_bytes)
        console.print(f"Estimated disk usage: [bold]{total}[/bold]")

        if snapshot.issues:
            table = Table(title=f"Scan issues ({len(snapshot.issues)})")
            table.add_column("Kind", style="yellow")
            table.add_column("Path", style="dim")
            table.add_column("Detail")
            for issue in snapshot.issues:
                table.add_row(issue.kind.value, str(issue.path or "-"), issue.detail)
            console.print(table)

    def print_archive(self, archive: BackupArchive) -> None:
        if archive.path is None:
            self.console.print("[red]Backup failed: no writable backup location[/red]")
        else:
            self.console.print(f"[green]Backup written to {archive.path}[/green]")
        for path in archive.files:
            self.console.print(f"  {path.name}")
        if archive.guide is not None:
            self.console.print(f"  {archive.guide.name}")
        for failure in archive.failures:
            self.console.print(f"[yellow]  failed: {failure}[/yellow]")

    def print_plan(self, plan: CleanupPlan) -> None:
        if not plan.actions:
            return
        table = Table(title=f"Planned actions ({len(plan)})")
        table.add_column("Category", style="cyan")
        table.add_column("Action")
        for category, actions in plan.by_category():
            for action in actions:
                table.add_row(category.value, action.describe())
        self.console.print(table)

    def print_toolchain(self) -> None:
        toolchain = self.config.toolchain
        self.console.print(
            f"Target toolchain: pyenv at {toolchain.version_manager_root}, "
            f"uv at {toolchain.package_manager_bin}, Python {toolchain.python_version}"
        )

    def print_cleanup_report(self, report: CleanupReport) -> None:
        table = Table(title="Cleanup report")
        table.add_column("Category", style="cyan")
        table.add_column("Removed", style="green", justify="right")
        table.add_column("Failed", style="red", justify="right")
        table.add_column("Skipped", style="dim", justify="right")
        for category, counts in report.summary().items():
            table.add_row(
                category.value,
                str(counts[Outcome.REMOVED]),
                str(counts[Outcome.FAILED]),
                str(counts[Outcome.SKIPPED]),
            )
        self.console.print(table)
        for result in report.results:
            if result.outcome is Outcome.FAILED:
                self.console.print(
                    f"[red]  {result.action.describe()}: {result.reason}[/red]"
                )

    def print_install_report(self, report: InstallReport) -> None:
        styles = {
            StepStatus.SATISFIED: "dim",
            StepStatus.CHANGED: "green",
            StepStatus.FAILED: "red",
        }
        table = Table(title="Setup report")
        table.add_column("Step", style="cyan")
        table.add_column("Status")
        table.add_column("Detail", style="dim")
        for step in report.steps:
            status = f"[{styles[step.status]}]{step.status.value}[/]"
            table.add_row(step.step, status, step.detail)
        self.console.print(table)

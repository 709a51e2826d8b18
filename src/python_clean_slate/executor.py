"""Apply a cleanup plan, one independent action at a time."""

from __future__ import annotations

import logging
import os
import shutil
import stat
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import ExternalToolFailure, InvalidPlan, ProbeTimeout
from .models import (
    CATEGORY_ORDER,
    ActionKind,
    ActionResult,
    CleanupPlan,
    CleanupReport,
    Outcome,
    RemovalAction,
)
from .shellconfig import strip_file
from .tools import PyenvTool

if TYPE_CHECKING:
    from .catalog import PathCatalog
    from .tools import Runner, SystemPackageManager, VersionManager


_RETRYABLE = (os.unlink, os.remove, os.rmdir)


def _make_writable_and_retry(
    func: Callable[[str], object], path: str, exc: BaseException
) -> None:
    """``rmtree`` error hook: clear read-only bits and retry a denied delete once.

    Any other failure (a directory that cannot be listed or opened, a
    missing entry) is re-raised so the action is reported as failed.
    """
    if func not in _RETRYABLE or not isinstance(exc, PermissionError):
        raise exc
    os.chmod(path, stat.S_IWRITE | stat.S_IREAD | stat.S_IEXEC)
    func(path)


def remove_path(path: Path) -> None:
    """Delete a file, symlink or directory tree without following symlinks."""
    if path.is_symlink() or not path.is_dir():
        path.unlink()
    else:
        shutil.rmtree(path, onexc=_make_writable_and_retry)


class CleanupExecutor:
    """Executes removal actions in category order, never aborting the batch."""

    def __init__(
        self,
        catalog: PathCatalog,
        runner: Runner,
        *,
        version_manager_factory: Callable[[Path], VersionManager] | None = None,
        system_package_manager: SystemPackageManager | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            catalog: Catalog for the host OS, for the protected-prefix check.
            runner: Runs uninstall commands.
            version_manager_factory: Builds a version manager for a root.
            system_package_manager: OS package manager for package uninstalls.
            logger: Logger instance.

        """
        self.catalog = catalog
        self.runner = runner
        self.version_manager_factory = version_manager_factory or (
            lambda root: PyenvTool(runner, root)
        )
        self.system_package_manager = system_package_manager
        self.logger = logger or logging.getLogger("python-clean-slate")

    def _remove(self, action: RemovalAction) -> ActionResult:
        path = action.target_path
        if path is None:
            return ActionResult(action, Outcome.FAILED, "no target path")
        if not path.exists() and not path.is_symlink():
            self.logger.warning("Path vanished before removal: %s", path)
            return ActionResult(action, Outcome.FAILED, "path vanished")

        remove_path(path)
        self.logger.info("Removed %s", path)
        return ActionResult(action, Outcome.REMOVED)

    def _uninstall_version(self, action: RemovalAction) -> ActionResult:
        path = action.target_path
        if path is None or action.name is None:
            return ActionResult(action, Outcome.FAILED, "no version given")
        if not path.exists():
            self.logger.warning("Version %s vanished before removal", action.name)
            return ActionResult(action, Outcome.FAILED, "path vanished")

        # <root>/versions/<version>
        manager = self.version_manager_factory(path.parent.parent)
        try:
            manager.uninstall_version(action.name)
        except (ExternalToolFailure, ProbeTimeout) as e:
            self.logger.warning(
                "%s could not uninstall %s (%s); deleting %s",
                manager.name,
                action.name,
                e,
                path,
            )
            remove_path(path)
        self.logger.info("Uninstalled Python %s", action.name)
        return ActionResult(action, Outcome.REMOVED)

    def _uninstall_package(self, action: RemovalAction) -> ActionResult:
        manager = self.system_package_manager
        if manager is None or action.name is None:
            detail = "no system package manager available"
            return ActionResult(action, Outcome.FAILED, detail)
        manager.uninstall(action.name)
        self.logger.info("Uninstalled %s via %s", action.name, manager.name)
        return ActionResult(action, Outcome.REMOVED)

    def _strip_shell_config(self, action: RemovalAction) -> ActionResult:
        path = action.target_path
        if path is None or action.name is None:
            return ActionResult(action, Outcome.FAILED, "no shell config given")
        if not path.exists():
            return ActionResult(action, Outcome.FAILED, "path vanished")

        removed = strip_file(path, [action.name], keep_block=action.keep_managed_block)
        if not removed:
            return ActionResult(action, Outcome.SKIPPED, "nothing to strip")
        self.logger.info("Stripped %d lines from %s", removed, path)
        return ActionResult(action, Outcome.REMOVED)

    def execute_action(self, action: RemovalAction) -> ActionResult:
        """Attempt one action, folding any failure into its result."""
        target = action.target_path
        if target is not None and self.catalog.is_protected(str(target)):
            self.logger.warning("Refusing to touch protected path %s", target)
            return ActionResult(action, Outcome.SKIPPED, "protected system path")

        handlers = {
            ActionKind.REMOVE_PATH: self._remove,
            ActionKind.UNINSTALL_VERSION: self._uninstall_version,
            ActionKind.UNINSTALL_PACKAGE: self._uninstall_package,
            ActionKind.STRIP_SHELL_CONFIG: self._strip_shell_config,
        }
        try:
            return handlers[action.kind](action)
        except FileNotFoundError:
            self.logger.warning("Path vanished during removal: %s", action.target_path)
            return ActionResult(action, Outcome.FAILED, "path vanished")
        except PermissionError as e:
            self.logger.error("Permission denied for %s: %s", action.describe(), e)
            return ActionResult(action, Outcome.FAILED, f"Permission denied: {e}")
        except OSError as e:
            self.logger.error("Error during %s: %s", action.describe(), e)
            return ActionResult(action, Outcome.FAILED, str(e))
        except (ExternalToolFailure, ProbeTimeout) as e:
            self.logger.error("Tool failure during %s: %s", action.describe(), e)
            return ActionResult(action, Outcome.FAILED, str(e))
        except Exception as e:
            self.logger.exception("Unexpected error during %s", action.describe())
            return ActionResult(action, Outcome.FAILED, f"{type(e).__name__}: {e}")

    def _autoremove(self, results: list[ActionResult]) -> None:
        """Drop dependencies orphaned by the package uninstalls in ``results``."""
        manager = self.system_package_manager
        if manager is None:
            return
        uninstalled = [
            r
            for r in results
            if r.action.kind is ActionKind.UNINSTALL_PACKAGE
            and r.outcome is Outcome.REMOVED
        ]
        if not uninstalled:
            return
        try:
            manager.autoremove()
        except (ExternalToolFailure, ProbeTimeout) as e:
            self.logger.warning("%s autoremove failed: %s", manager.name, e)

    def execute(self, plan: CleanupPlan) -> CleanupReport:
        """Execute every action of a plan.

        Actions run category by category in the fixed order; within a
        category they keep their planned order.

        Args:
            plan: Plan built from a snapshot taken in the same run.

        Returns:
            Report with one result per planned action.

        Raises:
            InvalidPlan: The plan is not a readable ``CleanupPlan``.

        """
        if not isinstance(plan, CleanupPlan) or not all(
            isinstance(a, RemovalAction) for a in plan.actions
        ):
            raise InvalidPlan(f"not a cleanup plan: {plan!r}")

        ordered = sorted(plan.actions, key=lambda a: CATEGORY_ORDER.index(a.category))
        self.logger.info("Executing %d cleanup actions", len(ordered))

        results = [self.execute_action(action) for action in ordered]
        self._autoremove(results)

        report = CleanupReport(results=tuple(results))
        self.logger.info(
            "Cleanup finished: %d removed, %d failed, %d skipped",
            report.count(Outcome.REMOVED),
            report.count(Outcome.FAILED),
            report.count(Outcome.SKIPPED),
        )
        return report

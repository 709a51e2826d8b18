"""Provision a known-good toolchain, one idempotent step at a time."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import ExternalToolFailure, ProbeTimeout
from .host import OsTag
from .models import InstallReport, StepResult, StepStatus
from .shellconfig import write_block
from .tools import PyenvTool, shell_command

if TYPE_CHECKING:
    from .config import ToolchainConfig
    from .tools import Runner, VersionManager


def _ps_quote(value: str) -> str:
    """Quote a PowerShell string literal."""
    return "'" + value.replace("'", "''") + "'"


def default_shell_lines(os_tag: OsTag, toolchain: ToolchainConfig) -> list[str]:
    """Lines of the managed shell block for a toolchain."""
    root = toolchain.version_manager_root
    uv_bin = toolchain.package_manager_bin.parent
    env = toolchain.environment

    if os_tag is OsTag.WINDOWS:
        # pyenv-win reads all three names
        return [
            f'$env:PYENV = "{root}"',
            f'$env:PYENV_ROOT = "{root}"',
            f'$env:PYENV_HOME = "{root}"',
            f'$env:PATH = "{root}\\bin;{root}\\shims;{uv_bin};" + $env:PATH',
            *(f'$env:{name} = "{value}"' for name, value in env.items()),
            "Set-Alias -Name pip -Value 'python -m pip' -Scope Global",
        ]

    return [
        f'export PYENV_ROOT="{root}"',
        f'export PATH="$PYENV_ROOT/bin:{uv_bin}:$PATH"',
        'eval "$(pyenv init -)"',
        'alias python="python3"',
        'alias pip="python -m pip"',
        *(f'export {name}="{value}"' for name, value in env.items()),
    ]


class StackInstaller:
    """Installs pyenv, uv and a pinned interpreter, then wires up the shell."""

    def __init__(
        self,
        runner: Runner,
        os_tag: OsTag,
        *,
        version_manager_factory: Callable[[Path], VersionManager] | None = None,
        environ: Mapping[str, str] | None = None,
        install_timeout: float | None = None,
        which: Callable[[str], str | None] = shutil.which,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the installer.

        Args:
            runner: Runs installer commands.
            os_tag: Host OS; selects shell syntax and the default rc file.
            version_manager_factory: Builds a version manager for a root.
            environ: Environment used to pick the default shell config.
            install_timeout: Timeout for installer and ``pyenv install`` runs.
            which: Locates executables on PATH.
            logger: Logger instance.

        """
        self.runner = runner
        self.os_tag = os_tag
        self.install_timeout = install_timeout
        self.version_manager_factory = version_manager_factory or (
            lambda root: PyenvTool(runner, root, install_timeout=install_timeout)
        )
        self.environ = os.environ if environ is None else environ
        self.which = which
        self.logger = logger or logging.getLogger("python-clean-slate")

    def _run_installer(self, command: str, env: Mapping[str, str]) -> None:
        """Run an installer command line with ``env`` set for it."""
        if self.os_tag is OsTag.WINDOWS:
            prefix = "".join(
                f"$env:{name} = {_ps_quote(value)}; " for name, value in env.items()
            )
        else:
            prefix = "".join(
                f"export {name}={shlex.quote(value)}; " for name, value in env.items()
            )
        argv = shell_command(prefix + command, self.os_tag)
        self.runner.run(argv, timeout=self.install_timeout).check()

    def ensure_version_manager(self, config: ToolchainConfig) -> StepResult:
        step = "version manager"
        root = config.version_manager_root
        manager = self.version_manager_factory(root)
        if manager.is_installed():
            return StepResult(step, StepStatus.SATISFIED, str(root))

        self.logger.info("Installing version manager into %s", root)
        self._run_installer(config.version_manager_installer, {"PYENV_ROOT": str(root)})
        if not manager.is_installed():
            detail = f"installer finished but {root} is missing"
            return StepResult(step, StepStatus.FAILED, detail)
        return StepResult(step, StepStatus.CHANGED, str(root))

    def _package_manager_present(self, config: ToolchainConfig) -> bool:
        if config.package_manager_bin.exists():
            return True
        return self.which(config.package_manager_bin.name) is not None

    def ensure_package_manager(self, config: ToolchainConfig) -> StepResult:
        step = "package manager"
        if self._package_manager_present(config):
            return StepResult(
                step, StepStatus.SATISFIED, str(config.package_manager_bin)
            )

        self.logger.info("Installing package manager to %s", config.package_manager_bin)
        self._run_installer(
            config.package_manager_installer,
            {"UV_INSTALL_DIR": str(config.package_manager_bin.parent)},
        )
        if not self._package_manager_present(config):
            detail = f"installer finished but {config.package_manager_bin} is missing"
            return StepResult(step, StepStatus.FAILED, detail)
        return StepResult(step, StepStatus.CHANGED, str(config.package_manager_bin))

    def ensure_python(self, config: ToolchainConfig) -> StepResult:
        step = f"python {config.python_version}"
        manager = self.version_manager_factory(config.version_manager_root)
        if config.python_version in manager.list_versions():
            return StepResult(step, StepStatus.SATISFIED)

        self.logger.info("Installing Python %s", config.python_version)
        if manager.install_version(config.python_version):
            return StepResult(step, StepStatus.CHANGED)
        return StepResult(step, StepStatus.SATISFIED, "already installed")

    def ensure_global(self, config: ToolchainConfig) -> StepResult:
        step = "global version"
        manager = self.version_manager_factory(config.version_manager_root)
        if manager.global_version() == config.python_version:
            return StepResult(step, StepStatus.SATISFIED, config.python_version)

        manager.set_global(config.python_version)
        self.logger.info("Set global Python to %s", config.python_version)
        return StepResult(step, StepStatus.CHANGED, config.python_version)

    def ensure_shell_block(self, config: ToolchainConfig, path: Path) -> StepResult:
        step = f"shell config {path}"
        if write_block(path, default_shell_lines(self.os_tag, config)):
            self.logger.info("Wrote managed block to %s", path)
            return StepResult(step, StepStatus.CHANGED)
        return StepResult(step, StepStatus.SATISFIED)

    def ensure_venv_root(self, config: ToolchainConfig) -> StepResult:
        step = "virtual environment root"
        if config.venv_root.is_dir():
            return StepResult(step, StepStatus.SATISFIED, str(config.venv_root))
        config.venv_root.mkdir(parents=True, exist_ok=True)
        self.logger.info("Created %s", config.venv_root)
        return StepResult(step, StepStatus.CHANGED, str(config.venv_root))

    def _attempt(self, step: str, func: Callable[[], StepResult]) -> StepResult:
        try:
            result = func()
        except (ExternalToolFailure, ProbeTimeout, OSError) as e:
            self.logger.error("Step %r failed: %s", step, e)
            return StepResult(step, StepStatus.FAILED, str(e))
        self.logger.info("Step %r: %s", result.step, result.status.value)
        return result

    def install(self, config: ToolchainConfig) -> InstallReport:
        """Bring the machine to the configured toolchain.

        Steps run in order; a failed step is recorded and later steps that
        need the version manager are skipped as failed too.

        Args:
            config: Desired toolchain.

        Returns:
            Report with one result per step.

        """
        steps: list[StepResult] = []

        vm = self._attempt(
            "version manager", lambda: self.ensure_version_manager(config)
        )
        steps.append(vm)
        steps.append(
            self._attempt(
                "package manager", lambda: self.ensure_package_manager(config)
            )
        )

        python_step = f"python {config.python_version}"
        if vm.status is StepStatus.FAILED:
            missing = "no version manager"
            steps.append(StepResult(python_step, StepStatus.FAILED, missing))
            steps.append(StepResult("global version", StepStatus.FAILED, missing))
        else:
            python = self._attempt(python_step, lambda: self.ensure_python(config))
            steps.append(python)
            if python.status is StepStatus.FAILED:
                detail = "pinned version not installed"
                steps.append(StepResult("global version", StepStatus.FAILED, detail))
            else:
                steps.append(
                    self._attempt("global version", lambda: self.ensure_global(config))
                )

        for path in config.resolve_shell_configs(self.os_tag, self.environ):
            steps.append(
                self._attempt(
                    f"shell config {path}",
                    lambda path=path: self.ensure_shell_block(config, path),
                )
            )

        steps.append(
            self._attempt(
                "virtual environment root", lambda: self.ensure_venv_root(config)
            )
        )

        return InstallReport(steps=tuple(steps))

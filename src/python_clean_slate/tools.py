"""External collaborators: package managers, version managers, system packages.

Every tool is driven through a ``Runner`` so tests can swap in a fake.
Commands never raise on their own; ``CommandResult.check`` converts a
failed or timed-out invocation into ``ExternalToolFailure`` or
``ProbeTimeout`` for callers that want an exception.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from .errors import ExternalToolFailure, ProbeTimeout
from .host import OsTag

logger = logging.getLogger("python-clean-slate")

_VERSION_RE = re.compile(r"(\d+\.\d+(?:\.\d+)?[\w.+-]*)")


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one child process."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    timeout: float | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def command(self) -> str:
        return " ".join(self.argv)

    @property
    def output(self) -> str:
        return self.stdout + self.stderr

    def check(self) -> CommandResult:
        """Raise if the command timed out or exited non-zero.

        Returns:
            The same result, for chaining.

        Raises:
            ProbeTimeout: The command did not finish in time.
            ExternalToolFailure: The command exited non-zero or was not found.

        """
        if self.timed_out:
            raise ProbeTimeout(self.command, self.timeout or 0)
        if self.returncode != 0:
            output = self.stderr or self.stdout
            raise ExternalToolFailure(self.command, self.returncode, output)
        return self


class Runner(Protocol):
    """Anything that can run a command and report its result."""

    def run(
        self, argv: Sequence[str], *, timeout: float | None = None
    ) -> CommandResult:
        """Run a command to completion."""
        ...


class CommandRunner:
    """Runs blocking child processes with a bounded timeout."""

    def __init__(self, timeout: float = 10.0) -> None:
        """Initialize the runner.

        Args:
            timeout: Default timeout in seconds for every command.

        """
        self.timeout = timeout

    def run(
        self, argv: Sequence[str], *, timeout: float | None = None
    ) -> CommandResult:
        """Run a command, folding missing binaries and timeouts into the result."""
        argv = tuple(str(a) for a in argv)
        timeout = self.timeout if timeout is None else timeout
        logger.debug("Running: %s", " ".join(argv))

        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                check=False,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Timed out after %ss: %s", timeout, " ".join(argv))
            return CommandResult(argv, -1, timed_out=True, timeout=timeout)
        except FileNotFoundError as e:
            missing = e.filename or argv[0]
            return CommandResult(argv, 127, stderr=f"command not found: {missing}")
        except (subprocess.SubprocessError, OSError) as e:
            return CommandResult(argv, 126, stderr=str(e))

        return CommandResult(
            argv, completed.returncode, completed.stdout, completed.stderr
        )


def parse_version(output: str) -> str:
    """Extract a version number from ``--version`` output."""
    match = _VERSION_RE.search(output)
    if match:
        return match.group(1)
    return output.strip().splitlines()[0] if output.strip() else ""


def probe_version(
    runner: Runner, executable: str | Path, *, timeout: float | None = None
) -> str:
    """Ask an executable for its version.

    Raises:
        ProbeTimeout: The executable did not answer in time.
        ExternalToolFailure: The executable exited non-zero or printed nothing.

    """
    result = runner.run([str(executable), "--version"], timeout=timeout).check()
    # Python 2 prints its version on stderr
    version = parse_version(result.stdout or result.stderr)
    if not version:
        raise ExternalToolFailure(
            result.command, result.returncode, "empty version output"
        )
    return version


def shell_command(command: str, os_tag: OsTag) -> list[str]:
    """Wrap an opaque installer command line for the host shell."""
    if os_tag is OsTag.WINDOWS:
        return [
            "powershell",
            "-NoProfile",
            "-ExecutionPolicy",
            "Bypass",
            "-Command",
            command,
        ]
    return ["sh", "-c", command]


@runtime_checkable
class PackageManager(Protocol):
    """A package manager that can report its version and freeze its packages."""

    name: str

    def version(self) -> str:
        """Return the version string."""
        ...

    def freeze_output(self) -> str:
        """Return the raw freeze output."""
        ...


@runtime_checkable
class VersionManager(Protocol):
    """A Python version manager such as pyenv."""

    name: str
    root: Path

    def is_installed(self) -> bool:
        """Check for the install root."""
        ...

    def list_versions(self) -> list[str]:
        """List installed interpreter versions."""
        ...

    def install_version(self, version: str) -> bool:
        """Install a version. Returns False if it was already installed."""
        ...

    def global_version(self) -> str | None:
        """Return the active global version, if any."""
        ...

    def set_global(self, version: str) -> None:
        """Make a version the global default."""
        ...

    def uninstall_version(self, version: str) -> None:
        """Remove an installed version."""
        ...


@runtime_checkable
class SystemPackageManager(Protocol):
    """OS package manager that may own Python packages."""

    name: str

    def list_python_packages(self) -> list[str]:
        """List installed Python-related packages this tool may remove."""
        ...

    def uninstall(self, package: str) -> None:
        """Uninstall one package."""
        ...

    def autoremove(self) -> None:
        """Remove dependencies no longer needed after uninstalls."""
        ...


@dataclass(frozen=True)
class PackageManagerSpec:
    """How to probe and freeze one package manager."""

    name: str
    freeze_args: tuple[str, ...] | None = None
    backup_file: str | None = None


KNOWN_PACKAGE_MANAGERS: tuple[PackageManagerSpec, ...] = (
    PackageManagerSpec("pip", ("freeze",), "global-pip-packages.txt"),
    PackageManagerSpec("uv"),
    PackageManagerSpec("conda", ("list", "--export"), "global-conda-packages.txt"),
    PackageManagerSpec("pipenv"),
    PackageManagerSpec("poetry"),
)


class PackageManagerTool:
    """A package manager driven through its command line."""

    def __init__(
        self,
        spec: PackageManagerSpec,
        runner: Runner,
        executable: str | Path | None = None,
        prefix_args: tuple[str, ...] = (),
    ) -> None:
        self.spec = spec
        self.name = spec.name
        self.runner = runner
        self.executable = str(executable) if executable is not None else spec.name
        self.prefix_args = prefix_args

    @classmethod
    def for_interpreter(cls, python: Path, runner: Runner) -> PackageManagerTool:
        """Build a pip tool bound to a specific interpreter (``python -m pip``)."""
        return cls(
            KNOWN_PACKAGE_MANAGERS[0],
            runner,
            executable=python,
            prefix_args=("-m", "pip"),
        )

    @classmethod
    def uv_for_interpreter(
        cls, python: Path, runner: Runner, uv: str | Path = "uv"
    ) -> PackageManagerTool:
        """Build a uv tool that freezes the environment of ``python``.

        Environments created by ``uv venv`` ship without pip, so this is the
        fallback when ``python -m pip freeze`` fails.
        """
        spec = PackageManagerSpec("uv", ("pip", "freeze", "--python", str(python)))
        return cls(spec, runner, executable=uv)

    def version(self) -> str:
        return probe_version(self.runner, self.executable)

    def freeze_output(self) -> str:
        """Run the freeze-equivalent command and return its raw output.

        Raises:
            ExternalToolFailure: The tool has no freeze command or it failed.
            ProbeTimeout: The command did not finish in time.

        """
        if self.spec.freeze_args is None:
            raise ExternalToolFailure(
                self.name, 1, f"{self.name} has no freeze command"
            )
        argv = [self.executable, *self.prefix_args, *self.spec.freeze_args]
        return self.runner.run(argv).check().stdout

    def freeze(self) -> list[str]:
        """Return requirement specs, skipping comments and blank lines."""
        return [
            line.strip()
            for line in self.freeze_output().splitlines()
            if line.strip() and not line.lstrip().startswith("#")
        ]


class PyenvTool:
    """pyenv (or pyenv-win) driven through its command line."""

    name = "pyenv"

    def __init__(
        self, runner: Runner, root: Path, install_timeout: float | None = None
    ) -> None:
        """Initialize the tool.

        Args:
            runner: Command runner.
            root: pyenv install root (``PYENV_ROOT``).
            install_timeout: Timeout for ``pyenv install``; runner default if None.

        """
        self.runner = runner
        self.root = root
        self.install_timeout = install_timeout

    def _launcher(self) -> Path | None:
        for candidate in (self.root / "bin" / "pyenv", self.root / "bin" / "pyenv.bat"):
            if candidate.exists():
                return candidate
        return None

    @property
    def executable(self) -> str:
        launcher = self._launcher()
        return str(launcher) if launcher is not None else "pyenv"

    def is_installed(self) -> bool:
        """True once the root holds a pyenv launcher, not just a leftover directory."""
        return self._launcher() is not None

    def list_versions(self) -> list[str]:
        result = self.runner.run([self.executable, "versions", "--bare"]).check()
        names = (v.strip() for v in result.stdout.splitlines())
        return [v for v in names if v and v != "system"]

    def install_version(self, version: str) -> bool:
        result = self.runner.run(
            [self.executable, "install", "-s", version], timeout=self.install_timeout
        )
        if not result.ok and "already" in result.output.lower():
            return False
        result.check()
        return True

    def global_version(self) -> str | None:
        version_file = self.root / "version"
        try:
            lines = version_file.read_text(encoding="utf-8").split()
        except OSError:
            return None
        return lines[0] if lines else None

    def set_global(self, version: str) -> None:
        self.runner.run([self.executable, "global", version]).check()

    def uninstall_version(self, version: str) -> None:
        self.runner.run([self.executable, "uninstall", "-f", version]).check()


class BrewTool:
    """Homebrew: owns python formulae on macOS."""

    name = "brew"

    def __init__(self, runner: Runner, timeout: float | None = None) -> None:
        self.runner = runner
        self.timeout = timeout

    def list_python_packages(self) -> list[str]:
        result = self.runner.run(["brew", "list", "--formula", "-1"]).check()
        return [line.strip() for line in result.stdout.splitlines() if "python" in line]

    def uninstall(self, package: str) -> None:
        argv = ["brew", "uninstall", "--ignore-dependencies", package]
        self.runner.run(argv, timeout=self.timeout).check()

    def autoremove(self) -> None:
        self.runner.run(["brew", "autoremove"], timeout=self.timeout).check()


class AptTool:
    """apt/dpkg: only the user-facing Python packages are ever touched."""

    name = "apt"
    USER_PACKAGES = ("python3-pip", "python3-venv", "python3-dev")

    def __init__(self, runner: Runner, timeout: float | None = None) -> None:
        self.runner = runner
        self.timeout = timeout

    def list_python_packages(self) -> list[str]:
        argv = ["dpkg-query", "-W", "-f=${Status} ${Package}\n", *self.USER_PACKAGES]
        result = self.runner.run(argv)
        # dpkg-query exits 1 when some of the named packages are unknown
        if result.returncode not in (0, 1) or result.timed_out:
            result.check()
        installed: list[str] = []
        for line in result.stdout.splitlines():
            status, _, package = line.rpartition(" ")
            if (
                status.endswith("installed")
                and "not-installed" not in status
                and package in self.USER_PACKAGES
            ):
                installed.append(package)
        return installed

    def uninstall(self, package: str) -> None:
        # sudo -n fails instead of prompting when a password is required
        argv = ["sudo", "-n", "apt-get", "remove", "-y", package]
        self.runner.run(argv, timeout=self.timeout).check()

    def autoremove(self) -> None:
        argv = ["sudo", "-n", "apt-get", "autoremove", "-y"]
        self.runner.run(argv, timeout=self.timeout).check()


class RpmTool:
    """dnf or yum on RPM-based distributions."""

    USER_PACKAGES = ("python3-pip", "python3-devel")

    def __init__(
        self, runner: Runner, frontend: str = "dnf", timeout: float | None = None
    ) -> None:
        """Initialize the tool.

        Args:
            runner: Command runner.
            frontend: ``dnf`` or ``yum``.
            timeout: Timeout for removals; runner default if None.

        """
        self.runner = runner
        self.name = frontend
        self.timeout = timeout

    def list_python_packages(self) -> list[str]:
        argv = ["rpm", "-q", "--queryformat", "%{NAME}\n", *self.USER_PACKAGES]
        result = self.runner.run(argv)
        # rpm -q exits with the number of packages that are not installed
        if result.timed_out or not 0 <= result.returncode <= len(self.USER_PACKAGES):
            result.check()
        names = {line.strip() for line in result.stdout.splitlines()}
        return [package for package in self.USER_PACKAGES if package in names]

    def uninstall(self, package: str) -> None:
        argv = ["sudo", "-n", self.name, "remove", "-y", package]
        self.runner.run(argv, timeout=self.timeout).check()

    def autoremove(self) -> None:
        argv = ["sudo", "-n", self.name, "autoremove", "-y"]
        self.runner.run(argv, timeout=self.timeout).check()


def system_package_manager_for(
    os_tag: OsTag, runner: Runner, which: Callable[[str], str | None] = shutil.which
) -> SystemPackageManager | None:
    """Pick the system package manager for an OS, if one is available."""
    if os_tag is OsTag.MACOS and which("brew"):
        return BrewTool(runner)
    if os_tag not in (OsTag.LINUX, OsTag.WSL):
        return None
    if which("dpkg-query"):
        return AptTool(runner)
    for frontend in ("dnf", "yum"):
        if which(frontend):
            return RpmTool(runner, frontend)
    return None

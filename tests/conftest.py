"""Shared fixtures and in-memory fakes for external tools."""

from __future__ import annotations

import shutil
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

import pytest

from python_clean_slate.config import CleanSlateConfig
from python_clean_slate.errors import ExternalToolFailure
from python_clean_slate.tools import CommandResult


@dataclass
class _Response:
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    effect: Callable[[], None] | None = None


class FakeRunner:
    """Runner that answers from a table of canned responses.

    Unknown commands behave like a missing binary (exit 127).
    """

    def __init__(self) -> None:
        self.exact: dict[tuple[str, ...], _Response] = {}
        self.fragments: list[tuple[str, _Response]] = []
        self.calls: list[tuple[str, ...]] = []

    def add(
        self,
        argv: Sequence[str | Path],
        returncode: int = 0,
        stdout: str = "",
        **kwargs,
    ) -> None:
        key = tuple(str(a) for a in argv)
        self.exact[key] = _Response(returncode, stdout, **kwargs)

    def add_matching(
        self, fragment: str, returncode: int = 0, stdout: str = "", **kwargs
    ) -> None:
        """Answer any command whose joined argv contains ``fragment``."""
        self.fragments.append((fragment, _Response(returncode, stdout, **kwargs)))

    def _lookup(self, argv: tuple[str, ...]) -> _Response | None:
        if argv in self.exact:
            return self.exact[argv]
        joined = " ".join(argv)
        for fragment, response in self.fragments:
            if fragment in joined:
                return response
        return None

    def run(
        self, argv: Sequence[str | Path], *, timeout: float | None = None
    ) -> CommandResult:
        key = tuple(str(a) for a in argv)
        self.calls.append(key)
        response = self._lookup(key)
        if response is None:
            return CommandResult(key, 127, stderr=f"command not found: {key[0]}")
        if response.effect is not None:
            response.effect()
        if response.timed_out:
            return CommandResult(key, -1, timed_out=True, timeout=timeout)
        return CommandResult(key, response.returncode, response.stdout, response.stderr)


class FakePackageManager:
    """Package manager with a fixed version and freeze output.

    ``version=None`` means "not installed".
    """

    def __init__(
        self,
        name: str,
        version: str | None = None,
        freeze: str = "",
        fail: bool = False,
    ) -> None:
        self.name = name
        self._version = version
        self._freeze = freeze
        self.fail = fail

    def version(self) -> str:
        if self._version is None:
            raise ExternalToolFailure(
                f"{self.name} --version", 127, f"command not found: {self.name}"
            )
        return self._version

    def freeze_output(self) -> str:
        if self.fail:
            raise ExternalToolFailure(f"{self.name} freeze", 1, "boom")
        return self._freeze


class FakeVersionManager:
    """pyenv stand-in that keeps its state on disk below ``root``."""

    name = "pyenv"

    def __init__(self, root: Path) -> None:
        self.root = root
        self.installs: list[str] = []

    def is_installed(self) -> bool:
        return self.root.is_dir()

    def list_versions(self) -> list[str]:
        versions = self.root / "versions"
        if not versions.is_dir():
            return []
        return sorted(p.name for p in versions.iterdir() if p.is_dir())

    def install_version(self, version: str) -> bool:
        target = self.root / "versions" / version
        if target.exists():
            return False
        target.mkdir(parents=True)
        self.installs.append(version)
        return True

    def global_version(self) -> str | None:
        version_file = self.root / "version"
        return version_file.read_text().strip() if version_file.exists() else None

    def set_global(self, version: str) -> None:
        (self.root / "version").write_text(f"{version}\n")

    def uninstall_version(self, version: str) -> None:
        shutil.rmtree(self.root / "versions" / version)


class FakeSystemPackageManager:
    """System package manager holding a mutable set of packages."""

    name = "apt"

    def __init__(self, packages: Sequence[str] = (), fail: bool = False) -> None:
        self.packages = list(packages)
        self.fail = fail
        self.autoremoves = 0

    def list_python_packages(self) -> list[str]:
        return list(self.packages)

    def uninstall(self, package: str) -> None:
        if self.fail:
            raise ExternalToolFailure(
                f"apt-get remove {package}", 100, "E: Unable to lock"
            )
        self.packages.remove(package)

    def autoremove(self) -> None:
        self.autoremoves += 1


def tree_state(root: Path) -> dict[str, tuple[bool, bytes | None, float]]:
    """Capture every path below root with its content and mtime."""
    state: dict[str, tuple[bool, bytes | None, float]] = {}
    for path in sorted(root.rglob("*")):
        stat = path.lstat()
        regular = path.is_file() and not path.is_symlink()
        content = path.read_bytes() if regular else None
        state[str(path.relative_to(root))] = (path.is_dir(), content, stat.st_mtime)
    return state


@pytest.fixture
def runner() -> FakeRunner:
    """Create a fake command runner."""
    return FakeRunner()


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Create a fake home directory."""
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def fs_root(tmp_path: Path) -> Path:
    """Create a fake filesystem root for absolute catalog paths."""
    path = tmp_path / "root"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path: Path, home: Path) -> CleanSlateConfig:
    """Create a test configuration confined to tmp_path."""
    cfg = CleanSlateConfig()
    cfg.backup_root = tmp_path / "backups"
    cfg.scan_workers = 2
    cfg.probe_timeout = 1.0
    cfg.log_file = tmp_path / "logs" / "clean-slate.log"
    cfg.toolchain.version_manager_root = home / ".pyenv"
    cfg.toolchain.package_manager_bin = home / ".local/bin/uv"
    cfg.toolchain.venv_root = home / ".venvs"
    cfg.toolchain.uv_cache_dir = home / ".cache/uv"
    cfg.toolchain.uv_python_install_dir = home / ".local/share/uv/python"
    cfg.toolchain.version_manager_installer = "install-pyenv"
    cfg.toolchain.package_manager_installer = "install-uv"
    return cfg


@pytest.fixture
def environ(home: Path) -> dict[str, str]:
    """Create a minimal environment for a bash user."""
    return {"HOME": str(home), "SHELL": "/bin/bash"}

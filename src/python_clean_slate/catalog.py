"""OS-aware catalog of where Python artifacts live.

The catalog is pure data: it lists path patterns and never touches the
filesystem. Patterns starting with ``~`` are relative to the home
directory, patterns starting with ``./`` are relative to the working
directory, anything else is absolute. ``*`` wildcards cover versioned
install directories.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .host import OsTag
from .models import CacheOwner, InterpreterRecord, Origin

LOCAL_VENV = "local"
SHARED_VENV = "shared"


class Category(Enum):
    """Kinds of locations the catalog knows about."""

    INTERPRETER = "interpreter"
    VERSION_MANAGER_ROOT = "version-manager-root"
    VIRTUAL_ENV_ROOT = "virtual-env-root"
    CACHE = "cache"
    SHELL_CONFIG = "shell-config"


@dataclass(frozen=True)
class PathPattern:
    """A candidate location plus what it means when something is found there.

    ``tag`` holds an ``Origin`` value for interpreters, a ``CacheOwner``
    value for caches and ``local``/``shared`` for virtual environments.
    """

    pattern: str
    tag: str | None = None


def _p(pattern: str, tag: Enum | str | None = None) -> PathPattern:
    if isinstance(tag, Enum):
        tag = tag.value
    return PathPattern(pattern, tag)


class PathCatalog:
    """Base catalog. Subclasses fill ``patterns`` for one OS family."""

    os_tag: OsTag
    patterns: dict[Category, tuple[PathPattern, ...]] = {}

    # Interpreter file names worth probing; filters out python3-config etc.
    interpreter_name = re.compile(r"^python(\d+(\.\d+)*)?(\.exe)?$", re.IGNORECASE)

    # Interpreters below these prefixes belong to the OS and are never removed.
    protected_prefixes: tuple[str, ...] = ()

    # Interpreter inside one version directory of a uv-managed install root
    managed_python: tuple[str, ...] = ("bin", "python3")

    venv_python: tuple[str, ...] = ("bin", "python")
    venv_markers: tuple[str, ...] = ("pyvenv.cfg", "bin/activate", "Scripts/activate")

    version_manager_token = "pyenv"

    def candidate_locations(self, category: Category) -> tuple[PathPattern, ...]:
        """Return the ordered candidate patterns for a category."""
        return self.patterns.get(category, ())

    def is_protected(self, path: str) -> bool:
        """Check whether a path sits below an OS-owned prefix."""
        normalized = path.replace("\\", "/")
        return any(
            normalized.lower().startswith(prefix.lower().rstrip("/") + "/")
            for prefix in self.protected_prefixes
        )

    def removal_target(self, record: InterpreterRecord) -> Path | None:
        """Path to delete when removing a system or user-local interpreter.

        Returns None for interpreters that must never be removed: anything
        below a protected prefix, Store aliases, and version-manager installs
        (those go with the version manager). Only symlinks are removed for
        package-manager installs; the package itself is uninstalled separately.
        """
        if self.is_protected(str(record.path)):
            return None
        if record.declared_origin is Origin.USER_LOCAL:
            return record.path
        if record.declared_origin is Origin.SYSTEM_PACKAGE and record.symlink:
            return record.path
        return None


_POSIX_VENVS = (
    _p("~/.venvs/*", SHARED_VENV),
    _p("~/venv", SHARED_VENV),
    _p("~/venv/*", SHARED_VENV),
    _p("~/envs/*", SHARED_VENV),
    _p("~/.virtualenvs/*", SHARED_VENV),
    _p("~/.local/share/virtualenvs/*", SHARED_VENV),
    _p("./.venv", LOCAL_VENV),
    _p("./*/.venv", LOCAL_VENV),
)

_POSIX_CACHES = (
    _p("~/.cache/pip", CacheOwner.PACKAGE_MANAGER_CACHE),
    _p("~/.cache/uv", CacheOwner.PACKAGE_MANAGER_CACHE),
    _p("~/.cache/pypoetry", CacheOwner.PACKAGE_MANAGER_CACHE),
    _p("~/.pyenv/cache", CacheOwner.VERSION_MANAGER_CACHE),
    _p("~/.cache/pyright", CacheOwner.TYPE_CHECKER_CACHE),
    _p("~/.mypy_cache", CacheOwner.TYPE_CHECKER_CACHE),
    _p("~/.pytest_cache", CacheOwner.TEST_RUNNER_CACHE),
    _p("~/.config/pip", CacheOwner.PACKAGE_MANAGER_CONFIG),
    _p("~/.config/uv", CacheOwner.PACKAGE_MANAGER_CONFIG),
    _p("~/.local/share/uv", CacheOwner.PACKAGE_MANAGER_CONFIG),
)

_POSIX_SHELL_CONFIGS = (
    _p("~/.bashrc"),
    _p("~/.zshrc"),
    _p("~/.bash_profile"),
    _p("~/.profile"),
)


class PosixCatalog(PathCatalog):
    """Locations shared by macOS and Linux."""

    protected_prefixes = ("/usr/bin", "/bin", "/usr/sbin", "/System")


class LinuxCatalog(PosixCatalog):
    """Linux and WSL."""

    os_tag = OsTag.LINUX
    patterns = {
        Category.INTERPRETER: (
            _p("/usr/bin/python*", Origin.SYSTEM_PACKAGE),
            _p("/usr/local/bin/python*", Origin.SYSTEM_PACKAGE),
            _p("/home/linuxbrew/.linuxbrew/bin/python3*", Origin.SYSTEM_PACKAGE),
            _p("~/.pyenv/versions/*/bin/python", Origin.VERSION_MANAGER),
            _p("~/.local/share/uv/python/*/bin/python3", Origin.VERSION_MANAGER),
            _p("~/.local/bin/python*", Origin.USER_LOCAL),
        ),
        Category.VERSION_MANAGER_ROOT: (_p("~/.pyenv"),),
        Category.VIRTUAL_ENV_ROOT: (
            *_POSIX_VENVS,
            _p("~/.cache/pypoetry/virtualenvs/*", SHARED_VENV),
        ),
        Category.CACHE: _POSIX_CACHES,
        Category.SHELL_CONFIG: _POSIX_SHELL_CONFIGS,
    }


class MacCatalog(PosixCatalog):
    """macOS, including Homebrew on both Intel and Apple silicon."""

    os_tag = OsTag.MACOS
    protected_prefixes = (
        *PosixCatalog.protected_prefixes,
        "/Library/Developer/CommandLineTools",
    )
    patterns = {
        Category.INTERPRETER: (
            _p("/usr/bin/python*", Origin.SYSTEM_PACKAGE),
            _p("/opt/homebrew/bin/python*", Origin.SYSTEM_PACKAGE),
            _p("/usr/local/bin/python*", Origin.SYSTEM_PACKAGE),
            _p(
                "/Library/Frameworks/Python.framework/Versions/*/bin/python3",
                Origin.SYSTEM_PACKAGE,
            ),
            _p("~/.pyenv/versions/*/bin/python", Origin.VERSION_MANAGER),
            _p("~/.local/share/uv/python/*/bin/python3", Origin.VERSION_MANAGER),
            _p("~/.local/bin/python*", Origin.USER_LOCAL),
        ),
        Category.VERSION_MANAGER_ROOT: (_p("~/.pyenv"),),
        Category.VIRTUAL_ENV_ROOT: (
            *_POSIX_VENVS,
            _p("~/Library/Caches/pypoetry/virtualenvs/*", SHARED_VENV),
        ),
        Category.CACHE: (
            *_POSIX_CACHES,
            _p("~/Library/Caches/pip", CacheOwner.PACKAGE_MANAGER_CACHE),
            _p("~/Library/Caches/pypoetry", CacheOwner.PACKAGE_MANAGER_CACHE),
        ),
        Category.SHELL_CONFIG: (*_POSIX_SHELL_CONFIGS, _p("~/.zprofile")),
    }


class WindowsCatalog(PathCatalog):
    """Windows, using install-directory heuristics instead of the registry."""

    os_tag = OsTag.WINDOWS
    protected_prefixes = ("C:/Windows",)
    managed_python = ("python.exe",)
    venv_python = ("Scripts", "python.exe")
    venv_markers = ("pyvenv.cfg", "Scripts/activate")
    patterns = {
        Category.INTERPRETER: (
            _p("C:/Program Files/Python3*/python.exe", Origin.SYSTEM_PACKAGE),
            _p("C:/Python3*/python.exe", Origin.SYSTEM_PACKAGE),
            _p(
                "~/AppData/Local/Programs/Python/Python3*/python.exe",
                Origin.USER_LOCAL,
            ),
            _p("~/.pyenv/pyenv-win/versions/*/python.exe", Origin.VERSION_MANAGER),
            _p("~/AppData/Roaming/uv/python/*/python.exe", Origin.VERSION_MANAGER),
            _p("~/AppData/Local/Microsoft/WindowsApps/python*.exe", Origin.STORE_ALIAS),
            _p(
                "~/AppData/Local/Microsoft/WindowsApps/"
                "PythonSoftwareFoundation.Python.3*/python.exe",
                Origin.STORE_ALIAS,
            ),
        ),
        Category.VERSION_MANAGER_ROOT: (_p("~/.pyenv/pyenv-win"), _p("~/.pyenv")),
        Category.VIRTUAL_ENV_ROOT: (
            _p("~/.venvs/*", SHARED_VENV),
            _p("~/venv", SHARED_VENV),
            _p("~/envs/*", SHARED_VENV),
            _p("~/.virtualenvs/*", SHARED_VENV),
            _p("~/AppData/Local/pypoetry/Cache/virtualenvs/*", SHARED_VENV),
            _p("./.venv", LOCAL_VENV),
            _p("./*/.venv", LOCAL_VENV),
        ),
        Category.CACHE: (
            _p("~/AppData/Local/pip/Cache", CacheOwner.PACKAGE_MANAGER_CACHE),
            _p("~/AppData/Local/uv/cache", CacheOwner.PACKAGE_MANAGER_CACHE),
            _p("~/AppData/Local/pypoetry/Cache", CacheOwner.PACKAGE_MANAGER_CACHE),
            _p("~/.pyenv/pyenv-win/install_cache", CacheOwner.VERSION_MANAGER_CACHE),
            _p("~/.mypy_cache", CacheOwner.TYPE_CHECKER_CACHE),
            _p("~/.pytest_cache", CacheOwner.TEST_RUNNER_CACHE),
            _p("~/AppData/Roaming/pip", CacheOwner.PACKAGE_MANAGER_CONFIG),
            _p("~/AppData/Roaming/uv", CacheOwner.PACKAGE_MANAGER_CONFIG),
        ),
        Category.SHELL_CONFIG: (
            _p("~/Documents/PowerShell/Microsoft.PowerShell_profile.ps1"),
            _p("~/Documents/WindowsPowerShell/Microsoft.PowerShell_profile.ps1"),
        ),
    }

    def removal_target(self, record: InterpreterRecord) -> Path | None:
        """Whole install directory for installer-based interpreters."""
        if self.is_protected(str(record.path)):
            return None
        if record.declared_origin in (Origin.SYSTEM_PACKAGE, Origin.USER_LOCAL):
            return record.path.parent
        return None


_CATALOGS: dict[OsTag, type[PathCatalog]] = {
    OsTag.LINUX: LinuxCatalog,
    OsTag.WSL: LinuxCatalog,
    OsTag.MACOS: MacCatalog,
    OsTag.WINDOWS: WindowsCatalog,
}


def catalog_for(os_tag: OsTag) -> PathCatalog:
    """Select the catalog for an OS tag."""
    catalog = _CATALOGS[os_tag]()
    catalog.os_tag = os_tag
    return catalog


def candidate_locations(category: Category, os_tag: OsTag) -> tuple[PathPattern, ...]:
    """Return the ordered candidate patterns for a category on an OS."""
    return catalog_for(os_tag).candidate_locations(category)

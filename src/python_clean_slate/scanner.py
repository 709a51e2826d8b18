"""Discover installed Python artifacts and build an environment snapshot."""

from __future__ import annotations

import glob
import logging
import os
import re
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from .catalog import LOCAL_VENV, Category, PathCatalog
from .errors import ExternalToolFailure, ProbeTimeout
from .models import (
    CacheOwner,
    CacheRecord,
    EnvironmentSnapshot,
    InterpreterRecord,
    IssueKind,
    Origin,
    ScanIssue,
    VenvRecord,
)
from .tools import (
    KNOWN_PACKAGE_MANAGERS,
    PackageManager,
    PackageManagerTool,
    probe_version,
)

if TYPE_CHECKING:
    from .config import CleanSlateConfig
    from .tools import Runner, SystemPackageManager

logger = logging.getLogger("python-clean-slate")

_DRIVE_RE = re.compile(r"^[A-Za-z]:")


def directory_size(path: Path) -> tuple[int | None, list[ScanIssue]]:
    """Compute the size of a directory tree without following symlinks.

    Returns:
        Total size in bytes (None if any subtree could not be read) and the
        issues encountered.

    """
    issues: list[ScanIssue] = []

    def _on_error(error: OSError) -> None:
        if isinstance(error, PermissionError):
            kind = IssueKind.PERMISSION_DENIED
        else:
            kind = IssueKind.SIZE_UNKNOWN
        where = Path(error.filename) if error.filename else path
        issues.append(ScanIssue(where, kind, str(error)))

    if path.is_symlink() or path.is_file():
        try:
            return path.lstat().st_size, issues
        except OSError as e:
            _on_error(e)
            return None, issues

    total = 0
    for dirpath, _dirnames, filenames in os.walk(path, onerror=_on_error):
        for filename in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, filename)).st_size
            except OSError as e:
                _on_error(e)

    return (None if issues else total), issues


class InventoryScanner:
    """Walks catalog locations and probes what it finds there."""

    def __init__(
        self,
        config: CleanSlateConfig,
        catalog: PathCatalog,
        runner: Runner,
        *,
        home: Path | None = None,
        cwd: Path | None = None,
        root: Path | None = None,
        environ: Mapping[str, str] | None = None,
        package_managers: Sequence[PackageManager] | None = None,
        system_package_manager: SystemPackageManager | None = None,
    ) -> None:
        """Initialize the scanner.

        Args:
            config: Tool configuration (timeouts, worker count, local venvs).
            catalog: Catalog for the host OS.
            runner: Runs version probes.
            home: Directory ``~`` expands to. Defaults to the real home.
            cwd: Directory ``./`` expands to. Defaults to the working directory.
            root: If set, absolute catalog paths are resolved below this
                directory instead of the real filesystem root.
            environ: Environment, for ``UV_CACHE_DIR`` and ``UV_PYTHON_INSTALL_DIR``.
                Defaults to ``os.environ``.
            package_managers: Package managers to probe. Defaults to the known set.
            system_package_manager: OS package manager to list Python packages from.

        """
        self.config = config
        self.catalog = catalog
        self.runner = runner
        self.home = home or Path.home()
        self.cwd = cwd or Path.cwd()
        self.root = root
        self.environ = os.environ if environ is None else environ
        self.package_managers = (
            list(package_managers)
            if package_managers is not None
            else [PackageManagerTool(spec, runner) for spec in KNOWN_PACKAGE_MANAGERS]
        )
        self.system_package_manager = system_package_manager

    def expand(self, pattern: str) -> str:
        """Turn a catalog pattern into a glob pattern for this host."""
        if pattern.startswith("~"):
            base, rest = self.home, pattern[1:].lstrip("/")
        elif pattern.startswith("./"):
            base, rest = self.cwd, pattern[2:]
        elif self.root is None:
            return pattern
        else:
            base, rest = self.root, _DRIVE_RE.sub("", pattern).lstrip("/")

        escaped = glob.escape(str(base))
        return f"{escaped}/{rest}" if rest else escaped

    def _matches(self, pattern: str, issues: list[ScanIssue]) -> list[Path]:
        expanded = self.expand(pattern)

        # Static prefix up to the first wildcard component
        if "*" in expanded:
            static = expanded.split("*", 1)[0].rsplit("/", 1)[0]
        else:
            static = os.path.dirname(expanded)
        unreadable = os.path.isdir(static) and not os.access(static, os.R_OK | os.X_OK)
        if static and unreadable:
            detail = f"cannot list {static}"
            issues.append(ScanIssue(Path(static), IssueKind.PERMISSION_DENIED, detail))
            return []

        return [Path(p) for p in sorted(glob.glob(expanded))]

    def _probe(
        self, candidate: tuple[Path, Origin]
    ) -> tuple[InterpreterRecord, ScanIssue | None]:
        path, declared = candidate
        symlink = path.is_symlink()
        unanswered = InterpreterRecord(path, None, Origin.UNKNOWN, declared, symlink)
        try:
            version = probe_version(
                self.runner, path, timeout=self.config.probe_timeout
            )
        except ProbeTimeout as e:
            logger.warning("Interpreter did not answer: %s", path)
            return unanswered, ScanIssue(path, IssueKind.PROBE_TIMEOUT, str(e))
        except ExternalToolFailure as e:
            logger.warning("Version probe failed for %s: %s", path, e)
            return unanswered, ScanIssue(path, IssueKind.PROBE_FAILED, str(e))
        return InterpreterRecord(path, version, declared, declared, symlink), None

    def _uv_python_matches(self) -> list[Path]:
        """Interpreters below a relocated uv install directory."""
        install_dir = self.environ.get("UV_PYTHON_INSTALL_DIR")
        if not install_dir:
            return []
        base = glob.escape(os.path.expanduser(install_dir))
        layout = "/".join(self.catalog.managed_python)
        return [Path(p) for p in sorted(glob.glob(f"{base}/*/{layout}"))]

    def scan_interpreters(
        self, pool: ThreadPoolExecutor, issues: list[ScanIssue]
    ) -> tuple[InterpreterRecord, ...]:
        """Find interpreter executables in catalog order and probe each one.

        Interpreters below ``UV_PYTHON_INSTALL_DIR`` come after the catalog
        locations, as version-manager installs.
        """
        candidates: list[tuple[Path, Origin]] = []
        seen: set[Path] = set()

        def add(path: Path, origin: Origin) -> None:
            if path in seen or not self.catalog.interpreter_name.match(path.name):
                return
            if path.is_dir():
                return
            seen.add(path)
            candidates.append((path, origin))

        for pattern in self.catalog.candidate_locations(Category.INTERPRETER):
            origin = Origin(pattern.tag) if pattern.tag else Origin.UNKNOWN
            for path in self._matches(pattern.pattern, issues):
                add(path, origin)
        for path in self._uv_python_matches():
            add(path, Origin.VERSION_MANAGER)

        records: list[InterpreterRecord] = []
        for record, issue in pool.map(self._probe, candidates):
            records.append(record)
            if issue:
                issues.append(issue)
        return tuple(records)

    def find_version_manager_root(self, issues: list[ScanIssue]) -> Path | None:
        for pattern in self.catalog.candidate_locations(Category.VERSION_MANAGER_ROOT):
            for path in self._matches(pattern.pattern, issues):
                if path.is_dir():
                    return path
        return None

    def list_managed_versions(
        self, root: Path, issues: list[ScanIssue]
    ) -> tuple[str, ...]:
        """List interpreter versions installed below a version-manager root."""
        versions_dir = root / "versions"
        if not versions_dir.is_dir():
            return ()
        try:
            return tuple(sorted(p.name for p in versions_dir.iterdir() if p.is_dir()))
        except PermissionError as e:
            issues.append(ScanIssue(versions_dir, IssueKind.PERMISSION_DENIED, str(e)))
        except OSError as e:
            issues.append(ScanIssue(versions_dir, IssueKind.SIZE_UNKNOWN, str(e)))
        return ()

    def is_venv(self, path: Path) -> bool:
        markers = self.catalog.venv_markers
        return path.is_dir() and any((path / marker).exists() for marker in markers)

    def find_venvs(self, issues: list[ScanIssue]) -> list[tuple[Path, bool]]:
        found: list[tuple[Path, bool]] = []
        seen: set[Path] = set()

        for pattern in self.catalog.candidate_locations(Category.VIRTUAL_ENV_ROOT):
            local = pattern.tag == LOCAL_VENV
            if local and not self.config.scan_project_venvs:
                continue
            for path in self._matches(pattern.pattern, issues):
                if path in seen or not self.is_venv(path):
                    continue
                seen.add(path)
                found.append((path, local))
        return found

    def find_caches(self, issues: list[ScanIssue]) -> list[tuple[Path, CacheOwner]]:
        found: list[tuple[Path, CacheOwner]] = []
        seen: set[Path] = set()

        for pattern in self.catalog.candidate_locations(Category.CACHE):
            owner = CacheOwner(pattern.tag)
            for path in self._matches(pattern.pattern, issues):
                if path not in seen and path.is_dir():
                    seen.add(path)
                    found.append((path, owner))

        uv_cache = self.environ.get("UV_CACHE_DIR")
        if uv_cache:
            path = Path(os.path.expanduser(uv_cache))
            if path not in seen and path.is_dir():
                found.append((path, CacheOwner.PACKAGE_MANAGER_CACHE))
        return found

    def find_shell_configs(self, issues: list[ScanIssue]) -> tuple[Path, ...]:
        found: list[Path] = []
        for pattern in self.catalog.candidate_locations(Category.SHELL_CONFIG):
            for path in self._matches(pattern.pattern, issues):
                if path.is_file() and path not in found:
                    found.append(path)
        return tuple(found)

    def _package_manager_version(
        self, tool: PackageManager
    ) -> tuple[str, str | None, ScanIssue | None]:
        try:
            return tool.name, tool.version(), None
        except ProbeTimeout as e:
            return tool.name, None, ScanIssue(None, IssueKind.PROBE_TIMEOUT, str(e))
        except ExternalToolFailure:
            # Missing or broken package managers are simply "not installed"
            return tool.name, None, None

    def _system_packages(self, issues: list[ScanIssue]) -> tuple[str, ...]:
        if self.system_package_manager is None:
            return ()
        try:
            return tuple(self.system_package_manager.list_python_packages())
        except (ExternalToolFailure, ProbeTimeout) as e:
            issues.append(ScanIssue(None, IssueKind.TOOL_FAILURE, str(e)))
            return ()

    def scan(self) -> EnvironmentSnapshot:
        """Scan the machine and build a snapshot.

        Nothing here raises for an individual path or probe; problems are
        recorded as ``ScanIssue`` entries on the snapshot.
        """
        issues: list[ScanIssue] = []
        timestamp = datetime.now()

        with ThreadPoolExecutor(max_workers=self.config.scan_workers) as pool:
            interpreters = self.scan_interpreters(pool, issues)

            version_manager_root = self.find_version_manager_root(issues)
            managed_versions = (
                self.list_managed_versions(version_manager_root, issues)
                if version_manager_root
                else ()
            )

            venv_paths = self.find_venvs(issues)
            cache_paths = self.find_caches(issues)
            shell_configs = self.find_shell_configs(issues)

            # Sizes and version probes read independent paths, so run them together
            size_targets = [p for p, _ in venv_paths] + [p for p, _ in cache_paths]
            if version_manager_root:
                size_targets.append(version_manager_root)
            sizes = list(pool.map(directory_size, size_targets))
            pm_results = list(
                pool.map(self._package_manager_version, self.package_managers)
            )

        for _size, size_issues in sizes:
            issues.extend(size_issues)

        venvs = tuple(
            VenvRecord(root_path=path, size_bytes=sizes[i][0], local=local)
            for i, (path, local) in enumerate(venv_paths)
        )
        offset = len(venv_paths)
        caches = tuple(
            CacheRecord(path=path, owner=owner, size_bytes=sizes[offset + i][0])
            for i, (path, owner) in enumerate(cache_paths)
        )
        version_manager_size = sizes[-1][0] if version_manager_root else None

        package_managers: dict[str, str | None] = {}
        for name, version, issue in pm_results:
            package_managers[name] = version
            if issue:
                issues.append(issue)

        system_packages = self._system_packages(issues)

        snapshot = EnvironmentSnapshot(
            os_tag=self.catalog.os_tag,
            interpreters=interpreters,
            version_manager_root=version_manager_root,
            managed_versions=managed_versions,
            virtual_envs=venvs,
            caches=caches,
            shell_configs=shell_configs,
            package_managers=package_managers,
            system_packages=system_packages,
            version_manager_size=version_manager_size,
            issues=tuple(issues),
            timestamp=timestamp,
        )
        logger.info(
            "Scanned %d interpreters, %d venvs, %d caches, %d issues",
            len(interpreters),
            len(venvs),
            len(caches),
            len(issues),
        )
        return snapshot

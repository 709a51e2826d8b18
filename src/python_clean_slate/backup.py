"""Write a timestamped, self-describing backup of package lists."""

from __future__ import annotations

import logging
import re
import tempfile
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import ExternalToolFailure, PermissionDenied, ProbeTimeout
from .models import BackupArchive, EnvironmentSnapshot, VenvRecord
from .tools import KNOWN_PACKAGE_MANAGERS, PackageManager, PackageManagerTool, PyenvTool

if TYPE_CHECKING:
    from .catalog import PathCatalog
    from .config import CleanSlateConfig
    from .tools import Runner, VersionManager

BACKUP_PREFIX = "python-backup-"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
VERSIONS_FILE = "pyenv-versions.txt"
GUIDE_FILE = "restore-guide.md"
FAILED_MARKER = "# backup failed"

_REQUIREMENT_RE = re.compile(r"^([A-Za-z0-9][A-Za-z0-9._-]*)\s*(.*)$")


def parse_requirements(output: str) -> tuple[tuple[str, str], ...]:
    """Split freeze output into ``(name, version_spec)`` pairs."""
    pairs: list[tuple[str, str]] = []
    for raw in output.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        match = _REQUIREMENT_RE.match(line)
        if match:
            pairs.append((match.group(1), match.group(2).strip()))
        else:
            pairs.append((line, ""))
    return tuple(pairs)


@dataclass(frozen=True)
class _Entry:
    """One file written into the archive."""

    filename: str
    description: str
    failed: bool
    venv: VenvRecord | None = None


class BackupManager:
    """Captures package lists and version manifests before cleanup."""

    def __init__(
        self,
        config: CleanSlateConfig,
        catalog: PathCatalog,
        runner: Runner,
        *,
        package_managers: Mapping[str, PackageManager] | None = None,
        version_manager_factory: Callable[[Path], VersionManager] | None = None,
        venv_pip_factory: Callable[[Path], PackageManager] | None = None,
        venv_uv_factory: Callable[[Path], PackageManager] | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize the backup manager.

        Args:
            config: Tool configuration (backup root).
            catalog: Catalog for the host OS, for venv interpreter layout.
            runner: Runs freeze commands.
            package_managers: Global package managers by name. Defaults to the
                known set.
            version_manager_factory: Builds a version manager for a discovered root.
            venv_pip_factory: Builds a pip bound to a venv interpreter.
            venv_uv_factory: Builds a ``uv pip`` bound to a venv interpreter,
                tried when the venv has no working pip and uv is installed.
            logger: Logger instance.
            clock: Time source for the archive name.

        """
        self.config = config
        self.catalog = catalog
        self.runner = runner
        self.package_managers = (
            dict(package_managers)
            if package_managers is not None
            else {
                spec.name: PackageManagerTool(spec, runner)
                for spec in KNOWN_PACKAGE_MANAGERS
            }
        )
        self.version_manager_factory = version_manager_factory or (
            lambda root: PyenvTool(runner, root)
        )
        self.venv_pip_factory = venv_pip_factory or (
            lambda python: PackageManagerTool.for_interpreter(python, runner)
        )
        self.venv_uv_factory = venv_uv_factory or (
            lambda python: PackageManagerTool.uv_for_interpreter(python, runner)
        )
        self.logger = logger or logging.getLogger("python-clean-slate")
        self.clock = clock

    def _create_archive_dir(self) -> Path:
        """Create a new, never-before-used archive directory.

        Raises:
            PermissionDenied: Neither the backup root nor the temp directory
                is writable.

        """
        stamp = self.clock().strftime(TIMESTAMP_FORMAT)
        errors: list[str] = []

        for base in (self.config.backup_root, Path(tempfile.gettempdir())):
            try:
                base.mkdir(parents=True, exist_ok=True)
                for index in range(1000):
                    name = f"{BACKUP_PREFIX}{stamp}" + (f"-{index}" if index else "")
                    candidate = base / name
                    try:
                        candidate.mkdir()
                    except FileExistsError:
                        continue
                    return candidate
            except OSError as e:
                self.logger.warning("Cannot create backup directory in %s: %s", base, e)
                errors.append(str(e))

        raise PermissionDenied(self.config.backup_root, "; ".join(errors))

    def _write(self, archive: Path, filename: str, content: str) -> Path:
        path = archive / filename
        # "x" never overwrites an existing artifact
        with path.open("x", encoding="utf-8") as f:
            f.write(content)
        return path

    def _safe_write(self, archive: Path, filename: str, content: str) -> str | None:
        """Write an artifact, returning an error message instead of raising."""
        try:
            self._write(archive, filename, content)
        except OSError as e:
            self.logger.error("Cannot write %s: %s", filename, e)
            return str(e)
        return None

    def _write_freeze(
        self, archive: Path, filename: str, tools: Sequence[PackageManager]
    ) -> tuple[_Entry, str | None]:
        """Write the first successful freeze output, or a failure marker.

        Tools are tried in order; the marker records the last error.

        Returns:
            The archive entry and either the raw output or the failure reason.

        """
        error: Exception | None = None
        for tool in tools:
            description = f"{tool.name} freeze"
            try:
                output = tool.freeze_output()
            except (ExternalToolFailure, ProbeTimeout) as e:
                self.logger.warning(
                    "%s freeze for %s failed: %s", tool.name, filename, e
                )
                error = e
                continue

            write_error = self._safe_write(archive, filename, output)
            if write_error is not None:
                return _Entry(filename, description, failed=True), write_error
            return _Entry(filename, description, failed=False), output

        self.logger.warning("Backup of %s failed: %s", filename, error)
        self._safe_write(archive, filename, f"{FAILED_MARKER}: {error}\n")
        names = "/".join(tool.name for tool in tools)
        return _Entry(filename, f"{names} freeze", failed=True), str(error)

    def _venv_filename(self, venv: VenvRecord, used: set[str]) -> str:
        if venv.local:
            stem = f"local-{venv.root_path.parent.name}"
        else:
            stem = f"venv-{venv.name}"
        filename = f"{stem}-packages.txt"
        index = 2
        while filename in used:
            filename = f"{stem}-{index}-packages.txt"
            index += 1
        used.add(filename)
        return filename

    def _venv_tools(
        self, python: Path, snapshot: EnvironmentSnapshot
    ) -> list[PackageManager]:
        tools = [self.venv_pip_factory(python)]
        # uv-created venvs have no pip
        if "uv" in snapshot.installed_package_managers:
            tools.append(self.venv_uv_factory(python))
        return tools

    def _manifest_versions(
        self, root: Path, snapshot: EnvironmentSnapshot
    ) -> tuple[list[str], bool]:
        """Ask the version manager for its versions, falling back to the scan."""
        manager = self.version_manager_factory(root)
        try:
            return manager.list_versions(), False
        except (ExternalToolFailure, ProbeTimeout) as e:
            self.logger.warning("Could not list versions with %s: %s", manager.name, e)
            return list(snapshot.managed_versions), True

    def backup(self, snapshot: EnvironmentSnapshot) -> BackupArchive:
        """Write every package list the snapshot knows about.

        Failures of individual tools produce marker files, and a backup root
        that cannot be created yields an archive without a path. Neither
        raises.

        Args:
            snapshot: Snapshot taken in the same run.

        Returns:
            The written archive.

        """
        try:
            archive = self._create_archive_dir()
        except PermissionDenied as e:
            self.logger.error("Backup not written: %s", e)
            return BackupArchive(path=None, files=(), guide=None, failures=(str(e),))
        self.logger.info("Writing backup to %s", archive)

        entries: list[_Entry] = []
        failures: list[str] = []
        versions: list[str] = []

        installed = snapshot.installed_package_managers
        for spec in KNOWN_PACKAGE_MANAGERS:
            if spec.backup_file is None or spec.name not in installed:
                continue
            tool = self.package_managers.get(spec.name)
            if tool is None:
                continue
            entry, detail = self._write_freeze(archive, spec.backup_file, [tool])
            entries.append(entry)
            if entry.failed:
                failures.append(f"{spec.backup_file}: {detail}")

        if snapshot.version_manager_root is not None:
            versions, from_scan = self._manifest_versions(
                snapshot.version_manager_root, snapshot
            )
            manifest = "".join(f"{v}\n" for v in versions)
            error = self._safe_write(archive, VERSIONS_FILE, manifest)
            description = "version manager versions"
            if from_scan:
                description += " (from directory listing)"
            entries.append(_Entry(VERSIONS_FILE, description, failed=error is not None))
            if error is not None:
                failures.append(f"{VERSIONS_FILE}: {error}")

        used: set[str] = set()
        enriched: list[VenvRecord] = []
        for venv in snapshot.virtual_envs:
            filename = self._venv_filename(venv, used)
            python = venv.root_path.joinpath(*self.catalog.venv_python)
            entry, detail = self._write_freeze(
                archive, filename, self._venv_tools(python, snapshot)
            )
            if entry.failed:
                failures.append(f"{filename}: {detail}")
                record = venv
            else:
                record = replace(venv, package_list=parse_requirements(detail or ""))
            enriched.append(record)
            entries.append(
                replace(entry, description=f"packages of {venv.root_path}", venv=record)
            )

        guide_text = render_restore_guide(
            archive.name, entries, versions, self.catalog.venv_python
        )
        guide = archive / GUIDE_FILE
        error = self._safe_write(archive, GUIDE_FILE, guide_text)
        if error is not None:
            failures.append(f"{GUIDE_FILE}: {error}")

        files = tuple(archive / e.filename for e in entries)
        self.logger.info(
            "Backup complete: %d files, %d failures", len(files), len(failures)
        )
        return BackupArchive(
            path=archive,
            files=files,
            guide=guide,
            venvs=tuple(enriched),
            failures=tuple(failures),
        )


def render_restore_guide(
    archive_name: str,
    entries: list[_Entry],
    versions: list[str],
    venv_python: tuple[str, ...],
) -> str:
    """Render the markdown restore guide for an archive."""
    lines = [
        "# Python Environment Restore Guide",
        "",
        f"Backup `{archive_name}` was created before cleaning this machine's "
        "Python installation.",
        "",
        "## Files in this backup",
        "",
    ]
    for entry in entries:
        marker = " **(backup failed, recreate manually)**" if entry.failed else ""
        lines.append(f"- `{entry.filename}` - {entry.description}{marker}")
    lines.append("")

    lines += ["## 1. Reinstall Python versions", ""]
    if versions:
        lines.append("```bash")
        lines.extend(f"pyenv install {version}" for version in versions)
        lines += ["```", ""]
    else:
        lines += ["No version-manager versions were installed.", ""]

    global_files = [
        e
        for e in entries
        if e.venv is None and e.filename != VERSIONS_FILE and not e.failed
    ]
    if global_files:
        lines += ["## 2. Reinstall global packages", "", "```bash"]
        for entry in global_files:
            if "conda" in entry.filename:
                lines.append(f"conda create --name restored --file {entry.filename}")
            else:
                lines.append(f"uv pip install --system -r {entry.filename}")
        lines += ["```", ""]

    venv_entries = [e for e in entries if e.venv is not None]
    lines += ["## 3. Recreate virtual environments", ""]
    if venv_entries:
        lines.append("```bash")
        for entry in venv_entries:
            root = entry.venv.root_path if entry.venv else Path(entry.filename)
            if entry.failed:
                lines.append(f"# {root}: package list unavailable")
                lines.append(f"uv venv {root}")
                continue
            python = root.joinpath(*venv_python)
            lines.append(f"uv venv {root}")
            lines.append(f"uv pip install --python {python} -r {entry.filename}")
        lines += ["```", ""]
    else:
        lines += ["No virtual environments were backed up.", ""]

    lines += [
        "## Modern approach (recommended)",
        "",
        "Instead of recreating every old environment exactly, consider shared",
        "environments by purpose (web-dev, data-science, ...) under `~/.venvs`",
        "and let `uv` manage dependencies:",
        "",
        "```bash",
        "uv venv ~/.venvs/data-science",
        "uv pip install --python ~/.venvs/data-science/bin/python pandas numpy jupyter",
        "```",
        "",
    ]
    return "\n".join(lines)

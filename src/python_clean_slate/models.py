"""Records produced by scanning, backing up, cleaning and installing."""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from types import MappingProxyType

from .host import OsTag


class Origin(Enum):
    """Where an interpreter came from."""

    SYSTEM_PACKAGE = "system-package"
    VERSION_MANAGER = "version-manager"
    STORE_ALIAS = "store-alias"
    USER_LOCAL = "user-local"
    UNKNOWN = "unknown"  # did not answer the version probe


class CacheOwner(Enum):
    """Tool family that owns a cache or config directory."""

    PACKAGE_MANAGER_CACHE = "package-manager-cache"
    VERSION_MANAGER_CACHE = "version-manager-cache"
    TYPE_CHECKER_CACHE = "type-checker-cache"
    TEST_RUNNER_CACHE = "test-runner-cache"
    PACKAGE_MANAGER_CONFIG = "package-manager-config"


class IssueKind(Enum):
    """Non-fatal problems recorded while scanning."""

    PERMISSION_DENIED = "permission-denied"
    PROBE_TIMEOUT = "probe-timeout"
    PROBE_FAILED = "probe-failed"
    SIZE_UNKNOWN = "size-unknown"
    TOOL_FAILURE = "tool-failure"


@dataclass(frozen=True)
class ScanIssue:
    """A path or probe that could not be fully inspected."""

    path: Path | None
    kind: IssueKind
    detail: str


@dataclass(frozen=True)
class InterpreterRecord:
    """One discovered interpreter executable.

    ``declared_origin`` is the origin implied by the location it was found
    at; ``origin`` is UNKNOWN whenever the version probe did not answer.
    """

    path: Path
    version: str | None
    origin: Origin
    declared_origin: Origin
    symlink: bool = False

    @property
    def responsive(self) -> bool:
        return self.version is not None


@dataclass(frozen=True)
class VenvRecord:
    """A virtual environment directory."""

    root_path: Path
    size_bytes: int | None
    package_list: tuple[tuple[str, str], ...] = ()
    local: bool = False  # project-local .venv found in the working directory

    @property
    def name(self) -> str:
        return self.root_path.name


@dataclass(frozen=True)
class CacheRecord:
    """A cache or config directory owned by a Python tool."""

    path: Path
    owner: CacheOwner
    size_bytes: int | None


@dataclass(frozen=True)
class EnvironmentSnapshot:
    """Immutable result of one inventory scan."""

    os_tag: OsTag
    interpreters: tuple[InterpreterRecord, ...]
    version_manager_root: Path | None
    managed_versions: tuple[str, ...]
    virtual_envs: tuple[VenvRecord, ...]
    caches: tuple[CacheRecord, ...]
    shell_configs: tuple[Path, ...]
    package_managers: Mapping[str, str | None]
    system_packages: tuple[str, ...] = ()
    version_manager_size: int | None = None
    issues: tuple[ScanIssue, ...] = ()
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        # read-only view so the frozen snapshot cannot be changed through it
        managers = MappingProxyType(dict(self.package_managers))
        object.__setattr__(self, "package_managers", managers)

    @property
    def installed_package_managers(self) -> dict[str, str]:
        """Package managers that answered their version probe."""
        return {
            name: version
            for name, version in self.package_managers.items()
            if version is not None
        }

    @property
    def total_size_bytes(self) -> int:
        """Sum of all known sizes; unknown sizes count as zero."""
        sizes = [self.version_manager_size]
        sizes.extend(v.size_bytes for v in self.virtual_envs)
        sizes.extend(c.size_bytes for c in self.caches)
        return sum(s for s in sizes if s is not None)

    def equivalent(self, other: EnvironmentSnapshot) -> bool:
        """Compare two snapshots ignoring timestamps.

        Interpreters are compared in discovery order; every other collection
        is compared as a set.
        """
        return (
            self.os_tag == other.os_tag
            and self.interpreters == other.interpreters
            and self.version_manager_root == other.version_manager_root
            and set(self.managed_versions) == set(other.managed_versions)
            and set(self.virtual_envs) == set(other.virtual_envs)
            and set(self.caches) == set(other.caches)
            and set(self.shell_configs) == set(other.shell_configs)
            and self.package_managers == other.package_managers
            and set(self.system_packages) == set(other.system_packages)
            and set(self.issues) == set(other.issues)
        )


@dataclass(frozen=True)
class BackupArchive:
    """A written backup directory. Never modified after creation.

    ``path`` and ``guide`` are None when no archive directory could be
    created anywhere; ``failures`` then says why.
    """

    path: Path | None
    files: tuple[Path, ...]
    guide: Path | None
    venvs: tuple[VenvRecord, ...] = ()
    failures: tuple[str, ...] = ()

    @property
    def created(self) -> bool:
        return self.path is not None


class CleanupCategory(Enum):
    """Cleanup categories, declared in execution order."""

    VIRTUAL_ENVS = "virtual-envs"
    VERSION_MANAGER = "version-manager"
    SYSTEM_INTERPRETERS = "system-interpreters"
    CACHES = "caches"
    SHELL_CONFIG = "shell-config"


CATEGORY_ORDER: tuple[CleanupCategory, ...] = tuple(CleanupCategory)


class ActionKind(Enum):
    """How a removal action is carried out."""

    REMOVE_PATH = "remove-path"
    UNINSTALL_VERSION = "uninstall-version"
    UNINSTALL_PACKAGE = "uninstall-package"
    STRIP_SHELL_CONFIG = "strip-shell-config"


@dataclass(frozen=True)
class RemovalAction:
    """One planned removal.

    ``target_path`` is None only for system package uninstalls, which are
    identified by ``name``.
    """

    target_path: Path | None
    category: CleanupCategory
    destructive: bool
    kind: ActionKind = ActionKind.REMOVE_PATH
    name: str | None = None
    keep_managed_block: bool = False  # shell-config strips only

    def describe(self) -> str:
        if self.kind is ActionKind.UNINSTALL_VERSION:
            return f"uninstall Python {self.name}"
        if self.kind is ActionKind.UNINSTALL_PACKAGE:
            return f"uninstall package {self.name}"
        if self.kind is ActionKind.STRIP_SHELL_CONFIG:
            return f"strip {self.name} lines from {self.target_path}"
        return f"remove {self.target_path}"


@dataclass(frozen=True)
class CleanupPlan:
    """Removal actions derived from a snapshot taken in the same run."""

    actions: tuple[RemovalAction, ...]
    snapshot_timestamp: datetime

    def __len__(self) -> int:
        return len(self.actions)

    def by_category(self) -> list[tuple[CleanupCategory, list[RemovalAction]]]:
        """Group actions by category in execution order, dropping empty groups."""
        groups: list[tuple[CleanupCategory, list[RemovalAction]]] = []
        for category in CATEGORY_ORDER:
            actions = [a for a in self.actions if a.category is category]
            if actions:
                groups.append((category, actions))
        return groups


class Outcome(Enum):
    """Result of attempting one removal action."""

    REMOVED = "removed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ActionResult:
    """Outcome of one removal action."""

    action: RemovalAction
    outcome: Outcome
    reason: str | None = None


@dataclass(frozen=True)
class CleanupReport:
    """Per-action outcomes of a cleanup run."""

    results: tuple[ActionResult, ...] = ()
    authorized: bool = True

    @property
    def actions(self) -> tuple[RemovalAction, ...]:
        return tuple(r.action for r in self.results)

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    def summary(self) -> dict[CleanupCategory, Counter[Outcome]]:
        """Count outcomes per category, in execution order."""
        summary: dict[CleanupCategory, Counter[Outcome]] = {}
        for result in self.results:
            summary.setdefault(result.action.category, Counter())[result.outcome] += 1
        return dict(
            sorted(summary.items(), key=lambda item: CATEGORY_ORDER.index(item[0]))
        )


class StepStatus(Enum):
    """Result of one provisioning step."""

    SATISFIED = "already satisfied"
    CHANGED = "changed"
    FAILED = "failed"


@dataclass(frozen=True)
class StepResult:
    """Outcome of one provisioning step."""

    step: str
    status: StepStatus
    detail: str = ""


@dataclass(frozen=True)
class InstallReport:
    """Per-step outcomes of a provisioning run."""

    steps: tuple[StepResult, ...] = ()
    authorized: bool = True

    @property
    def changed(self) -> bool:
        return any(s.status is StepStatus.CHANGED for s in self.steps)

    @property
    def succeeded(self) -> bool:
        return all(s.status is not StepStatus.FAILED for s in self.steps)

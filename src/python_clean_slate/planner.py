"""Turn a fresh snapshot into a cleanup plan."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from .models import (
    CATEGORY_ORDER,
    ActionKind,
    CacheOwner,
    CacheRecord,
    CleanupCategory,
    CleanupPlan,
    EnvironmentSnapshot,
    RemovalAction,
)
from .shellconfig import read_config, strip_tokens

if TYPE_CHECKING:
    from .catalog import PathCatalog
    from .config import ToolchainConfig

# Written by the uv standalone installer into its config directory
UV_RECEIPT = "uv-receipt.json"


def _same_path(a: Path, b: Path) -> bool:
    try:
        return a.resolve() == b.resolve()
    except OSError:
        return a == b


def _inside(path: Path, parent: Path) -> bool:
    return path != parent and path.is_relative_to(parent)


def _venv_actions(snapshot: EnvironmentSnapshot) -> list[RemovalAction]:
    return [
        RemovalAction(v.root_path, CleanupCategory.VIRTUAL_ENVS, destructive=True)
        for v in snapshot.virtual_envs
    ]


def _version_manager_actions(
    snapshot: EnvironmentSnapshot, preserve: ToolchainConfig | None
) -> list[RemovalAction]:
    root = snapshot.version_manager_root
    if root is None:
        return []

    keep_root = preserve is not None and _same_path(root, preserve.version_manager_root)
    pinned = preserve.python_version if keep_root and preserve is not None else None
    actions = [
        RemovalAction(
            root / "versions" / version,
            CleanupCategory.VERSION_MANAGER,
            destructive=True,
            kind=ActionKind.UNINSTALL_VERSION,
            name=version,
        )
        for version in snapshot.managed_versions
        if version != pinned
    ]
    if not keep_root:
        actions.append(
            RemovalAction(root, CleanupCategory.VERSION_MANAGER, destructive=True)
        )
    return actions


def _system_actions(
    snapshot: EnvironmentSnapshot, catalog: PathCatalog
) -> list[RemovalAction]:
    actions: list[RemovalAction] = []
    seen: set[Path] = set()
    for record in snapshot.interpreters:
        target = catalog.removal_target(record)
        if target is not None and target not in seen:
            seen.add(target)
            actions.append(
                RemovalAction(
                    target, CleanupCategory.SYSTEM_INTERPRETERS, destructive=True
                )
            )
    actions.extend(
        RemovalAction(
            None,
            CleanupCategory.SYSTEM_INTERPRETERS,
            destructive=True,
            kind=ActionKind.UNINSTALL_PACKAGE,
            name=package,
        )
        for package in snapshot.system_packages
    )
    return actions


def _keeps_install_receipt(cache: CacheRecord) -> bool:
    return (
        cache.owner is CacheOwner.PACKAGE_MANAGER_CONFIG
        and (cache.path / UV_RECEIPT).is_file()
    )


def _cache_actions(
    snapshot: EnvironmentSnapshot, preserve: ToolchainConfig | None
) -> list[RemovalAction]:
    return [
        RemovalAction(c.path, CleanupCategory.CACHES, destructive=True)
        for c in snapshot.caches
        if preserve is None or not _keeps_install_receipt(c)
    ]


def _shell_actions(
    snapshot: EnvironmentSnapshot,
    catalog: PathCatalog,
    preserve: ToolchainConfig | None,
) -> list[RemovalAction]:
    """Plan a strip for every config that currently has something to strip."""
    keep_block = preserve is not None
    token = catalog.version_manager_token
    actions: list[RemovalAction] = []
    for path in snapshot.shell_configs:
        try:
            content = read_config(path)
        except OSError:
            # Unreadable now; let the executor record the failure
            content = None
        if content is not None:
            _updated, removed = strip_tokens(content, [token], keep_block=keep_block)
            if removed == 0:
                continue
        actions.append(
            RemovalAction(
                path,
                CleanupCategory.SHELL_CONFIG,
                destructive=False,
                kind=ActionKind.STRIP_SHELL_CONFIG,
                name=token,
                keep_managed_block=keep_block,
            )
        )
    return actions


def _drop_nested(actions: list[RemovalAction]) -> list[RemovalAction]:
    """Drop path removals already covered by removing a parent directory."""
    removed = [
        a.target_path
        for a in actions
        if a.kind is ActionKind.REMOVE_PATH and a.target_path is not None
    ]
    kept: list[RemovalAction] = []
    for action in actions:
        if (
            action.kind is ActionKind.REMOVE_PATH
            and action.target_path is not None
            and any(_inside(action.target_path, parent) for parent in removed)
        ):
            continue
        if action not in kept:
            kept.append(action)
    return kept


def build_plan(
    snapshot: EnvironmentSnapshot,
    categories: Iterable[CleanupCategory],
    catalog: PathCatalog,
    *,
    preserve: ToolchainConfig | None = None,
) -> CleanupPlan:
    """Derive removal actions for the requested categories.

    Args:
        snapshot: Snapshot taken in the same run.
        categories: Categories to clean.
        catalog: Catalog for the snapshot's OS (protection and layout rules).
        preserve: If given, artifacts that already match this toolchain are
            kept: its version-manager root, its pinned version, the tool's
            managed shell block and the package manager's install receipt.

    Returns:
        Plan with actions in execution order.

    """
    wanted = set(categories)
    builders = {
        CleanupCategory.VIRTUAL_ENVS: lambda: _venv_actions(snapshot),
        CleanupCategory.VERSION_MANAGER: (
            lambda: _version_manager_actions(snapshot, preserve)
        ),
        CleanupCategory.SYSTEM_INTERPRETERS: lambda: _system_actions(snapshot, catalog),
        CleanupCategory.CACHES: lambda: _cache_actions(snapshot, preserve),
        CleanupCategory.SHELL_CONFIG: (
            lambda: _shell_actions(snapshot, catalog, preserve)
        ),
    }

    actions: list[RemovalAction] = []
    for category in CATEGORY_ORDER:
        if category in wanted:
            actions.extend(builders[category]())

    return CleanupPlan(
        actions=tuple(_drop_nested(actions)), snapshot_timestamp=snapshot.timestamp
    )

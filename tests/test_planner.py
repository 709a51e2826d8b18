"""Tests for cleanup planning."""

from __future__ import annotations

from pathlib import Path

from python_clean_slate.catalog import catalog_for
from python_clean_slate.config import ToolchainConfig
from python_clean_slate.host import OsTag
from python_clean_slate.models import (
    CATEGORY_ORDER,
    ActionKind,
    CacheOwner,
    CacheRecord,
    CleanupCategory,
    EnvironmentSnapshot,
    InterpreterRecord,
    Origin,
    VenvRecord,
)
from python_clean_slate.planner import build_plan
from python_clean_slate.shellconfig import BLOCK_END, BLOCK_START


def _snapshot(home: Path, **overrides) -> EnvironmentSnapshot:
    fields = {
        "os_tag": OsTag.LINUX,
        "interpreters": (),
        "version_manager_root": None,
        "managed_versions": (),
        "virtual_envs": (),
        "caches": (),
        "shell_configs": (),
        "package_managers": {},
    }
    fields.update(overrides)
    return EnvironmentSnapshot(**fields)


class TestBuildPlan:
    """Tests for build_plan."""

    def test_empty_snapshot(self, home: Path) -> None:
        """Test that nothing found means nothing planned."""
        plan = build_plan(_snapshot(home), CATEGORY_ORDER, catalog_for(OsTag.LINUX))
        assert len(plan) == 0

    def test_category_order(self, home: Path) -> None:
        """Test that actions come out in the fixed category order."""
        rc = home / ".bashrc"
        rc.write_text('eval "$(pyenv init -)"\n')
        snapshot = _snapshot(
            home,
            caches=(CacheRecord(home / ".cache/pip", CacheOwner.PACKAGE_MANAGER_CACHE, 1),),
            virtual_envs=(VenvRecord(home / ".venvs/demo", 1),),
            version_manager_root=home / ".pyenv",
            managed_versions=("3.10.13",),
            shell_configs=(rc,),
            system_packages=("python3-pip",),
        )

        plan = build_plan(snapshot, reversed(CATEGORY_ORDER), catalog_for(OsTag.LINUX))

        assert [a.category for a in plan.actions] == [
            CleanupCategory.VIRTUAL_ENVS,
            CleanupCategory.VERSION_MANAGER,
            CleanupCategory.VERSION_MANAGER,
            CleanupCategory.SYSTEM_INTERPRETERS,
            CleanupCategory.CACHES,
            CleanupCategory.SHELL_CONFIG,
        ]
        assert plan.snapshot_timestamp == snapshot.timestamp

    def test_only_requested_categories(self, home: Path) -> None:
        """Test that scoped commands only plan their own category."""
        snapshot = _snapshot(
            home,
            virtual_envs=(VenvRecord(home / ".venvs/demo", 1),),
            caches=(CacheRecord(home / ".cache/uv", CacheOwner.PACKAGE_MANAGER_CACHE, 1),),
        )

        plan = build_plan(snapshot, [CleanupCategory.CACHES], catalog_for(OsTag.LINUX))

        assert [a.target_path for a in plan.actions] == [home / ".cache/uv"]

    def test_version_manager_uninstalls_then_removes_root(self, home: Path) -> None:
        """Test that each version is uninstalled before the root goes."""
        root = home / ".pyenv"
        snapshot = _snapshot(
            home, version_manager_root=root, managed_versions=("3.10.13", "3.11.7")
        )

        plan = build_plan(snapshot, [CleanupCategory.VERSION_MANAGER], catalog_for(OsTag.LINUX))

        assert [(a.kind, a.name, a.target_path) for a in plan.actions] == [
            (ActionKind.UNINSTALL_VERSION, "3.10.13", root / "versions/3.10.13"),
            (ActionKind.UNINSTALL_VERSION, "3.11.7", root / "versions/3.11.7"),
            (ActionKind.REMOVE_PATH, None, root),
        ]
        assert all(a.destructive for a in plan.actions)

    def test_protected_and_store_interpreters_never_planned(self, home: Path) -> None:
        """Test that OS binaries and Store aliases are left alone."""
        local = home / ".local/bin/python3"
        snapshot = _snapshot(
            home,
            interpreters=(
                InterpreterRecord(
                    Path("/usr/bin/python3"),
                    "3.10.12",
                    Origin.SYSTEM_PACKAGE,
                    Origin.SYSTEM_PACKAGE,
                    True,
                ),
                InterpreterRecord(local, "3.12.1", Origin.USER_LOCAL, Origin.USER_LOCAL),
            ),
        )

        plan = build_plan(snapshot, [CleanupCategory.SYSTEM_INTERPRETERS], catalog_for(OsTag.LINUX))

        assert [a.target_path for a in plan.actions] == [local]

    def test_windows_store_alias_exempt(self, home: Path) -> None:
        """Test the hardcoded Store exemption on Windows."""
        alias = home / "AppData/Local/Microsoft/WindowsApps/python.exe"
        snapshot = _snapshot(
            home,
            os_tag=OsTag.WINDOWS,
            interpreters=(
                InterpreterRecord(alias, "3.12.0", Origin.STORE_ALIAS, Origin.STORE_ALIAS),
            ),
        )

        plan = build_plan(snapshot, CATEGORY_ORDER, catalog_for(OsTag.WINDOWS))

        assert len(plan) == 0

    def test_system_packages_planned_by_name(self, home: Path) -> None:
        """Test that system packages become uninstall actions."""
        snapshot = _snapshot(home, system_packages=("python@3.11", "python@3.12"))

        plan = build_plan(snapshot, [CleanupCategory.SYSTEM_INTERPRETERS], catalog_for(OsTag.MACOS))

        assert [(a.kind, a.name, a.target_path) for a in plan.actions] == [
            (ActionKind.UNINSTALL_PACKAGE, "python@3.11", None),
            (ActionKind.UNINSTALL_PACKAGE, "python@3.12", None),
        ]

    def test_nested_removals_dropped(self, home: Path) -> None:
        """Test that caches inside a removed version-manager root are not planned twice."""
        root = home / ".pyenv"
        snapshot = _snapshot(
            home,
            version_manager_root=root,
            caches=(
                CacheRecord(root / "cache", CacheOwner.VERSION_MANAGER_CACHE, 1),
                CacheRecord(home / ".cache/pip", CacheOwner.PACKAGE_MANAGER_CACHE, 1),
            ),
        )

        plan = build_plan(snapshot, CATEGORY_ORDER, catalog_for(OsTag.LINUX))

        assert [a.target_path for a in plan.actions] == [root, home / ".cache/pip"]

    def test_shell_config_only_when_something_to_strip(self, home: Path) -> None:
        """Test that clean rc files get no action."""
        dirty = home / ".bashrc"
        dirty.write_text("export A=1\nexport PYENV_ROOT=$HOME/.pyenv\n")
        clean = home / ".zshrc"
        clean.write_text("export A=1\n")
        snapshot = _snapshot(home, shell_configs=(dirty, clean))

        plan = build_plan(snapshot, [CleanupCategory.SHELL_CONFIG], catalog_for(OsTag.LINUX))

        (action,) = plan.actions
        assert action.target_path == dirty
        assert action.kind is ActionKind.STRIP_SHELL_CONFIG
        assert action.name == "pyenv"
        assert action.destructive is False


class TestPreserve:
    """Tests for keeping artifacts that already match the toolchain."""

    def test_pinned_version_and_root_kept(self, home: Path) -> None:
        """Test that only non-pinned versions are planned."""
        toolchain = ToolchainConfig(version_manager_root=home / ".pyenv", python_version="3.11.7")
        snapshot = _snapshot(
            home,
            version_manager_root=home / ".pyenv",
            managed_versions=("3.10.13", "3.11.7"),
        )

        plan = build_plan(snapshot, CATEGORY_ORDER, catalog_for(OsTag.LINUX), preserve=toolchain)

        planned = [(a.kind, a.name) for a in plan.actions]
        assert planned == [(ActionKind.UNINSTALL_VERSION, "3.10.13")]

    def test_foreign_root_removed(self, home: Path, tmp_path: Path) -> None:
        """Test that a version manager elsewhere than configured is removed whole."""
        toolchain = ToolchainConfig(version_manager_root=tmp_path / "elsewhere")
        snapshot = _snapshot(
            home, version_manager_root=home / ".pyenv", managed_versions=("3.11.7",)
        )

        plan = build_plan(snapshot, CATEGORY_ORDER, catalog_for(OsTag.LINUX), preserve=toolchain)

        assert plan.actions[-1].target_path == home / ".pyenv"
        assert plan.actions[-1].kind is ActionKind.REMOVE_PATH

    def test_managed_block_kept(self, home: Path) -> None:
        """Test that a config holding only the managed block needs no action."""
        rc = home / ".bashrc"
        rc.write_text(f'export A=1\n{BLOCK_START}\neval "$(pyenv init -)"\n{BLOCK_END}\n')
        snapshot = _snapshot(home, shell_configs=(rc,))
        toolchain = ToolchainConfig(version_manager_root=home / ".pyenv")

        catalog = catalog_for(OsTag.LINUX)
        assert len(build_plan(snapshot, CATEGORY_ORDER, catalog, preserve=toolchain)) == 0
        assert len(build_plan(snapshot, CATEGORY_ORDER, catalog)) == 1

    def test_install_receipt_kept(self, home: Path) -> None:
        """Test that the uv config directory holding the install receipt survives a reset."""
        receipt_dir = home / ".config/uv"
        receipt_dir.mkdir(parents=True)
        (receipt_dir / "uv-receipt.json").write_text("{}")
        pip_config = home / ".config/pip"
        pip_config.mkdir(parents=True)
        snapshot = _snapshot(
            home,
            caches=(
                CacheRecord(receipt_dir, CacheOwner.PACKAGE_MANAGER_CONFIG, 1),
                CacheRecord(pip_config, CacheOwner.PACKAGE_MANAGER_CONFIG, 1),
            ),
        )
        toolchain = ToolchainConfig(version_manager_root=home / ".pyenv")
        catalog = catalog_for(OsTag.LINUX)

        reset = build_plan(snapshot, CATEGORY_ORDER, catalog, preserve=toolchain)
        clean = build_plan(snapshot, CATEGORY_ORDER, catalog)

        assert [a.target_path for a in reset.actions] == [pip_config]
        assert [a.target_path for a in clean.actions] == [receipt_dir, pip_config]

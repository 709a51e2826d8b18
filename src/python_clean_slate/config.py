"""Configuration management for python-clean-slate."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .host import OsTag, detect_os

CONFIG_ENV_VAR = "PYTHON_CLEAN_SLATE_CONFIG"

_TRUE_STRINGS = frozenset({"true", "yes", "on", "1"})

DEFAULT_VERSION_MANAGER_INSTALLER = "curl -fsSL https://pyenv.run | bash"
DEFAULT_PACKAGE_MANAGER_INSTALLER = "curl -LsSf https://astral.sh/uv/install.sh | sh"

WINDOWS_VERSION_MANAGER_INSTALLER = (
    "Invoke-WebRequest -UseBasicParsing -Uri "
    '"https://raw.githubusercontent.com/pyenv-win/pyenv-win/master/'
    'pyenv-win/install-pyenv-win.ps1" '
    '-OutFile "./install-pyenv-win.ps1"; &"./install-pyenv-win.ps1"'
)
WINDOWS_PACKAGE_MANAGER_INSTALLER = "irm https://astral.sh/uv/install.ps1 | iex"


def parse_bool(value: Any, default: bool) -> bool:
    """Parse a YAML or environment value as a boolean.

    Args:
        value: Raw value (bool, int, str or None).
        default: Returned when value is None.

    Returns:
        Parsed boolean. Unrecognized strings are False.

    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    return str(value).strip().lower() in _TRUE_STRINGS


def _expand(value: str | Path) -> Path:
    return Path(os.path.expanduser(str(value)))


def default_version_manager_root(os_tag: OsTag, home: Path | None = None) -> Path:
    """Directory holding ``versions/`` and the global ``version`` file.

    pyenv-win keeps both one level below ``~/.pyenv``.
    """
    home = home or Path.home()
    if os_tag is OsTag.WINDOWS:
        return home / ".pyenv" / "pyenv-win"
    return home / ".pyenv"


def default_installers(os_tag: OsTag) -> tuple[str, str]:
    """Version-manager and package-manager installer commands for an OS."""
    if os_tag is OsTag.WINDOWS:
        return WINDOWS_VERSION_MANAGER_INSTALLER, WINDOWS_PACKAGE_MANAGER_INSTALLER
    return DEFAULT_VERSION_MANAGER_INSTALLER, DEFAULT_PACKAGE_MANAGER_INSTALLER


@dataclass
class ToolchainConfig:
    """Desired end state of the Python toolchain."""

    python_version: str = "3.11.7"
    version_manager_root: Path = field(
        default_factory=lambda: default_version_manager_root(detect_os())
    )
    package_manager_bin: Path = field(
        default_factory=lambda: Path.home() / ".local/bin/uv"
    )
    venv_root: Path = field(default_factory=lambda: Path.home() / ".venvs")
    uv_cache_dir: Path = field(default_factory=lambda: Path.home() / ".cache/uv")
    uv_python_install_dir: Path = field(
        default_factory=lambda: Path.home() / ".local/share/uv/python"
    )
    version_manager_installer: str = field(
        default_factory=lambda: default_installers(detect_os())[0]
    )
    package_manager_installer: str = field(
        default_factory=lambda: default_installers(detect_os())[1]
    )

    # Empty means "the rc file of the current shell"
    shell_configs: list[Path] = field(default_factory=list)

    @property
    def environment(self) -> dict[str, str]:
        """Environment variables the managed shell block exports."""
        return {
            "UV_CACHE_DIR": str(self.uv_cache_dir),
            "UV_PYTHON_INSTALL_DIR": str(self.uv_python_install_dir),
        }

    def resolve_shell_configs(
        self, os_tag: OsTag, environ: Mapping[str, str] | None = None
    ) -> list[Path]:
        """Return the shell config files the managed block goes into."""
        if self.shell_configs:
            return list(self.shell_configs)

        environ = os.environ if environ is None else environ
        home = Path(environ.get("HOME") or Path.home())
        if os_tag is OsTag.WINDOWS:
            return [home / "Documents/PowerShell/Microsoft.PowerShell_profile.ps1"]
        if environ.get("ZSH_VERSION") or environ.get("SHELL", "").endswith("zsh"):
            return [home / ".zshrc"]
        return [home / ".bashrc"]

    def apply_environment(self, environ: Mapping[str, str]) -> None:
        """Let ``UV_CACHE_DIR`` / ``UV_PYTHON_INSTALL_DIR`` override the defaults."""
        if environ.get("UV_CACHE_DIR"):
            self.uv_cache_dir = _expand(environ["UV_CACHE_DIR"])
        if environ.get("UV_PYTHON_INSTALL_DIR"):
            self.uv_python_install_dir = _expand(environ["UV_PYTHON_INSTALL_DIR"])

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> ToolchainConfig:
        config = cls()

        if "python_version" in data:
            config.python_version = str(data["python_version"])
        for key in (
            "version_manager_root",
            "package_manager_bin",
            "venv_root",
            "uv_cache_dir",
            "uv_python_install_dir",
        ):
            if key in data:
                setattr(config, key, _expand(data[key]))
        if "version_manager_installer" in data:
            config.version_manager_installer = str(data["version_manager_installer"])
        if "package_manager_installer" in data:
            config.package_manager_installer = str(data["package_manager_installer"])
        if "shell_configs" in data:
            config.shell_configs = [_expand(p) for p in data["shell_configs"]]

        return config

    def _to_dict(self) -> dict[str, Any]:
        return {
            "python_version": self.python_version,
            "version_manager_root": str(self.version_manager_root),
            "package_manager_bin": str(self.package_manager_bin),
            "venv_root": str(self.venv_root),
            "uv_cache_dir": str(self.uv_cache_dir),
            "uv_python_install_dir": str(self.uv_python_install_dir),
            "version_manager_installer": self.version_manager_installer,
            "package_manager_installer": self.package_manager_installer,
            "shell_configs": [str(p) for p in self.shell_configs],
        }


@dataclass
class CleanSlateConfig:
    """Configuration for python-clean-slate."""

    # Where python-backup-<timestamp>/ directories are created
    backup_root: Path = field(default_factory=Path.home)

    # Timeout for version probes and freezes (seconds)
    probe_timeout: float = 10.0

    # Timeout for installs and uninstalls (seconds)
    tool_timeout: float = 1800.0

    # Worker threads for probing and size computation
    scan_workers: int = 8

    # Also inventory .venv directories in and below the working directory
    scan_project_venvs: bool = True

    # Logging
    log_file: Path = field(
        default_factory=lambda: (
            Path.home() / ".local/state/python-clean-slate/clean-slate.log"
        )
    )
    log_level: str = "INFO"

    toolchain: ToolchainConfig = field(default_factory=ToolchainConfig)

    @classmethod
    def get_config_path(cls, environ: Mapping[str, str] | None = None) -> Path:
        """Get the configuration file path, honoring ``PYTHON_CLEAN_SLATE_CONFIG``."""
        environ = os.environ if environ is None else environ
        if environ.get(CONFIG_ENV_VAR):
            return _expand(environ[CONFIG_ENV_VAR])
        return Path.home() / ".config/python-clean-slate/config.yaml"

    @classmethod
    def load(
        cls, config_path: Path | None = None, environ: Mapping[str, str] | None = None
    ) -> CleanSlateConfig:
        """Load configuration from YAML file.

        Args:
            config_path: Path to config file. Uses default if None.
            environ: Environment for UV_* overrides. Uses ``os.environ`` if None.

        Returns:
            Loaded configuration.

        Raises:
            ValueError: The file is not valid YAML or holds invalid values.

        """
        environ = os.environ if environ is None else environ
        if config_path is None:
            config_path = cls.get_config_path(environ)

        if config_path.exists():
            with config_path.open(encoding="utf-8") as f:
                try:
                    data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ValueError(f"Invalid YAML in {config_path}: {e}") from e
            if not isinstance(data, dict):
                raise ValueError(f"Invalid config in {config_path}: expected a mapping")
            config = cls._from_dict(data)
        else:
            config = cls()

        config.toolchain.apply_environment(environ)
        return config

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> CleanSlateConfig:
        """Create config from dictionary."""
        config = cls()

        if "backup_root" in data:
            config.backup_root = _expand(data["backup_root"])
        if "probe_timeout" in data:
            config.probe_timeout = float(data["probe_timeout"])
        if "tool_timeout" in data:
            config.tool_timeout = float(data["tool_timeout"])
        for name in ("probe_timeout", "tool_timeout"):
            if getattr(config, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if "scan_workers" in data:
            config.scan_workers = max(1, int(data["scan_workers"]))
        config.scan_project_venvs = parse_bool(
            data.get("scan_project_venvs"), config.scan_project_venvs
        )

        # Logging
        if "logging" in data:
            logging_cfg = data["logging"] or {}
            if "file" in logging_cfg:
                config.log_file = _expand(logging_cfg["file"])
            if "level" in logging_cfg:
                config.log_level = str(logging_cfg["level"]).upper()

        if "toolchain" in data:
            config.toolchain = ToolchainConfig._from_dict(data["toolchain"] or {})

        return config

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to YAML file.

        Args:
            config_path: Path to save config. Uses default if None.

        """
        if config_path is None:
            config_path = self.get_config_path()

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "backup_root": str(self.backup_root),
            "probe_timeout": self.probe_timeout,
            "tool_timeout": self.tool_timeout,
            "scan_workers": self.scan_workers,
            "scan_project_venvs": self.scan_project_venvs,
            "logging": {
                "file": str(self.log_file),
                "level": self.log_level,
            },
            "toolchain": self.toolchain._to_dict(),
        }

        with config_path.open("w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

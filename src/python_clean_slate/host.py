"""Detect which operating system family the tool is running on."""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from enum import Enum


class OsTag(Enum):
    """Operating system families with their own path conventions."""

    MACOS = "macos"
    LINUX = "linux"
    WINDOWS = "windows"
    WSL = "wsl"  # Windows Subsystem for Linux, scanned like Linux


def detect_os(
    platform: str | None = None, environ: Mapping[str, str] | None = None
) -> OsTag:
    """Detect the host OS tag.

    Args:
        platform: Value of ``sys.platform``. Uses the running interpreter's if None.
        environ: Environment mapping. Uses ``os.environ`` if None.

    Returns:
        The detected OS tag. Unknown platforms fall back to Linux.

    """
    platform = sys.platform if platform is None else platform
    environ = os.environ if environ is None else environ

    if platform == "darwin":
        return OsTag.MACOS
    if platform in ("win32", "cygwin", "msys"):
        return OsTag.WINDOWS
    if environ.get("WSL_DISTRO_NAME"):
        return OsTag.WSL
    return OsTag.LINUX

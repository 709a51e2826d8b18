"""Tests for OS detection."""

from __future__ import annotations

import pytest

from python_clean_slate.host import OsTag, detect_os


class TestDetectOs:
    """Tests for detect_os."""

    @pytest.mark.parametrize(
        "platform,expected",
        [
            ("darwin", OsTag.MACOS),
            ("win32", OsTag.WINDOWS),
            ("cygwin", OsTag.WINDOWS),
            ("msys", OsTag.WINDOWS),
            ("linux", OsTag.LINUX),
            ("freebsd14", OsTag.LINUX),  # Unknown platforms fall back to Linux
        ],
    )
    def test_platforms(self, platform: str, expected: OsTag) -> None:
        """Test mapping of sys.platform values."""
        assert detect_os(platform, environ={}) is expected

    def test_wsl_detected_from_environment(self) -> None:
        """Test that WSL is recognized by its distro variable."""
        assert detect_os("linux", environ={"WSL_DISTRO_NAME": "Ubuntu"}) is OsTag.WSL

    def test_wsl_variable_ignored_on_windows(self) -> None:
        """Test that the WSL variable does not override a Windows platform."""
        assert detect_os("win32", environ={"WSL_DISTRO_NAME": "Ubuntu"}) is OsTag.WINDOWS

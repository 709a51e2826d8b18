"""Tests for external tool wrappers."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from conftest import FakeRunner

from python_clean_slate.errors import ExternalToolFailure, ProbeTimeout
from python_clean_slate.host import OsTag
from python_clean_slate.tools import (
    KNOWN_PACKAGE_MANAGERS,
    AptTool,
    BrewTool,
    CommandResult,
    CommandRunner,
    PackageManagerTool,
    PyenvTool,
    RpmTool,
    parse_version,
    probe_version,
    shell_command,
    system_package_manager_for,
)


class TestCommandRunner:
    """Tests for the subprocess-backed runner."""

    def test_success(self) -> None:
        """Test that output and exit status are captured."""
        completed = subprocess.CompletedProcess(["python3", "--version"], 0, "Python 3.11.7\n", "")
        with patch("python_clean_slate.tools.subprocess.run", return_value=completed) as mock_run:
            result = CommandRunner(timeout=5).run(["python3", "--version"])

        assert result.ok
        assert result.stdout == "Python 3.11.7\n"
        assert mock_run.call_args.kwargs["timeout"] == 5

    def test_timeout_folded_into_result(self) -> None:
        """Test that a timeout is reported, not raised."""
        with patch(
            "python_clean_slate.tools.subprocess.run",
            side_effect=subprocess.TimeoutExpired(["python3"], 1),
        ):
            result = CommandRunner().run(["python3", "--version"], timeout=1)

        assert result.timed_out
        assert not result.ok
        with pytest.raises(ProbeTimeout):
            result.check()

    def test_missing_binary(self) -> None:
        """Test that a missing executable looks like exit status 127."""
        missing = FileNotFoundError(2, "nope", "conda")
        with patch("python_clean_slate.tools.subprocess.run", side_effect=missing):
            result = CommandRunner().run(["conda", "--version"])

        assert result.returncode == 127
        with pytest.raises(ExternalToolFailure, match="status 127"):
            result.check()

    def test_arguments_stringified(self) -> None:
        """Test that Path arguments are passed as strings."""
        completed = subprocess.CompletedProcess([], 0, "", "")
        with patch("python_clean_slate.tools.subprocess.run", return_value=completed) as mock_run:
            CommandRunner().run([Path("/opt/python"), "--version"])

        assert mock_run.call_args.args[0] == ("/opt/python", "--version")


class TestCommandResult:
    """Tests for CommandResult.check."""

    def test_failure_message_uses_last_output_line(self) -> None:
        """Test that the error carries the tool's last complaint."""
        result = CommandResult(("pip", "freeze"), 2, "", "warning\nerror: broken\n")
        with pytest.raises(ExternalToolFailure, match="error: broken"):
            result.check()

    def test_whitespace_output(self) -> None:
        """Test that whitespace-only output does not break the message."""
        result = CommandResult(("pip", "freeze"), 1, "  \n", "")
        with pytest.raises(ExternalToolFailure, match="status 1$"):
            result.check()


class TestVersionProbe:
    """Tests for version parsing and probing."""

    @pytest.mark.parametrize(
        "output,expected",
        [
            ("Python 3.11.7", "3.11.7"),
            ("pip 23.3.1 from /usr/lib/python3/dist-packages/pip (python 3.11)", "23.3.1"),
            ("uv 0.1.24", "0.1.24"),
            ("conda 23.11.0", "23.11.0"),
            ("Poetry (version 1.7.1)", "1.7.1"),
            ("Python 3.13.0rc1", "3.13.0rc1"),
        ],
    )
    def test_parse_version(self, output: str, expected: str) -> None:
        """Test extraction from typical --version outputs."""
        assert parse_version(output) == expected

    def test_python2_prints_to_stderr(self, runner: FakeRunner) -> None:
        """Test that a version on stderr is still found."""
        runner.add(["/usr/bin/python2", "--version"], stderr="Python 2.7.18\n")
        assert probe_version(runner, "/usr/bin/python2") == "2.7.18"

    def test_empty_output_is_failure(self, runner: FakeRunner) -> None:
        """Test that a silent executable is not treated as responsive."""
        runner.add(["/bin/python", "--version"])
        with pytest.raises(ExternalToolFailure):
            probe_version(runner, "/bin/python")

    def test_timeout(self, runner: FakeRunner) -> None:
        """Test that a hanging interpreter raises ProbeTimeout."""
        runner.add(["/bin/python", "--version"], timed_out=True)
        with pytest.raises(ProbeTimeout):
            probe_version(runner, "/bin/python", timeout=0.5)


class TestShellCommand:
    """Tests for wrapping installer command lines."""

    def test_posix(self) -> None:
        """Test that POSIX hosts use sh -c."""
        assert shell_command("echo hi", OsTag.LINUX) == ["sh", "-c", "echo hi"]

    def test_windows(self) -> None:
        """Test that Windows uses PowerShell."""
        argv = shell_command("irm x | iex", OsTag.WINDOWS)
        assert argv[0] == "powershell"
        assert argv[-1] == "irm x | iex"


class TestPackageManagerTool:
    """Tests for package manager wrappers."""

    def test_known_managers(self) -> None:
        """Test the probed package manager set."""
        names = [spec.name for spec in KNOWN_PACKAGE_MANAGERS]
        assert names == ["pip", "uv", "conda", "pipenv", "poetry"]

    def test_freeze(self, runner: FakeRunner) -> None:
        """Test that freeze skips comments and blank lines."""
        runner.add(["pip", "freeze"], stdout="# comment\nrequests==2.31.0\n\nidna==3.6\n")
        tool = PackageManagerTool(KNOWN_PACKAGE_MANAGERS[0], runner)

        assert tool.freeze() == ["requests==2.31.0", "idna==3.6"]

    def test_conda_export(self, runner: FakeRunner) -> None:
        """Test that conda uses list --export."""
        runner.add(["conda", "list", "--export"], stdout="numpy=1.26.2=py311\n")
        tool = PackageManagerTool(KNOWN_PACKAGE_MANAGERS[2], runner)

        assert tool.freeze_output() == "numpy=1.26.2=py311\n"

    def test_no_freeze_command(self, runner: FakeRunner) -> None:
        """Test that tools without a freeze command raise."""
        tool = PackageManagerTool(KNOWN_PACKAGE_MANAGERS[1], runner)
        with pytest.raises(ExternalToolFailure, match="no freeze command"):
            tool.freeze_output()

    def test_for_interpreter(self, runner: FakeRunner, tmp_path: Path) -> None:
        """Test that venv freezes go through python -m pip."""
        python = tmp_path / "venv/bin/python"
        runner.add([python, "-m", "pip", "freeze"], stdout="rich==13.7.0\n")

        tool = PackageManagerTool.for_interpreter(python, runner)

        assert tool.freeze() == ["rich==13.7.0"]
        assert runner.calls == [(str(python), "-m", "pip", "freeze")]


class TestPyenvTool:
    """Tests for the pyenv wrapper."""

    def test_prefers_root_executable(self, runner: FakeRunner, tmp_path: Path) -> None:
        """Test that the install root's bin/pyenv is used when present."""
        (tmp_path / "bin").mkdir()
        (tmp_path / "bin/pyenv").touch()
        assert PyenvTool(runner, tmp_path).executable == str(tmp_path / "bin/pyenv")

    def test_installed_needs_launcher(self, runner: FakeRunner, tmp_path: Path) -> None:
        """Test that an empty root is not an installed pyenv."""
        tool = PyenvTool(runner, tmp_path)
        assert not tool.is_installed()

        (tmp_path / "bin").mkdir()
        (tmp_path / "bin/pyenv.bat").touch()
        assert tool.is_installed()
        assert tool.executable == str(tmp_path / "bin/pyenv.bat")

    def test_list_versions_drops_system(
        self, runner: FakeRunner, tmp_path: Path
    ) -> None:
        """Test that the 'system' pseudo-version is ignored."""
        runner.add(["pyenv", "versions", "--bare"], stdout="system\n3.10.13\n3.11.7\n")
        assert PyenvTool(runner, tmp_path).list_versions() == ["3.10.13", "3.11.7"]

    def test_install_already_installed(
        self, runner: FakeRunner, tmp_path: Path
    ) -> None:
        """Test that 'already installed' is not a failure."""
        runner.add(
            ["pyenv", "install", "-s", "3.11.7"],
            returncode=1,
            stderr="pyenv: /x/3.11.7 already exists\n",
        )
        assert PyenvTool(runner, tmp_path).install_version("3.11.7") is False

    def test_install_failure(self, runner: FakeRunner, tmp_path: Path) -> None:
        """Test that a real build failure raises."""
        runner.add(["pyenv", "install", "-s", "3.11.7"], returncode=1, stderr="BUILD FAILED\n")
        with pytest.raises(ExternalToolFailure, match="BUILD FAILED"):
            PyenvTool(runner, tmp_path).install_version("3.11.7")

    def test_global_version_from_file(self, runner: FakeRunner, tmp_path: Path) -> None:
        """Test reading the global version without running pyenv."""
        (tmp_path / "version").write_text("3.11.7\n")
        assert PyenvTool(runner, tmp_path).global_version() == "3.11.7"
        assert runner.calls == []

    def test_global_version_missing(self, runner: FakeRunner, tmp_path: Path) -> None:
        """Test that no version file means no global version."""
        assert PyenvTool(runner, tmp_path).global_version() is None


class TestSystemPackageManagers:
    """Tests for brew, apt and rpm wrappers."""

    def test_brew_lists_python_formulae(self, runner: FakeRunner) -> None:
        """Test that only python formulae are listed."""
        runner.add(
            ["brew", "list", "--formula", "-1"],
            stdout="git\npython@3.11\npython@3.12\nwget\n",
        )
        assert BrewTool(runner).list_python_packages() == ["python@3.11", "python@3.12"]

    def test_apt_lists_installed_user_packages(self, runner: FakeRunner) -> None:
        """Test that only installed user-facing packages are listed."""
        runner.add(
            ["dpkg-query", "-W", "-f=${Status} ${Package}\n", *AptTool.USER_PACKAGES],
            returncode=1,
            stdout="install ok installed python3-pip\ninstall ok installed python3-venv\n",
        )
        assert AptTool(runner).list_python_packages() == ["python3-pip", "python3-venv"]

    def test_apt_uninstall_never_prompts(self) -> None:
        """Test that apt removal uses non-interactive sudo."""
        mock_runner = MagicMock()
        mock_runner.run.return_value = CommandResult(("sudo",), 0)

        AptTool(mock_runner).uninstall("python3-pip")

        argv = mock_runner.run.call_args.args[0]
        assert argv[:2] == ["sudo", "-n"]
        assert argv[-1] == "python3-pip"

    def test_brew_autoremove(self, runner: FakeRunner) -> None:
        """Test that brew drops orphaned dependencies."""
        runner.add(["brew", "autoremove"])

        BrewTool(runner).autoremove()

        assert runner.calls == [("brew", "autoremove")]

    def test_apt_autoremove_never_prompts(self, runner: FakeRunner) -> None:
        """Test that apt autoremove is non-interactive."""
        runner.add(["sudo", "-n", "apt-get", "autoremove", "-y"])

        AptTool(runner).autoremove()

        assert runner.calls == [("sudo", "-n", "apt-get", "autoremove", "-y")]

    def test_rpm_lists_installed_user_packages(self, runner: FakeRunner) -> None:
        """Test that rpm output is filtered to installed user-facing packages."""
        runner.add(
            ["rpm", "-q", "--queryformat", "%{NAME}\n", *RpmTool.USER_PACKAGES],
            returncode=1,
            stdout="python3-pip\npackage python3-devel is not installed\n",
        )

        assert RpmTool(runner).list_python_packages() == ["python3-pip"]

    def test_rpm_missing_binary_raises(self, runner: FakeRunner) -> None:
        """Test that a missing rpm is a tool failure, not an empty list."""
        with pytest.raises(ExternalToolFailure):
            RpmTool(runner).list_python_packages()

    @pytest.mark.parametrize("frontend", ["dnf", "yum"])
    def test_rpm_uninstall_uses_frontend(
        self, runner: FakeRunner, frontend: str
    ) -> None:
        """Test that removal goes through the detected frontend without prompting."""
        runner.add(["sudo", "-n", frontend, "remove", "-y", "python3-devel"])

        tool = RpmTool(runner, frontend)
        tool.uninstall("python3-devel")

        assert tool.name == frontend
        assert runner.calls == [("sudo", "-n", frontend, "remove", "-y", "python3-devel")]


class TestSystemPackageManagerFor:
    """Tests for picking the OS package manager."""

    @staticmethod
    def _which(*available: str):
        return lambda name: f"/usr/bin/{name}" if name in available else None

    def test_macos_brew(self, runner: FakeRunner) -> None:
        """Test Homebrew on macOS."""
        tool = system_package_manager_for(OsTag.MACOS, runner, which=self._which("brew"))
        assert isinstance(tool, BrewTool)

    def test_debian(self, runner: FakeRunner) -> None:
        """Test apt on dpkg-based systems."""
        which = self._which("dpkg-query", "yum")
        tool = system_package_manager_for(OsTag.LINUX, runner, which=which)
        assert isinstance(tool, AptTool)

    @pytest.mark.parametrize(
        ("available", "expected"),
        [(("dnf", "yum"), "dnf"), (("yum",), "yum")],
    )
    def test_rpm_based(
        self, runner: FakeRunner, available: tuple[str, ...], expected: str
    ) -> None:
        """Test dnf preferred over yum on RPM-based systems."""
        tool = system_package_manager_for(OsTag.WSL, runner, which=self._which(*available))
        assert isinstance(tool, RpmTool)
        assert tool.name == expected

    def test_none(self, runner: FakeRunner) -> None:
        """Test that Windows and bare Linux have no system package manager."""
        assert system_package_manager_for(OsTag.WINDOWS, runner, which=self._which("brew")) is None
        assert system_package_manager_for(OsTag.LINUX, runner, which=self._which()) is None

"""Exception taxonomy.

Everything except ``InvalidCommand`` and ``InvalidPlan`` is caught at the
granularity of a single probe or action and folded into a report.
"""

from __future__ import annotations

from pathlib import Path


class CleanSlateError(Exception):
    """Base class for all errors raised by this package."""


class ProbeTimeout(CleanSlateError):
    """An external command did not answer within its timeout."""

    def __init__(self, command: str, timeout: float) -> None:
        super().__init__(f"{command} timed out after {timeout:g}s")
        self.command = command
        self.timeout = timeout


class PermissionDenied(CleanSlateError):
    """A path could not be read or modified."""

    def __init__(self, path: Path, detail: str = "") -> None:
        message = f"Permission denied: {path}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)
        self.path = path


class ExternalToolFailure(CleanSlateError):
    """A package or version manager invocation exited non-zero or was missing."""

    def __init__(self, command: str, returncode: int, output: str = "") -> None:
        message = f"{command} exited with status {returncode}"
        if output.strip():
            message += f": {output.strip().splitlines()[-1]}"
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.output = output


class ConfirmationDenied(CleanSlateError):
    """The operator declined a confirmation prompt."""


class InvalidCommand(CleanSlateError):
    """Unknown CLI subcommand."""


class InvalidPlan(CleanSlateError):
    """A cleanup plan could not be read."""

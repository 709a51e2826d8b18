"""Operator confirmation for irreversible actions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from rich.console import Console

from .errors import ConfirmationDenied

logger = logging.getLogger("python-clean-slate")


class Scope(Enum):
    """How much an action can destroy."""

    SCOPED = "scoped"  # one category; "y" or "yes", any case
    NUCLEAR = "nuclear"  # full reset; the literal "yes" only


class Decision(Enum):
    """Answer of the confirmation gate."""

    AUTHORIZED = "authorized"
    DENIED = "denied"


_PROMPTS = {
    Scope.SCOPED: "{question} (y/N): ",
    Scope.NUCLEAR: "{question} Type 'yes' to proceed: ",
}


class ConfirmationGate:
    """Asks before every irreversible action. Consent is never cached."""

    def __init__(
        self,
        ask: Callable[[str], str] | None = None,
        console: Console | None = None,
    ) -> None:
        """Initialize the gate.

        Args:
            ask: Returns the operator's answer to a prompt. Reads the terminal
                if None.
            console: Console used by the default ``ask``.

        """
        self.console = console or Console()
        self.ask = ask or self.console.input

    @staticmethod
    def accepts(scope: Scope, answer: str) -> bool:
        """Check whether an answer satisfies a scope's bar."""
        answer = answer.strip()
        if scope is Scope.NUCLEAR:
            return answer == "yes"
        return answer.lower() in ("y", "yes")

    def authorize(self, scope: Scope, question: str) -> Decision:
        """Prompt the operator and return their decision."""
        try:
            answer = self.ask(_PROMPTS[scope].format(question=question))
        except EOFError:
            answer = ""

        if self.accepts(scope, answer):
            decision = Decision.AUTHORIZED
        else:
            decision = Decision.DENIED
        logger.info(
            "Confirmation (%s) for %r: %s", scope.value, question, decision.value
        )
        return decision

    def require(self, scope: Scope, question: str) -> None:
        """Like ``authorize`` but raise on denial.

        Raises:
            ConfirmationDenied: The operator did not consent.

        """
        if self.authorize(scope, question) is Decision.DENIED:
            raise ConfirmationDenied(question)

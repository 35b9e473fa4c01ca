"""Domain errors raised by the command pipeline.

Each failure kind maps to a distinct user-facing rendering in
`taskbot.core.messages`; see ActionService.dispatch for the conversion.
"""

from __future__ import annotations


class TaskBotError(Exception):
    """Base class for all expected, user-renderable failures."""


class ParseFailure(TaskBotError):
    """The fallback interpreter was unreachable or returned unusable content.

    Always recovered locally (fall back to rule-based result); never shown
    to the sender.
    """


class ValidationFailure(TaskBotError):
    """A required slot is missing or invalid (bad status, past reminder time, ...)."""

    def __init__(self, message: str, slot: str | None = None) -> None:
        super().__init__(message)
        self.slot = slot


class NotFoundFailure(TaskBotError):
    """A referenced task or reminder does not exist for this sender."""

    def __init__(self, reference: str, what: str = "Task") -> None:
        super().__init__(f"{what} {reference} not found")
        self.reference = reference
        self.what = what


class PermissionFailure(TaskBotError):
    """The sender's role does not allow the requested action."""

    def __init__(self, action: str, allowed_roles: list[str]) -> None:
        super().__init__(f"Not permitted to {action}")
        self.action = action
        self.allowed_roles = list(allowed_roles)


class PersistenceFailure(TaskBotError):
    """A write did not verifiably apply (re-read value differs from intended)."""

    def __init__(self, reference: str, detail: str = "") -> None:
        super().__init__(f"Update to {reference} did not persist {detail}".strip())
        self.reference = reference
        self.detail = detail

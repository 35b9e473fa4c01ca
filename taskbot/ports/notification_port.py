"""Notification port — abstract interface for sending messages to users.

Core modules depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass
class DeliveryResult:
    """Outcome of one outbound send."""

    ok: bool
    message_id: str = ""
    error: str = ""

    @classmethod
    def not_configured(cls) -> DeliveryResult:
        return cls(ok=False, error="not_configured")


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    @property
    def configured(self) -> bool: ...

    async def send_message(self, to: str, text: str) -> DeliveryResult: ...

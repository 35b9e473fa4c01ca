"""
taskbot — Intent Parser.

Entry point for turning one chat message into an Intent:
rules first (free, deterministic), then the LLM fallback only when the rules
are inconclusive. A fallback failure never reaches the sender; the rule
result (`unknown`) is returned instead.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable
from zoneinfo import ZoneInfo

from taskbot.core.errors import ParseFailure
from taskbot.core.intent import Intent
from taskbot.core.rules import match_rules
from taskbot.core.timeparse import utcnow

if TYPE_CHECKING:
    from taskbot.core.interpreter import FallbackInterpreter
    from taskbot.data.models import User

logger = logging.getLogger(__name__)


class IntentParser:
    """Rule cascade with an optional LLM fallback."""

    def __init__(
        self,
        interpreter: FallbackInterpreter | None,
        timezone: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._interpreter = interpreter
        self._tz = ZoneInfo(timezone)
        self._clock = clock

    def now(self) -> datetime:
        return self._clock().astimezone(self._tz)

    async def parse(self, text: str, user: User | None = None) -> Intent:
        intent = match_rules(text, self.now())
        if not intent.is_unknown:
            logger.debug("Rule match: %s", intent.kind.value)
            return intent

        if self._interpreter is None or not text.strip():
            return intent

        role = user.role if user else "employee"
        name = user.full_name if user else ""
        try:
            return await self._interpreter.interpret(text, role=role, display_name=name)
        except ParseFailure as exc:
            logger.warning("Fallback parse failed, keeping rule result: %s", exc)
            return intent

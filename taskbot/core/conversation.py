"""
taskbot — Conversation State Machine.

Carries one incomplete command per sender across turns: ask for the first
missing slot, merge the next reply into it, and hand the completed Intent
back exactly once. State lives in `ConversationDB` so any worker can pick up
the next reply; it expires after CONVERSATION_TTL_MINUTES.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable
from zoneinfo import ZoneInfo

from taskbot.core.intent import Intent, IntentKind
from taskbot.core.normalizer import VALID_STATUSES, normalize_status
from taskbot.core.timeparse import looks_like_time, resolve_when, utcnow

if TYPE_CHECKING:
    from taskbot.data.db import ConversationDB

logger = logging.getLogger(__name__)

REQUIRED_SLOTS: dict[IntentKind, tuple[str, ...]] = {
    IntentKind.CREATE_TASK: ("title",),
    IntentKind.ASSIGN_TASK: ("title", "assigneeName"),
    IntentKind.UPDATE_STATUS: ("taskId", "status"),
    IntentKind.UPDATE_PROGRESS: ("taskId", "progress"),
    IntentKind.UPDATE_STATUS_AND_PROGRESS: ("taskId", "status", "progress"),
    IntentKind.ADD_UPDATE: ("taskId", "message"),
    IntentKind.REPORT_BLOCKER: ("taskId", "blocker"),
    IntentKind.CANCEL_TASK: ("taskId",),
    IntentKind.VIEW_TASK: ("taskId",),
    IntentKind.SET_REMINDER: ("reminderTime",),
    IntentKind.SCHEDULE_MEETING: ("reminderTime",),
    IntentKind.CANCEL_REMINDER: ("reminderId",),
}

SLOT_PROMPTS: dict[str, str] = {
    "title": "What should the task be called?",
    "assigneeName": "Who should this task be assigned to?",
    "taskId": "Which task? Please send the task ID (e.g. TASK-2026-0001).",
    "status": "What's the new status? (pending, in-progress, completed, blocked)",
    "progress": "What's the progress percentage? (0-100)",
    "message": "What update would you like to add?",
    "blocker": "What's blocking this task?",
    "reminderTime": "When should I remind you? (e.g. \"tomorrow at 3pm\", \"in 2 hours\")",
    "reminderId": "Which reminder? Please send the reminder ID (e.g. REM-2026-0001).",
}

# Shown above the prompt when the previous reply for that slot was unusable
_SLOT_HINTS: dict[str, str] = {
    "status": f"That isn't a valid status. Valid statuses: {', '.join(VALID_STATUSES)}.",
    "progress": "Progress must be a number between 0 and 100.",
    "reminderTime": "I couldn't understand that time.",
}

CANCEL_KEYWORDS = frozenset({"cancel", "abort", "nevermind", "never mind"})

_CANCEL_FOOTER = "\n\n_Reply *cancel* to stop._"
_REFERENCE_RE = re.compile(r"^(?:[A-Z]{2,10}-)?\d{4}-\d+$", re.IGNORECASE)
_PERCENT_RE = re.compile(r"^\d{1,3}(?:\.\d+)?\s*%?$")


def is_cancel_keyword(text: str) -> bool:
    return text.strip().strip(".!").lower() in CANCEL_KEYWORDS


def missing_slots(kind: IntentKind, slots: dict[str, Any]) -> list[str]:
    """Required slots for `kind` that are absent, in table order."""
    return [name for name in REQUIRED_SLOTS.get(kind, ()) if slots.get(name) in (None, "")]


class Outcome(Enum):
    NONE = "none"          # no live state for this sender
    PROMPT = "prompt"      # still incomplete; `prompt` asks for the next slot
    COMPLETE = "complete"  # `intent` is complete and this caller owns dispatch
    STALE = "stale"        # another worker completed or changed the state first


@dataclass
class Resumption:
    outcome: Outcome
    prompt: str = ""
    intent: Intent | None = None


class ConversationManager:
    """One-slot-at-a-time clarification backed by `ConversationDB`."""

    def __init__(
        self,
        store: ConversationDB,
        timezone: str,
        ttl_minutes: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._tz = ZoneInfo(timezone)
        self._ttl = timedelta(minutes=ttl_minutes)
        self._clock = clock

    def _now(self) -> datetime:
        return self._clock().astimezone(self._tz)

    @staticmethod
    def _prompt_for(slot: str, rejected: bool = False) -> str:
        prompt = SLOT_PROMPTS.get(slot, f"Please provide {slot}.")
        if rejected and slot in _SLOT_HINTS:
            prompt = f"{_SLOT_HINTS[slot]}\n{prompt}"
        return prompt + _CANCEL_FOOTER

    def _persist(self, sender: str, owner_id: int, intent: Intent, missing: list[str]) -> str:
        first = missing[0]
        prompt = self._prompt_for(first, rejected=first in intent.rejected)
        self._store.save(
            sender=sender,
            owner_id=owner_id,
            kind=intent.kind.value,
            collected=intent.slots,
            missing=missing,
            last_prompt=prompt,
            expires_at=self._now() + self._ttl,
        )
        return prompt

    # -- operations ---------------------------------------------------------

    def missing_slots(self, intent: Intent) -> list[str]:
        return missing_slots(intent.kind, intent.slots)

    def begin(self, sender: str, owner_id: int, intent: Intent) -> str | None:
        """Start clarification for an incomplete intent.

        Returns None when nothing is missing (dispatch immediately), otherwise
        the prompt for the first missing slot.
        """
        missing = self.missing_slots(intent)
        if not missing:
            return None
        logger.info("Pending %s for %s, missing %s", intent.kind.value, sender, missing)
        return self._persist(sender, owner_id, intent, missing)

    def cancel(self, sender: str) -> bool:
        cancelled = self._store.delete(sender)
        if cancelled:
            logger.info("Conversation cancelled by %s", sender)
        return cancelled

    def merge_reply(self, missing: list[str], reply: str, now: datetime) -> dict[str, Any]:
        """Decide which missing slot a free-text reply fills and coerce it.

        A value that cannot be coerced (an unparseable time) comes back as None,
        which leaves the slot missing.
        """
        text = reply.strip()
        if len(missing) == 1:
            slot = missing[0]
        else:
            slot = self._infer_slot(missing, text)

        if slot == "reminderTime":
            resolved = resolve_when(text, now)
            return {slot: resolved.isoformat() if resolved else None}
        return {slot: text}

    @staticmethod
    def _infer_slot(missing: list[str], text: str) -> str:
        if "reminderTime" in missing and looks_like_time(text):
            return "reminderTime"
        if "status" in missing and normalize_status(text) is not None:
            return "status"
        if _REFERENCE_RE.match(text):
            for slot in ("taskId", "reminderId"):
                if slot in missing:
                    return slot
        if "progress" in missing and _PERCENT_RE.match(text):
            return "progress"
        # No content signal: assume the reply answers the first question asked
        return missing[0]

    def resume(self, sender: str, reply: str) -> Resumption:
        """Merge a reply into the sender's pending command, if any."""
        now = self._now()
        state = self._store.get(sender, now)
        if state is None:
            return Resumption(Outcome.NONE)

        try:
            kind = IntentKind(state.kind)
        except ValueError:
            logger.warning("Discarding conversation with unknown kind %r", state.kind)
            self._store.delete(sender)
            return Resumption(Outcome.NONE)

        update = self.merge_reply(state.missing, reply, now)
        failed = {slot for slot, value in update.items() if value is None}
        intent = Intent(kind=kind, slots={**state.collected, **update}, original_text=reply)
        intent = intent.model_copy(update={"rejected": {**intent.rejected, **{s: reply for s in failed}}})

        missing = self.missing_slots(intent)
        if missing:
            return Resumption(Outcome.PROMPT, prompt=self._persist(sender, state.owner_id, intent, missing))

        if not self._store.complete(sender, state.version):
            logger.info("Conversation for %s already completed elsewhere", sender)
            return Resumption(Outcome.STALE)

        logger.info("Conversation for %s complete: %s", sender, kind.value)
        return Resumption(Outcome.COMPLETE, intent=intent)

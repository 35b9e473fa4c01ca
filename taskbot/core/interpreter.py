"""
taskbot — Fallback Interpreter.

When the rule matcher gives up, the message goes to the configured LLM with
a strict instruction to answer with one JSON object shaped like an Intent.
The answer is normalized through exactly the same path as rule-based output.

The prompt carries the current local date/time, computed per request, so
"tomorrow at 3pm" always resolves against the instant being handled.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable
from zoneinfo import ZoneInfo

from taskbot.core.errors import ParseFailure
from taskbot.core.intent import SLOT_NAMES, Intent, IntentKind
from taskbot.core.normalizer import clamp_progress
from taskbot.core.timeparse import parse_deadline, resolve_when, utcnow

if TYPE_CHECKING:
    from taskbot.core.llm import LLMClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You are the command parser for a company task-management WhatsApp assistant.
Convert the user's message into exactly ONE JSON object. No prose, no markdown.

Current local date/time: {now} ({weekday}), timezone {timezone}.
The user is {display_name} (role: {role}).

Schema (omit fields you cannot fill):
{{"kind": "<kind>", "taskId": "TASK-YYYY-NNNN", "status": "pending|in-progress|completed|blocked|cancelled",
  "progress": 0-100, "title": "string", "description": "string", "priority": "low|medium|high|critical",
  "deadline": "YYYY-MM-DDTHH:MM:SS", "assigneeName": "string", "blocker": "string", "message": "string",
  "reminderTime": "YYYY-MM-DDTHH:MM:SS", "reminderTitle": "string", "reminderMessage": "string",
  "meetingSubject": "string", "meetingWith": "string", "meetingLocation": "string",
  "reminderId": "REM-YYYY-NNNN", "filters": {{"status": "...", "priority": "...", "overdue": true}}}}

Valid kinds: createTask, assignTask, updateStatus, updateProgress, updateStatusAndProgress,
addUpdate, reportBlocker, cancelTask, viewTask, listTasks, listDeadlines, setReminder,
scheduleMeeting, listReminders, cancelReminder, status, help, welcome, unknown.

Rules:
- All times are local wall-clock times in {timezone}; resolve "tomorrow", "next Monday",
  "in 2 hours" relative to the current local date/time above.
- If the message gives both a status and a percentage, use "updateStatusAndProgress".
- "Remind me ..." is setReminder; a meeting with someone at a time is scheduleMeeting.
- Only managers assign tasks to other people; use assignTask when a name is given.
- If you cannot tell what the user wants, return {{"kind": "unknown"}}.
"""

# Names used by earlier versions of the assistant's prompt
_LEGACY_KINDS: dict[str, IntentKind] = {
    "updateTaskStatus": IntentKind.UPDATE_STATUS,
    "updateTaskProgress": IntentKind.UPDATE_PROGRESS,
    "updateTaskStatusAndProgress": IntentKind.UPDATE_STATUS_AND_PROGRESS,
    "addTaskUpdate": IntentKind.ADD_UPDATE,
    "deleteTask": IntentKind.CANCEL_TASK,
    "viewReminders": IntentKind.LIST_REMINDERS,
    "listMeetings": IntentKind.LIST_REMINDERS,
    "viewMeetings": IntentKind.LIST_REMINDERS,
    "deleteReminder": IntentKind.CANCEL_REMINDER,
    "cancelMeeting": IntentKind.CANCEL_REMINDER,
    "deleteMeeting": IntentKind.CANCEL_REMINDER,
}


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def extract_json_object(raw: str) -> dict | None:
    """Return the first balanced {...} in `raw` that parses as a JSON object.

    Brace matching skips braces inside JSON strings, so prose or code fences
    around the object do not matter.
    """
    if not raw:
        return None
    start = raw.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(raw)):
            char = raw[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    candidate = raw[start:index + 1]
                    try:
                        data = json.loads(candidate)
                    except json.JSONDecodeError:
                        break
                    if isinstance(data, dict):
                        return data
                    break
        start = raw.find("{", start + 1)
    return None


def _resolve_kind(name: Any) -> IntentKind:
    if not isinstance(name, str):
        return IntentKind.UNKNOWN
    if name in _LEGACY_KINDS:
        return _LEGACY_KINDS[name]
    try:
        return IntentKind(name)
    except ValueError:
        logger.warning("LLM returned unknown kind: %s", name)
        return IntentKind.UNKNOWN


def build_intent(data: dict, text: str, now: datetime) -> Intent:
    """Normalize a decoded LLM object into an Intent (fields outside the shape are ignored)."""
    kind = _resolve_kind(data.get("kind") or data.get("action") or data.get("intent"))
    fields = data.get("slots") if isinstance(data.get("slots"), dict) else data
    slots: dict[str, Any] = {k: v for k, v in fields.items() if k in SLOT_NAMES}

    for key, resolver in (("reminderTime", resolve_when), ("deadline", parse_deadline)):
        value = slots.get(key)
        if isinstance(value, str):
            resolved = resolver(value, now)
            slots[key] = resolved.isoformat() if resolved else None

    if slots.get("status") and clamp_progress(slots.get("progress")) is not None:
        kind = IntentKind.UPDATE_STATUS_AND_PROGRESS

    return Intent(kind=kind, slots=slots, original_text=text)


# ---------------------------------------------------------------------------
# Interpreter
# ---------------------------------------------------------------------------


class FallbackInterpreter:
    """LLM-backed parser used only when the rule cascade returns `unknown`."""

    def __init__(
        self,
        llm: LLMClient,
        timezone: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._llm = llm
        self._tz = ZoneInfo(timezone)
        self._timezone_name = timezone
        self._clock = clock

    def _system_prompt(self, now: datetime, role: str, display_name: str) -> str:
        return _SYSTEM_PROMPT.format(
            now=now.strftime("%Y-%m-%dT%H:%M:%S"),
            weekday=now.strftime("%A"),
            timezone=self._timezone_name,
            display_name=display_name or "an employee",
            role=role or "employee",
        )

    async def interpret(self, text: str, role: str = "employee", display_name: str = "") -> Intent:
        """Ask the LLM for an Intent.

        Raises:
            ParseFailure: transport error, timeout, or no usable JSON object.
        """
        now = self._clock().astimezone(self._tz)
        system = self._system_prompt(now, role, display_name)

        try:
            raw = await self._llm.complete(system=system, user_message=text, max_tokens=512)
        except Exception as exc:
            logger.warning("Fallback interpreter call failed: %s", exc)
            raise ParseFailure(f"LLM call failed: {exc}") from exc

        logger.debug("LLM raw response: %s", raw)
        data = extract_json_object(raw or "")
        if data is None:
            logger.warning("No JSON object in LLM response: %s", (raw or "")[:200])
            raise ParseFailure("LLM response contained no JSON object")

        intent = build_intent(data, text, now)
        logger.info("Fallback interpreter parsed %r as %s", text[:80], intent.kind.value)
        return intent

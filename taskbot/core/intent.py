"""
taskbot — Intent model.

An Intent is the single structured shape every parsing path produces: the
rule matcher, the LLM fallback and the multi-turn slot filler all build one,
and the action service consumes it.

Slot values are normalized at construction time, so downstream code can rely
on canonical task IDs, statuses and clamped progress no matter where the
Intent came from.

JSON example:
{
    "kind": "updateStatusAndProgress",
    "slots": {"taskId": "TASK-2026-0041", "status": "completed", "progress": 50},
    "original_text": "TASK-2026-0041 completed 50%"
}
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, model_validator

from taskbot.core.normalizer import (
    clamp_progress,
    normalize_priority,
    normalize_reminder_id,
    normalize_status,
    normalize_task_id,
)


class IntentKind(str, Enum):
    CREATE_TASK = "createTask"
    ASSIGN_TASK = "assignTask"
    UPDATE_STATUS = "updateStatus"
    UPDATE_PROGRESS = "updateProgress"
    UPDATE_STATUS_AND_PROGRESS = "updateStatusAndProgress"
    ADD_UPDATE = "addUpdate"
    REPORT_BLOCKER = "reportBlocker"
    CANCEL_TASK = "cancelTask"
    VIEW_TASK = "viewTask"
    LIST_TASKS = "listTasks"
    LIST_DEADLINES = "listDeadlines"
    SET_REMINDER = "setReminder"
    SCHEDULE_MEETING = "scheduleMeeting"
    LIST_REMINDERS = "listReminders"
    CANCEL_REMINDER = "cancelReminder"
    STATUS = "status"
    HELP = "help"
    WELCOME = "welcome"
    UNKNOWN = "unknown"


SLOT_NAMES = frozenset({
    "taskId", "status", "progress", "title", "description", "priority",
    "deadline", "assigneeName", "blocker", "message",
    "reminderTime", "reminderId", "reminderTitle", "reminderMessage",
    "meetingSubject", "meetingWith", "meetingLocation",
    "filters",
})

_NORMALIZERS = {
    "progress": clamp_progress,
    "status": normalize_status,
    "taskId": normalize_task_id,
    "reminderId": normalize_reminder_id,
    "priority": normalize_priority,
}


def _clean_slots(raw: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return (normalized slots, rejected raw values)."""
    slots: dict[str, Any] = {}
    rejected: dict[str, Any] = {}
    for name, value in raw.items():
        if name not in SLOT_NAMES or value is None:
            continue
        if isinstance(value, datetime):
            value = value.isoformat()
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        if name == "filters":
            if isinstance(value, dict):
                slots[name] = {k: v for k, v in value.items() if v not in (None, "", False)}
            continue

        normalizer = _NORMALIZERS.get(name)
        if normalizer is not None:
            normalized = normalizer(value)
            if normalized is None:
                rejected[name] = value
                continue
            value = normalized
        slots[name] = value
    return slots, rejected


class Intent(BaseModel):
    """A recognized user command: kind + named slots."""

    kind: IntentKind = IntentKind.UNKNOWN
    slots: dict[str, Any] = {}
    original_text: str = ""
    rejected: dict[str, Any] = {}   # raw values that failed normalization

    @model_validator(mode="before")
    @classmethod
    def normalize_slots(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        slots, rejected = _clean_slots(dict(data.get("slots") or {}))
        data = dict(data)
        data["slots"] = slots
        data["rejected"] = {**dict(data.get("rejected") or {}), **rejected}
        return data

    def get(self, name: str, default: Any = None) -> Any:
        return self.slots.get(name, default)

    @property
    def is_unknown(self) -> bool:
        return self.kind is IntentKind.UNKNOWN


def unknown(text: str) -> Intent:
    return Intent(kind=IntentKind.UNKNOWN, original_text=text)

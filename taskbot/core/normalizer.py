"""Canonical forms for phone numbers, task statuses and reference IDs.

Every function here is idempotent: normalizing an already-normalized value
returns it unchanged.
"""

from __future__ import annotations

import re

VALID_STATUSES = ("pending", "in-progress", "completed", "blocked", "cancelled")
VALID_PRIORITIES = ("low", "medium", "high", "critical")

_STATUS_SYNONYMS: dict[str, str] = {
    "completed": "completed",
    "complete": "completed",
    "done": "completed",
    "finished": "completed",
    "finish": "completed",
    "in-progress": "in-progress",
    "in progress": "in-progress",
    "inprogress": "in-progress",
    "in_progress": "in-progress",
    "started": "in-progress",
    "start": "in-progress",
    "working": "in-progress",
    "ongoing": "in-progress",
    "pending": "pending",
    "todo": "pending",
    "to-do": "pending",
    "to do": "pending",
    "not started": "pending",
    "blocked": "blocked",
    "block": "blocked",
    "stuck": "blocked",
    "cancelled": "cancelled",
    "canceled": "cancelled",
    "cancel": "cancelled",
}

_TRANSPORT_PREFIX_RE = re.compile(r"^[a-z]+:", re.IGNORECASE)
_PHONE_NOISE_RE = re.compile(r"[\s\-().]")
_PREFIXED_REF_RE = re.compile(r"^[A-Z]{2,10}-\d{4}-\d+$")


def normalize_phone(raw: str | None, country_code: str = "92") -> str:
    """Return a phone number as +<digits>.

    Handles transport prefixes ("whatsapp:+92..."), 00-prefixed international
    numbers and local mobile numbers ("03001234567" → "+923001234567").
    """
    if not raw:
        return ""
    value = _TRANSPORT_PREFIX_RE.sub("", raw.strip())
    value = _PHONE_NOISE_RE.sub("", value)

    if value.startswith("00"):
        value = "+" + value[2:]
    if value.startswith("0") and len(value) == 11 and value.isdigit():
        value = f"+{country_code}{value[1:]}"
    if value and value.isdigit():
        value = "+" + value
    return value


def sender_key(raw: str | None, country_code: str = "92") -> str:
    """Canonical key identifying a chat sender (used for user and state lookup)."""
    return normalize_phone(raw, country_code)


def normalize_status(value: str | None) -> str | None:
    """Map a free-form status word to its canonical value, or None if unknown."""
    if value is None:
        return None
    key = re.sub(r"\s+", " ", str(value).strip().lower())
    return _STATUS_SYNONYMS.get(key)


def normalize_priority(value: str | None) -> str | None:
    if value is None:
        return None
    key = str(value).strip().lower()
    if key == "urgent":
        return "critical"
    return key if key in VALID_PRIORITIES else None


def _normalize_reference(value: str | None, prefix: str, keep: tuple[str, ...] = ()) -> str | None:
    if value is None:
        return None
    ref = re.sub(r"\s+", "", str(value)).upper()
    if not ref:
        return None
    if ref.startswith(prefix) or any(ref.startswith(k) for k in keep):
        return ref
    if _PREFIXED_REF_RE.match(ref) and not keep:
        return ref
    return prefix + ref


def normalize_task_id(value: str | None) -> str | None:
    """"2026-0041" → "TASK-2026-0041"; already-prefixed references are kept."""
    return _normalize_reference(value, "TASK-")


def normalize_reminder_id(value: str | None) -> str | None:
    """"2026-0003" → "REM-2026-0003"; meeting IDs ("MTG-...") are kept."""
    return _normalize_reference(value, "REM-", keep=("MTG-",))


def clamp_progress(value: object) -> int | None:
    """Coerce a progress value to an int in [0, 100]; None when not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value != value:  # NaN
        return None
    if isinstance(value, (int, float)):
        number = int(value)
    else:
        match = re.search(r"-?\d+(?:\.\d+)?", str(value))
        if match is None:
            return None
        number = int(float(match.group()))
    return max(0, min(100, number))

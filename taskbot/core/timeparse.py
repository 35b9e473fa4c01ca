"""Natural-language time expressions → aware datetimes.

All functions take the current instant (`now`, timezone-aware, already in the
operating timezone) as an argument. Nothing here reads the clock, so relative
expressions always resolve against the instant of the request being handled.

Supported forms:
    ISO timestamps          2026-10-17T15:00, 2026-10-17T15:00:00+05:00
    relative offsets        in 10 minutes, in an hour, in 2 days
    day words               today, tonight, tomorrow, day after tomorrow, next week
    weekdays                friday, next monday, on tuesday
    dates                   17/10/2026, 17-10, 2026-10-17, 17th Oct, Oct 17
    clock times             3pm, 3:30 pm, 15:00, at 9, noon, midnight, morning
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_MONTHS = r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
_WEEKDAY_RE = r"(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday)"

_REL_RE = re.compile(
    r"\bin\s+(\d+|an?|one|half\s+an?)\s+(minutes?|mins?|hours?|hrs?|days?|weeks?)\b",
    re.IGNORECASE,
)
_AMPM_RE = re.compile(r"\b(\d{1,2})(?:[:.](\d{2}))?\s*([ap])\.?m\b\.?", re.IGNORECASE)
_HHMM_RE = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b")
_AT_HOUR_RE = re.compile(r"\bat\s+(\d{1,2})\b(?![/:.\-]\d)", re.IGNORECASE)
_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_NUMERIC_DATE_RE = re.compile(r"\b(\d{1,2})[/-](\d{1,2})(?:[/-](\d{2,4}))?\b")
_DAY_MONTH_RE = re.compile(rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+(?:of\s+)?({_MONTHS})\b", re.IGNORECASE)
_MONTH_DAY_RE = re.compile(rf"\b({_MONTHS})\s+(\d{{1,2}})(?:st|nd|rd|th)?\b", re.IGNORECASE)

_PART_OF_DAY = {"morning": (9, 0), "afternoon": (14, 0), "evening": (18, 0), "tonight": (21, 0)}

# Spans removed from free text when a time clause is pulled out of a sentence
_WHEN_SPAN_RE = re.compile(
    "|".join([
        r"\bin\s+(?:\d+|an?|one|half\s+an?)\s+(?:minutes?|mins?|hours?|hrs?|days?|weeks?)\b",
        rf"\b(?:on\s+)?(?:the\s+)?\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?{_MONTHS}\b(?:\s+\d{{4}})?",
        rf"\b(?:on\s+)?{_MONTHS}\s+\d{{1,2}}(?:st|nd|rd|th)?\b(?:,?\s+\d{{4}})?",
        r"\b(?:on\s+)?\d{4}-\d{2}-\d{2}(?:[t\s]\d{2}:\d{2}(?::\d{2})?)?\b",
        r"\b(?:on\s+)?\d{1,2}[/-]\d{1,2}(?:[/-]\d{2,4})?\b",
        r"\b(?:at\s+)?\d{1,2}(?:[:.]\d{2})?\s*[ap]\.?m\b\.?",
        r"\b(?:at\s+)?(?:[01]?\d|2[0-3]):[0-5]\d\b",
        r"\bat\s+\d{1,2}\b",
        r"\b(?:at\s+)?(?:noon|midnight)\b",
        rf"\b(?:on\s+)?(?:this\s+|next\s+)?{_WEEKDAY_RE}\b",
        r"\b(?:day\s+after\s+tomorrow|tomorrow|today|tonight|next\s+week)\b",
        r"\b(?:in\s+the\s+|this\s+)?(?:morning|afternoon|evening)\b",
    ]),
    re.IGNORECASE,
)

_TIME_HINT_RE = re.compile(
    r"\b(?:am|pm|today|tomorrow|tonight|noon|midnight|morning|afternoon|evening)\b"
    r"|\d{1,2}:\d{2}"
    r"|\b\d{1,2}\s*[ap]\.?m\b"
    r"|\bin\s+(?:\d+|an?|one)\s+\w"
    r"|\bat\s+\d"
    r"|\bnext\s+(?:week|month)\b"
    rf"|\b{_WEEKDAY_RE}\b"
    rf"|\b\d{{1,2}}(?:st|nd|rd|th)?\s+{_MONTHS}\b"
    r"|\b\d{4}-\d{2}-\d{2}\b"
    r"|\b\d{1,2}/\d{1,2}\b",
    re.IGNORECASE,
)


def looks_like_time(text: str | None) -> bool:
    """True when the text carries a time-like token (am/pm, today, 14:30, ...)."""
    if not text:
        return False
    return _TIME_HINT_RE.search(text) is not None


def end_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time(23, 59, 59), tzinfo=tz)


def next_weekday(now: datetime, weekday_name: str) -> date:
    """Next occurrence of a weekday, strictly after today (1-7 days ahead)."""
    target = WEEKDAYS.index(weekday_name.lower())
    days_ahead = (target - now.weekday()) % 7 or 7
    return (now + timedelta(days=days_ahead)).date()


# ---------------------------------------------------------------------------
# Component resolvers
# ---------------------------------------------------------------------------


def _parse_iso(raw: str, tz: tzinfo) -> datetime | None:
    candidate = raw.strip()
    if not re.match(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}", candidate):
        return None
    try:
        parsed = datetime.fromisoformat(candidate.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        # Bare timestamps are wall-clock time in the operating timezone
        parsed = parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


def _relative_offset(match: re.Match) -> timedelta:
    amount_text = match.group(1).lower()
    unit = match.group(2).lower()
    if amount_text.startswith("half"):
        amount = 0.5
    elif amount_text in ("a", "an", "one"):
        amount = 1
    else:
        amount = int(amount_text)

    if unit.startswith(("min",)):
        return timedelta(minutes=amount)
    if unit.startswith(("hour", "hr")):
        return timedelta(hours=amount)
    if unit.startswith("day"):
        return timedelta(days=amount)
    return timedelta(weeks=amount)


def _parse_calendar_date(span: str, now: datetime) -> date | None:
    """Parse "17/10", "17th Oct" etc. Day-first; year-less dates roll forward."""
    has_year = re.search(r"\d{4}|[/-]\d{1,2}[/-]\d{2}\b", span) is not None
    try:
        parsed = date_parser.parse(
            span, dayfirst=True, fuzzy=True,
            default=datetime(now.year, now.month, now.day),
        )
    except (ValueError, OverflowError):
        return None
    day = parsed.date()
    if not has_year and day < now.date():
        day = day + relativedelta(years=1)
    return day


def _resolve_day(lowered: str, now: datetime) -> date | None:
    if "day after tomorrow" in lowered:
        return (now + timedelta(days=2)).date()
    if re.search(r"\btomorrow\b", lowered):
        return (now + timedelta(days=1)).date()
    if re.search(r"\b(?:today|tonight)\b", lowered):
        return now.date()
    if re.search(r"\bnext\s+week\b", lowered):
        return (now + timedelta(days=7)).date()
    if re.search(r"\bnext\s+month\b", lowered):
        return (now + relativedelta(months=1)).date()

    weekday = re.search(rf"\b({_WEEKDAY_RE})\b", lowered)
    if weekday:
        return next_weekday(now, weekday.group(1))

    iso = _ISO_DATE_RE.search(lowered)
    if iso:
        try:
            return date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))
        except ValueError:
            return None

    for pattern in (_DAY_MONTH_RE, _MONTH_DAY_RE, _NUMERIC_DATE_RE):
        found = pattern.search(lowered)
        if found:
            return _parse_calendar_date(found.group(0), now)
    return None


def _resolve_clock(lowered: str) -> tuple[int, int] | None:
    if re.search(r"\bnoon\b", lowered):
        return 12, 0
    if re.search(r"\bmidnight\b", lowered):
        return 0, 0

    ampm = _AMPM_RE.search(lowered)
    if ampm:
        hour = int(ampm.group(1)) % 12
        minute = int(ampm.group(2) or 0)
        if ampm.group(3).lower() == "p":
            hour += 12
        if hour < 24 and minute < 60:
            return hour, minute

    hhmm = _HHMM_RE.search(lowered)
    if hhmm:
        return int(hhmm.group(1)), int(hhmm.group(2))

    at_hour = _AT_HOUR_RE.search(lowered)
    if at_hour:
        hour = int(at_hour.group(1))
        if hour <= 23:
            # "at 3" during office hours means 15:00
            return (hour + 12 if 1 <= hour <= 7 else hour), 0

    for word, clock in _PART_OF_DAY.items():
        if re.search(rf"\b{word}\b", lowered):
            return clock
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def resolve_when(text: str | None, now: datetime) -> datetime | None:
    """Resolve a reminder-style time expression to an aware datetime.

    A clock time with no day means the next occurrence of that time; a day
    with no clock time means 09:00 on that day. Returns None when the text
    carries no recognizable time.
    """
    if not text or not str(text).strip():
        return None
    tz = now.tzinfo
    raw = str(text).strip()

    iso = _parse_iso(raw, tz)
    if iso is not None:
        return iso

    lowered = raw.lower()
    rel = _REL_RE.search(lowered)
    if rel:
        return now + _relative_offset(rel)

    day = _resolve_day(lowered, now)
    clock = _resolve_clock(lowered)
    if day is None and clock is None:
        return None

    if day is None:
        candidate = datetime.combine(now.date(), time(*clock), tzinfo=tz)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    if clock is None:
        clock = (9, 0)
    return datetime.combine(day, time(*clock), tzinfo=tz)


def parse_deadline(text: str | None, now: datetime) -> datetime | None:
    """Resolve a task deadline clause.

    "tomorrow", "next week" and "next month" are offsets from now; "today",
    weekdays and calendar dates mean the end of that day. Anything with a
    clock time goes through `resolve_when`.
    """
    if not text or not str(text).strip():
        return None
    tz = now.tzinfo
    lowered = str(text).strip().lower()

    iso = _parse_iso(lowered, tz)
    if iso is not None:
        return iso
    if _resolve_clock(lowered) is not None or _REL_RE.search(lowered):
        return resolve_when(lowered, now)

    if re.fullmatch(r"today|tonight|eod|end of day", lowered):
        return end_of_day(now.date(), tz)
    if lowered == "tomorrow":
        return now + timedelta(days=1)
    if lowered == "next week":
        return now + timedelta(days=7)
    if lowered == "next month":
        return now + relativedelta(months=1)

    day = _resolve_day(lowered, now)
    if day is None:
        return None
    return end_of_day(day, tz)


def extract_when(text: str, now: datetime) -> tuple[datetime | None, str]:
    """Pull the time clause out of a sentence.

    Returns (resolved time or None, remaining text). Used for
    "remind me to call Ali tomorrow at 3pm" → (tomorrow 15:00, "call Ali").
    """
    spans = [m.group(0) for m in _WHEN_SPAN_RE.finditer(text)]
    if not spans:
        return None, text.strip()

    when = resolve_when(" ".join(spans), now)
    remainder = _WHEN_SPAN_RE.sub(" ", text)
    remainder = re.sub(r"\b(?:at|on|by)\s*$", "", remainder.strip(), flags=re.IGNORECASE)
    remainder = re.sub(r"\s+", " ", remainder).strip(" ,.-")
    return when, remainder


def utcnow() -> datetime:
    """Default clock for services; tests inject a fixed one instead."""
    return datetime.now(timezone.utc)

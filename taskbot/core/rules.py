"""
taskbot — Rule Matcher.

Cheap, deterministic recognition of chat commands before any network call.

The cascade is an ordered table of (matcher, extractor) rules. The first rule
whose matcher fires and whose extractor returns an Intent wins; an extractor
may return None to decline, letting later rules try. Precedence is therefore
exactly the order of `RULES`, and each rule can be tested on its own.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from taskbot.core.intent import Intent, IntentKind, unknown
from taskbot.core.timeparse import extract_when, parse_deadline

# ---------------------------------------------------------------------------
# Shared fragments
# ---------------------------------------------------------------------------

# Canonical reference, e.g. TASK-2026-0041
_REF = r"([A-Z]{2,10}-\d{4}-\d+)"
# Also accepts the bare numeric form "2026-0041" (re-prefixed by the normalizer)
_LOOSE_REF = r"((?:[A-Z]{2,10}-)?\d{4}-\d+)"
_STATUS = r"(completed|complete|done|finished|in[- ]?progress|started|working|pending|todo|blocked|stuck|cancell?ed|canceled)"
_SEP = r"(?:\s*:\s*|\s+-\s+|\s+)"
_END = r"\s*[.!]*$"

_WEEKDAY = r"(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday)"
_MONTH = r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*"

_REF_RE = re.compile(r"\b" + _REF, re.IGNORECASE)
_LOOSE_REF_RE = re.compile(r"\b" + _LOOSE_REF + r"\b", re.IGNORECASE)
_PERCENT_RE = re.compile(r"\b(\d{1,3})\s*%")
_STATUS_KEYWORD_RE = re.compile(
    r"\b(completed|done|finished|in[- ]?progress|started|blocked|pending|cancelled)\b",
    re.IGNORECASE,
)
# Words that make free text look like a status change rather than a comment
_UPDATE_STATUS_WORDS_RE = re.compile(r"\b(completed|done|in[- ]?progress|blocked|pending)\b", re.IGNORECASE)
_BARE_PERCENT_RE = re.compile(r"^\d+\s*%?$")

_COMMAND_VERB_RE = re.compile(
    r"^(?:create|new|add|assign|remind|schedule|book|set|cancel|delete|remove|mark|update|complete|finish|start|block)\b",
    re.IGNORECASE,
)

_PRIORITY_LABELLED_RE = re.compile(r"\bpriority\s*[:\-]?\s*(low|medium|high|critical|urgent)\b", re.IGNORECASE)
_PRIORITY_TRAILING_RE = re.compile(r"\b(low|medium|high|critical|urgent)[\s-]+priority\b", re.IGNORECASE)
_DEADLINE_RE = re.compile(
    r"\b(?:due|by|deadline)\s*:?\s*(?:on\s+)?("
    r"today|tonight|tomorrow|next\s+week|next\s+month"
    rf"|(?:next\s+|this\s+)?{_WEEKDAY}"
    r"|\d{1,2}[/-]\d{1,2}[/-]\d{2,4}"
    r"|\d{4}-\d{2}-\d{2}"
    rf"|\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?{_MONTH}(?:\s+\d{{4}})?"
    r")\b"
    r"(\s+(?:at\s+)?\d{1,2}(?::\d{2})?\s*(?:[ap]\.?m\b\.?)?)?",
    re.IGNORECASE,
)

_VERB_STATUS = {
    "complete": "completed",
    "finish": "completed",
    "start": "in-progress",
    "begin": "in-progress",
    "block": "blocked",
    "cancel": "cancelled",
}


@dataclass(frozen=True)
class ParseContext:
    text: str          # stripped original message
    lowered: str
    now: datetime      # aware, operating timezone


@dataclass(frozen=True)
class Rule:
    name: str
    match: Callable[[ParseContext], Any]
    extract: Callable[[Any, ParseContext], Intent | None]


def _regex(*patterns: str) -> Callable[[ParseContext], re.Match | None]:
    """Matcher trying each anchored pattern in turn (case-insensitive)."""
    compiled = [re.compile(p, re.IGNORECASE) for p in patterns]

    def matcher(ctx: ParseContext) -> re.Match | None:
        for pattern in compiled:
            found = pattern.match(ctx.text)
            if found:
                return found
        return None

    return matcher


def _intent(kind: IntentKind, ctx: ParseContext, **slots: Any) -> Intent:
    return Intent(kind=kind, slots=slots, original_text=ctx.text)


def _clean_text(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip().strip("\"'").strip()


# ---------------------------------------------------------------------------
# Task detail sub-parser (priority / deadline / description)
# ---------------------------------------------------------------------------


def parse_task_details(text: str, now: datetime) -> dict[str, Any]:
    """Split "Review budget, high priority, due tomorrow" into task slots."""
    title = text.strip()
    priority = "medium"
    deadline: datetime | None = None
    description: str | None = None

    labelled = _PRIORITY_LABELLED_RE.search(title)
    trailing = _PRIORITY_TRAILING_RE.search(title)
    found = labelled or trailing
    if found:
        priority = found.group(1).lower()
        title = title.replace(found.group(0), " ")

    due = _DEADLINE_RE.search(title)
    if due:
        clause = due.group(1) + (due.group(2) or "")
        deadline = parse_deadline(clause, now)
        title = title.replace(due.group(0), " ")

    # Collapse the empty comma clauses left behind by removed fragments
    title = re.sub(r"\s*,\s*(?:,\s*)+", ", ", title)
    title = re.sub(r"\s+", " ", title).strip(" ,;-")

    comma = title.find(",")
    if comma > 10 and len(title[comma + 1:].strip()) > 20:
        description = title[comma + 1:].strip()
        title = title[:comma].strip()

    return {
        "title": _clean_text(title),
        "priority": priority,
        "deadline": deadline,
        "description": description,
    }


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------


def _match_status_and_progress(ctx: ParseContext) -> tuple[str, str, str] | None:
    ref = _REF_RE.search(ctx.text)
    percent = _PERCENT_RE.search(ctx.text)
    status = _STATUS_KEYWORD_RE.search(ctx.text)
    if ref and percent and status:
        return ref.group(1), status.group(1), percent.group(1)
    return None


def _extract_status_and_progress(found: tuple[str, str, str], ctx: ParseContext) -> Intent:
    task_id, status, progress = found
    return _intent(
        IntentKind.UPDATE_STATUS_AND_PROGRESS, ctx,
        taskId=task_id, status=status, progress=int(progress),
    )


def _phrases(*words: str) -> Callable[[ParseContext], bool]:
    vocabulary = frozenset(words)
    return lambda ctx: ctx.lowered.strip(" !.") in vocabulary


def _constant(kind: IntentKind) -> Callable[[Any, ParseContext], Intent]:
    return lambda _found, ctx: _intent(kind, ctx)


def _is_query(ctx: ParseContext) -> bool:
    return _LOOSE_REF_RE.search(ctx.text) is None and _COMMAND_VERB_RE.match(ctx.text) is None


def _match_list_tasks(ctx: ParseContext) -> bool:
    return _is_query(ctx) and re.search(r"\btasks\b", ctx.lowered) is not None


def _extract_list_tasks(_found: Any, ctx: ParseContext) -> Intent:
    lowered = ctx.lowered
    filters: dict[str, Any] = {}

    if "pending" in lowered:
        filters["status"] = "pending"
    if re.search(r"in[- ]?progress", lowered):
        filters["status"] = "in-progress"
    if re.search(r"\b(?:completed|done|finished)\b", lowered):
        filters["status"] = "completed"
    if "blocked" in lowered:
        filters["status"] = "blocked"

    priority = re.search(r"\b(low|medium|high|critical)[\s-]+priority\b", lowered)
    if priority:
        filters["priority"] = priority.group(1)
    elif re.search(r"\b(?:critical|urgent)\b", lowered):
        filters["priority"] = "critical"

    if "overdue" in lowered:
        filters["overdue"] = True

    return _intent(IntentKind.LIST_TASKS, ctx, filters=filters)


def _match_list_deadlines(ctx: ParseContext) -> bool:
    return _is_query(ctx) and re.search(r"\b(?:deadlines|due dates|due soon)\b", ctx.lowered) is not None


def _match_list_reminders(ctx: ParseContext) -> bool:
    return _is_query(ctx) and re.search(r"\b(?:reminders|meetings)\b", ctx.lowered) is not None


def _extract_view(found: re.Match, ctx: ParseContext) -> Intent:
    return _intent(IntentKind.VIEW_TASK, ctx, taskId=found.group(1))


def _extract_create(found: re.Match, ctx: ParseContext) -> Intent:
    details = parse_task_details(found.group(1), ctx.now)
    return _intent(IntentKind.CREATE_TASK, ctx, **details)


def _extract_create_empty(_found: re.Match, ctx: ParseContext) -> Intent:
    return _intent(IntentKind.CREATE_TASK, ctx)


def _extract_reminder(found: re.Match, ctx: ParseContext) -> Intent:
    when, rest = extract_when(found.group(1) or "", ctx.now)
    rest = re.sub(r"^(?:to|about|of|that|for)\s+", "", rest, flags=re.IGNORECASE)
    title = _clean_text(rest) or None
    return _intent(
        IntentKind.SET_REMINDER, ctx,
        reminderTime=when, reminderTitle=title, reminderMessage=title,
    )


_MEETING_WITH_RE = re.compile(r"\bwith\s+(.+?)(?=\s+(?:about|regarding|re|at|in|on)\b|$)", re.IGNORECASE)
_MEETING_ABOUT_RE = re.compile(r"\b(?:about|regarding|re:?)\s+(.+?)(?=\s+(?:with|at|in)\b|$)", re.IGNORECASE)
_MEETING_PLACE_RE = re.compile(r"\b(?:at|in)\s+(?:the\s+)?(.+?)(?=\s+(?:with|about|regarding)\b|$)", re.IGNORECASE)


def _extract_meeting(found: re.Match, ctx: ParseContext) -> Intent:
    when, rest = extract_when(found.group(1) or "", ctx.now)
    with_match = _MEETING_WITH_RE.search(rest)
    about_match = _MEETING_ABOUT_RE.search(rest)
    place_match = _MEETING_PLACE_RE.search(rest)
    return _intent(
        IntentKind.SCHEDULE_MEETING, ctx,
        reminderTime=when,
        meetingWith=_clean_text(with_match.group(1)) if with_match else None,
        meetingSubject=_clean_text(about_match.group(1)) if about_match else None,
        meetingLocation=_clean_text(place_match.group(1)) if place_match else None,
    )


def _split_assignee(assignee: str) -> tuple[str, str]:
    """"Ali due friday, high priority" → ("Ali", "due friday, high priority")."""
    name, _, extra = assignee.partition(",")
    extra = extra.strip()
    cut = len(name)
    for pattern in (_DEADLINE_RE, _PRIORITY_LABELLED_RE, _PRIORITY_TRAILING_RE):
        found = pattern.search(name)
        if found:
            cut = min(cut, found.start())
    tail = name[cut:].strip()
    if tail:
        extra = f"{tail}, {extra}" if extra else tail
    return _clean_text(name[:cut]), extra


def _extract_assign_to(found: re.Match, ctx: ParseContext) -> Intent:
    title_part = found.group(1)
    assignee, extra = _split_assignee(found.group(2))
    details = parse_task_details(f"{title_part}, {extra}" if extra else title_part, ctx.now)
    return _intent(IntentKind.ASSIGN_TASK, ctx, assigneeName=assignee, **details)


def _extract_assign_for(found: re.Match, ctx: ParseContext) -> Intent:
    details = parse_task_details(found.group(2), ctx.now)
    return _intent(IntentKind.ASSIGN_TASK, ctx, assigneeName=_clean_text(found.group(1)), **details)


def _extract_status(found: re.Match, ctx: ParseContext) -> Intent:
    return _intent(IntentKind.UPDATE_STATUS, ctx, taskId=found.group(1), status=found.group(2))


def _extract_status_verb(found: re.Match, ctx: ParseContext) -> Intent:
    verb = found.group(1).lower()
    return _intent(IntentKind.UPDATE_STATUS, ctx, taskId=found.group(2), status=_VERB_STATUS[verb])


def _extract_cancel_task(found: re.Match, ctx: ParseContext) -> Intent:
    task_id = found.group(1) if found.lastindex else None
    return _intent(IntentKind.CANCEL_TASK, ctx, taskId=task_id)


def _extract_cancel_reminder(found: re.Match, ctx: ParseContext) -> Intent:
    reminder_id = found.group(1) if found.lastindex else None
    return _intent(IntentKind.CANCEL_REMINDER, ctx, reminderId=reminder_id)


def _extract_progress(found: re.Match, ctx: ParseContext) -> Intent:
    return _intent(IntentKind.UPDATE_PROGRESS, ctx, taskId=found.group(1), progress=int(found.group(2)))


def _extract_add_update(found: re.Match, ctx: ParseContext) -> Intent | None:
    message = _clean_text(found.group(2))
    if _BARE_PERCENT_RE.match(message) or _UPDATE_STATUS_WORDS_RE.search(message):
        return None
    return _intent(IntentKind.ADD_UPDATE, ctx, taskId=found.group(1), message=message)


def _extract_blocker(found: re.Match, ctx: ParseContext) -> Intent:
    return _intent(
        IntentKind.REPORT_BLOCKER, ctx,
        taskId=found.group(1), blocker=_clean_text(found.group(2)),
    )


# ---------------------------------------------------------------------------
# The cascade; earlier patterns take precedence
# ---------------------------------------------------------------------------

RULES: tuple[Rule, ...] = (
    # 1. Combined status + progress in one message
    Rule("status_and_progress", _match_status_and_progress, _extract_status_and_progress),

    # 2. Zero-argument commands
    Rule("help", _phrases("help", "commands", "?", "menu", "/help"), _constant(IntentKind.HELP)),
    Rule(
        "welcome",
        _phrases("hi", "hello", "hey", "start", "/start", "salam", "assalam o alaikum", "assalamualaikum"),
        _constant(IntentKind.WELCOME),
    ),
    Rule("status", _phrases("status", "summary", "dashboard", "my status"), _constant(IntentKind.STATUS)),

    # 3. Listings
    Rule("list_tasks", _match_list_tasks, _extract_list_tasks),
    Rule("list_deadlines", _match_list_deadlines, _constant(IntentKind.LIST_DEADLINES)),
    Rule("list_reminders", _match_list_reminders, _constant(IntentKind.LIST_REMINDERS)),

    # 4. Detail view
    Rule(
        "view_task",
        _regex(
            rf"^(?:show|view|get|open|details?(?:\s+(?:of|for))?)\s+(?:me\s+)?(?:task\s+)?{_LOOSE_REF}\s*\??$",
            rf"^(?:task\s+)?{_REF}\s*\??$",
        ),
        _extract_view,
    ),

    # 5. Creation
    Rule(
        "create_task_named",
        _regex(r"^(?:create|new|add)\s+(?:a\s+)?task\s+(?:called|named|titled)\s*:?\s*(.+)$"),
        _extract_create,
    ),
    Rule(
        "create_task",
        _regex(
            r"^(?:create|new|add)\s+(?:a\s+)?task(?!\s+for\s+[^:]+:)(?:\s*:\s*|\s+)(.+)$",
            rf"^task(?:\s*:\s*|\s+)(?!\s*{_LOOSE_REF})(.+)$",
        ),
        _extract_create,
    ),
    Rule("create_task_empty", _regex(r"^(?:create|new|add)\s+(?:a\s+)?task\s*:?\s*$"), _extract_create_empty),
    Rule(
        "set_reminder",
        _regex(
            r"^(?:please\s+)?remind\s+me\b\s*(.*)$",
            r"^(?:set|add|create)\s+(?:a\s+)?reminder\b\s*(.*)$",
        ),
        _extract_reminder,
    ),
    Rule(
        "schedule_meeting",
        _regex(r"^(?:schedule|book|set\s+up|arrange)\s+(?:a\s+)?meeting\b\s*(.*)$"),
        _extract_meeting,
    ),

    # 6. Assignment: the two phrasings swap which group is the assignee
    Rule("assign_to", _regex(r"^(?:assign|create)\s+(?:a\s+)?task\s*:?\s*(.+)\s+to\s+(.+)$"), _extract_assign_to),
    Rule(
        "assign_for",
        _regex(
            r"^(?:create|new|add|assign)\s+(?:a\s+)?task\s+for\s+([^:]+?)\s*:\s*(.+)$",
        ),
        _extract_assign_for,
    ),

    # 7. Status changes, deletions
    Rule(
        "status_change",
        _regex(
            rf"^(?:task\s+)?{_LOOSE_REF}\s*:?\s+(?:is\s+)?(?:now\s+)?(?:marked\s+(?:as\s+)?)?{_STATUS}{_END}",
            rf"^(?:mark|set|update|change)\s+(?:task\s+)?{_LOOSE_REF}\s+(?:status\s+)?(?:as\s+|to\s+)?{_STATUS}{_END}",
        ),
        _extract_status,
    ),
    Rule(
        "status_verb",
        _regex(rf"^(complete|finish|start|begin|block)\s+(?:task\s+)?{_LOOSE_REF}{_END}"),
        _extract_status_verb,
    ),
    Rule(
        "cancel_reminder",
        _regex(
            r"^(?:cancel|delete|remove)\s+(?:my\s+)?(?:(?:reminder|meeting)\s+)?((?:REM|MTG)-\d{4}-\d+)" + _END,
            r"^(?:cancel|delete|remove)\s+(?:my\s+|the\s+)?(?:reminder|meeting)\s+(\S*\d\S*)" + _END,
            r"^(?:cancel|delete|remove)\s+(?:my\s+|the\s+|a\s+)?(?:reminder|meeting)" + _END,
        ),
        _extract_cancel_reminder,
    ),
    Rule(
        "cancel_task",
        _regex(
            rf"^(?:cancel|delete|remove)\s+(?:task\s+)?{_LOOSE_REF}{_END}",
            r"^(?:cancel|delete|remove)\s+(?:a\s+|the\s+|my\s+)?task" + _END,
        ),
        _extract_cancel_task,
    ),

    # 8. Progress only
    Rule(
        "progress",
        _regex(
            rf"^(?:update\s+|set\s+)?(?:task\s+)?{_LOOSE_REF}{_SEP}(?:progress\s*:?\s*)?(?:is\s+|to\s+|at\s+)?(\d{{1,3}})\s*%?{_END}",
            rf"^progress\s+(?:of\s+|for\s+)?(?:task\s+)?{_LOOSE_REF}{_SEP}(?:is\s+|to\s+|at\s+)?(\d{{1,3}})\s*%?{_END}",
        ),
        _extract_progress,
    ),

    # 9. Free-text update / comment (declines status-like or bare-percent text)
    Rule(
        "add_update",
        _regex(
            rf"^(?:add\s+)?(?:an?\s+)?(?:update|comment|note)\s+(?:to\s+|for\s+|on\s+)?(?:task\s+)?{_LOOSE_REF}{_SEP}(.+)$",
            rf"^(?:update\s+)?(?:task\s+)?{_LOOSE_REF}{_SEP}(.+)$",
        ),
        _extract_add_update,
    ),

    # 10. Blockers
    Rule(
        "report_blocker",
        _regex(
            rf"^(?:task\s+)?{_LOOSE_REF}\s+(?:is\s+)?blocked(?:\s*:\s*|\s+(?:by|on|because(?:\s+of)?|due\s+to)\s+|\s+-\s+|\s+)(.+)$",
            rf"^(?:report\s+)?blocker\s+(?:for\s+|on\s+)?(?:task\s+)?{_LOOSE_REF}{_SEP}(.+)$",
        ),
        _extract_blocker,
    ),
)


def match_rules(text: str, now: datetime) -> Intent:
    """Run the cascade; returns an `unknown` Intent when nothing matches."""
    stripped = text.strip()
    ctx = ParseContext(text=stripped, lowered=stripped.lower(), now=now)
    if not stripped:
        return unknown(text)

    for rule in RULES:
        found = rule.match(ctx)
        if not found:
            continue
        intent = rule.extract(found, ctx)
        if intent is not None:
            return intent
    return unknown(stripped)


def find_rule(name: str) -> Rule:
    """Look up a rule by name (used by tests to exercise rules in isolation)."""
    for rule in RULES:
        if rule.name == name:
            return rule
    raise KeyError(name)

"""
taskbot — WhatsApp message templates.

Plain-text bodies for every reply and notification. Datetimes arrive as
aware UTC values and are rendered in the operating timezone passed in by
the caller.
"""

from __future__ import annotations

import math
from datetime import datetime, tzinfo
from typing import TYPE_CHECKING

from taskbot.core.normalizer import VALID_STATUSES

if TYPE_CHECKING:
    from taskbot.data.models import Reminder, Task, TaskUpdate, User

HEADER = "HRMS"
MAX_LISTED_TASKS = 10


def _title(text: str) -> str:
    return f"{HEADER} - {text}"


# ---------------------------------------------------------------------------
# Date formatting
# ---------------------------------------------------------------------------


def fmt_date(value: datetime | None, tz: tzinfo, empty: str = "Not set") -> str:
    """17 Oct 2026"""
    if value is None:
        return empty
    return value.astimezone(tz).strftime("%d %b %Y")


def fmt_time(value: datetime, tz: tzinfo) -> str:
    """03:00 PM"""
    return value.astimezone(tz).strftime("%I:%M %p")


def fmt_when(value: datetime, tz: tzinfo) -> str:
    """Saturday, 17 October 2026 at 03:00 PM"""
    local = value.astimezone(tz)
    return f"{local.strftime('%A, %d %B %Y')} at {fmt_time(local, tz)}"


def _name(user: User | None, fallback: str = "N/A") -> str:
    return user.full_name if user else fallback


# ---------------------------------------------------------------------------
# Static replies
# ---------------------------------------------------------------------------

WELCOME = f"""{_title("WhatsApp Assistant")}

Your account is connected. You can manage tasks using simple commands:

CREATE TASK:
"Create task: Review budget report by Friday"
"New task: Prepare presentation, high priority, due tomorrow"

UPDATE TASK:
"TASK-2026-0001 progress 50%"
"Task TASK-2026-0001 is completed"

VIEW TASKS:
"Show my tasks"
"Pending tasks"

REMINDERS:
"Remind me to call the bank tomorrow at 3pm"

VOICE NOTES:
Send a voice note describing your task update.

Type "help" for the complete command list."""

HELP = f"""{_title("Command Reference")}

TASK MANAGEMENT:
- "Create task: [title]"
- "Create task: [title], priority [low/medium/high/critical], due [date]"
- "Show my tasks" / "Show task [ID]"
- "Deadlines" - tasks due in the next 7 days
- "Cancel task [ID]"

FOR MANAGERS:
- "Assign task: [title] to [name]"
- "Create task for [name]: [title]"

STATUS UPDATES:
- "[ID] progress 50%"
- "[ID] is completed"
- "[ID] completed 80%"
- "[ID] blocked: [reason]"
- "Update [ID]: [note]"

REMINDERS & MEETINGS:
- "Remind me to [something] [when]"
- "Schedule meeting with [name] about [subject] [when]"
- "My reminders" / "Cancel reminder [ID]"

OTHER:
- "status" - Your task summary
- "help" - This reference

Reply "cancel" at any time to abandon a half-finished command."""

NOT_REGISTERED = f"""{_title("Registration Required")}

Your WhatsApp number is not linked to an HRMS account.

Please update your profile with your WhatsApp number to use this service."""

WHATSAPP_DISABLED = f"""{_title("Notifications Disabled")}

WhatsApp access is turned off for your account. Enable it in your profile settings to use this service."""

ACTION_CANCELLED = f"{HEADER}\n\nAction cancelled. How can I help you?"

NOTHING_TO_CANCEL = f"{HEADER}\n\nThere is nothing to cancel. How can I help you?"

VOICE_PROCESSING = "Processing your voice note..."

GENERIC_ERROR = "Something went wrong while processing your request. Please try again."


def voice_received(transcription: str) -> str:
    return f'Voice note received. Transcription: "{transcription}"\n\nProcessing your request...'


def not_recognized(text: str) -> str:
    return f'{_title("Command Not Recognized")}\n\nYour message: "{text or "N/A"}"\n\nType "help" for available commands.'


def error(message: str) -> str:
    return f'{_title("Error")}\n\n{message}\n\nType "help" for available commands.'


def invalid_status(value: str) -> str:
    return f'"{value}" is not a valid status.\n\nValid statuses: {", ".join(VALID_STATUSES)}'


def permission_denied(action: str, allowed_roles: list[str]) -> str:
    roles = ", ".join(allowed_roles) if allowed_roles else "authorized users"
    return f"You do not have permission to {action}.\n\nAllowed roles: {roles}"


def more_info_needed(prompt: str) -> str:
    return f'{_title("More Info Needed")}\n\n{prompt}'


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def task_created(task: Task, assignee: User | None, tz: tzinfo) -> str:
    return f"""{_title("Task Created")}

Title: {task.title}
Reference: {task.reference}
Priority: {task.priority.upper()}
Deadline: {fmt_date(task.deadline, tz, "Not specified")}
Assigned to: {_name(assignee, "You")}

You will receive reminders before the deadline."""


def task_assigned_confirmation(task: Task, assignee: User, tz: tzinfo) -> str:
    return f"""{_title("Task Assigned")}

Title: {task.title}
Reference: {task.reference}
Assigned to: {assignee.full_name}
Priority: {task.priority.upper()}
Deadline: {fmt_date(task.deadline, tz)}"""


def task_assigned_notice(task: Task, assigner: User | None, tz: tzinfo) -> str:
    description = f"\n\nDescription:\n{task.description}" if task.description else ""
    return f"""{_title("New Task Assignment")}

Title: {task.title}
Reference: {task.reference}
Priority: {task.priority.upper()}
Deadline: {fmt_date(task.deadline, tz, "Not specified")}
Assigned by: {_name(assigner, "Management")}{description}

Please acknowledge receipt and provide updates as you progress."""


def task_updated(task: Task, change: str) -> str:
    lines = [
        _title("Task Updated"),
        "",
        f"Title: {task.title}",
        f"Reference: {task.reference}",
        f"Status: {task.status.upper()}",
        f"Progress: {task.progress}%",
    ]
    if change == "status":
        lines += ["", f"Status changed to: {task.status}"]
    elif change == "progress":
        lines += ["", f"Progress updated to: {task.progress}%"]
    return "\n".join(lines)


def update_added(task: Task, message: str) -> str:
    return f"""{_title("Update Added")}

Reference: {task.reference}
Update: "{message}"

The update has been recorded."""


def blocker_reported(task: Task, blocker: str) -> str:
    return f"""{_title("Blocker Reported")}

Reference: {task.reference}
Issue: "{blocker}"

Task status has been changed to BLOCKED. Management will be notified."""


def blocker_notice(task: Task, reporter: User, blocker: str) -> str:
    return f"""{_title("Blocker Raised")}

Title: {task.title}
Reference: {task.reference}
Reported by: {reporter.full_name}
Issue: "{blocker}\""""


def task_cancelled(task: Task) -> str:
    return f"{_title('Task Cancelled')}\n\nReference: {task.reference}\nTitle: {task.title}\n\nThis task has been cancelled successfully."


def task_list(tasks: list[Task], tz: tzinfo, heading: str = "Your Tasks") -> str:
    if not tasks:
        return f"{_title(heading)}\n\nNo matching tasks at this time."

    parts = [f"{_title(heading)} ({len(tasks)})", ""]
    for index, task in enumerate(tasks[:MAX_LISTED_TASKS], start=1):
        parts.append(f"{index}. {task.title}")
        parts.append(f"   Ref: {task.reference} | Priority: {task.priority.upper()}")
        parts.append(f"   Status: {task.status.upper()} | Progress: {task.progress}%")
        parts.append(f"   Deadline: {fmt_date(task.deadline, tz)}")
        parts.append("")
    if len(tasks) > MAX_LISTED_TASKS:
        parts.append(f"...and {len(tasks) - MAX_LISTED_TASKS} more.")
    return "\n".join(parts).rstrip()


def task_details(
    task: Task,
    tz: tzinfo,
    assignee: User | None,
    assigner: User | None,
    secondary: list[User],
    updates: list[TaskUpdate],
) -> str:
    lines = [
        _title("Task Details"),
        "",
        f"Reference: {task.reference}",
        f"Title: {task.title}",
    ]
    if task.description:
        lines.append(f"Description: {task.description}")
    lines += [
        f"Status: {task.status.upper()}",
        f"Priority: {task.priority.upper()}",
        f"Progress: {task.progress}%",
        f"Deadline: {fmt_date(task.deadline, tz)}",
        "",
        f"Assigned to: {_name(assignee)}",
        f"Assigned by: {_name(assigner)}",
    ]
    if secondary:
        lines.append(f"Secondary: {', '.join(u.full_name for u in secondary)}")
    if task.blocker:
        lines.append(f"Blocker: {task.blocker}")
    if updates:
        lines += ["", "Recent Updates:"]
        for update in updates[:3]:
            when = update.created_at.astimezone(tz).strftime("%d %b") if update.created_at else ""
            lines.append(f"- {update.message} ({when})")
    return "\n".join(lines)


def deadline_list(tasks: list[Task], now: datetime, tz: tzinfo) -> str:
    if not tasks:
        return f"{_title('Upcoming Deadlines')}\n\nNo deadlines in the next 7 days."

    parts = [_title("Upcoming Deadlines (Next 7 Days)"), ""]
    for index, task in enumerate(tasks, start=1):
        days = max(0, math.ceil((task.deadline - now).total_seconds() / 86400))
        parts.append(f"{index}. {task.title}")
        parts.append(f"   Ref: {task.reference}")
        parts.append(f"   Deadline: {fmt_date(task.deadline, tz)} ({days} day{'s' if days != 1 else ''} left)")
        parts.append(f"   Progress: {task.progress}%")
        parts.append("")
    return "\n".join(parts).rstrip()


def status_summary(user: User, tasks: list[Task], now: datetime) -> str:
    counts = {status: 0 for status in ("pending", "in-progress", "completed", "blocked")}
    overdue = 0
    for task in tasks:
        if task.status in counts:
            counts[task.status] += 1
        if task.deadline and task.deadline < now and not task.is_closed:
            overdue += 1
    return f"""{_title("Task Summary")}

Employee: {user.full_name}

Total Tasks: {len(tasks)}
Pending: {counts["pending"]}
In Progress: {counts["in-progress"]}
Completed: {counts["completed"]}
Blocked: {counts["blocked"]}
Overdue: {overdue}

Type "show my tasks" to see the full list."""


# ---------------------------------------------------------------------------
# Reminders and meetings
# ---------------------------------------------------------------------------


def reminder_set(reminder: Reminder, tz: tzinfo) -> str:
    return f"""{_title("Reminder Set")}

Reference: {reminder.reference}
Title: {reminder.title}
When: {fmt_when(reminder.due_at, tz)}

You will receive a WhatsApp notification at the scheduled time."""


def meeting_scheduled(meeting: Reminder, subject: str, tz: tzinfo) -> str:
    lines = [_title("Meeting Scheduled"), "", f"Reference: {meeting.reference}", f"Subject: {subject}"]
    if meeting.meeting_with:
        lines.append(f"With: {meeting.meeting_with}")
    if meeting.meeting_location:
        lines.append(f"Location: {meeting.meeting_location}")
    lines.append(f"When: {fmt_when(meeting.due_at, tz)}")
    lines += ["", "You will receive a WhatsApp reminder at the scheduled time."]
    return "\n".join(lines)


def reminder_list(reminders: list[Reminder], tz: tzinfo) -> str:
    if not reminders:
        return (
            f"{_title('No Upcoming Reminders')}\n\nYou have no upcoming reminders or meetings.\n\n"
            'To set a reminder, say: "Remind me about [something] at [time] on [date]"'
        )
    parts = [_title("Your Upcoming Reminders"), ""]
    for index, reminder in enumerate(reminders[:MAX_LISTED_TASKS], start=1):
        local = reminder.due_at.astimezone(tz)
        parts.append(f"{index}. {reminder.title}")
        parts.append(f"   ID: {reminder.reference}")
        parts.append(f"   When: {local.strftime('%d %b %Y')} at {fmt_time(local, tz)}")
        if reminder.meeting_with:
            parts.append(f"   With: {reminder.meeting_with}")
        if reminder.meeting_location:
            parts.append(f"   Location: {reminder.meeting_location}")
        parts.append("")
    parts.append('To cancel, say: "Cancel reminder [ID]"')
    return "\n".join(parts)


def reminder_cancelled(reminder: Reminder) -> str:
    what = "Meeting" if reminder.is_meeting else "Reminder"
    return (
        f"{_title(what + ' Cancelled')}\n\nReference: {reminder.reference}\n"
        f"Title: {reminder.title}\n\nThis {what.lower()} has been cancelled."
    )


def reminder_due(reminder: Reminder, tz: tzinfo) -> str:
    """Notification for a standalone reminder or meeting reaching its time."""
    if reminder.is_meeting:
        lines = [_title("Meeting Reminder"), "", reminder.title]
        if reminder.meeting_with:
            lines.append(f"With: {reminder.meeting_with}")
        if reminder.meeting_location:
            lines.append(f"Location: {reminder.meeting_location}")
    else:
        lines = [_title("Reminder"), "", reminder.title]
        if reminder.body and reminder.body != reminder.title:
            lines += ["", reminder.body]
    lines += ["", f"Reference: {reminder.reference}", f"Time: {fmt_time(reminder.due_at, tz)}"]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Dispatcher notifications
# ---------------------------------------------------------------------------


def deadline_reminder(task: Task, time_left: str, tz: tzinfo) -> str:
    return f"""{_title("Deadline Reminder")}

Title: {task.title}
Reference: {task.reference}
Deadline: {fmt_date(task.deadline, tz)} at {fmt_time(task.deadline, tz)}
Time Remaining: {time_left}

Current Status: {task.status}
Progress: {task.progress}%

Please update your progress or contact your supervisor if assistance is required."""


def task_overdue(task: Task, tz: tzinfo) -> str:
    return f"""{_title("Overdue Task Notice")}

Title: {task.title}
Reference: {task.reference}
Original Deadline: {fmt_date(task.deadline, tz)}

Current Status: {task.status}
Progress: {task.progress}%

This task requires immediate attention. Please update your progress or escalate to your supervisor."""


def daily_digest(user: User, tasks: list[Task], now: datetime, tz: tzinfo) -> str:
    """Morning summary: open, in-progress, due-today and overdue counts plus priority items."""
    local_now = now.astimezone(tz)
    today = local_now.date()
    open_tasks = [t for t in tasks if not t.is_closed]
    in_progress = [t for t in open_tasks if t.status == "in-progress"]
    due_today = [t for t in open_tasks if t.deadline and t.deadline >= now and t.deadline.astimezone(tz).date() == today]
    overdue = [t for t in open_tasks if t.deadline and t.deadline < now]

    parts = [
        _title("Daily Task Summary"),
        local_now.strftime("%A, %d %B %Y"),
        "",
        f"Good morning, {user.first_name}.",
        "",
        "TASK OVERVIEW:",
        f"- Open Tasks: {len(open_tasks)}",
        f"- In Progress: {len(in_progress)}",
        f"- Due Today: {len(due_today)}",
        f"- Overdue: {len(overdue)}",
        "",
    ]
    priority = (overdue + due_today)[:5]
    if priority:
        parts.append("PRIORITY ITEMS:")
        for index, task in enumerate(priority, start=1):
            label = "OVERDUE" if task in overdue else "Due Today"
            parts.append(f"{index}. {task.title}")
            parts.append(f"   Ref: {task.reference} | {label}")
        parts.append("")

    if not open_tasks:
        parts.append("All tasks are up to date. Have a productive day.")
    else:
        parts.append('Reply "show my tasks" for the full list.')
    return "\n".join(parts)

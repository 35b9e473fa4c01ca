"""
taskbot — UI-Agnostic Action Service.

Stateless service layer that executes a complete Intent on behalf of a user:
permission check -> storage write -> verification re-read -> structured
response object.

The pipeline renders the response by sending `message` to the sender and
each `notify` entry to its recipient; nothing in here talks to a transport.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Callable
from zoneinfo import ZoneInfo

from taskbot.core import messages
from taskbot.core.errors import (
    NotFoundFailure,
    PermissionFailure,
    PersistenceFailure,
    TaskBotError,
    ValidationFailure,
)
from taskbot.core.intent import IntentKind
from taskbot.core.timeparse import utcnow

if TYPE_CHECKING:
    from taskbot.config import Settings
    from taskbot.core.intent import Intent
    from taskbot.data.db import ReminderDB, TaskDB, UserDB
    from taskbot.data.models import Task, User

logger = logging.getLogger(__name__)

DEFAULT_DEADLINE = timedelta(days=7)
DEADLINE_HORIZON = timedelta(days=7)
MIN_TITLE_LENGTH = 3


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------


class ResponseKind(Enum):
    SUCCESS = "success"
    ERROR = "error"
    QUERY_RESULT = "query_result"
    NO_ACTION = "no_action"


@dataclass
class OutboundMessage:
    to: str      # canonical phone number
    text: str


@dataclass
class ServiceResponse:
    kind: ResponseKind
    message: str


@dataclass
class SuccessResponse(ServiceResponse):
    reference: str = ""
    notify: list[OutboundMessage] = field(default_factory=list)


@dataclass
class ErrorResponse(ServiceResponse):
    error: TaskBotError | None = None


@dataclass
class QueryResultResponse(ServiceResponse):
    count: int = 0


@dataclass
class NoActionResponse(ServiceResponse):
    pass


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ActionService:
    """Executes intents against the task, reminder and user stores."""

    def __init__(
        self,
        settings: Settings,
        users: UserDB,
        tasks: TaskDB,
        reminders: ReminderDB,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._users = users
        self._tasks = tasks
        self._reminders = reminders
        self._clock = clock
        self._tz = ZoneInfo(settings.TIMEZONE)
        self._handlers: dict[IntentKind, Callable[[Intent, User], ServiceResponse]] = {
            IntentKind.CREATE_TASK: self._create_task,
            IntentKind.ASSIGN_TASK: self._assign_task,
            IntentKind.UPDATE_STATUS: self._update_status,
            IntentKind.UPDATE_PROGRESS: self._update_progress,
            IntentKind.UPDATE_STATUS_AND_PROGRESS: self._update_status_and_progress,
            IntentKind.ADD_UPDATE: self._add_update,
            IntentKind.REPORT_BLOCKER: self._report_blocker,
            IntentKind.CANCEL_TASK: self._cancel_task,
            IntentKind.VIEW_TASK: self._view_task,
            IntentKind.LIST_TASKS: self._list_tasks,
            IntentKind.LIST_DEADLINES: self._list_deadlines,
            IntentKind.SET_REMINDER: self._set_reminder,
            IntentKind.SCHEDULE_MEETING: self._schedule_meeting,
            IntentKind.LIST_REMINDERS: self._list_reminders,
            IntentKind.CANCEL_REMINDER: self._cancel_reminder,
            IntentKind.STATUS: self._status_summary,
            IntentKind.HELP: lambda _intent, _user: NoActionResponse(ResponseKind.NO_ACTION, messages.HELP),
            IntentKind.WELCOME: lambda _intent, _user: NoActionResponse(ResponseKind.NO_ACTION, messages.WELCOME),
        }

    def _now(self) -> datetime:
        return self._clock().astimezone(self._tz)

    async def dispatch(self, intent: Intent, user: User) -> ServiceResponse:
        """Execute a complete intent. Domain failures become ErrorResponse."""
        handler = self._handlers.get(intent.kind)
        if handler is None:
            return NoActionResponse(ResponseKind.NO_ACTION, messages.not_recognized(intent.original_text))

        try:
            response = handler(intent, user)
        except ValidationFailure as exc:
            logger.info("Validation failed for %s from user %d: %s", intent.kind.value, user.id, exc)
            return ErrorResponse(ResponseKind.ERROR, messages.error(str(exc)), error=exc)
        except NotFoundFailure as exc:
            logger.info("%s %s not found for user %d", exc.what, exc.reference, user.id)
            return ErrorResponse(ResponseKind.ERROR, messages.error(str(exc)), error=exc)
        except PermissionFailure as exc:
            logger.warning("User %d (%s) denied: %s", user.id, user.role, exc.action)
            text = messages.permission_denied(exc.action, exc.allowed_roles)
            return ErrorResponse(ResponseKind.ERROR, messages.error(text), error=exc)
        except PersistenceFailure as exc:
            logger.error("Write to %s did not persist: %s", exc.reference, exc.detail)
            text = f"Changes to {exc.reference} could not be saved. Please try again."
            return ErrorResponse(ResponseKind.ERROR, messages.error(text), error=exc)

        logger.info("Executed %s for user %d", intent.kind.value, user.id)
        return response

    # -- helpers ------------------------------------------------------------

    def _is_manager(self, user: User) -> bool:
        return user.role in self._settings.MANAGER_ROLES

    def _require_slot(self, intent: Intent, name: str, message: str) -> object:
        value = intent.get(name)
        if value in (None, ""):
            raise ValidationFailure(message, slot=name)
        return value

    def _slot_time(self, intent: Intent, name: str) -> datetime | None:
        raw = intent.get(name)
        if raw is None:
            return None
        if isinstance(raw, datetime):
            value = raw
        else:
            try:
                value = datetime.fromisoformat(str(raw))
            except ValueError as exc:
                raise ValidationFailure(
                    "Could not understand the date/time. Please try again.", slot=name,
                ) from exc
        if value.tzinfo is None:
            value = value.replace(tzinfo=self._tz)
        return value

    def _load_task(self, intent: Intent, user: User) -> Task:
        reference = self._require_slot(
            intent, "taskId", 'Please specify a task ID.\n\nExample: "Show task TASK-2026-0001"',
        )
        task = self._tasks.get_task(str(reference))
        if task is None or task.organization != user.organization:
            raise NotFoundFailure(str(reference))
        return task

    def _check_access(self, task: Task, user: User, action: str = "update this task") -> None:
        if not task.involves(user.id) and not self._is_manager(user):
            raise PermissionFailure(action, self._settings.MANAGER_ROLES)

    def _apply(self, task: Task, user: User, history: str, **changes: object) -> Task:
        """Write `changes`, re-read, and verify before recording history."""
        now = self._now()
        updated = self._tasks.update_task(task.reference, now, **changes)
        if updated is None:
            raise PersistenceFailure(task.reference, "(task disappeared)")
        for column, expected in changes.items():
            actual = getattr(updated, column)
            if actual != expected:
                raise PersistenceFailure(task.reference, f"({column}: expected {expected!r}, got {actual!r})")
        self._tasks.add_update(
            task.id, history, now, author_id=user.id,
            status=changes.get("status"), progress=changes.get("progress"),
        )
        return updated

    def _status_slot(self, intent: Intent) -> str:
        status = intent.get("status")
        if status is None:
            raw = intent.rejected.get("status")
            if raw is not None:
                raise ValidationFailure(messages.invalid_status(str(raw)), slot="status")
            raise ValidationFailure(messages.invalid_status(""), slot="status")
        return status

    def _progress_slot(self, intent: Intent) -> int:
        progress = intent.get("progress")
        if progress is None:
            raise ValidationFailure("Please use a progress number between 0-100.", slot="progress")
        return progress

    def _user_label(self, user_id: int | None) -> User | None:
        return self._users.get_user(user_id) if user_id is not None else None

    # -- task creation ------------------------------------------------------

    def _create_task(self, intent: Intent, user: User) -> ServiceResponse:
        title = (intent.get("title") or "").strip()
        if len(title) < MIN_TITLE_LENGTH:
            raise ValidationFailure(
                f"Please provide a task title (at least {MIN_TITLE_LENGTH} characters).", slot="title",
            )
        now = self._now()
        task = self._tasks.create_task(
            title=title,
            now=now,
            created_by=user.id,
            assigned_to=user.id,
            assigned_by=user.id,
            organization=user.organization,
            description=intent.get("description") or "",
            priority=intent.get("priority") or "medium",
            deadline=self._slot_time(intent, "deadline") or now + DEFAULT_DEADLINE,
        )
        return SuccessResponse(
            ResponseKind.SUCCESS, messages.task_created(task, user, self._tz), reference=task.reference,
        )

    def _assign_task(self, intent: Intent, user: User) -> ServiceResponse:
        if not self._is_manager(user):
            raise PermissionFailure("assign tasks to others", self._settings.MANAGER_ROLES)

        title = (intent.get("title") or "").strip()
        if len(title) < MIN_TITLE_LENGTH:
            raise ValidationFailure(
                f"Please provide a task title (at least {MIN_TITLE_LENGTH} characters).", slot="title",
            )
        name = str(self._require_slot(intent, "assigneeName", "Please say who the task is for."))
        matches = self._users.find_by_name(name, organization=user.organization)
        if not matches:
            raise NotFoundFailure(f'"{name}"', what="Employee")
        if len(matches) > 1:
            candidates = ", ".join(u.full_name for u in matches[:5])
            raise ValidationFailure(
                f'More than one employee matches "{name}": {candidates}. Please use the full name.',
                slot="assigneeName",
            )
        assignee = matches[0]

        now = self._now()
        task = self._tasks.create_task(
            title=title,
            now=now,
            created_by=user.id,
            assigned_to=assignee.id,
            assigned_by=user.id,
            organization=user.organization,
            description=intent.get("description") or "",
            priority=intent.get("priority") or "medium",
            deadline=self._slot_time(intent, "deadline") or now + DEFAULT_DEADLINE,
        )
        logger.info("Task %s assigned to user %d by user %d", task.reference, assignee.id, user.id)

        notify = []
        if (
            assignee.id != user.id
            and assignee.is_active
            and assignee.whatsapp_enabled
            and assignee.notify_task_assigned
        ):
            notify.append(OutboundMessage(assignee.phone, messages.task_assigned_notice(task, user, self._tz)))
        return SuccessResponse(
            ResponseKind.SUCCESS,
            messages.task_assigned_confirmation(task, assignee, self._tz),
            reference=task.reference,
            notify=notify,
        )

    # -- task updates -------------------------------------------------------

    def _update_status(self, intent: Intent, user: User) -> ServiceResponse:
        status = self._status_slot(intent)
        task = self._load_task(intent, user)
        self._check_access(task, user)

        changes: dict[str, object] = {"status": status}
        if status == "completed" and task.progress < 100:
            changes["progress"] = 100
        updated = self._apply(task, user, f"Status changed from {task.status} to {status} via WhatsApp", **changes)
        return SuccessResponse(ResponseKind.SUCCESS, messages.task_updated(updated, "status"), reference=task.reference)

    def _update_progress(self, intent: Intent, user: User) -> ServiceResponse:
        progress = self._progress_slot(intent)
        task = self._load_task(intent, user)
        self._check_access(task, user)

        changes: dict[str, object] = {"progress": progress}
        if progress == 100 and task.status != "completed":
            changes["status"] = "completed"
        updated = self._apply(
            task, user, f"Progress updated from {task.progress}% to {progress}% via WhatsApp", **changes,
        )
        return SuccessResponse(ResponseKind.SUCCESS, messages.task_updated(updated, "progress"), reference=task.reference)

    def _update_status_and_progress(self, intent: Intent, user: User) -> ServiceResponse:
        status = self._status_slot(intent)
        progress = self._progress_slot(intent)
        task = self._load_task(intent, user)
        self._check_access(task, user)

        # Both values were stated explicitly, so neither overrides the other
        history = (
            f"Status/progress updated via WhatsApp (status: {task.status} -> {status}, "
            f"progress: {task.progress}% -> {progress}%)"
        )
        updated = self._apply(task, user, history, status=status, progress=progress)
        return SuccessResponse(ResponseKind.SUCCESS, messages.task_updated(updated, "status"), reference=task.reference)

    def _add_update(self, intent: Intent, user: User) -> ServiceResponse:
        message = str(self._require_slot(intent, "message", "Please include the update text."))
        task = self._load_task(intent, user)
        self._check_access(task, user)
        self._tasks.add_update(task.id, message, self._now(), author_id=user.id)
        return SuccessResponse(ResponseKind.SUCCESS, messages.update_added(task, message), reference=task.reference)

    def _report_blocker(self, intent: Intent, user: User) -> ServiceResponse:
        blocker = str(self._require_slot(intent, "blocker", "Please describe what is blocking the task."))
        task = self._load_task(intent, user)
        self._check_access(task, user)

        updated = self._apply(
            task, user, f"Blocker reported via WhatsApp: {blocker}", status="blocked", blocker=blocker,
        )
        notify = []
        for manager_id in {task.assigned_by, task.created_by} - {None, user.id}:
            manager = self._users.get_user(manager_id)
            if manager and manager.is_active and manager.whatsapp_enabled:
                notify.append(OutboundMessage(manager.phone, messages.blocker_notice(updated, user, blocker)))
        return SuccessResponse(
            ResponseKind.SUCCESS, messages.blocker_reported(updated, blocker),
            reference=task.reference, notify=notify,
        )

    def _cancel_task(self, intent: Intent, user: User) -> ServiceResponse:
        task = self._load_task(intent, user)
        if not task.involves(user.id) and user.role not in self._settings.TASK_ADMIN_ROLES:
            raise PermissionFailure(f"cancel task {task.reference}", self._settings.TASK_ADMIN_ROLES)
        if task.status == "cancelled":
            raise ValidationFailure(f"Task {task.reference} is already cancelled.")

        updated = self._apply(task, user, "Task cancelled via WhatsApp", status="cancelled")
        return SuccessResponse(ResponseKind.SUCCESS, messages.task_cancelled(updated), reference=task.reference)

    # -- task queries -------------------------------------------------------

    def _view_task(self, intent: Intent, user: User) -> ServiceResponse:
        task = self._load_task(intent, user)
        self._check_access(task, user, action="view this task")
        secondary = [u for u in (self._users.get_user(i) for i in task.secondary_assignees) if u]
        text = messages.task_details(
            task,
            self._tz,
            assignee=self._user_label(task.assigned_to),
            assigner=self._user_label(task.assigned_by),
            secondary=secondary,
            updates=self._tasks.list_updates(task.id),
        )
        return QueryResultResponse(ResponseKind.QUERY_RESULT, text, count=1)

    def _list_tasks(self, intent: Intent, user: User) -> ServiceResponse:
        filters = intent.get("filters") or {}
        status = filters.get("status")
        tasks = self._tasks.list_tasks(
            user_id=user.id,
            organization=user.organization,
            status=status,
            priority=filters.get("priority"),
            overdue_at=self._now() if filters.get("overdue") else None,
        )
        if status is None:
            tasks = [t for t in tasks if t.status != "cancelled"]

        heading = "Your Tasks"
        if filters.get("overdue"):
            heading = "Overdue Tasks"
        elif status:
            heading = f"Your {status.title()} Tasks"
        return QueryResultResponse(
            ResponseKind.QUERY_RESULT, messages.task_list(tasks, self._tz, heading), count=len(tasks),
        )

    def _list_deadlines(self, intent: Intent, user: User) -> ServiceResponse:
        now = self._now()
        horizon = now + DEADLINE_HORIZON
        tasks = [
            t for t in self._tasks.list_tasks(
                user_id=user.id, organization=user.organization, include_closed=False,
            )
            if t.deadline is not None and now <= t.deadline <= horizon
        ]
        return QueryResultResponse(
            ResponseKind.QUERY_RESULT, messages.deadline_list(tasks, now, self._tz), count=len(tasks),
        )

    def _status_summary(self, intent: Intent, user: User) -> ServiceResponse:
        tasks = [
            t for t in self._tasks.list_tasks(user_id=user.id, organization=user.organization)
            if t.status != "cancelled"
        ]
        return QueryResultResponse(
            ResponseKind.QUERY_RESULT, messages.status_summary(user, tasks, self._now()), count=len(tasks),
        )

    # -- reminders and meetings ----------------------------------------------

    def _future_time(self, intent: Intent, what: str) -> datetime:
        due_at = self._slot_time(intent, "reminderTime")
        if due_at is None:
            raise ValidationFailure(
                f'Please specify when the {what} is.\n\nExample: "tomorrow at 3pm"', slot="reminderTime",
            )
        if due_at <= self._now():
            raise ValidationFailure(f"The {what} time must be in the future. Please try again.", slot="reminderTime")
        return due_at

    def _set_reminder(self, intent: Intent, user: User) -> ServiceResponse:
        due_at = self._future_time(intent, "reminder")
        title = intent.get("reminderTitle") or intent.get("reminderMessage") or "Reminder"
        reminder = self._reminders.create_reminder(
            owner_id=user.id,
            title=title,
            due_at=due_at,
            now=self._now(),
            body=intent.get("reminderMessage") or title,
            organization=user.organization,
        )
        return SuccessResponse(
            ResponseKind.SUCCESS, messages.reminder_set(reminder, self._tz), reference=reminder.reference,
        )

    def _schedule_meeting(self, intent: Intent, user: User) -> ServiceResponse:
        due_at = self._future_time(intent, "meeting")
        meeting_with = intent.get("meetingWith") or ""
        location = intent.get("meetingLocation") or ""
        subject = intent.get("meetingSubject") or intent.get("reminderTitle") or "Meeting"
        title = f"Meeting with {meeting_with}: {subject}" if meeting_with else subject

        body = [f"Meeting: {subject}"]
        if meeting_with:
            body.append(f"With: {meeting_with}")
        if location:
            body.append(f"Location: {location}")

        meeting = self._reminders.create_reminder(
            owner_id=user.id,
            title=title,
            due_at=due_at,
            now=self._now(),
            kind="meeting",
            body="\n".join(body),
            organization=user.organization,
            meeting_with=meeting_with,
            meeting_location=location,
        )
        return SuccessResponse(
            ResponseKind.SUCCESS, messages.meeting_scheduled(meeting, subject, self._tz), reference=meeting.reference,
        )

    def _list_reminders(self, intent: Intent, user: User) -> ServiceResponse:
        now = self._now()
        reminders = [r for r in self._reminders.list_pending(user.id) if r.due_at >= now]
        return QueryResultResponse(
            ResponseKind.QUERY_RESULT, messages.reminder_list(reminders, self._tz), count=len(reminders),
        )

    def _cancel_reminder(self, intent: Intent, user: User) -> ServiceResponse:
        reference = str(self._require_slot(
            intent, "reminderId", 'Please specify the reminder ID.\n\nSay "my reminders" to see your reminder IDs.',
        ))
        reminder = self._reminders.get_reminder(reference)
        if reminder is None or reminder.owner_id != user.id:
            raise NotFoundFailure(reference, what="Reminder")
        if reminder.status != "pending":
            raise ValidationFailure(f"Reminder {reference} is already {reminder.status}.")
        if not self._reminders.cancel(reference, user.id):
            raise PersistenceFailure(reference, "(reminder changed concurrently)")
        reminder.status = "cancelled"
        return SuccessResponse(ResponseKind.SUCCESS, messages.reminder_cancelled(reminder), reference=reference)

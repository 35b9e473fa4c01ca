"""Tests for taskbot.core.action_service — intent execution against the stores.

Real SQLite stores on a temp file; no transport anywhere in this file.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from taskbot.core.action_service import (
    ActionService,
    ErrorResponse,
    NoActionResponse,
    QueryResultResponse,
    ResponseKind,
    SuccessResponse,
)
from taskbot.core.errors import NotFoundFailure, PermissionFailure, PersistenceFailure, ValidationFailure
from taskbot.core.intent import Intent, IntentKind

NOW = datetime(2026, 10, 16, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def service(settings, user_db, task_db, reminder_db, clock):
    return ActionService(settings, user_db, task_db, reminder_db, clock=clock)


@pytest.fixture
def outsider(user_db):
    return user_db.add_user("Bilal", "+923331112222", last_name="Shah", organization="pvara")


def _intent(kind, **slots):
    return Intent(kind=kind, slots=slots)


def _task(task_db, owner, **kwargs):
    kwargs.setdefault("organization", owner.organization)
    return task_db.create_task(
        kwargs.pop("title", "Prepare slides"), NOW,
        created_by=owner.id, assigned_to=kwargs.pop("assigned_to", owner.id), **kwargs,
    )


# ---------------------------------------------------------------------------
# Creation and assignment
# ---------------------------------------------------------------------------


class TestCreateTask:
    @pytest.mark.asyncio
    async def test_creator_is_assignee(self, service, task_db, employee):
        response = await service.dispatch(
            _intent(IntentKind.CREATE_TASK, title="Review budget report", priority="high"), employee,
        )

        assert isinstance(response, SuccessResponse)
        assert response.kind == ResponseKind.SUCCESS
        assert response.reference == "TASK-2026-0001"
        assert "Assigned to: Ali Khan" in response.message
        task = task_db.get_task("TASK-2026-0001")
        assert task.assigned_to == employee.id
        assert task.created_by == employee.id
        assert task.organization == "pvara"
        assert task.priority == "high"

    @pytest.mark.asyncio
    async def test_default_deadline_is_one_week(self, service, task_db, employee):
        await service.dispatch(_intent(IntentKind.CREATE_TASK, title="Review budget report"), employee)
        assert task_db.get_task("TASK-2026-0001").deadline == NOW + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_explicit_deadline(self, service, task_db, employee):
        await service.dispatch(
            _intent(IntentKind.CREATE_TASK, title="Review budget report", deadline="2026-10-19T23:59:59+05:00"),
            employee,
        )
        assert task_db.get_task("TASK-2026-0001").deadline == datetime(2026, 10, 19, 18, 59, 59, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_short_title_rejected(self, service, task_db, employee):
        response = await service.dispatch(_intent(IntentKind.CREATE_TASK, title="ab"), employee)
        assert isinstance(response, ErrorResponse)
        assert isinstance(response.error, ValidationFailure)
        assert "at least 3 characters" in response.message
        assert task_db.list_tasks() == []


class TestAssignTask:
    @pytest.mark.asyncio
    async def test_manager_assigns_and_assignee_is_notified(self, service, task_db, manager, employee):
        response = await service.dispatch(
            _intent(IntentKind.ASSIGN_TASK, title="Prepare slides", assigneeName="Ali"), manager,
        )

        assert isinstance(response, SuccessResponse)
        assert "Assigned to: Ali Khan" in response.message
        task = task_db.get_task(response.reference)
        assert task.assigned_to == employee.id
        assert task.assigned_by == manager.id
        assert len(response.notify) == 1
        assert response.notify[0].to == employee.phone
        assert "New Task Assignment" in response.notify[0].text
        assert "Assigned by: Sara Ahmed" in response.notify[0].text

    @pytest.mark.asyncio
    async def test_no_notice_when_assignee_opted_out(self, service, user_db, manager, employee):
        user_db.update_preferences(employee.id, notify_task_assigned=False)
        response = await service.dispatch(
            _intent(IntentKind.ASSIGN_TASK, title="Prepare slides", assigneeName="Ali"), manager,
        )
        assert isinstance(response, SuccessResponse)
        assert response.notify == []

    @pytest.mark.asyncio
    async def test_employee_cannot_assign(self, service, task_db, employee, manager):
        response = await service.dispatch(
            _intent(IntentKind.ASSIGN_TASK, title="Prepare slides", assigneeName="Sara"), employee,
        )
        assert isinstance(response.error, PermissionFailure)
        assert "You do not have permission to assign tasks to others." in response.message
        assert task_db.list_tasks() == []

    @pytest.mark.asyncio
    async def test_unknown_assignee(self, service, manager):
        response = await service.dispatch(
            _intent(IntentKind.ASSIGN_TASK, title="Prepare slides", assigneeName="Zed"), manager,
        )
        assert isinstance(response.error, NotFoundFailure)
        assert 'Employee "Zed" not found' in response.message

    @pytest.mark.asyncio
    async def test_assignee_in_other_organization_not_found(self, service, user_db, manager):
        user_db.add_user("Omar", "+923214445555", organization="other")
        response = await service.dispatch(
            _intent(IntentKind.ASSIGN_TASK, title="Prepare slides", assigneeName="Omar"), manager,
        )
        assert isinstance(response.error, NotFoundFailure)

    @pytest.mark.asyncio
    async def test_ambiguous_assignee(self, service, user_db, manager, employee):
        user_db.add_user("Ali", "+923459998888", last_name="Raza", organization="pvara")
        response = await service.dispatch(
            _intent(IntentKind.ASSIGN_TASK, title="Prepare slides", assigneeName="Ali"), manager,
        )
        assert isinstance(response.error, ValidationFailure)
        assert "Ali Khan, Ali Raza" in response.message


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------


class TestStatusAndProgress:
    @pytest.mark.asyncio
    async def test_completed_forces_full_progress(self, service, task_db, employee):
        task = _task(task_db, employee)
        response = await service.dispatch(
            _intent(IntentKind.UPDATE_STATUS, taskId=task.reference, status="done"), employee,
        )

        assert isinstance(response, SuccessResponse)
        assert "Status changed to: completed" in response.message
        stored = task_db.get_task(task.reference)
        assert stored.status == "completed"
        assert stored.progress == 100
        assert task_db.list_updates(task.id)[0].message == "Status changed from pending to completed via WhatsApp"

    @pytest.mark.asyncio
    async def test_full_progress_completes_task(self, service, task_db, employee):
        task = _task(task_db, employee)
        await service.dispatch(_intent(IntentKind.UPDATE_PROGRESS, taskId=task.reference, progress=100), employee)
        stored = task_db.get_task(task.reference)
        assert stored.status == "completed"
        assert stored.progress == 100

    @pytest.mark.asyncio
    async def test_partial_progress_keeps_status(self, service, task_db, employee):
        task = _task(task_db, employee)
        response = await service.dispatch(
            _intent(IntentKind.UPDATE_PROGRESS, taskId=task.reference, progress=50), employee,
        )
        assert "Progress updated to: 50%" in response.message
        assert task_db.get_task(task.reference).status == "pending"

    @pytest.mark.asyncio
    async def test_both_values_applied_as_given(self, service, task_db, employee):
        task = _task(task_db, employee)
        await service.dispatch(
            _intent(IntentKind.UPDATE_STATUS_AND_PROGRESS, taskId=task.reference, status="completed", progress=50),
            employee,
        )
        stored = task_db.get_task(task.reference)
        assert stored.status == "completed"
        assert stored.progress == 50

    @pytest.mark.asyncio
    async def test_invalid_status_named_in_error(self, service, task_db, employee):
        task = _task(task_db, employee)
        response = await service.dispatch(
            _intent(IntentKind.UPDATE_STATUS, taskId=task.reference, status="maybe"), employee,
        )
        assert isinstance(response.error, ValidationFailure)
        assert '"maybe" is not a valid status.' in response.message
        assert task_db.get_task(task.reference).status == "pending"

    @pytest.mark.asyncio
    async def test_unknown_task(self, service, employee):
        response = await service.dispatch(
            _intent(IntentKind.UPDATE_STATUS, taskId="TASK-2026-0999", status="completed"), employee,
        )
        assert isinstance(response.error, NotFoundFailure)
        assert "Task TASK-2026-0999 not found" in response.message

    @pytest.mark.asyncio
    async def test_task_from_other_organization_is_not_found(self, service, task_db, user_db, employee):
        stranger = user_db.add_user("Omar", "+923214445555", organization="other")
        task = _task(task_db, stranger)
        response = await service.dispatch(
            _intent(IntentKind.UPDATE_STATUS, taskId=task.reference, status="completed"), employee,
        )
        assert isinstance(response.error, NotFoundFailure)

    @pytest.mark.asyncio
    async def test_uninvolved_employee_denied(self, service, task_db, employee, outsider):
        task = _task(task_db, employee)
        response = await service.dispatch(
            _intent(IntentKind.UPDATE_PROGRESS, taskId=task.reference, progress=30), outsider,
        )
        assert isinstance(response.error, PermissionFailure)
        assert "You do not have permission to update this task." in response.message
        assert task_db.get_task(task.reference).progress == 0

    @pytest.mark.asyncio
    async def test_manager_may_update_any_task(self, service, task_db, employee, manager):
        task = _task(task_db, employee)
        response = await service.dispatch(
            _intent(IntentKind.UPDATE_PROGRESS, taskId=task.reference, progress=30), manager,
        )
        assert isinstance(response, SuccessResponse)

    @pytest.mark.asyncio
    async def test_unverified_write_is_reported(self, service, task_db, employee):
        task = _task(task_db, employee)
        with patch.object(task_db, "update_task", return_value=task):
            response = await service.dispatch(
                _intent(IntentKind.UPDATE_STATUS, taskId=task.reference, status="blocked"), employee,
            )
        assert isinstance(response.error, PersistenceFailure)
        assert f"Changes to {task.reference} could not be saved" in response.message
        assert task_db.list_updates(task.id) == []


class TestNotesAndBlockers:
    @pytest.mark.asyncio
    async def test_add_update(self, service, task_db, employee):
        task = _task(task_db, employee)
        response = await service.dispatch(
            _intent(IntentKind.ADD_UPDATE, taskId=task.reference, message="sent draft to finance"), employee,
        )
        assert 'Update: "sent draft to finance"' in response.message
        assert task_db.list_updates(task.id)[0].author_id == employee.id

    @pytest.mark.asyncio
    async def test_blocker_notifies_assigner(self, service, task_db, employee, manager):
        task = task_db.create_task(
            "Prepare slides", NOW, created_by=manager.id, assigned_to=employee.id,
            assigned_by=manager.id, organization="pvara",
        )
        response = await service.dispatch(
            _intent(IntentKind.REPORT_BLOCKER, taskId=task.reference, blocker="waiting for budget"), employee,
        )

        stored = task_db.get_task(task.reference)
        assert stored.status == "blocked"
        assert stored.blocker == "waiting for budget"
        assert [m.to for m in response.notify] == [manager.phone]
        assert "Reported by: Ali Khan" in response.notify[0].text

    @pytest.mark.asyncio
    async def test_own_blocker_notifies_nobody(self, service, task_db, employee):
        task = _task(task_db, employee)
        response = await service.dispatch(
            _intent(IntentKind.REPORT_BLOCKER, taskId=task.reference, blocker="laptop broke"), employee,
        )
        assert response.notify == []


class TestCancelTask:
    @pytest.mark.asyncio
    async def test_cancel_own_task(self, service, task_db, employee):
        task = _task(task_db, employee)
        response = await service.dispatch(_intent(IntentKind.CANCEL_TASK, taskId=task.reference), employee)
        assert "This task has been cancelled successfully." in response.message
        assert task_db.get_task(task.reference).status == "cancelled"

    @pytest.mark.asyncio
    async def test_already_cancelled(self, service, task_db, employee):
        task = _task(task_db, employee)
        await service.dispatch(_intent(IntentKind.CANCEL_TASK, taskId=task.reference), employee)
        response = await service.dispatch(_intent(IntentKind.CANCEL_TASK, taskId=task.reference), employee)
        assert isinstance(response.error, ValidationFailure)
        assert "already cancelled" in response.message

    @pytest.mark.asyncio
    async def test_outsider_cannot_cancel(self, service, task_db, employee, outsider):
        task = _task(task_db, employee)
        response = await service.dispatch(_intent(IntentKind.CANCEL_TASK, taskId=task.reference), outsider)
        assert isinstance(response.error, PermissionFailure)
        assert "Allowed roles: admin, manager, chairman" in response.message

    @pytest.mark.asyncio
    async def test_task_admin_can_cancel(self, service, task_db, employee, manager):
        task = _task(task_db, employee)
        response = await service.dispatch(_intent(IntentKind.CANCEL_TASK, taskId=task.reference), manager)
        assert isinstance(response, SuccessResponse)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    @pytest.mark.asyncio
    async def test_view_task_details(self, service, task_db, employee, manager):
        task = task_db.create_task(
            "Prepare slides", NOW, created_by=manager.id, assigned_to=employee.id, assigned_by=manager.id,
            organization="pvara", secondary_assignees=[manager.id],
        )
        task_db.add_update(task.id, "outline done", NOW, author_id=employee.id)

        response = await service.dispatch(_intent(IntentKind.VIEW_TASK, taskId=task.reference), employee)

        assert isinstance(response, QueryResultResponse)
        assert "Assigned to: Ali Khan" in response.message
        assert "Assigned by: Sara Ahmed" in response.message
        assert "Secondary: Sara Ahmed" in response.message
        assert "- outline done (16 Oct)" in response.message

    @pytest.mark.asyncio
    async def test_list_tasks_hides_cancelled(self, service, task_db, employee):
        keep = _task(task_db, employee, title="Keep me")
        gone = _task(task_db, employee, title="Drop me")
        task_db.update_task(gone.reference, NOW, status="cancelled")

        response = await service.dispatch(_intent(IntentKind.LIST_TASKS), employee)

        assert response.count == 1
        assert keep.reference in response.message
        assert gone.reference not in response.message
        assert "HRMS - Your Tasks (1)" in response.message

    @pytest.mark.asyncio
    async def test_list_tasks_by_status(self, service, task_db, employee):
        _task(task_db, employee)
        response = await service.dispatch(_intent(IntentKind.LIST_TASKS, filters={"status": "pending"}), employee)
        assert "Your Pending Tasks" in response.message

    @pytest.mark.asyncio
    async def test_list_overdue(self, service, task_db, employee):
        _task(task_db, employee, deadline=NOW - timedelta(days=1))
        _task(task_db, employee, deadline=NOW + timedelta(days=1))
        response = await service.dispatch(_intent(IntentKind.LIST_TASKS, filters={"overdue": True}), employee)
        assert response.count == 1
        assert "Overdue Tasks" in response.message

    @pytest.mark.asyncio
    async def test_empty_list(self, service, employee):
        response = await service.dispatch(_intent(IntentKind.LIST_TASKS), employee)
        assert response.count == 0
        assert "No matching tasks" in response.message

    @pytest.mark.asyncio
    async def test_deadlines_next_seven_days(self, service, task_db, employee):
        soon = _task(task_db, employee, deadline=NOW + timedelta(days=1))
        _task(task_db, employee, deadline=NOW + timedelta(days=10))
        _task(task_db, employee, deadline=NOW - timedelta(days=1))

        response = await service.dispatch(_intent(IntentKind.LIST_DEADLINES), employee)

        assert response.count == 1
        assert soon.reference in response.message
        assert "(1 day left)" in response.message

    @pytest.mark.asyncio
    async def test_status_summary(self, service, task_db, employee):
        _task(task_db, employee, deadline=NOW - timedelta(days=1))
        done = _task(task_db, employee)
        task_db.update_task(done.reference, NOW, status="completed")

        response = await service.dispatch(_intent(IntentKind.STATUS), employee)

        assert "Total Tasks: 2" in response.message
        assert "Completed: 1" in response.message
        assert "Overdue: 1" in response.message

    @pytest.mark.asyncio
    async def test_help_and_unknown(self, service, employee):
        assert isinstance(await service.dispatch(_intent(IntentKind.HELP), employee), NoActionResponse)
        response = await service.dispatch(Intent(kind=IntentKind.UNKNOWN, original_text="qwerty"), employee)
        assert isinstance(response, NoActionResponse)
        assert 'Your message: "qwerty"' in response.message


# ---------------------------------------------------------------------------
# Reminders and meetings
# ---------------------------------------------------------------------------


class TestReminders:
    @pytest.mark.asyncio
    async def test_set_reminder(self, service, reminder_db, employee):
        response = await service.dispatch(
            _intent(IntentKind.SET_REMINDER, reminderTitle="call the bank", reminderTime="2026-10-17T15:00:00+05:00"),
            employee,
        )

        assert response.reference == "REM-2026-0001"
        assert "When: Saturday, 17 October 2026 at 03:00 PM" in response.message
        reminder = reminder_db.get_reminder("REM-2026-0001")
        assert reminder.title == "call the bank"
        assert reminder.due_at == datetime(2026, 10, 17, 10, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_default_title(self, service, reminder_db, employee):
        await service.dispatch(_intent(IntentKind.SET_REMINDER, reminderTime="2026-10-17T15:00:00+05:00"), employee)
        assert reminder_db.get_reminder("REM-2026-0001").title == "Reminder"

    @pytest.mark.asyncio
    async def test_past_time_rejected(self, service, reminder_db, employee):
        response = await service.dispatch(
            _intent(IntentKind.SET_REMINDER, reminderTitle="x", reminderTime="2026-10-16T14:00:00+05:00"), employee,
        )
        assert isinstance(response.error, ValidationFailure)
        assert "must be in the future" in response.message
        assert reminder_db.list_pending(employee.id) == []

    @pytest.mark.asyncio
    async def test_schedule_meeting(self, service, reminder_db, employee):
        response = await service.dispatch(
            _intent(
                IntentKind.SCHEDULE_MEETING, meetingWith="Sara", meetingSubject="budget",
                meetingLocation="Room 4", reminderTime="2026-10-17T11:00:00+05:00",
            ),
            employee,
        )

        assert response.reference == "MTG-2026-0001"
        meeting = reminder_db.get_reminder("MTG-2026-0001")
        assert meeting.title == "Meeting with Sara: budget"
        assert meeting.body == "Meeting: budget\nWith: Sara\nLocation: Room 4"
        assert meeting.is_meeting

    @pytest.mark.asyncio
    async def test_list_reminders_upcoming_only(self, service, reminder_db, employee):
        reminder_db.create_reminder(employee.id, "Later", NOW + timedelta(hours=2), NOW)
        reminder_db.create_reminder(employee.id, "Missed", NOW - timedelta(hours=2), NOW)

        response = await service.dispatch(_intent(IntentKind.LIST_REMINDERS), employee)

        assert response.count == 1
        assert "Later" in response.message
        assert "Missed" not in response.message

    @pytest.mark.asyncio
    async def test_cancel_reminder(self, service, reminder_db, employee):
        reminder_db.create_reminder(employee.id, "Call bank", NOW + timedelta(hours=2), NOW)
        response = await service.dispatch(_intent(IntentKind.CANCEL_REMINDER, reminderId="2026-0001"), employee)
        assert "This reminder has been cancelled." in response.message
        assert reminder_db.get_reminder("REM-2026-0001").status == "cancelled"

        again = await service.dispatch(_intent(IntentKind.CANCEL_REMINDER, reminderId="REM-2026-0001"), employee)
        assert "already cancelled" in again.message

    @pytest.mark.asyncio
    async def test_cannot_cancel_someone_elses_reminder(self, service, reminder_db, employee, manager):
        reminder_db.create_reminder(employee.id, "Call bank", NOW + timedelta(hours=2), NOW)
        response = await service.dispatch(_intent(IntentKind.CANCEL_REMINDER, reminderId="REM-2026-0001"), manager)
        assert isinstance(response.error, NotFoundFailure)
        assert reminder_db.get_reminder("REM-2026-0001").status == "pending"

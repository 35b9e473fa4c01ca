"""Tests for taskbot.core.rules — the ordered rule cascade."""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from taskbot.core.intent import IntentKind
from taskbot.core.rules import ParseContext, find_rule, match_rules, parse_task_details

KARACHI = ZoneInfo("Asia/Karachi")


def _parse(text, now):
    return match_rules(text, now)


# ---------------------------------------------------------------------------
# Task updates
# ---------------------------------------------------------------------------


class TestStatusAndProgress:
    def test_combined_status_and_progress(self, local_now):
        intent = _parse("TASK-2026-0041 completed 50%", local_now)
        assert intent.kind is IntentKind.UPDATE_STATUS_AND_PROGRESS
        assert intent.slots == {"taskId": "TASK-2026-0041", "status": "completed", "progress": 50}

    def test_combined_wins_over_progress_rule(self, local_now):
        intent = _parse("TASK-2026-0002 done 100%", local_now)
        assert intent.kind is IntentKind.UPDATE_STATUS_AND_PROGRESS
        assert intent.get("status") == "completed"
        assert intent.get("progress") == 100

    def test_status_change(self, local_now):
        intent = _parse("Task TASK-2026-0001 is completed", local_now)
        assert intent.kind is IntentKind.UPDATE_STATUS
        assert intent.get("taskId") == "TASK-2026-0001"
        assert intent.get("status") == "completed"

    def test_status_change_with_bare_number(self, local_now):
        intent = _parse("mark 2026-0007 as in progress", local_now)
        assert intent.kind is IntentKind.UPDATE_STATUS
        assert intent.get("taskId") == "TASK-2026-0007"
        assert intent.get("status") == "in-progress"

    def test_status_verb(self, local_now):
        intent = _parse("complete TASK-2026-0003", local_now)
        assert intent.kind is IntentKind.UPDATE_STATUS
        assert intent.get("status") == "completed"

    def test_progress_only(self, local_now):
        intent = _parse("TASK-2026-0001 progress 50%", local_now)
        assert intent.kind is IntentKind.UPDATE_PROGRESS
        assert intent.get("progress") == 50

    def test_add_update(self, local_now):
        intent = _parse("Update TASK-2026-0001: sent the draft to finance", local_now)
        assert intent.kind is IntentKind.ADD_UPDATE
        assert intent.get("message") == "sent the draft to finance"

    def test_blocker(self, local_now):
        intent = _parse("TASK-2026-0001 blocked: waiting for budget approval", local_now)
        assert intent.kind is IntentKind.REPORT_BLOCKER
        assert intent.get("blocker") == "waiting for budget approval"


# ---------------------------------------------------------------------------
# Creation and assignment
# ---------------------------------------------------------------------------


class TestCreateAndAssign:
    def test_create_with_details(self, local_now):
        intent = _parse("create task: Review budget report, high priority, due tomorrow", local_now)
        assert intent.kind is IntentKind.CREATE_TASK
        assert intent.get("title") == "Review budget report"
        assert intent.get("priority") == "high"
        assert intent.get("deadline") == (local_now + timedelta(days=1)).isoformat()

    def test_create_without_title_asks_later(self, local_now):
        intent = _parse("create task", local_now)
        assert intent.kind is IntentKind.CREATE_TASK
        assert intent.get("title") is None

    def test_assign_to(self, local_now):
        intent = _parse("Assign task: Prepare slides to Ali", local_now)
        assert intent.kind is IntentKind.ASSIGN_TASK
        assert intent.get("title") == "Prepare slides"
        assert intent.get("assigneeName") == "Ali"

    def test_assign_to_with_deadline_after_name(self, local_now):
        intent = _parse("assign task: Review budget to Ali due tomorrow", local_now)
        assert intent.kind is IntentKind.ASSIGN_TASK
        assert intent.get("assigneeName") == "Ali"
        assert intent.get("title") == "Review budget"
        assert intent.get("deadline") == (local_now + timedelta(days=1)).isoformat()

    def test_assign_to_with_priority_after_name(self, local_now):
        intent = _parse("assign task: Review budget to Sara Ahmed high priority, due friday", local_now)
        assert intent.get("assigneeName") == "Sara Ahmed"
        assert intent.get("priority") == "high"
        assert intent.get("deadline") is not None

    def test_assign_for(self, local_now):
        intent = _parse("Create task for Ali: Prepare slides", local_now)
        assert intent.kind is IntentKind.ASSIGN_TASK
        assert intent.get("assigneeName") == "Ali"
        assert intent.get("title") == "Prepare slides"

    def test_task_details_default_priority(self, local_now):
        details = parse_task_details("Clean up the shared drive", local_now)
        assert details["priority"] == "medium"
        assert details["deadline"] is None
        assert details["title"] == "Clean up the shared drive"

    def test_task_details_deadline_on_weekday(self, local_now):
        details = parse_task_details("Submit expenses by monday", local_now)
        assert details["title"] == "Submit expenses"
        assert details["deadline"] == datetime(2026, 10, 19, 23, 59, 59, tzinfo=KARACHI)


# ---------------------------------------------------------------------------
# Reminders and meetings
# ---------------------------------------------------------------------------


class TestReminders:
    def test_reminder_with_time(self, local_now):
        intent = _parse("Remind me to call the bank tomorrow at 3pm", local_now)
        assert intent.kind is IntentKind.SET_REMINDER
        assert intent.get("reminderTitle") == "call the bank"
        assert intent.get("reminderTime") == datetime(2026, 10, 17, 15, 0, tzinfo=KARACHI).isoformat()

    def test_reminder_without_time(self, local_now):
        intent = _parse("Remind me to submit the report", local_now)
        assert intent.kind is IntentKind.SET_REMINDER
        assert intent.get("reminderTime") is None
        assert intent.get("reminderTitle") == "submit the report"

    def test_meeting(self, local_now):
        intent = _parse("Schedule meeting with Ali about budget tomorrow at 11am", local_now)
        assert intent.kind is IntentKind.SCHEDULE_MEETING
        assert intent.get("meetingWith") == "Ali"
        assert intent.get("meetingSubject") == "budget"
        assert intent.get("reminderTime") == datetime(2026, 10, 17, 11, 0, tzinfo=KARACHI).isoformat()

    def test_cancel_reminder(self, local_now):
        intent = _parse("cancel reminder REM-2026-0002", local_now)
        assert intent.kind is IntentKind.CANCEL_REMINDER
        assert intent.get("reminderId") == "REM-2026-0002"

    def test_cancel_reminder_bare_number(self, local_now):
        intent = _parse("delete reminder 2026-0002", local_now)
        assert intent.get("reminderId") == "REM-2026-0002"

    def test_cancel_task(self, local_now):
        intent = _parse("Cancel task TASK-2026-0001", local_now)
        assert intent.kind is IntentKind.CANCEL_TASK
        assert intent.get("taskId") == "TASK-2026-0001"


# ---------------------------------------------------------------------------
# Queries and zero-argument commands
# ---------------------------------------------------------------------------


class TestQueries:
    @pytest.mark.parametrize("text,kind", [
        ("help", IntentKind.HELP),
        ("Hi", IntentKind.WELCOME),
        ("status", IntentKind.STATUS),
        ("deadlines", IntentKind.LIST_DEADLINES),
        ("my reminders", IntentKind.LIST_REMINDERS),
        ("Show task TASK-2026-0001", IntentKind.VIEW_TASK),
        ("TASK-2026-0001", IntentKind.VIEW_TASK),
    ])
    def test_simple_commands(self, local_now, text, kind):
        assert _parse(text, local_now).kind is kind

    def test_list_tasks_no_filters(self, local_now):
        intent = _parse("Show my tasks", local_now)
        assert intent.kind is IntentKind.LIST_TASKS
        assert intent.get("filters") == {}

    def test_list_tasks_status_filter(self, local_now):
        assert _parse("pending tasks", local_now).get("filters") == {"status": "pending"}

    def test_list_tasks_overdue_filter(self, local_now):
        assert _parse("overdue tasks", local_now).get("filters") == {"overdue": True}

    def test_unrecognized(self, local_now):
        intent = _parse("what's the weather like", local_now)
        assert intent.is_unknown
        assert intent.original_text == "what's the weather like"

    def test_empty(self, local_now):
        assert _parse("   ", local_now).is_unknown


class TestRuleTable:
    def test_rules_testable_in_isolation(self, local_now):
        rule = find_rule("progress")
        ctx = ParseContext(text="2026-0001 80%", lowered="2026-0001 80%", now=local_now)
        found = rule.match(ctx)
        intent = rule.extract(found, ctx)
        assert intent.kind is IntentKind.UPDATE_PROGRESS
        assert intent.get("taskId") == "TASK-2026-0001"
        assert intent.get("progress") == 80

    def test_unknown_rule_name(self):
        with pytest.raises(KeyError):
            find_rule("nope")

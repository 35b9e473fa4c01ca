"""Tests for taskbot.data.db — SQLite stores and their at-most-once claims."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

NOW = datetime(2026, 10, 16, 10, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# UserDB
# ---------------------------------------------------------------------------


class TestUserDB:
    def test_add_and_lookup_by_phone(self, user_db, employee):
        found = user_db.get_by_phone("+923001234567")
        assert found.id == employee.id
        assert found.full_name == "Ali Khan"
        assert found.role == "employee"
        assert found.whatsapp_enabled is True

    def test_unknown_phone(self, user_db):
        assert user_db.get_by_phone("+920000000000") is None

    def test_find_by_first_or_full_name(self, user_db, employee, manager):
        assert [u.id for u in user_db.find_by_name("ali")] == [employee.id]
        assert [u.id for u in user_db.find_by_name("Sara  Ahmed")] == [manager.id]
        assert user_db.find_by_name("Ali", organization="other") == []

    def test_find_by_name_skips_inactive(self, user_db, employee):
        user_db.set_active(employee.id, False)
        assert user_db.find_by_name("Ali") == []

    def test_fresh_schema_has_preference_columns(self, settings, user_db, employee):
        with sqlite3.connect(settings.DATABASE_PATH) as conn:
            columns = {row[1] for row in conn.execute("PRAGMA table_info(users)")}
        assert {"notify_daily_digest", "reminder_intervals"} <= columns
        user = user_db.get_user(employee.id)
        assert user.notify_daily_digest is True
        assert user.reminder_intervals == []

    def test_update_preferences(self, user_db, employee):
        assert user_db.update_preferences(employee.id, notify_reminders=False, reminder_intervals=[60, 1440, 60])
        user = user_db.get_user(employee.id)
        assert user.notify_reminders is False
        assert user.reminder_intervals == [1440, 60]
        assert user.wants_lead(60)
        assert not user.wants_lead(180)

    def test_update_preferences_nothing_to_change(self, user_db, employee):
        assert user_db.update_preferences(employee.id) is False

    def test_empty_intervals_mean_all(self, employee):
        assert employee.wants_lead(180)


# ---------------------------------------------------------------------------
# TaskDB
# ---------------------------------------------------------------------------


class TestTaskDB:
    def test_references_are_sequential_per_year(self, task_db):
        first = task_db.create_task("One", NOW)
        second = task_db.create_task("Two", NOW)
        next_year = task_db.create_task("Three", NOW.replace(year=2027))
        assert first.reference == "TASK-2026-0001"
        assert second.reference == "TASK-2026-0002"
        assert next_year.reference == "TASK-2027-0001"

    def test_create_defaults(self, task_db, employee):
        task = task_db.create_task("Write memo", NOW, created_by=employee.id, assigned_to=employee.id)
        assert task.status == "pending"
        assert task.priority == "medium"
        assert task.progress == 0
        assert task.deadline is None
        assert task.involves(employee.id)

    def test_secondary_assignees(self, task_db, employee, manager):
        task = task_db.create_task(
            "Joint work", NOW, assigned_to=employee.id, secondary_assignees=[employee.id, manager.id],
        )
        assert task.secondary_assignees == [manager.id]
        assert task.assignee_ids == [employee.id, manager.id]
        assert [t.id for t in task_db.list_tasks(user_id=manager.id)] == [task.id]

    def test_list_tasks_filters(self, task_db, employee):
        a = task_db.create_task("A", NOW, assigned_to=employee.id, priority="high")
        b = task_db.create_task("B", NOW, assigned_to=employee.id)
        task_db.update_task(b.reference, NOW, status="completed")

        assert [t.id for t in task_db.list_tasks(user_id=employee.id, status="completed")] == [b.id]
        assert [t.id for t in task_db.list_tasks(user_id=employee.id, priority="high")] == [a.id]
        assert [t.id for t in task_db.list_tasks(user_id=employee.id, include_closed=False)] == [a.id]

    def test_overdue_filter(self, task_db, employee):
        late = task_db.create_task("Late", NOW, assigned_to=employee.id, deadline=NOW - timedelta(hours=1))
        task_db.create_task("Later", NOW, assigned_to=employee.id, deadline=NOW + timedelta(hours=1))
        done = task_db.create_task("Done late", NOW, assigned_to=employee.id, deadline=NOW - timedelta(days=1))
        task_db.update_task(done.reference, NOW, status="completed")

        assert [t.id for t in task_db.list_tasks(user_id=employee.id, overdue_at=NOW)] == [late.id]

    def test_ordering_puts_undated_last(self, task_db):
        undated = task_db.create_task("Undated", NOW)
        soon = task_db.create_task("Soon", NOW, deadline=NOW + timedelta(days=1))
        sooner = task_db.create_task("Sooner", NOW, deadline=NOW + timedelta(hours=1))
        assert [t.id for t in task_db.list_tasks()] == [sooner.id, soon.id, undated.id]

    def test_update_ignores_unknown_columns(self, task_db):
        task = task_db.create_task("A", NOW)
        updated = task_db.update_task(task.reference, NOW, progress=40, reference="HACKED")
        assert updated.reference == task.reference
        assert updated.progress == 40

    def test_update_missing_task(self, task_db):
        assert task_db.update_task("TASK-2026-9999", NOW, status="completed") is None

    def test_updates_newest_first(self, task_db, employee):
        task = task_db.create_task("A", NOW)
        task_db.add_update(task.id, "first", NOW, author_id=employee.id)
        task_db.add_update(task.id, "second", NOW, author_id=employee.id, progress=50)
        updates = task_db.list_updates(task.id)
        assert [u.message for u in updates] == ["second", "first"]
        assert updates[0].progress == 50


class TestLeadNotices:
    def test_claim_is_once_per_task_and_lead(self, task_db):
        task = task_db.create_task("A", NOW, deadline=NOW + timedelta(hours=1))
        assert task_db.claim_lead_notice(task.id, "60m", NOW) is True
        assert task_db.claim_lead_notice(task.id, "60m", NOW) is False
        assert task_db.claim_lead_notice(task.id, "1440m", NOW) is True

    def test_due_between_excludes_claimed_and_closed(self, task_db):
        deadline = NOW + timedelta(hours=1)
        open_task = task_db.create_task("Open", NOW, deadline=deadline)
        claimed = task_db.create_task("Claimed", NOW, deadline=deadline)
        closed = task_db.create_task("Closed", NOW, deadline=deadline)
        task_db.claim_lead_notice(claimed.id, "60m", NOW)
        task_db.update_task(closed.reference, NOW, status="cancelled")

        due = task_db.tasks_due_between(deadline - timedelta(minutes=1), deadline + timedelta(minutes=1), "60m")
        assert [t.id for t in due] == [open_task.id]

    def test_deadline_change_resets_markers(self, task_db):
        task = task_db.create_task("A", NOW, deadline=NOW + timedelta(hours=1))
        task_db.claim_lead_notice(task.id, "60m", NOW)

        updated = task_db.update_task(task.reference, NOW, deadline=NOW + timedelta(days=2))

        assert updated.lead_notices == {}
        assert task_db.claim_lead_notice(task.id, "60m", NOW) is True

    def test_same_deadline_keeps_markers(self, task_db):
        deadline = NOW + timedelta(hours=1)
        task = task_db.create_task("A", NOW, deadline=deadline)
        task_db.claim_lead_notice(task.id, "60m", NOW)

        updated = task_db.update_task(task.reference, NOW, deadline=deadline, progress=10)

        assert "60m" in updated.lead_notices


# ---------------------------------------------------------------------------
# ReminderDB
# ---------------------------------------------------------------------------


class TestReminderDB:
    def test_reminder_and_meeting_sequences(self, reminder_db, employee):
        rem = reminder_db.create_reminder(employee.id, "Call bank", NOW + timedelta(hours=2), NOW)
        mtg = reminder_db.create_reminder(employee.id, "Budget", NOW + timedelta(hours=3), NOW, kind="meeting")
        assert rem.reference == "REM-2026-0001"
        assert mtg.reference == "MTG-2026-0001"
        assert mtg.is_meeting

    def test_claim_once(self, reminder_db, employee):
        rem = reminder_db.create_reminder(employee.id, "Call bank", NOW, NOW)
        assert reminder_db.claim(rem.id, NOW) is True
        assert reminder_db.claim(rem.id, NOW) is False
        stored = reminder_db.get_reminder(rem.reference)
        assert stored.status == "sent"
        assert stored.sent_at == NOW

    def test_due_window(self, reminder_db, employee):
        due = reminder_db.create_reminder(employee.id, "Due", NOW - timedelta(minutes=5), NOW)
        reminder_db.create_reminder(employee.id, "Too old", NOW - timedelta(hours=2), NOW)
        reminder_db.create_reminder(employee.id, "Future", NOW + timedelta(minutes=5), NOW)

        found = reminder_db.due_reminders(NOW - timedelta(minutes=30), NOW)
        assert [r.id for r in found] == [due.id]

    def test_cancel_owner_only(self, reminder_db, employee, manager):
        rem = reminder_db.create_reminder(employee.id, "Call bank", NOW + timedelta(hours=1), NOW)
        assert reminder_db.cancel(rem.reference, manager.id) is False
        assert reminder_db.cancel(rem.reference, employee.id) is True
        assert reminder_db.cancel(rem.reference, employee.id) is False
        assert reminder_db.list_pending(employee.id) == []

    def test_cancelled_reminder_never_due(self, reminder_db, employee):
        rem = reminder_db.create_reminder(employee.id, "Call bank", NOW, NOW)
        reminder_db.cancel(rem.reference, employee.id)
        assert reminder_db.due_reminders(NOW - timedelta(minutes=1), NOW) == []
        assert reminder_db.claim(rem.id, NOW) is False


# ---------------------------------------------------------------------------
# ConversationDB
# ---------------------------------------------------------------------------


class TestConversationDB:
    def _save(self, store, expires_at=None, **overrides):
        fields = dict(
            sender="+923001234567", owner_id=1, kind="setReminder",
            collected={"reminderTitle": "x"}, missing=["reminderTime"],
            last_prompt="When?", expires_at=expires_at or NOW + timedelta(minutes=5),
        )
        fields.update(overrides)
        return store.save(**fields)

    def test_save_and_get(self, conversation_db):
        saved = self._save(conversation_db)
        state = conversation_db.get("+923001234567", NOW)
        assert state.version == saved.version == 1
        assert state.collected == {"reminderTitle": "x"}
        assert state.missing == ["reminderTime"]

    def test_one_state_per_sender(self, conversation_db):
        self._save(conversation_db)
        second = self._save(conversation_db, kind="createTask", missing=["title"])
        assert second.version == 2
        assert conversation_db.get("+923001234567", NOW).kind == "createTask"

    def test_expired_state_is_purged(self, conversation_db):
        self._save(conversation_db, expires_at=NOW)
        assert conversation_db.get("+923001234567", NOW) is None
        assert conversation_db.delete("+923001234567") is False

    def test_complete_requires_current_version(self, conversation_db):
        self._save(conversation_db)
        self._save(conversation_db)
        assert conversation_db.complete("+923001234567", 1) is False
        assert conversation_db.complete("+923001234567", 2) is True
        assert conversation_db.get("+923001234567", NOW) is None

    @pytest.mark.parametrize("sender", ["+923001234567", "+923007654321"])
    def test_delete(self, conversation_db, sender):
        self._save(conversation_db, sender=sender)
        assert conversation_db.delete(sender) is True
        assert conversation_db.get(sender, NOW) is None

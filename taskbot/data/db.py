"""
taskbot — SQLite Stores.

Users, tasks, reminders and pending conversations share one SQLite file.
Every state transition that must happen at most once (reminder sends,
deadline lead notices, conversation completion) is a single conditional
statement whose rowcount tells the caller whether it won.

Timestamps are stored as UTC ISO-8601 strings with a fixed format, so string
comparison in SQL orders them correctly.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from taskbot.data.models import PendingConversation, Reminder, Task, TaskUpdate, User

logger = logging.getLogger(__name__)

_CLOSED_STATUSES = ("completed", "cancelled")


def _to_db(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def _from_db(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class _SQLiteStore:
    """Connection handling shared by the stores below."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError

    @staticmethod
    def _next_sequence(conn: sqlite3.Connection, prefix: str, year: int) -> str:
        """Allocate the next human-readable reference, e.g. TASK-2026-0042."""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS sequences (
                name  TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        """)
        name = f"{prefix}-{year}"
        rows = conn.execute(
            """
            INSERT INTO sequences (name, value) VALUES (?, 1)
            ON CONFLICT(name) DO UPDATE SET value = value + 1
            RETURNING value
            """,
            (name,),
        ).fetchall()
        return f"{name}-{rows[0][0]:04d}"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserDB(_SQLiteStore):
    """Employees registered for the WhatsApp assistant, keyed by phone."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
                    first_name           TEXT    NOT NULL,
                    last_name            TEXT    NOT NULL DEFAULT '',
                    email                TEXT    NOT NULL DEFAULT '',
                    phone                TEXT    NOT NULL UNIQUE,
                    role                 TEXT    NOT NULL DEFAULT 'employee',
                    organization         TEXT    NOT NULL DEFAULT '',
                    department           TEXT    NOT NULL DEFAULT '',
                    is_active            INTEGER NOT NULL DEFAULT 1,
                    whatsapp_enabled     INTEGER NOT NULL DEFAULT 1,
                    notify_reminders     INTEGER NOT NULL DEFAULT 1,
                    notify_task_assigned INTEGER NOT NULL DEFAULT 1,
                    notify_daily_digest  INTEGER NOT NULL DEFAULT 1,
                    reminder_intervals   TEXT    NOT NULL DEFAULT '[]',
                    created_at           TEXT    NOT NULL
                )
            """)
        logger.debug("Users table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            email=row["email"],
            phone=row["phone"],
            role=row["role"],
            organization=row["organization"],
            department=row["department"],
            is_active=bool(row["is_active"]),
            whatsapp_enabled=bool(row["whatsapp_enabled"]),
            notify_reminders=bool(row["notify_reminders"]),
            notify_task_assigned=bool(row["notify_task_assigned"]),
            notify_daily_digest=bool(row["notify_daily_digest"]),
            reminder_intervals=json.loads(row["reminder_intervals"] or "[]"),
            created_at=_from_db(row["created_at"]),
        )

    def add_user(
        self,
        first_name: str,
        phone: str,
        last_name: str = "",
        email: str = "",
        role: str = "employee",
        organization: str = "",
        department: str = "",
        whatsapp_enabled: bool = True,
        reminder_intervals: list[int] | None = None,
    ) -> User:
        """Register an employee. `phone` must already be canonical (+E.164)."""
        now = datetime.now(timezone.utc)
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO users
                    (first_name, last_name, email, phone, role, organization,
                     department, whatsapp_enabled, reminder_intervals, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    first_name, last_name, email, phone, role.lower(), organization,
                    department, int(whatsapp_enabled),
                    json.dumps(reminder_intervals or []), _to_db(now),
                ),
            )
            user_id = cursor.lastrowid
        logger.info("User added: #%d %s (%s)", user_id, first_name, role)
        return self.get_user(user_id)

    def get_user(self, user_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_by_phone(self, phone: str) -> User | None:
        """Look up a user by canonical phone number."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE phone = ?", (phone,)).fetchone()
        return self._row_to_user(row) if row else None

    def find_by_name(self, name: str, organization: str | None = None) -> list[User]:
        """Active users whose first name or full name matches (case-insensitive)."""
        needle = " ".join(name.split()).lower()
        query = """
            SELECT * FROM users
            WHERE is_active = 1
              AND (lower(first_name) = ?
                   OR lower(trim(first_name || ' ' || last_name)) = ?)
        """
        params: list = [needle, needle]
        if organization is not None:
            query += " AND organization = ?"
            params.append(organization)
        query += " ORDER BY id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_user(r) for r in rows]

    def list_users(self, active_only: bool = True, organization: str | None = None) -> list[User]:
        conditions: list[str] = []
        params: list = []
        if active_only:
            conditions.append("is_active = 1")
        if organization is not None:
            conditions.append("organization = ?")
            params.append(organization)

        query = "SELECT * FROM users"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_user(r) for r in rows]

    def update_preferences(
        self,
        user_id: int,
        whatsapp_enabled: bool | None = None,
        notify_reminders: bool | None = None,
        notify_task_assigned: bool | None = None,
        notify_daily_digest: bool | None = None,
        reminder_intervals: list[int] | None = None,
    ) -> bool:
        """Update WhatsApp preferences; arguments left as None are unchanged."""
        changes: dict[str, object] = {}
        for column, value in (
            ("whatsapp_enabled", whatsapp_enabled),
            ("notify_reminders", notify_reminders),
            ("notify_task_assigned", notify_task_assigned),
            ("notify_daily_digest", notify_daily_digest),
        ):
            if value is not None:
                changes[column] = int(value)
        if reminder_intervals is not None:
            changes["reminder_intervals"] = json.dumps(sorted(set(reminder_intervals), reverse=True))
        if not changes:
            return False

        assignments = ", ".join(f"{column} = ?" for column in changes)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE users SET {assignments} WHERE id = ?",
                (*changes.values(), user_id),
            )
        return cursor.rowcount > 0

    def set_active(self, user_id: int, active: bool) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE users SET is_active = ? WHERE id = ?", (int(active), user_id),
            )
        return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskDB(_SQLiteStore):
    """Tasks, their update history, secondary assignees and lead-time markers."""

    _UPDATABLE = frozenset({
        "title", "description", "status", "priority", "progress",
        "deadline", "assigned_to", "blocker",
    })

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    reference    TEXT    NOT NULL UNIQUE,
                    organization TEXT    NOT NULL DEFAULT '',
                    title        TEXT    NOT NULL,
                    description  TEXT    NOT NULL DEFAULT '',
                    status       TEXT    NOT NULL DEFAULT 'pending',
                    priority     TEXT    NOT NULL DEFAULT 'medium',
                    progress     INTEGER NOT NULL DEFAULT 0,
                    deadline     TEXT,
                    assigned_to  INTEGER,
                    assigned_by  INTEGER,
                    created_by   INTEGER,
                    blocker      TEXT    NOT NULL DEFAULT '',
                    created_at   TEXT    NOT NULL,
                    updated_at   TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_assignees (
                    task_id INTEGER NOT NULL,
                    user_id INTEGER NOT NULL,
                    PRIMARY KEY (task_id, user_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_updates (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id    INTEGER NOT NULL,
                    author_id  INTEGER,
                    message    TEXT    NOT NULL,
                    status     TEXT,
                    progress   INTEGER,
                    created_at TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_lead_notices (
                    task_id  INTEGER NOT NULL,
                    lead_key TEXT    NOT NULL,
                    fired_at TEXT    NOT NULL,
                    PRIMARY KEY (task_id, lead_key)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_deadline ON tasks (deadline)")
        logger.debug("Task tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            reference=row["reference"],
            organization=row["organization"],
            title=row["title"],
            description=row["description"],
            status=row["status"],
            priority=row["priority"],
            progress=row["progress"],
            deadline=_from_db(row["deadline"]),
            assigned_to=row["assigned_to"],
            assigned_by=row["assigned_by"],
            created_by=row["created_by"],
            blocker=row["blocker"],
            created_at=_from_db(row["created_at"]),
            updated_at=_from_db(row["updated_at"]),
        )

    def _hydrate(self, conn: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[Task]:
        """Attach secondary assignees and lead markers to task rows."""
        tasks = [self._row_to_task(r) for r in rows]
        for task in tasks:
            task.secondary_assignees = [
                r["user_id"] for r in conn.execute(
                    "SELECT user_id FROM task_assignees WHERE task_id = ? ORDER BY user_id",
                    (task.id,),
                )
            ]
            task.lead_notices = {
                r["lead_key"]: _from_db(r["fired_at"]) for r in conn.execute(
                    "SELECT lead_key, fired_at FROM task_lead_notices WHERE task_id = ?",
                    (task.id,),
                )
            }
        return tasks

    def create_task(
        self,
        title: str,
        now: datetime,
        created_by: int | None = None,
        assigned_to: int | None = None,
        assigned_by: int | None = None,
        organization: str = "",
        description: str = "",
        priority: str = "medium",
        deadline: datetime | None = None,
        secondary_assignees: list[int] | None = None,
    ) -> Task:
        """Insert a task with the next TASK-YYYY-NNNN reference."""
        stamp = _to_db(now)
        with self._connect() as conn:
            reference = self._next_sequence(conn, "TASK", now.year)
            cursor = conn.execute(
                """
                INSERT INTO tasks
                    (reference, organization, title, description, status, priority,
                     progress, deadline, assigned_to, assigned_by, created_by,
                     created_at, updated_at)
                VALUES (?, ?, ?, ?, 'pending', ?, 0, ?, ?, ?, ?, ?, ?)
                """,
                (
                    reference, organization, title, description or "", priority,
                    _to_db(deadline), assigned_to, assigned_by, created_by, stamp, stamp,
                ),
            )
            task_id = cursor.lastrowid
            for user_id in secondary_assignees or []:
                if user_id != assigned_to:
                    conn.execute(
                        "INSERT OR IGNORE INTO task_assignees (task_id, user_id) VALUES (?, ?)",
                        (task_id, user_id),
                    )
        logger.info("Task created: %s '%s'", reference, title)
        return self.get_task(reference)

    def get_task(self, reference: str) -> Task | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE reference = ?", (reference,)).fetchone()
            if row is None:
                return None
            return self._hydrate(conn, [row])[0]

    def list_tasks(
        self,
        user_id: int | None = None,
        organization: str | None = None,
        status: str | None = None,
        priority: str | None = None,
        overdue_at: datetime | None = None,
        include_closed: bool = True,
    ) -> list[Task]:
        """Filter tasks. `user_id` matches creator, primary or secondary assignee.

        `overdue_at` keeps open tasks whose deadline is before that instant.
        """
        conditions: list[str] = []
        params: list = []
        if user_id is not None:
            conditions.append(
                "(assigned_to = ? OR created_by = ? OR id IN "
                "(SELECT task_id FROM task_assignees WHERE user_id = ?))"
            )
            params.extend([user_id, user_id, user_id])
        if organization is not None:
            conditions.append("organization = ?")
            params.append(organization)
        if status is not None:
            conditions.append("status = ?")
            params.append(status)
        if priority is not None:
            conditions.append("priority = ?")
            params.append(priority)
        if overdue_at is not None:
            conditions.append("deadline IS NOT NULL AND deadline < ?")
            params.append(_to_db(overdue_at))
            include_closed = False
        if not include_closed:
            conditions.append("status NOT IN (?, ?)")
            params.extend(_CLOSED_STATUSES)

        query = "SELECT * FROM tasks"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY deadline IS NULL, deadline, id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
            return self._hydrate(conn, rows)

    def update_task(self, reference: str, now: datetime, **fields: object) -> Task | None:
        """Apply column changes and return the task as re-read from storage.

        Changing the deadline clears the lead-time markers so the new
        deadline is watched afresh.
        """
        changes = {k: v for k, v in fields.items() if k in self._UPDATABLE}
        if "deadline" in changes:
            changes["deadline"] = _to_db(changes["deadline"])
        changes["updated_at"] = _to_db(now)

        assignments = ", ".join(f"{column} = ?" for column in changes)
        with self._connect() as conn:
            row = conn.execute("SELECT id, deadline FROM tasks WHERE reference = ?", (reference,)).fetchone()
            if row is None:
                return None
            conn.execute(
                f"UPDATE tasks SET {assignments} WHERE id = ?",
                (*changes.values(), row["id"]),
            )
            if "deadline" in changes and changes["deadline"] != row["deadline"]:
                conn.execute("DELETE FROM task_lead_notices WHERE task_id = ?", (row["id"],))
                logger.info("Task %s deadline changed; lead notices reset", reference)
        return self.get_task(reference)

    def add_update(
        self,
        task_id: int,
        message: str,
        now: datetime,
        author_id: int | None = None,
        status: str | None = None,
        progress: int | None = None,
    ) -> TaskUpdate:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO task_updates (task_id, author_id, message, status, progress, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (task_id, author_id, message, status, progress, _to_db(now)),
            )
            update_id = cursor.lastrowid
        return TaskUpdate(
            id=update_id, task_id=task_id, author_id=author_id, message=message,
            status=status, progress=progress, created_at=now,
        )

    def list_updates(self, task_id: int, limit: int = 5) -> list[TaskUpdate]:
        """Most recent updates first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM task_updates WHERE task_id = ? ORDER BY id DESC LIMIT ?",
                (task_id, limit),
            ).fetchall()
        return [
            TaskUpdate(
                id=r["id"], task_id=r["task_id"], author_id=r["author_id"],
                message=r["message"], status=r["status"], progress=r["progress"],
                created_at=_from_db(r["created_at"]),
            )
            for r in rows
        ]

    # -- deadline watch -----------------------------------------------------

    def tasks_due_between(self, start: datetime, end: datetime, lead_key: str) -> list[Task]:
        """Open tasks with a deadline in [start, end] and no `lead_key` marker yet."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM tasks t
                WHERE t.deadline BETWEEN ? AND ?
                  AND t.status NOT IN (?, ?)
                  AND NOT EXISTS (
                      SELECT 1 FROM task_lead_notices n
                      WHERE n.task_id = t.id AND n.lead_key = ?
                  )
                ORDER BY t.deadline
                """,
                (_to_db(start), _to_db(end), *_CLOSED_STATUSES, lead_key),
            ).fetchall()
            return self._hydrate(conn, rows)

    def claim_lead_notice(self, task_id: int, lead_key: str, now: datetime) -> bool:
        """Record that `lead_key` fired for this task. True only for the first caller."""
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO task_lead_notices (task_id, lead_key, fired_at) VALUES (?, ?, ?)",
                (task_id, lead_key, _to_db(now)),
            )
        return cursor.rowcount == 1


# ---------------------------------------------------------------------------
# Reminders and meetings
# ---------------------------------------------------------------------------


class ReminderDB(_SQLiteStore):
    """Standalone reminders (REM-) and meetings (MTG-)."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reminders (
                    id               INTEGER PRIMARY KEY AUTOINCREMENT,
                    reference        TEXT    NOT NULL UNIQUE,
                    owner_id         INTEGER NOT NULL,
                    organization     TEXT    NOT NULL DEFAULT '',
                    kind             TEXT    NOT NULL DEFAULT 'reminder',
                    title            TEXT    NOT NULL,
                    body             TEXT    NOT NULL DEFAULT '',
                    due_at           TEXT    NOT NULL,
                    status           TEXT    NOT NULL DEFAULT 'pending',
                    sent_at          TEXT,
                    meeting_with     TEXT    NOT NULL DEFAULT '',
                    meeting_location TEXT    NOT NULL DEFAULT '',
                    created_at       TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_reminders_due ON reminders (status, due_at)"
            )
        logger.debug("Reminders table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_reminder(row: sqlite3.Row) -> Reminder:
        return Reminder(
            id=row["id"],
            reference=row["reference"],
            owner_id=row["owner_id"],
            organization=row["organization"],
            kind=row["kind"],
            title=row["title"],
            body=row["body"],
            due_at=_from_db(row["due_at"]),
            status=row["status"],
            sent_at=_from_db(row["sent_at"]),
            meeting_with=row["meeting_with"],
            meeting_location=row["meeting_location"],
            created_at=_from_db(row["created_at"]),
        )

    def create_reminder(
        self,
        owner_id: int,
        title: str,
        due_at: datetime,
        now: datetime,
        kind: str = "reminder",
        body: str = "",
        organization: str = "",
        meeting_with: str = "",
        meeting_location: str = "",
    ) -> Reminder:
        prefix = "MTG" if kind == "meeting" else "REM"
        with self._connect() as conn:
            reference = self._next_sequence(conn, prefix, now.year)
            conn.execute(
                """
                INSERT INTO reminders
                    (reference, owner_id, organization, kind, title, body, due_at,
                     status, meeting_with, meeting_location, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?)
                """,
                (
                    reference, owner_id, organization, kind, title, body or "",
                    _to_db(due_at), meeting_with or "", meeting_location or "", _to_db(now),
                ),
            )
        logger.info("%s created: %s for user %d at %s", kind.title(), reference, owner_id, _to_db(due_at))
        return self.get_reminder(reference)

    def get_reminder(self, reference: str) -> Reminder | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM reminders WHERE reference = ?", (reference,)).fetchone()
        return self._row_to_reminder(row) if row else None

    def list_pending(self, owner_id: int) -> list[Reminder]:
        """A user's reminders and meetings that have not fired yet, soonest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM reminders WHERE owner_id = ? AND status = 'pending' ORDER BY due_at",
                (owner_id,),
            ).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def due_reminders(self, start: datetime, end: datetime) -> list[Reminder]:
        """Pending reminders with due_at in [start, end]."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM reminders
                WHERE status = 'pending' AND due_at BETWEEN ? AND ?
                ORDER BY due_at
                """,
                (_to_db(start), _to_db(end)),
            ).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def claim(self, reminder_id: int, now: datetime) -> bool:
        """Mark a reminder sent. True only for the caller that made the transition."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE reminders SET status = 'sent', sent_at = ? WHERE id = ? AND status = 'pending'",
                (_to_db(now), reminder_id),
            )
        return cursor.rowcount == 1

    def cancel(self, reference: str, owner_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE reminders SET status = 'cancelled'
                WHERE reference = ? AND owner_id = ? AND status = 'pending'
                """,
                (reference, owner_id),
            )
        cancelled = cursor.rowcount > 0
        if cancelled:
            logger.info("Reminder %s cancelled by user %d", reference, owner_id)
        return cancelled


# ---------------------------------------------------------------------------
# Pending conversations
# ---------------------------------------------------------------------------


class ConversationDB(_SQLiteStore):
    """One half-filled command per sender, with a hard expiry."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS pending_conversations (
                    sender      TEXT    PRIMARY KEY,
                    owner_id    INTEGER NOT NULL,
                    kind        TEXT    NOT NULL,
                    collected   TEXT    NOT NULL DEFAULT '{}',
                    missing     TEXT    NOT NULL DEFAULT '[]',
                    last_prompt TEXT    NOT NULL DEFAULT '',
                    expires_at  TEXT    NOT NULL,
                    version     INTEGER NOT NULL DEFAULT 1
                )
            """)
        logger.debug("Conversation table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_conversation(row: sqlite3.Row) -> PendingConversation:
        return PendingConversation(
            sender=row["sender"],
            owner_id=row["owner_id"],
            kind=row["kind"],
            collected=json.loads(row["collected"]),
            missing=json.loads(row["missing"]),
            last_prompt=row["last_prompt"],
            expires_at=_from_db(row["expires_at"]),
            version=row["version"],
        )

    def get(self, sender: str, now: datetime) -> PendingConversation | None:
        """Live state for a sender; expired rows are purged, never returned."""
        stamp = _to_db(now)
        with self._connect() as conn:
            purged = conn.execute(
                "DELETE FROM pending_conversations WHERE expires_at <= ?", (stamp,),
            ).rowcount
            row = conn.execute(
                "SELECT * FROM pending_conversations WHERE sender = ? AND expires_at > ?",
                (sender, stamp),
            ).fetchone()
        if purged:
            logger.debug("Purged %d expired conversation(s)", purged)
        return self._row_to_conversation(row) if row else None

    def save(
        self,
        sender: str,
        owner_id: int,
        kind: str,
        collected: dict,
        missing: list[str],
        last_prompt: str,
        expires_at: datetime,
    ) -> PendingConversation:
        """Create or replace the sender's state in one statement (version bumps)."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                INSERT INTO pending_conversations
                    (sender, owner_id, kind, collected, missing, last_prompt, expires_at, version)
                VALUES (?, ?, ?, ?, ?, ?, ?, 1)
                ON CONFLICT(sender) DO UPDATE SET
                    owner_id    = excluded.owner_id,
                    kind        = excluded.kind,
                    collected   = excluded.collected,
                    missing     = excluded.missing,
                    last_prompt = excluded.last_prompt,
                    expires_at  = excluded.expires_at,
                    version     = pending_conversations.version + 1
                RETURNING *
                """,
                (
                    sender, owner_id, kind, json.dumps(collected), json.dumps(missing),
                    last_prompt, _to_db(expires_at),
                ),
            ).fetchall()
        return self._row_to_conversation(rows[0])

    def complete(self, sender: str, version: int) -> bool:
        """Delete the state if it is still at `version`. True for exactly one caller."""
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM pending_conversations WHERE sender = ? AND version = ?",
                (sender, version),
            )
        return cursor.rowcount == 1

    def delete(self, sender: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM pending_conversations WHERE sender = ?", (sender,))
        return cursor.rowcount > 0

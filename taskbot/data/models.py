"""
taskbot — Data Models.

Tasks, reminders and the per-sender pending conversation all persist in
SQLite. Timestamps are timezone-aware datetimes (UTC as stored); rendering in
the operating timezone happens in `taskbot.core.messages`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """An employee who can talk to the assistant over WhatsApp."""

    id: int
    first_name: str
    phone: str                      # canonical +E.164
    last_name: str = ""
    email: str = ""
    role: str = "employee"
    organization: str = ""
    department: str = ""
    is_active: bool = True
    # WhatsApp preferences
    whatsapp_enabled: bool = True
    notify_reminders: bool = True
    notify_task_assigned: bool = True
    notify_daily_digest: bool = True
    reminder_intervals: list[int] = field(default_factory=list)  # lead minutes; empty = all
    created_at: datetime | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def wants_lead(self, minutes: int) -> bool:
        """Whether this user subscribed to the deadline reminder `minutes` ahead."""
        return not self.reminder_intervals or minutes in self.reminder_intervals


@dataclass
class TaskUpdate:
    """A progress note appended to a task's history."""

    id: int
    task_id: int
    author_id: int | None
    message: str
    status: str | None = None
    progress: int | None = None
    created_at: datetime | None = None


@dataclass
class Task:
    """A unit of work, referenced in chat as TASK-YYYY-NNNN."""

    id: int
    reference: str
    title: str
    organization: str = ""
    description: str = ""
    status: str = "pending"
    priority: str = "medium"
    progress: int = 0
    deadline: datetime | None = None
    assigned_to: int | None = None
    assigned_by: int | None = None
    created_by: int | None = None
    secondary_assignees: list[int] = field(default_factory=list)
    blocker: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    lead_notices: dict[str, datetime] = field(default_factory=dict)  # lead_key → fired_at

    @property
    def is_closed(self) -> bool:
        return self.status in ("completed", "cancelled")

    @property
    def assignee_ids(self) -> list[int]:
        """Primary assignee first, then secondary assignees, without duplicates."""
        ids: list[int] = []
        for user_id in [self.assigned_to, *self.secondary_assignees]:
            if user_id is not None and user_id not in ids:
                ids.append(user_id)
        return ids

    def involves(self, user_id: int) -> bool:
        return user_id == self.created_by or user_id in self.assignee_ids


@dataclass
class Reminder:
    """A standalone reminder or meeting (REM-/MTG-YYYY-NNNN)."""

    id: int
    reference: str
    owner_id: int
    title: str
    due_at: datetime
    organization: str = ""
    kind: str = "reminder"          # "reminder" | "meeting"
    body: str = ""
    status: str = "pending"         # "pending" | "sent" | "cancelled"
    sent_at: datetime | None = None
    meeting_with: str = ""
    meeting_location: str = ""
    created_at: datetime | None = None

    @property
    def is_meeting(self) -> bool:
        return self.kind == "meeting"


@dataclass
class PendingConversation:
    """A half-filled command waiting for the sender's next reply.

    At most one per sender; `version` changes on every write so a completion
    can be claimed exactly once.
    """

    sender: str
    owner_id: int
    kind: str
    expires_at: datetime
    collected: dict = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)
    last_prompt: str = ""
    version: int = 1

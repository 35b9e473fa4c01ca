"""Shared test fixtures and configuration.

Every store is backed by a temp SQLite file and every service gets the same
fixed clock: Friday 2026-10-16 10:00 UTC (15:00 in Asia/Karachi).
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from taskbot.config import Settings
from taskbot.ports.notification_port import DeliveryResult

FIXED_NOW = datetime(2026, 10, 16, 10, 0, tzinfo=timezone.utc)
KARACHI = ZoneInfo("Asia/Karachi")


class RecordingNotifier:
    """NotificationPort test double that records every send."""

    def __init__(self, configured: bool = True, fail_for: set[str] | None = None) -> None:
        self._configured = configured
        self.fail_for = fail_for or set()
        self.sent: list[tuple[str, str]] = []

    @property
    def configured(self) -> bool:
        return self._configured

    async def send_message(self, to: str, text: str) -> DeliveryResult:
        if to in self.fail_for:
            return DeliveryResult(ok=False, error="HTTP 500: boom")
        self.sent.append((to, text))
        return DeliveryResult(ok=True, message_id=f"SM{len(self.sent)}")

    def texts_to(self, to: str) -> list[str]:
        return [text for recipient, text in self.sent if recipient == to]


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a temp DB, WhatsApp configured, digest off."""
    return Settings(
        DATABASE_PATH=str(tmp_path / "taskbot.db"),
        TWILIO_ACCOUNT_SID="ACtest",
        TWILIO_AUTH_TOKEN="test-auth-token",
        DAILY_DIGEST_ENABLED=False,
    )


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def local_now():
    return FIXED_NOW.astimezone(KARACHI)


@pytest.fixture
def user_db(settings):
    from taskbot.data.db import UserDB
    return UserDB(settings.DATABASE_PATH)


@pytest.fixture
def task_db(settings):
    from taskbot.data.db import TaskDB
    return TaskDB(settings.DATABASE_PATH)


@pytest.fixture
def reminder_db(settings):
    from taskbot.data.db import ReminderDB
    return ReminderDB(settings.DATABASE_PATH)


@pytest.fixture
def conversation_db(settings):
    from taskbot.data.db import ConversationDB
    return ConversationDB(settings.DATABASE_PATH)


@pytest.fixture
def employee(user_db):
    return user_db.add_user(
        "Ali", "+923001234567", last_name="Khan", role="employee", organization="pvara",
    )


@pytest.fixture
def manager(user_db):
    return user_db.add_user(
        "Sara", "+923007654321", last_name="Ahmed", role="manager", organization="pvara",
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()

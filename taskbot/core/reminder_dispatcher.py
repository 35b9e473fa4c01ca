"""
taskbot — Reminder Dispatcher.

A fixed-cadence ticker that scans storage and pushes WhatsApp notifications:

- Deadline lead times: one notice per (task, lead time), e.g. 1 day, 4 hours,
  1 hour and 30 minutes before the deadline, to every assignee.
- Standalone reminders and meetings: the owner is notified once when due.
- Overdue notices (optional): one notice per task once its deadline passes.
- Daily digest: a morning summary per opted-in user, once per local day.

Every "send once" guarantee is a conditional write claimed *before* the send,
so overlapping scans (the ticker plus an admin trigger, or two workers) can
never notify twice. A failed send is logged and not retried.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Callable
from zoneinfo import ZoneInfo

from taskbot.core import messages
from taskbot.core.timeparse import utcnow

if TYPE_CHECKING:
    from taskbot.config import LeadTime, Settings
    from taskbot.data.db import ReminderDB, TaskDB, UserDB
    from taskbot.data.models import Task, User
    from taskbot.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

OVERDUE_KEY = "overdue"


@dataclass
class ScanReport:
    checked: int = 0
    sent: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class ReminderDispatcher:
    """Owns the reminder ticker and the scans it runs."""

    def __init__(
        self,
        settings: Settings,
        users: UserDB,
        tasks: TaskDB,
        reminders: ReminderDB,
        notifier: NotificationPort,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._users = users
        self._tasks = tasks
        self._reminders = reminders
        self._notifier = notifier
        self._clock = clock
        self._tz = ZoneInfo(settings.TIMEZONE)

        self._ticker: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._scan_in_progress = False
        self._last_run: datetime | None = None
        self._last_report: ScanReport | None = None
        self._last_digest_date: date | None = None

    # -- lifecycle ----------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    def start(self) -> bool:
        """Start the background ticker. Returns False when it cannot run."""
        if self.running:
            return True
        if not self._notifier.configured:
            logger.warning("WhatsApp not configured; reminder dispatcher not started")
            return False

        self._stop_event = asyncio.Event()
        self._ticker = asyncio.create_task(self._run(), name="reminder-dispatcher")
        logger.info(
            "Reminder dispatcher started (every %ds, lead times: %s)",
            self._settings.CHECK_INTERVAL_SECONDS,
            ", ".join(lead.label for lead in self._settings.REMINDER_LEAD_TIMES),
        )
        return True

    async def stop(self) -> None:
        if self._ticker is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            await self._ticker
        finally:
            self._ticker = None
            self._stop_event = None
        logger.info("Reminder dispatcher stopped")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self._settings.CHECK_INTERVAL_SECONDS
        next_at = loop.time()
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Reminder scan failed")

            # Fixed cadence: slots missed by a slow scan are skipped, not queued
            next_at += interval
            now = loop.time()
            if next_at < now:
                missed = math.ceil((now - next_at) / interval)
                logger.warning("Reminder scan overran; skipping %d tick(s)", missed)
                next_at += missed * interval
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=next_at - now)
            except asyncio.TimeoutError:
                pass

    # -- scans --------------------------------------------------------------

    async def tick(self) -> ScanReport | None:
        """Run one scan unless another is already in flight (then None)."""
        if self._scan_in_progress:
            logger.info("Reminder scan already in progress, skipping")
            return None
        self._scan_in_progress = True
        try:
            return await self.run_once()
        finally:
            self._scan_in_progress = False

    async def run_once(self) -> ScanReport:
        now = self._clock()
        report = ScanReport()

        for lead in self._settings.REMINDER_LEAD_TIMES:
            await self._scan_lead_time(lead, now, report)
        await self._scan_reminders(now, report)
        if self._settings.OVERDUE_NOTICES_ENABLED:
            await self._scan_overdue(now, report)
        if self._digest_due(now):
            self._last_digest_date = now.astimezone(self._tz).date()
            sent = await self.send_daily_digest(now)
            report.sent += sent

        self._last_run = now
        self._last_report = report
        if report.sent or report.errors:
            logger.info(
                "Reminder scan: checked=%d sent=%d skipped=%d errors=%d",
                report.checked, report.sent, report.skipped, len(report.errors),
            )
        return report

    async def _scan_lead_time(self, lead: LeadTime, now: datetime, report: ScanReport) -> None:
        window = timedelta(seconds=self._settings.DEADLINE_WINDOW_SECONDS)
        target = now + timedelta(minutes=lead.minutes)
        for task in self._tasks.tasks_due_between(target - window, target + window, lead.key):
            report.checked += 1
            if not self._tasks.claim_lead_notice(task.id, lead.key, now):
                report.skipped += 1
                continue
            text = messages.deadline_reminder(task, lead.label, self._tz)
            for user in self._recipients(task, lambda u: u.notify_reminders and u.wants_lead(lead.minutes)):
                await self._send(user, text, report, f"{task.reference} ({lead.label})")

    async def _scan_reminders(self, now: datetime, report: ScanReport) -> None:
        start = now - timedelta(minutes=self._settings.REMINDER_CATCHUP_MINUTES)
        for reminder in self._reminders.due_reminders(start, now):
            report.checked += 1
            if not self._reminders.claim(reminder.id, now):
                report.skipped += 1
                continue
            owner = self._users.get_user(reminder.owner_id)
            if owner is None or not self._reachable(owner) or not owner.notify_reminders:
                report.skipped += 1
                continue
            await self._send(owner, messages.reminder_due(reminder, self._tz), report, reminder.reference)

    async def _scan_overdue(self, now: datetime, report: ScanReport) -> None:
        for task in self._tasks.list_tasks(overdue_at=now):
            if OVERDUE_KEY in task.lead_notices:
                continue
            report.checked += 1
            if not self._tasks.claim_lead_notice(task.id, OVERDUE_KEY, now):
                report.skipped += 1
                continue
            text = messages.task_overdue(task, self._tz)
            for user in self._recipients(task, lambda u: u.notify_reminders):
                await self._send(user, text, report, f"{task.reference} (overdue)")

    # -- daily digest -------------------------------------------------------

    def _digest_due(self, now: datetime) -> bool:
        if not self._settings.DAILY_DIGEST_ENABLED:
            return False
        local = now.astimezone(self._tz)
        if self._last_digest_date == local.date():
            return False
        hour, minute = (int(part) for part in self._settings.DAILY_DIGEST_TIME.split(":"))
        return local.hour == hour and local.minute == minute

    async def send_daily_digest(self, now: datetime | None = None) -> int:
        """Send the digest to every opted-in user with open tasks. Returns the count sent."""
        now = now or self._clock()
        report = ScanReport()
        for user in self._users.list_users(active_only=True):
            if not user.whatsapp_enabled or not user.notify_daily_digest:
                continue
            tasks = self._tasks.list_tasks(user_id=user.id, organization=user.organization, include_closed=False)
            if not tasks:
                continue
            await self._send(user, messages.daily_digest(user, tasks, now, self._tz), report, "daily digest")
        logger.info("Daily digest sent to %d user(s)", report.sent)
        return report.sent

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def _reachable(user: User) -> bool:
        return user.is_active and user.whatsapp_enabled and bool(user.phone)

    def _recipients(self, task: Task, wants: Callable[[User], bool]) -> list[User]:
        recipients = []
        for user_id in task.assignee_ids:
            user = self._users.get_user(user_id)
            if user is not None and self._reachable(user) and wants(user):
                recipients.append(user)
        return recipients

    async def _send(self, user: User, text: str, report: ScanReport, what: str) -> None:
        try:
            result = await self._notifier.send_message(user.phone, text)
        except Exception as exc:
            logger.error("Failed to send %s to user %d: %s", what, user.id, exc)
            report.errors.append(f"{what}: {exc}")
            return
        if result.ok:
            report.sent += 1
            logger.info("Sent %s to user %d", what, user.id)
        else:
            logger.warning("Could not deliver %s to user %d: %s", what, user.id, result.error)
            report.errors.append(f"{what}: {result.error}")

    def status(self) -> dict:
        return {
            "running": self.running,
            "last_run": self._last_run.isoformat() if self._last_run else None,
            "last_report": self._last_report.to_dict() if self._last_report else None,
            "interval_seconds": self._settings.CHECK_INTERVAL_SECONDS,
            "lead_times": [lead.label for lead in self._settings.REMINDER_LEAD_TIMES],
            "daily_digest": self._settings.DAILY_DIGEST_TIME if self._settings.DAILY_DIGEST_ENABLED else None,
        }

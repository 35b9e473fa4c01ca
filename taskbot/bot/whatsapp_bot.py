"""
taskbot — WhatsApp HTTP surface.

WhatsApp is the only user interface. Twilio posts every inbound message to
the webhook; the reply goes back out through the Twilio REST API, never in
the HTTP response, so the webhook acknowledges immediately and processing
runs as a background task.

Routes:
    POST /api/whatsapp/webhook            Twilio inbound messages
    GET  /api/whatsapp/status             channel + dispatcher status
    POST /api/whatsapp/trigger-reminders  run one reminder scan now
    POST /api/whatsapp/trigger-digest     send the daily digest now
    GET  /health                          liveness
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable

import uvicorn
from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request
from fastapi.responses import PlainTextResponse

from taskbot.adapters.whatsapp_notifier import TwilioWhatsAppNotifier
from taskbot.config import Settings, load_settings
from taskbot.core.action_service import ActionService
from taskbot.core.conversation import ConversationManager
from taskbot.core.interpreter import FallbackInterpreter
from taskbot.core.llm import LLMClient
from taskbot.core.parser import IntentParser
from taskbot.core.pipeline import InboundMessage, MessagePipeline
from taskbot.core.reminder_dispatcher import ReminderDispatcher
from taskbot.core.timeparse import utcnow
from taskbot.core.transcriber import VoiceTranscriber
from taskbot.data.db import ConversationDB, ReminderDB, TaskDB, UserDB
from taskbot.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: Twilio request signatures and admin token
# ---------------------------------------------------------------------------


def compute_twilio_signature(auth_token: str, url: str, params: dict[str, str]) -> str:
    """HMAC-SHA1 over the URL followed by every POST param (sorted by name)."""
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def is_valid_signature(auth_token: str, url: str, params: dict[str, str], signature: str | None) -> bool:
    if not signature or not auth_token:
        return False
    expected = compute_twilio_signature(auth_token, url, params)
    return hmac.compare_digest(expected, signature)


def _check_admin(settings: Settings, token: str | None) -> None:
    if settings.ADMIN_TOKEN and not hmac.compare_digest(token or "", settings.ADMIN_TOKEN):
        raise HTTPException(status_code=401, detail="Invalid admin token")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def build_app(
    settings: Settings | None = None,
    notifier: NotificationPort | None = None,
    transcriber: VoiceTranscriber | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """Build the FastAPI app with every service wired onto `app.state`."""
    settings = settings or load_settings()
    notifier = notifier or TwilioWhatsAppNotifier.from_settings(settings)
    transcriber = transcriber or VoiceTranscriber(settings)

    users = UserDB(settings.DATABASE_PATH)
    tasks = TaskDB(settings.DATABASE_PATH)
    reminders = ReminderDB(settings.DATABASE_PATH)
    conversations = ConversationDB(settings.DATABASE_PATH)

    llm = LLMClient.from_settings(settings)
    interpreter = FallbackInterpreter(llm, settings.TIMEZONE, clock=clock) if llm else None
    parser = IntentParser(interpreter, settings.TIMEZONE, clock=clock)
    manager = ConversationManager(
        conversations, settings.TIMEZONE, ttl_minutes=settings.CONVERSATION_TTL_MINUTES, clock=clock,
    )
    actions = ActionService(settings, users, tasks, reminders, clock=clock)
    pipeline = MessagePipeline(settings, users, parser, manager, actions, notifier, transcriber)
    dispatcher = ReminderDispatcher(settings, users, tasks, reminders, notifier, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting taskbot WhatsApp service")
        dispatcher.start()
        yield
        await dispatcher.stop()
        logger.info("taskbot WhatsApp service stopped")

    app = FastAPI(title="taskbot", description="WhatsApp task and reminder assistant", lifespan=lifespan)
    app.state.settings = settings
    app.state.users = users
    app.state.tasks = tasks
    app.state.reminders = reminders
    app.state.notifier = notifier
    app.state.pipeline = pipeline
    app.state.dispatcher = dispatcher

    # -- webhook ------------------------------------------------------------

    @app.post("/api/whatsapp/webhook", response_class=PlainTextResponse)
    async def whatsapp_webhook(
        request: Request,
        background_tasks: BackgroundTasks,
        x_twilio_signature: str | None = Header(default=None),
    ) -> str:
        form = await request.form()
        params = {key: str(value) for key, value in form.items()}

        if settings.WEBHOOK_VALIDATE_SIGNATURE:
            url = settings.WEBHOOK_PUBLIC_URL or str(request.url)
            if not is_valid_signature(settings.TWILIO_AUTH_TOKEN, url, params, x_twilio_signature):
                logger.warning("Rejected webhook with invalid Twilio signature")
                raise HTTPException(status_code=403, detail="Invalid signature")

        try:
            num_media = int(params.get("NumMedia") or 0)
        except ValueError:
            num_media = 0
        message = InboundMessage(
            sender=params.get("From", ""),
            body=params.get("Body", ""),
            num_media=num_media,
            media_url=params.get("MediaUrl0", ""),
            media_type=params.get("MediaContentType0", ""),
        )
        logger.info("WhatsApp message received from %s (media: %d)", message.sender, num_media)
        background_tasks.add_task(pipeline.handle, message)
        return "OK"

    # -- status and admin triggers --------------------------------------------

    @app.get("/api/whatsapp/status")
    async def whatsapp_status() -> dict:
        return {
            "status": "connected" if notifier.configured else "not_configured",
            "whatsapp_number": settings.TWILIO_WHATSAPP_NUMBER if notifier.configured else None,
            "scheduler": dispatcher.status(),
        }

    @app.post("/api/whatsapp/trigger-reminders")
    async def trigger_reminders(x_admin_token: str | None = Header(default=None)) -> dict:
        _check_admin(settings, x_admin_token)
        report = await dispatcher.tick()
        if report is None:
            return {"skipped": True}
        return {"skipped": False, **report.to_dict()}

    @app.post("/api/whatsapp/trigger-digest")
    async def trigger_digest(x_admin_token: str | None = Header(default=None)) -> dict:
        _check_admin(settings, x_admin_token)
        sent = await dispatcher.send_daily_digest()
        return {"sent": sent}

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


def main() -> None:
    """Entry point: build the app and serve it with uvicorn."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    settings = load_settings()
    logger.info("Starting taskbot on %s:%d...", settings.HOST, settings.PORT)
    app = build_app(settings)
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    main()

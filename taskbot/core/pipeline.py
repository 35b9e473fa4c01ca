"""
taskbot — Inbound Message Pipeline.

One WhatsApp message in, zero or more WhatsApp messages out:

    sender → user lookup → (voice → text) → cancel? → pending conversation?
           → parse → completeness check → dispatch → reply + notifications

Every exception is contained here; the webhook only schedules `handle()`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from taskbot.core import messages
from taskbot.core.action_service import SuccessResponse
from taskbot.core.conversation import Outcome, is_cancel_keyword
from taskbot.core.normalizer import sender_key
from taskbot.core.transcriber import TranscriptionError, is_audio

if TYPE_CHECKING:
    from taskbot.config import Settings
    from taskbot.core.action_service import ActionService
    from taskbot.core.conversation import ConversationManager
    from taskbot.core.intent import Intent
    from taskbot.core.parser import IntentParser
    from taskbot.core.transcriber import VoiceTranscriber
    from taskbot.data.db import UserDB
    from taskbot.data.models import User
    from taskbot.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


@dataclass
class InboundMessage:
    """The fields of a Twilio WhatsApp webhook the pipeline uses."""

    sender: str                 # raw "From", e.g. "whatsapp:+923001234567"
    body: str = ""
    num_media: int = 0
    media_url: str = ""
    media_type: str = ""

    @property
    def has_voice(self) -> bool:
        return self.num_media > 0 and bool(self.media_url) and is_audio(self.media_type)


class MessagePipeline:
    """Routes one inbound message through parsing, clarification and dispatch."""

    def __init__(
        self,
        settings: Settings,
        users: UserDB,
        parser: IntentParser,
        conversations: ConversationManager,
        actions: ActionService,
        notifier: NotificationPort,
        transcriber: VoiceTranscriber | None = None,
    ) -> None:
        self._settings = settings
        self._users = users
        self._parser = parser
        self._conversations = conversations
        self._actions = actions
        self._notifier = notifier
        self._transcriber = transcriber

    async def handle(self, message: InboundMessage) -> None:
        sender = sender_key(message.sender, self._settings.DEFAULT_COUNTRY_CODE)
        if not sender:
            logger.warning("Ignoring message without a usable sender: %r", message.sender)
            return

        try:
            await self._handle(sender, message)
        except Exception:
            logger.exception("Unhandled error processing message from %s", sender)
            await self._reply(sender, messages.error(messages.GENERIC_ERROR))

    async def _handle(self, sender: str, message: InboundMessage) -> None:
        user = self._users.get_by_phone(sender)
        if user is None or not user.is_active:
            logger.info("Message from unregistered number %s", sender)
            await self._reply(sender, messages.NOT_REGISTERED)
            return
        if not user.whatsapp_enabled:
            await self._reply(sender, messages.WHATSAPP_DISABLED)
            return

        text = message.body or ""
        if message.has_voice:
            transcription = await self._transcribe(sender, message)
            if transcription is None:
                return
            text = transcription

        text = text.strip()
        if not text:
            return

        logger.info("Message from user %d (%d chars)", user.id, len(text))

        if is_cancel_keyword(text):
            cancelled = self._conversations.cancel(sender)
            await self._reply(sender, messages.ACTION_CANCELLED if cancelled else messages.NOTHING_TO_CANCEL)
            return

        resumption = self._conversations.resume(sender, text)
        if resumption.outcome is Outcome.PROMPT:
            await self._reply(sender, messages.more_info_needed(resumption.prompt))
            return
        if resumption.outcome is Outcome.STALE:
            return
        if resumption.outcome is Outcome.COMPLETE:
            await self._execute(sender, user, resumption.intent)
            return

        intent = await self._parser.parse(text, user)
        logger.info("Parsed %s for user %d", intent.kind.value, user.id)

        prompt = self._conversations.begin(sender, user.id, intent)
        if prompt is not None:
            await self._reply(sender, messages.more_info_needed(prompt))
            return

        await self._execute(sender, user, intent)

    async def _transcribe(self, sender: str, message: InboundMessage) -> str | None:
        if self._transcriber is None:
            await self._reply(sender, messages.error("Voice notes are not supported right now. Please type your message."))
            return None

        await self._reply(sender, messages.VOICE_PROCESSING)
        try:
            transcription = await self._transcriber.transcribe(message.media_url, message.media_type)
        except TranscriptionError as exc:
            await self._reply(sender, messages.error(str(exc)))
            return None

        await self._reply(sender, messages.voice_received(transcription))
        return transcription

    async def _execute(self, sender: str, user: User, intent: Intent) -> None:
        response = await self._actions.dispatch(intent, user)
        await self._reply(sender, response.message)

        if isinstance(response, SuccessResponse):
            for outbound in response.notify:
                await self._reply(outbound.to, outbound.text)

    async def _reply(self, to: str, text: str) -> None:
        try:
            result = await self._notifier.send_message(to, text)
        except Exception as exc:
            logger.error("Failed to send WhatsApp message to %s: %s", to, exc)
            return
        if not result.ok:
            logger.warning("WhatsApp message to %s not delivered: %s", to, result.error)

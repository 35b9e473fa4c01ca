"""
taskbot — Voice Note Transcriber.

Voice notes arrive as Twilio media URLs. The audio is downloaded with the
account's basic auth, written to a temporary file and sent to OpenAI Whisper.
The transcription then flows into the same parser as typed messages.

This is the only module that uses the OpenAI SDK directly; the LLM fallback
parser goes through `taskbot.core.llm`.
"""

from __future__ import annotations

import logging
import mimetypes
import os
import tempfile
from typing import TYPE_CHECKING

import httpx
from openai import AsyncOpenAI

from taskbot.core.errors import TaskBotError

if TYPE_CHECKING:
    from taskbot.config import Settings

logger = logging.getLogger(__name__)

MAX_AUDIO_BYTES = 25 * 1024 * 1024  # Whisper upload limit


class TranscriptionError(TaskBotError):
    """Download or speech-to-text failed; the user is told to type instead."""


def is_audio(content_type: str | None) -> bool:
    return bool(content_type) and content_type.lower().startswith("audio/")


class VoiceTranscriber:
    """Download a voice note and transcribe it with Whisper."""

    def __init__(
        self,
        settings: Settings,
        client: AsyncOpenAI | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._http = http_client

    @property
    def configured(self) -> bool:
        return bool(self._settings.OPENAI_API_KEY) or self._client is not None

    def _openai(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._settings.OPENAI_API_KEY)
        return self._client

    async def download(self, media_url: str) -> bytes:
        auth = None
        if self._settings.TWILIO_ACCOUNT_SID and self._settings.TWILIO_AUTH_TOKEN:
            auth = (self._settings.TWILIO_ACCOUNT_SID, self._settings.TWILIO_AUTH_TOKEN)
        try:
            if self._http is not None:
                response = await self._http.get(media_url, auth=auth, follow_redirects=True)
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.get(media_url, auth=auth, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Voice note download failed: %s", exc)
            raise TranscriptionError("Could not download the voice note.") from exc

        if len(response.content) > MAX_AUDIO_BYTES:
            raise TranscriptionError("The voice note is too long to transcribe.")
        return response.content

    async def transcribe(self, media_url: str, content_type: str = "audio/ogg") -> str:
        """Return the transcription text.

        Raises:
            TranscriptionError: download failed, Whisper failed, or nothing
                intelligible was said.
        """
        if not self.configured:
            raise TranscriptionError("Voice notes are not supported right now. Please type your message.")

        audio = await self.download(media_url)
        suffix = mimetypes.guess_extension(content_type.split(";")[0].strip()) or ".ogg"

        fd, path = tempfile.mkstemp(suffix=suffix)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(audio)
            options = {"language": self._settings.WHISPER_LANGUAGE} if self._settings.WHISPER_LANGUAGE else {}
            with open(path, "rb") as audio_file:
                response = await self._openai().audio.transcriptions.create(
                    model="whisper-1", file=audio_file, **options,
                )
        except Exception as exc:
            logger.error("Whisper transcription failed: %s", exc)
            raise TranscriptionError("Could not transcribe the voice note. Please type your message.") from exc
        finally:
            os.unlink(path)

        text = (response.text or "").strip()
        if not text:
            raise TranscriptionError("The voice note was empty. Please try again or type your message.")
        logger.info("Transcribed %d chars from voice note", len(text))
        return text

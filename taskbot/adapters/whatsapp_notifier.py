"""Twilio WhatsApp notification adapter — implements NotificationPort.

Sends plain-text WhatsApp messages through the Twilio Messages REST API.
Transient failures (network errors, 429 and 5xx) are retried a bounded number
of times; every send ends in a DeliveryResult rather than an exception.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from taskbot.core.normalizer import normalize_phone
from taskbot.ports.notification_port import DeliveryResult

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 1.0


class TwilioWhatsAppNotifier:
    """Twilio implementation of NotificationPort."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        country_code: str = "92",
        client: httpx.AsyncClient | None = None,
        retry_delay: float = RETRY_DELAY_SECONDS,
    ) -> None:
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from = from_number if from_number.startswith("whatsapp:") else f"whatsapp:{from_number}"
        self._country_code = country_code
        self._client = client
        self._retry_delay = retry_delay

    @classmethod
    def from_settings(cls, settings, client: httpx.AsyncClient | None = None) -> TwilioWhatsAppNotifier:
        return cls(
            account_sid=settings.TWILIO_ACCOUNT_SID,
            auth_token=settings.TWILIO_AUTH_TOKEN,
            from_number=settings.TWILIO_WHATSAPP_NUMBER,
            country_code=settings.DEFAULT_COUNTRY_CODE,
            client=client,
        )

    @property
    def configured(self) -> bool:
        return bool(self._account_sid and self._auth_token)

    @property
    def from_number(self) -> str:
        return self._from

    def _messages_url(self) -> str:
        return f"{TWILIO_API_BASE}/Accounts/{self._account_sid}/Messages.json"

    async def send_message(self, to: str, text: str) -> DeliveryResult:
        if not self.configured:
            logger.warning("WhatsApp not configured, dropping message to %s", to)
            return DeliveryResult.not_configured()

        phone = normalize_phone(to, self._country_code)
        if not phone:
            logger.warning("Invalid recipient number %r", to)
            return DeliveryResult(ok=False, error="invalid_number")

        data = {"From": self._from, "To": f"whatsapp:{phone}", "Body": text}
        if self._client is not None:
            return await self._send(self._client, phone, data)
        async with httpx.AsyncClient(timeout=15.0) as client:
            return await self._send(client, phone, data)

    async def _send(self, client: httpx.AsyncClient, phone: str, data: dict) -> DeliveryResult:
        last_error = ""
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = await client.post(
                    self._messages_url(), data=data, auth=(self._account_sid, self._auth_token),
                )
            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                logger.warning("Twilio send to %s failed (attempt %d/%d): %s", phone, attempt, MAX_ATTEMPTS, exc)
            else:
                if response.status_code < 300:
                    sid = response.json().get("sid", "")
                    logger.info("WhatsApp message sent to %s (%s)", phone, sid)
                    return DeliveryResult(ok=True, message_id=sid)

                last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                if response.status_code != 429 and response.status_code < 500:
                    logger.error("Twilio rejected message to %s: %s", phone, last_error)
                    return DeliveryResult(ok=False, error=last_error)
                logger.warning(
                    "Twilio send to %s failed (attempt %d/%d): %s", phone, attempt, MAX_ATTEMPTS, last_error,
                )

            if attempt < MAX_ATTEMPTS:
                await asyncio.sleep(self._retry_delay * attempt)

        logger.error("Giving up on message to %s after %d attempts", phone, MAX_ATTEMPTS)
        return DeliveryResult(ok=False, error=last_error)

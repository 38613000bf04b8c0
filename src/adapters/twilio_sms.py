"""Twilio SMS adapter — the SMS half of MessageTransport.

The Twilio client is synchronous, so each send runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from src.ports.messaging_port import MessageTransportError

logger = logging.getLogger(__name__)


class TwilioSmsSender:
    """Send SMS through Twilio."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str) -> None:
        self._from_number = from_number
        self._client: Client | None = None
        if account_sid and auth_token:
            self._client = Client(account_sid, auth_token)
        else:
            logger.warning("Twilio configuration incomplete, SMS disabled")

    @property
    def configured(self) -> bool:
        return self._client is not None and bool(self._from_number)

    async def send_sms(self, phone_number: str, body: str) -> None:
        if not self.configured:
            raise MessageTransportError("Twilio is not configured")

        try:
            message = await asyncio.to_thread(
                self._client.messages.create,
                body=body,
                from_=self._from_number,
                to=phone_number,
            )
        except TwilioException as exc:
            raise MessageTransportError(f"Twilio send failed: {exc}") from exc

        logger.info("SMS sent to %s, SID: %s", phone_number, message.sid)

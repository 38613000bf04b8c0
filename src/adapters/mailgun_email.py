"""Mailgun e-mail adapter — the e-mail half of MessageTransport.

Posts to the Mailgun messages endpoint with basic auth. Any failure
(missing configuration, HTTP error, timeout) becomes MessageTransportError.
"""

from __future__ import annotations

import logging

import httpx

from src.ports.messaging_port import MessageTransportError

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 10


class MailgunEmailSender:
    """Send plain-text e-mail through the Mailgun HTTP API."""

    def __init__(self, api_key: str, api_url: str, from_email: str) -> None:
        self._api_key = api_key
        self._api_url = api_url
        self._from_email = from_email

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._api_url)

    async def send_email(self, address: str, subject: str, body: str) -> None:
        if not self.configured:
            raise MessageTransportError("Mailgun is not configured")

        try:
            async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
                resp = await client.post(
                    self._api_url,
                    auth=("api", self._api_key),
                    data={
                        "from": self._from_email,
                        "to": address,
                        "subject": subject,
                        "text": body,
                    },
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise MessageTransportError(f"Mailgun request failed: {exc}") from exc

        logger.info("E-mail sent to %s: %s", address, subject)

"""Messaging port — abstract interface for reaching an emergency contact."""

from __future__ import annotations

from typing import Protocol


class MessageTransportError(Exception):
    """Raised when a single message channel fails to deliver."""


class MessageTransport(Protocol):
    """E-mail and SMS channels. Each one may fail independently."""

    async def send_email(self, address: str, subject: str, body: str) -> None: ...

    async def send_sms(self, phone_number: str, body: str) -> None: ...

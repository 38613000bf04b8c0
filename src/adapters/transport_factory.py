"""Message transport factory — builds the emergency channels from config."""

from __future__ import annotations

from src.adapters.mailgun_email import MailgunEmailSender
from src.adapters.twilio_sms import TwilioSmsSender
from src.ports.messaging_port import MessageTransport


class EmergencyTransport:
    """MessageTransport made of one e-mail sender and one SMS sender."""

    def __init__(self, email: MailgunEmailSender, sms: TwilioSmsSender) -> None:
        self._email = email
        self._sms = sms

    async def send_email(self, address: str, subject: str, body: str) -> None:
        await self._email.send_email(address, subject, body)

    async def send_sms(self, phone_number: str, body: str) -> None:
        await self._sms.send_sms(phone_number, body)


def create_message_transport() -> MessageTransport:
    """Return the transport configured by the MAILGUN_* and TWILIO_* settings."""
    from src.config import settings

    email = MailgunEmailSender(
        api_key=settings.MAILGUN_API_KEY,
        api_url=settings.MAILGUN_API_URL,
        from_email=settings.MAIL_FROM,
    )
    sms = TwilioSmsSender(
        account_sid=settings.TWILIO_ACCOUNT_SID,
        auth_token=settings.TWILIO_AUTH_TOKEN,
        from_number=settings.TWILIO_PHONE_NUMBER,
    )
    return EmergencyTransport(email, sms)

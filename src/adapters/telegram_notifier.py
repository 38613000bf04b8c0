"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance to satisfy the NotificationPort protocol.
Reminders carry inline "Taken" / "Snooze" buttons whose callback data
identifies the occurrence.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.helpers import escape_markdown

if TYPE_CHECKING:
    from src.ports.notification_sink import WakeupPayload

logger = logging.getLogger(__name__)


def reminder_keyboard(payload: WakeupPayload, postpone_minutes: int) -> InlineKeyboardMarkup:
    ref = f"{payload.medication_id}:{payload.occurrence_key}"
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("✅ Taken", callback_data=f"ack:{ref}"),
        InlineKeyboardButton(f"⏰ Snooze {postpone_minutes} min", callback_data=f"snooze:{ref}"),
    ]])


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot, postpone_minutes: int = 10) -> None:
        self._bot = bot
        self._postpone_minutes = postpone_minutes

    async def send_message(self, user_id: int, text: str) -> None:
        await self._bot.send_message(chat_id=user_id, text=text)

    async def send_reminder(self, user_id: int, payload: WakeupPayload) -> None:
        await self._bot.send_message(
            chat_id=user_id,
            text=f"💊 *{escape_markdown(payload.title)}*\n{escape_markdown(payload.text)}",
            parse_mode="Markdown",
            reply_markup=reminder_keyboard(payload, self._postpone_minutes),
        )

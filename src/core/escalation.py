"""
MedMinder — Escalation.

An EscalationTimer watches one fired occurrence. It starts ARMED and ends
in exactly one terminal state: ACKNOWLEDGED or POSTPONED when the user
responds, ESCALATED (or LAPSED, with nobody to alert) when the grace window
runs out, CANCELLED when the medication is deleted. A timer is never
re-armed; the next occurrence gets a new one.

This module also builds the emergency message and sends it on every
configured channel. A failing channel never stops the others.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Awaitable, Callable

from src.data.models import OccurrenceState

if TYPE_CHECKING:
    from src.data.models import EmergencyContact, Medication
    from src.ports.messaging_port import MessageTransport

logger = logging.getLogger(__name__)

ESCALATION_SUBJECT = "Medication reminder alert"


class EscalationTimer:
    """Cancellable grace-window watchdog for a single occurrence."""

    def __init__(self, medication_id: str, occurrence_key: str) -> None:
        self.medication_id = medication_id
        self.occurrence_key = occurrence_key
        self.state = OccurrenceState.ARMED
        self._task: asyncio.Task | None = None

    @property
    def is_armed(self) -> bool:
        return self.state is OccurrenceState.ARMED

    def start(
        self,
        delay: timedelta,
        on_expire: Callable[[str, str], Awaitable[None]],
    ) -> None:
        """Schedule on_expire(medication_id, key) after delay. Call once."""
        if self._task is not None:
            raise RuntimeError("Escalation timer already started")

        async def _wait() -> None:
            await asyncio.sleep(max(delay.total_seconds(), 0))
            await on_expire(self.medication_id, self.occurrence_key)

        self._task = asyncio.create_task(
            _wait(), name=f"escalation:{self.medication_id}@{self.occurrence_key}",
        )

    def resolve(self, state: OccurrenceState) -> bool:
        """Move to a terminal state and stop waiting. False if already terminal."""
        if not state.is_terminal:
            raise ValueError(f"{state} is not a terminal state")
        if not self.is_armed:
            return False

        self.state = state
        # The expiry path resolves the timer from inside its own task.
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
        return True

    def stop(self) -> None:
        """Stop waiting without settling, e.g. on shutdown."""
        if self._task is not None and not self._task.done():
            self._task.cancel()


def build_escalation_message(display_name: str, medication_name: str) -> str:
    return (
        f"Alert: {display_name} has not taken {medication_name} "
        "at the scheduled time."
    )


async def dispatch_escalation(
    contact: EmergencyContact,
    message: str,
    transport: MessageTransport,
) -> list[str]:
    """Send the alert on every channel the contact has.

    Returns the channels that succeeded. Failures are logged, not raised.
    """
    delivered: list[str] = []

    if contact.email:
        try:
            await transport.send_email(contact.email, ESCALATION_SUBJECT, message)
            delivered.append("email")
        except Exception as exc:
            logger.error("Escalation e-mail to %s failed: %s", contact.email, exc)

    if contact.phone:
        try:
            await transport.send_sms(contact.phone, message)
            delivered.append("sms")
        except Exception as exc:
            logger.error("Escalation SMS to %s failed: %s", contact.phone, exc)

    return delivered


async def escalate(
    medication: Medication,
    display_name: str,
    transport: MessageTransport,
) -> list[str]:
    """Alert the medication's emergency contact about a missed dose."""
    contact = medication.emergency_contact
    if contact is None or not contact.has_deliverable_channel:
        logger.warning("No deliverable emergency contact for '%s'", medication.name)
        return []

    message = build_escalation_message(display_name, medication.name)
    delivered = await dispatch_escalation(contact, message, transport)
    logger.info(
        "Escalation for '%s' sent to %s via %s",
        medication.name, contact.name, ", ".join(delivered) or "no channel",
    )
    return delivered

"""Notification sink port — abstract interface for future wake-ups.

The engine decides when and what; the sink owns how the platform wakes up
at that instant and delivers the payload back.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Protocol


@dataclass(frozen=True)
class WakeupPayload:
    """Data carried by a wake-up and handed back when it fires."""

    medication_id: str
    occurrence_key: str
    scheduled_at: datetime
    title: str
    text: str
    postponed: bool = False


# Called by a sink when a wake-up fires.
FireCallback = Callable[[WakeupPayload], Awaitable[None]]


def wakeup_id_for(medication_id: str, key: str) -> str:
    """Deterministic wake-up identity, so re-submission is idempotent."""
    return f"{medication_id}@{key}"


class NotificationSink(Protocol):
    """Abstract wake-up scheduler used by the scheduling driver."""

    def submit(
        self,
        wakeup_id: str,
        fire_at: datetime,
        payload: WakeupPayload,
        repeat_interval: timedelta | None = None,
    ) -> None: ...

    def cancel(self, wakeup_id: str) -> None: ...

    def cancel_all(self) -> None: ...

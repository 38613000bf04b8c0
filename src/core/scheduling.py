"""
MedMinder — Scheduling Driver.

Keeps the notification sink's pending wake-ups in step with the registry.
Each medication has at most one regular wake-up pending (its next
occurrence) plus any postponed reminders. The driver re-submits after every
fire instead of relying on native platform repetition, since the next
occurrence of a multi-time or weekly rule is not a fixed interval away.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from src.core.occurrence import next_occurrence_for
from src.data.models import ReminderOccurrence
from src.ports.notification_sink import WakeupPayload, wakeup_id_for

if TYPE_CHECKING:
    from src.data.models import Medication
    from src.ports.notification_sink import NotificationSink

logger = logging.getLogger(__name__)


def build_payload(medication: Medication, occurrence: ReminderOccurrence) -> WakeupPayload:
    """Reminder text shown to the user when the wake-up fires."""
    title = f"Time to take {medication.name}"
    if occurrence.postponed:
        title += " (postponed)"
    text = medication.name
    if medication.description:
        text = f"{medication.name}: {medication.description}"
    return WakeupPayload(
        medication_id=medication.id,
        occurrence_key=occurrence.key,
        scheduled_at=occurrence.scheduled_at,
        title=title,
        text=text,
        postponed=occurrence.postponed,
    )


class SchedulingDriver:
    """Translates medications into wake-ups on a NotificationSink."""

    def __init__(self, sink: NotificationSink) -> None:
        self._sink = sink
        self._regular: dict[str, str] = {}                       # med id -> wakeup id
        self._postponed: dict[str, dict[str, WakeupPayload]] = {}  # med id -> {wakeup id: payload}

    def pending(self, medication_id: str) -> list[str]:
        """Wake-up ids currently submitted for a medication."""
        ids = list(self._postponed.get(medication_id, {}))
        if medication_id in self._regular:
            ids.insert(0, self._regular[medication_id])
        return ids

    def reschedule_all(self, medications: list[Medication], reference: datetime) -> None:
        """Cancel everything, then submit the next occurrence of each medication."""
        self._sink.cancel_all()
        self._regular.clear()
        for med in medications:
            self._submit_next(med, reference)
        self._resubmit_postponed({m.id for m in medications}, reference)
        logger.info("Rescheduled %d medication(s)", len(medications))

    def reschedule_one(self, medication: Medication, reference: datetime) -> ReminderOccurrence | None:
        """Replace a medication's regular wake-up with its next occurrence."""
        self._cancel_regular(medication.id)
        return self._submit_next(medication, reference)

    def schedule_postponed(
        self, medication: Medication, fire_at: datetime,
    ) -> ReminderOccurrence:
        """Submit a one-off reminder for a postponed occurrence."""
        occurrence = ReminderOccurrence(
            medication_id=medication.id, scheduled_at=fire_at, postponed=True,
        )
        payload = build_payload(medication, occurrence)
        wakeup_id = wakeup_id_for(medication.id, occurrence.key)
        self._sink.submit(wakeup_id, fire_at, payload)
        self._postponed.setdefault(medication.id, {})[wakeup_id] = payload
        logger.info("Postponed reminder for '%s' at %s", medication.name, fire_at)
        return occurrence

    def postponed_occurrences(self) -> list[ReminderOccurrence]:
        """Postponed reminders submitted but not fired yet, for persistence."""
        return [
            ReminderOccurrence(p.medication_id, p.scheduled_at, postponed=True)
            for by_id in self._postponed.values()
            for p in by_id.values()
        ]

    def restore_postponed(
        self,
        medications: list[Medication],
        occurrences: list[ReminderOccurrence],
    ) -> None:
        """Reload stored postponed reminders; reschedule_all submits them."""
        by_id = {m.id: m for m in medications}
        for occurrence in occurrences:
            medication = by_id.get(occurrence.medication_id)
            if medication is None:
                continue
            wakeup_id = wakeup_id_for(medication.id, occurrence.key)
            self._postponed.setdefault(medication.id, {})[wakeup_id] = build_payload(
                medication, occurrence,
            )

    def mark_fired(self, payload: WakeupPayload) -> None:
        """Forget a one-off wake-up that has fired."""
        wakeup_id = wakeup_id_for(payload.medication_id, payload.occurrence_key)
        if self._regular.get(payload.medication_id) == wakeup_id:
            del self._regular[payload.medication_id]
        self._postponed.get(payload.medication_id, {}).pop(wakeup_id, None)

    def cancel_for(self, medication_id: str) -> None:
        """Cancel every wake-up, regular and postponed, for a medication."""
        self._cancel_regular(medication_id)
        for wakeup_id in self._postponed.pop(medication_id, {}):
            self._sink.cancel(wakeup_id)

    def _cancel_regular(self, medication_id: str) -> None:
        wakeup_id = self._regular.pop(medication_id, None)
        if wakeup_id is not None:
            self._sink.cancel(wakeup_id)

    def _submit_next(self, medication: Medication, reference: datetime) -> ReminderOccurrence | None:
        occurrence = next_occurrence_for(medication, reference)
        if occurrence is None:
            logger.info("'%s' has no upcoming reminder", medication.name)
            return None

        wakeup_id = wakeup_id_for(medication.id, occurrence.key)
        self._sink.submit(wakeup_id, occurrence.scheduled_at, build_payload(medication, occurrence))
        self._regular[medication.id] = wakeup_id
        logger.info("Reminder for '%s' scheduled at %s", medication.name, occurrence.scheduled_at)
        return occurrence

    def _resubmit_postponed(self, live_ids: set[str], reference: datetime) -> None:
        for med_id in list(self._postponed):
            if med_id not in live_ids:
                del self._postponed[med_id]
                continue
            for wakeup_id, payload in self._postponed[med_id].items():
                # Overdue ones (missed while stopped) go off right away.
                self._sink.submit(wakeup_id, max(payload.scheduled_at, reference), payload)

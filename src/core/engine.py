"""
MedMinder — Reminder Engine.

Wires the registry, ledger, scheduling driver and escalation timers into
one explicitly constructed object. Lifecycle: start() loads state and
schedules every reminder, operations mutate it, shutdown() flushes it.

Every mutation runs under a single asyncio.Lock, so user actions and timer
expiries are applied one at a time. Escalation messages are sent after the
lock is released: the ledger has already recorded the outcome by then.

This module is provider-agnostic: it depends on NotificationSink,
MessageTransport, PersistenceStore and NotificationPort protocols.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Iterable

from src.core.escalation import EscalationTimer, escalate
from src.core.ledger import AcknowledgmentLedger
from src.core.occurrence import next_occurrence_for
from src.core.registry import MedicationRegistry
from src.core.scheduling import SchedulingDriver
from src.data.models import OccurrenceState, scheduled_at_from_key
from src.data.serialization import dump_state, load_state

if TYPE_CHECKING:
    from src.data.models import AcknowledgmentRecord, DoseResult, Medication, ReminderOccurrence
    from src.ports.messaging_port import MessageTransport
    from src.ports.notification_port import NotificationPort
    from src.ports.notification_sink import NotificationSink, WakeupPayload
    from src.ports.persistence_port import PersistenceStore

logger = logging.getLogger(__name__)

DEFAULT_GRACE_WINDOW = timedelta(minutes=2)
DEFAULT_POSTPONE_MINUTES = 10


class ReminderEngine:
    """Reminder scheduling and escalation for one user's medications."""

    def __init__(
        self,
        sink: NotificationSink,
        transport: MessageTransport,
        store: PersistenceStore | None = None,
        notifier: NotificationPort | None = None,
        owner_ids: Iterable[int] = (),
        display_name: str = "User",
        grace_window: timedelta = DEFAULT_GRACE_WINDOW,
        postpone_minutes: int = DEFAULT_POSTPONE_MINUTES,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._registry = MedicationRegistry()
        self._ledger = AcknowledgmentLedger()
        self._driver = SchedulingDriver(sink)
        self._transport = transport
        self._store = store
        self._notifier = notifier
        self._owner_ids = list(owner_ids)
        self._display_name = display_name
        self._grace_window = grace_window
        self._postpone_minutes = postpone_minutes
        self._clock = clock

        self._timers: dict[tuple[str, str], EscalationTimer] = {}
        self._lock = asyncio.Lock()

    @property
    def grace_window(self) -> timedelta:
        return self._grace_window

    @property
    def postpone_minutes(self) -> int:
        return self._postpone_minutes

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load stored state, re-arm pending occurrences, schedule everything."""
        async with self._lock:
            raw = self._store.load() if self._store is not None else None
            medications, records, postponed = load_state(raw)
            self._registry = MedicationRegistry(medications)
            self._ledger = AcknowledgmentLedger(records)

            now = self._clock()
            for record in self._ledger.armed():
                elapsed = now - record.fired_at if record.fired_at else self._grace_window
                self._arm_timer(
                    record.medication_id, record.occurrence_key,
                    self._grace_window - elapsed,
                )

            self._driver.restore_postponed(
                medications,
                [o for o in postponed if self._ledger.get(o.medication_id, o.key) is None],
            )
            self._driver.reschedule_all(self._registry.get_all(), now)
        logger.info(
            "Reminder engine started: %d medication(s), %d armed occurrence(s)",
            len(self._registry), len(self._timers),
        )

    async def shutdown(self) -> None:
        """Stop every escalation task and flush state.

        Armed occurrences stay armed in the ledger and are picked up again
        by the next start().
        """
        async with self._lock:
            for timer in self._timers.values():
                timer.stop()
            self._timers.clear()
            self._save()
        logger.info("Reminder engine shut down")

    # ------------------------------------------------------------------
    # Registry operations
    # ------------------------------------------------------------------

    async def add_medication(self, medication: Medication) -> Medication:
        """Validate, store and schedule a medication. Raises ValidationError."""
        async with self._lock:
            stored = self._registry.add(medication)
            self._driver.reschedule_one(stored, self._clock())
            self._save()
        return stored

    async def edit_medication(self, medication_id: str, **changes) -> Medication | None:
        """Change a medication's fields and reschedule it. Raises ValidationError."""
        async with self._lock:
            updated = self._registry.edit(medication_id, **changes)
            if updated is None:
                return None
            self._driver.reschedule_one(updated, self._clock())
            self._save()
        return updated

    async def remove_medication(self, medication_id: str) -> bool:
        """Delete a medication with all its wake-ups, timers and history."""
        async with self._lock:
            removed = self._registry.remove(medication_id)
            if removed is None:
                return False

            self._driver.cancel_for(medication_id)
            for key in [k for k in self._timers if k[0] == medication_id]:
                self._timers.pop(key).resolve(OccurrenceState.CANCELLED)
            self._ledger.forget(medication_id)
            self._save()
        return True

    async def take_dose(self, medication_id: str) -> DoseResult | None:
        """Record a dose taken outside of any reminder."""
        async with self._lock:
            result = self._registry.take_dose(medication_id)
            if result is None:
                return None
            self._save()
            medication = self._registry.get_by_id(medication_id)

        if result.low_supply:
            await self._warn_low_supply(medication, result)
        return result

    def get_medication(self, medication_id: str) -> Medication | None:
        return self._registry.get_by_id(medication_id)

    def list_medications(self) -> list[Medication]:
        return self._registry.get_all()

    def next_occurrence(self, medication_id: str) -> ReminderOccurrence | None:
        """Next regular reminder for a medication, from the current time."""
        medication = self._registry.get_by_id(medication_id)
        if medication is None:
            return None
        return next_occurrence_for(medication, self._clock())

    def history(self, medication_id: str) -> list[AcknowledgmentRecord]:
        return copy.deepcopy(self._ledger.history(medication_id))

    def armed_occurrences(self) -> list[AcknowledgmentRecord]:
        return copy.deepcopy(self._ledger.armed())

    # ------------------------------------------------------------------
    # Reminder lifecycle
    # ------------------------------------------------------------------

    async def handle_fired(self, payload: WakeupPayload) -> bool:
        """A wake-up went off and the reminder was shown to the user.

        Arms the escalation timer for the occurrence and submits the
        medication's next regular wake-up. Returns False if the occurrence
        was already known or the medication no longer exists.
        """
        async with self._lock:
            self._driver.mark_fired(payload)
            medication = self._registry.get_by_id(payload.medication_id)
            if medication is None:
                logger.info("Wake-up for deleted medication %s ignored", payload.medication_id)
                return False

            now = self._clock()
            if not payload.postponed:
                self._driver.reschedule_one(
                    medication, self._after_occurrence(payload.occurrence_key, now),
                )

            armed = self._ledger.arm(medication.id, payload.occurrence_key, now)
            if armed:
                self._arm_timer(medication.id, payload.occurrence_key, self._grace_window)
                logger.info("Reminder fired for '%s' (%s)", medication.name, payload.occurrence_key)
            self._save()
        return armed

    async def acknowledge(self, medication_id: str, occurrence_key: str) -> DoseResult | None:
        """The user confirmed the dose. Idempotent per occurrence.

        Returns the dose result, or None when the occurrence was already
        settled (acknowledged, postponed or escalated) or the medication
        does not exist.
        """
        async with self._lock:
            if medication_id not in self._registry:
                return None
            if not self._ledger.settle(
                medication_id, occurrence_key, OccurrenceState.ACKNOWLEDGED, self._clock(),
            ):
                return None

            timer = self._timers.pop((medication_id, occurrence_key), None)
            if timer is not None:
                timer.resolve(OccurrenceState.ACKNOWLEDGED)
            result = self._registry.take_dose(medication_id)
            self._save()
            medication = self._registry.get_by_id(medication_id)
        logger.info("Occurrence %s of '%s' acknowledged", occurrence_key, medication.name)

        if result.low_supply:
            await self._warn_low_supply(medication, result)
        return result

    async def postpone(
        self,
        medication_id: str,
        occurrence_key: str,
        minutes: int | None = None,
    ) -> ReminderOccurrence | None:
        """Snooze an occurrence. The original is settled; a new one is scheduled.

        Returns the new occurrence, or None if nothing was postponed.
        """
        minutes = self._postpone_minutes if minutes is None else minutes
        async with self._lock:
            medication = self._registry.get_by_id(medication_id)
            if medication is None:
                return None

            now = self._clock()
            if not self._ledger.settle(
                medication_id, occurrence_key, OccurrenceState.POSTPONED, now,
            ):
                return None

            timer = self._timers.pop((medication_id, occurrence_key), None)
            if timer is not None:
                timer.resolve(OccurrenceState.POSTPONED)

            occurrence = self._driver.schedule_postponed(
                medication, now + timedelta(minutes=minutes),
            )
            self._driver.reschedule_one(
                medication, self._after_occurrence(occurrence_key, now),
            )
            self._save()
        return occurrence

    async def expire(self, medication_id: str, occurrence_key: str) -> OccurrenceState | None:
        """Grace window ran out. Escalate unless the user already responded.

        Returns ESCALATED or LAPSED when this call settled the occurrence,
        None when it was already settled.
        """
        async with self._lock:
            timer = self._timers.pop((medication_id, occurrence_key), None)
            medication = self._registry.get_by_id(medication_id)
            if medication is None:
                return None

            contact = medication.emergency_contact
            if contact is not None and contact.has_deliverable_channel:
                state = OccurrenceState.ESCALATED
            else:
                state = OccurrenceState.LAPSED

            if not self._ledger.settle(medication_id, occurrence_key, state, self._clock()):
                return None
            if timer is not None:
                timer.resolve(state)
            self._save()

        if state is OccurrenceState.ESCALATED:
            await escalate(medication, self._display_name, self._transport)
        else:
            logger.warning(
                "Occurrence %s of '%s' missed, no emergency contact to alert",
                occurrence_key, medication.name,
            )
        return state

    async def sweep(self) -> int:
        """Expire every armed occurrence whose grace window has elapsed.

        Fallback for platforms without per-occurrence timers. Safe to run
        alongside user actions: each expiry goes through the ledger.
        """
        async with self._lock:
            now = self._clock()
            overdue = [
                (r.medication_id, r.occurrence_key)
                for r in self._ledger.armed()
                if r.fired_at is None or r.fired_at + self._grace_window <= now
            ]

        settled = 0
        for medication_id, key in overdue:
            if await self.expire(medication_id, key) is not None:
                settled += 1
        if settled:
            logger.info("Sweep settled %d missed occurrence(s)", settled)
        return settled

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _arm_timer(self, medication_id: str, key: str, delay: timedelta) -> None:
        timer = EscalationTimer(medication_id, key)
        timer.start(delay, self.expire)
        self._timers[(medication_id, key)] = timer

    @staticmethod
    def _after_occurrence(key: str, now: datetime) -> datetime:
        """Reference for the next regular occurrence once `key` has fired."""
        return max(now, scheduled_at_from_key(key) + timedelta(minutes=1))

    def _save(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save(dump_state(
                self._registry.get_all(),
                self._ledger.records(),
                self._driver.postponed_occurrences(),
            ))
        except Exception as exc:
            # In-memory state stays authoritative; the next mutation retries.
            logger.error("Failed to persist state: %s", exc)

    async def _warn_low_supply(self, medication: Medication, result: DoseResult) -> None:
        if not result.taken:
            text = (
                f"⚠️ Not enough {medication.name} left for a full dose "
                f"({result.remaining} remaining). Please get a refill."
            )
        elif result.remaining <= 0:
            text = f"⚠️ You have run out of {medication.name}. Please get a new supply."
        else:
            text = f"⚠️ Only {result.remaining} {medication.name} left. Time to refill soon."

        if self._notifier is None:
            return
        for user_id in self._owner_ids:
            try:
                await self._notifier.send_message(user_id, text)
            except Exception as exc:
                logger.error("Failed to send low-supply warning to %d: %s", user_id, exc)

"""
MedMinder — Data Models.

Medications are the only long-lived records. Reminder occurrences are
derived on demand from a medication's recurrence rule and times of day;
acknowledgment records remember how each fired occurrence was settled.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum, IntEnum

_KEY_FORMAT = "%Y-%m-%dT%H:%M"


class MedicationType(IntEnum):
    """Kind of medication. Integer values are part of the persisted shape."""

    PILL = 0
    CAPSULE = 1
    SYRUP = 2
    INJECTION = 3
    INHALER = 4
    DROPS = 5
    CREAM = 6
    OTHER = 7

    @property
    def is_countable(self) -> bool:
        return self in (MedicationType.PILL, MedicationType.CAPSULE)


class Weekday(IntEnum):
    """Day of week, numbered from Sunday like the persisted daysOfWeek list."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def of(cls, day: date) -> Weekday:
        # date.weekday() counts from Monday = 0
        return cls((day.weekday() + 1) % 7)


@dataclass(frozen=True)
class Daily:
    """Fires every day."""


@dataclass(frozen=True)
class WeeklyOn:
    """Fires only on the listed weekdays. An empty set never fires."""

    days: frozenset[Weekday] = frozenset()


Recurrence = Daily | WeeklyOn


@dataclass
class EmergencyContact:
    """Who to alert when a dose is missed. Owned by a single Medication."""

    name: str
    phone: str | None = None
    telegram_id: str | None = None
    whatsapp: str | None = None
    email: str | None = None

    @property
    def has_deliverable_channel(self) -> bool:
        """Only e-mail and SMS are used for escalation."""
        return bool(self.email) or bool(self.phone)


@dataclass
class DoseResult:
    """Outcome of a TakeDose call.

    low_supply is a warning, never an error: it is set when the dose could
    not be taken, or when what is left cannot cover the next dose.
    """

    taken: bool
    remaining: int
    low_supply: bool = False


@dataclass
class Medication:
    """A medication with its dosing, recurrence and reminder times."""

    id: str
    name: str
    description: str = ""
    type: MedicationType = MedicationType.PILL
    quantity_remaining: int = 0
    quantity_initial: int = 0
    dose_per_time: int = 1
    recurrence: Recurrence = field(default_factory=Daily)
    reminder_times: list[time] = field(default_factory=list)
    emergency_contact: EmergencyContact | None = None

    @classmethod
    def create(
        cls,
        name: str,
        description: str,
        type: MedicationType,
        quantity: int = 0,
    ) -> Medication:
        """Build a new medication with a fresh id, daily, with no times yet.

        Quantity is only tracked for countable types (pills and capsules).
        """
        countable = MedicationType(type).is_countable
        return cls(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            type=MedicationType(type),
            quantity_remaining=quantity if countable else 0,
            quantity_initial=quantity if countable else 0,
        )

    @property
    def is_countable(self) -> bool:
        return self.type.is_countable

    def take_dose(self) -> DoseResult:
        """Subtract one dose from stock when there is enough of it."""
        if not self.is_countable:
            return DoseResult(taken=True, remaining=self.quantity_remaining)

        if self.quantity_remaining < self.dose_per_time:
            return DoseResult(
                taken=False, remaining=self.quantity_remaining, low_supply=True,
            )

        self.quantity_remaining -= self.dose_per_time
        return DoseResult(
            taken=True,
            remaining=self.quantity_remaining,
            low_supply=self.quantity_remaining < self.dose_per_time,
        )


def occurrence_key(scheduled_at: datetime, postponed: bool = False) -> str:
    """Identity of an occurrence: the wall-clock minute it was computed for.

    Postponed occurrences get their own suffix so they never alias a
    regular slot that happens to fall on the same minute.
    """
    key = scheduled_at.strftime(_KEY_FORMAT)
    return f"{key}~p" if postponed else key


def scheduled_at_from_key(key: str) -> datetime:
    """Inverse of occurrence_key (the postponed suffix is ignored)."""
    return datetime.strptime(key.removesuffix("~p"), _KEY_FORMAT)


@dataclass(frozen=True)
class ReminderOccurrence:
    """One concrete, dated instance of a medication's reminder."""

    medication_id: str
    scheduled_at: datetime
    postponed: bool = False

    @property
    def key(self) -> str:
        return occurrence_key(self.scheduled_at, self.postponed)


class OccurrenceState(str, Enum):
    """Lifecycle of a fired occurrence (see EscalationTimer)."""

    ARMED = "armed"
    ACKNOWLEDGED = "acknowledged"
    POSTPONED = "postponed"
    ESCALATED = "escalated"
    LAPSED = "lapsed"          # grace elapsed, nobody to escalate to
    CANCELLED = "cancelled"    # medication removed while armed

    @property
    def is_terminal(self) -> bool:
        return self is not OccurrenceState.ARMED


@dataclass
class AcknowledgmentRecord:
    """Ledger entry for one (medication, occurrence) pair."""

    medication_id: str
    occurrence_key: str
    state: OccurrenceState
    fired_at: datetime | None = None
    recorded_at: datetime | None = None

    @property
    def acknowledged(self) -> bool:
        return self.state is OccurrenceState.ACKNOWLEDGED

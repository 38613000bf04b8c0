"""Occurrence calculator — pure business logic.

Given a recurrence rule, the medication's times of day and a reference
instant, finds the next instant a reminder should fire.

No I/O: this module only transforms data. All instants are naive local
wall-clock datetimes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta

from src.data.models import Daily, Medication, Recurrence, ReminderOccurrence, Weekday, WeeklyOn

logger = logging.getLogger(__name__)

# A weekly rule repeats every 7 days, so scanning 7 days ahead is enough.
_WEEK_SCAN_DAYS = 7


def parse_time_of_day(raw: str) -> time:
    """Parse an HH:MM string into a time with no seconds.

    Raises ValueError on malformed input.
    """
    raw = raw.strip()
    if ":" not in raw:
        raise ValueError(f"No colon in time: {raw!r}")

    hour_str, minute_str = raw.split(":", 1)
    hour, minute = int(hour_str), int(minute_str)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Hour/minute out of range: {hour}:{minute}")
    return time(hour, minute)


def is_due_on(recurrence: Recurrence, day: date) -> bool:
    """Return True if the rule allows a reminder on this calendar day."""
    if isinstance(recurrence, Daily):
        return True
    if isinstance(recurrence, WeeklyOn):
        return Weekday.of(day) in recurrence.days
    raise TypeError(f"Unknown recurrence rule: {recurrence!r}")


def _candidate_for(
    recurrence: Recurrence, time_of_day: time, reference: datetime,
) -> datetime | None:
    """Earliest instant >= reference at this time of day allowed by the rule."""
    candidate = datetime.combine(
        reference.date(), time(time_of_day.hour, time_of_day.minute),
    )
    if candidate < reference:
        candidate += timedelta(days=1)

    for _ in range(_WEEK_SCAN_DAYS):
        if is_due_on(recurrence, candidate.date()):
            return candidate
        candidate += timedelta(days=1)
    return None


def next_occurrence(
    recurrence: Recurrence,
    times_of_day: Iterable[time],
    reference: datetime,
) -> datetime | None:
    """Return the earliest instant >= reference matching the rule, or None.

    None is returned when there are no times of day, or when a weekly rule
    has no weekdays.
    """
    if isinstance(recurrence, WeeklyOn) and not recurrence.days:
        return None

    candidates = [
        c for c in (_candidate_for(recurrence, t, reference) for t in times_of_day)
        if c is not None
    ]
    if not candidates:
        return None
    return min(candidates)


def next_occurrence_for(
    medication: Medication, reference: datetime,
) -> ReminderOccurrence | None:
    """Next regular (non-postponed) occurrence of a medication's reminder."""
    fire_at = next_occurrence(
        medication.recurrence, medication.reminder_times, reference,
    )
    if fire_at is None:
        logger.debug("No upcoming occurrence for medication %s", medication.id)
        return None
    return ReminderOccurrence(medication_id=medication.id, scheduled_at=fire_at)

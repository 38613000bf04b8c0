"""
MedMinder — Persisted state shape.

Converts medications, ledger records and pending postponed reminders to
and from the flat JSON layout used by the store: recurrence flattened to
isDaily + daysOfWeek, reminder times as parallel hour/minute integer lists.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, time

from src.data.models import (
    AcknowledgmentRecord,
    Daily,
    EmergencyContact,
    Medication,
    MedicationType,
    OccurrenceState,
    ReminderOccurrence,
    Weekday,
    WeeklyOn,
)

logger = logging.getLogger(__name__)


def medication_to_dict(med: Medication) -> dict:
    contact = med.emergency_contact
    is_daily = isinstance(med.recurrence, Daily)
    days = [] if is_daily else sorted(int(d) for d in med.recurrence.days)
    return {
        "id": med.id,
        "name": med.name,
        "description": med.description,
        "type": int(med.type),
        "quantity": med.quantity_remaining,
        "initialQuantity": med.quantity_initial,
        "dosagePerTime": med.dose_per_time,
        "isDaily": is_daily,
        "reminderHours": [t.hour for t in med.reminder_times],
        "reminderMinutes": [t.minute for t in med.reminder_times],
        "daysOfWeek": days,
        "emergencyContactName": contact.name if contact else None,
        "emergencyContactPhone": contact.phone if contact else None,
        "emergencyContactEmail": contact.email if contact else None,
        "emergencyContactTelegram": contact.telegram_id if contact else None,
        "emergencyContactWhatsApp": contact.whatsapp if contact else None,
    }


def medication_from_dict(data: dict) -> Medication:
    """Rebuild a Medication. Raises KeyError/ValueError/TypeError on bad data."""
    hours = data.get("reminderHours") or []
    minutes = data.get("reminderMinutes") or []
    # Parallel lists: a length mismatch is truncated to the shorter one.
    times = [time(int(h), int(m)) for h, m in zip(hours, minutes)]

    if data.get("isDaily", True):
        recurrence = Daily()
    else:
        recurrence = WeeklyOn(frozenset(Weekday(int(d)) for d in data.get("daysOfWeek") or []))

    contact = None
    if data.get("emergencyContactName"):
        contact = EmergencyContact(
            name=data["emergencyContactName"],
            phone=data.get("emergencyContactPhone") or None,
            email=data.get("emergencyContactEmail") or None,
            telegram_id=data.get("emergencyContactTelegram") or None,
            whatsapp=data.get("emergencyContactWhatsApp") or None,
        )

    return Medication(
        id=data["id"],
        name=data["name"],
        description=data.get("description") or "",
        type=MedicationType(int(data.get("type", MedicationType.OTHER))),
        quantity_remaining=int(data.get("quantity", 0)),
        quantity_initial=int(data.get("initialQuantity", 0)),
        dose_per_time=int(data.get("dosagePerTime", 1)),
        recurrence=recurrence,
        reminder_times=times,
        emergency_contact=contact,
    )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def record_to_dict(record: AcknowledgmentRecord) -> dict:
    return {
        "medicationId": record.medication_id,
        "occurrenceKey": record.occurrence_key,
        "state": record.state.value,
        "acknowledged": record.acknowledged,
        "firedAt": _iso(record.fired_at),
        "recordedAt": _iso(record.recorded_at),
    }


def record_from_dict(data: dict) -> AcknowledgmentRecord:
    return AcknowledgmentRecord(
        medication_id=data["medicationId"],
        occurrence_key=data["occurrenceKey"],
        state=OccurrenceState(data["state"]),
        fired_at=_parse_iso(data.get("firedAt")),
        recorded_at=_parse_iso(data.get("recordedAt")),
    )


def postponed_to_dict(occurrence: ReminderOccurrence) -> dict:
    return {
        "medicationId": occurrence.medication_id,
        "scheduledAt": occurrence.scheduled_at.isoformat(),
    }


def postponed_from_dict(data: dict) -> ReminderOccurrence:
    return ReminderOccurrence(
        medication_id=data["medicationId"],
        scheduled_at=datetime.fromisoformat(data["scheduledAt"]),
        postponed=True,
    )


def dump_state(
    medications: list[Medication],
    records: list[AcknowledgmentRecord],
    postponed: list[ReminderOccurrence] | None = None,
) -> str:
    """Serialize the whole engine state to a JSON string.

    `postponed` holds snoozed reminders that have not fired yet.
    """
    return json.dumps(
        {
            "medicationsData": [medication_to_dict(m) for m in medications],
            "acknowledgments": [record_to_dict(r) for r in records],
            "postponed": [postponed_to_dict(o) for o in postponed or []],
        },
        ensure_ascii=False,
        indent=2,
    )


def load_state(
    raw: str | None,
) -> tuple[list[Medication], list[AcknowledgmentRecord], list[ReminderOccurrence]]:
    """Parse a JSON state string. Bad records are skipped, never fatal."""
    if not raw:
        return [], [], []

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.error("Stored state is not valid JSON, starting empty: %s", exc)
        return [], [], []
    if not isinstance(data, dict):
        logger.error("Stored state has unexpected shape, starting empty")
        return [], [], []

    medications: list[Medication] = []
    for item in data.get("medicationsData") or []:
        try:
            medications.append(medication_from_dict(item))
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("Skipping malformed medication record: %s", exc)

    known_ids = {m.id for m in medications}
    records: list[AcknowledgmentRecord] = []
    for item in data.get("acknowledgments") or []:
        try:
            record = record_from_dict(item)
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("Skipping malformed acknowledgment record: %s", exc)
            continue
        if record.medication_id in known_ids:
            records.append(record)

    postponed: list[ReminderOccurrence] = []
    for item in data.get("postponed") or []:
        try:
            occurrence = postponed_from_dict(item)
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("Skipping malformed postponed reminder: %s", exc)
            continue
        if occurrence.medication_id in known_ids:
            postponed.append(occurrence)

    logger.info(
        "Loaded %d medication(s), %d ledger record(s), %d postponed reminder(s)",
        len(medications), len(records), len(postponed),
    )
    return medications, records, postponed

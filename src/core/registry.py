"""
MedMinder — Medication Registry.

The authoritative in-memory collection of medications. Every mutation is
validated before it touches state, and every read hands out a copy, so
callers can never change a record behind the registry's back.

The registry itself is synchronous; ReminderEngine serializes access to it.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import uuid
from enum import Enum

from src.data.models import DoseResult, Medication

logger = logging.getLogger(__name__)


class ValidationReason(str, Enum):
    EMPTY_NAME = "empty_name"
    NO_REMINDER_TIMES = "no_reminder_times"
    INVALID_QUANTITY = "invalid_quantity"
    INVALID_DOSE = "invalid_dose"
    DUPLICATE_ID = "duplicate_id"


class ValidationError(Exception):
    """Raised when a medication fails validation. State is left unchanged."""

    def __init__(self, reason: ValidationReason, message: str = "") -> None:
        self.reason = reason
        super().__init__(message or reason.value)


def validate_medication(medication: Medication) -> None:
    """Check a medication record, raising ValidationError on the first problem."""
    if not medication.name or not medication.name.strip():
        raise ValidationError(ValidationReason.EMPTY_NAME, "Medication name is empty")

    if not medication.reminder_times:
        raise ValidationError(
            ValidationReason.NO_REMINDER_TIMES,
            f"'{medication.name}' has no reminder times",
        )

    if medication.dose_per_time < 1:
        raise ValidationError(
            ValidationReason.INVALID_DOSE,
            f"Dose per time must be at least 1, got {medication.dose_per_time}",
        )

    if medication.is_countable:
        if medication.quantity_initial <= 0:
            raise ValidationError(
                ValidationReason.INVALID_QUANTITY,
                f"Initial quantity must be positive, got {medication.quantity_initial}",
            )
        if not 0 <= medication.quantity_remaining <= medication.quantity_initial:
            raise ValidationError(
                ValidationReason.INVALID_QUANTITY,
                f"Remaining quantity {medication.quantity_remaining} is outside "
                f"0..{medication.quantity_initial}",
            )


class MedicationRegistry:
    """Owns the set of medications, keyed by id, in insertion order."""

    def __init__(self, medications: list[Medication] | None = None) -> None:
        self._medications: dict[str, Medication] = {}
        for med in medications or []:
            self._medications[med.id] = copy.deepcopy(med)

    def __len__(self) -> int:
        return len(self._medications)

    def __contains__(self, medication_id: str) -> bool:
        return medication_id in self._medications

    def add(self, medication: Medication) -> Medication:
        """Validate and store a new medication, assigning an id if missing.

        An id that is already taken is rejected; use edit() to change a record.
        """
        validate_medication(medication)
        if medication.id and medication.id in self._medications:
            raise ValidationError(
                ValidationReason.DUPLICATE_ID,
                f"Medication id {medication.id} already exists",
            )

        record = copy.deepcopy(medication)
        if not record.id:
            record.id = str(uuid.uuid4())
        self._medications[record.id] = record
        logger.info("Medication added: %s '%s'", record.id, record.name)
        return copy.deepcopy(record)

    def edit(self, medication_id: str, **changes) -> Medication | None:
        """Apply field changes to a medication. Identity never changes.

        Changing quantity_initial without quantity_remaining restocks the
        medication to the new initial quantity.

        Returns the updated record, or None if the id is unknown.
        """
        current = self._medications.get(medication_id)
        if current is None:
            logger.info("Edit ignored, medication %s not found", medication_id)
            return None

        changes = copy.deepcopy(changes)
        changes.pop("id", None)
        if "quantity_initial" in changes and "quantity_remaining" not in changes:
            changes["quantity_remaining"] = changes["quantity_initial"]

        try:
            candidate = dataclasses.replace(copy.deepcopy(current), **changes)
        except TypeError as exc:
            raise ValueError(f"Unknown medication field: {exc}") from exc
        validate_medication(candidate)

        self._medications[medication_id] = candidate
        logger.info("Medication edited: %s '%s'", medication_id, candidate.name)
        return copy.deepcopy(candidate)

    def remove(self, medication_id: str) -> Medication | None:
        """Delete a medication. Returns the removed record, or None if absent."""
        removed = self._medications.pop(medication_id, None)
        if removed is not None:
            logger.info("Medication removed: %s '%s'", medication_id, removed.name)
        return removed

    def take_dose(self, medication_id: str) -> DoseResult | None:
        """Decrement stock by one dose. None if the id is unknown."""
        med = self._medications.get(medication_id)
        if med is None:
            return None

        result = med.take_dose()
        if not result.taken:
            logger.warning(
                "Low supply: '%s' has %d left, dose is %d",
                med.name, med.quantity_remaining, med.dose_per_time,
            )
        elif result.low_supply:
            logger.warning("Low supply: '%s' has %d left", med.name, result.remaining)
        return result

    def get_by_id(self, medication_id: str) -> Medication | None:
        med = self._medications.get(medication_id)
        return copy.deepcopy(med) if med is not None else None

    def get_all(self) -> list[Medication]:
        """Snapshot of every medication. Mutating it does not affect the registry."""
        return copy.deepcopy(list(self._medications.values()))

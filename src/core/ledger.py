"""
MedMinder — Acknowledgment Ledger.

Remembers how every fired occurrence was settled. The ledger is the single
authority that decides races between a user action and grace-window expiry:
the first caller to settle an occurrence wins, every later caller is told
the occurrence is already settled and must do nothing.
"""

from __future__ import annotations

import logging
from datetime import datetime

from src.data.models import AcknowledgmentRecord, OccurrenceState

logger = logging.getLogger(__name__)

LedgerKey = tuple[str, str]


class AcknowledgmentLedger:
    """(medication_id, occurrence_key) -> AcknowledgmentRecord."""

    def __init__(self, records: list[AcknowledgmentRecord] | None = None) -> None:
        self._records: dict[LedgerKey, AcknowledgmentRecord] = {}
        for record in records or []:
            self._records[(record.medication_id, record.occurrence_key)] = record

    def get(self, medication_id: str, key: str) -> AcknowledgmentRecord | None:
        return self._records.get((medication_id, key))

    def is_settled(self, medication_id: str, key: str) -> bool:
        record = self._records.get((medication_id, key))
        return record is not None and record.state.is_terminal

    def arm(self, medication_id: str, key: str, fired_at: datetime) -> bool:
        """Record that an occurrence fired. False if it was already known."""
        if (medication_id, key) in self._records:
            return False
        self._records[(medication_id, key)] = AcknowledgmentRecord(
            medication_id=medication_id,
            occurrence_key=key,
            state=OccurrenceState.ARMED,
            fired_at=fired_at,
        )
        return True

    def settle(
        self,
        medication_id: str,
        key: str,
        state: OccurrenceState,
        at: datetime,
    ) -> bool:
        """Move an occurrence to a terminal state, exactly once.

        Returns True if this call settled it, False if it was already settled.
        An occurrence that never fired may be settled directly (e.g. the dose
        was confirmed before the reminder went off).
        """
        if not state.is_terminal:
            raise ValueError(f"Cannot settle into non-terminal state {state}")

        record = self._records.get((medication_id, key))
        if record is not None and record.state.is_terminal:
            logger.debug(
                "Occurrence %s/%s already %s, ignoring %s",
                medication_id, key, record.state.value, state.value,
            )
            return False

        if record is None:
            record = AcknowledgmentRecord(
                medication_id=medication_id, occurrence_key=key, state=state,
            )
            self._records[(medication_id, key)] = record
        record.state = state
        record.recorded_at = at
        return True

    def armed(self) -> list[AcknowledgmentRecord]:
        """Every occurrence still waiting for a response."""
        return [r for r in self._records.values() if r.state is OccurrenceState.ARMED]

    def history(self, medication_id: str) -> list[AcknowledgmentRecord]:
        """Records for one medication, oldest occurrence first."""
        records = [r for r in self._records.values() if r.medication_id == medication_id]
        return sorted(records, key=lambda r: r.occurrence_key)

    def forget(self, medication_id: str) -> int:
        """Drop every record for a deleted medication. Returns how many."""
        keys = [k for k in self._records if k[0] == medication_id]
        for k in keys:
            del self._records[k]
        return len(keys)

    def records(self) -> list[AcknowledgmentRecord]:
        return list(self._records.values())

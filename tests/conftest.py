"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures: a temp DB, a fake wake-up sink, a
controllable clock and a ready-to-use engine.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", "data/test_medications.db")
os.environ.setdefault("MAILGUN_API_KEY", "")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "")

from datetime import datetime, time, timedelta
from unittest.mock import AsyncMock

import pytest


class FakeSink:
    """In-memory NotificationSink that records what the driver does."""

    def __init__(self):
        self.pending = {}        # wakeup_id -> (fire_at, payload)
        self.submitted = []      # every submit call, in order
        self.cancelled = []
        self.cancel_all_calls = 0

    def submit(self, wakeup_id, fire_at, payload, repeat_interval=None):
        self.pending[wakeup_id] = (fire_at, payload)
        self.submitted.append(wakeup_id)

    def cancel(self, wakeup_id):
        self.cancelled.append(wakeup_id)
        self.pending.pop(wakeup_id, None)

    def cancel_all(self):
        self.cancel_all_calls += 1
        self.pending.clear()

    def payloads_for(self, medication_id):
        return [p for _, p in self.pending.values() if p.medication_id == medication_id]


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_medication(**overrides):
    """A valid daily pill medication with a single 08:00 reminder."""
    from src.data.models import Medication, MedicationType

    med = Medication.create("Aspirin", "After breakfast", MedicationType.PILL, 30)
    med.reminder_times = [time(8, 0)]
    for field, value in overrides.items():
        setattr(med, field, value)
    return med


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_medications.db")


@pytest.fixture
def state_db(tmp_db_path):
    """Return a StateDB instance backed by a temp file."""
    from src.data.db import StateDB
    return StateDB(db_path=tmp_db_path)


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def clock():
    # Monday 2026-10-19, 07:00
    return FakeClock(datetime(2026, 10, 19, 7, 0))


@pytest.fixture
def transport():
    mock = AsyncMock()
    mock.send_email = AsyncMock()
    mock.send_sms = AsyncMock()
    return mock


@pytest.fixture
def notifier():
    mock = AsyncMock()
    mock.send_message = AsyncMock()
    mock.send_reminder = AsyncMock()
    return mock


@pytest.fixture
def engine(sink, transport, state_db, notifier, clock):
    """Engine with a fake sink and clock, persisting to a temp DB."""
    from src.core.engine import ReminderEngine

    return ReminderEngine(
        sink=sink,
        transport=transport,
        store=state_db,
        notifier=notifier,
        owner_ids=[12345],
        display_name="Sara",
        grace_window=timedelta(minutes=2),
        postpone_minutes=10,
        clock=clock,
    )

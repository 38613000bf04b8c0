"""Tests for src.core.scheduling — SchedulingDriver."""

from datetime import datetime, time

import pytest

from conftest import FakeSink, make_medication
from src.core.scheduling import SchedulingDriver, build_payload
from src.data.models import ReminderOccurrence, Weekday, WeeklyOn
from src.ports.notification_sink import wakeup_id_for

MONDAY_7 = datetime(2026, 10, 19, 7, 0)


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def driver(sink):
    return SchedulingDriver(sink)


class TestRescheduleOne:
    def test_submits_next_occurrence(self, driver, sink):
        med = make_medication()
        occ = driver.reschedule_one(med, MONDAY_7)
        assert occ.scheduled_at == datetime(2026, 10, 19, 8, 0)
        wid = wakeup_id_for(med.id, "2026-10-19T08:00")
        assert sink.pending[wid][0] == occ.scheduled_at
        assert sink.pending[wid][1].medication_id == med.id

    def test_replaces_previous_wakeup(self, driver, sink):
        med = make_medication()
        driver.reschedule_one(med, MONDAY_7)
        med.reminder_times = [time(9, 30)]
        driver.reschedule_one(med, MONDAY_7)
        assert list(sink.pending) == [wakeup_id_for(med.id, "2026-10-19T09:30")]
        assert wakeup_id_for(med.id, "2026-10-19T08:00") in sink.cancelled

    def test_same_occurrence_resubmits_same_id(self, driver, sink):
        med = make_medication()
        driver.reschedule_one(med, MONDAY_7)
        driver.reschedule_one(med, MONDAY_7)
        assert sink.submitted[0] == sink.submitted[1]
        assert len(sink.pending) == 1

    def test_no_occurrence_submits_nothing(self, driver, sink):
        med = make_medication(recurrence=WeeklyOn(frozenset()))
        assert driver.reschedule_one(med, MONDAY_7) is None
        assert sink.pending == {}
        assert driver.pending(med.id) == []


class TestRescheduleAll:
    def test_cancels_everything_then_submits_each(self, driver, sink):
        a = make_medication(name="A")
        b = make_medication(name="B", recurrence=WeeklyOn(frozenset({Weekday.WEDNESDAY})))
        driver.reschedule_all([a, b], MONDAY_7)
        assert sink.cancel_all_calls == 1
        fire_times = sorted(at for at, _ in sink.pending.values())
        assert fire_times == [datetime(2026, 10, 19, 8, 0), datetime(2026, 10, 21, 8, 0)]

    def test_keeps_future_postponed_reminders(self, driver, sink):
        med = make_medication()
        driver.schedule_postponed(med, datetime(2026, 10, 19, 7, 30))
        driver.reschedule_all([med], MONDAY_7)
        assert len(driver.pending(med.id)) == 2
        assert len(sink.pending) == 2

    def test_drops_postponed_for_removed_medication(self, driver, sink):
        med = make_medication()
        driver.schedule_postponed(med, datetime(2026, 10, 19, 7, 30))
        driver.reschedule_all([], MONDAY_7)
        assert sink.pending == {}
        assert driver.pending(med.id) == []


class TestPostponed:
    def test_postponed_payload(self, driver, sink):
        med = make_medication()
        occ = driver.schedule_postponed(med, datetime(2026, 10, 19, 8, 10))
        assert occ.postponed is True
        _, payload = sink.pending[wakeup_id_for(med.id, occ.key)]
        assert payload.postponed is True
        assert "(postponed)" in payload.title

    def test_mark_fired_forgets_wakeup(self, driver, sink):
        med = make_medication()
        occ = driver.schedule_postponed(med, datetime(2026, 10, 19, 8, 10))
        _, payload = sink.pending[wakeup_id_for(med.id, occ.key)]
        driver.mark_fired(payload)
        assert driver.pending(med.id) == []
        assert driver.postponed_occurrences() == []

    def test_postponed_occurrences_lists_unfired(self, driver, sink):
        med = make_medication()
        driver.schedule_postponed(med, datetime(2026, 10, 19, 8, 10))
        assert driver.postponed_occurrences() == [
            ReminderOccurrence(med.id, datetime(2026, 10, 19, 8, 10), postponed=True),
        ]


class TestRestorePostponed:
    def test_restored_reminders_submitted_on_reschedule_all(self, driver, sink):
        med = make_medication()
        snoozed = ReminderOccurrence(med.id, datetime(2026, 10, 19, 7, 40), postponed=True)
        driver.restore_postponed([med], [snoozed])
        driver.reschedule_all([med], MONDAY_7)

        fire_at, payload = sink.pending[wakeup_id_for(med.id, snoozed.key)]
        assert fire_at == datetime(2026, 10, 19, 7, 40)
        assert payload.postponed is True
        assert payload.occurrence_key == "2026-10-19T07:40~p"

    def test_overdue_reminder_fires_at_reference(self, driver, sink):
        med = make_medication()
        snoozed = ReminderOccurrence(med.id, datetime(2026, 10, 19, 6, 30), postponed=True)
        driver.restore_postponed([med], [snoozed])
        driver.reschedule_all([med], MONDAY_7)
        fire_at, _ = sink.pending[wakeup_id_for(med.id, snoozed.key)]
        assert fire_at == MONDAY_7

    def test_unknown_medication_ignored(self, driver, sink):
        snoozed = ReminderOccurrence("ghost", datetime(2026, 10, 19, 7, 40), postponed=True)
        driver.restore_postponed([make_medication()], [snoozed])
        assert driver.postponed_occurrences() == []


class TestCancelFor:
    def test_cancels_regular_and_postponed(self, driver, sink):
        med = make_medication()
        other = make_medication(name="Other")
        driver.reschedule_one(med, MONDAY_7)
        driver.reschedule_one(other, MONDAY_7)
        driver.schedule_postponed(med, datetime(2026, 10, 19, 7, 30))
        driver.cancel_for(med.id)
        assert sink.payloads_for(med.id) == []
        assert len(sink.payloads_for(other.id)) == 1


class TestBuildPayload:
    def test_text_includes_description(self):
        med = make_medication()
        payload = build_payload(med, ReminderOccurrence(med.id, datetime(2026, 10, 19, 8, 0)))
        assert payload.title == "Time to take Aspirin"
        assert payload.text == "Aspirin: After breakfast"
        assert payload.occurrence_key == "2026-10-19T08:00"

    def test_text_without_description(self):
        med = make_medication(description="")
        payload = build_payload(med, ReminderOccurrence(med.id, datetime(2026, 10, 19, 8, 0)))
        assert payload.text == "Aspirin"

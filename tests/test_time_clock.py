"""
Clock event ledger tests.

Covers the clock-in/out state machine: overlap blocking, GPS violations
recorded for audit, bidirectional pairing, duration warnings and the
open-shift uniqueness key that closes the check-then-act race.
"""
import uuid
from types import SimpleNamespace
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from shiftledger.config import settings
from shiftledger.models.models import ClockEvent, ComplianceLogEntry
from shiftledger.services import time_clock
from shiftledger.services.errors import ClockIssueCode
from shiftledger.services.time_clock import (
    calculate_hours_from_records,
    get_active_clock_in,
    get_clock_records,
    get_open_clock_ins,
)
from shiftledger.services.time_rules import utcnow

START = datetime(2024, 3, 4, 8, 0)


@pytest.fixture
def staff(create_staff):
    return create_staff()


@pytest.fixture
def appointment(create_client, create_appointment, staff):
    return create_appointment(create_client(), staff)


def open_clock_ins(session, staff):
    return (
        session.query(ClockEvent)
        .filter(ClockEvent.staff_id == staff.id, ClockEvent.event_type == "clock_in", ClockEvent.pair_id.is_(None))
        .filter(ClockEvent.event_status != "gps_violation")
        .all()
    )


class TestClockIn:

    def test_compliant_clock_in(self, session, clock, staff, appointment):
        result = clock("in", staff, START, appointment=appointment)

        assert result.success
        assert result.errors == []
        assert result.gps_compliant is True
        assert result.distance == pytest.approx(0, abs=0.01)

        event = session.get(ClockEvent, result.record_id)
        assert event.event_type == "clock_in"
        assert event.event_status == "valid"
        assert event.timestamp == START
        assert event.expected_clock_out_time == appointment.end_time
        assert event.radius_threshold == 100
        assert event.is_within_radius is True
        assert event.open_shift_key == str(staff.id)

    def test_compliance_entry_written_when_location_known(self, session, clock, staff, appointment):
        result = clock("in", staff, START, appointment=appointment, notes="Arrived")

        entry = session.query(ComplianceLogEntry).one()
        assert entry.clock_event_id == result.record_id
        assert entry.event_type == "clock_in"
        assert entry.is_compliant is True
        assert entry.requires_review is False
        assert entry.notes == "Arrived"

    def test_no_appointment_skips_gps_check(self, session, clock, staff):
        result = clock("in", staff, START, meters_off=10_000)

        assert result.success
        assert result.distance is None
        assert session.query(ComplianceLogEntry).count() == 0
        event = session.get(ClockEvent, result.record_id)
        assert event.event_status == "valid"
        assert event.expected_latitude is None
        assert event.is_within_radius is None

    def test_client_without_location_skips_gps_check(self, session, clock, staff, create_client, create_appointment):
        appointment = create_appointment(create_client(latitude=None, longitude=None), staff)

        result = clock("in", staff, START, appointment=appointment, meters_off=10_000)

        assert result.success
        assert session.query(ComplianceLogEntry).count() == 0

    def test_second_clock_in_is_blocked_with_open_shift(self, session, clock, staff, appointment):
        first = clock("in", staff, START, appointment=appointment)

        second = clock("in", staff, START + timedelta(minutes=30), appointment=appointment)

        assert second.success is False
        assert second.error_codes() == [ClockIssueCode.OVERLAPPING_SHIFT]
        assert len(second.overlapping_events) == 1
        assert second.overlapping_events[0].record_id == first.record_id
        assert second.record_id is None
        assert session.query(ClockEvent).count() == 1

    def test_overlap_applies_across_appointments(self, session, clock, staff, appointment, create_client, create_appointment):
        other = create_appointment(create_client(name="Other Client"), staff)
        clock("in", staff, START, appointment=appointment)

        result = clock("in", staff, START + timedelta(hours=1), appointment=other)

        assert result.error_codes() == [ClockIssueCode.OVERLAPPING_SHIFT]

    def test_gps_violation_is_recorded_but_fails(self, session, clock, staff, appointment):
        result = clock("in", staff, START, appointment=appointment, meters_off=400)

        assert result.success is False
        assert result.gps_compliant is False
        assert result.error_codes() == [ClockIssueCode.GPS_VIOLATION]
        assert result.record_id is not None

        event = session.get(ClockEvent, result.record_id)
        assert event.event_status == "gps_violation"
        assert event.open_shift_key is None
        entry = session.query(ComplianceLogEntry).one()
        assert entry.requires_review is True
        assert entry.is_compliant is False

    def test_gps_violation_does_not_open_a_shift(self, session, clock, staff, appointment):
        clock("in", staff, START, appointment=appointment, meters_off=400)

        assert get_active_clock_in(session, staff.id).is_clocked_in is False
        retry = clock("in", staff, START + timedelta(minutes=2), appointment=appointment)
        assert retry.success

    def test_gps_warning_does_not_block(self, session, clock, staff, appointment):
        result = clock("in", staff, START, appointment=appointment, meters_off=90, accuracy=80)

        assert result.success
        assert set(result.warning_codes()) == {ClockIssueCode.GPS_WARNING, ClockIssueCode.GPS_ACCURACY_WARNING}
        assert session.get(ClockEvent, result.record_id).event_status == "gps_warning"

    def test_unknown_staff(self, session, clock, staff):
        result = clock("in", staff, START, staff_id=uuid.uuid4())

        assert result.success is False
        assert result.error_codes() == [ClockIssueCode.STAFF_NOT_FOUND]
        assert session.query(ClockEvent).count() == 0

    def test_unknown_appointment(self, session, clock, staff):
        result = clock("in", staff, START, appointment=SimpleNamespace(id=uuid.uuid4()))

        assert result.error_codes() == [ClockIssueCode.APPOINTMENT_NOT_FOUND]
        assert session.query(ClockEvent).count() == 0

    def test_future_timestamp_rejected(self, session, clock, staff):
        result = clock("in", staff, utcnow() + timedelta(hours=2))

        assert result.error_codes() == [ClockIssueCode.INVALID_TIMESTAMP]
        assert session.query(ClockEvent).count() == 0

    def test_persistence_failure_leaves_nothing_behind(self, session, clock, staff, appointment, monkeypatch):
        def failing_commit():
            raise SQLAlchemyError("database unavailable")

        with monkeypatch.context() as m:
            m.setattr(session, "commit", failing_commit)
            result = clock("in", staff, START, appointment=appointment)

        assert result.success is False
        assert result.error_codes() == [ClockIssueCode.PERSISTENCE_FAILURE]
        assert session.query(ClockEvent).count() == 0
        assert session.query(ComplianceLogEntry).count() == 0


class TestOpenShiftKey:

    def test_database_rejects_second_open_shift(self, session, staff):
        for minute in (0, 1):
            session.add(ClockEvent(
                id=uuid.uuid4(),
                staff_id=staff.id,
                event_type="clock_in",
                event_status="valid",
                timestamp=START + timedelta(minutes=minute),
                latitude=-33.8688,
                longitude=151.2093,
                open_shift_key=str(staff.id),
            ))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

    def test_concurrent_clock_in_loses_with_overlap(self, session, clock, staff, appointment, monkeypatch):
        winner = clock("in", staff, START, appointment=appointment)
        real_lookup = time_clock.get_open_clock_ins
        calls = []

        def stale_lookup(db, staff_id, *args, **kwargs):
            # First check runs before the competing insert is visible
            calls.append(staff_id)
            if len(calls) == 1:
                return []
            return real_lookup(db, staff_id, *args, **kwargs)

        monkeypatch.setattr(time_clock, "get_open_clock_ins", stale_lookup)
        loser = clock("in", staff, START + timedelta(seconds=1), appointment=appointment)

        assert loser.success is False
        assert loser.error_codes() == [ClockIssueCode.OVERLAPPING_SHIFT]
        assert [e.record_id for e in loser.overlapping_events] == [winner.record_id]
        assert len(open_clock_ins(session, staff)) == 1

    def test_key_released_after_clock_out(self, session, clock, staff, appointment):
        started = clock("in", staff, START, appointment=appointment)
        clock("out", staff, START + timedelta(hours=2), appointment=appointment)

        assert session.get(ClockEvent, started.record_id).open_shift_key is None
        again = clock("in", staff, START + timedelta(hours=3), appointment=appointment)
        assert again.success


class TestClockOut:

    def test_pairs_both_sides(self, session, clock, staff, appointment):
        started = clock("in", staff, START, appointment=appointment)
        finished = clock("out", staff, START + timedelta(hours=9), appointment=appointment)

        assert finished.success
        clock_in_event = session.get(ClockEvent, started.record_id)
        clock_out_event = session.get(ClockEvent, finished.record_id)
        assert clock_out_event.pair_id == clock_in_event.id
        assert clock_in_event.pair_id == clock_out_event.id
        assert clock_out_event.event_type == "clock_out"
        assert get_active_clock_in(session, staff.id).is_clocked_in is False

    def test_no_active_clock_in(self, session, clock, staff, appointment):
        result = clock("out", staff, START, appointment=appointment)

        assert result.success is False
        assert result.error_codes() == [ClockIssueCode.NO_ACTIVE_CLOCK_IN]
        assert session.query(ClockEvent).count() == 0

    def test_clock_out_needs_matching_appointment_key(self, session, clock, staff, appointment):
        clock("in", staff, START, appointment=appointment)

        result = clock("out", staff, START + timedelta(hours=1))

        assert result.error_codes() == [ClockIssueCode.NO_ACTIVE_CLOCK_IN]

    def test_clock_out_before_clock_in_rejected(self, session, clock, staff, appointment):
        clock("in", staff, START, appointment=appointment)

        result = clock("out", staff, START - timedelta(minutes=10), appointment=appointment)

        assert result.error_codes() == [ClockIssueCode.INVALID_TIMESTAMP]
        assert session.query(ClockEvent).count() == 1

    def test_gps_violation_on_clock_out(self, session, clock, staff, appointment):
        clock("in", staff, START, appointment=appointment)

        result = clock("out", staff, START + timedelta(hours=8), appointment=appointment, meters_off=250)

        assert result.success is False
        assert result.gps_compliant is False
        assert result.distance == pytest.approx(250, abs=0.5)
        assert result.error_codes() == [ClockIssueCode.GPS_VIOLATION]

        entry = (
            session.query(ComplianceLogEntry)
            .filter(ComplianceLogEntry.event_type == "clock_out")
            .one()
        )
        assert entry.requires_review is True
        assert entry.clock_event_id == result.record_id
        assert float(entry.distance_meters) == pytest.approx(250, abs=0.5)

    def test_violating_clock_out_leaves_shift_open(self, session, clock, staff, appointment):
        started = clock("in", staff, START, appointment=appointment)
        clock("out", staff, START + timedelta(hours=8), appointment=appointment, meters_off=250)

        status = get_active_clock_in(session, staff.id)
        assert status.is_clocked_in
        assert status.active_events[0].record_id == started.record_id

        retry = clock("out", staff, START + timedelta(hours=8, minutes=3), appointment=appointment)
        assert retry.success
        assert session.get(ClockEvent, started.record_id).pair_id == retry.record_id

    def test_very_short_shift_warns(self, session, clock, staff, appointment):
        clock("in", staff, START, appointment=appointment)

        result = clock("out", staff, START + timedelta(minutes=3), appointment=appointment)

        assert result.success
        assert ClockIssueCode.IMPLAUSIBLE_DURATION_WARNING in result.warning_codes()

    def test_short_shift_threshold_is_configurable(self, session, clock, staff, appointment, monkeypatch):
        monkeypatch.setattr(settings, "min_shift_minutes", 45)
        clock("in", staff, START, appointment=appointment)

        result = clock("out", staff, START + timedelta(minutes=30), appointment=appointment)

        assert result.success
        assert result.warning_codes() == [ClockIssueCode.IMPLAUSIBLE_DURATION_WARNING]

    def test_default_minimum_is_five_minutes_so_half_hour_shift_passes(self, session, clock, staff, appointment):
        assert settings.min_shift_minutes == 5
        clock("in", staff, START, appointment=appointment)

        result = clock("out", staff, START + timedelta(minutes=30), appointment=appointment)

        assert result.success
        assert result.warnings == []

    def test_very_long_shift_warns(self, session, clock, staff, appointment):
        clock("in", staff, START, appointment=appointment)

        result = clock("out", staff, START + timedelta(hours=17), appointment=appointment)

        assert result.success
        assert result.warning_codes() == [ClockIssueCode.IMPLAUSIBLE_DURATION_WARNING]
        assert "17 hours" in result.warnings[0].message


class TestQueries:

    def test_active_clock_in_lists_open_shift(self, session, clock, staff, appointment):
        started = clock("in", staff, START, appointment=appointment)

        status = get_active_clock_in(session, staff.id)

        assert status.is_clocked_in
        assert len(status.active_events) == 1
        assert status.active_events[0].record_id == started.record_id
        assert status.active_events[0].appointment_id == appointment.id
        assert status.active_events[0].clock_in_time == START

    def test_open_clock_ins_filter_by_appointment(self, session, clock, staff, appointment):
        clock("in", staff, START, appointment=appointment)

        assert len(get_open_clock_ins(session, staff.id)) == 1
        assert len(get_open_clock_ins(session, staff.id, appointment_id=appointment.id)) == 1
        assert get_open_clock_ins(session, staff.id, appointment_id=None) == []

    def test_records_are_half_open_and_ordered(self, session, work_shift, staff, appointment):
        work_shift(staff, START, START + timedelta(hours=2), appointment=appointment)
        work_shift(staff, START + timedelta(hours=3), START + timedelta(hours=4), appointment=appointment)

        records = get_clock_records(session, staff.id, START, START + timedelta(hours=4))

        assert [r.timestamp for r in records] == [
            START,
            START + timedelta(hours=2),
            START + timedelta(hours=3),
        ]

    def test_calculate_hours_from_records(self, session, work_shift, staff, appointment):
        work_shift(staff, START, START + timedelta(hours=2, minutes=30), appointment=appointment)
        work_shift(staff, START + timedelta(hours=3), START + timedelta(hours=4), appointment=appointment)

        records = get_clock_records(session, staff.id, START, START + timedelta(days=1))

        assert calculate_hours_from_records(records) == pytest.approx(3.5)

from datetime import datetime, timedelta

import pytest

from clinic_backend.models.appointment import Appointment, AppointmentStatus
from clinic_backend.scheduling.overlap import (
    CONFLICT_SEARCH_PADDING,
    MAX_DURATION_MINUTES,
    Interval,
    check_search_padding,
    conflict_search_window,
    find_conflicts,
    overlaps,
)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 6, 1, hour, minute)


def _appointment(appointment_id: str, start: datetime, duration: int) -> Appointment:
    return Appointment(
        id=appointment_id,
        tenant_id='tenant-1',
        dentist_id='dentist-1',
        patient_id='patient-1',
        start_time=start,
        duration_minutes=duration,
        status=AppointmentStatus.SCHEDULED,
    )


def test_interval_from_start_is_half_open_duration() -> None:
    interval = Interval.from_start(_at(9), 45)

    assert interval.start == _at(9)
    assert interval.end == _at(9, 45)


@pytest.mark.parametrize(
    ('candidate', 'expected'),
    [
        (Interval(_at(9, 59), _at(10, 30)), True),
        (Interval(_at(10), _at(10, 30)), False),
        (Interval(_at(8), _at(9)), False),
        (Interval(_at(8, 30), _at(9, 1)), True),
        (Interval(_at(9, 15), _at(9, 45)), True),
        (Interval(_at(8), _at(11)), True),
    ],
)
def test_overlaps_against_nine_to_ten(candidate: Interval, expected: bool) -> None:
    booked = Interval(_at(9), _at(10))

    assert overlaps(candidate, booked) is expected
    assert overlaps(booked, candidate) is expected


def test_conflict_search_window_pads_both_sides_by_a_day() -> None:
    window_start, window_end = conflict_search_window(Interval(_at(9), _at(10)))

    assert window_start == _at(9) - timedelta(hours=24)
    assert window_end == _at(10) + timedelta(hours=24)


def test_conflict_search_padding_covers_longest_appointment() -> None:
    assert CONFLICT_SEARCH_PADDING >= timedelta(minutes=MAX_DURATION_MINUTES)
    check_search_padding(CONFLICT_SEARCH_PADDING)


def test_check_search_padding_rejects_padding_shorter_than_longest_appointment() -> None:
    with pytest.raises(RuntimeError):
        check_search_padding(timedelta(hours=7), max_duration_minutes=MAX_DURATION_MINUTES)


def test_find_conflicts_returns_only_overlapping_appointments() -> None:
    existing = [
        _appointment('early', _at(8), 60),
        _appointment('overlapping', _at(9, 30), 30),
        _appointment('late', _at(10), 60),
    ]

    conflicts = find_conflicts(Interval(_at(9), _at(10)), existing)

    assert [appointment.id for appointment in conflicts] == ['overlapping']

"""Overlap detection between half-open appointment intervals."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from clinic_backend.models.appointment import Appointment

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 480

# Existing bookings are only fetched when they start within this distance of the
# candidate interval, so it has to exceed the longest possible appointment.
CONFLICT_SEARCH_PADDING = timedelta(hours=24)


def check_search_padding(padding: timedelta, max_duration_minutes: int = MAX_DURATION_MINUTES) -> None:
    if padding < timedelta(minutes=max_duration_minutes):
        raise RuntimeError(
            f'Conflict search padding {padding} is shorter than the longest appointment '
            f'({max_duration_minutes} minutes).'
        )


check_search_padding(CONFLICT_SEARCH_PADDING)


@dataclass(frozen=True)
class Interval:
    start: datetime
    end: datetime

    @classmethod
    def from_start(cls, start: datetime, duration_minutes: int) -> Interval:
        return cls(start=start, end=start + timedelta(minutes=duration_minutes))

    @classmethod
    def of(cls, appointment: Appointment) -> Interval:
        return cls.from_start(appointment.start_time, appointment.duration_minutes)

    def shifted(self, delta: timedelta) -> Interval:
        return Interval(start=self.start + delta, end=self.end + delta)


def overlaps(a: Interval, b: Interval) -> bool:
    """True when the intervals share time. Touching endpoints do not overlap."""
    return a.start < b.end and b.start < a.end


def conflict_search_window(interval: Interval) -> tuple[datetime, datetime]:
    """Inclusive range of start times an existing booking needs to be a possible conflict."""
    return interval.start - CONFLICT_SEARCH_PADDING, interval.end + CONFLICT_SEARCH_PADDING


def find_conflicts(candidate: Interval, existing: Iterable[Appointment]) -> list[Appointment]:
    return [appointment for appointment in existing if overlaps(candidate, Interval.of(appointment))]

"""Alternative slots offered when a requested booking collides."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Sequence

from clinic_backend.models.appointment import Appointment
from clinic_backend.scheduling.overlap import Interval, find_conflicts

SUGGESTION_OFFSET = timedelta(hours=1)
CANDIDATE_OFFSETS = (
    (-SUGGESTION_OFFSET, 'one hour before'),
    (SUGGESTION_OFFSET, 'one hour after'),
)

CONFLICT_ERROR = 'The dentist already has an appointment at that time.'
NO_SUGGESTIONS_MESSAGE = 'No nearby time slots are available. Please choose another time.'


@dataclass(frozen=True)
class Suggestion:
    start: datetime
    label: str


@dataclass(frozen=True)
class ConflictResult:
    """Outcome of a booking attempt that collided with existing appointments."""

    message: str
    suggestions: tuple[Suggestion, ...] = ()
    conflicting_ids: tuple[str, ...] = ()
    error: str = field(default=CONFLICT_ERROR)


def plan_suggestions(interval: Interval, conflict_set: Sequence[Appointment]) -> list[Suggestion]:
    """
    Try the same duration one hour earlier and one hour later.

    Candidates are checked against the conflict set already fetched for the
    original request; both lie well inside its search window.
    """
    suggestions: list[Suggestion] = []
    for offset, label in CANDIDATE_OFFSETS:
        candidate = interval.shifted(offset)
        if not find_conflicts(candidate, conflict_set):
            suggestions.append(Suggestion(start=candidate.start, label=label))
    return suggestions


def conflict_message(suggestions: Sequence[Suggestion]) -> str:
    if not suggestions:
        return NO_SUGGESTIONS_MESSAGE
    return 'Available times: ' + ', '.join(suggestion.label for suggestion in suggestions)


def build_conflict(
    interval: Interval,
    conflict_set: Sequence[Appointment],
    conflicts: Sequence[Appointment],
) -> ConflictResult:
    suggestions = plan_suggestions(interval, conflict_set)
    return ConflictResult(
        message=conflict_message(suggestions),
        suggestions=tuple(suggestions),
        conflicting_ids=tuple(appointment.id for appointment in conflicts),
    )

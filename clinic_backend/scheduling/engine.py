"""
Appointment scheduling engine.

Every operation runs as one store transaction. Bookings and reschedules hold
the target dentist's lock across the conflict check and the write, so two
requests for the same dentist can never both see a free slot. Operations on
an existing appointment hold that appointment's lock first, then the
dentist's, never the other way round.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Union

from sqlalchemy.orm import Session

from clinic_backend.models.appointment import Appointment, AppointmentStatus, AppointmentType, utcnow
from clinic_backend.models.user import UserRole
from clinic_backend.scheduling import directory
from clinic_backend.scheduling.errors import InvalidInput, InvalidTransition, NotFound
from clinic_backend.scheduling.locks import appointment_key, dentist_key
from clinic_backend.scheduling.overlap import MAX_DURATION_MINUTES, MIN_DURATION_MINUTES, Interval, find_conflicts
from clinic_backend.scheduling.status_machine import validate_transition
from clinic_backend.scheduling.store import AppointmentStore, Transaction
from clinic_backend.scheduling.suggestions import ConflictResult, build_conflict

logger = logging.getLogger(__name__)

DEFAULT_LIST_RANGE = timedelta(days=60)
MAX_NOTES_LENGTH = 1000
RESCHEDULABLE_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})

BookingResult = Union[Appointment, ConflictResult]

_UNSET = object()


@dataclass(frozen=True)
class AppointmentFilters:
    dentist_id: str | None = None
    patient_id: str | None = None
    date_range: tuple[datetime, datetime] | None = None
    status: AppointmentStatus | None = None
    caller_role: UserRole | None = None
    caller_user_id: str | None = None


def to_utc(value: datetime) -> datetime:
    """Normalise to naive UTC. Naive values are taken to be UTC already."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def validate_duration(duration: int) -> int:
    if isinstance(duration, bool) or not isinstance(duration, int):
        raise InvalidInput('Duration must be a whole number of minutes.')
    if not MIN_DURATION_MINUTES <= duration <= MAX_DURATION_MINUTES:
        raise InvalidInput(
            f'Duration must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes.'
        )
    return duration


def parse_status(value: AppointmentStatus | str) -> AppointmentStatus:
    try:
        return AppointmentStatus(value.strip().upper() if isinstance(value, str) else value)
    except ValueError as exc:
        raise InvalidInput(f'Unknown appointment status: {value}.') from exc


def parse_appointment_type(value: AppointmentType | str) -> AppointmentType:
    try:
        return AppointmentType(value.strip().upper() if isinstance(value, str) else value)
    except ValueError as exc:
        raise InvalidInput(f'Unknown appointment type: {value}.') from exc


def clean_notes(notes: str | None) -> str | None:
    if notes is None:
        return None
    normalized = notes.strip()
    if not normalized:
        return None
    if len(normalized) > MAX_NOTES_LENGTH:
        raise InvalidInput(f'Notes must be {MAX_NOTES_LENGTH} characters or fewer.')
    return normalized


def clean_room(room: str | None) -> str | None:
    if room is None:
        return None
    return room.strip() or None


def detail_changes(notes=_UNSET, room=_UNSET, appointment_type=_UNSET) -> dict:
    """Validated column changes for the notes, room and type that were supplied."""
    changes = {}
    if notes is not _UNSET:
        changes['notes'] = clean_notes(notes)
    if room is not _UNSET:
        changes['room'] = clean_room(room)
    if appointment_type is not _UNSET:
        changes['appointment_type'] = parse_appointment_type(appointment_type)
    return changes


def _apply(appointment: Appointment, changes: dict) -> None:
    for attribute, value in changes.items():
        setattr(appointment, attribute, value)


class SchedulingEngine:
    def __init__(self, store: AppointmentStore, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self._clock = clock

    def book(
        self,
        tenant_id: str,
        patient_id: str,
        dentist_id: str,
        start: datetime,
        duration: int,
        appointment_type: AppointmentType | str,
        notes: str | None = None,
        room: str | None = None,
    ) -> BookingResult:
        interval = Interval.from_start(to_utc(start), validate_duration(duration))
        appointment_type = parse_appointment_type(appointment_type)
        notes = clean_notes(notes)

        def work(tx: Transaction) -> BookingResult:
            tx.lock(dentist_key(tenant_id, dentist_id))
            session = tx.session
            dentist = directory.find_dentist(session, tenant_id, dentist_id, lock=True)
            if dentist is None:
                raise NotFound('Dentist not found.')
            patient = directory.find_patient(session, tenant_id, patient_id)
            if patient is None:
                raise NotFound('Patient not found.')

            conflict_set = self.store.conflict_set(session, tenant_id, dentist_id, interval)
            conflicts = find_conflicts(interval, conflict_set)
            if conflicts:
                return build_conflict(interval, conflict_set, conflicts)

            appointment = Appointment(
                tenant_id=tenant_id,
                patient=patient,
                dentist=dentist,
                start_time=interval.start,
                duration_minutes=duration,
                appointment_type=appointment_type,
                status=AppointmentStatus.SCHEDULED,
                notes=notes,
                room=clean_room(room),
            )
            session.add(appointment)
            session.flush()
            return appointment

        result = self.store.run(work)
        if isinstance(result, ConflictResult):
            logger.info(
                'Booking conflict for dentist %s at %s (%s suggestions)',
                dentist_id, interval.start.isoformat(), len(result.suggestions),
            )
        else:
            logger.info('Booked appointment %s for dentist %s at %s', result.id, dentist_id, interval.start.isoformat())
        return result

    def transition(
        self,
        tenant_id: str,
        appointment_id: str,
        next_status: AppointmentStatus | str,
        notes=_UNSET,
        room=_UNSET,
        appointment_type=_UNSET,
    ) -> Appointment:
        """Move the appointment to ``next_status``, optionally editing its details in the same transaction."""
        next_status = parse_status(next_status)
        changes = detail_changes(notes, room, appointment_type)

        def work(tx: Transaction) -> Appointment:
            tx.lock(appointment_key(tenant_id, appointment_id))
            appointment = self._load(tx.session, tenant_id, appointment_id, for_update=True)
            validate_transition(appointment.status, next_status)
            previous = appointment.status
            appointment.status = next_status
            _apply(appointment, changes)
            appointment.updated_at = utcnow()
            tx.session.flush()
            logger.info('Appointment %s moved from %s to %s', appointment_id, previous.value, next_status.value)
            return appointment

        return self.store.run(work)

    def reschedule(
        self,
        tenant_id: str,
        appointment_id: str,
        new_start: datetime | None = None,
        new_duration: int | None = None,
        new_dentist_id: str | None = None,
        notes=_UNSET,
        room=_UNSET,
        appointment_type=_UNSET,
    ) -> BookingResult:
        """Move the appointment in time or to another dentist. Detail edits only apply when the move does."""
        if new_duration is not None:
            validate_duration(new_duration)
        if new_start is not None:
            new_start = to_utc(new_start)
        changes = detail_changes(notes, room, appointment_type)

        def work(tx: Transaction) -> BookingResult:
            tx.lock(appointment_key(tenant_id, appointment_id))
            session = tx.session
            appointment = self._load(session, tenant_id, appointment_id, for_update=True)
            if appointment.status not in RESCHEDULABLE_STATUSES:
                raise InvalidTransition(f'Cannot reschedule an appointment that is {appointment.status.value}.')

            dentist_id = new_dentist_id or appointment.dentist_id
            tx.lock(dentist_key(tenant_id, dentist_id))
            dentist = directory.find_dentist(session, tenant_id, dentist_id, lock=True)
            if dentist is None:
                raise NotFound('Dentist not found.')

            duration = new_duration or appointment.duration_minutes
            interval = Interval.from_start(new_start or appointment.start_time, duration)
            conflict_set = self.store.conflict_set(
                session, tenant_id, dentist_id, interval, exclude_appointment_id=appointment.id,
            )
            conflicts = find_conflicts(interval, conflict_set)
            if conflicts:
                return build_conflict(interval, conflict_set, conflicts)

            appointment.dentist = dentist
            appointment.start_time = interval.start
            appointment.duration_minutes = duration
            _apply(appointment, changes)
            appointment.updated_at = utcnow()
            session.flush()
            return appointment

        result = self.store.run(work)
        if not isinstance(result, ConflictResult):
            logger.info('Rescheduled appointment %s to %s', appointment_id, result.start_time.isoformat())
        return result

    def update_details(
        self,
        tenant_id: str,
        appointment_id: str,
        notes=_UNSET,
        room=_UNSET,
        appointment_type=_UNSET,
    ) -> Appointment:
        """Edit notes, room or treatment type. None clears notes and room."""
        changes = detail_changes(notes, room, appointment_type)

        def work(tx: Transaction) -> Appointment:
            tx.lock(appointment_key(tenant_id, appointment_id))
            appointment = self._load(tx.session, tenant_id, appointment_id, for_update=True)
            if changes:
                _apply(appointment, changes)
                appointment.updated_at = utcnow()
                tx.session.flush()
            return appointment

        return self.store.run(work)

    def get(self, tenant_id: str, appointment_id: str) -> Appointment:
        return self.store.run(lambda tx: self._load(tx.session, tenant_id, appointment_id))

    def list_appointments(self, tenant_id: str, filters: AppointmentFilters | None = None) -> list[Appointment]:
        filters = filters or AppointmentFilters()

        dentist_id = filters.dentist_id
        if filters.caller_role == UserRole.DENTIST:
            if not filters.caller_user_id:
                raise InvalidInput('Dentist callers must be identified.')
            dentist_id = filters.caller_user_id

        if filters.date_range:
            range_start, range_end = (to_utc(value) for value in filters.date_range)
            if range_end <= range_start:
                raise InvalidInput('Date range end must be after its start.')
        else:
            range_start = self._clock()
            range_end = range_start + DEFAULT_LIST_RANGE

        return self.store.run(
            lambda tx: self.store.search(
                tx.session,
                tenant_id,
                range_start,
                range_end,
                dentist_id=dentist_id,
                patient_id=filters.patient_id,
                status=filters.status,
            )
        )

    def delete(self, tenant_id: str, appointment_id: str) -> None:
        """Administrative hard delete. Skips the status machine entirely."""

        def work(tx: Transaction) -> None:
            tx.lock(appointment_key(tenant_id, appointment_id))
            appointment = self._load(tx.session, tenant_id, appointment_id, for_update=True)
            tx.session.delete(appointment)

        self.store.run(work)
        logger.info('Appointment %s deleted for tenant %s', appointment_id, tenant_id)

    def _load(self, session: Session, tenant_id: str, appointment_id: str, for_update: bool = False) -> Appointment:
        appointment = self.store.get(session, tenant_id, appointment_id, for_update=for_update)
        if appointment is None:
            raise NotFound('Appointment not found.')
        return appointment

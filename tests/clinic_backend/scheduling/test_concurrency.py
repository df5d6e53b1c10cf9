from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from threading import Barrier

import pytest

from clinic_backend.models.appointment import Appointment, AppointmentStatus, AppointmentType
from clinic_backend.scheduling.engine import SchedulingEngine
from clinic_backend.scheduling.errors import TransientStoreError
from clinic_backend.scheduling.locks import LockRegistry, dentist_key
from clinic_backend.scheduling.store import AppointmentStore
from clinic_backend.scheduling.suggestions import ConflictResult

WORKERS = 8


def _book_all_at_once(scheduling_engine, clinic, starts):
    barrier = Barrier(len(starts))

    def attempt(start: datetime):
        barrier.wait()
        return scheduling_engine.book(
            tenant_id=clinic.tenant,
            patient_id=clinic.patient,
            dentist_id=clinic.dentist,
            start=start,
            duration=60,
            appointment_type=AppointmentType.CONSULTATION,
        )

    with ThreadPoolExecutor(max_workers=len(starts)) as pool:
        return list(pool.map(attempt, starts))


def test_concurrent_overlapping_bookings_admit_exactly_one(scheduling_engine, clinic, session_factory) -> None:
    base = datetime(2024, 6, 1, 9, 0)
    starts = [base + timedelta(minutes=5 * index) for index in range(WORKERS)]

    results = _book_all_at_once(scheduling_engine, clinic, starts)

    booked = [result for result in results if isinstance(result, Appointment)]
    conflicts = [result for result in results if isinstance(result, ConflictResult)]
    assert len(booked) == 1
    assert len(conflicts) == WORKERS - 1

    db = session_factory()
    try:
        rows = db.query(Appointment).filter(
            Appointment.dentist_id == clinic.dentist,
            Appointment.status == AppointmentStatus.SCHEDULED,
        ).all()
    finally:
        db.close()
    assert [row.id for row in rows] == [booked[0].id]


def test_concurrent_identical_requests_admit_exactly_one(scheduling_engine, clinic) -> None:
    results = _book_all_at_once(scheduling_engine, clinic, [datetime(2024, 6, 1, 15, 0)] * WORKERS)

    assert sum(isinstance(result, Appointment) for result in results) == 1


def test_concurrent_back_to_back_requests_all_succeed(scheduling_engine, clinic) -> None:
    base = datetime(2024, 6, 3, 8, 0)
    starts = [base + timedelta(hours=index) for index in range(4)]

    results = _book_all_at_once(scheduling_engine, clinic, starts)

    assert all(isinstance(result, Appointment) for result in results)


def test_booking_gives_up_when_dentist_lock_is_held(session_factory, clinic) -> None:
    locks = LockRegistry(timeout_seconds=0.05)
    scheduling_engine = SchedulingEngine(AppointmentStore(session_factory, locks=locks))

    with locks.hold(dentist_key(clinic.tenant, clinic.dentist)):
        with pytest.raises(TransientStoreError):
            scheduling_engine.book(
                clinic.tenant, clinic.patient, clinic.dentist, datetime(2024, 6, 1, 9), 30, 'CLEANING'
            )

        other = scheduling_engine.book(
            clinic.tenant, clinic.patient, clinic.second_dentist, datetime(2024, 6, 1, 9), 30, 'CLEANING'
        )

    assert isinstance(other, Appointment)

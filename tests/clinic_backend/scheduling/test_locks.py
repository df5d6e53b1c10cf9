from datetime import datetime, timedelta
from threading import Event, Thread

from clinic_backend.scheduling.engine import SchedulingEngine
from clinic_backend.scheduling.errors import TransientStoreError
from clinic_backend.scheduling.locks import LockRegistry, appointment_key, dentist_key
from clinic_backend.scheduling.store import AppointmentStore


def test_hold_drops_key_after_release() -> None:
    locks = LockRegistry(timeout_seconds=0.05)

    with locks.hold(dentist_key('tenant-1', 'dentist-1')):
        assert len(locks) == 1

    assert len(locks) == 0


def test_hold_drops_key_after_timeout() -> None:
    locks = LockRegistry(timeout_seconds=0.05)
    key = appointment_key('tenant-1', 'appointment-1')

    with locks.hold(key):
        waiter_failed = Event()

        def wait_for_key() -> None:
            try:
                with locks.hold(key):
                    pass
            except TransientStoreError:
                waiter_failed.set()

        waiter = Thread(target=wait_for_key)
        waiter.start()
        waiter.join()
        assert waiter_failed.is_set()
        assert len(locks) == 1

    assert len(locks) == 0


def test_waiter_takes_over_key_after_holder_releases() -> None:
    locks = LockRegistry(timeout_seconds=2)
    key = dentist_key('tenant-1', 'dentist-1')
    entered = Event()
    release = Event()

    def holder() -> None:
        with locks.hold(key):
            entered.set()
            release.wait()

    thread = Thread(target=holder)
    thread.start()
    entered.wait()
    release.set()

    with locks.hold(key):
        assert len(locks) == 1
    thread.join()

    assert len(locks) == 0


def test_registry_is_empty_after_engine_operations(session_factory, clinic) -> None:
    locks = LockRegistry(timeout_seconds=1)
    scheduling_engine = SchedulingEngine(AppointmentStore(session_factory, locks=locks, sleep=lambda _delay: None))
    base = datetime(2024, 6, 1, 8, 0)

    for index in range(5):
        appointment = scheduling_engine.book(
            clinic.tenant, clinic.patient, clinic.dentist, base + timedelta(hours=index), 30, 'CLEANING'
        )
        scheduling_engine.transition(clinic.tenant, appointment.id, 'CANCELLED')

    assert len(locks) == 0

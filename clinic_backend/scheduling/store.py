"""Tenant-scoped, transactional access to appointment records."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Hashable
from contextlib import ExitStack
from datetime import datetime
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from clinic_backend.core import config
from clinic_backend.models.appointment import NON_BLOCKING_STATUSES, Appointment, AppointmentStatus
from clinic_backend.scheduling.errors import TransientStoreError
from clinic_backend.scheduling.locks import LockRegistry, schedule_locks
from clinic_backend.scheduling.overlap import Interval, conflict_search_window

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Appointments handed back to callers carry their patient and dentist rows.
_WITH_PEOPLE = (selectinload(Appointment.patient), selectinload(Appointment.dentist))


def is_transient(exc: DBAPIError) -> bool:
    return isinstance(exc, (OperationalError, InterfaceError)) or exc.connection_invalidated


class Transaction:
    """A session plus the advisory locks held until it commits or rolls back."""

    def __init__(self, session: Session, locks: LockRegistry, stack: ExitStack) -> None:
        self.session = session
        self._locks = locks
        self._stack = stack

    def lock(self, key: Hashable) -> None:
        self._stack.enter_context(self._locks.hold(key))


class AppointmentStore:
    def __init__(
        self,
        session_factory: sessionmaker,
        locks: LockRegistry = schedule_locks,
        max_attempts: int = config.STORE_MAX_ATTEMPTS,
        base_delay: float = config.STORE_RETRY_BASE_DELAY_SECONDS,
        max_delay: float = config.STORE_RETRY_MAX_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session_factory = session_factory
        self.locks = locks
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    def run(self, work: Callable[[Transaction], T]) -> T:
        """
        Run ``work`` in its own transaction and commit it.

        Connection-level failures roll back and retry the whole unit with
        exponential backoff; anything else propagates after rollback.
        """
        for attempt in range(self.max_attempts):
            try:
                return self._run_once(work)
            except DBAPIError as exc:
                if not is_transient(exc):
                    raise
                if attempt >= self.max_attempts - 1:
                    logger.error('Appointment store unavailable after %s attempts', self.max_attempts)
                    raise TransientStoreError('The appointment store is temporarily unavailable.') from exc
                delay = min(self.max_delay, self.base_delay * (2**attempt))
                delay = delay + random.uniform(0, delay / 2)
                logger.warning('Appointment store operation failed, retrying in %.2fs', delay, exc_info=exc)
                self._sleep(delay)

        raise TransientStoreError('The appointment store is temporarily unavailable.')

    def _run_once(self, work: Callable[[Transaction], T]) -> T:
        with ExitStack() as stack:
            session = self.session_factory(expire_on_commit=False)
            stack.callback(session.close)
            try:
                result = work(Transaction(session, self.locks, stack))
                session.commit()
            except Exception:
                session.rollback()
                raise
            return result

    @staticmethod
    def get(session: Session, tenant_id: str, appointment_id: str, for_update: bool = False) -> Appointment | None:
        query = select(Appointment).where(
            Appointment.tenant_id == tenant_id,
            Appointment.id == appointment_id,
        ).options(*_WITH_PEOPLE)
        if for_update:
            query = query.with_for_update()
        return session.execute(query).scalar_one_or_none()

    @staticmethod
    def conflict_set(
        session: Session,
        tenant_id: str,
        dentist_id: str,
        interval: Interval,
        exclude_appointment_id: str | None = None,
    ) -> list[Appointment]:
        """Blocking appointments of the dentist that start near ``interval``."""
        window_start, window_end = conflict_search_window(interval)
        query = select(Appointment).where(
            Appointment.tenant_id == tenant_id,
            Appointment.dentist_id == dentist_id,
            Appointment.status.notin_(sorted(NON_BLOCKING_STATUSES)),
            Appointment.start_time >= window_start,
            Appointment.start_time <= window_end,
        )
        if exclude_appointment_id:
            query = query.where(Appointment.id != exclude_appointment_id)
        return list(session.scalars(query.order_by(Appointment.start_time.asc())))

    @staticmethod
    def search(
        session: Session,
        tenant_id: str,
        range_start: datetime,
        range_end: datetime,
        dentist_id: str | None = None,
        patient_id: str | None = None,
        status: AppointmentStatus | None = None,
    ) -> list[Appointment]:
        query = select(Appointment).where(
            Appointment.tenant_id == tenant_id,
            Appointment.start_time >= range_start,
            Appointment.start_time < range_end,
        ).options(*_WITH_PEOPLE)
        if dentist_id:
            query = query.where(Appointment.dentist_id == dentist_id)
        if patient_id:
            query = query.where(Appointment.patient_id == patient_id)
        if status:
            query = query.where(Appointment.status == status)
        return list(session.scalars(query.order_by(Appointment.start_time.asc())))

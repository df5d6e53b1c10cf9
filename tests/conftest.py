import os
from datetime import datetime
from types import SimpleNamespace

import pytest
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinic_backend.database import Base, build_engine  # noqa: E402
from clinic_backend.models.appointment import Appointment  # noqa: E402
from clinic_backend.models.patient import Patient  # noqa: E402
from clinic_backend.models.user import User, UserRole  # noqa: E402
from clinic_backend.scheduling.engine import SchedulingEngine  # noqa: E402
from clinic_backend.scheduling.locks import LockRegistry  # noqa: E402
from clinic_backend.scheduling.store import AppointmentStore  # noqa: E402

NOW = datetime(2024, 5, 20, 8, 0)


@pytest.fixture
def session_factory(tmp_path):
    # File-backed so worker threads get their own connections.
    engine = build_engine(f"sqlite:///{tmp_path / 'clinic.db'}")
    Base.metadata.create_all(bind=engine, tables=[User.__table__, Patient.__table__, Appointment.__table__])
    try:
        yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine, tables=[Appointment.__table__, Patient.__table__, User.__table__])
        engine.dispose()


@pytest.fixture
def clinic(session_factory):
    ids = SimpleNamespace(
        tenant='tenant-1',
        other_tenant='tenant-2',
        admin='admin-1',
        dentist='dentist-1',
        second_dentist='dentist-2',
        assistant='assistant-1',
        patient='patient-1',
        other_dentist='dentist-9',
        other_patient='patient-9',
    )
    db = session_factory()
    try:
        db.add_all([
            User(id=ids.admin, tenant_id=ids.tenant, email='admin@clinic.test', role=UserRole.ADMIN),
            User(id=ids.dentist, tenant_id=ids.tenant, email='ana@clinic.test', first_name='Ana', role=UserRole.DENTIST),
            User(id=ids.second_dentist, tenant_id=ids.tenant, email='luis@clinic.test', role=UserRole.DENTIST),
            User(id=ids.assistant, tenant_id=ids.tenant, email='eva@clinic.test', role=UserRole.ASSISTANT),
            Patient(id=ids.patient, tenant_id=ids.tenant, first_name='Marta', last_name='Ruiz'),
            User(id=ids.other_dentist, tenant_id=ids.other_tenant, email='ana@other.test', role=UserRole.DENTIST),
            Patient(id=ids.other_patient, tenant_id=ids.other_tenant, first_name='Jon', last_name='Diaz'),
        ])
        db.commit()
    finally:
        db.close()
    return ids


@pytest.fixture
def scheduling_engine(session_factory):
    store = AppointmentStore(session_factory, locks=LockRegistry(timeout_seconds=5), sleep=lambda _delay: None)
    return SchedulingEngine(store, clock=lambda: NOW)

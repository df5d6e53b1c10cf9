"""Tenant-scoped lookups for the people an appointment refers to."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_backend.models.patient import Patient
from clinic_backend.models.user import User, UserRole


def find_dentist(session: Session, tenant_id: str, dentist_id: str, lock: bool = False) -> User | None:
    """
    Return the tenant's dentist with ``dentist_id``, or None.

    With ``lock`` the dentist's row is held ``FOR UPDATE`` until the transaction
    ends, which serialises bookings for that dentist across database clients.
    """
    query = select(User).where(
        User.tenant_id == tenant_id,
        User.id == dentist_id,
        User.role == UserRole.DENTIST,
    )
    if lock:
        query = query.with_for_update()
    return session.scalars(query).first()


def find_patient(session: Session, tenant_id: str, patient_id: str) -> Patient | None:
    query = select(Patient).where(Patient.tenant_id == tenant_id, Patient.id == patient_id)
    return session.scalars(query).first()

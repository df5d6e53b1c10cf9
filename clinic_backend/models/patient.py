"""Patient model definitions."""

import uuid

from sqlalchemy import Column, String
from clinic_backend.database import Base


class Patient(Base):
    """Represents a patient record owned by one tenant."""
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), nullable=False, index=True)
    first_name = Column(String(80), nullable=False)
    last_name = Column(String(80), nullable=False)
    phone = Column(String(30))
    email = Column(String(255))

"""User model definitions."""

import enum
import uuid

from sqlalchemy import Column, Enum, String, UniqueConstraint
from clinic_backend.database import Base


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    DENTIST = "DENTIST"
    ASSISTANT = "ASSISTANT"
    RECEPTIONIST = "RECEPTIONIST"


class User(Base):
    """Represents a clinic staff member belonging to one tenant."""
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    first_name = Column(String(80))
    last_name = Column(String(80))
    role = Column(Enum(UserRole, name="user_role", native_enum=False), nullable=False)

"""Patient model definitions."""

import random
import uuid
from datetime import date, datetime, timezone

from sqlalchemy import Column, Date, DateTime, String

from clinic_backend.database import Base

PATIENT_GENDERS = ('male', 'female', 'other', 'prefer-not-to-say')
ACTIVE_STATUS = 'active'
INACTIVE_STATUS = 'inactive'
PATIENT_STATUSES = (ACTIVE_STATUS, INACTIVE_STATUS)


def generate_mrn(today: date | None = None) -> str:
    """Medical record number in the form ``MRN-YYYYMMDD-XXXX``."""
    today = today or date.today()
    return f"MRN-{today:%Y%m%d}-{random.randint(0, 9999):04d}"


class Patient(Base):
    """Represents a patient under a clinician's care."""
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String, nullable=False, index=True)
    mrn = Column(String, nullable=False, unique=True, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    date_of_birth = Column(Date, nullable=False)
    email = Column(String)
    phone = Column(String)
    gender = Column(String)
    status = Column(String, nullable=False, default=ACTIVE_STATUS)
    # identity subject of the patient's own login, when they have one
    account_id = Column(String, unique=True, index=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

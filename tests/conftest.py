import os
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinic_backend.auth.dependencies import CurrentUser  # noqa: E402
from clinic_backend.database import Base  # noqa: E402
from clinic_backend.models.appointment import Appointment  # noqa: E402
from clinic_backend.models.patient import Patient  # noqa: E402
from clinic_backend.models.time_block import TimeBlock  # noqa: E402

CLINICIAN_ID = 'clinician-1'
OTHER_CLINICIAN_ID = 'clinician-2'
PATIENT_ACCOUNT_ID = 'patient-account-1'


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    for module in ('appointment_routes', 'time_block_routes', 'patient_routes'):
        monkeypatch.setattr(f'clinic_backend.routes.{module}.ensure_database_ready', lambda: None)


@pytest.fixture
def clinician() -> CurrentUser:
    return CurrentUser(user_id=CLINICIAN_ID, user_type='clinician')


@pytest.fixture
def patient_user() -> CurrentUser:
    return CurrentUser(user_id=PATIENT_ACCOUNT_ID, user_type='patient')


@pytest.fixture
def make_patient(db):
    counter = iter(range(1, 1000))

    def _make_patient(owner_id: str = CLINICIAN_ID, account_id: str | None = None, **overrides) -> Patient:
        number = next(counter)
        patient = Patient(
            owner_id=owner_id,
            mrn=f'MRN-20260105-{number:04d}',
            first_name=overrides.pop('first_name', 'Ada'),
            last_name=overrides.pop('last_name', f'Lovelace{number}'),
            date_of_birth=overrides.pop('date_of_birth', date(1990, 1, 1)),
            email=overrides.pop('email', f'patient{number}@example.com'),
            account_id=account_id,
            **overrides,
        )
        db.add(patient)
        db.commit()
        db.refresh(patient)
        return patient

    return _make_patient


@pytest.fixture
def make_appointment(db):
    def _make_appointment(patient: Patient, day: date, time: str, duration_minutes: int = 30, **overrides) -> Appointment:
        appointment = Appointment(
            owner_id=overrides.pop('owner_id', patient.owner_id),
            patient_id=patient.id,
            date=day,
            time=time,
            duration_minutes=duration_minutes,
            type=overrides.pop('type', 'follow-up'),
            status=overrides.pop('status', 'scheduled'),
            **overrides,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make_appointment


@pytest.fixture
def make_time_block(db):
    def _make_time_block(day: date, start_time: str, end_time: str, owner_id: str = CLINICIAN_ID, **overrides) -> TimeBlock:
        time_block = TimeBlock(
            owner_id=owner_id,
            date=day,
            start_time=start_time,
            end_time=end_time,
            reason=overrides.pop('reason', 'Lunch'),
            type=overrides.pop('type', 'break'),
            **overrides,
        )
        db.add(time_block)
        db.commit()
        db.refresh(time_block)
        return time_block

    return _make_time_block

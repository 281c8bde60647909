import logging
import re
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import CurrentUser, require_clinician
from clinic_backend.core import config
from clinic_backend.models.patient import (
    ACTIVE_STATUS,
    INACTIVE_STATUS,
    PATIENT_GENDERS,
    PATIENT_STATUSES,
    Patient,
    generate_mrn,
)
from clinic_backend.routes.common import (
    database_unavailable,
    ensure_database_ready,
    get_db,
    normalize_required_text,
    validation_failed,
)
from clinic_backend.stores import PatientStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=['patients'])

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
MAX_LIST_LIMIT = 500
MRN_ATTEMPTS = 5
FOLLOW_UP_AFTER_MONTHS = 6
REQUIRED_PATIENT_FIELDS = ('first_name', 'last_name', 'date_of_birth', 'status')

OptionalDate = date | None


def _normalize_email(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if not normalized:
        return None
    if not EMAIL_PATTERN.match(normalized):
        raise ValueError('Invalid email format')
    return normalized


def _normalize_gender(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in PATIENT_GENDERS:
        raise ValueError('Invalid gender value')
    return normalized


def _normalize_optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def _validate_patient_status(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in PATIENT_STATUSES:
        raise ValueError('Invalid status. Must be: active or inactive')
    return normalized


class CreatePatientRequest(BaseModel):
    first_name: str
    last_name: str
    date_of_birth: date
    email: str | None = None
    phone: str | None = None
    gender: str | None = None
    account_id: str | None = None

    @field_validator('first_name')
    @classmethod
    def validate_first_name(cls, value: str) -> str:
        return normalize_required_text(value, 'firstName is required')

    @field_validator('last_name')
    @classmethod
    def validate_last_name(cls, value: str) -> str:
        return normalize_required_text(value, 'lastName is required')

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        return _normalize_email(value)

    @field_validator('phone', 'account_id')
    @classmethod
    def validate_optional_text(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value)

    @field_validator('gender')
    @classmethod
    def validate_gender(cls, value: str | None) -> str | None:
        return _normalize_gender(value)

    @model_validator(mode='after')
    def validate_contact(self) -> 'CreatePatientRequest':
        if not self.email and not self.phone:
            raise ValueError('At least one contact method (phone or email) is required')
        return self


class UpdatePatientRequest(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    date_of_birth: OptionalDate = None
    email: str | None = None
    phone: str | None = None
    gender: str | None = None
    account_id: str | None = None
    status: str | None = None

    @field_validator('first_name')
    @classmethod
    def validate_first_name(cls, value: str | None) -> str | None:
        return None if value is None else normalize_required_text(value, 'firstName cannot be blank')

    @field_validator('last_name')
    @classmethod
    def validate_last_name(cls, value: str | None) -> str | None:
        return None if value is None else normalize_required_text(value, 'lastName cannot be blank')

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        return _normalize_email(value)

    @field_validator('phone', 'account_id')
    @classmethod
    def validate_optional_text(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value)

    @field_validator('gender')
    @classmethod
    def validate_gender(cls, value: str | None) -> str | None:
        return _normalize_gender(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        return None if value is None else _validate_patient_status(value)


class PatientResponse(BaseModel):
    id: str
    owner_id: str
    mrn: str
    first_name: str
    last_name: str
    date_of_birth: date
    email: str | None = None
    phone: str | None = None
    gender: str | None = None
    status: str = ACTIVE_STATUS
    account_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class PatientDetailResponse(PatientResponse):
    age: int | None = None
    last_visit_date: OptionalDate = None
    annual_visit_count: int = 0
    needs_follow_up: bool = False


class PatientListResponse(BaseModel):
    patients: list[PatientResponse]
    total: int


class DeletePatientResponse(BaseModel):
    success: bool
    message: str


def calculate_age(date_of_birth: date, today: date) -> int:
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def summarize_visits(visit_dates: list[date], today: date) -> dict:
    """Visit frequency from completed appointment dates.

    A patient needs follow-up once more than six calendar months have passed
    since the most recent completed visit. The annual count covers visits on
    or after the same day one year ago.
    """
    if not visit_dates:
        return {'last_visit_date': None, 'annual_visit_count': 0, 'needs_follow_up': False}

    last_visit = max(visit_dates)
    months_since = (today.year - last_visit.year) * 12 + (today.month - last_visit.month)

    try:
        one_year_ago = today.replace(year=today.year - 1)
    except ValueError:
        # 29 February
        one_year_ago = today.replace(year=today.year - 1, day=28)

    return {
        'last_visit_date': last_visit,
        'annual_visit_count': sum(1 for visit in visit_dates if visit >= one_year_ago),
        'needs_follow_up': months_since > FOLLOW_UP_AFTER_MONTHS,
    }


def build_patient_detail(db: Session, patient: Patient, today: date | None = None) -> PatientDetailResponse:
    today = today or date.today()
    visits = summarize_visits(PatientStore(db).completed_visit_dates(patient.id), today)
    return PatientDetailResponse.model_validate(patient).model_copy(
        update={'age': calculate_age(patient.date_of_birth, today), **visits},
    )


def get_owned_patient(db: Session, owner_id: str, patient_id: str) -> Patient:
    patient = PatientStore(db).get(owner_id, patient_id)
    if patient is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Patient not found',
        )
    return patient


def ensure_account_available(db: Session, account_id: str | None, patient_id: str | None = None) -> None:
    if not account_id:
        return

    linked = PatientStore(db).get_by_account(account_id)
    if linked is not None and linked.id != patient_id:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='This account is already linked to another patient.',
        )


def assign_mrn(db: Session) -> str:
    store = PatientStore(db)
    for _ in range(MRN_ATTEMPTS):
        mrn = generate_mrn()
        if store.get_by_mrn(mrn) is None:
            return mrn
        logger.warning('MRN %s already assigned, generating another', mrn)

    logger.error('Could not find a free MRN after %s attempts', MRN_ATTEMPTS)
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail='Could not assign a medical record number. Try again.',
    )


@router.get('', response_model=PatientListResponse)
def list_patients(
    search: str | None = Query(default=None),
    status_filter: str = Query(default=ACTIVE_STATUS, alias='status'),
    limit: int = Query(default=config.DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    current_user: CurrentUser = Depends(require_clinician),
    db: Session = Depends(get_db),
):
    try:
        patient_status = _validate_patient_status(status_filter)
    except ValueError as exc:
        raise validation_failed(str(exc)) from exc

    ensure_database_ready()

    try:
        patients = PatientStore(db).list(
            current_user.user_id,
            search=search,
            patient_status=patient_status,
            limit=limit,
        )
        results = [PatientResponse.model_validate(patient) for patient in patients]
        return PatientListResponse(patients=results, total=len(results))
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{patient_id}', response_model=PatientDetailResponse)
def get_patient(
    patient_id: str,
    current_user: CurrentUser = Depends(require_clinician),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        patient = get_owned_patient(db, current_user.user_id, patient_id)
        return build_patient_detail(db, patient)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('', response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
def create_patient(
    data: CreatePatientRequest,
    current_user: CurrentUser = Depends(require_clinician),
    db: Session = Depends(get_db),
):
    owner_id = current_user.user_id

    ensure_database_ready()

    try:
        ensure_account_available(db, data.account_id)

        patient = Patient(owner_id=owner_id, mrn=assign_mrn(db), status=ACTIVE_STATUS, **data.model_dump())
        PatientStore(db).add(patient)
        db.commit()
        db.refresh(patient)

        logger.info('Patient %s (%s) created for owner %s', patient.id, patient.mrn, owner_id)
        return PatientResponse.model_validate(patient)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.put('/{patient_id}', response_model=PatientResponse)
def update_patient(
    patient_id: str,
    data: UpdatePatientRequest,
    current_user: CurrentUser = Depends(require_clinician),
    db: Session = Depends(get_db),
):
    owner_id = current_user.user_id

    changes = {
        field_name: value
        for field_name, value in data.model_dump(exclude_unset=True).items()
        if value is not None or field_name not in REQUIRED_PATIENT_FIELDS
    }
    if not changes:
        raise validation_failed('No fields to update')

    ensure_database_ready()

    try:
        patient = get_owned_patient(db, owner_id, patient_id)

        email = changes.get('email', patient.email)
        phone = changes.get('phone', patient.phone)
        if not email and not phone:
            raise validation_failed('At least one contact method (phone or email) is required')

        ensure_account_available(db, changes.get('account_id'), patient.id)

        for field_name, value in changes.items():
            setattr(patient, field_name, value)

        db.commit()
        db.refresh(patient)

        logger.info('Patient %s updated by %s', patient.id, owner_id)
        return PatientResponse.model_validate(patient)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.delete('/{patient_id}', response_model=DeletePatientResponse)
def delete_patient(
    patient_id: str,
    current_user: CurrentUser = Depends(require_clinician),
    db: Session = Depends(get_db),
):
    owner_id = current_user.user_id

    ensure_database_ready()

    try:
        patient = get_owned_patient(db, owner_id, patient_id)
        patient.status = INACTIVE_STATUS
        db.commit()

        logger.info('Patient %s marked inactive by %s', patient.id, owner_id)
        return DeletePatientResponse(success=True, message='Patient marked as inactive')
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

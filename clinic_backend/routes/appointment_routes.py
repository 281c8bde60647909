import logging
from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import CurrentUser, get_current_user, require_clinician
from clinic_backend.core import config
from clinic_backend.models.appointment import (
    APPOINTMENT_STATUSES,
    CANCELLED_STATUS,
    Appointment,
    AppointmentNoteRevision,
    AppointmentStatusChange,
)
from clinic_backend.routes.common import (
    conflict_response,
    database_unavailable,
    ensure_database_ready,
    get_db,
    normalize_hhmm,
    normalize_required_text,
    validation_failed,
)
from clinic_backend.scheduling.conflicts import MINUTES_PER_DAY, Conflict, TimeInterval, find_conflict
from clinic_backend.stores import AppointmentStore, PatientStore, TimeBlockStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=['appointments'])

APPOINTMENT_DURATIONS = {
    'consultation': 60,
    'follow-up': 30,
    'procedure': 90,
    'urgent': 45,
}
DURATION_INCREMENT_MINUTES = 15
MAX_APPOINTMENT_NOTES_LENGTH = 2000
MAX_LIST_LIMIT = 500

OptionalDate = date | None


def _validate_appointment_type(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in APPOINTMENT_DURATIONS:
        raise ValueError('Invalid appointment type. Must be: consultation, follow-up, procedure, or urgent')
    return normalized


def _validate_duration(value: int | None) -> int | None:
    if value is None:
        return None
    if value <= 0:
        raise ValueError('Duration must be a positive number')
    if value % DURATION_INCREMENT_MINUTES != 0:
        raise ValueError('Duration must be in 15-minute increments')
    return value


def _validate_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


def _validate_status(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in APPOINTMENT_STATUSES:
        raise ValueError('Invalid status. Must be: scheduled, confirmed, completed, cancelled, or no-show')
    return normalized


class CreateAppointmentRequest(BaseModel):
    patient_id: str
    date: date
    time: str
    type: str
    duration_minutes: int | None = None
    notes: str | None = None

    @field_validator('patient_id')
    @classmethod
    def validate_patient_id(cls, value: str) -> str:
        return normalize_required_text(value, 'patient_id is required')

    @field_validator('time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        return normalize_hhmm(value)

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        return _validate_appointment_type(value)

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int | None) -> int | None:
        return _validate_duration(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _validate_notes(value)


class UpdateAppointmentRequest(BaseModel):
    date: OptionalDate = None
    time: str | None = None
    duration_minutes: int | None = None
    type: str | None = None
    notes: str | None = None

    @field_validator('time')
    @classmethod
    def validate_time(cls, value: str | None) -> str | None:
        return None if value is None else normalize_hhmm(value)

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str | None) -> str | None:
        return None if value is None else _validate_appointment_type(value)

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int | None) -> int | None:
        return _validate_duration(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _validate_notes(value)


class UpdateAppointmentStatusRequest(BaseModel):
    status: str
    reason: str | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return _validate_status(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class CancelAppointmentRequest(BaseModel):
    reason: str

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        return normalize_required_text(value, 'Cancellation reason is required')


class StatusChangeResponse(BaseModel):
    status: str
    changed_at: datetime | None = None
    changed_by: str | None = None
    reason: str | None = None

    class Config:
        from_attributes = True


class PatientSummaryResponse(BaseModel):
    id: str
    mrn: str
    first_name: str
    last_name: str
    phone: str | None = None
    email: str | None = None

    class Config:
        from_attributes = True


class AppointmentResponse(BaseModel):
    id: str
    owner_id: str
    patient_id: str
    date: date
    time: str
    duration_minutes: int
    type: str
    status: str
    notes: str | None = None
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    status_history: list[StatusChangeResponse] = []
    patient: PatientSummaryResponse | None = None

    class Config:
        from_attributes = True


class AppointmentListResponse(BaseModel):
    appointments: list[AppointmentResponse]
    total: int


class CancelAppointmentResponse(BaseModel):
    success: bool
    message: str


def parse_status_filter(value: str | None) -> list[str] | None:
    if not value:
        return None

    statuses = [item.strip().lower() for item in value.split(',') if item.strip()]
    invalid = [item for item in statuses if item not in APPOINTMENT_STATUSES]
    if invalid:
        raise validation_failed(
            'Invalid status. Must be: scheduled, confirmed, completed, cancelled, or no-show',
        )
    return statuses


def build_candidate_interval(day: date, start: str, duration_minutes: int) -> TimeInterval:
    candidate = TimeInterval.from_start(day, start, duration_minutes)
    if candidate.end_minutes > MINUTES_PER_DAY:
        raise validation_failed('Appointment must end by midnight')
    return candidate


def find_slot_conflict(
    db: Session,
    owner_id: str,
    candidate: TimeInterval,
    exclude_appointment_id: str | None = None,
) -> Conflict | None:
    appointments = AppointmentStore(db).query_by_owner_and_date(owner_id, candidate.date)
    time_blocks = TimeBlockStore(db).query_by_owner_and_date(owner_id, candidate.date)
    return find_conflict(candidate, owner_id, appointments, time_blocks, exclude_appointment_id)


def record_status_change(appointment: Appointment, new_status: str, changed_by: str, reason: str | None = None) -> None:
    appointment.status = new_status
    appointment.status_history.append(
        AppointmentStatusChange(status=new_status, changed_by=changed_by, reason=reason)
    )
    if new_status == CANCELLED_STATUS:
        appointment.cancellation_reason = reason
        appointment.cancelled_at = datetime.now(timezone.utc)
        appointment.cancelled_by = changed_by
    else:
        appointment.cancellation_reason = None
        appointment.cancelled_at = None
        appointment.cancelled_by = None


@router.get('', response_model=AppointmentListResponse)
def list_appointments(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    patient_id: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias='status'),
    limit: int = Query(default=config.DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    statuses = parse_status_filter(status_filter)

    ensure_database_ready()

    try:
        store = AppointmentStore(db)

        if current_user.is_clinician:
            appointments = store.list(
                current_user.user_id,
                patient_id=patient_id,
                start_date=start_date,
                end_date=end_date,
                statuses=statuses,
                limit=limit,
            )
        else:
            patient = PatientStore(db).get_by_account(current_user.user_id)
            if patient is None:
                logger.debug('No patient record linked to account %s', current_user.user_id)
                return AppointmentListResponse(appointments=[], total=0)

            appointments = store.list(
                patient_id=patient.id,
                start_date=start_date,
                end_date=end_date,
                statuses=statuses,
                limit=limit,
            )

        results = [AppointmentResponse.model_validate(appointment) for appointment in appointments]
        return AppointmentListResponse(appointments=results, total=len(results))
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        store = AppointmentStore(db)

        if current_user.is_clinician:
            appointment = store.get(current_user.user_id, appointment_id)
        else:
            patient = PatientStore(db).get_by_account(current_user.user_id)
            if patient is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail='Patient record not found',
                )
            appointment = store.get_for_patient(patient.id, appointment_id)

        if appointment is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Appointment not found',
            )

        return AppointmentResponse.model_validate(appointment)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: CurrentUser = Depends(require_clinician),
    db: Session = Depends(get_db),
):
    owner_id = current_user.user_id

    if data.date < date.today():
        raise validation_failed('Cannot schedule appointments in the past')

    duration_minutes = data.duration_minutes or APPOINTMENT_DURATIONS[data.type]
    candidate = build_candidate_interval(data.date, data.time, duration_minutes)

    ensure_database_ready()

    try:
        if PatientStore(db).get(owner_id, data.patient_id) is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Patient not found',
            )

        conflict = find_slot_conflict(db, owner_id, candidate)
        if conflict:
            logger.info(
                'Rejected appointment for owner %s on %s at %s: overlaps %s %s',
                owner_id, data.date, data.time, conflict.kind, conflict.record_id,
            )
            raise conflict_response(
                'Time slot conflict',
                'This time slot is already booked or blocked',
                conflict,
            )

        appointment = Appointment(
            owner_id=owner_id,
            patient_id=data.patient_id,
            date=data.date,
            time=data.time,
            duration_minutes=duration_minutes,
            type=data.type,
            notes=data.notes or '',
            created_by=owner_id,
            updated_by=owner_id,
        )
        record_status_change(appointment, 'scheduled', owner_id)
        if data.notes:
            appointment.note_revisions.append(AppointmentNoteRevision(notes=data.notes, changed_by=owner_id))

        AppointmentStore(db).add(appointment)
        db.commit()
        db.refresh(appointment)

        logger.info('Appointment %s created for owner %s', appointment.id, owner_id)
        return AppointmentResponse.model_validate(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: str,
    data: UpdateAppointmentRequest,
    current_user: CurrentUser = Depends(require_clinician),
    db: Session = Depends(get_db),
):
    owner_id = current_user.user_id

    ensure_database_ready()

    try:
        appointment = AppointmentStore(db).get(owner_id, appointment_id)
        if appointment is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Appointment not found',
            )

        new_date = data.date or appointment.date
        new_time = data.time or appointment.time
        new_duration = data.duration_minutes or appointment.duration_minutes
        is_rescheduling = (
            new_date != appointment.date
            or new_time != appointment.time
            or new_duration != appointment.duration_minutes
        )

        if is_rescheduling:
            if new_date != appointment.date and new_date < date.today():
                raise validation_failed('Cannot reschedule appointments into the past')

            candidate = build_candidate_interval(new_date, new_time, new_duration)
            conflict = find_slot_conflict(db, owner_id, candidate, exclude_appointment_id=appointment.id)
            if conflict:
                logger.info(
                    'Rejected reschedule of appointment %s to %s %s: overlaps %s %s',
                    appointment.id, new_date, new_time, conflict.kind, conflict.record_id,
                )
                raise conflict_response(
                    'Time slot conflict',
                    'The new time slot is already booked or blocked',
                    conflict,
                )

            appointment.date = new_date
            appointment.time = new_time
            appointment.duration_minutes = new_duration

        if data.type is not None:
            appointment.type = data.type

        if data.notes is not None and data.notes != (appointment.notes or ''):
            appointment.notes = data.notes
            appointment.note_revisions.append(AppointmentNoteRevision(notes=data.notes, changed_by=owner_id))

        appointment.updated_by = owner_id
        db.commit()
        db.refresh(appointment)

        logger.info('Appointment %s updated by %s', appointment.id, owner_id)
        return AppointmentResponse.model_validate(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.post('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: str,
    data: UpdateAppointmentStatusRequest,
    current_user: CurrentUser = Depends(require_clinician),
    db: Session = Depends(get_db),
):
    owner_id = current_user.user_id

    ensure_database_ready()

    try:
        appointment = AppointmentStore(db).get(owner_id, appointment_id)
        if appointment is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Appointment not found',
            )

        # a cancelled slot may have been rebooked since
        if appointment.status == CANCELLED_STATUS and data.status != CANCELLED_STATUS:
            candidate = TimeInterval.from_start(appointment.date, appointment.time, appointment.duration_minutes)
            conflict = find_slot_conflict(db, owner_id, candidate, exclude_appointment_id=appointment.id)
            if conflict:
                raise conflict_response(
                    'Time slot conflict',
                    'This time slot has been booked or blocked since the appointment was cancelled',
                    conflict,
                )

        record_status_change(appointment, data.status, owner_id, data.reason)
        appointment.updated_by = owner_id
        db.commit()
        db.refresh(appointment)

        logger.info('Appointment %s status set to %s by %s', appointment.id, data.status, owner_id)
        return AppointmentResponse.model_validate(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.delete('/{appointment_id}', response_model=CancelAppointmentResponse)
def cancel_appointment(
    appointment_id: str,
    data: CancelAppointmentRequest,
    current_user: CurrentUser = Depends(require_clinician),
    db: Session = Depends(get_db),
):
    owner_id = current_user.user_id

    ensure_database_ready()

    try:
        appointment = AppointmentStore(db).get(owner_id, appointment_id)
        if appointment is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Appointment not found',
            )

        record_status_change(appointment, CANCELLED_STATUS, owner_id, data.reason)
        appointment.updated_by = owner_id
        db.commit()

        logger.info('Appointment %s cancelled by %s', appointment.id, owner_id)
        return CancelAppointmentResponse(success=True, message='Appointment cancelled successfully')
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

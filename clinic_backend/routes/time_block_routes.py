import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import CurrentUser, require_clinician
from clinic_backend.core import config
from clinic_backend.models.time_block import RECURRENCE_TYPES, TIME_BLOCK_TYPES, TimeBlock
from clinic_backend.routes.common import (
    conflict_response,
    database_unavailable,
    ensure_database_ready,
    get_db,
    normalize_hhmm,
    normalize_required_text,
    validation_failed,
)
from clinic_backend.scheduling.conflicts import TimeInterval, find_appointment_overlap, parse_hhmm
from clinic_backend.stores import AppointmentStore, TimeBlockStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=['time-blocks'])

MAX_LIST_LIMIT = 500

OptionalDate = date | None


def _validate_block_type(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in TIME_BLOCK_TYPES:
        raise ValueError('Invalid type. Must be: break, admin, meeting, or other')
    return normalized


class RecurrenceRule(BaseModel):
    type: str
    end_date: OptionalDate = None
    days_of_week: list[int] | None = None

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in RECURRENCE_TYPES:
            raise ValueError('Invalid recurrence type. Must be: daily, weekly, or custom')
        return normalized

    @field_validator('days_of_week')
    @classmethod
    def validate_days_of_week(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        if any(day < 0 or day > 6 for day in value):
            raise ValueError('recurrence.daysOfWeek must contain numbers 0-6 (Sunday-Saturday)')
        return sorted(set(value))


def _dump_recurrence(recurrence: RecurrenceRule | None) -> dict | None:
    return None if recurrence is None else recurrence.model_dump(mode='json')


def _ensure_recurrence_ends_after(recurrence: RecurrenceRule | None, day: date) -> None:
    if recurrence is not None and recurrence.end_date is not None and recurrence.end_date < day:
        raise ValueError('recurrence endDate must not be before date')


class CreateTimeBlockRequest(BaseModel):
    date: date
    start_time: str
    end_time: str
    reason: str
    type: str = 'other'
    recurrence: RecurrenceRule | None = None

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: str) -> str:
        return normalize_hhmm(value, 'startTime')

    @field_validator('end_time')
    @classmethod
    def validate_end_time(cls, value: str) -> str:
        return normalize_hhmm(value, 'endTime')

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        return normalize_required_text(value, 'reason is required')

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        return _validate_block_type(value)

    @model_validator(mode='after')
    def validate_range(self) -> 'CreateTimeBlockRequest':
        if parse_hhmm(self.end_time) <= parse_hhmm(self.start_time):
            raise ValueError('endTime must be after startTime')
        _ensure_recurrence_ends_after(self.recurrence, self.date)
        return self


class UpdateTimeBlockRequest(BaseModel):
    date: OptionalDate = None
    start_time: str | None = None
    end_time: str | None = None
    reason: str | None = None
    type: str | None = None
    recurrence: RecurrenceRule | None = None

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: str | None) -> str | None:
        return None if value is None else normalize_hhmm(value, 'startTime')

    @field_validator('end_time')
    @classmethod
    def validate_end_time(cls, value: str | None) -> str | None:
        return None if value is None else normalize_hhmm(value, 'endTime')

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return None if value is None else normalize_required_text(value, 'reason cannot be blank')

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str | None) -> str | None:
        return None if value is None else _validate_block_type(value)


class TimeBlockResponse(BaseModel):
    id: str
    owner_id: str
    date: date
    start_time: str
    end_time: str
    reason: str
    type: str
    recurrence: RecurrenceRule | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class TimeBlockListResponse(BaseModel):
    time_blocks: list[TimeBlockResponse]
    total: int


class DeleteTimeBlockResponse(BaseModel):
    success: bool
    message: str


def get_owned_time_block(db: Session, owner_id: str, time_block_id: str) -> TimeBlock:
    time_block = TimeBlockStore(db).get(owner_id, time_block_id)
    if time_block is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Time block not found',
        )
    return time_block


def ensure_no_appointment_overlap(db: Session, owner_id: str, block: TimeInterval, message: str) -> None:
    appointments = AppointmentStore(db).query_by_owner_and_date(owner_id, block.date)
    conflict = find_appointment_overlap(block, appointments)
    if conflict:
        logger.info(
            'Rejected time block for owner %s on %s: overlaps appointment %s',
            owner_id, block.date, conflict.record_id,
        )
        raise conflict_response('Time block conflicts with existing appointment', message, conflict)


@router.get('', response_model=TimeBlockListResponse)
def list_time_blocks(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    block_type: str | None = Query(default=None, alias='type'),
    limit: int = Query(default=config.DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    current_user: CurrentUser = Depends(require_clinician),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        time_blocks = TimeBlockStore(db).list(
            current_user.user_id,
            start_date=start_date,
            end_date=end_date,
            block_type=block_type.strip().lower() if block_type else None,
            limit=limit,
        )
        results = [TimeBlockResponse.model_validate(time_block) for time_block in time_blocks]
        return TimeBlockListResponse(time_blocks=results, total=len(results))
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{time_block_id}', response_model=TimeBlockResponse)
def get_time_block(
    time_block_id: str,
    current_user: CurrentUser = Depends(require_clinician),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return TimeBlockResponse.model_validate(get_owned_time_block(db, current_user.user_id, time_block_id))
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('', response_model=TimeBlockResponse, status_code=status.HTTP_201_CREATED)
def create_time_block(
    data: CreateTimeBlockRequest,
    current_user: CurrentUser = Depends(require_clinician),
    db: Session = Depends(get_db),
):
    owner_id = current_user.user_id
    block = TimeInterval.from_range(data.date, data.start_time, data.end_time)

    ensure_database_ready()

    try:
        ensure_no_appointment_overlap(
            db,
            owner_id,
            block,
            'Cannot create time block that overlaps with scheduled appointments',
        )

        time_block = TimeBlock(
            owner_id=owner_id,
            date=data.date,
            start_time=data.start_time,
            end_time=data.end_time,
            reason=data.reason,
            type=data.type,
            recurrence=_dump_recurrence(data.recurrence),
            created_by=owner_id,
        )
        TimeBlockStore(db).add(time_block)
        db.commit()
        db.refresh(time_block)

        logger.info('Time block %s created for owner %s', time_block.id, owner_id)
        return TimeBlockResponse.model_validate(time_block)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.put('/{time_block_id}', response_model=TimeBlockResponse)
def update_time_block(
    time_block_id: str,
    data: UpdateTimeBlockRequest,
    current_user: CurrentUser = Depends(require_clinician),
    db: Session = Depends(get_db),
):
    owner_id = current_user.user_id

    # explicit null only means something for recurrence, where it clears the rule
    changes = {
        field_name
        for field_name in data.model_fields_set
        if getattr(data, field_name) is not None or field_name == 'recurrence'
    }
    if not changes:
        raise validation_failed('No fields to update')

    ensure_database_ready()

    try:
        time_block = get_owned_time_block(db, owner_id, time_block_id)

        new_date = data.date or time_block.date
        new_start = data.start_time or time_block.start_time
        new_end = data.end_time or time_block.end_time

        if 'recurrence' in changes:
            try:
                _ensure_recurrence_ends_after(data.recurrence, new_date)
            except ValueError as exc:
                raise validation_failed(str(exc)) from exc

        if (new_date, new_start, new_end) != (time_block.date, time_block.start_time, time_block.end_time):
            if parse_hhmm(new_end) <= parse_hhmm(new_start):
                raise validation_failed('endTime must be after startTime')

            ensure_no_appointment_overlap(
                db,
                owner_id,
                TimeInterval.from_range(new_date, new_start, new_end),
                'Cannot update time block to overlap with scheduled appointments',
            )
            time_block.date = new_date
            time_block.start_time = new_start
            time_block.end_time = new_end

        if data.reason is not None:
            time_block.reason = data.reason
        if data.type is not None:
            time_block.type = data.type
        if 'recurrence' in changes:
            time_block.recurrence = _dump_recurrence(data.recurrence)

        db.commit()
        db.refresh(time_block)

        logger.info('Time block %s updated by %s', time_block.id, owner_id)
        return TimeBlockResponse.model_validate(time_block)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.delete('/{time_block_id}', response_model=DeleteTimeBlockResponse)
def delete_time_block(
    time_block_id: str,
    current_user: CurrentUser = Depends(require_clinician),
    db: Session = Depends(get_db),
):
    owner_id = current_user.user_id

    ensure_database_ready()

    try:
        time_block = get_owned_time_block(db, owner_id, time_block_id)
        TimeBlockStore(db).delete(time_block)
        db.commit()

        logger.info('Time block %s deleted by %s', time_block_id, owner_id)
        return DeleteTimeBlockResponse(success=True, message='Time block deleted successfully')
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

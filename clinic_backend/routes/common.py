import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from clinic_backend.database import (
    SessionLocal,
    ensure_appointment_schema,
    ensure_patient_schema,
    ensure_time_block_schema,
)
from clinic_backend.scheduling.conflicts import Conflict, format_minutes, parse_hhmm

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
        ensure_time_block_schema()
        ensure_patient_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


def database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    logger.error('Database operation failed: %s', exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def normalize_hhmm(value: str, field_name: str = 'time') -> str:
    """Validate an ``HH:MM`` string and zero-pad it so stored times sort correctly."""
    try:
        return format_minutes(parse_hhmm(value))
    except ValueError as exc:
        raise ValueError(f'Invalid {field_name} format. Use HH:MM') from exc


def normalize_required_text(value: str, message: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(message)
    return normalized


def validation_failed(*errors: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={'error': 'Validation failed', 'errors': list(errors)},
    )


def conflict_response(error: str, message: str, conflict: Conflict) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={'error': error, 'message': message, 'conflict': conflict.as_detail()},
    )

"""Scheduling conflict detection.

Every time range is a half-open ``[start, end)`` span of minute offsets
within one calendar day, so an appointment ending at 10:00 and another
starting at 10:00 do not overlap.

Callers fetch the clinician's appointments and time blocks for the day and
pass them in; nothing here touches the database.
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from clinic_backend.models.appointment import Appointment
    from clinic_backend.models.time_block import TimeBlock

CANCELLED_STATUS = 'cancelled'
MINUTES_PER_DAY = 24 * 60

_HHMM_PATTERN = re.compile(r'^([01]?\d|2[0-3]):([0-5]\d)$')


class InvalidTimeError(ValueError):
    pass


def parse_hhmm(value: str) -> int:
    """Convert ``HH:MM`` (or ``H:MM``) into minutes past midnight."""
    match = _HHMM_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise InvalidTimeError(f'Invalid time {value!r}. Use HH:MM')
    return int(match.group(1)) * 60 + int(match.group(2))


def format_minutes(minutes: int) -> str:
    return f'{minutes // 60:02d}:{minutes % 60:02d}'


@dataclass(frozen=True)
class TimeInterval:
    date: date
    start_minutes: int
    end_minutes: int

    def __post_init__(self) -> None:
        if not 0 <= self.start_minutes < MINUTES_PER_DAY:
            raise ValueError('Start must fall within the day (00:00 to 23:59).')
        if self.end_minutes <= self.start_minutes:
            raise ValueError('Duration must be positive.')

    @classmethod
    def from_start(cls, day: date, start: str, duration_minutes: int) -> 'TimeInterval':
        start_minutes = parse_hhmm(start)
        return cls(day, start_minutes, start_minutes + duration_minutes)

    @classmethod
    def from_range(cls, day: date, start: str, end: str) -> 'TimeInterval':
        return cls(day, parse_hhmm(start), parse_hhmm(end))

    @property
    def duration_minutes(self) -> int:
        return self.end_minutes - self.start_minutes

    def overlaps(self, start_minutes: int, end_minutes: int) -> bool:
        return self.start_minutes < end_minutes and self.end_minutes > start_minutes


@dataclass(frozen=True)
class Conflict:
    """The first existing record found to overlap a candidate interval."""

    kind: str  # 'appointment' or 'time_block'
    record_id: str
    start: str
    end: str
    reason: str | None = None
    patient_id: str | None = None

    def as_detail(self) -> dict:
        detail = {'type': self.kind, 'id': self.record_id, 'start': self.start, 'end': self.end}
        if self.reason is not None:
            detail['reason'] = self.reason
        if self.patient_id is not None:
            detail['patient_id'] = self.patient_id
        return detail


def _appointment_bounds(appointment: 'Appointment') -> tuple[int, int]:
    start = parse_hhmm(appointment.time)
    return start, start + appointment.duration_minutes


def find_appointment_overlap(
    candidate: TimeInterval,
    existing_appointments: Iterable['Appointment'],
    exclude_appointment_id: str | None = None,
) -> Conflict | None:
    for appointment in existing_appointments:
        if exclude_appointment_id is not None and appointment.id == exclude_appointment_id:
            continue
        if appointment.status == CANCELLED_STATUS:
            continue

        start, end = _appointment_bounds(appointment)
        if candidate.overlaps(start, end):
            return Conflict(
                kind='appointment',
                record_id=appointment.id,
                start=format_minutes(start),
                end=format_minutes(end),
                patient_id=appointment.patient_id,
            )

    return None


def find_time_block_overlap(
    candidate: TimeInterval,
    existing_time_blocks: Iterable['TimeBlock'],
) -> Conflict | None:
    for block in existing_time_blocks:
        start, end = parse_hhmm(block.start_time), parse_hhmm(block.end_time)
        if candidate.overlaps(start, end):
            return Conflict(
                kind='time_block',
                record_id=block.id,
                start=format_minutes(start),
                end=format_minutes(end),
                reason=block.reason,
            )

    return None


def find_conflict(
    candidate: TimeInterval,
    owner_id: str,
    existing_appointments: Iterable['Appointment'],
    existing_time_blocks: Iterable['TimeBlock'],
    exclude_appointment_id: str | None = None,
) -> Conflict | None:
    """Return the first appointment or time block that overlaps ``candidate``.

    ``existing_appointments`` and ``existing_time_blocks`` must already be
    limited to ``owner_id`` on ``candidate.date``. Cancelled appointments and
    the appointment named by ``exclude_appointment_id`` are ignored; time
    blocks are always considered.
    """
    return (
        find_appointment_overlap(candidate, existing_appointments, exclude_appointment_id)
        or find_time_block_overlap(candidate, existing_time_blocks)
    )


def has_conflict(
    candidate: TimeInterval,
    owner_id: str,
    existing_appointments: Iterable['Appointment'],
    existing_time_blocks: Iterable['TimeBlock'],
    exclude_appointment_id: str | None = None,
) -> bool:
    return find_conflict(
        candidate,
        owner_id,
        existing_appointments,
        existing_time_blocks,
        exclude_appointment_id,
    ) is not None

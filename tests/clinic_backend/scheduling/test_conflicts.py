from datetime import date
from types import SimpleNamespace

import pytest

from clinic_backend.models.appointment import APPOINTMENT_STATUSES
from clinic_backend.scheduling.conflicts import (
    CANCELLED_STATUS,
    InvalidTimeError,
    TimeInterval,
    find_appointment_overlap,
    find_conflict,
    format_minutes,
    has_conflict,
    parse_hhmm,
)

DAY = date(2026, 3, 2)
OWNER = 'clinician-1'


def appointment(appointment_id: str, time: str, duration_minutes: int, status: str = 'scheduled'):
    return SimpleNamespace(
        id=appointment_id,
        patient_id=f'patient-of-{appointment_id}',
        time=time,
        duration_minutes=duration_minutes,
        status=status,
    )


def time_block(block_id: str, start_time: str, end_time: str, reason: str = 'Lunch'):
    return SimpleNamespace(id=block_id, start_time=start_time, end_time=end_time, reason=reason)


@pytest.mark.parametrize(
    ('value', 'expected'),
    [
        ('00:00', 0),
        ('9:05', 545),
        ('09:05', 545),
        ('23:59', 1439),
        (' 13:30 ', 810),
    ],
)
def test_parse_hhmm_converts_to_minutes(value: str, expected: int) -> None:
    assert parse_hhmm(value) == expected


@pytest.mark.parametrize('value', ['24:00', '12:60', '1230', '12:3', 'noon', '', '-1:00'])
def test_parse_hhmm_rejects_malformed_times(value: str) -> None:
    with pytest.raises(InvalidTimeError):
        parse_hhmm(value)


def test_format_minutes_zero_pads() -> None:
    assert format_minutes(545) == '09:05'


def test_time_interval_from_start_adds_duration() -> None:
    interval = TimeInterval.from_start(DAY, '10:00', 45)

    assert (interval.start_minutes, interval.end_minutes) == (600, 645)
    assert interval.duration_minutes == 45


@pytest.mark.parametrize('duration_minutes', [0, -15])
def test_time_interval_requires_positive_duration(duration_minutes: int) -> None:
    with pytest.raises(ValueError):
        TimeInterval.from_start(DAY, '10:00', duration_minutes)


def test_time_interval_from_range_rejects_inverted_range() -> None:
    with pytest.raises(ValueError):
        TimeInterval.from_range(DAY, '14:00', '13:00')


@pytest.mark.parametrize(
    ('start', 'duration_minutes'),
    [
        ('08:00', 60),  # ends before existing
        ('12:00', 30),  # starts after existing
    ],
)
def test_disjoint_intervals_do_not_conflict(start: str, duration_minutes: int) -> None:
    candidate = TimeInterval.from_start(DAY, start, duration_minutes)

    assert has_conflict(candidate, OWNER, [appointment('a1', '10:00', 60)], []) is False


@pytest.mark.parametrize(
    ('start', 'duration_minutes'),
    [
        ('09:00', 60),  # ends exactly when existing starts
        ('11:00', 30),  # starts exactly when existing ends
    ],
)
def test_touching_intervals_do_not_conflict(start: str, duration_minutes: int) -> None:
    candidate = TimeInterval.from_start(DAY, start, duration_minutes)

    assert has_conflict(candidate, OWNER, [appointment('a1', '10:00', 60)], []) is False
    assert has_conflict(candidate, OWNER, [], [time_block('b1', '10:00', '11:00')]) is False


@pytest.mark.parametrize(
    ('start', 'duration_minutes'),
    [
        ('10:30', 30),  # contained
        ('09:30', 120),  # containing
        ('09:45', 30),  # overlaps the start
        ('10:45', 30),  # overlaps the end
        ('10:00', 60),  # identical
        ('10:59', 15),  # single minute of overlap
    ],
)
def test_any_positive_overlap_conflicts(start: str, duration_minutes: int) -> None:
    candidate = TimeInterval.from_start(DAY, start, duration_minutes)

    assert has_conflict(candidate, OWNER, [appointment('a1', '10:00', 60)], []) is True
    assert has_conflict(candidate, OWNER, [], [time_block('b1', '10:00', '11:00')]) is True


def test_overlapping_appointment_conflicts() -> None:
    candidate = TimeInterval.from_start(DAY, '10:30', 30)

    assert has_conflict(candidate, OWNER, [appointment('a1', '10:00', 60)], []) is True


def test_back_to_back_appointment_is_allowed() -> None:
    candidate = TimeInterval.from_start(DAY, '11:00', 30)

    assert has_conflict(candidate, OWNER, [appointment('a1', '10:00', 60)], []) is False


def test_cancelled_appointment_never_conflicts() -> None:
    candidate = TimeInterval.from_start(DAY, '10:00', 60)

    assert CANCELLED_STATUS in APPOINTMENT_STATUSES
    assert has_conflict(candidate, OWNER, [appointment('a1', '10:00', 60, status=CANCELLED_STATUS)], []) is False


@pytest.mark.parametrize('status', [status for status in APPOINTMENT_STATUSES if status != CANCELLED_STATUS])
def test_non_cancelled_statuses_still_conflict(status: str) -> None:
    candidate = TimeInterval.from_start(DAY, '10:00', 60)

    assert has_conflict(candidate, OWNER, [appointment('a1', '10:00', 60, status=status)], []) is True


def test_time_block_overlap_conflicts() -> None:
    candidate = TimeInterval.from_start(DAY, '13:30', 30)

    assert has_conflict(candidate, OWNER, [], [time_block('lunch', '13:00', '14:00')]) is True


def test_rescheduling_in_place_does_not_conflict_with_itself() -> None:
    existing = [appointment('A1', '09:00', 30)]
    candidate = TimeInterval.from_start(DAY, '09:00', 30)

    assert has_conflict(candidate, OWNER, existing, [], exclude_appointment_id='A1') is False
    assert has_conflict(candidate, OWNER, existing, []) is True


def test_rescheduling_shifted_slot_excludes_previous_record() -> None:
    existing = [appointment('X', '09:00', 30)]
    candidate = TimeInterval.from_start(DAY, '09:30', 30)

    assert has_conflict(candidate, OWNER, existing, [], exclude_appointment_id='X') is False


def test_exclude_id_does_not_hide_other_appointments() -> None:
    existing = [appointment('A1', '09:00', 30), appointment('A2', '09:15', 30)]
    candidate = TimeInterval.from_start(DAY, '09:00', 30)

    assert has_conflict(candidate, OWNER, existing, [], exclude_appointment_id='A1') is True


def test_unknown_exclude_id_is_ignored() -> None:
    candidate = TimeInterval.from_start(DAY, '09:00', 30)

    assert has_conflict(candidate, OWNER, [appointment('A1', '09:00', 30)], [], exclude_appointment_id='missing') is True


def test_time_blocks_ignore_exclude_id() -> None:
    candidate = TimeInterval.from_start(DAY, '13:00', 30)

    assert has_conflict(candidate, OWNER, [], [time_block('B1', '13:00', '14:00')], exclude_appointment_id='B1') is True


def test_empty_schedule_never_conflicts() -> None:
    candidate = TimeInterval.from_start(DAY, '00:00', 24 * 60)

    assert has_conflict(candidate, OWNER, [], []) is False
    assert find_conflict(candidate, OWNER, [], []) is None


def test_find_conflict_describes_appointment() -> None:
    candidate = TimeInterval.from_start(DAY, '10:30', 30)

    conflict = find_conflict(candidate, OWNER, [appointment('a1', '10:00', 60)], [])

    assert conflict.as_detail() == {
        'type': 'appointment',
        'id': 'a1',
        'start': '10:00',
        'end': '11:00',
        'patient_id': 'patient-of-a1',
    }


def test_find_conflict_describes_time_block() -> None:
    candidate = TimeInterval.from_start(DAY, '13:30', 30)

    conflict = find_conflict(candidate, OWNER, [], [time_block('lunch', '13:00', '14:00', reason='Staff lunch')])

    assert conflict.kind == 'time_block'
    assert conflict.reason == 'Staff lunch'
    assert conflict.as_detail()['reason'] == 'Staff lunch'


def test_find_conflict_reports_appointments_before_time_blocks() -> None:
    candidate = TimeInterval.from_start(DAY, '10:00', 60)

    conflict = find_conflict(
        candidate,
        OWNER,
        [appointment('a1', '10:30', 30)],
        [time_block('b1', '10:00', '10:15')],
    )

    assert conflict.record_id == 'a1'


def test_find_conflict_short_circuits_on_first_overlap() -> None:
    consumed = []

    def appointments():
        for record in (appointment('a1', '10:00', 30), appointment('a2', '10:15', 30)):
            consumed.append(record.id)
            yield record

    candidate = TimeInterval.from_start(DAY, '10:00', 60)

    assert find_conflict(candidate, OWNER, appointments(), []).record_id == 'a1'
    assert consumed == ['a1']


def test_find_appointment_overlap_skips_cancelled_appointments() -> None:
    block = TimeInterval.from_range(DAY, '09:00', '12:00')

    assert find_appointment_overlap(block, [appointment('a1', '10:00', 30, status='cancelled')]) is None
    assert find_appointment_overlap(block, [appointment('a2', '11:45', 30)]).record_id == 'a2'

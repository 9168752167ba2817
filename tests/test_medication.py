from datetime import date, datetime

import pytest

import medication
from errors import InvalidTransition, NotFoundError, ValidationError
from models import MedicationStatus
from timeslots import DoseTimes

TWICE_DAILY = DoseTimes(['08:00', '20:00'])


def test_initial_dose_is_next_listed_time():
    now = datetime(2024, 6, 3, 7, 0)
    assert medication.initial_dose_time(TWICE_DAILY, date(2024, 6, 3), None, now) == datetime(2024, 6, 3, 8, 0)
    now = datetime(2024, 6, 3, 8, 0)
    assert medication.initial_dose_time(TWICE_DAILY, date(2024, 6, 3), None, now) == datetime(2024, 6, 3, 8, 0)


def test_initial_dose_rolls_over_and_respects_window():
    late = datetime(2024, 6, 3, 21, 0)
    assert medication.initial_dose_time(TWICE_DAILY, date(2024, 6, 3), None, late) == datetime(2024, 6, 4, 8, 0)
    assert medication.initial_dose_time(TWICE_DAILY, date(2024, 6, 3), date(2024, 6, 3), late) is None
    future_start = medication.initial_dose_time(TWICE_DAILY, date(2024, 6, 10), None, late)
    assert future_start == datetime(2024, 6, 10, 8, 0)
    assert medication.initial_dose_time(DoseTimes(), date(2024, 6, 3), None, late) is None


def test_next_dose_after_scenario():
    first = datetime(2024, 6, 3, 8, 5)
    assert medication.next_dose_after(TWICE_DAILY, first) == datetime(2024, 6, 3, 20, 0)
    second = datetime(2024, 6, 3, 20, 10)
    assert medication.next_dose_after(TWICE_DAILY, second) == datetime(2024, 6, 4, 8, 0)
    # exactly on a listed time moves to the following one
    assert medication.next_dose_after(TWICE_DAILY, datetime(2024, 6, 3, 20, 0)) == datetime(2024, 6, 4, 8, 0)


def create(session, now, **kwargs):
    kwargs.setdefault('start_date', '2024-06-03')
    return medication.create_schedule(session, 'p-1', 'Amoxicillin', '500mg', ['20:00', '08:00'], now=now, **kwargs)


def test_mark_administered_advances(session):
    schedule = create(session, datetime(2024, 6, 3, 7, 0))
    assert schedule.next_dose_time == datetime(2024, 6, 3, 8, 0)

    at = datetime(2024, 6, 3, 8, 5)
    medication.mark_administered(session, schedule.id, 'nurse-1', at, notes='with food')
    assert schedule.last_administered == at
    assert schedule.administered_by == 'nurse-1'
    assert schedule.next_dose_time == datetime(2024, 6, 3, 20, 0)
    assert schedule.notes == 'with food'

    at = datetime(2024, 6, 3, 20, 10)
    medication.mark_administered(session, schedule.id, 'nurse-2', at)
    assert schedule.next_dose_time == datetime(2024, 6, 4, 8, 0)
    assert schedule.next_dose_time > schedule.last_administered


def test_last_dose_completes_schedule(session):
    schedule = create(session, datetime(2024, 6, 3, 7, 0), end_date='2024-06-03')
    medication.mark_administered(session, schedule.id, 'nurse-1', datetime(2024, 6, 3, 20, 5))
    assert schedule.next_dose_time is None
    assert schedule.status == MedicationStatus.COMPLETED
    with pytest.raises(InvalidTransition):
        medication.mark_administered(session, schedule.id, 'nurse-1', datetime(2024, 6, 3, 20, 30))


def test_create_validation(session):
    now = datetime(2024, 6, 3, 7, 0)
    with pytest.raises(ValidationError) as exc:
        medication.create_schedule(session, 'p-1', 'Amoxicillin', '500mg', [], '2024-06-03', now)
    assert exc.value.field == 'specificTimes'
    with pytest.raises(ValidationError) as exc:
        create(session, now, end_date='2024-06-01')
    assert exc.value.field == 'endDate'
    with pytest.raises(ValidationError):
        medication.create_schedule(session, 'p-1', 'Amoxicillin', '500mg', ['25:00'], '2024-06-03', now)


def test_specific_times_round_trip_storage(session):
    schedule = create(session, datetime(2024, 6, 3, 7, 0))
    session.expire(schedule)
    assert schedule.specific_times.labels() == ['08:00', '20:00']
    assert schedule.to_dict()['timesPerDay'] == 2


def test_status_changes(session):
    now = datetime(2024, 6, 3, 7, 0)
    schedule = create(session, now)
    medication.set_status(session, schedule.id, 'missed', now)
    with pytest.raises(InvalidTransition):
        medication.mark_administered(session, schedule.id, 'nurse-1', now)
    medication.set_status(session, schedule.id, 'active', datetime(2024, 6, 3, 9, 0))
    assert schedule.next_dose_time == datetime(2024, 6, 3, 20, 0)
    medication.set_status(session, schedule.id, 'stopped', now)
    assert schedule.next_dose_time is None
    with pytest.raises(InvalidTransition):
        medication.set_status(session, schedule.id, 'active', now)


def test_missing_schedule(session):
    with pytest.raises(NotFoundError):
        medication.mark_administered(session, 1, 'nurse-1', datetime(2024, 6, 3, 7, 0))


def test_list_schedules(session):
    now = datetime(2024, 6, 3, 7, 0)
    create(session, now)
    stopped = create(session, now)
    medication.set_status(session, stopped.id, 'stopped', now)
    assert len(medication.list_schedules(session, patient_id='p-1')) == 2
    assert [s.id for s in medication.list_schedules(session, status='stopped')] == [stopped.id]


def test_next_dose_never_precedes_start_date():
    early = datetime(2024, 6, 3, 9, 0)
    assert medication.next_dose_after(TWICE_DAILY, early, start_date=date(2024, 6, 10)) == datetime(2024, 6, 10, 8, 0)
    assert medication.next_dose_after(TWICE_DAILY, early, end_date=date(2024, 6, 8),
                                      start_date=date(2024, 6, 10)) is None
    # once the course has started the start date no longer matters
    assert medication.next_dose_after(TWICE_DAILY, early, start_date=date(2024, 6, 3)) == datetime(2024, 6, 3, 20, 0)


def test_dose_given_before_course_starts(session):
    schedule = create(session, datetime(2024, 6, 3, 7, 0), start_date='2024-06-10')
    assert schedule.next_dose_time == datetime(2024, 6, 10, 8, 0)
    medication.mark_administered(session, schedule.id, 'nurse-1', datetime(2024, 6, 3, 9, 0))
    assert schedule.next_dose_time == datetime(2024, 6, 10, 8, 0)
    assert schedule.status == MedicationStatus.ACTIVE


def test_created_at_uses_given_clock(session):
    now = datetime(2024, 6, 3, 7, 0)
    schedule = create(session, now)
    assert schedule.created_at == now
    assert schedule.to_dict()['createdAt'] == '2024-06-03T07:00:00'


def test_specific_times_must_be_a_list(session):
    with pytest.raises(ValidationError) as exc:
        medication.create_schedule(session, 'p-1', 'Amoxicillin', '500mg', 8, '2024-06-03',
                                   now=datetime(2024, 6, 3, 7, 0))
    assert exc.value.field == 'specificTimes'

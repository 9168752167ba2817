# medication.py
"""Recurring dose times for medication schedules.

Nothing runs in the background: next_dose_time is worked out when a schedule
is created and again each time a dose is recorded.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import select

from appointments import append_note
from errors import InvalidTransition, NotFoundError, ValidationError
from models import MedicationSchedule, MedicationStatus
from timeslots import DoseTimes, parse_date

logger = logging.getLogger(__name__)

M = MedicationStatus

TRANSITIONS = {
    M.ACTIVE: frozenset({M.COMPLETED, M.STOPPED, M.MISSED}),
    M.MISSED: frozenset({M.ACTIVE, M.COMPLETED, M.STOPPED}),
    M.COMPLETED: frozenset(),
    M.STOPPED: frozenset(),
}


def initial_dose_time(times, start_date, end_date, now):
    """First listed time on or after `now` inside [start_date, end_date]."""
    if not times:
        return None
    first_day = max(start_date, now.date())
    # times repeat daily, so the answer is on first_day or the day after
    for day in (first_day, first_day + timedelta(days=1)):
        if end_date is not None and day > end_date:
            return None
        for t in times:
            candidate = datetime.combine(day, t)
            if candidate >= now:
                return candidate
    return None


def next_dose_after(times, now, end_date=None, start_date=None):
    """Earliest listed time strictly after `now`, rolling to tomorrow's first.

    Never earlier than the first dose on `start_date`.
    """
    if not times:
        return None
    later_today = [t for t in times if datetime.combine(now.date(), t) > now]
    if start_date is not None and now.date() < start_date:
        candidate = datetime.combine(start_date, times[0])
    elif later_today:
        candidate = datetime.combine(now.date(), later_today[0])
    else:
        candidate = datetime.combine(now.date() + timedelta(days=1), times[0])
    if end_date is not None and candidate.date() > end_date:
        return None
    return candidate


def _dose_times(value):
    if value is None or value == '' or value == []:
        raise ValidationError('specificTimes must list at least one HH:MM time', field='specificTimes')
    times = DoseTimes(value)
    if not times:
        raise ValidationError('specificTimes must list at least one HH:MM time', field='specificTimes')
    return times


def get_schedule(session, schedule_id):
    schedule = session.get(MedicationSchedule, schedule_id)
    if schedule is None:
        raise NotFoundError(f'medication schedule {schedule_id} not found')
    return schedule


def create_schedule(session, patient_id, medication_name, dosage, specific_times, start_date, now,
                    end_date=None, frequency=None, route=None, prescription_id=None, notes=None):
    for field, value in (('patientId', patient_id), ('medicationName', medication_name), ('dosage', dosage)):
        if not value:
            raise ValidationError(f'{field} is required', field=field)
    times = _dose_times(specific_times)
    start = parse_date(start_date, field='startDate')
    end = parse_date(end_date, field='endDate') if end_date else None
    if end is not None and end < start:
        raise ValidationError('endDate cannot be before startDate', field='endDate')

    schedule = MedicationSchedule(
        patient_id=str(patient_id),
        prescription_id=str(prescription_id) if prescription_id else None,
        medication_name=medication_name,
        dosage=dosage,
        frequency=frequency,
        route=route,
        specific_times=times,
        start_date=start,
        end_date=end,
        next_dose_time=initial_dose_time(times, start, end, now),
        status=M.ACTIVE,
        notes=notes,
        created_at=now,
    )
    session.add(schedule)
    session.flush()
    logger.info('medication schedule %s for patient %s, next dose %s',
                schedule.id, schedule.patient_id, schedule.next_dose_time)
    return schedule


def mark_administered(session, schedule_id, actor_id, now, notes=None):
    schedule = get_schedule(session, schedule_id)
    if schedule.status != M.ACTIVE:
        raise InvalidTransition('medication schedule', schedule.status.value, 'administered')
    schedule.last_administered = now
    schedule.administered_by = actor_id
    schedule.notes = append_note(schedule.notes, None, notes)
    schedule.next_dose_time = next_dose_after(schedule.specific_times, now, schedule.end_date,
                                              start_date=schedule.start_date)
    if schedule.next_dose_time is None:
        schedule.status = M.COMPLETED
        logger.info('medication schedule %s completed', schedule.id)
    session.flush()
    return schedule


def set_status(session, schedule_id, status, now):
    schedule = get_schedule(session, schedule_id)
    try:
        target = M(status)
    except ValueError:
        raise ValidationError(f'unknown medication status {status!r}', field='status')
    if target == schedule.status:
        return schedule
    if target not in TRANSITIONS[schedule.status]:
        raise InvalidTransition('medication schedule', schedule.status.value, target.value)
    schedule.status = target
    if target == M.ACTIVE:
        schedule.next_dose_time = initial_dose_time(schedule.specific_times, schedule.start_date,
                                                    schedule.end_date, now)
    elif target in (M.COMPLETED, M.STOPPED):
        schedule.next_dose_time = None
    session.flush()
    return schedule


def list_schedules(session, patient_id=None, status=None):
    stmt = select(MedicationSchedule)
    if patient_id:
        stmt = stmt.where(MedicationSchedule.patient_id == str(patient_id))
    if status:
        try:
            stmt = stmt.where(MedicationSchedule.status == M(status))
        except ValueError:
            raise ValidationError(f'unknown medication status {status!r}', field='status')
    return list(session.scalars(stmt.order_by(MedicationSchedule.start_date.desc(), MedicationSchedule.id)))

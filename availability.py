# availability.py
"""Open-slot resolution for a doctor on a given date.

The two pure functions work on plain snapshots (template rows and booked
time strings) so they can be exercised without a database;
resolve_availability() does the reads and hands them the snapshots.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import select

from errors import NotFoundError, ValidationError
from models import OCCUPYING_STATUSES, Appointment, AvailabilityTemplate, Doctor
from timeslots import format_12h, normalize_time, parse_date, parse_time

logger = logging.getLogger(__name__)

DEFAULT_SLOT_MINUTES = 30


def template_covers(template, on_date):
    if not template.is_available:
        return False
    if template.day_of_week != on_date.weekday():
        return False
    if template.valid_from is not None and template.valid_from > on_date:
        return False
    if template.valid_until is not None and template.valid_until < on_date:
        return False
    return True


def candidate_slots(templates, on_date, slot_minutes=DEFAULT_SLOT_MINUTES):
    """Enumerate "HH:MM" slot starts in [start, end) of each matching template.

    Overlapping templates produce the same slot more than once.
    """
    slots = []
    step = timedelta(minutes=slot_minutes)
    for template in templates:
        if not template_covers(template, on_date):
            continue
        current = datetime.combine(on_date, parse_time(template.start_time))
        end = datetime.combine(on_date, parse_time(template.end_time))
        while current < end:
            slots.append(current.strftime('%H:%M'))
            current += step
    return slots


def open_slots(templates, booked_times, on_date, slot_minutes=DEFAULT_SLOT_MINUTES):
    """Display labels of candidate slots not taken by a booked time."""
    booked = {format_12h(t) for t in booked_times}
    labels = []
    for slot in candidate_slots(templates, on_date, slot_minutes):
        label = format_12h(slot)
        if label not in booked:
            labels.append(label)
    return labels


def get_doctor(session, doctor_id):
    try:
        doctor_id = int(doctor_id)
    except (TypeError, ValueError):
        raise ValidationError(f'invalid doctorId {doctor_id!r}', field='doctorId')
    doctor = session.get(Doctor, doctor_id)
    if doctor is None:
        raise NotFoundError(f'doctor {doctor_id} not found')
    return doctor


def booked_times(session, doctor_id, on_date):
    stmt = select(Appointment.time).where(
        Appointment.doctor_id == doctor_id,
        Appointment.date == on_date,
        Appointment.status.in_(OCCUPYING_STATUSES),
    )
    return list(session.scalars(stmt))


def resolve_availability(session, doctor_id, on_date, slot_minutes=DEFAULT_SLOT_MINUTES):
    """Ordered, de-duplicated free slot labels for the doctor on `on_date`."""
    on_date = parse_date(on_date)
    doctor = get_doctor(session, doctor_id)
    templates = list(session.scalars(
        select(AvailabilityTemplate).where(AvailabilityTemplate.doctor_id == doctor.id)
    ))
    labels = open_slots(templates, booked_times(session, doctor.id, on_date), on_date, slot_minutes)
    unique = sorted(set(labels), key=lambda label: parse_time(label))
    logger.debug('doctor %s has %d open slots on %s', doctor.id, len(unique), on_date)
    return unique


def add_template(session, doctor_id, day_of_week, start_time, end_time,
                 valid_from=None, valid_until=None, is_available=True):
    doctor = get_doctor(session, doctor_id)
    try:
        day = int(day_of_week)
    except (TypeError, ValueError):
        raise ValidationError('dayOfWeek must be 0 (Monday) to 6 (Sunday)', field='dayOfWeek')
    if not 0 <= day <= 6:
        raise ValidationError('dayOfWeek must be 0 (Monday) to 6 (Sunday)', field='dayOfWeek')
    start = normalize_time(start_time, field='startTime')
    end = normalize_time(end_time, field='endTime')
    if start >= end:
        raise ValidationError('startTime must be before endTime', field='endTime')
    valid_from = parse_date(valid_from, field='validFrom') if valid_from else None
    valid_until = parse_date(valid_until, field='validUntil') if valid_until else None
    if valid_from and valid_until and valid_from > valid_until:
        raise ValidationError('validFrom must not be after validUntil', field='validUntil')
    template = AvailabilityTemplate(
        doctor_id=doctor.id,
        day_of_week=day,
        start_time=start,
        end_time=end,
        valid_from=valid_from,
        valid_until=valid_until,
        is_available=bool(is_available),
    )
    session.add(template)
    session.flush()
    return template


def list_templates(session, doctor_id):
    doctor = get_doctor(session, doctor_id)
    return list(session.scalars(
        select(AvailabilityTemplate)
        .where(AvailabilityTemplate.doctor_id == doctor.id)
        .order_by(AvailabilityTemplate.day_of_week, AvailabilityTemplate.start_time)
    ))

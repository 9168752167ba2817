# appointments.py
"""Appointment booking, cancellation, rescheduling and status changes.

Slot exclusivity is checked up front for a readable error and enforced again
by the partial unique index on appointments (doctor_id, date, time) when the
row is flushed, so two racing bookings cannot both commit.
"""
import logging

from sqlalchemy import select

from auth import is_staff
from availability import get_doctor
from db import flush_or_raise
from errors import (AlreadyCancelled, DoctorUnavailable, InvalidTransition, NotFoundError, SlotConflict,
                    Unauthorized, ValidationError)
from models import OCCUPYING_STATUSES, Appointment, AppointmentStatus
from timeslots import normalize_time, parse_date

logger = logging.getLogger(__name__)

S = AppointmentStatus

_FROM_SCHEDULED = frozenset({S.CONFIRMED, S.IN_PROGRESS, S.COMPLETED, S.CANCELLED, S.RESCHEDULED})

TRANSITIONS = {
    S.SCHEDULED: _FROM_SCHEDULED,
    # a rescheduled appointment behaves as scheduled at its new slot
    S.RESCHEDULED: _FROM_SCHEDULED,
    S.CONFIRMED: frozenset({S.IN_PROGRESS, S.COMPLETED, S.CANCELLED}),
    S.IN_PROGRESS: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


def coerce_status(value, field='status'):
    try:
        return S(value)
    except ValueError:
        allowed = ', '.join(s.value for s in S)
        raise ValidationError(f'unknown appointment status {value!r} (expected one of {allowed})', field=field)


def can_transition(current, target):
    return target in TRANSITIONS[current]


def transition(appointment, target):
    """Move `appointment` to `target`, enforcing the transition table.

    Setting the status it already has is a no-op.
    """
    current = appointment.status
    if current == target:
        return appointment
    if not can_transition(current, target):
        raise InvalidTransition('appointment', current.value, target.value)
    appointment.status = target
    logger.info('appointment %s: %s -> %s', appointment.id, current.value, target.value)
    return appointment


def append_note(existing, label, text):
    if not text:
        return existing
    line = f'{label}: {text}' if label else text
    return f'{existing}\n{line}' if existing else line


def _touch(appointment, now):
    if now is not None:
        appointment.updated_at = now


def get_appointment(session, appointment_id):
    appointment = session.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError(f'appointment {appointment_id} not found')
    return appointment


def find_conflict(session, doctor_id, on_date, time, exclude_id=None):
    stmt = select(Appointment).where(
        Appointment.doctor_id == doctor_id,
        Appointment.date == on_date,
        Appointment.time == time,
        Appointment.status.in_(OCCUPYING_STATUSES),
    )
    if exclude_id is not None:
        stmt = stmt.where(Appointment.id != exclude_id)
    return session.scalars(stmt.limit(1)).first()


def check_owner_or_staff(appointment, actor, action):
    if actor is None or actor.id is None:
        raise Unauthorized(f'authentication required to {action} an appointment')
    if actor.role == 'patient':
        if str(actor.id) != str(appointment.patient_id):
            raise Unauthorized(f'not authorized to {action} this appointment')
    elif not is_staff(actor):
        raise Unauthorized(f'role {actor.role} may not {action} appointments')


def book(session, doctor_id, patient_id, date, time, type=None, notes=None, department=None, now=None):
    if not patient_id:
        raise ValidationError('patientId is required', field='patientId')
    on_date = parse_date(date)
    slot = normalize_time(time)
    doctor = get_doctor(session, doctor_id)
    if not doctor.is_available:
        raise DoctorUnavailable(f'doctor {doctor.id} is not available')
    if find_conflict(session, doctor.id, on_date, slot) is not None:
        raise SlotConflict(f'doctor {doctor.id} already has an appointment on {on_date} at {slot}')

    appointment = Appointment(
        doctor_id=doctor.id,
        patient_id=str(patient_id),
        date=on_date,
        time=slot,
        type=type,
        department=department,
        notes=notes,
        status=S.SCHEDULED,
        created_at=now,
        updated_at=now,
    )
    session.add(appointment)
    flush_or_raise(session, SlotConflict(f'doctor {doctor.id} already has an appointment on {on_date} at {slot}'))
    logger.info('booked appointment %s for patient %s with doctor %s on %s %s',
                appointment.id, appointment.patient_id, doctor.id, on_date, slot)
    return appointment


def cancel(session, appointment_id, actor, reason=None, now=None):
    appointment = get_appointment(session, appointment_id)
    check_owner_or_staff(appointment, actor, 'cancel')
    if appointment.status == S.CANCELLED:
        raise AlreadyCancelled(f'appointment {appointment.id} is already cancelled')
    transition(appointment, S.CANCELLED)
    appointment.notes = append_note(appointment.notes, 'Cancelled', reason)
    _touch(appointment, now)
    session.flush()
    return appointment


def reschedule(session, appointment_id, actor, date, time, reason=None, now=None):
    appointment = get_appointment(session, appointment_id)
    check_owner_or_staff(appointment, actor, 'reschedule')
    on_date = parse_date(date)
    slot = normalize_time(time)
    if not can_transition(appointment.status, S.RESCHEDULED):
        raise InvalidTransition('appointment', appointment.status.value, S.RESCHEDULED.value)
    conflict_message = f'doctor {appointment.doctor_id} already has an appointment on {on_date} at {slot}'
    if find_conflict(session, appointment.doctor_id, on_date, slot, exclude_id=appointment.id) is not None:
        raise SlotConflict(conflict_message)

    previous = (appointment.date, appointment.time)
    appointment.date = on_date
    appointment.time = slot
    appointment.status = S.RESCHEDULED
    appointment.notes = append_note(appointment.notes, 'Rescheduled', reason)
    _touch(appointment, now)
    flush_or_raise(session, SlotConflict(conflict_message))
    logger.info('appointment %s moved from %s %s to %s %s', appointment.id, previous[0], previous[1], on_date, slot)
    return appointment


def update_status(session, appointment_id, status, now=None):
    appointment = get_appointment(session, appointment_id)
    target = coerce_status(status)
    if target == S.RESCHEDULED:
        raise ValidationError('use the reschedule operation to move an appointment', field='status')
    if target == S.CANCELLED:
        raise ValidationError('use the cancel operation to cancel an appointment', field='status')
    transition(appointment, target)
    _touch(appointment, now)
    session.flush()
    return appointment


def list_appointments(session, doctor_id=None, patient_id=None, date=None, status=None, limit=100, offset=0):
    stmt = select(Appointment)
    if doctor_id is not None:
        stmt = stmt.where(Appointment.doctor_id == doctor_id)
    if patient_id is not None:
        stmt = stmt.where(Appointment.patient_id == str(patient_id))
    if date:
        stmt = stmt.where(Appointment.date == parse_date(date))
    if status:
        stmt = stmt.where(Appointment.status == coerce_status(status))
    stmt = stmt.order_by(Appointment.date.desc(), Appointment.time).limit(limit).offset(offset)
    return list(session.scalars(stmt))

# patient_queue.py
"""Same-day waiting room queue per doctor."""
import logging

from sqlalchemy import func, select

from appointments import can_transition, get_appointment, transition
from availability import get_doctor
from db import flush_or_raise
from errors import InvalidTransition, QueueNumberTaken, ValidationError
from models import OCCUPYING_STATUSES, Appointment, AppointmentStatus, QueueEntry, QueueStatus

logger = logging.getLogger(__name__)

# queue status -> appointment status kept in step with it
APPOINTMENT_STATUS_FOR = {
    QueueStatus.WAITING: AppointmentStatus.CONFIRMED,
    QueueStatus.IN_PROGRESS: AppointmentStatus.IN_PROGRESS,
    QueueStatus.COMPLETED: AppointmentStatus.COMPLETED,
}


def coerce_queue_status(value):
    try:
        return QueueStatus(value)
    except ValueError:
        allowed = ', '.join(s.value for s in QueueStatus)
        raise ValidationError(f'unknown queue status {value!r} (expected one of {allowed})', field='status')


def _positive_int(value, field):
    if value is None or value == '':
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer', field=field)
    if number < 0 or (field == 'queueNumber' and number == 0):
        raise ValidationError(f'{field} must be positive', field=field)
    return number


def build_queue(appointments, entries, average_consult_minutes):
    """Order today's appointments into queue rows.

    `appointments` must already be sorted by (date, time); `entries` maps
    appointment id to its QueueEntry where one exists.
    """
    rows = []
    for index, apt in enumerate(appointments):
        entry = entries.get(apt.id)
        position = entry.current_position if entry else index + 1
        wait = entry.estimated_wait_time if entry and entry.estimated_wait_time is not None else None
        if wait is None:
            wait = max(position - 1, 0) * average_consult_minutes
        checked_in = entry.checked_in_at if entry and entry.checked_in_at else apt.created_at
        rows.append({
            'appointmentId': apt.id,
            'patientId': apt.patient_id,
            'time': apt.time,
            'status': apt.status.value,
            'queueStatus': entry.status.value if entry else None,
            'queueNumber': entry.queue_number if entry else index + 1,
            'currentPosition': position,
            'estimatedWaitTime': wait,
            'checkedInAt': checked_in.isoformat() if checked_in else None,
        })
    return rows


def get_queue(session, doctor_id, today, average_consult_minutes=15):
    doctor = get_doctor(session, doctor_id)
    appointments = list(session.scalars(
        select(Appointment)
        .where(
            Appointment.doctor_id == doctor.id,
            Appointment.date == today,
            Appointment.status.in_(OCCUPYING_STATUSES),
        )
        .order_by(Appointment.date, Appointment.time)
    ))
    ids = [a.id for a in appointments]
    entries = {}
    if ids:
        entries = {e.appointment_id: e for e in session.scalars(
            select(QueueEntry).where(QueueEntry.appointment_id.in_(ids))
        )}
    return build_queue(appointments, entries, average_consult_minutes)


def next_queue_number(session, doctor_id, queue_date):
    count, highest = session.execute(
        select(func.count(QueueEntry.id), func.max(QueueEntry.queue_number))
        .where(QueueEntry.doctor_id == doctor_id, QueueEntry.queue_date == queue_date)
    ).one()
    return max(count or 0, highest or 0) + 1


def _stamp(entry, status, now):
    if status == QueueStatus.IN_PROGRESS:
        entry.called_at = now
    elif status == QueueStatus.COMPLETED:
        entry.seen_at = now


def update_queue_status(session, appointment_id, status, today, now, queue_number=None, estimated_wait_time=None):
    appointment = get_appointment(session, appointment_id)
    new_status = coerce_queue_status(status) if status else None
    queue_number = _positive_int(queue_number, 'queueNumber')
    estimated_wait_time = _positive_int(estimated_wait_time, 'estimatedWaitTime')

    entry = session.scalars(select(QueueEntry).where(QueueEntry.appointment_id == appointment.id)).first()
    # a first check-in without a status joins the queue as waiting
    effective = new_status or (QueueStatus.WAITING if entry is None else None)
    target = APPOINTMENT_STATUS_FOR[effective] if effective else None
    if target is not None and target != appointment.status and not can_transition(appointment.status, target):
        raise InvalidTransition('appointment', appointment.status.value, target.value)

    if entry is None:
        if queue_number is None:
            number = next_queue_number(session, appointment.doctor_id, today)
        else:
            number = queue_number
            taken = session.scalars(select(QueueEntry.id).where(
                QueueEntry.doctor_id == appointment.doctor_id,
                QueueEntry.queue_date == today,
                QueueEntry.queue_number == number,
            )).first()
            if taken is not None:
                raise QueueNumberTaken(f'queue number {number} is already assigned today')
        entry = QueueEntry(
            appointment_id=appointment.id,
            doctor_id=appointment.doctor_id,
            patient_id=appointment.patient_id,
            queue_date=today,
            queue_number=number,
            current_position=number,
            estimated_wait_time=estimated_wait_time,
            status=effective,
            checked_in_at=now,
        )
        _stamp(entry, entry.status, now)
        session.add(entry)
        flush_or_raise(session, QueueNumberTaken(f'queue number {number} is already assigned today'))
        logger.info('appointment %s checked in as queue number %s for doctor %s',
                    appointment.id, number, appointment.doctor_id)
    else:
        if new_status is not None:
            entry.status = new_status
            _stamp(entry, new_status, now)
        if queue_number is not None:
            # queue numbers never change once issued, only the position moves
            entry.current_position = queue_number
        if estimated_wait_time is not None:
            entry.estimated_wait_time = estimated_wait_time

    if target is not None and target != appointment.status:
        transition(appointment, target)
        appointment.updated_at = now
    session.flush()
    return entry

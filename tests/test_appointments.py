from datetime import date, datetime

import pytest

import appointments
from auth import Actor
from errors import (AlreadyCancelled, DoctorUnavailable, InvalidTransition, NotFoundError, SlotConflict,
                    Unauthorized, ValidationError)
from models import Appointment, AppointmentStatus, Doctor

DAY = date(2024, 6, 1)
PATIENT = Actor('p-1', 'patient')
OTHER_PATIENT = Actor('p-2', 'patient')
RECEPTION = Actor('staff-1', 'reception')


def test_book_creates_scheduled(session, doctor):
    appt = appointments.book(session, doctor.id, 'p-1', '2024-06-01', '09:00', type='consultation')
    assert appt.id is not None
    assert appt.status == AppointmentStatus.SCHEDULED
    assert appt.time == '09:00'
    assert appt.date == DAY


def test_second_identical_booking_conflicts(session, doctor):
    appointments.book(session, doctor.id, 'p-1', DAY, '09:00')
    with pytest.raises(SlotConflict):
        appointments.book(session, doctor.id, 'p-2', DAY, '09:00')


def test_display_label_and_24h_time_are_the_same_slot(session, doctor):
    appointments.book(session, doctor.id, 'p-1', DAY, '9:00 AM')
    with pytest.raises(SlotConflict):
        appointments.book(session, doctor.id, 'p-2', DAY, '09:00')


def test_unavailable_doctor(session):
    doctor = Doctor(name='Dr. Away', is_available=False)
    session.add(doctor)
    session.flush()
    with pytest.raises(DoctorUnavailable):
        appointments.book(session, doctor.id, 'p-1', DAY, '09:00')


def test_unknown_doctor(session):
    with pytest.raises(NotFoundError):
        appointments.book(session, 404, 'p-1', DAY, '09:00')


def test_book_requires_patient(session, doctor):
    with pytest.raises(ValidationError) as exc:
        appointments.book(session, doctor.id, None, DAY, '09:00')
    assert exc.value.field == 'patientId'


def test_cancel_frees_slot_and_appends_reason(session, doctor):
    appt = appointments.book(session, doctor.id, 'p-1', DAY, '09:00', notes='bring reports')
    appointments.cancel(session, appt.id, PATIENT, reason='travelling')
    assert appt.status == AppointmentStatus.CANCELLED
    assert appt.notes == 'bring reports\nCancelled: travelling'

    again = appointments.book(session, doctor.id, 'p-2', DAY, '09:00')
    assert again.status == AppointmentStatus.SCHEDULED


def test_cancel_authorization(session, doctor):
    appt = appointments.book(session, doctor.id, 'p-1', DAY, '09:00')
    with pytest.raises(Unauthorized):
        appointments.cancel(session, appt.id, OTHER_PATIENT)
    with pytest.raises(Unauthorized):
        appointments.cancel(session, appt.id, Actor(None, None))
    appointments.cancel(session, appt.id, RECEPTION, reason='doctor on leave')
    assert appt.notes == 'Cancelled: doctor on leave'


def test_cancel_twice(session, doctor):
    appt = appointments.book(session, doctor.id, 'p-1', DAY, '09:00')
    appointments.cancel(session, appt.id, PATIENT)
    with pytest.raises(AlreadyCancelled):
        appointments.cancel(session, appt.id, PATIENT)


def test_cancel_missing(session):
    with pytest.raises(NotFoundError):
        appointments.cancel(session, 12345, RECEPTION)


def test_cannot_cancel_completed(session, doctor):
    appt = appointments.book(session, doctor.id, 'p-1', DAY, '09:00')
    appointments.update_status(session, appt.id, 'completed')
    with pytest.raises(InvalidTransition):
        appointments.cancel(session, appt.id, RECEPTION)


def test_reschedule_moves_in_place(session, doctor):
    appt = appointments.book(session, doctor.id, 'p-1', DAY, '09:00')
    moved = appointments.reschedule(session, appt.id, PATIENT, '2024-06-02', '10:30', reason='clash')
    assert moved.id == appt.id
    assert (moved.date, moved.time) == (date(2024, 6, 2), '10:30')
    assert moved.status == AppointmentStatus.RESCHEDULED
    assert moved.notes == 'Rescheduled: clash'

    # the old slot is free, the new one is held
    appointments.book(session, doctor.id, 'p-2', DAY, '09:00')
    with pytest.raises(SlotConflict):
        appointments.book(session, doctor.id, 'p-3', '2024-06-02', '10:30')


def test_reschedule_into_taken_slot(session, doctor):
    appointments.book(session, doctor.id, 'p-2', DAY, '10:00')
    appt = appointments.book(session, doctor.id, 'p-1', DAY, '09:00')
    with pytest.raises(SlotConflict):
        appointments.reschedule(session, appt.id, PATIENT, DAY, '10:00')


def test_reschedule_to_own_slot_is_not_a_conflict(session, doctor):
    appt = appointments.book(session, doctor.id, 'p-1', DAY, '09:00')
    appointments.reschedule(session, appt.id, PATIENT, DAY, '09:00')
    assert appt.status == AppointmentStatus.RESCHEDULED


def test_rescheduled_appointment_stays_actionable(session, doctor):
    appt = appointments.book(session, doctor.id, 'p-1', DAY, '09:00')
    appointments.reschedule(session, appt.id, PATIENT, DAY, '11:00')
    appointments.reschedule(session, appt.id, PATIENT, DAY, '11:30')
    appointments.update_status(session, appt.id, 'confirmed')
    assert appt.status == AppointmentStatus.CONFIRMED


def test_confirmed_cannot_be_rescheduled(session, doctor):
    appt = appointments.book(session, doctor.id, 'p-1', DAY, '09:00')
    appointments.update_status(session, appt.id, 'confirmed')
    with pytest.raises(InvalidTransition):
        appointments.reschedule(session, appt.id, RECEPTION, DAY, '10:00')


def test_status_machine(session, doctor):
    appt = appointments.book(session, doctor.id, 'p-1', DAY, '09:00')
    appointments.update_status(session, appt.id, 'in_progress')
    with pytest.raises(InvalidTransition):
        appointments.update_status(session, appt.id, 'confirmed')
    appointments.update_status(session, appt.id, 'completed')
    with pytest.raises(InvalidTransition):
        appointments.update_status(session, appt.id, 'in_progress')
    with pytest.raises(ValidationError):
        appointments.update_status(session, appt.id, 'no_show')


def test_terminal_statuses():
    assert appointments.TERMINAL_STATUSES == {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}


def test_no_double_booking_after_mixed_operations(session, doctor):
    a = appointments.book(session, doctor.id, 'p-1', DAY, '09:00')
    b = appointments.book(session, doctor.id, 'p-2', DAY, '09:30')
    appointments.cancel(session, a.id, PATIENT)
    appointments.reschedule(session, b.id, OTHER_PATIENT, DAY, '09:00')
    with pytest.raises(SlotConflict):
        appointments.book(session, doctor.id, 'p-3', DAY, '09:00')
    appointments.book(session, doctor.id, 'p-3', DAY, '09:30')

    holding = session.query(Appointment).filter(
        Appointment.doctor_id == doctor.id,
        Appointment.date == DAY,
        Appointment.time == '09:00',
        Appointment.status.in_(['scheduled', 'confirmed', 'in_progress', 'rescheduled']),
    ).count()
    assert holding == 1


def test_storage_index_rejects_racing_booking(store, monkeypatch):
    with store.session() as s:
        doctor = Doctor(name='Dr. Race', is_available=True)
        s.add(doctor)
        s.flush()
        doctor_id = doctor.id
        appointments.book(s, doctor_id, 'p-1', DAY, '09:00')

    # the second request passed its check before the first one committed
    monkeypatch.setattr(appointments, 'find_conflict', lambda *args, **kwargs: None)
    with pytest.raises(SlotConflict):
        with store.session() as s:
            appointments.book(s, doctor_id, 'p-2', DAY, '09:00')

    with store.session() as s:
        assert s.query(Appointment).count() == 1


def test_list_appointments_filters(session, doctor):
    appointments.book(session, doctor.id, 'p-1', DAY, '09:00')
    appointments.book(session, doctor.id, 'p-2', DAY, '09:30')
    appointments.book(session, doctor.id, 'p-1', '2024-06-02', '09:00')
    assert len(appointments.list_appointments(session, patient_id='p-1')) == 2
    assert len(appointments.list_appointments(session, doctor_id=doctor.id, date='2024-06-01')) == 2
    assert appointments.list_appointments(session, status='cancelled') == []


def test_timestamps_come_from_caller_clock(session, doctor):
    booked_at = datetime(2024, 5, 30, 10, 0)
    appt = appointments.book(session, doctor.id, 'p-1', DAY, '09:00', now=booked_at)
    assert appt.created_at == booked_at
    assert appt.updated_at == booked_at

    moved_at = datetime(2024, 5, 31, 11, 0)
    appointments.reschedule(session, appt.id, PATIENT, DAY, '10:00', now=moved_at)
    assert appt.created_at == booked_at
    assert appt.updated_at == moved_at

    cancelled_at = datetime(2024, 5, 31, 12, 0)
    appointments.cancel(session, appt.id, PATIENT, now=cancelled_at)
    assert appt.updated_at == cancelled_at

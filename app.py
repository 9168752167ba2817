# app.py
import argparse
import logging

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

import appointments
import availability
import beds
import emergency
import medication
import patient_queue
from auth import STAFF_ROLES, current_actor, is_staff, require_roles
from config import Config, make_clock
from db import Store
from errors import AuthorizationError, ClinicError, ValidationError
from models import Doctor
from timeslots import parse_date

api = Blueprint('api', __name__, url_prefix='/api')

CLINICAL_ROLES = ('doctor', 'nurse', 'admin')
FRONT_DESK_ROLES = ('doctor', 'nurse', 'reception', 'admin')


def create_app(config=None, store=None, clock=None):
    app = Flask(__name__)
    CORS(app)
    app.config.from_object(Config)
    if config:
        app.config.update(config)
    app.secret_key = app.config['SECRET_KEY']
    app.logger.setLevel(app.config['LOG_LEVEL'])

    if store is None:
        store = Store(app.config['DATABASE_URL'], echo=app.config['SQL_ECHO'])
        store.create_all()
    app.extensions['clinic_store'] = store
    app.extensions['clinic_clock'] = clock or make_clock(app.config['CLINIC_TIMEZONE'])

    app.register_blueprint(api)
    app.register_error_handler(ClinicError, handle_clinic_error)
    app.register_error_handler(Exception, handle_unexpected_error)
    return app


def handle_clinic_error(err):
    return jsonify(err.to_dict()), err.status_code


def handle_unexpected_error(err):
    if isinstance(err, HTTPException):
        return jsonify({'error': err.description, 'code': err.name.lower().replace(' ', '_')}), err.code
    # full detail goes to the log only
    current_app.logger.exception('unhandled error on %s %s', request.method, request.path)
    return jsonify({'error': 'internal server error', 'code': 'unexpected_error'}), 500


def _store():
    return current_app.extensions['clinic_store']


def _now():
    return current_app.extensions['clinic_clock']()


def _body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('request body must be a JSON object')
    return data


def _field(data, camel, snake=None, default=None):
    # accept both camelCase and snake_case from clients
    if camel in data:
        return data[camel]
    if snake and snake in data:
        return data[snake]
    return default


def _int_arg(name, default):
    value = request.args.get(name)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f'{name} must be an integer', field=name)


@api.before_app_request
def log_request():
    current_app.logger.debug('%s %s', request.method, request.path)


@api.route('/health', methods=['GET'])
def health():
    return jsonify({'status': 'ok', 'time': _now().isoformat()})


# ======================================
# Doctors & availability
# ======================================

@api.route('/doctors', methods=['GET'])
def list_doctors():
    only_available = request.args.get('available') in ('1', 'true', 'yes')
    with _store().session() as session:
        query = session.query(Doctor).order_by(Doctor.id)
        if only_available:
            query = query.filter(Doctor.is_available.is_(True))
        return jsonify([d.to_dict() for d in query.all()])


@api.route('/doctors/<int:doctor_id>/availability', methods=['GET'])
def doctor_availability(doctor_id):
    date = request.args.get('date')
    if not date:
        raise ValidationError('date parameter is required', field='date')
    on_date = parse_date(date)
    with _store().session() as session:
        slots = availability.resolve_availability(
            session, doctor_id, on_date, slot_minutes=current_app.config['SLOT_MINUTES'])
    return jsonify({'doctorId': doctor_id, 'date': on_date.isoformat(), 'availableSlots': slots})


@api.route('/doctors/<int:doctor_id>/templates', methods=['GET'])
def doctor_templates(doctor_id):
    with _store().session() as session:
        return jsonify([t.to_dict() for t in availability.list_templates(session, doctor_id)])


@api.route('/doctors/<int:doctor_id>/templates', methods=['POST'])
@require_roles('admin', 'reception', 'doctor')
def add_doctor_template(doctor_id):
    data = _body()
    with _store().session() as session:
        template = availability.add_template(
            session, doctor_id,
            day_of_week=_field(data, 'dayOfWeek', 'day_of_week'),
            start_time=_field(data, 'startTime', 'start_time'),
            end_time=_field(data, 'endTime', 'end_time'),
            valid_from=_field(data, 'validFrom', 'valid_from'),
            valid_until=_field(data, 'validUntil', 'valid_until'),
            is_available=_field(data, 'isAvailable', 'is_available', True),
        )
        return jsonify({'message': 'availability added', 'data': template.to_dict()}), 201


@api.route('/doctors/<int:doctor_id>/queue', methods=['GET'])
@require_roles(*FRONT_DESK_ROLES)
def doctor_queue(doctor_id):
    today = _now().date()
    with _store().session() as session:
        queue = patient_queue.get_queue(
            session, doctor_id, today, current_app.config['AVERAGE_CONSULT_MINUTES'])
    return jsonify({'doctorId': doctor_id, 'date': today.isoformat(), 'queue': queue})


# ======================================
# Appointments
# ======================================

@api.route('/appointments', methods=['POST'])
def book_appointment():
    data = _body()
    actor = current_actor()
    if actor.id is None:
        raise AuthorizationError('authentication required')
    if actor.role == 'patient':
        patient_id = actor.id
    else:
        patient_id = _field(data, 'patientId', 'patient_id')
    doctor_id = _field(data, 'doctorId', 'doctor_id')
    if doctor_id is None:
        raise ValidationError('doctorId is required', field='doctorId')
    with _store().session() as session:
        appt = appointments.book(
            session, doctor_id, patient_id,
            date=_field(data, 'date'),
            time=_field(data, 'time'),
            type=_field(data, 'type'),
            notes=_field(data, 'notes'),
            department=_field(data, 'department'),
            now=_now(),
        )
        return jsonify({'message': 'appointment booked', 'data': appt.to_dict()}), 201


@api.route('/appointments', methods=['GET'])
def list_appointments():
    actor = current_actor()
    if actor.id is None:
        raise AuthorizationError('authentication required')
    # patients only ever see their own bookings
    patient_id = actor.id if actor.role == 'patient' else request.args.get('patientId')
    doctor_id = _int_arg('doctorId', None)
    with _store().session() as session:
        items = appointments.list_appointments(
            session,
            doctor_id=doctor_id,
            patient_id=patient_id,
            date=request.args.get('date'),
            status=request.args.get('status'),
            limit=_int_arg('limit', 100),
            offset=_int_arg('offset', 0),
        )
        return jsonify([a.to_dict() for a in items])


@api.route('/appointments/<int:appointment_id>', methods=['GET'])
def get_appointment(appointment_id):
    actor = current_actor()
    with _store().session() as session:
        appt = appointments.get_appointment(session, appointment_id)
        appointments.check_owner_or_staff(appt, actor, 'view')
        return jsonify(appt.to_dict())


@api.route('/appointments/<int:appointment_id>/reschedule', methods=['PUT'])
def reschedule_appointment(appointment_id):
    data = _body()
    with _store().session() as session:
        appt = appointments.reschedule(
            session, appointment_id, current_actor(),
            date=_field(data, 'date'),
            time=_field(data, 'time'),
            reason=_field(data, 'reason'),
            now=_now(),
        )
        return jsonify({'message': 'appointment rescheduled', 'data': appt.to_dict()})


@api.route('/appointments/<int:appointment_id>', methods=['DELETE'])
@api.route('/appointments/<int:appointment_id>/cancel', methods=['POST'])
def cancel_appointment(appointment_id):
    data = _body()
    with _store().session() as session:
        appt = appointments.cancel(
            session, appointment_id, current_actor(), reason=_field(data, 'reason'), now=_now())
        return jsonify({'message': 'appointment cancelled', 'data': appt.to_dict()})


@api.route('/appointments/<int:appointment_id>/status', methods=['PATCH'])
@require_roles(*FRONT_DESK_ROLES)
def update_appointment_status(appointment_id):
    data = _body()
    with _store().session() as session:
        appt = appointments.update_status(session, appointment_id, _field(data, 'status'), now=_now())
        return jsonify({'message': 'appointment updated', 'data': appt.to_dict()})


# ======================================
# Queue
# ======================================

@api.route('/queue/<int:appointment_id>', methods=['PATCH'])
@require_roles(*FRONT_DESK_ROLES)
def update_queue(appointment_id):
    data = _body()
    now = _now()
    with _store().session() as session:
        entry = patient_queue.update_queue_status(
            session, appointment_id,
            status=_field(data, 'status'),
            today=now.date(),
            now=now,
            queue_number=_field(data, 'queueNumber', 'queue_number'),
            estimated_wait_time=_field(data, 'estimatedWaitTime', 'estimated_wait_time'),
        )
        return jsonify({'message': 'queue status updated', 'data': entry.to_dict()})


# ======================================
# Beds
# ======================================

@api.route('/beds', methods=['GET'])
@require_roles(*STAFF_ROLES)
def list_beds():
    with _store().session() as session:
        allocations = beds.list_allocations(
            session,
            status=request.args.get('status'),
            room_type=request.args.get('roomType'),
            floor=request.args.get('floor'),
        )
        return jsonify({
            'data': [a.to_dict() for a in allocations],
            'stats': beds.occupancy_stats(allocations),
        })


@api.route('/beds/allocate', methods=['POST'])
@require_roles('nurse', 'reception', 'doctor', 'admin')
def allocate_bed():
    data = _body()
    actor = current_actor()
    with _store().session() as session:
        allocation = beds.allocate(
            session,
            patient_id=_field(data, 'patientId', 'patient_id'),
            bed_number=_field(data, 'bedNumber', 'bed_number'),
            room_number=_field(data, 'roomNumber', 'room_number'),
            room_type=_field(data, 'roomType', 'room_type'),
            floor=_field(data, 'floor'),
            actor_id=actor.id,
            now=_now(),
            expected_discharge_date=_field(data, 'expectedDischargeDate', 'expected_discharge_date'),
            notes=_field(data, 'notes'),
            status=_field(data, 'status', default='occupied'),
        )
        return jsonify({'message': 'bed allocated', 'data': allocation.to_dict()}), 201


@api.route('/beds/<int:allocation_id>', methods=['GET'])
@require_roles(*STAFF_ROLES)
def get_bed(allocation_id):
    with _store().session() as session:
        return jsonify(beds.get_allocation(session, allocation_id).to_dict())


@api.route('/beds/<int:allocation_id>/release', methods=['PUT'])
@require_roles('nurse', 'reception', 'doctor', 'admin')
def release_bed(allocation_id):
    data = _body()
    with _store().session() as session:
        allocation = beds.release(
            session, allocation_id, _now(),
            discharge_notes=_field(data, 'dischargeNotes', 'discharge_notes'))
        return jsonify({'message': 'bed released', 'data': allocation.to_dict()})


# ======================================
# Medication
# ======================================

@api.route('/medication', methods=['POST'])
@require_roles(*CLINICAL_ROLES)
def create_medication_schedule():
    data = _body()
    with _store().session() as session:
        schedule = medication.create_schedule(
            session,
            patient_id=_field(data, 'patientId', 'patient_id'),
            medication_name=_field(data, 'medicationName', 'medication_name'),
            dosage=_field(data, 'dosage'),
            specific_times=_field(data, 'specificTimes', 'specific_times'),
            start_date=_field(data, 'startDate', 'start_date'),
            now=_now(),
            end_date=_field(data, 'endDate', 'end_date'),
            frequency=_field(data, 'frequency'),
            route=_field(data, 'route'),
            prescription_id=_field(data, 'prescriptionId', 'prescription_id'),
            notes=_field(data, 'notes'),
        )
        return jsonify({'message': 'medication schedule created', 'data': schedule.to_dict()}), 201


@api.route('/medication', methods=['GET'])
@require_roles(*STAFF_ROLES)
def list_medication_schedules():
    with _store().session() as session:
        schedules = medication.list_schedules(
            session, patient_id=request.args.get('patientId'), status=request.args.get('status'))
        return jsonify([s.to_dict() for s in schedules])


@api.route('/medication/<int:schedule_id>/administer', methods=['PUT'])
@require_roles(*CLINICAL_ROLES)
def administer_medication(schedule_id):
    data = _body()
    with _store().session() as session:
        schedule = medication.mark_administered(
            session, schedule_id, current_actor().id, _now(), notes=_field(data, 'notes'))
        return jsonify({'message': 'medication marked as administered', 'data': schedule.to_dict()})


@api.route('/medication/<int:schedule_id>/status', methods=['PUT'])
@require_roles(*CLINICAL_ROLES)
def set_medication_status(schedule_id):
    data = _body()
    with _store().session() as session:
        schedule = medication.set_status(session, schedule_id, _field(data, 'status'), _now())
        return jsonify({'message': 'medication schedule updated', 'data': schedule.to_dict()})


# ======================================
# Emergency alerts
# ======================================

@api.route('/emergency', methods=['POST'])
def trigger_emergency():
    data = _body()
    actor = current_actor()
    if actor.id is None or not is_staff(actor):
        raise AuthorizationError('only staff may raise emergency alerts')
    with _store().session() as session:
        alert = emergency.trigger(
            session, actor.id,
            severity=_field(data, 'severity', default='high'),
            location=_field(data, 'location'),
            description=_field(data, 'description'),
            now=_now(),
            patient_id=_field(data, 'patientId', 'patient_id'),
            alert_type=_field(data, 'alertType', 'alert_type', 'medical'),
        )
        return jsonify({'message': 'emergency alert triggered', 'data': alert.to_dict()}), 201


@api.route('/emergency', methods=['GET'])
@require_roles(*STAFF_ROLES)
def list_emergencies():
    with _store().session() as session:
        alerts = emergency.list_alerts(
            session,
            status=request.args.get('status', 'active'),
            severity=request.args.get('severity'),
            limit=_int_arg('limit', 50),
        )
        return jsonify([a.to_dict() for a in alerts])


@api.route('/emergency/<int:alert_id>/acknowledge', methods=['PUT'])
@require_roles(*STAFF_ROLES)
def acknowledge_emergency(alert_id):
    with _store().session() as session:
        alert = emergency.acknowledge(session, alert_id, current_actor().id, _now())
        return jsonify({'message': 'alert acknowledged', 'data': alert.to_dict()})


@api.route('/emergency/<int:alert_id>/resolve', methods=['PUT'])
@require_roles(*STAFF_ROLES)
def resolve_emergency(alert_id):
    data = _body()
    with _store().session() as session:
        alert = emergency.resolve(
            session, alert_id, current_actor().id, _now(),
            response_notes=_field(data, 'responseNotes', 'response_notes'))
        return jsonify({'message': 'alert resolved', 'data': alert.to_dict()})


@api.route('/emergency/<int:alert_id>/cancel', methods=['PUT'])
@require_roles(*STAFF_ROLES)
def cancel_emergency(alert_id):
    data = _body()
    with _store().session() as session:
        alert = emergency.cancel_alert(
            session, alert_id, current_actor().id, _now(),
            response_notes=_field(data, 'responseNotes', 'response_notes'))
        return jsonify({'message': 'alert cancelled', 'data': alert.to_dict()})


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Clinic scheduling API')
    parser.add_argument('--host', default='127.0.0.1')
    parser.add_argument('--port', type=int, default=5000)
    parser.add_argument('--debug', action='store_true')
    args = parser.parse_args()
    logging.basicConfig(level=Config.LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    app = create_app()
    app.run(host=args.host, port=args.port, debug=args.debug)

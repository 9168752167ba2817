# models.py
import enum

from sqlalchemy import (Boolean, Column, Date, DateTime, Enum, ForeignKey, Index, Integer, String, Text,
                        UniqueConstraint, text)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

from timeslots import DoseTimes, format_12h

Base = declarative_base()


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = 'scheduled'
    CONFIRMED = 'confirmed'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    RESCHEDULED = 'rescheduled'


class QueueStatus(str, enum.Enum):
    WAITING = 'waiting'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'


class BedStatus(str, enum.Enum):
    OCCUPIED = 'occupied'
    RESERVED = 'reserved'
    AVAILABLE = 'available'
    MAINTENANCE = 'maintenance'


class RoomType(str, enum.Enum):
    GENERAL = 'general'
    PRIVATE = 'private'
    ICU = 'icu'
    EMERGENCY = 'emergency'
    ISOLATION = 'isolation'


class MedicationStatus(str, enum.Enum):
    ACTIVE = 'active'
    COMPLETED = 'completed'
    STOPPED = 'stopped'
    MISSED = 'missed'


class AlertSeverity(str, enum.Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


class AlertStatus(str, enum.Enum):
    ACTIVE = 'active'
    ACKNOWLEDGED = 'acknowledged'
    RESOLVED = 'resolved'
    CANCELLED = 'cancelled'


# statuses that still hold a doctor's slot
OCCUPYING_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
    AppointmentStatus.RESCHEDULED,
)
HOLDING_BED_STATUSES = (BedStatus.OCCUPIED, BedStatus.RESERVED)


def _sql_in(statuses):
    return ', '.join(f"'{s.value}'" for s in statuses)


def status_column(enum_cls, default):
    return Column(
        Enum(enum_cls, native_enum=False, length=20, validate_strings=True,
             values_callable=lambda members: [m.value for m in members]),
        nullable=False,
        default=default,
    )


def _iso(value):
    return value.isoformat() if value is not None else None


class DoseTimesType(TypeDecorator):
    impl = String(255)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return DoseTimes(value).serialize()

    def process_result_value(self, value, dialect):
        if value is None:
            return DoseTimes()
        return DoseTimes(value)


class Doctor(Base):
    __tablename__ = 'doctors'
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    specialty = Column(String)
    is_available = Column(Boolean, nullable=False, default=True)
    qualification = Column(String)
    experience_years = Column(Integer)
    email = Column(String)
    phone = Column(String)

    templates = relationship('AvailabilityTemplate', back_populates='doctor', order_by='AvailabilityTemplate.id')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'specialty': self.specialty,
            'isAvailable': bool(self.is_available),
            'qualification': self.qualification,
            'experienceYears': self.experience_years,
            'email': self.email,
            'phone': self.phone,
        }


class AvailabilityTemplate(Base):
    __tablename__ = 'availability_templates'
    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey('doctors.id'), nullable=False, index=True)
    # 0 = Monday ... 6 = Sunday, as date.weekday()
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    valid_from = Column(Date)
    valid_until = Column(Date)
    is_available = Column(Boolean, nullable=False, default=True)

    doctor = relationship('Doctor', back_populates='templates')

    def to_dict(self):
        return {
            'id': self.id,
            'doctorId': self.doctor_id,
            'dayOfWeek': self.day_of_week,
            'startTime': self.start_time,
            'endTime': self.end_time,
            'validFrom': _iso(self.valid_from),
            'validUntil': _iso(self.valid_until),
            'isAvailable': bool(self.is_available),
        }


class Appointment(Base):
    __tablename__ = 'appointments'
    __table_args__ = (
        # at most one slot-holding appointment per (doctor, date, time)
        Index(
            'uq_appointments_active_slot', 'doctor_id', 'date', 'time',
            unique=True,
            sqlite_where=text(f'status IN ({_sql_in(OCCUPYING_STATUSES)})'),
            postgresql_where=text(f'status IN ({_sql_in(OCCUPYING_STATUSES)})'),
        ),
    )
    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey('doctors.id'), nullable=False, index=True)
    patient_id = Column(String(64), nullable=False, index=True)
    date = Column(Date, nullable=False)
    time = Column(String(5), nullable=False)
    type = Column(String(50))
    department = Column(String(100))
    status = status_column(AppointmentStatus, AppointmentStatus.SCHEDULED)
    notes = Column(Text)
    # stamped from the clinic clock by appointments.py
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    doctor = relationship('Doctor')
    queue_entry = relationship('QueueEntry', back_populates='appointment', uselist=False)

    def to_dict(self):
        return {
            'id': self.id,
            'doctorId': self.doctor_id,
            'patientId': self.patient_id,
            'date': _iso(self.date),
            'time': self.time,
            'timeLabel': format_12h(self.time),
            'type': self.type,
            'department': self.department,
            'status': self.status.value,
            'notes': self.notes,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }


class QueueEntry(Base):
    __tablename__ = 'patient_queue'
    __table_args__ = (
        UniqueConstraint('doctor_id', 'queue_date', 'queue_number', name='uq_patient_queue_number'),
    )
    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey('appointments.id'), nullable=False, unique=True)
    doctor_id = Column(Integer, ForeignKey('doctors.id'), nullable=False)
    patient_id = Column(String(64), nullable=False)
    queue_date = Column(Date, nullable=False)
    queue_number = Column(Integer, nullable=False)
    current_position = Column(Integer, nullable=False)
    estimated_wait_time = Column(Integer)
    status = status_column(QueueStatus, QueueStatus.WAITING)
    checked_in_at = Column(DateTime)
    called_at = Column(DateTime)
    seen_at = Column(DateTime)

    appointment = relationship('Appointment', back_populates='queue_entry')

    def to_dict(self):
        return {
            'id': self.id,
            'appointmentId': self.appointment_id,
            'doctorId': self.doctor_id,
            'patientId': self.patient_id,
            'queueDate': _iso(self.queue_date),
            'queueNumber': self.queue_number,
            'currentPosition': self.current_position,
            'estimatedWaitTime': self.estimated_wait_time,
            'status': self.status.value,
            'checkedInAt': _iso(self.checked_in_at),
            'calledAt': _iso(self.called_at),
            'seenAt': _iso(self.seen_at),
        }


class BedAllocation(Base):
    __tablename__ = 'bed_allocations'
    __table_args__ = (
        Index(
            'uq_bed_allocations_active_bed', 'bed_number', 'room_number',
            unique=True,
            sqlite_where=text(f'is_active = 1 AND status IN ({_sql_in(HOLDING_BED_STATUSES)})'),
            postgresql_where=text(f'is_active AND status IN ({_sql_in(HOLDING_BED_STATUSES)})'),
        ),
    )
    id = Column(Integer, primary_key=True)
    patient_id = Column(String(64), nullable=False, index=True)
    bed_number = Column(String(20), nullable=False)
    room_number = Column(String(20), nullable=False)
    room_type = status_column(RoomType, RoomType.GENERAL)
    floor = Column(String(20))
    status = status_column(BedStatus, BedStatus.OCCUPIED)
    is_active = Column(Boolean, nullable=False, default=True)
    allocated_by = Column(String(64))
    allocated_at = Column(DateTime)
    expected_discharge_date = Column(Date)
    actual_discharge_date = Column(DateTime)
    notes = Column(Text)
    discharge_notes = Column(Text)

    def to_dict(self):
        return {
            'id': self.id,
            'patientId': self.patient_id,
            'bedNumber': self.bed_number,
            'roomNumber': self.room_number,
            'roomType': self.room_type.value,
            'floor': self.floor,
            'status': self.status.value,
            'isActive': bool(self.is_active),
            'allocatedBy': self.allocated_by,
            'allocatedAt': _iso(self.allocated_at),
            'expectedDischargeDate': _iso(self.expected_discharge_date),
            'actualDischargeDate': _iso(self.actual_discharge_date),
            'notes': self.notes,
            'dischargeNotes': self.discharge_notes,
        }


class MedicationSchedule(Base):
    __tablename__ = 'medication_schedules'
    id = Column(Integer, primary_key=True)
    patient_id = Column(String(64), nullable=False, index=True)
    prescription_id = Column(String(64))
    medication_name = Column(String(200), nullable=False)
    dosage = Column(String(100), nullable=False)
    frequency = Column(String(100))
    route = Column(String(50))
    specific_times = Column(DoseTimesType, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date)
    last_administered = Column(DateTime)
    administered_by = Column(String(64))
    # derived from specific_times, recomputed on every administration
    next_dose_time = Column(DateTime)
    status = status_column(MedicationStatus, MedicationStatus.ACTIVE)
    notes = Column(Text)
    created_at = Column(DateTime)

    def to_dict(self):
        return {
            'id': self.id,
            'patientId': self.patient_id,
            'prescriptionId': self.prescription_id,
            'medicationName': self.medication_name,
            'dosage': self.dosage,
            'frequency': self.frequency,
            'route': self.route,
            'specificTimes': self.specific_times.labels(),
            'timesPerDay': len(self.specific_times),
            'startDate': _iso(self.start_date),
            'endDate': _iso(self.end_date),
            'lastAdministered': _iso(self.last_administered),
            'administeredBy': self.administered_by,
            'nextDoseTime': _iso(self.next_dose_time),
            'status': self.status.value,
            'notes': self.notes,
            'createdAt': _iso(self.created_at),
        }


class EmergencyAlert(Base):
    __tablename__ = 'emergency_alerts'
    id = Column(Integer, primary_key=True)
    patient_id = Column(String(64))
    triggered_by = Column(String(64), nullable=False)
    alert_type = Column(String(50), default='medical')
    severity = status_column(AlertSeverity, AlertSeverity.HIGH)
    location = Column(String(200))
    description = Column(Text, nullable=False)
    status = status_column(AlertStatus, AlertStatus.ACTIVE)
    acknowledged_by = Column(String(64))
    acknowledged_at = Column(DateTime)
    resolved_by = Column(String(64))
    resolved_at = Column(DateTime)
    cancelled_by = Column(String(64))
    cancelled_at = Column(DateTime)
    response_notes = Column(Text)
    created_at = Column(DateTime)

    def to_dict(self):
        return {
            'id': self.id,
            'patientId': self.patient_id,
            'triggeredBy': self.triggered_by,
            'alertType': self.alert_type,
            'severity': self.severity.value,
            'location': self.location,
            'description': self.description,
            'status': self.status.value,
            'acknowledgedBy': self.acknowledged_by,
            'acknowledgedAt': _iso(self.acknowledged_at),
            'resolvedBy': self.resolved_by,
            'resolvedAt': _iso(self.resolved_at),
            'cancelledBy': self.cancelled_by,
            'cancelledAt': _iso(self.cancelled_at),
            'responseNotes': self.response_notes,
            'createdAt': _iso(self.created_at),
        }

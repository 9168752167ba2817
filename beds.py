# beds.py
import logging

from sqlalchemy import select

from db import flush_or_raise
from errors import BedOccupied, ConflictError, NotFoundError, ValidationError
from models import HOLDING_BED_STATUSES, BedAllocation, BedStatus, RoomType
from timeslots import parse_date

logger = logging.getLogger(__name__)


def _coerce(enum_cls, value, field):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        allowed = ', '.join(m.value for m in enum_cls)
        raise ValidationError(f'unknown {field} {value!r} (expected one of {allowed})', field=field)


def get_allocation(session, allocation_id):
    allocation = session.get(BedAllocation, allocation_id)
    if allocation is None:
        raise NotFoundError(f'bed allocation {allocation_id} not found')
    return allocation


def active_holder(session, bed_number, room_number):
    return session.scalars(
        select(BedAllocation).where(
            BedAllocation.bed_number == bed_number,
            BedAllocation.room_number == room_number,
            BedAllocation.is_active.is_(True),
            BedAllocation.status.in_(HOLDING_BED_STATUSES),
        ).limit(1)
    ).first()


def allocate(session, patient_id, bed_number, room_number, room_type, floor, actor_id, now,
             expected_discharge_date=None, notes=None, status=BedStatus.OCCUPIED):
    missing = [name for name, value in (('patientId', patient_id), ('bedNumber', bed_number),
                                        ('roomNumber', room_number), ('roomType', room_type)) if not value]
    if missing:
        raise ValidationError(f'missing required fields: {", ".join(missing)}', field=missing[0])
    room_type = _coerce(RoomType, room_type, 'roomType')
    status = _coerce(BedStatus, status, 'status')
    if status not in HOLDING_BED_STATUSES:
        raise ValidationError('a new allocation must be occupied or reserved', field='status')
    bed_number, room_number = str(bed_number), str(room_number)

    occupied_message = f'bed {bed_number} in room {room_number} is already occupied or reserved'
    if active_holder(session, bed_number, room_number) is not None:
        raise BedOccupied(occupied_message)

    allocation = BedAllocation(
        patient_id=str(patient_id),
        bed_number=bed_number,
        room_number=room_number,
        room_type=room_type,
        floor=str(floor) if floor is not None else None,
        status=status,
        is_active=True,
        allocated_by=actor_id or 'system',
        allocated_at=now,
        expected_discharge_date=parse_date(expected_discharge_date, field='expectedDischargeDate')
        if expected_discharge_date else None,
        notes=notes,
    )
    session.add(allocation)
    flush_or_raise(session, BedOccupied(occupied_message))
    logger.info('bed %s/%s %s for patient %s', room_number, bed_number, status.value, allocation.patient_id)
    return allocation


def release(session, allocation_id, now, discharge_notes=None):
    allocation = get_allocation(session, allocation_id)
    if not allocation.is_active:
        raise ConflictError(f'bed allocation {allocation.id} was already released')
    allocation.status = BedStatus.AVAILABLE
    allocation.is_active = False
    allocation.actual_discharge_date = now
    allocation.discharge_notes = discharge_notes
    session.flush()
    logger.info('bed %s/%s released by allocation %s', allocation.room_number, allocation.bed_number, allocation.id)
    return allocation


def list_allocations(session, status=None, room_type=None, floor=None, active_only=False):
    stmt = select(BedAllocation)
    if status:
        stmt = stmt.where(BedAllocation.status == _coerce(BedStatus, status, 'status'))
    if room_type:
        stmt = stmt.where(BedAllocation.room_type == _coerce(RoomType, room_type, 'roomType'))
    if floor:
        stmt = stmt.where(BedAllocation.floor == str(floor))
    if active_only:
        stmt = stmt.where(BedAllocation.is_active.is_(True))
    stmt = stmt.order_by(BedAllocation.floor, BedAllocation.room_number, BedAllocation.bed_number, BedAllocation.id)
    return list(session.scalars(stmt))


def occupancy_stats(allocations):
    """Counts by status; occupied and reserved only count while active."""
    stats = {'total': len(allocations)}
    for status in BedStatus:
        if status in HOLDING_BED_STATUSES:
            stats[status.value] = sum(1 for a in allocations if a.status == status and a.is_active)
        else:
            stats[status.value] = sum(1 for a in allocations if a.status == status)
    return stats

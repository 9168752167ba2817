# emergency.py
import logging

from sqlalchemy import select

from errors import InvalidTransition, MissingDescription, NotFoundError, ValidationError
from models import AlertSeverity, AlertStatus, EmergencyAlert

logger = logging.getLogger(__name__)

A = AlertStatus

# acknowledged -> acknowledged is allowed and re-stamps the acknowledger
TRANSITIONS = {
    A.ACTIVE: frozenset({A.ACKNOWLEDGED, A.RESOLVED, A.CANCELLED}),
    A.ACKNOWLEDGED: frozenset({A.ACKNOWLEDGED, A.RESOLVED, A.CANCELLED}),
    A.RESOLVED: frozenset(),
    A.CANCELLED: frozenset(),
}


def _check(alert, target):
    if target not in TRANSITIONS[alert.status]:
        raise InvalidTransition('alert', alert.status.value, target.value)


def get_alert(session, alert_id):
    alert = session.get(EmergencyAlert, alert_id)
    if alert is None:
        raise NotFoundError(f'emergency alert {alert_id} not found')
    return alert


def trigger(session, actor_id, severity, location, description, now, patient_id=None, alert_type='medical'):
    if not description or not str(description).strip():
        raise MissingDescription()
    try:
        severity = AlertSeverity(severity or AlertSeverity.HIGH)
    except ValueError:
        raise ValidationError(f'unknown severity {severity!r}', field='severity')
    alert = EmergencyAlert(
        patient_id=str(patient_id) if patient_id else None,
        triggered_by=actor_id or 'system',
        alert_type=alert_type or 'medical',
        severity=severity,
        location=location,
        description=description.strip(),
        status=A.ACTIVE,
        created_at=now,
    )
    session.add(alert)
    session.flush()
    logger.warning('%s alert %s raised at %s by %s', severity.value, alert.id, location, alert.triggered_by)
    return alert


def acknowledge(session, alert_id, actor_id, now):
    alert = get_alert(session, alert_id)
    _check(alert, A.ACKNOWLEDGED)
    alert.status = A.ACKNOWLEDGED
    alert.acknowledged_by = actor_id or 'system'
    alert.acknowledged_at = now
    session.flush()
    logger.info('alert %s acknowledged by %s', alert.id, alert.acknowledged_by)
    return alert


def resolve(session, alert_id, actor_id, now, response_notes=None):
    alert = get_alert(session, alert_id)
    _check(alert, A.RESOLVED)
    alert.status = A.RESOLVED
    alert.resolved_by = actor_id or 'system'
    alert.resolved_at = now
    alert.response_notes = response_notes
    session.flush()
    logger.info('alert %s resolved by %s', alert.id, alert.resolved_by)
    return alert


def cancel_alert(session, alert_id, actor_id, now, response_notes=None):
    alert = get_alert(session, alert_id)
    _check(alert, A.CANCELLED)
    alert.status = A.CANCELLED
    alert.cancelled_by = actor_id or 'system'
    alert.cancelled_at = now
    if response_notes:
        alert.response_notes = response_notes
    session.flush()
    return alert


def list_alerts(session, status=None, severity=None, limit=50):
    stmt = select(EmergencyAlert)
    try:
        if status:
            stmt = stmt.where(EmergencyAlert.status == A(status))
        if severity:
            stmt = stmt.where(EmergencyAlert.severity == AlertSeverity(severity))
    except ValueError as exc:
        raise ValidationError(str(exc))
    stmt = stmt.order_by(EmergencyAlert.created_at.desc(), EmergencyAlert.id.desc()).limit(limit)
    return list(session.scalars(stmt))

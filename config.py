# config.py
import os
from datetime import datetime, timezone
from zoneinfo import ZoneInfo


class Config:
    DATABASE_URL = os.environ.get('DATABASE_URL', 'sqlite:///clinic.db')
    SECRET_KEY = os.environ.get('APP_SECRET', 'dev-secret-key')
    ADMIN_TOKEN = os.environ.get('ADMIN_TOKEN', 'dev-admin-token')
    # single reference zone for every stored date/time
    CLINIC_TIMEZONE = os.environ.get('CLINIC_TIMEZONE', 'UTC')
    SLOT_MINUTES = int(os.environ.get('SLOT_MINUTES', '30'))
    AVERAGE_CONSULT_MINUTES = int(os.environ.get('AVERAGE_CONSULT_MINUTES', '15'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    SQL_ECHO = os.environ.get('SQL_ECHO', '') in ('1', 'True', 'true', 'yes')


def clinic_zone(name):
    if not name or name.upper() == 'UTC':
        return timezone.utc
    return ZoneInfo(name)


def make_clock(tz_name):
    """Return a callable giving naive wall-clock time in the clinic zone."""
    zone = clinic_zone(tz_name)

    def clinic_now():
        return datetime.now(zone).replace(tzinfo=None, microsecond=0)

    return clinic_now

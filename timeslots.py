# timeslots.py
"""Time-of-day parsing and formatting.

Times travel as zero-padded 24-hour "HH:MM" strings internally and as
"H:MM AM/PM" labels when shown to people. No timezone conversion happens
here; every value is wall-clock time in the clinic zone.
"""
import re
from datetime import date, datetime, time

from errors import ValidationError

_TIME_24H = re.compile(r'^(\d{1,2}):(\d{2})$')
_TIME_12H = re.compile(r'^(\d{1,2}):(\d{2})\s*([AaPp][Mm])$')


def parse_time(value, field='time'):
    """Parse "HH:MM" or "H:MM AM" into a datetime.time."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    text = str(value or '').strip()
    m = _TIME_24H.match(text)
    if m:
        hours, minutes = int(m.group(1)), int(m.group(2))
    else:
        m = _TIME_12H.match(text)
        if not m:
            raise ValidationError(f'invalid time {value!r}, use HH:MM', field=field)
        hours, minutes = int(m.group(1)), int(m.group(2))
        if not 1 <= hours <= 12:
            raise ValidationError(f'invalid time {value!r}', field=field)
        period = m.group(3).upper()
        hours = hours % 12 + (12 if period == 'PM' else 0)
    if hours > 23 or minutes > 59:
        raise ValidationError(f'invalid time {value!r}', field=field)
    return time(hours, minutes)


def normalize_time(value, field='time'):
    return parse_time(value, field=field).strftime('%H:%M')


def format_12h(value):
    t = parse_time(value)
    period = 'PM' if t.hour >= 12 else 'AM'
    hours12 = t.hour % 12 or 12
    return f'{hours12}:{t.minute:02d} {period}'


def parse_date(value, field='date'):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or '').strip()
    if not text:
        raise ValidationError(f'{field} is required', field=field)
    try:
        # tolerate full ISO timestamps from clients, keep day granularity
        return date.fromisoformat(text[:10])
    except ValueError:
        raise ValidationError(f'invalid {field} {value!r}, use YYYY-MM-DD', field=field)


class DoseTimes(tuple):
    """Sorted, de-duplicated daily administration times."""

    def __new__(cls, values=()):
        if isinstance(values, str):
            values = [v for v in values.split(',') if v.strip()]
        elif not isinstance(values, (list, tuple)):
            raise ValidationError('specificTimes must be a list of HH:MM times', field='specificTimes')
        parsed = sorted({parse_time(v, field='specificTimes') for v in values})
        return super().__new__(cls, parsed)

    def labels(self):
        return [t.strftime('%H:%M') for t in self]

    def serialize(self):
        return ','.join(self.labels())

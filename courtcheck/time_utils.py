from datetime import UTC, datetime

import pytz

from courtcheck.errors import ValidationError

DEFAULT_TIMEZONE = 'America/New_York'


def utcnow_naive():
    """Return current UTC timestamp as naive datetime for DB timestamp columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def resolve_timezone(name, default=DEFAULT_TIMEZONE):
    """Return a pytz zone for ``name``, using ``default`` when it is blank."""
    cleaned = str(name or '').strip() or default
    try:
        return pytz.timezone(cleaned)
    except pytz.UnknownTimeZoneError:
        raise ValidationError(f'Unknown timezone: {cleaned}')


def as_utc_naive(value):
    """Aware datetimes are converted to UTC; naive ones are assumed to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(pytz.UTC).replace(tzinfo=None)


def to_facility_local(value, tz):
    """Convert an instant to the facility's naive wall-clock time.

    Naive values are treated as wall-clock times already (blocks are authored
    that way) and are returned unchanged.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(tz).replace(tzinfo=None)


def wall_clock_to_utc(value, tz):
    """Resolve a facility wall-clock time to a naive UTC instant.

    Times skipped by a spring-forward jump are read on the pre-jump offset,
    so they land just after the jump. Times repeated at fall-back resolve to
    the first occurrence. Aware values are converted directly.
    """
    if value is None:
        return None
    if value.tzinfo is not None:
        return as_utc_naive(value)
    try:
        localized = tz.localize(value, is_dst=None)
    except pytz.NonExistentTimeError:
        localized = tz.localize(value, is_dst=False)
    except pytz.AmbiguousTimeError:
        localized = tz.localize(value, is_dst=True)
    return as_utc_naive(localized)


def facility_now(now, tz):
    """Localize ``now`` (a UTC instant, naive or aware) to facility wall-clock time."""
    if now.tzinfo is None:
        now = pytz.UTC.localize(now)
    return now.astimezone(tz).replace(tzinfo=None)


def parse_datetime(value):
    """Parse ISO-8601 strings (a trailing ``Z`` is accepted); datetimes pass through."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f'Invalid datetime: {value}')


def isoformat_or_none(value):
    return value.isoformat() if value else None

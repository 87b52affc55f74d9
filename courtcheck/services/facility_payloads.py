"""Shared payload helpers for creating Facility and CourtBlock records."""

from courtcheck.errors import ValidationError
from courtcheck.services.records import ALL_COURTS
from courtcheck.services.sports import ALLOWED_SPORTS
from courtcheck.time_utils import isoformat_or_none, parse_datetime, resolve_timezone, to_facility_local

ALLOWED_BLOCK_REASONS = {'event', 'maintenance', 'lesson', 'tournament', 'league', 'other'}

FACILITY_WRITABLE_FIELDS = [
    'name', 'address', 'city', 'latitude', 'longitude', 'timezone',
    'total_courts', 'sports',
]

_STRING_LIMITS = {
    'name': 200,
    'address': 500,
    'city': 100,
    'timezone': 64,
}


def _clean_text(value, max_len):
    if value is None:
        return ''
    text = str(value).strip()
    if len(text) > max_len:
        return text[:max_len]
    return text


def _parse_float(value):
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_int(value):
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _normalize_sports(value):
    if isinstance(value, str):
        items = value.split(',')
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        return None
    sports = []
    for item in items:
        cleaned = str(item).strip().lower()
        if cleaned and cleaned not in sports:
            sports.append(cleaned)
    return sports


def normalize_facility_payload(raw_data):
    """Return normalized facility payload and validation errors."""
    if not isinstance(raw_data, dict):
        return {}, ['Invalid JSON payload']

    errors = []
    facility_data = {}

    for field in FACILITY_WRITABLE_FIELDS:
        if field not in raw_data:
            continue
        value = raw_data.get(field)

        if field in _STRING_LIMITS:
            cleaned = _clean_text(value, _STRING_LIMITS[field])
            if field == 'timezone' and cleaned:
                try:
                    resolve_timezone(cleaned)
                except ValidationError as exc:
                    errors.append(exc.message)
                    continue
            facility_data[field] = cleaned
            continue

        if field in {'latitude', 'longitude'}:
            parsed = _parse_float(value)
            if parsed is None:
                errors.append(f'{field} must be a number.')
                continue
            if field == 'latitude' and not -90 <= parsed <= 90:
                errors.append('Latitude must be between -90 and 90.')
                continue
            if field == 'longitude' and not -180 <= parsed <= 180:
                errors.append('Longitude must be between -180 and 180.')
                continue
            facility_data[field] = parsed
            continue

        if field == 'total_courts':
            parsed = _parse_int(value)
            if parsed is None:
                errors.append('total_courts must be an integer.')
                continue
            if parsed < 1 or parsed > 100:
                errors.append('total_courts must be between 1 and 100.')
                continue
            facility_data[field] = parsed
            continue

        if field == 'sports':
            sports = _normalize_sports(value)
            if sports is None:
                errors.append('sports must be a list.')
                continue
            unknown = [s for s in sports if s not in ALLOWED_SPORTS]
            if unknown:
                allowed = ', '.join(sorted(ALLOWED_SPORTS))
                errors.append(f'sports must be drawn from: {allowed}.')
                continue
            facility_data[field] = sports

    if not facility_data.get('name') or 'latitude' not in facility_data or 'longitude' not in facility_data:
        errors.append('Name, latitude, and longitude are required')
    facility_data.setdefault('total_courts', 1)

    return facility_data, errors


def normalize_block_payload(raw_data, facility, default_timezone):
    """Return a CourtBlock payload in facility-local wall-clock time, plus errors.

    Offset-aware timestamps are converted into the facility's zone; naive
    ones are taken as already local.
    """
    if not isinstance(raw_data, dict):
        return {}, ['Invalid JSON payload']

    errors = []
    tz = resolve_timezone(facility.timezone, default=default_timezone)

    raw_court = raw_data.get('court_number', ALL_COURTS)
    court_number = None
    if raw_court is not None and str(raw_court).strip().lower() != ALL_COURTS:
        court_number = _parse_int(raw_court)
        if court_number is None or not 1 <= court_number <= facility.total_courts:
            errors.append(f'court_number must be "all" or between 1 and {facility.total_courts}.')

    try:
        start = to_facility_local(parse_datetime(raw_data.get('start_time')), tz)
        end = to_facility_local(parse_datetime(raw_data.get('end_time')), tz)
    except ValidationError as exc:
        return {}, errors + [exc.message]
    if start is None or end is None:
        errors.append('start_time and end_time are required.')
    elif start >= end:
        errors.append('start_time must be before end_time.')

    reason = _clean_text(raw_data.get('reason') or 'event', 50).lower()
    if reason not in ALLOWED_BLOCK_REASONS:
        allowed = ', '.join(sorted(ALLOWED_BLOCK_REASONS))
        errors.append(f'reason must be one of: {allowed}.')

    title = _clean_text(raw_data.get('title'), 200)
    if not title:
        errors.append('title is required.')

    return {
        'facility_id': facility.id,
        'court_number': court_number,
        'start_time': isoformat_or_none(start),
        'end_time': isoformat_or_none(end),
        'title': title,
        'reason': reason,
        'status': 'active',
    }, errors

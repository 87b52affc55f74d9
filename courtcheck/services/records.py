"""Plain records exchanged between the entity store and the check-in engine.

Store implementations hand back dicts (JSON-shaped, timestamps as ISO strings
or datetimes); ``from_dict`` turns them into immutable records the engine
can reason about.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

from courtcheck.errors import ValidationError
from courtcheck.services.sports import ALLOWED_SPORTS, SPORT_RULES
from courtcheck.time_utils import isoformat_or_none, parse_datetime

ALL_COURTS = 'all'

BLOCK_ACTIVE = 'active'
BLOCK_CANCELLED = 'cancelled'

SESSION_ACTIVE = 'active'
SESSION_WAITING = 'waiting'
SESSION_COMPLETED = 'completed'
LIVE_STATUSES = frozenset({SESSION_ACTIVE, SESSION_WAITING})

MODE_NEW = 'new'
MODE_JOIN_GROUP = 'join_group'
MODE_POOLED = 'pooled'
ALLOWED_MODES = {MODE_NEW, MODE_JOIN_GROUP, MODE_POOLED}


def _parse_court_number(value, allow_all=False):
    if value is None or value == '':
        return None
    if allow_all and str(value).strip().lower() == ALL_COURTS:
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid court number: {value}')
    if number < 1:
        raise ValidationError(f'Invalid court number: {value}')
    return number


def _parse_float(value, name):
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be a number.')


def _parse_sports(raw):
    if not raw:
        return tuple(sorted(ALLOWED_SPORTS))
    if isinstance(raw, str):
        items = raw.split(',')
    else:
        items = list(raw)
    sports = tuple(item.strip().lower() for item in items if str(item).strip())
    return sports or tuple(sorted(ALLOWED_SPORTS))


@dataclass(frozen=True)
class FacilityRecord:
    id: int
    name: str
    latitude: float
    longitude: float
    total_courts: int
    timezone: str = ''
    sports: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.total_courts is None or self.total_courts < 1:
            raise ValidationError(f'Facility {self.id} must have at least one court.')

    @property
    def court_numbers(self):
        return range(1, self.total_courts + 1)

    @classmethod
    def from_dict(cls, data):
        if data.get('latitude') is None or data.get('longitude') is None:
            raise ValidationError(f'Facility {data.get("id")} has no coordinates.')
        try:
            total = int(data.get('total_courts') or 0)
        except (TypeError, ValueError):
            raise ValidationError('total_courts must be an integer.')
        return cls(
            id=data.get('id'),
            name=data.get('name') or '',
            latitude=_parse_float(data.get('latitude'), 'latitude'),
            longitude=_parse_float(data.get('longitude'), 'longitude'),
            total_courts=total,
            timezone=data.get('timezone') or '',
            sports=_parse_sports(data.get('sports')),
        )


@dataclass(frozen=True)
class BlockRecord:
    """A scheduled reservation. ``court_number`` of None means every court."""
    id: int
    facility_id: int
    start_time: datetime
    end_time: datetime
    court_number: Optional[int] = None
    title: str = ''
    reason: str = ''
    status: str = BLOCK_ACTIVE

    def __post_init__(self):
        if self.start_time is None or self.end_time is None:
            raise ValidationError(f'Block {self.id} needs a start and end time.')
        if self.start_time >= self.end_time:
            raise ValidationError(f'Block {self.id} must start before it ends.')

    @property
    def covers_all(self):
        return self.court_number is None

    @property
    def is_cancelled(self):
        return self.status == BLOCK_CANCELLED

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data.get('id'),
            facility_id=data.get('facility_id'),
            court_number=_parse_court_number(data.get('court_number'), allow_all=True),
            start_time=parse_datetime(data.get('start_time')),
            end_time=parse_datetime(data.get('end_time')),
            title=data.get('title') or '',
            reason=data.get('reason') or '',
            status=data.get('status') or BLOCK_ACTIVE,
        )

    def to_dict(self):
        return {
            'id': self.id, 'facility_id': self.facility_id,
            'court_number': self.court_number if self.court_number is not None else ALL_COURTS,
            'start_time': isoformat_or_none(self.start_time),
            'end_time': isoformat_or_none(self.end_time),
            'title': self.title, 'reason': self.reason, 'status': self.status,
        }


@dataclass(frozen=True)
class SessionRecord:
    id: Optional[int]
    facility_id: int
    player_id: int
    sport: str
    status: str
    start_time: datetime
    estimated_end_time: Optional[datetime] = None
    court_number: Optional[int] = None
    player_name: str = ''
    play_type: str = ''
    group_id: Optional[str] = None
    is_organizer: bool = False
    actual_end_time: Optional[datetime] = None

    @property
    def is_live(self):
        return self.status in LIVE_STATUSES

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data.get('id'),
            facility_id=data.get('facility_id'),
            player_id=data.get('player_id'),
            player_name=data.get('player_name') or '',
            court_number=_parse_court_number(data.get('court_number')),
            sport=data.get('sport') or '',
            play_type=data.get('play_type') or '',
            status=data.get('status') or SESSION_ACTIVE,
            start_time=parse_datetime(data.get('start_time')),
            estimated_end_time=parse_datetime(data.get('estimated_end_time')),
            actual_end_time=parse_datetime(data.get('actual_end_time')),
            group_id=data.get('group_id'),
            is_organizer=bool(data.get('is_organizer')),
        )

    def to_dict(self):
        return {
            'id': self.id, 'facility_id': self.facility_id,
            'player_id': self.player_id, 'player_name': self.player_name,
            'court_number': self.court_number, 'sport': self.sport,
            'play_type': self.play_type, 'status': self.status,
            'start_time': isoformat_or_none(self.start_time),
            'estimated_end_time': isoformat_or_none(self.estimated_end_time),
            'actual_end_time': isoformat_or_none(self.actual_end_time),
            'group_id': self.group_id, 'is_organizer': self.is_organizer,
        }


@dataclass(frozen=True)
class GpsFix:
    latitude: float
    longitude: float
    accuracy_meters: Optional[float] = None

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise ValidationError('A GPS fix is required to check in.')
        if data.get('latitude') is None or data.get('longitude') is None:
            raise ValidationError('A GPS fix is required to check in.')
        latitude = _parse_float(data.get('latitude'), 'latitude')
        longitude = _parse_float(data.get('longitude'), 'longitude')
        if not -90 <= latitude <= 90:
            raise ValidationError('Latitude must be between -90 and 90.')
        if not -180 <= longitude <= 180:
            raise ValidationError('Longitude must be between -180 and 180.')
        accuracy = data.get('accuracy_meters', data.get('accuracy'))
        accuracy = _parse_float(accuracy, 'accuracy_meters') if accuracy is not None else None
        return cls(latitude=latitude, longitude=longitude, accuracy_meters=accuracy)


@dataclass(frozen=True)
class CheckInRequest:
    player_id: int
    facility_id: int
    sport: str
    gps: GpsFix
    mode: str = MODE_NEW
    court_number: Optional[int] = None
    group_court_number: Optional[int] = None
    play_type: str = ''
    open_to: Tuple[str, ...] = field(default_factory=tuple)
    timestamp: Optional[datetime] = None

    @classmethod
    def from_payload(cls, player_id, data, gps=None):
        """Build a request from an HTTP payload; GPS is mandatory."""
        if not isinstance(data, dict):
            raise ValidationError('Invalid JSON payload')
        try:
            facility_id = int(data.get('facility_id'))
        except (TypeError, ValueError):
            raise ValidationError('Facility ID is required')

        sport = str(data.get('sport') or '').strip().lower()
        if sport not in ALLOWED_SPORTS:
            allowed = ', '.join(sorted(ALLOWED_SPORTS))
            raise ValidationError(f'sport must be one of: {allowed}.')

        court_number = _parse_court_number(data.get('court_number'))
        group_court_number = _parse_court_number(data.get('group_court_number'))

        mode = str(data.get('mode') or '').strip().lower()
        if not mode:
            if SPORT_RULES[sport].pooling_enabled:
                mode = MODE_POOLED
            elif group_court_number is not None:
                mode = MODE_JOIN_GROUP
            else:
                mode = MODE_NEW
        if mode not in ALLOWED_MODES:
            allowed = ', '.join(sorted(ALLOWED_MODES))
            raise ValidationError(f'mode must be one of: {allowed}.')

        open_to = data.get('open_to') or ()
        if not isinstance(open_to, (list, tuple)):
            raise ValidationError('open_to must be a list.')

        return cls(
            player_id=player_id,
            facility_id=facility_id,
            sport=sport,
            gps=gps or GpsFix.from_dict(data.get('gps')),
            mode=mode,
            court_number=court_number,
            group_court_number=group_court_number,
            play_type=str(data.get('play_type') or '').strip().lower()[:40],
            open_to=tuple(str(item)[:40] for item in open_to),
            timestamp=parse_datetime(data.get('timestamp')),
        )

"""Check-in admission decisions.

``evaluate_check_in`` is a pure function over a request, the facility and a
fresh ``Occupancy`` snapshot. It never raises for business-rule outcomes;
those come back as ``Deny`` or ``WarnThenAdmit`` values carrying structured
details for the caller to render. Checks run in a fixed order and stop at
the first denial:

1. geofence
2. GPS accuracy (advisory only)
3. facility fully reserved
4. event starting soon
5. court selection / capacity
"""

import logging
from dataclasses import dataclass, field
from typing import ClassVar, Mapping, Optional, Tuple

from courtcheck.errors import ValidationError
from courtcheck.services.geo import distance_to_facility
from courtcheck.services.occupancy import (
    covered_court_numbers, existing_groups, facility_zone, minutes_until_start,
)
from courtcheck.services.records import (
    MODE_JOIN_GROUP, MODE_NEW, MODE_POOLED, SESSION_ACTIVE, SESSION_WAITING,
)
from courtcheck.services.sports import rules_for
from courtcheck.time_utils import DEFAULT_TIMEZONE, as_utc_naive, isoformat_or_none

logger = logging.getLogger(__name__)

GEOFENCE_MILES = 0.25
LOW_ACCURACY_METERS = 100
IMMINENT_BLOCK_MINUTES = 30
WARNING_BLOCK_MINUTES = 120


class DenyReason:
    OUT_OF_RANGE = 'OUT_OF_RANGE'
    FACILITY_RESERVED = 'FACILITY_RESERVED'
    EVENT_STARTING_SOON = 'EVENT_STARTING_SOON'
    GROUP_NOT_FOUND = 'GROUP_NOT_FOUND'
    GROUP_FULL = 'GROUP_FULL'
    COURT_RESERVED = 'COURT_RESERVED'
    COURT_UNAVAILABLE = 'COURT_UNAVAILABLE'


class WarnReason:
    LOW_GPS_ACCURACY = 'LOW_GPS_ACCURACY'
    EVENT_SOON = 'EVENT_SOON'


@dataclass(frozen=True)
class Advisory:
    reason: str
    details: Mapping = field(default_factory=dict)

    def to_dict(self):
        return {'reason': self.reason, 'details': dict(self.details)}


@dataclass(frozen=True)
class Admit:
    decision: ClassVar[str] = 'admit'

    court_number: Optional[int]
    group_id: Optional[str] = None
    status: str = SESSION_ACTIVE
    is_organizer: bool = False

    def to_dict(self):
        return {
            'decision': self.decision,
            'court_number': self.court_number,
            'group_id': self.group_id,
            'status': self.status,
            'is_organizer': self.is_organizer,
        }


@dataclass(frozen=True)
class Deny:
    decision: ClassVar[str] = 'deny'

    reason: str
    details: Mapping = field(default_factory=dict)

    def to_dict(self):
        return {'decision': self.decision, 'reason': self.reason, 'details': dict(self.details)}


@dataclass(frozen=True)
class WarnThenAdmit:
    """An admission the caller should confirm with the player first."""
    decision: ClassVar[str] = 'warn'

    admit: Admit
    advisories: Tuple[Advisory, ...]

    @property
    def reason(self):
        return self.advisories[0].reason

    @property
    def details(self):
        return self.advisories[0].details

    def to_dict(self):
        return {
            'decision': self.decision,
            'reason': self.reason,
            'details': dict(self.details),
            'advisories': [a.to_dict() for a in self.advisories],
            'admit': self.admit.to_dict(),
        }


def _check_geofence(request, facility, geofence_miles):
    distance = distance_to_facility(request.gps, facility)
    if distance > geofence_miles:
        return Deny(DenyReason.OUT_OF_RANGE, {
            'distance_miles': round(distance, 3),
            'limit_miles': geofence_miles,
            'accuracy_meters': request.gps.accuracy_meters,
        })
    return None


def _check_gps_accuracy(request, low_accuracy_meters):
    accuracy = request.gps.accuracy_meters
    if accuracy is not None and accuracy > low_accuracy_meters:
        return Advisory(WarnReason.LOW_GPS_ACCURACY, {
            'accuracy_meters': round(accuracy),
            'limit_meters': low_accuracy_meters,
        })
    return None


def _check_fully_blocked(occupancy):
    if not occupancy.is_fully_blocked:
        return None
    # Name the block that frees the facility last; that is when play can resume.
    blocks = sorted(occupancy.active_blocks, key=lambda b: b.end_time)
    block = blocks[-1] if blocks else None
    return Deny(DenyReason.FACILITY_RESERVED, {
        'block_title': block.title if block else '',
        'block_end_time': isoformat_or_none(block.end_time) if block else None,
    })


def _block_details(block, minutes):
    return {
        'block_title': block.title,
        'block_start_time': isoformat_or_none(block.start_time),
        'court_number': block.court_number,
        'starts_in_minutes': minutes,
    }


def _target_court(request):
    if request.mode == MODE_JOIN_GROUP:
        return request.group_court_number or request.court_number
    if request.mode == MODE_NEW:
        return request.court_number
    return None


def _check_upcoming_blocks(request, facility, occupancy, now, tz):
    """Return (denial, advisory) for blocks starting within the warning window."""
    imminent = []
    warning = None
    for block in occupancy.upcoming_blocks:
        minutes = minutes_until_start(block, now, tz)
        if minutes > WARNING_BLOCK_MINUTES:
            continue
        if minutes <= IMMINENT_BLOCK_MINUTES:
            imminent.append((block, minutes))
        elif warning is None:
            warning = Advisory(WarnReason.EVENT_SOON, _block_details(block, minutes))

    if imminent:
        soon_numbers = covered_court_numbers(facility, [b for b, _ in imminent])
        if len(soon_numbers | occupancy.blocked_court_numbers) >= facility.total_courts:
            block, minutes = imminent[0]
            return Deny(DenyReason.EVENT_STARTING_SOON, _block_details(block, minutes)), None

        target = _target_court(request)
        for block, minutes in imminent:
            if target is not None and block.court_number == target:
                return Deny(DenyReason.EVENT_STARTING_SOON, _block_details(block, minutes)), None

        if warning is None:
            block, minutes = imminent[0]
            warning = Advisory(WarnReason.EVENT_SOON, _block_details(block, minutes))
    return None, warning


def _select_join_group(request, facility, occupancy, now):
    court_number = _target_court(request)
    if court_number is None:
        raise ValidationError('Select a group to join.')
    if not 1 <= court_number <= facility.total_courts:
        raise ValidationError(f'Court number must be between 1 and {facility.total_courts}.')
    if court_number in occupancy.blocked_court_numbers:
        return Deny(DenyReason.COURT_RESERVED, {'court_number': court_number})

    groups = [
        g for g in existing_groups(facility, occupancy.sessions, now)
        if g['court_number'] == court_number
    ]
    if not groups or not groups[0]['sessions']:
        return Deny(DenyReason.GROUP_NOT_FOUND, {'court_number': court_number})

    group = groups[0]
    if group['size'] >= group['capacity']:
        return Deny(DenyReason.GROUP_FULL, {
            'court_number': court_number,
            'size': group['size'],
            'capacity': group['capacity'],
        })
    group_id = group['sessions'][0].group_id or f'group_{facility.id}_{court_number}'
    return Admit(court_number=court_number, group_id=group_id)


def _select_new_court(request, facility, occupancy, now):
    court_number = request.court_number
    if court_number is None:
        raise ValidationError('Select an available court number.')
    if not 1 <= court_number <= facility.total_courts:
        raise ValidationError(f'Court number must be between 1 and {facility.total_courts}.')
    taken = occupancy.blocked_court_numbers | occupancy.occupied_court_numbers
    if court_number in taken:
        return Deny(DenyReason.COURT_UNAVAILABLE, {
            'court_number': court_number,
            'reserved': court_number in occupancy.blocked_court_numbers,
        })
    stamp = as_utc_naive(now).strftime('%Y%m%d%H%M%S')
    return Admit(
        court_number=court_number,
        group_id=f'group_{facility.id}_{stamp}_{court_number}',
        is_organizer=True,
    )


def _select_pooled_court(request, facility, occupancy, rules):
    per_court = rules.players_per_court
    max_players_without_wait = occupancy.unblocked_count * per_court
    if occupancy.players_on_court >= max_players_without_wait:
        return Admit(court_number=None, status=SESSION_WAITING)

    counts = occupancy.occupants_by_court
    for number in facility.court_numbers:
        if number in occupancy.blocked_court_numbers:
            continue
        if counts.get(number, 0) < per_court:
            return Admit(court_number=number)
    return Admit(court_number=None, status=SESSION_WAITING)


def evaluate_check_in(request, facility, occupancy, now, rules_table=None,
                      geofence_miles=GEOFENCE_MILES, low_accuracy_meters=LOW_ACCURACY_METERS,
                      default_timezone=DEFAULT_TIMEZONE):
    """Decide whether ``request`` may check in at ``facility`` right now."""
    rules = rules_for(request.sport, rules_table)
    tz = facility_zone(facility, default_timezone)

    denial = _check_geofence(request, facility, geofence_miles)
    if denial:
        logger.info('Check-in denied for player %s at facility %s: %s',
                    request.player_id, facility.id, denial.reason)
        return denial

    accuracy_advisory = _check_gps_accuracy(request, low_accuracy_meters)

    denial = _check_fully_blocked(occupancy)
    if denial:
        logger.info('Check-in denied for player %s at facility %s: %s',
                    request.player_id, facility.id, denial.reason)
        return denial

    denial, event_advisory = _check_upcoming_blocks(request, facility, occupancy, now, tz)
    if denial:
        logger.info('Check-in denied for player %s at facility %s: %s',
                    request.player_id, facility.id, denial.reason)
        return denial

    if request.mode == MODE_JOIN_GROUP:
        result = _select_join_group(request, facility, occupancy, now)
    elif request.mode == MODE_POOLED:
        result = _select_pooled_court(request, facility, occupancy, rules)
    elif request.mode == MODE_NEW:
        result = _select_new_court(request, facility, occupancy, now)
    else:
        result = Admit(court_number=request.court_number)

    if isinstance(result, Deny):
        logger.info('Check-in denied for player %s at facility %s: %s',
                    request.player_id, facility.id, result.reason)
        return result

    advisories = tuple(a for a in (event_advisory, accuracy_advisory) if a is not None)
    if advisories:
        return WarnThenAdmit(admit=result, advisories=advisories)
    return result

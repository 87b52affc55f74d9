"""Point-in-time court occupancy for a facility.

Blocks are authored in facility-local wall-clock time and sessions carry UTC
instants. Both are resolved to UTC before being compared against ``now``, so
block windows and lead times hold across daylight-saving changes. A live
session whose estimated end has passed counts as finished even if its stored
status has not been updated yet.
"""

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import FrozenSet, Tuple

from courtcheck.errors import ValidationError
from courtcheck.services.records import LIVE_STATUSES, SESSION_ACTIVE, SESSION_WAITING
from courtcheck.services.sports import group_capacity
from courtcheck.time_utils import (
    DEFAULT_TIMEZONE, as_utc_naive, facility_now, resolve_timezone, wall_clock_to_utc,
)

WARNING_HORIZON = timedelta(hours=2)
DISPLAY_HORIZON = timedelta(hours=24)

STATUS_RESERVED = 'reserved'
STATUS_OCCUPIED = 'occupied'
STATUS_AVAILABLE = 'available'


@dataclass(frozen=True)
class Occupancy:
    blocked_court_numbers: FrozenSet[int]
    occupied_court_numbers: FrozenSet[int]
    available_count: int
    is_fully_blocked: bool
    unblocked_count: int
    now_local: datetime
    active_blocks: Tuple = ()
    upcoming_blocks: Tuple = ()
    sessions: Tuple = field(default=(), repr=False)

    @property
    def players_on_court(self):
        return sum(1 for s in self.sessions if s.status == SESSION_ACTIVE)

    @property
    def players_waiting(self):
        return sum(1 for s in self.sessions if s.status == SESSION_WAITING)

    @property
    def occupants_by_court(self):
        return Counter(
            s.court_number for s in self.sessions
            if s.status == SESSION_ACTIVE and s.court_number is not None
        )

    def to_dict(self):
        return {
            'blocked_court_numbers': sorted(self.blocked_court_numbers),
            'occupied_court_numbers': sorted(self.occupied_court_numbers),
            'available_count': self.available_count,
            'unblocked_count': self.unblocked_count,
            'is_fully_blocked': self.is_fully_blocked,
            'players_on_court': self.players_on_court,
            'players_waiting': self.players_waiting,
            'active_blocks': [b.to_dict() for b in self.active_blocks],
            'upcoming_blocks': [b.to_dict() for b in self.upcoming_blocks],
        }


def facility_zone(facility, default_timezone=DEFAULT_TIMEZONE):
    return resolve_timezone(facility.timezone, default=default_timezone)


def _utc_window(block, tz):
    return wall_clock_to_utc(block.start_time, tz), wall_clock_to_utc(block.end_time, tz)


def _facility_blocks(facility, blocks):
    return [b for b in blocks if b.facility_id == facility.id and not b.is_cancelled]


def active_blocks(facility, blocks, now, default_timezone=DEFAULT_TIMEZONE):
    """Blocks whose window contains ``now`` (inclusive at both ends)."""
    tz = facility_zone(facility, default_timezone)
    now_utc = as_utc_naive(now)
    result = []
    for block in _facility_blocks(facility, blocks):
        start, end = _utc_window(block, tz)
        if start <= now_utc <= end:
            result.append(block)
    return result


def upcoming_blocks(facility, blocks, now, horizon=DISPLAY_HORIZON, default_timezone=DEFAULT_TIMEZONE):
    """Blocks starting in ``(now, now + horizon]`` of real time, earliest first."""
    tz = facility_zone(facility, default_timezone)
    now_utc = as_utc_naive(now)
    limit = now_utc + horizon
    result = []
    for block in _facility_blocks(facility, blocks):
        start, _ = _utc_window(block, tz)
        if now_utc < start <= limit:
            result.append((start, block))
    result.sort(key=lambda item: item[0])
    return [block for _, block in result]


def minutes_until_start(block, now, tz):
    start = wall_clock_to_utc(block.start_time, tz)
    return max(0, math.ceil((start - as_utc_naive(now)).total_seconds() / 60))


def covered_court_numbers(facility, blocks):
    """Court numbers touched by ``blocks``; an all-courts block covers every number."""
    numbers = set()
    for block in blocks:
        if block.covers_all:
            return set(facility.court_numbers)
        if 1 <= block.court_number <= facility.total_courts:
            numbers.add(block.court_number)
    return numbers


def live_sessions(sessions, now, facility=None, statuses=LIVE_STATUSES, sport=None):
    """Sessions still holding (or waiting for) a court at ``now``."""
    now_utc = as_utc_naive(now)
    result = []
    for session in sessions:
        if session.status not in statuses:
            continue
        if facility is not None and session.facility_id != facility.id:
            continue
        if sport and session.sport != sport:
            continue
        end = as_utc_naive(session.estimated_end_time)
        if end is not None and end <= now_utc:
            continue
        result.append(session)
    return result


def aggregate_availability(facility, now, sessions, blocks, sport=None,
                           default_timezone=DEFAULT_TIMEZONE):
    tz = facility_zone(facility, default_timezone)
    now_local = facility_now(now, tz)
    current_blocks = active_blocks(facility, blocks, now, default_timezone)
    soon = upcoming_blocks(facility, blocks, now, WARNING_HORIZON, default_timezone)
    live = live_sessions(sessions, now, facility=facility, sport=sport)

    blocked = covered_court_numbers(facility, current_blocks)
    occupied = {
        s.court_number for s in live
        if s.status == SESSION_ACTIVE and s.court_number is not None
        and 1 <= s.court_number <= facility.total_courts
    }
    taken = blocked | occupied
    return Occupancy(
        blocked_court_numbers=frozenset(blocked),
        occupied_court_numbers=frozenset(occupied),
        available_count=max(0, facility.total_courts - len(taken)),
        is_fully_blocked=len(blocked) >= facility.total_courts,
        unblocked_count=max(0, facility.total_courts - len(blocked)),
        now_local=now_local,
        active_blocks=tuple(current_blocks),
        upcoming_blocks=tuple(soon),
        sessions=tuple(live),
    )


def _check_court_number(facility, court_number):
    if court_number is None or not 1 <= court_number <= facility.total_courts:
        raise ValidationError(
            f'Court number must be between 1 and {facility.total_courts}.'
        )


def status_from_occupancy(occupancy, court_number):
    # Blocks win over sessions for display; an administrative hold overrides play.
    if court_number in occupancy.blocked_court_numbers:
        return STATUS_RESERVED
    if court_number in occupancy.occupied_court_numbers:
        return STATUS_OCCUPIED
    return STATUS_AVAILABLE


def court_status(facility, court_number, now, sessions, blocks, default_timezone=DEFAULT_TIMEZONE):
    _check_court_number(facility, court_number)
    occupancy = aggregate_availability(
        facility, now, sessions, blocks, default_timezone=default_timezone,
    )
    return status_from_occupancy(occupancy, court_number)


def court_statuses(facility, occupancy):
    return [
        {'court_number': number, 'status': status_from_occupancy(occupancy, number)}
        for number in facility.court_numbers
    ]


def existing_groups(facility, sessions, now):
    """Group live active sessions by group id, falling back to court number."""
    now_utc = as_utc_naive(now)
    groups = {}
    live = live_sessions(sessions, now, facility=facility, statuses={SESSION_ACTIVE})
    for session in live:
        if session.court_number is None:
            continue
        key = session.group_id or f'court_{session.court_number}'
        group = groups.get(key)
        if group is None:
            group = groups[key] = {
                'group_id': key,
                'court_number': session.court_number,
                'play_type': session.play_type,
                'sport': session.sport,
                'sessions': [],
                'started_at': as_utc_naive(session.start_time),
            }
        group['sessions'].append(session)
        started = as_utc_naive(session.start_time)
        if started and (group['started_at'] is None or started < group['started_at']):
            group['started_at'] = started

    result = []
    for group in groups.values():
        started = group.pop('started_at')
        elapsed = int((now_utc - started).total_seconds() // 60) if started else 0
        group['size'] = len(group['sessions'])
        group['capacity'] = group_capacity(group['play_type'], group['sport'] or 'tennis')
        group['elapsed_minutes'] = max(0, elapsed)
        result.append(group)
    result.sort(key=lambda g: (g['court_number'], g['group_id']))
    return result

"""Play session state transitions: (none) -> active|waiting -> completed.

A player holds at most one live (active or waiting) session. Starting a new
session closes every earlier one first, and those closes are persisted
before the new record is written. There is no compensating step: if the
write fails afterwards the player is left checked out everywhere and can
simply retry.
"""

import logging
import math
from datetime import timedelta

from courtcheck.errors import InfrastructureUnavailable, NotFoundError, StoreRequestError
from courtcheck.services.occupancy import live_sessions
from courtcheck.services.records import (
    LIVE_STATUSES, SESSION_ACTIVE, SESSION_COMPLETED, SESSION_WAITING, SessionRecord,
)
from courtcheck.services.sports import rules_for
from courtcheck.time_utils import as_utc_naive, isoformat_or_none

logger = logging.getLogger(__name__)

ENTITY = 'CourtSession'


def estimated_end_time(start, sport, rules_table=None):
    duration = rules_for(sport, rules_table).session_duration_minutes
    return as_utc_naive(start) + timedelta(minutes=duration)


def elapsed_minutes(session, now):
    start = as_utc_naive(session.start_time)
    if start is None:
        return 0
    return max(0, int((as_utc_naive(now) - start).total_seconds() // 60))


def estimate_wait_minutes(facility, occupancy, sessions, now, sport, court_number=None, rules_table=None):
    """Minutes a newly arriving player should expect to wait."""
    rules = rules_for(sport, rules_table)
    if rules.pooling_enabled:
        capacity = occupancy.unblocked_count * rules.players_per_court
        if occupancy.players_on_court < capacity:
            return 0
        waiting = occupancy.players_waiting
        if waiting == 0:
            return 0
        waiting_groups = math.ceil(waiting / rules.players_per_court)
        courts = max(1, occupancy.unblocked_count)
        return math.ceil(waiting_groups / courts) * rules.average_game_minutes

    playing = [
        s for s in live_sessions(sessions, now, facility=facility, statuses={SESSION_ACTIVE}, sport=sport)
        if s.estimated_end_time is not None
        and (court_number is None or s.court_number == court_number)
    ]
    if not playing:
        return 0
    soonest = min(as_utc_naive(s.estimated_end_time) for s in playing)
    return max(0, math.ceil((soonest - as_utc_naive(now)).total_seconds() / 60))


class SessionLifecycleManager:

    def __init__(self, store, rules_table=None):
        self.store = store
        self.rules_table = rules_table

    def _complete(self, session_id, now):
        return self.store.update(ENTITY, session_id, {
            'status': SESSION_COMPLETED,
            'actual_end_time': isoformat_or_none(as_utc_naive(now)),
        })

    def live_sessions_for_player(self, player_id):
        rows = []
        for status in (SESSION_ACTIVE, SESSION_WAITING):
            rows.extend(self.store.filter(ENTITY, player_id=player_id, status=status))
        return [SessionRecord.from_dict(row) for row in rows]

    def end_player_sessions(self, player_id, now):
        """Close every live session the player holds; returns the closed records."""
        closed = []
        for session in self.live_sessions_for_player(player_id):
            closed.append(SessionRecord.from_dict(self._complete(session.id, now)))
        if closed:
            logger.info('Closed %s live session(s) for player %s', len(closed), player_id)
        return closed

    def start_session(self, player, facility, court_number, sport, now, status=SESSION_ACTIVE,
                      play_type='', group_id=None, is_organizer=False, open_to=()):
        if status not in LIVE_STATUSES:
            raise ValueError(f'Cannot start a session as {status}')
        now_utc = as_utc_naive(now)
        end = estimated_end_time(now_utc, sport, self.rules_table)

        closed = self.end_player_sessions(player['id'], now_utc)

        try:
            created = self.store.create(ENTITY, {
                'facility_id': facility.id,
                'player_id': player['id'],
                'player_name': player.get('display_name') or '',
                'court_number': court_number,
                'sport': sport,
                'play_type': play_type,
                'open_to': list(open_to),
                'status': status,
                'start_time': isoformat_or_none(now_utc),
                'estimated_end_time': isoformat_or_none(end),
                'group_id': group_id,
                'is_organizer': is_organizer,
            })
        except (InfrastructureUnavailable, StoreRequestError) as exc:
            logger.error(
                'Session create failed for player %s at facility %s after closing %s session(s): %s',
                player['id'], facility.id, len(closed), exc.message,
            )
            raise InfrastructureUnavailable(
                'Check-in could not be saved. Please try again.',
                details={'closed_session_ids': [s.id for s in closed]},
                partial=bool(closed),
            ) from exc
        return SessionRecord.from_dict(created)

    def end_session(self, session_id, now):
        """Complete a session; ending one that is already completed changes nothing."""
        row = self.store.get(ENTITY, session_id)
        if row is None:
            raise NotFoundError(f'Session {session_id} not found')
        session = SessionRecord.from_dict(row)
        if session.status == SESSION_COMPLETED:
            return session
        return SessionRecord.from_dict(self._complete(session_id, now))

    def expire_stale_sessions(self, now):
        """Persist completion for live sessions whose estimated end has passed."""
        now_utc = as_utc_naive(now)
        expired = []
        for status in (SESSION_ACTIVE, SESSION_WAITING):
            for row in self.store.filter(ENTITY, status=status):
                session = SessionRecord.from_dict(row)
                end = as_utc_naive(session.estimated_end_time)
                if end is not None and end <= now_utc:
                    expired.append(SessionRecord.from_dict(self._complete(session.id, now_utc)))
        if expired:
            logger.info('Expired %s stale session(s)', len(expired))
        return expired

    def checkout_everyone(self, now, facility_id=None):
        closed = []
        for status in (SESSION_ACTIVE, SESSION_WAITING):
            criteria = {'status': status}
            if facility_id is not None:
                criteria['facility_id'] = facility_id
            for row in self.store.filter(ENTITY, **criteria):
                closed.append(SessionRecord.from_dict(self._complete(row['id'], now)))
        logger.info('Checked out %s session(s)%s', len(closed),
                    f' at facility {facility_id}' if facility_id is not None else '')
        return closed

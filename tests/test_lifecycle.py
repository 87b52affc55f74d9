"""Tests for session start/end transitions and wait estimates."""
import itertools
from datetime import datetime, timedelta

import pytest

from courtcheck.errors import InfrastructureUnavailable, NotFoundError
from courtcheck.services.lifecycle import (
    SessionLifecycleManager, elapsed_minutes, estimate_wait_minutes, estimated_end_time,
)
from courtcheck.services.occupancy import aggregate_availability
from courtcheck.services.records import FacilityRecord, SessionRecord
from courtcheck.services.store import InMemoryEntityStore
from courtcheck.time_utils import parse_datetime

NOW = datetime(2024, 6, 1, 16, 0)
PLAYER = {'id': 7, 'display_name': 'Sam Rivera'}


def _facility(facility_id=1, total_courts=4):
    return FacilityRecord(
        id=facility_id, name=f'Facility {facility_id}', latitude=35.7321, longitude=-78.8503,
        total_courts=total_courts, timezone='America/New_York',
    )


class RecordingStore(InMemoryEntityStore):
    def __init__(self, records=None):
        self.calls = []
        super().__init__(records)

    def create(self, entity, data):
        self.calls.append(('create', entity))
        return super().create(entity, data)

    def update(self, entity, record_id, data):
        self.calls.append(('update', entity))
        return super().update(entity, record_id, data)


class FailingCreateStore(InMemoryEntityStore):
    fail = False

    def create(self, entity, data):
        if self.fail:
            raise InfrastructureUnavailable('Court data is temporarily unavailable.')
        return super().create(entity, data)


def _live_count(store, player_id):
    return len(SessionLifecycleManager(store).live_sessions_for_player(player_id))


def test_estimated_end_uses_sport_duration():
    assert estimated_end_time(NOW, 'tennis') == NOW + timedelta(minutes=90)
    assert estimated_end_time(NOW, 'pickleball') == NOW + timedelta(minutes=20)
    assert estimated_end_time(NOW, 'basketball') == NOW + timedelta(minutes=60)


def test_player_never_holds_more_than_one_live_session():
    store = InMemoryEntityStore()
    manager = SessionLifecycleManager(store)
    facilities = [_facility(1), _facility(2), _facility(1)]

    for step, facility in enumerate(facilities):
        manager.start_session(PLAYER, facility, 1, 'tennis', NOW + timedelta(minutes=step))
        assert _live_count(store, PLAYER['id']) == 1

    manager.start_session(PLAYER, _facility(2), None, 'pickleball', NOW, status='waiting')
    assert _live_count(store, PLAYER['id']) == 1


def test_checking_in_elsewhere_closes_previous_session_first():
    store = RecordingStore()
    manager = SessionLifecycleManager(store)
    first = manager.start_session(PLAYER, _facility(1), 2, 'tennis', NOW)
    store.calls.clear()

    later = NOW + timedelta(minutes=30)
    second = manager.start_session(PLAYER, _facility(2), 1, 'tennis', later)

    assert store.calls == [('update', 'CourtSession'), ('create', 'CourtSession')]
    closed = SessionRecord.from_dict(store.get('CourtSession', first.id))
    assert closed.status == 'completed'
    assert closed.actual_end_time == later
    assert second.facility_id == 2
    assert second.status == 'active'


def test_start_then_end_completes_session():
    manager = SessionLifecycleManager(InMemoryEntityStore())
    session = manager.start_session(PLAYER, _facility(), 3, 'tennis', NOW)

    ended = manager.end_session(session.id, NOW)

    assert ended.status == 'completed'
    assert ended.actual_end_time >= ended.start_time


def test_start_session_records_group_and_estimate():
    manager = SessionLifecycleManager(InMemoryEntityStore())
    session = manager.start_session(
        PLAYER, _facility(), 3, 'basketball', NOW,
        play_type='full_court', group_id='group_1_x_3', is_organizer=True, open_to=('3v3',),
    )

    assert session.player_name == 'Sam Rivera'
    assert session.group_id == 'group_1_x_3'
    assert session.is_organizer is True
    assert session.estimated_end_time == NOW + timedelta(minutes=60)


def test_ending_twice_keeps_first_end_time():
    manager = SessionLifecycleManager(InMemoryEntityStore())
    session = manager.start_session(PLAYER, _facility(), 3, 'tennis', NOW)

    first = manager.end_session(session.id, NOW + timedelta(minutes=10))
    second = manager.end_session(session.id, NOW + timedelta(minutes=50))

    assert second.actual_end_time == first.actual_end_time


def test_ending_unknown_session_raises():
    manager = SessionLifecycleManager(InMemoryEntityStore())
    with pytest.raises(NotFoundError):
        manager.end_session(404, NOW)


def test_failed_create_after_close_is_partial():
    store = FailingCreateStore()
    manager = SessionLifecycleManager(store)
    first = manager.start_session(PLAYER, _facility(1), 2, 'tennis', NOW)
    store.fail = True

    with pytest.raises(InfrastructureUnavailable) as excinfo:
        manager.start_session(PLAYER, _facility(2), 1, 'tennis', NOW)

    assert excinfo.value.partial is True
    assert excinfo.value.details['closed_session_ids'] == [first.id]
    assert excinfo.value.to_dict()['retryable'] is True
    assert _live_count(store, PLAYER['id']) == 0


def test_failed_create_without_prior_session_is_not_partial():
    store = FailingCreateStore()
    store.fail = True
    manager = SessionLifecycleManager(store)

    with pytest.raises(InfrastructureUnavailable) as excinfo:
        manager.start_session(PLAYER, _facility(), 1, 'tennis', NOW)

    assert excinfo.value.partial is False


def test_expire_stale_sessions_completes_only_overdue():
    store = InMemoryEntityStore()
    manager = SessionLifecycleManager(store)
    stale = manager.start_session(PLAYER, _facility(), 1, 'pickleball', NOW - timedelta(minutes=30))
    fresh = manager.start_session({'id': 8}, _facility(), 2, 'tennis', NOW)

    expired = manager.expire_stale_sessions(NOW)

    assert [s.id for s in expired] == [stale.id]
    assert store.get('CourtSession', fresh.id)['status'] == 'active'


def test_checkout_everyone_can_target_one_facility():
    store = InMemoryEntityStore()
    manager = SessionLifecycleManager(store)
    manager.start_session({'id': 1}, _facility(1), 1, 'tennis', NOW)
    manager.start_session({'id': 2}, _facility(1), None, 'pickleball', NOW, status='waiting')
    other = manager.start_session({'id': 3}, _facility(2), 1, 'tennis', NOW)

    closed = manager.checkout_everyone(NOW, facility_id=1)

    assert len(closed) == 2
    assert store.get('CourtSession', other.id)['status'] == 'active'
    assert len(manager.checkout_everyone(NOW)) == 1


def test_elapsed_minutes_counts_whole_minutes():
    session = SessionRecord(
        id=1, facility_id=1, player_id=1, sport='tennis', status='active',
        start_time=NOW - timedelta(minutes=12, seconds=40),
    )
    assert elapsed_minutes(session, NOW) == 12


def _pickleball_sessions(count, courts, status='active'):
    ids = itertools.count(1)
    return [
        SessionRecord(
            id=next(ids), facility_id=1, player_id=n, sport='pickleball', status=status,
            court_number=(n % courts) + 1 if status == 'active' else None,
            start_time=NOW - timedelta(minutes=5),
            estimated_end_time=NOW + timedelta(minutes=15),
        )
        for n in range(count)
    ]


@pytest.mark.parametrize('courts,players', [
    (c, p) for c in (1, 2, 3, 6) for p in range(0, c * 4)
])
def test_pooled_wait_is_zero_below_capacity(courts, players):
    facility = _facility(total_courts=courts)
    sessions = _pickleball_sessions(players, courts)
    occupancy = aggregate_availability(facility, NOW, sessions, [], sport='pickleball')

    assert estimate_wait_minutes(facility, occupancy, occupancy.sessions, NOW, 'pickleball') == 0


def test_pooled_wait_grows_with_waitlist():
    facility = _facility(total_courts=2)
    sessions = _pickleball_sessions(8, 2) + _pickleball_sessions(9, 2, status='waiting')
    occupancy = aggregate_availability(facility, NOW, sessions, [], sport='pickleball')

    # 9 waiting -> 3 groups over 2 courts -> 2 rounds of 20 minutes
    assert estimate_wait_minutes(facility, occupancy, occupancy.sessions, NOW, 'pickleball') == 40


def test_court_wait_is_minutes_until_soonest_end():
    facility = _facility()
    sessions = [
        SessionRecord(
            id=1, facility_id=1, player_id=1, sport='tennis', status='active', court_number=1,
            start_time=NOW - timedelta(minutes=55),
            estimated_end_time=NOW + timedelta(minutes=35),
        ),
        SessionRecord(
            id=2, facility_id=1, player_id=2, sport='tennis', status='active', court_number=2,
            start_time=NOW - timedelta(minutes=80),
            estimated_end_time=NOW + timedelta(minutes=10),
        ),
    ]
    occupancy = aggregate_availability(facility, NOW, sessions, [], sport='tennis')

    assert estimate_wait_minutes(facility, occupancy, sessions, NOW, 'tennis') == 10
    assert estimate_wait_minutes(facility, occupancy, sessions, NOW, 'tennis', court_number=1) == 35
    assert estimate_wait_minutes(facility, occupancy, sessions, NOW, 'tennis', court_number=3) == 0


def test_session_times_round_trip_through_store():
    store = InMemoryEntityStore()
    session = SessionLifecycleManager(store).start_session(PLAYER, _facility(), 1, 'tennis', NOW)

    row = store.get('CourtSession', session.id)
    assert parse_datetime(row['start_time']) == NOW

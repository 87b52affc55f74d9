"""Tests for the snapshot -> decision -> session check-in flow."""
from datetime import datetime, timedelta

import pytest

from courtcheck.errors import NotFoundError
from courtcheck.services.admission import DenyReason, WarnReason
from courtcheck.services.checkin import CheckInService
from courtcheck.services.records import CheckInRequest, GpsFix
from courtcheck.services.store import InMemoryEntityStore

NOW = datetime(2024, 6, 1, 16, 0)
LAT, LNG = 35.7321, -78.8503
PLAYER = {'id': 7, 'display_name': 'Sam Rivera'}


@pytest.fixture
def store():
    return InMemoryEntityStore({
        'Facility': [{
            'id': 1, 'name': 'Cary Tennis Park', 'latitude': LAT, 'longitude': LNG,
            'timezone': 'America/New_York', 'total_courts': 2,
            'sports': ['tennis', 'pickleball'],
        }],
    })


def _request(court_number=1, accuracy=10, **overrides):
    data = {
        'player_id': PLAYER['id'], 'facility_id': 1, 'sport': 'tennis',
        'gps': GpsFix(LAT, LNG, accuracy), 'mode': 'new', 'court_number': court_number,
    }
    data.update(overrides)
    return CheckInRequest(**data)


def _live(store):
    return [
        row for row in store.list('CourtSession') if row['status'] in {'active', 'waiting'}
    ]


def test_admitted_check_in_writes_session(store):
    outcome = CheckInService(store).check_in(_request(), PLAYER, NOW)

    assert outcome.admitted
    assert outcome.session.court_number == 1
    assert outcome.session.is_organizer is True
    assert len(_live(store)) == 1


def test_denied_check_in_writes_nothing(store):
    store.create('CourtBlock', {
        'facility_id': 1, 'court_number': 'all', 'title': 'Club Championship',
        'start_time': '2024-06-01T08:00:00', 'end_time': '2024-06-01T18:00:00',
    })

    outcome = CheckInService(store).check_in(_request(), PLAYER, NOW)

    assert not outcome.admitted
    assert outcome.decision.reason == DenyReason.FACILITY_RESERVED
    assert store.list('CourtSession') == []


def test_warning_needs_confirmation(store):
    service = CheckInService(store)

    outcome = service.check_in(_request(accuracy=400), PLAYER, NOW)
    assert not outcome.admitted
    assert outcome.decision.reason == WarnReason.LOW_GPS_ACCURACY
    assert store.list('CourtSession') == []

    outcome = service.check_in(_request(accuracy=400), PLAYER, NOW, confirmed=True)
    assert outcome.admitted


def test_own_session_does_not_block_rechecking_same_court(store):
    service = CheckInService(store)
    first = service.check_in(_request(court_number=1), PLAYER, NOW).session

    outcome = service.check_in(_request(court_number=1), PLAYER, NOW + timedelta(minutes=5))

    assert outcome.admitted
    assert store.get('CourtSession', first.id)['status'] == 'completed'
    assert len(_live(store)) == 1


def test_other_players_still_hold_their_court(store):
    service = CheckInService(store)
    service.check_in(_request(court_number=1), {'id': 8, 'display_name': 'Ana'}, NOW)

    outcome = service.check_in(_request(court_number=1), PLAYER, NOW)

    assert outcome.decision.reason == DenyReason.COURT_UNAVAILABLE


def test_pooled_overflow_is_waitlisted(store):
    service = CheckInService(store)
    for player_id in range(100, 108):
        service.check_in(
            _request(mode='pooled', court_number=None, sport='pickleball', player_id=player_id),
            {'id': player_id}, NOW,
        )

    outcome = service.check_in(
        _request(mode='pooled', court_number=None, sport='pickleball'), PLAYER, NOW,
    )

    assert outcome.session.status == 'waiting'
    assert outcome.session.court_number is None


def test_tennis_sessions_do_not_fill_pickleball_courts(store):
    service = CheckInService(store)
    service.check_in(_request(court_number=1), {'id': 8}, NOW)

    occupancy = service.snapshot(service.load_facility(1), NOW, sport='pickleball')

    assert occupancy.players_on_court == 0


def test_unknown_facility_is_not_found(store):
    with pytest.raises(NotFoundError):
        CheckInService(store).check_in(_request(facility_id=42), PLAYER, NOW)


def test_geofence_comes_from_config(store):
    service = CheckInService.from_config(store, {'CHECKIN_GEOFENCE_MILES': 2.0})
    nearby = _request(gps=GpsFix(LAT + 0.02, LNG, 10))

    assert service.check_in(nearby, PLAYER, NOW).admitted

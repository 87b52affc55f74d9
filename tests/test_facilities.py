"""Tests for facility, availability and block endpoints."""
import json
from datetime import UTC, datetime, timedelta


def _iso(delta):
    return (datetime.now(UTC) + delta).isoformat()


def _add_facility(client, headers, **overrides):
    payload = {
        'name': 'Cary Tennis Park', 'latitude': 35.7321, 'longitude': -78.8503,
        'timezone': 'America/New_York', 'total_courts': 4, 'sports': ['tennis', 'pickleball'],
    }
    payload.update(overrides)
    return client.post('/api/facilities', json=payload, headers=headers)


def _add_block(client, headers, facility_id, court_number='all',
               starts=timedelta(hours=-1), ends=timedelta(hours=1), **overrides):
    payload = {
        'court_number': court_number, 'start_time': _iso(starts), 'end_time': _iso(ends),
        'title': 'Club Championship', 'reason': 'tournament',
    }
    payload.update(overrides)
    return client.post(f'/api/facilities/{facility_id}/blocks', json=payload, headers=headers)


def _check_in(client, headers, facility_id, court_number=1, **overrides):
    payload = {
        'facility_id': facility_id, 'sport': 'tennis', 'court_number': court_number,
        'gps': {'latitude': 35.7321, 'longitude': -78.8503, 'accuracy_meters': 10},
    }
    payload.update(overrides)
    return client.post('/api/presence/checkin', json=payload, headers=headers)


def test_add_facility_requires_admin(client, auth_headers):
    res = _add_facility(client, auth_headers)
    assert res.status_code == 403

    res = _add_facility(client, {})
    assert res.status_code == 401


def test_add_facility_validates_payload(client, admin_headers):
    res = _add_facility(client, admin_headers, total_courts=0, timezone='Nowhere/City')
    assert res.status_code == 400
    errors = json.loads(res.data)['errors']
    assert 'Unknown timezone: Nowhere/City' in errors
    assert 'total_courts must be between 1 and 100.' in errors

    res = _add_facility(client, admin_headers, sports=['curling'])
    assert res.status_code == 400


def test_list_facilities_by_distance_and_sport(client, admin_headers):
    _add_facility(client, admin_headers)
    _add_facility(client, admin_headers, name='Raleigh Community Center',
                  latitude=35.7796, longitude=-78.6382, sports=['basketball'])
    _add_facility(client, admin_headers, name='Venice Beach Courts',
                  latitude=33.9850, longitude=-118.4695, timezone='America/Los_Angeles')

    res = client.get('/api/facilities?lat=35.7321&lng=-78.8503&radius=25')
    names = [f['name'] for f in json.loads(res.data)['facilities']]
    assert names == ['Cary Tennis Park', 'Raleigh Community Center']

    res = client.get('/api/facilities?lat=35.7321&lng=-78.8503&radius=25&sport=basketball')
    names = [f['name'] for f in json.loads(res.data)['facilities']]
    assert names == ['Raleigh Community Center']


def test_new_facility_is_visible_after_cached_listing(client, admin_headers):
    assert json.loads(client.get('/api/facilities').data)['facilities'] == []

    _add_facility(client, admin_headers)

    assert len(json.loads(client.get('/api/facilities').data)['facilities']) == 1


def test_unknown_sport_filter_is_rejected(client):
    res = client.get('/api/facilities?sport=curling')
    assert res.status_code == 400


def test_facility_detail_includes_availability(client, sample_facility):
    res = client.get(f'/api/facilities/{sample_facility["id"]}')
    assert res.status_code == 200
    facility = json.loads(res.data)['facility']
    assert facility['availability']['available_count'] == 4

    res = client.get('/api/facilities/999')
    assert res.status_code == 404


def test_block_marks_court_reserved_until_cancelled(client, admin_headers, sample_facility):
    facility_id = sample_facility['id']
    res = _add_block(client, admin_headers, facility_id, court_number=2)
    assert res.status_code == 201
    block = json.loads(res.data)['block']
    assert block['court_number'] == 2

    data = json.loads(client.get(f'/api/facilities/{facility_id}/availability').data)
    assert data['availability']['blocked_court_numbers'] == [2]
    assert data['availability']['available_count'] == 3
    assert data['courts'][1] == {'court_number': 2, 'status': 'reserved'}

    res = client.post(f'/api/facilities/blocks/{block["id"]}/cancel', headers=admin_headers)
    assert json.loads(res.data)['block']['status'] == 'cancelled'

    data = json.loads(client.get(f'/api/facilities/{facility_id}/availability').data)
    assert data['availability']['blocked_court_numbers'] == []


def test_block_validation(client, admin_headers, auth_headers, sample_facility):
    facility_id = sample_facility['id']

    res = _add_block(client, admin_headers, facility_id,
                     starts=timedelta(hours=2), ends=timedelta(hours=1))
    assert res.status_code == 400

    res = _add_block(client, admin_headers, facility_id, court_number=9)
    assert res.status_code == 400

    res = _add_block(client, admin_headers, facility_id, title='')
    assert res.status_code == 400

    res = _add_block(client, auth_headers, facility_id)
    assert res.status_code == 403

    res = client.post('/api/facilities/blocks/999/cancel', headers=admin_headers)
    assert res.status_code == 404


def test_upcoming_blocks_window(client, admin_headers, sample_facility):
    facility_id = sample_facility['id']
    _add_block(client, admin_headers, facility_id, court_number=1,
               starts=timedelta(hours=3), ends=timedelta(hours=5), title='Junior Clinic')

    res = client.get(f'/api/facilities/{facility_id}/blocks/upcoming')
    assert [b['title'] for b in json.loads(res.data)['blocks']] == ['Junior Clinic']

    res = client.get(f'/api/facilities/{facility_id}/blocks/upcoming?hours=1')
    assert json.loads(res.data)['blocks'] == []

    res = client.get(f'/api/facilities/{facility_id}/blocks/upcoming?hours=0')
    assert res.status_code == 400


def test_court_status_groups_and_wait_time(client, auth_headers, sample_facility):
    facility_id = sample_facility['id']
    assert _check_in(client, auth_headers, facility_id, court_number=1,
                     play_type='doubles').status_code == 201

    res = client.get(f'/api/facilities/{facility_id}/courts/1')
    assert json.loads(res.data)['status'] == 'occupied'
    res = client.get(f'/api/facilities/{facility_id}/courts/9')
    assert res.status_code == 400

    groups = json.loads(client.get(f'/api/facilities/{facility_id}/groups').data)['groups']
    assert len(groups) == 1
    assert groups[0]['court_number'] == 1
    assert groups[0]['capacity'] == 4
    assert groups[0]['players'][0]['player_name'] == 'Test Player'
    assert groups[0]['players'][0]['elapsed_minutes'] == 0

    res = client.get(f'/api/facilities/{facility_id}/wait-time?sport=tennis&court_number=1')
    wait = json.loads(res.data)
    assert 89 <= wait['wait_minutes'] <= 90
    assert wait['players_on_court'] == 1

    res = client.get(f'/api/facilities/{facility_id}/wait-time')
    assert res.status_code == 400

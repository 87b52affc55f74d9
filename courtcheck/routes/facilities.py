from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request

from courtcheck.app import get_reference_cache, get_store
from courtcheck.auth_utils import admin_required
from courtcheck.errors import ValidationError
from courtcheck.services.cache import location_key
from courtcheck.services.checkin import CheckInService
from courtcheck.services.facility_payloads import normalize_block_payload, normalize_facility_payload
from courtcheck.services.geo import haversine_distance
from courtcheck.services.lifecycle import elapsed_minutes, estimate_wait_minutes
from courtcheck.services.occupancy import (
    DISPLAY_HORIZON, court_statuses, existing_groups, status_from_occupancy, upcoming_blocks,
)
from courtcheck.services.records import BLOCK_CANCELLED, BlockRecord, FacilityRecord
from courtcheck.services.sports import rules_for
from courtcheck.time_utils import utcnow_naive

facilities_bp = Blueprint('facilities', __name__)

_MAX_UPCOMING_HOURS = 24 * 7


def _service():
    return CheckInService.from_config(get_store(), current_app.config)


def _sport_arg():
    raw = (request.args.get('sport') or '').strip().lower()
    if not raw:
        return None
    rules_for(raw)
    return raw


def _load_nearby_facilities(lat, lng, radius, sport):
    results = []
    for row in get_store().list('Facility'):
        facility = FacilityRecord.from_dict(row)
        if sport and sport not in facility.sports:
            continue
        data = dict(row)
        if lat is not None and lng is not None:
            dist = haversine_distance(lat, lng, facility.latitude, facility.longitude)
            if dist > radius:
                continue
            data['distance'] = round(dist, 1)
        results.append(data)
    if lat is not None and lng is not None:
        results.sort(key=lambda f: f.get('distance', 9999))
    return results


@facilities_bp.route('', methods=['GET'])
def get_facilities():
    lat = request.args.get('lat', type=float)
    lng = request.args.get('lng', type=float)
    radius = request.args.get('radius', 25, type=float)
    sport = _sport_arg()

    key = location_key(f'facilities:{sport or "all"}:{radius}', lat, lng)
    facilities = get_reference_cache().get_or_load(
        key, lambda: _load_nearby_facilities(lat, lng, radius, sport)
    )
    return jsonify({'facilities': facilities})


@facilities_bp.route('', methods=['POST'])
@admin_required
def add_facility():
    data = request.get_json(silent=True) or {}
    facility_data, errors = normalize_facility_payload(data)
    if errors:
        return jsonify({'error': errors[0], 'errors': errors}), 400

    facility = get_store().create('Facility', facility_data)
    get_reference_cache().invalidate()
    return jsonify({'facility': facility}), 201


@facilities_bp.route('/<int:facility_id>', methods=['GET'])
def get_facility(facility_id):
    service = _service()
    facility = service.load_facility(facility_id)
    occupancy = service.snapshot(facility, utcnow_naive(), sport=_sport_arg())
    data = get_store().get('Facility', facility_id)
    data['availability'] = occupancy.to_dict()
    return jsonify({'facility': data})


@facilities_bp.route('/<int:facility_id>/availability', methods=['GET'])
def get_availability(facility_id):
    service = _service()
    facility = service.load_facility(facility_id)
    occupancy = service.snapshot(facility, utcnow_naive(), sport=_sport_arg())
    return jsonify({
        'facility_id': facility.id,
        'total_courts': facility.total_courts,
        'availability': occupancy.to_dict(),
        'courts': court_statuses(facility, occupancy),
    })


@facilities_bp.route('/<int:facility_id>/courts/<int:court_number>', methods=['GET'])
def get_court_status(facility_id, court_number):
    service = _service()
    facility = service.load_facility(facility_id)
    if not 1 <= court_number <= facility.total_courts:
        raise ValidationError(f'Court number must be between 1 and {facility.total_courts}.')
    occupancy = service.snapshot(facility, utcnow_naive(), sport=_sport_arg())
    return jsonify({
        'facility_id': facility.id,
        'court_number': court_number,
        'status': status_from_occupancy(occupancy, court_number),
    })


@facilities_bp.route('/<int:facility_id>/blocks/upcoming', methods=['GET'])
def get_upcoming_blocks(facility_id):
    hours = request.args.get('hours', type=float)
    horizon = DISPLAY_HORIZON
    if hours is not None:
        if hours <= 0 or hours > _MAX_UPCOMING_HOURS:
            raise ValidationError(f'hours must be between 0 and {_MAX_UPCOMING_HOURS}.')
        horizon = timedelta(hours=hours)

    service = _service()
    facility = service.load_facility(facility_id)
    blocks = upcoming_blocks(
        facility, service.load_blocks(facility), utcnow_naive(), horizon,
        default_timezone=service.default_timezone,
    )
    return jsonify({'blocks': [b.to_dict() for b in blocks]})


@facilities_bp.route('/<int:facility_id>/groups', methods=['GET'])
def get_groups(facility_id):
    service = _service()
    facility = service.load_facility(facility_id)
    now = utcnow_naive()
    groups = existing_groups(facility, service.load_sessions(facility), now)
    result = []
    for group in groups:
        members = group['sessions']
        result.append({
            **{k: v for k, v in group.items() if k != 'sessions'},
            'players': [
                {**s.to_dict(), 'elapsed_minutes': elapsed_minutes(s, now)}
                for s in members
            ],
        })
    return jsonify({'groups': result})


@facilities_bp.route('/<int:facility_id>/wait-time', methods=['GET'])
def get_wait_time(facility_id):
    sport = _sport_arg()
    if not sport:
        raise ValidationError('sport is required.')
    court_number = request.args.get('court_number', type=int)

    service = _service()
    facility = service.load_facility(facility_id)
    now = utcnow_naive()
    occupancy = service.snapshot(facility, now, sport=sport)
    minutes = estimate_wait_minutes(
        facility, occupancy, occupancy.sessions, now, sport, court_number=court_number,
    )
    return jsonify({
        'facility_id': facility.id,
        'sport': sport,
        'court_number': court_number,
        'wait_minutes': minutes,
        'players_on_court': occupancy.players_on_court,
        'players_waiting': occupancy.players_waiting,
    })


@facilities_bp.route('/<int:facility_id>/blocks', methods=['POST'])
@admin_required
def add_block(facility_id):
    service = _service()
    facility = service.load_facility(facility_id)
    block_data, errors = normalize_block_payload(
        request.get_json(silent=True), facility, service.default_timezone,
    )
    if errors:
        return jsonify({'error': errors[0], 'errors': errors}), 400

    block = BlockRecord.from_dict(get_store().create('CourtBlock', block_data))
    return jsonify({'block': block.to_dict()}), 201


@facilities_bp.route('/blocks/<int:block_id>/cancel', methods=['POST'])
@admin_required
def cancel_block(block_id):
    store = get_store()
    if store.get('CourtBlock', block_id) is None:
        return jsonify({'error': 'Block not found'}), 404
    block = store.update('CourtBlock', block_id, {'status': BLOCK_CANCELLED})
    return jsonify({'block': BlockRecord.from_dict(block).to_dict()})

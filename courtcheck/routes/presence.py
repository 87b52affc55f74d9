from flask import Blueprint, current_app, jsonify, request

from courtcheck.app import get_store, socketio
from courtcheck.auth_utils import admin_required, login_required
from courtcheck.services.checkin import CheckInService
from courtcheck.services.location import StaticLocationProvider, clamp_timeout
from courtcheck.services.records import CheckInRequest
from courtcheck.time_utils import utcnow_naive

presence_bp = Blueprint('presence', __name__)


def _broadcast_presence_update(payload):
    socketio.emit('presence_update', payload)


def _service():
    return CheckInService.from_config(get_store(), current_app.config)


def _public_player(player):
    return {'id': player['id'], 'display_name': player.get('display_name') or ''}


def _expire_if_configured(service, now):
    if not current_app.config.get('EXPIRE_SESSIONS_ON_READ', True):
        return []
    return service.lifecycle.expire_stale_sessions(now)


@presence_bp.route('/checkin', methods=['POST'])
@login_required
def check_in():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Invalid JSON payload'}), 400

    player = request.current_player
    timeout = clamp_timeout(current_app.config.get('LOCATION_TIMEOUT_SECONDS'))
    fix, location_error = StaticLocationProvider(data.get('gps')).get_fix(timeout)
    if location_error:
        return jsonify({
            'error': 'Your location is required to check in.',
            'location_error': location_error.to_dict(),
        }), 400

    check_in_request = CheckInRequest.from_payload(player['id'], data, gps=fix)
    outcome = _service().check_in(
        check_in_request, player, utcnow_naive(), confirmed=bool(data.get('confirm')),
    )
    payload = {
        'decision': outcome.decision.to_dict(),
        'availability': outcome.occupancy.to_dict(),
    }
    if outcome.decision.decision == 'deny':
        return jsonify(payload), 409
    if not outcome.admitted:
        return jsonify(payload), 202

    session = outcome.session
    _broadcast_presence_update({
        'player': _public_player(player),
        'facility_id': session.facility_id,
        'court_number': session.court_number,
        'status': session.status,
        'action': 'checkin',
    })
    payload['session'] = session.to_dict()
    return jsonify(payload), 201


@presence_bp.route('/checkout', methods=['POST'])
@login_required
def check_out():
    player = request.current_player
    closed = _service().lifecycle.end_player_sessions(player['id'], utcnow_naive())
    if not closed:
        return jsonify({'error': 'No active check-in'}), 400

    for session in closed:
        _broadcast_presence_update({
            'player': _public_player(player),
            'facility_id': session.facility_id,
            'court_number': session.court_number,
            'action': 'checkout',
        })
    return jsonify({
        'message': 'Checked out',
        'sessions': [s.to_dict() for s in closed],
    })


@presence_bp.route('/status', methods=['GET'])
@login_required
def get_my_status():
    service = _service()
    now = utcnow_naive()
    _expire_if_configured(service, now)
    live = service.lifecycle.live_sessions_for_player(request.current_player['id'])
    if not live:
        return jsonify({'checked_in': False})

    session = max(live, key=lambda s: s.start_time)
    return jsonify({'checked_in': True, 'session': session.to_dict()})


@presence_bp.route('/expire', methods=['POST'])
@admin_required
def expire_sessions():
    expired = _service().lifecycle.expire_stale_sessions(utcnow_naive())
    return jsonify({'expired': len(expired), 'sessions': [s.to_dict() for s in expired]})


@presence_bp.route('/checkout-all', methods=['POST'])
@admin_required
def checkout_all():
    data = request.get_json(silent=True) or {}
    facility_id = data.get('facility_id') if isinstance(data, dict) else None
    service = _service()
    if facility_id is not None:
        try:
            facility_id = int(facility_id)
        except (TypeError, ValueError):
            return jsonify({'error': 'Facility ID must be an integer'}), 400
        service.load_facility(facility_id)

    closed = service.lifecycle.checkout_everyone(utcnow_naive(), facility_id=facility_id)
    if closed:
        _broadcast_presence_update({
            'facility_id': facility_id,
            'action': 'checkout_all',
            'count': len(closed),
        })
    return jsonify({'checked_out': len(closed)})

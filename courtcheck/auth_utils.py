from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from flask import current_app, jsonify, request

from courtcheck.app import get_store


def generate_token(player_id):
    """Generate a JWT token for a player."""
    payload = {
        'player_id': player_id,
        'exp': datetime.now(timezone.utc) + timedelta(
            hours=current_app.config.get('JWT_EXPIRATION_HOURS', 24)
        ),
    }
    return jwt.encode(payload, current_app.config['SECRET_KEY'], algorithm='HS256')


def _normalize_bearer_token(raw_token):
    token = str(raw_token or '').strip()
    if token.startswith('Bearer '):
        token = token.split(' ', 1)[1].strip()
    return token


def _decode_player_from_token(token):
    normalized = _normalize_bearer_token(token)
    if not normalized:
        return None, 'Authentication required'
    try:
        payload = jwt.decode(
            normalized, current_app.config['SECRET_KEY'], algorithms=['HS256']
        )
    except jwt.ExpiredSignatureError:
        return None, 'Token expired'
    except jwt.InvalidTokenError:
        return None, 'Invalid token'
    player = get_store().get('Player', payload.get('player_id'))
    if not player:
        return None, 'Player not found'
    return player, None


def login_required(f):
    """Decorator to require an authenticated player on a route."""
    @wraps(f)
    def decorated(*args, **kwargs):
        player, error = _decode_player_from_token(request.headers.get('Authorization', ''))
        if error:
            return jsonify({'error': error}), 401
        request.current_player = player
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    """Decorator to require an authenticated admin player on a route."""
    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not request.current_player.get('is_admin'):
            return jsonify({'error': 'Admin access required'}), 403
        return f(*args, **kwargs)
    return decorated

import logging

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy

from courtcheck.config import config
from courtcheck.errors import CourtCheckError

db = SQLAlchemy()
socketio = SocketIO()

logger = logging.getLogger(__name__)


def _parse_allowed_origins(raw_origins):
    if not raw_origins:
        return '*'

    if isinstance(raw_origins, (list, tuple, set)):
        cleaned = [origin for origin in raw_origins if origin]
        return cleaned or '*'

    raw_text = str(raw_origins).strip()
    if not raw_text or raw_text == '*':
        return '*'

    origins = [origin.strip() for origin in raw_text.split(',') if origin.strip()]
    return origins or '*'


def _configure_logging(app):
    level = str(app.config.get('LOG_LEVEL') or 'INFO').upper()
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )
    logging.getLogger('courtcheck').setLevel(level)


def create_app(config_name='development'):
    app = Flask(__name__)
    app.config.from_object(config[config_name])
    _configure_logging(app)

    allowed_origins = _parse_allowed_origins(app.config.get('CORS_ALLOWED_ORIGINS', '*'))
    if str(config_name).strip().lower() == 'production':
        secret_key = str(app.config.get('SECRET_KEY') or '').strip()
        if not secret_key or secret_key == 'dev-secret-key-change-in-prod':
            raise RuntimeError('SECRET_KEY must be set to a non-default value in production')
        if allowed_origins == '*':
            raise RuntimeError('CORS_ALLOWED_ORIGINS must be explicitly set in production')

    db.init_app(app)
    socketio.init_app(
        app,
        cors_allowed_origins=allowed_origins,
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE', 'threading'),
    )
    CORS(app, resources={r'/api/*': {'origins': allowed_origins}})

    from courtcheck import models
    from courtcheck.services.cache import TimedCache
    from courtcheck.services.store import build_store

    app.extensions['courtcheck.store'] = build_store(app.config, db=db, models=models.ENTITY_MODELS)
    app.extensions['courtcheck.reference_cache'] = TimedCache(
        ttl_seconds=app.config.get('REFERENCE_CACHE_SECONDS', 300),
    )

    @app.errorhandler(CourtCheckError)
    def _handle_courtcheck_error(exc):
        if exc.status_code >= 500:
            logger.error('%s %s failed: %s', request.method, request.path, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    from courtcheck.routes.facilities import facilities_bp
    from courtcheck.routes.presence import presence_bp

    app.register_blueprint(facilities_bp, url_prefix='/api/facilities')
    app.register_blueprint(presence_bp, url_prefix='/api/presence')

    @app.route('/api/health')
    def health():
        return jsonify({'status': 'ok', 'store': app.config.get('STORE_BACKEND', 'sql')})

    with app.app_context():
        db.create_all()

    return app


def get_store():
    return current_app.extensions['courtcheck.store']


def get_reference_cache():
    return current_app.extensions['courtcheck.reference_cache']

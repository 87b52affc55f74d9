"""WSGI entrypoint used by Gunicorn."""
import logging
import os

from courtcheck.app import create_app, get_store
from courtcheck.config import _env_bool
from courtcheck.services.lifecycle import SessionLifecycleManager
from courtcheck.time_utils import utcnow_naive

logger = logging.getLogger(__name__)


config_name = os.environ.get('FLASK_ENV', 'production')
app = create_app(config_name)

if _env_bool('EXPIRE_SESSIONS_ON_START', False):
    with app.app_context():
        expired = SessionLifecycleManager(get_store()).expire_stale_sessions(utcnow_naive())
        logger.info('Expired %s stale session(s) on startup', len(expired))

import os

basedir = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {'1', 'true', 'yes', 'on'}


def _env_int(name, default):
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _env_float(name, default):
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _normalize_database_url(raw_url):
    if not raw_url:
        return raw_url
    if raw_url.startswith('postgres://'):
        return raw_url.replace('postgres://', 'postgresql://', 1)
    return raw_url


class BaseConfig:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-prod')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_EXPIRATION_HOURS = 24
    CORS_ALLOWED_ORIGINS = os.environ.get('CORS_ALLOWED_ORIGINS', '*')
    SOCKETIO_ASYNC_MODE = os.environ.get('SOCKETIO_ASYNC_MODE', 'threading')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    DEFAULT_FACILITY_TIMEZONE = os.environ.get('DEFAULT_FACILITY_TIMEZONE', 'America/New_York')
    CHECKIN_GEOFENCE_MILES = _env_float('CHECKIN_GEOFENCE_MILES', 0.25)
    CHECKIN_LOW_ACCURACY_METERS = _env_float('CHECKIN_LOW_ACCURACY_METERS', 100.0)
    LOCATION_TIMEOUT_SECONDS = _env_int('LOCATION_TIMEOUT_SECONDS', 20)

    # 'sql' keeps records in this app's database, 'http' talks to a hosted entity API
    STORE_BACKEND = os.environ.get('STORE_BACKEND', 'sql')
    STORE_BASE_URL = os.environ.get('STORE_BASE_URL', '')
    STORE_API_KEY = os.environ.get('STORE_API_KEY', '')
    STORE_TIMEOUT_SECONDS = _env_float('STORE_TIMEOUT_SECONDS', 10.0)
    STORE_MAX_ATTEMPTS = _env_int('STORE_MAX_ATTEMPTS', 3)
    STORE_RETRY_DELAY_SECONDS = _env_float('STORE_RETRY_DELAY_SECONDS', 1.0)
    REFERENCE_CACHE_SECONDS = _env_int('REFERENCE_CACHE_SECONDS', 300)
    EXPIRE_SESSIONS_ON_READ = _env_bool('EXPIRE_SESSIONS_ON_READ', True)


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(
        os.environ.get(
            'DATABASE_URL',
            'sqlite:///' + os.path.join(basedir, '..', 'courtcheck_dev.db')
        )
    )


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    STORE_BACKEND = 'sql'
    STORE_RETRY_DELAY_SECONDS = 0.0
    DEFAULT_FACILITY_TIMEZONE = 'America/New_York'


class ProductionConfig(BaseConfig):
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(os.environ.get('DATABASE_URL'))


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}

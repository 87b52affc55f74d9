"""Entity store boundary.

The engine only needs generic CRUD over a handful of named entities
(``Facility``, ``CourtBlock``, ``CourtSession``, ``Player``). Records cross
this boundary as JSON-shaped dicts. Three backends are provided:

* ``SqlEntityStore`` - this app's own database through Flask-SQLAlchemy.
* ``HttpEntityStore`` - a hosted entity API reached with ``requests``.
* ``InMemoryEntityStore`` - a deterministic fake for tests and tooling.

``RetryingEntityStore`` wraps any of them and retries transient failures
with linear backoff, never business errors.
"""

import copy
import itertools
import logging
import time

import requests
from sqlalchemy.exc import DBAPIError, OperationalError

from courtcheck.errors import (
    InfrastructureUnavailable, NotFoundError, StoreRequestError, TransientStoreError,
)
from courtcheck.time_utils import as_utc_naive, parse_datetime

logger = logging.getLogger(__name__)

ENTITY_NAMES = ('Player', 'Facility', 'CourtBlock', 'CourtSession')


class EntityStore:
    """Generic CRUD interface; every method returns plain dicts."""

    def list(self, entity):
        raise NotImplementedError

    def filter(self, entity, **fields):
        raise NotImplementedError

    def get(self, entity, record_id):
        raise NotImplementedError

    def create(self, entity, data):
        raise NotImplementedError

    def update(self, entity, record_id, data):
        raise NotImplementedError


def _check_entity(entity, known):
    if entity not in known:
        raise StoreRequestError(f'Unknown entity: {entity}')


class InMemoryEntityStore(EntityStore):

    def __init__(self, records=None):
        self._tables = {name: {} for name in ENTITY_NAMES}
        self._ids = itertools.count(1)
        for entity, rows in (records or {}).items():
            for row in rows:
                self.create(entity, row)

    def list(self, entity):
        _check_entity(entity, self._tables)
        return [copy.deepcopy(row) for row in self._tables[entity].values()]

    def filter(self, entity, **fields):
        return [
            row for row in self.list(entity)
            if all(row.get(key) == value for key, value in fields.items())
        ]

    def get(self, entity, record_id):
        _check_entity(entity, self._tables)
        row = self._tables[entity].get(record_id)
        return copy.deepcopy(row) if row is not None else None

    def create(self, entity, data):
        _check_entity(entity, self._tables)
        row = copy.deepcopy(data)
        if row.get('id') is None:
            row['id'] = next(self._ids)
        self._tables[entity][row['id']] = row
        return copy.deepcopy(row)

    def update(self, entity, record_id, data):
        _check_entity(entity, self._tables)
        row = self._tables[entity].get(record_id)
        if row is None:
            raise NotFoundError(f'{entity} {record_id} not found')
        row.update(copy.deepcopy(data))
        return copy.deepcopy(row)


class SqlEntityStore(EntityStore):
    """Store backed by the Flask-SQLAlchemy models; needs an app context."""

    def __init__(self, db, models):
        self.db = db
        self.models = models

    def _model(self, entity):
        _check_entity(entity, self.models)
        return self.models[entity]

    def _coerce(self, model, data):
        columns = model.__table__.columns
        values = {}
        for key, value in data.items():
            if key == 'id' or key not in columns:
                continue
            if isinstance(columns[key].type, self.db.DateTime):
                value = as_utc_naive(parse_datetime(value))
            elif isinstance(value, (list, tuple)):
                value = ','.join(str(item) for item in value)
            elif key == 'court_number' and value == 'all':
                value = None
            values[key] = value
        return values

    def _run(self, fn):
        try:
            return fn()
        except OperationalError as exc:
            self.db.session.rollback()
            raise TransientStoreError('Database unavailable', {'error': str(exc.orig)}) from exc
        except DBAPIError as exc:
            self.db.session.rollback()
            if exc.connection_invalidated:
                raise TransientStoreError('Database connection lost') from exc
            raise StoreRequestError('Database rejected the request', {'error': str(exc.orig)}) from exc

    def list(self, entity):
        model = self._model(entity)
        return self._run(lambda: [row.to_dict() for row in model.query.all()])

    def filter(self, entity, **fields):
        model = self._model(entity)
        criteria = self._coerce(model, fields)
        return self._run(lambda: [row.to_dict() for row in model.query.filter_by(**criteria).all()])

    def get(self, entity, record_id):
        model = self._model(entity)

        def _get():
            row = self.db.session.get(model, record_id)
            return row.to_dict() if row else None
        return self._run(_get)

    def create(self, entity, data):
        model = self._model(entity)

        def _create():
            row = model(**self._coerce(model, data))
            self.db.session.add(row)
            self.db.session.commit()
            return row.to_dict()
        return self._run(_create)

    def update(self, entity, record_id, data):
        model = self._model(entity)

        def _update():
            row = self.db.session.get(model, record_id)
            if not row:
                raise NotFoundError(f'{entity} {record_id} not found')
            for key, value in self._coerce(model, data).items():
                setattr(row, key, value)
            self.db.session.commit()
            return row.to_dict()
        return self._run(_update)


class HttpEntityStore(EntityStore):
    """Client for a hosted entity API (``/entities/<Entity>[/<id>]``)."""

    def __init__(self, base_url, api_key='', timeout=10.0, session=None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.http = session or requests.Session()
        if api_key:
            self.http.headers['api_key'] = api_key

    def _url(self, entity, record_id=None):
        _check_entity(entity, ENTITY_NAMES)
        url = f'{self.base_url}/entities/{entity}'
        if record_id is not None:
            url = f'{url}/{record_id}'
        return url

    def _request(self, method, url, allow_missing=False, **kwargs):
        try:
            response = self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.ConnectionError as exc:
            raise TransientStoreError('Entity store unreachable', {'error': str(exc)}) from exc
        except requests.Timeout as exc:
            # The request was sent; the store may have acted on it.
            raise TransientStoreError(
                'Entity store timed out', {'error': str(exc)}, maybe_applied=True,
            ) from exc

        if allow_missing and response.status_code == 404:
            return None
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientStoreError(
                'Entity store temporarily unavailable',
                {'status_code': response.status_code},
            )
        if response.status_code >= 400:
            raise StoreRequestError(
                'Entity store rejected the request',
                {'status_code': response.status_code},
            )
        try:
            return response.json()
        except ValueError as exc:
            raise StoreRequestError('Invalid entity store response') from exc

    def list(self, entity):
        return self._request('GET', self._url(entity)) or []

    def filter(self, entity, **fields):
        return self._request('GET', self._url(entity), params=fields) or []

    def get(self, entity, record_id):
        return self._request('GET', self._url(entity, record_id), allow_missing=True)

    def create(self, entity, data):
        return self._request('POST', self._url(entity), json=data)

    def update(self, entity, record_id, data):
        result = self._request('PUT', self._url(entity, record_id), json=data, allow_missing=True)
        if result is None:
            raise NotFoundError(f'{entity} {record_id} not found')
        return result


class RetryingEntityStore(EntityStore):
    """Retry transient store failures, then report the store as unavailable."""

    def __init__(self, inner, max_attempts=3, delay_seconds=1.0, sleep=time.sleep):
        self.inner = inner
        self.max_attempts = max(1, int(max_attempts))
        self.delay_seconds = delay_seconds
        self.sleep = sleep

    def _call(self, name, *args, **kwargs):
        method = getattr(self.inner, name)
        for attempt in range(1, self.max_attempts + 1):
            try:
                return method(*args, **kwargs)
            except TransientStoreError as exc:
                unsafe_retry = name == 'create' and exc.maybe_applied
                if attempt == self.max_attempts or unsafe_retry:
                    logger.error('Store %s failed after %s attempts: %s',
                                 name, attempt, exc.message)
                    raise InfrastructureUnavailable(
                        'Court data is temporarily unavailable. Please try again.',
                        details=exc.details,
                    ) from exc
                logger.warning('Store %s failed (attempt %s/%s): %s',
                               name, attempt, self.max_attempts, exc.message)
                self.sleep(self.delay_seconds * attempt)

    def list(self, entity):
        return self._call('list', entity)

    def filter(self, entity, **fields):
        return self._call('filter', entity, **fields)

    def get(self, entity, record_id):
        return self._call('get', entity, record_id)

    def create(self, entity, data):
        return self._call('create', entity, data)

    def update(self, entity, record_id, data):
        return self._call('update', entity, record_id, data)


def build_store(config, db=None, models=None):
    """Create the configured store, wrapped with retries."""
    backend = str(config.get('STORE_BACKEND') or 'sql').strip().lower()
    if backend == 'http':
        base_url = str(config.get('STORE_BASE_URL') or '').strip()
        if not base_url:
            raise RuntimeError('STORE_BASE_URL must be set when STORE_BACKEND=http')
        inner = HttpEntityStore(
            base_url,
            api_key=config.get('STORE_API_KEY', ''),
            timeout=config.get('STORE_TIMEOUT_SECONDS', 10.0),
        )
    elif backend == 'sql':
        inner = SqlEntityStore(db, models)
    else:
        raise RuntimeError(f'Unknown STORE_BACKEND: {backend}')
    return RetryingEntityStore(
        inner,
        max_attempts=config.get('STORE_MAX_ATTEMPTS', 3),
        delay_seconds=config.get('STORE_RETRY_DELAY_SECONDS', 1.0),
    )

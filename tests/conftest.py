import pytest
from courtcheck.app import create_app, db, get_store
from courtcheck.auth_utils import generate_token

CARY_LAT = 35.7321
CARY_LNG = -78.8503


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _headers(player_id):
    token = generate_token(player_id)
    return {'Authorization': f'Bearer {token}', 'Content-Type': 'application/json'}


@pytest.fixture
def player(app):
    return get_store().create('Player', {
        'display_name': 'Test Player', 'email': 'test@example.com',
    })


@pytest.fixture
def auth_headers(player):
    """Bearer headers for a regular player."""
    return _headers(player['id'])


@pytest.fixture
def admin_headers(app):
    admin = get_store().create('Player', {
        'display_name': 'Desk Admin', 'email': 'admin@example.com', 'is_admin': True,
    })
    return _headers(admin['id'])


@pytest.fixture
def sample_facility(app):
    """A four-court facility in Cary, NC."""
    return get_store().create('Facility', {
        'name': 'Cary Tennis Park', 'address': '2727 Cary Pkwy', 'city': 'Cary',
        'latitude': CARY_LAT, 'longitude': CARY_LNG,
        'timezone': 'America/New_York', 'total_courts': 4,
        'sports': ['tennis', 'pickleball'],
    })


@pytest.fixture
def on_site_gps():
    return {'latitude': CARY_LAT, 'longitude': CARY_LNG, 'accuracy_meters': 12}

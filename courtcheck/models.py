from courtcheck.app import db
from courtcheck.time_utils import isoformat_or_none, utcnow_naive


class Player(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    display_name = db.Column(db.String(120), nullable=False, default='')
    email = db.Column(db.String(120), unique=True, nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    def to_dict(self):
        return {
            'id': self.id, 'display_name': self.display_name,
            'email': self.email, 'is_admin': self.is_admin,
            'created_at': isoformat_or_none(self.created_at),
        }

    def to_public_dict(self):
        return {'id': self.id, 'display_name': self.display_name}


class Facility(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    address = db.Column(db.String(500), default='')
    city = db.Column(db.String(100), default='')
    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    timezone = db.Column(db.String(64), default='')  # IANA name, blank uses the configured default
    total_courts = db.Column(db.Integer, default=1, nullable=False)
    sports = db.Column(db.String(100), default='tennis')  # comma separated
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    def to_dict(self):
        return {
            'id': self.id, 'name': self.name, 'address': self.address,
            'city': self.city, 'latitude': self.latitude,
            'longitude': self.longitude, 'timezone': self.timezone,
            'total_courts': self.total_courts,
            'sports': [s for s in (self.sports or '').split(',') if s],
            'created_at': isoformat_or_none(self.created_at),
        }


class CourtBlock(db.Model):
    """Administrative reservation; times are facility-local wall clock."""
    id = db.Column(db.Integer, primary_key=True)
    facility_id = db.Column(db.Integer, db.ForeignKey('facility.id'), nullable=False)
    court_number = db.Column(db.Integer, nullable=True)  # NULL blocks every court
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)
    title = db.Column(db.String(200), default='')
    reason = db.Column(db.String(50), default='')  # event, maintenance, lesson, tournament
    status = db.Column(db.String(20), default='active')  # active, cancelled
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    facility = db.relationship('Facility', backref='blocks')

    def to_dict(self):
        return {
            'id': self.id, 'facility_id': self.facility_id,
            'court_number': self.court_number if self.court_number is not None else 'all',
            'start_time': isoformat_or_none(self.start_time),
            'end_time': isoformat_or_none(self.end_time),
            'title': self.title, 'reason': self.reason, 'status': self.status,
        }


class CourtSession(db.Model):
    """A player's hold on (or place in line for) a court; times are UTC."""
    id = db.Column(db.Integer, primary_key=True)
    facility_id = db.Column(db.Integer, db.ForeignKey('facility.id'), nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    player_name = db.Column(db.String(120), default='')
    court_number = db.Column(db.Integer, nullable=True)
    sport = db.Column(db.String(20), nullable=False)
    play_type = db.Column(db.String(40), default='')
    open_to = db.Column(db.String(400), default='')  # comma separated formats
    status = db.Column(db.String(20), default='active')  # active, waiting, completed
    start_time = db.Column(db.DateTime, default=lambda: utcnow_naive())
    estimated_end_time = db.Column(db.DateTime, nullable=True)
    actual_end_time = db.Column(db.DateTime, nullable=True)
    group_id = db.Column(db.String(120), nullable=True)
    is_organizer = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    player = db.relationship('Player', backref='court_sessions')
    facility = db.relationship('Facility', backref='court_sessions')

    __table_args__ = (
        db.Index('ix_court_session_player_status', 'player_id', 'status'),
        db.Index('ix_court_session_facility_status', 'facility_id', 'status'),
    )

    def to_dict(self):
        return {
            'id': self.id, 'facility_id': self.facility_id,
            'player_id': self.player_id, 'player_name': self.player_name,
            'court_number': self.court_number, 'sport': self.sport,
            'play_type': self.play_type,
            'open_to': [s for s in (self.open_to or '').split(',') if s],
            'status': self.status,
            'start_time': isoformat_or_none(self.start_time),
            'estimated_end_time': isoformat_or_none(self.estimated_end_time),
            'actual_end_time': isoformat_or_none(self.actual_end_time),
            'group_id': self.group_id, 'is_organizer': self.is_organizer,
        }


ENTITY_MODELS = {
    'Player': Player,
    'Facility': Facility,
    'CourtBlock': CourtBlock,
    'CourtSession': CourtSession,
}

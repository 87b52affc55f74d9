"""Check-in flow: fresh snapshot -> admission decision -> session write."""

import logging
from dataclasses import dataclass
from typing import Optional

from courtcheck.errors import NotFoundError
from courtcheck.services.admission import (
    GEOFENCE_MILES, LOW_ACCURACY_METERS, Deny, WarnThenAdmit, evaluate_check_in,
)
from courtcheck.services.lifecycle import SessionLifecycleManager
from courtcheck.services.occupancy import Occupancy, aggregate_availability
from courtcheck.services.records import (
    LIVE_STATUSES, BlockRecord, FacilityRecord, SessionRecord,
)
from courtcheck.time_utils import DEFAULT_TIMEZONE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckInOutcome:
    decision: object
    occupancy: Occupancy
    session: Optional[SessionRecord] = None

    @property
    def admitted(self):
        return self.session is not None


class CheckInService:

    def __init__(self, store, rules_table=None, geofence_miles=GEOFENCE_MILES,
                 low_accuracy_meters=LOW_ACCURACY_METERS, default_timezone=DEFAULT_TIMEZONE):
        self.store = store
        self.rules_table = rules_table
        self.geofence_miles = geofence_miles
        self.low_accuracy_meters = low_accuracy_meters
        self.default_timezone = default_timezone
        self.lifecycle = SessionLifecycleManager(store, rules_table)

    @classmethod
    def from_config(cls, store, config):
        return cls(
            store,
            geofence_miles=config.get('CHECKIN_GEOFENCE_MILES', GEOFENCE_MILES),
            low_accuracy_meters=config.get('CHECKIN_LOW_ACCURACY_METERS', LOW_ACCURACY_METERS),
            default_timezone=config.get('DEFAULT_FACILITY_TIMEZONE', DEFAULT_TIMEZONE),
        )

    def load_facility(self, facility_id):
        row = self.store.get('Facility', facility_id)
        if row is None:
            raise NotFoundError('Facility not found')
        return FacilityRecord.from_dict(row)

    def load_sessions(self, facility):
        rows = []
        for status in sorted(LIVE_STATUSES):
            rows.extend(self.store.filter('CourtSession', facility_id=facility.id, status=status))
        return [SessionRecord.from_dict(row) for row in rows]

    def load_blocks(self, facility):
        return [
            BlockRecord.from_dict(row)
            for row in self.store.filter('CourtBlock', facility_id=facility.id)
        ]

    def snapshot(self, facility, now, sport=None, exclude_player_id=None):
        """Occupancy from freshly read sessions and blocks (never cached)."""
        sessions = self.load_sessions(facility)
        if exclude_player_id is not None:
            # The requester's own sessions are about to be closed by the check-in.
            sessions = [s for s in sessions if s.player_id != exclude_player_id]
        blocks = self.load_blocks(facility)
        return aggregate_availability(
            facility, now, sessions, blocks, sport=sport,
            default_timezone=self.default_timezone,
        )

    def evaluate(self, request, now):
        facility = self.load_facility(request.facility_id)
        occupancy = self.snapshot(facility, now, sport=request.sport,
                                  exclude_player_id=request.player_id)
        decision = evaluate_check_in(
            request, facility, occupancy, now,
            rules_table=self.rules_table,
            geofence_miles=self.geofence_miles,
            low_accuracy_meters=self.low_accuracy_meters,
            default_timezone=self.default_timezone,
        )
        return facility, occupancy, decision

    def check_in(self, request, player, now, confirmed=False):
        """Evaluate and, when admitted, persist the new session.

        A ``WarnThenAdmit`` decision is only acted on when ``confirmed`` is
        set; otherwise nothing is written and the caller should ask first.
        """
        facility, occupancy, decision = self.evaluate(request, now)
        if isinstance(decision, Deny):
            return CheckInOutcome(decision=decision, occupancy=occupancy)
        if isinstance(decision, WarnThenAdmit):
            if not confirmed:
                return CheckInOutcome(decision=decision, occupancy=occupancy)
            admit = decision.admit
        else:
            admit = decision

        session = self.lifecycle.start_session(
            player, facility, admit.court_number, request.sport, now,
            status=admit.status,
            play_type=request.play_type,
            group_id=admit.group_id,
            is_organizer=admit.is_organizer,
            open_to=request.open_to,
        )
        logger.info('Player %s checked in at facility %s (court %s, %s)',
                    player['id'], facility.id, session.court_number, session.status)
        return CheckInOutcome(decision=decision, occupancy=occupancy, session=session)

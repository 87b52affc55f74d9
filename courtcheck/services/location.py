"""Location capability supplied by the caller.

Acquiring a GPS fix is I/O and lives at the edge; the engine only sees the
resulting ``GpsFix``. ``get_fix`` returns ``(fix, None)`` on success and
``(None, LocationError)`` otherwise, and does not retry.
"""

from dataclasses import dataclass

from courtcheck.errors import ValidationError
from courtcheck.services.records import GpsFix

MIN_TIMEOUT_SECONDS = 20
MAX_TIMEOUT_SECONDS = 30

PERMISSION_DENIED = 'permission_denied'
POSITION_UNAVAILABLE = 'position_unavailable'
TIMEOUT = 'timeout'


@dataclass(frozen=True)
class LocationError:
    code: str
    message: str = ''

    def to_dict(self):
        return {'code': self.code, 'message': self.message}


def clamp_timeout(seconds):
    try:
        seconds = float(seconds)
    except (TypeError, ValueError):
        seconds = MIN_TIMEOUT_SECONDS
    return min(MAX_TIMEOUT_SECONDS, max(MIN_TIMEOUT_SECONDS, seconds))


class LocationProvider:

    def get_fix(self, timeout=MIN_TIMEOUT_SECONDS):
        raise NotImplementedError


class StaticLocationProvider(LocationProvider):
    """Serves a fix the client already acquired and sent with its request."""

    def __init__(self, payload):
        self.payload = payload

    def get_fix(self, timeout=MIN_TIMEOUT_SECONDS):
        if not self.payload:
            return None, LocationError(POSITION_UNAVAILABLE, 'No location was provided.')
        if isinstance(self.payload, dict) and self.payload.get('error'):
            code = str(self.payload.get('error')).strip().lower()
            if code not in {PERMISSION_DENIED, POSITION_UNAVAILABLE, TIMEOUT}:
                code = POSITION_UNAVAILABLE
            return None, LocationError(code, str(self.payload.get('message') or ''))
        try:
            return GpsFix.from_dict(self.payload), None
        except ValidationError as exc:
            return None, LocationError(POSITION_UNAVAILABLE, exc.message)

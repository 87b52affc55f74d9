"""Exception types shared by the check-in engine and the HTTP layer.

Admission denials are not exceptions; they are ordinary results returned by
``evaluate_check_in``. These classes cover bad input and infrastructure.
"""


class CourtCheckError(Exception):
    status_code = 500

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self):
        payload = {'error': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(CourtCheckError):
    """Malformed or missing input, reported straight back to the caller."""
    status_code = 400


class NotFoundError(CourtCheckError):
    status_code = 404


class TransientStoreError(CourtCheckError):
    """A store call failed in a way that may succeed if repeated.

    ``maybe_applied`` marks a request that reached the store but got no
    answer; repeating a create in that state can write the record twice.
    """
    status_code = 503

    def __init__(self, message, details=None, maybe_applied=False):
        super().__init__(message, details=details)
        self.maybe_applied = maybe_applied


class InfrastructureUnavailable(CourtCheckError):
    """Store calls kept failing after all retries.

    ``partial`` is set when prior sessions were closed but the new session
    could not be written, so the caller can retry the check-in step alone.
    """
    status_code = 503

    def __init__(self, message, details=None, partial=False):
        super().__init__(message, details=details)
        self.partial = partial

    def to_dict(self):
        payload = super().to_dict()
        payload['retryable'] = True
        payload['partial'] = self.partial
        return payload


class StoreRequestError(CourtCheckError):
    """The store rejected a request outright; repeating it will not help."""
    status_code = 502

"""Exception hierarchy for IoT Bridge.

Registry errors carry the HTTP status so callers can branch on them: the
upsert engine treats :class:`ConflictError` as "device exists, patch it"
and the gateway reconciler treats :class:`NotFoundError` as "create the
device before binding it". Everything else raised during a phase is a
per-device failure for the error aggregator.
"""


class DeviceMigrationError(Exception):
    """Root of every error raised by IoT Bridge."""


class APIError(DeviceMigrationError):
    """A registry answered with an error status."""

    def __init__(self, message: str, status_code: int | None = None, response: dict | None = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(f"[{status_code}] {message}" if status_code else message)


class AuthenticationError(APIError):
    """401: the registry token is missing, expired or wrong."""


class AuthorizationError(APIError):
    """403: the token is valid but may not touch this registry."""


class NotFoundError(APIError):
    """404: device, gateway or registry does not exist."""


class ConflictError(APIError):
    """409: a device with this ID already exists."""


class RateLimitError(APIError):
    """429: the registry asked us to slow down.

    ``retry_after`` holds the seconds from the Retry-After header, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: dict | None = None,
        retry_after: int | None = None,
    ):
        super().__init__(message, status_code, response)
        self.retry_after = retry_after


class ServerError(APIError):
    """5xx from the registry; retried."""


class NetworkError(DeviceMigrationError):
    """The registry could not be reached (timeout, DNS, connection reset); retried."""


class StateError(DeviceMigrationError):
    """Migration state could not be read or written."""


class CheckpointError(StateError):
    """The checkpoint file is unreadable or a phase transition is invalid.

    Raised at startup for a corrupt file, so a run never continues from
    partial state it cannot trust.
    """


class ConfigurationError(DeviceMigrationError):
    """Configuration or input files are invalid or incomplete."""

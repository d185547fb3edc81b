"""
Error taxonomy shared by the reconciliation engine, the token bridge and the
API clients.

Every error carries a ``kind`` so callers can branch on the category without
parsing messages:

- NOT_FOUND: expected absence (no booking, no deal); drives branching
- CONFIGURATION: tenant has not configured something required; needs tenant action
- CREDENTIAL: token invalid or revoked; needs re-authorization
- TRANSIENT: network, timeout or 5xx; the platform's redelivery retries it
- INVARIANT: data that should be impossible; always a defect signal
- IGNORED: notification we do not act on
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    CONFIGURATION = "configuration"
    CREDENTIAL = "credential"
    TRANSIENT = "transient"
    INVARIANT = "invariant"
    IGNORED = "ignored"


# Status codes for the data endpoints
HTTP_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFIGURATION: 409,
    ErrorKind.CREDENTIAL: 401,
    ErrorKind.TRANSIENT: 502,
    ErrorKind.INVARIANT: 500,
    ErrorKind.IGNORED: 200,
}


class CalIntError(Exception):
    """Base error for all integration failures"""

    kind = ErrorKind.INVARIANT
    retryable = False

    def __init__(self, message: str, code: str = "UNEXPECTED_ERROR", details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, "kind": self.kind.value}


class NotFoundError(CalIntError):
    kind = ErrorKind.NOT_FOUND


class BookingNotRecorded(NotFoundError):
    """A cancellation for a booking whose creation has not been applied yet; redelivery retries it"""

    retryable = True

    def __init__(self, uri: Optional[str]):
        super().__init__(f"No booking recorded for {uri}", code="BOOKING_NOT_FOUND", details={"uri": uri})


class ConfigurationError(CalIntError):
    kind = ErrorKind.CONFIGURATION


class MissingMappingError(ConfigurationError):
    """The tenant has no mapping for the transition kind a notification needs"""

    def __init__(self, transition_kind: str, event_type_uri: Optional[str] = None):
        super().__init__(
            f"No '{transition_kind}' mapping configured for event type {event_type_uri}",
            code=f"NO_{transition_kind.upper()}_MAPPING_FOUND",
            details={"transition_kind": transition_kind, "event_type_uri": event_type_uri},
        )
        self.transition_kind = transition_kind


class CredentialRefreshFailed(CalIntError):
    """Refresh-token exchange failed; the principal must re-authorize"""

    kind = ErrorKind.CREDENTIAL

    def __init__(self, platform: str, message: str, revoked: bool = False, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code="CREDENTIAL_REFRESH_FAILED", details=details)
        self.platform = platform
        # True when the provider answered and rejected the grant (not a network failure)
        self.revoked = revoked


class RemoteServiceError(CalIntError):
    """A call to Pipedrive or Calendly failed"""

    def __init__(
        self,
        service: str,
        message: str,
        status_code: Optional[int] = None,
        kind: ErrorKind = ErrorKind.TRANSIENT,
        code: str = "REMOTE_SERVICE_ERROR",
    ):
        super().__init__(message, code=code, details={"service": service, "status_code": status_code})
        self.service = service
        self.status_code = status_code
        self.kind = kind
        self.retryable = kind == ErrorKind.TRANSIENT

    @classmethod
    def from_status(cls, service: str, status_code: int, message: str) -> "RemoteServiceError":
        """Classify an HTTP failure: 5xx/429 transient, 401/403 credential, 404 not-found, other 4xx defect"""
        if status_code >= 500 or status_code == 429:
            kind = ErrorKind.TRANSIENT
        elif status_code in (401, 403):
            kind = ErrorKind.CREDENTIAL
        elif status_code == 404:
            kind = ErrorKind.NOT_FOUND
        else:
            kind = ErrorKind.INVARIANT
        return cls(service, message, status_code=status_code, kind=kind)


class DataAccessError(CalIntError):
    """The local database failed; distinct from an expected absence"""

    kind = ErrorKind.TRANSIENT
    retryable = True


class InvariantViolation(CalIntError):
    kind = ErrorKind.INVARIANT


class WebhookNoFunctionTriggered(CalIntError):
    kind = ErrorKind.IGNORED

    def __init__(self, event: Optional[str]):
        super().__init__(
            f"No handler for webhook event '{event}'",
            code="WEBHOOK_NO_FUNCTION_TRIGGERED",
            details={"event": event},
        )

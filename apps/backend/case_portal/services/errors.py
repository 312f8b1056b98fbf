"""Domain error taxonomy shared by the sync and workflow services."""


class CasePortalError(Exception):
    """Base class for domain errors."""

    retryable = False

    @property
    def error_kind(self) -> str:
        return type(self).__name__


class NotFoundError(CasePortalError):
    """Raised when a referenced application or document does not exist."""


class ValidationError(CasePortalError):
    """Bad input shape or business-rule violation. Never retried."""

    def __init__(self, message: str, *, errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or {}


class InvalidTransitionError(CasePortalError):
    """Raised when a status change is not an edge of the workflow."""

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot transition application from {current} to {requested}")
        self.current = current
        self.requested = requested


class ConcurrentModificationError(CasePortalError):
    """Raised when the stored version has advanced past the one the caller read."""

    def __init__(self, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"Application was modified concurrently: expected version {expected_version}, "
            f"found {actual_version}"
        )
        self.expected_version = expected_version
        self.actual_version = actual_version


class ExternalServiceError(CasePortalError):
    """Base class for failures talking to an external DMS."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(ExternalServiceError):
    """Token acquisition failed or the DMS refused the credentials."""


class RejectedError(ExternalServiceError):
    """The DMS rejected the request (4xx other than auth)."""


class TransientNetworkError(ExternalServiceError):
    """The DMS was unreachable, timed out or returned 5xx/429."""

    retryable = True


class SyncError(CasePortalError):
    """Sync-level failure: the run could not be performed at all."""


class SyncAlreadyRunningError(SyncError):
    """Another run holds the lease for this external system."""

    def __init__(self, system: str) -> None:
        super().__init__(f"A sync run is already in progress for {system}")
        self.system = system


class SyncConnectionError(SyncError):
    """The external system could not be reached or authenticated before any item."""

    def __init__(self, system: str, cause: ExternalServiceError) -> None:
        super().__init__(f"Could not connect to {system}: {cause}")
        self.system = system
        self.cause_kind = cause.error_kind


class AuditWriteError(CasePortalError):
    """The audit record could not be written; the enclosing change is aborted."""

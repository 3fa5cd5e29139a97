"""Error taxonomy shared by the resolver, stores and sessions.

Every error carries a stable ``code`` (used by the HTTP layer to pick a status)
and a ``retryable`` flag telling the presentation layer whether offering a
retry makes sense.
"""


class EntitlementError(Exception):
    """Base error for everything raised by the entitlement core."""

    code = "entitlement_error"
    retryable = False

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class TransportError(EntitlementError):
    """Ledger or network endpoint unreachable or answered garbage."""

    code = "transport_error"
    retryable = True

    def __init__(self, message: str = "Ledger query failed", status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class InvalidIdentifierError(EntitlementError):
    """Content identifier is empty or only the no-content sentinel."""

    code = "invalid_identifier"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Invalid content identifier: {identifier!r}")


class OutOfRangeError(EntitlementError):
    """Unit index outside ``[0, total_units)``."""

    code = "out_of_range"

    def __init__(self, unit_index: int, total_units: int):
        self.unit_index = unit_index
        self.total_units = total_units
        super().__init__(
            f"Unit index {unit_index} outside [0, {total_units})"
        )


class CompletionInProgressError(EntitlementError):
    """A completion write for the same unit is already in flight."""

    code = "completion_in_progress"
    retryable = True

    def __init__(self, unit_index: int):
        self.unit_index = unit_index
        super().__init__(f"Completion of unit {unit_index} already in progress")


class OptimizedServiceUnavailableError(EntitlementError):
    """Signed URL service failed; recovered by the fallback chain."""

    code = "optimized_service_unavailable"
    retryable = True


class AllResolutionPathsExhaustedError(EntitlementError):
    """No resolution path is left for a content identifier."""

    code = "resolution_exhausted"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"No resolution path left for {identifier!r}")


class AccessDeniedError(EntitlementError):
    """Principal holds no currently valid license for the course."""

    code = "access_denied"

    def __init__(self, message: str = "A valid course license is required"):
        super().__init__(message)


class SessionNotFoundError(EntitlementError):
    """Unknown or already closed entitlement session."""

    code = "session_not_found"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")

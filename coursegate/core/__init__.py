# Core infrastructure
from coursegate.core.context import (
    clear_context,
    get_context,
    get_principal,
    get_request_id,
    get_session_id,
    set_correlation_id,
    set_principal,
    set_request_id,
    set_session_id,
)
from coursegate.core.exceptions import (
    AccessDeniedError,
    AllResolutionPathsExhaustedError,
    CompletionInProgressError,
    EntitlementError,
    InvalidIdentifierError,
    OptimizedServiceUnavailableError,
    OutOfRangeError,
    SessionNotFoundError,
    TransportError,
)
from coursegate.core.logging import configure_structlog, get_logger


__all__ = [
    "AccessDeniedError",
    "AllResolutionPathsExhaustedError",
    "CompletionInProgressError",
    "EntitlementError",
    "InvalidIdentifierError",
    "OptimizedServiceUnavailableError",
    "OutOfRangeError",
    "SessionNotFoundError",
    "TransportError",
    "clear_context",
    "configure_structlog",
    "get_context",
    "get_logger",
    "get_principal",
    "get_request_id",
    "get_session_id",
    "set_correlation_id",
    "set_principal",
    "set_request_id",
    "set_session_id",
]

"""Request and session context using contextvars.

Every log line emitted while serving a request or driving an entitlement
session picks up these values through the structlog processor chain.
"""

from contextvars import ContextVar
from typing import Any
from uuid import uuid4


request_id_var: ContextVar[str] = ContextVar("request_id", default="")
principal_var: ContextVar[str | None] = ContextVar("principal", default=None)
session_id_var: ContextVar[str | None] = ContextVar("session_id", default=None)
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid4())


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID for the current context.

    Args:
        request_id: Optional request ID. If not provided, generates a new one.

    Returns:
        The request ID that was set.
    """
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


def get_principal() -> str | None:
    """Get the principal (account address) bound to the current context."""
    return principal_var.get()


def set_principal(principal: str | None) -> None:
    principal_var.set(principal)


def get_session_id() -> str | None:
    """Get the entitlement session ID bound to the current context."""
    return session_id_var.get()


def set_session_id(session_id: str | None) -> None:
    session_id_var.set(session_id)


def get_correlation_id() -> str | None:
    """Get the current correlation ID."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str | None) -> None:
    correlation_id_var.set(correlation_id)


def get_context() -> dict[str, Any]:
    """Get all non-empty context variables as a dictionary."""
    context: dict[str, Any] = {}

    request_id = get_request_id()
    if request_id:
        context["request_id"] = request_id

    principal = get_principal()
    if principal:
        context["principal"] = principal

    session_id = get_session_id()
    if session_id:
        context["session_id"] = session_id

    correlation_id = get_correlation_id()
    if correlation_id:
        context["correlation_id"] = correlation_id

    return context


def clear_context() -> None:
    """Clear all context variables.

    Called at the end of each request to prevent context leakage between
    requests.
    """
    request_id_var.set("")
    principal_var.set(None)
    session_id_var.set(None)
    correlation_id_var.set(None)

"""FastAPI dependencies for entitlement sessions.

Provides dependency injection for:
- Session registry
- Error code to HTTP status mapping
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from coursegate.core.exceptions import EntitlementError

from .registry import SessionRegistry


async def get_session_registry(request: Request) -> SessionRegistry:
    """Get session registry from app state.

    Args:
        request: FastAPI request

    Returns:
        SessionRegistry instance
    """
    app_state = request.app.state
    if not hasattr(app_state, "session_registry") or not app_state.session_registry:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session service not available",
        )
    return app_state.session_registry


# Type alias for dependency injection
SessionRegistryDep = Annotated[SessionRegistry, Depends(get_session_registry)]


ERROR_STATUS_MAP = {
    "invalid_identifier": status.HTTP_400_BAD_REQUEST,
    "out_of_range": status.HTTP_400_BAD_REQUEST,
    "access_denied": status.HTTP_403_FORBIDDEN,
    "session_not_found": status.HTTP_404_NOT_FOUND,
    "resolution_exhausted": status.HTTP_404_NOT_FOUND,
    "completion_in_progress": status.HTTP_409_CONFLICT,
    "transport_error": status.HTTP_502_BAD_GATEWAY,
    "optimized_service_unavailable": status.HTTP_502_BAD_GATEWAY,
}


def error_status_code(error: EntitlementError) -> int:
    """HTTP status for an entitlement error (500 for unmapped codes)."""
    return ERROR_STATUS_MAP.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)


"""Entitlement session API endpoints.

Provides routes for:
- Opening and closing sessions for a course screen
- State snapshots and refresh
- Unit completion
- Media resolution with fallback advance
- WebSocket stream of state-change events

Entitlement errors propagate to the application handler, which maps the
error code to a status and keeps ``code`` and ``retryable`` in the body.
"""

import asyncio
from collections.abc import AsyncIterator

from fastapi import APIRouter, Path, WebSocket, WebSocketDisconnect, status

from coursegate.core.exceptions import SessionNotFoundError
from coursegate.core.logging import get_logger

from .dependencies import SessionRegistryDep
from .models import SessionEvent
from .schemas import (
    CompletionResponse,
    MediaResponse,
    OpenSessionRequest,
    SessionEventResponse,
    SessionStateResponse,
)


logger = get_logger(__name__)

router = APIRouter(prefix="/v1/sessions", tags=["sessions"])
ws_router = APIRouter(tags=["sessions-ws"])


# ==============================================================================
# Session Lifecycle Endpoints
# ==============================================================================


@router.post(
    "",
    response_model=SessionStateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a session",
)
async def open_session(
    data: OpenSessionRequest,
    registry: SessionRegistryDep,
) -> SessionStateResponse:
    """Open a session for a (principal, course) screen.

    Verifies the license and loads progress before answering. A principal
    without a valid license still gets a session, in ACCESS_DENIED.
    """
    session = await registry.open(data.principal, data.course_id)
    return SessionStateResponse.from_snapshot(session.get_state())


@router.get(
    "/{session_id}",
    response_model=SessionStateResponse,
    summary="Get session state",
)
async def get_session_state(
    session_id: str,
    registry: SessionRegistryDep,
) -> SessionStateResponse:
    """Current snapshot of a session."""
    session = registry.get(session_id)
    return SessionStateResponse.from_snapshot(session.get_state())


@router.post(
    "/{session_id}/refresh",
    response_model=SessionStateResponse,
    summary="Refresh license and progress",
)
async def refresh_session(
    session_id: str,
    registry: SessionRegistryDep,
) -> SessionStateResponse:
    """Re-verify the license and reload progress from the ledger."""
    session = registry.get(session_id)
    snapshot = await session.refresh()
    return SessionStateResponse.from_snapshot(snapshot)


@router.delete(
    "/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Close a session",
)
async def close_session(
    session_id: str,
    registry: SessionRegistryDep,
) -> None:
    """Tear the session down. Results of calls still in flight are dropped."""
    registry.close(session_id)


# ==============================================================================
# Completion Endpoints
# ==============================================================================


@router.post(
    "/{session_id}/units/{unit_index}/complete",
    response_model=CompletionResponse,
    summary="Mark a unit complete",
)
async def complete_unit(
    session_id: str,
    registry: SessionRegistryDep,
    unit_index: int = Path(..., description="Zero-based unit position"),
) -> CompletionResponse:
    """Record completion of a unit on the ledger.

    A failed ledger write answers 200 with ``success=false`` and
    ``retryable=true``; the unit stays available for another attempt.
    """
    session = registry.get(session_id)
    outcome = await session.request_completion(unit_index)
    return CompletionResponse.from_outcome(outcome, session.get_state())


# ==============================================================================
# Media Endpoints
# ==============================================================================


@router.get(
    "/{session_id}/units/{unit_index}/media",
    response_model=MediaResponse,
    summary="Resolve unit media",
)
async def get_unit_media(
    session_id: str,
    registry: SessionRegistryDep,
    unit_index: int = Path(..., description="Zero-based unit position"),
) -> MediaResponse:
    """Resolve the playable URL of a unit."""
    session = registry.get(session_id)
    resolved = await session.resolve_unit_media(unit_index)
    return MediaResponse.from_resolved(unit_index, resolved)


@router.post(
    "/{session_id}/units/{unit_index}/media/next",
    response_model=MediaResponse,
    summary="Advance to the next media source",
)
async def next_unit_media(
    session_id: str,
    registry: SessionRegistryDep,
    unit_index: int = Path(..., description="Zero-based unit position"),
) -> MediaResponse:
    """Report that the last URL failed to play and get the next candidate."""
    session = registry.get(session_id)
    resolved = await session.resolve_next_media(unit_index)
    return MediaResponse.from_resolved(unit_index, resolved)


# ==============================================================================
# WebSocket
# ==============================================================================


async def _forward_events(
    websocket: WebSocket, session_events: AsyncIterator[SessionEvent]
) -> None:
    async for event in session_events:
        await websocket.send_json(
            SessionEventResponse.from_event(event).model_dump(mode="json")
        )


async def _drain_client(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive_json()
        if message.get("type") == "ping":
            await websocket.send_json({"type": "pong"})


@ws_router.websocket("/ws/sessions/{session_id}")
async def session_websocket(websocket: WebSocket, session_id: str) -> None:
    """Stream state-change events of a session.

    Messages sent:
    - {"type": "state", "state": {...}} - Snapshot on connect
    - {"event": "...", "unit_index": N, "state": {...}} - Each state change

    The stream ends when the session closes or the client disconnects.
    """
    registry = getattr(websocket.app.state, "session_registry", None)
    try:
        if registry is None:
            raise SessionNotFoundError(session_id)
        session = registry.get(session_id)
    except SessionNotFoundError:
        await websocket.close(code=4004, reason="Session not found")
        return

    await websocket.accept()
    logger.info("websocket_connected", session_id=session_id)

    session_events = session.events()
    forward_task = asyncio.create_task(_forward_events(websocket, session_events))
    receive_task = asyncio.create_task(_drain_client(websocket))

    session_closed = False
    try:
        await websocket.send_json(
            {
                "type": "state",
                "state": SessionStateResponse.from_snapshot(
                    session.get_state()
                ).model_dump(mode="json"),
            }
        )
        done, _ = await asyncio.wait(
            {forward_task, receive_task}, return_when=asyncio.FIRST_COMPLETED
        )
        session_closed = forward_task in done and forward_task.exception() is None
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning(
                    "websocket_stream_error", session_id=session_id, error=str(error)
                )
    except WebSocketDisconnect:
        pass
    finally:
        for task in (forward_task, receive_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(forward_task, receive_task, return_exceptions=True)
        await session_events.aclose()
        if session_closed:
            await websocket.close()
        logger.info("websocket_disconnected", session_id=session_id)

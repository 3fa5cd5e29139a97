"""Pydantic schemas for the session API.

Request and response models for:
- Opening sessions
- State snapshots and events
- Completion requests
- Media resolution
"""

from pydantic import BaseModel, Field

from coursegate.ledger.models import ContentKind
from coursegate.resolver.models import ResolvedContent

from .models import (
    CompletionOutcome,
    SessionEvent,
    SessionPhase,
    SessionSnapshot,
    UnitState,
)


# ==============================================================================
# Request Schemas
# ==============================================================================


class OpenSessionRequest(BaseModel):
    """Request to open an entitlement session for a course screen."""

    principal: str = Field(
        ..., min_length=1, max_length=128, description="Learner account address"
    )
    course_id: int = Field(..., ge=0, description="Course identifier")


# ==============================================================================
# State Schemas
# ==============================================================================


class UnitResponse(BaseModel):
    """One content unit and its state."""

    unit_index: int
    title: str
    kind: ContentKind
    duration_seconds: int
    state: UnitState
    can_complete: bool


class SessionStateResponse(BaseModel):
    """Session snapshot."""

    session_id: str
    principal: str
    course_id: int
    phase: SessionPhase
    license_valid: bool
    units: list[UnitResponse] = []
    completed_count: int
    total_units: int
    percent_complete: int = Field(description="0-100, floored")
    version: int
    refreshing: bool = False
    last_error: str | None = None
    last_error_retryable: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> "SessionStateResponse":
        """Create response from a session snapshot."""
        return cls(
            session_id=snapshot.session_id,
            principal=snapshot.principal,
            course_id=snapshot.course_id,
            phase=snapshot.phase,
            license_valid=snapshot.license_valid,
            units=[
                UnitResponse(
                    unit_index=view.unit.unit_index,
                    title=view.unit.title,
                    kind=view.unit.kind,
                    duration_seconds=view.unit.duration_seconds,
                    state=view.state,
                    can_complete=view.can_complete,
                )
                for view in snapshot.units
            ],
            completed_count=snapshot.completed_count,
            total_units=snapshot.total_units,
            percent_complete=snapshot.percent_complete,
            version=snapshot.version,
            refreshing=snapshot.refreshing,
            last_error=snapshot.last_error,
            last_error_retryable=snapshot.last_error_retryable,
        )


class SessionEventResponse(BaseModel):
    """State-change event pushed over the WebSocket."""

    event: str
    unit_index: int | None = None
    state: SessionStateResponse

    @classmethod
    def from_event(cls, event: SessionEvent) -> "SessionEventResponse":
        return cls(
            event=event.name,
            unit_index=event.unit_index,
            state=SessionStateResponse.from_snapshot(event.snapshot),
        )


# ==============================================================================
# Completion Schemas
# ==============================================================================


class CompletionResponse(BaseModel):
    """Result of a completion request."""

    unit_index: int
    success: bool
    already_completed: bool = False
    transaction_hash: str | None = None
    error: str | None = None
    retryable: bool = False
    state: SessionStateResponse

    @classmethod
    def from_outcome(
        cls, outcome: CompletionOutcome, snapshot: SessionSnapshot
    ) -> "CompletionResponse":
        return cls(
            unit_index=outcome.unit_index,
            success=outcome.success,
            already_completed=outcome.already_completed,
            transaction_hash=outcome.receipt.transaction_hash if outcome.receipt else None,
            error=outcome.error.message if outcome.error else None,
            retryable=outcome.retryable,
            state=SessionStateResponse.from_snapshot(snapshot),
        )


# ==============================================================================
# Media Schemas
# ==============================================================================


class MediaResponse(BaseModel):
    """Playable location of a unit."""

    unit_index: int
    canonical_identifier: str
    url: str
    source_tier: str = Field(description="Optimized, FallbackGateway(n) or NoContent")
    no_content: bool = False

    @classmethod
    def from_resolved(cls, unit_index: int, resolved: ResolvedContent) -> "MediaResponse":
        return cls(
            unit_index=unit_index,
            canonical_identifier=resolved.canonical_identifier,
            url=resolved.url,
            source_tier=str(resolved.source_tier),
            no_content=resolved.is_no_content,
        )

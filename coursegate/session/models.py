"""Session state machine types.

Phases: LOADING -> {ACCESS_DENIED, READY}; CLOSED after teardown.
Units inside READY: UNLOCKED -> COMPLETING -> COMPLETED (terminal), or back
to UNLOCKED when the ledger write fails. LOCKED is reported whenever the
principal holds no valid license.
"""

from dataclasses import dataclass
from enum import Enum

from coursegate.core.exceptions import EntitlementError
from coursegate.ledger.models import ContentUnit, Receipt


class SessionPhase(str, Enum):
    LOADING = "loading"
    ACCESS_DENIED = "access_denied"
    READY = "ready"
    CLOSED = "closed"


class UnitState(str, Enum):
    LOCKED = "locked"  # no valid license
    UNLOCKED = "unlocked"  # license valid, not completed
    COMPLETING = "completing"  # completion write in flight
    COMPLETED = "completed"  # license valid, completed


@dataclass(frozen=True)
class UnitView:
    """A content unit together with its current state."""

    unit: ContentUnit
    state: UnitState

    @property
    def unit_index(self) -> int:
        return self.unit.unit_index

    @property
    def can_complete(self) -> bool:
        return self.state == UnitState.UNLOCKED


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of a session handed to the presentation layer."""

    session_id: str
    principal: str
    course_id: int
    phase: SessionPhase
    license_valid: bool
    units: tuple[UnitView, ...]
    completed_count: int
    total_units: int
    percent_complete: int
    version: int
    refreshing: bool = False
    last_error: str | None = None
    last_error_retryable: bool = False


@dataclass(frozen=True)
class SessionEvent:
    """State-change notification emitted to subscribers."""

    name: str
    snapshot: SessionSnapshot
    unit_index: int | None = None


@dataclass(frozen=True)
class CompletionOutcome:
    """Result of a completion request.

    ``already_completed`` marks the idempotent no-op path where no ledger
    write was issued.
    """

    unit_index: int
    success: bool
    already_completed: bool = False
    receipt: Receipt | None = None
    error: EntitlementError | None = None

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable

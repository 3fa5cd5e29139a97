"""Entitlement session.

The facade a presentation layer drives for one (principal, course) screen:

- ``start`` / ``refresh`` verify the license and load progress concurrently,
  then settle in READY or ACCESS_DENIED.
- ``request_completion`` moves a unit UNLOCKED -> COMPLETING -> COMPLETED,
  re-checking the license first. Local state only advances after the ledger
  write succeeds.
- ``resolve_unit_media`` turns a unit's content identifier into a URL.
- Subscribers receive a ``SessionEvent`` on every state change.
- ``close`` tears the session down; results of calls still in flight are
  discarded on arrival.
"""

import asyncio
from collections.abc import AsyncIterator, Callable, Sequence
from datetime import UTC, datetime
from uuid import uuid4

from coursegate.core.context import set_principal, set_session_id
from coursegate.core.exceptions import (
    AccessDeniedError,
    AllResolutionPathsExhaustedError,
    CompletionInProgressError,
    EntitlementError,
    OutOfRangeError,
)
from coursegate.core.logging import get_logger
from coursegate.ledger.models import ContentUnit, License, ProgressRecord
from coursegate.licenses.service import LicenseVerifier
from coursegate.progress.service import ProgressStore
from coursegate.resolver.models import ResolvedContent
from coursegate.resolver.service import ContentResolver

from .models import (
    CompletionOutcome,
    SessionEvent,
    SessionPhase,
    SessionSnapshot,
    UnitState,
    UnitView,
)


logger = get_logger(__name__)

Subscriber = Callable[[SessionEvent], None]


class EntitlementSession:
    """Per-screen state machine over license, progress and content."""

    def __init__(
        self,
        principal: str,
        course_id: int,
        units: Sequence[ContentUnit],
        *,
        verifier: LicenseVerifier,
        progress_store: ProgressStore,
        resolver: ContentResolver,
        session_id: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the session in LOADING.

        Args:
            principal: Account address of the learner.
            course_id: Course the screen shows.
            units: Published content units of the course.
            verifier: License verifier.
            progress_store: Completion bit store.
            resolver: Content resolver.
            session_id: Optional fixed id (random UUID otherwise).
            clock: Source of "now" for license expiry checks.

        Raises:
            ValueError: If unit indexes do not run 0..n-1 without gaps. Unit
                positions double as ledger section ids.
        """
        self.session_id = session_id or str(uuid4())
        self.principal = principal
        self.course_id = course_id
        self.units = tuple(sorted(units, key=lambda unit: unit.unit_index))
        if [unit.unit_index for unit in self.units] != list(range(len(self.units))):
            raise ValueError(
                f"Unit indexes of course {course_id} must run 0..n-1 without gaps"
            )
        self.verifier = verifier
        self.progress_store = progress_store
        self.resolver = resolver
        self._clock = clock or (lambda: datetime.now(UTC))

        self._phase = SessionPhase.LOADING
        self._license: License | None = None
        self._license_valid = False
        self._progress = ProgressRecord.zeroed(principal, course_id)
        self._unit_states = dict.fromkeys(range(len(self.units)), UnitState.LOCKED)
        self._media: dict[int, ResolvedContent] = {}
        self._refreshing = False
        self._last_error: str | None = None
        self._last_error_retryable = False

        self._version = 0
        self._generation = 0
        self._subscribers: list[Subscriber] = []
        self._queues: list[asyncio.Queue[SessionEvent | None]] = []

    # ==========================================================================
    # State inspection
    # ==========================================================================

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def is_closed(self) -> bool:
        return self._phase == SessionPhase.CLOSED

    def unit_state(self, unit_index: int) -> UnitState:
        self._check_index(unit_index)
        return self._unit_states[unit_index]

    def get_state(self) -> SessionSnapshot:
        """Snapshot of the current state."""
        total = len(self.units)
        completed = sum(
            1 for state in self._unit_states.values() if state == UnitState.COMPLETED
        )
        return SessionSnapshot(
            session_id=self.session_id,
            principal=self.principal,
            course_id=self.course_id,
            phase=self._phase,
            license_valid=self._license_valid,
            units=tuple(
                UnitView(unit=unit, state=self._unit_states[position])
                for position, unit in enumerate(self.units)
            ),
            completed_count=completed,
            total_units=total,
            percent_complete=completed * 100 // total if total else 0,
            version=self._version,
            refreshing=self._refreshing,
            last_error=self._last_error,
            last_error_retryable=self._last_error_retryable,
        )

    # ==========================================================================
    # Observers
    # ==========================================================================

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a state-change callback.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def events(self) -> AsyncIterator[SessionEvent]:
        """Stream state-change events until the session closes."""
        queue: asyncio.Queue[SessionEvent | None] = asyncio.Queue()
        self._queues.append(queue)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    def _emit(self, name: str, unit_index: int | None = None) -> None:
        self._version += 1
        event = SessionEvent(name=name, snapshot=self.get_state(), unit_index=unit_index)

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.warning(
                    "session_subscriber_failed",
                    session_id=self.session_id,
                    event=name,
                    error=str(e),
                )
        for queue in self._queues:
            queue.put_nowait(event)

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation or self.is_closed

    def _bind_context(self) -> None:
        set_session_id(self.session_id)
        set_principal(self.principal)

    # ==========================================================================
    # Loading / refresh
    # ==========================================================================

    async def start(self) -> SessionSnapshot:
        """Run the initial license + progress load."""
        return await self._load("session_ready")

    async def refresh(self) -> SessionSnapshot:
        """Re-run the load to reconcile with external changes.

        A session already in READY stays in READY while the refresh runs, so
        content that is playing is not interrupted.
        """
        return await self._load("session_refreshed")

    async def _load(self, event_name: str) -> SessionSnapshot:
        if self.is_closed:
            return self.get_state()

        self._bind_context()
        generation = self._generation

        if self._phase == SessionPhase.READY:
            self._refreshing = True
        else:
            self._phase = SessionPhase.LOADING
        self._emit("session_loading")

        verification, progress = await asyncio.gather(
            self.verifier.verify(self.principal, self.course_id),
            self.progress_store.get_progress(
                self.principal, self.course_id, total_units=len(self.units)
            ),
        )

        if self._is_stale(generation):
            logger.debug("stale_load_discarded", session_id=self.session_id)
            return self.get_state()

        self._refreshing = False
        self._license = verification.license
        self._license_valid = verification.valid
        self._progress = progress

        if verification.error is not None:
            self._last_error = verification.error.message
            self._last_error_retryable = True
        else:
            self._last_error = None
            self._last_error_retryable = False

        if not verification.valid:
            self._deny()
            logger.info(
                "session_access_denied",
                session_id=self.session_id,
                course_id=self.course_id,
                recoverable=verification.recoverable,
            )
            self._emit("access_denied")
            return self.get_state()

        self._phase = SessionPhase.READY
        for position in range(len(self.units)):
            current = self._unit_states[position]
            if current == UnitState.COMPLETED or progress.is_completed(position):
                self._unit_states[position] = UnitState.COMPLETED
            elif current == UnitState.COMPLETING:
                continue
            else:
                self._unit_states[position] = UnitState.UNLOCKED

        logger.info(
            event_name,
            session_id=self.session_id,
            course_id=self.course_id,
            completed=progress.completed_count,
            total_units=len(self.units),
        )
        self._emit(event_name)
        return self.get_state()

    def _deny(self) -> None:
        self._phase = SessionPhase.ACCESS_DENIED
        self._license_valid = False
        self._media.clear()
        for position, state in self._unit_states.items():
            if state != UnitState.COMPLETING:
                self._unit_states[position] = UnitState.LOCKED

    def _check_index(self, unit_index: int) -> None:
        if not 0 <= unit_index < len(self.units):
            raise OutOfRangeError(unit_index, len(self.units))

    def _require_access(self) -> None:
        """Raise unless READY with a license that has not expired since loading."""
        if self._phase != SessionPhase.READY or not self._license_valid:
            raise AccessDeniedError
        if self._license is not None and not self._license.is_valid(self._clock()):
            self._deny()
            self._emit("license_expired")
            raise AccessDeniedError("Course license expired")

    # ==========================================================================
    # Completion
    # ==========================================================================

    async def request_completion(self, unit_index: int) -> CompletionOutcome:
        """Mark a unit complete.

        Raises:
            OutOfRangeError: Unknown unit index.
            AccessDeniedError: No valid license (checked again before writing).
            CompletionInProgressError: A write for this unit is in flight.
        """
        self._check_index(unit_index)
        self._require_access()

        state = self._unit_states[unit_index]
        if state == UnitState.COMPLETED:
            return CompletionOutcome(
                unit_index=unit_index, success=True, already_completed=True
            )
        if state == UnitState.COMPLETING:
            raise CompletionInProgressError(unit_index)

        # Claimed before the first await so a concurrent request sees it
        self._unit_states[unit_index] = UnitState.COMPLETING
        self._emit("completion_started", unit_index)
        self._bind_context()
        generation = self._generation
        committed = False

        try:
            verification = await self.verifier.verify(self.principal, self.course_id)
            if self._is_stale(generation):
                return CompletionOutcome(
                    unit_index=unit_index,
                    success=False,
                    error=AccessDeniedError("Session closed"),
                )

            if not verification.valid:
                if verification.error is not None:
                    return self._completion_failed(unit_index, verification.error)
                self._license = verification.license
                self._deny()
                self._emit("access_denied", unit_index)
                raise AccessDeniedError

            # Keep the renewed expiry for later access checks
            self._license = verification.license

            result = await self.progress_store.mark_complete(
                self.principal,
                self.course_id,
                unit_index,
                total_units=len(self.units),
            )
            if self._is_stale(generation):
                return CompletionOutcome(
                    unit_index=unit_index,
                    success=result.success,
                    receipt=result.receipt,
                    error=result.error,
                )

            if not result.success:
                return self._completion_failed(unit_index, result.error)

            committed = True
            if unit_index < self._progress.total_units:
                self._progress = self._progress.with_completed(unit_index)
            if self._phase != SessionPhase.READY:
                # Access was lost during the write; a later load shows the bit
                self._unit_states[unit_index] = UnitState.LOCKED
                self._emit("completion_recorded", unit_index)
                return CompletionOutcome(
                    unit_index=unit_index, success=True, receipt=result.receipt
                )

            self._unit_states[unit_index] = UnitState.COMPLETED
            self._last_error = None
            self._last_error_retryable = False
            self._emit("unit_completed", unit_index)
            return CompletionOutcome(
                unit_index=unit_index, success=True, receipt=result.receipt
            )
        finally:
            if (
                not committed
                and not self._is_stale(generation)
                and self._unit_states.get(unit_index) == UnitState.COMPLETING
            ):
                self._unit_states[unit_index] = (
                    UnitState.UNLOCKED
                    if self._phase == SessionPhase.READY
                    else UnitState.LOCKED
                )
                self._emit("completion_reverted", unit_index)

    def _completion_failed(
        self, unit_index: int, error: EntitlementError | None
    ) -> CompletionOutcome:
        self._last_error = error.message if error else "Completion failed"
        self._last_error_retryable = True
        logger.warning(
            "completion_failed",
            session_id=self.session_id,
            unit_index=unit_index,
            error=self._last_error,
        )
        return CompletionOutcome(unit_index=unit_index, success=False, error=error)

    # ==========================================================================
    # Media resolution
    # ==========================================================================

    async def resolve_unit_media(self, unit_index: int) -> ResolvedContent:
        """Resolve the playable URL of a unit.

        Raises:
            OutOfRangeError: Unknown unit index.
            AccessDeniedError: Session is not READY with a valid license.
            InvalidIdentifierError: Unit has an unusable identifier.
            AllResolutionPathsExhaustedError: Nothing left to try.
        """
        self._check_index(unit_index)
        self._require_access()

        generation = self._generation
        unit = self.units[unit_index]
        resolved = await self.resolver.resolve(unit.content_identifier, unit.kind)

        if not self._is_stale(generation):
            self._media[unit_index] = resolved
        return resolved

    async def resolve_next_media(self, unit_index: int) -> ResolvedContent:
        """Next candidate after the last URL handed out for a unit failed to play."""
        self._check_index(unit_index)
        self._require_access()

        previous = self._media.get(unit_index)
        if previous is None:
            return await self.resolve_unit_media(unit_index)

        generation = self._generation
        try:
            resolved = await self.resolver.resolve_next(previous)
        except AllResolutionPathsExhaustedError:
            logger.warning(
                "media_resolution_exhausted",
                session_id=self.session_id,
                unit_index=unit_index,
                last_tier=str(previous.source_tier),
            )
            raise

        if not self._is_stale(generation):
            self._media[unit_index] = resolved
        return resolved

    # ==========================================================================
    # Teardown
    # ==========================================================================

    def close(self) -> None:
        """Tear down: drop subscribers and discard in-flight results."""
        if self.is_closed:
            return
        self._generation += 1
        self._phase = SessionPhase.CLOSED
        self._subscribers.clear()
        self._media.clear()
        for queue in self._queues:
            queue.put_nowait(None)
        logger.info("session_closed", session_id=self.session_id)

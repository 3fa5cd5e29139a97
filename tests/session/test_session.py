"""Tests for the entitlement session state machine.

Covers:
- start / refresh (READY, ACCESS_DENIED, refresh keeps READY)
- request_completion (idempotence, concurrency, failure revert)
- license expiry while the session is open
- media resolution and fallback advance
- observers and teardown
"""

import asyncio
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from coursegate.core.exceptions import (
    AccessDeniedError,
    AllResolutionPathsExhaustedError,
    CompletionInProgressError,
    OutOfRangeError,
    TransportError,
)
from coursegate.ledger.demo import DemoLedger
from coursegate.ledger.models import ContentUnit, Receipt
from coursegate.licenses.service import LicenseVerifier
from coursegate.progress.service import ProgressStore
from coursegate.resolver.models import SourceTier
from coursegate.resolver.service import ContentResolver
from coursegate.session import EntitlementSession, SessionEvent, SessionPhase, UnitState

from tests.conftest import NO_CONTENT_URL, RecordingSleep


class ControlledLedger(DemoLedger):
    """Demo ledger whose calls can be held open or made to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.license_gate = asyncio.Event()
        self.license_gate.set()
        self.write_gate = asyncio.Event()
        self.write_gate.set()
        self.write_started = asyncio.Event()
        self.fail_license_queries = False
        self.fail_writes = False

    async def query_license(self, principal, course_id):
        await self.license_gate.wait()
        if self.fail_license_queries:
            raise TransportError("license query failed")
        return await super().query_license(principal, course_id)

    async def write_completion(self, principal, course_id, unit_index) -> Receipt:
        self.write_started.set()
        await self.write_gate.wait()
        if self.fail_writes:
            raise TransportError("transaction reverted")
        return await super().write_completion(principal, course_id, unit_index)


@pytest.fixture
def controlled_ledger(
    principal: str, course_id: int, units: list[ContentUnit]
) -> ControlledLedger:
    """Controlled ledger with a 30-day license for the test principal."""
    ledger = ControlledLedger()
    ledger.add_course(course_id, len(units))
    ledger.grant_license(principal, course_id, duration=timedelta(days=30))
    return ledger


@pytest.fixture
def make_session(
    controlled_ledger: ControlledLedger,
    resolver: ContentResolver,
    units: list[ContentUnit],
    principal: str,
    course_id: int,
):
    """Factory building sessions over the controlled ledger."""

    def factory(clock=None) -> EntitlementSession:
        return EntitlementSession(
            principal,
            course_id,
            units,
            verifier=LicenseVerifier(
                controlled_ledger, retry_delay_seconds=1.0, sleep=RecordingSleep()
            ),
            progress_store=ProgressStore(controlled_ledger),
            resolver=resolver,
            clock=clock,
        )

    return factory


@pytest.fixture
async def ready_session(make_session) -> EntitlementSession:
    """Session that finished loading with a valid license."""
    session = make_session()
    await session.start()
    return session


def states(session: EntitlementSession) -> list[UnitState]:
    return [view.state for view in session.get_state().units]


class TestStart:
    """Tests for the initial load."""

    @pytest.mark.asyncio
    async def test_valid_license_is_ready(self, make_session):
        """Should unlock every unit when the license is valid."""
        session = make_session()

        snapshot = await session.start()

        assert snapshot.phase == SessionPhase.READY
        assert snapshot.license_valid is True
        assert states(session) == [UnitState.UNLOCKED] * 4
        assert snapshot.percent_complete == 0
        assert snapshot.total_units == 4

    @pytest.mark.asyncio
    async def test_starts_in_loading(self, make_session):
        """Should report LOADING with every unit locked before the load."""
        session = make_session()

        assert session.phase == SessionPhase.LOADING
        assert states(session) == [UnitState.LOCKED] * 4

    @pytest.mark.asyncio
    async def test_existing_progress_is_completed(
        self, make_session, controlled_ledger: ControlledLedger, principal, course_id
    ):
        """Should mark units the ledger already has as COMPLETED."""
        await controlled_ledger.write_completion(principal, course_id, 1)
        session = make_session()

        snapshot = await session.start()

        assert states(session) == [
            UnitState.UNLOCKED,
            UnitState.COMPLETED,
            UnitState.UNLOCKED,
            UnitState.UNLOCKED,
        ]
        assert snapshot.percent_complete == 25

    @pytest.mark.asyncio
    async def test_no_license_is_access_denied(
        self, make_session, controlled_ledger: ControlledLedger, principal, course_id
    ):
        """Should lock everything without a license."""
        controlled_ledger.revoke_license(principal, course_id)
        session = make_session()

        snapshot = await session.start()

        assert snapshot.phase == SessionPhase.ACCESS_DENIED
        assert snapshot.license_valid is False
        assert snapshot.last_error is None
        assert states(session) == [UnitState.LOCKED] * 4

    @pytest.mark.asyncio
    async def test_license_query_error_is_recoverable_denial(
        self, make_session, controlled_ledger: ControlledLedger
    ):
        """Should fail closed but flag the denial as retryable."""
        controlled_ledger.fail_license_queries = True
        session = make_session()

        snapshot = await session.start()

        assert snapshot.phase == SessionPhase.ACCESS_DENIED
        assert snapshot.last_error == "license query failed"
        assert snapshot.last_error_retryable is True

    def test_rejects_gaps_in_unit_indexes(
        self,
        units: list[ContentUnit],
        principal,
        course_id,
        verifier: LicenseVerifier,
        progress_store: ProgressStore,
        resolver: ContentResolver,
    ):
        """Should refuse units whose indexes are not 0..n-1."""
        gapped = [replace(unit, unit_index=unit.unit_index * 2) for unit in units]

        with pytest.raises(ValueError):
            EntitlementSession(
                principal,
                course_id,
                gapped,
                verifier=verifier,
                progress_store=progress_store,
                resolver=resolver,
            )


class TestAccessControl:
    """No content or completion without a valid license."""

    @pytest.mark.asyncio
    async def test_denied_session_cannot_resolve_media(
        self, make_session, controlled_ledger: ControlledLedger, principal, course_id
    ):
        """Should refuse media resolution in ACCESS_DENIED."""
        controlled_ledger.revoke_license(principal, course_id)
        session = make_session()
        await session.start()

        with pytest.raises(AccessDeniedError):
            await session.resolve_unit_media(0)

    @pytest.mark.asyncio
    async def test_denied_session_cannot_complete(
        self, make_session, controlled_ledger: ControlledLedger, principal, course_id
    ):
        """Should refuse completion in ACCESS_DENIED without writing."""
        controlled_ledger.revoke_license(principal, course_id)
        session = make_session()
        await session.start()

        with pytest.raises(AccessDeniedError):
            await session.request_completion(0)

        assert controlled_ledger.writes == []

    @pytest.mark.asyncio
    async def test_loading_session_cannot_resolve_media(self, make_session):
        """Should refuse media before the load finished."""
        session = make_session()

        with pytest.raises(AccessDeniedError):
            await session.resolve_unit_media(0)

    @pytest.mark.asyncio
    async def test_license_expiring_mid_session_locks_units(
        self, make_session, controlled_ledger: ControlledLedger, principal, course_id
    ):
        """Should deny access once the clock passes valid_until."""
        controlled_ledger.grant_license(principal, course_id, duration=timedelta(hours=1))
        now = {"value": datetime.now(UTC)}
        session = make_session(clock=lambda: now["value"])
        await session.start()
        events: list[SessionEvent] = []
        session.subscribe(events.append)

        now["value"] += timedelta(hours=2)

        with pytest.raises(AccessDeniedError):
            await session.resolve_unit_media(0)
        assert session.phase == SessionPhase.ACCESS_DENIED
        assert states(session) == [UnitState.LOCKED] * 4
        assert [event.name for event in events] == ["license_expired"]

    @pytest.mark.asyncio
    async def test_renewal_seen_at_completion_extends_access(
        self, make_session, controlled_ledger: ControlledLedger, principal, course_id
    ):
        """Should keep access past the old expiry once a renewal was verified."""
        controlled_ledger.grant_license(principal, course_id, duration=timedelta(hours=1))
        now = {"value": datetime.now(UTC)}
        session = make_session(clock=lambda: now["value"])
        await session.start()
        controlled_ledger.grant_license(principal, course_id, duration=timedelta(days=30))

        outcome = await session.request_completion(0)
        now["value"] += timedelta(hours=2)
        resolved = await session.resolve_unit_media(1)

        assert outcome.success is True
        assert resolved.url
        assert session.phase == SessionPhase.READY
        assert session.unit_state(0) == UnitState.COMPLETED

    @pytest.mark.asyncio
    async def test_revocation_caught_at_completion(
        self,
        ready_session: EntitlementSession,
        controlled_ledger: ControlledLedger,
        principal,
        course_id,
    ):
        """Should re-check the license before writing."""
        controlled_ledger.revoke_license(principal, course_id)

        with pytest.raises(AccessDeniedError):
            await ready_session.request_completion(0)

        assert controlled_ledger.writes == []
        assert ready_session.phase == SessionPhase.ACCESS_DENIED
        assert states(ready_session) == [UnitState.LOCKED] * 4


class TestRequestCompletion:
    """Tests for request_completion."""

    @pytest.mark.asyncio
    async def test_completes_unit(
        self, ready_session: EntitlementSession, controlled_ledger: ControlledLedger
    ):
        """Should write to the ledger and mark the unit COMPLETED."""
        outcome = await ready_session.request_completion(0)

        assert outcome.success is True
        assert outcome.already_completed is False
        assert outcome.receipt is not None
        assert ready_session.unit_state(0) == UnitState.COMPLETED
        assert ready_session.get_state().percent_complete == 25
        assert len(controlled_ledger.writes) == 1

    @pytest.mark.asyncio
    async def test_second_completion_is_noop(
        self, ready_session: EntitlementSession, controlled_ledger: ControlledLedger
    ):
        """Should issue exactly one ledger write for two requests."""
        await ready_session.request_completion(2)

        outcome = await ready_session.request_completion(2)

        assert outcome.success is True
        assert outcome.already_completed is True
        assert len(controlled_ledger.writes) == 1

    @pytest.mark.asyncio
    async def test_concurrent_completion_rejected(
        self, ready_session: EntitlementSession, controlled_ledger: ControlledLedger
    ):
        """Should reject a second request while the first write is in flight."""
        controlled_ledger.write_gate.clear()
        first = asyncio.create_task(ready_session.request_completion(1))
        await asyncio.sleep(0)

        assert ready_session.unit_state(1) == UnitState.COMPLETING
        with pytest.raises(CompletionInProgressError):
            await ready_session.request_completion(1)

        controlled_ledger.write_gate.set()
        outcome = await first

        assert outcome.success is True
        assert ready_session.unit_state(1) == UnitState.COMPLETED
        assert len(controlled_ledger.writes) == 1

    @pytest.mark.asyncio
    async def test_completing_unit_is_not_completable(
        self, ready_session: EntitlementSession, controlled_ledger: ControlledLedger
    ):
        """Should flag a COMPLETING unit as not completable."""
        controlled_ledger.write_gate.clear()
        outcome_task = asyncio.create_task(ready_session.request_completion(0))
        await asyncio.sleep(0)

        snapshot = ready_session.get_state()
        controlled_ledger.write_gate.set()
        await outcome_task

        assert snapshot.units[0].state == UnitState.COMPLETING
        assert snapshot.units[0].can_complete is False

    @pytest.mark.asyncio
    async def test_write_failure_reverts_to_unlocked(
        self, ready_session: EntitlementSession, controlled_ledger: ControlledLedger
    ):
        """Should leave the unit UNLOCKED and report a retryable error."""
        controlled_ledger.fail_writes = True

        outcome = await ready_session.request_completion(0)

        assert outcome.success is False
        assert outcome.retryable is True
        assert ready_session.unit_state(0) == UnitState.UNLOCKED
        snapshot = ready_session.get_state()
        assert snapshot.last_error == "transaction reverted"
        assert snapshot.last_error_retryable is True
        assert snapshot.percent_complete == 0

    @pytest.mark.asyncio
    async def test_retry_after_write_failure(
        self, ready_session: EntitlementSession, controlled_ledger: ControlledLedger
    ):
        """Should succeed on a later attempt and clear the error."""
        controlled_ledger.fail_writes = True
        await ready_session.request_completion(0)
        controlled_ledger.fail_writes = False

        outcome = await ready_session.request_completion(0)

        assert outcome.success is True
        assert ready_session.get_state().last_error is None

    @pytest.mark.asyncio
    async def test_license_query_error_at_completion(
        self, ready_session: EntitlementSession, controlled_ledger: ControlledLedger
    ):
        """Should fail the completion without denying access."""
        controlled_ledger.fail_license_queries = True

        outcome = await ready_session.request_completion(0)

        assert outcome.success is False
        assert outcome.retryable is True
        assert ready_session.phase == SessionPhase.READY
        assert ready_session.unit_state(0) == UnitState.UNLOCKED
        assert controlled_ledger.writes == []

    @pytest.mark.asyncio
    async def test_write_landing_after_denial_keeps_units_locked(
        self,
        ready_session: EntitlementSession,
        controlled_ledger: ControlledLedger,
        principal,
        course_id,
    ):
        """Should not show COMPLETED while ACCESS_DENIED; refresh restores it."""
        controlled_ledger.write_gate.clear()
        completion = asyncio.create_task(ready_session.request_completion(0))
        await controlled_ledger.write_started.wait()

        controlled_ledger.revoke_license(principal, course_id)
        await ready_session.refresh()
        controlled_ledger.write_gate.set()
        outcome = await completion

        assert outcome.success is True
        snapshot = ready_session.get_state()
        assert snapshot.phase == SessionPhase.ACCESS_DENIED
        assert states(ready_session) == [UnitState.LOCKED] * 4
        assert snapshot.percent_complete == 0

        controlled_ledger.grant_license(principal, course_id)
        await ready_session.refresh()

        assert ready_session.phase == SessionPhase.READY
        assert ready_session.unit_state(0) == UnitState.COMPLETED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("unit_index", [-1, 4])
    async def test_out_of_range(self, ready_session: EntitlementSession, unit_index):
        """Should raise for unknown unit indexes."""
        with pytest.raises(OutOfRangeError):
            await ready_session.request_completion(unit_index)

    @pytest.mark.asyncio
    async def test_all_units_completed(
        self, ready_session: EntitlementSession
    ):
        """Should reach 100 percent once every unit is done."""
        for unit_index in range(4):
            await ready_session.request_completion(unit_index)

        snapshot = ready_session.get_state()
        assert snapshot.completed_count == 4
        assert snapshot.percent_complete == 100


class TestRefresh:
    """Tests for refresh."""

    @pytest.mark.asyncio
    async def test_refresh_keeps_ready_and_completed(
        self, ready_session: EntitlementSession
    ):
        """Should stay READY during refresh and never revert COMPLETED."""
        await ready_session.request_completion(0)
        events: list[SessionEvent] = []
        ready_session.subscribe(events.append)

        snapshot = await ready_session.refresh()

        assert snapshot.phase == SessionPhase.READY
        assert ready_session.unit_state(0) == UnitState.COMPLETED
        loading = events[0]
        assert loading.name == "session_loading"
        assert loading.snapshot.phase == SessionPhase.READY
        assert loading.snapshot.refreshing is True
        assert events[-1].name == "session_refreshed"
        assert events[-1].snapshot.refreshing is False

    @pytest.mark.asyncio
    async def test_refresh_picks_up_external_completion(
        self,
        ready_session: EntitlementSession,
        controlled_ledger: ControlledLedger,
        principal,
        course_id,
    ):
        """Should reconcile with writes made elsewhere."""
        await controlled_ledger.write_completion(principal, course_id, 3)

        await ready_session.refresh()

        assert ready_session.unit_state(3) == UnitState.COMPLETED

    @pytest.mark.asyncio
    async def test_refresh_after_revocation_denies(
        self,
        ready_session: EntitlementSession,
        controlled_ledger: ControlledLedger,
        principal,
        course_id,
    ):
        """Should move to ACCESS_DENIED when the license is gone."""
        controlled_ledger.revoke_license(principal, course_id)

        snapshot = await ready_session.refresh()

        assert snapshot.phase == SessionPhase.ACCESS_DENIED
        assert states(ready_session) == [UnitState.LOCKED] * 4

    @pytest.mark.asyncio
    async def test_refresh_recovers_after_query_error(
        self, make_session, controlled_ledger: ControlledLedger
    ):
        """Should reach READY once the ledger answers again."""
        controlled_ledger.fail_license_queries = True
        session = make_session()
        await session.start()
        controlled_ledger.fail_license_queries = False

        snapshot = await session.refresh()

        assert snapshot.phase == SessionPhase.READY
        assert snapshot.last_error is None


class TestMedia:
    """Tests for media resolution through the session."""

    @pytest.mark.asyncio
    async def test_resolves_first_fallback(self, ready_session: EntitlementSession):
        """Should hand out the first gateway candidate."""
        resolved = await ready_session.resolve_unit_media(0)

        assert resolved.source_tier == SourceTier.fallback(0)
        assert resolved.canonical_identifier == "bafybeidemo1section0"

    @pytest.mark.asyncio
    async def test_next_advances_through_gateways(
        self, ready_session: EntitlementSession
    ):
        """Should move to the next gateway after a playback failure."""
        await ready_session.resolve_unit_media(0)

        second = await ready_session.resolve_next_media(0)
        third = await ready_session.resolve_next_media(0)

        assert second.source_tier == SourceTier.fallback(1)
        assert third.source_tier == SourceTier.fallback(2)
        with pytest.raises(AllResolutionPathsExhaustedError):
            await ready_session.resolve_next_media(0)

    @pytest.mark.asyncio
    async def test_next_without_previous_resolves(
        self, ready_session: EntitlementSession
    ):
        """Should fall back to a fresh resolution when nothing was handed out."""
        resolved = await ready_session.resolve_next_media(1)

        assert resolved.source_tier == SourceTier.fallback(0)

    @pytest.mark.asyncio
    async def test_placeholder_unit(self, ready_session: EntitlementSession):
        """Should serve the placeholder media for units without content."""
        resolved = await ready_session.resolve_unit_media(3)

        assert resolved.is_no_content is True
        assert resolved.url == NO_CONTENT_URL


class TestObservers:
    """Tests for subscribers and the event stream."""

    @pytest.mark.asyncio
    async def test_subscriber_sees_load(self, make_session):
        """Should notify on every state change with increasing versions."""
        session = make_session()
        events: list[SessionEvent] = []
        session.subscribe(events.append)

        await session.start()

        assert [event.name for event in events] == ["session_loading", "session_ready"]
        versions = [event.snapshot.version for event in events]
        assert versions == sorted(versions)
        assert len(set(versions)) == len(versions)

    @pytest.mark.asyncio
    async def test_unsubscribe(self, ready_session: EntitlementSession):
        """Should stop notifying after unsubscribe."""
        events: list[SessionEvent] = []
        unsubscribe = ready_session.subscribe(events.append)
        unsubscribe()

        await ready_session.request_completion(0)

        assert events == []

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_break_session(
        self, ready_session: EntitlementSession
    ):
        """Should keep going when a callback raises."""

        def broken(event: SessionEvent) -> None:
            raise RuntimeError("render failed")

        ready_session.subscribe(broken)

        outcome = await ready_session.request_completion(0)

        assert outcome.success is True

    @pytest.mark.asyncio
    async def test_event_stream_ends_on_close(self, make_session):
        """Should yield events until the session closes."""
        session = make_session()
        received: list[str] = []

        async def consume() -> None:
            async for event in session.events():
                received.append(event.name)

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)

        await session.start()
        session.close()
        await asyncio.wait_for(consumer, timeout=1.0)

        assert received == ["session_loading", "session_ready"]


class TestClose:
    """Tests for teardown."""

    @pytest.mark.asyncio
    async def test_close_discards_inflight_load(
        self, make_session, controlled_ledger: ControlledLedger
    ):
        """Should ignore a load result arriving after close."""
        controlled_ledger.license_gate.clear()
        session = make_session()
        events: list[SessionEvent] = []
        session.subscribe(events.append)
        load = asyncio.create_task(session.start())
        await asyncio.sleep(0)

        session.close()
        controlled_ledger.license_gate.set()
        snapshot = await load

        assert snapshot.phase == SessionPhase.CLOSED
        assert states(session) == [UnitState.LOCKED] * 4
        assert [event.name for event in events] == ["session_loading"]

    @pytest.mark.asyncio
    async def test_close_discards_inflight_completion(
        self, ready_session: EntitlementSession, controlled_ledger: ControlledLedger
    ):
        """Should not touch session state once closed."""
        controlled_ledger.write_gate.clear()
        completion = asyncio.create_task(ready_session.request_completion(0))
        await asyncio.sleep(0)
        version = ready_session.get_state().version

        ready_session.close()
        controlled_ledger.write_gate.set()
        await completion

        snapshot = ready_session.get_state()
        assert snapshot.phase == SessionPhase.CLOSED
        assert snapshot.version == version
        assert snapshot.units[0].state != UnitState.COMPLETED

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, ready_session: EntitlementSession):
        """Should allow closing twice."""
        ready_session.close()
        ready_session.close()

        assert ready_session.is_closed is True

"""Registry of live entitlement sessions.

Sessions are independent: each owns its license and progress snapshot. The
registry only maps opaque session ids to sessions and builds new ones from
the injected collaborators.

Sessions a client abandons without closing are reclaimed when a new session
is opened: those idle longer than ``idle_ttl_seconds`` are closed, and the
least recently used ones are closed while the registry is at
``max_sessions``.
"""

import time
from collections import OrderedDict
from collections.abc import Callable

from coursegate.core.exceptions import SessionNotFoundError
from coursegate.core.logging import get_logger
from coursegate.ledger.protocols import CourseCatalog
from coursegate.licenses.service import LicenseVerifier
from coursegate.progress.service import ProgressStore
from coursegate.resolver.service import ContentResolver

from .service import EntitlementSession


logger = get_logger(__name__)


class SessionRegistry:
    """Create, look up and close entitlement sessions."""

    def __init__(
        self,
        catalog: CourseCatalog,
        verifier: LicenseVerifier,
        progress_store: ProgressStore,
        resolver: ContentResolver,
        *,
        max_sessions: int | None = None,
        idle_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the registry.

        Args:
            catalog: Source of course units.
            verifier: License verifier shared by all sessions.
            progress_store: Progress store shared by all sessions.
            resolver: Content resolver shared by all sessions.
            max_sessions: Upper bound on open sessions (unbounded if None).
            idle_ttl_seconds: Close sessions unused for longer than this.
            clock: Monotonic time source in seconds.
        """
        self.catalog = catalog
        self.verifier = verifier
        self.progress_store = progress_store
        self.resolver = resolver
        self.max_sessions = max_sessions
        self.idle_ttl_seconds = idle_ttl_seconds
        self._clock = clock
        # Least recently used first
        self._sessions: OrderedDict[str, EntitlementSession] = OrderedDict()
        self._last_used: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def open(self, principal: str, course_id: int) -> EntitlementSession:
        """Build a session for a (principal, course) screen and start it."""
        self.evict_idle()
        if self.max_sessions is not None:
            while len(self._sessions) >= self.max_sessions:
                oldest = next(iter(self._sessions))
                self._evict(oldest, reason="capacity")

        units = await self.catalog.get_units(course_id)
        session = EntitlementSession(
            principal,
            course_id,
            units,
            verifier=self.verifier,
            progress_store=self.progress_store,
            resolver=self.resolver,
        )
        self._sessions[session.session_id] = session
        self._touch(session.session_id)
        logger.info(
            "session_opened",
            session_id=session.session_id,
            course_id=course_id,
            total_units=len(units),
        )
        await session.start()
        return session

    def get(self, session_id: str) -> EntitlementSession:
        """Get a live session and mark it as used.

        Raises:
            SessionNotFoundError: Unknown, closed or evicted session.
        """
        session = self._sessions.get(session_id)
        if session is None or session.is_closed:
            raise SessionNotFoundError(session_id)
        self._touch(session_id)
        return session

    def close(self, session_id: str) -> None:
        """Close and forget a session.

        Raises:
            SessionNotFoundError: Unknown session.
        """
        session = self._sessions.pop(session_id, None)
        self._last_used.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.close()

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()
        self._last_used.clear()

    def evict_idle(self) -> int:
        """Close sessions idle past the TTL.

        Returns:
            Number of sessions evicted.
        """
        if self.idle_ttl_seconds is None:
            return 0

        now = self._clock()
        expired = [
            session_id
            for session_id, last_used in self._last_used.items()
            if now - last_used > self.idle_ttl_seconds
        ]
        for session_id in expired:
            self._evict(session_id, reason="idle")
        return len(expired)

    def _touch(self, session_id: str) -> None:
        self._sessions.move_to_end(session_id)
        self._last_used[session_id] = self._clock()

    def _evict(self, session_id: str, reason: str) -> None:
        session = self._sessions.pop(session_id)
        self._last_used.pop(session_id, None)
        session.close()
        logger.info("session_evicted", session_id=session_id, reason=reason)

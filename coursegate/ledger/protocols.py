"""Contracts for the ledger query capability and the course catalog.

Every call is fallible and possibly slow. Implementations raise
``TransportError`` when the ledger cannot answer and return ``None`` for
NotFound.
"""

from typing import Protocol

from .models import ContentUnit, License, ProgressRecord, Receipt


class LedgerClient(Protocol):
    """Read licenses and progress, write completion bits."""

    async def query_license(self, principal: str, course_id: int) -> License | None:
        """Return the principal's license for the course, or None."""
        ...

    async def query_progress(
        self, principal: str, course_id: int
    ) -> ProgressRecord | None:
        """Return the principal's completion bits for the course, or None."""
        ...

    async def write_completion(
        self, principal: str, course_id: int, unit_index: int
    ) -> Receipt:
        """Record unit completion on the ledger."""
        ...


class CourseCatalog(Protocol):
    """Published content units of a course."""

    async def get_units(self, course_id: int) -> list[ContentUnit]:
        """Return the course's units ordered by unit_index."""
        ...

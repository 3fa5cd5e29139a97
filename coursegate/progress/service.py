"""Progress store.

Reads and writes per-unit completion bits for a (principal, course) pair.

- Reads never fail: a ledger error yields a zeroed record and is logged.
- Writes assume the caller already checked the license. Out-of-range unit
  indexes raise; ledger write failures come back on the result.
"""

from dataclasses import dataclass

import structlog

from coursegate.core.exceptions import OutOfRangeError, TransportError
from coursegate.ledger.models import ProgressRecord, Receipt
from coursegate.ledger.protocols import CourseCatalog, LedgerClient


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    """Outcome of a completion write."""

    success: bool
    error: TransportError | None = None
    receipt: Receipt | None = None


class ProgressStore:
    """Service for completion tracking on the ledger."""

    def __init__(self, ledger: LedgerClient, catalog: CourseCatalog | None = None):
        self.ledger = ledger
        self.catalog = catalog

    async def get_progress(
        self,
        principal: str,
        course_id: int,
        total_units: int | None = None,
    ) -> ProgressRecord:
        """Get progress, defaulting to a renderable record.

        Args:
            principal: Account address.
            course_id: Course identifier.
            total_units: Unit count from the catalog, used to build the
                all-incomplete record when the ledger has none yet.

        Returns:
            The ledger record; an all-incomplete record if none exists; a
            zeroed record if the ledger could not be read.
        """
        try:
            record = await self.ledger.query_progress(principal, course_id)
        except TransportError as e:
            logger.error(
                "progress_query_failed",
                principal=principal,
                course_id=course_id,
                error=e.message,
            )
            return ProgressRecord.zeroed(principal, course_id)

        if record is None:
            if total_units:
                return ProgressRecord.fresh(principal, course_id, total_units)
            return ProgressRecord.zeroed(principal, course_id)

        return record

    async def mark_complete(
        self,
        principal: str,
        course_id: int,
        unit_index: int,
        total_units: int | None = None,
    ) -> CompletionResult:
        """Write a completion bit.

        Args:
            principal: Account address.
            course_id: Course identifier.
            unit_index: 0-based unit position.
            total_units: Known unit count. When omitted it comes from the
                ledger record, or from the catalog for a learner with no
                record yet.

        Returns:
            CompletionResult with the receipt, or the write error.

        Raises:
            OutOfRangeError: If ``unit_index`` is outside ``[0, total_units)``.
            ValueError: If the unit count is unknown: no ``total_units``, no
                ledger record and no catalog.
        """
        if total_units is None:
            try:
                total_units = await self._unit_count(principal, course_id)
            except TransportError as e:
                return CompletionResult(success=False, error=e)

        if not 0 <= unit_index < total_units:
            raise OutOfRangeError(unit_index, total_units)

        try:
            receipt = await self.ledger.write_completion(
                principal, course_id, unit_index
            )
        except TransportError as e:
            logger.warning(
                "completion_write_failed",
                principal=principal,
                course_id=course_id,
                unit_index=unit_index,
                error=e.message,
            )
            return CompletionResult(success=False, error=e)

        logger.info(
            "unit_marked_complete",
            principal=principal,
            course_id=course_id,
            unit_index=unit_index,
            transaction_hash=receipt.transaction_hash,
        )
        return CompletionResult(success=True, receipt=receipt)

    async def _unit_count(self, principal: str, course_id: int) -> int:
        record = await self.ledger.query_progress(principal, course_id)
        if record is not None:
            return record.total_units
        if self.catalog is None:
            raise ValueError(
                f"Unit count of course {course_id} unknown: pass total_units"
                " or configure a catalog"
            )
        return len(await self.catalog.get_units(course_id))

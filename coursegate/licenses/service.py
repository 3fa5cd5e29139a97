"""License verification service.

Answers "does principal P hold a valid, unexpired license for course C".

Policy:
- A ledger query error fails closed (``valid=False``) and is reported on the
  result, never raised. It is not retried.
- A successful but negative answer is re-queried exactly once after a fixed
  delay, to absorb eventually-consistent reads right after a license mint.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from coursegate.core.exceptions import TransportError
from coursegate.core.logging import get_logger
from coursegate.ledger.models import License
from coursegate.ledger.protocols import LedgerClient


logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class LicenseVerification:
    """Outcome of a verification.

    ``error`` is set when the answer is a fail-closed default rather than a
    real ledger verdict; the caller may offer a retry.
    """

    valid: bool
    license: License | None = None
    error: TransportError | None = None
    attempts: int = 1

    @property
    def recoverable(self) -> bool:
        return self.error is not None


class LicenseVerifier:
    """Verify licenses against the ledger with one bounded retry."""

    def __init__(
        self,
        ledger: LedgerClient,
        *,
        retry_delay_seconds: float = 1.0,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the verifier.

        Args:
            ledger: Ledger query capability.
            retry_delay_seconds: Wait before re-querying a negative answer.
            clock: Source of "now" for expiry checks.
            sleep: Awaitable sleep, injectable for tests.
        """
        self.ledger = ledger
        self.retry_delay_seconds = retry_delay_seconds
        self._clock = clock
        self._sleep = sleep

    async def _query(self, principal: str, course_id: int) -> License | None:
        return await self.ledger.query_license(principal, course_id)

    def _is_valid(self, license_: License | None) -> bool:
        return license_ is not None and license_.is_valid(self._clock())

    async def verify(self, principal: str, course_id: int) -> LicenseVerification:
        """Check the principal's license for a course.

        Never raises for "not valid" or for ledger failures.
        """
        if not principal or course_id is None:
            logger.warning(
                "license_check_invalid_parameters",
                principal=principal,
                course_id=course_id,
            )
            return LicenseVerification(valid=False, attempts=0)

        try:
            license_ = await self._query(principal, course_id)
        except TransportError as e:
            logger.warning(
                "license_query_failed",
                principal=principal,
                course_id=course_id,
                error=e.message,
            )
            return LicenseVerification(valid=False, error=e)

        if self._is_valid(license_):
            return LicenseVerification(valid=True, license=license_)

        # Freshly minted licenses can lag on the read path
        await self._sleep(self.retry_delay_seconds)

        try:
            license_ = await self._query(principal, course_id)
        except TransportError as e:
            logger.warning(
                "license_requery_failed",
                principal=principal,
                course_id=course_id,
                error=e.message,
            )
            return LicenseVerification(valid=False, error=e, attempts=2)

        valid = self._is_valid(license_)
        logger.info(
            "license_verified",
            principal=principal,
            course_id=course_id,
            valid=valid,
            attempts=2,
        )
        return LicenseVerification(valid=valid, license=license_, attempts=2)

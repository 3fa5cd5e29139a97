"""In-memory ledger and catalog for Demo mode.

Demo mode is chosen explicitly through ``Settings.mode``. It serves a seeded
sample course so the presentation layer can run without a chain or a gateway.
"""

import asyncio
import hashlib
from datetime import UTC, datetime, timedelta

import structlog

from .models import ContentKind, ContentUnit, License, ProgressRecord, Receipt


logger = structlog.get_logger(__name__)


DEMO_PRINCIPAL = "0x000000000000000000000000000000000000dEaD"
DEMO_COURSE_ID = 1


def demo_units(course_id: int = DEMO_COURSE_ID, count: int = 4) -> list[ContentUnit]:
    """Sample sections; the last one has no content uploaded yet."""
    units = [
        ContentUnit(
            course_id=course_id,
            unit_index=index,
            content_identifier=f"ipfs://bafybeidemo{course_id}section{index}",
            duration_seconds=596,
            kind=ContentKind.VIDEO,
            title=f"Section {index + 1}",
        )
        for index in range(count - 1)
    ]
    units.append(
        ContentUnit(
            course_id=course_id,
            unit_index=count - 1,
            content_identifier="placeholder-video-content",
            duration_seconds=0,
            kind=ContentKind.VIDEO,
            title=f"Section {count}",
        )
    )
    return units


class DemoLedger:
    """LedgerClient holding licenses and completion bits in dictionaries."""

    def __init__(self) -> None:
        self._licenses: dict[tuple[str, int], License] = {}
        self._progress: dict[tuple[str, int], list[bool]] = {}
        self._unit_counts: dict[int, int] = {}
        self._lock = asyncio.Lock()
        self.writes: list[Receipt] = []

    def add_course(self, course_id: int, total_units: int) -> None:
        self._unit_counts[course_id] = total_units

    def grant_license(
        self,
        principal: str,
        course_id: int,
        *,
        duration: timedelta = timedelta(days=30),
        active: bool = True,
    ) -> License:
        license_ = License(
            principal=principal,
            course_id=course_id,
            valid_until=datetime.now(UTC) + duration,
            active=active,
        )
        self._licenses[(principal.lower(), course_id)] = license_
        return license_

    def revoke_license(self, principal: str, course_id: int) -> None:
        self._licenses.pop((principal.lower(), course_id), None)

    async def query_license(self, principal: str, course_id: int) -> License | None:
        return self._licenses.get((principal.lower(), course_id))

    async def query_progress(
        self, principal: str, course_id: int
    ) -> ProgressRecord | None:
        total = self._unit_counts.get(course_id)
        if total is None:
            return None
        bits = self._progress.get((principal.lower(), course_id), [False] * total)
        return ProgressRecord(
            principal=principal,
            course_id=course_id,
            completed_units=tuple(bits),
            total_units=total,
        )

    async def write_completion(
        self, principal: str, course_id: int, unit_index: int
    ) -> Receipt:
        async with self._lock:
            total = self._unit_counts.get(course_id, 0)
            key = (principal.lower(), course_id)
            bits = self._progress.setdefault(key, [False] * total)
            bits[unit_index] = True

            digest = hashlib.sha256(
                f"{principal}:{course_id}:{unit_index}:{len(self.writes)}".encode()
            ).hexdigest()
            receipt = Receipt(
                transaction_hash=f"0x{digest}",
                principal=principal,
                course_id=course_id,
                unit_index=unit_index,
            )
            self.writes.append(receipt)

        logger.debug(
            "demo_completion_written",
            course_id=course_id,
            unit_index=unit_index,
        )
        return receipt


class DemoCourseCatalog:
    """CourseCatalog over a fixed mapping of course id to units."""

    def __init__(self, courses: dict[int, list[ContentUnit]] | None = None) -> None:
        self._courses = dict(courses or {})

    def add_course(self, course_id: int, units: list[ContentUnit]) -> None:
        self._courses[course_id] = list(units)

    async def get_units(self, course_id: int) -> list[ContentUnit]:
        return sorted(self._courses.get(course_id, []), key=lambda u: u.unit_index)


def seed_demo(
    principal: str = DEMO_PRINCIPAL,
    course_id: int = DEMO_COURSE_ID,
) -> tuple[DemoLedger, DemoCourseCatalog]:
    """Build a demo ledger and catalog with one licensed sample course."""
    units = demo_units(course_id)
    ledger = DemoLedger()
    ledger.add_course(course_id, len(units))
    ledger.grant_license(principal, course_id)

    catalog = DemoCourseCatalog({course_id: units})
    logger.info(
        "demo_ledger_seeded",
        course_id=course_id,
        total_units=len(units),
    )
    return ledger, catalog

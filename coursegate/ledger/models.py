"""Ledger-owned records.

Licenses and completion bits live on chain; the core only ever holds
read snapshots of them. Content units come from the course catalog and are
immutable once published.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum


class ContentKind(str, Enum):
    """Media kind hint passed to the resolution service."""

    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


@dataclass(frozen=True)
class License:
    """Time-bounded entitlement of a principal to a course."""

    principal: str
    course_id: int
    valid_until: datetime
    active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "valid_until", ensure_utc_aware(self.valid_until))

    def is_valid(self, now: datetime | None = None) -> bool:
        """A license is valid iff it is active and not yet expired."""
        now = now or datetime.now(UTC)
        return self.active and now < self.valid_until


@dataclass(frozen=True)
class ContentUnit:
    """One ordered section of a course."""

    course_id: int
    unit_index: int
    content_identifier: str
    duration_seconds: int = 0
    kind: ContentKind = ContentKind.VIDEO
    title: str = ""


@dataclass(frozen=True)
class ProgressRecord:
    """Per-unit completion bits for a (principal, course) pair.

    ``percent_complete`` is floored: 1 of 3 units is 33, 2 of 3 is 66.
    """

    principal: str
    course_id: int
    completed_units: tuple[bool, ...] = ()
    total_units: int = 0

    @classmethod
    def zeroed(cls, principal: str, course_id: int) -> "ProgressRecord":
        """Renderable placeholder used when progress cannot be read."""
        return cls(principal=principal, course_id=course_id)

    @classmethod
    def fresh(cls, principal: str, course_id: int, total_units: int) -> "ProgressRecord":
        """All-incomplete record for a principal that has no progress yet."""
        return cls(
            principal=principal,
            course_id=course_id,
            completed_units=(False,) * total_units,
            total_units=total_units,
        )

    @property
    def completed_count(self) -> int:
        return sum(1 for done in self.completed_units if done)

    @property
    def percent_complete(self) -> int:
        if self.total_units <= 0:
            return 0
        return self.completed_count * 100 // self.total_units

    @property
    def is_fully_completed(self) -> bool:
        return self.total_units > 0 and self.completed_count == self.total_units

    def is_completed(self, unit_index: int) -> bool:
        if 0 <= unit_index < len(self.completed_units):
            return self.completed_units[unit_index]
        return False

    def with_completed(self, unit_index: int) -> "ProgressRecord":
        """Copy with one more completion bit set."""
        bits = list(self.completed_units)
        if len(bits) < self.total_units:
            bits.extend([False] * (self.total_units - len(bits)))
        bits[unit_index] = True
        return replace(self, completed_units=tuple(bits))


@dataclass(frozen=True)
class Receipt:
    """Proof of a successful completion write."""

    transaction_hash: str
    principal: str
    course_id: int
    unit_index: int
    recorded_at: datetime = field(default_factory=lambda: datetime.now(UTC))

"""Resolution results."""

from dataclasses import dataclass
from enum import Enum


class TierKind(str, Enum):
    """Which path produced a URL."""

    OPTIMIZED = "optimized"  # signed URL from the resolution service
    FALLBACK_GATEWAY = "fallback_gateway"  # static public gateway template
    NO_CONTENT = "no_content"  # sentinel identifier, placeholder media


@dataclass(frozen=True)
class SourceTier:
    """Resolution tier; ``index`` is set only for fallback gateways."""

    kind: TierKind
    index: int | None = None

    @classmethod
    def optimized(cls) -> "SourceTier":
        return cls(TierKind.OPTIMIZED)

    @classmethod
    def fallback(cls, index: int) -> "SourceTier":
        return cls(TierKind.FALLBACK_GATEWAY, index)

    @classmethod
    def no_content(cls) -> "SourceTier":
        return cls(TierKind.NO_CONTENT)

    def __str__(self) -> str:
        if self.kind == TierKind.FALLBACK_GATEWAY:
            return f"FallbackGateway({self.index})"
        if self.kind == TierKind.OPTIMIZED:
            return "Optimized"
        return "NoContent"


@dataclass(frozen=True)
class ResolvedContent:
    """A playable location for a content identifier. Never persisted."""

    canonical_identifier: str
    url: str
    source_tier: SourceTier

    @property
    def is_no_content(self) -> bool:
        return self.source_tier.kind == TierKind.NO_CONTENT

"""Content resolution service.

Turns a raw content identifier into a playable URL:

1. Strip any ``scheme://`` prefix.
2. Map the no-content sentinel to the placeholder media URL.
3. Ask the optimized service for a signed URL (one round trip).
4. On any failure there, hand out the first fallback gateway candidate
   without probing it. A playback error on the consumer side is what triggers
   a retry, via ``resolve_next``.

The resolver is stateless and safe to share between sessions.
"""

import re
from collections.abc import Sequence
from typing import Literal, Protocol

import structlog

from coursegate.core.exceptions import (
    AllResolutionPathsExhaustedError,
    InvalidIdentifierError,
)
from coursegate.ledger.models import ContentKind

from .models import ResolvedContent, SourceTier, TierKind


logger = structlog.get_logger(__name__)

SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")

FallbackPolicy = Literal["single_shot", "ordered"]


class OptimizedResolver(Protocol):
    async def resolve_optimized(self, cid: str, kind: ContentKind) -> str: ...


def canonicalize(identifier: str) -> str:
    """Strip whitespace and any ``scheme://`` prefix (``ipfs://abc`` -> ``abc``)."""
    return SCHEME_PATTERN.sub("", identifier.strip(), count=1).strip("/")


class ContentResolver:
    """Resolve content identifiers through the optimized service and fallbacks."""

    def __init__(
        self,
        fallback_gateways: Sequence[str],
        *,
        optimized: OptimizedResolver | None = None,
        no_content_sentinel: str = "placeholder-video-content",
        no_content_url: str | None = None,
        fallback_policy: FallbackPolicy = "single_shot",
    ) -> None:
        """Initialize the resolver.

        Args:
            fallback_gateways: Ordered URL templates containing ``{cid}``.
            optimized: Signed URL client; None skips straight to fallbacks.
            no_content_sentinel: Identifier meaning "nothing uploaded".
            no_content_url: Placeholder media served for the sentinel.
            fallback_policy: ``single_shot`` hands out only the first fallback,
                ``ordered`` lets ``resolve_next`` walk the whole list.
        """
        self.fallback_gateways = tuple(fallback_gateways)
        self.optimized = optimized
        self.no_content_sentinel = no_content_sentinel
        self.no_content_url = no_content_url
        self.fallback_policy = fallback_policy

    def candidates(self, identifier: str) -> list[str]:
        """All fallback URLs for an identifier, in configured order."""
        cid = canonicalize(identifier)
        return [template.format(cid=cid) for template in self.fallback_gateways]

    def _fallback(self, cid: str, index: int) -> ResolvedContent:
        if index >= len(self.fallback_gateways):
            raise AllResolutionPathsExhaustedError(cid)
        return ResolvedContent(
            canonical_identifier=cid,
            url=self.fallback_gateways[index].format(cid=cid),
            source_tier=SourceTier.fallback(index),
        )

    async def resolve(
        self,
        identifier: str,
        kind: ContentKind = ContentKind.VIDEO,
    ) -> ResolvedContent:
        """Resolve an identifier to a playable URL.

        Raises:
            InvalidIdentifierError: Empty identifier, or the sentinel with no
                placeholder media configured.
            AllResolutionPathsExhaustedError: Optimized service failed and no
                fallback gateway is configured.
        """
        cid = canonicalize(identifier or "")
        if not cid:
            raise InvalidIdentifierError(identifier)

        if cid == self.no_content_sentinel:
            if not self.no_content_url:
                raise InvalidIdentifierError(identifier)
            return ResolvedContent(
                canonical_identifier=cid,
                url=self.no_content_url,
                source_tier=SourceTier.no_content(),
            )

        if self.optimized is not None:
            try:
                url = await self.optimized.resolve_optimized(cid, kind)
            except Exception as e:
                logger.warning(
                    "optimized_resolution_failed",
                    cid=cid,
                    kind=kind.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            else:
                return ResolvedContent(
                    canonical_identifier=cid,
                    url=url,
                    source_tier=SourceTier.optimized(),
                )

        resolved = self._fallback(cid, 0)
        logger.info("fallback_gateway_selected", cid=cid, tier=str(resolved.source_tier))
        return resolved

    async def resolve_next(self, previous: ResolvedContent) -> ResolvedContent:
        """Candidate to try after ``previous`` failed to play.

        Raises:
            AllResolutionPathsExhaustedError: Policy is ``single_shot``, the
                previous result was the no-content placeholder, or the list is
                used up.
        """
        cid = previous.canonical_identifier
        tier = previous.source_tier

        if tier.kind == TierKind.NO_CONTENT:
            raise AllResolutionPathsExhaustedError(cid)
        if tier.kind == TierKind.OPTIMIZED:
            return self._fallback(cid, 0)
        if self.fallback_policy == "single_shot":
            raise AllResolutionPathsExhaustedError(cid)
        return self._fallback(cid, (tier.index or 0) + 1)

"""Content resolution module.

Resolves content identifiers (IPFS CIDs) to playable URLs through a signed URL
service and an ordered list of public gateway fallbacks.
"""

from .models import ResolvedContent, SourceTier, TierKind
from .optimized import SignedUrlClient
from .service import ContentResolver, canonicalize


__all__ = [
    "ContentResolver",
    "ResolvedContent",
    "SignedUrlClient",
    "SourceTier",
    "TierKind",
    "canonicalize",
]

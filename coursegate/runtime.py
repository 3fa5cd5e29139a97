"""Runtime wiring.

The mode (live or demo) is read once from settings here. Everything below
this point receives its collaborators explicitly.
"""

from dataclasses import dataclass

import httpx

from coursegate.config.settings import Settings
from coursegate.core.logging import get_logger
from coursegate.ledger.demo import seed_demo
from coursegate.ledger.gateway import GatewayCourseCatalog, GatewayLedgerClient
from coursegate.ledger.protocols import CourseCatalog, LedgerClient
from coursegate.licenses.service import LicenseVerifier
from coursegate.progress.service import ProgressStore
from coursegate.resolver.optimized import SignedUrlClient
from coursegate.resolver.service import ContentResolver
from coursegate.session.registry import SessionRegistry


logger = get_logger(__name__)


@dataclass
class Runtime:
    """Fully wired collaborators for one application instance."""

    mode: str
    ledger: LedgerClient
    catalog: CourseCatalog
    resolver: ContentResolver
    verifier: LicenseVerifier
    progress_store: ProgressStore
    registry: SessionRegistry


def build_resolver(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ContentResolver:
    """Content resolver from settings; the signing client only in live mode."""
    optimized = None
    if settings.is_live and settings.resolver_configured:
        optimized = SignedUrlClient(
            settings.resolver_sign_url,
            settings.resolver_jwt,
            timeout=settings.resolver_timeout_seconds,
            expires_seconds=settings.resolver_signed_url_expiry_seconds,
            transport=transport,
        )

    return ContentResolver(
        settings.resolver_fallback_gateways,
        optimized=optimized,
        no_content_sentinel=settings.resolver_no_content_sentinel,
        no_content_url=settings.resolver_no_content_url,
        fallback_policy=settings.resolver_fallback_policy,
    )


def build_runtime(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Runtime:
    """Build the runtime for the configured mode.

    Args:
        settings: Application settings.
        transport: Optional httpx transport shared by the HTTP clients.
    """
    if settings.is_live:
        ledger: LedgerClient = GatewayLedgerClient(
            settings.ledger_gateway_url,
            timeout=settings.ledger_timeout_seconds,
            api_key=settings.ledger_api_key,
            transport=transport,
        )
        catalog: CourseCatalog = GatewayCourseCatalog(
            settings.ledger_gateway_url,
            timeout=settings.ledger_timeout_seconds,
            api_key=settings.ledger_api_key,
            transport=transport,
        )
    else:
        ledger, catalog = seed_demo()

    resolver = build_resolver(settings, transport)
    verifier = LicenseVerifier(
        ledger, retry_delay_seconds=settings.license_retry_delay_seconds
    )
    progress_store = ProgressStore(ledger, catalog)
    registry = SessionRegistry(
        catalog,
        verifier,
        progress_store,
        resolver,
        max_sessions=settings.max_sessions,
        idle_ttl_seconds=settings.session_idle_ttl_seconds,
    )

    logger.info(
        "runtime_built",
        mode=settings.mode,
        optimized_resolution=resolver.optimized is not None,
        fallback_gateways=len(resolver.fallback_gateways),
    )
    return Runtime(
        mode=settings.mode,
        ledger=ledger,
        catalog=catalog,
        resolver=resolver,
        verifier=verifier,
        progress_store=progress_store,
        registry=registry,
    )

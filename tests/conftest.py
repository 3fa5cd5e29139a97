"""Shared test fixtures."""

import os

# Settings are cached on first use; pin the environment before any import
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("MODE", "demo")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from collections.abc import Iterator  # noqa: E402
from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from coursegate.config import Settings  # noqa: E402
from coursegate.ledger.demo import (  # noqa: E402
    DEMO_COURSE_ID,
    DEMO_PRINCIPAL,
    DemoCourseCatalog,
    DemoLedger,
    demo_units,
)
from coursegate.ledger.models import ContentUnit  # noqa: E402
from coursegate.licenses.service import LicenseVerifier  # noqa: E402
from coursegate.progress.service import ProgressStore  # noqa: E402
from coursegate.resolver.service import ContentResolver  # noqa: E402
from coursegate.runtime import Runtime, build_runtime  # noqa: E402


FALLBACKS = [
    "https://gw-one.example/ipfs/{cid}",
    "https://gw-two.example/ipfs/{cid}",
    "https://gw-three.example/ipfs/{cid}",
]
NO_CONTENT_URL = "https://media.example/placeholder.mp4"


class RecordingSleep:
    """Awaitable stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


@pytest.fixture
def principal() -> str:
    """Test learner address."""
    return DEMO_PRINCIPAL


@pytest.fixture
def course_id() -> int:
    """Test course id."""
    return DEMO_COURSE_ID


@pytest.fixture
def units(course_id: int) -> list[ContentUnit]:
    """Four units; the last one is the no-content placeholder."""
    return demo_units(course_id, count=4)


@pytest.fixture
def ledger(principal: str, course_id: int, units: list[ContentUnit]) -> DemoLedger:
    """Demo ledger with a 30-day license for the test principal."""
    demo_ledger = DemoLedger()
    demo_ledger.add_course(course_id, len(units))
    demo_ledger.grant_license(principal, course_id, duration=timedelta(days=30))
    return demo_ledger


@pytest.fixture
def catalog(course_id: int, units: list[ContentUnit]) -> DemoCourseCatalog:
    """Catalog holding the test course."""
    return DemoCourseCatalog({course_id: units})


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    """Sleep that returns immediately."""
    return RecordingSleep()


@pytest.fixture
def verifier(ledger: DemoLedger, recording_sleep: RecordingSleep) -> LicenseVerifier:
    """License verifier that never actually waits."""
    return LicenseVerifier(ledger, retry_delay_seconds=1.0, sleep=recording_sleep)


@pytest.fixture
def progress_store(ledger: DemoLedger) -> ProgressStore:
    """Progress store over the demo ledger."""
    return ProgressStore(ledger)


@pytest.fixture
def resolver() -> ContentResolver:
    """Resolver with no optimized service and three fallback gateways."""
    return ContentResolver(
        FALLBACKS,
        no_content_url=NO_CONTENT_URL,
        fallback_policy="ordered",
    )


@pytest.fixture
def test_settings() -> Settings:
    """Demo-mode settings with no license retry delay."""
    return Settings(
        environment="testing",
        mode="demo",
        license_retry_delay_seconds=0.0,
    )


@pytest.fixture
def runtime(test_settings: Settings) -> Runtime:
    """Demo runtime seeded with the sample course."""
    return build_runtime(test_settings)


@pytest.fixture
def client(runtime: Runtime) -> Iterator[TestClient]:
    """Test client over an app wired to the demo runtime."""
    from coursegate.main import create_app

    app = create_app()
    app.state.runtime = runtime
    with TestClient(app) as test_client:
        yield test_client

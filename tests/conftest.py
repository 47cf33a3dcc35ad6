"""
Shared fixtures: a controllable clock and in-memory services.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from medverify.domain.models import StateDocument
from medverify.infrastructure.storage import MemoryBackend
from medverify.infrastructure.store import DEMO_BATCH_ID, RecordStore, build_demo_document, demo_bootstrap
from medverify.services.verification import VerificationService


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def demo_document(clock: FakeClock) -> StateDocument:
    """Document with the demo manufacturer and batch."""
    return build_demo_document(clock())


@pytest.fixture
def demo_batch(demo_document: StateDocument):
    return demo_document.batches[DEMO_BATCH_ID]


@pytest.fixture
async def service(clock: FakeClock) -> VerificationService:
    """Started service over an empty in-memory store."""
    store = RecordStore(MemoryBackend(), "test_state")
    service = VerificationService(store, clock=clock)
    await service.start()
    return service


@pytest.fixture
def client(clock: FakeClock):
    """API client over a demo-seeded in-memory store."""
    from medverify.main import create_app

    store = RecordStore(
        MemoryBackend(),
        "api_state",
        bootstrap=demo_bootstrap("simulated-testnet", clock),
    )
    app = create_app(service=VerificationService(store, clock=clock))
    with TestClient(app) as client:
        yield client

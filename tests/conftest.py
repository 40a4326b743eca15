import datetime as dt
from typing import Any, Dict, List, Optional

import pytest

from posting_queue.models import (
    ConnectionStatus,
    IntegrationConnection,
    PostResult,
)
from posting_queue.posters import Poster, PosterDispatcher
from posting_queue.repositories import InMemoryConnectionStore
from posting_queue.services import IntegrationService, PostingQueueService
from posting_queue.store import InMemoryPostingStore
from posting_queue.utils.metrics import metrics


class FrozenClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start: dt.datetime):
        self.now = start

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + dt.timedelta(seconds=seconds)


class StubPoster(Poster):
    """Poster returning queued results and recording every call."""

    def __init__(self, integration_type: str = "xero", results: Optional[List[PostResult]] = None):
        self.integration_type = integration_type
        self.results = list(results or [])
        self.calls: List[Dict[str, Any]] = []

    async def post(self, connection, doc_type, payload) -> PostResult:
        self.calls.append({"connection_id": connection.id, "doc_type": doc_type, "payload": payload})
        if self.results:
            return self.results.pop(0)
        return PostResult.ok(f"EXT-{len(self.calls)}")


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock():
    return FrozenClock(dt.datetime(2026, 1, 5, 9, 0, 0, tzinfo=dt.UTC))


@pytest.fixture
def store(clock):
    return InMemoryPostingStore(backoff_unit_seconds=300, clock=clock)


@pytest.fixture
def connections():
    return InMemoryConnectionStore()


@pytest.fixture
def poster():
    return StubPoster("xero")


@pytest.fixture
def dispatcher(poster):
    return PosterDispatcher([poster])


@pytest.fixture
async def connection(connections):
    """A CONNECTED xero connection for tenant T1."""
    return await connections.create(IntegrationConnection(
        tenant_id="T1",
        type="xero",
        name="Xero",
        status=ConnectionStatus.CONNECTED.value,
        config_json={"base_url": "https://api.xero.test", "access_token": "tok"},
    ))


@pytest.fixture
def service(store, connections, dispatcher):
    return PostingQueueService(store, connections, dispatcher, max_attempts=3)


@pytest.fixture
def integration_service(connections):
    return IntegrationService(connections)

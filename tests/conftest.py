"""Pytest configuration and fixtures."""
import asyncio
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from lmproxy.core.config import Settings
from lmproxy.main import create_app
from lmproxy.models.backend import AssistantEvent, BackendEvent, BackendRequest, ResultEvent
from lmproxy.services.gateway.backend import BackendGateway


class FakeEventSource:
    """Stands in for the backend: replays a fixed event list and records what was pulled."""

    def __init__(
        self,
        events: Optional[List[BackendEvent]] = None,
        error: Optional[Exception] = None,
        delay: float = 0,
    ):
        if events is None:
            events = [
                AssistantEvent(texts=["Hello from Claude"]),
                ResultEvent(subtype="success", input_tokens=10, output_tokens=5),
            ]
        self.events = events
        self.error = error
        self.delay = delay
        self.requests: List[BackendRequest] = []
        self.pulled = 0
        self.closed = False

    def __call__(self, request: BackendRequest):
        self.requests.append(request)
        return self._generate()

    async def _generate(self):
        try:
            for event in self.events:
                if self.delay:
                    await asyncio.sleep(self.delay)
                self.pulled += 1
                yield event
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


@pytest.fixture
def event_source():
    """Default backend: one assistant message and a successful result."""
    return FakeEventSource()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        LOG_LEVEL="debug",
        CLAUDE_WORKSPACE=str(tmp_path),
        CLAUDE_MODEL=None,
        MODEL_MAPPING=None,
    )


@pytest.fixture
def gateway(event_source, tmp_path):
    return BackendGateway(event_source=event_source, timeout_seconds=2.0, workspace=str(tmp_path))


@pytest.fixture
def app(test_settings, gateway):
    return create_app(settings=test_settings, gateway=gateway)


@pytest.fixture
def client(app):
    """Test client with the lifespan running (gateway initialized)."""
    with TestClient(app) as test_client:
        yield test_client

from __future__ import annotations

from contextlib import ExitStack
from typing import Any, Callable, Iterator

import pytest
from fastapi.testclient import TestClient

from hub.api.main import create_app
from hub.core.broker import BrokerConnectionManager
from hub.core.settings import Settings

from fakes import FakeBroker, RecordingPublisher


@pytest.fixture
def fake_broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def recording_publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def make_client() -> Iterator[Callable[..., TestClient]]:
    """Build a TestClient (lifespan included) around an injected publisher.

    The startup connection manager gets its own FakeBroker so it never shows up
    in the publisher's broker interactions.
    """

    stack = ExitStack()

    def _make(publisher: Any, *, settings: Settings | None = None, manager_broker: FakeBroker | None = None) -> TestClient:
        settings = settings or Settings()
        manager = BrokerConnectionManager(
            settings.rabbitmq.url,
            connection_factory=manager_broker or FakeBroker(),
        )
        app = create_app(settings, publisher=publisher, broker=manager)
        return stack.enter_context(TestClient(app))

    yield _make
    stack.close()

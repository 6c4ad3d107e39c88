from __future__ import annotations

import pytest

from chatflow_widget import create_app
from chatflow_widget.config import TestingConfig
from chatflow_widget.store import ConversationStore

from .fakes import FakeSession, make_client, prediction


@pytest.fixture
def store() -> ConversationStore:
    return ConversationStore()


@pytest.fixture
def cfg() -> TestingConfig:
    config = TestingConfig()
    config.FLOWISE_API_URL = "http://flowise.test"
    config.FLOWISE_CHATFLOW_ID = "flow-123"
    config.APP_ENV = "testing"
    return config


@pytest.fixture
def upstream() -> FakeSession:
    return FakeSession(prediction())


@pytest.fixture
def app(cfg, store, upstream):
    application = create_app(config=cfg, store=store, client=make_client(upstream))
    yield application
    application.extensions["pipeline"].shutdown()


@pytest.fixture
def client(app):
    with app.test_client() as c:
        yield c

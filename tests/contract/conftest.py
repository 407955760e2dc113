"""Fixtures for API contract tests."""

import pytest
from fastapi.testclient import TestClient

from src.lib.api_server import create_app
from src.models import MonitorConfiguration


@pytest.fixture
def configuration():
    return MonitorConfiguration(
        broker={"url": "mqtts://broker.test:8883", "topic": "r04nx",
                "username": "monitor", "password": "s3cret"}
    )


@pytest.fixture
def app(engine, configuration):
    return create_app(engine=engine, configuration=configuration)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def receive_until():
    """Read WebSocket messages until one of ``message_type`` arrives."""
    def receive(websocket, message_type, limit=10):
        for _ in range(limit):
            message = websocket.receive_json()
            if message["type"] == message_type:
                return message
        raise AssertionError(f"no {message_type} message within {limit} messages")

    return receive

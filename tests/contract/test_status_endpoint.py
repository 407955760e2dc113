"""
Contract tests for GET /status, /health and /connections.

The status endpoint reports pipeline statistics and broker connection
health for the running session.
"""
import pytest
from datetime import datetime


@pytest.mark.contract
def test_status_endpoint_returns_valid_schema(client, engine):
    """Test that GET /status returns StatusResponse schema."""
    engine.process_payload("230,10,0,0,25,50", timestamp=1000)

    response = client.get("/status")

    assert response.status_code == 200
    data = response.json()

    assert set(data) >= {"timestamp", "system_status", "engine", "ingestion"}
    datetime.fromisoformat(data["timestamp"])

    system_status = data["system_status"]
    assert system_status["health"]["broker_connected"] is False
    assert system_status["counters"]["messages_processed"] == 1
    assert system_status["system_summary"]["health"] == "disconnected"

    stats = data["engine"]
    assert stats["history_size"] == 1
    assert stats["history_capacity"] == 60
    assert stats["rule_count"] == 10

    # No ingestion adapter attached
    assert data["ingestion"] is None


@pytest.mark.contract
def test_health_endpoint(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.contract
def test_connections_endpoint_empty(client):
    response = client.get("/connections")

    assert response.status_code == 200
    assert response.json() == {"active_connections": 0, "connections": []}

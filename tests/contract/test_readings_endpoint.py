"""
Contract tests for GET /readings and GET /readings/latest.

Readings are returned oldest first; undecodable channels serialize as
null because NaN is not valid JSON.
"""
import pytest


@pytest.mark.contract
def test_readings_empty(client):
    response = client.get("/readings")

    assert response.status_code == 200
    assert response.json() == {"count": 0, "capacity": 60, "readings": []}


@pytest.mark.contract
def test_readings_oldest_first(client, engine):
    for ts, voltage in enumerate((230, 231, 232)):
        engine.process_payload(f"{voltage},10,0,0,25,50", timestamp=ts)

    data = client.get("/readings").json()

    assert data["count"] == 3
    assert [r["voltage"] for r in data["readings"]] == [230.0, 231.0, 232.0]

    reading = data["readings"][0]
    assert set(reading) >= {
        "voltage", "current1", "current2", "current3", "temperature", "humidity",
        "timestamp", "warning", "error", "has_warning", "has_error", "recorded_at"
    }
    assert reading["warning"] == "High AC voltage;High DC voltage;"
    assert reading["has_error"] is True


@pytest.mark.contract
def test_readings_limit(client, engine):
    for ts in range(5):
        engine.process_payload("230,10,0,0,25,50", timestamp=ts)

    data = client.get("/readings", params={"limit": 2}).json()

    assert [r["timestamp"] for r in data["readings"]] == [3, 4]


@pytest.mark.contract
def test_readings_limit_must_be_positive(client):
    assert client.get("/readings", params={"limit": 0}).status_code == 422


@pytest.mark.contract
def test_latest_reading(client, engine):
    assert client.get("/readings/latest").status_code == 404

    engine.process_payload("x,10,0,0,25,50", timestamp=42)
    data = client.get("/readings/latest").json()

    assert data["timestamp"] == 42
    assert data["voltage"] is None
    assert data["current1"] == 10.0


@pytest.mark.contract
def test_latest_reading_with_infinite_field(client, engine):
    engine.process_payload("inf,10,0,0,25,50", timestamp=7)
    response = client.get("/readings/latest")

    assert response.status_code == 200
    assert response.json()["voltage"] is None
    assert engine.alerts() == []

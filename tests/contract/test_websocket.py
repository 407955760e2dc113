"""
Contract tests for the /ws WebSocket stream.

Clients receive an ``initial_state`` snapshot on connect, then a
``reading_update`` per classified reading and an ``alert`` message when
the reading raised alerts.
"""
import pytest


@pytest.mark.contract
def test_initial_state(client, engine):
    engine.process_payload("30,10,0,0,25,50", timestamp=5)

    with client.websocket_connect("/ws") as websocket:
        message = websocket.receive_json()

    assert message["type"] == "initial_state"
    data = message["data"]
    assert data["latest"]["timestamp"] == 5
    assert len(data["history"]) == 1
    assert len(data["alerts"]) == 4
    assert data["system_status"]["messages_processed"] == 1


@pytest.mark.contract
def test_reading_and_alert_streamed(client, engine, receive_until):
    with client.websocket_connect("/ws?client_id=test-dashboard") as websocket:
        receive_until(websocket, "initial_state")

        engine.process_payload("0,10,0,0,25,50", timestamp=9)

        update = receive_until(websocket, "reading_update")
        assert update["data"]["reading"]["timestamp"] == 9
        assert update["data"]["reading"]["has_error"] is True

        alert = receive_until(websocket, "alert")
        assert len(alert["data"]["alerts"]) == 5
        assert alert["data"]["alert_count"] == 5


@pytest.mark.contract
def test_ping_and_dismiss(client, engine, receive_until):
    engine.process_payload("115,10,0,0,25,50", timestamp=0)

    with client.websocket_connect("/ws") as websocket:
        receive_until(websocket, "initial_state")

        websocket.send_json({"type": "ping"})
        assert receive_until(websocket, "pong")["type"] == "pong"

        websocket.send_json({"type": "dismiss_alert", "data": {"index": 0}})
        reply = receive_until(websocket, "alert_dismissed")
        assert reply["dismissed"] is True
        assert reply["alert_count"] == 2

        websocket.send_json({"type": "dismiss_alert", "data": {"index": 2}})
        assert receive_until(websocket, "alert_dismissed")["dismissed"] is False


@pytest.mark.contract
def test_dismiss_rejects_boolean_index(client, engine, receive_until):
    engine.process_payload("115,10,0,0,25,50", timestamp=0)

    with client.websocket_connect("/ws") as websocket:
        receive_until(websocket, "initial_state")

        websocket.send_json({"type": "dismiss_alert", "data": {"index": True}})
        reply = receive_until(websocket, "alert_dismissed")

        assert reply["dismissed"] is False
        assert reply["alert_count"] == 3
        assert len(engine.alerts()) == 3


@pytest.mark.contract
def test_connection_listed(client):
    with client.websocket_connect("/ws?client_id=viewer") as websocket:
        websocket.receive_json()
        connections = client.get("/connections").json()

    assert connections["active_connections"] == 1
    assert connections["connections"][0]["client_id"] == "viewer"

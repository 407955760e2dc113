"""
Contract tests for GET /export.

The export returns archived readings as a CSV download, filtered by an
inclusive time range and a column selection.
"""
import csv
import io

import pytest
from fastapi.testclient import TestClient

from src.lib.api_server import create_app
from src.models import MonitorConfiguration
from src.services import MonitoringEngine


HEADER = "timestamp,voltage,current1,current2,current3,temperature,humidity,warning,error"


@pytest.mark.contract
def test_export_all_columns(client, engine):
    engine.process_payload("0,10,0,0,25,50", timestamp=1704067200000)
    engine.process_payload("231.5,12.25,0,0,25,50", timestamp=1704067260000)

    response = client.get("/export")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"] == 'attachment; filename="sensor_data.csv"'

    lines = response.text.splitlines()
    assert lines[0] == HEADER
    assert lines[1] == (
        "1704067200000,0,10,0,0,25,50,Low AC voltage;,"
        "Low DC voltage;Low DC voltage (46V);Mains failure;Low AC voltage;"
    )

    rows = list(csv.DictReader(io.StringIO(response.text)))
    assert float(rows[1]["voltage"]) == 231.5
    assert float(rows[1]["current1"]) == 12.25


@pytest.mark.contract
def test_export_columns_and_range(client, engine):
    for ts in (1704067200000, 1704067260000, 1704067320000):
        engine.process_payload("230,10,0,0,25,50", timestamp=ts)

    response = client.get("/export", params={
        "start": "2024-01-01T00:01:00Z",
        "end": "2024-01-01T00:02:00Z",
        "columns": "timestamp, voltage",
        "iso_timestamps": "true",
    })

    assert response.status_code == 200
    assert response.text.splitlines() == [
        "timestamp,voltage",
        "2024-01-01T00:01:00.000Z,230",
        "2024-01-01T00:02:00.000Z,230",
    ]


@pytest.mark.contract
def test_export_unknown_column(client):
    response = client.get("/export", params={"columns": "voltage,pressure"})

    assert response.status_code == 400
    assert "pressure" in response.json()["detail"]


@pytest.mark.contract
def test_export_inverted_range(client):
    response = client.get("/export", params={
        "start": "2024-01-02T00:00:00Z",
        "end": "2024-01-01T00:00:00Z",
    })

    assert response.status_code == 400


@pytest.mark.contract
def test_export_without_archive():
    configuration = MonitorConfiguration(archive={"enabled": False})
    engine = MonitoringEngine.from_configuration(configuration)

    with TestClient(create_app(engine=engine, configuration=configuration)) as client:
        response = client.get("/export")

    assert response.status_code == 503

"""Unit tests for the command line application."""

import csv
from datetime import timezone

import pytest
import structlog

from src.cli.main import PowerMonitorApplication, build_export_filter, create_parser, main_async
from src.lib.notifications import NullNotificationBackend, NullSoundPlayer


@pytest.fixture
def quiet_notifications(monkeypatch):
    monkeypatch.setattr("src.cli.main.TerminalBellPlayer", NullSoundPlayer)
    monkeypatch.setattr("src.cli.main.NotifySendBackend", NullNotificationBackend)
    monkeypatch.setattr("src.cli.main.signal.signal", lambda signum, handler: None)
    yield
    structlog.reset_defaults()


def test_build_export_filter():
    args = create_parser().parse_args([
        "--export-csv", "out.csv",
        "--columns", "voltage, timestamp",
        "--start", "2024-01-01T00:00:00Z",
        "--iso-timestamps",
    ])

    export_filter = build_export_filter(args)

    assert export_filter.columns.selected() == ["timestamp", "voltage"]
    assert export_filter.iso_timestamps is True
    assert export_filter.start.tzinfo == timezone.utc
    assert export_filter.end is None


def test_invalid_start_rejected():
    with pytest.raises(SystemExit):
        create_parser().parse_args(["--start", "yesterday"])


@pytest.mark.asyncio
async def test_export_config(tmp_path, quiet_notifications):
    path = tmp_path / "config.yaml"

    assert await main_async(["--export-config", str(path)]) == 0
    assert "broker:" in path.read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_invalid_export_columns(tmp_path, quiet_notifications):
    code = await main_async(["--export-csv", str(tmp_path / "x.csv"), "--columns", "pressure"])

    assert code == 2


@pytest.mark.asyncio
async def test_demo_run_exports_csv(tmp_path, quiet_notifications):
    output = tmp_path / "readings.csv"

    code = await main_async([
        "--demo", "--no-api", "--no-display", "--duration", "1",
        "--export-csv", str(output), "--columns", "timestamp,voltage,error",
    ])

    assert code == 0
    rows = list(csv.DictReader(output.open(encoding="utf-8")))
    assert len(rows) >= 1
    assert set(rows[0]) == {"timestamp", "voltage", "error"}


@pytest.mark.asyncio
async def test_application_lifecycle(quiet_notifications):
    app = PowerMonitorApplication()
    await app.initialize()

    assert app.engine is not None
    assert app.archive is not None
    assert app.system_status.is_running

    app.engine.process_payload("0,10,0,0,25,50", timestamp=0)
    status = await app.get_status()

    assert status["performance"]["engine"]["alert_count"] == 5
    assert status["performance"]["archive"]["reading_count"] == 1

    await app.stop()

    assert app.archive is None
    assert not app.system_status.is_running

"""Unit tests for data models."""

import math
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from src.models import (
    AlertEvent,
    AlertSeverity,
    BrokerSettings,
    ComparisonOperator,
    DEFAULT_RULES,
    EXPORT_COLUMNS,
    ExportColumns,
    ExportFilter,
    MonitorConfiguration,
    ReconnectSettings,
    SensorChannel,
    SensorReading,
    SystemStatus,
    ThresholdRule,
)


class TestSensorReading:
    """Test SensorReading model."""

    def test_from_payload(self):
        """Fields decode in wire order."""
        reading = SensorReading.from_payload(b"230.5,12.1,3,4,25.5,60", timestamp=1000)

        assert reading.voltage == 230.5
        assert reading.current1 == 12.1
        assert reading.current2 == 3.0
        assert reading.current3 == 4.0
        assert reading.temperature == 25.5
        assert reading.humidity == 60.0
        assert reading.timestamp == 1000
        assert reading.warning == ""
        assert reading.error == ""
        assert not reading.is_malformed

    def test_from_payload_non_numeric_fields_become_nan(self):
        reading = SensorReading.from_payload("abc,,1,2,3,4", timestamp=0)

        assert math.isnan(reading.voltage)
        assert math.isnan(reading.current1)
        assert reading.current2 == 1.0
        assert reading.is_malformed

    @pytest.mark.parametrize("field", ["inf", "-Infinity", "nan", "1_000", "0x10", "1e999", "12V"])
    def test_from_payload_only_accepts_decimal_literals(self, field):
        reading = SensorReading.from_payload(f"{field},10,0,0,25,50", timestamp=0)

        assert math.isnan(reading.voltage)
        assert reading.current1 == 10.0

    @pytest.mark.parametrize("field,expected", [
        ("230", 230.0), ("-5", -5.0), ("+1.5", 1.5), (".5", 0.5), ("7.", 7.0), ("2.3e2", 230.0), (" 12 ", 12.0),
    ])
    def test_from_payload_decimal_forms(self, field, expected):
        assert SensorReading.from_payload(f"{field},0,0,0,0,0", timestamp=0).voltage == expected

    def test_from_payload_missing_and_extra_fields(self):
        short = SensorReading.from_payload("230,10", timestamp=0)
        assert short.current1 == 10.0
        assert math.isnan(short.current2)
        assert math.isnan(short.humidity)

        long = SensorReading.from_payload("1,2,3,4,5,6,7,8", timestamp=0)
        assert long.humidity == 6.0
        assert not long.is_malformed

    def test_from_payload_defaults_timestamp_to_now(self):
        before = int(datetime.now().timestamp() * 1000)
        reading = SensorReading.from_payload("1,2,3,4,5,6")
        after = int(datetime.now().timestamp() * 1000)

        assert before - 1 <= reading.timestamp <= after + 1

    def test_reading_is_immutable(self):
        reading = SensorReading.from_payload("1,2,3,4,5,6", timestamp=0)

        with pytest.raises(ValidationError):
            reading.voltage = 10.0

    def test_with_annotations(self):
        reading = SensorReading.from_payload("30,0,0,0,20,50", timestamp=0)
        annotated = reading.with_annotations(warning="Low AC voltage;", error="Low DC voltage;")

        assert annotated.has_warning
        assert annotated.has_error
        assert annotated.voltage == 30.0
        assert reading.warning == ""

    def test_to_dict_maps_nan_to_none(self):
        reading = SensorReading.from_payload("x,1,2,3,4,5", timestamp=0)
        data = reading.to_dict()

        assert data["voltage"] is None
        assert data["current1"] == 1.0
        assert "recorded_at" in data

    def test_to_dict_maps_infinity_to_none(self):
        reading = SensorReading(voltage=float("inf"), current1=float("-inf"), current2=0,
                                current3=0, temperature=0, humidity=0, timestamp=0)
        data = reading.to_dict()

        assert data["voltage"] is None
        assert data["current1"] is None
        assert data["current2"] == 0.0

    def test_channel_value(self):
        reading = SensorReading.from_payload("1,2,3,4,5,6", timestamp=0)

        assert reading.channel_value("temperature") == 5.0
        assert reading.channel_value(SensorChannel.CURRENT3) == 4.0
        with pytest.raises(ValueError):
            reading.channel_value("pressure")


class TestThresholdRule:
    """Test ThresholdRule model."""

    def test_default_table(self):
        table = [
            (rule.name, rule.channel, rule.operator, rule.threshold, rule.severity, rule.label, rule.message)
            for rule in DEFAULT_RULES
        ]

        assert table == [
            ("low_ac_warning", "voltage", "<", 120, "warning", "Low AC voltage", "Low AC voltage warning"),
            ("high_ac_warning", "voltage", ">", 200, "warning", "High AC voltage", "High AC voltage warning"),
            ("high_dc_warning", "voltage", ">", 54, "warning", "High DC voltage", "High DC voltage warning"),
            ("low_dc_error", "voltage", "<", 40, "error", "Low DC voltage", "Low DC voltage error"),
            ("high_ac_error", "voltage", ">", 240, "error", "High AC voltage", "High AC voltage error"),
            ("low_dc_error_secondary", "voltage", "<", 46, "error", "Low DC voltage (46V)",
             "Low DC voltage error (46V)"),
            ("high_dc_error", "voltage", ">", 60, "error", "High DC voltage", "High DC voltage error"),
            ("mains_failure", "voltage", "==", 0, "error", "Mains failure", "Mains failure"),
            ("low_ac_error", "voltage", "<", 110, "error", "Low AC voltage", "Low AC voltage error"),
            ("critical_load", "current1", ">", 70, "warning", "Critical load",
             "Critical load condition (overload)"),
        ]

    @pytest.mark.parametrize("operator,value,expected", [
        (ComparisonOperator.LESS_THAN, 119.9, True),
        (ComparisonOperator.LESS_THAN, 120, False),
        (ComparisonOperator.GREATER_THAN, 120.1, True),
        (ComparisonOperator.GREATER_THAN, 120, False),
        (ComparisonOperator.EQUAL, 120, True),
        (ComparisonOperator.EQUAL, 120.5, False),
    ])
    def test_matches(self, operator, value, expected):
        rule = ThresholdRule(
            name="r", channel=SensorChannel.VOLTAGE, operator=operator,
            threshold=120, severity=AlertSeverity.WARNING, label="L", message="M"
        )
        assert rule.matches(value) is expected

    def test_nan_never_matches(self):
        for rule in DEFAULT_RULES:
            assert rule.matches(math.nan) is False

    def test_label_cannot_contain_separator(self):
        with pytest.raises(ValidationError):
            ThresholdRule(
                name="bad", channel="voltage", operator="<", threshold=1,
                severity="error", label="a;b", message="m"
            )

    def test_threshold_must_be_finite(self):
        with pytest.raises(ValidationError):
            ThresholdRule(
                name="bad", channel="voltage", operator="<", threshold=float("inf"),
                severity="error", label="a", message="m"
            )

    def test_describe(self):
        assert DEFAULT_RULES[0].describe() == "voltage < 120"


class TestAlertEvent:
    """Test AlertEvent model."""

    def test_alert_event_creation(self):
        alert = AlertEvent(message="  Mains failure ", severity=AlertSeverity.ERROR, timestamp=5000)

        assert alert.message == "Mains failure"
        assert alert.severity == "error"
        assert alert.is_error
        assert not alert.is_warning
        assert alert.to_log_entry() == "[ERROR] Mains failure"

    def test_equal_content_alerts_are_equal_values(self):
        first = AlertEvent(message="m", severity="warning", timestamp=1)
        second = AlertEvent(message="m", severity="warning", timestamp=1)

        assert first == second
        assert first is not second


class TestMonitorConfiguration:
    """Test MonitorConfiguration model."""

    def test_defaults(self):
        config = MonitorConfiguration()

        assert config.broker.url == "wss://test.mosquitto.org:8081"
        assert config.broker.topic == "r04nx"
        assert config.history.window_size == 60
        assert len(config.rules) == 10
        assert config.api_port == 5002

    @pytest.mark.parametrize("url,host,port,transport,tls", [
        ("wss://test.mosquitto.org:8081", "test.mosquitto.org", 8081, "websockets", True),
        ("mqtt://localhost", "localhost", 1883, "tcp", False),
        ("mqtts://broker.local", "broker.local", 8883, "tcp", True),
        ("ws://10.0.0.2:9001/mqtt", "10.0.0.2", 9001, "websockets", False),
    ])
    def test_broker_url_parsing(self, url, host, port, transport, tls):
        broker = BrokerSettings(url=url)

        assert broker.host == host
        assert broker.port == port
        assert broker.transport == transport
        assert broker.use_tls is tls

    def test_invalid_broker_scheme(self):
        with pytest.raises(ValidationError):
            BrokerSettings(url="http://example.com")

    def test_reconnect_delay_bounds(self):
        with pytest.raises(ValidationError):
            ReconnectSettings(initial_delay_s=10.0, max_delay_s=5.0)

    def test_duplicate_rule_names_rejected(self):
        with pytest.raises(ValidationError):
            MonitorConfiguration(rules=[DEFAULT_RULES[0], DEFAULT_RULES[0]])

    def test_export_dict_round_trip(self):
        config = MonitorConfiguration(broker={"url": "mqtt://localhost:1883", "topic": "t"})
        data = config.export_dict()

        assert "host" not in data["broker"]
        assert MonitorConfiguration(**data) == config

    def test_get_rule(self):
        config = MonitorConfiguration()

        assert config.get_rule("mains_failure").threshold == 0
        with pytest.raises(KeyError):
            config.get_rule("missing")


class TestExportFilter:
    """Test export filter models."""

    def test_all_columns_by_default(self):
        assert ExportColumns().selected() == EXPORT_COLUMNS

    def test_only_keeps_declared_order(self):
        columns = ExportColumns.only(["error", "timestamp", "voltage"])

        assert columns.selected() == ["timestamp", "voltage", "error"]

    def test_only_rejects_unknown(self):
        with pytest.raises(ValueError):
            ExportColumns.only(["voltage", "pressure"])

    def test_inverted_range_rejected(self):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValueError):
            ExportFilter(start=now, end=now - timedelta(seconds=1))

    def test_millis_bounds(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        export_filter = ExportFilter(start=start)

        assert export_filter.start_millis == 1704067200000
        assert export_filter.end_millis is None


class TestSystemStatus:
    """Test SystemStatus model."""

    def test_counters(self):
        status = SystemStatus()
        status.start_system(MonitorConfiguration())

        status.record_message(malformed=False, alert_count=2)
        status.record_message(malformed=True, alert_count=0)
        status.record_failure()

        assert status.counters.messages_received == 3
        assert status.counters.messages_processed == 2
        assert status.counters.malformed_readings == 1
        assert status.counters.messages_failed == 1
        assert status.counters.alerts_raised == 2

    def test_unexpected_disconnect_counted(self):
        status = SystemStatus()

        status.update_connection(True, "connected")
        assert status.health.overall_health == "healthy"

        status.update_connection(False, "reconnecting")
        status.update_connection(True, "connected")
        status.update_connection(False, "disconnected", expected=True)

        assert status.health.disconnect_count == 1
        assert status.health.overall_health == "disconnected"

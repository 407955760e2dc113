"""Data models for the power sensor monitoring system."""

from .alert_event import AlertEvent, AlertSeverity
from .threshold_rule import (
    ThresholdRule,
    SensorChannel,
    ComparisonOperator,
    DEFAULT_RULES,
    default_rules,
)
from .sensor_reading import SensorReading, PAYLOAD_FIELDS, current_millis
from .monitor_configuration import (
    MonitorConfiguration,
    BrokerSettings,
    ReconnectSettings,
    HistorySettings,
    NotificationSettings,
    ArchiveSettings,
)
from .system_status import SystemStatus, ConnectionHealth, IngestionCounters
from .export_filter import ExportFilter, ExportColumns, EXPORT_COLUMNS

__all__ = [
    "AlertEvent",
    "AlertSeverity",
    "ThresholdRule",
    "SensorChannel",
    "ComparisonOperator",
    "DEFAULT_RULES",
    "default_rules",
    "SensorReading",
    "PAYLOAD_FIELDS",
    "current_millis",
    "MonitorConfiguration",
    "BrokerSettings",
    "ReconnectSettings",
    "HistorySettings",
    "NotificationSettings",
    "ArchiveSettings",
    "SystemStatus",
    "ConnectionHealth",
    "IngestionCounters",
    "ExportFilter",
    "ExportColumns",
    "EXPORT_COLUMNS",
]

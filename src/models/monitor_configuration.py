"""MonitorConfiguration data model for broker, engine and notification settings."""

from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, computed_field

from .threshold_rule import ThresholdRule, default_rules


# Default port per URL scheme
_SCHEME_PORTS = {
    "mqtt": 1883,
    "tcp": 1883,
    "mqtts": 8883,
    "ssl": 8883,
    "ws": 80,
    "wss": 443,
}


class BrokerSettings(BaseModel):
    """MQTT broker connection settings."""

    url: str = Field(
        default="wss://test.mosquitto.org:8081",
        description="Broker URL (mqtt://, mqtts://, ws:// or wss://)"
    )
    topic: str = Field(default="r04nx", min_length=1, description="Topic carrying sensor readings")
    client_id: str = Field(default="power-monitor", min_length=1, max_length=64)
    keepalive_s: int = Field(default=60, ge=5, le=3600, description="MQTT keepalive in seconds")
    qos: int = Field(default=0, ge=0, le=2, description="Subscription QoS")
    username: Optional[str] = Field(default=None, description="Broker username")
    password: Optional[str] = Field(default=None, description="Broker password")

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate the broker URL scheme and host."""
        parsed = urlparse(v)
        if parsed.scheme not in _SCHEME_PORTS:
            raise ValueError(
                f"unsupported broker scheme '{parsed.scheme}' "
                f"(expected one of {', '.join(sorted(_SCHEME_PORTS))})"
            )
        if not parsed.hostname:
            raise ValueError("broker url must include a host")
        return v

    @field_validator('topic')
    @classmethod
    def validate_topic(cls, v: str) -> str:
        if "#" in v[:-1] or "\x00" in v:
            raise ValueError("'#' wildcard is only allowed as the last character")
        return v

    @computed_field
    @property
    def host(self) -> str:
        return urlparse(self.url).hostname or ""

    @computed_field
    @property
    def port(self) -> int:
        parsed = urlparse(self.url)
        return parsed.port or _SCHEME_PORTS[parsed.scheme]

    @computed_field
    @property
    def transport(self) -> str:
        """paho-mqtt transport name."""
        return "websockets" if urlparse(self.url).scheme in ("ws", "wss") else "tcp"

    @computed_field
    @property
    def use_tls(self) -> bool:
        return urlparse(self.url).scheme in ("wss", "mqtts", "ssl")

    @computed_field
    @property
    def websocket_path(self) -> str:
        return urlparse(self.url).path or "/mqtt"


class ReconnectSettings(BaseModel):
    """Exponential backoff for broker (re)connection."""

    initial_delay_s: float = Field(default=1.0, gt=0.0, le=60.0, description="First retry delay")
    max_delay_s: float = Field(default=60.0, gt=0.0, le=3600.0, description="Retry delay cap")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    max_attempts: int = Field(default=10, ge=1, le=1000, description="Initial connect attempts")

    def model_post_init(self, __context: Any) -> None:
        """Validate delay bounds."""
        if self.max_delay_s < self.initial_delay_s:
            raise ValueError("max_delay_s must be >= initial_delay_s")


class HistorySettings(BaseModel):
    """Rolling history window settings."""

    window_size: int = Field(default=60, ge=1, le=100000, description="Readings kept for trend display")


class NotificationSettings(BaseModel):
    """Audible cue and desktop notification settings."""

    sound_enabled: bool = Field(default=True, description="Ring the terminal bell on errors")
    desktop_enabled: bool = Field(default=True, description="Send desktop notifications")
    error_title: str = Field(default="⚠️ Error Alert", min_length=1)
    warning_title: str = Field(default="⚠️ Warning Alert", min_length=1)
    separator: str = Field(default=", ", description="Joins alert messages in a notification body")


class ArchiveSettings(BaseModel):
    """Settings for the reading archive backing CSV export."""

    enabled: bool = Field(default=True, description="Retain every classified reading for export")
    in_memory: bool = Field(default=True, description="Keep the archive database in memory")
    database_path: str = Field(default="power_monitor_readings.db")
    retention_hours: Optional[float] = Field(
        default=None,
        gt=0.0,
        description="Prune archived readings older than this; None keeps everything"
    )


class MonitorConfiguration(BaseModel):
    """Complete monitoring system configuration."""

    model_config = {
        "validate_assignment": True,
        "extra": "forbid",
        "json_schema_extra": {
            "example": {
                "broker": {"url": "wss://test.mosquitto.org:8081", "topic": "r04nx"},
                "history": {"window_size": 60},
                "notifications": {"sound_enabled": True, "desktop_enabled": True}
            }
        }
    }

    broker: BrokerSettings = Field(default_factory=BrokerSettings, description="MQTT broker")
    reconnect: ReconnectSettings = Field(default_factory=ReconnectSettings, description="Reconnect backoff")
    history: HistorySettings = Field(default_factory=HistorySettings, description="History window")
    notifications: NotificationSettings = Field(
        default_factory=NotificationSettings,
        description="Notification settings"
    )
    archive: ArchiveSettings = Field(default_factory=ArchiveSettings, description="Reading archive")

    # Threshold table, evaluated in order
    rules: List[ThresholdRule] = Field(default_factory=default_rules, description="Threshold rules")

    # System settings
    enable_debug_logging: bool = Field(default=False, description="Enable debug level logging")
    api_port: int = Field(default=5002, ge=1024, le=65535, description="HTTP API server port")

    @field_validator('rules')
    @classmethod
    def validate_rules(cls, v: List[ThresholdRule]) -> List[ThresholdRule]:
        """Rule names must be unique."""
        names = [rule.name for rule in v]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate rule names: {', '.join(duplicates)}")
        return v

    def get_rule(self, name: str) -> ThresholdRule:
        """Get a rule by name."""
        for rule in self.rules:
            if rule.name == name:
                return rule
        raise KeyError(name)

    def export_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary for YAML/JSON serialization.

        Computed broker fields are derived from the URL and are left out so
        the result loads back cleanly.
        """
        data = self.model_dump(mode='json')
        for key in ("host", "port", "transport", "use_tls", "websocket_path"):
            data["broker"].pop(key, None)
        return data

"""SystemStatus model for ingestion health and connection state."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, computed_field

from .monitor_configuration import MonitorConfiguration


class ConnectionHealth(BaseModel):
    """Broker connection health."""

    model_config = {
        "validate_assignment": True,
        "extra": "forbid"
    }

    broker_connected: bool = Field(default=False, description="MQTT broker connected")
    connection_state: str = Field(default="disconnected", description="Transport state name")
    last_connected_at: Optional[datetime] = Field(default=None)
    last_disconnected_at: Optional[datetime] = Field(default=None)
    disconnect_count: int = Field(default=0, ge=0, description="Unexpected disconnects this session")

    @computed_field
    @property
    def overall_health(self) -> str:
        """Overall connection health."""
        if not self.broker_connected:
            return "disconnected"
        elif self.disconnect_count > 5:
            return "unstable"
        return "healthy"


class IngestionCounters(BaseModel):
    """Message counters for the ingestion path."""

    model_config = {
        "validate_assignment": True,
        "extra": "forbid"
    }

    messages_received: int = Field(default=0, ge=0)
    messages_processed: int = Field(default=0, ge=0)
    messages_failed: int = Field(default=0, ge=0)
    malformed_readings: int = Field(default=0, ge=0, description="Readings with NaN channels")
    alerts_raised: int = Field(default=0, ge=0)
    last_message_at: Optional[datetime] = Field(default=None)


class SystemStatus(BaseModel):
    """Runtime status of one monitoring session."""

    model_config = {
        "validate_assignment": True,
        "extra": "forbid"
    }

    is_running: bool = Field(default=False, description="System running state")
    started_at: Optional[datetime] = Field(default=None, description="System start time")
    last_update: datetime = Field(default_factory=datetime.now)

    configuration: Optional[MonitorConfiguration] = Field(default=None)
    health: ConnectionHealth = Field(default_factory=ConnectionHealth)
    counters: IngestionCounters = Field(default_factory=IngestionCounters)

    @computed_field
    @property
    def uptime_seconds(self) -> float:
        """Current system uptime in seconds."""
        if self.started_at is None:
            return 0.0
        return (datetime.now() - self.started_at).total_seconds()

    @computed_field
    @property
    def system_summary(self) -> Dict[str, Any]:
        """System summary for API responses."""
        return {
            "running": self.is_running,
            "uptime_seconds": round(self.uptime_seconds, 1),
            "health": self.health.overall_health,
            "broker_connected": self.health.broker_connected,
            "messages_processed": self.counters.messages_processed,
            "alerts_raised": self.counters.alerts_raised,
            "last_update": self.last_update.isoformat()
        }

    def start_system(self, config: MonitorConfiguration) -> None:
        """Mark the session as started."""
        self.is_running = True
        self.started_at = datetime.now()
        self.configuration = config
        self.counters = IngestionCounters()
        self._update_timestamp()

    def stop_system(self) -> None:
        """Mark the session as stopped."""
        self.is_running = False
        self.update_connection(False, "disconnected", expected=True)

    def update_connection(self, connected: bool, state: str, expected: bool = False) -> None:
        """Record a transport state change."""
        was_connected = self.health.broker_connected
        self.health.broker_connected = connected
        self.health.connection_state = state

        if connected and not was_connected:
            self.health.last_connected_at = datetime.now()
        elif was_connected and not connected:
            self.health.last_disconnected_at = datetime.now()
            if not expected:
                self.health.disconnect_count += 1

        self._update_timestamp()

    def record_message(self, malformed: bool, alert_count: int) -> None:
        """Count a message that was classified."""
        self.counters.messages_received += 1
        self.counters.messages_processed += 1
        self.counters.alerts_raised += alert_count
        if malformed:
            self.counters.malformed_readings += 1
        self.counters.last_message_at = datetime.now()
        self._update_timestamp()

    def record_failure(self) -> None:
        """Count a message whose processing raised."""
        self.counters.messages_received += 1
        self.counters.messages_failed += 1
        self._update_timestamp()

    def _update_timestamp(self) -> None:
        """Update the last update timestamp."""
        self.last_update = datetime.now()

    def export_status(self) -> Dict[str, Any]:
        """Export complete status for API responses."""
        return {
            "system_summary": self.system_summary,
            "health": self.health.model_dump(mode='json'),
            "counters": self.counters.model_dump(mode='json')
        }

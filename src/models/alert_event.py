"""AlertEvent data model for threshold violations."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field, field_validator


class AlertSeverity(str, Enum):
    """Alert severity levels."""

    WARNING = "warning"
    ERROR = "error"


class AlertEvent(BaseModel):
    """One triggered threshold violation.

    Alerts are never deduplicated: the same condition firing on consecutive
    readings produces distinct events. Identity is the event's position in the
    alert log, not its content.
    """

    model_config = {
        "frozen": True,
        "extra": "forbid",
        "use_enum_values": True
    }

    message: str = Field(min_length=1, max_length=500, description="Alert message")
    severity: AlertSeverity = Field(description="Alert severity level")
    timestamp: int = Field(ge=0, description="Creation time in epoch milliseconds")

    @field_validator('message')
    @classmethod
    def validate_message(cls, v: str) -> str:
        """Validate and clean message text."""
        return v.strip()

    @property
    def recorded_at(self) -> datetime:
        """Creation time as a local datetime."""
        return datetime.fromtimestamp(self.timestamp / 1000.0)

    @property
    def is_error(self) -> bool:
        return self.severity == AlertSeverity.ERROR

    @property
    def is_warning(self) -> bool:
        return self.severity == AlertSeverity.WARNING

    def to_log_entry(self) -> str:
        """Convert alert to structured log entry."""
        return f"[{self.severity.upper()}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API and WebSocket payloads."""
        data = self.model_dump()
        data["recorded_at"] = self.recorded_at.isoformat()
        return data

    def __str__(self) -> str:
        """String representation for display."""
        timestamp_str = self.recorded_at.strftime("%H:%M:%S")
        return f"{timestamp_str} {self.severity.upper()}: {self.message}"

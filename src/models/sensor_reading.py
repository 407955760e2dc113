"""SensorReading data model for individual mains/load measurements."""

import math
import re
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, computed_field

from .threshold_rule import SensorChannel


# Wire order of the comma-separated payload fields.
PAYLOAD_FIELDS: List[str] = [channel.value for channel in SensorChannel]

# Plain decimal literals only; rejects inf, nan and underscore separators
DECIMAL_PATTERN = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", re.ASCII)


def current_millis() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _decode_field(raw: Optional[str]) -> float:
    """Decode one payload field, mapping anything non-numeric to NaN."""
    if raw is None:
        return math.nan
    text = raw.strip()
    if not DECIMAL_PATTERN.fullmatch(text):
        return math.nan
    value = float(text)
    # Overflowing exponents such as 1e999
    return value if math.isfinite(value) else math.nan


class SensorReading(BaseModel):
    """One snapshot of all sensor channels.

    Readings are immutable. ``warning`` and ``error`` hold the
    semicolon-terminated labels of every rule that tripped during
    classification and are rebuilt from scratch on each evaluation.
    """

    model_config = {
        "frozen": True,
        "extra": "forbid"
    }

    # Channel values; NaN marks a field that could not be decoded
    voltage: float = Field(description="Supply voltage in volts")
    current1: float = Field(description="Phase 1 current in amperes")
    current2: float = Field(description="Phase 2 current in amperes")
    current3: float = Field(description="Phase 3 current in amperes")
    temperature: float = Field(description="Ambient temperature in degrees Celsius")
    humidity: float = Field(description="Relative humidity in percent")

    timestamp: int = Field(default_factory=current_millis, ge=0,
                           description="Ingestion time in epoch milliseconds")

    # Derived annotations
    warning: str = Field(default="", description="Triggered warning labels, ';'-terminated")
    error: str = Field(default="", description="Triggered error labels, ';'-terminated")

    @classmethod
    def from_payload(cls,
                     payload: Union[bytes, str],
                     timestamp: Optional[int] = None) -> "SensorReading":
        """Decode a ``voltage,current1,current2,current3,temperature,humidity`` line.

        Malformed messages are never rejected: non-numeric or missing fields
        become NaN and extra trailing fields are ignored.
        """
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8", errors="replace")

        parts = payload.strip().split(",")
        values = {
            name: _decode_field(parts[index] if index < len(parts) else None)
            for index, name in enumerate(PAYLOAD_FIELDS)
        }

        return cls(
            timestamp=timestamp if timestamp is not None else current_millis(),
            **values
        )

    @computed_field
    @property
    def has_warning(self) -> bool:
        return bool(self.warning)

    @computed_field
    @property
    def has_error(self) -> bool:
        return bool(self.error)

    @property
    def recorded_at(self) -> datetime:
        """Ingestion time as a local datetime."""
        return datetime.fromtimestamp(self.timestamp / 1000.0)

    @property
    def is_malformed(self) -> bool:
        """True if any channel failed to decode."""
        return any(math.isnan(self.channel_value(name)) for name in PAYLOAD_FIELDS)

    def channel_value(self, channel: Union[SensorChannel, str]) -> float:
        """Value of a channel by name."""
        name = channel.value if isinstance(channel, SensorChannel) else channel
        if name not in PAYLOAD_FIELDS:
            raise ValueError(f"Unknown channel: {name}")
        return getattr(self, name)

    def with_annotations(self, warning: str, error: str) -> "SensorReading":
        """Return a copy carrying the given annotations."""
        return self.model_copy(update={"warning": warning, "error": error})

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API and WebSocket payloads.

        NaN and infinities are not valid JSON, so such channels are emitted as None.
        """
        data = self.model_dump()
        for name in PAYLOAD_FIELDS:
            if not math.isfinite(data[name]):
                data[name] = None
        data["recorded_at"] = self.recorded_at.isoformat()
        return data

    def __str__(self) -> str:
        """String representation for logging."""
        status = "ERROR" if self.has_error else "WARN" if self.has_warning else "OK"
        return (
            f"{status}: {self.voltage:.1f}V "
            f"({self.current1:.1f}/{self.current2:.1f}/{self.current3:.1f}A, "
            f"{self.temperature:.1f}C, {self.humidity:.0f}%)"
        )

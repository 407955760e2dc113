"""ExportFilter data model for CSV export of archived readings."""

from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field


# Declared CSV column order
EXPORT_COLUMNS: List[str] = [
    "timestamp",
    "voltage",
    "current1",
    "current2",
    "current3",
    "temperature",
    "humidity",
    "warning",
    "error",
]


class ExportColumns(BaseModel):
    """Per-column inclusion mask; every column is included by default."""

    timestamp: bool = True
    voltage: bool = True
    current1: bool = True
    current2: bool = True
    current3: bool = True
    temperature: bool = True
    humidity: bool = True
    warning: bool = True
    error: bool = True

    @classmethod
    def only(cls, names: List[str]) -> "ExportColumns":
        """Mask including just the named columns."""
        unknown = [name for name in names if name not in EXPORT_COLUMNS]
        if unknown:
            raise ValueError(f"Unknown export columns: {', '.join(unknown)}")
        return cls(**{name: name in names for name in EXPORT_COLUMNS})

    def selected(self) -> List[str]:
        """Included column names in declared order."""
        return [name for name in EXPORT_COLUMNS if getattr(self, name)]


class ExportFilter(BaseModel):
    """Inclusive time range plus column mask for an export."""

    model_config = {
        "extra": "forbid"
    }

    start: Optional[datetime] = Field(default=None, description="Earliest reading, inclusive")
    end: Optional[datetime] = Field(default=None, description="Latest reading, inclusive")
    columns: ExportColumns = Field(default_factory=ExportColumns)
    iso_timestamps: bool = Field(default=False, description="Render timestamp as ISO-8601")

    def model_post_init(self, __context: Any) -> None:
        """Validate the range is not inverted."""
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end")

    @property
    def start_millis(self) -> Optional[int]:
        return _to_millis(self.start)

    @property
    def end_millis(self) -> Optional[int]:
        return _to_millis(self.end)


def _to_millis(value: Optional[Union[datetime, int]]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    return int(value)

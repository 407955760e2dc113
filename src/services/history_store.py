"""HistoryStore service: bounded rolling window of classified readings."""

from collections import deque
from typing import Deque, List, Optional
import threading

from ..models import SensorReading


class HistoryStore:
    """Rolling window of the most recent readings for trend display.

    Oldest readings are evicted first once the window is full. ``latest()``
    tracks the most recently appended reading independently of the window.
    """

    def __init__(self, capacity: int = 60):
        """Initialize history window."""
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._readings: Deque[SensorReading] = deque(maxlen=capacity)
        self._latest: Optional[SensorReading] = None
        self._total_appended = 0
        self._lock = threading.Lock()

    def append(self, reading: SensorReading) -> None:
        """Add a reading to the tail of the window."""
        with self._lock:
            self._readings.append(reading)
            self._latest = reading
            self._total_appended += 1

    def latest(self) -> Optional[SensorReading]:
        """Most recently appended reading, or None before the first one."""
        with self._lock:
            return self._latest

    def all(self) -> List[SensorReading]:
        """Current window contents, oldest first."""
        with self._lock:
            return list(self._readings)

    def recent(self, limit: int) -> List[SensorReading]:
        """The newest ``limit`` readings, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            return list(self._readings)[-limit:]

    @property
    def total_appended(self) -> int:
        return self._total_appended

    def clear(self) -> None:
        """Drop the window and the latest pointer."""
        with self._lock:
            self._readings.clear()
            self._latest = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._readings)


__all__ = ["HistoryStore"]

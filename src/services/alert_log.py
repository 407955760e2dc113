"""AlertLog service: ordered, user-dismissible record of raised alerts."""

from typing import Dict, Iterable, List
import threading

import structlog

from ..models import AlertEvent, AlertSeverity


logger = structlog.get_logger(__name__)


class AlertLog:
    """Unbounded, insertion-ordered alert collection.

    Alerts are identified by position. Dismissing index ``i`` removes exactly
    that entry and shifts every later entry down by one.
    """

    def __init__(self):
        self._alerts: List[AlertEvent] = []
        self._lock = threading.Lock()

    def record(self, events: Iterable[AlertEvent]) -> int:
        """Append events to the tail, preserving their order."""
        events = list(events)
        if not events:
            return 0
        with self._lock:
            self._alerts.extend(events)
        return len(events)

    def dismiss(self, index: int) -> bool:
        """Remove the alert at ``index``.

        A stale or out-of-range index is a no-op and returns False. Negative
        indexes are rejected rather than counted from the end.
        """
        with self._lock:
            if index < 0 or index >= len(self._alerts):
                logger.debug("Ignoring dismiss of stale alert index",
                             index=index,
                             alert_count=len(self._alerts))
                return False
            removed = self._alerts.pop(index)

        logger.debug("Alert dismissed", index=index, message=removed.message)
        return True

    def all(self) -> List[AlertEvent]:
        """Snapshot of the log, oldest first."""
        with self._lock:
            return list(self._alerts)

    def get(self, index: int) -> AlertEvent:
        with self._lock:
            if index < 0 or index >= len(self._alerts):
                raise IndexError(f"alert index {index} out of range")
            return self._alerts[index]

    def counts(self) -> Dict[str, int]:
        """Number of alerts per severity."""
        with self._lock:
            alerts = list(self._alerts)
        return {
            severity.value: sum(1 for alert in alerts if alert.severity == severity)
            for severity in AlertSeverity
        }

    def clear(self) -> int:
        """Dismiss every alert. Returns the number removed."""
        with self._lock:
            count = len(self._alerts)
            self._alerts.clear()
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)


__all__ = ["AlertLog"]

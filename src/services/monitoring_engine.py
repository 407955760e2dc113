"""MonitoringEngine service: the per-reading pipeline and its read interface."""

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional, Union
import threading

import structlog

from ..models import (
    AlertEvent,
    MonitorConfiguration,
    SensorReading,
    SystemStatus,
)
from .alert_log import AlertLog
from .classifier import ClassificationResult, ThresholdClassifier
from .history_store import HistoryStore
from .notifier import AlertNotifier
from .reading_archive import ReadingArchive


logger = structlog.get_logger(__name__)

UpdateCallback = Callable[[ClassificationResult], Any]


class MonitoringEngine:
    """Classify readings and fan the results out to every collaborator.

    Per reading, in order: classify, append to history, record alerts, fire
    notifications, archive, count, then notify update listeners. Readings are
    processed synchronously on the caller's thread (the MQTT network thread
    in production), so results are observed in arrival order.
    """

    def __init__(self,
                 classifier: Optional[ThresholdClassifier] = None,
                 history: Optional[HistoryStore] = None,
                 alert_log: Optional[AlertLog] = None,
                 notifier: Optional[AlertNotifier] = None,
                 archive: Optional[ReadingArchive] = None,
                 system_status: Optional[SystemStatus] = None):
        """Initialize the engine."""
        self.classifier = classifier if classifier is not None else ThresholdClassifier()
        self.history_store = history if history is not None else HistoryStore()
        self.alert_log = alert_log if alert_log is not None else AlertLog()
        self.notifier = notifier if notifier is not None else AlertNotifier()
        self.archive = archive
        self.system_status = system_status if system_status is not None else SystemStatus()

        # Listeners for external consumers (WebSocket, dashboard)
        self.update_callbacks: List[UpdateCallback] = []
        self._callback_lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @classmethod
    def from_configuration(cls,
                           config: MonitorConfiguration,
                           notifier: Optional[AlertNotifier] = None,
                           archive: Optional[ReadingArchive] = None,
                           system_status: Optional[SystemStatus] = None) -> "MonitoringEngine":
        """Build an engine from configuration sections."""
        if archive is None and config.archive.enabled:
            archive = ReadingArchive.from_settings(config.archive)

        return cls(
            classifier=ThresholdClassifier(rules=config.rules),
            history=HistoryStore(capacity=config.history.window_size),
            notifier=notifier if notifier is not None else AlertNotifier(settings=config.notifications),
            archive=archive,
            system_status=system_status
        )

    def attach_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        """Event loop that async update callbacks are scheduled onto."""
        self._loop = loop

    def add_update_callback(self, callback: UpdateCallback) -> None:
        """Add callback to be notified of every classified reading."""
        with self._callback_lock:
            if callback not in self.update_callbacks:
                self.update_callbacks.append(callback)

    def remove_update_callback(self, callback: UpdateCallback) -> None:
        """Remove update callback."""
        with self._callback_lock:
            if callback in self.update_callbacks:
                self.update_callbacks.remove(callback)

    def process_payload(self,
                        payload: Union[bytes, str],
                        timestamp: Optional[int] = None) -> ClassificationResult:
        """Decode one wire message and run it through the pipeline."""
        reading = SensorReading.from_payload(payload, timestamp=timestamp)
        if reading.is_malformed:
            logger.debug("Reading has undecodable fields", payload=str(payload)[:120])
        return self.process_reading(reading)

    def process_reading(self, reading: SensorReading) -> ClassificationResult:
        """Classify a reading and propagate the result."""
        result = self.classifier.classify(reading)

        self.history_store.append(result.reading)
        self.alert_log.record(result.alerts)
        self.notifier.notify(result.alerts)

        if self.archive is not None and self.archive.connection is not None:
            self.archive.store_reading(result.reading)

        self.system_status.record_message(
            malformed=result.reading.is_malformed,
            alert_count=len(result.alerts)
        )

        if result.alerts:
            logger.info("Alerts raised",
                        count=len(result.alerts),
                        warning=result.reading.warning,
                        error=result.reading.error)

        self._notify_callbacks(result)
        return result

    def record_failure(self, error: Exception) -> None:
        """Count a message whose processing raised."""
        self.system_status.record_failure()
        logger.error("Failed to process reading", error=str(error))

    def history(self) -> List[SensorReading]:
        """History window, oldest first."""
        return self.history_store.all()

    def latest(self) -> Optional[SensorReading]:
        return self.history_store.latest()

    def alerts(self) -> List[AlertEvent]:
        """Alert log, oldest first."""
        return self.alert_log.all()

    def dismiss_alert(self, index: int) -> bool:
        """Dismiss the alert at ``index``; stale indexes are ignored."""
        return self.alert_log.dismiss(index)

    def apply_configuration(self, config: MonitorConfiguration) -> None:
        """Apply hot-reloadable settings (rules and notification text)."""
        self.classifier.replace_rules(config.rules)
        self.notifier.settings = config.notifications
        if config.history.window_size != self.history_store.capacity:
            logger.warning("History window size change requires restart",
                           current=self.history_store.capacity,
                           requested=config.history.window_size)

    def get_engine_stats(self) -> Dict[str, Any]:
        """Get pipeline statistics."""
        return {
            "history_size": len(self.history_store),
            "history_capacity": self.history_store.capacity,
            "readings_processed": self.history_store.total_appended,
            "alert_count": len(self.alert_log),
            "alerts_by_severity": self.alert_log.counts(),
            "rule_count": len(self.classifier.rules),
            "sounds_played": self.notifier.sounds_played,
            "notifications_sent": self.notifier.notifications_sent,
            "archived_readings": self.archive.reading_count if self.archive else 0,
            "listener_count": len(self.update_callbacks)
        }

    def _notify_callbacks(self, result: ClassificationResult) -> None:
        """Notify registered callbacks of a classified reading."""
        with self._callback_lock:
            callbacks = list(self.update_callbacks)

        for callback in callbacks:
            try:
                if inspect.iscoroutinefunction(callback):
                    self._schedule(callback, result)
                else:
                    callback(result)
            except Exception as e:
                logger.warning("Error in update callback", error=str(e))

    def _schedule(self, callback: UpdateCallback, result: ClassificationResult) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("No event loop attached, dropping async update callback")
            return
        asyncio.run_coroutine_threadsafe(callback(result), loop)


__all__ = ["MonitoringEngine", "UpdateCallback"]

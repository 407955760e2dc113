"""Core services for the power sensor monitoring system."""

from .classifier import ThresholdClassifier, ClassificationResult
from .history_store import HistoryStore
from .alert_log import AlertLog
from .notifier import AlertNotifier
from .reading_archive import ReadingArchive, format_csv
from .monitoring_engine import MonitoringEngine
from .ingestion_adapter import IngestionAdapter

__all__ = [
    "ThresholdClassifier",
    "ClassificationResult",
    "HistoryStore",
    "AlertLog",
    "AlertNotifier",
    "ReadingArchive",
    "format_csv",
    "MonitoringEngine",
    "IngestionAdapter"
]

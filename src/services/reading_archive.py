"""ReadingArchive service for SQLite-backed retention and CSV export of readings."""

import asyncio
import csv
import io
import math
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import structlog

from ..models import (
    ArchiveSettings,
    ExportFilter,
    PAYLOAD_FIELDS,
    SensorReading,
)


logger = structlog.get_logger(__name__)

TimeBound = Optional[Union[datetime, int]]


class ReadingArchive:
    """SQLite store of every classified reading, feeding CSV export."""

    def __init__(self,
                 database_path: Optional[str] = None,
                 in_memory: bool = True,
                 retention_hours: Optional[float] = None):
        """Initialize reading archive."""

        # Database configuration
        if in_memory:
            self.database_path = ":memory:"
        else:
            self.database_path = database_path or "power_monitor_readings.db"

        self.retention_hours = retention_hours
        self.connection: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

        # Background pruning
        self.is_running = False
        self._cleanup_task: Optional[asyncio.Task] = None
        self.cleanup_interval_minutes = 30

        # Performance tracking
        self.query_count = 0
        self.insert_count = 0
        self.last_operation_duration_ms = 0.0

    @classmethod
    def from_settings(cls, settings: ArchiveSettings) -> "ReadingArchive":
        return cls(
            database_path=settings.database_path,
            in_memory=settings.in_memory,
            retention_hours=settings.retention_hours
        )

    async def initialize(self) -> None:
        """Open the database, create tables and start retention pruning."""
        try:
            logger.info("Initializing reading archive", database_path=self.database_path)

            self.open()

            self.is_running = True
            if self.retention_hours:
                self._cleanup_task = asyncio.create_task(self._cleanup_loop())

            logger.info("Reading archive initialized")

        except Exception as e:
            logger.error("Failed to initialize reading archive", error=str(e))
            raise

    def open(self) -> None:
        """Open the connection and create tables without starting pruning."""
        if self.connection:
            return

        self.connection = sqlite3.connect(
            self.database_path,
            check_same_thread=False,
            timeout=30.0
        )

        if self.database_path != ":memory:":
            self.connection.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    async def close(self) -> None:
        """Stop pruning and close the database connection."""
        logger.info("Closing reading archive")

        self.is_running = False
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        with self._lock:
            if self.connection:
                self.connection.close()
                self.connection = None

        logger.info("Reading archive closed")

    @contextmanager
    def _get_cursor(self):
        """Get a database cursor with proper error handling."""
        if not self.connection:
            raise RuntimeError("Database not initialized")

        cursor = self.connection.cursor()
        try:
            yield cursor
            self.connection.commit()
        except Exception as e:
            self.connection.rollback()
            logger.error("Database operation failed", error=str(e))
            raise
        finally:
            cursor.close()

    def _create_tables(self) -> None:
        with self._lock:
            with self._get_cursor() as cursor:
                # SQLite stores NaN as NULL, so channel columns are nullable
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS readings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        timestamp INTEGER NOT NULL,
                        voltage REAL,
                        current1 REAL,
                        current2 REAL,
                        current3 REAL,
                        temperature REAL,
                        humidity REAL,
                        warning TEXT NOT NULL DEFAULT '',
                        error TEXT NOT NULL DEFAULT ''
                    )
                """)

                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_readings_timestamp
                    ON readings (timestamp)
                """)

    def store_reading(self, reading: SensorReading) -> bool:
        """Append one classified reading."""
        try:
            start_time = datetime.now()

            with self._lock:
                with self._get_cursor() as cursor:
                    cursor.execute("""
                        INSERT INTO readings
                        (timestamp, voltage, current1, current2, current3,
                         temperature, humidity, warning, error)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        reading.timestamp,
                        *[_to_db(getattr(reading, name)) for name in PAYLOAD_FIELDS],
                        reading.warning,
                        reading.error
                    ))

            duration = (datetime.now() - start_time).total_seconds() * 1000
            self.last_operation_duration_ms = duration
            self.insert_count += 1

            return True

        except Exception as e:
            logger.error("Failed to store reading", error=str(e))
            return False

    def get_readings(self,
                     start: TimeBound = None,
                     end: TimeBound = None,
                     limit: Optional[int] = None) -> List[SensorReading]:
        """Archived readings between ``start`` and ``end`` inclusive, oldest first."""
        query = "SELECT timestamp, voltage, current1, current2, current3, " \
                "temperature, humidity, warning, error FROM readings WHERE 1=1"
        params: List[Any] = []

        if start is not None:
            query += " AND timestamp >= ?"
            params.append(_to_millis(start))

        if end is not None:
            query += " AND timestamp <= ?"
            params.append(_to_millis(end))

        query += " ORDER BY timestamp ASC, id ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._lock:
            with self._get_cursor() as cursor:
                cursor.execute(query, params)
                rows = cursor.fetchall()

        self.query_count += 1

        results = []
        for row in rows:
            values = {name: _from_db(value) for name, value in zip(PAYLOAD_FIELDS, row[1:7])}
            results.append(SensorReading(timestamp=row[0], warning=row[7], error=row[8], **values))
        return results

    @property
    def reading_count(self) -> int:
        if not self.connection:
            return 0
        with self._lock:
            with self._get_cursor() as cursor:
                cursor.execute("SELECT COUNT(*) FROM readings")
                return cursor.fetchone()[0]

    def export_csv(self, export_filter: Optional[ExportFilter] = None) -> str:
        """Render the archived readings selected by ``export_filter`` as CSV."""
        export_filter = export_filter or ExportFilter()
        readings = self.get_readings(export_filter.start_millis, export_filter.end_millis)

        logger.info("Exporting readings",
                    rows=len(readings),
                    columns=export_filter.columns.selected())

        return format_csv(readings, export_filter)

    def write_csv(self, output_path: str, export_filter: Optional[ExportFilter] = None) -> int:
        """Write an export to ``output_path``. Returns the number of data rows."""
        content = self.export_csv(export_filter)

        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_text(content, encoding="utf-8")

        rows = max(content.count("\n") - 1, 0)
        logger.info("Readings exported", output_path=output_path, rows=rows)
        return rows

    async def cleanup_old_data(self) -> int:
        """Delete readings older than the retention window."""
        if not self.retention_hours:
            return 0

        try:
            cutoff = datetime.now() - timedelta(hours=self.retention_hours)

            with self._lock:
                with self._get_cursor() as cursor:
                    cursor.execute("DELETE FROM readings WHERE timestamp < ?", (_to_millis(cutoff),))
                    removed = cursor.rowcount

            if removed > 0:
                logger.info("Pruned archived readings", removed=removed)

            return removed

        except Exception as e:
            logger.error("Failed to prune archived readings", error=str(e))
            return 0

    def get_storage_stats(self) -> Dict[str, Any]:
        """Get archive size and performance statistics."""
        stats = {
            "database_path": self.database_path,
            "query_count": self.query_count,
            "insert_count": self.insert_count,
            "last_operation_duration_ms": self.last_operation_duration_ms,
            "retention_hours": self.retention_hours,
            "is_running": self.is_running,
            "reading_count": self.reading_count
        }

        if self.database_path != ":memory:":
            db_path = Path(self.database_path)
            if db_path.exists():
                stats["database_size_mb"] = db_path.stat().st_size / (1024 * 1024)

        return stats

    async def _cleanup_loop(self) -> None:
        """Background pruning task."""
        logger.info("Archive pruning loop started", retention_hours=self.retention_hours)

        while self.is_running:
            try:
                await self.cleanup_old_data()
                await asyncio.sleep(self.cleanup_interval_minutes * 60)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in pruning loop", error=str(e))
                await asyncio.sleep(300)

        logger.info("Archive pruning loop stopped")


def format_csv(readings: Iterable[SensorReading], export_filter: ExportFilter) -> str:
    """CSV text for ``readings`` restricted to the filter's columns."""
    columns = export_filter.columns.selected()

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(columns)

    for reading in readings:
        writer.writerow([
            _format_cell(reading, name, export_filter.iso_timestamps)
            for name in columns
        ])

    return buffer.getvalue()


def _format_cell(reading: SensorReading, name: str, iso_timestamps: bool) -> str:
    if name == "timestamp":
        if iso_timestamps:
            moment = datetime.fromtimestamp(reading.timestamp / 1000.0, tz=timezone.utc)
            return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        return str(reading.timestamp)
    if name in ("warning", "error"):
        return getattr(reading, name)
    return format_number(getattr(reading, name))


def format_number(value: float) -> str:
    """Number text as a browser would print it: ``230`` not ``230.0``."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _to_db(value: float) -> Optional[float]:
    return None if math.isnan(value) else value


def _from_db(value: Optional[float]) -> float:
    return math.nan if value is None else float(value)


def _to_millis(value: Union[datetime, int]) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    return int(value)


__all__ = ["ReadingArchive", "format_csv", "format_number"]

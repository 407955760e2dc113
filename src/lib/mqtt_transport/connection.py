"""
Connection Management for the MQTT broker link.

Provides initial-connect retry with exponential backoff, connection state
tracking across automatic reconnects, and attempt statistics.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Iterator, List, Optional

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection state enumeration."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass
class ConnectionAttempt:
    """Individual connection attempt record."""
    attempt_number: int
    timestamp: datetime
    success: bool
    error_message: Optional[str] = None
    duration_ms: Optional[float] = None


@dataclass
class ConnectionStats:
    """Connection statistics and health metrics."""
    total_attempts: int = 0
    successful_connections: int = 0
    failed_attempts: int = 0
    unexpected_disconnects: int = 0
    current_uptime: Optional[timedelta] = None
    last_successful_connection: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    recent_attempts: List[ConnectionAttempt] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Calculate connection success rate."""
        if self.total_attempts == 0:
            return 0.0
        return self.successful_connections / self.total_attempts

    def to_dict(self) -> dict:
        return {
            "total_attempts": self.total_attempts,
            "successful_connections": self.successful_connections,
            "failed_attempts": self.failed_attempts,
            "unexpected_disconnects": self.unexpected_disconnects,
            "success_rate": round(self.success_rate, 3),
            "uptime_seconds": self.current_uptime.total_seconds() if self.current_uptime else None,
            "last_successful_connection": (
                self.last_successful_connection.isoformat()
                if self.last_successful_connection else None
            ),
            "last_failure": self.last_failure.isoformat() if self.last_failure else None
        }


def backoff_delays(initial_delay: float,
                   max_delay: float,
                   multiplier: float) -> Iterator[float]:
    """Yield retry delays growing by ``multiplier`` up to ``max_delay``."""
    delay = initial_delay
    while True:
        yield delay
        delay = min(delay * multiplier, max_delay)


class ConnectionManager:
    """
    Broker connection lifecycle with exponential backoff.

    ``connect()`` drives the initial connection, retrying a failed attempt
    after a growing delay. Once connected, the MQTT client reconnects on its
    own; the transport reports those transitions through
    ``mark_connected`` and ``mark_disconnected`` so state and statistics stay
    accurate.
    """

    def __init__(
        self,
        connector: Callable[[], bool],
        initial_retry_delay: float = 1.0,
        max_retry_delay: float = 60.0,
        backoff_multiplier: float = 2.0,
        max_retry_attempts: int = 10,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize connection manager.

        Args:
            connector: Function that performs one connection attempt and
                returns True once the broker accepted the session
            initial_retry_delay: Delay before the first retry in seconds
            max_retry_delay: Upper bound for the retry delay in seconds
            backoff_multiplier: Growth factor between consecutive delays
            max_retry_attempts: Attempts before giving up
            sleep: Sleep function, replaceable in tests
        """
        self.connector = connector

        # Retry configuration
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self.backoff_multiplier = backoff_multiplier
        self.max_retry_attempts = max_retry_attempts
        self._sleep = sleep

        # Connection state
        self._state = ConnectionState.DISCONNECTED
        self._connection_time: Optional[datetime] = None
        self._stop_requested = threading.Event()

        self._stats = ConnectionStats()
        self._lock = threading.RLock()

        self._state_change_callbacks: List[Callable[[ConnectionState], None]] = []

    def connect(self) -> bool:
        """
        Attempt to establish connection with retry logic.

        Returns:
            bool: True if connection successful
        """
        with self._lock:
            if self._state == ConnectionState.CONNECTED:
                return True
            self._stop_requested.clear()
            self._set_state(ConnectionState.CONNECTING)

        delays = backoff_delays(self.initial_retry_delay,
                                self.max_retry_delay,
                                self.backoff_multiplier)

        for attempt_number in range(1, self.max_retry_attempts + 1):
            if self._stop_requested.is_set():
                break

            logger.info(f"Broker connection attempt {attempt_number}/{self.max_retry_attempts}")
            if self._attempt(attempt_number):
                return True

            if attempt_number < self.max_retry_attempts:
                delay = next(delays)
                logger.warning(f"Broker connection failed, retrying in {delay:.1f}s...")
                if not self._stop_requested.is_set():
                    self._sleep(delay)

        with self._lock:
            if self._state != ConnectionState.CONNECTED:
                self._set_state(ConnectionState.FAILED)
        logger.error(f"Broker connection failed after {self.max_retry_attempts} attempts")
        return False

    def _attempt(self, attempt_number: int) -> bool:
        attempt_start = datetime.now()
        error_message = None

        try:
            success = bool(self.connector())
            if not success:
                error_message = "Broker did not accept the connection"
        except Exception as e:
            success = False
            error_message = str(e)

        attempt = ConnectionAttempt(
            attempt_number=attempt_number,
            timestamp=attempt_start,
            success=success,
            error_message=error_message,
            duration_ms=(datetime.now() - attempt_start).total_seconds() * 1000
        )
        self._record_attempt(attempt)

        if success:
            self.mark_connected()
        else:
            self._stats.last_failure = datetime.now()
            logger.warning(f"Broker connection attempt failed: {error_message}")

        return success

    def mark_connected(self) -> None:
        """Record an established session (initial or automatic reconnect)."""
        with self._lock:
            if self._state == ConnectionState.CONNECTED:
                return
            self._connection_time = datetime.now()
            self._stats.last_successful_connection = self._connection_time
            self._set_state(ConnectionState.CONNECTED)

    def mark_disconnected(self, expected: bool) -> None:
        """Record a lost session; unexpected losses wait for reconnect."""
        with self._lock:
            self._connection_time = None
            if expected:
                self._set_state(ConnectionState.DISCONNECTED)
                return
            if self._state == ConnectionState.CONNECTED:
                self._stats.unexpected_disconnects += 1
            self._set_state(ConnectionState.RECONNECTING)

    def cancel(self) -> None:
        """Abort a pending retry loop."""
        self._stop_requested.set()

    def disconnect(self) -> None:
        """Stop retrying and mark the link closed."""
        self.cancel()
        self.mark_disconnected(expected=True)

    def is_connected(self) -> bool:
        """Check if currently connected."""
        return self._state == ConnectionState.CONNECTED

    def get_state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    def get_uptime(self) -> Optional[timedelta]:
        """Get current connection uptime."""
        if self._connection_time and self._state == ConnectionState.CONNECTED:
            return datetime.now() - self._connection_time
        return None

    def get_stats(self) -> ConnectionStats:
        """Get a snapshot of connection statistics."""
        with self._lock:
            stats = ConnectionStats(
                total_attempts=self._stats.total_attempts,
                successful_connections=self._stats.successful_connections,
                failed_attempts=self._stats.failed_attempts,
                unexpected_disconnects=self._stats.unexpected_disconnects,
                last_successful_connection=self._stats.last_successful_connection,
                last_failure=self._stats.last_failure,
                recent_attempts=list(self._stats.recent_attempts)
            )
            stats.current_uptime = self.get_uptime()
            return stats

    def _record_attempt(self, attempt: ConnectionAttempt) -> None:
        """Record connection attempt in statistics."""
        with self._lock:
            self._stats.total_attempts += 1
            self._stats.recent_attempts.append(attempt)

            # Keep only recent attempts (last 20)
            if len(self._stats.recent_attempts) > 20:
                self._stats.recent_attempts.pop(0)

            if attempt.success:
                self._stats.successful_connections += 1
            else:
                self._stats.failed_attempts += 1

    def _set_state(self, new_state: ConnectionState) -> None:
        """Set connection state and trigger callbacks."""
        if self._state == new_state:
            return

        old_state = self._state
        self._state = new_state
        logger.debug(f"Connection state: {old_state.value} -> {new_state.value}")

        for callback in list(self._state_change_callbacks):
            try:
                callback(new_state)
            except Exception as e:
                logger.error(f"Error in state change callback: {e}")

    def register_state_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register callback for state changes."""
        self._state_change_callbacks.append(callback)

    def __str__(self) -> str:
        uptime = self.get_uptime()
        uptime_str = f"{uptime.total_seconds():.1f}s" if uptime else "N/A"

        return (
            f"ConnectionManager(state={self._state.value}, "
            f"uptime={uptime_str}, success_rate={self._stats.success_rate:.2%})"
        )


__all__ = [
    'ConnectionManager',
    'ConnectionState',
    'ConnectionAttempt',
    'ConnectionStats',
    'backoff_delays'
]

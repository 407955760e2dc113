"""IngestionAdapter service: MQTT subscription feeding the monitoring engine."""

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional
import threading

import structlog

from ..models import MonitorConfiguration, SystemStatus, current_millis
from ..lib.mqtt_transport import ConnectionState, MQTTTransport, TransportError
from .monitoring_engine import MonitoringEngine


logger = structlog.get_logger(__name__)


class IngestionAdapter:
    """Keep one live topic subscription and submit every message to the engine.

    One inbound message yields exactly one classification, in arrival order.
    A message whose processing raises is logged and counted; the subscription
    stays up.
    """

    def __init__(self,
                 engine: MonitoringEngine,
                 transport: Optional[MQTTTransport] = None,
                 system_status: Optional[SystemStatus] = None):
        """Initialize the ingestion adapter."""
        self.engine = engine
        self.transport = transport
        self.system_status = system_status or engine.system_status

        # Ingestion state
        self.is_running = False
        self._lock = threading.Lock()

        # Performance tracking
        self.messages_received = 0
        self.messages_processed = 0
        self.messages_failed = 0
        self.last_message_at: Optional[datetime] = None
        self.last_process_duration_ms = 0.0

    async def start(self, configuration: MonitorConfiguration) -> None:
        """Connect to the broker and begin delivering readings.

        Raises:
            TransportError: If the initial connection could not be established
        """
        with self._lock:
            if self.is_running:
                logger.warning("Ingestion adapter already running")
                return
            self.is_running = True

        logger.info("Starting ingestion adapter",
                    broker=configuration.broker.url,
                    topic=configuration.broker.topic)

        if self.transport is None:
            self.transport = MQTTTransport(
                broker=configuration.broker,
                reconnect=configuration.reconnect
            )

        self.transport.set_message_handler(self.handle_message)
        self.transport.register_state_callback(self._on_state_change)

        try:
            await self._async_transport_connect()
        except TransportError as e:
            self.is_running = False
            logger.error("Failed to connect to broker", error=str(e))
            raise

        logger.info("Ingestion adapter started")

    async def stop(self) -> None:
        """Unsubscribe, disconnect and release the transport."""
        with self._lock:
            if not self.is_running:
                return
            self.is_running = False

        logger.info("Stopping ingestion adapter")

        if self.transport is not None:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.transport.disconnect)

        self.system_status.update_connection(False, ConnectionState.DISCONNECTED.value, expected=True)
        logger.info("Ingestion adapter stopped")

    def handle_message(self, topic: str, payload: bytes) -> None:
        """Decode, stamp and submit one message."""
        start_time = datetime.now()
        self.messages_received += 1
        self.last_message_at = start_time

        try:
            self.engine.process_payload(payload, timestamp=current_millis())
            self.messages_processed += 1
        except Exception as e:
            self.messages_failed += 1
            logger.error("Error processing message", topic=topic, error=str(e))
            self.engine.record_failure(e)

        self.last_process_duration_ms = (datetime.now() - start_time).total_seconds() * 1000

    def get_ingestion_stats(self) -> Dict[str, Any]:
        """Get ingestion statistics."""
        return {
            "is_running": self.is_running,
            "connection_state": self.transport.state.value if self.transport else "disconnected",
            "messages_received": self.messages_received,
            "messages_processed": self.messages_processed,
            "messages_failed": self.messages_failed,
            "last_message_at": self.last_message_at.isoformat() if self.last_message_at else None,
            "last_process_duration_ms": self.last_process_duration_ms,
            "transport": self.transport.get_stats() if self.transport else None
        }

    async def _async_transport_connect(self) -> None:
        """Connect in a worker thread; backoff sleeps must not block the loop."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.transport.connect)

    def _on_state_change(self, state: ConnectionState) -> None:
        connected = state == ConnectionState.CONNECTED
        expected = state == ConnectionState.DISCONNECTED
        self.system_status.update_connection(connected, state.value, expected=expected)

        if state == ConnectionState.RECONNECTING:
            logger.warning("Broker connection lost, waiting for reconnect")
        elif state == ConnectionState.FAILED:
            logger.error("Broker connection failed")
        else:
            logger.info("Broker connection state changed", state=state.value)


__all__ = ["IngestionAdapter"]

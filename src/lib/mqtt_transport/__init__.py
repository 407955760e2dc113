"""
MQTT Transport Library for the sensor telemetry feed.

This library wraps a paho-mqtt client for the power sensor broker link,
delivering every message on the configured topic to a single handler.

Classes:
    MQTTTransport: Broker connection, subscription and message delivery
    ConnectionManager: Connection retry with exponential backoff

Features:
    - MQTT over TCP, TLS, WebSocket or secure WebSocket from one broker URL
    - Initial connect retried with exponential backoff
    - Automatic reconnect with bounded backoff after unexpected disconnects
    - Topic re-subscribed on every (re)connect
    - Handler exceptions contained so the network loop keeps running
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

import paho.mqtt.client as mqtt

from ...models import BrokerSettings, ReconnectSettings
from .connection import (
    ConnectionAttempt,
    ConnectionManager,
    ConnectionState,
    ConnectionStats,
    backoff_delays,
)

# Configure logging
logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], None]


class TransportError(Exception):
    """Raised when the broker link cannot be established."""


def _is_failure(reason_code: Any) -> bool:
    return getattr(reason_code, "is_failure", reason_code != 0)


class MQTTTransport:
    """
    paho-mqtt broker link for one topic subscription.

    Messages are delivered on paho's network thread, one at a time and in
    arrival order.
    """

    def __init__(self,
                 broker: Optional[BrokerSettings] = None,
                 reconnect: Optional[ReconnectSettings] = None,
                 connect_timeout_s: float = 10.0,
                 client_factory: Optional[Callable[[], mqtt.Client]] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """Initialize the transport."""
        self.broker = broker or BrokerSettings()
        self.reconnect = reconnect or ReconnectSettings()
        self.connect_timeout_s = connect_timeout_s
        self._client_factory = client_factory or self._create_client

        self._client: Optional[mqtt.Client] = None
        self._message_handler: Optional[MessageHandler] = None
        self._connack = threading.Event()
        self._accepted = False
        self._closing = False
        self._lock = threading.RLock()

        # Message tracking
        self.messages_received = 0
        self.handler_errors = 0
        self.last_message_at: Optional[float] = None

        self.connection_manager = ConnectionManager(
            connector=self._connect_once,
            initial_retry_delay=self.reconnect.initial_delay_s,
            max_retry_delay=self.reconnect.max_delay_s,
            backoff_multiplier=self.reconnect.backoff_multiplier,
            max_retry_attempts=self.reconnect.max_attempts,
            sleep=sleep
        )

        logger.info(f"MQTTTransport initialized for {self.broker.url} topic={self.broker.topic}")

    def set_message_handler(self, handler: MessageHandler) -> None:
        """Configure the callable receiving ``(topic, payload)``."""
        self._message_handler = handler

    def register_state_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register callback for connection state changes."""
        self.connection_manager.register_state_callback(callback)

    def connect(self) -> None:
        """
        Connect and subscribe, retrying with exponential backoff.

        Raises:
            TransportError: If every attempt failed
        """
        self._closing = False
        if not self.connection_manager.connect():
            raise TransportError(
                f"Could not connect to {self.broker.url} after "
                f"{self.reconnect.max_attempts} attempts"
            )

    def disconnect(self) -> None:
        """Unsubscribe, disconnect and release the client."""
        with self._lock:
            self._closing = True
            self.connection_manager.cancel()
            client = self._client
            self._client = None

        if client is not None:
            try:
                if self._accepted:
                    client.unsubscribe(self.broker.topic)
                client.disconnect()
                client.loop_stop()
            except Exception as e:
                logger.warning(f"Error while disconnecting from broker: {e}")

        self._accepted = False
        self.connection_manager.disconnect()
        logger.info("Disconnected from broker")

    @property
    def is_connected(self) -> bool:
        return self.connection_manager.is_connected()

    @property
    def state(self) -> ConnectionState:
        return self.connection_manager.get_state()

    def get_stats(self) -> Dict[str, Any]:
        """Transport and connection statistics."""
        return {
            "broker_url": self.broker.url,
            "topic": self.broker.topic,
            "state": self.state.value,
            "messages_received": self.messages_received,
            "handler_errors": self.handler_errors,
            "last_message_at": self.last_message_at,
            "connection": self.connection_manager.get_stats().to_dict()
        }

    def _create_client(self) -> mqtt.Client:
        """Build a paho client from the broker settings."""
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"{self.broker.client_id}-{int(time.time())}",
            protocol=mqtt.MQTTv311,
            transport=self.broker.transport,
        )

        if self.broker.transport == "websockets":
            client.ws_set_options(path=self.broker.websocket_path)
        if self.broker.use_tls:
            client.tls_set()
        if self.broker.username:
            client.username_pw_set(self.broker.username, self.broker.password)

        client.reconnect_delay_set(
            min_delay=max(1, int(self.reconnect.initial_delay_s)),
            max_delay=max(1, int(self.reconnect.max_delay_s))
        )
        return client

    def _connect_once(self) -> bool:
        """One connection attempt: connect, start the loop, await CONNACK."""
        with self._lock:
            if self._closing:
                return False

            self._connack.clear()
            self._accepted = False

            client = self._client_factory()
            client.on_connect = self._on_connect
            client.on_disconnect = self._on_disconnect
            client.on_message = self._on_message
            self._client = client

        logger.info(f"Connecting to {self.broker.host}:{self.broker.port} via {self.broker.transport}")
        try:
            client.connect(self.broker.host, self.broker.port, keepalive=self.broker.keepalive_s)
            client.loop_start()
        except Exception as e:
            self._discard(client)
            raise TransportError(f"Connection to {self.broker.url} failed: {e}") from e

        if self._connack.wait(self.connect_timeout_s) and self._accepted:
            return True

        if not self._connack.is_set():
            logger.error("Timed out waiting for broker CONNACK")
        self._discard(client)
        return False

    def _discard(self, client: mqtt.Client) -> None:
        try:
            client.loop_stop()
            client.disconnect()
        except Exception as e:
            logger.debug(f"Error discarding client: {e}")
        with self._lock:
            if self._client is client:
                self._client = None

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Subscribe on every accepted (re)connect."""
        if _is_failure(reason_code):
            logger.error(f"Broker refused connection: {reason_code}")
            self._accepted = False
            self._connack.set()
            return

        self._accepted = True
        client.subscribe(self.broker.topic, qos=self.broker.qos)
        logger.info(f"Connected to broker, subscribed to {self.broker.topic}")

        self.connection_manager.mark_connected()
        self._connack.set()

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        if self._closing:
            return
        logger.warning(f"Broker connection lost ({reason_code}), reconnecting")
        self.connection_manager.mark_disconnected(expected=False)

    def _on_message(self, client, userdata, msg):
        """Deliver one message to the handler."""
        self.messages_received += 1
        self.last_message_at = time.time()

        if self._message_handler is None:
            return
        try:
            self._message_handler(msg.topic, msg.payload)
        except Exception:
            self.handler_errors += 1
            logger.exception("Message handler raised")


# Public API exports
__all__ = [
    'MQTTTransport',
    'TransportError',
    'MessageHandler',
    'ConnectionManager',
    'ConnectionState',
    'ConnectionAttempt',
    'ConnectionStats',
    'backoff_delays'
]

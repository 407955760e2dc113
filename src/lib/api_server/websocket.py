"""WebSocket support for real-time reading and alert streaming."""

import json
import asyncio
from typing import Set, Dict, Any, Optional, List
from datetime import datetime, timedelta
import weakref

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field
import structlog

from ...services import ClassificationResult, MonitoringEngine

logger = structlog.get_logger(__name__)

DEFAULT_SUBSCRIPTIONS = ["readings", "alerts", "system_status"]


class WebSocketMessage(BaseModel):
    """Base WebSocket message structure."""

    type: str
    timestamp: datetime = Field(default_factory=datetime.now)
    data: Dict[str, Any] = Field(default_factory=dict)


class ReadingUpdateMessage(WebSocketMessage):
    """Classified reading message."""

    type: str = "reading_update"


class SystemStatusMessage(WebSocketMessage):
    """System status update message."""

    type: str = "system_status"


class AlertMessage(WebSocketMessage):
    """Alert notification message."""

    type: str = "alert"


class ConnectionManager:
    """WebSocket connection manager for real-time updates."""

    def __init__(self, engine: MonitoringEngine, status_interval_s: float = 1.0):
        """Initialize connection manager."""
        self.engine = engine
        self.status_interval_s = status_interval_s
        self.active_connections: Set[WebSocket] = set()
        self.connection_metadata: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()
        self.last_system_status: Optional[Dict[str, Any]] = None
        self.broadcast_task: Optional[asyncio.Task] = None
        self._running = False

    async def connect(self, websocket: WebSocket, client_id: Optional[str] = None) -> None:
        """Accept and register a WebSocket connection."""
        await websocket.accept()
        self.active_connections.add(websocket)

        self.connection_metadata[websocket] = {
            "client_id": client_id or f"client_{id(websocket)}",
            "connected_at": datetime.now(),
            "last_ping": datetime.now(),
            "subscriptions": list(DEFAULT_SUBSCRIPTIONS)
        }

        logger.info("WebSocket connection established",
                   client_id=self.connection_metadata[websocket]["client_id"],
                   total_connections=len(self.active_connections))

        await self._send_initial_data(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection."""
        if websocket in self.active_connections:
            client_id = self.connection_metadata.get(websocket, {}).get("client_id", "unknown")
            self.active_connections.discard(websocket)

            logger.info("WebSocket connection closed",
                       client_id=client_id,
                       total_connections=len(self.active_connections))

    async def send_personal_message(self, message: Dict[str, Any], websocket: WebSocket) -> None:
        """Send a message to a specific WebSocket connection."""
        try:
            await websocket.send_text(json.dumps(message, default=str))
        except Exception as e:
            logger.error("Error sending personal message", error=str(e))
            self.disconnect(websocket)

    async def broadcast_message(self, message: Dict[str, Any], message_type: str) -> None:
        """Broadcast a message to every client subscribed to ``message_type``."""
        if not self.active_connections:
            return

        disconnected = set()
        text = json.dumps(message, default=str)

        for websocket in self.active_connections.copy():
            try:
                metadata = self.connection_metadata.get(websocket, {})
                if message_type not in metadata.get("subscriptions", []):
                    continue

                await websocket.send_text(text)
            except Exception as e:
                logger.warning("Error broadcasting to client", error=str(e))
                disconnected.add(websocket)

        for websocket in disconnected:
            self.disconnect(websocket)

    async def broadcast_result(self, result: ClassificationResult) -> None:
        """Engine update callback: stream the reading and any new alerts."""
        message = ReadingUpdateMessage(data={
            "reading": result.reading.to_dict(),
            "history_size": len(self.engine.history_store)
        }).model_dump()
        await self.broadcast_message(message, "readings")

        if result.alerts:
            await self.broadcast_alerts([alert.to_dict() for alert in result.alerts])

    async def broadcast_alerts(self, alerts: List[Dict[str, Any]]) -> None:
        """Broadcast alert notification to all clients."""
        message = AlertMessage(data={
            "alerts": alerts,
            "alert_count": len(self.engine.alert_log)
        }).model_dump()

        await self.broadcast_message(message, "alerts")

    async def broadcast_system_status(self) -> None:
        """Broadcast system status when it changed."""
        status_data = self._status_data()

        if self.last_system_status == status_data:
            return
        self.last_system_status = status_data

        message = SystemStatusMessage(data=status_data).model_dump()
        await self.broadcast_message(message, "system_status")

    async def handle_client_message(self, websocket: WebSocket, message: Dict[str, Any]) -> None:
        """Handle incoming message from WebSocket client."""
        try:
            message_type = message.get("type")
            data = message.get("data", {})

            if message_type == "ping":
                if websocket in self.connection_metadata:
                    self.connection_metadata[websocket]["last_ping"] = datetime.now()
                await self.send_personal_message({"type": "pong", "timestamp": datetime.now()}, websocket)

            elif message_type == "subscribe":
                subscriptions = [s for s in data.get("subscriptions", []) if s in DEFAULT_SUBSCRIPTIONS]
                if websocket in self.connection_metadata:
                    self.connection_metadata[websocket]["subscriptions"] = subscriptions
                    await self.send_personal_message({
                        "type": "subscription_updated",
                        "subscriptions": subscriptions
                    }, websocket)

            elif message_type == "dismiss_alert":
                index = data.get("index")
                dismissed = (isinstance(index, int) and not isinstance(index, bool)
                             and self.engine.dismiss_alert(index))
                await self.send_personal_message({
                    "type": "alert_dismissed",
                    "index": index,
                    "dismissed": dismissed,
                    "alert_count": len(self.engine.alert_log)
                }, websocket)

            elif message_type == "get_status":
                await self._send_initial_data(websocket)

            else:
                logger.warning("Unknown WebSocket message type", message_type=message_type)

        except Exception as e:
            logger.error("Error handling client message", error=str(e))

    def _status_data(self) -> Dict[str, Any]:
        status = self.engine.system_status
        return {
            "is_running": status.is_running,
            "health": status.health.overall_health,
            "broker_connected": status.health.broker_connected,
            "connection_state": status.health.connection_state,
            "messages_processed": status.counters.messages_processed,
            "alert_count": len(self.engine.alert_log)
        }

    async def _send_initial_data(self, websocket: WebSocket) -> None:
        """Send the current state to a newly connected client."""
        latest = self.engine.latest()
        await self.send_personal_message({
            "type": "initial_state",
            "timestamp": datetime.now(),
            "data": {
                "system_status": self._status_data(),
                "latest": latest.to_dict() if latest else None,
                "history": [reading.to_dict() for reading in self.engine.history()],
                "alerts": [alert.to_dict() for alert in self.engine.alerts()]
            }
        }, websocket)

    def start_background_tasks(self) -> None:
        """Start background tasks for connection management."""
        if not self._running:
            self._running = True
            self.broadcast_task = asyncio.create_task(self._background_broadcaster())

    async def stop_background_tasks(self) -> None:
        """Stop background tasks."""
        self._running = False
        if self.broadcast_task:
            self.broadcast_task.cancel()
            try:
                await self.broadcast_task
            except asyncio.CancelledError:
                pass
            self.broadcast_task = None

    async def _background_broadcaster(self) -> None:
        """Periodically broadcast status and drop stale clients."""
        while self._running:
            try:
                await self._cleanup_stale_connections()
                await self.broadcast_system_status()
                await asyncio.sleep(self.status_interval_s)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in background broadcaster", error=str(e))
                await asyncio.sleep(5.0)

    async def _cleanup_stale_connections(self) -> None:
        """Close connections that haven't sent a ping recently."""
        stale_threshold = datetime.now() - timedelta(minutes=5)
        stale_connections = [
            websocket for websocket in self.active_connections.copy()
            if self.connection_metadata.get(websocket, {}).get("last_ping", datetime.now()) < stale_threshold
        ]

        for websocket in stale_connections:
            try:
                await websocket.close()
            except RuntimeError:
                # Already closed by the peer
                pass
            self.disconnect(websocket)

    def get_connection_info(self) -> List[Dict[str, Any]]:
        """Get information about active connections."""
        connections = []
        for websocket in self.active_connections:
            metadata = self.connection_metadata.get(websocket, {})
            connections.append({
                "client_id": metadata.get("client_id", "unknown"),
                "connected_at": metadata.get("connected_at"),
                "last_ping": metadata.get("last_ping"),
                "subscriptions": metadata.get("subscriptions", [])
            })
        return connections


async def websocket_endpoint(websocket: WebSocket,
                             manager: ConnectionManager,
                             client_id: Optional[str] = None) -> None:
    """WebSocket endpoint handler."""
    await manager.connect(websocket, client_id)

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.warning("Invalid JSON received from WebSocket client")
                continue

            await manager.handle_client_message(websocket, message)

    except WebSocketDisconnect:
        manager.disconnect(websocket)
    except Exception as e:
        logger.error("WebSocket error", error=str(e))
        manager.disconnect(websocket)


__all__ = [
    "websocket_endpoint",
    "ConnectionManager",
    "WebSocketMessage",
    "ReadingUpdateMessage",
    "SystemStatusMessage",
    "AlertMessage",
    "DEFAULT_SUBSCRIPTIONS"
]

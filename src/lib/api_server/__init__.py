"""FastAPI server for the power sensor monitoring system."""

from typing import Dict, List, Any, Optional
from datetime import datetime
from contextlib import asynccontextmanager
import asyncio

from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, ValidationError
import structlog

from ...models import ExportColumns, ExportFilter, MonitorConfiguration
from ...services import IngestionAdapter, MonitoringEngine
from .websocket import websocket_endpoint, ConnectionManager

logger = structlog.get_logger(__name__)


class StatusResponse(BaseModel):
    """Response model for /status endpoint."""

    timestamp: datetime
    system_status: Dict[str, Any]
    engine: Dict[str, Any]
    ingestion: Optional[Dict[str, Any]] = None


class ReadingsResponse(BaseModel):
    """Response model for /readings endpoint."""

    count: int
    capacity: int
    readings: List[Dict[str, Any]]


class AlertsResponse(BaseModel):
    """Response model for /alerts endpoint."""

    total_count: int
    counts: Dict[str, int]
    alerts: List[Dict[str, Any]]


class DismissResponse(BaseModel):
    """Response model for alert dismissal."""

    dismissed: int
    remaining: int


def get_engine(request: Request) -> MonitoringEngine:
    return request.app.state.engine


def get_configuration(request: Request) -> MonitorConfiguration:
    return request.app.state.configuration


def create_app(engine: Optional[MonitoringEngine] = None,
               configuration: Optional[MonitorConfiguration] = None,
               ingestion: Optional[IngestionAdapter] = None) -> FastAPI:
    """Create FastAPI application with all routes."""
    configuration = configuration or MonitorConfiguration()
    engine = engine or MonitoringEngine.from_configuration(configuration)
    ws_manager = ConnectionManager(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("API server starting up")

        engine.attach_loop(asyncio.get_running_loop())
        engine.add_update_callback(ws_manager.broadcast_result)
        ws_manager.start_background_tasks()

        yield

        engine.remove_update_callback(ws_manager.broadcast_result)
        await ws_manager.stop_background_tasks()
        logger.info("API server shutting down")

    app = FastAPI(
        title="Power Sensor Monitor API",
        description="HTTP API for MQTT-fed mains and load monitoring",
        version="1.0.0",
        lifespan=lifespan
    )

    app.state.engine = engine
    app.state.configuration = configuration
    app.state.ingestion = ingestion
    app.state.ws_manager = ws_manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "DELETE"],
        allow_headers=["*"],
    )

    @app.get("/status", response_model=StatusResponse)
    async def get_status(request: Request, engine: MonitoringEngine = Depends(get_engine)):
        """Get ingestion, connection and pipeline status."""
        ingestion = request.app.state.ingestion
        return StatusResponse(
            timestamp=datetime.now(),
            system_status=engine.system_status.export_status(),
            engine=engine.get_engine_stats(),
            ingestion=ingestion.get_ingestion_stats() if ingestion else None
        )

    @app.get("/readings", response_model=ReadingsResponse)
    async def get_readings(limit: Optional[int] = Query(None, ge=1),
                           engine: MonitoringEngine = Depends(get_engine)):
        """History window, oldest first."""
        readings = engine.history_store.recent(limit) if limit else engine.history()
        return ReadingsResponse(
            count=len(readings),
            capacity=engine.history_store.capacity,
            readings=[reading.to_dict() for reading in readings]
        )

    @app.get("/readings/latest")
    async def get_latest_reading(engine: MonitoringEngine = Depends(get_engine)):
        """Most recently classified reading."""
        latest = engine.latest()
        if latest is None:
            raise HTTPException(status_code=404, detail="No readings received yet")
        return latest.to_dict()

    @app.get("/alerts", response_model=AlertsResponse)
    async def get_alerts(engine: MonitoringEngine = Depends(get_engine)):
        """Alert log, oldest first; ``index`` is the dismissal handle."""
        alerts = engine.alerts()
        return AlertsResponse(
            total_count=len(alerts),
            counts=engine.alert_log.counts(),
            alerts=[dict(alert.to_dict(), index=index) for index, alert in enumerate(alerts)]
        )

    @app.delete("/alerts/{index}", response_model=DismissResponse)
    async def dismiss_alert(index: int, engine: MonitoringEngine = Depends(get_engine)):
        """Dismiss one alert by position."""
        if not engine.dismiss_alert(index):
            raise HTTPException(status_code=404, detail=f"No alert at index {index}")
        return DismissResponse(dismissed=index, remaining=len(engine.alert_log))

    @app.get("/config")
    async def get_config(configuration: MonitorConfiguration = Depends(get_configuration)):
        """Active configuration with secrets masked."""
        data = configuration.export_dict()
        if data["broker"].get("password"):
            data["broker"]["password"] = "********"
        return data

    @app.get("/export")
    async def export_csv(start: Optional[datetime] = None,
                         end: Optional[datetime] = None,
                         columns: Optional[str] = Query(
                             None, description="Comma-separated column names"),
                         iso_timestamps: bool = False,
                         engine: MonitoringEngine = Depends(get_engine)):
        """Archived readings as CSV, filtered by inclusive time range and columns."""
        if engine.archive is None or engine.archive.connection is None:
            raise HTTPException(status_code=503, detail="Reading archive is disabled")

        try:
            column_mask = ExportColumns()
            if columns:
                column_mask = ExportColumns.only([c.strip() for c in columns.split(",") if c.strip()])
            export_filter = ExportFilter(
                start=start,
                end=end,
                columns=column_mask,
                iso_timestamps=iso_timestamps
            )
        except (ValueError, TypeError, ValidationError) as e:
            raise HTTPException(status_code=400, detail=str(e))

        content = engine.archive.export_csv(export_filter)
        return Response(
            content=content,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": 'attachment; filename="sensor_data.csv"'}
        )

    @app.websocket("/ws")
    async def websocket_route(websocket: WebSocket, client_id: Optional[str] = None):
        """WebSocket endpoint for real-time updates."""
        await websocket_endpoint(websocket, ws_manager, client_id)

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    @app.get("/connections")
    async def get_connections():
        """Get information about active WebSocket connections."""
        return {
            "active_connections": len(ws_manager.active_connections),
            "connections": ws_manager.get_connection_info()
        }

    return app


__all__ = [
    "create_app",
    "get_engine",
    "get_configuration",
    "StatusResponse",
    "ReadingsResponse",
    "AlertsResponse",
    "DismissResponse"
]

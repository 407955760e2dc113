"""Main CLI application orchestrating all components."""

import argparse
import asyncio
import logging
import math
import random
import sys
import signal
from typing import Optional, Dict, Any
from datetime import datetime
from pathlib import Path

import structlog

from ..models import ExportColumns, ExportFilter, MonitorConfiguration, SystemStatus
from ..services import AlertNotifier, IngestionAdapter, MonitoringEngine, ReadingArchive
from ..lib.config import (
    ConfigManager,
    ConfigurationError,
    load_default_config,
    save_config_to_file,
)
from ..lib.display import PowerMonitorApp
from ..lib.mqtt_transport import TransportError
from ..lib.notifications import NotifySendBackend, TerminalBellPlayer, ViewVisibility


logger = structlog.get_logger(__name__)


class PowerMonitorApplication:
    """Main application orchestrating all components."""

    def __init__(self):
        """Initialize the application."""
        # Core components
        self.system_status = SystemStatus()
        self.visibility = ViewVisibility()
        self.engine: Optional[MonitoringEngine] = None
        self.archive: Optional[ReadingArchive] = None
        self.ingestion: Optional[IngestionAdapter] = None

        # Configuration
        self.configuration: Optional[MonitorConfiguration] = None
        self.config_manager: Optional[ConfigManager] = None

        # Runtime state
        self.is_running = False
        self._stopped = False
        self.api_server_task: Optional[asyncio.Task] = None
        self.display_task: Optional[asyncio.Task] = None
        self.demo_task: Optional[asyncio.Task] = None

    async def initialize(self,
                         config_path: Optional[str] = None,
                         hot_reload: bool = False) -> None:
        """Initialize all application components."""
        try:
            logger.info("Initializing power monitor application")

            if config_path and Path(config_path).exists():
                self.config_manager = ConfigManager(config_path, hot_reload=hot_reload)
                self.config_manager.on_config_changed = self._on_config_changed
                self.config_manager.on_config_error = self._on_config_error
                self.configuration = self.config_manager.load_config()
                logger.info("Loaded configuration from file", config_path=config_path)
            else:
                self.configuration = load_default_config()
                logger.info("Using default configuration")

            notifier = AlertNotifier(
                sound_player=TerminalBellPlayer(),
                notification_backend=NotifySendBackend(),
                visibility=self.visibility,
                settings=self.configuration.notifications
            )
            notifier.request_permission()

            if self.configuration.archive.enabled:
                self.archive = ReadingArchive.from_settings(self.configuration.archive)
                await self.archive.initialize()

            self.engine = MonitoringEngine.from_configuration(
                self.configuration,
                notifier=notifier,
                archive=self.archive,
                system_status=self.system_status
            )
            self.ingestion = IngestionAdapter(self.engine)

            self.system_status.start_system(self.configuration)

            logger.info("Application initialization completed")

        except Exception as e:
            logger.error("Failed to initialize application", error=str(e))
            raise

    async def start(self,
                    enable_api: bool = True,
                    api_port: Optional[int] = None,
                    enable_display: bool = True,
                    demo_mode: bool = False,
                    debug: bool = False) -> None:
        """Start all application components."""
        try:
            logger.info("Starting power monitor application",
                        enable_api=enable_api,
                        enable_display=enable_display,
                        demo_mode=demo_mode)

            self.is_running = True
            self.engine.attach_loop(asyncio.get_running_loop())

            if demo_mode:
                logger.info("Running in demo mode - broker subscription disabled")
                self.demo_task = asyncio.create_task(self._demo_update_loop())
            else:
                await self.ingestion.start(self.configuration)

            if enable_api:
                self.api_server_task = asyncio.create_task(
                    self._run_api_server(api_port or self.configuration.api_port, debug)
                )

            if enable_display:
                self.display_task = asyncio.create_task(self._run_display_interface())

            logger.info("All components started successfully")

            self._setup_signal_handlers()

        except Exception as e:
            logger.error("Failed to start application", error=str(e))
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop all application components gracefully."""
        if self._stopped:
            return
        self._stopped = True

        logger.info("Stopping power monitor application")

        self.is_running = False

        try:
            if self.demo_task:
                await _cancel(self.demo_task)
                self.demo_task = None

            if self.ingestion and self.ingestion.is_running:
                await self.ingestion.stop()

            if self.config_manager:
                self.config_manager.shutdown()

            if self.api_server_task:
                await _cancel(self.api_server_task)
                self.api_server_task = None

            if self.display_task:
                await _cancel(self.display_task)
                self.display_task = None

            if self.archive:
                await self.archive.close()
                self.archive = None

            self.system_status.stop_system()

            logger.info("Application stopped successfully")

        except Exception as e:
            logger.error("Error during application shutdown", error=str(e))

    async def get_status(self) -> Dict[str, Any]:
        """Get comprehensive application status."""
        status = {
            "application": {
                "is_running": self.is_running,
                "components": {
                    "ingestion": self.ingestion is not None and self.ingestion.is_running,
                    "archive": self.archive is not None,
                    "api_server": self.api_server_task is not None and not self.api_server_task.done(),
                    "display": self.display_task is not None and not self.display_task.done()
                }
            },
            "system_status": self.system_status.export_status(),
            "performance": {}
        }

        if self.engine:
            status["performance"]["engine"] = self.engine.get_engine_stats()

        if self.ingestion:
            status["performance"]["ingestion"] = self.ingestion.get_ingestion_stats()

        if self.archive:
            status["performance"]["archive"] = self.archive.get_storage_stats()

        return status

    def export_csv(self, output_path: str, export_filter: ExportFilter) -> int:
        """Write archived readings to a CSV file and return the row count."""
        if self.archive is None:
            raise ConfigurationError("Reading archive is disabled")

        rows = self.archive.write_csv(output_path, export_filter)
        logger.info("Readings exported", output_path=output_path, rows=rows)
        return rows

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        def signal_handler(sig, frame):
            logger.info("Received shutdown signal", signal=sig)
            self.is_running = False

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _on_config_changed(self, config: MonitorConfiguration) -> None:
        """Apply a hot-reloaded configuration."""
        logger.info("Configuration reloaded", rule_count=len(config.rules))
        self.configuration = config
        if self.engine:
            self.engine.apply_configuration(config)

    def _on_config_error(self, error: Exception) -> None:
        logger.error("Configuration error", error=str(error))

    async def _demo_update_loop(self) -> None:
        """Feed synthetic sensor payloads through the engine."""
        step = 0

        while self.is_running:
            try:
                step += 1
                voltage = 230.0 + 40.0 * math.sin(step / 15.0) + random.uniform(-5.0, 5.0)
                if step % 45 == 0:
                    # Brownout
                    voltage = random.uniform(20.0, 45.0)
                current1 = 30.0 + 45.0 * abs(math.sin(step / 25.0))

                payload = ",".join(f"{value:.2f}" for value in (
                    voltage,
                    current1,
                    random.uniform(0.0, 10.0),
                    random.uniform(0.0, 10.0),
                    25.0 + random.uniform(-2.0, 2.0),
                    55.0 + random.uniform(-10.0, 10.0),
                ))
                self.engine.process_payload(payload)

                await asyncio.sleep(1.0)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in demo update loop", error=str(e))
                await asyncio.sleep(1.0)

    async def _run_api_server(self, port: int, debug: bool) -> None:
        """Run the API server in a separate task."""
        try:
            import uvicorn
            from ..lib.api_server import create_app

            app = create_app(
                engine=self.engine,
                configuration=self.configuration,
                ingestion=self.ingestion
            )

            config = uvicorn.Config(
                app=app,
                host="localhost",
                port=port,
                log_level="debug" if debug else "info"
            )

            server = uvicorn.Server(config)
            await server.serve()

        except Exception as e:
            logger.error("API server error", error=str(e))

    async def _run_display_interface(self) -> None:
        """Run the display interface."""
        try:
            app = PowerMonitorApp(
                self.engine,
                visibility=self.visibility,
                broker_url=self.configuration.broker.url
            )
            await app.run_async()

        except Exception as e:
            logger.error("Display interface error", error=str(e))
        finally:
            # Quitting the dashboard stops the application
            self.is_running = False


async def _cancel(task: asyncio.Task) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


def _parse_datetime(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid ISO 8601 datetime: {value}")


def configure_logging(debug: bool) -> None:
    """Configure structlog console output."""
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=log_level, format="%(name)s %(levelname)s %(message)s")
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=True)
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        description="Power Sensor Monitor - MQTT-fed mains and load monitoring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m src.cli.main                              # Start with default settings
  python -m src.cli.main --config config.yaml         # Load specific configuration
  python -m src.cli.main --demo                       # Run with simulated readings
  python -m src.cli.main --no-display                 # Headless: API server only
  python -m src.cli.main --export-config config.yaml  # Export default config and exit
  python -m src.cli.main --demo --no-display --no-api --duration 30 \\
      --export-csv readings.csv --columns timestamp,voltage --iso-timestamps
        """
    )

    parser.add_argument("--config", type=str, help="Path to configuration file (YAML)")
    parser.add_argument("--hot-reload", action="store_true",
                        help="Reload threshold rules when the configuration file changes")
    parser.add_argument("--debug", action="store_true",
                        help="Enable debug logging and verbose output")
    parser.add_argument("--demo", action="store_true",
                        help="Run with simulated sensor readings instead of the broker")
    parser.add_argument("--no-api", action="store_true", help="Disable the HTTP API server")
    parser.add_argument("--no-display", action="store_true",
                        help="Disable the terminal display interface")
    parser.add_argument("--api-port", type=int, help="Port for HTTP API server (default: from config)")
    parser.add_argument("--duration", type=float,
                        help="Stop after this many seconds (default: run until interrupted)")
    parser.add_argument("--export-config", type=str,
                        help="Export default configuration to specified path and exit")

    export_group = parser.add_argument_group("CSV export (written on shutdown)")
    export_group.add_argument("--export-csv", type=str, help="Write archived readings to this CSV file")
    export_group.add_argument("--start", type=_parse_datetime, help="Inclusive range start (ISO 8601)")
    export_group.add_argument("--end", type=_parse_datetime, help="Inclusive range end (ISO 8601)")
    export_group.add_argument("--columns", type=str, help="Comma-separated columns to include")
    export_group.add_argument("--iso-timestamps", action="store_true",
                              help="Write timestamps as ISO 8601 instead of epoch milliseconds")

    return parser


def build_export_filter(args: argparse.Namespace) -> ExportFilter:
    """Build the CSV export filter from command line arguments."""
    columns = ExportColumns()
    if args.columns:
        columns = ExportColumns.only([c.strip() for c in args.columns.split(",") if c.strip()])

    return ExportFilter(
        start=args.start,
        end=args.end,
        columns=columns,
        iso_timestamps=args.iso_timestamps
    )


async def main_async(argv=None) -> int:
    """Async main function."""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_logging(args.debug)

    if args.export_config:
        try:
            save_config_to_file(load_default_config(), args.export_config)
            logger.info("Configuration exported successfully", path=args.export_config)
            return 0
        except Exception as e:
            logger.error("Failed to export configuration", error=str(e))
            return 1

    export_filter = None
    if args.export_csv:
        try:
            export_filter = build_export_filter(args)
        except ValueError as e:
            logger.error("Invalid export options", error=str(e))
            return 2

    app = PowerMonitorApplication()

    try:
        await app.initialize(config_path=args.config, hot_reload=args.hot_reload)

        await app.start(
            enable_api=not args.no_api,
            api_port=args.api_port,
            enable_display=not args.no_display,
            demo_mode=args.demo,
            debug=args.debug or app.configuration.enable_debug_logging
        )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + args.duration if args.duration else None
        while app.is_running:
            if deadline is not None and loop.time() >= deadline:
                break
            await asyncio.sleep(0.5)

        if export_filter is not None:
            app.export_csv(args.export_csv, export_filter)

        return 0

    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
        return 0
    except (ConfigurationError, TransportError) as e:
        logger.error("Application error", error=str(e))
        return 1
    except Exception as e:
        logger.error("Application error", error=str(e))
        return 1
    finally:
        await app.stop()


def main():
    """Main entry point."""
    try:
        return asyncio.run(main_async())
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())

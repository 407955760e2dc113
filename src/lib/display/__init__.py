"""Textual-based terminal display library for power sensor monitoring.

This library provides a real-time terminal dashboard over a monitoring
engine. Features include:

- Latest reading panel with warning and error annotations
- Rolling voltage trend over the history window
- Broker connection health and ingestion counters
- Alert log table with per-row dismissal
- Focus tracking so desktop notifications stay quiet while the dashboard
  is being watched

Usage:
    from src.lib.display import PowerMonitorApp

    app = PowerMonitorApp(engine, visibility)
    await app.run_async()
"""

import math
from typing import List, Optional

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.widgets import DataTable, Footer, Header, Sparkline, Static

from ...models import AlertEvent
from ...services import MonitoringEngine
from ..notifications import ViewVisibility
from .widgets import ConnectionWidget, LatestReadingWidget


class PowerMonitorApp(App):
    """Main Textual application for power sensor monitoring."""

    CSS = """
    Screen {
        layout: vertical;
    }

    #top-row {
        height: 12;
    }

    LatestReadingWidget {
        width: 2fr;
        margin: 0 1;
    }

    ConnectionWidget {
        width: 1fr;
        margin: 0 1;
    }

    .section-title {
        text-style: bold;
        color: $accent;
        height: 1;
        margin: 0 1;
    }

    #voltage-trend {
        height: 3;
        margin: 0 1;
    }

    #alerts {
        height: 1fr;
        margin: 0 1;
        border: solid $secondary;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("d", "dismiss_alert", "Dismiss Alert"),
        Binding("r", "refresh", "Refresh"),
    ]

    def __init__(
        self,
        engine: MonitoringEngine,
        visibility: Optional[ViewVisibility] = None,
        broker_url: str = "",
        update_interval: float = 0.5,
        **kwargs
    ):
        super().__init__(**kwargs)
        self.engine = engine
        self.visibility = visibility or ViewVisibility()
        self.broker_url = broker_url
        self.update_interval = update_interval
        self._shown_alerts: List[AlertEvent] = []

    def compose(self) -> ComposeResult:
        """Compose the main application."""
        yield Header(show_clock=True)
        with Horizontal(id="top-row"):
            yield LatestReadingWidget(id="latest")
            yield ConnectionWidget(id="connection")
        yield Static("Voltage trend", classes="section-title")
        yield Sparkline([], summary_function=max, id="voltage-trend")
        yield Static("Alerts", classes="section-title", id="alerts-title")
        yield DataTable(id="alerts", cursor_type="row", zebra_stripes=True)
        yield Footer()

    def on_mount(self) -> None:
        """Initialize the application after mounting."""
        self.title = "Power Sensor Monitor"
        self.sub_title = self.broker_url

        table = self.query_one("#alerts", DataTable)
        table.add_columns("#", "Time", "Severity", "Message")

        self.visibility.set_foreground(True)
        self.refresh_data()
        self.set_interval(self.update_interval, self.refresh_data)

    def on_unmount(self) -> None:
        self.visibility.set_foreground(False)

    def on_app_focus(self, event: events.AppFocus) -> None:
        self.visibility.set_foreground(True)

    def on_app_blur(self, event: events.AppBlur) -> None:
        self.visibility.set_foreground(False)

    def action_refresh(self) -> None:
        """Force refresh of all displays."""
        self.refresh_data()

    def action_dismiss_alert(self) -> None:
        """Dismiss the alert under the cursor."""
        table = self.query_one("#alerts", DataTable)
        if table.row_count == 0:
            return

        index = table.cursor_row
        if self.engine.dismiss_alert(index):
            self.refresh_data()
            self.notify(f"Dismissed alert {index}", timeout=2)

    def refresh_data(self) -> None:
        """Pull the current engine state into the widgets."""
        status = self.engine.system_status

        self.query_one(LatestReadingWidget).reading = self.engine.latest()

        connection = self.query_one(ConnectionWidget)
        connection.broker_url = self.broker_url
        connection.health = status.health
        connection.counters = status.counters

        voltages = [r.voltage for r in self.engine.history() if not math.isnan(r.voltage)]
        self.query_one("#voltage-trend", Sparkline).data = voltages

        self._refresh_alerts()

    def _refresh_alerts(self) -> None:
        alerts = self.engine.alerts()
        if alerts == self._shown_alerts:
            return

        table = self.query_one("#alerts", DataTable)
        cursor = table.cursor_row
        table.clear()
        for index, alert in enumerate(alerts):
            style = "red" if alert.is_error else "yellow"
            table.add_row(
                str(index),
                alert.recorded_at.strftime("%H:%M:%S"),
                f"[{style}]{alert.severity.upper()}[/{style}]",
                alert.message
            )
        if alerts:
            table.move_cursor(row=min(cursor, len(alerts) - 1))

        counts = self.engine.alert_log.counts()
        self.query_one("#alerts-title", Static).update(
            f"Alerts ({counts.get('error', 0)} errors, {counts.get('warning', 0)} warnings)"
        )
        self._shown_alerts = alerts


__all__ = ["PowerMonitorApp", "LatestReadingWidget", "ConnectionWidget"]

"""Real-time status widgets for the power monitor display."""

import math
from typing import Optional

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from textual.reactive import reactive
from textual.widget import Widget

from ...models import ConnectionHealth, IngestionCounters, SensorReading


# Channel name, label, unit
CHANNEL_ROWS = [
    ("voltage", "Voltage", "V"),
    ("current1", "Current 1", "A"),
    ("current2", "Current 2", "A"),
    ("current3", "Current 3", "A"),
    ("temperature", "Temperature", "°C"),
    ("humidity", "Humidity", "%"),
]


def format_value(value: float, unit: str) -> Text:
    if math.isnan(value):
        return Text("--", style="dim")
    return Text(f"{value:.1f} {unit}")


def status_style(reading: Optional[SensorReading]) -> str:
    if reading is None:
        return "dim"
    if reading.has_error:
        return "bold red"
    if reading.has_warning:
        return "bold yellow"
    return "green"


class LatestReadingWidget(Widget):
    """Most recent reading with its warning and error annotations."""

    reading: reactive[Optional[SensorReading]] = reactive(None)

    def render(self) -> Panel:
        reading = self.reading
        style = status_style(reading)

        if reading is None:
            return Panel(Text("Waiting for data...", style="dim"), title="Latest Reading")

        table = Table.grid(padding=(0, 2))
        table.add_column(justify="left")
        table.add_column(justify="right")
        for name, label, unit in CHANNEL_ROWS:
            table.add_row(label, format_value(reading.channel_value(name), unit))

        annotations = Text()
        if reading.error:
            annotations.append(f"Error: {reading.error}\n", style="red")
        if reading.warning:
            annotations.append(f"Warning: {reading.warning}\n", style="yellow")
        if not annotations:
            annotations.append("All channels within limits", style="green")

        subtitle = reading.recorded_at.strftime("%H:%M:%S")
        return Panel(Group(table, Text(), annotations), title="Latest Reading",
                     subtitle=subtitle, border_style=style)


class ConnectionWidget(Widget):
    """Broker connection state and ingestion counters."""

    health: reactive[Optional[ConnectionHealth]] = reactive(None, always_update=True)
    counters: reactive[Optional[IngestionCounters]] = reactive(None, always_update=True)
    broker_url: reactive[str] = reactive("")

    def render(self) -> Panel:
        health = self.health
        counters = self.counters

        table = Table.grid(padding=(0, 2))
        table.add_column()
        table.add_column(justify="right")

        if health is None:
            table.add_row("Broker", Text("Unknown", style="red"))
        else:
            color = {"healthy": "green", "unstable": "yellow"}.get(health.overall_health, "red")
            table.add_row("Broker", Text(health.connection_state.title(), style=color))
            table.add_row("Disconnects", str(health.disconnect_count))

        if counters is not None:
            table.add_row("Messages", f"{counters.messages_processed:,}")
            table.add_row("Malformed", f"{counters.malformed_readings:,}")
            table.add_row("Failed", f"{counters.messages_failed:,}")
            table.add_row("Alerts raised", f"{counters.alerts_raised:,}")

        return Panel(table, title="Connection", subtitle=self.broker_url or None)


__all__ = [
    "LatestReadingWidget",
    "ConnectionWidget",
    "CHANNEL_ROWS",
    "format_value",
    "status_style"
]

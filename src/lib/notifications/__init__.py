"""
Notification capability library for alert side effects.

Keeps the alerting core free of any platform API. Three small capabilities
are defined, each with concrete backends:

Classes:
    SoundPlayer: audible cue (TerminalBellPlayer, NullSoundPlayer)
    NotificationBackend: desktop notifications (NotifySendBackend,
        NullNotificationBackend)
    VisibilityProvider: whether the dashboard is the foreground view
        (ViewVisibility)

Backends never raise from their side-effect methods; failures are logged and
swallowed so a broken speaker or notification daemon cannot stall ingestion.
"""

import logging
import shutil
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import Optional

from rich.console import Console

logger = logging.getLogger(__name__)


class SoundPlayer(ABC):
    """Plays the audible alert cue."""

    @abstractmethod
    def play_alert_sound(self) -> None:
        """Play the cue once."""


class NotificationBackend(ABC):
    """Dispatches desktop-style notifications."""

    @abstractmethod
    def request_permission(self) -> bool:
        """Ask for permission to notify. Returns the resulting grant state."""

    @property
    @abstractmethod
    def permission_granted(self) -> bool:
        """Whether a previous permission request was granted."""

    @abstractmethod
    def notify(self, title: str, body: str) -> None:
        """Show one notification."""


class VisibilityProvider(ABC):
    """Reports whether the consuming view is in the foreground."""

    @abstractmethod
    def is_foreground(self) -> bool:
        """True while the user is looking at the dashboard."""


class TerminalBellPlayer(SoundPlayer):
    """Rings the terminal bell through rich."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(stderr=True)

    def play_alert_sound(self) -> None:
        try:
            self.console.bell()
        except Exception as e:
            logger.debug(f"Terminal bell failed: {e}")


class NullSoundPlayer(SoundPlayer):
    """Silent player for headless runs."""

    def play_alert_sound(self) -> None:
        return None


class NotifySendBackend(NotificationBackend):
    """
    Desktop notifications through the freedesktop ``notify-send`` command.

    Permission is granted when the command is available on PATH.
    """

    def __init__(self, command: str = "notify-send", timeout_s: float = 5.0):
        self.command = command
        self.timeout_s = timeout_s
        self._executable: Optional[str] = None
        self._granted = False

    def request_permission(self) -> bool:
        self._executable = shutil.which(self.command)
        self._granted = self._executable is not None

        if self._granted:
            logger.info(f"Desktop notifications enabled via {self._executable}")
        else:
            logger.info(f"{self.command} not found - desktop notifications disabled")

        return self._granted

    @property
    def permission_granted(self) -> bool:
        return self._granted

    def notify(self, title: str, body: str) -> None:
        if not self._granted or not self._executable:
            return

        try:
            subprocess.run(
                [self._executable, "--app-name=power-monitor", title, body],
                check=False,
                timeout=self.timeout_s,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"Desktop notification failed: {e}")


class NullNotificationBackend(NotificationBackend):
    """Backend that never obtains permission, so every notify is a no-op."""

    def request_permission(self) -> bool:
        return False

    @property
    def permission_granted(self) -> bool:
        return False

    def notify(self, title: str, body: str) -> None:
        return None


class ViewVisibility(VisibilityProvider):
    """
    Thread-safe foreground flag.

    The terminal dashboard sets it on focus and clears it on blur. With no
    dashboard attached it stays cleared, so the view counts as backgrounded.
    """

    def __init__(self, foreground: bool = False):
        self._foreground = threading.Event()
        if foreground:
            self._foreground.set()

    def set_foreground(self, foreground: bool) -> None:
        if foreground:
            self._foreground.set()
        else:
            self._foreground.clear()

    def is_foreground(self) -> bool:
        return self._foreground.is_set()


__all__ = [
    "SoundPlayer",
    "NotificationBackend",
    "VisibilityProvider",
    "TerminalBellPlayer",
    "NullSoundPlayer",
    "NotifySendBackend",
    "NullNotificationBackend",
    "ViewVisibility",
]

"""Pytest configuration and fixtures."""

import pytest
import sys
from pathlib import Path
from typing import List, Tuple

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.lib.notifications import NotificationBackend, SoundPlayer, ViewVisibility  # noqa: E402


FIXED_MILLIS = 1_700_000_000_000


class RecordingSoundPlayer(SoundPlayer):
    """Counts alert sounds instead of ringing the bell."""

    def __init__(self):
        self.played = 0

    def play_alert_sound(self) -> None:
        self.played += 1


class RecordingNotificationBackend(NotificationBackend):
    """Collects desktop notifications; permission is configurable."""

    def __init__(self, grant: bool = True):
        self.grant = grant
        self._granted = False
        self.sent: List[Tuple[str, str]] = []

    def request_permission(self) -> bool:
        self._granted = self.grant
        return self._granted

    @property
    def permission_granted(self) -> bool:
        return self._granted

    def notify(self, title: str, body: str) -> None:
        self.sent.append((title, body))


@pytest.fixture
def fixed_clock():
    """Clock returning a constant epoch-millisecond timestamp."""
    return lambda: FIXED_MILLIS


@pytest.fixture
def sound_player():
    return RecordingSoundPlayer()


@pytest.fixture
def notification_backend():
    backend = RecordingNotificationBackend()
    backend.request_permission()
    return backend


@pytest.fixture
def denied_backend():
    """Notification backend whose permission request is refused."""
    return RecordingNotificationBackend(grant=False)


@pytest.fixture
def visibility():
    return ViewVisibility(foreground=False)


@pytest.fixture
def notifier(sound_player, notification_backend, visibility):
    from src.services import AlertNotifier

    return AlertNotifier(
        sound_player=sound_player,
        notification_backend=notification_backend,
        visibility=visibility
    )


@pytest.fixture
def archive():
    """Open in-memory reading archive."""
    from src.services import ReadingArchive

    archive = ReadingArchive(in_memory=True)
    archive.open()
    yield archive
    if archive.connection:
        archive.connection.close()
        archive.connection = None


@pytest.fixture
def engine(fixed_clock, notifier, archive):
    """Monitoring engine wired to recording collaborators and an open archive."""
    from src.services import AlertLog, HistoryStore, MonitoringEngine, ThresholdClassifier

    return MonitoringEngine(
        classifier=ThresholdClassifier(clock=fixed_clock),
        history=HistoryStore(capacity=60),
        alert_log=AlertLog(),
        notifier=notifier,
        archive=archive
    )

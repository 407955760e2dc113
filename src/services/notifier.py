"""AlertNotifier service: sound and desktop side effects for new alerts."""

from typing import List, Optional, Sequence

import structlog

from ..models import AlertEvent, AlertSeverity, NotificationSettings
from ..lib.notifications import (
    NotificationBackend,
    NullNotificationBackend,
    NullSoundPlayer,
    SoundPlayer,
    ViewVisibility,
    VisibilityProvider,
)


logger = structlog.get_logger(__name__)


class AlertNotifier:
    """Dispatch side effects for the alerts raised by one classification.

    Errors ring the audible cue regardless of visibility and produce a
    desktop notification listing every error message. Warnings alone
    produce only the desktop notification. Desktop notifications are
    suppressed while the dashboard is in the foreground and when permission
    was never granted.
    """

    def __init__(self,
                 sound_player: Optional[SoundPlayer] = None,
                 notification_backend: Optional[NotificationBackend] = None,
                 visibility: Optional[VisibilityProvider] = None,
                 settings: Optional[NotificationSettings] = None):
        self.sound_player = sound_player or NullSoundPlayer()
        self.notification_backend = notification_backend or NullNotificationBackend()
        self.visibility = visibility or ViewVisibility()
        self.settings = settings or NotificationSettings()

        # Performance tracking
        self.sounds_played = 0
        self.notifications_sent = 0

    def request_permission(self) -> bool:
        """Ask the notification backend for permission once at startup."""
        if not self.settings.desktop_enabled:
            return False
        try:
            granted = self.notification_backend.request_permission()
        except Exception as e:
            logger.debug("Notification permission request failed", error=str(e))
            return False

        logger.info("Notification permission", granted=granted)
        return granted

    def notify(self, alerts: Sequence[AlertEvent]) -> None:
        """Fire side effects for the alerts of one reading (possibly none)."""
        if not alerts:
            return

        errors = _messages(alerts, AlertSeverity.ERROR)
        if errors:
            self._play_sound()
            self._send_desktop(self.settings.error_title, errors)
            return

        warnings = _messages(alerts, AlertSeverity.WARNING)
        if warnings:
            self._send_desktop(self.settings.warning_title, warnings)

    def _play_sound(self) -> None:
        if not self.settings.sound_enabled:
            return
        try:
            self.sound_player.play_alert_sound()
            self.sounds_played += 1
        except Exception as e:
            logger.debug("Alert sound failed", error=str(e))

    def _send_desktop(self, title: str, messages: List[str]) -> None:
        if not self.settings.desktop_enabled:
            return
        try:
            if self.visibility.is_foreground():
                return
            if not self.notification_backend.permission_granted:
                return
            self.notification_backend.notify(title, self.settings.separator.join(messages))
            self.notifications_sent += 1
        except Exception as e:
            logger.debug("Desktop notification failed", title=title, error=str(e))


def _messages(alerts: Sequence[AlertEvent], severity: AlertSeverity) -> List[str]:
    return [alert.message for alert in alerts if alert.severity == severity]


__all__ = ["AlertNotifier"]

"""Notification sinks for user-facing toasts."""

import logging
from typing import Protocol, runtime_checkable

from venuesync.types import Notification, NotificationLevel

logger = logging.getLogger(__name__)


@runtime_checkable
class NotificationSink(Protocol):
    """Fire-and-forget toast interface."""

    def notify(self, notification: Notification) -> None:
        """Show a transient message to the user."""
        ...


class LoggingNotificationSink:
    """Sink that writes toasts to the log. Used when no UI sink is wired in."""

    def __init__(self, logger_name: str = "venuesync.toast") -> None:
        self._logger = logging.getLogger(logger_name)

    def notify(self, notification: Notification) -> None:
        if notification.level is NotificationLevel.ERROR:
            self._logger.warning("%s", notification.message)
        else:
            self._logger.info("%s", notification.message)


def notify_safely(sink: NotificationSink, notification: Notification) -> None:
    """Deliver a notification; a broken sink must not break the data layer."""
    try:
        sink.notify(notification)
    except Exception:
        logger.exception("Notification sink failed for %r", notification.message)


__all__ = ["LoggingNotificationSink", "NotificationSink", "notify_safely"]

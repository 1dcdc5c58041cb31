"""Toast-style notifications handed to the UI collaborator."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
import logging

LOGGER = logging.getLogger(__name__)


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    title: str
    description: str
    severity: Severity = Severity.INFO


NotificationSink = Callable[[Notification], None]


def log_notification(notification: Notification) -> None:
    """Default sink: write the notification to the log."""
    level = {
        Severity.ERROR: logging.ERROR,
        Severity.WARNING: logging.WARNING,
    }.get(notification.severity, logging.INFO)
    LOGGER.log(
        level,
        "notification",
        extra={
            "event": "notification",
            "title": notification.title,
            "description": notification.description,
            "severity": notification.severity.value,
        },
    )

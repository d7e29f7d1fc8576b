"""
app/services/notifications.py

Notification sink used by the alert lifecycle.

Delivery (email, chat, in-app) belongs to the sink's owner; the engine only
hands over ``(type, channel, message, metadata)``.
"""

from __future__ import annotations

from typing import Any, Protocol

from sqlalchemy.orm import Session

from db.repositories.notification_repository import NotificationRepository

ALERT_NOTIFICATION_TYPE = "alert_center"
ALERT_NOTIFICATION_CHANNEL = "system"


class NotificationSink(Protocol):
    def send(
        self,
        *,
        type: str,
        channel: str,
        message: str,
        metadata: dict[str, Any],
    ) -> None: ...


class DatabaseNotificationSink:
    """Writes notifications to the shared ``notifications`` table."""

    def __init__(self, session: Session, *, repository: NotificationRepository | None = None) -> None:
        self._repository = repository or NotificationRepository(session)

    def send(
        self,
        *,
        type: str,
        channel: str,
        message: str,
        metadata: dict[str, Any],
    ) -> None:
        self._repository.add(type=type, channel=channel, message=message, metadata=metadata)

"""
db/repositories/notification_repository.py

Writes in-app notification rows. The caller controls the outer commit.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from db.models.notification import Notification


class NotificationRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def add(
        self,
        *,
        type: str,
        channel: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        """
        Insert one notification inside a savepoint so a failed write does
        not poison the surrounding transaction.
        """
        notification = Notification(
            type=type,
            channel=channel,
            message=message,
            metadata_=metadata,
        )
        with self._session.begin_nested():
            self._session.add(notification)
            self._session.flush()
        return notification

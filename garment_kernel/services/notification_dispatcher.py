"""
Module: garment_kernel.services.notification_dispatcher
Responsibility: Operator notifications.  ``NotificationDispatcher`` is the
    port the workflow engine writes to; ``NotificationService`` is the
    persisted inbox implementation used by default.
Architecture position: Kernel > Services.

Notification delivery is best-effort: the engine writes through the
dispatcher inside a savepoint, and a failure there is logged and reported as
an undelivered side effect instead of failing the transition.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import select

from garment_kernel.domain.clock import Clock, SystemClock
from garment_kernel.domain.dtos import NotificationDTO
from garment_kernel.exceptions import NotificationNotFoundError
from garment_kernel.logging_config import get_logger
from garment_kernel.models.notification import Notification
from garment_kernel.services.base import BaseService

logger = get_logger("services.notifications")

REQUEST_ASSIGNED = "REQUEST_ASSIGNED"


class NotificationDispatcher(Protocol):
    """Anything that can queue a message for an operator."""

    def enqueue(
        self,
        user_id: str,
        message: str,
        metadata: Mapping[str, Any] | None = None,
        *,
        request_id: UUID | None = None,
        notification_type: str = REQUEST_ASSIGNED,
    ) -> NotificationDTO: ...


class NotificationService(BaseService[Notification]):
    """Persisted notification inbox.  Flush-only (see BaseService)."""

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def enqueue(
        self,
        user_id: str,
        message: str,
        metadata: Mapping[str, Any] | None = None,
        *,
        request_id: UUID | None = None,
        notification_type: str = REQUEST_ASSIGNED,
    ) -> NotificationDTO:
        notification = Notification(
            user_id=user_id,
            request_id=request_id,
            type=notification_type,
            message=message,
            is_read=False,
            meta=dict(metadata or {}),
            created_at=self._clock.now_utc(),
        )
        self.session.add(notification)
        self.session.flush()
        logger.info(
            "notification_enqueued",
            extra={"user_id": user_id, "notification_type": notification_type},
        )
        return notification.to_dto()

    def list_for_user(self, user_id: str, *, unread_only: bool = False) -> list[NotificationDTO]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at, Notification.id)
        return [n.to_dto() for n in self.session.scalars(stmt)]

    def mark_read(self, notification_id: UUID) -> NotificationDTO:
        notification = self.session.get(Notification, notification_id)
        if notification is None:
            raise NotificationNotFoundError(notification_id)
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = self._clock.now_utc()
            self.session.flush()
        return notification.to_dto()

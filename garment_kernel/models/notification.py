"""ORM persistence for operator notifications (assignment messages, inbox)."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from garment_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from garment_kernel.domain.dtos import NotificationDTO


class Notification(Base):
    __tablename__ = "notifications"

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("requests.id"), nullable=True,
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_dto(self) -> NotificationDTO:
        from garment_kernel.domain.dtos import NotificationDTO

        return NotificationDTO(
            id=self.id,
            user_id=self.user_id,
            request_id=self.request_id,
            type=self.type,
            message=self.message,
            is_read=self.is_read,
            metadata=dict(self.meta or {}),
            created_at=self.created_at,
        )

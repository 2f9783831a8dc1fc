"""
Module: garment_kernel.models.domain_event
Responsibility: Append-only log of domain events (request created/updated,
    item created/updated/moved, batch updated) for observability.

Invariants enforced:
    - Immutable from creation (db/immutability.py).
    - References are plain UUID columns without foreign keys so the log
      stays independent of the entities it describes.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from garment_kernel.db.base import Base, UUIDString


class DomainEventType(str, Enum):
    REQUEST_CREATED = "REQUEST_CREATED"
    REQUEST_UPDATED = "REQUEST_UPDATED"
    REQUEST_ASSIGNED = "REQUEST_ASSIGNED"
    ITEM_CREATED = "ITEM_CREATED"
    ITEM_UPDATED = "ITEM_UPDATED"
    ITEM_MOVED = "ITEM_MOVED"
    BATCH_UPDATED = "BATCH_UPDATED"
    ORDER_PROCESSED = "ORDER_PROCESSED"


class DomainEvent(Base):
    __tablename__ = "domain_events"

    __table_args__ = (
        Index("ix_domain_events_request", "request_id"),
        Index("ix_domain_events_item", "item_id"),
    )

    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    item_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    order_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<DomainEvent {self.event_type} req={self.request_id}>"

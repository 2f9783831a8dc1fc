"""
Module: garment_kernel.services.event_logger
Responsibility: Append-only domain event log (request created/updated,
    item created/updated/moved, batch updated).
Architecture position: Kernel > Services.

Event writes are best-effort, like notifications: the engine records them
inside a savepoint after the state change and reports a failure as an
undelivered side effect.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select

from garment_kernel.domain.clock import Clock, SystemClock
from garment_kernel.logging_config import get_logger
from garment_kernel.models.domain_event import DomainEvent, DomainEventType
from garment_kernel.services.base import BaseService
from garment_kernel.utils.hashing import canonicalize_json

logger = get_logger("services.events")


@dataclass(frozen=True)
class EventRefs:
    """Entities an event refers to."""

    actor_id: str | None = None
    item_id: UUID | None = None
    order_id: UUID | None = None
    request_id: UUID | None = None


@dataclass(frozen=True)
class DomainEventDTO:
    id: UUID
    event_type: DomainEventType
    actor_id: str | None
    item_id: UUID | None
    order_id: UUID | None
    request_id: UUID | None
    data: dict[str, Any]
    created_at: datetime


class DomainEventLogger(BaseService[DomainEvent]):
    """Writes and reads domain events.  Flush-only (see BaseService)."""

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def record(
        self,
        event_type: DomainEventType,
        refs: EventRefs,
        data: Mapping[str, Any] | None = None,
    ) -> UUID:
        event = DomainEvent(
            event_type=DomainEventType(event_type).value,
            actor_id=refs.actor_id,
            item_id=refs.item_id,
            order_id=refs.order_id,
            request_id=refs.request_id,
            data=json.loads(canonicalize_json(dict(data or {}))),
            created_at=self._clock.now_utc(),
        )
        self.session.add(event)
        self.session.flush()
        logger.debug("domain_event_recorded", extra={"event_type": event.event_type})
        return event.id

    def list_events(
        self,
        *,
        request_id: UUID | None = None,
        item_id: UUID | None = None,
        event_type: DomainEventType | None = None,
    ) -> list[DomainEventDTO]:
        stmt = select(DomainEvent)
        if request_id is not None:
            stmt = stmt.where(DomainEvent.request_id == request_id)
        if item_id is not None:
            stmt = stmt.where(DomainEvent.item_id == item_id)
        if event_type is not None:
            stmt = stmt.where(DomainEvent.event_type == DomainEventType(event_type).value)
        stmt = stmt.order_by(DomainEvent.created_at, DomainEvent.id)
        return [
            DomainEventDTO(
                id=e.id,
                event_type=DomainEventType(e.event_type),
                actor_id=e.actor_id,
                item_id=e.item_id,
                order_id=e.order_id,
                request_id=e.request_id,
                data=dict(e.data or {}),
                created_at=e.created_at,
            )
            for e in self.session.scalars(stmt)
        ]

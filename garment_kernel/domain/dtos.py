"""
Frozen data transfer objects returned by the workflow engine.

ORM models never leave a transaction; services convert them with
``to_dto()`` before the session closes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from garment_kernel.domain.request_lifecycle import (
    BatchStatus,
    RequestStatus,
    RequestType,
)


@dataclass(frozen=True)
class ItemDTO:
    id: UUID
    sku: str
    status1: str
    status2: str
    qr_code: str
    bin_id: UUID | None
    location: str | None
    metadata: dict[str, Any]
    version: int


@dataclass(frozen=True)
class BinDTO:
    id: UUID
    code: str
    qr_code: str | None
    capacity: int
    current_count: int
    sku_restriction: str | None
    is_active: bool

    @property
    def has_capacity(self) -> bool:
        return self.current_count < self.capacity


@dataclass(frozen=True)
class OrderDTO:
    id: UUID
    order_number: str
    customer_name: str | None
    status: str


@dataclass(frozen=True)
class BatchDTO:
    id: UUID
    sku: str
    quantity: int
    status: BatchStatus
    metadata: dict[str, Any]


@dataclass(frozen=True)
class RequestDTO:
    id: UUID
    type: RequestType
    status: RequestStatus
    assigned_to: str | None
    item_id: UUID | None
    order_id: UUID | None
    batch_id: UUID | None
    metadata: dict[str, Any]
    idempotency_key: str | None
    version: int
    created_by_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class TimelineEntryDTO:
    id: UUID
    request_id: UUID
    seq: int
    step: str
    status: RequestStatus
    operator_id: str | None
    metadata: dict[str, Any]
    created_at: datetime


@dataclass(frozen=True)
class NotificationDTO:
    id: UUID
    user_id: str
    request_id: UUID | None
    type: str
    message: str
    is_read: bool
    metadata: dict[str, Any]
    created_at: datetime


class SideEffectKind(str, Enum):
    """What a transition did besides updating the request itself."""

    ITEM_UPDATED = "ITEM_UPDATED"
    ITEMS_CREATED = "ITEMS_CREATED"
    BIN_UPDATED = "BIN_UPDATED"
    REQUEST_CREATED = "REQUEST_CREATED"
    BATCH_UPDATED = "BATCH_UPDATED"
    ORDER_UPDATED = "ORDER_UPDATED"
    TIMELINE_APPENDED = "TIMELINE_APPENDED"
    NOTIFICATION_ENQUEUED = "NOTIFICATION_ENQUEUED"
    EVENT_RECORDED = "EVENT_RECORDED"


@dataclass(frozen=True)
class SideEffect:
    """One mutation performed by a transition.

    ``delivered`` is False only for best-effort collaborators (notification,
    event log) whose write failed without failing the transition.
    """

    kind: SideEffectKind
    target_id: UUID | None
    detail: dict[str, Any] = field(default_factory=dict)
    delivered: bool = True


@dataclass(frozen=True)
class TransitionResult:
    request: RequestDTO
    side_effects: tuple[SideEffect, ...] = ()

    def effects_of(self, kind: SideEffectKind) -> tuple[SideEffect, ...]:
        return tuple(e for e in self.side_effects if e.kind == kind)

    @property
    def spawned_request_ids(self) -> tuple[UUID, ...]:
        return tuple(
            e.target_id
            for e in self.side_effects
            if e.kind == SideEffectKind.REQUEST_CREATED and e.target_id is not None
        )


class AllocationKind(str, Enum):
    """How one unit of an order line was satisfied."""

    EXACT = "EXACT"
    UNIVERSAL = "UNIVERSAL"
    PRODUCTION = "PRODUCTION"


@dataclass(frozen=True)
class OrderAllocation:
    """Units of one order line and what now covers them.

    EXACT and UNIVERSAL allocations cover one unit with ``item_id``; a
    UNIVERSAL match of a stocked garment also carries the WASH request in
    ``request_id``.  PRODUCTION covers ``quantity`` units with a PATTERN
    request.
    """

    line_number: int
    target_sku: str
    kind: AllocationKind
    quantity: int = 1
    item_id: UUID | None = None
    request_id: UUID | None = None


@dataclass(frozen=True)
class OrderProcessingResult:
    order: OrderDTO
    allocations: tuple[OrderAllocation, ...]
    side_effects: tuple[SideEffect, ...] = ()

    def allocations_of(self, kind: AllocationKind) -> tuple[OrderAllocation, ...]:
        return tuple(a for a in self.allocations if a.kind == kind)


@dataclass(frozen=True)
class RequestDetail:
    """A request with its related item, order, batch and timeline."""

    request: RequestDTO
    item: ItemDTO | None
    order: OrderDTO | None
    batch: BatchDTO | None
    timeline: tuple[TimelineEntryDTO, ...]


@dataclass(frozen=True)
class RequestFilter:
    type: RequestType | None = None
    status: RequestStatus | None = None
    assigned_to: str | None = None
    item_id: UUID | None = None
    batch_id: UUID | None = None
    limit: int | None = None

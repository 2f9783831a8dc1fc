"""
Module: garment_kernel.models.request
Responsibility: ORM persistence for pipeline requests (units of stage work).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - type and status are restricted to the lifecycle enums (CHECK).
    - idempotency_key is unique: at most one request per creation intent.
    - version column: two transitions racing on the same request cannot
      both commit; the loser's flush raises StaleDataError.
    - Terminal requests (COMPLETED / FAILED) reject every UPDATE and all
      requests reject DELETE (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate idempotency_key.
    - StaleDataError on a lost update race.
    - ImmutabilityViolationError on changes to a terminal request.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from garment_kernel.db.base import TrackedBase, UUIDString
from garment_kernel.models.batch import ProductionBatch
from garment_kernel.models.inventory import InventoryItem
from garment_kernel.models.order import Order

if TYPE_CHECKING:
    from garment_kernel.domain.dtos import RequestDTO


class Request(TrackedBase):
    """Persistent request.

    Contract:
        Mutated only by the workflow engine once created.  Metadata is a
        JSON map validated and merged through domain/metadata.py.
    """

    __tablename__ = "requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED', 'FAILED')",
            name="ck_requests_valid_status",
        ),
        CheckConstraint(
            "type IN ('PATTERN', 'CUTTING', 'SEW', 'WASH', 'QC', "
            "'FINISHING', 'PACKING', 'MOVE', 'RECOVERY')",
            name="ck_requests_valid_type",
        ),
        Index("ix_requests_item_type_status", "item_id", "type", "status"),
        Index("ix_requests_assigned_status", "assigned_to", "status"),
        Index("ix_requests_batch", "batch_id"),
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    assigned_to: Mapped[str | None] = mapped_column(String(100), nullable=True)
    item_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("inventory_items.id"), nullable=True,
    )
    order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=True,
    )
    batch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("production_batches.id"), nullable=True,
    )
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )
    idempotency_key: Mapped[str | None] = mapped_column(
        String(300), nullable=True, unique=True,
    )
    request_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    item: Mapped[InventoryItem | None] = relationship(InventoryItem)
    order: Mapped[Order | None] = relationship(Order)
    batch: Mapped[ProductionBatch | None] = relationship(ProductionBatch)

    def to_dto(self) -> RequestDTO:
        from garment_kernel.domain.dtos import RequestDTO
        from garment_kernel.domain.request_lifecycle import RequestStatus, RequestType

        return RequestDTO(
            id=self.id,
            type=RequestType(self.type),
            status=RequestStatus(self.status),
            assigned_to=self.assigned_to,
            item_id=self.item_id,
            order_id=self.order_id,
            batch_id=self.batch_id,
            metadata=dict(self.meta or {}),
            idempotency_key=self.idempotency_key,
            version=self.version,
            created_by_id=self.created_by_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def __repr__(self) -> str:
        return f"<Request {self.type} {self.id} {self.status}>"

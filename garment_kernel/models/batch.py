"""
Module: garment_kernel.models.batch
Responsibility: ORM persistence for production batches (groups of requests
    sharing a sku/quantity, e.g. several cutting requests consolidated).

Invariants enforced:
    - status is one of the BatchStatus values (CHECK constraint); the
      workflow engine recomputes it from member requests after every
      transition that touches one of them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from garment_kernel.db.base import TrackedBase

if TYPE_CHECKING:
    from garment_kernel.domain.dtos import BatchDTO


class ProductionBatch(TrackedBase):
    __tablename__ = "production_batches"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED', 'FAILED')",
            name="ck_production_batches_valid_status",
        ),
        CheckConstraint("quantity >= 0", name="ck_production_batches_quantity"),
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )

    def to_dto(self) -> BatchDTO:
        from garment_kernel.domain.dtos import BatchDTO
        from garment_kernel.domain.request_lifecycle import BatchStatus

        return BatchDTO(
            id=self.id,
            sku=self.sku,
            quantity=self.quantity,
            status=BatchStatus(self.status),
            metadata=dict(self.meta or {}),
        )

    def __repr__(self) -> str:
        return f"<ProductionBatch {self.sku} x{self.quantity} {self.status}>"

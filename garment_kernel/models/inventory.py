"""
Module: garment_kernel.models.inventory
Responsibility: ORM persistence for inventory items (physical garments) and
    bins (capacity-bounded storage locations).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - qr_code is unique per item (physical identity).
    - 0 <= current_count <= capacity on every bin (CHECK constraints).
    - Item rows carry a version column; concurrent status updates on the
      same item fail with StaleDataError instead of overwriting each other.
    - Items are never deleted (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate qr_code / bin code.
    - IntegrityError when a bin update would exceed capacity.
    - StaleDataError on a lost item update race.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from garment_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from garment_kernel.domain.dtos import BinDTO, ItemDTO


class Bin(TrackedBase):
    """Physical storage location with a bounded capacity.

    ``current_count`` is only changed through conditional UPDATE statements
    issued by ``InventoryRepository``; never assign it on a loaded object.
    """

    __tablename__ = "bins"

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="ck_bins_capacity_non_negative"),
        CheckConstraint("current_count >= 0", name="ck_bins_count_non_negative"),
        CheckConstraint("current_count <= capacity", name="ck_bins_count_within_capacity"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    qr_code: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    current_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sku_restriction: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> BinDTO:
        from garment_kernel.domain.dtos import BinDTO

        return BinDTO(
            id=self.id,
            code=self.code,
            qr_code=self.qr_code,
            capacity=self.capacity,
            current_count=self.current_count,
            sku_restriction=self.sku_restriction,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<Bin {self.code} {self.current_count}/{self.capacity}>"


class InventoryItem(TrackedBase):
    """A physical garment unit."""

    __tablename__ = "inventory_items"

    __table_args__ = (
        Index("ix_inventory_items_status", "status1", "status2"),
        Index("ix_inventory_items_bin", "bin_id"),
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    status1: Mapped[str] = mapped_column(String(30), nullable=False)
    status2: Mapped[str] = mapped_column(String(30), nullable=False)
    bin_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("bins.id"), nullable=True,
    )
    location: Mapped[str | None] = mapped_column(String(100), nullable=True)
    qr_code: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    bin: Mapped[Bin | None] = relationship("Bin")

    def to_dto(self) -> ItemDTO:
        from garment_kernel.domain.dtos import ItemDTO

        return ItemDTO(
            id=self.id,
            sku=self.sku,
            status1=self.status1,
            status2=self.status2,
            qr_code=self.qr_code,
            bin_id=self.bin_id,
            location=self.location,
            metadata=dict(self.meta or {}),
            version=self.version,
        )

    def __repr__(self) -> str:
        return f"<InventoryItem {self.sku} {self.status1}/{self.status2}>"

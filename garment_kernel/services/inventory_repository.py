"""
Module: garment_kernel.services.inventory_repository
Responsibility: Persistence access for items, bins, orders and production
    batches, including the capacity-safe bin occupancy updates.
Architecture position: Kernel > Services.  May import from models/, domain/
    and services/base.py.

Invariants enforced:
    - Bin occupancy only changes through conditional UPDATE statements:
      ``reserve_bin_slot`` increments only while ``current_count <
      capacity`` and the bin is active; ``release_bin_slot`` decrements only
      while ``current_count > 0``.  Two transactions racing for the last
      slot can never both succeed, whatever the isolation level.

Failure modes:
    - ItemNotFoundError, BinNotFoundError, OrderNotFoundError,
      BatchNotFoundError from the ``get_*`` lookups.
    - BinFullError / BinInactiveError from ``reserve_bin_slot``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import or_, select, update

from garment_kernel.domain.request_lifecycle import ItemStage, ItemSubStatus, OrderStatus
from garment_kernel.exceptions import (
    BatchNotFoundError,
    BinFullError,
    BinInactiveError,
    BinNotFoundError,
    ItemNotFoundError,
    OrderNotFoundError,
    ValidationError,
)
from garment_kernel.logging_config import get_logger
from garment_kernel.models.batch import ProductionBatch
from garment_kernel.models.inventory import Bin, InventoryItem
from garment_kernel.models.order import Order
from garment_kernel.services.base import BaseService

logger = get_logger("services.inventory_repository")


def new_qr_code() -> str:
    return f"QR-{uuid4().hex.upper()}"


class InventoryRepository(BaseService[InventoryItem]):
    """Items, bins, orders and batches.  Flush-only (see BaseService)."""

    # -- Items ---------------------------------------------------------------

    def find_item(self, item_id: UUID) -> InventoryItem | None:
        return self.session.get(InventoryItem, item_id)

    def get_item(self, item_id: UUID) -> InventoryItem:
        item = self.find_item(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    def get_item_for_update(self, item_id: UUID) -> InventoryItem:
        stmt = (
            select(InventoryItem)
            .where(InventoryItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        item = self.session.scalars(stmt).one_or_none()
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    def find_item_by_qr(self, qr_code: str) -> InventoryItem | None:
        return self.session.scalars(
            select(InventoryItem).where(InventoryItem.qr_code == qr_code)
        ).one_or_none()

    def find_uncommitted_items(
        self,
        *,
        sku: str | None = None,
        sku_prefix: str | None = None,
        sku_suffix: str | None = None,
    ) -> list[InventoryItem]:
        """Stock and in-production garments not yet promised to an order.

        Oldest first; rows are locked so that two orders cannot claim the
        same garment.
        """
        stmt = (
            select(InventoryItem)
            .where(
                InventoryItem.status1.in_((ItemStage.STOCK.value, ItemStage.PRODUCTION.value)),
                InventoryItem.status2 == ItemSubStatus.UNCOMMITTED.value,
            )
            .order_by(InventoryItem.created_at, InventoryItem.id)
            .with_for_update()
        )
        if sku is not None:
            stmt = stmt.where(InventoryItem.sku == sku)
        if sku_prefix is not None:
            stmt = stmt.where(InventoryItem.sku.startswith(sku_prefix, autoescape=True))
        if sku_suffix is not None:
            stmt = stmt.where(InventoryItem.sku.endswith(sku_suffix, autoescape=True))
        return list(self.session.scalars(stmt))

    def create_item(
        self,
        *,
        sku: str,
        status1: str,
        status2: str,
        created_by: str,
        qr_code: str | None = None,
        bin_id: UUID | None = None,
        location: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> InventoryItem:
        item = InventoryItem(
            sku=sku,
            status1=status1,
            status2=status2,
            qr_code=qr_code or new_qr_code(),
            bin_id=bin_id,
            location=location,
            meta=dict(metadata or {}),
            created_by_id=created_by,
        )
        self.session.add(item)
        self.session.flush()
        return item

    # -- Bins ----------------------------------------------------------------

    def find_bin(self, bin_id: UUID) -> Bin | None:
        return self.session.get(Bin, bin_id)

    def get_bin(self, bin_id: UUID) -> Bin:
        bin_ = self.find_bin(bin_id)
        if bin_ is None:
            raise BinNotFoundError(bin_id)
        return bin_

    def find_bin_by_code(self, code: str) -> Bin | None:
        """Match a scanned value against the bin code or the bin's QR label."""
        return self.session.scalars(
            select(Bin).where(or_(Bin.code == code, Bin.qr_code == code))
        ).first()

    def resolve_bin(self, *, bin_id: UUID | None = None, bin_code: str | None = None) -> Bin:
        """Resolve a bin referenced by id or by scanned code."""
        if bin_id is not None:
            return self.get_bin(bin_id)
        if bin_code:
            bin_ = self.find_bin_by_code(bin_code)
            if bin_ is None:
                raise BinNotFoundError(bin_code)
            return bin_
        raise ValidationError("A bin id or bin code is required", field="bin_id")

    def create_bin(
        self,
        *,
        code: str,
        capacity: int,
        created_by: str,
        qr_code: str | None = None,
        sku_restriction: str | None = None,
        current_count: int = 0,
    ) -> Bin:
        bin_ = Bin(
            code=code,
            qr_code=qr_code,
            capacity=capacity,
            current_count=current_count,
            sku_restriction=sku_restriction,
            is_active=True,
            created_by_id=created_by,
        )
        self.session.add(bin_)
        self.session.flush()
        return bin_

    def reserve_bin_slot(self, bin_id: UUID) -> Bin:
        """Take one slot in the bin.

        Raises:
            BinNotFoundError: Unknown bin.
            BinInactiveError: Bin is deactivated.
            BinFullError: Bin is at capacity.
        """
        result = self.session.execute(
            update(Bin)
            .where(
                Bin.id == bin_id,
                Bin.is_active.is_(True),
                Bin.current_count < Bin.capacity,
            )
            .values(current_count=Bin.current_count + 1)
            .execution_options(synchronize_session=False)
        )
        bin_ = self._reload_bin(bin_id)
        if result.rowcount == 1:
            logger.debug(
                "bin_slot_reserved",
                extra={"bin_id": str(bin_id), "current_count": bin_.current_count},
            )
            return bin_
        if not bin_.is_active:
            raise BinInactiveError(bin_id)
        raise BinFullError(bin_id, bin_.capacity, bin_.current_count)

    def release_bin_slot(self, bin_id: UUID) -> Bin:
        """Free one slot in the bin; a bin already at zero stays at zero."""
        result = self.session.execute(
            update(Bin)
            .where(Bin.id == bin_id, Bin.current_count > 0)
            .values(current_count=Bin.current_count - 1)
            .execution_options(synchronize_session=False)
        )
        bin_ = self._reload_bin(bin_id)
        if result.rowcount == 0:
            logger.warning(
                "bin_release_at_zero",
                extra={"bin_id": str(bin_id)},
            )
        return bin_

    def _reload_bin(self, bin_id: UUID) -> Bin:
        stmt = (
            select(Bin)
            .where(Bin.id == bin_id)
            .execution_options(populate_existing=True)
        )
        bin_ = self.session.scalars(stmt).one_or_none()
        if bin_ is None:
            raise BinNotFoundError(bin_id)
        return bin_

    # -- Orders and batches --------------------------------------------------

    def get_order(self, order_id: UUID) -> Order:
        order = self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def get_order_for_update(self, order_id: UUID) -> Order:
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = self.session.scalars(stmt).one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def create_order(
        self,
        *,
        order_number: str,
        created_by: str,
        customer_name: str | None = None,
    ) -> Order:
        order = Order(
            order_number=order_number,
            customer_name=customer_name,
            status=OrderStatus.OPEN.value,
            created_by_id=created_by,
        )
        self.session.add(order)
        self.session.flush()
        return order

    def get_batch(self, batch_id: UUID) -> ProductionBatch:
        batch = self.session.get(ProductionBatch, batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    def create_batch(
        self,
        *,
        sku: str,
        quantity: int,
        created_by: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> ProductionBatch:
        batch = ProductionBatch(
            sku=sku,
            quantity=quantity,
            status="PENDING",
            meta=dict(metadata or {}),
            created_by_id=created_by,
        )
        self.session.add(batch)
        self.session.flush()
        return batch

"""ORM persistence for customer orders referenced by requests."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from garment_kernel.db.base import TrackedBase

if TYPE_CHECKING:
    from garment_kernel.domain.dtos import OrderDTO


class Order(TrackedBase):
    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    customer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="OPEN")

    def to_dto(self) -> OrderDTO:
        from garment_kernel.domain.dtos import OrderDTO

        return OrderDTO(
            id=self.id,
            order_number=self.order_number,
            customer_name=self.customer_name,
            status=self.status,
        )

    def __repr__(self) -> str:
        return f"<Order {self.order_number}>"

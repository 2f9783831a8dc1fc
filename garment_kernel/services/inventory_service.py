"""
InventoryService -- item intake, bins, orders and the notification inbox.

These are the operations around the workflow rather than inside it: putting
garments and bins into the system, creating orders that requests reference,
and letting operators read their assignment notifications.  Each method is
its own transaction, with the same error translation as the workflow
engine.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from garment_kernel.domain.clock import Clock, SystemClock
from garment_kernel.domain.dtos import BinDTO, ItemDTO, NotificationDTO, OrderDTO
from garment_kernel.domain.request_lifecycle import ItemStage, ItemSubStatus
from garment_kernel.exceptions import SkuMismatchError, ValidationError
from garment_kernel.logging_config import LogContext, get_logger
from garment_kernel.models.domain_event import DomainEventType
from garment_kernel.services.event_logger import DomainEventLogger, EventRefs
from garment_kernel.services.inventory_repository import InventoryRepository
from garment_kernel.services.notification_dispatcher import NotificationService
from garment_kernel.services.unit_of_work import EventLoggerFactory, transaction

logger = get_logger("services.inventory")

StatusT = TypeVar("StatusT", ItemStage, ItemSubStatus)


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{field}' must be a non-empty string", field=field)
    return value.strip()


def _coerce_status(enum_cls: type[StatusT], value: Any, field: str) -> StatusT:
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Unknown item {field}: {value!r}", field=field) from None


class InventoryService:
    """Outer inventory operations; one transaction per call."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        *,
        event_logger_factory: EventLoggerFactory | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._event_logger_factory = event_logger_factory or DomainEventLogger

    def register_item(
        self,
        sku: str,
        actor: str,
        *,
        qr_code: str | None = None,
        status1: ItemStage = ItemStage.STOCK,
        status2: ItemSubStatus = ItemSubStatus.STORED,
        bin_id: UUID | None = None,
        location: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> ItemDTO:
        """Take a garment into inventory, optionally placing it in a bin.

        Raises:
            ValidationError: Empty sku or actor, an unknown status1 or
                status2, or a QR code that is already registered.
            BinNotFoundError / BinInactiveError / BinFullError: Bin placement.
        """
        sku = _require_text(sku, "sku")
        actor = _require_text(actor, "actor")
        stage = _coerce_status(ItemStage, status1, "status1")
        sub_status = _coerce_status(ItemSubStatus, status2, "status2")
        with LogContext.bind(actor_id=actor, action="register_item"):
            with transaction(self._session_factory, "register_item") as session:
                inventory = InventoryRepository(session)
                if qr_code is not None and inventory.find_item_by_qr(qr_code) is not None:
                    raise ValidationError(
                        f"QR code {qr_code} is already registered", field="qr_code",
                    )
                bin_ = None
                if bin_id is not None:
                    restriction = inventory.get_bin(bin_id).sku_restriction
                    if restriction and restriction != sku:
                        raise SkuMismatchError(expected=restriction, actual=sku)
                    bin_ = inventory.reserve_bin_slot(bin_id)
                item = inventory.create_item(
                    sku=sku,
                    status1=stage.value,
                    status2=sub_status.value,
                    created_by=actor,
                    qr_code=qr_code,
                    bin_id=bin_id,
                    location=location or (bin_.code if bin_ is not None else None),
                    metadata=metadata,
                )
                self._record_event(
                    session,
                    DomainEventType.ITEM_CREATED,
                    EventRefs(actor_id=actor, item_id=item.id),
                    {"sku": sku, "bin_id": bin_id},
                )
                dto = item.to_dto()
        logger.info("item_registered", extra={"item_id": str(dto.id), "sku": sku})
        return dto

    def _record_event(
        self,
        session: Session,
        event_type: DomainEventType,
        refs: EventRefs,
        data: Mapping[str, Any],
    ) -> None:
        """Write a domain event in a savepoint; a failure is logged, never raised."""
        try:
            with session.begin_nested():
                self._event_logger_factory(session, self._clock).record(event_type, refs, data)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "event_record_failed",
                extra={"event_type": event_type.value, "error": str(exc)},
                exc_info=True,
            )

    def get_item(self, item_id: UUID) -> ItemDTO:
        with transaction(self._session_factory, "get_item") as session:
            return InventoryRepository(session).get_item(item_id).to_dto()

    def create_bin(
        self,
        code: str,
        capacity: int,
        actor: str,
        *,
        qr_code: str | None = None,
        sku_restriction: str | None = None,
        current_count: int = 0,
    ) -> BinDTO:
        """Create a bin.  ``current_count`` seeds occupancy for bins that
        already hold untracked stock."""
        code = _require_text(code, "code")
        actor = _require_text(actor, "actor")
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 0:
            raise ValidationError("Bin capacity must be a non-negative integer", field="capacity")
        if not 0 <= current_count <= capacity:
            raise ValidationError(
                "Bin current_count must be between 0 and capacity", field="current_count",
            )
        with transaction(self._session_factory, "create_bin") as session:
            dto = InventoryRepository(session).create_bin(
                code=code,
                capacity=capacity,
                created_by=actor,
                qr_code=qr_code,
                sku_restriction=sku_restriction,
                current_count=current_count,
            ).to_dto()
        logger.info("bin_created", extra={"bin_code": code, "capacity": capacity})
        return dto

    def deactivate_bin(self, bin_id: UUID, actor: str) -> BinDTO:
        actor = _require_text(actor, "actor")
        with transaction(self._session_factory, "deactivate_bin") as session:
            bin_ = InventoryRepository(session).get_bin(bin_id)
            bin_.is_active = False
            bin_.updated_by_id = actor
            session.flush()
            dto = bin_.to_dto()
        logger.info("bin_deactivated", extra={"bin_code": dto.code})
        return dto

    def get_bin(self, bin_id: UUID) -> BinDTO:
        with transaction(self._session_factory, "get_bin") as session:
            return InventoryRepository(session).get_bin(bin_id).to_dto()

    def create_order(
        self,
        order_number: str,
        actor: str,
        *,
        customer_name: str | None = None,
    ) -> OrderDTO:
        order_number = _require_text(order_number, "order_number")
        actor = _require_text(actor, "actor")
        with transaction(self._session_factory, "create_order") as session:
            return InventoryRepository(session).create_order(
                order_number=order_number,
                created_by=actor,
                customer_name=customer_name,
            ).to_dto()

    def list_notifications(
        self, user_id: str, *, unread_only: bool = False,
    ) -> list[NotificationDTO]:
        with transaction(self._session_factory, "list_notifications") as session:
            return NotificationService(session, self._clock).list_for_user(
                user_id, unread_only=unread_only,
            )

    def mark_notification_read(self, notification_id: UUID) -> NotificationDTO:
        with transaction(self._session_factory, "mark_notification_read") as session:
            return NotificationService(session, self._clock).mark_read(notification_id)

"""
Module: garment_kernel.services.unit_of_work
Responsibility: One database transaction per engine call, and the shared
    write helpers every transition needs (request creation, item status
    changes, batch status recompute, best-effort notifications and events).
Architecture position: Kernel > Services.  Used by WorkflowEngine,
    stage handlers and InventoryService.

Invariants enforced:
    - All-or-nothing: ``transaction`` commits only when the body returns;
      any error rolls back every write made in the body.
    - Error surface: callers only ever see GarmentKernelError subclasses.
      A lost optimistic-lock race (StaleDataError) becomes
      AlreadyProcessedError; any other SQLAlchemy failure becomes
      StorageError with the driver error chained as ``__cause__``.
    - Best-effort writes (notifications, domain events) run in a savepoint
      after the main state has been flushed; their failure is logged and
      reported as an undelivered side effect, never raised.

Failure modes:
    - ValidationError, NotFoundError subclasses, ActiveRequestConflictError
      and IdempotencyConflictError from ``create_request``.
"""

from __future__ import annotations

from collections.abc import Callable, Generator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from garment_kernel.domain.clock import Clock
from garment_kernel.domain.dtos import SideEffect, SideEffectKind
from garment_kernel.domain.metadata import parse_metadata
from garment_kernel.domain.policy import WorkflowPolicy
from garment_kernel.domain.request_lifecycle import (
    CREATED_STEP,
    ITEM_REQUIRED_TYPES,
    RequestStatus,
    RequestType,
    aggregate_batch_status,
)
from garment_kernel.exceptions import (
    ActiveRequestConflictError,
    AlreadyProcessedError,
    GarmentKernelError,
    IdempotencyConflictError,
    StorageError,
    ValidationError,
)
from garment_kernel.logging_config import get_logger
from garment_kernel.models.domain_event import DomainEventType
from garment_kernel.models.inventory import InventoryItem
from garment_kernel.models.request import Request
from garment_kernel.services.event_logger import DomainEventLogger, EventRefs
from garment_kernel.services.inventory_repository import InventoryRepository
from garment_kernel.services.notification_dispatcher import (
    NotificationDispatcher,
    NotificationService,
)
from garment_kernel.services.request_repository import RequestRepository
from garment_kernel.services.timeline_recorder import TimelineRecorder
from garment_kernel.utils.hashing import hash_payload

logger = get_logger("services.unit_of_work")

DispatcherFactory = Callable[[Session, Clock], NotificationDispatcher]
EventLoggerFactory = Callable[[Session, Clock], DomainEventLogger]


@contextmanager
def transaction(
    session_factory: Callable[[], Session],
    operation: str,
    *,
    request_id: UUID | None = None,
    action: str | None = None,
) -> Generator[Session, None, None]:
    """Open a session, commit on success, roll back and translate on failure."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except GarmentKernelError:
        session.rollback()
        raise
    except StaleDataError as exc:
        session.rollback()
        logger.warning(
            "concurrent_modification_detected",
            extra={"operation": operation},
        )
        raise AlreadyProcessedError(request_id, action or operation) from exc
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error(
            "storage_failure",
            extra={"operation": operation},
            exc_info=True,
        )
        raise StorageError(operation, str(exc)) from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def request_fingerprint(
    request_type: RequestType,
    *,
    item_id: UUID | None,
    order_id: UUID | None,
    batch_id: UUID | None,
    assigned_to: str | None,
    metadata: Mapping[str, Any],
) -> str:
    """Hash identifying a creation intent; replays must match it exactly."""
    return hash_payload({
        "type": RequestType(request_type).value,
        "item_id": item_id,
        "order_id": order_id,
        "batch_id": batch_id,
        "assigned_to": assigned_to,
        "metadata": dict(metadata),
    })


@dataclass
class _PendingNotification:
    user_id: str
    message: str
    metadata: dict[str, Any]
    request_id: UUID | None


@dataclass
class _PendingEvent:
    event_type: DomainEventType
    refs: EventRefs
    data: dict[str, Any]


class WorkflowUnitOfWork:
    """Repositories and write helpers bound to one open transaction.

    Side effects are collected in ``side_effects`` in the order they
    happen; the engine slices them per transition.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        policy: WorkflowPolicy,
        dispatcher_factory: DispatcherFactory | None = None,
        event_logger_factory: EventLoggerFactory | None = None,
    ):
        self.session = session
        self.clock = clock
        self.policy = policy
        self.requests = RequestRepository(session)
        self.inventory = InventoryRepository(session)
        self.timeline = TimelineRecorder(session, clock)
        self._dispatcher_factory = dispatcher_factory or NotificationService
        self._event_logger_factory = event_logger_factory or DomainEventLogger
        self.side_effects: list[SideEffect] = []
        self._pending_notifications: list[_PendingNotification] = []
        self._pending_events: list[_PendingEvent] = []

    # -- Side-effect bookkeeping ----------------------------------------------

    def record_effect(
        self,
        kind: SideEffectKind,
        target_id: UUID | None,
        detail: Mapping[str, Any] | None = None,
        delivered: bool = True,
    ) -> None:
        self.side_effects.append(
            SideEffect(kind=kind, target_id=target_id, detail=dict(detail or {}),
                       delivered=delivered)
        )

    def emit_event(
        self,
        event_type: DomainEventType,
        refs: EventRefs,
        data: Mapping[str, Any] | None = None,
    ) -> None:
        self._pending_events.append(_PendingEvent(event_type, refs, dict(data or {})))

    def notify(
        self,
        user_id: str,
        message: str,
        *,
        request_id: UUID | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        self._pending_notifications.append(
            _PendingNotification(user_id, message, dict(metadata or {}), request_id)
        )

    # -- Writes ---------------------------------------------------------------

    def set_item_status(
        self,
        item: InventoryItem,
        status1: str,
        status2: str,
        *,
        actor_id: str | None,
        request_id: UUID | None = None,
        **changes: Any,
    ) -> None:
        """Move an item to a new status pair, optionally changing other columns."""
        previous = (item.status1, item.status2)
        item.status1 = status1
        item.status2 = status2
        for name, value in changes.items():
            setattr(item, name, value)
        if actor_id is not None:
            item.updated_by_id = actor_id
        detail = {
            "from": list(previous),
            "to": [status1, status2],
            **{k: (str(v) if isinstance(v, UUID) else v) for k, v in changes.items()},
        }
        self.record_effect(SideEffectKind.ITEM_UPDATED, item.id, detail)
        self.emit_event(
            DomainEventType.ITEM_UPDATED,
            EventRefs(actor_id=actor_id, item_id=item.id, request_id=request_id),
            detail,
        )

    def create_request(
        self,
        request_type: RequestType,
        *,
        created_by: str,
        item_id: UUID | None = None,
        order_id: UUID | None = None,
        batch_id: UUID | None = None,
        assigned_to: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> tuple[Request, bool]:
        """Create a PENDING request with its CREATED timeline entry.

        Returns:
            (request, created).  ``created`` is False when the idempotency
            key matched an earlier request with the same fingerprint.
        """
        request_type = RequestType(request_type)
        if request_type in ITEM_REQUIRED_TYPES and item_id is None:
            raise ValidationError(
                f"{request_type.value} requests must reference an item",
                field="item_id",
            )
        meta = parse_metadata(request_type, metadata).to_dict()
        fingerprint = request_fingerprint(
            request_type,
            item_id=item_id,
            order_id=order_id,
            batch_id=batch_id,
            assigned_to=assigned_to,
            metadata=meta,
        )

        if idempotency_key is not None:
            existing = self.requests.find_by_idempotency_key(idempotency_key)
            if existing is not None:
                if existing.request_hash != fingerprint:
                    raise IdempotencyConflictError(idempotency_key, existing.id)
                logger.info(
                    "request_create_idempotent_hit",
                    extra={"idempotency_key": idempotency_key},
                )
                return existing, False

        item = None
        if item_id is not None:
            item = self.inventory.get_item_for_update(item_id)
            conflict = self.requests.find_active_for_item(item.id, request_type)
            if conflict is not None:
                raise ActiveRequestConflictError(item.id, request_type.value, conflict.id)
        if order_id is not None:
            self.inventory.get_order(order_id)
        if batch_id is not None:
            self.inventory.get_batch(batch_id)

        request = self.requests.create(
            request_type=request_type,
            created_by=created_by,
            item_id=item_id,
            order_id=order_id,
            batch_id=batch_id,
            assigned_to=assigned_to,
            metadata=meta,
            idempotency_key=idempotency_key,
            request_hash=fingerprint,
        )
        self.timeline.append(
            request.id, CREATED_STEP, RequestStatus.PENDING, created_by,
            {"type": request_type.value},
        )
        self.record_effect(
            SideEffectKind.REQUEST_CREATED,
            request.id,
            {"type": request_type.value, "item_id": item_id},
        )
        self.emit_event(
            DomainEventType.REQUEST_CREATED,
            EventRefs(actor_id=created_by, item_id=item_id, order_id=order_id,
                      request_id=request.id),
            {"type": request_type.value},
        )
        if assigned_to:
            self.notify(
                assigned_to,
                assignment_message(request_type, item),
                request_id=request.id,
                metadata={"request_type": request_type.value},
            )
        if batch_id is not None:
            self.refresh_batch_status(batch_id, actor_id=created_by)

        logger.info(
            "request_created",
            extra={"request_type": request_type.value, "new_request_id": str(request.id)},
        )
        return request, True

    def refresh_batch_status(self, batch_id: UUID, *, actor_id: str | None) -> None:
        """Recompute a batch's status from its member requests."""
        batch = self.inventory.get_batch(batch_id)
        members = self.requests.list_for_batch(batch_id)
        status = aggregate_batch_status(r.status for r in members).value
        if status == batch.status:
            return
        previous = batch.status
        batch.status = status
        if actor_id is not None:
            batch.updated_by_id = actor_id
        self.session.flush()
        self.record_effect(
            SideEffectKind.BATCH_UPDATED, batch.id, {"from": previous, "to": status},
        )
        self.emit_event(
            DomainEventType.BATCH_UPDATED,
            EventRefs(actor_id=actor_id),
            {"batch_id": batch.id, "from": previous, "to": status},
        )

    # -- Best-effort delivery -------------------------------------------------

    def flush_best_effort(self) -> None:
        """Write queued notifications and events, each in its own savepoint."""
        self.session.flush()

        notifications, self._pending_notifications = self._pending_notifications, []
        for pending in notifications:
            try:
                with self.session.begin_nested():
                    dispatcher = self._dispatcher_factory(self.session, self.clock)
                    note = dispatcher.enqueue(
                        pending.user_id,
                        pending.message,
                        pending.metadata,
                        request_id=pending.request_id,
                    )
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "notification_dispatch_failed",
                    extra={"user_id": pending.user_id, "error": str(exc)},
                    exc_info=True,
                )
                self.record_effect(
                    SideEffectKind.NOTIFICATION_ENQUEUED,
                    pending.request_id,
                    {"user_id": pending.user_id, "error": str(exc)},
                    delivered=False,
                )
            else:
                self.record_effect(
                    SideEffectKind.NOTIFICATION_ENQUEUED,
                    note.id,
                    {"user_id": pending.user_id},
                )

        events, self._pending_events = self._pending_events, []
        for pending in events:
            try:
                with self.session.begin_nested():
                    event_id = self._event_logger_factory(self.session, self.clock).record(
                        pending.event_type, pending.refs, pending.data,
                    )
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "event_record_failed",
                    extra={"event_type": pending.event_type.value, "error": str(exc)},
                    exc_info=True,
                )
                self.record_effect(
                    SideEffectKind.EVENT_RECORDED,
                    None,
                    {"event_type": pending.event_type.value, "error": str(exc)},
                    delivered=False,
                )
            else:
                self.record_effect(
                    SideEffectKind.EVENT_RECORDED,
                    event_id,
                    {"event_type": pending.event_type.value},
                )


def assignment_message(request_type: RequestType, item: InventoryItem | None) -> str:
    message = f"You have been assigned a new {RequestType(request_type).value} request"
    if item is not None:
        message += f" for item {item.sku}"
    return message

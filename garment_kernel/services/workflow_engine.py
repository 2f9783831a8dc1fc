"""
WorkflowEngine -- the request state machine and its transaction boundary.

Responsibility
--------------
Every public method is one unit of work: it opens a session, performs all of
its reads and writes through a ``WorkflowUnitOfWork``, and commits once.  A
transition runs these steps in order:

  1. Lock and load the request (RequestNotFoundError if missing).
  2. Reject terminal requests (InvalidTransitionError).
  3. Resolve the action for the request type (UnknownActionError).
  4. Check the current status against the action (InvalidTransitionError).
  5. Check the actor and parse the payload (ValidationError).
  6. Check named step order when enabled by policy.
  7. Lock and load the item; run step validators.
  8. Run the stage handler (item/bin changes, downstream requests).
  9. Apply status + metadata in a single flush; append the timeline entry.
 10. Recompute the batch status; write notifications and events best-effort.
 11. Commit and return the request DTO with its side effects.

Architecture position
---------------------
Kernel > Services -- the outermost kernel service.  Callers (HTTP layer,
scanners, batch jobs) pass plain values and receive frozen DTOs.

Invariants enforced
-------------------
* Atomicity: any error in steps 1-11 rolls back every write of the call.
* Monotonic status: no path writes to a COMPLETED or FAILED request; the
  ORM listener in db/immutability.py backs this up.
* No retries: a lost race surfaces as AlreadyProcessedError or a
  PreconditionFailedError and the caller decides what to do.

Failure modes
-------------
* GarmentKernelError subclasses only; SQLAlchemy errors are wrapped in
  StorageError (see ``unit_of_work.transaction``).
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from garment_kernel.domain.clock import Clock, SystemClock
from garment_kernel.domain.dtos import (
    AllocationKind,
    BatchDTO,
    OrderAllocation,
    OrderProcessingResult,
    RequestDetail,
    RequestDTO,
    RequestFilter,
    SideEffectKind,
    TimelineEntryDTO,
    TransitionResult,
)
from garment_kernel.domain.order_matching import (
    OrderLine,
    is_universal_candidate,
    parse_order_lines,
    production_sku,
    universal_prefix,
    universal_wash,
)
from garment_kernel.domain.payloads import parse_payload
from garment_kernel.domain.policy import WorkflowPolicy
from garment_kernel.domain.request_lifecycle import (
    CREATED_STEP,
    TERMINAL_REQUEST_STATUSES,
    ActionDef,
    ItemStage,
    ItemSubStatus,
    OrderStatus,
    RequestStatus,
    RequestType,
    get_action,
    is_status_change_allowed,
)
from garment_kernel.domain.sku import SKU_SEPARATOR, parse_sku
from garment_kernel.domain.step_graphs import STEP_GRAPHS, UNORDERED_STEPS
from garment_kernel.exceptions import (
    GarmentKernelError,
    InvalidTransitionError,
    PreconditionFailedError,
    RequestNotFoundError,
    StorageError,
    UnknownActionError,
    ValidationError,
)
from garment_kernel.logging_config import LogContext, get_logger
from garment_kernel.models.domain_event import DomainEventType
from garment_kernel.models.inventory import InventoryItem
from garment_kernel.models.order import Order
from garment_kernel.services.event_logger import EventRefs
from garment_kernel.services.stage_handlers import (
    StageHandlerRegistry,
    default_stage_handlers,
)
from garment_kernel.services.step_validators import (
    StepValidatorRegistry,
    default_step_validators,
)
from garment_kernel.services.transition_context import TransitionContext
from garment_kernel.services.unit_of_work import (
    DispatcherFactory,
    EventLoggerFactory,
    WorkflowUnitOfWork,
    transaction,
)

logger = get_logger("services.workflow_engine")


def _coerce_uuid(value: Any, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"'{value}' is not a valid id", field=field) from None


def _coerce_type(value: Any) -> RequestType:
    try:
        return RequestType(value)
    except ValueError:
        raise ValidationError(f"Unknown request type: {value!r}", field="type") from None


def _check_actor(actor: str | None, action_def: ActionDef | None = None) -> None:
    if actor is None:
        if action_def is not None and action_def.actor_optional:
            return
        raise ValidationError("An actor is required", field="actor")
    if not isinstance(actor, str) or not actor.strip():
        raise ValidationError("Actor must be a non-empty string", field="actor")


def _elapsed_ms(t0: float) -> float:
    return round((time.monotonic() - t0) * 1000, 2)


class WorkflowEngine:
    """
    Request lifecycle service.

    Contract:
        Receives a session factory and opens one session per call; commits
        on success and rolls back on any error.

    Guarantees:
        - Returned DTOs reflect the committed state of the call.
        - Side effects are listed in the order they were applied.

    Non-goals:
        - Does NOT retry on conflicts.
        - Does NOT authenticate actors; ``actor`` is an opaque operator id.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        policy: WorkflowPolicy | None = None,
        clock: Clock | None = None,
        validators: StepValidatorRegistry | None = None,
        handlers: StageHandlerRegistry | None = None,
        dispatcher_factory: DispatcherFactory | None = None,
        event_logger_factory: EventLoggerFactory | None = None,
    ):
        self._session_factory = session_factory
        self._policy = policy or WorkflowPolicy()
        self._clock = clock or SystemClock()
        self._validators = validators or default_step_validators()
        self._handlers = handlers or default_stage_handlers()
        self._dispatcher_factory = dispatcher_factory
        self._event_logger_factory = event_logger_factory

    @property
    def policy(self) -> WorkflowPolicy:
        return self._policy

    def _unit_of_work(self, session: Session) -> WorkflowUnitOfWork:
        return WorkflowUnitOfWork(
            session,
            self._clock,
            self._policy,
            dispatcher_factory=self._dispatcher_factory,
            event_logger_factory=self._event_logger_factory,
        )

    def _log_failure(self, event: str, exc: GarmentKernelError, t0: float) -> None:
        extra = {
            "error_code": exc.code,
            "error": str(exc),
            "duration_ms": _elapsed_ms(t0),
        }
        if isinstance(exc, StorageError):
            logger.error(event, extra=extra, exc_info=True)
        else:
            logger.warning(event, extra=extra)

    # =========================================================================
    # Request creation
    # =========================================================================

    def create_request(
        self,
        request_type: RequestType | str,
        actor: str,
        *,
        item_id: UUID | None = None,
        order_id: UUID | None = None,
        batch_id: UUID | None = None,
        assigned_to: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> RequestDTO:
        """Create a PENDING request.

        With ``idempotency_key``, replaying the same creation returns the
        original request; reusing the key for a different payload raises
        IdempotencyConflictError.

        Raises:
            ValidationError: Bad type, actor, metadata, or a missing item
                for a type that acts on a single garment.
            NotFoundError: Referenced item, order or batch does not exist.
            ActiveRequestConflictError: The item already has an active
                request of this type.
            IdempotencyConflictError: Key reused with a different payload.
        """
        request_type = _coerce_type(request_type)
        _check_actor(actor)
        kwargs = {
            "created_by": actor,
            "item_id": _coerce_uuid(item_id, "item_id") if item_id is not None else None,
            "order_id": _coerce_uuid(order_id, "order_id") if order_id is not None else None,
            "batch_id": _coerce_uuid(batch_id, "batch_id") if batch_id is not None else None,
            "assigned_to": assigned_to,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        }

        with LogContext.bind(correlation_id=str(uuid4()), actor_id=actor, action="create"):
            t0 = time.monotonic()
            try:
                try:
                    return self._create(request_type, kwargs)
                except StorageError as exc:
                    if idempotency_key is None or not isinstance(exc.__cause__, IntegrityError):
                        raise
                    # Lost an insert race on the same key; the winner is committed now.
                    logger.info(
                        "request_create_idempotent_race",
                        extra={"idempotency_key": idempotency_key},
                    )
                    return self._create(request_type, kwargs)
            except GarmentKernelError as exc:
                self._log_failure("request_create_failed", exc, t0)
                raise

    def _create(self, request_type: RequestType, kwargs: dict[str, Any]) -> RequestDTO:
        with transaction(self._session_factory, "create_request") as session:
            uow = self._unit_of_work(session)
            request, _ = uow.create_request(request_type, **kwargs)
            uow.flush_best_effort()
            return request.to_dto()

    # =========================================================================
    # Transitions
    # =========================================================================

    def transition(
        self,
        request_id: UUID,
        action: str,
        actor: str | None,
        payload: Mapping[str, Any] | None = None,
    ) -> TransitionResult:
        """Apply ``action`` to one request.

        Raises:
            RequestNotFoundError, InvalidTransitionError, UnknownActionError,
            ValidationError, PreconditionFailedError (and subclasses),
            AlreadyProcessedError, StorageError.
        """
        request_id = _coerce_uuid(request_id, "request_id")
        with LogContext.bind(
            correlation_id=str(uuid4()),
            request_id=str(request_id),
            actor_id=actor,
            action=action,
        ):
            logger.info("transition_started")
            t0 = time.monotonic()
            try:
                with transaction(
                    self._session_factory, "transition",
                    request_id=request_id, action=action,
                ) as session:
                    uow = self._unit_of_work(session)
                    result = self._apply(uow, request_id, action, actor, payload)
            except GarmentKernelError as exc:
                self._log_failure("transition_failed", exc, t0)
                raise

            logger.info(
                "transition_completed",
                extra={
                    "status": result.request.status.value,
                    "side_effect_count": len(result.side_effects),
                    "spawned_count": len(result.spawned_request_ids),
                    "duration_ms": _elapsed_ms(t0),
                },
            )
            return result

    def batch_transition(
        self,
        request_ids: Iterable[UUID],
        action: str,
        actor: str | None,
        payload: Mapping[str, Any] | None = None,
    ) -> list[TransitionResult]:
        """Apply ``action`` to every request in one transaction, all or nothing.

        Every request must exist and accept the action from its current
        status; otherwise nothing is written.
        """
        ids = [_coerce_uuid(r, "request_ids") for r in request_ids]
        if not ids:
            raise ValidationError("At least one request id is required", field="request_ids")
        if len(set(ids)) != len(ids):
            raise ValidationError("Duplicate request ids in batch", field="request_ids")

        with LogContext.bind(correlation_id=str(uuid4()), actor_id=actor, action=action):
            logger.info("batch_transition_started", extra={"request_count": len(ids)})
            t0 = time.monotonic()
            try:
                with transaction(
                    self._session_factory, "batch_transition", action=action,
                ) as session:
                    uow = self._unit_of_work(session)
                    self._check_batch(uow, ids, action)
                    results = []
                    for request_id in ids:
                        with LogContext.bind(request_id=str(request_id)):
                            results.append(
                                self._apply(uow, request_id, action, actor, payload)
                            )
            except GarmentKernelError as exc:
                self._log_failure("batch_transition_failed", exc, t0)
                raise

            logger.info(
                "batch_transition_completed",
                extra={"request_count": len(results), "duration_ms": _elapsed_ms(t0)},
            )
            return results

    def _check_batch(self, uow: WorkflowUnitOfWork, ids: list[UUID], action: str) -> None:
        invalid: list[str] = []
        # Lock in a stable order so overlapping batches cannot deadlock.
        for request_id in sorted(ids, key=str):
            try:
                request = uow.requests.get_for_update(request_id)
            except RequestNotFoundError:
                invalid.append(str(request_id))
                continue
            action_def = get_action(RequestType(request.type), action)
            if action_def is None or RequestStatus(request.status) not in action_def.from_statuses:
                invalid.append(str(request_id))
        if invalid:
            raise InvalidTransitionError(
                ",".join(invalid), None, action,
                reason="Some requests are invalid or already processed",
            )

    def _apply(
        self,
        uow: WorkflowUnitOfWork,
        request_id: UUID,
        action: str,
        actor: str | None,
        payload: Mapping[str, Any] | None,
    ) -> TransitionResult:
        first_effect = len(uow.side_effects)

        request = uow.requests.get_for_update(request_id)
        request_type = RequestType(request.type)
        current = RequestStatus(request.status)
        if current in TERMINAL_REQUEST_STATUSES:
            raise InvalidTransitionError(
                request.id, current.value, action, reason="request is already closed",
            )

        action_def = get_action(request_type, action)
        if action_def is None:
            raise UnknownActionError(request_type.value, action)
        if current not in action_def.from_statuses:
            allowed = ", ".join(sorted(s.value for s in action_def.from_statuses))
            raise InvalidTransitionError(
                request.id, current.value, action, reason=f"allowed from {allowed}",
            )

        _check_actor(actor, action_def)
        parsed = parse_payload(request_type, action, payload)
        self._check_step_order(uow, request, action_def)

        item = (
            uow.inventory.get_item_for_update(request.item_id)
            if request.item_id is not None else None
        )
        ctx = TransitionContext(
            uow=uow,
            request=request,
            item=item,
            action=action_def,
            payload=parsed,
            actor_id=actor,
        )
        self._validators.run(ctx)

        handler = self._handlers.get(request_type, action)
        if handler is None:
            raise UnknownActionError(request_type.value, action)
        handler(ctx)

        target = self._resolve_outcome(ctx, current)
        self._stamp_lifecycle(ctx, current, target)
        uow.requests.update(
            request,
            status=target if target != current else None,
            metadata=ctx.metadata_update,
            updated_by=actor,
        )

        snapshot = dict(ctx.metadata_update)
        if parsed.notes:
            snapshot["notes"] = parsed.notes
        entry = uow.timeline.append(request.id, action_def.step, target, actor, snapshot)
        uow.record_effect(
            SideEffectKind.TIMELINE_APPENDED, entry.id,
            {"step": entry.step, "seq": entry.seq},
        )
        uow.emit_event(
            DomainEventType.REQUEST_UPDATED,
            EventRefs(actor_id=actor, item_id=request.item_id,
                      order_id=request.order_id, request_id=request.id),
            {
                "action": action,
                "step": action_def.step,
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        if request.batch_id is not None:
            uow.refresh_batch_status(request.batch_id, actor_id=actor)

        uow.flush_best_effort()
        return TransitionResult(
            request=request.to_dto(),
            side_effects=tuple(uow.side_effects[first_effect:]),
        )

    def _check_step_order(self, uow: WorkflowUnitOfWork, request, action_def: ActionDef) -> None:
        if not self._policy.enforce_step_graphs or action_def.step in UNORDERED_STEPS:
            return
        graph = STEP_GRAPHS.get(RequestType(request.type))
        if graph is None:
            return
        if not uow.timeline.is_transition_allowed(
            request.id, CREATED_STEP, action_def.step, graph, UNORDERED_STEPS,
        ):
            last = uow.timeline.last_step(request.id, UNORDERED_STEPS)
            raise InvalidTransitionError(
                request.id, request.status, action_def.action,
                reason=f"step {action_def.step} cannot follow "
                       f"{last.step if last else CREATED_STEP}",
            )

    @staticmethod
    def _resolve_outcome(ctx: TransitionContext, current: RequestStatus) -> RequestStatus:
        action_def = ctx.action
        if not action_def.changes_status:
            return current
        target = ctx.outcome
        if target is None and len(action_def.outcomes) == 1:
            (target,) = action_def.outcomes
        if target is None or target not in action_def.outcomes:
            raise InvalidTransitionError(
                ctx.request.id, current.value, action_def.action,
                reason=f"no valid outcome (got {target})",
            )
        if target != current and not is_status_change_allowed(current, target):
            raise InvalidTransitionError(
                ctx.request.id, current.value, action_def.action,
                reason=f"{current.value} -> {target.value} is not allowed",
            )
        return target

    @staticmethod
    def _stamp_lifecycle(
        ctx: TransitionContext, current: RequestStatus, target: RequestStatus,
    ) -> None:
        if target == current:
            return
        now = ctx.now()
        # Direct completion from PENDING records an implicit start.
        if not (ctx.request.meta or {}).get("started_at"):
            ctx.metadata_update.setdefault("started_at", now)
        if target in TERMINAL_REQUEST_STATUSES:
            ctx.metadata_update.setdefault("completed_at", now)

    # =========================================================================
    # Batches
    # =========================================================================

    def create_batch(
        self,
        sku: str,
        quantity: int,
        actor: str,
        request_ids: Iterable[UUID] = (),
    ) -> BatchDTO:
        """Create a production batch and attach existing open requests to it."""
        _check_actor(actor)
        if not isinstance(sku, str) or not sku.strip():
            raise ValidationError("Batch sku is required", field="sku")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise ValidationError("Batch quantity must be a non-negative integer", field="quantity")
        ids = [_coerce_uuid(r, "request_ids") for r in request_ids]

        with LogContext.bind(correlation_id=str(uuid4()), actor_id=actor, action="create_batch"):
            t0 = time.monotonic()
            try:
                with transaction(self._session_factory, "create_batch") as session:
                    uow = self._unit_of_work(session)
                    batch = uow.inventory.create_batch(sku=sku, quantity=quantity, created_by=actor)
                    for request_id in sorted(ids, key=str):
                        request = uow.requests.get_for_update(request_id)
                        status = RequestStatus(request.status)
                        if status in TERMINAL_REQUEST_STATUSES:
                            raise InvalidTransitionError(
                                request.id, status.value, "create_batch",
                                reason="closed requests cannot join a batch",
                            )
                        if request.batch_id is not None:
                            raise ValidationError(
                                f"Request {request.id} already belongs to batch "
                                f"{request.batch_id}",
                                field="request_ids",
                            )
                        request.batch_id = batch.id
                        request.updated_by_id = actor
                    session.flush()
                    uow.refresh_batch_status(batch.id, actor_id=actor)
                    uow.emit_event(
                        DomainEventType.BATCH_UPDATED,
                        EventRefs(actor_id=actor),
                        {"batch_id": batch.id, "request_ids": [str(i) for i in ids]},
                    )
                    uow.flush_best_effort()
                    dto = batch.to_dto()
            except GarmentKernelError as exc:
                self._log_failure("batch_create_failed", exc, t0)
                raise
            logger.info(
                "batch_created",
                extra={"batch_id": str(dto.id), "request_count": len(ids)},
            )
            return dto

    # =========================================================================
    # Orders
    # =========================================================================

    def process_order(
        self,
        order_id: UUID,
        lines: Iterable[Mapping[str, Any]],
        actor: str,
        *,
        assigned_to: str | None = None,
    ) -> OrderProcessingResult:
        """Cover an open order's lines from stock, or plan production for them.

        Every unit is matched exactly, then universally (see
        ``domain.order_matching``).  Matched garments are committed to the
        order; a universal stocked garment also gets a WASH request to
        ``assigned_to``.  Units left over on a line become one PATTERN
        request.  The order moves to PROCESSING, or PENDING_PRODUCTION when
        anything has to be made.

        Raises:
            ValidationError: Bad actor or order lines.
            OrderNotFoundError: No such order.
            PreconditionFailedError: The order is no longer OPEN.
        """
        order_id = _coerce_uuid(order_id, "order_id")
        _check_actor(actor)
        order_lines = parse_order_lines(lines)
        for line in order_lines:
            universal_wash(parse_sku(line.sku), self._policy.wash_mappings)

        with LogContext.bind(correlation_id=str(uuid4()), actor_id=actor, action="process_order"):
            t0 = time.monotonic()
            try:
                with transaction(self._session_factory, "process_order") as session:
                    uow = self._unit_of_work(session)
                    result = self._process_order(uow, order_id, order_lines, actor, assigned_to)
            except GarmentKernelError as exc:
                self._log_failure("order_process_failed", exc, t0)
                raise

            logger.info(
                "order_processed",
                extra={
                    "order_id": str(order_id),
                    "status": result.order.status,
                    "exact": len(result.allocations_of(AllocationKind.EXACT)),
                    "universal": len(result.allocations_of(AllocationKind.UNIVERSAL)),
                    "production": len(result.allocations_of(AllocationKind.PRODUCTION)),
                    "duration_ms": _elapsed_ms(t0),
                },
            )
            return result

    def _process_order(
        self,
        uow: WorkflowUnitOfWork,
        order_id: UUID,
        order_lines: list[OrderLine],
        actor: str,
        assigned_to: str | None,
    ) -> OrderProcessingResult:
        order = uow.inventory.get_order_for_update(order_id)
        if order.status != OrderStatus.OPEN.value:
            raise PreconditionFailedError(
                f"Order {order.order_number} was already processed (status {order.status})",
                requirement="order_status",
            )

        allocations: list[OrderAllocation] = []
        for number, line in enumerate(order_lines, start=1):
            shortfall = 0
            for _ in range(line.quantity):
                allocation = self._allocate_unit(uow, order, number, line.sku, actor, assigned_to)
                if allocation is None:
                    shortfall += 1
                else:
                    allocations.append(allocation)
            if shortfall:
                target = parse_sku(line.sku)
                pattern, _ = uow.create_request(
                    RequestType.PATTERN,
                    created_by=actor,
                    order_id=order.id,
                    metadata={
                        "sku": production_sku(target, self._policy.wash_mappings),
                        "quantity": shortfall,
                        "target_sku": line.sku,
                    },
                    idempotency_key=f"order:{order.id}:line:{number}:pattern",
                )
                allocations.append(OrderAllocation(
                    line_number=number,
                    target_sku=line.sku,
                    kind=AllocationKind.PRODUCTION,
                    quantity=shortfall,
                    request_id=pattern.id,
                ))

        needs_production = any(a.kind == AllocationKind.PRODUCTION for a in allocations)
        status = (
            OrderStatus.PENDING_PRODUCTION if needs_production else OrderStatus.PROCESSING
        ).value
        previous = order.status
        order.status = status
        order.updated_by_id = actor
        uow.session.flush()
        uow.record_effect(SideEffectKind.ORDER_UPDATED, order.id, {"from": previous, "to": status})
        uow.emit_event(
            DomainEventType.ORDER_PROCESSED,
            EventRefs(actor_id=actor, order_id=order.id),
            {
                "status": status,
                "allocations": [
                    {"line": a.line_number, "kind": a.kind.value, "quantity": a.quantity}
                    for a in allocations
                ],
            },
        )
        uow.flush_best_effort()
        return OrderProcessingResult(
            order=order.to_dto(),
            allocations=tuple(allocations),
            side_effects=tuple(uow.side_effects),
        )

    def _allocate_unit(
        self,
        uow: WorkflowUnitOfWork,
        order: Order,
        line_number: int,
        target_sku: str,
        actor: str,
        assigned_to: str | None,
    ) -> OrderAllocation | None:
        """Commit one garment to the order line; None when nothing fits."""
        exact = uow.inventory.find_uncommitted_items(sku=target_sku)
        if exact:
            item = exact[0]
            self._commit_item(uow, item, order, line_number, target_sku, actor)
            return OrderAllocation(
                line_number=line_number,
                target_sku=target_sku,
                kind=AllocationKind.EXACT,
                item_id=item.id,
            )

        target = parse_sku(target_sku)
        mappings = self._policy.wash_mappings
        base = universal_wash(target, mappings)
        candidates = uow.inventory.find_uncommitted_items(
            sku_prefix=universal_prefix(target), sku_suffix=f"{SKU_SEPARATOR}{base}",
        )
        item = next(
            (c for c in candidates if is_universal_candidate(c.sku, target, mappings)), None,
        )
        if item is None:
            return None

        wash_request_id = None
        if item.status1 == ItemStage.STOCK.value and target.wash != base:
            # Stocked garment: hand it to the wash line now.
            self._commit_item(
                uow, item, order, line_number, target_sku, actor,
                stage=ItemStage.WASH, sub_status=ItemSubStatus.PENDING,
            )
            wash, _ = uow.create_request(
                RequestType.WASH,
                created_by=actor,
                item_id=item.id,
                order_id=order.id,
                assigned_to=assigned_to,
                metadata={"target_wash": target.wash, "target_sku": target_sku},
                idempotency_key=f"order:{order.id}:line:{line_number}:wash:{item.id}",
            )
            wash_request_id = wash.id
        else:
            self._commit_item(uow, item, order, line_number, target_sku, actor)
        return OrderAllocation(
            line_number=line_number,
            target_sku=target_sku,
            kind=AllocationKind.UNIVERSAL,
            item_id=item.id,
            request_id=wash_request_id,
        )

    def _commit_item(
        self,
        uow: WorkflowUnitOfWork,
        item: InventoryItem,
        order: Order,
        line_number: int,
        target_sku: str,
        actor: str,
        *,
        stage: ItemStage | None = None,
        sub_status: ItemSubStatus = ItemSubStatus.COMMITTED,
    ) -> None:
        uow.set_item_status(
            item,
            (stage or ItemStage(item.status1)).value,
            sub_status.value,
            actor_id=actor,
            meta={
                **(item.meta or {}),
                "order_id": str(order.id),
                "order_line": line_number,
                "target_sku": target_sku,
                "committed_at": uow.clock.isoformat(),
            },
        )
        uow.session.flush()

    # =========================================================================
    # Reads
    # =========================================================================

    def get_request(self, request_id: UUID) -> RequestDetail:
        request_id = _coerce_uuid(request_id, "request_id")
        with transaction(self._session_factory, "get_request") as session:
            uow = self._unit_of_work(session)
            request = uow.requests.get(request_id, with_related=True)
            return RequestDetail(
                request=request.to_dto(),
                item=request.item.to_dto() if request.item is not None else None,
                order=request.order.to_dto() if request.order is not None else None,
                batch=request.batch.to_dto() if request.batch is not None else None,
                timeline=tuple(uow.timeline.entries(request.id)),
            )

    def list_requests(self, request_filter: RequestFilter | None = None) -> list[RequestDTO]:
        with transaction(self._session_factory, "list_requests") as session:
            uow = self._unit_of_work(session)
            return [r.to_dto() for r in uow.requests.find_many(request_filter or RequestFilter())]

    def get_timeline(self, request_id: UUID) -> list[TimelineEntryDTO]:
        request_id = _coerce_uuid(request_id, "request_id")
        with transaction(self._session_factory, "get_timeline") as session:
            uow = self._unit_of_work(session)
            uow.requests.get(request_id)
            return uow.timeline.entries(request_id)

"""
Stage handlers -- what each (request type, action) does besides moving the
request's status.

Responsibility
--------------
A handler receives a validated ``TransitionContext`` and applies the
action's side effects: item status and bin changes, created garments,
downstream requests, request metadata.  It stages request metadata in
``ctx.metadata_update`` and may pick the outcome status through
``ctx.outcome`` (QC complete); the engine applies status and metadata
together after the handler returns.

Architecture position
---------------------
Kernel > Services.  Handlers only run inside a WorkflowEngine transaction;
they flush but never commit, and any exception they raise rolls back the
whole transition.

Pipeline
--------
::

    PATTERN --complete--> items + CUTTING
    CUTTING --complete--> one SEW per cut unit (fan-out)
    SEW     --complete--> WASH            (when the sew unit has an item)
    WASH    --complete--> QC
    QC      --complete--> FINISHING       (passed)
                      \\-> RECOVERY        (failed, request FAILED)
    RECOVERY --complete--> QC             (REPAIRED)
    FINISHING --complete--> PACKING
    PACKING --complete--> item PACKED / READY_TO_SHIP
"""

from __future__ import annotations

from collections.abc import Callable
from uuid import UUID

from garment_kernel.domain.dtos import SideEffectKind
from garment_kernel.domain.fanout import plan_sew_fanout
from garment_kernel.domain.request_lifecycle import (
    STAGE_FOR_TYPE,
    ItemStage,
    ItemSubStatus,
    RequestStatus,
    RequestType,
)
from garment_kernel.domain.sku import rewrite_length, rewrite_wash
from garment_kernel.exceptions import (
    ActiveRequestConflictError,
    PreconditionFailedError,
    ValidationError,
)
from garment_kernel.logging_config import get_logger
from garment_kernel.models.domain_event import DomainEventType
from garment_kernel.models.inventory import InventoryItem
from garment_kernel.services.event_logger import EventRefs
from garment_kernel.services.step_validators import target_bin
from garment_kernel.services.transition_context import TransitionContext
from garment_kernel.services.unit_of_work import assignment_message

logger = get_logger("services.stage_handlers")

StageHandler = Callable[[TransitionContext], None]


def _as_uuid(value, field: str) -> UUID:
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"'{value}' is not a valid id", field=field) from None


def _reserve(ctx: TransitionContext, bin_id: UUID) -> None:
    bin_ = ctx.uow.inventory.reserve_bin_slot(bin_id)
    ctx.uow.record_effect(
        SideEffectKind.BIN_UPDATED, bin_.id,
        {"change": 1, "current_count": bin_.current_count},
    )


def _release(ctx: TransitionContext, bin_id: UUID) -> None:
    bin_ = ctx.uow.inventory.release_bin_slot(bin_id)
    ctx.uow.record_effect(
        SideEffectKind.BIN_UPDATED, bin_.id,
        {"change": -1, "current_count": bin_.current_count},
    )


def _scan_record(ctx: TransitionContext, **extra) -> dict:
    return {**extra, "validated_at": ctx.now(), "validated_by": ctx.actor_id}


# ---------------------------------------------------------------------------
# Shared actions
# ---------------------------------------------------------------------------


def handle_assign(ctx: TransitionContext) -> None:
    assignee = ctx.payload.assigned_to
    ctx.request.assigned_to = assignee
    ctx.update_metadata(assigned_at=ctx.now())
    ctx.uow.notify(
        assignee,
        assignment_message(ctx.request_type, ctx.item),
        request_id=ctx.request.id,
        metadata={"request_type": ctx.request_type.value},
    )
    ctx.uow.emit_event(
        DomainEventType.REQUEST_ASSIGNED,
        EventRefs(actor_id=ctx.actor_id, item_id=ctx.request.item_id,
                  request_id=ctx.request.id),
        {"assigned_to": assignee},
    )


def _claim_item(ctx: TransitionContext) -> InventoryItem | None:
    """Reject a second IN_PROGRESS request of this type on the item."""
    item = ctx.item
    if item is None:
        return None
    conflict = ctx.uow.requests.find_active_for_item(
        item.id,
        ctx.request_type,
        statuses=(RequestStatus.IN_PROGRESS,),
        exclude_id=ctx.request.id,
    )
    if conflict is not None:
        raise ActiveRequestConflictError(item.id, ctx.request_type.value, conflict.id)
    return item


def handle_start(ctx: TransitionContext) -> None:
    item = _claim_item(ctx)
    stage = STAGE_FOR_TYPE.get(ctx.request_type)
    if item is not None and stage is not None:
        ctx.set_item_status(item, stage, ItemSubStatus.IN_PROGRESS)


# ---------------------------------------------------------------------------
# PATTERN
# ---------------------------------------------------------------------------


def handle_pattern_start(ctx: TransitionContext) -> None:
    _claim_item(ctx)


def handle_pattern_complete(ctx: TransitionContext) -> None:
    payload = ctx.payload
    sku = payload.sku or ctx.meta("sku")
    quantity = payload.quantity if payload.quantity is not None else ctx.meta("quantity")
    if not sku:
        raise ValidationError("Pattern sku is required", field="sku")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Pattern quantity must be a positive integer", field="quantity")

    items = [
        ctx.uow.inventory.create_item(
            sku=sku,
            status1=ItemStage.PRODUCTION.value,
            status2=ItemSubStatus.UNCOMMITTED.value,
            created_by=ctx.actor_id,
            metadata={"universal_sku": sku, "pattern_request_id": str(ctx.request.id)},
        )
        for _ in range(quantity)
    ]
    item_ids = [str(item.id) for item in items]
    ctx.uow.record_effect(
        SideEffectKind.ITEMS_CREATED, ctx.request.id,
        {"count": len(items), "item_ids": item_ids, "sku": sku},
    )
    for item in items:
        ctx.uow.emit_event(
            DomainEventType.ITEM_CREATED,
            EventRefs(actor_id=ctx.actor_id, item_id=item.id, request_id=ctx.request.id),
            {"sku": sku, "qr_code": item.qr_code},
        )

    ctx.update_metadata(sku=sku, quantity=quantity, item_ids=item_ids)
    ctx.spawn(
        RequestType.CUTTING,
        metadata={
            "pattern_request_id": str(ctx.request.id),
            "skus": [{"sku": sku, "quantity": quantity, "item_ids": item_ids}],
        },
    )


# ---------------------------------------------------------------------------
# CUTTING
# ---------------------------------------------------------------------------


def _cutting_item_ids(ctx: TransitionContext) -> list[UUID]:
    ids = []
    for line in ctx.meta("skus") or []:
        if isinstance(line, dict):
            ids.extend(_as_uuid(i, "skus") for i in line.get("item_ids") or [])
    return ids


def handle_cutting_validate_material(ctx: TransitionContext) -> None:
    ctx.update_metadata(
        material_validation=_scan_record(ctx, material_lot=ctx.payload.material_lot),
    )


def handle_cutting_start(ctx: TransitionContext) -> None:
    _claim_item(ctx)
    for item_id in _cutting_item_ids(ctx):
        item = ctx.uow.inventory.get_item_for_update(item_id)
        ctx.set_item_status(item, ItemStage.PRODUCTION, ItemSubStatus.CUTTING)


def handle_cutting_complete(ctx: TransitionContext) -> None:
    payload = ctx.payload
    units = plan_sew_fanout(
        ctx.meta("skus"),
        strict=ctx.uow.policy.strict_quantity_reconciliation,
        pieces_cut=payload.pieces_cut,
    )
    target_wash = payload.target_wash or ctx.meta("target_wash")

    sew_ids = []
    for ordinal, unit in enumerate(units, start=1):
        item_id = None
        if unit.item_id is not None:
            item = ctx.uow.inventory.get_item_for_update(_as_uuid(unit.item_id, "skus"))
            ctx.set_item_status(item, ItemStage.SEW, ItemSubStatus.PENDING)
            item_id = item.id
        child = ctx.spawn(
            RequestType.SEW,
            item_id=item_id,
            metadata={
                "cutting_request_id": str(ctx.request.id),
                "unit_number": unit.unit_number,
                "total_units": unit.total_units,
                "sku": unit.sku,
                "target_wash": target_wash,
            },
            ordinal=ordinal,
        )
        sew_ids.append(str(child.id))

    ctx.update_metadata(
        pieces_cut=payload.pieces_cut,
        target_wash=target_wash,
        sew_request_ids=sew_ids,
    )
    logger.info("cutting_fanout_planned", extra={"unit_count": len(units)})


# ---------------------------------------------------------------------------
# SEW
# ---------------------------------------------------------------------------


def handle_sew_complete(ctx: TransitionContext) -> None:
    target_wash = ctx.payload.target_wash or ctx.meta("target_wash")
    ctx.update_metadata(target_wash=target_wash)
    item = ctx.item
    if item is None:
        return
    ctx.set_item_status(item, ItemStage.WASH, ItemSubStatus.PENDING)
    ctx.spawn(
        RequestType.WASH,
        item_id=item.id,
        metadata={"sew_request_id": str(ctx.request.id), "target_wash": target_wash},
    )


# ---------------------------------------------------------------------------
# WASH
# ---------------------------------------------------------------------------


def handle_wash_validate_item(ctx: TransitionContext) -> None:
    ctx.update_metadata(item_validation=_scan_record(ctx, qr_code=ctx.payload.qr_code))


def handle_wash_start(ctx: TransitionContext) -> None:
    handle_start(ctx)
    ctx.update_metadata(wash_data={
        "wash_type": ctx.payload.wash_type,
        "temperature": ctx.payload.temperature,
        "started_at": ctx.now(),
        "started_by": ctx.actor_id,
    })


def handle_wash_assign_bin(ctx: TransitionContext) -> None:
    item = ctx.require_item()
    bin_ = target_bin(ctx)
    if item.bin_id == bin_.id:
        raise PreconditionFailedError(
            f"Item {item.id} is already in bin {bin_.code}", requirement="bin_assignment",
        )
    previous_bin_id = item.bin_id
    _reserve(ctx, bin_.id)
    if previous_bin_id is not None:
        _release(ctx, previous_bin_id)
    ctx.set_item_status(
        item, ItemStage.WASH, ItemSubStatus.IN_BIN, bin_id=bin_.id, location=bin_.code,
    )
    ctx.update_metadata(bin_assignment={
        "bin_id": str(bin_.id),
        "bin_code": bin_.code,
        "assigned_at": ctx.now(),
        "assigned_by": ctx.actor_id,
    })


def handle_wash_complete(ctx: TransitionContext) -> None:
    item = ctx.require_item()
    target_wash = ctx.payload.target_wash or ctx.meta("target_wash")
    if not target_wash:
        raise ValidationError("target_wash is required to complete a wash", field="target_wash")
    previous_sku = item.sku
    new_sku = rewrite_wash(previous_sku, target_wash, ctx.uow.policy.wash_mappings)

    if item.bin_id is not None:
        _release(ctx, item.bin_id)
    ctx.set_item_status(
        item, ItemStage.QC, ItemSubStatus.PENDING,
        sku=new_sku, bin_id=None, location=ctx.uow.policy.post_wash_location,
    )
    ctx.update_metadata(
        target_wash=target_wash,
        previous_sku=previous_sku,
        new_sku=new_sku,
        wash_data={**(ctx.meta("wash_data") or {}), "completed_at": ctx.now()},
    )
    ctx.spawn(
        RequestType.QC, item_id=item.id, metadata={"wash_request_id": str(ctx.request.id)},
    )


# ---------------------------------------------------------------------------
# QC
# ---------------------------------------------------------------------------


def _stamp(records: list[dict], ctx: TransitionContext) -> list[dict]:
    return [{**r, "recorded_at": ctx.now(), "recorded_by": ctx.actor_id} for r in records]


def handle_qc_record_measurements(ctx: TransitionContext) -> None:
    if ctx.request.status == RequestStatus.PENDING.value:
        handle_start(ctx)
    ctx.update_metadata(measurements=_stamp(ctx.payload.measurements, ctx))


def handle_qc_record_defects(ctx: TransitionContext) -> None:
    ctx.update_metadata(defects=_stamp(ctx.payload.defects, ctx))


def handle_qc_record_visual_inspection(ctx: TransitionContext) -> None:
    ctx.update_metadata(visual_inspection={
        "result": ctx.payload.result,
        "notes": ctx.payload.notes,
        "inspected_at": ctx.now(),
        "inspected_by": ctx.actor_id,
    })


def handle_qc_complete(ctx: TransitionContext) -> None:
    item = ctx.require_item()
    payload = ctx.payload
    new_defects = _stamp(payload.defects, ctx) if payload.defects else None
    ctx.update_metadata(passed=payload.passed, defects=new_defects)

    if payload.passed:
        ctx.outcome = RequestStatus.COMPLETED
        ctx.set_item_status(item, ItemStage.FINISHING, ItemSubStatus.PENDING)
        ctx.spawn(
            RequestType.FINISHING, item_id=item.id,
            metadata={"qc_request_id": str(ctx.request.id)},
        )
        return

    all_defects = list(ctx.metadata.get("defects") or []) + list(new_defects or [])
    ctx.outcome = RequestStatus.FAILED
    ctx.set_item_status(item, ItemStage.RECOVERY, ItemSubStatus.DEFECTIVE)
    ctx.spawn(
        RequestType.RECOVERY, item_id=item.id,
        metadata={"qc_request_id": str(ctx.request.id), "defects": all_defects},
    )
    logger.info("qc_failed_recovery_spawned", extra={"defect_count": len(all_defects)})


# ---------------------------------------------------------------------------
# FINISHING / PACKING
# ---------------------------------------------------------------------------


def handle_finishing_complete(ctx: TransitionContext) -> None:
    item = ctx.require_item()
    hem_length = ctx.payload.hem_length
    changes = {}
    if hem_length:
        previous_sku = item.sku
        changes["sku"] = rewrite_length(previous_sku, hem_length)
        if item.bin_id is not None and changes["sku"] != previous_sku:
            restriction = ctx.uow.inventory.get_bin(item.bin_id).sku_restriction
            if restriction and restriction != changes["sku"]:
                # A hemmed garment no longer belongs in a bin held for its old sku.
                _release(ctx, item.bin_id)
                changes.update(bin_id=None, location=None)
        ctx.update_metadata(
            hem_length=hem_length, previous_sku=previous_sku, new_sku=changes["sku"],
        )
    ctx.set_item_status(item, ItemStage.PACKING, ItemSubStatus.PENDING, **changes)
    ctx.spawn(
        RequestType.PACKING, item_id=item.id,
        metadata={"finishing_request_id": str(ctx.request.id)},
    )


def handle_packing_complete(ctx: TransitionContext) -> None:
    item = ctx.require_item()
    ctx.update_metadata(package_id=ctx.payload.package_id)
    ctx.set_item_status(item, ItemStage.PACKED, ItemSubStatus.READY_TO_SHIP)


# ---------------------------------------------------------------------------
# MOVE
# ---------------------------------------------------------------------------


def handle_move_start(ctx: TransitionContext) -> None:
    item = _claim_item(ctx)
    if item is not None and item.bin_id is not None:
        ctx.update_metadata(source_bin_id=str(item.bin_id))


def handle_move_validate_item(ctx: TransitionContext) -> None:
    ctx.update_metadata(item_validation=_scan_record(ctx, qr_code=ctx.payload.qr_code))


def handle_move_validate_destination(ctx: TransitionContext) -> None:
    bin_ = target_bin(ctx)
    ctx.update_metadata(
        destination=_scan_record(ctx, bin_id=str(bin_.id), bin_code=bin_.code),
    )


def handle_move_complete(ctx: TransitionContext) -> None:
    item = ctx.require_item()
    destination = target_bin(ctx)
    source_bin_id = item.bin_id

    _reserve(ctx, destination.id)
    if source_bin_id is not None:
        _release(ctx, source_bin_id)
    ctx.set_item_status(
        item, ItemStage(item.status1), ItemSubStatus(item.status2),
        bin_id=destination.id, location=destination.code,
    )
    ctx.uow.emit_event(
        DomainEventType.ITEM_MOVED,
        EventRefs(actor_id=ctx.actor_id, item_id=item.id, request_id=ctx.request.id),
        {"from_bin_id": source_bin_id, "to_bin_id": destination.id},
    )


# ---------------------------------------------------------------------------
# RECOVERY
# ---------------------------------------------------------------------------


def handle_recovery_complete(ctx: TransitionContext) -> None:
    item = ctx.require_item()
    resolution = ctx.payload.resolution
    ctx.update_metadata(resolution=resolution)
    if resolution == "REPAIRED":
        ctx.set_item_status(item, ItemStage.QC, ItemSubStatus.PENDING)
        ctx.spawn(
            RequestType.QC, item_id=item.id,
            metadata={"recovery_request_id": str(ctx.request.id)},
        )
        return
    if item.bin_id is not None:
        _release(ctx, item.bin_id)
    ctx.set_item_status(item, ItemStage.RECOVERY, ItemSubStatus.SCRAPPED, bin_id=None)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class StageHandlerRegistry:
    """One handler per (request type, action)."""

    def __init__(self) -> None:
        self._handlers: dict[tuple[RequestType, str], StageHandler] = {}

    def register(self, request_type: RequestType, action: str, handler: StageHandler) -> None:
        self._handlers[(RequestType(request_type), action)] = handler

    def get(self, request_type: RequestType, action: str) -> StageHandler | None:
        return self._handlers.get((RequestType(request_type), action))

    def registered(self) -> frozenset[tuple[RequestType, str]]:
        return frozenset(self._handlers)


def default_stage_handlers() -> StageHandlerRegistry:
    registry = StageHandlerRegistry()
    for request_type in RequestType:
        registry.register(request_type, "assign", handle_assign)
        registry.register(request_type, "start", handle_start)

    registry.register(RequestType.PATTERN, "start", handle_pattern_start)
    registry.register(RequestType.PATTERN, "complete", handle_pattern_complete)

    registry.register(RequestType.CUTTING, "validate_material", handle_cutting_validate_material)
    registry.register(RequestType.CUTTING, "start", handle_cutting_start)
    registry.register(RequestType.CUTTING, "complete", handle_cutting_complete)

    registry.register(RequestType.SEW, "complete", handle_sew_complete)

    registry.register(RequestType.WASH, "validate_item", handle_wash_validate_item)
    registry.register(RequestType.WASH, "start", handle_wash_start)
    registry.register(RequestType.WASH, "assign_bin", handle_wash_assign_bin)
    registry.register(RequestType.WASH, "complete", handle_wash_complete)

    registry.register(RequestType.QC, "record_measurements", handle_qc_record_measurements)
    registry.register(RequestType.QC, "record_defects", handle_qc_record_defects)
    registry.register(
        RequestType.QC, "record_visual_inspection", handle_qc_record_visual_inspection,
    )
    registry.register(RequestType.QC, "complete", handle_qc_complete)

    registry.register(RequestType.FINISHING, "complete", handle_finishing_complete)
    registry.register(RequestType.PACKING, "complete", handle_packing_complete)

    registry.register(RequestType.MOVE, "start", handle_move_start)
    registry.register(RequestType.MOVE, "validate_item", handle_move_validate_item)
    registry.register(RequestType.MOVE, "validate_destination", handle_move_validate_destination)
    registry.register(RequestType.MOVE, "complete", handle_move_complete)

    registry.register(RequestType.RECOVERY, "complete", handle_recovery_complete)
    return registry

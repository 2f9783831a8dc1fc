"""
Request lifecycle (``garment_kernel.domain.request_lifecycle``).

Responsibility
--------------
Pure definition of the request state machine: request types and statuses,
the allowed status moves, the item status vocabulary, and the action table
that says, per request type, which actions exist, which statuses they may
be issued from, which statuses they may end in, and which timeline step they
record.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports from
``db/``, ``models/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Status is monotonic: ``REQUEST_TRANSITIONS`` has no edge out of
  COMPLETED or FAILED.
* PENDING -> COMPLETED is only reachable for ``DIRECT_COMPLETE_TYPES``.
* Every ``ActionDef`` outcome is reachable from every one of its
  ``from_statuses`` under ``REQUEST_TRANSITIONS``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class RequestType(str, Enum):
    """Pipeline stage a request represents."""

    PATTERN = "PATTERN"
    CUTTING = "CUTTING"
    SEW = "SEW"
    WASH = "WASH"
    QC = "QC"
    FINISHING = "FINISHING"
    PACKING = "PACKING"
    MOVE = "MOVE"
    RECOVERY = "RECOVERY"


class RequestStatus(str, Enum):
    """Request lifecycle states."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ItemStage(str, Enum):
    """Coarse item status (``status1``)."""

    PRODUCTION = "PRODUCTION"
    STOCK = "STOCK"
    SEW = "SEW"
    WASH = "WASH"
    QC = "QC"
    FINISHING = "FINISHING"
    PACKING = "PACKING"
    PACKED = "PACKED"
    RECOVERY = "RECOVERY"


class ItemSubStatus(str, Enum):
    """Fine-grained item status (``status2``)."""

    UNCOMMITTED = "UNCOMMITTED"
    COMMITTED = "COMMITTED"
    CUTTING = "CUTTING"
    STORED = "STORED"
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    IN_BIN = "IN_BIN"
    DEFECTIVE = "DEFECTIVE"
    SCRAPPED = "SCRAPPED"
    READY_TO_SHIP = "READY_TO_SHIP"


class OrderStatus(str, Enum):
    """Customer order progress."""

    OPEN = "OPEN"
    PROCESSING = "PROCESSING"
    PENDING_PRODUCTION = "PENDING_PRODUCTION"


class BatchStatus(str, Enum):
    """Aggregate status of a production batch."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.IN_PROGRESS,
        RequestStatus.COMPLETED,
    }),
    RequestStatus.IN_PROGRESS: frozenset({
        RequestStatus.COMPLETED,
        RequestStatus.FAILED,
    }),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.FAILED: frozenset(),
}

TERMINAL_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.COMPLETED,
    RequestStatus.FAILED,
})

ACTIVE_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.PENDING,
    RequestStatus.IN_PROGRESS,
})

# Stages whose work can be reported done without an explicit start.
DIRECT_COMPLETE_TYPES: frozenset[RequestType] = frozenset({
    RequestType.PATTERN,
    RequestType.CUTTING,
    RequestType.SEW,
})

# Stages that act on one physical garment and must reference an item.
ITEM_REQUIRED_TYPES: frozenset[RequestType] = frozenset({
    RequestType.WASH,
    RequestType.QC,
    RequestType.FINISHING,
    RequestType.PACKING,
    RequestType.MOVE,
    RequestType.RECOVERY,
})

# Item stage entered when a request of this type starts.  MOVE is absent:
# moves relocate an item without changing its stage.
STAGE_FOR_TYPE: dict[RequestType, ItemStage] = {
    RequestType.PATTERN: ItemStage.PRODUCTION,
    RequestType.CUTTING: ItemStage.PRODUCTION,
    RequestType.SEW: ItemStage.SEW,
    RequestType.WASH: ItemStage.WASH,
    RequestType.QC: ItemStage.QC,
    RequestType.FINISHING: ItemStage.FINISHING,
    RequestType.PACKING: ItemStage.PACKING,
    RequestType.RECOVERY: ItemStage.RECOVERY,
}

CREATED_STEP = "CREATED"
ASSIGNED_STEP = "ASSIGNED"


def is_status_change_allowed(current: RequestStatus, target: RequestStatus) -> bool:
    """True if ``current -> target`` is an edge of the state machine."""
    return target in REQUEST_TRANSITIONS[current]


@dataclass(frozen=True)
class ActionDef:
    """One action available on a request type.

    ``outcomes`` empty means the action records data without moving the
    status.  ``actor_optional`` marks the few actions that system callers may
    issue without an operator identity.
    """

    request_type: RequestType
    action: str
    from_statuses: frozenset[RequestStatus]
    outcomes: frozenset[RequestStatus]
    step: str
    actor_optional: bool = False

    @property
    def changes_status(self) -> bool:
        return bool(self.outcomes)


_PENDING = frozenset({RequestStatus.PENDING})
_IN_PROGRESS = frozenset({RequestStatus.IN_PROGRESS})
_ACTIVE = frozenset({RequestStatus.PENDING, RequestStatus.IN_PROGRESS})
_NO_CHANGE: frozenset[RequestStatus] = frozenset()
_COMPLETED = frozenset({RequestStatus.COMPLETED})


def _build_action_table() -> dict[tuple[RequestType, str], ActionDef]:
    table: dict[tuple[RequestType, str], ActionDef] = {}

    def add(rt, action, from_statuses, outcomes, step, actor_optional=False):
        table[(rt, action)] = ActionDef(
            request_type=rt,
            action=action,
            from_statuses=from_statuses,
            outcomes=outcomes,
            step=step,
            actor_optional=actor_optional,
        )

    for rt in RequestType:
        add(rt, "assign", _ACTIVE, _NO_CHANGE, ASSIGNED_STEP, actor_optional=True)
        add(rt, "start", _PENDING, _IN_PROGRESS, f"{rt.value}_STARTED")
        complete_from = _ACTIVE if rt in DIRECT_COMPLETE_TYPES else _IN_PROGRESS
        add(rt, "complete", complete_from, _COMPLETED, f"{rt.value}_COMPLETE")

    # CUTTING named sub-steps
    add(RequestType.CUTTING, "validate_material", _PENDING, _NO_CHANGE,
        "MATERIAL_VALIDATION")
    add(RequestType.CUTTING, "start", _PENDING, _IN_PROGRESS, "CUTTING_PROCESS")

    # WASH
    add(RequestType.WASH, "validate_item", _PENDING, _NO_CHANGE, "ITEM_VALIDATION")
    add(RequestType.WASH, "assign_bin", _IN_PROGRESS, _NO_CHANGE, "BIN_ASSIGNMENT")

    # QC
    add(RequestType.QC, "record_measurements", _ACTIVE, _IN_PROGRESS, "MEASUREMENTS")
    add(RequestType.QC, "record_defects", _IN_PROGRESS, _NO_CHANGE, "DEFECTS")
    add(RequestType.QC, "record_visual_inspection", _IN_PROGRESS, _NO_CHANGE,
        "VISUAL_INSPECTION")
    add(RequestType.QC, "complete", _IN_PROGRESS,
        frozenset({RequestStatus.COMPLETED, RequestStatus.FAILED}), "QC_COMPLETE")

    # MOVE named sub-steps
    add(RequestType.MOVE, "start", _PENDING, _IN_PROGRESS, "MOVE_STARTED")
    add(RequestType.MOVE, "validate_item", _IN_PROGRESS, _NO_CHANGE, "ITEM_SCAN")
    add(RequestType.MOVE, "validate_destination", _IN_PROGRESS, _NO_CHANGE,
        "DESTINATION_SCAN")
    add(RequestType.MOVE, "complete", _IN_PROGRESS, _COMPLETED, "MOVE_COMPLETE")

    return table


WORKFLOW_ACTIONS: dict[tuple[RequestType, str], ActionDef] = _build_action_table()


def get_action(request_type: RequestType, action: str) -> ActionDef | None:
    """Look up the action definition, or None if the type has no such action."""
    return WORKFLOW_ACTIONS.get((request_type, action))


def actions_for(request_type: RequestType) -> tuple[str, ...]:
    """All action names defined for a request type, sorted."""
    return tuple(sorted(a for (rt, a) in WORKFLOW_ACTIONS if rt == request_type))


def aggregate_batch_status(statuses) -> BatchStatus:
    """Derive a batch's status from the statuses of its member requests.

    All COMPLETED -> COMPLETED; all terminal with at least one FAILED ->
    FAILED; any member past PENDING -> IN_PROGRESS; otherwise PENDING.
    """
    statuses = [RequestStatus(s) for s in statuses]
    if not statuses:
        return BatchStatus.PENDING
    if all(s == RequestStatus.COMPLETED for s in statuses):
        return BatchStatus.COMPLETED
    if all(s in TERMINAL_REQUEST_STATUSES for s in statuses):
        return BatchStatus.FAILED
    if any(s != RequestStatus.PENDING for s in statuses):
        return BatchStatus.IN_PROGRESS
    return BatchStatus.PENDING

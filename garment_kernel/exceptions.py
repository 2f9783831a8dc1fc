"""
Typed exception hierarchy for the garment kernel.

Every failure the workflow engine can report has its own class with a
machine-readable ``code`` and structured attributes, so callers (an API
layer, a CLI, tests) branch on type and code instead of parsing messages.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    GarmentKernelError (base)
    |
    +-- ValidationError
    |   +-- UnknownActionError
    |   +-- MetadataConflictError
    |
    +-- NotFoundError
    |   +-- RequestNotFoundError
    |   +-- ItemNotFoundError
    |   +-- BinNotFoundError
    |   +-- OrderNotFoundError
    |   +-- BatchNotFoundError
    |   +-- NotificationNotFoundError
    |
    +-- InvalidTransitionError
    |   +-- AlreadyProcessedError
    |
    +-- PreconditionFailedError
    |   +-- BinFullError
    |   +-- BinInactiveError
    |   +-- SkuMismatchError
    |   +-- ItemMismatchError
    |   +-- ActiveRequestConflictError
    |
    +-- IdempotencyConflictError
    |
    +-- StorageError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                    | When Raised
--------------|-------------------------|-------------------------------------------
Validation    | VALIDATION_ERROR        | Missing or malformed payload field
              | UNKNOWN_ACTION          | Action not defined for the request type
              | METADATA_CONFLICT       | Write-once metadata key rewritten
--------------|-------------------------|-------------------------------------------
Not found     | REQUEST_NOT_FOUND       | Request id doesn't exist
              | ITEM_NOT_FOUND          | Item id / QR doesn't exist
              | BIN_NOT_FOUND           | Bin id / code doesn't exist
              | ORDER_NOT_FOUND         | Order id doesn't exist
              | BATCH_NOT_FOUND         | Batch id doesn't exist
--------------|-------------------------|-------------------------------------------
Transition    | INVALID_TRANSITION      | Action not allowed from current status
              | ALREADY_PROCESSED       | Lost a race against another transition
--------------|-------------------------|-------------------------------------------
Precondition  | PRECONDITION_FAILED     | Stage prerequisite missing
              | BIN_FULL                | current_count >= capacity
              | BIN_INACTIVE            | Bin is deactivated
              | SKU_MISMATCH            | Bin restriction / wash base mismatch
              | ITEM_MISMATCH           | Scanned QR differs from the item
              | ACTIVE_REQUEST_CONFLICT | Item already has an active request of type
--------------|-------------------------|-------------------------------------------
Other         | IDEMPOTENCY_CONFLICT    | Same idempotency key, different payload
              | STORAGE_ERROR           | Commit / driver failure (retryable)
              | IMMUTABILITY_VIOLATION  | Protected row modified or deleted
"""

from typing import Any


class GarmentKernelError(Exception):
    """Base exception for all garment kernel errors."""

    code: str = "GARMENT_KERNEL_ERROR"


# Validation errors


class ValidationError(GarmentKernelError):
    """A payload or metadata field is missing or malformed."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class UnknownActionError(ValidationError):
    """The action is not defined for this request type."""

    code: str = "UNKNOWN_ACTION"

    def __init__(self, request_type: str, action: str):
        self.request_type = request_type
        self.action = action
        super().__init__(
            f"Action '{action}' is not defined for {request_type} requests",
            field="action",
        )


class MetadataConflictError(ValidationError):
    """A write-once metadata key was given a different value."""

    code: str = "METADATA_CONFLICT"

    def __init__(self, key: str, existing: Any, attempted: Any):
        self.key = key
        self.existing = existing
        self.attempted = attempted
        super().__init__(
            f"Metadata key '{key}' is write-once: "
            f"existing={existing!r}, attempted={attempted!r}",
            field=key,
        )


# Not-found errors


class NotFoundError(GarmentKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"
    entity_type: str = "Entity"

    def __init__(self, entity_id: Any):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class RequestNotFoundError(NotFoundError):
    code: str = "REQUEST_NOT_FOUND"
    entity_type: str = "Request"


class ItemNotFoundError(NotFoundError):
    code: str = "ITEM_NOT_FOUND"
    entity_type: str = "InventoryItem"


class BinNotFoundError(NotFoundError):
    code: str = "BIN_NOT_FOUND"
    entity_type: str = "Bin"


class OrderNotFoundError(NotFoundError):
    code: str = "ORDER_NOT_FOUND"
    entity_type: str = "Order"


class BatchNotFoundError(NotFoundError):
    code: str = "BATCH_NOT_FOUND"
    entity_type: str = "ProductionBatch"


class NotificationNotFoundError(NotFoundError):
    code: str = "NOTIFICATION_NOT_FOUND"
    entity_type: str = "Notification"


# State machine errors


class InvalidTransitionError(GarmentKernelError):
    """The action is not allowed from the request's current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        request_id: Any,
        current_status: str | None,
        action: str,
        reason: str | None = None,
    ):
        self.request_id = str(request_id)
        self.current_status = current_status
        self.action = action
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Cannot '{action}' request {request_id} "
            f"in status {current_status}{detail}"
        )


class AlreadyProcessedError(InvalidTransitionError):
    """Another transaction changed the request first (concurrent loser)."""

    code: str = "ALREADY_PROCESSED"

    def __init__(self, request_id: Any, action: str):
        super().__init__(
            request_id,
            None,
            action,
            reason="request was modified by a concurrent transition",
        )


# Precondition errors


class PreconditionFailedError(GarmentKernelError):
    """A stage gate rejected the transition."""

    code: str = "PRECONDITION_FAILED"

    def __init__(self, message: str, requirement: str | None = None):
        self.requirement = requirement
        super().__init__(message)


class BinFullError(PreconditionFailedError):
    code: str = "BIN_FULL"

    def __init__(self, bin_id: Any, capacity: int, current_count: int):
        self.bin_id = str(bin_id)
        self.capacity = capacity
        self.current_count = current_count
        super().__init__(
            f"Bin {bin_id} is full ({current_count}/{capacity})",
            requirement="bin_capacity",
        )


class BinInactiveError(PreconditionFailedError):
    code: str = "BIN_INACTIVE"

    def __init__(self, bin_id: Any):
        self.bin_id = str(bin_id)
        super().__init__(f"Bin {bin_id} is not active", requirement="bin_active")


class SkuMismatchError(PreconditionFailedError):
    code: str = "SKU_MISMATCH"

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"SKU mismatch: expected {expected}, got {actual}",
            requirement="sku",
        )


class ItemMismatchError(PreconditionFailedError):
    code: str = "ITEM_MISMATCH"

    def __init__(self, item_id: Any, scanned_qr: str):
        self.item_id = str(item_id)
        self.scanned_qr = scanned_qr
        super().__init__(
            f"Scanned QR code {scanned_qr} does not match item {item_id}",
            requirement="item_scan",
        )


class ActiveRequestConflictError(PreconditionFailedError):
    code: str = "ACTIVE_REQUEST_CONFLICT"

    def __init__(self, item_id: Any, request_type: str, existing_request_id: Any):
        self.item_id = str(item_id)
        self.request_type = request_type
        self.existing_request_id = str(existing_request_id)
        super().__init__(
            f"Item {item_id} already has an active {request_type} request "
            f"({existing_request_id})",
            requirement="single_active_request",
        )


# Idempotency


class IdempotencyConflictError(GarmentKernelError):
    """An idempotency key was reused with a different payload."""

    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, existing_request_id: Any):
        self.idempotency_key = idempotency_key
        self.existing_request_id = str(existing_request_id)
        super().__init__(
            f"Idempotency key {idempotency_key} already used by request "
            f"{existing_request_id} with a different payload"
        )


# Storage


class StorageError(GarmentKernelError):
    """The data store failed to apply or commit the unit of work."""

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")


# Immutability


class ImmutabilityError(GarmentKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Timeline entries and domain events are immutable from creation;
    requests become immutable once COMPLETED or FAILED.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )

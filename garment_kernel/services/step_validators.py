"""
Step validators -- stage gates run before a transition writes anything.

A validator is a callable ``(TransitionContext) -> None`` that raises a
``PreconditionFailedError`` (or a subclass such as ``BinFullError``) when
the physical world does not match what the action claims: wrong garment
scanned, full or inactive bin, bin reserved for another sku, a required
earlier step missing.  Validators read through the transaction's session
and never write.

``default_step_validators()`` wires the gates for WASH and MOVE; callers may
register more on their own registry instance.
"""

from __future__ import annotations

from collections.abc import Callable
from uuid import UUID

from garment_kernel.domain.payloads import BinScanPayload, ItemScanPayload
from garment_kernel.domain.request_lifecycle import RequestType
from garment_kernel.exceptions import (
    BinFullError,
    BinInactiveError,
    ItemMismatchError,
    PreconditionFailedError,
    SkuMismatchError,
    ValidationError,
)
from garment_kernel.logging_config import get_logger
from garment_kernel.models.inventory import Bin
from garment_kernel.services.transition_context import TransitionContext

logger = get_logger("services.step_validators")

StepValidator = Callable[[TransitionContext], None]


def target_bin(ctx: TransitionContext) -> Bin:
    """The bin an action refers to.

    A scanned bin in the payload wins; otherwise the destination recorded by
    an earlier DESTINATION_SCAN step is used.
    """
    payload = ctx.payload
    if isinstance(payload, BinScanPayload):
        return ctx.uow.inventory.resolve_bin(bin_id=payload.bin_id, bin_code=payload.bin_code)
    recorded = ctx.meta("destination.bin_id")
    if recorded:
        return ctx.uow.inventory.get_bin(UUID(str(recorded)))
    raise ValidationError("No bin was scanned for this action", field="bin_id")


def validate_bin_assignment(ctx: TransitionContext) -> None:
    bin_ = target_bin(ctx)
    if not bin_.is_active:
        raise BinInactiveError(bin_.id)
    if bin_.current_count >= bin_.capacity:
        raise BinFullError(bin_.id, bin_.capacity, bin_.current_count)


def validate_bin_sku_restriction(ctx: TransitionContext) -> None:
    bin_ = target_bin(ctx)
    item = ctx.require_item()
    if bin_.sku_restriction and bin_.sku_restriction != item.sku:
        raise SkuMismatchError(expected=bin_.sku_restriction, actual=item.sku)


def validate_item_scan(ctx: TransitionContext) -> None:
    item = ctx.require_item()
    payload = ctx.payload
    if not isinstance(payload, ItemScanPayload):
        raise ValidationError("An item scan is required", field="qr_code")
    if payload.qr_code != item.qr_code:
        raise ItemMismatchError(item.id, payload.qr_code)


def validate_destination(ctx: TransitionContext) -> None:
    """Destination bin must accept the item: active, not full, sku allowed."""
    validate_bin_assignment(ctx)
    validate_bin_sku_restriction(ctx)
    bin_ = target_bin(ctx)
    if ctx.item is not None and ctx.item.bin_id == bin_.id:
        raise PreconditionFailedError(
            f"Item {ctx.item.id} is already in bin {bin_.code}",
            requirement="destination",
        )


def require_metadata(path: str, description: str | None = None) -> StepValidator:
    """Gate on an earlier step having recorded ``path`` in request metadata."""

    def _require(ctx: TransitionContext) -> None:
        if ctx.meta(path) in (None, "", [], {}):
            raise PreconditionFailedError(
                f"{description or path} must be recorded before '{ctx.action.action}'",
                requirement=path,
            )

    _require.__name__ = f"require_{path.replace('.', '_')}"
    return _require


class StepValidatorRegistry:
    """Ordered validators per (request type, action)."""

    def __init__(self) -> None:
        self._validators: dict[tuple[RequestType, str], list[StepValidator]] = {}

    def register(
        self, request_type: RequestType, action: str, *validators: StepValidator,
    ) -> None:
        key = (RequestType(request_type), action)
        self._validators.setdefault(key, []).extend(validators)

    def validators_for(self, request_type: RequestType, action: str) -> tuple[StepValidator, ...]:
        return tuple(self._validators.get((RequestType(request_type), action), ()))

    def run(self, ctx: TransitionContext) -> None:
        """Run every validator for the context's action; the first failure raises."""
        for validator in self.validators_for(ctx.request_type, ctx.action.action):
            try:
                validator(ctx)
            except PreconditionFailedError as exc:
                logger.info(
                    "step_validation_failed",
                    extra={
                        "validator": getattr(validator, "__name__", repr(validator)),
                        "error_code": exc.code,
                    },
                )
                raise


def default_step_validators() -> StepValidatorRegistry:
    registry = StepValidatorRegistry()

    registry.register(RequestType.WASH, "validate_item", validate_item_scan)
    registry.register(
        RequestType.WASH, "start",
        require_metadata("item_validation.validated_at", "Item validation"),
    )
    registry.register(
        RequestType.WASH, "assign_bin",
        validate_bin_assignment, validate_bin_sku_restriction,
    )
    registry.register(
        RequestType.WASH, "complete",
        require_metadata("wash_data.started_at", "Wash start"),
    )

    registry.register(RequestType.MOVE, "validate_item", validate_item_scan)
    registry.register(RequestType.MOVE, "validate_destination", validate_destination)
    registry.register(
        RequestType.MOVE, "complete",
        require_metadata("item_validation.validated_at", "Item scan"),
        require_metadata("destination.validated_at", "Destination scan"),
        validate_destination,
    )
    return registry

"""
TransitionContext -- everything a step validator or stage handler sees.

Built by the workflow engine after the request (and its item) have been
locked and the action payload parsed.  Validators only read from it; stage
handlers write through its helpers and stage the request metadata update in
``metadata_update``, which the engine merges together with the status change
in a single flush.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from garment_kernel.domain.metadata import metadata_value
from garment_kernel.domain.payloads import ActionPayload
from garment_kernel.domain.request_lifecycle import (
    ActionDef,
    ItemStage,
    ItemSubStatus,
    RequestStatus,
    RequestType,
)
from garment_kernel.exceptions import ValidationError
from garment_kernel.models.inventory import InventoryItem
from garment_kernel.models.request import Request
from garment_kernel.services.unit_of_work import WorkflowUnitOfWork
from garment_kernel.utils.idempotency import generate_idempotency_key


@dataclass
class TransitionContext:
    uow: WorkflowUnitOfWork
    request: Request
    item: InventoryItem | None
    action: ActionDef
    payload: ActionPayload
    actor_id: str | None
    metadata_update: dict[str, Any] = field(default_factory=dict)
    outcome: RequestStatus | None = None

    @property
    def request_type(self) -> RequestType:
        return RequestType(self.request.type)

    @property
    def metadata(self) -> dict[str, Any]:
        return dict(self.request.meta or {})

    def meta(self, path: str) -> Any:
        """Current value at a dotted path, staged updates included."""
        staged = metadata_value(self.metadata_update, path)
        return staged if staged is not None else metadata_value(self.request.meta, path)

    def now(self) -> str:
        return self.uow.clock.isoformat()

    def update_metadata(self, **values: Any) -> None:
        self.metadata_update.update({k: v for k, v in values.items() if v is not None})

    def require_item(self) -> InventoryItem:
        if self.item is None:
            raise ValidationError(
                f"{self.request_type.value} request {self.request.id} has no item",
                field="item_id",
            )
        return self.item

    def set_item_status(
        self,
        item: InventoryItem,
        stage: ItemStage,
        sub_status: ItemSubStatus,
        **changes: Any,
    ) -> None:
        self.uow.set_item_status(
            item,
            ItemStage(stage).value,
            ItemSubStatus(sub_status).value,
            actor_id=self.actor_id,
            request_id=self.request.id,
            **changes,
        )

    def spawn(
        self,
        request_type: RequestType,
        *,
        item_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
        ordinal: int = 1,
    ) -> Request:
        """Create a downstream request and tag it in this request's metadata.

        The idempotency key is derived from this request and ``ordinal``,
        so the same completion can never create the same child twice.
        """
        key = generate_idempotency_key(
            "workflow",
            f"{self.request_type.value}.{self.action.action}",
            f"{self.request.id}:{ordinal}",
        )
        child, _ = self.uow.create_request(
            request_type,
            created_by=self.actor_id or "system",
            item_id=item_id,
            order_id=self.request.order_id,
            metadata=metadata,
            idempotency_key=key,
        )
        spawned = self.metadata_update.setdefault("spawned_request_ids", [])
        spawned.append(str(child.id))
        return child

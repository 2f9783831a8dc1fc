"""
Module: garment_kernel.services.request_repository
Responsibility: Persistence access for requests -- create, look up, lock,
    filter and update.  No business rules: status moves are validated by the
    workflow engine before ``update`` is called.
Architecture position: Kernel > Services.  May import from models/, domain/
    and services/base.py.

Invariants enforced:
    - Metadata is always stored in its typed, validated form
      (``domain.metadata``), on create and on every merge.
    - ``get_for_update`` takes a row lock on PostgreSQL and always reloads
      the row, so the caller validates against committed state.

Failure modes:
    - RequestNotFoundError from ``get`` / ``get_for_update``.
    - ValidationError / MetadataConflictError from metadata parsing/merging.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from garment_kernel.domain.dtos import RequestFilter
from garment_kernel.domain.metadata import merge_metadata, parse_metadata
from garment_kernel.domain.request_lifecycle import (
    ACTIVE_REQUEST_STATUSES,
    RequestStatus,
    RequestType,
)
from garment_kernel.exceptions import RequestNotFoundError
from garment_kernel.models.request import Request
from garment_kernel.services.base import BaseService


class RequestRepository(BaseService[Request]):
    """Request persistence.

    Contract:
        Flush-only (see BaseService).  Returns ORM instances; callers convert
        them with ``to_dto()`` before their transaction ends.
    """

    def create(
        self,
        *,
        request_type: RequestType,
        created_by: str,
        item_id: UUID | None = None,
        order_id: UUID | None = None,
        batch_id: UUID | None = None,
        assigned_to: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        idempotency_key: str | None = None,
        request_hash: str | None = None,
    ) -> Request:
        request_type = RequestType(request_type)
        request = Request(
            type=request_type.value,
            status=RequestStatus.PENDING.value,
            assigned_to=assigned_to,
            item_id=item_id,
            order_id=order_id,
            batch_id=batch_id,
            meta=parse_metadata(request_type, metadata).to_dict(),
            idempotency_key=idempotency_key,
            request_hash=request_hash,
            created_by_id=created_by,
        )
        self.session.add(request)
        self.session.flush()
        return request

    def find_by_id(self, request_id: UUID, *, with_related: bool = False) -> Request | None:
        stmt = select(Request).where(Request.id == request_id)
        if with_related:
            stmt = stmt.options(
                selectinload(Request.item),
                selectinload(Request.order),
                selectinload(Request.batch),
            )
        return self.session.scalars(stmt).one_or_none()

    def get(self, request_id: UUID, *, with_related: bool = False) -> Request:
        request = self.find_by_id(request_id, with_related=with_related)
        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    def get_for_update(self, request_id: UUID) -> Request:
        """Load and lock a request row for the rest of the transaction."""
        stmt = (
            select(Request)
            .where(Request.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        request = self.session.scalars(stmt).one_or_none()
        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    def find_many(self, request_filter: RequestFilter) -> list[Request]:
        stmt = select(Request)
        if request_filter.type is not None:
            stmt = stmt.where(Request.type == RequestType(request_filter.type).value)
        if request_filter.status is not None:
            stmt = stmt.where(Request.status == RequestStatus(request_filter.status).value)
        if request_filter.assigned_to is not None:
            stmt = stmt.where(Request.assigned_to == request_filter.assigned_to)
        if request_filter.item_id is not None:
            stmt = stmt.where(Request.item_id == request_filter.item_id)
        if request_filter.batch_id is not None:
            stmt = stmt.where(Request.batch_id == request_filter.batch_id)
        stmt = stmt.order_by(Request.created_at, Request.id)
        if request_filter.limit is not None:
            stmt = stmt.limit(request_filter.limit)
        return list(self.session.scalars(stmt))

    def find_by_idempotency_key(self, idempotency_key: str) -> Request | None:
        return self.session.scalars(
            select(Request).where(Request.idempotency_key == idempotency_key)
        ).one_or_none()

    def find_active_for_item(
        self,
        item_id: UUID,
        request_type: RequestType,
        *,
        statuses: Iterable[RequestStatus] = ACTIVE_REQUEST_STATUSES,
        exclude_id: UUID | None = None,
    ) -> Request | None:
        """First request of ``request_type`` on the item in one of ``statuses``."""
        stmt = select(Request).where(
            Request.item_id == item_id,
            Request.type == RequestType(request_type).value,
            Request.status.in_([RequestStatus(s).value for s in statuses]),
        )
        if exclude_id is not None:
            stmt = stmt.where(Request.id != exclude_id)
        return self.session.scalars(stmt.order_by(Request.created_at).limit(1)).first()

    def list_for_batch(self, batch_id: UUID) -> list[Request]:
        return list(self.session.scalars(
            select(Request).where(Request.batch_id == batch_id).order_by(Request.id)
        ))

    def update(
        self,
        request: Request,
        *,
        status: RequestStatus | None = None,
        metadata: Mapping[str, Any] | None = None,
        updated_by: str | None = None,
    ) -> Request:
        """Apply a status and a metadata merge in one flush."""
        if metadata:
            request.meta = merge_metadata(RequestType(request.type), request.meta, metadata)
        if status is not None:
            request.status = RequestStatus(status).value
        if updated_by is not None:
            request.updated_by_id = updated_by
        self.session.flush()
        return request

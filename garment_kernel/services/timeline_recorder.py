"""
Module: garment_kernel.services.timeline_recorder
Responsibility: Append-only per-request step history and step-graph checks.
Architecture position: Kernel > Services.

Invariants enforced:
    - Entries are never updated or deleted (db/immutability.py).
    - ``seq`` is strictly increasing per request; the entry with the
      highest seq is the authoritative last step.  Timestamps are recorded
      for display only and never used for ordering.
    - Snapshots are stored in canonical JSON form (UUIDs, datetimes and
      enums become strings).

Failure modes:
    - RequestNotFoundError when appending to an unknown request.
    - IntegrityError on (request_id, seq) if two writers append to the same
      request concurrently; the request row lock taken by the workflow
      engine prevents this in practice.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import func, select

from garment_kernel.domain.clock import Clock, SystemClock
from garment_kernel.domain.dtos import TimelineEntryDTO
from garment_kernel.domain.request_lifecycle import CREATED_STEP, RequestStatus
from garment_kernel.domain.step_graphs import StepGraph
from garment_kernel.exceptions import RequestNotFoundError
from garment_kernel.logging_config import get_logger
from garment_kernel.models.request import Request
from garment_kernel.models.timeline import TimelineEntry
from garment_kernel.services.base import BaseService
from garment_kernel.utils.hashing import canonicalize_json

logger = get_logger("services.timeline")


class TimelineRecorder(BaseService[TimelineEntry]):
    """Writes and reads timeline entries.  Flush-only (see BaseService)."""

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def append(
        self,
        request_id: UUID,
        step: str,
        status: RequestStatus,
        operator_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> TimelineEntryDTO:
        if self.session.get(Request, request_id) is None:
            raise RequestNotFoundError(request_id)

        last_seq = self.session.scalar(
            select(func.coalesce(func.max(TimelineEntry.seq), 0))
            .where(TimelineEntry.request_id == request_id)
        )
        entry = TimelineEntry(
            request_id=request_id,
            seq=(last_seq or 0) + 1,
            step=step,
            status=RequestStatus(status).value,
            operator_id=operator_id,
            meta=json.loads(canonicalize_json(dict(metadata or {}))),
            created_at=self._clock.now_utc(),
        )
        self.session.add(entry)
        self.session.flush()

        logger.debug(
            "timeline_appended",
            extra={"step": step, "seq": entry.seq, "status": entry.status},
        )
        return entry.to_dto()

    def entries(self, request_id: UUID) -> list[TimelineEntryDTO]:
        rows = self.session.scalars(
            select(TimelineEntry)
            .where(TimelineEntry.request_id == request_id)
            .order_by(TimelineEntry.seq)
        )
        return [row.to_dto() for row in rows]

    def last_step(
        self,
        request_id: UUID,
        ignore_steps: frozenset[str] = frozenset(),
    ) -> TimelineEntryDTO | None:
        """Highest-seq entry, skipping entries whose step is in ``ignore_steps``."""
        stmt = (
            select(TimelineEntry)
            .where(TimelineEntry.request_id == request_id)
            .order_by(TimelineEntry.seq.desc())
        )
        if ignore_steps:
            stmt = stmt.where(TimelineEntry.step.not_in(sorted(ignore_steps)))
        entry = self.session.scalars(stmt.limit(1)).first()
        return entry.to_dto() if entry is not None else None

    def is_transition_allowed(
        self,
        request_id: UUID,
        from_step: str,
        to_step: str,
        allowed: StepGraph,
        ignore_steps: frozenset[str] = frozenset(),
    ) -> bool:
        """True if ``to_step`` may follow the last recorded step.

        With no recorded step, only a move out of CREATED is allowed.
        """
        last = self.last_step(request_id, ignore_steps)
        if last is None:
            return from_step == CREATED_STEP
        return to_step in allowed.get(last.step, frozenset())

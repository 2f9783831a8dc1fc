"""
Module: garment_kernel.models.timeline
Responsibility: ORM persistence for per-request timeline entries.

Invariants enforced:
    - Append-only: UPDATE and DELETE are blocked by db/immutability.py.
    - (request_id, seq) is unique; seq orders the authoritative step history.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from garment_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from garment_kernel.domain.dtos import TimelineEntryDTO


class TimelineEntry(Base):
    __tablename__ = "timeline_entries"

    __table_args__ = (
        UniqueConstraint("request_id", "seq", name="uq_timeline_entries_request_seq"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requests.id"), nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    step: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    operator_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_dto(self) -> TimelineEntryDTO:
        from garment_kernel.domain.dtos import TimelineEntryDTO
        from garment_kernel.domain.request_lifecycle import RequestStatus

        return TimelineEntryDTO(
            id=self.id,
            request_id=self.request_id,
            seq=self.seq,
            step=self.step,
            status=RequestStatus(self.status),
            operator_id=self.operator_id,
            metadata=dict(self.meta or {}),
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<TimelineEntry {self.request_id}#{self.seq} {self.step}>"

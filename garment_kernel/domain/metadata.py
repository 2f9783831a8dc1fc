"""
Typed request metadata (``garment_kernel.domain.metadata``).

Responsibility
--------------
Each request type carries its own metadata struct.  Metadata is persisted
as a JSON map, but every read and write goes through these classes so that
unknown keys are rejected and every key has a documented merge rule.

Merge semantics
---------------
* **Additive** keys hold lists; an update appends to the existing list
  (QC measurements and defects, recovery defects).
* **Write-once** keys hold upstream references and fan-out tags; once set,
  a different value raises ``MetadataConflictError`` and the same value is a
  no-op.
* Every other key is a shallow overwrite: a nested object supplied later
  replaces the earlier value of the same key as a whole.
* ``None`` in an update never removes an existing key.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects, zero I/O.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar

from garment_kernel.domain.request_lifecycle import RequestType
from garment_kernel.exceptions import MetadataConflictError, ValidationError


@dataclass(frozen=True)
class StageMetadata:
    """Fields shared by every request type."""

    ADDITIVE_KEYS: ClassVar[frozenset[str]] = frozenset()
    WRITE_ONCE_KEYS: ClassVar[frozenset[str]] = frozenset({"spawned_request_ids"})

    notes: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    assigned_at: str | None = None
    spawned_request_ids: list[str] | None = None

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in fields(cls))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> StageMetadata:
        """Build from a JSON map.

        Raises:
            ValidationError: Unknown key, or an additive key that is not a list.
        """
        data = dict(data or {})
        unknown = sorted(set(data) - cls.field_names())
        if unknown:
            raise ValidationError(
                f"Unknown metadata keys for {cls.__name__}: {', '.join(unknown)}",
                field=unknown[0],
            )
        for key in cls.ADDITIVE_KEYS:
            if data.get(key) is not None and not isinstance(data[key], list):
                raise ValidationError(
                    f"Metadata key '{key}' must be a list", field=key,
                )
        return cls(**copy.deepcopy(data))

    def to_dict(self) -> dict[str, Any]:
        """JSON map with unset keys omitted."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def merge(self, update: Mapping[str, Any] | None) -> StageMetadata:
        """Return a new instance with ``update`` merged in (see module doc)."""
        if not update:
            return self
        unknown = sorted(set(update) - self.field_names())
        if unknown:
            raise ValidationError(
                f"Unknown metadata keys for {type(self).__name__}: "
                f"{', '.join(unknown)}",
                field=unknown[0],
            )

        merged = self.to_dict()
        for key, value in update.items():
            if value is None:
                continue
            if key in self.ADDITIVE_KEYS:
                if not isinstance(value, list):
                    raise ValidationError(
                        f"Metadata key '{key}' must be a list", field=key,
                    )
                merged[key] = list(merged.get(key) or []) + copy.deepcopy(value)
            elif key in self.WRITE_ONCE_KEYS and merged.get(key) is not None:
                if merged[key] != value:
                    raise MetadataConflictError(key, merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return type(self).from_dict(merged)


@dataclass(frozen=True)
class PatternMetadata(StageMetadata):
    WRITE_ONCE_KEYS: ClassVar[frozenset[str]] = (
        StageMetadata.WRITE_ONCE_KEYS | {"item_ids"}
    )

    sku: str | None = None
    quantity: int | None = None
    item_ids: list[str] | None = None
    target_sku: str | None = None


@dataclass(frozen=True)
class CuttingMetadata(StageMetadata):
    WRITE_ONCE_KEYS: ClassVar[frozenset[str]] = (
        StageMetadata.WRITE_ONCE_KEYS | {"pattern_request_id", "sew_request_ids"}
    )

    skus: list[dict[str, Any]] | None = None
    pattern_request_id: str | None = None
    material_validation: dict[str, Any] | None = None
    pieces_cut: int | None = None
    target_wash: str | None = None
    sew_request_ids: list[str] | None = None


@dataclass(frozen=True)
class SewMetadata(StageMetadata):
    WRITE_ONCE_KEYS: ClassVar[frozenset[str]] = (
        StageMetadata.WRITE_ONCE_KEYS
        | {"cutting_request_id", "unit_number", "total_units"}
    )

    cutting_request_id: str | None = None
    unit_number: int | None = None
    total_units: int | None = None
    sku: str | None = None
    target_wash: str | None = None


@dataclass(frozen=True)
class WashMetadata(StageMetadata):
    WRITE_ONCE_KEYS: ClassVar[frozenset[str]] = (
        StageMetadata.WRITE_ONCE_KEYS | {"sew_request_id"}
    )

    sew_request_id: str | None = None
    target_wash: str | None = None
    target_sku: str | None = None
    item_validation: dict[str, Any] | None = None
    wash_data: dict[str, Any] | None = None
    bin_assignment: dict[str, Any] | None = None
    previous_sku: str | None = None
    new_sku: str | None = None


@dataclass(frozen=True)
class QCMetadata(StageMetadata):
    ADDITIVE_KEYS: ClassVar[frozenset[str]] = frozenset({"measurements", "defects"})
    WRITE_ONCE_KEYS: ClassVar[frozenset[str]] = (
        StageMetadata.WRITE_ONCE_KEYS
        | {"wash_request_id", "recovery_request_id", "passed"}
    )

    wash_request_id: str | None = None
    recovery_request_id: str | None = None
    measurements: list[dict[str, Any]] | None = None
    defects: list[dict[str, Any]] | None = None
    visual_inspection: dict[str, Any] | None = None
    passed: bool | None = None


@dataclass(frozen=True)
class FinishingMetadata(StageMetadata):
    WRITE_ONCE_KEYS: ClassVar[frozenset[str]] = (
        StageMetadata.WRITE_ONCE_KEYS | {"qc_request_id"}
    )

    qc_request_id: str | None = None
    hem_length: str | None = None
    previous_sku: str | None = None
    new_sku: str | None = None


@dataclass(frozen=True)
class PackingMetadata(StageMetadata):
    WRITE_ONCE_KEYS: ClassVar[frozenset[str]] = (
        StageMetadata.WRITE_ONCE_KEYS | {"finishing_request_id"}
    )

    finishing_request_id: str | None = None
    package_id: str | None = None


@dataclass(frozen=True)
class MoveMetadata(StageMetadata):
    WRITE_ONCE_KEYS: ClassVar[frozenset[str]] = (
        StageMetadata.WRITE_ONCE_KEYS | {"source_bin_id"}
    )

    reason: str | None = None
    source_bin_id: str | None = None
    item_validation: dict[str, Any] | None = None
    destination: dict[str, Any] | None = None


@dataclass(frozen=True)
class RecoveryMetadata(StageMetadata):
    ADDITIVE_KEYS: ClassVar[frozenset[str]] = frozenset({"defects"})
    WRITE_ONCE_KEYS: ClassVar[frozenset[str]] = (
        StageMetadata.WRITE_ONCE_KEYS | {"qc_request_id", "resolution"}
    )

    qc_request_id: str | None = None
    defects: list[dict[str, Any]] | None = None
    resolution: str | None = None


METADATA_TYPES: dict[RequestType, type[StageMetadata]] = {
    RequestType.PATTERN: PatternMetadata,
    RequestType.CUTTING: CuttingMetadata,
    RequestType.SEW: SewMetadata,
    RequestType.WASH: WashMetadata,
    RequestType.QC: QCMetadata,
    RequestType.FINISHING: FinishingMetadata,
    RequestType.PACKING: PackingMetadata,
    RequestType.MOVE: MoveMetadata,
    RequestType.RECOVERY: RecoveryMetadata,
}


def parse_metadata(
    request_type: RequestType, data: Mapping[str, Any] | None,
) -> StageMetadata:
    """Parse a JSON map into the request type's metadata struct."""
    return METADATA_TYPES[RequestType(request_type)].from_dict(data)


def merge_metadata(
    request_type: RequestType,
    existing: Mapping[str, Any] | None,
    update: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Merge ``update`` into ``existing`` under the type's rules; return the JSON map."""
    return parse_metadata(request_type, existing).merge(update).to_dict()


def metadata_value(data: Mapping[str, Any] | None, path: str) -> Any:
    """Read a dotted path (``"item_validation.validated_at"``) from a JSON map."""
    current: Any = data or {}
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current

"""
Action payload schemas.

Every (request type, action) pair has a frozen payload struct.  Raw caller
payloads (JSON maps) are parsed with ``parse_payload``; unknown keys,
missing required fields and wrongly typed values raise ``ValidationError``
before any state is read or written.

Field kinds are declared in dataclass field metadata::

    qr_code: str = field(metadata={"kind": "str"})     # required (no default)
    notes: str | None = _opt("str")                    # optional
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import MISSING, dataclass, field, fields
from typing import Any
from uuid import UUID

from garment_kernel.domain.request_lifecycle import RequestType
from garment_kernel.exceptions import ValidationError


def _req(kind: str, **extra: Any) -> Any:
    return field(metadata={"kind": kind, **extra})


def _opt(kind: str, **extra: Any) -> Any:
    return field(default=None, metadata={"kind": kind, **extra})


def _coerce(name: str, kind: str, value: Any, meta: Mapping[str, Any]) -> Any:
    if kind == "str":
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"'{name}' must be a non-empty string", field=name)
        return value.strip()
    if kind == "token":
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise ValidationError(f"'{name}' must be a string or integer", field=name)
        token = str(value).strip()
        if not token:
            raise ValidationError(f"'{name}' must not be empty", field=name)
        return token
    if kind == "int":
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(f"'{name}' must be a non-negative integer", field=name)
        return value
    if kind == "number":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"'{name}' must be a number", field=name)
        return value
    if kind == "bool":
        if not isinstance(value, bool):
            raise ValidationError(f"'{name}' must be true or false", field=name)
        return value
    if kind == "uuid":
        if isinstance(value, UUID):
            return value
        try:
            return UUID(str(value))
        except ValueError:
            raise ValidationError(f"'{name}' must be a UUID", field=name) from None
    if kind == "choice":
        choices = meta["choices"]
        if value not in choices:
            raise ValidationError(
                f"'{name}' must be one of {', '.join(choices)}", field=name,
            )
        return value
    if kind == "records":
        key = meta["record_key"]
        if not isinstance(value, list) or not value:
            raise ValidationError(f"'{name}' must be a non-empty list", field=name)
        for record in value:
            if not isinstance(record, Mapping) or not record.get(key):
                raise ValidationError(
                    f"Every entry of '{name}' must be an object with '{key}'",
                    field=name,
                )
        return [dict(r) for r in value]
    raise ValueError(f"Unknown payload field kind: {kind}")


@dataclass(frozen=True, kw_only=True)
class ActionPayload:
    """Base payload: every action accepts free-text ``notes``."""

    notes: str | None = _opt("str")

    @classmethod
    def parse(cls, data: Mapping[str, Any] | None) -> ActionPayload:
        data = dict(data or {})
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ValidationError(
                f"Unexpected payload fields: {', '.join(unknown)}", field=unknown[0],
            )
        values: dict[str, Any] = {}
        for name, f in known.items():
            required = f.default is MISSING and f.default_factory is MISSING
            raw = data.get(name)
            if raw is None:
                if required:
                    raise ValidationError(f"'{name}' is required", field=name)
                continue
            values[name] = _coerce(name, f.metadata["kind"], raw, f.metadata)
        return cls(**values)


@dataclass(frozen=True, kw_only=True)
class AssignPayload(ActionPayload):
    assigned_to: str = _req("str")


@dataclass(frozen=True, kw_only=True)
class ItemScanPayload(ActionPayload):
    qr_code: str = _req("str")


@dataclass(frozen=True, kw_only=True)
class BinScanPayload(ActionPayload):
    """A bin referenced by id or by its scanned code (exactly one)."""

    bin_id: UUID | None = _opt("uuid")
    bin_code: str | None = _opt("str")

    @classmethod
    def parse(cls, data):
        payload = super().parse(data)
        if (payload.bin_id is None) == (payload.bin_code is None):
            raise ValidationError("Exactly one of 'bin_id' or 'bin_code' is required",
                                  field="bin_id")
        return payload


@dataclass(frozen=True, kw_only=True)
class MaterialValidationPayload(ActionPayload):
    material_lot: str = _req("str")


@dataclass(frozen=True, kw_only=True)
class WashStartPayload(ActionPayload):
    wash_type: str = _req("str")
    temperature: float = _req("number")


@dataclass(frozen=True, kw_only=True)
class PatternCompletePayload(ActionPayload):
    sku: str | None = _opt("str")
    quantity: int | None = _opt("int")


@dataclass(frozen=True, kw_only=True)
class CuttingCompletePayload(ActionPayload):
    pieces_cut: int | None = _opt("int")
    target_wash: str | None = _opt("str")


@dataclass(frozen=True, kw_only=True)
class TargetWashPayload(ActionPayload):
    target_wash: str | None = _opt("str")


@dataclass(frozen=True, kw_only=True)
class MeasurementsPayload(ActionPayload):
    measurements: list[dict[str, Any]] = _req("records", record_key="name")


@dataclass(frozen=True, kw_only=True)
class DefectsPayload(ActionPayload):
    defects: list[dict[str, Any]] = _req("records", record_key="type")


@dataclass(frozen=True, kw_only=True)
class VisualInspectionPayload(ActionPayload):
    result: str = _req("str")


@dataclass(frozen=True, kw_only=True)
class QCCompletePayload(ActionPayload):
    passed: bool = _req("bool")
    defects: list[dict[str, Any]] | None = _opt("records", record_key="type")


@dataclass(frozen=True, kw_only=True)
class FinishingCompletePayload(ActionPayload):
    hem_length: str | None = _opt("token")


@dataclass(frozen=True, kw_only=True)
class PackingCompletePayload(ActionPayload):
    package_id: str | None = _opt("str")


RECOVERY_RESOLUTIONS = ("REPAIRED", "SCRAPPED")


@dataclass(frozen=True, kw_only=True)
class RecoveryCompletePayload(ActionPayload):
    resolution: str = _req("choice", choices=RECOVERY_RESOLUTIONS)


PAYLOAD_TYPES: dict[tuple[RequestType, str], type[ActionPayload]] = {
    (RequestType.PATTERN, "complete"): PatternCompletePayload,
    (RequestType.CUTTING, "validate_material"): MaterialValidationPayload,
    (RequestType.CUTTING, "complete"): CuttingCompletePayload,
    (RequestType.SEW, "complete"): TargetWashPayload,
    (RequestType.WASH, "validate_item"): ItemScanPayload,
    (RequestType.WASH, "start"): WashStartPayload,
    (RequestType.WASH, "assign_bin"): BinScanPayload,
    (RequestType.WASH, "complete"): TargetWashPayload,
    (RequestType.QC, "record_measurements"): MeasurementsPayload,
    (RequestType.QC, "record_defects"): DefectsPayload,
    (RequestType.QC, "record_visual_inspection"): VisualInspectionPayload,
    (RequestType.QC, "complete"): QCCompletePayload,
    (RequestType.FINISHING, "complete"): FinishingCompletePayload,
    (RequestType.PACKING, "complete"): PackingCompletePayload,
    (RequestType.MOVE, "validate_item"): ItemScanPayload,
    (RequestType.MOVE, "validate_destination"): BinScanPayload,
    (RequestType.RECOVERY, "complete"): RecoveryCompletePayload,
}


def parse_payload(
    request_type: RequestType, action: str, data: Mapping[str, Any] | None,
) -> ActionPayload:
    """Parse a raw payload for (type, action); ``assign`` is shared by all types."""
    if action == "assign":
        return AssignPayload.parse(data)
    return PAYLOAD_TYPES.get((request_type, action), ActionPayload).parse(data)

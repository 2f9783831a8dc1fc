"""
Cutting fan-out planning.

Pure function that turns a cutting request's sku lines into the list of sew
units to create.  One unit per cut piece: a line ``{"sku": "A", "quantity": 3}``
yields units 1, 2 and 3 of 3 for sku A.  When the line carries ``item_ids``
(pre-registered garments from a pattern request) each unit is paired with
the item at the same position.

Reconciliation modes
--------------------
strict (default)
    Every line needs a non-empty sku and a positive integer quantity,
    ``item_ids`` (if present) must have exactly ``quantity`` entries, and
    ``pieces_cut`` (if reported) must equal the total number of units.
loose
    Lines with a zero quantity are skipped, surplus ``item_ids`` are ignored
    and missing ones leave units unpaired; ``pieces_cut`` is informational.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from garment_kernel.exceptions import ValidationError


@dataclass(frozen=True)
class SewUnit:
    sku: str
    unit_number: int
    total_units: int
    item_id: str | None = None


def plan_sew_fanout(
    sku_lines: Sequence[Mapping[str, Any]] | None,
    *,
    strict: bool = True,
    pieces_cut: int | None = None,
) -> list[SewUnit]:
    """Plan one sew unit per cut piece across all sku lines.

    Raises:
        ValidationError: Malformed lines, or a reconciliation mismatch in
            strict mode.
    """
    if not sku_lines:
        raise ValidationError("Cutting request has no sku lines", field="skus")

    units: list[SewUnit] = []
    for index, line in enumerate(sku_lines):
        if not isinstance(line, Mapping):
            raise ValidationError(f"skus[{index}] must be an object", field="skus")
        sku = line.get("sku")
        quantity = line.get("quantity")
        if not isinstance(sku, str) or not sku:
            raise ValidationError(f"skus[{index}].sku is required", field="skus")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise ValidationError(
                f"skus[{index}].quantity must be a non-negative integer",
                field="skus",
            )
        if quantity == 0:
            if strict:
                raise ValidationError(
                    f"skus[{index}].quantity must be positive", field="skus",
                )
            continue

        item_ids = list(line.get("item_ids") or [])
        if strict and item_ids and len(item_ids) != quantity:
            raise ValidationError(
                f"skus[{index}] lists {len(item_ids)} item_ids for quantity {quantity}",
                field="skus",
            )

        for n in range(1, quantity + 1):
            item_id = str(item_ids[n - 1]) if n <= len(item_ids) else None
            units.append(
                SewUnit(sku=sku, unit_number=n, total_units=quantity, item_id=item_id)
            )

    if strict and pieces_cut is not None and pieces_cut != len(units):
        raise ValidationError(
            f"pieces_cut={pieces_cut} does not match the {len(units)} units requested",
            field="pieces_cut",
        )
    return units

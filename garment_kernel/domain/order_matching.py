"""
Order line matching rules.

An order line asks for ``quantity`` garments of one finished sku.  Each unit
is met by the first rule that applies:

exact
    An uncommitted garment already carrying the sku.
universal
    An uncommitted garment of the same style, waist and shape in the raw
    base wash the target wash is produced from, at least as long as the
    target (finishing hems it down).  It still has to be washed.
production
    Nothing on hand.  A pattern is cut for new garments in the base wash at
    the standard production length.

The functions here are pure; ``WorkflowEngine.process_order`` does the
lookups and writes.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from garment_kernel.domain.sku import SKU_SEPARATOR, Sku, WashMapping, parse_sku
from garment_kernel.exceptions import ValidationError

UNIVERSAL_PRODUCTION_LENGTH = "36"

_LINE_KEYS = frozenset({"sku", "quantity"})


@dataclass(frozen=True)
class OrderLine:
    sku: str
    quantity: int = 1


def parse_order_lines(lines: Iterable[Mapping[str, Any]] | None) -> list[OrderLine]:
    """Validate raw order lines.

    Raises:
        ValidationError: No lines, unknown keys, an unstructured sku or a
            quantity that is not a positive integer.
    """
    parsed: list[OrderLine] = []
    for index, line in enumerate(lines or ()):
        if not isinstance(line, Mapping):
            raise ValidationError(f"lines[{index}] must be an object", field="lines")
        unknown = sorted(set(line) - _LINE_KEYS)
        if unknown:
            raise ValidationError(
                f"lines[{index}] has unknown keys: {', '.join(unknown)}", field="lines",
            )
        sku = str(parse_sku(line.get("sku")))
        quantity = line.get("quantity", 1)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError(
                f"lines[{index}].quantity must be a positive integer", field="lines",
            )
        parsed.append(OrderLine(sku=sku, quantity=quantity))
    if not parsed:
        raise ValidationError("Order has no lines to process", field="lines")
    return parsed


def universal_wash(target: Sku, mappings: Mapping[str, WashMapping]) -> str:
    """The raw base wash a garment must be in to be washed into ``target``.

    A target already in a base wash is its own base.

    Raises:
        ValidationError: The target wash is neither a known wash nor a base.
    """
    mapping = mappings.get(target.wash)
    if mapping is not None:
        return mapping.base
    if target.wash in {m.base for m in mappings.values()}:
        return target.wash
    raise ValidationError(
        f"Unknown wash code {target.wash!r}; expected one of {sorted(mappings)}",
        field="sku",
    )


def universal_prefix(target: Sku) -> str:
    return SKU_SEPARATOR.join((target.style, target.waist, target.shape)) + SKU_SEPARATOR


def length_covers(length: str, target_length: str) -> bool:
    """Whether a garment of ``length`` can be hemmed to ``target_length``."""
    if length.isdigit() and target_length.isdigit():
        return int(length) >= int(target_length)
    return length == target_length


def is_universal_candidate(
    candidate_sku: str, target: Sku, mappings: Mapping[str, WashMapping],
) -> bool:
    try:
        candidate = parse_sku(candidate_sku)
    except ValidationError:
        return False
    return (
        (candidate.style, candidate.waist, candidate.shape)
        == (target.style, target.waist, target.shape)
        and candidate.wash == universal_wash(target, mappings)
        and length_covers(candidate.length, target.length)
    )


def production_sku(
    target: Sku,
    mappings: Mapping[str, WashMapping],
    length: str = UNIVERSAL_PRODUCTION_LENGTH,
) -> str:
    """The universal sku cut for a target nothing on hand can cover."""
    return str(target.with_length(length).with_wash(universal_wash(target, mappings)))

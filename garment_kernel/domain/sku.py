"""
Structured SKU codec.

A garment SKU has five dash-separated segments::

    style-waist-shape-length-wash      e.g.  JN01-32-SLM-30-RAW

Washing rewrites the wash segment and finishing (hemming) rewrites the
length segment.  Items created from free-form pattern SKUs may not be
structured; ``parse_sku`` rejects those and callers decide whether that is
an error for their stage.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from garment_kernel.exceptions import SkuMismatchError, ValidationError

SKU_SEPARATOR = "-"
SKU_SEGMENTS = ("style", "waist", "shape", "length", "wash")


@dataclass(frozen=True)
class Sku:
    style: str
    waist: str
    shape: str
    length: str
    wash: str

    def __str__(self) -> str:
        return SKU_SEPARATOR.join(
            (self.style, self.waist, self.shape, self.length, self.wash)
        )

    def with_wash(self, wash: str) -> Sku:
        return replace(self, wash=wash)

    def with_length(self, length: str) -> Sku:
        return replace(self, length=length)


@dataclass(frozen=True)
class WashMapping:
    """A finished wash code and the raw base it is produced from."""

    code: str
    base: str
    shade: str


DEFAULT_WASH_MAPPINGS: dict[str, WashMapping] = {
    "STA": WashMapping(code="STA", base="RAW", shade="light"),
    "IND": WashMapping(code="IND", base="RAW", shade="light"),
    "ONX": WashMapping(code="ONX", base="BRW", shade="dark"),
    "JAG": WashMapping(code="JAG", base="BRW", shade="dark"),
}


def is_structured_sku(value: str) -> bool:
    parts = value.split(SKU_SEPARATOR)
    return len(parts) == len(SKU_SEGMENTS) and all(parts)


def parse_sku(value: str) -> Sku:
    """Parse a structured SKU.

    Raises:
        ValidationError: If the value does not have five non-empty segments.
    """
    if not isinstance(value, str) or not is_structured_sku(value):
        raise ValidationError(
            f"SKU {value!r} is not structured as "
            f"{SKU_SEPARATOR.join(SKU_SEGMENTS)}",
            field="sku",
        )
    return Sku(*value.split(SKU_SEPARATOR))


def rewrite_wash(
    sku: str,
    target_wash: str,
    mappings: dict[str, WashMapping] | None = None,
) -> str:
    """Return ``sku`` with its wash segment replaced by ``target_wash``.

    The target must be a known wash code.  When the current wash segment is
    one of the raw base codes, it must be the base the target is produced from.

    Raises:
        ValidationError: Unstructured SKU or unknown wash code.
        SkuMismatchError: Target wash is not produced from the current base.
    """
    table = mappings if mappings is not None else DEFAULT_WASH_MAPPINGS
    parsed = parse_sku(sku)
    mapping = table.get(target_wash)
    if mapping is None:
        raise ValidationError(
            f"Unknown wash code {target_wash!r}; expected one of {sorted(table)}",
            field="target_wash",
        )
    bases = {m.base for m in table.values()}
    if parsed.wash in bases and parsed.wash != mapping.base:
        raise SkuMismatchError(expected=mapping.base, actual=parsed.wash)
    return str(parsed.with_wash(mapping.code))


def rewrite_length(sku: str, length: str) -> str:
    """Return ``sku`` with its length segment replaced (hemming)."""
    if not length or SKU_SEPARATOR in length:
        raise ValidationError(f"Invalid hem length {length!r}", field="hem_length")
    return str(parse_sku(sku).with_length(length))

"""Pure rewriting of monetary fields at an exchange rate."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from academy_currency.domain.conversions import split_field_path


@dataclass(frozen=True)
class FieldConversion:
    """New values to write and the values they replace, keyed by field path."""

    updates: dict[str, int] = field(default_factory=dict)
    original_values: dict[str, int | float] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.updates


def read_path(document: Mapping[str, Any], path: str) -> Any:
    """Value at a dotted path, or None when any segment is missing."""
    value: Any = document
    for part in split_field_path(path):
        if not isinstance(value, Mapping) or part not in value:
            return None
        value = value[part]
    return value


def monetary_value(document: Mapping[str, Any], path: str) -> int | float | None:
    """Return the field's value only if it is a finite positive number."""
    value = read_path(document, path)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if value <= 0:
        return None
    return value


def convert_amount(value: int | float, rate: Decimal) -> int:
    """Multiply and round half away from zero to an integer amount."""
    product = Decimal(str(value)) * rate
    return int(product.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def convert_fields(
    document: Mapping[str, Any], fields: Sequence[str], rate: Decimal
) -> FieldConversion:
    """Convert every eligible listed field of ``document``.

    Absent, non-numeric, zero and negative fields are left out of both
    mappings.
    """
    updates: dict[str, int] = {}
    original_values: dict[str, int | float] = {}
    for path in fields:
        value = monetary_value(document, path)
        if value is None:
            continue
        original_values[path] = value
        updates[path] = convert_amount(value, rate)
    return FieldConversion(updates=updates, original_values=original_values)

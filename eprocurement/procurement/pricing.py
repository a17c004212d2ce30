from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from eprocurement.errors import ValidationError
from eprocurement.ui_strings import field_message


@dataclass(frozen=True)
class PricedItem:
    item_name: str
    description: str | None
    quantity: float
    unit_price: float
    total_price: float


@dataclass(frozen=True)
class ProposalTotals:
    items: List[PricedItem] = field(default_factory=list)
    subtotal: float = 0.0
    fee_percentage: float = 0.0
    fee_amount: float = 0.0
    total_amount: float = 0.0


def finite_float(value: Any) -> float | None:
    """Parse a number; blanks, booleans, NaN and infinities read as None."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def item_total(quantity: float, unit_price: float) -> float:
    return float(quantity) * float(unit_price)


def fee_amount(subtotal: float, fee_percentage: float | None) -> float:
    return float(subtotal) * float(fee_percentage or 0.0) / 100.0


def normalize_items(raw_items: Iterable[Dict[str, Any]] | None) -> List[PricedItem]:
    """Drop unnamed lines, default quantity to 1 and price each line; bad numbers raise."""
    items: List[PricedItem] = []
    errors: Dict[str, str] = {}
    for idx, raw in enumerate(raw_items or []):
        if not isinstance(raw, dict):
            continue
        name = str(raw.get("item_name") or raw.get("name") or "").strip()
        if not name:
            continue
        quantity = finite_float(raw.get("quantity"))
        if raw.get("quantity") in (None, ""):
            quantity = 1.0
        if quantity is None or quantity <= 0:
            errors[f"items[{idx}].quantity"] = field_message("quantity")
            continue
        unit_price = finite_float(raw.get("unit_price"))
        if unit_price is None or unit_price < 0:
            errors[f"items[{idx}].unit_price"] = field_message("unit_price")
            continue
        total_price = item_total(quantity, unit_price)
        if not math.isfinite(total_price):
            errors[f"items[{idx}].unit_price"] = field_message("unit_price")
            continue
        description = str(raw.get("description") or "").strip() or None
        items.append(
            PricedItem(
                item_name=name,
                description=description,
                quantity=quantity,
                unit_price=unit_price,
                total_price=total_price,
            )
        )
    if errors:
        raise ValidationError(code="validation_error", fields=errors)
    return items


def compute_totals(items: Iterable[PricedItem], fee_percentage: float | None) -> ProposalTotals:
    priced = list(items)
    subtotal = sum(item.total_price for item in priced)
    fee = fee_amount(subtotal, fee_percentage)
    if not math.isfinite(subtotal + fee):
        raise ValidationError(code="validation_error", fields={"items": field_message("unit_price")})
    return ProposalTotals(
        items=priced,
        subtotal=subtotal,
        fee_percentage=float(fee_percentage or 0.0),
        fee_amount=fee,
        total_amount=subtotal + fee,
    )


def has_priced_item(items: Iterable[PricedItem]) -> bool:
    return any(item.item_name and item.unit_price > 0 for item in items)


def _item_key(name: str | None) -> str:
    return " ".join(str(name or "").lower().split())


def price_increases(previous_items: Iterable[Dict[str, Any]], items: Iterable[PricedItem]) -> List[Dict[str, Any]]:
    previous_prices: Dict[str, float] = {}
    for row in previous_items:
        key = _item_key(row.get("item_name"))
        if key:
            previous_prices[key] = float(row.get("unit_price") or 0.0)

    increases: List[Dict[str, Any]] = []
    for item in items:
        key = _item_key(item.item_name)
        previous = previous_prices.get(key)
        if previous is not None and item.unit_price > previous:
            increases.append(
                {"item_name": item.item_name, "previous_unit_price": previous, "unit_price": item.unit_price}
            )
    return increases


def is_lowest_total(candidate_total: float, other_totals: Iterable[float]) -> bool:
    # Ties count as lowest.
    return all(float(candidate_total) <= float(total) for total in other_totals)

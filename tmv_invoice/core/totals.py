# tmv_invoice/core/totals.py

from typing import Any, Iterable

from tmv_invoice.core.utils import to_number
from tmv_invoice.models import Totals


def _field(item: Any, name: str, alias: str) -> Any:
    if isinstance(item, dict):
        return item.get(name, item.get(alias))
    return getattr(item, name, None)


def line_total(item: Any) -> float:
    """quantity * unit_price, with absent or unparseable values counted as 0."""
    quantity = to_number(_field(item, "quantity", "quantity"))
    unit_price = to_number(_field(item, "unit_price", "unitPrice"))
    return quantity * unit_price


def compute_totals(items: Iterable[Any], discount_percent: Any = 0, delivery_fee: Any = 0) -> Totals:
    """
    Derives subtotal, discount amount and grand total for a set of line items.

    Pure and never raises: items may be models or plain dicts (snake_case or
    camelCase keys), and missing numbers are treated as 0. The total is not
    floored at zero and nothing is rounded.
    """
    subtotal = sum((line_total(item) for item in items or ()), 0.0)
    discount_amount = subtotal * to_number(discount_percent) / 100
    total = subtotal - discount_amount + to_number(delivery_fee)
    return Totals(subtotal=subtotal, discount_amount=discount_amount, total=total)

# tmv_invoice/core/draft.py

import logging
import uuid
from typing import Any, List, Optional

from pydantic import ValidationError

from tmv_invoice.core.finalizer import draft_problems
from tmv_invoice.core.totals import compute_totals
from tmv_invoice.core.utils import to_amount, to_number, to_quantity
from tmv_invoice.models import Customer, LineItem, OrderDraft, ParsedOrder, Totals

logger = logging.getLogger(__name__)

# Editable item fields, keyed by both their Python and JSON names
_ITEM_FIELDS = {
    "description": "description",
    "quantity": "quantity",
    "unit_price": "unit_price",
    "unitPrice": "unit_price",
}


def new_item_id() -> str:
    return uuid.uuid4().hex


def blank_item() -> LineItem:
    return LineItem(id=new_item_id(), description="", quantity=1, unit_price=0.0)


def empty_draft() -> OrderDraft:
    return OrderDraft(items=[blank_item()])


def _coerce_item_value(field: str, value: Any) -> Any:
    if field == "quantity":
        return to_quantity(value)
    if field == "unit_price":
        return to_amount(value)
    return "" if value is None else str(value)


class OrderDraftManager:
    """
    Owns the single order being composed. Every edit goes through here so the
    draft always keeps at least one item row.
    """

    def __init__(self, draft: Optional[OrderDraft] = None):
        self.draft = draft if draft is not None else empty_draft()
        if not self.draft.items:
            self.draft.items.append(blank_item())

    # --- Items ---

    def add_item(self) -> LineItem:
        item = blank_item()
        self.draft.items.append(item)
        return item

    def find_item(self, item_id: str) -> Optional[LineItem]:
        return next((item for item in self.draft.items if item.id == item_id), None)

    def update_item(self, item_id: str, field: str, value: Any) -> Optional[LineItem]:
        """
        Replaces one field of the item with `item_id`. Numeric fields fall back
        to 0 when `value` cannot be parsed.

        Returns:
            The updated item, or None when no item has that id.

        Raises:
            ValueError: If `field` is not an editable item field.
        """
        attribute = _ITEM_FIELDS.get(field)
        if attribute is None:
            raise ValueError(f"Unknown item field '{field}'. Expected one of: description, quantity, unitPrice.")

        item = self.find_item(item_id)
        if item is None:
            return None
        setattr(item, attribute, _coerce_item_value(attribute, value))
        return item

    def remove_item(self, item_id: str) -> bool:
        if len(self.draft.items) <= 1:
            return False
        remaining = [item for item in self.draft.items if item.id != item_id]
        if len(remaining) == len(self.draft.items):
            return False
        self.draft.items = remaining
        return True

    # --- Order fields ---

    def update_customer(self, name: Optional[str] = None, phone: Optional[str] = None,
                        address: Optional[str] = None) -> Customer:
        customer = self.draft.customer
        if name is not None:
            customer.name = name
        if phone is not None:
            customer.phone = phone
        if address is not None:
            customer.address = address
        return customer

    def set_delivery_fee(self, value: Any):
        self.draft.delivery_fee = to_amount(value)

    def set_discount_percent(self, value: Any):
        self.draft.discount_percent = to_number(value)

    def set_notes(self, notes: Optional[str]):
        self.draft.notes = notes or ""

    # --- Parser output ---

    def apply_parsed_result(self, partial: Any) -> bool:
        """
        Merges a parser result into the draft.

        A field overwrites the draft only when it is present and not None, so a
        parsed 0 or "" does replace the current value. An empty item list counts
        as absent because the draft must keep at least one row.

        Args:
            partial: A ParsedOrder, or the raw dict the parser produced.

        Returns:
            bool: True if anything was applied. On False the draft is untouched.
        """
        if partial is None:
            return False
        if not isinstance(partial, ParsedOrder):
            if not isinstance(partial, dict):
                logger.warning("Ignoring parser result of type %s", type(partial).__name__)
                return False
            try:
                partial = ParsedOrder.model_validate(partial)
            except ValidationError as e:
                logger.warning("Ignoring unparseable parser result: %s", e)
                return False

        applied = False

        if partial.customer is not None:
            for field in ("name", "phone", "address"):
                value = getattr(partial.customer, field)
                if value is not None:
                    setattr(self.draft.customer, field, str(value))
                    applied = True

        if partial.items:
            self.draft.items = [
                LineItem(
                    id=new_item_id(),
                    description="" if parsed.description is None else str(parsed.description),
                    quantity=to_quantity(parsed.quantity),
                    unit_price=to_amount(parsed.unit_price),
                )
                for parsed in partial.items
            ]
            applied = True

        if partial.delivery_fee is not None:
            self.set_delivery_fee(partial.delivery_fee)
            applied = True

        if partial.discount_percent is not None:
            self.set_discount_percent(partial.discount_percent)
            applied = True

        if partial.notes is not None:
            self.draft.notes = partial.notes
            applied = True

        return applied

    # --- Derived state ---

    def totals(self) -> Totals:
        return compute_totals(self.draft.items, self.draft.discount_percent, self.draft.delivery_fee)

    def validation_errors(self) -> List[str]:
        """Everything that currently blocks finalization, in form order."""
        return draft_problems(self.draft)

    def snapshot(self) -> OrderDraft:
        return self.draft.model_copy(deep=True)

    def reset(self) -> OrderDraft:
        self.draft = empty_draft()
        return self.draft

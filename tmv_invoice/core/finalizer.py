# tmv_invoice/core/finalizer.py

import logging
import random
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from tmv_invoice.config import INVOICE_NUMBER_PREFIX
from tmv_invoice.core.errors import FinalizationError
from tmv_invoice.core.totals import compute_totals, line_total
from tmv_invoice.models import CustomerSnapshot, Invoice, InvoiceLineItem, InvoiceStatus, OrderDraft

logger = logging.getLogger(__name__)


def generate_invoice_number(now_ms: Optional[int] = None, rand: Optional[int] = None) -> str:
    """
    Builds a display identifier such as 'TMV-482913-007': the last six digits
    of the current epoch milliseconds and a zero-padded random 0-999.
    Not collision-free; the format is what counts.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    if rand is None:
        rand = random.randint(0, 999)
    timestamp = str(now_ms)[-6:].zfill(6)
    return f"{INVOICE_NUMBER_PREFIX}-{timestamp}-{rand % 1000:03d}"


def draft_problems(draft: OrderDraft) -> list:
    problems = []
    if not draft.customer.name or not draft.customer.name.strip():
        problems.append("Customer name is required.")
    if not draft.items:
        problems.append("At least one item is required.")
    for position, item in enumerate(draft.items, start=1):
        if not item.description or not item.description.strip():
            problems.append(f"Item {position} needs a description.")
    return problems


def finalize(draft: OrderDraft, now: Optional[datetime] = None) -> Invoice:
    """
    Turns a draft into an immutable invoice.

    Customer and items are copied, so later edits to the draft never reach the
    invoice. Line totals and order totals are computed here once and frozen.

    Args:
        draft (OrderDraft): The order being finalized.
        now (datetime): Creation time; defaults to the current UTC time.

    Returns:
        Invoice: A new invoice with status 'pending'.

    Raises:
        FinalizationError: If the customer name or any item description is blank.
    """
    problems = draft_problems(draft)
    if problems:
        raise FinalizationError(problems)

    now = now or datetime.now(timezone.utc)
    totals = compute_totals(draft.items, draft.discount_percent, draft.delivery_fee)

    invoice = Invoice(
        id=uuid.uuid4().hex,
        invoice_number=generate_invoice_number(now_ms=int(now.timestamp() * 1000)),
        date=now.isoformat(),
        customer=CustomerSnapshot.model_validate(draft.customer.model_dump()),
        items=tuple(
            InvoiceLineItem(
                id=item.id,
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total=line_total(item),
            )
            for item in draft.items
        ),
        subtotal=totals.subtotal,
        discount_percent=draft.discount_percent,
        discount_amount=totals.discount_amount,
        delivery_fee=draft.delivery_fee,
        total_amount=totals.total,
        status=InvoiceStatus.PENDING,
        notes=draft.notes or None,
    )
    logger.info("Finalized invoice %s for %s: total %.2f", invoice.invoice_number, invoice.customer.name, invoice.total_amount)
    return invoice

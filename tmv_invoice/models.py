# tmv_invoice/models.py

from enum import Enum
from typing import Any, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    Base model serializing to the camelCase layout used by the API and the
    persisted invoice collection, while accepting snake_case on input too.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class Customer(CamelModel):
    """
    Customer details, embedded by value in every invoice.
    """
    name: str = Field("", description="Customer name, required for finalization.")
    phone: str = Field("", description="Customer phone number; digits expected but not enforced.")
    address: Optional[str] = Field(None, description="Delivery or billing address.")


class LineItem(CamelModel):
    """
    Represents a single product row of an order draft.
    """
    id: str = Field(..., description="Token unique within the draft.")
    description: str = Field("", description="Cement brand and grade, e.g. 'Dangote 42.5R'.")
    quantity: int = Field(1, ge=0, description="Number of bags.")
    unit_price: float = Field(0.0, ge=0, description="Price per bag.")


class InvoiceLineItem(LineItem):
    """
    A line item frozen into an invoice. `total` is quantity * unit_price at
    finalization time and is never recomputed.
    """
    model_config = ConfigDict(frozen=True)

    # Older records may carry fractional quantities
    quantity: Union[int, float] = Field(1, ge=0, description="Number of bags.")
    total: float = Field(0.0, description="Frozen line total.")


class CustomerSnapshot(Customer):
    """Customer details as they were when the invoice was finalized."""
    model_config = ConfigDict(frozen=True)


class OrderDraft(CamelModel):
    """
    Mutable working state of an order before it is finalized.
    """
    customer: Customer = Field(default_factory=Customer)
    items: List[LineItem] = Field(default_factory=list)
    delivery_fee: float = Field(0.0, ge=0)
    discount_percent: float = Field(0.0, description="0-100 expected, not enforced.")
    notes: str = ""


class Totals(CamelModel):
    subtotal: float
    discount_amount: float
    total: float


class Invoice(CamelModel):
    """
    Immutable snapshot of a finalized order. Only `status` ever changes, and
    only by the store replacing the record with a copy.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    invoice_number: str
    date: str = Field(..., description="Creation timestamp, ISO 8601.")
    customer: CustomerSnapshot
    items: Tuple[InvoiceLineItem, ...] = ()
    subtotal: float = 0.0
    discount_percent: float = 0.0
    discount_amount: float = 0.0
    delivery_fee: float = 0.0
    total_amount: float = 0.0
    status: InvoiceStatus = InvoiceStatus.PENDING
    notes: Optional[str] = None


# --- Partial results returned by the order parser ---
# Every field is optional: absence means "leave the draft value unchanged".

class ParsedModel(CamelModel):
    # Models often return phone numbers as JSON numbers
    model_config = ConfigDict(coerce_numbers_to_str=True)


class ParsedCustomer(ParsedModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class ParsedItem(ParsedModel):
    description: Optional[str] = None
    quantity: Optional[Any] = None
    unit_price: Optional[Any] = None


class ParsedOrder(ParsedModel):
    customer: Optional[ParsedCustomer] = None
    items: Optional[List[ParsedItem]] = None
    delivery_fee: Optional[Any] = None
    discount_percent: Optional[Any] = None
    notes: Optional[str] = None


# --- API request bodies ---

class ItemUpdate(CamelModel):
    field: str = Field(..., description="One of description, quantity, unitPrice.")
    value: Any = None


class DraftUpdate(CamelModel):
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    delivery_fee: Optional[Any] = None
    discount_percent: Optional[Any] = None
    notes: Optional[str] = None


class StatusUpdate(CamelModel):
    status: InvoiceStatus


class ParseTextRequest(CamelModel):
    text: str = Field(..., description="Free-form order, e.g. '50 bags of Dangote to John 08012345678, delivery 15k'.")

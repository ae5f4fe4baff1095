"""Shared fixtures for the invoicing test suite."""

from datetime import datetime, timezone
from typing import Callable

import pytest

from tmv_invoice.core.draft import OrderDraftManager
from tmv_invoice.core.finalizer import finalize
from tmv_invoice.core.store import InvoiceStore
from tmv_invoice.models import Invoice
from tmv_invoice.services.storage_service import InMemorySlotBackend

FIXED_NOW = datetime(2025, 3, 14, 9, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def manager() -> OrderDraftManager:
    """Fresh draft with one blank row."""
    return OrderDraftManager()


@pytest.fixture
def filled_manager() -> OrderDraftManager:
    """Draft matching a typical order: two brands, a delivery fee and a 2% discount."""
    manager = OrderDraftManager()
    manager.update_customer(name="John Okafor", phone="+234 801-234-5678", address="12 Allen Avenue, Ikeja")
    first = manager.draft.items[0]
    manager.update_item(first.id, "description", "BUA 42.5R")
    manager.update_item(first.id, "quantity", 10)
    manager.update_item(first.id, "unitPrice", 8500)
    second = manager.add_item()
    manager.update_item(second.id, "description", "Dangote 42.5R")
    manager.update_item(second.id, "quantity", 5)
    manager.update_item(second.id, "unitPrice", 9000)
    manager.set_discount_percent(2)
    manager.set_delivery_fee(5000)
    return manager


@pytest.fixture
def make_invoice() -> Callable[..., Invoice]:
    """Factory finalizing a one-line order for `name`."""
    def _make(name: str = "Ada", quantity: int = 50, unit_price: float = 9000, delivery_fee: float = 15000) -> Invoice:
        manager = OrderDraftManager()
        manager.update_customer(name=name, phone="08012345678")
        item = manager.draft.items[0]
        manager.update_item(item.id, "description", "Dangote 42.5R")
        manager.update_item(item.id, "quantity", quantity)
        manager.update_item(item.id, "unit_price", unit_price)
        manager.set_delivery_fee(delivery_fee)
        return finalize(manager.draft, now=FIXED_NOW)
    return _make


@pytest.fixture
def memory_backend() -> InMemorySlotBackend:
    return InMemorySlotBackend()


@pytest.fixture
def store(memory_backend: InMemorySlotBackend) -> InvoiceStore:
    return InvoiceStore(memory_backend)

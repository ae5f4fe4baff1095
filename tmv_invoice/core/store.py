# tmv_invoice/core/store.py

import json
import logging
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError

from tmv_invoice.core.errors import StorageWriteError
from tmv_invoice.models import Invoice, InvoiceStatus
from tmv_invoice.services.storage_service import SlotBackend

logger = logging.getLogger(__name__)

_STATUSES = {status.value for status in InvoiceStatus}


def _load_records(raw: Optional[bytes]) -> List[Any]:
    """
    Decodes the persisted collection into Invoice objects. A record that does
    not validate is kept as the raw JSON value it was read as, so it is
    written back unchanged instead of being lost. An unreadable slot
    degrades to an empty collection.
    """
    if not raw:
        return []
    try:
        records = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as e:
        logger.error("Invoice collection is corrupted, starting empty: %s", e)
        return []
    if not isinstance(records, list):
        logger.error("Invoice collection is not a JSON array, starting empty.")
        return []

    entries = []
    for position, record in enumerate(records):
        if not isinstance(record, dict):
            logger.warning("Keeping unreadable invoice record %d as is: not an object", position)
            entries.append(record)
            continue
        # Records written by older versions may carry statuses we no longer know
        candidate = record
        if record.get("status") not in _STATUSES:
            candidate = {**record, "status": InvoiceStatus.PENDING.value}
        try:
            entries.append(Invoice.model_validate(candidate))
        except ValidationError as e:
            logger.warning("Keeping unreadable invoice record %d as is: %s", position, e)
            entries.append(record)
    return entries


def _serialize(entry: Any) -> Any:
    if isinstance(entry, Invoice):
        return entry.model_dump(mode="json", by_alias=True)
    return entry


class InvoiceStore:
    """
    Newest-first collection of finalized invoices.

    Every mutation rewrites the whole collection to the backend slot. The
    in-memory list changes only after that write succeeds, so a failed write
    never leaves memory and disk disagreeing. Records that could not be read
    stay in the slot at their position but are not listed.
    """

    def __init__(self, backend: SlotBackend):
        self.backend = backend
        try:
            raw = backend.read()
        except Exception as e:
            logger.error("Could not read invoice collection from %s backend, starting empty: %s", backend.name, e)
            raw = None
        self._entries: List[Any] = _load_records(raw)
        logger.info("Invoice store loaded %d invoice(s) from %s backend", len(self.list()), backend.name)

    def _persist(self, entries: List[Any]):
        payload = json.dumps([_serialize(entry) for entry in entries], ensure_ascii=False).encode("utf-8")
        try:
            self.backend.write(payload)
        except Exception as e:
            logger.error("Failed to persist invoice collection: %s", e)
            raise StorageWriteError(f"Failed to persist invoice collection: {e}") from e
        self._entries = entries

    def list(self) -> Tuple[Invoice, ...]:
        return tuple(entry for entry in self._entries if isinstance(entry, Invoice))

    def get(self, invoice_id: str) -> Optional[Invoice]:
        return next((invoice for invoice in self.list() if invoice.id == invoice_id), None)

    def insert(self, invoice: Invoice) -> Invoice:
        self._persist([invoice, *self._entries])
        logger.info("Stored invoice %s", invoice.invoice_number)
        return invoice

    def update_status(self, invoice_id: str, status: InvoiceStatus) -> Optional[Invoice]:
        """
        Replaces the status of one invoice. Any status may move to any other.

        Returns:
            The updated invoice, or None (and no write) if the id is unknown.
        """
        status = InvoiceStatus(status)
        for index, entry in enumerate(self._entries):
            if isinstance(entry, Invoice) and entry.id == invoice_id:
                updated = entry.model_copy(update={"status": status})
                entries = list(self._entries)
                entries[index] = updated
                self._persist(entries)
                logger.info("Invoice %s marked %s", entry.invoice_number, status.value)
                return updated
        return None

    def remove(self, invoice_id: str) -> bool:
        remaining = [
            entry for entry in self._entries
            if not (isinstance(entry, Invoice) and entry.id == invoice_id)
        ]
        if len(remaining) == len(self._entries):
            return False
        self._persist(remaining)
        logger.info("Deleted invoice %s", invoice_id)
        return True

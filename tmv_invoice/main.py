# tmv_invoice/main.py

import logging
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile, status
from fastapi.responses import Response

from tmv_invoice.config import LOG_LEVEL, LOAD_MODEL_ON_STARTUP, SHARE_LINK_EXPIRY_HOURS
from tmv_invoice.core.draft import OrderDraftManager
from tmv_invoice.core.errors import (
    ExportError, FinalizationError, ParserBusyError, ParserError, ParserUnavailableError,
    StorageWriteError,
)
from tmv_invoice.core.finalizer import finalize
from tmv_invoice.core.store import InvoiceStore
from tmv_invoice.core.utils import check_model_devices
from tmv_invoice.models import DraftUpdate, Invoice, ItemUpdate, ParsedOrder, ParseTextRequest, StatusUpdate
from tmv_invoice.services import llm_service
from tmv_invoice.services.image_service import render_invoice_png
from tmv_invoice.services.pdf_service import export_filename, render_invoice_pdf
from tmv_invoice.services.share_service import invoice_summary_text, telegram_link, whatsapp_link
from tmv_invoice.services.storage_service import build_slot_backend, share_export

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Threm Multilinks Invoice Backend",
    description="Compose cement orders by hand, text or voice, finalize them into invoices, and export or share them.",
    version="0.1.0"
)

EXPORT_FORMATS = {
    "pdf": (render_invoice_pdf, "application/pdf"),
    "png": (render_invoice_png, "image/png"),
}
EXPORT_FALLBACK_HINT = "Please try printing the invoice to PDF or taking a screenshot instead."

# Single-user process: one draft, one invoice collection, one parser.
_draft_manager: Optional[OrderDraftManager] = None
_invoice_store: Optional[InvoiceStore] = None
_order_parser: Optional[llm_service.OrderParser] = None


def get_draft_manager() -> OrderDraftManager:
    global _draft_manager
    if _draft_manager is None:
        _draft_manager = OrderDraftManager()
    return _draft_manager


def get_invoice_store() -> InvoiceStore:
    global _invoice_store
    if _invoice_store is None:
        _invoice_store = InvoiceStore(build_slot_backend())
    return _invoice_store


def get_order_parser() -> llm_service.OrderParser:
    global _order_parser
    if _order_parser is None:
        _order_parser = llm_service.OrderParser()
    return _order_parser


@app.on_event("startup")
async def startup_event():
    """
    Opens the invoice store and, unless disabled, loads the parser model.
    A model that fails to load only disables parsing.
    """
    logger.info("Application startup: Initializing services...")
    get_invoice_store()
    if LOAD_MODEL_ON_STARTUP:
        logger.info(llm_service.load_qwen2_audio_model())


def draft_view(manager: OrderDraftManager) -> dict:
    return {
        "draft": manager.draft.model_dump(by_alias=True),
        "totals": manager.totals().model_dump(by_alias=True),
        "errors": manager.validation_errors(),
    }


def invoice_or_404(store: InvoiceStore, invoice_id: str) -> Invoice:
    invoice = store.get(invoice_id)
    if invoice is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Invoice '{invoice_id}' not found.")
    return invoice


def storage_unavailable(e: StorageWriteError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


@app.get("/")
async def root():
    """Root endpoint providing a welcome message."""
    return {"message": "Welcome to the Threm Multilinks Invoice Backend. Visit /docs for API documentation."}


# --- Draft ---

@app.get("/draft/", summary="Current draft with live totals")
async def get_draft(manager: OrderDraftManager = Depends(get_draft_manager)):
    return draft_view(manager)


@app.patch("/draft/", summary="Edit customer, delivery fee, discount or notes")
async def update_draft(update: DraftUpdate, manager: OrderDraftManager = Depends(get_draft_manager)):
    manager.update_customer(name=update.customer_name, phone=update.customer_phone, address=update.customer_address)
    if update.delivery_fee is not None:
        manager.set_delivery_fee(update.delivery_fee)
    if update.discount_percent is not None:
        manager.set_discount_percent(update.discount_percent)
    if update.notes is not None:
        manager.set_notes(update.notes)
    return draft_view(manager)


@app.post("/draft/items/", status_code=status.HTTP_201_CREATED, summary="Add a blank item row")
async def add_draft_item(manager: OrderDraftManager = Depends(get_draft_manager)):
    manager.add_item()
    return draft_view(manager)


@app.patch("/draft/items/{item_id}", summary="Change one field of an item row")
async def update_draft_item(item_id: str, update: ItemUpdate, manager: OrderDraftManager = Depends(get_draft_manager)):
    try:
        manager.update_item(item_id, update.field, update.value)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return draft_view(manager)


@app.delete("/draft/items/{item_id}", summary="Remove an item row (the last row is kept)")
async def remove_draft_item(item_id: str, manager: OrderDraftManager = Depends(get_draft_manager)):
    removed = manager.remove_item(item_id)
    return {"removed": removed, **draft_view(manager)}


@app.post("/draft/reset/", summary="Discard the draft")
async def reset_draft(manager: OrderDraftManager = Depends(get_draft_manager)):
    manager.reset()
    return draft_view(manager)


async def _parse_and_apply(manager: OrderDraftManager, parser: llm_service.OrderParser,
                           text: Optional[str] = None, audio_bytes: Optional[bytes] = None) -> dict:
    try:
        parsed: ParsedOrder = await parser.parse(text=text, audio_bytes=audio_bytes)
    except ParserBusyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ParserUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except ParserError as e:
        logger.warning("Order parsing failed: %s", e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"{e} You can retry or fill the form manually.")

    if not manager.apply_parsed_result(parsed):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="No usable order details were found. Please rephrase or fill the form manually.",
        )
    return {"parsed": parsed.model_dump(exclude_none=True, by_alias=True), **draft_view(manager)}


@app.post("/draft/parse/text/", summary="Fill the draft from a typed order")
async def parse_text_into_draft(
    request: ParseTextRequest,
    manager: OrderDraftManager = Depends(get_draft_manager),
    parser: llm_service.OrderParser = Depends(get_order_parser),
):
    if not request.text.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order text is empty.")
    return await _parse_and_apply(manager, parser, text=request.text)


@app.post("/draft/parse/audio/", summary="Fill the draft from a voice note")
async def parse_audio_into_draft(
    audio_file: UploadFile = File(..., description="The voice note (e.g. WAV, MP3, OGG) describing the order."),
    transcript_text: Optional[str] = Form(None, description="Optional transcript of the voice note."),
    manager: OrderDraftManager = Depends(get_draft_manager),
    parser: llm_service.OrderParser = Depends(get_order_parser),
):
    if not (audio_file.content_type or "").startswith("audio/"):
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Expected an audio upload, got '{audio_file.content_type}'.",
        )
    audio_bytes = await audio_file.read()
    if not audio_bytes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Audio upload is empty.")
    return await _parse_and_apply(manager, parser, text=transcript_text, audio_bytes=audio_bytes)


@app.post("/draft/finalize/", status_code=status.HTTP_201_CREATED, summary="Turn the draft into an invoice")
async def finalize_draft(
    manager: OrderDraftManager = Depends(get_draft_manager),
    store: InvoiceStore = Depends(get_invoice_store),
):
    try:
        invoice = finalize(manager.draft)
    except FinalizationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.problems)
    try:
        store.insert(invoice)
    except StorageWriteError as e:
        raise storage_unavailable(e)
    manager.reset()
    return invoice.model_dump(by_alias=True)


# --- Invoices ---

@app.get("/invoices/", summary="All invoices, newest first")
async def list_invoices(store: InvoiceStore = Depends(get_invoice_store)):
    return [invoice.model_dump(by_alias=True) for invoice in store.list()]


@app.get("/invoices/{invoice_id}")
async def get_invoice(invoice_id: str, store: InvoiceStore = Depends(get_invoice_store)):
    return invoice_or_404(store, invoice_id).model_dump(by_alias=True)


@app.patch("/invoices/{invoice_id}/status", summary="Mark an invoice pending, paid or cancelled")
async def update_invoice_status(invoice_id: str, update: StatusUpdate, store: InvoiceStore = Depends(get_invoice_store)):
    try:
        invoice = store.update_status(invoice_id, update.status)
    except StorageWriteError as e:
        raise storage_unavailable(e)
    if invoice is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Invoice '{invoice_id}' not found.")
    return invoice.model_dump(by_alias=True)


@app.delete("/invoices/{invoice_id}")
async def delete_invoice(invoice_id: str, store: InvoiceStore = Depends(get_invoice_store)):
    try:
        deleted = store.remove(invoice_id)
    except StorageWriteError as e:
        raise storage_unavailable(e)
    return {"deleted": deleted}


def _render_export(invoice: Invoice, fmt: str) -> tuple:
    if fmt not in EXPORT_FORMATS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unsupported export format '{fmt}'. Use pdf or png.")
    render, media_type = EXPORT_FORMATS[fmt]
    try:
        return render(invoice), media_type
    except ExportError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"{e} {EXPORT_FALLBACK_HINT}")


@app.get("/invoices/{invoice_id}/export/{fmt}", summary="Download an invoice as PDF or PNG")
async def download_invoice(invoice_id: str, fmt: str, store: InvoiceStore = Depends(get_invoice_store)):
    invoice = invoice_or_404(store, invoice_id)
    content, media_type = _render_export(invoice, fmt)
    filename = export_filename(invoice, fmt)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/invoices/{invoice_id}/export/{fmt}/share", summary="Upload an export and get a link to send")
async def share_invoice_export(invoice_id: str, fmt: str, store: InvoiceStore = Depends(get_invoice_store)):
    invoice = invoice_or_404(store, invoice_id)
    content, media_type = _render_export(invoice, fmt)
    filename = export_filename(invoice, fmt)
    try:
        shared = share_export(content, filename, media_type, SHARE_LINK_EXPIRY_HOURS)
    except Exception as e:
        logger.error("Sharing %s failed: %s", filename, e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Sharing is unavailable ({e}). Download the file instead: /invoices/{invoice_id}/export/{fmt}",
        )
    return {"filename": filename, **shared}


@app.get("/invoices/{invoice_id}/share-links", summary="WhatsApp and Telegram links with the invoice summary")
async def get_share_links(invoice_id: str, store: InvoiceStore = Depends(get_invoice_store)):
    invoice = invoice_or_404(store, invoice_id)
    return {
        "text": invoice_summary_text(invoice),
        "whatsapp": whatsapp_link(invoice),
        "telegram": telegram_link(invoice),
    }


# --- Parser model ---

@app.post("/load_model/", summary="Load the Qwen2-Audio parser model")
async def load_model_endpoint():
    """
    Explicitly loads the parser model into memory, e.g. after a failed startup load.
    """
    return {"status": llm_service.load_qwen2_audio_model()}


@app.get("/model_status/", summary="Check parser model device and memory status")
async def get_model_status():
    return {
        "loaded": llm_service.is_model_loaded(),
        "status": check_model_devices(llm_service.qwen2_audio_model, llm_service.device or "unknown"),
    }

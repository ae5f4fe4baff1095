"""Unit tests for WhatsApp/Telegram share messages."""

from urllib.parse import parse_qs, urlparse

from tmv_invoice.core.finalizer import finalize
from tmv_invoice.models import InvoiceStatus
from tmv_invoice.services.share_service import invoice_summary_text, telegram_link, whatsapp_link


def test_summary_lists_items_and_totals(filled_manager) -> None:
    invoice = finalize(filled_manager.draft)
    text = invoice_summary_text(invoice)

    assert text.startswith("*INVOICE FROM THREM MULTILINKS VENTURE*")
    assert f"*Invoice:* {invoice.invoice_number}" in text
    assert "*Customer:* John Okafor" in text
    assert "10 bags of BUA 42.5R @ ₦8,500.00" in text
    assert "5 bags of Dangote 42.5R @ ₦9,000.00" in text
    assert "*Subtotal:* ₦130,000.00" in text
    assert "*Discount (2%):* -₦2,600.00" in text
    assert "*Delivery:* ₦5,000.00" in text
    assert "*TOTAL:* ₦132,400.00" in text


def test_summary_omits_discount_line_without_discount(make_invoice) -> None:
    assert "Discount" not in invoice_summary_text(make_invoice())


def test_summary_status_lines(make_invoice) -> None:
    invoice = make_invoice()
    assert "PAYMENT PENDING" in invoice_summary_text(invoice)
    assert "PAID IN FULL" in invoice_summary_text(invoice.model_copy(update={"status": InvoiceStatus.PAID}))
    assert "CANCELLED" in invoice_summary_text(invoice.model_copy(update={"status": InvoiceStatus.CANCELLED}))


def test_summary_date_is_day_month_year(make_invoice) -> None:
    assert "*Date:* 14/03/2025" in invoice_summary_text(make_invoice())


def test_whatsapp_link_targets_phone_digits(filled_manager) -> None:
    invoice = finalize(filled_manager.draft)
    link = urlparse(whatsapp_link(invoice))

    assert link.netloc == "wa.me"
    assert link.path == "/2348012345678"
    assert parse_qs(link.query)["text"][0] == invoice_summary_text(invoice)


def test_telegram_link_carries_text(make_invoice) -> None:
    invoice = make_invoice()
    link = urlparse(telegram_link(invoice))
    query = parse_qs(link.query)

    assert link.netloc == "t.me"
    assert query["url"][0] == "Threm Multilinks Venture Invoice"
    assert query["text"][0] == invoice_summary_text(invoice)

# tmv_invoice/services/share_service.py

from urllib.parse import quote

from tmv_invoice.config import BUSINESS_NAME
from tmv_invoice.core.utils import digits_only, display_date, format_currency
from tmv_invoice.models import Invoice, InvoiceStatus

RULE = "----------------------------------"

STATUS_TEXT = {
    InvoiceStatus.PAID: "✅ *PAID IN FULL*",
    InvoiceStatus.PENDING: "⏳ *PAYMENT PENDING*",
    InvoiceStatus.CANCELLED: "❌ *CANCELLED*",
}


def invoice_summary_text(invoice: Invoice) -> str:
    """
    Plain-text rendering of an invoice for chat apps, using WhatsApp's
    *bold* and _italic_ markers.
    """
    items_text = "\n".join(
        f"{item.quantity} bags of {item.description} @ {format_currency(item.unit_price)}"
        for item in invoice.items
    )

    discount_text = ""
    if invoice.discount_amount > 0:
        discount_text = f"*Discount ({invoice.discount_percent:g}%):* -{format_currency(invoice.discount_amount)}\n"

    return (
        f"*INVOICE FROM {BUSINESS_NAME.upper()}*\n"
        f"{RULE}\n"
        f"*Invoice:* {invoice.invoice_number}\n"
        f"*Status:* {STATUS_TEXT[invoice.status]}\n"
        f"*Customer:* {invoice.customer.name}\n"
        f"*Date:* {display_date(invoice.date)}\n"
        f"{RULE}\n"
        f"*Items:*\n"
        f"{items_text}\n"
        f"{RULE}\n"
        f"*Subtotal:* {format_currency(invoice.subtotal)}\n"
        f"{discount_text}"
        f"*Delivery:* {format_currency(invoice.delivery_fee)}\n"
        f"*TOTAL:* {format_currency(invoice.total_amount)}\n"
        f"{RULE}\n"
        f"_Thank you for your business!_"
    )


def whatsapp_link(invoice: Invoice) -> str:
    """wa.me deep link addressed to the customer's phone (digits only)."""
    text = quote(invoice_summary_text(invoice), safe="")
    return f"https://wa.me/{digits_only(invoice.customer.phone)}?text={text}"


def telegram_link(invoice: Invoice) -> str:
    text = quote(invoice_summary_text(invoice), safe="")
    title = quote(f"{BUSINESS_NAME} Invoice", safe="")
    return f"https://t.me/share/url?url={title}&text={text}"

# tmv_invoice/services/pdf_service.py

import logging
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle

from tmv_invoice.config import BUSINESS_NAME, BUSINESS_ADDRESS, BUSINESS_PHONE, EXPORT_CURRENCY_SYMBOL
from tmv_invoice.core.errors import ExportError
from tmv_invoice.core.utils import display_date, format_currency
from tmv_invoice.models import Invoice, InvoiceStatus

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    InvoiceStatus.PAID: "PAID IN FULL",
    InvoiceStatus.PENDING: "PAYMENT PENDING",
    InvoiceStatus.CANCELLED: "CANCELLED",
}


def money(amount: float) -> str:
    return format_currency(amount, EXPORT_CURRENCY_SYMBOL)


def export_filename(invoice: Invoice, ext: str) -> str:
    return f"Invoice-{invoice.invoice_number}.{ext}"


def _format_discount_percent(value: float) -> str:
    return f"{value:g}"


def totals_rows(invoice: Invoice) -> list:
    """Label/amount pairs shown under the item table, in print order."""
    rows = [("Subtotal:", money(invoice.subtotal))]
    if invoice.discount_amount > 0:
        rows.append((f"Discount ({_format_discount_percent(invoice.discount_percent)}%):",
                     f"-{money(invoice.discount_amount)}"))
    rows.append(("Delivery:", money(invoice.delivery_fee)))
    rows.append(("Total:", money(invoice.total_amount)))
    return rows


def _text_block(lines, style) -> list:
    return [Paragraph(escape(line), style) for line in lines if line]


def _header(invoice: Invoice, styles) -> list:
    flowables = [Paragraph(f"<b>{escape(BUSINESS_NAME.upper())}</b>", styles['h2'])]
    flowables += _text_block((BUSINESS_ADDRESS, BUSINESS_PHONE), styles['Normal'])
    flowables += [
        Spacer(1, 0.2 * inch),
        Paragraph("<b>INVOICE</b>", styles['h1']),
        Paragraph(f"<b>Invoice #:</b> {escape(invoice.invoice_number)}", styles['Normal']),
        Paragraph(f"<b>Date:</b> {display_date(invoice.date)}", styles['Normal']),
        Paragraph(f"<b>Status:</b> {STATUS_LABELS[invoice.status]}", styles['Normal']),
        Spacer(1, 0.3 * inch),
        Paragraph("<b>Bill To:</b>", styles['h3']),
    ]
    customer = invoice.customer
    flowables += _text_block((customer.name, customer.phone, customer.address), styles['Normal'])
    flowables.append(Spacer(1, 0.3 * inch))
    return flowables


def _items_table(invoice: Invoice, styles) -> Table:
    rows = [['Description', 'Qty (bags)', 'Unit Price', 'Total']]
    rows += [
        [Paragraph(escape(item.description), styles['Normal']), str(item.quantity),
         money(item.unit_price), money(item.total)]
        for item in invoice.items
    ]
    table = Table(rows, colWidths=[2.7 * inch, 0.9 * inch, 1.2 * inch, 1.2 * inch], repeatRows=1)
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#1E293B')),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 8),
        ('ALIGN', (1, 0), (-1, -1), 'RIGHT'),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#F8FAFC')]),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#CBD5E1')),
    ]))
    return table


def _totals_table(invoice: Invoice) -> Table:
    table = Table([list(row) for row in totals_rows(invoice)], colWidths=[4.8 * inch, 1.2 * inch])
    table.setStyle(TableStyle([
        ('ALIGN', (0, 0), (-1, -1), 'RIGHT'),
        ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
        ('LINEABOVE', (0, -1), (-1, -1), 0.75, colors.HexColor('#1E293B')),
        ('TOPPADDING', (0, 0), (-1, -1), 3),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 3),
    ]))
    return table


def render_invoice_pdf(invoice: Invoice) -> bytes:
    """
    Renders an invoice to an A4 PDF in memory.

    Raises:
        ExportError: If reportlab fails to build the document.
    """
    styles = getSampleStyleSheet()
    story = _header(invoice, styles)
    story += [_items_table(invoice, styles), Spacer(1, 0.2 * inch), _totals_table(invoice)]
    if invoice.notes:
        story += [Spacer(1, 0.3 * inch), Paragraph("<b>Notes:</b>", styles['h3']),
                  Paragraph(escape(invoice.notes), styles['Normal'])]
    story += [Spacer(1, 0.5 * inch), Paragraph("<i>Thank you for your business!</i>", styles['Italic'])]

    out = BytesIO()
    doc = SimpleDocTemplate(out, pagesize=A4, leftMargin=0.9 * inch, rightMargin=0.9 * inch,
                            topMargin=0.8 * inch, bottomMargin=0.8 * inch,
                            title=f"Invoice {invoice.invoice_number}", author=BUSINESS_NAME)
    try:
        doc.build(story)
    except Exception as e:
        logger.error("PDF export failed for %s: %s", invoice.invoice_number, e)
        raise ExportError(f"Failed to generate PDF: {e}") from e

    logger.info("Rendered %s", export_filename(invoice, "pdf"))
    return out.getvalue()

# tmv_invoice/services/image_service.py

import logging
from io import BytesIO
from typing import List, Tuple

from PIL import Image, ImageDraw, ImageFont

from tmv_invoice.config import BUSINESS_NAME, BUSINESS_ADDRESS, BUSINESS_PHONE
from tmv_invoice.core.errors import ExportError
from tmv_invoice.core.utils import display_date
from tmv_invoice.models import Invoice
from tmv_invoice.services.pdf_service import STATUS_LABELS, export_filename, money, totals_rows

logger = logging.getLogger(__name__)

WIDTH = 900
MARGIN = 48
LINE_HEIGHT = 30
BACKGROUND = "#FFFFFF"
INK = "#0F172A"
MUTED = "#64748B"
ACCENT = "#1E293B"

# x offsets of the item columns: description, qty, unit price, total
COLUMNS = (MARGIN, 470, 590, 740)


def _layout(invoice: Invoice) -> List[Tuple[str, list]]:
    """
    Builds the invoice as a list of rows. Each row is a kind ('title', 'text',
    'muted', 'header', 'item', 'rule', 'total', 'gap') and its cells.
    """
    rows = [("title", [BUSINESS_NAME.upper()])]
    rows += [("muted", [line]) for line in (BUSINESS_ADDRESS, BUSINESS_PHONE) if line]
    rows += [
        ("gap", []),
        ("text", [f"Invoice #: {invoice.invoice_number}"]),
        ("text", [f"Date: {display_date(invoice.date)}"]),
        ("text", [f"Status: {STATUS_LABELS[invoice.status]}"]),
        ("gap", []),
        ("text", ["Bill To:"]),
    ]
    rows += [("muted", [line]) for line in (invoice.customer.name, invoice.customer.phone, invoice.customer.address) if line]
    rows += [("gap", []), ("header", ["Description", "Qty", "Unit Price", "Total"])]
    for item in invoice.items:
        rows.append(("item", [item.description, str(item.quantity), money(item.unit_price), money(item.total)]))
    rows.append(("rule", []))
    for label, amount in totals_rows(invoice):
        rows.append(("total", [label, amount]))
    if invoice.notes:
        rows += [("gap", []), ("text", ["Notes:"]), ("muted", [invoice.notes])]
    rows += [("gap", []), ("muted", ["Thank you for your business!"])]
    return rows


def render_invoice_png(invoice: Invoice) -> bytes:
    """
    Renders an invoice to a PNG image in memory.

    Raises:
        ExportError: If the image cannot be drawn or encoded.
    """
    try:
        rows = _layout(invoice)
        height = MARGIN * 2 + LINE_HEIGHT * (len(rows) + 1)
        image = Image.new("RGB", (WIDTH, height), color=BACKGROUND)
        draw = ImageDraw.Draw(image)
        font = ImageFont.load_default(size=18)
        title_font = ImageFont.load_default(size=28)

        y = MARGIN
        for kind, cells in rows:
            if kind == "title":
                draw.text((MARGIN, y), cells[0], fill=ACCENT, font=title_font)
                y += LINE_HEIGHT
            elif kind == "header":
                draw.rectangle([MARGIN - 8, y - 4, WIDTH - MARGIN + 8, y + LINE_HEIGHT - 6], fill=ACCENT)
                for x, cell in zip(COLUMNS, cells):
                    draw.text((x, y), cell, fill=BACKGROUND, font=font)
            elif kind == "item":
                for x, cell in zip(COLUMNS, cells):
                    draw.text((x, y), cell, fill=INK, font=font)
            elif kind == "rule":
                draw.line([MARGIN, y + LINE_HEIGHT // 2, WIDTH - MARGIN, y + LINE_HEIGHT // 2], fill=MUTED, width=1)
            elif kind == "total":
                draw.text((COLUMNS[1], y), cells[0], fill=INK, font=font)
                draw.text((COLUMNS[3], y), cells[1], fill=INK, font=font)
            elif kind in ("text", "muted"):
                draw.text((MARGIN, y), cells[0], fill=INK if kind == "text" else MUTED, font=font)
            y += LINE_HEIGHT

        buffer = BytesIO()
        image.save(buffer, format="PNG")
    except (OSError, ValueError, UnicodeError) as e:
        logger.error("Error generating image for %s: %s", invoice.invoice_number, e)
        raise ExportError(f"Failed to generate image: {e}") from e

    logger.info("Invoice image generated: %s", export_filename(invoice, "png"))
    return buffer.getvalue()

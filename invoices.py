"""
Invoice numbering, totals and PDF rendering.

The PDF is assembled from template components (header, parties, item
table, totals, footer) drawn onto a ReportLab canvas. Templates only differ
in their accent colour and title.
"""

import io
import logging
import random
import string
import time
from typing import Dict, List, Optional, Tuple

from fastapi import HTTPException
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas

logger = logging.getLogger(__name__)

MAX_NUMBER_ATTEMPTS = 50

TEMPLATES: Dict[int, Dict[str, object]] = {
    1: {"title": "INVOICE", "accent": (0.14, 0.29, 1)},
    2: {"title": "TAX INVOICE", "accent": (0.26, 0.56, 0.44)},
    3: {"title": "RECEIPT", "accent": (0.2, 0.2, 0.2)},
}


def generate_invoice_number(db, rng: Optional[random.Random] = None) -> str:
    """2-3 letters followed by digits, 4-6 characters in total, unique among invoices."""
    rng = rng or random
    for _ in range(MAX_NUMBER_ATTEMPTS):
        length = rng.randint(4, 6)
        letters = rng.randint(2, 3)
        number = "".join(rng.choice(string.ascii_uppercase) for _ in range(letters))
        number += "".join(rng.choice(string.digits) for _ in range(length - letters))
        if db["invoice"].find_one({"invoiceNumber": number}, {"_id": 1}) is None:
            return number
    # Letter plus a four-digit tail of the millisecond clock, stepped on collision.
    letter = rng.choice(string.ascii_uppercase)
    ms = int(time.time() * 1000)
    for step in range(MAX_NUMBER_ATTEMPTS):
        fallback = f"{letter}{(ms + step) % 10000:04d}"
        if db["invoice"].find_one({"invoiceNumber": fallback}, {"_id": 1}) is None:
            logger.warning("Invoice number space exhausted after %d attempts, using %s", MAX_NUMBER_ATTEMPTS, fallback)
            return fallback
    logger.error("No free invoice number after %d fallback attempts", MAX_NUMBER_ATTEMPTS)
    raise HTTPException(status_code=500, detail="Could not generate a unique invoice number")


def compute_totals(items: List[dict], tax_percentage: float) -> Tuple[List[dict], float, float, float]:
    priced = []
    for item in items:
        line = dict(item)
        line["total"] = round(line.get("quantity", 1) * line["amount"], 2)
        priced.append(line)
    sub_total = round(sum(i["total"] for i in priced), 2)
    tax_amount = round(sub_total * tax_percentage / 100, 2)
    return priced, sub_total, tax_amount, round(sub_total + tax_amount, 2)


# ----------------- Template components -----------------
LEFT = 2 * cm
RIGHT = A4[0] - 2 * cm
BOTTOM_MARGIN = 3 * cm


def _money(value: float, currency: str) -> str:
    return f"{currency} {value:,.2f}"


def _draw_header(c, invoice: dict, template: dict, y: float) -> float:
    c.setFillColorRGB(*template["accent"])
    c.setFont("Helvetica-Bold", 20)
    c.drawString(LEFT, y, str(template["title"]))
    company = invoice["yourCompany"]
    c.setFillColorRGB(0, 0, 0)
    c.setFont("Helvetica-Bold", 11)
    c.drawRightString(RIGHT, y, company["name"])
    c.setFont("Helvetica", 9)
    c.drawRightString(RIGHT, y - 0.5 * cm, company["address"])
    c.drawRightString(RIGHT, y - 1.0 * cm, company["phone"])

    y -= 1.8 * cm
    c.setFont("Helvetica", 10)
    c.drawString(LEFT, y, f"Invoice #: {invoice['invoiceNumber']}")
    c.drawString(LEFT, y - 0.5 * cm, f"Date: {str(invoice['invoiceDate'])[:10]}")
    status = invoice.get("paymentStatus", "unpaid").upper()
    if invoice.get("paymentDate"):
        status += f" ({str(invoice['paymentDate'])[:10]})"
    c.drawString(LEFT, y - 1.0 * cm, f"Status: {status}")
    return y - 2.0 * cm


def _draw_parties(c, invoice: dict, template: dict, y: float) -> float:
    blocks = [("Bill To", invoice["billTo"])]
    if invoice.get("shipTo"):
        blocks.append(("Ship To", invoice["shipTo"]))
    x_positions = [LEFT, (LEFT + RIGHT) / 2]
    for (label, party), x in zip(blocks, x_positions):
        c.setFillColorRGB(*template["accent"])
        c.setFont("Helvetica-Bold", 11)
        c.drawString(x, y, label)
        c.setFillColorRGB(0, 0, 0)
        c.setFont("Helvetica", 10)
        c.drawString(x, y - 0.5 * cm, party["name"])
        c.drawString(x, y - 1.0 * cm, party["address"])
        c.drawString(x, y - 1.5 * cm, party["phone"])
    return y - 2.5 * cm


def _draw_item_header(c, template: dict, y: float) -> float:
    c.setFillColorRGB(*template["accent"])
    c.rect(LEFT, y - 0.2 * cm, RIGHT - LEFT, 0.7 * cm, stroke=0, fill=1)
    c.setFillColorRGB(1, 1, 1)
    c.setFont("Helvetica-Bold", 10)
    c.drawString(LEFT + 0.2 * cm, y, "Item")
    c.drawRightString(RIGHT - 6 * cm, y, "Qty")
    c.drawRightString(RIGHT - 3 * cm, y, "Rate")
    c.drawRightString(RIGHT - 0.2 * cm, y, "Amount")
    c.setFillColorRGB(0, 0, 0)
    return y - 0.8 * cm


def _draw_items(c, invoice: dict, template: dict, y: float) -> float:
    currency = invoice.get("currency", "INR")
    y = _draw_item_header(c, template, y)
    for item in invoice["items"]:
        if y < BOTTOM_MARGIN:
            c.showPage()
            y = _draw_item_header(c, template, A4[1] - 2 * cm)
        c.setFont("Helvetica", 10)
        c.drawString(LEFT + 0.2 * cm, y, item["name"][:60])
        c.drawRightString(RIGHT - 6 * cm, y, str(item.get("quantity", 1)))
        c.drawRightString(RIGHT - 3 * cm, y, _money(item["amount"], currency))
        c.drawRightString(RIGHT - 0.2 * cm, y, _money(item["total"], currency))
        y -= 0.5 * cm
        if item.get("description"):
            c.setFont("Helvetica-Oblique", 8)
            c.drawString(LEFT + 0.4 * cm, y, item["description"][:90])
            y -= 0.5 * cm
    return y - 0.4 * cm


def _draw_totals(c, invoice: dict, template: dict, y: float) -> float:
    if y < BOTTOM_MARGIN + 2 * cm:
        c.showPage()
        y = A4[1] - 2 * cm
    currency = invoice.get("currency", "INR")
    rows = [
        ("Subtotal", invoice["subTotal"]),
        (f"Tax ({invoice.get('taxPercentage', 0)}%)", invoice["taxAmount"]),
    ]
    c.setFont("Helvetica", 10)
    for label, value in rows:
        c.drawRightString(RIGHT - 3 * cm, y, label)
        c.drawRightString(RIGHT - 0.2 * cm, y, _money(value, currency))
        y -= 0.5 * cm
    c.setFillColorRGB(*template["accent"])
    c.setFont("Helvetica-Bold", 12)
    c.drawRightString(RIGHT - 3 * cm, y, "Grand Total")
    c.drawRightString(RIGHT - 0.2 * cm, y, _money(invoice["grandTotal"], currency))
    c.setFillColorRGB(0, 0, 0)
    return y - 1.2 * cm


def _draw_footer(c, invoice: dict, template: dict, y: float) -> float:
    if invoice.get("notes"):
        c.setFont("Helvetica-Bold", 10)
        c.drawString(LEFT, y, "Notes")
        text = c.beginText(LEFT, y - 0.5 * cm)
        text.setFont("Helvetica", 9)
        text.textLines(invoice["notes"][:600])
        c.drawText(text)
    if invoice.get("websiteUrl"):
        c.setFont("Helvetica", 8)
        c.drawCentredString(A4[0] / 2, 1.5 * cm, invoice["websiteUrl"])
    return y


COMPONENTS = (_draw_header, _draw_parties, _draw_items, _draw_totals, _draw_footer)


def render_invoice_pdf(invoice: dict, template_number: int = 1) -> bytes:
    template = TEMPLATES.get(template_number, TEMPLATES[1])
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    c.setTitle(f"Invoice {invoice['invoiceNumber']}")

    y = A4[1] - 2 * cm
    for component in COMPONENTS:
        y = component(c, invoice, template, y)

    c.showPage()
    c.save()
    return buffer.getvalue()

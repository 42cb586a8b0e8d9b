"""
CRX: Invoice Renderer
Numbers invoices from a persistent counter and draws a one-page PDF with reportlab.
"""
import io, logging
from datetime import date

from reportlab.lib.pagesizes import A4
from reportlab.lib.colors import HexColor
from reportlab.pdfgen import canvas
from fastapi import HTTPException

from crx.config import UPLOAD_DIR, PAYMENT_TRANSPORTATION, COMPANY_NAME, COMPANY_DETAILS
from crx.db import next_sequence, money, _n

logger = logging.getLogger(__name__)

INVOICE_TYPES = (PAYMENT_TRANSPORTATION, "car")
INVOICE_COUNTER = "invoiceId"

NAVY = HexColor('#1B2A4A')
SLATE = HexColor('#64748B')
SLATE_PALE = HexColor('#F1F5F9')

W, H = A4
MARGIN = 50


def invoice_amount(car: dict, invoice_type: str, amount=None) -> float:
    if invoice_type not in INVOICE_TYPES:
        raise HTTPException(400, f"Invalid invoice type. Must be one of: {list(INVOICE_TYPES)}")
    if amount is not None:
        if _n(amount) <= 0:
            raise HTTPException(400, "Invoice amount must be greater than zero")
        return money(amount)
    field = "transportationPrice" if invoice_type == PAYMENT_TRANSPORTATION else "auctionPrice"
    return money(car.get(field))

def _line_description(car: dict, invoice_type: str) -> str:
    name = car.get("carName") or "Vehicle"
    if invoice_type == PAYMENT_TRANSPORTATION:
        return f"Transportation of {name} ({car['vinCode']})"
    return f"Vehicle purchase: {name} ({car['vinCode']})"

def render_pdf(number: int, car: dict, invoice_type: str, amount: float, issued: date = None) -> bytes:
    """Draw the invoice and return the PDF bytes."""
    issued = issued or date.today()
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(f"Invoice {number}")
    c.setAuthor(COMPANY_NAME)

    # Header band
    c.setFillColor(NAVY)
    c.rect(0, H - 110, W, 110, stroke=0, fill=1)
    c.setFillColor(HexColor('#FFFFFF'))
    c.setFont("Helvetica-Bold", 22)
    c.drawString(MARGIN, H - 60, COMPANY_NAME)
    c.setFont("Helvetica", 10)
    c.drawString(MARGIN, H - 80, COMPANY_DETAILS)
    c.setFont("Helvetica-Bold", 16)
    c.drawRightString(W - MARGIN, H - 60, f"INVOICE #{number}")
    c.setFont("Helvetica", 10)
    c.drawRightString(W - MARGIN, H - 80, f"Date: {issued.isoformat()}")

    # Vehicle details
    y = H - 150
    c.setFillColor(NAVY)
    c.setFont("Helvetica-Bold", 12)
    c.drawString(MARGIN, y, "Vehicle")
    details = [("VIN", car.get("vinCode")), ("Car", car.get("carName")), ("Lot", car.get("lotNumber")),
               ("Buyer", car.get("buyer")), ("Personal No.", car.get("buyerPN"))]
    c.setFont("Helvetica", 10)
    for label, value in details:
        y -= 18
        c.setFillColor(SLATE)
        c.drawString(MARGIN, y, label)
        c.setFillColor(NAVY)
        c.drawString(MARGIN + 100, y, str(value or "-"))

    # Line item
    y -= 40
    c.setFillColor(SLATE_PALE)
    c.rect(MARGIN, y - 8, W - 2 * MARGIN, 24, stroke=0, fill=1)
    c.setFillColor(NAVY)
    c.setFont("Helvetica-Bold", 10)
    c.drawString(MARGIN + 8, y, "Description")
    c.drawRightString(W - MARGIN - 8, y, "Amount (USD)")
    y -= 28
    c.setFont("Helvetica", 10)
    c.drawString(MARGIN + 8, y, _line_description(car, invoice_type))
    c.drawRightString(W - MARGIN - 8, y, f"{amount:,.2f}")
    y -= 30
    c.setFont("Helvetica-Bold", 12)
    c.drawString(MARGIN + 8, y, "Total")
    c.drawRightString(W - MARGIN - 8, y, f"{amount:,.2f}")

    c.setFillColor(SLATE)
    c.setFont("Helvetica", 8)
    c.drawString(MARGIN, 40, f"Please include VIN {car.get('vinCode')} in the payment comment.")
    c.showPage()
    c.save()
    return buf.getvalue()

def generate(db: dict, car: dict, invoice_type: str = PAYMENT_TRANSPORTATION, amount=None) -> tuple:
    """Allocate a number, render and archive the PDF. Returns (filename, pdf_bytes)."""
    total = invoice_amount(car, invoice_type, amount)
    number = next_sequence(db, INVOICE_COUNTER)
    pdf = render_pdf(number, car, invoice_type, total)
    filename = f"invoice_{number}_{car['vinCode']}.pdf"
    (UPLOAD_DIR / "invoices" / filename).write_bytes(pdf)
    logger.info("Invoice %s generated for car %s (%s, %.2f)", number, car["carID"], invoice_type, total)
    return filename, pdf

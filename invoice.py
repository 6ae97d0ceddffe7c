from datetime import datetime
from io import BytesIO
from typing import Optional

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from mailer import STORE_NAME

LEFT = 20 * mm
RIGHT = A4[0] - 20 * mm
BOTTOM = 25 * mm


def _money(value) -> str:
    return f"INR {float(value or 0):,.2f}"


def _date(value) -> str:
    if isinstance(value, datetime):
        return value.strftime("%d %b %Y")
    return str(value or "")


def render_invoice(order: dict, customer: Optional[dict] = None) -> bytes:
    """Render an order (items populated with their `book`) as PDF bytes, continuing onto new pages as needed."""
    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    pdf.setTitle(f"Invoice {order['_id']}")

    y = A4[1] - 25 * mm
    pdf.setFont("Helvetica-Bold", 20)
    pdf.drawString(LEFT, y, STORE_NAME)
    pdf.setFont("Helvetica", 12)
    pdf.drawRightString(RIGHT, y, "INVOICE")

    y -= 14 * mm
    pdf.setFont("Helvetica", 10)
    details = [
        ("Order ID", order["_id"]),
        ("Date", _date(order.get("created_at"))),
        ("Status", order.get("status", "")),
        ("Payment", order.get("payment_status", "")),
    ]
    if customer:
        details.insert(1, ("Customer", f"{customer.get('fullname', '')} <{customer.get('email', '')}>"))
    for label, value in details:
        pdf.drawString(LEFT, y, f"{label}:")
        pdf.drawString(LEFT + 30 * mm, y, str(value))
        y -= 6 * mm

    y -= 6 * mm
    columns = (LEFT, LEFT + 100 * mm, LEFT + 120 * mm, RIGHT)

    def header(y):
        pdf.setFont("Helvetica-Bold", 10)
        pdf.drawString(columns[0], y, "Book")
        pdf.drawRightString(columns[1] + 10 * mm, y, "Qty")
        pdf.drawRightString(columns[2] + 25 * mm, y, "Unit price")
        pdf.drawRightString(columns[3], y, "Amount")
        pdf.line(LEFT, y - 2 * mm, RIGHT, y - 2 * mm)
        pdf.setFont("Helvetica", 10)
        return y - 8 * mm

    y = header(y)
    for item in order.get("items", []):
        if y < BOTTOM:
            pdf.showPage()
            y = header(A4[1] - 25 * mm)
        book = item.get("book") or {}
        title = book.get("title") or book.get("name") or item.get("book_id", "")
        qty = item.get("qty", 1)
        price = item.get("price_at_purchase", 0)
        pdf.drawString(columns[0], y, str(title)[:55])
        pdf.drawRightString(columns[1] + 10 * mm, y, str(qty))
        pdf.drawRightString(columns[2] + 25 * mm, y, _money(price))
        pdf.drawRightString(columns[3], y, _money(price * qty))
        y -= 7 * mm

    pdf.line(LEFT, y + 3 * mm, RIGHT, y + 3 * mm)
    pdf.setFont("Helvetica-Bold", 11)
    pdf.drawRightString(columns[2] + 25 * mm, y - 3 * mm, "Total")
    pdf.drawRightString(columns[3], y - 3 * mm, _money(order.get("total")))

    pdf.setFont("Helvetica-Oblique", 9)
    pdf.drawString(LEFT, BOTTOM - 10 * mm, f"Thank you for shopping with {STORE_NAME}.")

    pdf.showPage()
    pdf.save()
    return buffer.getvalue()

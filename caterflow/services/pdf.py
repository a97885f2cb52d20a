from __future__ import annotations

from decimal import Decimal

from fpdf import FPDF
from fpdf.enums import XPos, YPos

from caterflow.app.db.models.models_v1 import PurchaseOrder


def _line(pdf: FPDF, text: str, *, h: float = 8) -> None:
    pdf.cell(0, h, text, new_x=XPos.LMARGIN, new_y=YPos.NEXT)


def _latin1(text: str | None) -> str:
    # polices de base : latin-1 uniquement
    return (text or "").encode("latin-1", "replace").decode("latin-1")


def render_purchase_order(po: PurchaseOrder) -> bytes:
    pdf = FPDF()
    pdf.add_page()

    pdf.set_font("Helvetica", "B", 16)
    pdf.cell(0, 10, "PURCHASE ORDER", align="C", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(6)

    pdf.set_font("Helvetica", size=11)
    _line(pdf, f"PO number : {po.po_number}")
    _line(pdf, f"Order date : {po.order_date:%Y-%m-%d}")
    _line(pdf, f"Status : {po.status.value}")
    _line(pdf, _latin1(f"Supplier : {po.supplier.name}"))
    _line(pdf, _latin1(f"Deliver to : {po.site.name}"))
    if po.expected_delivery_date:
        _line(pdf, f"Expected delivery : {po.expected_delivery_date:%Y-%m-%d}")
    pdf.ln(6)

    widths = (80, 30, 35, 45)
    pdf.set_font("Helvetica", "B", 11)
    for w, title in zip(widths, ("Item", "Qty", "Unit price", "Line total")):
        pdf.cell(w, 8, title, border=1)
    pdf.ln()

    pdf.set_font("Helvetica", size=10)
    for ln in po.lines:
        total = Decimal(ln.ordered_quantity) * Decimal(ln.unit_price)
        cells = (
            _latin1(f"{ln.stock_item.name} ({ln.stock_item.sku})"),
            f"{ln.ordered_quantity.normalize():f} {ln.stock_item.unit_of_measure.value}",
            f"{ln.unit_price:.2f}",
            f"{total:.2f}",
        )
        for w, value in zip(widths, cells):
            pdf.cell(w, 8, value[:45], border=1)
        pdf.ln()

    pdf.set_font("Helvetica", "B", 11)
    pdf.cell(sum(widths[:3]), 8, "Total", border=1)
    pdf.cell(widths[3], 8, f"{po.total_amount:.2f}", border=1)
    pdf.ln(14)

    if po.notes:
        pdf.set_font("Helvetica", "I", 10)
        pdf.multi_cell(0, 6, _latin1(f"Notes: {po.notes}"))

    return bytes(pdf.output())

"""
Service achats.

Le statut d'un PO suit les réceptions postées sur ce PO.
Les quantités en stock viennent de caterflow.services.stock.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from caterflow.app.db.models.models_v1 import (
    PurchaseOrder,
    PurchaseOrderLine,
    GoodsReceipt,
    GoodsReceiptLine,
)
from caterflow.app.db.models.core_types import POStatus, ReceiptStatus

# PO pouvant encore recevoir de la marchandise
RECEIVABLE_PO_STATUSES = {
    POStatus.approved,
    POStatus.partially_received,
}


def outstanding_quantities(db: Session, po_id: int) -> dict[int, Decimal]:
    """
    Quantité restant à recevoir par article :
        ordered - SUM(received sur receipts COMPLETED), jamais < 0
    """
    ordered_rows = db.execute(
        select(PurchaseOrderLine.stock_item_id, PurchaseOrderLine.ordered_quantity)
        .where(PurchaseOrderLine.po_id == po_id)
    ).all()

    received_rows = db.execute(
        select(
            GoodsReceiptLine.stock_item_id,
            func.coalesce(func.sum(GoodsReceiptLine.received_quantity), 0).label("received_qty"),
        )
        .join(GoodsReceipt, GoodsReceipt.id == GoodsReceiptLine.receipt_id)
        .where(GoodsReceipt.po_id == po_id)
        .where(GoodsReceipt.status == ReceiptStatus.completed)
        .group_by(GoodsReceiptLine.stock_item_id)
    ).all()

    received = {int(item_id): Decimal(qty) for item_id, qty in received_rows}

    out: dict[int, Decimal] = {}
    for item_id, qty in ordered_rows:
        remaining = Decimal(qty) - received.get(int(item_id), Decimal("0"))
        out[int(item_id)] = remaining if remaining > 0 else Decimal("0")
    return out


def refresh_po_status(db: Session, po: PurchaseOrder) -> POStatus:
    """
    Recalcule le statut d'un PO après réception.
    - tout reçu           -> received
    - reçu en partie      -> partially-received
    - rien reçu           -> statut inchangé
    Idempotent.
    """
    if po.status not in RECEIVABLE_PO_STATUSES | {POStatus.received}:
        return po.status

    outstanding = outstanding_quantities(db, po.id)
    if not outstanding:
        return po.status

    ordered = {ln.stock_item_id: Decimal(ln.ordered_quantity) for ln in po.lines}

    if all(qty == 0 for qty in outstanding.values()):
        po.status = POStatus.received
    elif any(outstanding[item_id] < ordered.get(item_id, Decimal("0")) for item_id in outstanding):
        po.status = POStatus.partially_received
    else:
        po.status = POStatus.approved
    return po.status

"""
Numéros de documents lisibles.

    PO-XXXXXXXX          bons de commande (aléatoire)
    GR-00001             réceptions
    TRF-00001            transferts internes
    ADJ-00001            ajustements de stock
    BC-00001             comptages
    DL-YYYY-MM-DD-001    sorties, séquence remise à zéro chaque jour (UTC)

Deux créations concurrentes peuvent tirer le même numéro : la contrainte
UNIQUE tranche, l'API répond 409.
"""

from __future__ import annotations

import re
import secrets
import string
from datetime import date, datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from caterflow.app.db.models.models_v1 import (
    DispatchLog,
    GoodsReceipt,
    InternalTransfer,
    InventoryCount,
    PurchaseOrder,
    StockAdjustment,
)

_PO_ALPHABET = string.ascii_uppercase + string.digits


def _next_sequential(db: Session, column, prefix: str, width: int = 5) -> str:
    # plus grand numéro : le plus long, puis le plus grand à longueur égale
    last = db.execute(
        select(column)
        .where(column.like(f"{prefix}-%"))
        .order_by(func.length(column).desc(), column.desc())
        .limit(1)
    ).scalar_one_or_none()

    m = re.match(rf"^{re.escape(prefix)}-(\d+)$", last or "")
    highest = int(m.group(1)) if m else 0
    return f"{prefix}-{highest + 1:0{width}d}"


def next_receipt_number(db: Session) -> str:
    return _next_sequential(db, GoodsReceipt.receipt_number, "GR")


def next_transfer_number(db: Session) -> str:
    return _next_sequential(db, InternalTransfer.transfer_number, "TRF")


def next_adjustment_number(db: Session) -> str:
    return _next_sequential(db, StockAdjustment.adjustment_number, "ADJ")


def next_count_number(db: Session) -> str:
    return _next_sequential(db, InventoryCount.count_number, "BC")


def next_dispatch_number(db: Session, today: date | None = None) -> str:
    day = (today or datetime.now(timezone.utc).date()).isoformat()
    return _next_sequential(db, DispatchLog.dispatch_number, f"DL-{day}", width=3)


def new_po_number(db: Session) -> str:
    while True:
        candidate = "PO-" + "".join(secrets.choice(_PO_ALPHABET) for _ in range(8))
        exists = db.execute(select(PurchaseOrder.id).where(PurchaseOrder.po_number == candidate)).first()
        if not exists:
            return candidate

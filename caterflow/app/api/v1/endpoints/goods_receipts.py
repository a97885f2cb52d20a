from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from caterflow.app.api.deps import SiteScope, get_db, get_site_scope, require_roles
from caterflow.app.api.v1.common import check_bin, check_stock_items, flush_or_409, get_or_404, lock_or_404
from caterflow.app.db.models.models_v1 import Bin, GoodsReceipt, GoodsReceiptLine, PurchaseOrder, User
from caterflow.app.db.models.core_types import ReceiptStatus, ReceivedCondition, Role
from caterflow.app.schemas.common import UtcDateTime, utcnow
from caterflow.services.audit import log_interaction
from caterflow.services.numbering import next_receipt_number
from caterflow.services.procurement import RECEIVABLE_PO_STATUSES, refresh_po_status

router = APIRouter(prefix="/goods-receipts")

_RECEIVERS = (Role.admin, Role.site_manager, Role.stock_controller, Role.procurer)


class GRLineCreate(BaseModel):
    stock_item_id: int
    received_quantity: Decimal = Field(ge=0)
    batch_number: str | None = Field(default=None, max_length=64)
    expiry_date: date | None = None
    condition: ReceivedCondition = ReceivedCondition.good


class GRCreate(BaseModel):
    receipt_date: UtcDateTime | None = None
    po_id: int | None = None
    receiving_bin_id: int
    notes: str | None = None
    lines: list[GRLineCreate] = Field(min_length=1)


def serialize_receipt(gr: GoodsReceipt, *, with_lines: bool = False) -> dict:
    out = {
        "id": gr.id,
        "receipt_number": gr.receipt_number,
        "receipt_date": gr.receipt_date,
        "po_id": gr.po_id,
        "receiving_bin_id": gr.receiving_bin_id,
        "received_by": gr.received_by,
        "status": gr.status,
        "notes": gr.notes,
        "completed_at": gr.completed_at,
        "created_at": gr.created_at,
    }
    if with_lines:
        out["lines"] = [
            {
                "stock_item_id": ln.stock_item_id,
                "received_quantity": ln.received_quantity,
                "batch_number": ln.batch_number,
                "expiry_date": ln.expiry_date,
                "condition": ln.condition,
            }
            for ln in gr.lines
        ]
    return out


def _receipt_in_scope(db: Session, gr: GoodsReceipt, scope: SiteScope) -> GoodsReceipt:
    b = db.get(Bin, gr.receiving_bin_id)
    if not scope.allows(b.site_id if b else None):
        raise HTTPException(status_code=403, detail="No access to this goods receipt")
    return gr


@router.get("")
def list_receipts(
    status: ReceiptStatus | None = None,
    po_id: int | None = None,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    stmt = select(GoodsReceipt).order_by(GoodsReceipt.receipt_date.desc(), GoodsReceipt.id.desc())
    if status is not None:
        stmt = stmt.where(GoodsReceipt.status == status)
    if po_id is not None:
        stmt = stmt.where(GoodsReceipt.po_id == po_id)
    if scope.site_ids is not None:
        stmt = stmt.join(Bin, Bin.id == GoodsReceipt.receiving_bin_id).where(Bin.site_id.in_(scope.site_ids))
    return [serialize_receipt(gr) for gr in db.execute(stmt).scalars().all()]


@router.get("/{receipt_id}")
def get_receipt(
    receipt_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    gr = get_or_404(db, GoodsReceipt, receipt_id, "Goods receipt")
    return serialize_receipt(_receipt_in_scope(db, gr, scope), with_lines=True)


@router.post("")
def create_receipt(
    payload: GRCreate,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_RECEIVERS)),
):
    check_bin(db, payload.receiving_bin_id, scope, "receiving_bin_id")
    check_stock_items(db, [ln.stock_item_id for ln in payload.lines])

    if payload.po_id is not None:
        po = db.execute(
            select(PurchaseOrder).options(selectinload(PurchaseOrder.lines)).where(PurchaseOrder.id == payload.po_id)
        ).scalar_one_or_none()
        if not po:
            raise HTTPException(status_code=400, detail="Invalid po_id")
        if po.status not in RECEIVABLE_PO_STATUSES:
            raise HTTPException(status_code=400, detail=f"Cannot receive against a purchase order with status: {po.status.value}")
        ordered = {ln.stock_item_id for ln in po.lines}
        for ln in payload.lines:
            if ln.stock_item_id not in ordered:
                raise HTTPException(status_code=400, detail=f"stock_item_id {ln.stock_item_id} is not on the purchase order")

    gr = GoodsReceipt(
        receipt_number=next_receipt_number(db),
        receipt_date=payload.receipt_date or utcnow(),
        po_id=payload.po_id,
        receiving_bin_id=payload.receiving_bin_id,
        received_by=actor.id,
        status=ReceiptStatus.draft,
        notes=payload.notes,
    )
    gr.lines = [GoodsReceiptLine(**ln.model_dump()) for ln in payload.lines]
    db.add(gr)
    flush_or_409(db, "Receipt number already taken, retry")

    log_interaction(db, "create", f"Created goods receipt {gr.receipt_number}", "GoodsReceipt", gr.id, actor.id)
    db.commit()
    db.refresh(gr)
    return serialize_receipt(gr, with_lines=True)


@router.post("/{receipt_id}/complete")
def complete_receipt(
    receipt_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_RECEIVERS)),
):
    gr = _receipt_in_scope(db, lock_or_404(db, GoodsReceipt, receipt_id, "Goods receipt"), scope)
    if gr.status != ReceiptStatus.draft:
        raise HTTPException(status_code=400, detail=f"Cannot complete a goods receipt with status: {gr.status.value}")

    gr.status = ReceiptStatus.completed
    gr.completed_at = utcnow()
    db.flush()

    # ✅ statut du PO recalculé dans la même transaction
    if gr.po_id is not None:
        po = lock_or_404(db, PurchaseOrder, gr.po_id, "PO")
        refresh_po_status(db, po)

    log_interaction(db, "complete", f"Completed goods receipt {gr.receipt_number}", "GoodsReceipt", gr.id, actor.id)
    db.commit()
    db.refresh(gr)
    return serialize_receipt(gr, with_lines=True)


@router.post("/{receipt_id}/cancel")
def cancel_receipt(
    receipt_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_RECEIVERS)),
):
    gr = _receipt_in_scope(db, lock_or_404(db, GoodsReceipt, receipt_id, "Goods receipt"), scope)
    if gr.status != ReceiptStatus.draft:
        raise HTTPException(status_code=400, detail=f"Cannot cancel a goods receipt with status: {gr.status.value}")

    gr.status = ReceiptStatus.cancelled
    log_interaction(db, "cancel", f"Cancelled goods receipt {gr.receipt_number}", "GoodsReceipt", gr.id, actor.id)
    db.commit()
    db.refresh(gr)
    return serialize_receipt(gr)

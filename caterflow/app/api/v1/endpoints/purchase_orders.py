from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from caterflow.app.api.deps import SiteScope, get_db, get_site_scope, require_roles
from caterflow.app.api.v1.common import check_stock_items, flush_or_409, get_or_404, lock_or_404
from caterflow.app.db.models.models_v1 import (
    PurchaseOrder,
    PurchaseOrderLine,
    Supplier,
    Site,
    User,
)
from caterflow.app.db.models.core_types import PO_APPROVER_ROLES, POStatus, Role
from caterflow.app.schemas.common import UtcDateTime, utcnow
from caterflow.services.audit import log_interaction
from caterflow.services.numbering import new_po_number
from caterflow.services.pdf import render_purchase_order
from caterflow.services.procurement import outstanding_quantities

router = APIRouter(prefix="/purchase-orders")

_PO_WRITERS = (Role.admin, Role.site_manager, Role.procurer, Role.stock_controller)
_EDITABLE_PO_STATUSES = {POStatus.draft, POStatus.pending_approval}


class POLineCreate(BaseModel):
    stock_item_id: int
    ordered_quantity: Decimal = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)


class POCreate(BaseModel):
    po_number: str | None = Field(default=None, min_length=1, max_length=64)
    supplier_id: int
    site_id: int
    order_date: UtcDateTime | None = None
    expected_delivery_date: date | None = None
    status: POStatus = POStatus.draft
    notes: str | None = None
    lines: list[POLineCreate] = Field(min_length=1)


class POLinesUpdate(BaseModel):
    expected_delivery_date: date | None = None
    notes: str | None = None
    lines: list[POLineCreate] | None = Field(default=None, min_length=1)


def serialize_po(po: PurchaseOrder, *, with_lines: bool = False) -> dict:
    out = {
        "id": po.id,
        "po_number": po.po_number,
        "order_date": po.order_date,
        "supplier_id": po.supplier_id,
        "supplier_name": po.supplier.name if po.supplier else None,
        "site_id": po.site_id,
        "status": po.status,
        "expected_delivery_date": po.expected_delivery_date,
        "ordered_by": po.ordered_by,
        "approved_by": po.approved_by,
        "approved_at": po.approved_at,
        "notes": po.notes,
        "total_amount": po.total_amount,
        "created_at": po.created_at,
    }
    if with_lines:
        out["lines"] = [
            {
                "stock_item_id": ln.stock_item_id,
                "ordered_quantity": ln.ordered_quantity,
                "unit_price": ln.unit_price,
            }
            for ln in po.lines
        ]
    return out


def _po_in_scope(po: PurchaseOrder, scope: SiteScope) -> PurchaseOrder:
    if not scope.allows(po.site_id):
        raise HTTPException(status_code=403, detail="No access to this purchase order")
    return po


def _build_lines(db: Session, lines: list[POLineCreate]) -> list[PurchaseOrderLine]:
    items = check_stock_items(db, [ln.stock_item_id for ln in lines])
    return [
        PurchaseOrderLine(
            stock_item_id=ln.stock_item_id,
            ordered_quantity=ln.ordered_quantity,
            # prix catalogue si non fourni
            unit_price=ln.unit_price if ln.unit_price is not None else items[ln.stock_item_id].unit_price,
        )
        for ln in lines
    ]


@router.get("")
def list_pos(
    status: POStatus | None = None,
    supplier_id: int | None = None,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    stmt = (
        select(PurchaseOrder)
        .options(selectinload(PurchaseOrder.lines), selectinload(PurchaseOrder.supplier))
        .order_by(PurchaseOrder.id.desc())
    )
    if status is not None:
        stmt = stmt.where(PurchaseOrder.status == status)
    if supplier_id is not None:
        stmt = stmt.where(PurchaseOrder.supplier_id == supplier_id)
    if scope.site_ids is not None:
        stmt = stmt.where(PurchaseOrder.site_id.in_(scope.site_ids))
    return [serialize_po(po) for po in db.execute(stmt).scalars().all()]


@router.get("/{po_id}")
def get_po(
    po_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    po = _po_in_scope(get_or_404(db, PurchaseOrder, po_id, "PO"), scope)
    out = serialize_po(po, with_lines=True)
    out["outstanding"] = [
        {"stock_item_id": item_id, "quantity": qty}
        for item_id, qty in outstanding_quantities(db, po.id).items()
    ]
    return out


@router.get("/{po_id}/pdf")
def po_pdf(
    po_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    po = _po_in_scope(get_or_404(db, PurchaseOrder, po_id, "PO"), scope)
    return Response(
        content=render_purchase_order(po),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{po.po_number}.pdf"'},
    )


@router.post("")
def create_po(
    payload: POCreate,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_PO_WRITERS)),
):
    if payload.status not in _EDITABLE_PO_STATUSES:
        raise HTTPException(status_code=400, detail="A purchase order starts as draft or pending-approval")

    # numéro de PO unique
    po_number = payload.po_number or new_po_number(db)
    exists = db.execute(select(PurchaseOrder).where(PurchaseOrder.po_number == po_number)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="PO number already exists")

    # FK checks (fail fast, message clair)
    if not db.get(Supplier, payload.supplier_id):
        raise HTTPException(status_code=400, detail="Invalid supplier_id")
    if not db.get(Site, payload.site_id):
        raise HTTPException(status_code=400, detail="Invalid site_id")
    if not scope.allows(payload.site_id):
        raise HTTPException(status_code=403, detail="No access to this site")

    po = PurchaseOrder(
        po_number=po_number,
        order_date=payload.order_date or utcnow(),
        supplier_id=payload.supplier_id,
        site_id=payload.site_id,
        status=payload.status,
        expected_delivery_date=payload.expected_delivery_date,
        notes=payload.notes,
        ordered_by=actor.id,
    )
    po.lines = _build_lines(db, payload.lines)
    db.add(po)
    flush_or_409(db, "PO number already exists")  # po.id

    log_interaction(db, "create", f"Created purchase order {po.po_number}", "PurchaseOrder", po.id, actor.id)
    db.commit()
    db.refresh(po)
    return serialize_po(po, with_lines=True)


@router.put("/{po_id}/lines")
def update_po_lines(
    po_id: int,
    payload: POLinesUpdate,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_PO_WRITERS)),
):
    po = _po_in_scope(lock_or_404(db, PurchaseOrder, po_id, "PO"), scope)
    if po.status not in _EDITABLE_PO_STATUSES:
        raise HTTPException(status_code=400, detail=f"Cannot edit a purchase order with status: {po.status.value}")

    data = payload.model_dump(exclude_unset=True)
    if "expected_delivery_date" in data:
        po.expected_delivery_date = payload.expected_delivery_date
    if "notes" in data:
        po.notes = payload.notes
    if payload.lines is not None:
        po.lines.clear()
        db.flush()
        po.lines.extend(_build_lines(db, payload.lines))

    log_interaction(db, "update", f"Updated purchase order {po.po_number}", "PurchaseOrder", po.id, actor.id)
    db.commit()
    db.refresh(po)
    return serialize_po(po, with_lines=True)


@router.post("/{po_id}/submit")
def submit_po(
    po_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_PO_WRITERS)),
):
    po = _po_in_scope(lock_or_404(db, PurchaseOrder, po_id, "PO"), scope)
    if po.status != POStatus.draft:
        raise HTTPException(status_code=400, detail=f"Cannot submit a purchase order with status: {po.status.value}")

    po.status = POStatus.pending_approval
    log_interaction(db, "submit", f"Submitted purchase order {po.po_number}", "PurchaseOrder", po.id, actor.id)
    db.commit()
    db.refresh(po)
    return serialize_po(po)


@router.post("/{po_id}/approve")
def approve_po(
    po_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*PO_APPROVER_ROLES)),
):
    po = _po_in_scope(lock_or_404(db, PurchaseOrder, po_id, "PO"), scope)
    if po.status not in _EDITABLE_PO_STATUSES:
        raise HTTPException(status_code=400, detail=f"Cannot approve a purchase order with status: {po.status.value}")

    po.status = POStatus.approved
    po.approved_by = actor.id
    po.approved_at = utcnow()
    log_interaction(db, "approve", f"Approved purchase order {po.po_number}", "PurchaseOrder", po.id, actor.id)
    db.commit()
    db.refresh(po)
    return serialize_po(po)


@router.post("/{po_id}/cancel")
def cancel_po(
    po_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_PO_WRITERS)),
):
    po = _po_in_scope(lock_or_404(db, PurchaseOrder, po_id, "PO"), scope)
    if po.status not in _EDITABLE_PO_STATUSES | {POStatus.approved}:
        raise HTTPException(status_code=400, detail=f"Cannot cancel a purchase order with status: {po.status.value}")

    po.status = POStatus.cancelled
    log_interaction(db, "cancel", f"Cancelled purchase order {po.po_number}", "PurchaseOrder", po.id, actor.id)
    db.commit()
    db.refresh(po)
    return serialize_po(po)

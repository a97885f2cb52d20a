from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from caterflow.app.api.deps import SiteScope, get_current_user, get_db, get_site_scope, require_roles
from caterflow.app.api.v1.common import check_bin, check_stock_items, flush_or_409, get_or_404, stock_http_error
from caterflow.app.db.models.models_v1 import Bin, DispatchLine, DispatchLog, DispatchType, User
from caterflow.app.db.models.core_types import Role
from caterflow.app.schemas.common import UtcDateTime, utcnow
from caterflow.services.audit import log_interaction
from caterflow.services.inventory import InsufficientStock, StockRequest, ensure_available
from caterflow.services.numbering import next_dispatch_number

router = APIRouter(prefix="/dispatches")

_DISPATCHERS = (Role.admin, Role.site_manager, Role.stock_controller, Role.dispatch_staff)


class DispatchLineIn(BaseModel):
    stock_item_id: int
    dispatched_quantity: Decimal = Field(ge=0)
    notes: str | None = None


class DispatchCreate(BaseModel):
    dispatch_date: UtcDateTime | None = None
    dispatch_type_id: int | None = None
    source_bin_id: int
    people_fed: int | None = Field(default=None, ge=0)
    notes: str | None = None
    lines: list[DispatchLineIn] = Field(min_length=1)


def serialize_dispatch(d: DispatchLog, *, with_lines: bool = False) -> dict:
    out = {
        "id": d.id,
        "dispatch_number": d.dispatch_number,
        "dispatch_date": d.dispatch_date,
        "dispatch_type_id": d.dispatch_type_id,
        "dispatch_type": d.dispatch_type.name if d.dispatch_type else None,
        "source_bin_id": d.source_bin_id,
        "dispatched_by": d.dispatched_by,
        "people_fed": d.people_fed,
        "notes": d.notes,
        "total_cost": sum((ln.total_cost for ln in d.lines), Decimal("0")),
        "created_at": d.created_at,
    }
    if with_lines:
        out["lines"] = [
            {
                "stock_item_id": ln.stock_item_id,
                "dispatched_quantity": ln.dispatched_quantity,
                "total_cost": ln.total_cost,
                "notes": ln.notes,
            }
            for ln in d.lines
        ]
    return out


def _dispatch_in_scope(db: Session, d: DispatchLog, scope: SiteScope) -> DispatchLog:
    b = db.get(Bin, d.source_bin_id)
    if not scope.allows(b.site_id if b else None):
        raise HTTPException(status_code=403, detail="No access to this dispatch")
    return d


@router.get("")
def list_dispatches(
    date_from: date | None = None,
    date_to: date | None = None,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    stmt = select(DispatchLog).order_by(DispatchLog.dispatch_date.desc(), DispatchLog.id.desc())
    if scope.site_ids is not None:
        stmt = stmt.join(Bin, Bin.id == DispatchLog.source_bin_id).where(Bin.site_id.in_(scope.site_ids))
    rows = db.execute(stmt).scalars().all()
    if date_from is not None:
        rows = [d for d in rows if d.dispatch_date.date() >= date_from]
    if date_to is not None:
        rows = [d for d in rows if d.dispatch_date.date() <= date_to]
    return [serialize_dispatch(d) for d in rows]


@router.get("/next-number")
def dispatch_next_number(
    day: date | None = None,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return {"dispatch_number": next_dispatch_number(db, day)}


@router.get("/{dispatch_id}")
def get_dispatch(
    dispatch_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    d = get_or_404(db, DispatchLog, dispatch_id, "Dispatch")
    return serialize_dispatch(_dispatch_in_scope(db, d, scope), with_lines=True)


@router.post("")
def create_dispatch(
    payload: DispatchCreate,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_DISPATCHERS)),
):
    check_bin(db, payload.source_bin_id, scope, "source_bin_id")
    items = check_stock_items(db, [ln.stock_item_id for ln in payload.lines])
    if payload.dispatch_type_id is not None and not db.get(DispatchType, payload.dispatch_type_id):
        raise HTTPException(status_code=400, detail="Invalid dispatch_type_id")

    # stock relu sous verrou du bin source
    try:
        ensure_available(
            db,
            payload.source_bin_id,
            [StockRequest(ln.stock_item_id, ln.dispatched_quantity) for ln in payload.lines],
        )
    except InsufficientStock as exc:
        raise stock_http_error(exc) from exc

    dispatch_date = payload.dispatch_date or utcnow()
    d = DispatchLog(
        dispatch_number=next_dispatch_number(db, dispatch_date.date()),
        dispatch_date=dispatch_date,
        dispatch_type_id=payload.dispatch_type_id,
        source_bin_id=payload.source_bin_id,
        dispatched_by=actor.id,
        people_fed=payload.people_fed,
        notes=payload.notes,
    )
    d.lines = [
        DispatchLine(
            stock_item_id=ln.stock_item_id,
            dispatched_quantity=ln.dispatched_quantity,
            total_cost=ln.dispatched_quantity * items[ln.stock_item_id].unit_price,
            notes=ln.notes,
        )
        for ln in payload.lines
    ]
    db.add(d)
    flush_or_409(db, "Dispatch number already taken, retry")

    log_interaction(db, "create", f"Created dispatch {d.dispatch_number}", "DispatchLog", d.id, actor.id)
    db.commit()
    db.refresh(d)
    return serialize_dispatch(d, with_lines=True)


@router.delete("/{dispatch_id}")
def delete_dispatch(
    dispatch_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(Role.admin, Role.site_manager)),
):
    d = _dispatch_in_scope(db, get_or_404(db, DispatchLog, dispatch_id, "Dispatch"), scope)
    number = d.dispatch_number
    db.delete(d)
    log_interaction(db, "delete", f"Deleted dispatch {number}", "DispatchLog", dispatch_id, actor.id)
    db.commit()
    return {"ok": True}

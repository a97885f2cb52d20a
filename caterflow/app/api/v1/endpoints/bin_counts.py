from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from caterflow.app.api.deps import SiteScope, get_db, get_site_scope, require_roles
from caterflow.app.api.v1.common import check_bin, check_stock_items, flush_or_409, get_or_404, lock_or_404
from caterflow.app.db.models.models_v1 import Bin, CountedItem, InventoryCount, User
from caterflow.app.db.models.core_types import CountStatus, Role
from caterflow.app.schemas.common import UtcDateTime, utcnow
from caterflow.services.audit import log_interaction
from caterflow.services.numbering import next_count_number
from caterflow.services.stock import ZERO, get_bin_stock

router = APIRouter(prefix="/bin-counts")

_COUNTERS = (Role.admin, Role.site_manager, Role.stock_controller, Role.auditor)


class CountLineIn(BaseModel):
    stock_item_id: int
    counted_quantity: Decimal = Field(ge=0)


class CountCreate(BaseModel):
    count_date: UtcDateTime | None = None
    bin_id: int
    notes: str | None = None
    lines: list[CountLineIn] = Field(default_factory=list)


class CountUpdate(BaseModel):
    count_date: UtcDateTime | None = None
    notes: str | None = None
    lines: list[CountLineIn] | None = None


def serialize_count(c: InventoryCount, *, with_lines: bool = False) -> dict:
    out = {
        "id": c.id,
        "count_number": c.count_number,
        "count_date": c.count_date,
        "bin_id": c.bin_id,
        "counted_by": c.counted_by,
        "status": c.status,
        "notes": c.notes,
        "completed_at": c.completed_at,
        "created_at": c.created_at,
    }
    if with_lines:
        out["lines"] = [
            {
                "stock_item_id": ln.stock_item_id,
                "counted_quantity": ln.counted_quantity,
                "system_quantity_at_count_time": ln.system_quantity_at_count_time,
                "variance": ln.variance,
            }
            for ln in c.lines
        ]
    return out


def _count_in_scope(db: Session, c: InventoryCount, scope: SiteScope) -> InventoryCount:
    b = db.get(Bin, c.bin_id)
    if not scope.allows(b.site_id if b else None):
        raise HTTPException(status_code=403, detail="No access to this count")
    return c


def _require_in_progress(c: InventoryCount) -> None:
    if c.status != CountStatus.in_progress:
        raise HTTPException(status_code=400, detail=f"Count {c.count_number} is already {c.status.value}")


@router.get("")
def list_counts(
    status: CountStatus | None = None,
    bin_id: int | None = None,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    stmt = select(InventoryCount).order_by(InventoryCount.count_date.desc(), InventoryCount.id.desc())
    if status is not None:
        stmt = stmt.where(InventoryCount.status == status)
    if bin_id is not None:
        stmt = stmt.where(InventoryCount.bin_id == bin_id)
    if scope.site_ids is not None:
        stmt = stmt.join(Bin, Bin.id == InventoryCount.bin_id).where(Bin.site_id.in_(scope.site_ids))
    return [serialize_count(c) for c in db.execute(stmt).scalars().all()]


@router.get("/{count_id}")
def get_count(
    count_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    c = get_or_404(db, InventoryCount, count_id, "Count")
    return serialize_count(_count_in_scope(db, c, scope), with_lines=True)


@router.post("")
def create_count(
    payload: CountCreate,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_COUNTERS)),
):
    check_bin(db, payload.bin_id, scope)
    check_stock_items(db, [ln.stock_item_id for ln in payload.lines])

    c = InventoryCount(
        count_number=next_count_number(db),
        count_date=payload.count_date or utcnow(),
        bin_id=payload.bin_id,
        counted_by=actor.id,
        status=CountStatus.in_progress,
        notes=payload.notes,
    )
    c.lines = [CountedItem(**ln.model_dump()) for ln in payload.lines]
    db.add(c)
    flush_or_409(db, "Count number already taken, retry")

    log_interaction(db, "create", f"Created count {c.count_number}", "InventoryCount", c.id, actor.id)
    db.commit()
    db.refresh(c)
    return serialize_count(c, with_lines=True)


@router.patch("/{count_id}")
def update_count(
    count_id: int,
    payload: CountUpdate,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_COUNTERS)),
):
    c = _count_in_scope(db, lock_or_404(db, InventoryCount, count_id, "Count"), scope)
    _require_in_progress(c)

    data = payload.model_dump(exclude_unset=True)
    if payload.count_date is not None:
        c.count_date = payload.count_date
    if "notes" in data:
        c.notes = payload.notes
    if payload.lines is not None:
        check_stock_items(db, [ln.stock_item_id for ln in payload.lines])
        c.lines.clear()
        db.flush()
        c.lines.extend(CountedItem(**ln.model_dump()) for ln in payload.lines)

    log_interaction(db, "update", f"Updated count {c.count_number}", "InventoryCount", c.id, actor.id)
    db.commit()
    db.refresh(c)
    return serialize_count(c, with_lines=True)


@router.post("/{count_id}/complete")
def complete_count(
    count_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_COUNTERS)),
):
    """
    Fige le comptage : quantité système à count_date et écart par ligne.
    Une fois COMPLETED, le comptage devient le snapshot du moteur de stock.
    """
    c = _count_in_scope(db, lock_or_404(db, InventoryCount, count_id, "Count"), scope)
    _require_in_progress(c)
    if not c.lines:
        raise HTTPException(status_code=400, detail="Cannot complete a count without lines")

    system = get_bin_stock(db, [ln.stock_item_id for ln in c.lines], c.bin_id, as_of=c.count_date)
    for ln in c.lines:
        ln.system_quantity_at_count_time = system.get(ln.stock_item_id, ZERO)
        ln.variance = ln.counted_quantity - ln.system_quantity_at_count_time

    c.status = CountStatus.completed
    c.completed_at = utcnow()
    log_interaction(db, "complete", f"Completed count {c.count_number}", "InventoryCount", c.id, actor.id)
    db.commit()
    db.refresh(c)
    return serialize_count(c, with_lines=True)


@router.delete("/{count_id}")
def delete_count(
    count_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_COUNTERS)),
):
    c = _count_in_scope(db, get_or_404(db, InventoryCount, count_id, "Count"), scope)
    _require_in_progress(c)

    number = c.count_number
    db.delete(c)
    log_interaction(db, "delete", f"Deleted count {number}", "InventoryCount", count_id, actor.id)
    db.commit()
    return {"ok": True}

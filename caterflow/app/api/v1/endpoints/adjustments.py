from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.orm import Session

from caterflow.app.api.deps import SiteScope, get_db, get_site_scope, require_roles
from caterflow.app.api.v1.common import (
    check_bin,
    check_stock_items,
    flush_or_409,
    get_or_404,
    lock_or_404,
    stock_http_error,
    workflow_http_error,
)
from caterflow.app.db.models.models_v1 import Bin, StockAdjustment, StockAdjustmentLine, User
from caterflow.app.db.models.core_types import APPROVER_ROLES, AdjustmentType, ApprovalStatus, Role
from caterflow.app.schemas.common import UtcDateTime, utcnow
from caterflow.services.audit import log_interaction
from caterflow.services.inventory import InsufficientStock, StockRequest, ensure_available
from caterflow.services.numbering import next_adjustment_number
from caterflow.services.workflow import WorkflowError, advance, check_editable, check_transition

router = APIRouter(prefix="/adjustments")

_ADJUSTERS = (Role.admin, Role.site_manager, Role.stock_controller)


class AdjustmentLineIn(BaseModel):
    stock_item_id: int
    adjusted_quantity: Decimal
    reason: str | None = Field(default=None, max_length=255)

    @field_validator("adjusted_quantity")
    @classmethod
    def _non_zero(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("adjusted_quantity must not be 0")
        return v


class AdjustmentCreate(BaseModel):
    adjustment_date: UtcDateTime | None = None
    bin_id: int
    adjustment_type: AdjustmentType
    notes: str | None = None
    lines: list[AdjustmentLineIn] = Field(min_length=1)


class AdjustmentUpdate(BaseModel):
    adjustment_date: UtcDateTime | None = None
    adjustment_type: AdjustmentType | None = None
    notes: str | None = None
    lines: list[AdjustmentLineIn] | None = Field(default=None, min_length=1)


def serialize_adjustment(a: StockAdjustment, *, with_lines: bool = False) -> dict:
    out = {
        "id": a.id,
        "adjustment_number": a.adjustment_number,
        "adjustment_date": a.adjustment_date,
        "bin_id": a.bin_id,
        "adjusted_by": a.adjusted_by,
        "adjustment_type": a.adjustment_type,
        "status": a.status,
        "approved_by": a.approved_by,
        "approved_at": a.approved_at,
        "completed_at": a.completed_at,
        "notes": a.notes,
        "created_at": a.created_at,
    }
    if with_lines:
        out["lines"] = [
            {"stock_item_id": ln.stock_item_id, "adjusted_quantity": ln.adjusted_quantity, "reason": ln.reason}
            for ln in a.lines
        ]
    return out


def _adjustment_in_scope(db: Session, a: StockAdjustment, scope: SiteScope) -> StockAdjustment:
    b = db.get(Bin, a.bin_id)
    if not scope.allows(b.site_id if b else None):
        raise HTTPException(status_code=403, detail="No access to this adjustment")
    return a


def _move(
    db: Session,
    adjustment_id: int,
    target: ApprovalStatus,
    scope: SiteScope,
    actor: User,
    action: str,
) -> dict:
    a = _adjustment_in_scope(db, lock_or_404(db, StockAdjustment, adjustment_id, "Adjustment"), scope)
    try:
        check_transition(a.status, target)
        if target == ApprovalStatus.completed:
            # seules les sorties consomment du stock
            ensure_available(
                db,
                a.bin_id,
                [StockRequest(ln.stock_item_id, -ln.adjusted_quantity) for ln in a.lines if ln.adjusted_quantity < 0],
            )
        advance(a, target, actor.id, utcnow())
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    except InsufficientStock as exc:
        raise stock_http_error(exc) from exc

    log_interaction(db, action, f"Adjustment {a.adjustment_number}: {action}", "StockAdjustment", a.id, actor.id)
    db.commit()
    db.refresh(a)
    return serialize_adjustment(a, with_lines=True)


@router.get("")
def list_adjustments(
    status: ApprovalStatus | None = None,
    bin_id: int | None = None,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    stmt = select(StockAdjustment).order_by(StockAdjustment.adjustment_date.desc(), StockAdjustment.id.desc())
    if status is not None:
        stmt = stmt.where(StockAdjustment.status == status)
    if bin_id is not None:
        stmt = stmt.where(StockAdjustment.bin_id == bin_id)
    if scope.site_ids is not None:
        stmt = stmt.join(Bin, Bin.id == StockAdjustment.bin_id).where(Bin.site_id.in_(scope.site_ids))
    return [serialize_adjustment(a) for a in db.execute(stmt).scalars().all()]


@router.get("/{adjustment_id}")
def get_adjustment(
    adjustment_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    a = get_or_404(db, StockAdjustment, adjustment_id, "Adjustment")
    return serialize_adjustment(_adjustment_in_scope(db, a, scope), with_lines=True)


@router.post("")
def create_adjustment(
    payload: AdjustmentCreate,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_ADJUSTERS)),
):
    check_bin(db, payload.bin_id, scope)
    check_stock_items(db, [ln.stock_item_id for ln in payload.lines])

    a = StockAdjustment(
        adjustment_number=next_adjustment_number(db),
        adjustment_date=payload.adjustment_date or utcnow(),
        bin_id=payload.bin_id,
        adjusted_by=actor.id,
        adjustment_type=payload.adjustment_type,
        status=ApprovalStatus.draft,
        notes=payload.notes,
    )
    a.lines = [StockAdjustmentLine(**ln.model_dump()) for ln in payload.lines]
    db.add(a)
    flush_or_409(db, "Adjustment number already taken, retry")

    log_interaction(db, "create", f"Created adjustment {a.adjustment_number}", "StockAdjustment", a.id, actor.id)
    db.commit()
    db.refresh(a)
    return serialize_adjustment(a, with_lines=True)


@router.patch("/{adjustment_id}")
def update_adjustment(
    adjustment_id: int,
    payload: AdjustmentUpdate,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_ADJUSTERS)),
):
    a = _adjustment_in_scope(db, lock_or_404(db, StockAdjustment, adjustment_id, "Adjustment"), scope)
    try:
        check_editable(a.status)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc

    data = payload.model_dump(exclude_unset=True)
    if payload.adjustment_date is not None:
        a.adjustment_date = payload.adjustment_date
    if payload.adjustment_type is not None:
        a.adjustment_type = payload.adjustment_type
    if "notes" in data:
        a.notes = payload.notes
    if payload.lines is not None:
        check_stock_items(db, [ln.stock_item_id for ln in payload.lines])
        a.lines.clear()
        db.flush()
        a.lines.extend(StockAdjustmentLine(**ln.model_dump()) for ln in payload.lines)

    log_interaction(db, "update", f"Updated adjustment {a.adjustment_number}", "StockAdjustment", a.id, actor.id)
    db.commit()
    db.refresh(a)
    return serialize_adjustment(a, with_lines=True)


@router.post("/{adjustment_id}/submit")
def submit_adjustment(
    adjustment_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_ADJUSTERS)),
):
    return _move(db, adjustment_id, ApprovalStatus.pending_approval, scope, actor, "submit")


@router.post("/{adjustment_id}/approve")
def approve_adjustment(
    adjustment_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*APPROVER_ROLES)),
):
    return _move(db, adjustment_id, ApprovalStatus.approved, scope, actor, "approve")


@router.post("/{adjustment_id}/reject")
def reject_adjustment(
    adjustment_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*APPROVER_ROLES)),
):
    return _move(db, adjustment_id, ApprovalStatus.rejected, scope, actor, "reject")


@router.post("/{adjustment_id}/complete")
def complete_adjustment(
    adjustment_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_ADJUSTERS)),
):
    return _move(db, adjustment_id, ApprovalStatus.completed, scope, actor, "complete")


@router.post("/{adjustment_id}/cancel")
def cancel_adjustment(
    adjustment_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_ADJUSTERS)),
):
    return _move(db, adjustment_id, ApprovalStatus.cancelled, scope, actor, "cancel")

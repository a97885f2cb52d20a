from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from caterflow.app.api.deps import SiteScope, get_current_user, get_db, get_site_scope, require_roles
from caterflow.app.api.v1.common import (
    check_bin,
    check_stock_items,
    flush_or_409,
    get_or_404,
    lock_or_404,
    stock_http_error,
    workflow_http_error,
)
from caterflow.app.db.models.models_v1 import Bin, InternalTransfer, InternalTransferLine, User
from caterflow.app.db.models.core_types import APPROVER_ROLES, ApprovalStatus, Role
from caterflow.app.schemas.common import UtcDateTime, utcnow
from caterflow.services.audit import log_interaction
from caterflow.services.inventory import InsufficientStock, StockRequest, ensure_available
from caterflow.services.numbering import next_transfer_number
from caterflow.services.workflow import WorkflowError, advance, check_editable, check_transition

router = APIRouter(prefix="/transfers")

_MOVERS = (Role.admin, Role.site_manager, Role.stock_controller)


class TransferLineIn(BaseModel):
    stock_item_id: int
    transferred_quantity: Decimal = Field(gt=0)


class TransferCreate(BaseModel):
    transfer_date: UtcDateTime | None = None
    from_bin_id: int
    to_bin_id: int
    notes: str | None = None
    lines: list[TransferLineIn] = Field(min_length=1)


class TransferUpdate(BaseModel):
    transfer_date: UtcDateTime | None = None
    from_bin_id: int | None = None
    to_bin_id: int | None = None
    notes: str | None = None
    lines: list[TransferLineIn] | None = Field(default=None, min_length=1)


def serialize_transfer(t: InternalTransfer, *, with_lines: bool = False) -> dict:
    out = {
        "id": t.id,
        "transfer_number": t.transfer_number,
        "transfer_date": t.transfer_date,
        "from_bin_id": t.from_bin_id,
        "to_bin_id": t.to_bin_id,
        "transferred_by": t.transferred_by,
        "status": t.status,
        "approved_by": t.approved_by,
        "approved_at": t.approved_at,
        "completed_at": t.completed_at,
        "notes": t.notes,
        "created_at": t.created_at,
    }
    if with_lines:
        out["lines"] = [
            {"stock_item_id": ln.stock_item_id, "transferred_quantity": ln.transferred_quantity}
            for ln in t.lines
        ]
    return out


def _transfer_in_scope(db: Session, t: InternalTransfer, scope: SiteScope) -> InternalTransfer:
    sites = {b.site_id for b in (db.get(Bin, t.from_bin_id), db.get(Bin, t.to_bin_id)) if b}
    if not any(scope.allows(s) for s in sites):
        raise HTTPException(status_code=403, detail="No access to this transfer")
    return t


def _check_bins(db: Session, from_bin_id: int, to_bin_id: int, scope: SiteScope) -> None:
    if from_bin_id == to_bin_id:
        raise HTTPException(status_code=400, detail="from_bin_id and to_bin_id must differ")
    check_bin(db, from_bin_id, scope, "from_bin_id")
    if not db.get(Bin, to_bin_id):
        raise HTTPException(status_code=400, detail="Invalid to_bin_id")


def _move(
    db: Session,
    transfer_id: int,
    target: ApprovalStatus,
    scope: SiteScope,
    actor: User,
    action: str,
) -> dict:
    t = _transfer_in_scope(db, lock_or_404(db, InternalTransfer, transfer_id, "Transfer"), scope)
    try:
        check_transition(t.status, target)
        if target == ApprovalStatus.completed:
            # stock relu sous verrou du bin source : il doit couvrir chaque ligne
            ensure_available(
                db,
                t.from_bin_id,
                [StockRequest(ln.stock_item_id, ln.transferred_quantity) for ln in t.lines],
            )
        advance(t, target, actor.id, utcnow())
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    except InsufficientStock as exc:
        raise stock_http_error(exc) from exc

    log_interaction(db, action, f"Transfer {t.transfer_number}: {action}", "InternalTransfer", t.id, actor.id)
    db.commit()
    db.refresh(t)
    return serialize_transfer(t, with_lines=True)


@router.get("")
def list_transfers(
    status: ApprovalStatus | None = None,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    stmt = select(InternalTransfer).order_by(InternalTransfer.transfer_date.desc(), InternalTransfer.id.desc())
    if status is not None:
        stmt = stmt.where(InternalTransfer.status == status)
    rows = db.execute(stmt).scalars().all()
    if scope.site_ids is not None:
        visible = set(
            db.execute(select(Bin.id).where(Bin.site_id.in_(scope.site_ids))).scalars().all()
        )
        rows = [t for t in rows if t.from_bin_id in visible or t.to_bin_id in visible]
    return [serialize_transfer(t) for t in rows]


@router.get("/next-number")
def transfer_next_number(
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return {"transfer_number": next_transfer_number(db)}


@router.get("/{transfer_id}")
def get_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    t = get_or_404(db, InternalTransfer, transfer_id, "Transfer")
    return serialize_transfer(_transfer_in_scope(db, t, scope), with_lines=True)


@router.post("")
def create_transfer(
    payload: TransferCreate,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_MOVERS)),
):
    _check_bins(db, payload.from_bin_id, payload.to_bin_id, scope)
    check_stock_items(db, [ln.stock_item_id for ln in payload.lines])

    t = InternalTransfer(
        transfer_number=next_transfer_number(db),
        transfer_date=payload.transfer_date or utcnow(),
        from_bin_id=payload.from_bin_id,
        to_bin_id=payload.to_bin_id,
        transferred_by=actor.id,
        status=ApprovalStatus.draft,
        notes=payload.notes,
    )
    t.lines = [InternalTransferLine(**ln.model_dump()) for ln in payload.lines]
    db.add(t)
    flush_or_409(db, "Transfer number already taken, retry")

    log_interaction(db, "create", f"Created transfer {t.transfer_number}", "InternalTransfer", t.id, actor.id)
    db.commit()
    db.refresh(t)
    return serialize_transfer(t, with_lines=True)


@router.patch("/{transfer_id}")
def update_transfer(
    transfer_id: int,
    payload: TransferUpdate,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_MOVERS)),
):
    t = _transfer_in_scope(db, lock_or_404(db, InternalTransfer, transfer_id, "Transfer"), scope)
    try:
        check_editable(t.status)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc

    data = payload.model_dump(exclude_unset=True)
    from_bin_id = data.get("from_bin_id") or t.from_bin_id
    to_bin_id = data.get("to_bin_id") or t.to_bin_id
    if "from_bin_id" in data or "to_bin_id" in data:
        _check_bins(db, from_bin_id, to_bin_id, scope)
        t.from_bin_id = from_bin_id
        t.to_bin_id = to_bin_id
    if payload.transfer_date is not None:
        t.transfer_date = payload.transfer_date
    if "notes" in data:
        t.notes = payload.notes
    if payload.lines is not None:
        check_stock_items(db, [ln.stock_item_id for ln in payload.lines])
        t.lines.clear()
        db.flush()
        t.lines.extend(InternalTransferLine(**ln.model_dump()) for ln in payload.lines)

    log_interaction(db, "update", f"Updated transfer {t.transfer_number}", "InternalTransfer", t.id, actor.id)
    db.commit()
    db.refresh(t)
    return serialize_transfer(t, with_lines=True)


@router.post("/{transfer_id}/submit")
def submit_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_MOVERS)),
):
    return _move(db, transfer_id, ApprovalStatus.pending_approval, scope, actor, "submit")


@router.post("/{transfer_id}/approve")
def approve_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*APPROVER_ROLES)),
):
    return _move(db, transfer_id, ApprovalStatus.approved, scope, actor, "approve")


@router.post("/{transfer_id}/reject")
def reject_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*APPROVER_ROLES)),
):
    return _move(db, transfer_id, ApprovalStatus.rejected, scope, actor, "reject")


@router.post("/{transfer_id}/complete")
def complete_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_MOVERS)),
):
    return _move(db, transfer_id, ApprovalStatus.completed, scope, actor, "complete")


@router.post("/{transfer_id}/cancel")
def cancel_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_MOVERS)),
):
    return _move(db, transfer_id, ApprovalStatus.cancelled, scope, actor, "cancel")

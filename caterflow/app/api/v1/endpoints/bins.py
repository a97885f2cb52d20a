from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from caterflow.app.api.deps import SiteScope, get_db, get_site_scope, require_roles
from caterflow.app.api.v1.common import get_or_404
from caterflow.app.db.models.models_v1 import (
    Bin,
    DispatchLog,
    GoodsReceipt,
    InternalTransfer,
    InventoryCount,
    Site,
    StockAdjustment,
    StockItem,
    User,
)
from caterflow.app.db.models.core_types import BinType, Role
from caterflow.services.audit import log_interaction
from caterflow.services.stock import get_bin_stock

router = APIRouter(prefix="/bins")

_BIN_WRITERS = (Role.admin, Role.site_manager)


class BinCreate(BaseModel):
    site_id: int
    name: str = Field(min_length=1, max_length=200)
    location_description: str | None = Field(default=None, max_length=255)
    capacity: int | None = Field(default=None, ge=0)
    bin_type: BinType = BinType.main_storage


class BinUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    location_description: str | None = Field(default=None, max_length=255)
    capacity: int | None = Field(default=None, ge=0)
    bin_type: BinType | None = None


def serialize_bin(b: Bin) -> dict:
    return {
        "id": b.id,
        "site_id": b.site_id,
        "site_name": b.site.name if b.site else None,
        "name": b.name,
        "location_description": b.location_description,
        "capacity": b.capacity,
        "bin_type": b.bin_type,
    }


def _bin_in_scope(db: Session, bin_id: int, scope: SiteScope) -> Bin:
    b = get_or_404(db, Bin, bin_id, "Bin")
    if not scope.allows(b.site_id):
        raise HTTPException(status_code=403, detail="No access to this bin")
    return b


@router.get("")
def list_bins(
    site_id: int | None = None,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    stmt = select(Bin).order_by(Bin.site_id, Bin.name)
    if site_id is not None:
        stmt = stmt.where(Bin.site_id == site_id)
    if scope.site_ids is not None:
        stmt = stmt.where(Bin.site_id.in_(scope.site_ids))
    return [serialize_bin(b) for b in db.execute(stmt).scalars().all()]


@router.get("/{bin_id}")
def get_bin(
    bin_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    return serialize_bin(_bin_in_scope(db, bin_id, scope))


@router.get("/{bin_id}/stock")
def bin_stock(
    bin_id: int,
    stock_item_id: list[int] | None = Query(default=None),
    as_of: datetime | None = None,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    """Disponible par article dans un bin (tous les articles si aucun n'est donné)."""
    _bin_in_scope(db, bin_id, scope)
    item_ids = stock_item_id or db.execute(select(StockItem.id)).scalars().all()
    stock = get_bin_stock(db, item_ids, bin_id, as_of=as_of)
    return [{"stock_item_id": item_id, "on_hand": qty} for item_id, qty in stock.items()]


@router.post("")
def create_bin(
    payload: BinCreate,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_BIN_WRITERS)),
):
    if not db.get(Site, payload.site_id):
        raise HTTPException(status_code=400, detail="Invalid site_id")
    if not scope.allows(payload.site_id):
        raise HTTPException(status_code=403, detail="No access to this site")

    exists = db.execute(
        select(Bin).where(Bin.site_id == payload.site_id).where(Bin.name == payload.name)
    ).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Bin name already exists for this site")

    b = Bin(
        site_id=payload.site_id,
        name=payload.name,
        location_description=payload.location_description,
        capacity=payload.capacity,
        bin_type=payload.bin_type,
    )
    db.add(b)
    db.flush()
    log_interaction(db, "create", f"Created bin {b.name}", "Bin", b.id, actor.id)
    db.commit()
    db.refresh(b)
    return serialize_bin(b)


@router.patch("/{bin_id}")
def update_bin(
    bin_id: int,
    payload: BinUpdate,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_BIN_WRITERS)),
):
    b = _bin_in_scope(db, bin_id, scope)
    data = payload.model_dump(exclude_unset=True)

    if data.get("name") and data["name"] != b.name:
        clash = db.execute(
            select(Bin).where(Bin.site_id == b.site_id).where(Bin.name == data["name"])
        ).scalar_one_or_none()
        if clash:
            raise HTTPException(status_code=409, detail="Bin name already exists for this site")

    for field, value in data.items():
        setattr(b, field, value)
    log_interaction(db, "update", f"Updated bin {b.name}", "Bin", b.id, actor.id)
    db.commit()
    db.refresh(b)
    return serialize_bin(b)


@router.delete("/{bin_id}")
def delete_bin(
    bin_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
    actor: User = Depends(require_roles(*_BIN_WRITERS)),
):
    b = _bin_in_scope(db, bin_id, scope)

    # un bin référencé par le ledger ne peut plus disparaître
    referenced = (
        db.execute(select(GoodsReceipt.id).where(GoodsReceipt.receiving_bin_id == bin_id)).first()
        or db.execute(select(DispatchLog.id).where(DispatchLog.source_bin_id == bin_id)).first()
        or db.execute(
            select(InternalTransfer.id).where(
                (InternalTransfer.from_bin_id == bin_id) | (InternalTransfer.to_bin_id == bin_id)
            )
        ).first()
        or db.execute(select(StockAdjustment.id).where(StockAdjustment.bin_id == bin_id)).first()
        or db.execute(select(InventoryCount.id).where(InventoryCount.bin_id == bin_id)).first()
    )
    if referenced:
        raise HTTPException(status_code=409, detail="Bin is referenced by stock documents")

    db.delete(b)
    log_interaction(db, "delete", f"Deleted bin {b.name}", "Bin", bin_id, actor.id)
    db.commit()
    return {"ok": True}

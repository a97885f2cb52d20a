from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from caterflow.app.api.deps import SiteScope, get_current_user, get_db, get_site_scope, require_roles
from caterflow.app.api.v1.common import check_bin, get_or_404
from caterflow.app.db.models.models_v1 import (
    Category,
    CountedItem,
    DispatchLine,
    GoodsReceiptLine,
    InternalTransferLine,
    PurchaseOrderLine,
    StockAdjustmentLine,
    StockItem,
    Supplier,
    User,
)
from caterflow.app.db.models.core_types import ItemType, Role, UnitOfMeasure
from caterflow.services.audit import log_interaction
from caterflow.services.inventory import resolve_bins, stock_status
from caterflow.services.stock import ZERO, calculate_bulk_stock, calculate_stock, totals_by_item

router = APIRouter(prefix="/stock-items")

_ITEM_WRITERS = (Role.admin, Role.site_manager, Role.stock_controller, Role.procurer)

# lignes de documents qui référencent un article
_LINE_ITEM_COLUMNS = (
    PurchaseOrderLine.stock_item_id,
    GoodsReceiptLine.stock_item_id,
    DispatchLine.stock_item_id,
    InternalTransferLine.stock_item_id,
    StockAdjustmentLine.stock_item_id,
    CountedItem.stock_item_id,
)


class StockItemCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    sku: str = Field(min_length=1, max_length=64)
    item_type: ItemType = ItemType.food
    category_id: int | None = None
    unit_of_measure: UnitOfMeasure = UnitOfMeasure.each
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    minimum_stock_level: Decimal = Field(default=Decimal("0"), ge=0)
    reorder_quantity: Decimal | None = Field(default=None, ge=0)
    primary_supplier_id: int | None = None
    supplier_ids: list[int] = Field(default_factory=list)
    description: str | None = None
    is_active: bool = True


class StockItemUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    sku: str | None = Field(default=None, min_length=1, max_length=64)
    item_type: ItemType | None = None
    category_id: int | None = None
    unit_of_measure: UnitOfMeasure | None = None
    unit_price: Decimal | None = Field(default=None, ge=0)
    minimum_stock_level: Decimal | None = Field(default=None, ge=0)
    reorder_quantity: Decimal | None = Field(default=None, ge=0)
    primary_supplier_id: int | None = None
    supplier_ids: list[int] | None = None
    description: str | None = None
    is_active: bool | None = None


def serialize_stock_item(s: StockItem) -> dict:
    return {
        "id": s.id,
        "name": s.name,
        "sku": s.sku,
        "item_type": s.item_type,
        "category_id": s.category_id,
        "category": s.category.title if s.category else None,
        "unit_of_measure": s.unit_of_measure,
        "unit_price": s.unit_price,
        "minimum_stock_level": s.minimum_stock_level,
        "reorder_quantity": s.reorder_quantity,
        "primary_supplier_id": s.primary_supplier_id,
        "supplier_ids": sorted(sup.id for sup in s.suppliers),
        "description": s.description,
        "is_active": s.is_active,
        "created_at": s.created_at,
        "updated_at": s.updated_at,
    }


def _resolve_refs(db: Session, data: dict) -> list[Supplier] | None:
    """FK checks ; renvoie les fournisseurs si supplier_ids est fourni."""
    if data.get("category_id") is not None and not db.get(Category, data["category_id"]):
        raise HTTPException(status_code=400, detail="Invalid category_id")
    if data.get("primary_supplier_id") is not None and not db.get(Supplier, data["primary_supplier_id"]):
        raise HTTPException(status_code=400, detail="Invalid primary_supplier_id")

    ids = data.pop("supplier_ids", None)
    if ids is None:
        return None
    wanted = set(ids)
    suppliers = db.execute(select(Supplier).where(Supplier.id.in_(wanted))).scalars().all() if wanted else []
    missing = wanted - {s.id for s in suppliers}
    if missing:
        raise HTTPException(status_code=400, detail=f"Invalid supplier_id {min(missing)}")
    return list(suppliers)


@router.get("")
def list_stock_items(
    active_only: bool = False,
    category_id: int | None = None,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    stmt = (
        select(StockItem)
        .options(selectinload(StockItem.category), selectinload(StockItem.suppliers))
        .order_by(StockItem.name)
    )
    if active_only:
        stmt = stmt.where(StockItem.is_active.is_(True))
    if category_id is not None:
        stmt = stmt.where(StockItem.category_id == category_id)
    return [serialize_stock_item(s) for s in db.execute(stmt).scalars().all()]


@router.get("/by-site")
def stock_items_by_site(
    site_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    """Chaque article avec son total disponible sur les bins d'un site."""
    if not scope.allows(site_id):
        raise HTTPException(status_code=403, detail="No access to this site")

    bins = resolve_bins(db, [site_id])
    items = db.execute(
        select(StockItem)
        .options(selectinload(StockItem.category), selectinload(StockItem.suppliers))
        .order_by(StockItem.name)
    ).scalars().all()
    balances = calculate_bulk_stock(db, [i.id for i in items], [b.id for b in bins])
    totals = totals_by_item(balances.values())

    out = []
    for item in items:
        current = totals.get(item.id, ZERO)
        row = serialize_stock_item(item)
        row["current_stock"] = current
        row["stock_status"] = stock_status(current, item.minimum_stock_level)
        out.append(row)
    return out


@router.get("/{item_id}")
def get_stock_item(
    item_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return serialize_stock_item(get_or_404(db, StockItem, item_id, "Stock item"))


@router.get("/{item_id}/in-bin/{bin_id}")
def stock_in_bin(
    item_id: int,
    bin_id: int,
    as_of: datetime | None = None,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    get_or_404(db, StockItem, item_id, "Stock item")
    check_bin(db, bin_id, scope)
    return {
        "stock_item_id": item_id,
        "bin_id": bin_id,
        "on_hand": calculate_stock(db, item_id, bin_id, as_of=as_of),
    }


@router.post("")
def create_stock_item(
    payload: StockItemCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(*_ITEM_WRITERS)),
):
    if db.execute(select(StockItem).where(StockItem.sku == payload.sku)).scalar_one_or_none():
        raise HTTPException(status_code=409, detail="SKU already exists")

    data = payload.model_dump()
    suppliers = _resolve_refs(db, data)

    s = StockItem(**data)
    s.suppliers = suppliers or []
    db.add(s)
    db.flush()
    log_interaction(db, "create", f"Created stock item {s.sku}", "StockItem", s.id, actor.id)
    db.commit()
    db.refresh(s)
    return serialize_stock_item(s)


@router.patch("/{item_id}")
def update_stock_item(
    item_id: int,
    payload: StockItemUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(*_ITEM_WRITERS)),
):
    s = get_or_404(db, StockItem, item_id, "Stock item")
    data = payload.model_dump(exclude_unset=True)

    if data.get("sku") and data["sku"] != s.sku:
        if db.execute(select(StockItem).where(StockItem.sku == data["sku"])).scalar_one_or_none():
            raise HTTPException(status_code=409, detail="SKU already exists")

    suppliers = _resolve_refs(db, data)
    for field, value in data.items():
        setattr(s, field, value)
    if suppliers is not None:
        s.suppliers = suppliers

    log_interaction(db, "update", f"Updated stock item {s.sku}", "StockItem", s.id, actor.id)
    db.commit()
    db.refresh(s)
    return serialize_stock_item(s)


@router.delete("/{item_id}")
def delete_stock_item(
    item_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(Role.admin, Role.site_manager)),
):
    s = get_or_404(db, StockItem, item_id, "Stock item")
    used = any(
        db.execute(select(col).where(col == item_id).limit(1)).first()
        for col in _LINE_ITEM_COLUMNS
    )
    if used:
        # historique présent : désactivation seulement
        s.is_active = False
        log_interaction(db, "update", f"Deactivated stock item {s.sku}", "StockItem", s.id, actor.id)
        db.commit()
        return {"ok": True, "deactivated": True}

    db.delete(s)
    log_interaction(db, "delete", f"Deleted stock item {s.sku}", "StockItem", item_id, actor.id)
    db.commit()
    return {"ok": True, "deactivated": False}

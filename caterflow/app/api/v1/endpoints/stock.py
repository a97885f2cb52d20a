from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from caterflow.app.api.deps import SiteScope, get_db, get_site_scope
from caterflow.app.db.models.models_v1 import StockItem
from caterflow.app.schemas.common import SiteIdsBody
from caterflow.app.schemas.stock_balance import StockBalanceRead
from caterflow.services.inventory import find_low_stock_items, resolve_bins
from caterflow.services.stock import calculate_bulk_stock

router = APIRouter()


@router.get(
    "/stock",
    response_model=list[StockBalanceRead],
)
def get_stock(
    site_id: int | None = None,
    bin_id: int | None = None,
    stock_item_id: int | None = None,
    as_of: datetime | None = None,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    """
    Stock (READ ONLY)
    - recalculé à la volée : dernier comptage + mouvements postés
    - quantity brut (peut être < 0), on_hand jamais < 0
    """
    if site_id is not None and not scope.allows(site_id):
        raise HTTPException(status_code=403, detail="No access to this site")

    bins = resolve_bins(db, scope.restrict([site_id] if site_id is not None else None))
    if bin_id is not None:
        bins = [b for b in bins if b.id == bin_id]

    item_stmt = select(StockItem.id).order_by(StockItem.sku)
    if stock_item_id is not None:
        item_stmt = item_stmt.where(StockItem.id == stock_item_id)
    item_ids = db.execute(item_stmt).scalars().all()

    balances = calculate_bulk_stock(db, item_ids, [b.id for b in bins], as_of=as_of)
    order = {b.id: n for n, b in enumerate(bins)}
    return sorted(balances.values(), key=lambda s: (order[s.bin_id], s.stock_item_id))


@router.get("/low-stock")
def low_stock(
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    return find_low_stock_items(db, scope.restrict(None))


@router.post("/low-stock")
def low_stock_for_sites(
    payload: SiteIdsBody,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    # liste vide = tous les sites visibles
    return find_low_stock_items(db, scope.restrict(payload.siteIds or None))

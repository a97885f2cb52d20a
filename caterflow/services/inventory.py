from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from caterflow.app.db.models.models_v1 import Bin, StockItem
from caterflow.app.db.models.core_types import BinType
from caterflow.services.stock import (
    ZERO,
    calculate_bulk_stock,
    get_bin_stock,
    totals_by_item,
)


class InsufficientStock(Exception):
    def __init__(self, stock_item_id: int, bin_id: int, available: Decimal, requested: Decimal):
        self.stock_item_id = stock_item_id
        self.bin_id = bin_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for item {stock_item_id} in bin {bin_id}: "
            f"available {available}, requested {requested}"
        )


@dataclass(frozen=True)
class StockRequest:
    stock_item_id: int
    quantity: Decimal


def get_main_bin(db: Session, site_id: int) -> Bin:
    """
    Bin principal d'un site.
    Priorité au bin 'main-storage', sinon le premier bin du site.
    """
    b = (
        db.execute(
            select(Bin)
            .where(Bin.site_id == site_id)
            .where(Bin.bin_type == BinType.main_storage)
            .order_by(Bin.id.asc())
        )
        .scalars()
        .first()
    )
    if b:
        return b

    b = (
        db.execute(select(Bin).where(Bin.site_id == site_id).order_by(Bin.id.asc()))
        .scalars()
        .first()
    )
    if not b:
        raise LookupError(f"No bin found for site {site_id}")
    return b


def resolve_bins(db: Session, site_ids: Iterable[int] | None) -> list[Bin]:
    """Bins des sites donnés, tous les bins si site_ids est None."""
    stmt = select(Bin).options(selectinload(Bin.site)).order_by(Bin.site_id, Bin.id)
    if site_ids is not None:
        ids = sorted({int(s) for s in site_ids})
        if not ids:
            return []
        stmt = stmt.where(Bin.site_id.in_(ids))
    return list(db.execute(stmt).scalars().all())


def _stock_items(db: Session) -> list[StockItem]:
    stmt = select(StockItem).options(selectinload(StockItem.category)).order_by(StockItem.name)
    return list(db.execute(stmt).scalars().all())


def lock_bin(db: Session, bin_id: int) -> Bin:
    """
    Verrou SQL (FOR UPDATE) sur le bin.
    Toute sortie de stock d'un bin passe par ce verrou : deux sorties
    concurrentes relisent le stock l'une après l'autre.
    """
    return db.execute(select(Bin).where(Bin.id == bin_id).with_for_update()).scalar_one()


def ensure_available(
    db: Session,
    bin_id: int,
    requests: Iterable[StockRequest],
    *,
    as_of: datetime | None = None,
) -> None:
    """
    InsufficientStock si une demande dépasse le disponible de l'article dans le bin.
    Les quantités d'un même article sont additionnées.
    """
    wanted: dict[int, Decimal] = {}
    for r in requests:
        wanted[r.stock_item_id] = wanted.get(r.stock_item_id, ZERO) + Decimal(r.quantity)
    if not wanted:
        return

    lock_bin(db, bin_id)
    on_hand = get_bin_stock(db, wanted.keys(), bin_id, as_of=as_of)
    for item_id, qty in sorted(wanted.items()):
        available = on_hand.get(item_id, ZERO)
        if available < qty:
            raise InsufficientStock(item_id, bin_id, available, qty)


def find_low_stock_items(db: Session, site_ids: Iterable[int] | None) -> list[dict]:
    """
    Articles dont le total disponible sur les bins concernés est <= minimum_stock_level.

    Bin rapporté : premier bin concerné qui détient l'article,
    sinon le premier bin concerné.
    """
    bins = resolve_bins(db, site_ids)
    if not bins:
        return []

    items = _stock_items(db)
    balances = calculate_bulk_stock(db, [i.id for i in items], [b.id for b in bins])
    totals = totals_by_item(balances.values())

    out: list[dict] = []
    for item in items:
        current = totals.get(item.id, ZERO)
        if current > item.minimum_stock_level:
            continue

        primary = next(
            (b for b in bins if balances[(item.id, b.id)].on_hand > ZERO),
            bins[0],
        )
        out.append(
            {
                "id": item.id,
                "name": item.name,
                "sku": item.sku,
                "minimum_stock_level": item.minimum_stock_level,
                "reorder_quantity": item.reorder_quantity,
                "current_stock": current,
                "unit_of_measure": item.unit_of_measure,
                "category": item.category.title if item.category else None,
                "unit_price": item.unit_price,
                "site_id": primary.site_id,
                "site_name": primary.site.name,
                "bin_id": primary.id,
                "bin_name": primary.name,
            }
        )
    return out


def stock_status(current: Decimal, minimum: Decimal) -> str:
    if current == ZERO:
        return "out-of-stock"
    if current <= minimum:
        return "low-stock"
    return "in-stock"


def stock_values(db: Session, site_ids: Iterable[int] | None = None) -> dict:
    """
    Valorisation de chaque article sur les bins des sites donnés.
    Aucun bin visible -> valorisation vide.
    """
    bins = resolve_bins(db, site_ids)
    items = _stock_items(db) if bins else []
    balances = calculate_bulk_stock(db, [i.id for i in items], [b.id for b in bins])
    totals = totals_by_item(balances.values())

    rows = []
    for item in items:
        current = totals.get(item.id, ZERO)
        rows.append(
            {
                "id": item.id,
                "name": item.name,
                "sku": item.sku,
                "unit_price": item.unit_price,
                "minimum_stock_level": item.minimum_stock_level,
                "unit_of_measure": item.unit_of_measure,
                "category": item.category.title if item.category else None,
                "current_stock": current,
                "stock_value": current * (item.unit_price or ZERO),
                "stock_status": stock_status(current, item.minimum_stock_level),
            }
        )

    low = sum(1 for r in rows if r["stock_status"] == "low-stock")
    out = sum(1 for r in rows if r["stock_status"] == "out-of-stock")
    return {
        "items": rows,
        "summary": {
            "total_inventory_value": sum((r["stock_value"] for r in rows), ZERO),
            "total_items": len(rows),
            "low_stock_count": low,
            "out_of_stock_count": out,
            "in_stock_count": len(rows) - low - out,
        },
    }


def low_stock_counts(db: Session, site_ids: Iterable[int] | None) -> tuple[int, int]:
    """(articles <= minimum, articles à zéro) sur les bins des sites."""
    bins = resolve_bins(db, site_ids)
    if not bins:
        return 0, 0
    items = _stock_items(db)
    balances = calculate_bulk_stock(db, [i.id for i in items], [b.id for b in bins])
    totals = totals_by_item(balances.values())

    low = out = 0
    for item in items:
        qty = totals.get(item.id, ZERO)
        if qty <= item.minimum_stock_level:
            low += 1
        if qty == ZERO:
            out += 1
    return low, out


def count_negative_stock_items(db: Session, site_ids: Iterable[int] | None) -> int:
    bins = resolve_bins(db, site_ids)
    if not bins:
        return 0
    items = _stock_items(db)
    balances = calculate_bulk_stock(db, [i.id for i in items], [b.id for b in bins])
    raw = totals_by_item(balances.values(), clamp=False)
    return sum(1 for qty in raw.values() if qty < ZERO)

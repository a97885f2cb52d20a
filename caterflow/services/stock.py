"""
Moteur de stock courant.

La quantité d'un article dans un bin n'est jamais stockée. Elle est
reconstruite à partir du ledger :

    quantité = snapshot (dernier comptage COMPLETED)
               + entrées après le snapshot
               - sorties après le snapshot

Sources du ledger (documents postés uniquement) :
    GoodsReceipt      completed   + received_quantity      sur receiving_bin
    DispatchLog       toujours    - dispatched_quantity    sur source_bin
    InternalTransfer  completed   - transferred_quantity   sur from_bin
                                  + transferred_quantity   sur to_bin
    StockAdjustment   completed   +/- adjusted_quantity    sur bin

Propriétés :
- lecture seule
- déterministe pour un `as_of` donné
- requêtes par lots (STOCK_BATCH_SIZE ids par liste IN)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Iterator, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from caterflow.app.core.config import get_settings
from caterflow.app.db.models.models_v1 import (
    CountedItem,
    DispatchLine,
    DispatchLog,
    GoodsReceipt,
    GoodsReceiptLine,
    InternalTransfer,
    InternalTransferLine,
    InventoryCount,
    StockAdjustment,
    StockAdjustmentLine,
)
from caterflow.app.db.models.core_types import (
    ApprovalStatus,
    CountStatus,
    LedgerSource,
    ReceiptStatus,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

StockKey = tuple[int, int]  # (stock_item_id, bin_id)


@dataclass(frozen=True)
class LedgerMovement:
    stock_item_id: int
    bin_id: int
    happened_at: datetime
    delta: Decimal
    source: LedgerSource
    document_id: int


@dataclass
class StockBalance:
    stock_item_id: int
    bin_id: int
    snapshot_quantity: Decimal = ZERO
    snapshot_date: datetime | None = None
    inbound: Decimal = ZERO
    outbound: Decimal = ZERO

    @property
    def quantity(self) -> Decimal:
        """Solde brut, peut passer sous zéro si le ledger est incohérent."""
        return self.snapshot_quantity + self.inbound - self.outbound

    @property
    def on_hand(self) -> Decimal:
        q = self.quantity
        return q if q > ZERO else ZERO

    def apply(self, movement: LedgerMovement) -> None:
        if movement.delta >= ZERO:
            self.inbound += movement.delta
        else:
            self.outbound += -movement.delta


# ---------- utilitaires ----------
def as_utc(dt: datetime) -> datetime:
    """Datetime naïf (relu depuis SQLite) = UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _normalize_ids(ids: Iterable[int | None]) -> list[int]:
    return sorted({int(i) for i in ids if i is not None})


def _chunks(ids: Sequence[int], size: int) -> Iterator[list[int]]:
    for start in range(0, len(ids), size):
        yield list(ids[start : start + size])


def _batches(item_ids: Sequence[int], bin_ids: Sequence[int]) -> Iterator[tuple[list[int], list[int]]]:
    size = get_settings().STOCK_BATCH_SIZE
    for items in _chunks(item_ids, size):
        for bins in _chunks(bin_ids, size):
            yield items, bins


# ---------- snapshots (comptages) ----------
def locate_snapshots(
    db: Session,
    item_ids: Iterable[int],
    bin_ids: Iterable[int],
    as_of: datetime,
) -> dict[StockKey, tuple[datetime, Decimal]]:
    """
    Dernière ligne de comptage COMPLETED par (article, bin), count_date <= as_of.
    Même date : le comptage d'id le plus grand l'emporte.
    """
    items = _normalize_ids(item_ids)
    bins = _normalize_ids(bin_ids)
    snapshots: dict[StockKey, tuple[datetime, Decimal]] = {}
    if not items or not bins:
        return snapshots

    for item_batch, bin_batch in _batches(items, bins):
        rows = db.execute(
            select(
                CountedItem.stock_item_id,
                InventoryCount.bin_id,
                InventoryCount.count_date,
                CountedItem.counted_quantity,
            )
            .join(InventoryCount, InventoryCount.id == CountedItem.count_id)
            .where(InventoryCount.status == CountStatus.completed)
            .where(InventoryCount.count_date <= as_of)
            .where(InventoryCount.bin_id.in_(bin_batch))
            .where(CountedItem.stock_item_id.in_(item_batch))
            .order_by(InventoryCount.count_date.desc(), InventoryCount.id.desc())
        ).all()

        for item_id, bin_id, count_date, counted in rows:
            key = (int(item_id), int(bin_id))
            if key in snapshots:
                continue
            snapshots[key] = (as_utc(count_date), Decimal(counted or 0))

    return snapshots


# ---------- mouvements ----------
def _receipt_movements(db: Session, items: list[int], bins: list[int], as_of: datetime) -> Iterator[LedgerMovement]:
    rows = db.execute(
        select(
            GoodsReceipt.id,
            GoodsReceipt.receiving_bin_id,
            GoodsReceipt.receipt_date,
            GoodsReceiptLine.stock_item_id,
            GoodsReceiptLine.received_quantity,
        )
        .join(GoodsReceiptLine, GoodsReceiptLine.receipt_id == GoodsReceipt.id)
        .where(GoodsReceipt.status == ReceiptStatus.completed)
        .where(GoodsReceipt.receipt_date <= as_of)
        .where(GoodsReceipt.receiving_bin_id.in_(bins))
        .where(GoodsReceiptLine.stock_item_id.in_(items))
    ).all()
    for doc_id, bin_id, happened_at, item_id, qty in rows:
        yield LedgerMovement(item_id, bin_id, happened_at, Decimal(qty or 0), LedgerSource.receipt, doc_id)


def _dispatch_movements(db: Session, items: list[int], bins: list[int], as_of: datetime) -> Iterator[LedgerMovement]:
    rows = db.execute(
        select(
            DispatchLog.id,
            DispatchLog.source_bin_id,
            DispatchLog.dispatch_date,
            DispatchLine.stock_item_id,
            DispatchLine.dispatched_quantity,
        )
        .join(DispatchLine, DispatchLine.dispatch_id == DispatchLog.id)
        .where(DispatchLog.dispatch_date <= as_of)
        .where(DispatchLog.source_bin_id.in_(bins))
        .where(DispatchLine.stock_item_id.in_(items))
    ).all()
    for doc_id, bin_id, happened_at, item_id, qty in rows:
        yield LedgerMovement(item_id, bin_id, happened_at, -Decimal(qty or 0), LedgerSource.dispatch, doc_id)


def _transfer_movements(db: Session, items: list[int], bins: list[int], as_of: datetime) -> Iterator[LedgerMovement]:
    rows = db.execute(
        select(
            InternalTransfer.id,
            InternalTransfer.from_bin_id,
            InternalTransfer.to_bin_id,
            InternalTransfer.transfer_date,
            InternalTransferLine.stock_item_id,
            InternalTransferLine.transferred_quantity,
        )
        .join(InternalTransferLine, InternalTransferLine.transfer_id == InternalTransfer.id)
        .where(InternalTransfer.status == ApprovalStatus.completed)
        .where(InternalTransfer.transfer_date <= as_of)
        .where(InternalTransfer.from_bin_id.in_(bins) | InternalTransfer.to_bin_id.in_(bins))
        .where(InternalTransferLine.stock_item_id.in_(items))
    ).all()
    wanted = set(bins)
    for doc_id, from_bin, to_bin, happened_at, item_id, qty in rows:
        qty = Decimal(qty or 0)
        if from_bin in wanted:
            yield LedgerMovement(item_id, from_bin, happened_at, -qty, LedgerSource.transfer, doc_id)
        if to_bin in wanted:
            yield LedgerMovement(item_id, to_bin, happened_at, qty, LedgerSource.transfer, doc_id)


def _adjustment_movements(db: Session, items: list[int], bins: list[int], as_of: datetime) -> Iterator[LedgerMovement]:
    rows = db.execute(
        select(
            StockAdjustment.id,
            StockAdjustment.bin_id,
            StockAdjustment.adjustment_date,
            StockAdjustmentLine.stock_item_id,
            StockAdjustmentLine.adjusted_quantity,
        )
        .join(StockAdjustmentLine, StockAdjustmentLine.adjustment_id == StockAdjustment.id)
        .where(StockAdjustment.status == ApprovalStatus.completed)
        .where(StockAdjustment.adjustment_date <= as_of)
        .where(StockAdjustment.bin_id.in_(bins))
        .where(StockAdjustmentLine.stock_item_id.in_(items))
    ).all()
    for doc_id, bin_id, happened_at, item_id, qty in rows:
        yield LedgerMovement(item_id, bin_id, happened_at, Decimal(qty or 0), LedgerSource.adjustment, doc_id)


_SOURCES = (
    _receipt_movements,
    _dispatch_movements,
    _transfer_movements,
    _adjustment_movements,
)


def iter_movements(
    db: Session,
    item_ids: Iterable[int],
    bin_ids: Iterable[int],
    as_of: datetime,
) -> Iterator[LedgerMovement]:
    """Mouvements postés sur les articles / bins donnés, datés <= as_of."""
    items = _normalize_ids(item_ids)
    bins = _normalize_ids(bin_ids)
    if not items or not bins:
        return

    for item_batch, bin_batch in _batches(items, bins):
        for source in _SOURCES:
            for mv in source(db, item_batch, bin_batch, as_of):
                if mv.bin_id is None or mv.stock_item_id is None:
                    continue
                yield LedgerMovement(
                    stock_item_id=int(mv.stock_item_id),
                    bin_id=int(mv.bin_id),
                    happened_at=as_utc(mv.happened_at),
                    delta=mv.delta,
                    source=mv.source,
                    document_id=int(mv.document_id),
                )


# ---------- soldes ----------
def calculate_bulk_stock(
    db: Session,
    item_ids: Iterable[int],
    bin_ids: Iterable[int],
    *,
    as_of: datetime | None = None,
) -> dict[StockKey, StockBalance]:
    """
    StockBalance pour chaque couple (article, bin) du produit croisé.

    Les mouvements datés au plus tard au snapshot sont déjà inclus dans la
    quantité comptée : ignorés.
    """
    items = _normalize_ids(item_ids)
    bins = _normalize_ids(bin_ids)
    if not items or not bins:
        return {}

    as_of = as_utc(as_of) if as_of is not None else datetime.now(timezone.utc)

    results: dict[StockKey, StockBalance] = {
        (item_id, bin_id): StockBalance(item_id, bin_id) for bin_id in bins for item_id in items
    }

    for key, (count_date, counted) in locate_snapshots(db, items, bins, as_of).items():
        balance = results[key]
        balance.snapshot_date = count_date
        balance.snapshot_quantity = counted

    applied = 0
    for mv in iter_movements(db, items, bins, as_of):
        balance = results.get((mv.stock_item_id, mv.bin_id))
        if balance is None:
            continue
        if balance.snapshot_date is not None and mv.happened_at <= balance.snapshot_date:
            continue
        balance.apply(mv)
        applied += 1

    logger.debug(
        "stock rebuilt: items=%d bins=%d movements=%d as_of=%s",
        len(items),
        len(bins),
        applied,
        as_of.isoformat(),
    )
    return results


def calculate_stock(
    db: Session,
    stock_item_id: int | None,
    bin_id: int | None,
    *,
    as_of: datetime | None = None,
) -> Decimal:
    """Quantité disponible d'un article dans un bin."""
    if not stock_item_id or not bin_id:
        return ZERO
    balances = calculate_bulk_stock(db, [stock_item_id], [bin_id], as_of=as_of)
    balance = balances.get((int(stock_item_id), int(bin_id)))
    return balance.on_hand if balance else ZERO


def get_bin_stock(
    db: Session,
    item_ids: Iterable[int],
    bin_id: int | None,
    *,
    as_of: datetime | None = None,
) -> dict[int, Decimal]:
    items = _normalize_ids(item_ids)
    if not bin_id or not items:
        return {}
    balances = calculate_bulk_stock(db, items, [bin_id], as_of=as_of)
    return {item_id: balances[(item_id, int(bin_id))].on_hand for item_id in items}


def totals_by_item(balances: Iterable[StockBalance], *, clamp: bool = True) -> dict[int, Decimal]:
    """Somme par article sur les bins : disponible, ou soldes bruts avec clamp=False."""
    totals: dict[int, Decimal] = {}
    for b in balances:
        value = b.on_hand if clamp else b.quantity
        totals[b.stock_item_id] = totals.get(b.stock_item_id, ZERO) + value
    return totals

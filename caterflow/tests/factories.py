"""Builders for ledger documents, written straight to the DB."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from caterflow.app.core.security import create_access_token
from caterflow.app.db.models.models_v1 import (
    Bin,
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
    StockItem,
    User,
)
from caterflow.app.db.models.core_types import (
    AdjustmentType,
    ApprovalStatus,
    CountStatus,
    ReceiptStatus,
)
from caterflow.services.numbering import (
    next_adjustment_number,
    next_count_number,
    next_dispatch_number,
    next_receipt_number,
    next_transfer_number,
)

Lines = dict[StockItem, str]


def at(day: int, hour: int = 12) -> datetime:
    """Fixed UTC instants, October 2026."""
    return datetime(2026, 10, day, hour, 0, tzinfo=timezone.utc)


def days_ago(days: float) -> datetime:
    """Relative instants, for code paths that read stock "now"."""
    return datetime.now(timezone.utc) - timedelta(days=days)


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id), "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


def add_receipt(
    db: Session,
    bin: Bin,
    user: User,
    when: datetime,
    lines: Lines,
    status: ReceiptStatus = ReceiptStatus.completed,
) -> GoodsReceipt:
    gr = GoodsReceipt(
        receipt_number=next_receipt_number(db),
        receipt_date=when,
        receiving_bin_id=bin.id,
        received_by=user.id,
        status=status,
    )
    gr.lines = [GoodsReceiptLine(stock_item_id=i.id, received_quantity=Decimal(q)) for i, q in lines.items()]
    db.add(gr)
    db.commit()
    return gr


def add_dispatch(db: Session, bin: Bin, user: User, when: datetime, lines: Lines) -> DispatchLog:
    d = DispatchLog(
        dispatch_number=next_dispatch_number(db, when.date()),
        dispatch_date=when,
        source_bin_id=bin.id,
        dispatched_by=user.id,
    )
    d.lines = [DispatchLine(stock_item_id=i.id, dispatched_quantity=Decimal(q)) for i, q in lines.items()]
    db.add(d)
    db.commit()
    return d


def add_transfer(
    db: Session,
    from_bin: Bin,
    to_bin: Bin,
    user: User,
    when: datetime,
    lines: Lines,
    status: ApprovalStatus = ApprovalStatus.completed,
) -> InternalTransfer:
    t = InternalTransfer(
        transfer_number=next_transfer_number(db),
        transfer_date=when,
        from_bin_id=from_bin.id,
        to_bin_id=to_bin.id,
        transferred_by=user.id,
        status=status,
    )
    t.lines = [InternalTransferLine(stock_item_id=i.id, transferred_quantity=Decimal(q)) for i, q in lines.items()]
    db.add(t)
    db.commit()
    return t


def add_adjustment(
    db: Session,
    bin: Bin,
    user: User,
    when: datetime,
    lines: Lines,
    status: ApprovalStatus = ApprovalStatus.completed,
    adjustment_type: AdjustmentType = AdjustmentType.correction,
) -> StockAdjustment:
    a = StockAdjustment(
        adjustment_number=next_adjustment_number(db),
        adjustment_date=when,
        bin_id=bin.id,
        adjusted_by=user.id,
        adjustment_type=adjustment_type,
        status=status,
    )
    a.lines = [StockAdjustmentLine(stock_item_id=i.id, adjusted_quantity=Decimal(q)) for i, q in lines.items()]
    db.add(a)
    db.commit()
    return a


def add_count(
    db: Session,
    bin: Bin,
    user: User,
    when: datetime,
    lines: Lines,
    status: CountStatus = CountStatus.completed,
) -> InventoryCount:
    c = InventoryCount(
        count_number=next_count_number(db),
        count_date=when,
        bin_id=bin.id,
        counted_by=user.id,
        status=status,
    )
    c.lines = [CountedItem(stock_item_id=i.id, counted_quantity=Decimal(q)) for i, q in lines.items()]
    db.add(c)
    db.commit()
    return c

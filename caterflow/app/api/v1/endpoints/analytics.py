from __future__ import annotations

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from caterflow.app.api.deps import SiteScope, get_db, get_site_scope
from caterflow.app.db.models.models_v1 import (
    AuditLog,
    Bin,
    DispatchLog,
    GoodsReceipt,
    InternalTransfer,
    PurchaseOrder,
    Site,
    StockAdjustment,
    User,
)
from caterflow.app.db.models.core_types import (
    APPROVER_ROLES,
    PO_APPROVER_ROLES,
    ApprovalStatus,
    POStatus,
    ReceiptStatus,
)
from caterflow.app.schemas.common import SiteIdsBody, utcnow
from caterflow.services.inventory import count_negative_stock_items, low_stock_counts, stock_values

router = APIRouter()

_TIMEFRAMES = {"today", "week", "month"}


def _since(timeframe: str, now: datetime) -> datetime:
    if timeframe == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if timeframe == "month":
        return now - timedelta(days=30)
    return now - timedelta(days=7)


def _visible_bin_ids(db: Session, site_ids: list[int] | None) -> list[int] | None:
    if site_ids is None:
        return None
    if not site_ids:
        return []
    return list(db.execute(select(Bin.id).where(Bin.site_id.in_(site_ids))).scalars().all())


def _count(db: Session, stmt) -> int:
    return int(db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one())


@router.get("/analytics/stock-values")
def analytics_stock_values(
    site_id: int | None = None,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    if site_id is not None and not scope.allows(site_id):
        raise HTTPException(status_code=403, detail="No access to this site")
    return stock_values(db, scope.restrict([site_id] if site_id is not None else None))


@router.post("/dashboard/stats")
def dashboard_stats(
    payload: SiteIdsBody,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    """Cartes du dashboard sur les sites demandés (et visibles)."""
    site_ids = scope.restrict(payload.siteIds or None)
    bin_ids = _visible_bin_ids(db, site_ids)

    now = utcnow()
    start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    start_of_today = _since("today", now)
    start_of_week = _since("week", now)

    receipts = select(GoodsReceipt.id).where(GoodsReceipt.status == ReceiptStatus.completed)
    dispatches = select(DispatchLog.id)
    transfers = select(InternalTransfer.id)
    orders = select(PurchaseOrder.id).where(PurchaseOrder.status == POStatus.draft)
    if bin_ids is not None:
        receipts = receipts.where(GoodsReceipt.receiving_bin_id.in_(bin_ids))
        dispatches = dispatches.where(DispatchLog.source_bin_id.in_(bin_ids))
        transfers = transfers.where(
            InternalTransfer.from_bin_id.in_(bin_ids) | InternalTransfer.to_bin_id.in_(bin_ids)
        )
    if site_ids is not None:
        orders = orders.where(PurchaseOrder.site_id.in_(site_ids))

    pending_transfers = _count(db, transfers.where(InternalTransfer.status == ApprovalStatus.pending_approval))
    draft_orders = _count(db, orders)
    low, out = low_stock_counts(db, site_ids)
    valuation = stock_values(db, site_ids)["summary"]["total_inventory_value"]

    stats = {
        "monthlyReceiptsCount": _count(db, receipts.where(GoodsReceipt.receipt_date >= start_of_month)),
        "monthlyDispatchesCount": _count(db, dispatches.where(DispatchLog.dispatch_date >= start_of_month)),
        "todaysDispatchesCount": _count(db, dispatches.where(DispatchLog.dispatch_date >= start_of_today)),
        "pendingActionsCount": pending_transfers + draft_orders,
        "pendingTransfersCount": pending_transfers,
        "draftOrdersCount": draft_orders,
        "lowStockItemsCount": low,
        "outOfStockItemsCount": out,
        "negativeStockItemsCount": count_negative_stock_items(db, site_ids),
        "transfersInTransitCount": _count(db, transfers.where(InternalTransfer.status == ApprovalStatus.approved)),
        "weeklyActivityCount": _count(db, select(AuditLog.id).where(AuditLog.created_at >= start_of_week)),
        "todayActivityCount": _count(db, select(AuditLog.id).where(AuditLog.created_at >= start_of_today)),
        "totalActiveUsers": _count(db, select(User.id).where(User.is_active.is_(True))),
        "totalSites": _count(db, select(Site.id)) if site_ids is None else len(site_ids),
        "totalInventoryValue": valuation,
    }
    return {"siteIds": site_ids, "stats": stats}


@router.get("/approvals")
def pending_approvals(
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    """Documents en attente d'une décision que l'utilisateur courant peut prendre."""
    bin_ids = _visible_bin_ids(db, scope.restrict(None))
    out: list[dict] = []

    if scope.role in PO_APPROVER_ROLES:
        stmt = (
            select(PurchaseOrder)
            .options(selectinload(PurchaseOrder.lines), selectinload(PurchaseOrder.supplier), selectinload(PurchaseOrder.site))
            .where(PurchaseOrder.status == POStatus.pending_approval)
        )
        if scope.site_ids is not None:
            stmt = stmt.where(PurchaseOrder.site_id.in_(scope.site_ids))
        for po in db.execute(stmt).scalars().all():
            out.append(
                {
                    "type": "PurchaseOrder",
                    "id": po.id,
                    "number": po.po_number,
                    "title": "Approve Purchase Order",
                    "description": f"Purchase order from {po.supplier.name}",
                    "siteName": po.site.name,
                    "totalAmount": po.total_amount,
                    "createdAt": po.created_at,
                }
            )

    if scope.role in APPROVER_ROLES:
        transfers = select(InternalTransfer).where(InternalTransfer.status == ApprovalStatus.pending_approval)
        adjustments = select(StockAdjustment).where(StockAdjustment.status == ApprovalStatus.pending_approval)
        if bin_ids is not None:
            transfers = transfers.where(
                InternalTransfer.from_bin_id.in_(bin_ids) | InternalTransfer.to_bin_id.in_(bin_ids)
            )
            adjustments = adjustments.where(StockAdjustment.bin_id.in_(bin_ids))

        for t in db.execute(transfers).scalars().all():
            out.append(
                {
                    "type": "InternalTransfer",
                    "id": t.id,
                    "number": t.transfer_number,
                    "title": "Approve Internal Transfer",
                    "description": f"Transfer from {t.from_bin.name} to {t.to_bin.name}",
                    "siteName": t.from_bin.site.name,
                    "createdAt": t.created_at,
                }
            )
        for a in db.execute(adjustments).scalars().all():
            out.append(
                {
                    "type": "StockAdjustment",
                    "id": a.id,
                    "number": a.adjustment_number,
                    "title": "Approve Stock Adjustment",
                    "description": f"{a.adjustment_type.value} adjustment in {a.bin.name}",
                    "siteName": a.bin.site.name,
                    "createdAt": a.created_at,
                }
            )

    out.sort(key=lambda r: (r["createdAt"], r["id"]), reverse=True)
    return out


@router.get("/activity")
def recent_activity(
    timeframe: str = "week",
    limit: int = 100,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    if timeframe not in _TIMEFRAMES:
        raise HTTPException(status_code=400, detail=f"timeframe must be one of {sorted(_TIMEFRAMES)}")

    stmt = (
        select(AuditLog, User.name)
        .outerjoin(User, User.id == AuditLog.actor_id)
        .where(AuditLog.created_at >= _since(timeframe, utcnow()))
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(max(1, min(limit, 500)))
    )
    if scope.site_ids is not None:
        stmt = stmt.where(User.site_id.in_(scope.site_ids))

    return [
        {
            "id": row.id,
            "action": row.action,
            "entity_type": row.entity_type,
            "entity_id": row.entity_id,
            "description": row.message,
            "success": row.success,
            "user": actor_name,
            "timestamp": row.created_at,
        }
        for row, actor_name in db.execute(stmt).all()
    ]

from __future__ import annotations

from typing import Iterable, TypeVar

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from caterflow.app.api.deps import SiteScope
from caterflow.app.db.models.models_v1 import Bin, StockItem
from caterflow.services.inventory import InsufficientStock
from caterflow.services.workflow import WorkflowError

T = TypeVar("T")


def get_or_404(db: Session, model: type[T], obj_id: int, label: str) -> T:
    obj = db.get(model, obj_id)
    if not obj:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return obj


def lock_or_404(db: Session, model: type[T], obj_id: int, label: str) -> T:
    """Verrou SQL (FOR UPDATE) sur le document avant changement de statut."""
    obj = db.execute(select(model).where(model.id == obj_id).with_for_update()).scalar_one_or_none()
    if not obj:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return obj


def flush_or_409(db: Session, detail: str) -> None:
    """flush() d'un nouveau document : numéro déjà pris (création concurrente) -> 409."""
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=detail) from exc


def check_bin(db: Session, bin_id: int, scope: SiteScope, field: str = "bin_id") -> Bin:
    b = db.get(Bin, bin_id)
    if not b:
        raise HTTPException(status_code=400, detail=f"Invalid {field}")
    if not scope.allows(b.site_id):
        raise HTTPException(status_code=403, detail=f"No access to the site of {field}")
    return b


def check_stock_items(db: Session, item_ids: Iterable[int]) -> dict[int, StockItem]:
    """Tous les ids doivent exister, chacun une seule fois par document."""
    ids = list(item_ids)
    seen: set[int] = set()
    for i in ids:
        if i in seen:
            raise HTTPException(status_code=400, detail=f"Duplicate stock_item_id {i}")
        seen.add(i)

    found = {
        s.id: s
        for s in db.execute(select(StockItem).where(StockItem.id.in_(seen))).scalars().all()
    } if seen else {}
    for i in ids:
        if i not in found:
            raise HTTPException(status_code=400, detail=f"Invalid stock_item_id {i}")
    return found


def workflow_http_error(exc: WorkflowError) -> HTTPException:
    return HTTPException(status_code=400, detail=str(exc))


def stock_http_error(exc: InsufficientStock) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail=f"Insufficient stock for item {exc.stock_item_id} in bin {exc.bin_id} "
        f"(available={exc.available}, requested={exc.requested})",
    )

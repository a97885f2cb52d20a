from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from caterflow.app.api.deps import get_current_user, get_db, require_roles
from caterflow.app.api.v1.common import get_or_404
from caterflow.app.db.models.models_v1 import Category, StockItem, User
from caterflow.app.db.models.core_types import Role
from caterflow.services.audit import log_interaction

router = APIRouter(prefix="/categories")


class CategoryCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None


@router.get("")
def list_categories(
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    rows = db.execute(select(Category).order_by(Category.title)).scalars().all()
    return [{"id": c.id, "title": c.title, "description": c.description} for c in rows]


@router.post("")
def create_category(
    payload: CategoryCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(Role.admin, Role.site_manager)),
):
    exists = db.execute(select(Category).where(Category.title == payload.title)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Category already exists")

    c = Category(title=payload.title, description=payload.description)
    db.add(c)
    db.flush()
    log_interaction(db, "create", f"Created category {c.title}", "Category", c.id, actor.id)
    db.commit()
    db.refresh(c)
    return {"id": c.id, "title": c.title, "description": c.description}


@router.delete("/{category_id}")
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(Role.admin, Role.site_manager)),
):
    c = get_or_404(db, Category, category_id, "Category")
    if db.execute(select(StockItem.id).where(StockItem.category_id == c.id)).first():
        raise HTTPException(status_code=409, detail="Category is used by stock items")

    db.delete(c)
    log_interaction(db, "delete", f"Deleted category {c.title}", "Category", category_id, actor.id)
    db.commit()
    return {"ok": True}

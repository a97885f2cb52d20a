from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from caterflow.app.api.deps import get_current_user, get_db, require_roles
from caterflow.app.api.v1.common import get_or_404
from caterflow.app.db.models.models_v1 import DispatchLog, DispatchType, User
from caterflow.app.db.models.core_types import Role
from caterflow.services.audit import log_interaction

router = APIRouter(prefix="/dispatch-types")

_HHMM = r"^([01]\d|2[0-3]):[0-5]\d$"


class DispatchTypeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    default_time: str | None = Field(default=None, pattern=_HHMM)
    is_active: bool = True


class DispatchTypeUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    default_time: str | None = Field(default=None, pattern=_HHMM)
    is_active: bool | None = None


def serialize_dispatch_type(t: DispatchType) -> dict:
    return {
        "id": t.id,
        "name": t.name,
        "description": t.description,
        "default_time": t.default_time,
        "is_active": t.is_active,
    }


@router.get("")
def list_dispatch_types(
    active_only: bool = False,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    stmt = select(DispatchType).order_by(DispatchType.name)
    if active_only:
        stmt = stmt.where(DispatchType.is_active.is_(True))
    return [serialize_dispatch_type(t) for t in db.execute(stmt).scalars().all()]


@router.post("")
def create_dispatch_type(
    payload: DispatchTypeCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(Role.admin, Role.site_manager)),
):
    if db.execute(select(DispatchType).where(DispatchType.name == payload.name)).scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Dispatch type already exists")

    t = DispatchType(**payload.model_dump())
    db.add(t)
    db.flush()
    log_interaction(db, "create", f"Created dispatch type {t.name}", "DispatchType", t.id, actor.id)
    db.commit()
    db.refresh(t)
    return serialize_dispatch_type(t)


@router.patch("/{type_id}")
def update_dispatch_type(
    type_id: int,
    payload: DispatchTypeUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(Role.admin, Role.site_manager)),
):
    t = get_or_404(db, DispatchType, type_id, "Dispatch type")
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(t, field, value)
    log_interaction(db, "update", f"Updated dispatch type {t.name}", "DispatchType", t.id, actor.id)
    db.commit()
    db.refresh(t)
    return serialize_dispatch_type(t)


@router.delete("/{type_id}")
def delete_dispatch_type(
    type_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(Role.admin, Role.site_manager)),
):
    t = get_or_404(db, DispatchType, type_id, "Dispatch type")
    if db.execute(select(DispatchLog.id).where(DispatchLog.dispatch_type_id == t.id)).first():
        # déjà utilisé : on désactive au lieu de supprimer
        t.is_active = False
        log_interaction(db, "update", f"Deactivated dispatch type {t.name}", "DispatchType", t.id, actor.id)
        db.commit()
        return {"ok": True, "deactivated": True}

    db.delete(t)
    log_interaction(db, "delete", f"Deleted dispatch type {t.name}", "DispatchType", type_id, actor.id)
    db.commit()
    return {"ok": True, "deactivated": False}

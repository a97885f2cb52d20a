from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from caterflow.app.api.deps import get_current_user, get_db, require_roles
from caterflow.app.api.v1.common import get_or_404
from caterflow.app.api.v1.endpoints.auth import serialize_user
from caterflow.app.core.security import get_password_hash
from caterflow.app.db.models.models_v1 import Site, User
from caterflow.app.db.models.core_types import Role
from caterflow.services.audit import log_interaction

router = APIRouter(prefix="/users")


class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8)
    role: Role
    site_id: int | None = None
    is_active: bool = True


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    role: Role | None = None
    site_id: int | None = None
    is_active: bool | None = None
    password: str | None = Field(default=None, min_length=8)


@router.get("")
def list_users(
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    rows = db.execute(select(User).order_by(User.name)).scalars().all()
    return [serialize_user(u) for u in rows]


@router.get("/{user_id}")
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return serialize_user(get_or_404(db, User, user_id, "User"))


@router.post("")
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(Role.admin)),
):
    email = payload.email.strip().lower()
    exists = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Email already exists")
    if payload.site_id is not None and not db.get(Site, payload.site_id):
        raise HTTPException(status_code=400, detail="Invalid site_id")

    u = User(
        name=payload.name,
        email=email,
        password_hash=get_password_hash(payload.password),
        role=payload.role,
        site_id=payload.site_id,
        is_active=payload.is_active,
    )
    db.add(u)
    db.flush()
    log_interaction(db, "create", f"Created user {u.email}", "AppUser", u.id, actor.id)
    db.commit()
    db.refresh(u)
    return serialize_user(u)


@router.patch("/{user_id}")
def update_user(
    user_id: int,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(Role.admin)),
):
    u = get_or_404(db, User, user_id, "User")
    data = payload.model_dump(exclude_unset=True)

    if "site_id" in data and data["site_id"] is not None and not db.get(Site, data["site_id"]):
        raise HTTPException(status_code=400, detail="Invalid site_id")

    password = data.pop("password", None)
    if password:
        u.password_hash = get_password_hash(password)
    for field, value in data.items():
        setattr(u, field, value)

    log_interaction(db, "update", f"Updated user {u.email}", "AppUser", u.id, actor.id)
    db.commit()
    db.refresh(u)
    return serialize_user(u)


@router.delete("/{user_id}")
def deactivate_user(
    user_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(Role.admin)),
):
    """Utilisateur référencé par le ledger : désactivé, jamais supprimé."""
    u = get_or_404(db, User, user_id, "User")
    if u.id == actor.id:
        raise HTTPException(status_code=400, detail="Cannot deactivate yourself")
    u.is_active = False
    log_interaction(db, "delete", f"Deactivated user {u.email}", "AppUser", u.id, actor.id)
    db.commit()
    return {"ok": True}

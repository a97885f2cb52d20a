from __future__ import annotations

import re

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from caterflow.app.api.deps import SiteScope, get_db, get_site_scope, require_roles
from caterflow.app.api.v1.common import get_or_404
from caterflow.app.api.v1.endpoints.bins import serialize_bin
from caterflow.app.db.models.models_v1 import Bin, Site, User
from caterflow.app.db.models.core_types import Role
from caterflow.services.audit import log_interaction
from caterflow.services.inventory import get_main_bin

router = APIRouter(prefix="/sites")


class SiteCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    code: str | None = Field(default=None, max_length=64)
    location: str | None = Field(default=None, max_length=255)
    contact_number: str | None = Field(default=None, max_length=64)
    email: str | None = Field(default=None, max_length=255)
    patient_count: int | None = Field(default=None, ge=0)
    active: bool = True


class SiteUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    location: str | None = Field(default=None, max_length=255)
    contact_number: str | None = Field(default=None, max_length=64)
    email: str | None = Field(default=None, max_length=255)
    patient_count: int | None = Field(default=None, ge=0)
    active: bool | None = None


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")[:64]


def serialize_site(s: Site) -> dict:
    return {
        "id": s.id,
        "name": s.name,
        "code": s.code,
        "location": s.location,
        "contact_number": s.contact_number,
        "email": s.email,
        "patient_count": s.patient_count,
        "active": s.active,
    }


@router.get("")
def list_sites(
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    stmt = select(Site).order_by(Site.name)
    if scope.site_ids is not None:
        stmt = stmt.where(Site.id.in_(scope.site_ids))
    return [serialize_site(s) for s in db.execute(stmt).scalars().all()]


@router.post("")
def create_site(
    payload: SiteCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(Role.admin)),
):
    code = slugify(payload.code or payload.name)
    if not code:
        raise HTTPException(status_code=400, detail="Invalid site code")

    exists = db.execute(select(Site).where((Site.name == payload.name) | (Site.code == code))).scalars().first()
    if exists:
        raise HTTPException(status_code=409, detail="Site already exists")

    s = Site(
        name=payload.name,
        code=code,
        location=payload.location,
        contact_number=payload.contact_number,
        email=payload.email,
        patient_count=payload.patient_count,
        active=payload.active,
    )
    db.add(s)
    db.flush()
    log_interaction(db, "create", f"Created site {s.name}", "Site", s.id, actor.id)
    db.commit()
    db.refresh(s)
    return serialize_site(s)


@router.patch("/{site_id}")
def update_site(
    site_id: int,
    payload: SiteUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(Role.admin, Role.site_manager)),
):
    s = get_or_404(db, Site, site_id, "Site")
    if actor.role != Role.admin and actor.site_id != s.id:
        raise HTTPException(status_code=403, detail="Insufficient permissions")

    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(s, field, value)
    log_interaction(db, "update", f"Updated site {s.name}", "Site", s.id, actor.id)
    db.commit()
    db.refresh(s)
    return serialize_site(s)


@router.delete("/{site_id}")
def delete_site(
    site_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(Role.admin)),
):
    s = get_or_404(db, Site, site_id, "Site")
    has_bins = db.execute(select(Bin.id).where(Bin.site_id == s.id)).first()
    if has_bins:
        raise HTTPException(status_code=409, detail="Site still has bins")

    db.delete(s)
    log_interaction(db, "delete", f"Deleted site {s.name}", "Site", site_id, actor.id)
    db.commit()
    return {"ok": True}


@router.get("/{site_id}/main-bin")
def main_bin(
    site_id: int,
    db: Session = Depends(get_db),
    scope: SiteScope = Depends(get_site_scope),
):
    get_or_404(db, Site, site_id, "Site")
    if not scope.allows(site_id):
        raise HTTPException(status_code=403, detail="No access to this site")
    try:
        b = get_main_bin(db, site_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return serialize_bin(b)

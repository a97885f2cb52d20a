from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from caterflow.app.api.deps import get_current_user, get_db, require_roles
from caterflow.app.api.v1.common import get_or_404
from caterflow.app.db.models.models_v1 import PurchaseOrder, Supplier, User
from caterflow.app.db.models.core_types import Role
from caterflow.services.audit import log_interaction

router = APIRouter(prefix="/suppliers")

_SUPPLIER_WRITERS = (Role.admin, Role.site_manager, Role.procurer)


class SupplierCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    contact_person: str | None = Field(default=None, max_length=200)
    phone_number: str | None = Field(default=None, max_length=64)
    email: str | None = Field(default=None, max_length=255)
    address: str | None = None
    terms: str | None = Field(default=None, max_length=255)


class SupplierUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    contact_person: str | None = Field(default=None, max_length=200)
    phone_number: str | None = Field(default=None, max_length=64)
    email: str | None = Field(default=None, max_length=255)
    address: str | None = None
    terms: str | None = Field(default=None, max_length=255)


def serialize_supplier(s: Supplier) -> dict:
    return {
        "id": s.id,
        "name": s.name,
        "contact_person": s.contact_person,
        "phone_number": s.phone_number,
        "email": s.email,
        "address": s.address,
        "terms": s.terms,
    }


@router.get("")
def list_suppliers(
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    rows = db.execute(select(Supplier).order_by(Supplier.name)).scalars().all()
    return [serialize_supplier(s) for s in rows]


@router.post("")
def create_supplier(
    payload: SupplierCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(*_SUPPLIER_WRITERS)),
):
    exists = db.execute(select(Supplier).where(Supplier.name == payload.name)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Supplier already exists")

    s = Supplier(**payload.model_dump())
    db.add(s)
    db.flush()
    log_interaction(db, "create", f"Created supplier {s.name}", "Supplier", s.id, actor.id)
    db.commit()
    db.refresh(s)
    return serialize_supplier(s)


@router.patch("/{supplier_id}")
def update_supplier(
    supplier_id: int,
    payload: SupplierUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(*_SUPPLIER_WRITERS)),
):
    s = get_or_404(db, Supplier, supplier_id, "Supplier")
    data = payload.model_dump(exclude_unset=True)
    if data.get("name") and data["name"] != s.name:
        if db.execute(select(Supplier).where(Supplier.name == data["name"])).scalar_one_or_none():
            raise HTTPException(status_code=409, detail="Supplier already exists")

    for field, value in data.items():
        setattr(s, field, value)
    log_interaction(db, "update", f"Updated supplier {s.name}", "Supplier", s.id, actor.id)
    db.commit()
    db.refresh(s)
    return serialize_supplier(s)


@router.delete("/{supplier_id}")
def delete_supplier(
    supplier_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles(*_SUPPLIER_WRITERS)),
):
    s = get_or_404(db, Supplier, supplier_id, "Supplier")
    if db.execute(select(PurchaseOrder.id).where(PurchaseOrder.supplier_id == s.id)).first():
        raise HTTPException(status_code=409, detail="Supplier has purchase orders")

    db.delete(s)
    log_interaction(db, "delete", f"Deleted supplier {s.name}", "Supplier", supplier_id, actor.id)
    db.commit()
    return {"ok": True}

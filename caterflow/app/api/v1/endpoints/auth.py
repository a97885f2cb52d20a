from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from caterflow.app.api.deps import get_current_user, get_db
from caterflow.app.core.security import create_access_token, get_password_hash, verify_password
from caterflow.app.db.models.models_v1 import User
from caterflow.services.audit import log_interaction

router = APIRouter(prefix="/auth")


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)


def serialize_user(u: User) -> dict:
    return {
        "id": u.id,
        "name": u.name,
        "email": u.email,
        "role": u.role,
        "is_active": u.is_active,
        "site": {"id": u.site.id, "name": u.site.name} if u.site else None,
    }


@router.post("/login")
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    user = db.execute(select(User).where(User.email == payload.email.strip().lower())).scalar_one_or_none()

    # même message pour email inconnu / mauvais mot de passe
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Inactive user")

    token = create_access_token({"sub": str(user.id), "role": user.role.value})
    log_interaction(db, "login", f"User {user.email} logged in", "AppUser", user.id, user.id)
    db.commit()

    return {"access_token": token, "token_type": "bearer", "user": serialize_user(user)}


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return serialize_user(user)


@router.post("/change-password")
def change_password(
    payload: ChangePasswordRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")

    user.password_hash = get_password_hash(payload.new_password)
    log_interaction(db, "update", "Password changed", "AppUser", user.id, user.id)
    db.commit()
    return {"ok": True}


@router.post("/logout")
def logout(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    # token sans état : le client oublie sa copie
    log_interaction(db, "logout", f"User {user.email} logged out", "AppUser", user.id, user.id)
    db.commit()
    return {"ok": True}

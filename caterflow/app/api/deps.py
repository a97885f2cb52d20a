from __future__ import annotations

from dataclasses import dataclass
from typing import Generator, Iterable

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from caterflow.app.core.security import decode_access_token
from caterflow.app.db.session import SessionLocal
from caterflow.app.db.models.models_v1 import User
from caterflow.app.db.models.core_types import MULTI_SITE_ROLES, Role

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/v1/auth/login")


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    - Authorization: Bearer <token> obligatoire
    - token invalide / expiré -> 401
    - utilisateur inactif -> 403
    """
    payload = decode_access_token((token or "").strip())
    if not payload or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.get(User, int(payload["sub"]))
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")
    return user


def require_roles(*roles: Role):
    allowed = set(roles)

    def _check(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return user

    return _check


@dataclass(frozen=True)
class SiteScope:
    """Sites visibles pour un utilisateur. site_ids None = tous les sites."""

    user_id: int
    role: Role
    site_ids: frozenset[int] | None

    @property
    def can_access_multiple_sites(self) -> bool:
        return self.site_ids is None

    def restrict(self, requested: Iterable[int] | None) -> list[int] | None:
        """Sites demandés intersectés avec les sites visibles (None = tous)."""
        if requested is None:
            return None if self.site_ids is None else sorted(self.site_ids)
        wanted = {int(s) for s in requested}
        if self.site_ids is None:
            return sorted(wanted)
        return sorted(wanted & self.site_ids)

    def allows(self, site_id: int | None) -> bool:
        return self.site_ids is None or (site_id is not None and site_id in self.site_ids)


def get_site_scope(user: User = Depends(get_current_user)) -> SiteScope:
    if user.role in MULTI_SITE_ROLES:
        return SiteScope(user.id, user.role, None)
    if user.site_id is not None:
        return SiteScope(user.id, user.role, frozenset({user.site_id}))
    return SiteScope(user.id, user.role, frozenset())

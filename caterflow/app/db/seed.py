from __future__ import annotations

from sqlalchemy import select

from caterflow.app.core.config import get_settings
from caterflow.app.core.security import get_password_hash
from caterflow.app.db.session import SessionLocal
from caterflow.app.db.models.models_v1 import Bin, DispatchType, Site, User
from caterflow.app.db.models.core_types import BinType, Role

DEFAULT_DISPATCH_TYPES = (
    ("Breakfast", "07:00"),
    ("Lunch", "12:00"),
    ("Dinner", "18:00"),
)


def run_seed():
    settings = get_settings()
    db = SessionLocal()
    try:
        # 1) Site "Main Kitchen" + son bin principal
        site = db.scalar(select(Site).where(Site.code == "main-kitchen"))
        if not site:
            site = Site(name="Main Kitchen", code="main-kitchen", active=True)
            db.add(site)
            db.flush()

        main_bin = db.scalar(select(Bin).where(Bin.site_id == site.id).where(Bin.bin_type == BinType.main_storage))
        if not main_bin:
            db.add(Bin(site_id=site.id, name="Main Store", bin_type=BinType.main_storage))

        # 2) Types de service
        for name, default_time in DEFAULT_DISPATCH_TYPES:
            if not db.scalar(select(DispatchType).where(DispatchType.name == name)):
                db.add(DispatchType(name=name, default_time=default_time, is_active=True))

        # 3) Admin
        email = settings.SEED_ADMIN_EMAIL.lower()
        user = db.scalar(select(User).where(User.email == email))
        if not user:
            db.add(
                User(
                    site_id=site.id,
                    name="Administrator",
                    email=email,
                    password_hash=get_password_hash(settings.SEED_ADMIN_PASSWORD),
                    role=Role.admin,
                    is_active=True,
                )
            )

        db.commit()
        print(f"SEED OK: site={site.name}, user={email}")
    finally:
        db.close()


if __name__ == "__main__":
    run_seed()

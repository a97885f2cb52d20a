import os

# base SQLite en mémoire, jamais la DB locale
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["ENV"] = "test"
os.environ["JWT_SECRET"] = "test-secret"

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from caterflow.app.api.deps import get_db
from caterflow.app.core.security import get_password_hash
from caterflow.app.db.base import Base
from caterflow.app.db.session import SessionLocal, engine
from caterflow.app.db.models import models_v1  # noqa: F401  (tables)
from caterflow.app.db.models.models_v1 import Bin, Site, StockItem, User
from caterflow.app.db.models.core_types import BinType, Role
from caterflow.app.main import app
from caterflow.tests.factories import auth_headers


@pytest.fixture(scope="function")
def db_session() -> Session:
    """
    Session DB isolée par test.

    Schéma recréé pour chaque test puis supprimé : TOUT disparaît à la fin,
    même après commit().
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def site(db_session) -> Site:
    s = Site(name="Main Kitchen", code="main-kitchen", active=True)
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture
def other_site(db_session) -> Site:
    s = Site(name="North Ward", code="north-ward", active=True)
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture
def make_bin(db_session):
    def _make(site: Site, name: str, bin_type: BinType = BinType.main_storage) -> Bin:
        b = Bin(site_id=site.id, name=name, bin_type=bin_type)
        db_session.add(b)
        db_session.commit()
        return b

    return _make


@pytest.fixture
def make_item(db_session):
    def _make(sku: str, *, unit_price: str = "1.00", minimum: str = "0") -> StockItem:
        item = StockItem(
            name=f"Item {sku}",
            sku=sku,
            unit_price=Decimal(unit_price),
            minimum_stock_level=Decimal(minimum),
        )
        db_session.add(item)
        db_session.commit()
        return item

    return _make


@pytest.fixture
def make_user(db_session):
    def _make(role: Role, site: Site | None = None, email: str | None = None, password: str = "password123") -> User:
        u = User(
            name=role.value,
            email=email or f"{role.value.lower()}@caterflow.test",
            password_hash=get_password_hash(password),
            role=role,
            site_id=site.id if site else None,
            is_active=True,
        )
        db_session.add(u)
        db_session.commit()
        return u

    return _make


@pytest.fixture
def admin(make_user) -> User:
    return make_user(Role.admin)


@pytest.fixture
def admin_headers(admin) -> dict:
    return auth_headers(admin)

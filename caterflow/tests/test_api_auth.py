import pytest

from caterflow.app.core.config import get_settings
from caterflow.app.core.security import create_access_token
from caterflow.app.db.models.core_types import BinType, Role
from caterflow.tests.factories import auth_headers


def test_health(client):
    r = client.get("/v1/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_login_returns_token_and_user(client, site, make_user):
    make_user(Role.site_manager, site, email="chef@caterflow.test", password="s3cret-pass")

    r = client.post("/v1/auth/login", json={"email": "Chef@Caterflow.test", "password": "s3cret-pass"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["role"] == "siteManager"
    assert body["user"]["site"] == {"id": site.id, "name": site.name}

    me = client.get("/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "chef@caterflow.test"


def test_login_wrong_password_is_401(client, make_user):
    make_user(Role.auditor, email="audit@caterflow.test")

    r = client.post("/v1/auth/login", json={"email": "audit@caterflow.test", "password": "nope"})
    assert r.status_code == 401

    r = client.post("/v1/auth/login", json={"email": "ghost@caterflow.test", "password": "nope"})
    assert r.status_code == 401


def test_inactive_user_is_403(client, db_session, make_user):
    user = make_user(Role.stock_controller, email="gone@caterflow.test")
    headers = auth_headers(user)
    user.is_active = False
    db_session.commit()

    r = client.post("/v1/auth/login", json={"email": "gone@caterflow.test", "password": "password123"})
    assert r.status_code == 403

    assert client.get("/v1/auth/me", headers=headers).status_code == 403


def test_missing_or_bad_token_is_401(client):
    assert client.get("/v1/auth/me").status_code == 401
    assert client.get("/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_role_guard(client, site, make_user):
    dispatcher = make_user(Role.dispatch_staff, site)
    r = client.post("/v1/sites", json={"name": "Annex", "code": "annex"}, headers=auth_headers(dispatcher))
    assert r.status_code == 403


def test_change_password_then_login(client, make_user):
    user = make_user(Role.procurer, email="buyer@caterflow.test")
    headers = auth_headers(user)

    bad = client.post(
        "/v1/auth/change-password",
        json={"current_password": "wrong", "new_password": "brand-new-pass"},
        headers=headers,
    )
    assert bad.status_code == 400

    ok = client.post(
        "/v1/auth/change-password",
        json={"current_password": "password123", "new_password": "brand-new-pass"},
        headers=headers,
    )
    assert ok.status_code == 200

    r = client.post("/v1/auth/login", json={"email": "buyer@caterflow.test", "password": "brand-new-pass"})
    assert r.status_code == 200


def test_admin_creates_user_with_unique_email(client, site, admin_headers):
    body = {
        "name": "Ana",
        "email": "Ana@Caterflow.test",
        "password": "long-enough",
        "role": "dispatchStaff",
        "site_id": site.id,
    }
    r = client.post("/v1/users", json=body, headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["email"] == "ana@caterflow.test"

    assert client.post("/v1/users", json=body, headers=admin_headers).status_code == 409


def test_main_bin_of_site(client, site, other_site, make_bin, admin_headers):
    make_bin(site, "Fridge", BinType.refrigerator)
    main = make_bin(site, "Main Store")

    r = client.get(f"/v1/sites/{site.id}/main-bin", headers=admin_headers)
    assert r.json()["id"] == main.id

    assert client.get(f"/v1/sites/{other_site.id}/main-bin", headers=admin_headers).status_code == 404


def test_default_secret_is_refused_outside_dev(monkeypatch):
    settings = get_settings()
    monkeypatch.setattr(settings, "ENV", "prod")
    monkeypatch.setattr(settings, "JWT_SECRET", "dev-temp-secret")

    with pytest.raises(RuntimeError):
        create_access_token({"sub": "1"})

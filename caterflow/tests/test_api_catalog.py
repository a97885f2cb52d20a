from decimal import Decimal

from caterflow.app.db.models.core_types import Role
from caterflow.app.db.models.models_v1 import Bin
from caterflow.tests.factories import add_dispatch, add_receipt, auth_headers, days_ago


def test_stock_item_crud_with_suppliers(client, admin_headers):
    cat = client.post("/v1/categories", json={"title": "Dry goods"}, headers=admin_headers).json()
    s1 = client.post("/v1/suppliers", json={"name": "Grain Co"}, headers=admin_headers).json()
    s2 = client.post("/v1/suppliers", json={"name": "Oil Co"}, headers=admin_headers).json()

    r = client.post(
        "/v1/stock-items",
        json={
            "name": "Basmati rice",
            "sku": "RICE-5KG",
            "category_id": cat["id"],
            "unit_of_measure": "kg",
            "unit_price": "7.40",
            "minimum_stock_level": "10",
            "supplier_ids": [s2["id"], s1["id"]],
        },
        headers=admin_headers,
    )
    assert r.status_code == 200, r.text
    item = r.json()
    assert item["category"] == "Dry goods"
    assert item["supplier_ids"] == sorted([s1["id"], s2["id"]])

    dup = client.post("/v1/stock-items", json={"name": "Other", "sku": "RICE-5KG"}, headers=admin_headers)
    assert dup.status_code == 409

    bad = client.post(
        "/v1/stock-items",
        json={"name": "Other", "sku": "X-1", "supplier_ids": [999]},
        headers=admin_headers,
    )
    assert bad.status_code == 400

    r = client.patch(f"/v1/stock-items/{item['id']}", json={"supplier_ids": []}, headers=admin_headers)
    assert r.json()["supplier_ids"] == []

    # catégorie utilisée -> conflit
    assert client.delete(f"/v1/categories/{cat['id']}", headers=admin_headers).status_code == 409

    r = client.delete(f"/v1/stock-items/{item['id']}", headers=admin_headers)
    assert r.json() == {"ok": True, "deactivated": False}
    assert client.get(f"/v1/stock-items/{item['id']}", headers=admin_headers).status_code == 404


def test_item_with_history_is_only_deactivated(client, db_session, site, make_bin, make_item, make_user, admin_headers):
    store = make_bin(site, "Main Store")
    rice = make_item("RICE")
    add_receipt(db_session, store, make_user(Role.stock_controller), days_ago(1), {rice: "1"})

    r = client.delete(f"/v1/stock-items/{rice.id}", headers=admin_headers)
    assert r.json() == {"ok": True, "deactivated": True}
    assert client.get(f"/v1/stock-items/{rice.id}", headers=admin_headers).json()["is_active"] is False


def test_items_by_site_carry_stock_status(client, db_session, site, make_bin, make_item, make_user, admin_headers):
    store = make_bin(site, "Main Store")
    rice = make_item("RICE", minimum="3")
    make_item("OIL")
    staff = make_user(Role.stock_controller, site)
    add_receipt(db_session, store, staff, days_ago(2), {rice: "5"})
    add_dispatch(db_session, store, staff, days_ago(1), {rice: "2"})

    rows = {r["sku"]: r for r in client.get("/v1/stock-items/by-site", params={"site_id": site.id}, headers=admin_headers).json()}
    assert Decimal(str(rows["RICE"]["current_stock"])) == Decimal("3")
    assert rows["RICE"]["stock_status"] == "low-stock"
    assert rows["OIL"]["stock_status"] == "out-of-stock"

    one = client.get(f"/v1/stock-items/{rice.id}/in-bin/{store.id}", headers=admin_headers).json()
    assert Decimal(str(one["on_hand"])) == Decimal("3")


def test_bins_are_unique_per_site_and_keep_history(client, db_session, site, other_site, make_item, make_user, admin_headers):
    body = {"site_id": site.id, "name": "Dry Store", "bin_type": "main-storage"}
    first = client.post("/v1/bins", json=body, headers=admin_headers)
    assert first.status_code == 200, first.text
    assert client.post("/v1/bins", json=body, headers=admin_headers).status_code == 409
    assert client.post("/v1/bins", json=dict(body, site_id=other_site.id), headers=admin_headers).status_code == 200

    # bin d'un autre site interdit à un manager
    manager = auth_headers(make_user(Role.site_manager, other_site))
    assert client.post("/v1/bins", json=dict(body, name="Cold"), headers=manager).status_code == 403

    rice = make_item("RICE")
    bin_row = db_session.get(Bin, first.json()["id"])
    add_receipt(db_session, bin_row, make_user(Role.stock_controller), days_ago(1), {rice: "2"})
    assert client.delete(f"/v1/bins/{bin_row.id}", headers=admin_headers).status_code == 409

    stock = client.get(f"/v1/bins/{bin_row.id}/stock", headers=admin_headers).json()
    assert [(s["stock_item_id"], Decimal(str(s["on_hand"]))) for s in stock] == [(rice.id, Decimal("2"))]


def test_dispatch_type_time_format(client, admin_headers):
    ok = client.post("/v1/dispatch-types", json={"name": "Supper", "default_time": "19:30"}, headers=admin_headers)
    assert ok.status_code == 200, ok.text
    bad = client.post("/v1/dispatch-types", json={"name": "Late", "default_time": "7pm"}, headers=admin_headers)
    assert bad.status_code == 422

from decimal import Decimal

import pytest

from caterflow.app.db.models.core_types import ApprovalStatus, Role
from caterflow.tests.factories import add_receipt, add_transfer, auth_headers, days_ago


@pytest.fixture
def bins(site, other_site, make_bin):
    return make_bin(site, "Main Store"), make_bin(other_site, "Main Store")


def test_single_site_user_cannot_reach_other_site(client, site, other_site, bins, make_user):
    here, there = bins
    manager = auth_headers(make_user(Role.site_manager, site))

    assert client.get(f"/v1/bins/{here.id}", headers=manager).status_code == 200
    assert client.get(f"/v1/bins/{there.id}", headers=manager).status_code == 403
    assert client.get("/v1/stock", params={"site_id": other_site.id}, headers=manager).status_code == 403

    listed = client.get("/v1/bins", headers=manager).json()
    assert [b["id"] for b in listed] == [here.id]


def test_user_without_site_sees_nothing(client, bins, make_user, make_item):
    make_item("RICE")
    floating = auth_headers(make_user(Role.stock_controller))

    assert client.get("/v1/bins", headers=floating).json() == []
    assert client.get("/v1/stock", headers=floating).json() == []
    assert client.get("/v1/low-stock", headers=floating).json() == []


def test_user_without_site_gets_empty_dashboard(client, db_session, site, bins, make_user, make_item):
    """
    GIVEN
    - riz : min 5, 50 reçus dans la réserve du site 1
    - agent de distribution sans site

    THEN
    - dashboard à zéro : aucun article compté en alerte ou en rupture
    """
    here, _ = bins
    rice = make_item("RICE", minimum="5")
    add_receipt(db_session, here, make_user(Role.stock_controller, site), days_ago(1), {rice: "50"})
    floating = auth_headers(make_user(Role.dispatch_staff))

    r = client.post("/v1/dashboard/stats", json={"siteIds": []}, headers=floating)
    assert r.status_code == 200, r.text
    stats = r.json()["stats"]
    assert stats["lowStockItemsCount"] == 0
    assert stats["outOfStockItemsCount"] == 0
    assert Decimal(str(stats["totalInventoryValue"])) == Decimal("0")

    assert client.get("/v1/analytics/stock-values", headers=floating).json()["items"] == []


def test_multi_site_role_sees_all_sites(client, bins, make_user, make_item):
    make_item("RICE")
    auditor = auth_headers(make_user(Role.auditor))

    rows = client.get("/v1/stock", headers=auditor).json()
    assert {r["bin_id"] for r in rows} == {b.id for b in bins}


def test_low_stock_post_intersects_requested_sites(client, db_session, site, other_site, bins, make_user, make_item):
    """
    GIVEN
    - sucre : min 5, 2 sur chaque site
    - manager du site 1 demande les sites 1 et 2

    THEN
    - seul le site 1 compte : 2 <= 5 -> en alerte, bin du site 1
    """
    here, there = bins
    sugar = make_item("SUGAR", minimum="5")
    controller = make_user(Role.stock_controller, site)
    add_receipt(db_session, here, controller, days_ago(1), {sugar: "2"})
    add_receipt(db_session, there, controller, days_ago(1), {sugar: "2"})

    manager = auth_headers(make_user(Role.site_manager, site))
    rows = client.post("/v1/low-stock", json={"siteIds": [site.id, other_site.id]}, headers=manager).json()
    assert [(r["sku"], r["bin_id"]) for r in rows] == [("SUGAR", here.id)]
    assert Decimal(str(rows[0]["current_stock"])) == Decimal("2")

    # liste vide = sites visibles
    assert len(client.post("/v1/low-stock", json={"siteIds": []}, headers=manager).json()) == 1


def test_dashboard_stats(client, db_session, site, bins, make_user, make_item, admin_headers):
    here, there = bins
    oil = make_item("OIL", unit_price="3.00", minimum="1")
    make_item("SALT")
    controller = make_user(Role.stock_controller, site)
    add_receipt(db_session, here, controller, days_ago(0), {oil: "4"})
    add_transfer(
        db_session, here, there, controller, days_ago(0), {oil: "1"},
        status=ApprovalStatus.pending_approval,
    )

    r = client.post("/v1/dashboard/stats", json={"siteIds": [site.id]}, headers=admin_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["siteIds"] == [site.id]

    stats = body["stats"]
    assert stats["monthlyReceiptsCount"] == 1
    assert stats["pendingTransfersCount"] == 1
    assert stats["lowStockItemsCount"] == 1
    assert stats["outOfStockItemsCount"] == 1
    assert stats["negativeStockItemsCount"] == 0
    assert stats["totalSites"] == 1
    assert Decimal(str(stats["totalInventoryValue"])) == Decimal("12.00")


def test_pending_approvals_for_manager(client, db_session, site, bins, make_user, make_item):
    here, there = bins
    rice = make_item("RICE")
    controller = make_user(Role.stock_controller, site)
    add_transfer(db_session, here, there, controller, days_ago(1), {rice: "1"}, status=ApprovalStatus.pending_approval)
    add_transfer(db_session, here, there, controller, days_ago(1), {rice: "1"}, status=ApprovalStatus.draft)

    manager = auth_headers(make_user(Role.site_manager, site))
    rows = client.get("/v1/approvals", headers=manager).json()
    assert [r["type"] for r in rows] == ["InternalTransfer"]

    dispatcher = auth_headers(make_user(Role.dispatch_staff, site))
    assert client.get("/v1/approvals", headers=dispatcher).json() == []


def test_activity_feed_lists_logged_actions(client, site, bins, make_user, make_item):
    here, _ = bins
    controller = make_user(Role.stock_controller, site)
    headers = auth_headers(controller)
    client.post("/v1/bin-counts", json={"bin_id": here.id}, headers=headers)

    rows = client.get("/v1/activity", params={"timeframe": "today"}, headers=headers).json()
    assert rows[0]["action"] == "create"
    assert rows[0]["entity_type"] == "InventoryCount"
    assert rows[0]["user"] == controller.name

    assert client.get("/v1/activity", params={"timeframe": "year"}, headers=headers).status_code == 400

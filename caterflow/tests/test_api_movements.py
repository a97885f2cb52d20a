from decimal import Decimal

import pytest

from caterflow.app.api.v1.endpoints import transfers
from caterflow.app.db.models.core_types import ApprovalStatus, BinType, Role
from caterflow.services import inventory
from caterflow.tests.factories import add_adjustment, add_receipt, add_transfer, auth_headers, days_ago


@pytest.fixture
def store(site, make_bin):
    return make_bin(site, "Main Store")


@pytest.fixture
def fridge(site, make_bin):
    return make_bin(site, "Walk-in Fridge", BinType.refrigerator)


@pytest.fixture
def controller(make_user, site):
    return make_user(Role.stock_controller, site)


@pytest.fixture
def manager(make_user, site):
    return make_user(Role.site_manager, site)


def _on_hand(client, headers, bin_id, item_id) -> Decimal:
    r = client.get("/v1/stock", params={"bin_id": bin_id, "stock_item_id": item_id}, headers=headers)
    assert r.status_code == 200, r.text
    rows = r.json()
    assert len(rows) == 1
    return Decimal(str(rows[0]["on_hand"]))


def test_transfer_full_lifecycle(client, db_session, store, fridge, controller, manager, make_item):
    """
    GIVEN
    - 10 de riz en réserve
    - transfert de 4 vers le frigo

    THEN
    - draft -> pending-approval -> approved -> completed
    - le stock ne bouge qu'à la complétion
    """
    rice = make_item("RICE")
    add_receipt(db_session, store, controller, days_ago(1), {rice: "10"})
    ctl, mgr = auth_headers(controller), auth_headers(manager)

    r = client.post(
        "/v1/transfers",
        json={
            "from_bin_id": store.id,
            "to_bin_id": fridge.id,
            "lines": [{"stock_item_id": rice.id, "transferred_quantity": "4"}],
        },
        headers=ctl,
    )
    assert r.status_code == 200, r.text
    transfer = r.json()
    assert transfer["status"] == "draft"
    assert transfer["transfer_number"] == "TRF-00001"
    tid = transfer["id"]

    # pas de raccourci draft -> completed
    assert client.post(f"/v1/transfers/{tid}/complete", headers=ctl).status_code == 400

    assert client.post(f"/v1/transfers/{tid}/submit", headers=ctl).json()["status"] == "pending-approval"

    # un stock controller n'approuve pas
    assert client.post(f"/v1/transfers/{tid}/approve", headers=ctl).status_code == 403

    r = client.post(f"/v1/transfers/{tid}/approve", headers=mgr)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "approved"
    assert r.json()["approved_by"] == manager.id
    assert _on_hand(client, ctl, store.id, rice.id) == Decimal("10")

    r = client.post(f"/v1/transfers/{tid}/complete", headers=ctl)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "completed"
    assert r.json()["completed_at"] is not None

    assert _on_hand(client, ctl, store.id, rice.id) == Decimal("6")
    assert _on_hand(client, ctl, fridge.id, rice.id) == Decimal("4")

    # document clos
    r = client.patch(f"/v1/transfers/{tid}", json={"notes": "late"}, headers=ctl)
    assert r.status_code == 400


def test_transfer_completion_checks_source_stock(client, db_session, store, fridge, controller, manager, make_item):
    oil = make_item("OIL")
    add_receipt(db_session, store, controller, days_ago(1), {oil: "2"})
    ctl, mgr = auth_headers(controller), auth_headers(manager)

    tid = client.post(
        "/v1/transfers",
        json={
            "from_bin_id": store.id,
            "to_bin_id": fridge.id,
            "lines": [{"stock_item_id": oil.id, "transferred_quantity": "5"}],
        },
        headers=ctl,
    ).json()["id"]
    client.post(f"/v1/transfers/{tid}/submit", headers=ctl)
    client.post(f"/v1/transfers/{tid}/approve", headers=mgr)

    r = client.post(f"/v1/transfers/{tid}/complete", headers=ctl)
    assert r.status_code == 400
    assert "Insufficient stock" in r.json()["detail"]

    assert client.get(f"/v1/transfers/{tid}", headers=ctl).json()["status"] == "approved"
    assert _on_hand(client, ctl, fridge.id, oil.id) == Decimal("0")


def test_transfer_rejects_same_bin(client, store, controller, make_item):
    rice = make_item("RICE")
    r = client.post(
        "/v1/transfers",
        json={
            "from_bin_id": store.id,
            "to_bin_id": store.id,
            "lines": [{"stock_item_id": rice.id, "transferred_quantity": "1"}],
        },
        headers=auth_headers(controller),
    )
    assert r.status_code == 400


def test_dispatch_costs_and_consumes_stock(client, db_session, store, controller, make_user, site, make_item):
    """
    GIVEN
    - 10 de lait à 2.50
    THEN
    - sortie de 3 : total_cost == 7.50, reste 7
    - sortie de 8 : refusée, rien n'est écrit
    """
    milk = make_item("MILK", unit_price="2.50")
    add_receipt(db_session, store, controller, days_ago(1), {milk: "10"})
    staff = auth_headers(make_user(Role.dispatch_staff, site))

    r = client.post(
        "/v1/dispatches",
        json={
            "source_bin_id": store.id,
            "people_fed": 40,
            "lines": [{"stock_item_id": milk.id, "dispatched_quantity": "3"}],
        },
        headers=staff,
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["dispatch_number"].startswith("DL-")
    assert body["dispatch_number"].endswith("-001")
    assert Decimal(str(body["total_cost"])) == Decimal("7.50")
    assert _on_hand(client, staff, store.id, milk.id) == Decimal("7")

    r = client.post(
        "/v1/dispatches",
        json={
            "source_bin_id": store.id,
            "lines": [{"stock_item_id": milk.id, "dispatched_quantity": "8"}],
        },
        headers=staff,
    )
    assert r.status_code == 400
    assert len(client.get("/v1/dispatches", headers=staff).json()) == 1


def test_dispatch_rejects_duplicate_lines(client, store, controller, make_item):
    rice = make_item("RICE")
    r = client.post(
        "/v1/dispatches",
        json={
            "source_bin_id": store.id,
            "lines": [
                {"stock_item_id": rice.id, "dispatched_quantity": "1"},
                {"stock_item_id": rice.id, "dispatched_quantity": "1"},
            ],
        },
        headers=auth_headers(controller),
    )
    assert r.status_code == 400


def test_negative_adjustment_needs_stock(client, db_session, store, controller, manager, make_item):
    flour = make_item("FLOUR")
    add_receipt(db_session, store, controller, days_ago(1), {flour: "2"})
    ctl, mgr = auth_headers(controller), auth_headers(manager)

    def _run(qty: str, kind: str):
        aid = client.post(
            "/v1/adjustments",
            json={
                "bin_id": store.id,
                "adjustment_type": kind,
                "lines": [{"stock_item_id": flour.id, "adjusted_quantity": qty}],
            },
            headers=ctl,
        ).json()["id"]
        client.post(f"/v1/adjustments/{aid}/submit", headers=ctl)
        client.post(f"/v1/adjustments/{aid}/approve", headers=mgr)
        return client.post(f"/v1/adjustments/{aid}/complete", headers=ctl)

    assert _run("-3", "wastage").status_code == 400
    assert _run("5", "found").status_code == 200
    assert _run("-3", "wastage").status_code == 200
    assert _on_hand(client, ctl, store.id, flour.id) == Decimal("4")


def test_zero_adjustment_line_is_rejected(client, store, controller, make_item):
    salt = make_item("SALT")
    r = client.post(
        "/v1/adjustments",
        json={
            "bin_id": store.id,
            "adjustment_type": "correction",
            "lines": [{"stock_item_id": salt.id, "adjusted_quantity": "0"}],
        },
        headers=auth_headers(controller),
    )
    assert r.status_code == 422


def test_receipt_against_po_updates_po_status(client, site, store, controller, manager, make_user, make_item):
    """
    GIVEN
    - PO approuvé : 10 de riz
    - réception de 4 complétée

    THEN
    - PO partially-received, reste à recevoir 6
    - le stock du bin de réception vaut 4
    """
    rice = make_item("RICE", unit_price="1.20")
    sugar = make_item("SUGAR")
    procurer = auth_headers(make_user(Role.procurer))
    mgr, ctl = auth_headers(manager), auth_headers(controller)

    supplier_id = client.post("/v1/suppliers", json={"name": "Fresh Grains"}, headers=procurer).json()["id"]
    r = client.post(
        "/v1/purchase-orders",
        json={
            "supplier_id": supplier_id,
            "site_id": site.id,
            "status": "pending-approval",
            "lines": [{"stock_item_id": rice.id, "ordered_quantity": "10"}],
        },
        headers=procurer,
    )
    assert r.status_code == 200, r.text
    po = r.json()
    assert Decimal(str(po["lines"][0]["unit_price"])) == Decimal("1.20")
    assert Decimal(str(po["total_amount"])) == Decimal("12.00")

    # pas de réception sur un PO non approuvé
    receipt = {
        "po_id": po["id"],
        "receiving_bin_id": store.id,
        "lines": [{"stock_item_id": rice.id, "received_quantity": "4"}],
    }
    assert client.post("/v1/goods-receipts", json=receipt, headers=ctl).status_code == 400

    assert client.post(f"/v1/purchase-orders/{po['id']}/approve", headers=mgr).json()["status"] == "approved"

    off_po = dict(receipt, lines=[{"stock_item_id": sugar.id, "received_quantity": "1"}])
    assert client.post("/v1/goods-receipts", json=off_po, headers=ctl).status_code == 400

    r = client.post("/v1/goods-receipts", json=receipt, headers=ctl)
    assert r.status_code == 200, r.text
    gr = r.json()
    assert gr["status"] == "draft"
    assert _on_hand(client, ctl, store.id, rice.id) == Decimal("0")

    r = client.post(f"/v1/goods-receipts/{gr['id']}/complete", headers=ctl)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "completed"
    assert client.post(f"/v1/goods-receipts/{gr['id']}/complete", headers=ctl).status_code == 400

    po = client.get(f"/v1/purchase-orders/{po['id']}", headers=ctl).json()
    assert po["status"] == "partially-received"
    assert [(o["stock_item_id"], Decimal(str(o["quantity"]))) for o in po["outstanding"]] == [(rice.id, Decimal("6"))]
    assert _on_hand(client, ctl, store.id, rice.id) == Decimal("4")


def test_po_pdf(client, site, make_item, admin_headers):
    rice = make_item("RICE")
    supplier_id = client.post("/v1/suppliers", json={"name": "Café Sud"}, headers=admin_headers).json()["id"]
    po_id = client.post(
        "/v1/purchase-orders",
        json={
            "supplier_id": supplier_id,
            "site_id": site.id,
            "lines": [{"stock_item_id": rice.id, "ordered_quantity": "3", "unit_price": "4.10"}],
        },
        headers=admin_headers,
    ).json()["id"]

    r = client.get(f"/v1/purchase-orders/{po_id}/pdf", headers=admin_headers)
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.content.startswith(b"%PDF")


def test_bin_count_records_variance_and_becomes_snapshot(client, db_session, store, controller, make_item):
    """
    GIVEN
    - 10 de beurre reçus hier
    - comptage : 8

    THEN
    - system_quantity_at_count_time 10, variance -2
    - stock après comptage : 8
    """
    butter = make_item("BUTTER")
    add_receipt(db_session, store, controller, days_ago(1), {butter: "10"})
    ctl = auth_headers(controller)

    r = client.post("/v1/bin-counts", json={"bin_id": store.id}, headers=ctl)
    assert r.status_code == 200, r.text
    cid = r.json()["id"]
    assert r.json()["status"] == "in-progress"

    # pas de lignes, pas de complétion
    assert client.post(f"/v1/bin-counts/{cid}/complete", headers=ctl).status_code == 400

    r = client.patch(
        f"/v1/bin-counts/{cid}",
        json={"lines": [{"stock_item_id": butter.id, "counted_quantity": "8"}]},
        headers=ctl,
    )
    assert r.status_code == 200, r.text

    r = client.post(f"/v1/bin-counts/{cid}/complete", headers=ctl)
    assert r.status_code == 200, r.text
    line = r.json()["lines"][0]
    assert Decimal(str(line["system_quantity_at_count_time"])) == Decimal("10")
    assert Decimal(str(line["variance"])) == Decimal("-2")

    assert _on_hand(client, ctl, store.id, butter.id) == Decimal("8")
    assert client.delete(f"/v1/bin-counts/{cid}", headers=ctl).status_code == 400


def test_withdrawals_lock_the_source_bin(client, db_session, store, fridge, controller, make_item, monkeypatch):
    """
    GIVEN
    - 10 de riz en réserve
    - un transfert approuvé, un ajustement négatif approuvé, une sortie
    - un ajustement positif approuvé au frigo

    THEN
    - chaque sortie verrouille le bin source avant de relire le stock
    - une entrée seule ne verrouille rien
    """
    locked = []
    real_lock = inventory.lock_bin

    def _recording_lock(db, bin_id):
        locked.append(bin_id)
        return real_lock(db, bin_id)

    monkeypatch.setattr(inventory, "lock_bin", _recording_lock)

    rice = make_item("RICE")
    add_receipt(db_session, store, controller, days_ago(2), {rice: "10"})
    t = add_transfer(db_session, store, fridge, controller, days_ago(1), {rice: "2"}, status=ApprovalStatus.approved)
    out = add_adjustment(db_session, store, controller, days_ago(1), {rice: "-1"}, status=ApprovalStatus.approved)
    found = add_adjustment(db_session, fridge, controller, days_ago(1), {rice: "3"}, status=ApprovalStatus.approved)
    ctl = auth_headers(controller)

    assert client.post(f"/v1/transfers/{t.id}/complete", headers=ctl).status_code == 200
    assert client.post(f"/v1/adjustments/{out.id}/complete", headers=ctl).status_code == 200
    assert client.post(f"/v1/adjustments/{found.id}/complete", headers=ctl).status_code == 200
    r = client.post(
        "/v1/dispatches",
        json={"source_bin_id": store.id, "lines": [{"stock_item_id": rice.id, "dispatched_quantity": "1"}]},
        headers=ctl,
    )
    assert r.status_code == 200, r.text

    assert locked == [store.id, store.id, store.id]
    assert _on_hand(client, ctl, store.id, rice.id) == Decimal("6")


def test_taken_document_number_gives_conflict(client, db_session, store, fridge, controller, make_item, monkeypatch):
    """
    GIVEN
    - TRF-00001 existe déjà
    - une création concurrente tire le même numéro

    THEN
    - 409 au lieu d'une erreur serveur, la session reste utilisable
    """
    rice = make_item("RICE")
    taken = add_transfer(db_session, store, fridge, controller, days_ago(1), {rice: "1"}, status=ApprovalStatus.draft)
    body = {
        "from_bin_id": store.id,
        "to_bin_id": fridge.id,
        "lines": [{"stock_item_id": rice.id, "transferred_quantity": "1"}],
    }
    ctl = auth_headers(controller)

    number = taken.transfer_number
    monkeypatch.setattr(transfers, "next_transfer_number", lambda db: number)
    r = client.post("/v1/transfers", json=body, headers=ctl)
    assert r.status_code == 409, r.text

    monkeypatch.undo()
    r = client.post("/v1/transfers", json=body, headers=ctl)
    assert r.status_code == 200, r.text
    assert r.json()["transfer_number"] == "TRF-00002"

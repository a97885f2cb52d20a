from decimal import Decimal

import pytest

from caterflow.app.db.models.models_v1 import PurchaseOrder, PurchaseOrderLine, Supplier
from caterflow.app.db.models.core_types import POStatus, ReceiptStatus, Role
from caterflow.services.numbering import new_po_number
from caterflow.services.procurement import outstanding_quantities, refresh_po_status
from caterflow.tests.factories import add_receipt, at


@pytest.fixture
def store(site, make_bin):
    return make_bin(site, "Main Store")


@pytest.fixture
def procurer(make_user):
    return make_user(Role.procurer)


@pytest.fixture
def make_po(db_session, site, procurer):
    def _make(lines: dict, status: POStatus = POStatus.approved) -> PurchaseOrder:
        supplier = Supplier(name=f"Supplier {len(lines)}-{status.value}")
        db_session.add(supplier)
        db_session.flush()
        po = PurchaseOrder(
            po_number=new_po_number(db_session),
            supplier_id=supplier.id,
            site_id=site.id,
            ordered_by=procurer.id,
            status=status,
        )
        po.lines = [
            PurchaseOrderLine(stock_item_id=i.id, ordered_quantity=Decimal(q), unit_price=i.unit_price)
            for i, q in lines.items()
        ]
        db_session.add(po)
        db_session.commit()
        return po

    return _make


def _receive(db, po, store, user, day, lines, status=ReceiptStatus.completed):
    gr = add_receipt(db, store, user, at(day), lines, status=status)
    gr.po_id = po.id
    db.commit()
    return gr


def test_po_moves_to_partially_received_then_received(db_session, store, procurer, make_item, make_po):
    """
    GIVEN
    - PO approuvé : 10 de riz
    - réception complétée de 5, puis de 5

    THEN
    - partially-received, puis received
    """
    rice = make_item("RICE")
    po = make_po({rice: "10"})

    _receive(db_session, po, store, procurer, 3, {rice: "5"})
    assert refresh_po_status(db_session, po) == POStatus.partially_received
    assert outstanding_quantities(db_session, po.id) == {rice.id: Decimal("5")}

    _receive(db_session, po, store, procurer, 4, {rice: "5"})
    assert refresh_po_status(db_session, po) == POStatus.received
    assert outstanding_quantities(db_session, po.id) == {rice.id: Decimal("0")}


def test_draft_receipts_do_not_count(db_session, store, procurer, make_item, make_po):
    oil = make_item("OIL")
    po = make_po({oil: "4"})

    _receive(db_session, po, store, procurer, 3, {oil: "4"}, status=ReceiptStatus.draft)

    assert outstanding_quantities(db_session, po.id) == {oil.id: Decimal("4")}
    assert refresh_po_status(db_session, po) == POStatus.approved


def test_over_receipt_never_goes_below_zero(db_session, store, procurer, make_item, make_po):
    """Article livré en trop : reste à recevoir = 0, l'autre article reste ouvert."""
    flour = make_item("FLOUR")
    sugar = make_item("SUGAR")
    po = make_po({flour: "2", sugar: "3"})

    _receive(db_session, po, store, procurer, 3, {flour: "5"})

    assert outstanding_quantities(db_session, po.id) == {flour.id: Decimal("0"), sugar.id: Decimal("3")}
    assert refresh_po_status(db_session, po) == POStatus.partially_received


def test_status_outside_receiving_is_left_alone(db_session, store, procurer, make_item, make_po):
    milk = make_item("MILK")
    po = make_po({milk: "1"}, status=POStatus.cancelled)

    _receive(db_session, po, store, procurer, 3, {milk: "1"})

    assert refresh_po_status(db_session, po) == POStatus.cancelled

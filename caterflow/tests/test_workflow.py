import re
from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest

from caterflow.app.db.models.core_types import ApprovalStatus, Role
from caterflow.services import numbering
from caterflow.services.numbering import (
    new_po_number,
    next_dispatch_number,
    next_receipt_number,
    next_transfer_number,
)
from caterflow.services.workflow import WorkflowError, advance, check_editable, check_transition
from caterflow.tests.factories import add_dispatch, add_receipt, add_transfer, at

S = ApprovalStatus


@pytest.mark.parametrize(
    "current,target",
    [
        (S.draft, S.pending_approval),
        (S.pending_approval, S.approved),
        (S.pending_approval, S.rejected),
        (S.approved, S.completed),
        (S.draft, S.cancelled),
        (S.approved, S.cancelled),
    ],
)
def test_allowed_transitions(current, target):
    check_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (S.draft, S.approved),
        (S.draft, S.completed),
        (S.pending_approval, S.completed),
        (S.completed, S.cancelled),
        (S.rejected, S.approved),
        (S.cancelled, S.pending_approval),
    ],
)
def test_forbidden_transitions(current, target):
    with pytest.raises(WorkflowError):
        check_transition(current, target)


def test_only_open_documents_are_editable():
    check_editable(S.approved)
    for closed in (S.completed, S.rejected, S.cancelled):
        with pytest.raises(WorkflowError):
            check_editable(closed)


def test_advance_stamps_approval_and_completion():
    doc = SimpleNamespace(status=S.pending_approval, approved_by=None, approved_at=None, completed_at=None)

    advance(doc, S.approved, actor_id=7, now=at(3))
    assert (doc.status, doc.approved_by, doc.approved_at) == (S.approved, 7, at(3))
    assert doc.completed_at is None

    advance(doc, S.completed, actor_id=8, now=at(4))
    assert doc.status == S.completed
    assert doc.completed_at == at(4)
    assert doc.approved_by == 7

    with pytest.raises(WorkflowError):
        advance(doc, S.cancelled, actor_id=8, now=at(5))
    assert doc.status == S.completed


def test_sequential_numbers(db_session, site, make_bin, make_item, make_user):
    store = make_bin(site, "Main Store")
    fridge = make_bin(site, "Fridge")
    user = make_user(Role.stock_controller)
    rice = make_item("RICE")

    assert next_receipt_number(db_session) == "GR-00001"
    add_receipt(db_session, store, user, at(1), {rice: "1"})
    assert next_receipt_number(db_session) == "GR-00002"

    add_transfer(db_session, store, fridge, user, at(2), {rice: "1"})
    assert next_transfer_number(db_session) == "TRF-00002"


def test_dispatch_numbers_restart_every_day(db_session, site, make_bin, make_item, make_user):
    store = make_bin(site, "Main Store")
    user = make_user(Role.dispatch_staff)
    rice = make_item("RICE")

    assert next_dispatch_number(db_session, date(2026, 10, 5)) == "DL-2026-10-05-001"
    add_dispatch(db_session, store, user, at(5), {rice: "1"})
    add_dispatch(db_session, store, user, at(5, hour=18), {rice: "1"})

    assert next_dispatch_number(db_session, date(2026, 10, 5)) == "DL-2026-10-05-003"
    assert next_dispatch_number(db_session, date(2026, 10, 6)) == "DL-2026-10-06-001"


def test_po_numbers_are_random_and_well_formed(db_session):
    a = new_po_number(db_session)
    b = new_po_number(db_session)
    assert re.fullmatch(r"PO-[A-Z0-9]{8}", a)
    assert a != b


def test_sequence_follows_the_longest_number(db_session, site, make_bin, make_item, make_user):
    """
    GIVEN
    - GR-99999 puis GR-100000 (le compteur dépasse 5 chiffres)

    THEN
    - suivant = GR-100001, pas GR-100000 (ordre alphabétique trompeur)
    """
    store = make_bin(site, "Main Store")
    user = make_user(Role.stock_controller)
    rice = make_item("RICE")

    for number in ("GR-99999", "GR-100000"):
        gr = add_receipt(db_session, store, user, at(1), {rice: "1"})
        gr.receipt_number = number
        db_session.commit()

    assert next_receipt_number(db_session) == "GR-100001"


def test_dispatch_number_defaults_to_utc_day(db_session, monkeypatch):
    """
    GIVEN
    - il est 23:30 UTC le 5 octobre

    THEN
    - le numéro du jour est celui du 5 octobre, quel que soit le fuseau du serveur
    """

    class _LateEvening(datetime):
        @classmethod
        def now(cls, tz=None):
            return datetime(2026, 10, 5, 23, 30, tzinfo=timezone.utc).astimezone(tz)

    monkeypatch.setattr(numbering, "datetime", _LateEvening)
    assert next_dispatch_number(db_session) == "DL-2026-10-05-001"

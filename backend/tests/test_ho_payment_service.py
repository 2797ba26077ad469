"""
Head-office payment workflow tests.

A payment request posts nothing until approved; approval and its ledger
debit land together; rejection needs a reason and never posts.
"""

from datetime import datetime

import pytest

from retailcore.errors import InvalidAmount, InvalidState, NotFound, ValidationError
from retailcore.models import AuditEvent, LedgerEntry
from retailcore.services import ho_payment_service, ledger_service
from retailcore.services.ho_payment_service import (
    HO_PAYMENT_STATUS_APPROVED,
    HO_PAYMENT_STATUS_PENDING,
    HO_PAYMENT_STATUS_REJECTED,
)
from retailcore.services.ledger_service import DIRECTION_CREDIT, ENTRY_PAYMENT, OWNER_BRANCH


ADMIN = 1
CLERK = 2


def _branch_entries(branch):
    return ledger_service.get_entries(OWNER_BRANCH, branch.id)


def test_request_is_pending_and_posts_nothing(db_session, branch_a):
    payment = ho_payment_service.create_payment_request(
        branch_a.id, "500.00", CLERK, payment_method="Bank transfer", reference=" BANK-42 ",
        payment_date=datetime(2025, 6, 30, 17, 0),
    )
    db_session.commit()

    assert payment.status == HO_PAYMENT_STATUS_PENDING
    assert payment.amount_cents == 50000
    assert payment.reference == "BANK-42"
    assert payment.requested_by_actor_id == CLERK
    assert payment.ledger_entry_id is None
    assert _branch_entries(branch_a) == []

    data = payment.to_dict()
    assert data["amount"] == "500.00"
    assert data["branch_name"] == "Downtown"
    assert data["payment_date"] == "2025-06-30T17:00:00Z"


@pytest.mark.parametrize("amount", ["0", "-10.00", "abc"])
def test_request_rejects_non_positive_amounts(db_session, branch_a, amount):
    with pytest.raises(InvalidAmount):
        ho_payment_service.create_payment_request(branch_a.id, amount, CLERK)


def test_request_for_unknown_branch_is_not_found(db_session):
    with pytest.raises(NotFound):
        ho_payment_service.create_payment_request(9999, "10.00", CLERK)


def test_approve_debits_branch_ledger_once(db_session, branch_a):
    ledger_service.post_entry(OWNER_BRANCH, branch_a.id, "Sale", "800.00", DIRECTION_CREDIT)
    payment = ho_payment_service.create_payment_request(branch_a.id, "500.00", CLERK, reference="BANK-42")
    db_session.commit()

    approved = ho_payment_service.approve_payment(payment.id, ADMIN)
    db_session.commit()

    assert approved.status == HO_PAYMENT_STATUS_APPROVED
    assert approved.reviewed_by_actor_id == ADMIN
    assert approved.reviewed_at is not None

    entry = db_session.get(LedgerEntry, approved.ledger_entry_id)
    assert entry.entry_type == ENTRY_PAYMENT
    assert entry.debit_cents == 50000 and entry.credit_cents == 0
    assert entry.reference_type == "HOPayment" and entry.reference_id == payment.id
    assert entry.description == "Payment to Head Office - Ref: BANK-42"
    assert entry.running_balance_cents == 30000

    with pytest.raises(InvalidState):
        ho_payment_service.approve_payment(payment.id, ADMIN)
    with pytest.raises(InvalidState):
        ho_payment_service.reject_payment(payment.id, ADMIN, "Too late")
    db_session.rollback()

    assert len(_branch_entries(branch_a)) == 2


def test_approve_without_reference_cites_payment_id(db_session, branch_a):
    payment = ho_payment_service.create_payment_request(branch_a.id, "20.00", CLERK)
    db_session.commit()

    ho_payment_service.approve_payment(payment.id, ADMIN)
    db_session.commit()

    (entry,) = _branch_entries(branch_a)
    assert entry.description == f"Payment to Head Office - Ref: {payment.id}"
    assert entry.running_balance_cents == -2000


def test_failed_approval_leaves_payment_pending_and_ledger_untouched(db_session, branch_a, monkeypatch):
    payment = ho_payment_service.create_payment_request(branch_a.id, "75.00", CLERK)
    db_session.commit()
    payment_id = payment.id

    def audit_down(**kwargs):
        raise RuntimeError("audit store unavailable")

    monkeypatch.setattr(ho_payment_service, "record_event", audit_down)
    with pytest.raises(RuntimeError):
        ho_payment_service.approve_payment(payment_id, ADMIN)
    db_session.rollback()

    assert ho_payment_service.get_payment(payment_id).status == HO_PAYMENT_STATUS_PENDING
    assert _branch_entries(branch_a) == []


def test_reject_requires_reason_and_posts_nothing(db_session, branch_a):
    payment = ho_payment_service.create_payment_request(branch_a.id, "60.00", CLERK)
    db_session.commit()

    with pytest.raises(ValidationError):
        ho_payment_service.reject_payment(payment.id, ADMIN, "  ")

    rejected = ho_payment_service.reject_payment(payment.id, ADMIN, "Deposit not found")
    db_session.commit()

    assert rejected.status == HO_PAYMENT_STATUS_REJECTED
    assert rejected.rejection_reason == "Deposit not found"
    assert rejected.ledger_entry_id is None
    assert _branch_entries(branch_a) == []

    with pytest.raises(InvalidState):
        ho_payment_service.approve_payment(payment.id, ADMIN)
    db_session.rollback()

    events = db_session.query(AuditEvent).filter_by(entity_type="ho_payment", entity_id=payment.id).all()
    assert sorted(ev.event_type for ev in events) == ["ho_payment.rejected", "ho_payment.requested"]


def test_unknown_payment_is_not_found(db_session):
    with pytest.raises(NotFound):
        ho_payment_service.get_payment(404)
    with pytest.raises(NotFound):
        ho_payment_service.approve_payment(404, ADMIN)


def test_list_filters_by_status_and_branch_newest_first(db_session, branch_a, branch_b):
    first = ho_payment_service.create_payment_request(branch_a.id, "10.00", CLERK)
    second = ho_payment_service.create_payment_request(branch_a.id, "20.00", CLERK)
    other = ho_payment_service.create_payment_request(branch_b.id, "30.00", CLERK)
    db_session.commit()
    ho_payment_service.approve_payment(first.id, ADMIN)
    db_session.commit()

    everything = ho_payment_service.list_payments(status="all")
    assert [p.id for p in everything] == [other.id, second.id, first.id]

    pending = ho_payment_service.list_payments(status=HO_PAYMENT_STATUS_PENDING)
    assert {p.id for p in pending} == {second.id, other.id}

    assert [p.id for p in ho_payment_service.list_payments(branch_id=branch_a.id)] == [second.id, first.id]

    with pytest.raises(ValidationError):
        ho_payment_service.list_payments(status="Lost")

"""
Inter-branch transfer workflow tests.

Covers the state machine, all-or-nothing dispatch, settlement postings and
completion idempotence.
"""

import re
from decimal import Decimal

import pytest

from retailcore.errors import (
    AlreadyCompleted,
    InsufficientStock,
    InvalidState,
    NotFound,
    StorageTimeout,
    ValidationError,
)
from retailcore.models import AuditEvent, LedgerEntry, Transfer
from retailcore.policy import SettlementPolicy
from retailcore.services import inventory_service, ledger_service, transfer_service
from retailcore.services.inventory_service import (
    ITEM_STATUS_AVAILABLE,
    ITEM_STATUS_IN_TRANSIT,
    ITEM_STATUS_RESERVED,
    ITEM_STATUS_SOLD,
)
from retailcore.services.ledger_service import ENTRY_TRANSFER, OWNER_BRANCH


ADMIN = 1
CLERK = 2


def _serials(items):
    return [item.serial_no for item in items]


def _dispatched_transfer(db_session, branch_a, branch_b, items):
    transfer = transfer_service.create_transfer(branch_a.id, branch_b.id, _serials(items), CLERK)
    transfer_service.approve_transfer(transfer.id, ADMIN)
    transfer_service.dispatch_transfer(transfer.id, CLERK)
    db_session.commit()
    return transfer


def _transfer_entries(transfer_id):
    return (
        LedgerEntry.query.filter_by(reference_id=transfer_id, entry_type=ENTRY_TRANSFER)
        .order_by(LedgerEntry.id)
        .all()
    )


# =============================================================================
# create / approve / reject / cancel
# =============================================================================

def test_create_transfer_snapshots_prices_without_touching_stock(
    db_session, product, branch_a, branch_b, receive_items
):
    items = receive_items(product, branch_a, 2)

    transfer = transfer_service.create_transfer(
        branch_a.id, branch_b.id, _serials(items), CLERK, notes="Restock",
        transfer_prices={items[1].serial_no: "95.00"},
    )
    db_session.commit()

    assert transfer.status == transfer_service.TRANSFER_STATUS_PENDING
    assert re.fullmatch(r"TRF-\d{8}-0001", transfer.transfer_no)
    assert [line.transfer_price_cents for line in transfer.items] == [8000, 9500]
    assert [line.branch_cost_cents for line in transfer.items] == [5000, 5000]
    assert all(inventory_service.get_item(i.id).status == ITEM_STATUS_AVAILABLE for i in items)

    second = transfer_service.create_transfer(branch_a.id, branch_b.id, _serials(items[:1]), CLERK)
    db_session.commit()
    assert second.transfer_no.endswith("-0002")


def test_create_transfer_validation(db_session, product, branch_a, branch_b, receive_items):
    items = receive_items(product, branch_a, 2)
    elsewhere = receive_items(product, branch_b, 1)
    inventory_service.transition_item(items[1].id, ITEM_STATUS_AVAILABLE, ITEM_STATUS_RESERVED)
    db_session.commit()

    with pytest.raises(ValidationError):
        transfer_service.create_transfer(branch_a.id, branch_a.id, _serials(items[:1]), CLERK)
    with pytest.raises(ValidationError):
        transfer_service.create_transfer(branch_a.id, branch_b.id, [], CLERK)
    with pytest.raises(ValidationError):
        transfer_service.create_transfer(branch_a.id, branch_b.id, [items[0].serial_no] * 2, CLERK)
    with pytest.raises(NotFound):
        transfer_service.create_transfer(branch_a.id, 9999, _serials(items[:1]), CLERK)

    with pytest.raises(ValidationError) as exc:
        transfer_service.create_transfer(
            branch_a.id, branch_b.id, ["NOPE-1", elsewhere[0].serial_no, items[0].serial_no], CLERK
        )
    assert "NOPE-1" in exc.value.message
    assert elsewhere[0].serial_no in exc.value.message

    with pytest.raises(ValidationError) as exc:
        transfer_service.create_transfer(branch_a.id, branch_b.id, _serials(items), CLERK)
    assert items[1].serial_no in exc.value.message

    db_session.rollback()
    assert Transfer.query.count() == 0


def test_reject_requires_reason_and_is_terminal(db_session, product, branch_a, branch_b, receive_items):
    items = receive_items(product, branch_a, 1)
    transfer = transfer_service.create_transfer(branch_a.id, branch_b.id, _serials(items), CLERK)
    db_session.commit()

    with pytest.raises(ValidationError):
        transfer_service.reject_transfer(transfer.id, ADMIN, "   ")

    rejected = transfer_service.reject_transfer(transfer.id, ADMIN, "Not needed")
    db_session.commit()
    assert rejected.status == transfer_service.TRANSFER_STATUS_REJECTED
    assert rejected.rejection_reason == "Not needed"

    with pytest.raises(InvalidState):
        transfer_service.approve_transfer(transfer.id, ADMIN)
    with pytest.raises(InvalidState):
        transfer_service.cancel_transfer(transfer.id, ADMIN)


def test_dispatch_requires_approval(db_session, product, branch_a, branch_b, receive_items):
    items = receive_items(product, branch_a, 1)
    transfer = transfer_service.create_transfer(branch_a.id, branch_b.id, _serials(items), CLERK)
    db_session.commit()

    with pytest.raises(InvalidState):
        transfer_service.dispatch_transfer(transfer.id, CLERK)


def test_cancel_before_dispatch_only(db_session, product, branch_a, branch_b, receive_items):
    items = receive_items(product, branch_a, 2)
    pending = transfer_service.create_transfer(branch_a.id, branch_b.id, _serials(items[:1]), CLERK)
    approved = transfer_service.create_transfer(branch_a.id, branch_b.id, _serials(items[1:]), CLERK)
    transfer_service.approve_transfer(approved.id, ADMIN)
    db_session.commit()

    assert transfer_service.cancel_transfer(pending.id, ADMIN).status == transfer_service.TRANSFER_STATUS_CANCELLED
    cancelled = transfer_service.cancel_transfer(approved.id, ADMIN, reason="Wrong branch")
    db_session.commit()
    assert cancelled.cancellation_reason == "Wrong branch"
    assert all(inventory_service.get_item(i.id).status == ITEM_STATUS_AVAILABLE for i in items)

    items2 = receive_items(product, branch_a, 1, prefix="X")
    in_transit = _dispatched_transfer(db_session, branch_a, branch_b, items2)
    with pytest.raises(InvalidState):
        transfer_service.cancel_transfer(in_transit.id, ADMIN)


# =============================================================================
# dispatch
# =============================================================================

def test_dispatch_moves_all_items_in_transit(db_session, product, branch_a, branch_b, receive_items):
    items = receive_items(product, branch_a, 3)
    transfer = _dispatched_transfer(db_session, branch_a, branch_b, items)

    assert transfer.status == transfer_service.TRANSFER_STATUS_IN_TRANSIT
    for item in items:
        current = inventory_service.get_item(item.id)
        assert current.status == ITEM_STATUS_IN_TRANSIT
        assert current.branch_id == branch_a.id
        assert current.transit_to_branch_id == branch_b.id

    level = inventory_service.get_available_count(product.id, branch_a.id)
    assert (level.physical_count, level.available_count) == (0, 0)


def test_dispatch_after_last_item_sold_is_all_or_nothing(db_session, product, branch_a, branch_b, receive_items):
    items = receive_items(product, branch_a, 3)
    transfer = transfer_service.create_transfer(branch_a.id, branch_b.id, _serials(items), CLERK)
    transfer_service.approve_transfer(transfer.id, ADMIN)
    db_session.commit()

    # The last referenced item is sold at the counter moments before dispatch
    last = items[-1]
    inventory_service.transition_item(last.id, ITEM_STATUS_AVAILABLE, ITEM_STATUS_RESERVED)
    inventory_service.transition_item(last.id, ITEM_STATUS_RESERVED, ITEM_STATUS_IN_TRANSIT)
    inventory_service.transition_item(last.id, ITEM_STATUS_IN_TRANSIT, ITEM_STATUS_SOLD)
    db_session.commit()

    with pytest.raises(InsufficientStock) as exc:
        transfer_service.dispatch_transfer(transfer.id, CLERK)
    assert last.serial_no in exc.value.message
    db_session.rollback()

    assert [inventory_service.get_item(i.id).status for i in items[:2]] == [ITEM_STATUS_AVAILABLE] * 2
    assert transfer_service.get_transfer(transfer.id).status == transfer_service.TRANSFER_STATUS_APPROVED


def test_dispatch_respects_bulk_reservations(db_session, product, branch_a, branch_b, receive_items):
    items = receive_items(product, branch_a, 2)
    transfer = transfer_service.create_transfer(branch_a.id, branch_b.id, _serials(items), CLERK)
    transfer_service.approve_transfer(transfer.id, ADMIN)
    inventory_service.reserve(product.id, branch_a.id, 1)
    db_session.commit()

    with pytest.raises(InsufficientStock):
        transfer_service.dispatch_transfer(transfer.id, CLERK)
    db_session.rollback()
    assert inventory_service.get_available_count(product.id, branch_a.id).available_count == 1


# =============================================================================
# complete / settlement
# =============================================================================

def test_complete_posts_70_30_split_and_flips_ownership(
    db_session, product, branch_a, branch_b, pool_branch, receive_items
):
    items = receive_items(product, branch_a, 3)
    transfer = _dispatched_transfer(db_session, branch_a, branch_b, items)

    completed = transfer_service.complete_transfer(transfer.id, ADMIN)
    db_session.commit()

    assert completed.status == transfer_service.TRANSFER_STATUS_COMPLETED
    assert completed.profit_cents == 9000
    for item in items:
        current = inventory_service.get_item(item.id)
        assert current.status == ITEM_STATUS_AVAILABLE
        assert current.branch_id == branch_b.id
        assert current.serial_no == item.serial_no

    entries = _transfer_entries(transfer.id)
    postings = {(e.owner_id, e.credit_cents, e.debit_cents) for e in entries}
    assert postings == {(pool_branch.id, 6300, 0), (branch_a.id, 2700, 0)}

    dest = inventory_service.get_available_count(product.id, branch_b.id)
    assert dest.available_count == 3

    events = AuditEvent.query.filter_by(transfer_id=transfer.id).order_by(AuditEvent.id).all()
    assert [e.event_type for e in events] == [
        "transfer.created",
        "transfer.approved",
        "transfer.dispatched",
        "transfer.completed",
    ]


def test_complete_twice_posts_once(db_session, product, branch_a, branch_b, pool_branch, receive_items):
    items = receive_items(product, branch_a, 2)
    transfer = _dispatched_transfer(db_session, branch_a, branch_b, items)

    transfer_service.complete_transfer(transfer.id, ADMIN)
    db_session.commit()
    balances = {
        owner_id: ledger_service.get_summary(OWNER_BRANCH, owner_id).closing_balance_cents
        for owner_id in (branch_a.id, pool_branch.id)
    }

    with pytest.raises(AlreadyCompleted):
        transfer_service.complete_transfer(transfer.id, ADMIN)
    db_session.rollback()

    assert len(_transfer_entries(transfer.id)) == 2
    assert {
        owner_id: ledger_service.get_summary(OWNER_BRANCH, owner_id).closing_balance_cents
        for owner_id in (branch_a.id, pool_branch.id)
    } == balances
    assert all(inventory_service.get_item(i.id).branch_id == branch_b.id for i in items)


def test_complete_requires_in_transit(db_session, product, branch_a, branch_b, pool_branch, receive_items):
    items = receive_items(product, branch_a, 1)
    transfer = transfer_service.create_transfer(branch_a.id, branch_b.id, _serials(items), CLERK)
    db_session.commit()

    with pytest.raises(InvalidState):
        transfer_service.complete_transfer(transfer.id, ADMIN)


def test_failed_settlement_leaves_no_visible_effect(
    db_session, product, branch_a, branch_b, pool_branch, receive_items, monkeypatch
):
    items = receive_items(product, branch_a, 2)
    transfer = _dispatched_transfer(db_session, branch_a, branch_b, items)

    def _failing_append(**kwargs):
        raise StorageTimeout("ledger unavailable")

    monkeypatch.setattr(transfer_service, "append_entry", _failing_append)
    with pytest.raises(StorageTimeout):
        transfer_service.complete_transfer(transfer.id, ADMIN)
    db_session.rollback()

    assert transfer_service.get_transfer(transfer.id).status == transfer_service.TRANSFER_STATUS_IN_TRANSIT
    for item in items:
        current = inventory_service.get_item(item.id)
        assert current.status == ITEM_STATUS_IN_TRANSIT
        assert current.branch_id == branch_a.id
    assert _transfer_entries(transfer.id) == []


def test_complete_without_pool_account_is_not_found(db_session, product, branch_a, branch_b, receive_items):
    items = receive_items(product, branch_a, 1)
    transfer = _dispatched_transfer(db_session, branch_a, branch_b, items)

    with pytest.raises(NotFound):
        transfer_service.complete_transfer(transfer.id, ADMIN)
    db_session.rollback()
    assert inventory_service.get_item(items[0].id).status == ITEM_STATUS_IN_TRANSIT


def test_loss_making_transfer_posts_debits(db_session, product, branch_a, branch_b, pool_branch, receive_items):
    items = receive_items(product, branch_a, 1)
    transfer = transfer_service.create_transfer(
        branch_a.id, branch_b.id, _serials(items), CLERK, transfer_prices={items[0].serial_no: "40.00"}
    )
    transfer_service.approve_transfer(transfer.id, ADMIN)
    transfer_service.dispatch_transfer(transfer.id, CLERK)
    transfer_service.complete_transfer(transfer.id, ADMIN)
    db_session.commit()

    postings = {(e.owner_id, e.credit_cents, e.debit_cents) for e in _transfer_entries(transfer.id)}
    assert postings == {(pool_branch.id, 0, 700), (branch_a.id, 0, 300)}


def test_zero_profit_transfer_posts_nothing(db_session, product, branch_a, branch_b, pool_branch, receive_items):
    items = receive_items(product, branch_a, 1)
    transfer = transfer_service.create_transfer(
        branch_a.id, branch_b.id, _serials(items), CLERK, transfer_prices={items[0].serial_no: "50.00"}
    )
    transfer_service.approve_transfer(transfer.id, ADMIN)
    transfer_service.dispatch_transfer(transfer.id, CLERK)
    completed = transfer_service.complete_transfer(transfer.id, ADMIN)
    db_session.commit()

    assert completed.profit_cents == 0
    assert _transfer_entries(transfer.id) == []


@pytest.mark.parametrize(
    "profit_cents, expected",
    [
        (9000, (6300, 2700)),
        (1, (1, 0)),
        (5, (4, 1)),
        (-1000, (-700, -300)),
        (0, (0, 0)),
    ],
)
def test_split_profit_always_reconciles(profit_cents, expected):
    pool, master = transfer_service.split_profit(profit_cents, SettlementPolicy())
    assert (pool, master) == expected
    assert pool + master == profit_cents


def test_split_profit_uses_injected_rate():
    pool, master = transfer_service.split_profit(10000, SettlementPolicy(investor_pool_rate=Decimal("0.50")))
    assert (pool, master) == (5000, 5000)


def test_list_transfers_filters(db_session, product, branch_a, branch_b, receive_items):
    items = receive_items(product, branch_a, 2)
    first = transfer_service.create_transfer(branch_a.id, branch_b.id, _serials(items[:1]), CLERK)
    transfer_service.create_transfer(branch_a.id, branch_b.id, _serials(items[1:]), CLERK)
    transfer_service.approve_transfer(first.id, ADMIN)
    db_session.commit()

    assert len(transfer_service.list_transfers(branch_id=branch_b.id)) == 2
    approved = transfer_service.list_transfers(status=transfer_service.TRANSFER_STATUS_APPROVED)
    assert [t.id for t in approved] == [first.id]
    with pytest.raises(ValidationError):
        transfer_service.list_transfers(status="Lost")

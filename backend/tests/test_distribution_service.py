"""
Profit distribution engine tests.

Covers the monthly preview, pool reconciliation with the residual-cent
tie-break, finalization, and immutability of finalized records.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from retailcore.errors import AlreadyFinalized, InvalidState, NotFound, ValidationError
from retailcore.models import Distribution, DistributionDetail
from retailcore.policy import SettlementPolicy
from retailcore.services import distribution_service, investor_service, ledger_service, transfer_service
from retailcore.services.ledger_service import DIRECTION_CREDIT, DIRECTION_DEBIT, OWNER_BRANCH
from retailcore.time_utils import utcnow


def _post_profit(branch, amount, when, direction=DIRECTION_CREDIT, entry_type="Sale"):
    return ledger_service.post_entry(OWNER_BRANCH, branch.id, entry_type, amount, direction, posted_at=when)


def _snapshot(distribution_id):
    distribution = distribution_service.get_distribution(distribution_id)
    return distribution.to_dict(), [d.to_dict() for d in distribution_service.get_distribution_details(distribution_id)]


def test_preview_matches_worked_example(db_session, branch_a, investors):
    alice, bob = investors
    _post_profit(branch_a, "12000.00", datetime(2025, 6, 3))
    _post_profit(branch_a, "2000.00", datetime(2025, 6, 20), DIRECTION_DEBIT, "Expense")
    db_session.commit()

    preview = distribution_service.preview_distribution("2025-06")

    assert preview.company_profit_cents == 1_000_000
    assert preview.total_pool_cents == 700_000
    assert preview.total_master_share_cents == 300_000
    assert preview.total_capital_cents == 10_000_000

    lines = {line.investor_id: line for line in preview.lines}
    assert lines[alice.id].capital_share_percent == "60.0000"
    assert lines[alice.id].distributed_amount_cents == 420_000
    assert lines[bob.id].capital_share_percent == "40.0000"
    assert lines[bob.id].distributed_amount_cents == 280_000

    data = preview.to_dict()
    assert data["total_pool"] == "7000.00"
    assert data["total_master_share"] == "3000.00"

    assert Distribution.query.count() == 0


def test_preview_ignores_other_months_and_non_profit_types(db_session, branch_a, investors):
    _post_profit(branch_a, "500.00", datetime(2025, 5, 31, 23, 59, 59))
    _post_profit(branch_a, "1000.00", datetime(2025, 6, 1))
    _post_profit(branch_a, "400.00", datetime(2025, 6, 10), DIRECTION_DEBIT, "Payment")
    _post_profit(branch_a, "700.00", datetime(2025, 7, 1))
    db_session.commit()

    assert distribution_service.preview_distribution("2025-06").company_profit_cents == 100_000


def test_pool_reconciles_with_residual_to_largest_capital(db_session, branch_a):
    investors = [investor_service.create_investor(name) for name in ("A", "B", "C")]
    for investor in investors:
        investor_service.add_capital(investor.id, "100.00", contribution_date=datetime(2025, 1, 1))
    investor_service.add_capital(investors[2].id, "0.01", contribution_date=datetime(2025, 1, 2))
    _post_profit(branch_a, "1.00", datetime(2025, 6, 1))
    db_session.commit()

    preview = distribution_service.preview_distribution("2025-06")

    assert preview.total_pool_cents == 70
    amounts = {line.investor_id: line.distributed_amount_cents for line in preview.lines}
    assert sum(amounts.values()) == preview.total_pool_cents
    # 70 / 3 rounds to 23 each; the missing cent goes to the largest holder
    assert amounts == {investors[0].id: 23, investors[1].id: 23, investors[2].id: 24}


def test_residual_tie_break_prefers_lowest_investor_id(db_session, branch_a):
    investors = [investor_service.create_investor(name) for name in ("A", "B", "C")]
    for investor in investors:
        investor_service.add_capital(investor.id, "100.00", contribution_date=datetime(2025, 1, 1))
    _post_profit(branch_a, "1.00", datetime(2025, 6, 1))
    db_session.commit()

    amounts = {line.investor_id: line.distributed_amount_cents
               for line in distribution_service.preview_distribution("2025-06").lines}
    assert amounts[investors[0].id] == 24
    assert sum(amounts.values()) == 70


def test_non_positive_profit_fills_no_pool(db_session, branch_a, investors):
    _post_profit(branch_a, "250.00", datetime(2025, 6, 5), DIRECTION_DEBIT, "Expense")
    db_session.commit()

    preview = distribution_service.preview_distribution("2025-06")
    assert preview.total_pool_cents == 0
    assert preview.total_master_share_cents == -25_000
    assert all(line.distributed_amount_cents == 0 for line in preview.lines)


def test_zero_capital_gives_empty_breakdown(db_session, branch_a):
    investor_service.create_investor("No Capital Yet")
    _post_profit(branch_a, "100.00", datetime(2025, 6, 5))
    db_session.commit()

    preview = distribution_service.preview_distribution("2025-06")
    assert preview.total_capital_cents == 0
    assert preview.lines == ()
    assert preview.total_pool_cents == 7000


def test_capital_counts_contributions_through_end_of_period(db_session, branch_a):
    early = investor_service.create_investor("Early")
    late = investor_service.create_investor("Late")
    investor_service.add_capital(early.id, "100.00", contribution_date=datetime(2025, 6, 30, 23, 0))
    investor_service.add_capital(late.id, "100.00", contribution_date=datetime(2025, 7, 1))
    _post_profit(branch_a, "10.00", datetime(2025, 6, 5))
    db_session.commit()

    preview = distribution_service.preview_distribution("2025-06")
    assert [line.investor_id for line in preview.lines] == [early.id]


def test_inactive_investors_are_excluded(db_session, branch_a, investors):
    alice, bob = investors
    bob.is_active = False
    _post_profit(branch_a, "100.00", datetime(2025, 6, 5))
    db_session.commit()

    preview = distribution_service.preview_distribution("2025-06")
    assert [line.investor_id for line in preview.lines] == [alice.id]
    assert preview.lines[0].distributed_amount_cents == preview.total_pool_cents


@pytest.mark.parametrize("period", ["2025-6", "2025-13", "June 2025", "", "2025-06-01"])
def test_malformed_period_is_rejected(db_session, period):
    with pytest.raises(ValidationError):
        distribution_service.preview_distribution(period)


def test_injected_policy_changes_split(db_session, branch_a, investors):
    _post_profit(branch_a, "100.00", datetime(2025, 6, 5))
    db_session.commit()

    policy = SettlementPolicy(investor_pool_rate=Decimal("0.50"))
    preview = distribution_service.preview_distribution("2025-06", policy)
    assert (preview.total_pool_cents, preview.total_master_share_cents) == (5000, 5000)


def test_finalize_persists_preview_verbatim(db_session, branch_a, investors):
    _post_profit(branch_a, "10000.00", datetime(2025, 6, 3))
    db_session.commit()
    preview = distribution_service.preview_distribution("2025-06")

    distribution = distribution_service.finalize_distribution("2025-06", actor_id=7)
    db_session.commit()

    assert distribution.is_finalized is True
    assert distribution.finalized_by_actor_id == 7
    assert distribution.finalized_at is not None
    assert distribution.total_pool_cents == preview.total_pool_cents
    details = distribution_service.get_distribution_details(distribution.id)
    assert [(d.investor_id, d.capital_share_percent, d.distributed_amount_cents) for d in details] == [
        (line.investor_id, line.capital_share_percent, line.distributed_amount_cents) for line in preview.lines
    ]
    assert sum(d.distributed_amount_cents for d in details) == distribution.total_pool_cents
    assert [d.period for d in distribution_service.get_distribution_history()] == ["2025-06"]


def test_second_finalize_fails_and_record_is_unchanged(db_session, branch_a, investors):
    _post_profit(branch_a, "10000.00", datetime(2025, 6, 3))
    db_session.commit()
    distribution = distribution_service.finalize_distribution("2025-06", actor_id=7)
    db_session.commit()
    before = _snapshot(distribution.id)

    # Later corrections do not change the frozen numbers
    _post_profit(branch_a, "500.00", datetime(2025, 6, 30))
    db_session.commit()

    with pytest.raises(AlreadyFinalized):
        distribution_service.finalize_distribution("2025-06", actor_id=8)
    db_session.rollback()

    assert _snapshot(distribution.id) == before
    assert Distribution.query.count() == 1


def test_finalized_distribution_cannot_be_modified_or_deleted(db_session, branch_a, investors):
    _post_profit(branch_a, "10000.00", datetime(2025, 6, 3))
    db_session.commit()
    distribution = distribution_service.finalize_distribution("2025-06", actor_id=7)
    db_session.commit()
    before = _snapshot(distribution.id)

    distribution.total_pool_cents = 1
    with pytest.raises(InvalidState):
        db_session.flush()
    db_session.rollback()

    detail = DistributionDetail.query.filter_by(distribution_id=distribution.id).first()
    detail.distributed_amount_cents += 100
    with pytest.raises(InvalidState):
        db_session.flush()
    db_session.rollback()

    db_session.delete(distribution_service.get_distribution(distribution.id))
    with pytest.raises(InvalidState):
        db_session.flush()
    db_session.rollback()

    assert _snapshot(distribution.id) == before


def test_unknown_distribution_is_not_found(db_session):
    with pytest.raises(NotFound):
        distribution_service.get_distribution_details(424242)


def test_transfer_settlement_feeds_company_profit(
    db_session, product, branch_a, branch_b, pool_branch, receive_items, investors
):
    items = receive_items(product, branch_a, 3)
    transfer = transfer_service.create_transfer(branch_a.id, branch_b.id, [i.serial_no for i in items], 2)
    transfer_service.approve_transfer(transfer.id, 1)
    transfer_service.dispatch_transfer(transfer.id, 2)
    transfer_service.complete_transfer(transfer.id, 1)
    db_session.commit()

    period = utcnow().strftime("%Y-%m")
    preview = distribution_service.preview_distribution(period)
    assert preview.company_profit_cents == 9000
    assert preview.total_pool_cents == 6300

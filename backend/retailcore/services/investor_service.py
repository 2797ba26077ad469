from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..errors import InvalidAmount, NotFound, ValidationError
from ..extensions import db
from ..models import Investor, InvestorCapital
from ..money import to_cents
from ..time_utils import utcnow
from .concurrency import run_with_retry


def create_investor(name: str, contact_info: str | None = None) -> Investor:
    if not (name or "").strip():
        raise ValidationError("Investor name is required")

    investor = Investor(name=name.strip(), contact_info=contact_info)
    db.session.add(investor)
    db.session.flush()
    return investor


def get_investor(investor_id: int) -> Investor:
    investor = db.session.get(Investor, investor_id)
    if investor is None:
        raise NotFound(f"Investor {investor_id} not found")
    return investor


def add_capital(
    investor_id: int,
    amount,
    *,
    contribution_date: datetime | None = None,
    notes: str | None = None,
) -> InvestorCapital:
    """Record a dated capital contribution. Contributions are never edited."""
    amount_cents = to_cents(amount)
    if amount_cents <= 0:
        raise InvalidAmount("Capital amount must be greater than zero")

    def _op():
        investor = get_investor(investor_id)
        if not investor.is_active:
            raise ValidationError(f"Investor {investor.name!r} is inactive")

        contribution = InvestorCapital(
            investor_id=investor.id,
            amount_cents=amount_cents,
            contribution_date=contribution_date or utcnow(),
            notes=notes,
        )
        db.session.add(contribution)
        db.session.flush()
        return contribution

    return run_with_retry(_op)


def capital_before(cutoff: datetime) -> dict[int, int]:
    """
    Capital per active investor from contributions dated strictly before cutoff.

    Investors without any contribution in range are absent from the result.
    """
    rows = (
        db.session.query(InvestorCapital.investor_id, func.sum(InvestorCapital.amount_cents))
        .join(Investor, Investor.id == InvestorCapital.investor_id)
        .filter(Investor.is_active.is_(True), InvestorCapital.contribution_date < cutoff)
        .group_by(InvestorCapital.investor_id)
        .all()
    )
    return {investor_id: int(total or 0) for investor_id, total in rows}


def list_investors() -> list[tuple[Investor, int]]:
    """All investors with their total capital to date."""
    totals = dict(
        db.session.query(InvestorCapital.investor_id, func.sum(InvestorCapital.amount_cents))
        .group_by(InvestorCapital.investor_id)
        .all()
    )
    investors = db.session.query(Investor).order_by(Investor.id.asc()).all()
    return [(inv, int(totals.get(inv.id) or 0)) for inv in investors]


def get_capital_history(investor_id: int) -> list[InvestorCapital]:
    get_investor(investor_id)
    return (
        db.session.query(InvestorCapital)
        .filter_by(investor_id=investor_id)
        .order_by(InvestorCapital.contribution_date.asc(), InvestorCapital.id.asc())
        .all()
    )

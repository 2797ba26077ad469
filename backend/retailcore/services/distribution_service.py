# Overview: Monthly profit distribution: preview, finalize and history.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import event, inspect, select
from sqlalchemy.exc import IntegrityError

from ..errors import AlreadyFinalized, InvalidState, NotFound
from ..extensions import db
from ..models import Distribution, DistributionDetail, Investor
from ..money import format_cents, round_cents
from ..policy import SettlementPolicy, current_policy
from ..time_utils import period_bounds, utcnow
from .audit_service import record_event
from .concurrency import run_once
from .investor_service import capital_before
from .ledger_service import get_company_profit_cents

PERCENT_PLACES = Decimal("0.0001")


@dataclass(frozen=True)
class DistributionLine:
    investor_id: int
    investor_name: str
    capital_cents: int
    capital_share_percent: str
    distributed_amount_cents: int

    def to_dict(self) -> dict:
        return {
            "investor_id": self.investor_id,
            "investor_name": self.investor_name,
            "capital": format_cents(self.capital_cents),
            "capital_share_percent": self.capital_share_percent,
            "distributed_amount": format_cents(self.distributed_amount_cents),
        }


@dataclass(frozen=True)
class DistributionPreview:
    period: str
    company_profit_cents: int
    total_pool_cents: int
    total_master_share_cents: int
    total_capital_cents: int
    lines: tuple[DistributionLine, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "period": self.period,
            "company_profit": format_cents(self.company_profit_cents),
            "total_pool": format_cents(self.total_pool_cents),
            "total_master_share": format_cents(self.total_master_share_cents),
            "total_capital": format_cents(self.total_capital_cents),
            "breakdown": [line.to_dict() for line in self.lines],
        }


def _allocate_pool(total_pool_cents: int, capital: dict[int, int]) -> dict[int, int]:
    """
    Split the pool proportionally to capital.

    Each share is rounded half-up; the residual cent(s) go to the investor
    with the largest capital (ties: lowest id) so the shares sum to the pool.
    """
    total_capital = sum(capital.values())
    amounts = {
        investor_id: round_cents(Decimal(total_pool_cents) * Decimal(cents) / Decimal(total_capital))
        for investor_id, cents in capital.items()
    }
    residual = total_pool_cents - sum(amounts.values())
    if residual:
        largest = min(capital, key=lambda investor_id: (-capital[investor_id], investor_id))
        amounts[largest] += residual
    return amounts


def preview_distribution(period: str, policy: SettlementPolicy | None = None) -> DistributionPreview:
    """
    Compute the distribution for a YYYY-MM period without persisting anything.

    profit <= 0 puts nothing in the pool; the master share then carries the
    whole (non-positive) profit.
    """
    policy = policy or current_policy()
    start, end = period_bounds(period)

    profit_cents = get_company_profit_cents(start, end, policy.profit_entry_types)
    if profit_cents > 0:
        total_pool = round_cents(Decimal(profit_cents) * policy.investor_pool_rate)
    else:
        total_pool = 0
    total_master = profit_cents - total_pool

    capital = {investor_id: cents for investor_id, cents in capital_before(end).items() if cents > 0}
    total_capital = sum(capital.values())

    lines: list[DistributionLine] = []
    if total_capital > 0:
        amounts = _allocate_pool(total_pool, capital)
        names = dict(
            db.session.query(Investor.id, Investor.name).filter(Investor.id.in_(list(capital))).all()
        )
        for investor_id in sorted(capital):
            percent = (Decimal(capital[investor_id]) * 100 / Decimal(total_capital)).quantize(
                PERCENT_PLACES, rounding=ROUND_HALF_UP
            )
            lines.append(
                DistributionLine(
                    investor_id=investor_id,
                    investor_name=names.get(investor_id, ""),
                    capital_cents=capital[investor_id],
                    capital_share_percent=str(percent),
                    distributed_amount_cents=amounts[investor_id],
                )
            )

    return DistributionPreview(
        period=period,
        company_profit_cents=profit_cents,
        total_pool_cents=total_pool,
        total_master_share_cents=total_master,
        total_capital_cents=total_capital,
        lines=tuple(lines),
    )


def finalize_distribution(
    period: str,
    actor_id: int,
    policy: SettlementPolicy | None = None,
) -> Distribution:
    """
    Persist the preview for a period as a finalized, immutable distribution.

    Raises:
        ValidationError: malformed period
        AlreadyFinalized: the period already has a distribution
        StorageTimeout: storage lock contention (not retried)
    """
    policy = policy or current_policy()

    def _op():
        if db.session.query(Distribution.id).filter_by(period=period).first():
            raise AlreadyFinalized(f"Distribution for {period} is already finalized")

        preview = preview_distribution(period, policy)
        now = utcnow()

        distribution = Distribution(
            period=preview.period,
            company_profit_cents=preview.company_profit_cents,
            total_pool_cents=preview.total_pool_cents,
            total_master_share_cents=preview.total_master_share_cents,
            total_capital_cents=preview.total_capital_cents,
            is_finalized=True,
            finalized_at=now,
            finalized_by_actor_id=actor_id,
        )
        for line in preview.lines:
            distribution.details.append(
                DistributionDetail(
                    investor_id=line.investor_id,
                    capital_cents=line.capital_cents,
                    capital_share_percent=line.capital_share_percent,
                    distributed_amount_cents=line.distributed_amount_cents,
                )
            )
        db.session.add(distribution)
        try:
            db.session.flush()
        except IntegrityError as exc:
            # A concurrent finalize for the same period won
            db.session.rollback()
            raise AlreadyFinalized(f"Distribution for {period} is already finalized") from exc

        record_event(
            event_type="distribution.finalized",
            entity_type="distribution",
            entity_id=distribution.id,
            actor_id=actor_id,
            distribution_id=distribution.id,
            occurred_at=now,
            payload=(
                f"profit_cents={preview.company_profit_cents},"
                f"pool_cents={preview.total_pool_cents},investors={len(preview.lines)}"
            ),
        )

        current_app.logger.info(
            "Distribution %s finalized: profit=%s pool=%s master=%s investors=%d",
            period,
            format_cents(preview.company_profit_cents),
            format_cents(preview.total_pool_cents),
            format_cents(preview.total_master_share_cents),
            len(preview.lines),
        )
        return distribution

    return run_once(_op)


def get_distribution_history() -> list[Distribution]:
    return db.session.query(Distribution).order_by(Distribution.period.desc()).all()


def get_distribution(distribution_id: int) -> Distribution:
    distribution = db.session.get(Distribution, distribution_id)
    if distribution is None:
        raise NotFound(f"Distribution {distribution_id} not found")
    return distribution


def get_distribution_details(distribution_id: int) -> list[DistributionDetail]:
    return list(get_distribution(distribution_id).details)


# =============================================================================
# Immutability guard: finalized distributions are never updated or deleted
# =============================================================================

def _was_finalized(distribution: Distribution) -> bool:
    history = inspect(distribution).attrs.is_finalized.load_history()
    loaded = history.unchanged or history.deleted
    return bool(loaded and loaded[0])


@event.listens_for(Distribution, "before_update")
def _guard_distribution_update(mapper, connection, target):
    if _was_finalized(target):
        raise InvalidState(f"Distribution {target.period} is finalized and cannot be modified")


@event.listens_for(Distribution, "before_delete")
def _guard_distribution_delete(mapper, connection, target):
    if _was_finalized(target):
        raise InvalidState(f"Distribution {target.period} is finalized and cannot be deleted")


@event.listens_for(DistributionDetail, "before_update")
@event.listens_for(DistributionDetail, "before_delete")
def _guard_detail_change(mapper, connection, target):
    # The parent may already be detached (FK nulled on delete); use the committed FK
    history = inspect(target).attrs.distribution_id.load_history()
    committed = history.unchanged or history.deleted
    distribution_id = committed[0] if committed else target.distribution_id
    if distribution_id is None:
        return
    row = connection.execute(
        select(Distribution.period, Distribution.is_finalized).where(Distribution.id == distribution_id)
    ).first()
    if row is not None and row.is_finalized:
        raise InvalidState(f"Distribution {row.period} is finalized and its details cannot change")

from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z, utcnow


class Investor(db.Model):
    __tablename__ = "investors"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    contact_info = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact_info": self.contact_info,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class InvestorCapital(db.Model):
    """A dated capital contribution. Capital as of a date is the sum of contributions up to it."""
    __tablename__ = "investor_capital"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_investor_capital_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    investor_id = db.Column(db.Integer, db.ForeignKey("investors.id"), nullable=False, index=True)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    contribution_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    notes = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    investor = db.relationship("Investor", backref=db.backref("contributions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "investor_id": self.investor_id,
            "amount": format_cents(self.amount_cents),
            "contribution_date": to_utc_z(self.contribution_date),
            "notes": self.notes,
        }


class Distribution(db.Model):
    """
    Finalized profit distribution for one calendar month.

    IMMUTABLE: once is_finalized is set, neither the record nor its details
    may change (enforced by the flush guard in services/distribution_service).
    The unique period constraint keeps two concurrent finalizations from both
    committing.
    """
    __tablename__ = "distributions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    period = db.Column(db.String(7), nullable=False, unique=True)

    company_profit_cents = db.Column(db.BigInteger, nullable=False)
    total_pool_cents = db.Column(db.BigInteger, nullable=False)
    total_master_share_cents = db.Column(db.BigInteger, nullable=False)
    total_capital_cents = db.Column(db.BigInteger, nullable=False)

    is_finalized = db.Column(db.Boolean, nullable=False, default=False)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finalized_by_actor_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    details = db.relationship(
        "DistributionDetail",
        backref="distribution",
        lazy=True,
        order_by="DistributionDetail.investor_id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "period": self.period,
            "company_profit": format_cents(self.company_profit_cents),
            "total_pool": format_cents(self.total_pool_cents),
            "total_master_share": format_cents(self.total_master_share_cents),
            "total_capital": format_cents(self.total_capital_cents),
            "is_finalized": self.is_finalized,
            "finalized_at": to_utc_z(self.finalized_at),
            "finalized_by_actor_id": self.finalized_by_actor_id,
        }


class DistributionDetail(db.Model):
    __tablename__ = "distribution_details"
    __table_args__ = (
        db.UniqueConstraint("distribution_id", "investor_id", name="uq_distribution_details_investor"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    distribution_id = db.Column(db.Integer, db.ForeignKey("distributions.id"), nullable=False, index=True)
    investor_id = db.Column(db.Integer, db.ForeignKey("investors.id"), nullable=False, index=True)

    capital_cents = db.Column(db.BigInteger, nullable=False)
    # Percent of total capital, 4 decimal places ("60.0000")
    capital_share_percent = db.Column(db.String(16), nullable=False)
    distributed_amount_cents = db.Column(db.BigInteger, nullable=False)

    investor = db.relationship("Investor")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "distribution_id": self.distribution_id,
            "investor_id": self.investor_id,
            "investor_name": self.investor.name if self.investor else None,
            "capital": format_cents(self.capital_cents),
            "capital_share_percent": self.capital_share_percent,
            "distributed_amount": format_cents(self.distributed_amount_cents),
        }

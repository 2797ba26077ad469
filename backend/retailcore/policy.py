# Overview: Settlement policy values injected into the services instead of module-level globals.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from .config import Config
from .errors import ValidationError


@dataclass(frozen=True)
class SettlementPolicy:
    """
    Explicit settlement configuration.

    investor_pool_rate: share of profit that goes to the investor pool (0.70);
        the master share is always the complement so the two legs reconcile.
    pool_branch_code: code of the branch whose ledger is the investor-pool account.
    profit_entry_types: branch ledger entry types that make up company profit.
    """
    investor_pool_rate: Decimal = Decimal("0.70")
    pool_branch_code: str = "POOL"
    profit_entry_types: tuple[str, ...] = ("Sale", "Expense", "Adjustment", "Transfer")

    def __post_init__(self):
        if not Decimal(0) <= self.investor_pool_rate <= Decimal(1):
            raise ValidationError("investor_pool_rate must be between 0 and 1")

    @property
    def master_share_rate(self) -> Decimal:
        return Decimal(1) - self.investor_pool_rate

    @classmethod
    def from_config(cls, config) -> "SettlementPolicy":
        return cls(
            investor_pool_rate=Decimal(str(config.get("INVESTOR_POOL_RATE", Config.INVESTOR_POOL_RATE))),
            pool_branch_code=config.get("INVESTOR_POOL_BRANCH_CODE", Config.INVESTOR_POOL_BRANCH_CODE),
            profit_entry_types=tuple(config.get("PROFIT_ENTRY_TYPES", Config.PROFIT_ENTRY_TYPES)),
        )


def current_policy() -> SettlementPolicy:
    """Policy of the running application."""
    return SettlementPolicy.from_config(current_app.config)

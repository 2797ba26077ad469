from __future__ import annotations

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Branch, Supplier
from ..policy import SettlementPolicy, current_policy
from .concurrency import run_with_retry
from .ledger_service import OWNER_BRANCH, OWNER_SUPPLIER, ensure_ledger_account


def create_branch(name: str, code: str, address: str | None = None) -> Branch:
    """Create a branch together with its (empty) ledger account."""
    def _op():
        if not (name or "").strip() or not (code or "").strip():
            raise ValidationError("Branch name and code are required")
        if db.session.query(Branch.id).filter((Branch.name == name) | (Branch.code == code)).first():
            raise ValidationError(f"Branch {name!r} / {code!r} already exists")

        branch = Branch(name=name.strip(), code=code.strip(), address=address)
        db.session.add(branch)
        db.session.flush()

        ensure_ledger_account(OWNER_BRANCH, branch.id)
        return branch

    return run_with_retry(_op)


def create_supplier(name: str, contact_info: str | None = None) -> Supplier:
    def _op():
        if not (name or "").strip():
            raise ValidationError("Supplier name is required")
        if db.session.query(Supplier.id).filter_by(name=name).first():
            raise ValidationError(f"Supplier {name!r} already exists")

        supplier = Supplier(name=name.strip(), contact_info=contact_info)
        db.session.add(supplier)
        db.session.flush()

        ensure_ledger_account(OWNER_SUPPLIER, supplier.id)
        return supplier

    return run_with_retry(_op)


def get_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if branch is None:
        raise NotFound(f"Branch {branch_id} not found")
    return branch


def list_branches() -> list[Branch]:
    return db.session.query(Branch).order_by(Branch.name.asc()).all()


def list_suppliers() -> list[Supplier]:
    return db.session.query(Supplier).order_by(Supplier.name.asc()).all()


def get_pool_branch(policy: SettlementPolicy | None = None) -> Branch:
    """The branch whose ledger is the investor-pool account."""
    policy = policy or current_policy()
    branch = db.session.query(Branch).filter_by(code=policy.pool_branch_code).first()
    if branch is None:
        raise NotFound(f"Investor pool account (branch code {policy.pool_branch_code!r}) is not configured")
    return branch


def ensure_pool_branch(policy: SettlementPolicy | None = None) -> Branch:
    """Idempotently create the investor-pool account."""
    policy = policy or current_policy()
    branch = db.session.query(Branch).filter_by(code=policy.pool_branch_code).first()
    if branch:
        return branch
    return create_branch(name="Investor Pool", code=policy.pool_branch_code)

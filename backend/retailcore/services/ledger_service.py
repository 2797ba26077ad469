# Overview: Service-layer operations for the branch and supplier ledgers.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import event, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import object_session

from ..errors import InvalidAmount, InvalidState, NotFound, ValidationError
from ..extensions import db
from ..models import Branch, LedgerAccount, LedgerEntry, Supplier
from ..money import format_cents, to_cents
from ..policy import current_policy
from ..time_utils import utcnow
from .audit_service import record_event
from .concurrency import lock_for_update, run_with_retry
"""
Ledger Invariants (authoritative)

- One LedgerAccount per owner (BRANCH or SUPPLIER); every posting for that
  owner locks the account row, so postings per owner are serialized.
- Entries are append-only. Exactly one of debit/credit is non-zero.
- running_balance[n] = running_balance[n-1] + credit[n] - debit[n], with an
  implicit 0 before the first entry. It is computed at write time and never
  recomputed on read.
- Chronological order is sequence order: a back-dated posting may not
  precede the account's newest entry.
- Windows (date_from/date_to) are inclusive on both ends.
- Supplier ledgers follow the same sign rule: a purchase credits the supplier
  (amount owed grows), a payment debits it.
"""

OWNER_BRANCH = "BRANCH"
OWNER_SUPPLIER = "SUPPLIER"
OWNER_KINDS = (OWNER_BRANCH, OWNER_SUPPLIER)

ENTRY_SALE = "Sale"
ENTRY_EXPENSE = "Expense"
ENTRY_PAYMENT = "Payment"
ENTRY_ADJUSTMENT = "Adjustment"
ENTRY_TRANSFER = "Transfer"
ENTRY_PURCHASE = "Purchase"
ENTRY_TYPES = (ENTRY_SALE, ENTRY_EXPENSE, ENTRY_PAYMENT, ENTRY_ADJUSTMENT, ENTRY_TRANSFER, ENTRY_PURCHASE)

DIRECTION_DEBIT = "debit"
DIRECTION_CREDIT = "credit"


@dataclass(frozen=True)
class LedgerSummary:
    owner_kind: str
    owner_id: int
    total_debit_cents: int
    total_credit_cents: int
    opening_balance_cents: int
    closing_balance_cents: int
    entry_count: int

    def to_dict(self) -> dict:
        return {
            "owner_kind": self.owner_kind,
            "owner_id": self.owner_id,
            "total_debit": format_cents(self.total_debit_cents),
            "total_credit": format_cents(self.total_credit_cents),
            "opening_balance": format_cents(self.opening_balance_cents),
            "closing_balance": format_cents(self.closing_balance_cents),
            "entry_count": self.entry_count,
        }


@dataclass(frozen=True)
class BranchProfitSummary:
    branch_id: int
    branch_name: str
    total_credit_cents: int
    total_debit_cents: int
    entry_count: int

    @property
    def net_profit_cents(self) -> int:
        return self.total_credit_cents - self.total_debit_cents

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "branch_name": self.branch_name,
            "total_credit": format_cents(self.total_credit_cents),
            "total_debit": format_cents(self.total_debit_cents),
            "net_profit": format_cents(self.net_profit_cents),
            "entry_count": self.entry_count,
        }


def normalize_owner_kind(owner_kind: str) -> str:
    kind = (owner_kind or "").strip().upper()
    if kind not in OWNER_KINDS:
        raise ValidationError(f"Unknown ledger owner kind: {owner_kind!r}")
    return kind


def _normalize_entry_type(entry_type: str) -> str:
    for known in ENTRY_TYPES:
        if (entry_type or "").strip().lower() == known.lower():
            return known
    raise ValidationError(f"Unknown entry type: {entry_type!r}")


def _normalize_direction(direction: str) -> str:
    value = (direction or "").strip().lower()
    if value not in (DIRECTION_DEBIT, DIRECTION_CREDIT):
        raise ValidationError("direction must be 'debit' or 'credit'")
    return value


def _ensure_owner_exists(owner_kind: str, owner_id: int) -> None:
    model = Branch if owner_kind == OWNER_BRANCH else Supplier
    if db.session.get(model, owner_id) is None:
        raise NotFound(f"{owner_kind.title()} {owner_id} not found")


def ensure_ledger_account(owner_kind: str, owner_id: int, *, lock: bool = False) -> LedgerAccount:
    """
    Return the owner's ledger account, creating it on first use.

    Safe to call repeatedly (idempotent). With lock=True the row is selected
    FOR UPDATE so the caller holds the owner's posting lock.
    """
    owner_kind = normalize_owner_kind(owner_kind)
    query = db.session.query(LedgerAccount).filter_by(owner_kind=owner_kind, owner_id=owner_id)
    if lock:
        query = lock_for_update(query)
    account = query.first()
    if account:
        return account

    _ensure_owner_exists(owner_kind, owner_id)
    nested = db.session.begin_nested()
    account = LedgerAccount(owner_kind=owner_kind, owner_id=owner_id, balance_cents=0, last_sequence=0)
    db.session.add(account)
    try:
        nested.commit()
    except IntegrityError:
        # A concurrent first posting created it
        nested.rollback()
        account = lock_for_update(
            db.session.query(LedgerAccount).filter_by(owner_kind=owner_kind, owner_id=owner_id)
        ).one()
    return account


def _latest_posted_at(account: LedgerAccount) -> Optional[datetime]:
    return (
        db.session.query(LedgerEntry.created_at)
        .filter(LedgerEntry.account_id == account.id, LedgerEntry.sequence == account.last_sequence)
        .scalar()
    )


def append_entry(
    *,
    owner_kind: str,
    owner_id: int,
    entry_type: str,
    debit_cents: int = 0,
    credit_cents: int = 0,
    reference_id: int | None = None,
    reference_type: str | None = None,
    description: str | None = None,
    reverses_entry_id: int | None = None,
    posted_at: Optional[datetime] = None,
) -> LedgerEntry:
    """
    Append one entry inside the caller's transaction (no retry, no commit).

    Building block for post_entry and for cross-owner operations such as
    transfer settlement, which must post several entries as one unit.
    """
    owner_kind = normalize_owner_kind(owner_kind)
    entry_type = _normalize_entry_type(entry_type)
    if debit_cents < 0 or credit_cents < 0 or (debit_cents > 0) == (credit_cents > 0):
        raise InvalidAmount("Exactly one of debit or credit must be a positive amount")

    _ensure_owner_exists(owner_kind, owner_id)
    account = ensure_ledger_account(owner_kind, owner_id, lock=True)

    if posted_at is not None:
        latest = _latest_posted_at(account)
        if latest is not None and posted_at < latest:
            raise ValidationError("Entries cannot be back-dated before the newest entry of the ledger")

    new_balance = account.balance_cents + credit_cents - debit_cents
    sequence = account.last_sequence + 1

    entry = LedgerEntry(
        account_id=account.id,
        owner_kind=owner_kind,
        owner_id=owner_id,
        sequence=sequence,
        entry_type=entry_type,
        debit_cents=debit_cents,
        credit_cents=credit_cents,
        running_balance_cents=new_balance,
        reference_id=reference_id,
        reference_type=reference_type,
        description=description[:255] if description else description,
        reverses_entry_id=reverses_entry_id,
        created_at=posted_at or utcnow(),
    )
    account.balance_cents = new_balance
    account.last_sequence = sequence

    db.session.add(entry)
    db.session.flush()  # bumps account.version_id; a concurrent writer fails with StaleDataError
    return entry


def post_entry(
    owner_kind: str,
    owner_id: int,
    entry_type: str,
    amount,
    direction: str,
    reference_id: int | None = None,
    description: str | None = None,
    *,
    reference_type: str | None = None,
    posted_at: Optional[datetime] = None,
) -> LedgerEntry:
    """
    Post one entry to a branch or supplier ledger.

    Args:
        owner_kind: BRANCH or SUPPLIER
        owner_id: Branch or supplier id
        entry_type: Sale, Expense, Payment, Adjustment, Transfer or Purchase
        amount: Positive currency amount ("12.50", Decimal, int)
        direction: "debit" or "credit"

    Returns:
        LedgerEntry: The new entry; running_balance_cents is the owner's new balance.

    Raises:
        InvalidAmount: amount <= 0
        NotFound: unknown owner
        ValidationError: unknown owner kind, entry type or direction
    """
    amount_cents = to_cents(amount)
    if amount_cents <= 0:
        raise InvalidAmount("Amount must be greater than zero")
    direction = _normalize_direction(direction)

    def _op():
        return append_entry(
            owner_kind=owner_kind,
            owner_id=owner_id,
            entry_type=entry_type,
            debit_cents=amount_cents if direction == DIRECTION_DEBIT else 0,
            credit_cents=amount_cents if direction == DIRECTION_CREDIT else 0,
            reference_id=reference_id,
            reference_type=reference_type,
            description=description,
            posted_at=posted_at,
        )

    return run_with_retry(_op)


def reverse_entry(entry_id: int, *, actor_id: int | None = None, reason: str | None = None) -> LedgerEntry:
    """
    Void an entry by appending its mirror image as an Adjustment.

    The original entry and every running balance computed after it stay as
    they were written. An entry can be reversed once; reversals themselves
    cannot be reversed.
    """
    def _op():
        original = db.session.get(LedgerEntry, entry_id)
        if original is None:
            raise NotFound(f"Ledger entry {entry_id} not found")
        if original.reverses_entry_id is not None:
            raise ValidationError("A reversal entry cannot itself be reversed")

        # Serialize on the owner before checking for an existing reversal
        ensure_ledger_account(original.owner_kind, original.owner_id, lock=True)
        already = db.session.query(LedgerEntry.id).filter_by(reverses_entry_id=entry_id).first()
        if already:
            raise ValidationError(f"Ledger entry {entry_id} has already been reversed")

        reversal = append_entry(
            owner_kind=original.owner_kind,
            owner_id=original.owner_id,
            entry_type=ENTRY_ADJUSTMENT,
            debit_cents=original.credit_cents,
            credit_cents=original.debit_cents,
            reference_id=original.reference_id,
            reference_type=original.reference_type,
            description=reason or f"Reversal of entry {original.id}",
            reverses_entry_id=original.id,
        )

        record_event(
            event_type="ledger.entry_reversed",
            entity_type="ledger_entry",
            entity_id=original.id,
            actor_id=actor_id,
            branch_id=original.owner_id if original.owner_kind == OWNER_BRANCH else None,
            note=reason,
            payload=f"reversal_entry_id={reversal.id}",
        )
        return reversal

    return run_with_retry(_op)


def _window(query, date_from: Optional[datetime], date_to: Optional[datetime]):
    if date_from is not None:
        query = query.filter(LedgerEntry.created_at >= date_from)
    if date_to is not None:
        query = query.filter(LedgerEntry.created_at <= date_to)
    return query


def get_entries(
    owner_kind: str,
    owner_id: int,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    *,
    limit: int | None = None,
    newest_first: bool = False,
) -> list[LedgerEntry]:
    """
    Entries with their write-time running balances, in sequence order.

    With newest_first the order is reversed, so a limit keeps the latest entries.
    """
    owner_kind = normalize_owner_kind(owner_kind)
    _ensure_owner_exists(owner_kind, owner_id)

    q = db.session.query(LedgerEntry).filter_by(owner_kind=owner_kind, owner_id=owner_id)
    order = LedgerEntry.sequence.desc() if newest_first else LedgerEntry.sequence.asc()
    q = _window(q, date_from, date_to).order_by(order)
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def get_summary(
    owner_kind: str,
    owner_id: int,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> LedgerSummary:
    """
    Totals over the window plus opening/closing balances.

    Pure read, no locks. closing = opening + credits - debits, which equals the
    running balance of the last entry in the window.
    """
    owner_kind = normalize_owner_kind(owner_kind)
    _ensure_owner_exists(owner_kind, owner_id)

    opening = 0
    if date_from is not None:
        opening = (
            db.session.query(LedgerEntry.running_balance_cents)
            .filter(
                LedgerEntry.owner_kind == owner_kind,
                LedgerEntry.owner_id == owner_id,
                LedgerEntry.created_at < date_from,
            )
            .order_by(LedgerEntry.sequence.desc())
            .limit(1)
            .scalar()
        ) or 0

    q = db.session.query(
        func.coalesce(func.sum(LedgerEntry.debit_cents), 0).label("debit"),
        func.coalesce(func.sum(LedgerEntry.credit_cents), 0).label("credit"),
        func.count(LedgerEntry.id).label("count"),
    ).filter(LedgerEntry.owner_kind == owner_kind, LedgerEntry.owner_id == owner_id)
    row = _window(q, date_from, date_to).one()

    total_debit = int(row.debit or 0)
    total_credit = int(row.credit or 0)
    return LedgerSummary(
        owner_kind=owner_kind,
        owner_id=owner_id,
        total_debit_cents=total_debit,
        total_credit_cents=total_credit,
        opening_balance_cents=int(opening),
        closing_balance_cents=int(opening) + total_credit - total_debit,
        entry_count=int(row.count or 0),
    )


def list_balances(owner_kind: str) -> list[LedgerAccount]:
    """Current balance of every ledger of one kind (e.g. supplier outstanding balances)."""
    owner_kind = normalize_owner_kind(owner_kind)
    return (
        db.session.query(LedgerAccount)
        .filter_by(owner_kind=owner_kind)
        .order_by(LedgerAccount.balance_cents.desc(), LedgerAccount.owner_id.asc())
        .all()
    )


def get_company_profit_cents(start: datetime, end: datetime, entry_types) -> int:
    """
    Net (credit - debit) of the given entry types across all branch ledgers
    in the half-open window [start, end).
    """
    total = (
        db.session.query(
            func.coalesce(func.sum(LedgerEntry.credit_cents - LedgerEntry.debit_cents), 0)
        )
        .filter(
            LedgerEntry.owner_kind == OWNER_BRANCH,
            LedgerEntry.entry_type.in_(list(entry_types)),
            LedgerEntry.created_at >= start,
            LedgerEntry.created_at < end,
        )
        .scalar()
    )
    return int(total or 0)


def get_branch_profit_summary(
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    entry_types=None,
) -> list[BranchProfitSummary]:
    """
    Per-branch net of the profit entry types over an inclusive window,
    most profitable branch first. Branches with no matching entries are omitted.
    """
    entry_types = tuple(entry_types or current_policy().profit_entry_types)
    query = (
        db.session.query(
            Branch.id,
            Branch.name,
            func.coalesce(func.sum(LedgerEntry.credit_cents), 0),
            func.coalesce(func.sum(LedgerEntry.debit_cents), 0),
            func.count(LedgerEntry.id),
        )
        .join(LedgerEntry, (LedgerEntry.owner_kind == OWNER_BRANCH) & (LedgerEntry.owner_id == Branch.id))
        .filter(LedgerEntry.entry_type.in_(list(entry_types)))
    )
    rows = _window(query, date_from, date_to).group_by(Branch.id, Branch.name).all()

    summaries = [
        BranchProfitSummary(
            branch_id=branch_id,
            branch_name=name,
            total_credit_cents=int(credit),
            total_debit_cents=int(debit),
            entry_count=int(count),
        )
        for branch_id, name, credit, debit, count in rows
    ]
    return sorted(summaries, key=lambda s: (-s.net_profit_cents, s.branch_id))


# =============================================================================
# Posting helpers used by the sales/expense/purchasing collaborators
# =============================================================================

def record_expense(branch_id: int, amount, description: str, *, reference_id: int | None = None) -> LedgerEntry:
    return post_entry(
        OWNER_BRANCH, branch_id, ENTRY_EXPENSE, amount, DIRECTION_DEBIT,
        reference_id, f"Expense: {description}", reference_type="Expense",
    )


def record_supplier_purchase(supplier_id: int, amount, *, reference_id: int | None = None,
                             description: str | None = None) -> LedgerEntry:
    """Purchase finalization: the amount owed to the supplier grows."""
    return post_entry(
        OWNER_SUPPLIER, supplier_id, ENTRY_PURCHASE, amount, DIRECTION_CREDIT,
        reference_id, description or f"Purchase from supplier {supplier_id}", reference_type="PurchaseOrder",
    )


def record_supplier_payment(supplier_id: int, amount, *, reference_id: int | None = None,
                            description: str | None = None) -> LedgerEntry:
    return post_entry(
        OWNER_SUPPLIER, supplier_id, ENTRY_PAYMENT, amount, DIRECTION_DEBIT,
        reference_id, description or f"Payment to supplier {supplier_id}", reference_type="SupplierPayment",
    )


def list_supplier_balances() -> list[LedgerAccount]:
    """Outstanding amount owed to each supplier, largest first."""
    return list_balances(OWNER_SUPPLIER)


# =============================================================================
# Append-only guard: entries are never updated or deleted
# =============================================================================

@event.listens_for(LedgerEntry, "before_update")
def _guard_entry_update(mapper, connection, target):
    if object_session(target).is_modified(target, include_collections=False):
        raise InvalidState(f"Ledger entry {target.id} is append-only; post a reversal instead")


@event.listens_for(LedgerEntry, "before_delete")
def _guard_entry_delete(mapper, connection, target):
    raise InvalidState(f"Ledger entry {target.id} is append-only and cannot be deleted")

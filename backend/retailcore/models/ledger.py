from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z, utcnow


class LedgerAccount(db.Model):
    """
    Per-owner ledger header (one per branch, one per supplier).

    WHY: Postings for one owner must be serialized. The account row is the
    lock target (SELECT ... FOR UPDATE) and carries version_id for optimistic
    locking on databases that ignore row locks (SQLite). balance_cents and
    last_sequence always equal the running balance and sequence of the newest
    entry.
    """
    __tablename__ = "ledger_accounts"
    __table_args__ = (
        db.UniqueConstraint("owner_kind", "owner_id", name="uq_ledger_accounts_owner"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # BRANCH | SUPPLIER
    owner_kind = db.Column(db.String(16), nullable=False)
    owner_id = db.Column(db.Integer, nullable=False)

    balance_cents = db.Column(db.BigInteger, nullable=False, default=0)
    last_sequence = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_kind": self.owner_kind,
            "owner_id": self.owner_id,
            "balance_cents": self.balance_cents,
            "balance": format_cents(self.balance_cents),
            "last_sequence": self.last_sequence,
        }


class LedgerEntry(db.Model):
    """
    Append-only journal line.

    INVARIANTS:
    - exactly one of debit_cents / credit_cents is non-zero
    - running_balance_cents = previous entry's running balance + credit - debit
      (same account, sequence order), fixed at write time
    - never updated or deleted; a void is a new reversing entry
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.UniqueConstraint("account_id", "sequence", name="uq_ledger_entries_account_seq"),
        db.CheckConstraint("debit_cents >= 0 AND credit_cents >= 0", name="ck_ledger_entries_non_negative"),
        db.CheckConstraint(
            "(debit_cents = 0 AND credit_cents > 0) OR (credit_cents = 0 AND debit_cents > 0)",
            name="ck_ledger_entries_one_side",
        ),
        db.Index("ix_ledger_entries_owner_created", "owner_kind", "owner_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("ledger_accounts.id"), nullable=False, index=True)

    # Denormalized from the account for window queries
    owner_kind = db.Column(db.String(16), nullable=False)
    owner_id = db.Column(db.Integer, nullable=False)

    sequence = db.Column(db.Integer, nullable=False)

    # Sale, Expense, Payment, Adjustment, Transfer, Purchase
    entry_type = db.Column(db.String(16), nullable=False, index=True)

    debit_cents = db.Column(db.BigInteger, nullable=False, default=0)
    credit_cents = db.Column(db.BigInteger, nullable=False, default=0)
    running_balance_cents = db.Column(db.BigInteger, nullable=False)

    reference_id = db.Column(db.Integer, nullable=True, index=True)
    reference_type = db.Column(db.String(32), nullable=True)
    description = db.Column(db.String(255), nullable=True)

    reverses_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=True, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    account = db.relationship("LedgerAccount", backref=db.backref("entries", lazy="dynamic"))

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} {self.owner_kind}:{self.owner_id} "
            f"seq={self.sequence} dr={self.debit_cents} cr={self.credit_cents}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_kind": self.owner_kind,
            "owner_id": self.owner_id,
            "sequence": self.sequence,
            "entry_type": self.entry_type,
            "debit_cents": self.debit_cents,
            "credit_cents": self.credit_cents,
            "running_balance_cents": self.running_balance_cents,
            "debit": format_cents(self.debit_cents),
            "credit": format_cents(self.credit_cents),
            "running_balance": format_cents(self.running_balance_cents),
            "reference_id": self.reference_id,
            "reference_type": self.reference_type,
            "description": self.description,
            "reverses_entry_id": self.reverses_entry_id,
            "created_at": to_utc_z(self.created_at),
        }

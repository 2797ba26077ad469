from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z, utcnow


class Transfer(db.Model):
    """
    Inter-branch transfer of serialized items.

    LIFECYCLE:
    1. Pending: requested, no stock impact
    2. Approved: admin decision, no stock impact
    3. InTransit: dispatched, items leave the source branch's sellable stock
    4. Completed: received, items belong to the destination, profit settled
    Rejected (from Pending) and Cancelled (from Pending/Approved) are terminal.

    The transfer owns its transition history; items are referenced, never owned.
    """
    __tablename__ = "transfers"
    __table_args__ = (
        db.CheckConstraint("from_branch_id <> to_branch_id", name="ck_transfers_distinct_branches"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_no = db.Column(db.String(32), nullable=False, unique=True)

    from_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    to_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    # Pending, Approved, Rejected, InTransit, Completed, Cancelled
    status = db.Column(db.String(16), nullable=False, default="Pending", index=True)

    notes = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    # Settlement snapshot, set on completion
    profit_cents = db.Column(db.BigInteger, nullable=True)

    # Actor attribution (ids supplied by the identity provider)
    requested_by_actor_id = db.Column(db.Integer, nullable=False)
    approved_by_actor_id = db.Column(db.Integer, nullable=True)
    rejected_by_actor_id = db.Column(db.Integer, nullable=True)
    dispatched_by_actor_id = db.Column(db.Integer, nullable=True)
    completed_by_actor_id = db.Column(db.Integer, nullable=True)
    cancelled_by_actor_id = db.Column(db.Integer, nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "TransferItem",
        backref="transfer",
        lazy=True,
        order_by="TransferItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Transfer id={self.id} no={self.transfer_no!r} status={self.status}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "transfer_no": self.transfer_no,
            "from_branch_id": self.from_branch_id,
            "to_branch_id": self.to_branch_id,
            "status": self.status,
            "notes": self.notes,
            "rejection_reason": self.rejection_reason,
            "cancellation_reason": self.cancellation_reason,
            "profit": format_cents(self.profit_cents),
            "item_count": len(self.items),
            "requested_by_actor_id": self.requested_by_actor_id,
            "approved_by_actor_id": self.approved_by_actor_id,
            "rejected_by_actor_id": self.rejected_by_actor_id,
            "dispatched_by_actor_id": self.dispatched_by_actor_id,
            "completed_by_actor_id": self.completed_by_actor_id,
            "cancelled_by_actor_id": self.cancelled_by_actor_id,
            "requested_at": to_utc_z(self.requested_at),
            "approved_at": to_utc_z(self.approved_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "dispatched_at": to_utc_z(self.dispatched_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransferItem(db.Model):
    """Serialized item on a transfer, with cost and price snapshots taken at request time."""
    __tablename__ = "transfer_items"
    __table_args__ = (
        db.UniqueConstraint("transfer_id", "inventory_item_id", name="uq_transfer_items_transfer_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id"), nullable=False, index=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    serial_no = db.Column(db.String(64), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    branch_cost_cents = db.Column(db.Integer, nullable=False)
    transfer_price_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    inventory_item = db.relationship("InventoryItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_id": self.transfer_id,
            "inventory_item_id": self.inventory_item_id,
            "serial_no": self.serial_no,
            "product_id": self.product_id,
            "branch_cost": format_cents(self.branch_cost_cents),
            "transfer_price": format_cents(self.transfer_price_cents),
        }


class AuditEvent(db.Model):
    """
    Append-only audit trail of workflow and financial actions.

    Events are written inside the same DB transaction as the action they record.
    """
    __tablename__ = "audit_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    # e.g. transfer.created, transfer.completed, distribution.finalized
    event_type = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(64), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    actor_id = db.Column(db.Integer, nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id"), nullable=True, index=True)
    distribution_id = db.Column(db.Integer, db.ForeignKey("distributions.id"), nullable=True, index=True)

    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "branch_id": self.branch_id,
            "transfer_id": self.transfer_id,
            "distribution_id": self.distribution_id,
            "note": self.note,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic document sequences, one row per (document_type, scope_key).

    WHY: Prevent race conditions when generating document numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "scope_key", name="uq_doc_sequences_type_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    scope_key = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)


class HOPayment(db.Model):
    """
    Branch request to remit cash to head office.

    LIFECYCLE: Pending -> Approved (the branch ledger is debited in the same
    transaction) or Pending -> Rejected (reason required, nothing posted).
    """
    __tablename__ = "ho_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_ho_payments_positive_amount"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    amount_cents = db.Column(db.BigInteger, nullable=False)
    payment_method = db.Column(db.String(32), nullable=True)
    reference = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    # Pending, Approved, Rejected
    status = db.Column(db.String(16), nullable=False, default="Pending", index=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    requested_by_actor_id = db.Column(db.Integer, nullable=False)
    reviewed_by_actor_id = db.Column(db.Integer, nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Set on approval
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=True, unique=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    branch = db.relationship("Branch")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<HOPayment id={self.id} branch={self.branch_id} {self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "branch_name": self.branch.name if self.branch else None,
            "amount": format_cents(self.amount_cents),
            "payment_method": self.payment_method,
            "reference": self.reference,
            "notes": self.notes,
            "payment_date": to_utc_z(self.payment_date),
            "status": self.status,
            "rejection_reason": self.rejection_reason,
            "requested_by_actor_id": self.requested_by_actor_id,
            "reviewed_by_actor_id": self.reviewed_by_actor_id,
            "reviewed_at": to_utc_z(self.reviewed_at),
            "ledger_entry_id": self.ledger_entry_id,
            "created_at": to_utc_z(self.created_at),
        }

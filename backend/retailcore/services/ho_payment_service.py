# backend/retailcore/services/ho_payment_service.py
"""
Head-office payment service.

WHY: A branch remitting cash to head office must not touch its ledger until
someone at head office confirms the money arrived.

LIFECYCLE:
1. Pending: requested by the branch; nothing posted
2. Approved: a Payment debit is posted to the branch ledger in the same
   transaction that flips the status
Rejected (from Pending, reason required) is terminal and posts nothing.
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import InvalidAmount, InvalidState, NotFound, ValidationError
from ..extensions import db
from ..models import Branch, HOPayment
from ..money import format_cents, to_cents
from ..time_utils import utcnow
from .audit_service import record_event
from .concurrency import lock_for_update, run_once, run_with_retry
from .ledger_service import ENTRY_PAYMENT, OWNER_BRANCH, append_entry


HO_PAYMENT_STATUS_PENDING = "Pending"
HO_PAYMENT_STATUS_APPROVED = "Approved"
HO_PAYMENT_STATUS_REJECTED = "Rejected"

HO_PAYMENT_STATUSES = (
    HO_PAYMENT_STATUS_PENDING,
    HO_PAYMENT_STATUS_APPROVED,
    HO_PAYMENT_STATUS_REJECTED,
)


def _get_locked_payment(payment_id: int) -> HOPayment:
    payment = (
        lock_for_update(db.session.query(HOPayment).filter_by(id=payment_id))
        .populate_existing()
        .first()
    )
    if not payment:
        raise NotFound(f"Head office payment {payment_id} not found")
    return payment


def create_payment_request(
    branch_id: int,
    amount,
    actor_id: int,
    *,
    payment_method: str | None = None,
    reference: str | None = None,
    notes: str | None = None,
    payment_date: datetime | None = None,
) -> HOPayment:
    """
    Record a branch's payment to head office (status: Pending).

    Raises:
        InvalidAmount: amount is not positive
        NotFound: unknown branch
    """
    amount_cents = to_cents(amount)
    if amount_cents <= 0:
        raise InvalidAmount("Payment amount must be positive")

    def _op():
        if db.session.get(Branch, branch_id) is None:
            raise NotFound(f"Branch {branch_id} not found")

        payment = HOPayment(
            branch_id=branch_id,
            amount_cents=amount_cents,
            payment_method=payment_method,
            reference=(reference or "").strip() or None,
            notes=notes,
            payment_date=payment_date or utcnow(),
            status=HO_PAYMENT_STATUS_PENDING,
            requested_by_actor_id=actor_id,
        )
        db.session.add(payment)
        db.session.flush()  # Get ID

        record_event(
            event_type="ho_payment.requested",
            entity_type="ho_payment",
            entity_id=payment.id,
            actor_id=actor_id,
            branch_id=branch_id,
            occurred_at=payment.created_at,
            note=f"Payment of {format_cents(amount_cents)} to head office",
        )
        return payment

    return run_with_retry(_op)


def approve_payment(payment_id: int, actor_id: int) -> HOPayment:
    """
    Approve a pending payment and debit the branch ledger.

    The status change and the ledger entry commit together or not at all.

    Raises:
        NotFound: unknown payment
        InvalidState: payment is not Pending
        StorageTimeout: lock wait exceeded (not retried)
    """
    def _op():
        payment = _get_locked_payment(payment_id)
        if payment.status != HO_PAYMENT_STATUS_PENDING:
            raise InvalidState(f"Cannot approve payment in {payment.status} status")

        entry = append_entry(
            owner_kind=OWNER_BRANCH,
            owner_id=payment.branch_id,
            entry_type=ENTRY_PAYMENT,
            debit_cents=payment.amount_cents,
            reference_id=payment.id,
            reference_type="HOPayment",
            description=f"Payment to Head Office - Ref: {payment.reference or payment.id}",
        )

        payment.status = HO_PAYMENT_STATUS_APPROVED
        payment.reviewed_by_actor_id = actor_id
        payment.reviewed_at = utcnow()
        payment.ledger_entry_id = entry.id

        record_event(
            event_type="ho_payment.approved",
            entity_type="ho_payment",
            entity_id=payment.id,
            actor_id=actor_id,
            branch_id=payment.branch_id,
            occurred_at=payment.reviewed_at,
            payload=f"ledger_entry_id={entry.id}",
        )
        db.session.flush()

        current_app.logger.info(
            "HO payment %s approved: branch %s debited %s",
            payment.id, payment.branch_id, format_cents(payment.amount_cents),
        )
        return payment

    return run_once(_op)


def reject_payment(payment_id: int, actor_id: int, reason: str) -> HOPayment:
    """
    Reject a pending payment. Requires a non-empty reason; posts nothing.

    Raises:
        ValidationError: empty reason
        NotFound: unknown payment
        InvalidState: payment is not Pending
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required")

    def _op():
        payment = _get_locked_payment(payment_id)
        if payment.status != HO_PAYMENT_STATUS_PENDING:
            raise InvalidState(f"Cannot reject payment in {payment.status} status")

        payment.status = HO_PAYMENT_STATUS_REJECTED
        payment.reviewed_by_actor_id = actor_id
        payment.reviewed_at = utcnow()
        payment.rejection_reason = reason

        record_event(
            event_type="ho_payment.rejected",
            entity_type="ho_payment",
            entity_id=payment.id,
            actor_id=actor_id,
            branch_id=payment.branch_id,
            occurred_at=payment.reviewed_at,
            note=reason,
        )
        db.session.flush()
        return payment

    return run_with_retry(_op)


def get_payment(payment_id: int) -> HOPayment:
    payment = db.session.get(HOPayment, payment_id)
    if not payment:
        raise NotFound(f"Head office payment {payment_id} not found")
    return payment


def list_payments(*, status: str | None = None, branch_id: int | None = None) -> list[HOPayment]:
    """Payments newest first; status "all" (or none) means no status filter."""
    q = db.session.query(HOPayment)
    if branch_id is not None:
        q = q.filter(HOPayment.branch_id == branch_id)
    if status and status != "all":
        if status not in HO_PAYMENT_STATUSES:
            raise ValidationError(f"Unknown payment status: {status!r}")
        q = q.filter(HOPayment.status == status)
    return q.order_by(HOPayment.created_at.desc(), HOPayment.id.desc()).all()

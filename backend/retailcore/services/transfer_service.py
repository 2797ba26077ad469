# backend/retailcore/services/transfer_service.py
"""
Inter-branch transfer service.

WHY: Move serialized items between branches with approval and accountability,
and settle the transfer profit between the source branch (master share) and
the investor pool exactly once.

LIFECYCLE:
1. Pending: requested; items are validated but not touched
2. Approved: admin decision; still no stock impact
3. InTransit: dispatched; every item Available -> InTransit (all or nothing)
4. Completed: received; items Available under the destination branch and
   two settlement entries posted, in one transaction
Rejected (from Pending) and Cancelled (from Pending/Approved) are terminal.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Mapping

from flask import current_app

from ..errors import AlreadyCompleted, InvalidState, NotFound, ValidationError
from ..extensions import db
from ..models import Branch, Transfer, TransferItem
from ..money import format_cents, round_cents, to_cents
from ..policy import SettlementPolicy, current_policy
from ..time_utils import utcnow
from . import inventory_service
from .audit_service import record_event
from .branch_service import get_pool_branch
from .concurrency import lock_for_update, run_once, run_with_retry
from .document_service import next_document_number
from .ledger_service import ENTRY_TRANSFER, OWNER_BRANCH, append_entry


# Transfer status constants
TRANSFER_STATUS_PENDING = "Pending"
TRANSFER_STATUS_APPROVED = "Approved"
TRANSFER_STATUS_REJECTED = "Rejected"
TRANSFER_STATUS_IN_TRANSIT = "InTransit"
TRANSFER_STATUS_COMPLETED = "Completed"
TRANSFER_STATUS_CANCELLED = "Cancelled"

TRANSFER_STATUSES = (
    TRANSFER_STATUS_PENDING,
    TRANSFER_STATUS_APPROVED,
    TRANSFER_STATUS_REJECTED,
    TRANSFER_STATUS_IN_TRANSIT,
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_CANCELLED,
)


def split_profit(profit_cents: int, policy: SettlementPolicy) -> tuple[int, int]:
    """
    Split transfer profit into (pool_cents, master_cents).

    The pool leg is rounded half-up; the master leg is the remainder, so the
    two always add back to the profit. Losses split the same way with
    negative legs.
    """
    magnitude = abs(profit_cents)
    pool = round_cents(Decimal(magnitude) * policy.investor_pool_rate)
    master = magnitude - pool
    if profit_cents < 0:
        return -pool, -master
    return pool, master


def _get_locked_transfer(transfer_id: int) -> Transfer:
    transfer = (
        lock_for_update(db.session.query(Transfer).filter_by(id=transfer_id))
        .populate_existing()
        .first()
    )
    if not transfer:
        raise NotFound(f"Transfer {transfer_id} not found")
    return transfer


def _require_branch(branch_id: int, label: str) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if branch is None:
        raise NotFound(f"{label} branch {branch_id} not found")
    return branch


def create_transfer(
    from_branch_id: int,
    to_branch_id: int,
    serials: Iterable[str],
    actor_id: int,
    notes: str | None = None,
    transfer_prices: Mapping[str, object] | None = None,
) -> Transfer:
    """
    Create a transfer request (status: Pending).

    Args:
        from_branch_id: Source branch
        to_branch_id: Destination branch
        serials: Serial numbers of Available items held by the source branch
        actor_id: Requesting actor
        notes: Optional notes
        transfer_prices: Optional per-serial transfer price overriding the
            product's transfer price

    Returns:
        Transfer: The created transfer with its items

    Raises:
        ValidationError: same branch, no serials, duplicate serials, or a
            serial that is unknown, elsewhere, or not Available
        NotFound: unknown branch
    """
    serial_list = [(s or "").strip() for s in (serials or [])]
    prices = {str(k).strip(): v for k, v in (transfer_prices or {}).items()}

    def _op():
        if from_branch_id == to_branch_id:
            raise ValidationError("From and To branches must be different")
        if not serial_list or not all(serial_list):
            raise ValidationError("No items selected")
        duplicates = sorted({s for s in serial_list if serial_list.count(s) > 1})
        if duplicates:
            raise ValidationError(f"Duplicate serial numbers: {', '.join(duplicates)}")

        _require_branch(from_branch_id, "Source")
        _require_branch(to_branch_id, "Destination")

        not_found: list[str] = []
        not_available: list[str] = []
        resolved = []
        for serial in serial_list:
            item = inventory_service.get_item_by_serial(serial)
            if item is None or item.branch_id != from_branch_id:
                not_found.append(serial)
            elif item.status != inventory_service.ITEM_STATUS_AVAILABLE:
                not_available.append(serial)
            else:
                resolved.append(item)

        if not_found:
            raise ValidationError(f"Serial numbers not found in branch: {', '.join(not_found)}")
        if not_available:
            raise ValidationError(f"Items not available for transfer: {', '.join(not_available)}")

        priced = []
        for item in resolved:
            if item.serial_no in prices:
                price_cents = to_cents(prices[item.serial_no])
            else:
                price_cents = item.product.transfer_price_cents
            if price_cents is None:
                raise ValidationError(f"No transfer price for serial {item.serial_no}")
            if price_cents < 0:
                raise ValidationError(f"Transfer price cannot be negative for serial {item.serial_no}")
            priced.append((item, price_cents))

        # Snapshot ids before the number allocation, which may roll back on a race
        rows = [
            (item.id, item.serial_no, item.product_id, item.branch_cost_cents, price_cents)
            for item, price_cents in priced
        ]
        transfer_no = next_document_number(document_type="TRANSFER", prefix="TRF")

        transfer = Transfer(
            transfer_no=transfer_no,
            from_branch_id=from_branch_id,
            to_branch_id=to_branch_id,
            status=TRANSFER_STATUS_PENDING,
            notes=notes,
            requested_by_actor_id=actor_id,
            requested_at=utcnow(),
        )
        for item_id, serial_no, product_id, branch_cost_cents, price_cents in rows:
            transfer.items.append(
                TransferItem(
                    inventory_item_id=item_id,
                    serial_no=serial_no,
                    product_id=product_id,
                    branch_cost_cents=branch_cost_cents,
                    transfer_price_cents=price_cents,
                )
            )

        db.session.add(transfer)
        db.session.flush()  # Get ID

        record_event(
            event_type="transfer.created",
            entity_type="transfer",
            entity_id=transfer.id,
            actor_id=actor_id,
            branch_id=from_branch_id,
            transfer_id=transfer.id,
            occurred_at=transfer.requested_at,
            note=f"Transfer {transfer_no}: {len(rows)} item(s)",
        )

        return transfer

    return run_with_retry(_op)


def approve_transfer(transfer_id: int, actor_id: int) -> Transfer:
    """
    Approve a pending transfer. No stock impact.

    Raises:
        NotFound: unknown transfer
        InvalidState: transfer is not Pending
    """
    def _op():
        transfer = _get_locked_transfer(transfer_id)
        if transfer.status != TRANSFER_STATUS_PENDING:
            raise InvalidState(f"Cannot approve transfer in {transfer.status} status")

        transfer.status = TRANSFER_STATUS_APPROVED
        transfer.approved_by_actor_id = actor_id
        transfer.approved_at = utcnow()

        record_event(
            event_type="transfer.approved",
            entity_type="transfer",
            entity_id=transfer.id,
            actor_id=actor_id,
            branch_id=transfer.from_branch_id,
            transfer_id=transfer.id,
            occurred_at=transfer.approved_at,
        )
        db.session.flush()
        return transfer

    return run_with_retry(_op)


def reject_transfer(transfer_id: int, actor_id: int, reason: str) -> Transfer:
    """
    Reject a pending transfer. Requires a non-empty reason.

    Raises:
        ValidationError: empty reason
        NotFound: unknown transfer
        InvalidState: transfer is not Pending
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required")

    def _op():
        transfer = _get_locked_transfer(transfer_id)
        if transfer.status != TRANSFER_STATUS_PENDING:
            raise InvalidState(f"Cannot reject transfer in {transfer.status} status")

        transfer.status = TRANSFER_STATUS_REJECTED
        transfer.rejected_by_actor_id = actor_id
        transfer.rejected_at = utcnow()
        transfer.rejection_reason = reason

        record_event(
            event_type="transfer.rejected",
            entity_type="transfer",
            entity_id=transfer.id,
            actor_id=actor_id,
            branch_id=transfer.from_branch_id,
            transfer_id=transfer.id,
            occurred_at=transfer.rejected_at,
            note=reason,
        )
        db.session.flush()
        return transfer

    return run_with_retry(_op)


def dispatch_transfer(transfer_id: int, actor_id: int) -> Transfer:
    """
    Dispatch an approved transfer: source stock is deducted here.

    All or nothing: if any item is no longer Available (sold, reserved,
    written off) nothing changes. Not retried internally.

    Raises:
        NotFound: unknown transfer
        InvalidState: transfer is not Approved
        InsufficientStock: an item is no longer available
    """
    def _op():
        transfer = _get_locked_transfer(transfer_id)
        if transfer.status != TRANSFER_STATUS_APPROVED:
            raise InvalidState(f"Cannot dispatch transfer in {transfer.status} status")

        items = [line.inventory_item for line in transfer.items]
        inventory_service.dispatch_items(items, transfer.from_branch_id, transfer.to_branch_id)

        transfer.status = TRANSFER_STATUS_IN_TRANSIT
        transfer.dispatched_by_actor_id = actor_id
        transfer.dispatched_at = utcnow()

        record_event(
            event_type="transfer.dispatched",
            entity_type="transfer",
            entity_id=transfer.id,
            actor_id=actor_id,
            branch_id=transfer.from_branch_id,
            transfer_id=transfer.id,
            occurred_at=transfer.dispatched_at,
            payload=f"serials={','.join(line.serial_no for line in transfer.items)}",
        )
        db.session.flush()
        return transfer

    return run_once(_op)


def complete_transfer(
    transfer_id: int,
    actor_id: int,
    policy: SettlementPolicy | None = None,
) -> Transfer:
    """
    Receive an in-transit transfer at its destination and settle its profit.

    In one transaction:
    - every item InTransit -> Available, owned by the destination branch
    - profit = sum(transfer_price - branch_cost) over the items
    - pool share credited to the investor-pool ledger, master share credited
      to the source branch ledger (entry type Transfer, reference = transfer id)

    If any posting fails nothing is visible. Not retried internally; a second
    call after success raises AlreadyCompleted and posts nothing.

    Raises:
        NotFound: unknown transfer or unconfigured investor-pool account
        AlreadyCompleted: transfer already Completed
        InvalidState: transfer is not InTransit
    """
    policy = policy or current_policy()

    def _op():
        transfer = _get_locked_transfer(transfer_id)
        if transfer.status == TRANSFER_STATUS_COMPLETED:
            raise AlreadyCompleted(f"Transfer {transfer.transfer_no} is already completed")
        if transfer.status != TRANSFER_STATUS_IN_TRANSIT:
            raise InvalidState(f"Cannot complete transfer in {transfer.status} status")

        pool_branch = get_pool_branch(policy)

        items = [line.inventory_item for line in transfer.items]
        inventory_service.receive_transferred_items(items, transfer.to_branch_id)

        profit_cents = sum(line.transfer_price_cents - line.branch_cost_cents for line in transfer.items)
        pool_cents, master_cents = split_profit(profit_cents, policy)

        legs = (
            (pool_branch.id, pool_cents, f"Investor pool share of transfer {transfer.transfer_no}"),
            (transfer.from_branch_id, master_cents, f"Master share of transfer {transfer.transfer_no}"),
        )
        for branch_id, amount_cents, description in legs:
            if amount_cents == 0:
                continue
            append_entry(
                owner_kind=OWNER_BRANCH,
                owner_id=branch_id,
                entry_type=ENTRY_TRANSFER,
                credit_cents=amount_cents if amount_cents > 0 else 0,
                debit_cents=-amount_cents if amount_cents < 0 else 0,
                reference_id=transfer.id,
                reference_type="Transfer",
                description=description,
            )

        transfer.status = TRANSFER_STATUS_COMPLETED
        transfer.completed_by_actor_id = actor_id
        transfer.completed_at = utcnow()
        transfer.profit_cents = profit_cents

        record_event(
            event_type="transfer.completed",
            entity_type="transfer",
            entity_id=transfer.id,
            actor_id=actor_id,
            branch_id=transfer.to_branch_id,
            transfer_id=transfer.id,
            occurred_at=transfer.completed_at,
            payload=f"profit_cents={profit_cents},pool_cents={pool_cents},master_cents={master_cents}",
        )
        db.session.flush()

        current_app.logger.info(
            "Transfer %s completed: profit=%s pool=%s master=%s",
            transfer.transfer_no,
            format_cents(profit_cents),
            format_cents(pool_cents),
            format_cents(master_cents),
        )
        return transfer

    return run_once(_op)


def cancel_transfer(transfer_id: int, actor_id: int, reason: str | None = None) -> Transfer:
    """
    Cancel a transfer before dispatch. No stock was moved, so none is restored.

    Raises:
        NotFound: unknown transfer
        InvalidState: transfer already dispatched or closed
    """
    def _op():
        transfer = _get_locked_transfer(transfer_id)
        if transfer.status not in (TRANSFER_STATUS_PENDING, TRANSFER_STATUS_APPROVED):
            raise InvalidState(
                f"Cannot cancel transfer in {transfer.status} status. "
                f"Transfers can only be cancelled before dispatch."
            )

        transfer.status = TRANSFER_STATUS_CANCELLED
        transfer.cancelled_by_actor_id = actor_id
        transfer.cancelled_at = utcnow()
        transfer.cancellation_reason = reason

        record_event(
            event_type="transfer.cancelled",
            entity_type="transfer",
            entity_id=transfer.id,
            actor_id=actor_id,
            branch_id=transfer.from_branch_id,
            transfer_id=transfer.id,
            occurred_at=transfer.cancelled_at,
            note=reason,
        )
        db.session.flush()
        return transfer

    return run_with_retry(_op)


def get_transfer(transfer_id: int) -> Transfer:
    transfer = db.session.get(Transfer, transfer_id)
    if not transfer:
        raise NotFound(f"Transfer {transfer_id} not found")
    return transfer


def list_transfers(*, branch_id: int | None = None, status: str | None = None) -> list[Transfer]:
    """Transfers touching a branch (as source or destination), newest first."""
    q = db.session.query(Transfer)
    if branch_id is not None:
        q = q.filter((Transfer.from_branch_id == branch_id) | (Transfer.to_branch_id == branch_id))
    if status:
        if status not in TRANSFER_STATUSES:
            raise ValidationError(f"Unknown transfer status: {status!r}")
        q = q.filter(Transfer.status == status)
    return q.order_by(Transfer.requested_at.desc(), Transfer.id.desc()).all()

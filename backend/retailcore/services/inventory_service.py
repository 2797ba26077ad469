# Overview: Service-layer operations for inventory items and reservation counters.

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientStock, InvalidState, NotFound, StaleState, ValidationError
from ..extensions import db
from ..models import Branch, InventoryItem, Product, StockCounter
from ..money import to_cents
from .concurrency import lock_for_update, run_with_retry
"""
Inventory Invariants (authoritative)

Counting model:
- physical(p, b) = items of product p held by branch b with status Available
  or Reserved. Derived from item rows, never stored.
- reserved(p, b) = StockCounter.reserved_count. The single authority for
  reservations: bulk reserve/release move it directly, and an item entering or
  leaving Reserved moves it in the same unit of work.
- available(p, b) = physical - reserved, and must be >= 0 after every mutation.
  Violating attempts fail closed (no partial effect), they are never clamped.

Item lifecycle:
- Available -> Reserved | InTransit | Damaged
- Reserved  -> InTransit | Available | Damaged
- InTransit -> Sold | Available | Damaged
- Sold, Damaged: terminal (rows retained for audit)

Serialization:
- Every mutation for a (product, branch) pair locks its StockCounter row
  (FOR UPDATE + version_id), so checks and writes see no stale counts.
"""

ITEM_STATUS_AVAILABLE = "Available"
ITEM_STATUS_RESERVED = "Reserved"
ITEM_STATUS_IN_TRANSIT = "InTransit"
ITEM_STATUS_SOLD = "Sold"
ITEM_STATUS_DAMAGED = "Damaged"

ITEM_STATUSES = (
    ITEM_STATUS_AVAILABLE,
    ITEM_STATUS_RESERVED,
    ITEM_STATUS_IN_TRANSIT,
    ITEM_STATUS_SOLD,
    ITEM_STATUS_DAMAGED,
)
TERMINAL_STATUSES = (ITEM_STATUS_SOLD, ITEM_STATUS_DAMAGED)
ON_HAND_STATUSES = (ITEM_STATUS_AVAILABLE, ITEM_STATUS_RESERVED)

ALLOWED_TRANSITIONS = {
    ITEM_STATUS_AVAILABLE: {ITEM_STATUS_RESERVED, ITEM_STATUS_IN_TRANSIT, ITEM_STATUS_DAMAGED},
    ITEM_STATUS_RESERVED: {ITEM_STATUS_IN_TRANSIT, ITEM_STATUS_AVAILABLE, ITEM_STATUS_DAMAGED},
    ITEM_STATUS_IN_TRANSIT: {ITEM_STATUS_SOLD, ITEM_STATUS_AVAILABLE, ITEM_STATUS_DAMAGED},
    ITEM_STATUS_SOLD: set(),
    ITEM_STATUS_DAMAGED: set(),
}


@dataclass(frozen=True)
class StockLevel:
    product_id: int
    branch_id: int
    physical_count: int
    reserved_count: int

    @property
    def available_count(self) -> int:
        return self.physical_count - self.reserved_count

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "physical_count": self.physical_count,
            "reserved_count": self.reserved_count,
            "available_count": self.available_count,
        }


def normalize_status(value: str) -> str:
    for status in ITEM_STATUSES:
        if (value or "").strip().lower() == status.lower():
            return status
    raise ValidationError(f"Unknown item status: {value!r}")


def _ensure_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found")
    return product


def _ensure_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if branch is None:
        raise NotFound(f"Branch {branch_id} not found")
    return branch


def _count_items(product_id: int, branch_id: int, statuses) -> int:
    return int(
        db.session.query(func.count(InventoryItem.id))
        .filter(
            InventoryItem.product_id == product_id,
            InventoryItem.branch_id == branch_id,
            InventoryItem.status.in_(list(statuses)),
        )
        .scalar()
        or 0
    )


def _lock_counter(product_id: int, branch_id: int) -> StockCounter:
    """Lock (creating on first use) the counter row that serializes this pair."""
    query = lock_for_update(
        db.session.query(StockCounter).filter_by(product_id=product_id, branch_id=branch_id)
    )
    counter = query.first()
    if counter:
        return counter

    nested = db.session.begin_nested()
    counter = StockCounter(product_id=product_id, branch_id=branch_id, reserved_count=0)
    db.session.add(counter)
    try:
        nested.commit()
    except IntegrityError:
        # Lost the creation race; only the savepoint is undone
        nested.rollback()
        counter = query.one()
    return counter


def _stock_level(product_id: int, branch_id: int, counter: StockCounter | None) -> StockLevel:
    return StockLevel(
        product_id=product_id,
        branch_id=branch_id,
        physical_count=_count_items(product_id, branch_id, ON_HAND_STATUSES),
        reserved_count=counter.reserved_count if counter else 0,
    )


def get_available_count(product_id: int, branch_id: int) -> StockLevel:
    """Physical, reserved and available counts for a (product, branch) pair. No locks."""
    _ensure_product(product_id)
    _ensure_branch(branch_id)
    counter = db.session.query(StockCounter).filter_by(product_id=product_id, branch_id=branch_id).first()
    return _stock_level(product_id, branch_id, counter)


def receive_item(
    *,
    serial_no: str,
    product_id: int,
    branch_id: int,
    landing_cost=None,
    branch_cost=None,
    notes: str | None = None,
) -> InventoryItem:
    """
    Stock receipt: create one Available item at a branch.

    Costs default to the product's current landing/branch cost.
    """
    serial_no = (serial_no or "").strip()
    if not serial_no:
        raise ValidationError("serial_no is required")

    def _op():
        product = _ensure_product(product_id)
        _ensure_branch(branch_id)
        if db.session.query(InventoryItem.id).filter_by(serial_no=serial_no).first():
            raise ValidationError(f"Serial number {serial_no} already exists")

        landing_cents = to_cents(landing_cost) if landing_cost is not None else product.landing_cost_cents
        branch_cents = to_cents(branch_cost) if branch_cost is not None else product.branch_cost_cents
        if landing_cents < 0 or branch_cents < 0:
            raise ValidationError("Costs cannot be negative")

        _lock_counter(product_id, branch_id)
        item = InventoryItem(
            serial_no=serial_no,
            product_id=product_id,
            branch_id=branch_id,
            status=ITEM_STATUS_AVAILABLE,
            landing_cost_cents=landing_cents,
            branch_cost_cents=branch_cents,
            notes=notes,
        )
        db.session.add(item)
        db.session.flush()
        return item

    return run_with_retry(_op)


def reserve(product_id: int, branch_id: int, qty: int) -> StockLevel:
    """
    Reserve qty units of a product at a branch.

    Raises:
        ValidationError: qty <= 0
        InsufficientStock: available < qty (counters unchanged)
    """
    if qty is None or int(qty) <= 0:
        raise ValidationError("Quantity must be positive")
    qty = int(qty)

    def _op():
        _ensure_product(product_id)
        _ensure_branch(branch_id)
        counter = _lock_counter(product_id, branch_id)
        level = _stock_level(product_id, branch_id, counter)
        if level.available_count < qty:
            raise InsufficientStock(
                f"Insufficient stock for product {product_id} at branch {branch_id}. "
                f"Available: {level.available_count}, requested: {qty}"
            )
        counter.reserved_count += qty
        db.session.flush()
        return _stock_level(product_id, branch_id, counter)

    return run_with_retry(_op)


def release(product_id: int, branch_id: int, qty: int) -> StockLevel:
    """
    Release qty previously reserved units.

    Item-level reservations (items in Reserved status) are released by moving
    the item back to Available, not through this call.
    """
    if qty is None or int(qty) <= 0:
        raise ValidationError("Quantity must be positive")
    qty = int(qty)

    def _op():
        _ensure_product(product_id)
        _ensure_branch(branch_id)
        counter = _lock_counter(product_id, branch_id)
        bulk_reserved = counter.reserved_count - _count_items(product_id, branch_id, [ITEM_STATUS_RESERVED])
        if qty > bulk_reserved:
            raise InvalidState(
                f"Cannot release {qty} unit(s); only {max(bulk_reserved, 0)} reserved "
                f"for product {product_id} at branch {branch_id}"
            )
        counter.reserved_count -= qty
        db.session.flush()
        return _stock_level(product_id, branch_id, counter)

    return run_with_retry(_op)


def _apply_transition(item: InventoryItem, to_status: str, counter: StockCounter) -> None:
    """
    Move one locked item, keeping reserved_count and availability consistent.

    Caller holds the counter lock for (item.product_id, item.branch_id).
    """
    from_status = item.status
    if to_status not in ALLOWED_TRANSITIONS[from_status]:
        raise InvalidState(f"Illegal item transition {from_status} -> {to_status} for {item.serial_no}")

    if from_status == ITEM_STATUS_AVAILABLE:
        # Leaving the sellable pool must not eat into other reservations
        level = _stock_level(item.product_id, item.branch_id, counter)
        if level.available_count < 1:
            raise InsufficientStock(
                f"Item {item.serial_no} is held by an outstanding reservation "
                f"(available: {level.available_count})"
            )
    if to_status == ITEM_STATUS_RESERVED:
        counter.reserved_count += 1
    if from_status == ITEM_STATUS_RESERVED:
        counter.reserved_count -= 1

    item.status = to_status
    if to_status != ITEM_STATUS_IN_TRANSIT:
        item.transit_to_branch_id = None


def transition_item(item_id: int, from_status: str, to_status: str) -> InventoryItem:
    """
    Compare-and-swap an item's status.

    Raises:
        NotFound: unknown item
        StaleState: the item is no longer in from_status
        InvalidState: the transition is not legal
        InsufficientStock: the move would leave available stock negative
    """
    from_status = normalize_status(from_status)
    to_status = normalize_status(to_status)

    def _op():
        item = db.session.get(InventoryItem, item_id)
        if item is None:
            raise NotFound(f"Inventory item {item_id} not found")
        counter = _lock_counter(item.product_id, item.branch_id)
        item = (
            lock_for_update(db.session.query(InventoryItem).filter_by(id=item_id))
            .populate_existing()
            .one()
        )
        if item.branch_id != counter.branch_id:
            raise StaleState(f"Item {item.serial_no} changed branch while being updated")

        if item.status != from_status:
            raise StaleState(
                f"Item {item.serial_no} is {item.status}, expected {from_status}"
            )
        _apply_transition(item, to_status, counter)
        db.session.flush()
        return item

    return run_with_retry(_op)


def write_off(item_id: int, *, notes: str | None = None) -> InventoryItem:
    """Mark a non-terminal item Damaged (terminal, retained for audit)."""
    item = get_item(item_id)
    if item.status in TERMINAL_STATUSES:
        raise InvalidState(f"Item {item.serial_no} is already {item.status}")
    item = transition_item(item_id, item.status, ITEM_STATUS_DAMAGED)
    if notes:
        item.notes = notes[:255]
        db.session.flush()
    return item


# =============================================================================
# Transfer movements (called inside the transfer service's unit of work)
# =============================================================================

def dispatch_items(items: list[InventoryItem], source_branch_id: int, destination_branch_id: int) -> None:
    """
    Move every item Available -> InTransit, all or nothing.

    No retry and no commit: the transfer service owns the transaction.
    """
    needed = Counter(item.product_id for item in items)
    counters = {
        product_id: _lock_counter(product_id, source_branch_id) for product_id in sorted(needed)
    }

    locked = (
        lock_for_update(
            db.session.query(InventoryItem).filter(InventoryItem.id.in_([i.id for i in items]))
        )
        .populate_existing()
        .all()
    )
    by_id = {item.id: item for item in locked}

    unavailable = [
        item.serial_no for item in items
        if item.id not in by_id
        or by_id[item.id].status != ITEM_STATUS_AVAILABLE
        or by_id[item.id].branch_id != source_branch_id
    ]
    if unavailable:
        raise InsufficientStock(f"Items no longer available for dispatch: {', '.join(unavailable)}")

    for product_id, qty in needed.items():
        level = _stock_level(product_id, source_branch_id, counters[product_id])
        if level.available_count < qty:
            raise InsufficientStock(
                f"Insufficient stock for product {product_id} at branch {source_branch_id}. "
                f"Available: {level.available_count}, required: {qty}"
            )

    for item in locked:
        item.status = ITEM_STATUS_IN_TRANSIT
        item.transit_to_branch_id = destination_branch_id
    db.session.flush()


def receive_transferred_items(items: list[InventoryItem], destination_branch_id: int) -> None:
    """
    Move every item InTransit -> Available under the destination branch.

    The same rows are reassigned, so serial history is continuous.
    """
    for product_id in sorted({item.product_id for item in items}):
        _lock_counter(product_id, destination_branch_id)

    locked = (
        lock_for_update(
            db.session.query(InventoryItem).filter(InventoryItem.id.in_([i.id for i in items]))
        )
        .populate_existing()
        .all()
    )
    stale = [item.serial_no for item in locked if item.status != ITEM_STATUS_IN_TRANSIT]
    if stale or len(locked) != len(items):
        raise StaleState(f"Items not in transit: {', '.join(stale) or 'missing rows'}")

    for item in locked:
        item.status = ITEM_STATUS_AVAILABLE
        item.branch_id = destination_branch_id
        item.transit_to_branch_id = None
    db.session.flush()


# =============================================================================
# Reads
# =============================================================================

def get_item(item_id: int) -> InventoryItem:
    item = db.session.get(InventoryItem, item_id)
    if item is None:
        raise NotFound(f"Inventory item {item_id} not found")
    return item


def get_item_by_serial(serial_no: str) -> InventoryItem | None:
    return db.session.query(InventoryItem).filter_by(serial_no=(serial_no or "").strip()).first()


def list_items(
    *,
    branch_id: int | None = None,
    product_id: int | None = None,
    status: str | None = None,
    limit: int = 500,
) -> list[InventoryItem]:
    q = db.session.query(InventoryItem)
    if branch_id is not None:
        q = q.filter(InventoryItem.branch_id == branch_id)
    if product_id is not None:
        q = q.filter(InventoryItem.product_id == product_id)
    if status:
        q = q.filter(InventoryItem.status == normalize_status(status))
    return q.order_by(InventoryItem.id.asc()).limit(limit).all()


def create_product(
    *,
    sku: str,
    name: str,
    landing_cost=0,
    branch_cost=0,
    transfer_price=None,
    retail_price=None,
) -> Product:
    sku = (sku or "").strip()
    if not sku or not (name or "").strip():
        raise ValidationError("sku and name are required")
    if db.session.query(Product.id).filter_by(sku=sku).first():
        raise ValidationError(f"SKU {sku} already exists")

    product = Product(
        sku=sku,
        name=name.strip(),
        landing_cost_cents=to_cents(landing_cost),
        branch_cost_cents=to_cents(branch_cost),
        transfer_price_cents=to_cents(transfer_price) if transfer_price is not None else None,
        retail_price_cents=to_cents(retail_price) if retail_price is not None else None,
    )
    db.session.add(product)
    db.session.flush()
    return product

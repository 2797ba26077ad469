from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Product master data.

    Costs are defaults copied onto each InventoryItem at receipt; the item's
    own costs are authoritative afterwards. transfer_price_cents is the
    inter-branch price a transfer snapshots at request time.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents
    landing_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    branch_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    transfer_price_cents = db.Column(db.Integer, nullable=True)
    retail_price_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "landing_cost": format_cents(self.landing_cost_cents),
            "branch_cost": format_cents(self.branch_cost_cents),
            "transfer_price": format_cents(self.transfer_price_cents),
            "retail_price": format_cents(self.retail_price_cents),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryItem(db.Model):
    """
    One serialized unit of stock.

    OWNERSHIP: branch_id is the holding branch. It only changes when a
    transfer completes (the same row moves, so the serial keeps its history).
    While InTransit, branch_id is still the source and transit_to_branch_id
    names the destination.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.Index("ix_inventory_items_product_branch_status", "product_id", "branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    serial_no = db.Column(db.String(64), nullable=False, unique=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    # Available, Reserved, InTransit, Sold, Damaged
    status = db.Column(db.String(16), nullable=False, default="Available", index=True)

    landing_cost_cents = db.Column(db.Integer, nullable=False)
    branch_cost_cents = db.Column(db.Integer, nullable=False)

    transit_to_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} serial={self.serial_no!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "serial_no": self.serial_no,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "status": self.status,
            "landing_cost": format_cents(self.landing_cost_cents),
            "branch_cost": format_cents(self.branch_cost_cents),
            "transit_to_branch_id": self.transit_to_branch_id,
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockCounter(db.Model):
    """
    Reservation counter for one (product, branch) pair.

    physical count is derived from item rows (Available + Reserved at the
    branch); only reserved_count is stored. It covers both bulk reservations
    and items in Reserved status, so available = physical - reserved.
    """
    __tablename__ = "stock_counters"
    __table_args__ = (
        db.UniqueConstraint("product_id", "branch_id", name="uq_stock_counters_product_branch"),
        db.CheckConstraint("reserved_count >= 0", name="ck_stock_counters_reserved_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    reserved_count = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "reserved_count": self.reserved_count,
            "version_id": self.version_id,
        }

from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..money import as_number
from ..time_utils import to_utc_z


MOVEMENT_SALE = "sale"
MOVEMENT_RETURN = "return"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_PURCHASE = "purchase"
MOVEMENT_TRANSFER = "transfer"

MOVEMENT_TYPES = (
    MOVEMENT_SALE,
    MOVEMENT_RETURN,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_PURCHASE,
    MOVEMENT_TRANSFER,
)


class Product(db.Model):
    """
    Product master data with its current stock level.

    STOCK RULE:
    current_stock is only written by inventory_service together with a
    StockMovement row. Catalog edits (name, prices, reorder level) never
    touch it.

    Products are soft-deleted with is_active=False once bills reference them.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_stock", "is_active", "current_stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    barcode = db.Column(db.String(64), nullable=True, unique=True)
    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="pcs")  # pcs, kg, litre, ...

    cost_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    selling_price = db.Column(db.Numeric(12, 2), nullable=False)

    # Fractional units allowed (kg, litre)
    current_stock = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    reorder_level = db.Column(db.Numeric(12, 3), nullable=False, default=10)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "unit": self.unit,
            "cost_price": as_number(self.cost_price),
            "selling_price": as_number(self.selling_price),
            "current_stock": as_number(self.current_stock),
            "reorder_level": as_number(self.reorder_level),
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only log of stock changes.

    INVARIANTS:
    - new_stock = previous_stock + quantity
    - previous_stock equals the product's stock right before this row was written
    - rows are never updated or deleted (enforced by mapper events below)
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        db.Index("ix_stock_movements_type_reference", "type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False)  # sale, return, adjustment, purchase, transfer
    quantity = db.Column(db.Numeric(12, 3), nullable=False)  # signed delta
    previous_stock = db.Column(db.Numeric(12, 3), nullable=False)
    new_stock = db.Column(db.Numeric(12, 3), nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    reference_id = db.Column(db.Integer, nullable=True)  # bill id or purchase id

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": as_number(self.quantity),
            "previous_stock": as_number(self.previous_stock),
            "new_stock": as_number(self.new_stock),
            "reason": self.reason,
            "user_id": self.user_id,
            "reference_id": self.reference_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise ValueError("stock movements are append-only and cannot be updated")


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise ValueError("stock movements are append-only and cannot be deleted")

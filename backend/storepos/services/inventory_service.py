# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/storepos/services/inventory_service.py

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, StockMovement, User
from ..models.inventory import MOVEMENT_TYPES
from ..money import to_quantity
from ..time_utils import utcnow
from .activity_service import append_activity
from .concurrency import lock_for_update, run_unit_of_work
"""
Inventory Ledger Invariants (authoritative)

Stock model:
- Product.current_stock is the live on-hand quantity (fractional units allowed).
- Every change to current_stock appends exactly one StockMovement in the same
  DB transaction; nothing else writes that column.
- new_stock = previous_stock + quantity, and previous_stock is read from the
  locked product row, so movements form a total order per product.

Negative stock:
- Governed by ALLOW_NEGATIVE_STOCK. When False, a change that would leave
  stock below zero raises InsufficientStockError and the unit of work aborts.

Concurrency:
- Product rows are read with SELECT ... FOR UPDATE (row lock) where the
  database supports it; SQLite relies on the BEGIN IMMEDIATE write lock.
- Product.version_id gives an optimistic check on top; conflicts retry.
"""


def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def require_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError(f"User {user_id} not found or inactive", details={"user_id": user_id})
    return user


def lock_products(product_ids) -> dict[int, Product]:
    """
    Lock every product a unit of work will touch, in ascending id order.

    A fixed lock order keeps two multi-line sales from deadlocking each other.
    """
    locked: dict[int, Product] = {}
    for product_id in sorted(set(product_ids)):
        locked[product_id] = get_product(product_id, lock=True)
    return locked


def apply_stock_change(
    product: Product,
    *,
    delta: Decimal,
    movement_type: str,
    user_id: int | None,
    reference_id: int | None = None,
    reason: str | None = None,
) -> StockMovement:
    """
    Read-modify-write of one product's stock plus its movement row.

    Does NOT commit: callers run it inside run_unit_of_work. The product must
    already be locked by the caller (get_product(lock=True) or lock_products).
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement type: {movement_type}")

    delta = to_quantity(delta)
    previous_stock = to_quantity(product.current_stock)
    new_stock = previous_stock + delta

    if new_stock < 0 and not current_app.config.get("ALLOW_NEGATIVE_STOCK", False):
        raise InsufficientStockError(
            f"Insufficient stock for {product.name}",
            details={
                "product_id": product.id,
                "requested_quantity": float(-delta),
                "current_stock": float(previous_stock),
            },
        )

    product.current_stock = new_stock

    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        quantity=delta,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reason=reason,
        user_id=user_id,
        reference_id=reference_id,
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def adjust_stock(
    product_id: int,
    delta: Decimal,
    movement_type: str,
    user_id: int,
    reference_id: int | None = None,
    reason: str | None = None,
) -> StockMovement:
    """
    Standalone stock change (manual adjustment, purchase receiving, transfer).

    Positive delta adds stock, negative removes it.
    """
    delta = to_quantity(delta)
    if delta == 0:
        raise ValidationError("delta must be non-zero")
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement type: {movement_type}")

    def _op():
        require_user(user_id)
        product = get_product(product_id, lock=True)
        movement = apply_stock_change(
            product,
            delta=delta,
            movement_type=movement_type,
            user_id=user_id,
            reference_id=reference_id,
            reason=reason,
        )
        append_activity(
            user_id=user_id,
            action=f"stock.{movement_type}",
            module="inventory",
            entity_id=product.id,
            details=f"{product.sku}: {movement.previous_stock} -> {movement.new_stock}",
        )
        return movement

    movement = run_unit_of_work(_op)
    current_app.logger.info(
        "Stock %s on product %s: %s -> %s",
        movement.type, movement.product_id, movement.previous_stock, movement.new_stock,
    )
    return movement


def get_low_stock() -> list[Product]:
    """Active products at or below their reorder level."""
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.current_stock <= Product.reorder_level,
        )
        .order_by(Product.current_stock.asc(), Product.id.asc())
        .all()
    )


def list_stock_movements(product_id: int, limit: int | None = None) -> list[StockMovement]:
    """Movement history for one product, newest first."""
    get_product(product_id)
    q = (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id.desc())
    )
    if limit:
        q = q.limit(limit)
    return q.all()

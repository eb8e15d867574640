# backend/storepos/routes/inventory.py
"""
Inventory routes.

Stock only changes through the inventory ledger: every adjustment writes a
stock movement alongside the new on-hand quantity.
"""
from flask import Blueprint, request

from ..decorators import api_response
from ..services import inventory_service
from ..validation import StockAdjustmentInput, parse_optional_id


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/adjust")
@api_response(status=201)
def adjust_stock_route():
    """
    Apply a manual stock change.

    Request body:
    {
        "product_id": 7,
        "delta": -2,
        "type": "adjustment" | "purchase" | "transfer" | "return" | "sale",
        "user_id": 1,
        "reference_id": 12,  (optional)
        "reason": "Damaged in storage"  (optional)
    }
    """
    data = StockAdjustmentInput.from_payload(request.get_json(silent=True))
    movement = inventory_service.adjust_stock(
        product_id=data.product_id,
        delta=data.delta,
        movement_type=data.type,
        user_id=data.user_id,
        reference_id=data.reference_id,
        reason=data.reason,
    )
    product = inventory_service.get_product(data.product_id)
    return {"movement": movement.to_dict(), "product": product.to_dict()}


@inventory_bp.get("/low-stock")
@api_response()
def low_stock_route():
    return [product.to_dict() for product in inventory_service.get_low_stock()]


@inventory_bp.get("/<int:product_id>/movements")
@api_response()
def stock_movements_route(product_id: int):
    limit = parse_optional_id(request.args.get("limit"), "limit")
    return [m.to_dict() for m in inventory_service.list_stock_movements(product_id, limit=limit)]

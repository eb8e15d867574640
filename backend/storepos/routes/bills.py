# Overview: Flask API routes for billing; parses input and returns JSON envelopes.

# backend/storepos/routes/bills.py
"""
Billing API Routes

WHY: The checkout screen submits sales, parks carts as held bills and looks
bills up again for reprints and refunds.

DESIGN:
- Payloads are parsed into typed inputs before any service call
- Totals sent by the client are accepted but recomputed server-side
- Every response uses the success/failure envelope (see decorators.api_response)

Time semantics:
- start_date/end_date accept ISO-8601 dates or datetimes (Z/offsets allowed)
- Both bounds are inclusive; a bare end date covers the whole day
"""

from flask import Blueprint, request

from ..decorators import api_response
from ..services import billing_service
from ..time_utils import parse_date_bound
from ..validation import HoldBillInput, RefundInput, SaleInput, parse_positive_id


bills_bp = Blueprint("bills", __name__, url_prefix="/api/bills")


# =============================================================================
# SALES
# =============================================================================

@bills_bp.post("")
@api_response(status=201)
def create_bill_route():
    """
    Create a completed sale.

    Request body:
    {
        "user_id": 1,
        "customer_id": 3,  (optional)
        "items": [{"product_id": 7, "quantity": 2, "unit_price": 40.00, "discount": 0}],
        "discount": 10, "discount_type": "percentage",
        "tax": 0,
        "payment_method": "cash",
        "paid_amount": 100.00,
        "credit_amount": 0
    }

    Returns:
        201: Bill with items
        400: Invalid payload or payment does not cover the total
        404: User, customer or product missing
        409: Insufficient stock or credit limit exceeded
    """
    sale = SaleInput.from_payload(request.get_json(silent=True))
    bill = billing_service.create_sale(sale)
    return bill.to_dict(include_items=True)


@bills_bp.get("")
@api_response()
def list_bills_route():
    """List bills newest first, optionally bounded by start_date/end_date."""
    start = parse_date_bound(request.args.get("start_date"), "start_date")
    end = parse_date_bound(request.args.get("end_date"), "end_date", end=True)
    return [bill.to_dict() for bill in billing_service.list_bills(start, end)]


@bills_bp.get("/<int:bill_id>")
@api_response()
def get_bill_route(bill_id: int):
    return billing_service.get_bill(bill_id).to_dict(include_items=True)


@bills_bp.get("/<int:bill_id>/items")
@api_response()
def list_bill_items_route(bill_id: int):
    return [item.to_dict() for item in billing_service.list_bill_items(bill_id)]


@bills_bp.get("/number/<string:bill_number>")
@api_response()
def get_bill_by_number_route(bill_number: str):
    return billing_service.get_bill_by_number(bill_number).to_dict(include_items=True)


# =============================================================================
# HELD BILLS
# =============================================================================

@bills_bp.post("/held")
@api_response(status=201)
def hold_bill_route():
    """
    Park the current cart. Stock, credit and loyalty points are not touched.

    Request body: same shape as a sale, without paid_amount/credit_amount.
    """
    cart = HoldBillInput.from_payload(request.get_json(silent=True))
    bill = billing_service.hold_bill(cart)
    return bill.to_dict(include_items=True)


@bills_bp.get("/held")
@api_response()
def list_held_route():
    return [bill.to_dict(include_items=True) for bill in billing_service.list_held()]


@bills_bp.post("/held/<int:bill_id>/resume")
@api_response()
def resume_held_route(bill_id: int):
    """
    Return a held bill with its items.

    The held bill is kept; the client deletes it once the resumed cart has
    been submitted as a new sale.
    """
    return billing_service.resume_held(bill_id).to_dict(include_items=True)


@bills_bp.delete("/held/<int:bill_id>")
@api_response()
def delete_held_route(bill_id: int):
    """Delete a held bill. Query param user_id (required) names the cashier."""
    user_id = parse_positive_id(request.args.get("user_id"), "user_id")
    billing_service.delete_held(bill_id, user_id=user_id)
    return {"deleted": True, "bill_id": bill_id}


# =============================================================================
# REFUNDS
# =============================================================================

@bills_bp.post("/<int:bill_id>/refund")
@api_response()
def refund_bill_route(bill_id: int):
    """
    Refund lines of a completed bill.

    Request body:
    {
        "user_id": 1,
        "items": [{"bill_item_id": 12, "quantity": 1}],  (optional: omit to refund everything left)
        "refund_method": "cash" | "credit",
        "reason": "Damaged"
    }
    """
    refund = RefundInput.from_payload(request.get_json(silent=True))
    bill = billing_service.refund_bill(bill_id, refund)
    return bill.to_dict(include_items=True)

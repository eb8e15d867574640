# Overview: Flask API routes for customer credit; parses input and returns JSON envelopes.

# backend/storepos/routes/credit.py
"""
Customer Credit API Routes

WHY: Cashiers take payments against store credit and look up what a
customer owes, what they bought recently and whether the balance adds up.
"""

from flask import Blueprint, request

from ..decorators import api_response
from ..money import as_number
from ..services import billing_service, credit_service, payment_service
from ..validation import CreditPaymentInput


credit_bp = Blueprint("credit", __name__, url_prefix="/api")


@credit_bp.post("/credit-payments")
@api_response(status=201)
def record_credit_payment_route():
    """
    Record a payment against a customer's credit balance.

    Request body:
    {
        "customer_id": 3,
        "amount": 1000.00,
        "payment_method": "cash" | "card",
        "user_id": 1,
        "bill_id": 42,  (optional)
        "notes": "..."  (optional)
    }

    Returns:
        201: Payment plus the customer's updated balance
        409: Amount exceeds the outstanding credit
    """
    data = CreditPaymentInput.from_payload(request.get_json(silent=True))
    payment = payment_service.record_payment(
        customer_id=data.customer_id,
        amount=data.amount,
        payment_method=data.payment_method,
        user_id=data.user_id,
        bill_id=data.bill_id,
        notes=data.notes,
    )
    customer = credit_service.get_customer(data.customer_id)
    return {
        "payment": payment.to_dict(),
        "current_credit": as_number(customer.current_credit),
    }


@credit_bp.get("/customers/<int:customer_id>/credit-payments")
@api_response()
def list_credit_payments_route(customer_id: int):
    return [payment.to_dict() for payment in payment_service.list_payments(customer_id)]


@credit_bp.get("/customers/<int:customer_id>/credit")
@api_response()
def credit_summary_route(customer_id: int):
    summary = credit_service.get_credit_summary(customer_id)
    return {
        "customer": summary["customer"].to_dict(),
        "bills": [bill.to_dict() for bill in summary["bills"]],
        "payments": [payment.to_dict() for payment in summary["payments"]],
    }


@credit_bp.get("/customers/<int:customer_id>/credit/reconcile")
@api_response()
def reconcile_credit_route(customer_id: int):
    """Compare the stored balance with the one implied by bills, payments and refunds."""
    result = credit_service.reconcile_credit(customer_id)
    return {
        "customer_id": result["customer_id"],
        "expected": as_number(result["expected"]),
        "actual": as_number(result["actual"]),
        "difference": as_number(result["difference"]),
        "balanced": result["balanced"],
    }


@credit_bp.get("/customers/<int:customer_id>/bills")
@api_response()
def customer_bills_route(customer_id: int):
    """The customer's five most recent bills with items."""
    return [
        bill.to_dict(include_items=True)
        for bill in billing_service.get_bills_by_customer(customer_id)
    ]

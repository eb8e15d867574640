# Overview: Service-layer operations for credit payments; encapsulates business logic and database work.

"""
Credit Payment Processor

WHY: Customers settle store credit in cash or by card, either against one
bill or as a general payment on account.

DESIGN PRINCIPLES:
- Each payment row and the matching decrement of Customer.current_credit
  commit together or not at all
- Payments are immutable; corrections are new rows
- Overpayment (more than the outstanding credit) is rejected unless
  REJECT_CREDIT_OVERPAYMENT is turned off
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..errors import NotFoundError, OverpaymentError, ValidationError
from ..extensions import db
from ..models import Bill, CreditPayment
from ..money import to_money
from ..time_utils import utcnow
from ..validation import CREDIT_PAYMENT_METHODS
from .activity_service import append_activity
from .concurrency import run_unit_of_work
from .credit_service import get_customer, reduce_credit
from .inventory_service import require_user


def record_payment(
    customer_id: int,
    amount: Decimal,
    payment_method: str,
    user_id: int,
    bill_id: int | None = None,
    notes: str | None = None,
) -> CreditPayment:
    """
    Record a payment against a customer's outstanding credit.

    Args:
        customer_id: Customer paying
        amount: Amount received (must be positive)
        payment_method: cash or card
        user_id: Cashier recording the payment
        bill_id: Bill being settled (optional; must belong to the customer)
        notes: Free text

    Returns:
        CreditPayment record

    Raises:
        ValidationError: amount not positive, unknown payment method
        NotFoundError: customer, user or bill missing
        OverpaymentError: amount above current credit (when policy enabled)
    """
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be positive")
    if payment_method not in CREDIT_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {payment_method}. Must be one of {list(CREDIT_PAYMENT_METHODS)}"
        )

    def _op():
        require_user(user_id)
        customer = get_customer(customer_id, lock=True)

        if bill_id is not None:
            bill = db.session.get(Bill, bill_id)
            if bill is None or bill.customer_id != customer_id:
                raise NotFoundError(
                    f"Bill {bill_id} not found for customer {customer_id}",
                    details={"bill_id": bill_id, "customer_id": customer_id},
                )

        outstanding = to_money(customer.current_credit)
        if current_app.config.get("REJECT_CREDIT_OVERPAYMENT", True) and amount > outstanding:
            raise OverpaymentError(
                "Payment exceeds outstanding credit",
                details={
                    "customer_id": customer_id,
                    "current_credit": float(outstanding),
                    "amount": float(amount),
                },
            )

        payment = CreditPayment(
            customer_id=customer_id,
            bill_id=bill_id,
            amount=amount,
            payment_method=payment_method,
            notes=notes,
            user_id=user_id,
            created_at=utcnow(),
        )
        db.session.add(payment)
        reduce_credit(customer, amount)
        db.session.flush()

        append_activity(
            user_id=user_id,
            action="credit.payment",
            module="customers",
            entity_id=customer_id,
            details=f"Payment {amount} ({payment_method}); balance {customer.current_credit}",
        )
        return payment

    payment = run_unit_of_work(_op)
    current_app.logger.info(
        "Credit payment %s recorded for customer %s: %s", payment.id, customer_id, payment.amount
    )
    return payment


def list_payments(customer_id: int) -> list[CreditPayment]:
    """All payments for a customer in insertion order."""
    get_customer(customer_id)
    return (
        db.session.query(CreditPayment)
        .filter_by(customer_id=customer_id)
        .order_by(CreditPayment.id.asc())
        .all()
    )

# Overview: Service-layer operations for customer credit and loyalty balances.

"""
Customer Credit Ledger

WHY: Credit sales, payments and refunds all move Customer.current_credit.
Each of those moves happens inside the caller's unit of work so the balance
and the row that justifies it (bill, payment, refund) commit together.

RECONCILIATION:
current_credit == sum(credit_amount of non-held bills)
                  - sum(credit payments)
                  - sum(refund amounts applied to credit)

The ledger does not enforce that equation on every write; reconcile_credit()
reports drift so tests and the CLI can check it.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import CreditLimitExceededError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Bill, BillRefund, CreditPayment, Customer
from ..money import to_money
from .concurrency import lock_for_update


def get_customer(customer_id: int, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


def extend_credit(customer: Customer, amount: Decimal) -> Customer:
    """
    Increase what the customer owes. Runs inside the caller's transaction.

    With ENFORCE_CREDIT_LIMIT on, the new balance may not exceed credit_limit.
    """
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("credit amount must be positive")

    new_balance = to_money(customer.current_credit) + amount
    limit = to_money(customer.credit_limit)
    if current_app.config.get("ENFORCE_CREDIT_LIMIT", True) and new_balance > limit:
        raise CreditLimitExceededError(
            f"Credit limit exceeded for {customer.name}",
            details={
                "customer_id": customer.id,
                "credit_limit": float(limit),
                "current_credit": float(to_money(customer.current_credit)),
                "requested": float(amount),
            },
        )

    customer.current_credit = new_balance
    return customer


def reduce_credit(customer: Customer, amount: Decimal) -> Customer:
    """Decrease what the customer owes. Runs inside the caller's transaction."""
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("credit amount must be positive")
    customer.current_credit = to_money(customer.current_credit) - amount
    return customer


def add_loyalty_points(customer: Customer, points: int) -> Customer:
    """
    Adjust the loyalty balance; negative points reverse an earlier award.

    The balance never drops below zero.
    """
    customer.loyalty_points = max(0, (customer.loyalty_points or 0) + int(points))
    return customer


def points_for_amount(amount: Decimal) -> int:
    """One point per LOYALTY_POINTS_DIVISOR currency units, floored."""
    divisor = current_app.config.get("LOYALTY_POINTS_DIVISOR", 100)
    if amount <= 0:
        return 0
    return int(to_money(amount) // divisor)


def get_credit_summary(customer_id: int) -> dict:
    """Customer record plus every bill and credit payment referencing it."""
    customer = get_customer(customer_id)
    bills = (
        db.session.query(Bill)
        .filter(Bill.customer_id == customer_id)
        .order_by(Bill.created_at.desc(), Bill.id.desc())
        .all()
    )
    payments = (
        db.session.query(CreditPayment)
        .filter_by(customer_id=customer_id)
        .order_by(CreditPayment.id.asc())
        .all()
    )
    return {"customer": customer, "bills": bills, "payments": payments}


def reconcile_credit(customer_id: int) -> dict:
    """
    Compare current_credit with the balance implied by bills, payments and refunds.
    """
    customer = get_customer(customer_id)

    billed = (
        db.session.query(func.coalesce(func.sum(Bill.credit_amount), 0))
        .filter(Bill.customer_id == customer_id, Bill.is_held.is_(False))
        .scalar()
    )
    paid = (
        db.session.query(func.coalesce(func.sum(CreditPayment.amount), 0))
        .filter(CreditPayment.customer_id == customer_id)
        .scalar()
    )
    refunded = (
        db.session.query(func.coalesce(func.sum(BillRefund.credit_amount), 0))
        .join(Bill, Bill.id == BillRefund.bill_id)
        .filter(Bill.customer_id == customer_id)
        .scalar()
    )

    expected = to_money(billed) - to_money(paid) - to_money(refunded)
    actual = to_money(customer.current_credit)
    return {
        "customer_id": customer_id,
        "expected": expected,
        "actual": actual,
        "difference": actual - expected,
        "balanced": actual == expected,
    }

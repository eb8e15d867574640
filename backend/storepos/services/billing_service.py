"""
Billing Engine - sales, held bills and refunds

WHY: A sale touches the bill, its lines, product stock, the stock log,
customer credit and loyalty points. All of it must land together or not at
all, so every mutation below is one run_unit_of_work call.

HELD BILLS:
A held bill is a draft: lines are stored, stock is not reserved. Resuming is
a read; the caller re-validates stock and submits a new sale, then deletes
the held bill explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ..errors import ConflictError, DuplicateBillNumberError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Bill, BillItem, BillRefund
from ..models.inventory import MOVEMENT_RETURN, MOVEMENT_SALE
from ..models.sales import (
    BILL_STATUS_COMPLETED,
    BILL_STATUS_HELD,
    BILL_STATUS_PARTIAL_REFUND,
    BILL_STATUS_REFUNDED,
)
from ..money import ZERO, to_money, to_quantity
from ..time_utils import utcnow
from ..validation import CartInput, HoldBillInput, RefundInput, SaleInput
from .activity_service import append_activity
from .concurrency import lock_for_update, run_unit_of_work
from .credit_service import (
    add_loyalty_points,
    extend_credit,
    get_customer,
    points_for_amount,
    reduce_credit,
)
from .document_service import next_bill_number
from .inventory_service import apply_stock_change, get_product, lock_products, require_user


CUSTOMER_HISTORY_LIMIT = 5


@dataclass(frozen=True)
class BillTotals:
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal


@dataclass(frozen=True)
class Settlement:
    paid_amount: Decimal
    change_amount: Decimal
    credit_amount: Decimal


# =============================================================================
# TOTALS
# =============================================================================

def compute_totals(cart: CartInput) -> BillTotals:
    """
    subtotal = sum of line subtotals; a percentage discount is resolved to an
    amount of the subtotal; total = subtotal - discount + tax.
    """
    subtotal = to_money(sum((line.subtotal for line in cart.items), ZERO))
    if cart.discount_type == "percentage":
        discount = to_money(subtotal * cart.discount / Decimal(100))
    else:
        discount = to_money(cart.discount)
    if discount > subtotal:
        raise ValidationError(
            "Discount cannot exceed the bill subtotal",
            details={"subtotal": float(subtotal), "discount": float(discount)},
        )
    tax = to_money(cart.tax)
    return BillTotals(
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        total=to_money(subtotal - discount + tax),
    )


def settle_payment(sale: SaleInput, totals: BillTotals) -> Settlement:
    """
    Split the total into credit, cash/card paid and change.

    The paid amount must cover whatever is not put on credit. Paying by
    "credit" puts the whole bill on credit; part payments use "split".
    """
    credit = to_money(sale.credit_amount)
    if sale.payment_method == "credit":
        if credit == 0:
            credit = totals.total
        if credit != totals.total or sale.paid_amount > 0:
            raise ValidationError(
                "Payment method 'credit' puts the whole total on credit; use 'split' for part payments",
                details={"total": float(totals.total), "credit_amount": float(credit)},
            )

    if credit > 0 and sale.customer_id is None:
        raise ValidationError("A customer is required for credit sales")
    if credit > totals.total:
        raise ValidationError(
            "credit_amount cannot exceed the bill total",
            details={"total": float(totals.total), "credit_amount": float(credit)},
        )

    due = totals.total - credit
    paid = to_money(sale.paid_amount)
    if paid < due:
        raise ValidationError(
            "Paid amount does not cover the amount due",
            details={"amount_due": float(due), "paid_amount": float(paid)},
        )
    return Settlement(paid_amount=paid, change_amount=to_money(paid - due), credit_amount=credit)


def _insert_bill(bill: Bill) -> Bill:
    db.session.add(bill)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise DuplicateBillNumberError(
            f"Bill number {bill.bill_number} already exists",
            details={"bill_number": bill.bill_number},
        ) from exc
    return bill


def _add_items(bill: Bill, cart: CartInput, products: dict) -> None:
    for line in cart.items:
        product = products[line.product_id]
        bill.items.append(BillItem(
            product_id=product.id,
            product_name=product.name,
            quantity=line.quantity,
            unit_price=line.unit_price,
            discount=line.discount,
            subtotal=line.subtotal,
            created_at=utcnow(),
        ))
    db.session.flush()


# =============================================================================
# SALES
# =============================================================================

def create_sale(sale: SaleInput) -> Bill:
    """
    Persist a completed sale.

    One unit of work: bill number, bill row, bill items, stock decrement and
    stock log per line, credit extension, loyalty points, activity entry.

    Raises:
        ValidationError: totals or payment do not add up, inactive product
        NotFoundError: user, customer or product missing
        InsufficientStockError: a line would take stock below zero
        CreditLimitExceededError: credit_amount pushes the customer past their limit
        TransactionError: persistence failure (rolled back)
    """
    totals = compute_totals(sale)
    settlement = settle_payment(sale, totals)

    def _op():
        require_user(sale.user_id)
        customer = get_customer(sale.customer_id, lock=True) if sale.customer_id else None
        products = lock_products(line.product_id for line in sale.items)
        inactive = [p.id for p in products.values() if not p.is_active]
        if inactive:
            raise ValidationError("Cannot sell inactive products", details={"product_ids": inactive})

        bill = _insert_bill(Bill(
            bill_number=next_bill_number(),
            customer_id=sale.customer_id,
            user_id=sale.user_id,
            subtotal=totals.subtotal,
            discount=totals.discount,
            discount_type=sale.discount_type,
            tax=totals.tax,
            total=totals.total,
            payment_method=sale.payment_method,
            paid_amount=settlement.paid_amount,
            change_amount=settlement.change_amount,
            credit_amount=settlement.credit_amount,
            status=BILL_STATUS_COMPLETED,
            is_held=False,
            notes=sale.notes,
            created_at=utcnow(),
        ))
        _add_items(bill, sale, products)

        for line in sale.items:
            apply_stock_change(
                products[line.product_id],
                delta=-line.quantity,
                movement_type=MOVEMENT_SALE,
                user_id=sale.user_id,
                reference_id=bill.id,
                reason=f"Sale {bill.bill_number}",
            )

        if customer is not None:
            if settlement.credit_amount > 0:
                extend_credit(customer, settlement.credit_amount)
            add_loyalty_points(customer, points_for_amount(totals.total))

        append_activity(
            user_id=sale.user_id,
            action="bill.created",
            module="billing",
            entity_id=bill.id,
            details=f"{bill.bill_number} total {totals.total} ({sale.payment_method})",
        )
        return bill

    bill = run_unit_of_work(_op, retry_on=(DuplicateBillNumberError,))
    current_app.logger.info(
        "Bill %s created: total=%s credit=%s customer=%s",
        bill.bill_number, bill.total, bill.credit_amount, bill.customer_id,
    )
    return bill


# =============================================================================
# HELD BILLS
# =============================================================================

def hold_bill(cart: HoldBillInput) -> Bill:
    """Save a draft bill with its lines; stock, credit and points are untouched."""
    totals = compute_totals(cart)

    def _op():
        require_user(cart.user_id)
        if cart.customer_id:
            get_customer(cart.customer_id)
        products = {pid: get_product(pid) for pid in {line.product_id for line in cart.items}}
        inactive = sorted(p.id for p in products.values() if not p.is_active)
        if inactive:
            raise ValidationError("Cannot hold inactive products", details={"product_ids": inactive})

        bill = _insert_bill(Bill(
            bill_number=next_bill_number(),
            customer_id=cart.customer_id,
            user_id=cart.user_id,
            subtotal=totals.subtotal,
            discount=totals.discount,
            discount_type=cart.discount_type,
            tax=totals.tax,
            total=totals.total,
            payment_method=cart.payment_method,
            paid_amount=ZERO,
            change_amount=ZERO,
            credit_amount=ZERO,
            status=BILL_STATUS_HELD,
            is_held=True,
            notes=cart.notes,
            created_at=utcnow(),
        ))
        _add_items(bill, cart, products)

        append_activity(
            user_id=cart.user_id,
            action="bill.held",
            module="billing",
            entity_id=bill.id,
            details=f"{bill.bill_number} total {totals.total}",
        )
        return bill

    bill = run_unit_of_work(_op, retry_on=(DuplicateBillNumberError,))
    current_app.logger.info("Bill %s held with %d item(s)", bill.bill_number, len(cart.items))
    return bill


def list_held() -> list[Bill]:
    """Held bills with items, newest first."""
    return (
        db.session.query(Bill)
        .options(selectinload(Bill.items))
        .filter(Bill.is_held.is_(True))
        .order_by(Bill.created_at.desc(), Bill.id.desc())
        .all()
    )


def resume_held(bill_id: int) -> Bill:
    """
    Fetch a held bill with its items for the cashier to continue.

    Read-only: the held bill stays until delete_held() is called.
    """
    bill = (
        db.session.query(Bill)
        .options(selectinload(Bill.items))
        .filter(Bill.id == bill_id, Bill.is_held.is_(True))
        .first()
    )
    if bill is None:
        raise NotFoundError("Held bill not found", details={"bill_id": bill_id})
    return bill


def delete_held(bill_id: int, user_id: int) -> None:
    """
    Delete a held bill, items first, in one unit of work.

    Raises NotFoundError for a missing bill and ConflictError for a bill that
    is not held.
    """
    def _op():
        require_user(user_id)
        bill = lock_for_update(db.session.query(Bill).filter_by(id=bill_id)).first()
        if bill is None:
            raise NotFoundError("Held bill not found", details={"bill_id": bill_id})
        if not bill.is_held:
            raise ConflictError(
                f"Bill {bill.bill_number} is not a held bill",
                details={"bill_id": bill_id, "status": bill.status},
            )

        bill_number = bill.bill_number
        bill.items.clear()
        db.session.flush()
        db.session.delete(bill)
        db.session.flush()

        append_activity(
            user_id=user_id,
            action="bill.held_deleted",
            module="billing",
            entity_id=bill_id,
            details=bill_number,
        )
        return bill_number

    bill_number = run_unit_of_work(_op)
    current_app.logger.info("Held bill %s deleted", bill_number)


# =============================================================================
# READS
# =============================================================================

def get_bill(bill_id: int) -> Bill:
    bill = (
        db.session.query(Bill)
        .options(selectinload(Bill.items))
        .filter(Bill.id == bill_id)
        .first()
    )
    if bill is None:
        raise NotFoundError("Bill not found", details={"bill_id": bill_id})
    return bill


def get_bill_by_number(bill_number: str) -> Bill:
    bill = (
        db.session.query(Bill)
        .options(selectinload(Bill.items))
        .filter(Bill.bill_number == bill_number)
        .first()
    )
    if bill is None:
        raise NotFoundError("Bill not found", details={"bill_number": bill_number})
    return bill


def list_bill_items(bill_id: int) -> list[BillItem]:
    return get_bill(bill_id).items


def get_bills_by_customer(customer_id: int, limit: int = CUSTOMER_HISTORY_LIMIT) -> list[Bill]:
    """The customer's most recent bills with items, newest first."""
    get_customer(customer_id)
    return (
        db.session.query(Bill)
        .options(selectinload(Bill.items))
        .filter(Bill.customer_id == customer_id)
        .order_by(Bill.created_at.desc(), Bill.id.desc())
        .limit(limit)
        .all()
    )


def list_bills(start: datetime | None = None, end: datetime | None = None) -> list[Bill]:
    """Bills newest first; start/end bound created_at inclusively."""
    if start is not None and end is not None and start > end:
        raise ValidationError("start_date must not be after end_date")
    q = db.session.query(Bill)
    if start is not None:
        q = q.filter(Bill.created_at >= start)
    if end is not None:
        q = q.filter(Bill.created_at <= end)
    return q.order_by(Bill.created_at.desc(), Bill.id.desc()).all()


# =============================================================================
# REFUNDS
# =============================================================================

def _refunded_so_far(bill_id: int) -> dict[int, tuple[Decimal, Decimal]]:
    rows = (
        db.session.query(
            BillRefund.bill_item_id,
            func.coalesce(func.sum(BillRefund.quantity), 0),
            func.coalesce(func.sum(BillRefund.amount), 0),
        )
        .filter(BillRefund.bill_id == bill_id)
        .group_by(BillRefund.bill_item_id)
        .all()
    )
    return {item_id: (to_quantity(qty), to_money(amount)) for item_id, qty, amount in rows}


def _credit_refunded_so_far(bill_id: int) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(BillRefund.credit_amount), 0))
        .filter(BillRefund.bill_id == bill_id)
        .scalar()
    )
    return to_money(total)


def line_values(bill: Bill) -> dict[int, Decimal]:
    """
    Share of the bill total carried by each line.

    Bill-level discount and tax are spread over lines in proportion to their
    subtotals; the last line takes the rounding remainder, so the shares
    always add up to bill.total.
    """
    items = sorted(bill.items, key=lambda item: item.id)
    subtotal = to_money(bill.subtotal)
    total = to_money(bill.total)
    values = {}
    for item in items[:-1]:
        if subtotal > 0:
            values[item.id] = to_money(to_money(item.subtotal) * total / subtotal)
        else:
            values[item.id] = ZERO
    if items:
        values[items[-1].id] = total - sum(values.values(), ZERO)
    return values


def refund_bill(bill_id: int, refund: RefundInput) -> Bill:
    """
    Refund some or all remaining lines of a completed bill.

    A line refunds at most its share of what the bill actually charged, so a
    full refund returns bill.total exactly. Stock comes back through the
    inventory ledger as "return" movements.

    Credit: the part of the bill sold on credit and not yet refunded is
    settled first, whatever the refund method; only the rest is paid out.
    With refund_method "credit" the whole amount lowers the customer's
    credit. Loyalty points are reversed on the running refunded total.
    """
    def _op():
        require_user(refund.user_id)
        bill = lock_for_update(db.session.query(Bill).filter_by(id=bill_id)).first()
        if bill is None:
            raise NotFoundError("Bill not found", details={"bill_id": bill_id})
        if bill.status not in (BILL_STATUS_COMPLETED, BILL_STATUS_PARTIAL_REFUND):
            raise ConflictError(
                f"Bill {bill.bill_number} cannot be refunded in status {bill.status}",
                details={"bill_id": bill_id, "status": bill.status},
            )
        if refund.refund_method == "credit" and bill.customer_id is None:
            raise ValidationError("Credit refunds need a bill with a customer")

        items_by_id = {item.id: item for item in bill.items}
        values = line_values(bill)
        already = _refunded_so_far(bill.id)
        remaining = {
            item_id: to_quantity(item.quantity) - already.get(item_id, (ZERO, ZERO))[0]
            for item_id, item in items_by_id.items()
        }

        if refund.items is None:
            requested = {item_id: qty for item_id, qty in remaining.items() if qty > 0}
        else:
            requested = {}
            for line in refund.items:
                if line.bill_item_id not in items_by_id:
                    raise NotFoundError(
                        f"Bill item {line.bill_item_id} is not on bill {bill.bill_number}",
                        details={"bill_item_id": line.bill_item_id},
                    )
                requested[line.bill_item_id] = requested.get(line.bill_item_id, ZERO) + line.quantity
        if not requested:
            raise ConflictError("Nothing left to refund on this bill", details={"bill_id": bill_id})

        for item_id, qty in requested.items():
            if qty > remaining[item_id]:
                raise ConflictError(
                    "Refund quantity exceeds quantity still refundable",
                    details={
                        "bill_item_id": item_id,
                        "requested": float(qty),
                        "refundable": float(remaining[item_id]),
                    },
                )

        products = lock_products(items_by_id[item_id].product_id for item_id in requested)
        customer = get_customer(bill.customer_id, lock=True) if bill.customer_id else None

        refunded_before = sum((amount for _, amount in already.values()), ZERO)
        credit_left = max(ZERO, to_money(bill.credit_amount) - _credit_refunded_so_far(bill.id))
        refund_total = ZERO
        credit_total = ZERO
        for item_id, qty in sorted(requested.items()):
            item = items_by_id[item_id]
            if qty == remaining[item_id]:
                # Last units of the line take whatever is left of its share.
                amount = values[item_id] - already.get(item_id, (ZERO, ZERO))[1]
            else:
                amount = to_money(values[item_id] * qty / to_quantity(item.quantity))

            if refund.refund_method == "credit":
                credit_part = amount
            else:
                credit_part = min(amount, credit_left)
            credit_left = max(ZERO, credit_left - credit_part)

            db.session.add(BillRefund(
                bill_id=bill.id,
                bill_item_id=item.id,
                product_id=item.product_id,
                quantity=qty,
                amount=amount,
                credit_amount=credit_part,
                refund_method=refund.refund_method,
                reason=refund.reason,
                user_id=refund.user_id,
                created_at=utcnow(),
            ))
            apply_stock_change(
                products[item.product_id],
                delta=qty,
                movement_type=MOVEMENT_RETURN,
                user_id=refund.user_id,
                reference_id=bill.id,
                reason=refund.reason or f"Refund {bill.bill_number}",
            )
            remaining[item_id] -= qty
            refund_total += amount
            credit_total += credit_part

        if customer is not None:
            if credit_total > 0:
                reduce_credit(customer, credit_total)
            points_back = (
                points_for_amount(refunded_before + refund_total) - points_for_amount(refunded_before)
            )
            add_loyalty_points(customer, -points_back)

        fully_refunded = all(qty <= 0 for qty in remaining.values())
        bill.status = BILL_STATUS_REFUNDED if fully_refunded else BILL_STATUS_PARTIAL_REFUND
        db.session.flush()

        append_activity(
            user_id=refund.user_id,
            action="bill.refunded",
            module="billing",
            entity_id=bill.id,
            details=(
                f"{bill.bill_number} refund {refund_total} ({refund.refund_method}), "
                f"credit settled {credit_total}"
            ),
        )
        return bill, refund_total

    bill, refund_total = run_unit_of_work(_op)
    current_app.logger.info(
        "Bill %s refunded %s via %s, status %s",
        bill.bill_number, refund_total, refund.refund_method, bill.status,
    )
    return bill

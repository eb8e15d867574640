from __future__ import annotations

from ..extensions import db
from ..money import as_number
from ..time_utils import to_utc_z


BILL_STATUS_COMPLETED = "completed"
BILL_STATUS_HELD = "held"
BILL_STATUS_REFUNDED = "refunded"
BILL_STATUS_PARTIAL_REFUND = "partial_refund"

PAYMENT_METHODS = ("cash", "card", "credit", "split")
DISCOUNT_TYPES = ("amount", "percentage")
REFUND_METHODS = ("cash", "credit")


class Bill(db.Model):
    """
    One sale transaction, completed or held.

    AMOUNTS:
    - discount is always the resolved amount (percentages are converted first)
    - total = subtotal - discount + tax
    - held bills carry paid/change/credit amounts of zero and never touch stock

    LIFECYCLE:
    held -> deleted, or resubmitted as a new completed bill
    completed -> partial_refund -> refunded
    """
    __tablename__ = "bills"
    __table_args__ = (
        db.Index("ix_bills_customer_created", "customer_id", "created_at"),
        db.Index("ix_bills_held_created", "is_held", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "INV-20261019-0007")
    bill_number = db.Column(db.String(64), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_type = db.Column(db.String(16), nullable=False, default="amount")
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)  # cash, card, credit, split
    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    change_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    credit_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=BILL_STATUS_COMPLETED, index=True)
    is_held = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("bills", lazy="dynamic"))
    items = db.relationship(
        "BillItem",
        backref="bill",
        lazy=True,
        order_by="BillItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Bill id={self.id} number={self.bill_number!r} status={self.status!r}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "bill_number": self.bill_number,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "subtotal": as_number(self.subtotal),
            "discount": as_number(self.discount),
            "discount_type": self.discount_type,
            "tax": as_number(self.tax),
            "total": as_number(self.total),
            "payment_method": self.payment_method,
            "paid_amount": as_number(self.paid_amount),
            "change_amount": as_number(self.change_amount),
            "credit_amount": as_number(self.credit_amount),
            "status": self.status,
            "is_held": self.is_held,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class BillItem(db.Model):
    """Line item snapshot; product_name is frozen at sale time."""
    __tablename__ = "bill_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_id": self.bill_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": as_number(self.quantity),
            "unit_price": as_number(self.unit_price),
            "discount": as_number(self.discount),
            "subtotal": as_number(self.subtotal),
            "created_at": to_utc_z(self.created_at),
        }


class BillRefund(db.Model):
    """
    Refunded quantity of one bill line.

    Summed per bill_item_id to cap later refunds at what was sold.
    credit_amount is the part of amount that lowered the customer's credit.
    """
    __tablename__ = "bill_refunds"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    bill_item_id = db.Column(db.Integer, db.ForeignKey("bill_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    credit_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    refund_method = db.Column(db.String(16), nullable=False)  # cash, credit

    reason = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_id": self.bill_id,
            "bill_item_id": self.bill_item_id,
            "product_id": self.product_id,
            "quantity": as_number(self.quantity),
            "amount": as_number(self.amount),
            "credit_amount": as_number(self.credit_amount),
            "refund_method": self.refund_method,
            "reason": self.reason,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class BillSequence(db.Model):
    """
    Per-day bill number counter.

    One row per business day (UTC, YYYYMMDD); next_number is the number the
    next bill of that day receives.
    """
    __tablename__ = "bill_sequences"
    __table_args__ = (
        db.UniqueConstraint("sequence_date", name="uq_bill_sequences_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sequence_date = db.Column(db.String(8), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)

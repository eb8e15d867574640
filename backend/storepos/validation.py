from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import ValidationError
from .models.inventory import MOVEMENT_TYPES
from .models.sales import DISCOUNT_TYPES, PAYMENT_METHODS, REFUND_METHODS
from .money import to_money, to_quantity


CREDIT_PAYMENT_METHODS = ("cash", "card")


@dataclass(frozen=True)
class PayloadPolicy:
    """
    Field allowlist for one operation's payload:
    - writable_fields: what callers may send (anything else is rejected)
    - required: fields that must be present and non-null
    """
    writable_fields: frozenset[str]
    required: frozenset[str] = frozenset()

    def check(self, payload: Any, label: str) -> dict:
        if not isinstance(payload, dict):
            raise ValidationError(f"{label} payload must be an object")
        unknown = sorted(set(payload) - self.writable_fields)
        if unknown:
            raise ValidationError(
                f"Unknown field(s) for {label}: {', '.join(unknown)}",
                details={"fields": unknown},
            )
        missing = sorted(f for f in self.required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(
                f"Missing required field(s) for {label}: {', '.join(missing)}",
                details={"fields": missing},
            )
        return payload


def _to_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    raise ValidationError(f"{field} must be an integer")


def _to_decimal(value: Any, field: str, *, default: Decimal | None = None) -> Decimal | None:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _choice(value: Any, field: str, allowed: tuple[str, ...], default: str | None = None) -> str:
    text = _to_text(value)
    if text is None:
        if default is None:
            raise ValidationError(f"{field} is required")
        return default
    text = text.lower()
    if text not in allowed:
        raise ValidationError(f"{field} must be one of {', '.join(allowed)}")
    return text


def _non_negative(value: Decimal, field: str) -> Decimal:
    if value < 0:
        raise ValidationError(f"{field} cannot be negative")
    return value


# =============================================================================
# SALE / HELD BILL PAYLOADS
# =============================================================================

LINE_POLICY = PayloadPolicy(
    writable_fields=frozenset({"product_id", "quantity", "unit_price", "discount", "product_name", "subtotal"}),
    required=frozenset({"product_id", "quantity", "unit_price"}),
)

SALE_POLICY = PayloadPolicy(
    writable_fields=frozenset({
        "customer_id", "user_id", "items", "discount", "discount_type", "tax",
        "payment_method", "paid_amount", "credit_amount", "notes",
        # Caller-computed figures are accepted but recomputed server-side.
        "subtotal", "total", "change_amount",
    }),
    required=frozenset({"user_id", "items", "payment_method"}),
)

HOLD_POLICY = PayloadPolicy(
    writable_fields=frozenset({
        "customer_id", "user_id", "items", "discount", "discount_type", "tax",
        "payment_method", "notes", "subtotal", "total",
    }),
    required=frozenset({"user_id", "items"}),
)


@dataclass(frozen=True)
class SaleLineInput:
    product_id: int
    quantity: Decimal
    unit_price: Decimal
    discount: Decimal = Decimal("0.00")

    @property
    def subtotal(self) -> Decimal:
        return to_money(self.quantity * self.unit_price - self.discount)

    @classmethod
    def from_payload(cls, payload: Any, index: int) -> "SaleLineInput":
        data = LINE_POLICY.check(payload, f"items[{index}]")
        quantity = to_quantity(_to_decimal(data.get("quantity"), f"items[{index}].quantity"))
        if quantity <= 0:
            raise ValidationError(f"items[{index}].quantity must be positive")
        unit_price = to_money(_non_negative(
            _to_decimal(data.get("unit_price"), f"items[{index}].unit_price"),
            f"items[{index}].unit_price",
        ))
        discount = to_money(_non_negative(
            _to_decimal(data.get("discount"), f"items[{index}].discount", default=Decimal("0")),
            f"items[{index}].discount",
        ))
        line = cls(
            product_id=_to_int(data.get("product_id"), f"items[{index}].product_id"),
            quantity=quantity,
            unit_price=unit_price,
            discount=discount,
        )
        if line.subtotal < 0:
            raise ValidationError(f"items[{index}].discount exceeds the line amount")
        return line


def _parse_lines(raw_items: Any) -> tuple[SaleLineInput, ...]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")
    return tuple(SaleLineInput.from_payload(item, i) for i, item in enumerate(raw_items))


@dataclass(frozen=True)
class CartInput:
    """Fields shared by sales and held bills."""
    user_id: int
    items: tuple[SaleLineInput, ...]
    customer_id: int | None = None
    discount: Decimal = Decimal("0.00")
    discount_type: str = "amount"
    tax: Decimal = Decimal("0.00")
    notes: str | None = None


def _cart_fields(data: dict) -> dict:
    discount_type = _choice(data.get("discount_type"), "discount_type", DISCOUNT_TYPES, default="amount")
    discount = _non_negative(_to_decimal(data.get("discount"), "discount", default=Decimal("0")), "discount")
    if discount_type == "percentage" and discount > 100:
        raise ValidationError("discount percentage cannot exceed 100")
    return {
        "user_id": _to_int(data.get("user_id"), "user_id"),
        "items": _parse_lines(data.get("items")),
        "customer_id": _to_int(data.get("customer_id"), "customer_id"),
        "discount": discount,
        "discount_type": discount_type,
        "tax": to_money(_non_negative(_to_decimal(data.get("tax"), "tax", default=Decimal("0")), "tax")),
        "notes": _to_text(data.get("notes")),
    }


@dataclass(frozen=True)
class SaleInput(CartInput):
    payment_method: str = "cash"
    paid_amount: Decimal = Decimal("0.00")
    credit_amount: Decimal = Decimal("0.00")

    @classmethod
    def from_payload(cls, payload: Any) -> "SaleInput":
        data = SALE_POLICY.check(payload, "sale")
        paid = _to_decimal(data.get("paid_amount"), "paid_amount", default=Decimal("0"))
        credit = _to_decimal(data.get("credit_amount"), "credit_amount", default=Decimal("0"))
        return cls(
            **_cart_fields(data),
            payment_method=_choice(data.get("payment_method"), "payment_method", PAYMENT_METHODS),
            paid_amount=to_money(_non_negative(paid, "paid_amount")),
            credit_amount=to_money(_non_negative(credit, "credit_amount")),
        )


@dataclass(frozen=True)
class HoldBillInput(CartInput):
    payment_method: str = "cash"

    @classmethod
    def from_payload(cls, payload: Any) -> "HoldBillInput":
        data = HOLD_POLICY.check(payload, "held bill")
        return cls(
            **_cart_fields(data),
            payment_method=_choice(data.get("payment_method"), "payment_method", PAYMENT_METHODS, default="cash"),
        )


# =============================================================================
# REFUND PAYLOAD
# =============================================================================

REFUND_POLICY = PayloadPolicy(
    writable_fields=frozenset({"user_id", "items", "refund_method", "reason"}),
    required=frozenset({"user_id"}),
)

REFUND_LINE_POLICY = PayloadPolicy(
    writable_fields=frozenset({"bill_item_id", "quantity"}),
    required=frozenset({"bill_item_id", "quantity"}),
)


@dataclass(frozen=True)
class RefundLineInput:
    bill_item_id: int
    quantity: Decimal


@dataclass(frozen=True)
class RefundInput:
    user_id: int
    items: tuple[RefundLineInput, ...] | None = None  # None: everything still refundable
    refund_method: str = "cash"
    reason: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "RefundInput":
        data = REFUND_POLICY.check(payload, "refund")
        raw_items = data.get("items")
        items = None
        if raw_items is not None:
            if not isinstance(raw_items, list) or not raw_items:
                raise ValidationError("items must be a non-empty list when given")
            parsed = []
            for i, raw in enumerate(raw_items):
                line = REFUND_LINE_POLICY.check(raw, f"items[{i}]")
                quantity = to_quantity(_to_decimal(line.get("quantity"), f"items[{i}].quantity"))
                if quantity <= 0:
                    raise ValidationError(f"items[{i}].quantity must be positive")
                parsed.append(RefundLineInput(
                    bill_item_id=_to_int(line.get("bill_item_id"), f"items[{i}].bill_item_id"),
                    quantity=quantity,
                ))
            items = tuple(parsed)
        return cls(
            user_id=_to_int(data.get("user_id"), "user_id"),
            items=items,
            refund_method=_choice(data.get("refund_method"), "refund_method", REFUND_METHODS, default="cash"),
            reason=_to_text(data.get("reason")),
        )


# =============================================================================
# CREDIT PAYMENT PAYLOAD
# =============================================================================

CREDIT_PAYMENT_POLICY = PayloadPolicy(
    writable_fields=frozenset({"customer_id", "bill_id", "amount", "payment_method", "user_id", "notes"}),
    required=frozenset({"customer_id", "amount", "payment_method", "user_id"}),
)


@dataclass(frozen=True)
class CreditPaymentInput:
    customer_id: int
    amount: Decimal
    payment_method: str
    user_id: int
    bill_id: int | None = None
    notes: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "CreditPaymentInput":
        data = CREDIT_PAYMENT_POLICY.check(payload, "credit payment")
        amount = to_money(_to_decimal(data.get("amount"), "amount"))
        if amount <= 0:
            raise ValidationError("amount must be positive")
        return cls(
            customer_id=_to_int(data.get("customer_id"), "customer_id"),
            amount=amount,
            payment_method=_choice(data.get("payment_method"), "payment_method", CREDIT_PAYMENT_METHODS),
            user_id=_to_int(data.get("user_id"), "user_id"),
            bill_id=_to_int(data.get("bill_id"), "bill_id"),
            notes=_to_text(data.get("notes")),
        )


# =============================================================================
# STOCK ADJUSTMENT PAYLOAD
# =============================================================================

STOCK_ADJUSTMENT_POLICY = PayloadPolicy(
    writable_fields=frozenset({"product_id", "delta", "type", "user_id", "reference_id", "reason"}),
    required=frozenset({"product_id", "delta", "type", "user_id"}),
)


@dataclass(frozen=True)
class StockAdjustmentInput:
    product_id: int
    delta: Decimal
    type: str
    user_id: int
    reference_id: int | None = None
    reason: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "StockAdjustmentInput":
        data = STOCK_ADJUSTMENT_POLICY.check(payload, "stock adjustment")
        delta = to_quantity(_to_decimal(data.get("delta"), "delta"))
        if delta == 0:
            raise ValidationError("delta must be non-zero")
        return cls(
            product_id=_to_int(data.get("product_id"), "product_id"),
            delta=delta,
            type=_choice(data.get("type"), "type", MOVEMENT_TYPES),
            user_id=_to_int(data.get("user_id"), "user_id"),
            reference_id=_to_int(data.get("reference_id"), "reference_id"),
            reason=_to_text(data.get("reason")),
        )


def parse_positive_id(value: Any, field: str) -> int:
    result = _to_int(value, field)
    if result is None or result <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return result


def parse_optional_id(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return parse_positive_id(value, field)

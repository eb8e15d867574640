from decimal import Decimal

import pytest

from storepos.errors import CreditLimitExceededError, NotFoundError, OverpaymentError, ValidationError
from storepos.extensions import db
from storepos.models import ActivityLog, CreditPayment, Customer
from storepos.services import billing_service, credit_service, payment_service
from storepos.validation import CreditPaymentInput, HoldBillInput, SaleInput


@pytest.fixture
def laptop(make_product):
    return make_product("SKU-LAPTOP", price="1000.00", stock="10")


def credit_sale(user, customer, product, qty=1, **extra):
    payload = {
        "user_id": user.id,
        "customer_id": customer.id,
        "items": [{"product_id": product.id, "quantity": qty, "unit_price": str(product.selling_price)}],
        "payment_method": "credit",
    }
    payload.update(extra)
    return billing_service.create_sale(SaleInput.from_payload(payload))


def test_credit_sale_then_partial_payment(db_session, cashier, customer, laptop):
    bill = credit_sale(cashier, customer, laptop)

    payment = payment_service.record_payment(
        customer_id=customer.id,
        amount=Decimal("400"),
        payment_method="cash",
        user_id=cashier.id,
        bill_id=bill.id,
    )

    db.session.refresh(customer)
    assert customer.credit_limit == Decimal("5000.00")
    assert customer.current_credit == Decimal("600.00")
    assert payment.amount == Decimal("400.00")
    assert payment.bill_id == bill.id
    assert [p.id for p in payment_service.list_payments(customer.id)] == [payment.id]

    result = credit_service.reconcile_credit(customer.id)
    assert result["balanced"] is True
    assert result["expected"] == Decimal("600.00")


def test_payment_records_activity(db_session, cashier, customer, laptop):
    credit_sale(cashier, customer, laptop)
    payment_service.record_payment(customer.id, Decimal("100"), "card", cashier.id)

    entry = db.session.query(ActivityLog).filter_by(action="credit.payment").one()
    assert entry.entity_id == customer.id
    assert "card" in entry.details


def test_overpayment_rejected_by_default(db_session, cashier, customer, laptop):
    credit_sale(cashier, customer, laptop)

    with pytest.raises(OverpaymentError):
        payment_service.record_payment(customer.id, Decimal("1000.01"), "cash", cashier.id)

    db.session.refresh(customer)
    assert customer.current_credit == Decimal("1000.00")
    assert db.session.query(CreditPayment).count() == 0


def test_overpayment_allowed_when_policy_off(app, db_session, cashier, customer, laptop):
    app.config["REJECT_CREDIT_OVERPAYMENT"] = False
    credit_sale(cashier, customer, laptop)

    payment_service.record_payment(customer.id, Decimal("1100"), "cash", cashier.id)

    db.session.refresh(customer)
    assert customer.current_credit == Decimal("-100.00")
    assert credit_service.reconcile_credit(customer.id)["balanced"] is True


@pytest.mark.parametrize("amount,method", [
    (Decimal("0"), "cash"),
    (Decimal("-5"), "cash"),
    (Decimal("10"), "credit"),
    (Decimal("10"), "cheque"),
])
def test_invalid_payment_rejected(db_session, cashier, customer, amount, method):
    with pytest.raises(ValidationError):
        payment_service.record_payment(customer.id, amount, method, cashier.id)


def test_payment_against_other_customers_bill(db_session, cashier, customer, laptop):
    other = Customer(name="Other", phone="9000000099", credit_limit=Decimal("5000"))
    db_session.add(other)
    db_session.commit()
    bill = credit_sale(cashier, other, laptop)
    credit_sale(cashier, customer, laptop)

    with pytest.raises(NotFoundError):
        payment_service.record_payment(customer.id, Decimal("10"), "cash", cashier.id, bill_id=bill.id)


def test_payment_for_unknown_customer(db_session, cashier):
    with pytest.raises(NotFoundError):
        payment_service.record_payment(99999, Decimal("10"), "cash", cashier.id)
    with pytest.raises(NotFoundError):
        payment_service.list_payments(99999)


def test_credit_limit_counts_existing_balance(db_session, cashier, customer, laptop):
    credit_sale(cashier, customer, laptop, qty=4)
    with pytest.raises(CreditLimitExceededError) as excinfo:
        credit_sale(cashier, customer, laptop, qty=2)
    assert excinfo.value.status_code == 409
    assert excinfo.value.details["requested"] == 2000.0

    db.session.refresh(customer)
    assert customer.current_credit == Decimal("4000.00")


def test_credit_limit_can_be_disabled(app, db_session, cashier, customer, laptop):
    app.config["ENFORCE_CREDIT_LIMIT"] = False
    customer.credit_limit = Decimal("100.00")
    db_session.commit()

    credit_sale(cashier, customer, laptop, qty=2)

    db.session.refresh(customer)
    assert customer.current_credit == Decimal("2000.00")


def test_credit_summary_lists_bills_and_payments(db_session, cashier, customer, laptop):
    first = credit_sale(cashier, customer, laptop)
    second = credit_sale(cashier, customer, laptop)
    payment_service.record_payment(customer.id, Decimal("250"), "cash", cashier.id)

    summary = credit_service.get_credit_summary(customer.id)

    assert summary["customer"].id == customer.id
    assert [b.id for b in summary["bills"]] == [second.id, first.id]
    assert [p.amount for p in summary["payments"]] == [Decimal("250.00")]


def test_reconcile_reports_drift(db_session, cashier, customer, laptop):
    credit_sale(cashier, customer, laptop)
    customer.current_credit = Decimal("999.00")
    db_session.commit()

    result = credit_service.reconcile_credit(customer.id)

    assert result["balanced"] is False
    assert result["expected"] == Decimal("1000.00")
    assert result["actual"] == Decimal("999.00")
    assert result["difference"] == Decimal("-1.00")


def test_held_bills_do_not_count_towards_credit(db_session, cashier, customer, laptop):
    credit_sale(cashier, customer, laptop)
    billing_service.hold_bill(HoldBillInput.from_payload({
        "user_id": cashier.id,
        "customer_id": customer.id,
        "items": [{"product_id": laptop.id, "quantity": 1, "unit_price": "1000.00"}],
        "payment_method": "credit",
    }))

    assert credit_service.reconcile_credit(customer.id)["expected"] == Decimal("1000.00")


@pytest.mark.parametrize("amount,points", [
    (Decimal("99.99"), 0),
    (Decimal("100"), 1),
    (Decimal("450"), 4),
    (Decimal("0"), 0),
])
def test_points_for_amount(app, amount, points):
    with app.app_context():
        assert credit_service.points_for_amount(amount) == points


def test_loyalty_balance_never_negative(db_session, customer):
    credit_service.add_loyalty_points(customer, 3)
    credit_service.add_loyalty_points(customer, -10)
    assert customer.loyalty_points == 0
    db_session.rollback()


def test_credit_payment_payload_parsing():
    data = CreditPaymentInput.from_payload({
        "customer_id": "3",
        "amount": "1000.005",
        "payment_method": "CARD",
        "user_id": 1,
    })
    assert data.customer_id == 3
    assert data.amount == Decimal("1000.01")
    assert data.payment_method == "card"
    assert data.bill_id is None

    with pytest.raises(ValidationError):
        CreditPaymentInput.from_payload({"customer_id": 3, "amount": "10", "payment_method": "cash"})

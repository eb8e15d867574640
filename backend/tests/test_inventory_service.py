from decimal import Decimal

import pytest

from storepos.errors import InsufficientStockError, NotFoundError, ValidationError
from storepos.extensions import db
from storepos.models import ActivityLog, Product, StockMovement
from storepos.services import inventory_service
from storepos.validation import StockAdjustmentInput


def test_purchase_adds_stock_and_logs_movement(db_session, cashier, products):
    a = products["A"]

    movement = inventory_service.adjust_stock(a.id, Decimal("5"), "purchase", cashier.id, reason="PO-17")

    assert movement.type == "purchase"
    assert movement.quantity == Decimal("5")
    assert movement.previous_stock == Decimal("10")
    assert movement.new_stock == Decimal("15")
    assert movement.reason == "PO-17"
    assert db.session.get(Product, a.id).current_stock == Decimal("15")

    entry = db.session.query(ActivityLog).filter_by(action="stock.purchase").one()
    assert entry.entity_id == a.id


def test_fractional_quantities(db_session, cashier, make_product):
    sugar = make_product("SKU-SUGAR", price="48.00", stock="12.5")

    inventory_service.adjust_stock(sugar.id, Decimal("-0.250"), "adjustment", cashier.id)

    assert db.session.get(Product, sugar.id).current_stock == Decimal("12.25")


def test_adjustment_cannot_go_negative(db_session, cashier, products):
    b = products["B"]

    with pytest.raises(InsufficientStockError) as excinfo:
        inventory_service.adjust_stock(b.id, Decimal("-6"), "adjustment", cashier.id)

    assert excinfo.value.details == {
        "product_id": b.id,
        "requested_quantity": 6.0,
        "current_stock": 5.0,
    }
    assert db.session.get(Product, b.id).current_stock == Decimal("5")
    assert db.session.query(StockMovement).count() == 0


def test_adjustment_can_go_negative_when_allowed(app, db_session, cashier, products):
    app.config["ALLOW_NEGATIVE_STOCK"] = True

    movement = inventory_service.adjust_stock(products["B"].id, Decimal("-6"), "adjustment", cashier.id)

    assert movement.new_stock == Decimal("-1")


@pytest.mark.parametrize("delta,movement_type", [
    (Decimal("0"), "adjustment"),
    (Decimal("1"), "shrinkage"),
])
def test_invalid_adjustments(db_session, cashier, products, delta, movement_type):
    with pytest.raises(ValidationError):
        inventory_service.adjust_stock(products["A"].id, delta, movement_type, cashier.id)


def test_adjust_unknown_product_or_user(db_session, cashier, products):
    with pytest.raises(NotFoundError):
        inventory_service.adjust_stock(99999, Decimal("1"), "purchase", cashier.id)
    with pytest.raises(NotFoundError):
        inventory_service.adjust_stock(products["A"].id, Decimal("1"), "purchase", 99999)


def test_movements_chain_and_list_newest_first(db_session, cashier, products):
    a = products["A"]
    inventory_service.adjust_stock(a.id, Decimal("5"), "purchase", cashier.id)
    inventory_service.adjust_stock(a.id, Decimal("-3"), "adjustment", cashier.id)
    inventory_service.adjust_stock(a.id, Decimal("2"), "transfer", cashier.id, reference_id=77)

    movements = inventory_service.list_stock_movements(a.id)

    assert [m.type for m in movements] == ["transfer", "adjustment", "purchase"]
    for newer, older in zip(movements, movements[1:]):
        assert newer.previous_stock == older.new_stock
    for m in movements:
        assert m.new_stock == m.previous_stock + m.quantity
    assert movements[0].reference_id == 77
    assert len(inventory_service.list_stock_movements(a.id, limit=2)) == 2


def test_movements_are_append_only(db_session, cashier, products):
    movement = inventory_service.adjust_stock(products["A"].id, Decimal("1"), "purchase", cashier.id)

    movement.reason = "rewritten"
    with pytest.raises(ValueError):
        db_session.flush()
    db_session.rollback()

    db_session.delete(db.session.get(StockMovement, movement.id))
    with pytest.raises(ValueError):
        db_session.flush()
    db_session.rollback()


def test_low_stock(db_session, make_product):
    make_product("SKU-OK", stock="10", reorder="5")
    at_level = make_product("SKU-EDGE", stock="5", reorder="5")
    below = make_product("SKU-LOW", stock="1", reorder="5")
    make_product("SKU-GONE", stock="0", reorder="5", is_active=False)

    low = inventory_service.get_low_stock()

    assert [p.id for p in low] == [below.id, at_level.id]


def test_stock_adjustment_payload():
    data = StockAdjustmentInput.from_payload({
        "product_id": 4,
        "delta": "-1.5",
        "type": "Adjustment",
        "user_id": "2",
    })
    assert data.delta == Decimal("-1.500")
    assert data.type == "adjustment"
    assert data.user_id == 2

    with pytest.raises(ValidationError):
        StockAdjustmentInput.from_payload({"product_id": 4, "delta": 1, "type": "purchase", "user_id": 1, "sku": "X"})

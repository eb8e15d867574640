"""
Concurrency tests for the billing engine.

Each worker thread runs in its own app context against a shared file-backed
SQLite database, so writers contend for the same lock as real registers do.
"""
import os
import tempfile
import threading
import unittest
from decimal import Decimal

from storepos import create_app
from storepos.errors import InsufficientStockError
from storepos.extensions import db
from storepos.models import Bill, Customer, Product, StockMovement, User
from storepos.services import billing_service, credit_service, payment_service
from storepos.validation import SaleInput


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
            "DB_RETRY_ATTEMPTS": 10,
            "DB_RETRY_BACKOFF": 0.01,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            user = User(username="concurrent_user", full_name="Concurrent User")
            db.session.add(user)
            db.session.commit()
            self.user_id = user.id

            last_unit = Product(
                sku="LAST-1",
                name="Last Unit",
                selling_price=Decimal("100.00"),
                current_stock=Decimal("1"),
            )
            plenty = Product(
                sku="PLENTY-1",
                name="Plenty",
                selling_price=Decimal("10.00"),
                current_stock=Decimal("1000"),
            )
            customer = Customer(
                name="Concurrent Customer",
                phone="9000000777",
                credit_limit=Decimal("100000.00"),
            )
            db.session.add_all([last_unit, plenty, customer])
            db.session.commit()
            self.last_unit_id = last_unit.id
            self.plenty_id = plenty.id
            self.customer_id = customer.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _sale(self, product_id, price, qty=1, **extra):
        payload = {
            "user_id": self.user_id,
            "items": [{"product_id": product_id, "quantity": qty, "unit_price": price}],
            "payment_method": "cash",
            "paid_amount": price,
        }
        payload.update(extra)
        return SaleInput.from_payload(payload)

    def _run_workers(self, target, count):
        results = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    outcome = target()
                    with lock:
                        results.append(outcome)
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_last_unit_sold_once(self):
        def buy():
            return billing_service.create_sale(self._sale(self.last_unit_id, "100.00")).bill_number

        results = self._run_workers(buy, 2)

        sold = [r for r in results if isinstance(r, str)]
        rejected = [r for r in results if isinstance(r, InsufficientStockError)]
        self.assertEqual(len(sold), 1, results)
        self.assertEqual(len(rejected), 1, results)

        with self.app.app_context():
            product = db.session.get(Product, self.last_unit_id)
            self.assertEqual(product.current_stock, Decimal("0"))
            self.assertEqual(db.session.query(Bill).count(), 1)
            self.assertEqual(
                db.session.query(StockMovement).filter_by(product_id=self.last_unit_id).count(), 1
            )

    def test_bill_numbers_unique_under_contention(self):
        def buy():
            return billing_service.create_sale(self._sale(self.plenty_id, "10.00")).bill_number

        results = self._run_workers(buy, 10)

        errors = [r for r in results if isinstance(r, Exception)]
        self.assertFalse(errors, errors)
        self.assertEqual(len(results), len(set(results)))

        with self.app.app_context():
            product = db.session.get(Product, self.plenty_id)
            self.assertEqual(product.current_stock, Decimal("990"))
            movements = (
                db.session.query(StockMovement)
                .filter_by(product_id=self.plenty_id)
                .order_by(StockMovement.id)
                .all()
            )
            self.assertEqual(len(movements), 10)
            for earlier, later in zip(movements, movements[1:]):
                self.assertEqual(later.previous_stock, earlier.new_stock)

    def test_concurrent_credit_sales_and_payments_reconcile(self):
        with self.app.app_context():
            billing_service.create_sale(self._sale(
                self.plenty_id, "10.00", qty=100,
                customer_id=self.customer_id, payment_method="credit", paid_amount=0,
            ))

        def credit_buy():
            return billing_service.create_sale(self._sale(
                self.plenty_id, "10.00", qty=5,
                customer_id=self.customer_id, payment_method="credit", paid_amount=0,
            ))

        def pay():
            return payment_service.record_payment(self.customer_id, Decimal("50"), "cash", self.user_id)

        results = []
        results += self._run_workers(credit_buy, 4)
        results += self._run_workers(pay, 4)

        errors = [r for r in results if isinstance(r, Exception)]
        self.assertFalse(errors, errors)

        with self.app.app_context():
            customer = db.session.get(Customer, self.customer_id)
            self.assertEqual(customer.current_credit, Decimal("1000.00"))
            self.assertTrue(credit_service.reconcile_credit(self.customer_id)["balanced"])


if __name__ == "__main__":
    unittest.main()

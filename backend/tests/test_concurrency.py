# Overview: Threaded concurrency tests for invoicing and reference generation.

"""
Concurrency tests against a file-backed SQLite database.

Each worker thread runs in its own app context (and therefore its own
session), the way concurrent requests would.
"""

import os
import tempfile
import threading
import unittest

from orderflow import create_app
from orderflow.extensions import db
from orderflow.models import Account, Customer, Invoice, Order
from orderflow.services.workflow_service import get_coordinator


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "TRANSACTION_RETRY_ATTEMPTS": 5,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            account = Account(name="Concurrency Account")
            db.session.add(account)
            db.session.commit()
            self.account_id = account.id

            customer = Customer(account_id=self.account_id, email="concurrent@example.com")
            db.session.add(customer)
            db.session.commit()
            self.customer_id = customer.id

            coordinator = get_coordinator()
            order = coordinator.create_order(
                self.account_id,
                self.customer_id,
                lines=[
                    {"name": "Widget", "quantity": 2, "unit_price": "15.00"},
                    {"name": "Gadget", "quantity": 4, "unit_price": "3.00"},
                ],
            ).unwrap()
            coordinator.validate_order(order).unwrap()
            self.order_id = order.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def test_concurrent_invoice_order_creates_one_invoice(self):
        results = []
        lock = threading.Lock()
        start = threading.Barrier(2)

        def worker():
            with self.app.app_context():
                try:
                    start.wait()
                    result = get_coordinator().invoice_order(self.order_id)
                    with lock:
                        results.append(result)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(results), 2)
        successes = [r for r in results if r.ok]
        failures = [r for r in results if not r.ok]
        self.assertEqual(len(successes), 1)
        self.assertEqual(len(failures), 1)
        self.assertIn(failures[0].error.code, {"invalid_state", "concurrency_conflict"})

        with self.app.app_context():
            self.assertEqual(db.session.query(Invoice).filter_by(order_id=self.order_id).count(), 1)
            self.assertEqual(db.session.get(Order, self.order_id).status, "invoiced")

    def test_concurrent_order_references_are_unique(self):
        created = []
        errors = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    result = get_coordinator().create_order(self.account_id, self.customer_id)
                    with lock:
                        if result.ok:
                            created.append(result.value.reference)
                        else:
                            errors.append(result.error)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertFalse(errors)
        self.assertEqual(len(created), 10)
        self.assertEqual(len(created), len(set(created)))

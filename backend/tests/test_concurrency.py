"""
Concurrency tests against a file-backed SQLite database.

Verifies:
- Concurrent export approvals never oversell and keep stock == sum(ledger)
- Two approvers racing on one request execute its side effects once
- Invoice numbers stay unique under concurrent approvals
"""

import threading
from decimal import Decimal

import pytest

from tradebook import create_app
from tradebook.extensions import db
from tradebook.models import ApprovalRequest, InventoryTransaction, Invoice, Product
from tradebook.services import approval_service, inventory_service
from tradebook.services.concurrency import run_with_retry
from tradebook.services.unit_of_work import ExecutionContext, run_in_tx


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'concurrency.db'}",
        "TX_RETRY_ATTEMPTS": 12,
        "TX_RETRY_BACKOFF_SECONDS": 0.005,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()
    app.extensions["stock_events"].shutdown()


def _seed_export_orders(app, stock, order_count):
    """One product with `stock` units and `order_count` pending EXPORT orders of 1 unit each."""
    with app.app_context():
        product = Product(sku="CONCUR-1", name="Concurrent Product", price=Decimal("10.00"), current_stock=0)
        db.session.add(product)
        db.session.commit()
        product_id = product.id

        ctx = ExecutionContext()
        run_in_tx(ctx, lambda tx: inventory_service.adjust_stock(tx, product_id, stock))

        approval_ids = []
        for n in range(order_count):
            _, request = inventory_service.create_order(
                ctx, f"EXP-{n}", "EXPORT", [{"product_id": product_id, "quantity": 1}],
            )
            approval_ids.append(request.id)
        db.session.remove()
    return product_id, approval_ids


def _run_approvers(app, approval_ids):
    results = []
    lock = threading.Lock()

    def worker(approval_id):
        with app.app_context():
            try:
                run_with_retry(
                    lambda: approval_service.approve_request(ExecutionContext(), approval_id, None),
                    attempts=app.config["TX_RETRY_ATTEMPTS"],
                    backoff_base=app.config["TX_RETRY_BACKOFF_SECONDS"],
                )
                outcome = "approved"
            except Exception as exc:
                outcome = type(exc).__name__
            finally:
                db.session.remove()
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker, args=(approval_id,)) for approval_id in approval_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(60)
    return results


class TestConcurrentApprovals:
    def test_concurrent_exports_never_oversell(self, file_app):
        product_id, approval_ids = _seed_export_orders(file_app, stock=5, order_count=8)

        results = _run_approvers(file_app, approval_ids)

        assert len(results) == 8
        # Every lost attempt is another writer's lock or commit, so the
        # retries outlast contention and the stock alone decides.
        assert results.count("approved") == 5
        assert results.count("InsufficientStock") == 3

        with file_app.app_context():
            product = db.session.get(Product, product_id)
            entries = db.session.query(InventoryTransaction).filter_by(product_id=product_id).all()
            invoices = db.session.query(Invoice).all()
            approved_requests = db.session.query(ApprovalRequest).filter_by(status="APPROVED").count()

            assert product.current_stock == 0
            assert sum(e.quantity_changed for e in entries) == product.current_stock
            assert all(e.stock_after >= 0 for e in entries)
            assert len(invoices) == approved_requests == 5
            assert len({i.invoice_no for i in invoices}) == len(invoices)
            db.session.remove()

    def test_racing_approvers_execute_once(self, file_app):
        product_id, (approval_id,) = _seed_export_orders(file_app, stock=5, order_count=1)

        results = _run_approvers(file_app, [approval_id, approval_id])

        assert results.count("approved") == 1
        assert set(results) <= {"approved", "AlreadyResolved"}

        with file_app.app_context():
            assert db.session.get(Product, product_id).current_stock == 4
            assert db.session.query(Invoice).count() == 1
            assert db.session.query(InventoryTransaction).filter(
                InventoryTransaction.order_id.isnot(None)
            ).count() == 1
            db.session.remove()

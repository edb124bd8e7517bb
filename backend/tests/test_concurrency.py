# Overview: Pytest coverage for concurrent stock writers on a shared database.

"""
Concurrency Tests

Two app contexts on two threads share one file-backed SQLite database, so
each thread has its own session and connection. Writers serialize on the
database write lock; the loser of a race for the last unit must see the
winner's debit.
"""

import threading
from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from retailcore import create_app
from retailcore.extensions import db
from retailcore.exceptions import ConcurrencyConflictError, InsufficientStockError
from retailcore.models import Product, User, Client, PaymentMethod, Sale, StockAlert
from retailcore.services import alert_service, catalog_service, ledger_service, sales_service
from retailcore.services.concurrency import run_with_retry


@pytest.fixture
def file_app(tmp_path):
    db_path = tmp_path / "race.sqlite3"
    app = create_app(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{db_path}",
        SQLALCHEMY_ENGINE_OPTIONS={"connect_args": {"check_same_thread": False, "timeout": 30}},
        CLOCK=lambda: datetime(2026, 1, 15, 10, 0, 0),
        LEDGER_RETRY_BACKOFF=0.01,
        LEDGER_RETRY_ATTEMPTS=5,
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _seed(app, stock: int):
    with app.app_context():
        user = User(username="cashier")
        customer = Client(name="Walk-in")
        cash = PaymentMethod(name="CASH")
        db.session.add_all([user, customer, cash])
        db.session.commit()
        product = catalog_service.create_product(sku="LAST-1", name="Last unit", price_cents=500, min_stock=0)
        ledger_service.register_inbound(product.id, stock, user.id, "Opening stock")
        return product.id, user.id, customer.id, cash.id


def _run_concurrently(app, count: int, work):
    barrier = threading.Barrier(count)
    results = [None] * count

    def runner(index):
        with app.app_context():
            barrier.wait()
            try:
                results[index] = work(index)
            except Exception as e:
                results[index] = e
            finally:
                db.session.remove()

    threads = [threading.Thread(target=runner, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


def test_two_sales_of_last_unit(file_app):
    product_id, user_id, client_id, cash_id = _seed(file_app, stock=1)

    def sell(_):
        sale = sales_service.register_sale(client_id, user_id, cash_id, [{"product_id": product_id, "quantity": 1}])
        return sale.id

    results = _run_concurrently(file_app, 2, sell)

    successes = [r for r in results if isinstance(r, int)]
    failures = [r for r in results if isinstance(r, InsufficientStockError)]
    assert len(successes) == 1, results
    assert len(failures) == 1, results

    with file_app.app_context():
        assert db.session.get(Product, product_id).quantity_on_hand == 0
        assert db.session.query(Sale).count() == 1
        assert ledger_service.verify_chain(product_id)["consistent"] is True


def test_parallel_inbound_movements_keep_chain(file_app):
    product_id, user_id, _, _ = _seed(file_app, stock=3)

    def receive(_):
        return ledger_service.register_inbound(product_id, 1, user_id, "Parallel delivery").id

    results = _run_concurrently(file_app, 6, receive)

    assert all(isinstance(r, int) for r in results), results
    with file_app.app_context():
        report = ledger_service.verify_chain(product_id)
        assert report["quantity_on_hand"] == 9
        assert report["consistent"] is True
        assert report["movement_count"] == 7


def test_parallel_manual_alerts_leave_one_unread_per_kind(file_app):
    with file_app.app_context():
        user = User(username="buyer")
        db.session.add(user)
        db.session.commit()
        product_ids = [
            catalog_service.create_product(sku=f"REO-{i}", name=f"Reorder {i}", price_cents=100, min_stock=0).id
            for i in range(5)
        ]

    def raise_all(_):
        return [alert_service.raise_alert(product_id, "REORDER").id for product_id in product_ids]

    results = _run_concurrently(file_app, 6, raise_all)

    assert all(isinstance(r, list) for r in results), results
    with file_app.app_context():
        for product_id in product_ids:
            unread = (
                db.session.query(StockAlert)
                .filter_by(product_id=product_id, kind="REORDER", is_read=False)
                .all()
            )
            assert len(unread) == 1, product_id
        # Every caller got the same open alert back
        assert len({tuple(r) for r in results}) == 1


def test_parallel_reads_keep_first_reader(file_app):
    with file_app.app_context():
        readers = [User(username=f"reader-{i}") for i in range(4)]
        db.session.add_all(readers)
        db.session.commit()
        reader_ids = [u.id for u in readers]
        product = catalog_service.create_product(sku="READ-1", name="Read race", price_cents=100, min_stock=0)
        alert_id = alert_service.raise_alert(product.id, "EXCESS").id

    def read(index):
        return alert_service.mark_read(alert_id, reader_ids[index]).read_by_user_id

    results = _run_concurrently(file_app, 4, read)

    with file_app.app_context():
        stored = db.session.get(StockAlert, alert_id).read_by_user_id
    assert stored in reader_ids
    assert results == [stored] * 4


class TestRunWithRetry:

    def test_persistent_conflict_surfaces_after_configured_attempts(self, app, make_product):
        product = make_product(stock=5, min_stock=0)
        calls = []

        def work():
            calls.append(1)
            db.session.get(Product, product.id).quantity_on_hand = 99
            db.session.flush()
            raise StaleDataError("version mismatch on products")

        with pytest.raises(ConcurrencyConflictError) as exc:
            run_with_retry(work)

        assert len(calls) == app.config["LEDGER_RETRY_ATTEMPTS"]
        assert exc.value.details == {
            "attempts": app.config["LEDGER_RETRY_ATTEMPTS"],
            "cause": "StaleDataError",
        }
        db.session.expire_all()
        assert db.session.get(Product, product.id).quantity_on_hand == 5

    def test_locked_database_is_retried_until_attempts_run_out(self, app):
        calls = []

        def work():
            calls.append(1)
            raise OperationalError("UPDATE products", {}, Exception("database is locked"))

        with pytest.raises(ConcurrencyConflictError):
            run_with_retry(work, attempts=2)

        assert len(calls) == 2

    def test_single_conflict_then_success_returns_result(self, app):
        calls = []

        def work():
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("UPDATE products", {}, Exception("database is locked"))
            return "done"

        assert run_with_retry(work) == "done"
        assert len(calls) == 2

    def test_other_errors_are_not_retried(self, app):
        calls = []

        def work():
            calls.append(1)
            raise InsufficientStockError("not enough", details={})

        with pytest.raises(InsufficientStockError):
            run_with_retry(work)

        assert len(calls) == 1

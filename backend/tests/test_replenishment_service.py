# Overview: Pytest coverage for replenishment orders and receipts.

import pytest

from retailcore.extensions import db
from retailcore.exceptions import IllegalTransitionError, InvalidQuantityError, NotFoundError
from retailcore.models import Product, StockMovement
from retailcore.services import replenishment_service
from retailcore.validation import ValidationError


def _qoh(product_id: int) -> int:
    db.session.expire_all()
    return db.session.get(Product, product_id).quantity_on_hand


@pytest.fixture
def ordered(make_product, supplier, user, manager):
    """An ORDERED replenishment of 20 units of one product."""
    product = make_product(stock=5, min_stock=0)
    order = replenishment_service.create_order(
        supplier.id, user.id, [{"product_id": product.id, "quantity": 20, "unit_cost_cents": 300}]
    )
    replenishment_service.approve_order(order.id, manager.id)
    replenishment_service.mark_ordered(order.id, manager.id)
    return order, product


class TestCreateOrder:

    def test_create_computes_code_and_estimate(self, make_product, supplier, user):
        a = make_product(stock=0)
        b = make_product(stock=0)

        order = replenishment_service.create_order(
            supplier.id, user.id,
            [
                {"product_id": a.id, "quantity": 10, "unit_cost_cents": 250},
                {"product_id": b.id, "quantity": 4},
                {"product_id": a.id, "quantity": 2},
            ],
            priority="high",
        )

        assert order.code == "RP-20260115-00001"
        assert order.status == "PENDING"
        assert order.priority == "HIGH"
        assert [(l.product_id, l.quantity_requested) for l in order.lines] == [(a.id, 12), (b.id, 4)]
        assert order.estimated_total_cents == 3000

    def test_unknown_priority(self, make_product, supplier, user):
        product = make_product()
        with pytest.raises(ValidationError):
            replenishment_service.create_order(supplier.id, user.id, [{"product_id": product.id, "quantity": 1}], priority="ASAP")

    def test_unknown_supplier(self, make_product, user):
        product = make_product()
        with pytest.raises(NotFoundError):
            replenishment_service.create_order(9999, user.id, [{"product_id": product.id, "quantity": 1}])

    def test_zero_quantity(self, make_product, supplier, user):
        product = make_product()
        with pytest.raises(InvalidQuantityError):
            replenishment_service.create_order(supplier.id, user.id, [{"product_id": product.id, "quantity": 0}])


class TestReceive:

    def test_scenario_e_partial_then_complete(self, ordered, user):
        order, product = ordered

        partial = replenishment_service.receive(order.id, user.id, [{"product_id": product.id, "quantity": 12}])
        assert partial.status == "PARTIALLY_RECEIVED"
        assert _qoh(product.id) == 17

        done = replenishment_service.receive(order.id, user.id, [{"product_id": product.id, "quantity": 8}])
        assert done.status == "COMPLETED"
        assert done.completed_at is not None
        assert _qoh(product.id) == 25

        movements = db.session.query(StockMovement).filter_by(reference=f"replenishment:{order.code}").all()
        assert sorted(m.quantity_delta for m in movements) == [8, 12]

    def test_receive_by_line_id(self, ordered, user):
        order, product = ordered
        line_id = replenishment_service.get_order(order.id).lines[0].id

        done = replenishment_service.receive(order.id, user.id, [{"line_id": line_id, "quantity": 20}])

        assert done.status == "COMPLETED"
        assert _qoh(product.id) == 25

    def test_over_receipt_is_rejected(self, ordered, user):
        order, product = ordered
        replenishment_service.receive(order.id, user.id, [{"product_id": product.id, "quantity": 15}])

        with pytest.raises(InvalidQuantityError) as exc:
            replenishment_service.receive(order.id, user.id, [{"product_id": product.id, "quantity": 6}])

        assert exc.value.details["outstanding"] == 5
        assert _qoh(product.id) == 20

    def test_receipts_in_one_call_are_summed(self, ordered, user):
        order, product = ordered

        with pytest.raises(InvalidQuantityError):
            replenishment_service.receive(
                order.id, user.id,
                [{"product_id": product.id, "quantity": 15}, {"product_id": product.id, "quantity": 6}],
            )
        assert _qoh(product.id) == 5

    def test_cannot_receive_before_ordered(self, make_product, supplier, user):
        product = make_product()
        order = replenishment_service.create_order(supplier.id, user.id, [{"product_id": product.id, "quantity": 5}])

        with pytest.raises(IllegalTransitionError):
            replenishment_service.receive(order.id, user.id, [{"product_id": product.id, "quantity": 5}])

    def test_receipt_for_product_not_on_order(self, ordered, make_product, user):
        order, _ = ordered
        other = make_product()

        with pytest.raises(NotFoundError):
            replenishment_service.receive(order.id, user.id, [{"product_id": other.id, "quantity": 1}])


class TestLifecycle:

    def test_cannot_skip_approval(self, make_product, supplier, user):
        product = make_product()
        order = replenishment_service.create_order(supplier.id, user.id, [{"product_id": product.id, "quantity": 5}])

        with pytest.raises(IllegalTransitionError):
            replenishment_service.mark_ordered(order.id, user.id)

    def test_cancel_keeps_received_stock(self, ordered, user, manager):
        order, product = ordered
        replenishment_service.receive(order.id, user.id, [{"product_id": product.id, "quantity": 7}])

        cancelled = replenishment_service.cancel_order(order.id, manager.id, "Supplier out of stock")

        assert cancelled.status == "CANCELLED"
        assert cancelled.cancel_reason == "Supplier out of stock"
        assert _qoh(product.id) == 12

        with pytest.raises(IllegalTransitionError):
            replenishment_service.cancel_order(order.id, manager.id, "again")

    def test_close_partial(self, ordered, user, manager):
        order, product = ordered
        replenishment_service.receive(order.id, user.id, [{"product_id": product.id, "quantity": 18}])

        closed = replenishment_service.close_partial(order.id, manager.id, "Last 2 discontinued")

        assert closed.status == "COMPLETED"
        assert closed.close_reason == "Last 2 discontinued"

    def test_close_partial_requires_a_receipt(self, ordered, manager):
        order, _ = ordered

        with pytest.raises(IllegalTransitionError):
            replenishment_service.close_partial(order.id, manager.id, "nothing came")

    def test_close_partial_requires_reason(self, ordered, manager):
        order, _ = ordered
        with pytest.raises(ValidationError):
            replenishment_service.close_partial(order.id, manager.id, "")


class TestQueries:

    def test_pending_receipt_and_urgent(self, ordered, make_product, supplier, user, manager, clock):
        order, _ = ordered
        product = make_product()
        clock.advance(minutes=1)
        high = replenishment_service.create_order(supplier.id, user.id, [{"product_id": product.id, "quantity": 1}], priority="HIGH")
        clock.advance(minutes=1)
        urgent = replenishment_service.create_order(supplier.id, user.id, [{"product_id": product.id, "quantity": 1}], priority="URGENT")
        clock.advance(minutes=1)
        done = replenishment_service.create_order(supplier.id, user.id, [{"product_id": product.id, "quantity": 1}], priority="URGENT")
        replenishment_service.cancel_order(done.id, manager.id, "dup")

        assert [o.id for o in replenishment_service.list_pending_receipt()] == [order.id]
        assert [o.id for o in replenishment_service.list_urgent()] == [urgent.id, high.id]

    def test_search_by_status(self, ordered):
        order, _ = ordered
        page = replenishment_service.search_orders(status="ORDERED")
        assert [o.id for o in page.items] == [order.id]

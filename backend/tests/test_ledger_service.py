# Overview: Pytest coverage for the stock ledger.

"""
Stock Ledger Tests

Covers the single write path for on-hand quantity:
- Signed deltas per movement kind, ADJUSTMENT as an explicit target
- Rejections happen before any write (no movement, quantity unchanged)
- Traceability order and the before/after chain
"""

import pytest

from retailcore.extensions import db
from retailcore.exceptions import InvalidQuantityError, InsufficientStockError, NotFoundError
from retailcore.models import Product, StockMovement, StockAlert
from retailcore.models.inventory import (
    MOVEMENT_INBOUND,
    MOVEMENT_OUTBOUND,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN_CREDIT,
)
from retailcore.services import ledger_service


def _qoh(product_id: int) -> int:
    db.session.expire_all()
    return db.session.get(Product, product_id).quantity_on_hand


def _movement_count(product_id: int) -> int:
    return db.session.query(StockMovement).filter_by(product_id=product_id).count()


class TestApplyMovement:

    def test_inbound_records_before_and_after(self, make_product, user):
        product = make_product(stock=10)

        movement = ledger_service.apply_movement(product.id, MOVEMENT_INBOUND, 5, user.id, "Delivery")

        assert movement.quantity_before == 10
        assert movement.quantity_after == 15
        assert movement.quantity_delta == 5
        assert movement.actor_user_id == user.id
        assert _qoh(product.id) == 15

    def test_outbound_is_negative_delta(self, make_product, user):
        product = make_product(stock=10)

        movement = ledger_service.apply_movement(product.id, MOVEMENT_OUTBOUND, -4, user.id)

        assert movement.quantity_delta == -4
        assert _qoh(product.id) == 6

    def test_outbound_below_zero_raises_insufficient_stock(self, make_product, user):
        product = make_product(stock=3)
        before = _movement_count(product.id)

        with pytest.raises(InsufficientStockError) as exc:
            ledger_service.apply_movement(product.id, MOVEMENT_OUTBOUND, -4, user.id)

        assert exc.value.details["on_hand"] == 3
        assert exc.value.details["requested_quantity"] == 4
        assert exc.value.details["product_id"] == product.id
        assert _qoh(product.id) == 3
        assert _movement_count(product.id) == before

    def test_adjustment_sets_target_quantity(self, make_product, user):
        product = make_product(stock=10)

        movement = ledger_service.register_adjustment(product.id, 7, user.id, "Cycle count")

        assert movement.kind == MOVEMENT_ADJUSTMENT
        assert movement.quantity_delta == -3
        assert movement.quantity_after == 7
        assert _qoh(product.id) == 7

    def test_adjustment_can_raise_stock(self, make_product, user):
        product = make_product(stock=2)

        movement = ledger_service.register_adjustment(product.id, 9, user.id)

        assert movement.quantity_delta == 7
        assert _qoh(product.id) == 9

    def test_adjustment_to_current_quantity_is_rejected(self, make_product, user):
        product = make_product(stock=5)

        with pytest.raises(InvalidQuantityError):
            ledger_service.register_adjustment(product.id, 5, user.id)

    def test_negative_adjustment_target_is_rejected(self, make_product, user):
        product = make_product(stock=5)

        with pytest.raises(InvalidQuantityError):
            ledger_service.register_adjustment(product.id, -1, user.id)
        assert _qoh(product.id) == 5

    @pytest.mark.parametrize("kind,quantity", [
        (MOVEMENT_INBOUND, 0),
        (MOVEMENT_INBOUND, -2),
        (MOVEMENT_OUTBOUND, 3),
        (MOVEMENT_RETURN_CREDIT, -1),
    ])
    def test_wrong_sign_or_zero_is_rejected(self, make_product, user, kind, quantity):
        product = make_product(stock=5)
        before = _movement_count(product.id)

        with pytest.raises(InvalidQuantityError):
            ledger_service.apply_movement(product.id, kind, quantity, user.id)

        assert _movement_count(product.id) == before
        assert _qoh(product.id) == 5

    def test_unknown_kind_is_rejected(self, make_product, user):
        product = make_product(stock=5)

        with pytest.raises(InvalidQuantityError):
            ledger_service.apply_movement(product.id, "TRANSFER", 1, user.id)

    def test_unknown_product_raises_not_found(self, user):
        with pytest.raises(NotFoundError):
            ledger_service.apply_movement(9999, MOVEMENT_INBOUND, 1, user.id)

    def test_unknown_actor_raises_not_found(self, make_product):
        product = make_product(stock=5)

        with pytest.raises(NotFoundError):
            ledger_service.apply_movement(product.id, MOVEMENT_INBOUND, 1, 9999)
        assert _qoh(product.id) == 5

    def test_inactive_product_still_accepts_movements(self, make_product, user):
        from retailcore.services import catalog_service

        product = make_product(stock=5)
        catalog_service.set_product_active(product.id, False)

        ledger_service.register_inbound(product.id, 2, user.id)
        assert _qoh(product.id) == 7

    def test_reference_is_stored(self, make_product, user):
        product = make_product(stock=5)

        movement = ledger_service.apply_movement(
            product.id, MOVEMENT_OUTBOUND, -1, user.id, "Sale", reference="sale:V-20260115-00001"
        )
        assert movement.reference == "sale:V-20260115-00001"


class TestAlertingHook:

    def test_movement_into_low_band_raises_alert(self, make_product, user):
        product = make_product(stock=10, min_stock=3)

        ledger_service.apply_movement(product.id, MOVEMENT_OUTBOUND, -8, user.id)

        alerts = db.session.query(StockAlert).filter_by(product_id=product.id).all()
        assert len(alerts) == 1
        assert alerts[0].kind == "LOW_STOCK"
        assert alerts[0].stock_at_alert == 2

    def test_alert_failure_does_not_undo_stock(self, make_product, user, monkeypatch):
        product = make_product(stock=10, min_stock=3)

        from retailcore.services import alert_service

        def boom(*args, **kwargs):
            raise RuntimeError("alert store unavailable")

        monkeypatch.setattr(alert_service, "evaluate", boom)

        movement = ledger_service.apply_movement(product.id, MOVEMENT_OUTBOUND, -9, user.id)

        assert movement.quantity_after == 1
        assert _qoh(product.id) == 1
        assert db.session.query(StockAlert).count() == 0


class TestTraceability:

    def test_history_is_ordered_and_chained(self, make_product, user, clock):
        product = make_product(stock=10)
        clock.advance(minutes=5)
        ledger_service.apply_movement(product.id, MOVEMENT_OUTBOUND, -3, user.id)
        clock.advance(minutes=5)
        ledger_service.register_adjustment(product.id, 4, user.id)
        clock.advance(minutes=5)
        ledger_service.register_inbound(product.id, 6, user.id)

        history = ledger_service.get_traceability(product.id)

        assert [m.kind for m in history] == [
            MOVEMENT_INBOUND, MOVEMENT_OUTBOUND, MOVEMENT_ADJUSTMENT, MOVEMENT_INBOUND
        ]
        for previous, current in zip(history, history[1:]):
            assert current.quantity_before == previous.quantity_after
        assert history[-1].quantity_after == _qoh(product.id) == 10

    def test_same_timestamp_orders_by_id(self, make_product, user):
        product = make_product(stock=10)
        ledger_service.apply_movement(product.id, MOVEMENT_OUTBOUND, -1, user.id)
        ledger_service.apply_movement(product.id, MOVEMENT_OUTBOUND, -1, user.id)

        ids = [m.id for m in ledger_service.get_traceability(product.id)]
        assert ids == sorted(ids)

    def test_verify_chain_reports_consistent_history(self, make_product, user):
        product = make_product(stock=10)
        ledger_service.apply_movement(product.id, MOVEMENT_OUTBOUND, -4, user.id)

        report = ledger_service.verify_chain(product.id)

        assert report["consistent"] is True
        assert report["replayed_quantity"] == 6
        assert report["movement_count"] == 2

    def test_verify_chain_detects_out_of_band_quantity_change(self, make_product, user):
        product = make_product(stock=10)
        db.session.get(Product, product.id).quantity_on_hand = 50
        db.session.commit()

        report = ledger_service.verify_chain(product.id)

        assert report["consistent"] is False
        assert report["replayed_quantity"] == 10
        assert report["quantity_on_hand"] == 50

    def test_movement_totals(self, make_product, user, clock):
        product = make_product(stock=10)
        ledger_service.apply_movement(product.id, MOVEMENT_OUTBOUND, -4, user.id)
        ledger_service.apply_movement(product.id, MOVEMENT_RETURN_CREDIT, 1, user.id)

        totals = ledger_service.get_movement_totals(product.id)

        assert totals["inbound_units"] == 11
        assert totals["outbound_units"] == 4
        assert totals["net_units"] == 7
        assert totals["movement_count"] == 3

    def test_search_movements_filters_by_kind(self, make_product, user):
        product = make_product(stock=10)
        ledger_service.apply_movement(product.id, MOVEMENT_OUTBOUND, -1, user.id)
        ledger_service.apply_movement(product.id, MOVEMENT_OUTBOUND, -1, user.id)

        page = ledger_service.search_movements(product_id=product.id, kind=MOVEMENT_OUTBOUND)

        assert page.total == 2
        assert all(m.kind == MOVEMENT_OUTBOUND for m in page.items)

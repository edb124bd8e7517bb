# Overview: Pytest coverage for the HTTP surface (status codes and JSON errors).

from retailcore.extensions import db
from retailcore.models import Product


def _qoh(product_id: int) -> int:
    db.session.expire_all()
    return db.session.get(Product, product_id).quantity_on_hand


class TestActorHeader:

    def test_missing_header_is_401(self, client, make_product):
        product = make_product(stock=5)
        response = client.post('/api/inventory/inbound', json={'product_id': product.id, 'quantity': 1})
        assert response.status_code == 401

    def test_unknown_user_is_404(self, client, make_product):
        product = make_product(stock=5)
        response = client.post(
            '/api/inventory/inbound',
            json={'product_id': product.id, 'quantity': 1},
            headers={'X-User-Id': '9999'},
        )
        assert response.status_code == 404
        assert response.json['code'] == 'NOT_FOUND'


class TestInventoryRoutes:

    def test_inbound_and_traceability(self, client, make_product, actor_headers):
        product = make_product(stock=5)

        response = client.post(
            '/api/inventory/inbound',
            json={'product_id': product.id, 'quantity': 4, 'note': 'Delivery'},
            headers=actor_headers,
        )
        assert response.status_code == 201
        assert response.json['movement']['quantity_after'] == 9

        history = client.get(f'/api/inventory/products/{product.id}/movements')
        assert [m['quantity_delta'] for m in history.json['movements']] == [5, 4]

    def test_adjustment_to_negative_target_is_422(self, client, make_product, admin_headers):
        product = make_product(stock=5)

        response = client.post(
            '/api/inventory/adjustments',
            json={'product_id': product.id, 'target_quantity': -1},
            headers=admin_headers,
        )
        assert response.status_code == 422
        assert response.json['code'] == 'INVALID_QUANTITY'

    def test_adjustment_by_admin(self, client, make_product, admin_headers):
        product = make_product(stock=5)

        response = client.post(
            '/api/inventory/adjustments',
            json={'product_id': product.id, 'target_quantity': 3, 'note': 'Cycle count'},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json['movement']['quantity_delta'] == -2
        assert _qoh(product.id) == 3

    def test_adjustment_by_non_admin_is_403(self, client, make_product, actor_headers):
        product = make_product(stock=5)

        response = client.post(
            '/api/inventory/adjustments',
            json={'product_id': product.id, 'target_quantity': 3},
            headers=actor_headers,
        )
        assert response.status_code == 403
        assert response.json['code'] == 'ADMIN_REQUIRED'
        assert _qoh(product.id) == 5

    def test_decimal_quantity_is_400(self, client, make_product, actor_headers):
        product = make_product(stock=5)

        response = client.post(
            '/api/inventory/inbound',
            json={'product_id': product.id, 'quantity': 2.5},
            headers=actor_headers,
        )
        assert response.status_code == 400
        assert response.json['code'] == 'VALIDATION_ERROR'

    def test_verify_and_totals(self, client, make_product):
        product = make_product(stock=5)

        assert client.get(f'/api/inventory/products/{product.id}/verify').json['consistent'] is True
        assert client.get(f'/api/inventory/products/{product.id}/totals').json['inbound_units'] == 5

    def test_unknown_product_is_404(self, client):
        response = client.get('/api/inventory/products/9999')
        assert response.status_code == 404
        assert response.json['details'] == {'entity': 'Product', 'id': 9999}


class TestSalesRoutes:

    def _sale_body(self, customer, cash, product, quantity):
        return {
            'client_id': customer.id,
            'payment_method_id': cash.id,
            'lines': [{'product_id': product.id, 'quantity': quantity}],
        }

    def test_register_and_void(self, client, make_product, customer, cash, actor_headers):
        product = make_product(stock=10, min_stock=3)

        created = client.post('/api/sales/', json=self._sale_body(customer, cash, product, 8), headers=actor_headers)
        assert created.status_code == 201
        sale = created.json['sale']
        assert sale['status'] == 'PAID'
        assert len(sale['lines']) == 1
        assert _qoh(product.id) == 2

        unread = client.get('/api/alerts/unread').json
        assert unread['total'] == 1
        assert unread['items'][0]['kind'] == 'LOW_STOCK'

        assert client.get(f"/api/sales/{sale['id']}/can-void").json['can_void'] is True

        voided = client.post(f"/api/sales/{sale['id']}/void", json={'reason': 'Wrong item'}, headers=actor_headers)
        assert voided.status_code == 200
        assert voided.json['sale']['status'] == 'VOIDED'
        assert _qoh(product.id) == 10

        again = client.post(f"/api/sales/{sale['id']}/void", json={'reason': 'Again'}, headers=actor_headers)
        assert again.status_code == 409
        assert again.json['code'] == 'ILLEGAL_TRANSITION'

    def test_insufficient_stock_is_409_with_items(self, client, make_product, customer, cash, actor_headers):
        product = make_product(stock=1)

        response = client.post('/api/sales/', json=self._sale_body(customer, cash, product, 2), headers=actor_headers)

        assert response.status_code == 409
        assert response.json['code'] == 'INSUFFICIENT_STOCK'
        assert response.json['details']['items'][0]['on_hand'] == 1

    def test_void_out_of_window_is_422(self, client, make_product, customer, cash, actor_headers, clock):
        product = make_product(stock=5)
        sale = client.post('/api/sales/', json=self._sale_body(customer, cash, product, 1), headers=actor_headers).json['sale']
        clock.advance(days=2)

        response = client.post(f"/api/sales/{sale['id']}/void", json={'reason': 'late'}, headers=actor_headers)
        assert response.status_code == 422
        assert response.json['code'] == 'OUT_OF_WINDOW'

    def test_missing_lines_is_400(self, client, customer, cash, actor_headers):
        response = client.post(
            '/api/sales/', json={'client_id': customer.id, 'payment_method_id': cash.id}, headers=actor_headers
        )
        assert response.status_code == 400

    def test_search_paging(self, client, make_product, customer, cash, actor_headers):
        product = make_product(stock=10)
        for _ in range(3):
            client.post('/api/sales/', json=self._sale_body(customer, cash, product, 1), headers=actor_headers)

        page = client.get('/api/sales/?per_page=2&page=2').json
        assert page['total'] == 3
        assert page['page'] == 2
        assert len(page['items']) == 1

        capped = client.get('/api/sales/?per_page=1000').json
        assert capped['per_page'] == 100


class TestReturnAndReplenishmentRoutes:

    def test_return_flow(self, client, make_product, customer, cash, actor_headers):
        product = make_product(stock=10, min_stock=0)
        sale = client.post('/api/sales/', json={
            'client_id': customer.id,
            'payment_method_id': cash.id,
            'lines': [{'product_id': product.id, 'quantity': 5}],
        }, headers=actor_headers).json['sale']

        created = client.post('/api/returns/', json={
            'sale_id': sale['id'],
            'motive': 'Defective',
            'lines': [{'product_id': product.id, 'quantity': 3}],
        }, headers=actor_headers)
        assert created.status_code == 201
        return_id = created.json['return']['id']

        assert client.post(f'/api/returns/{return_id}/complete', headers=actor_headers).status_code == 409
        assert client.post(f'/api/returns/{return_id}/approve', headers=actor_headers).status_code == 200
        completed = client.post(f'/api/returns/{return_id}/complete', headers=actor_headers)
        assert completed.json['return']['status'] == 'COMPLETED'
        assert _qoh(product.id) == 8

        too_many = client.post('/api/returns/', json={
            'sale_id': sale['id'],
            'lines': [{'product_id': product.id, 'quantity': 3}],
        }, headers=actor_headers)
        assert too_many.status_code == 422
        assert too_many.json['details']['already_returned'] == 3

        info = client.get(f"/api/returns/sale/{sale['id']}").json
        assert info['window_remaining_days'] == 30
        assert info['within_window'] is True
        assert len(info['returns']) == 1

        returnable = client.get(
            f"/api/returns/sale/{sale['id']}/returnable",
            query_string={'product_id': product.id, 'quantity': 2},
        ).json
        assert returnable['returnable'] is True
        assert client.get(
            f"/api/returns/sale/{sale['id']}/returnable",
            query_string={'product_id': product.id, 'quantity': 3},
        ).json['returnable'] is False

    def test_window_route_on_last_day_and_after(self, client, make_product, customer, cash, actor_headers, clock):
        product = make_product(stock=10)
        sale = client.post('/api/sales/', json={
            'client_id': customer.id,
            'payment_method_id': cash.id,
            'lines': [{'product_id': product.id, 'quantity': 1}],
        }, headers=actor_headers).json['sale']

        clock.advance(days=29, hours=12)
        last_day = client.get(f"/api/returns/sale/{sale['id']}/window").json
        assert last_day == {
            'sale_id': sale['id'],
            'within_window': True,
            'deadline': '2026-02-14T10:00:00Z',
            'remaining_days': 0,
        }

        clock.advance(days=1)
        closed = client.get(f"/api/returns/sale/{sale['id']}/window").json
        assert closed['within_window'] is False
        assert closed['remaining_days'] == 0

        assert client.get('/api/returns/sale/9999/window').status_code == 404

    def test_returnable_requires_quantity(self, client):
        response = client.get('/api/returns/sale/1/returnable', query_string={'product_id': 1})
        assert response.status_code == 400

    def test_replenishment_flow(self, client, make_product, supplier, actor_headers):
        product = make_product(stock=0, min_stock=0)

        order = client.post('/api/replenishments/', json={
            'supplier_id': supplier.id,
            'priority': 'URGENT',
            'lines': [{'product_id': product.id, 'quantity': 20, 'unit_cost_cents': 100}],
        }, headers=actor_headers).json['order']
        assert order['code'].startswith('RP-')

        for step in ('approve', 'order'):
            assert client.post(f"/api/replenishments/{order['id']}/{step}", headers=actor_headers).status_code == 200

        partial = client.post(f"/api/replenishments/{order['id']}/receive", json={
            'receipts': [{'product_id': product.id, 'quantity': 12}],
        }, headers=actor_headers)
        assert partial.json['order']['status'] == 'PARTIALLY_RECEIVED'

        over = client.post(f"/api/replenishments/{order['id']}/receive", json={
            'receipts': [{'product_id': product.id, 'quantity': 9}],
        }, headers=actor_headers)
        assert over.status_code == 422

        done = client.post(f"/api/replenishments/{order['id']}/receive", json={
            'receipts': [{'product_id': product.id, 'quantity': 8}],
        }, headers=actor_headers)
        assert done.json['order']['status'] == 'COMPLETED'
        assert _qoh(product.id) == 20


class TestAlertRoutes:

    def test_raise_read_and_count(self, client, make_product, actor_headers):
        product = make_product(stock=10)

        raised = client.post('/api/alerts/', json={'product_id': product.id, 'kind': 'reorder'}, headers=actor_headers)
        assert raised.status_code == 201
        alert_id = raised.json['alert']['id']
        assert client.get('/api/alerts/counts').json['unread']['HIGH'] == 1

        read = client.post(f'/api/alerts/{alert_id}/read', headers=actor_headers)
        assert read.json['alert']['is_read'] is True
        assert client.get('/api/alerts/counts').json['unread']['HIGH'] == 0

        missing = client.post('/api/alerts/9999/read', headers=actor_headers)
        assert missing.status_code == 404


def test_health(client):
    response = client.get('/api/health')
    assert response.status_code == 200
    assert response.json['checks']['database']['status'] == 'healthy'

from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from storefront import activity, orders
from storefront.errors import EmptyCartError
from storefront.models import ActivityLog, Address, Cart, CartItem, Order, OrderItem, Product, User, db


def _counts(app):
    with app.app_context():
        return {
            'addresses': Address.query.count(),
            'orders': Order.query.count(),
            'order_items': OrderItem.query.count(),
        }


def _stock(app, product_id):
    with app.app_context():
        return db.session.get(Product, product_id).stock_quantity


def _cart_item_count(app, email='alice@example.com'):
    with app.app_context():
        user = User.query.filter_by(email=email).one()
        return CartItem.query.join(Cart).filter(Cart.user_id == user.id).count()


def test_checkout_creates_order_and_decrements_stock(app, client, user_headers, make_product,
                                                      add_to_cart, checkout):
    product_id = make_product(price='10.00', stock=5)
    assert add_to_cart(user_headers, product_id, 3).status_code == 200

    resp = checkout(user_headers)

    assert resp.status_code == 201
    body = resp.get_json()
    assert body['code'] == 'ORDER_CREATED'
    order = body['order']
    assert order['totalAmount'] == '30.00'
    assert order['status'] == 'pending'
    assert order['paymentMethod'] == 'card'
    assert order['paymentInfo'] == {'last4': '4242'}
    assert len(order['items']) == 1
    assert order['items'][0]['price'] == '10.00'
    assert order['items'][0]['quantity'] == 3
    assert order['items'][0]['product']['id'] == product_id
    assert order['address']['addressLine1'] == '1 Main Street'
    assert order['address']['isDefault'] is False

    assert _stock(app, product_id) == 2
    assert _cart_item_count(app) == 0


def test_total_is_sum_of_snapshot_prices(client, user_headers, make_product, add_to_cart, checkout):
    first = make_product(name='Lamp', price='10.00', stock=5)
    second = make_product(name='Bulb', price='2.50', stock=10)
    add_to_cart(user_headers, first, 3)
    add_to_cart(user_headers, second, 2)

    order = checkout(user_headers).get_json()['order']

    expected = sum(Decimal(i['price']) * i['quantity'] for i in order['items'])
    assert Decimal(order['totalAmount']) == expected == Decimal('35.00')


def test_order_item_price_is_frozen_after_product_price_change(client, user_headers, admin_headers,
                                                                make_product, add_to_cart, checkout):
    product_id = make_product(price='10.00', stock=5)
    add_to_cart(user_headers, product_id, 3)
    order_id = checkout(user_headers).get_json()['order']['id']

    resp = client.put(f'/api/admin/products/{product_id}', headers=admin_headers, json={'price': '99.99'})
    assert resp.status_code == 200

    order = client.get(f'/api/orders/{order_id}', headers=user_headers).get_json()
    assert order['totalAmount'] == '30.00'
    assert order['items'][0]['price'] == '10.00'
    assert order['items'][0]['product']['price'] == '99.99'


def test_empty_cart_is_rejected_without_side_effects(app, client, user_headers, checkout):
    resp = checkout(user_headers)

    assert resp.status_code == 400
    assert resp.get_json()['code'] == 'EMPTY_CART'
    assert _counts(app) == {'addresses': 0, 'orders': 0, 'order_items': 0}


def test_cart_emptied_by_previous_checkout_is_rejected(client, user_headers, make_product,
                                                       add_to_cart, checkout):
    product_id = make_product(stock=5)
    add_to_cart(user_headers, product_id, 1)
    assert checkout(user_headers).status_code == 201

    resp = checkout(user_headers)
    assert resp.status_code == 400
    assert resp.get_json()['code'] == 'EMPTY_CART'


def test_stock_drop_after_add_to_cart_rolls_back(app, client, user_headers, make_product,
                                                 add_to_cart, checkout):
    product_id = make_product(stock=5)
    add_to_cart(user_headers, product_id, 3)
    with app.app_context():
        db.session.get(Product, product_id).stock_quantity = 2
        db.session.commit()

    resp = checkout(user_headers)

    assert resp.status_code == 400
    body = resp.get_json()
    assert body['code'] == 'INSUFFICIENT_STOCK'
    assert body['available'] == 2
    assert _counts(app) == {'addresses': 0, 'orders': 0, 'order_items': 0}
    assert _stock(app, product_id) == 2
    assert _cart_item_count(app) == 1


def test_last_unit_can_only_be_sold_once(app, client, register_user, make_product, add_to_cart, checkout):
    product_id = make_product(stock=1)
    alice = register_user('alice@example.com')
    bob = register_user('bob@example.com')
    # both carts pass the add-to-cart stock check
    assert add_to_cart(alice, product_id, 1).status_code == 200
    assert add_to_cart(bob, product_id, 1).status_code == 200

    assert checkout(alice).status_code == 201
    resp = checkout(bob)

    assert resp.status_code == 400
    assert resp.get_json()['code'] == 'INSUFFICIENT_STOCK'
    assert _stock(app, product_id) == 0
    assert _counts(app)['orders'] == 1


def test_persistence_failure_rolls_back_everything(app, client, user_headers, make_product,
                                                   add_to_cart, checkout, monkeypatch):
    product_id = make_product(stock=5)
    add_to_cart(user_headers, product_id, 3)

    def broken_clear_cart(session, cart):
        raise SQLAlchemyError('constraint users_secret_column violated')

    monkeypatch.setattr(orders, '_clear_cart', broken_clear_cart)
    resp = checkout(user_headers)

    assert resp.status_code == 500
    body = resp.get_json()
    assert body == {'message': 'Failed to create order', 'code': 'ORDER_CREATION_FAILED'}
    assert 'users_secret_column' not in resp.get_data(as_text=True)
    assert _counts(app) == {'addresses': 0, 'orders': 0, 'order_items': 0}
    assert _stock(app, product_id) == 5
    assert _cart_item_count(app) == 1


def test_activity_log_failure_does_not_fail_order(app, client, user_headers, make_product,
                                                  add_to_cart, checkout, monkeypatch):
    product_id = make_product(stock=5)
    add_to_cart(user_headers, product_id, 1)

    real_log = activity.ActivityLog

    def broken_log(**kwargs):
        kwargs['action'] = None
        return real_log(**kwargs)

    monkeypatch.setattr(activity, 'ActivityLog', broken_log)
    resp = checkout(user_headers)

    assert resp.status_code == 201
    assert _counts(app)['orders'] == 1
    with app.app_context():
        assert ActivityLog.query.filter_by(action='create_order').count() == 0


def test_checkout_records_activity(app, client, user_headers, make_product, add_to_cart, checkout):
    product_id = make_product(price='4.00', stock=5)
    add_to_cart(user_headers, product_id, 2)
    order_id = checkout(user_headers).get_json()['order']['id']

    with app.app_context():
        entry = ActivityLog.query.filter_by(action='create_order').one()
        assert entry.entity_type == 'order'
        assert entry.entity_id == order_id
        assert entry.details == {'orderId': order_id, 'totalAmount': '8.00', 'itemCount': 1}


def test_missing_shipping_fields_are_rejected(app, client, user_headers, make_product,
                                              add_to_cart, checkout):
    product_id = make_product(stock=5)
    add_to_cart(user_headers, product_id, 1)

    resp = checkout(user_headers, shippingInfo={'name': 'Alice'})

    assert resp.status_code == 400
    body = resp.get_json()
    assert body['code'] == 'VALIDATION_ERROR'
    assert 'addressLine1' in body['fields']
    assert _counts(app)['orders'] == 0
    assert _cart_item_count(app) == 1


def test_checkout_requires_authentication(client, checkout):
    resp = checkout({})
    assert resp.status_code == 401
    assert resp.get_json()['code'] == 'NO_TOKEN'


def test_user_sees_only_own_orders(client, register_user, make_product, add_to_cart, checkout):
    product_id = make_product(stock=10)
    alice = register_user('alice@example.com')
    bob = register_user('bob@example.com')
    add_to_cart(alice, product_id, 1)
    order_id = checkout(alice).get_json()['order']['id']

    assert [o['id'] for o in client.get('/api/orders', headers=alice).get_json()] == [order_id]
    assert client.get('/api/orders', headers=bob).get_json() == []

    resp = client.get(f'/api/orders/{order_id}', headers=bob)
    assert resp.status_code == 404
    assert resp.get_json()['code'] == 'ORDER_NOT_FOUND'


def test_place_order_directly(app, user_headers, make_product, add_to_cart, shipping_info):
    product_id = make_product(price='7.25', stock=4)
    add_to_cart(user_headers, product_id, 4)

    with app.test_request_context():
        user = User.query.filter_by(email='alice@example.com').one()
        order = orders.place_order(user.id, 'cash', None, shipping_info)

        assert order.total_amount == Decimal('29.00')
        assert [(i.product_id, i.quantity, i.price) for i in order.items] == [(product_id, 4, Decimal('7.25'))]
        assert order.address.user_id == user.id
        assert db.session.get(Product, product_id).stock_quantity == 0


def test_place_order_with_no_cart_raises(app, user_headers, shipping_info):
    with app.test_request_context():
        user = User.query.filter_by(email='alice@example.com').one()
        with pytest.raises(EmptyCartError) as excinfo:
            orders.place_order(user.id, None, None, shipping_info)
    assert excinfo.value.status_code == 400
    assert _counts(app)['addresses'] == 0


def test_product_made_unavailable_after_add_to_cart_is_rejected(app, client, user_headers, admin_headers,
                                                                 make_product, add_to_cart, checkout):
    product_id = make_product(stock=5)
    add_to_cart(user_headers, product_id, 2)
    resp = client.put(f'/api/admin/products/{product_id}', headers=admin_headers, json={'isAvailable': False})
    assert resp.status_code == 200

    resp = checkout(user_headers)

    assert resp.status_code == 400
    assert resp.get_json()['code'] == 'INSUFFICIENT_STOCK'
    assert _counts(app) == {'addresses': 0, 'orders': 0, 'order_items': 0}
    assert _stock(app, product_id) == 5
    assert _cart_item_count(app) == 1


def test_stock_decrement_is_guarded_in_sql(app, client, user_headers, make_product, add_to_cart,
                                           checkout, monkeypatch):
    product_id = make_product(stock=5)
    add_to_cart(user_headers, product_id, 3)
    with app.app_context():
        db.session.get(Product, product_id).stock_quantity = 1
        db.session.commit()
    # stale read: the in-memory check passes, the UPDATE must still refuse
    monkeypatch.setattr(orders, '_check_stock', lambda cart_items, products: None)

    resp = checkout(user_headers)

    assert resp.status_code == 400
    body = resp.get_json()
    assert body['code'] == 'INSUFFICIENT_STOCK'
    assert body['available'] == 1
    assert _counts(app) == {'addresses': 0, 'orders': 0, 'order_items': 0}
    assert _stock(app, product_id) == 1
    assert _cart_item_count(app) == 1

from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from storefront import create_app
from storefront.models import Category, Product, User, db


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SECRET_KEY': 'test-secret',
        'JWT_SECRET': 'test-jwt-secret',
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def register_user(client):
    def _register(email, password='secret123', username=None):
        resp = client.post('/api/auth/register', json={
            'username': username or email.split('@')[0],
            'email': email,
            'password': password,
        })
        assert resp.status_code == 201, resp.get_json()
        return {'Authorization': f"Bearer {resp.get_json()['token']}"}
    return _register


@pytest.fixture
def user_headers(register_user):
    return register_user('alice@example.com')


@pytest.fixture
def admin_headers(app, client):
    with app.app_context():
        db.session.add(User(
            username='admin',
            email='admin@example.com',
            password_hash=generate_password_hash('adminpass'),
            role='admin',
        ))
        db.session.commit()
    resp = client.post('/api/auth/login', json={'email': 'admin@example.com', 'password': 'adminpass'})
    assert resp.status_code == 200
    return {'Authorization': f"Bearer {resp.get_json()['token']}"}


@pytest.fixture
def make_category(app):
    def _make(name='Gadgets', display_order=0):
        with app.app_context():
            category = Category(name=name, display_order=display_order)
            db.session.add(category)
            db.session.commit()
            return category.id
    return _make


@pytest.fixture
def make_product(app):
    def _make(name='Widget', price='10.00', stock=5, available=True, category_id=None):
        with app.app_context():
            product = Product(
                name=name,
                price=Decimal(price),
                stock_quantity=stock,
                is_available=available,
                category_id=category_id,
            )
            db.session.add(product)
            db.session.commit()
            return product.id
    return _make


@pytest.fixture
def shipping_info():
    return {
        'name': 'Alice Doe',
        'addressLine1': '1 Main Street',
        'city': 'Springfield',
        'state': 'IL',
        'postalCode': '62701',
        'country': 'US',
        'phone': '555-0100',
    }


@pytest.fixture
def add_to_cart(client):
    def _add(headers, product_id, quantity=1):
        return client.post('/api/cart/items', headers=headers,
                           json={'productId': product_id, 'quantity': quantity})
    return _add


@pytest.fixture
def checkout(client, shipping_info):
    def _checkout(headers, **overrides):
        body = {
            'paymentMethod': 'card',
            'paymentInfo': {'last4': '4242'},
            'shippingInfo': shipping_info,
        }
        body.update(overrides)
        return client.post('/api/orders', headers=headers, json=body)
    return _checkout

import logging
from decimal import Decimal

from flask import Blueprint, g, jsonify
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload, selectinload

from .activity import record_activity
from .addresses import REQUIRED_ADDRESS_FIELDS, build_address
from .auth import login_required
from .errors import EmptyCartError, InsufficientStockError, NotFound, OrderCreationError, ValidationError
from .models import Cart, CartItem, Order, OrderItem, Product, unit_of_work
from .serializers import money, serialize_order
from .validators import get_json, require_fields

logger = logging.getLogger(__name__)

orders_bp = Blueprint('orders', __name__, url_prefix='/api/orders')


def order_query():
    return Order.query.options(
        selectinload(Order.items).joinedload(OrderItem.product),
        joinedload(Order.address),
    )


def load_order(order_id, user_id=None):
    query = order_query().filter(Order.id == order_id)
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    return query.populate_existing().first()


def _lock_products(session, product_ids):
    # SELECT ... FOR UPDATE, in id order so concurrent checkouts lock alike
    products = (session.query(Product)
                .filter(Product.id.in_(product_ids))
                .order_by(Product.id)
                .with_for_update()
                .populate_existing()
                .all())
    return {p.id: p for p in products}


def _check_stock(cart_items, products):
    for item in cart_items:
        product = products.get(item.product_id)
        available = product.stock_quantity if product is not None and product.is_available else 0
        if available < item.quantity:
            raise InsufficientStockError(
                'Requested quantity exceeds available stock',
                productId=item.product_id,
                available=available,
            )


def _decrement_stock(session, product, quantity):
    # relative UPDATE guarded in SQL, so a stale read cannot oversell
    updated = (session.query(Product)
               .filter(Product.id == product.id, Product.stock_quantity >= quantity)
               .update({Product.stock_quantity: Product.stock_quantity - quantity},
                       synchronize_session=False))
    session.expire(product, ['stock_quantity'])
    if updated != 1:
        raise InsufficientStockError(
            'Requested quantity exceeds available stock',
            productId=product.id,
            available=product.stock_quantity,
        )


def _clear_cart(session, cart):
    session.query(CartItem).filter(CartItem.cart_id == cart.id).delete(synchronize_session='fetch')


def _persist_order(session, user_id, cart, payment_method, payment_info, shipping_info):
    address = build_address(user_id, shipping_info, is_default=False)
    session.add(address)

    products = _lock_products(session, sorted({item.product_id for item in cart.items}))
    _check_stock(cart.items, products)

    total_amount = sum(
        (products[item.product_id].price * item.quantity for item in cart.items),
        Decimal('0.00'),
    )
    order = Order(
        user_id=user_id,
        address=address,
        total_amount=total_amount,
        status='pending',
        payment_method=payment_method,
        payment_info=payment_info,
    )
    for item in cart.items:
        order.items.append(OrderItem(
            product_id=item.product_id,
            quantity=item.quantity,
            price=products[item.product_id].price,
        ))
    session.add(order)

    for item in cart.items:
        _decrement_stock(session, products[item.product_id], item.quantity)

    _clear_cart(session, cart)
    session.flush()
    return order


def place_order(user_id, payment_method=None, payment_info=None, shipping_info=None):
    """Turn the user's cart into an order, all or nothing.

    Address, order, order items, stock decrements and the emptied cart are
    written in one transaction. Products are locked and re-checked for stock
    inside it; a shortfall raises ``InsufficientStockError`` and any database
    failure raises ``OrderCreationError``, both after a full rollback.
    The activity entry is written only after the commit and never fails
    the order.
    """
    cart = (Cart.query
            .options(selectinload(Cart.items).joinedload(CartItem.product))
            .filter_by(user_id=user_id)
            .populate_existing()
            .first())
    if cart is None or not cart.items:
        raise EmptyCartError()

    try:
        with unit_of_work() as session:
            order = _persist_order(session, user_id, cart, payment_method,
                                   payment_info, shipping_info or {})
            order_id = order.id
            total_amount = order.total_amount
            item_count = len(order.items)
    except InsufficientStockError:
        logger.info('Checkout for user %s rejected: insufficient stock', user_id)
        raise
    except SQLAlchemyError:
        logger.exception('Order creation failed for user %s, transaction rolled back', user_id)
        raise OrderCreationError()

    logger.info('Created order %s for user %s (%d items, total %s)',
                order_id, user_id, item_count, money(total_amount))
    record_activity(user_id, 'create_order', 'order', order_id, {
        'orderId': order_id,
        'totalAmount': money(total_amount),
        'itemCount': item_count,
    })
    return load_order(order_id)


@orders_bp.route('', methods=['POST'])
@login_required
def create_order():
    data = get_json()
    shipping_info = data.get('shippingInfo')
    if not isinstance(shipping_info, dict):
        raise ValidationError('shippingInfo is required', fields=['shippingInfo'])
    require_fields(shipping_info, REQUIRED_ADDRESS_FIELDS)
    payment_method = data.get('paymentMethod')
    if payment_method is not None and not isinstance(payment_method, str):
        raise ValidationError('paymentMethod must be a string', fields=['paymentMethod'])

    order = place_order(
        g.current_user.id,
        payment_method=payment_method,
        payment_info=data.get('paymentInfo'),
        shipping_info=shipping_info,
    )
    return jsonify(message='Order created successfully', code='ORDER_CREATED',
                   order=serialize_order(order)), 201


@orders_bp.route('', methods=['GET'])
@login_required
def list_orders():
    orders = (order_query()
              .filter(Order.user_id == g.current_user.id)
              .order_by(Order.created_at.desc(), Order.id.desc())
              .all())
    return jsonify([serialize_order(o) for o in orders])


@orders_bp.route('/<int:order_id>', methods=['GET'])
@login_required
def get_order(order_id):
    order = load_order(order_id, user_id=g.current_user.id)
    if order is None:
        raise NotFound('Order not found', code='ORDER_NOT_FOUND')
    return jsonify(serialize_order(order))

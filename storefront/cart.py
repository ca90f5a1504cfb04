import logging

from flask import Blueprint, g, jsonify
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload, selectinload

from .activity import record_activity
from .auth import login_required
from .errors import InsufficientStockError, NotFound, ValidationError
from .models import Cart, CartItem, Product, db
from .serializers import serialize_cart, serialize_cart_item
from .validators import get_json, parse_int

logger = logging.getLogger(__name__)

cart_bp = Blueprint('cart', __name__, url_prefix='/api/cart')


def _find_cart(user_id):
    return Cart.query.filter_by(user_id=user_id).first()


def get_or_create_cart(user_id):
    cart = _find_cart(user_id)
    if cart is not None:
        return cart
    cart = Cart(user_id=user_id)
    db.session.add(cart)
    try:
        db.session.commit()
    except IntegrityError:
        # another request created it first; carts.user_id is unique
        db.session.rollback()
        return Cart.query.filter_by(user_id=user_id).one()
    logger.info('Created cart %s for user %s', cart.id, user_id)
    return cart


def load_cart(cart_id):
    return (Cart.query
            .options(selectinload(Cart.items).joinedload(CartItem.product))
            .filter_by(id=cart_id)
            .populate_existing()
            .one())


def add_to_cart(user_id, product_id, quantity=1):
    """Add ``quantity`` of a product to the user's cart.

    The cumulative quantity in the cart may never exceed the product's
    current stock. Returns the created or updated cart item.
    """
    if product_id is None or quantity is None:
        raise ValidationError('Invalid input', code='INVALID_INPUT',
                              details={'productId': product_id is None, 'quantity': quantity is None})
    product_id = parse_int(product_id, 'productId', minimum=1, code='INVALID_INPUT')
    quantity = parse_int(quantity, 'quantity', minimum=1, code='INVALID_INPUT')

    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound('Product not found', code='PRODUCT_NOT_FOUND')
    if not product.is_available or product.stock_quantity < quantity:
        raise InsufficientStockError(available=product.stock_quantity)

    cart = get_or_create_cart(user_id)
    item = CartItem.query.filter_by(cart_id=cart.id, product_id=product.id).first()
    if item is not None:
        new_quantity = item.quantity + quantity
        if new_quantity > product.stock_quantity:
            raise InsufficientStockError('Requested quantity exceeds available stock',
                                         available=product.stock_quantity)
        item.quantity = new_quantity
    else:
        item = CartItem(cart=cart, product=product, quantity=quantity)
        db.session.add(item)
    db.session.commit()

    record_activity(user_id, 'add_to_cart', 'cart_item', item.id,
                    {'productId': product.id, 'quantity': quantity})
    return item


def _get_owned_item(item_id, user_id):
    item = (CartItem.query
            .join(Cart, CartItem.cart_id == Cart.id)
            .options(joinedload(CartItem.product))
            .filter(CartItem.id == item_id, Cart.user_id == user_id)
            .first())
    if item is None:
        raise NotFound('Cart item not found', code='CART_ITEM_NOT_FOUND')
    return item


@cart_bp.route('', methods=['GET'])
@login_required
def get_cart():
    cart = get_or_create_cart(g.current_user.id)
    return jsonify(serialize_cart(load_cart(cart.id)))


@cart_bp.route('/items', methods=['POST'])
@login_required
def add_item():
    data = get_json()
    item = add_to_cart(g.current_user.id, data.get('productId'), data.get('quantity', 1))
    return jsonify(message='Item added to cart', code='ITEM_ADDED',
                   cart=serialize_cart(load_cart(item.cart_id)))


@cart_bp.route('/items/<int:item_id>', methods=['PUT'])
@login_required
def update_item(item_id):
    user_id = g.current_user.id
    item = _get_owned_item(item_id, user_id)
    data = get_json()
    quantity = parse_int(data.get('quantity'), 'quantity', minimum=1, code='INVALID_INPUT')
    if quantity > item.product.stock_quantity:
        raise InsufficientStockError('Requested quantity exceeds available stock',
                                     available=item.product.stock_quantity)

    item.quantity = quantity
    db.session.commit()
    record_activity(user_id, 'update_cart_item', 'cart_item', item.id, {'quantity': quantity})
    return jsonify(message='Cart item updated', cartItem=serialize_cart_item(item))


@cart_bp.route('/items/<int:item_id>', methods=['DELETE'])
@login_required
def remove_item(item_id):
    user_id = g.current_user.id
    item = _get_owned_item(item_id, user_id)
    db.session.delete(item)
    db.session.commit()
    record_activity(user_id, 'remove_from_cart', 'cart_item', item_id)
    return jsonify(message='Item removed from cart')


@cart_bp.route('', methods=['DELETE'])
@login_required
def clear_cart():
    user_id = g.current_user.id
    cart = Cart.query.filter_by(user_id=user_id).first()
    if cart is None:
        raise NotFound('Cart not found', code='CART_NOT_FOUND')

    CartItem.query.filter_by(cart_id=cart.id).delete()
    db.session.commit()
    record_activity(user_id, 'clear_cart', 'cart', cart.id)
    return jsonify(message='Cart cleared successfully', code='CART_CLEARED')

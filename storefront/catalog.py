from flask import Blueprint, g, jsonify, request
from sqlalchemy import or_
from sqlalchemy.orm import joinedload, selectinload

from .activity import record_activity
from .auth import admin_required
from .errors import BusinessRuleError, NotFound, ValidationError
from .models import Category, OrderItem, Product, db
from .serializers import serialize_category, serialize_product
from .validators import (clean_str, get_json, is_blank, pagination_args, paginate, parse_bool,
                         parse_decimal, parse_int, require_fields)

products_bp = Blueprint('products', __name__, url_prefix='/api/products')
categories_bp = Blueprint('categories', __name__, url_prefix='/api/categories')


def _get_product(product_id):
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound('Product not found', code='PRODUCT_NOT_FOUND')
    return product


def _get_category(category_id):
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFound('Category not found', code='CATEGORY_NOT_FOUND')
    return category


def _apply_product_fields(product, data):
    if 'name' in data:
        if is_blank(data['name']):
            raise ValidationError('name cannot be empty', fields=['name'])
        product.name = clean_str(data['name'])
    if 'description' in data:
        product.description = clean_str(data['description'])
    if 'price' in data:
        product.price = parse_decimal(data['price'], 'price')
    if 'stockQuantity' in data:
        product.stock_quantity = parse_int(data['stockQuantity'], 'stockQuantity', minimum=0)
    if 'imageUrl' in data:
        product.image_url = clean_str(data['imageUrl']) or None
    if 'isAvailable' in data:
        product.is_available = parse_bool(data['isAvailable'], 'isAvailable')
    if 'categoryId' in data:
        if data['categoryId'] is None:
            product.category_id = None
        else:
            product.category_id = _get_category(parse_int(data['categoryId'], 'categoryId')).id


def create_product(data, user_id):
    require_fields(data, ['name', 'price'])
    product = Product(stock_quantity=0, is_available=True)
    _apply_product_fields(product, data)
    db.session.add(product)
    db.session.commit()
    record_activity(user_id, 'create_product', 'product', product.id)
    return product


def update_product(product_id, data, user_id):
    product = _get_product(product_id)
    _apply_product_fields(product, data)
    db.session.commit()
    record_activity(user_id, 'update_product', 'product', product.id)
    return product


def delete_product(product_id, user_id):
    product = _get_product(product_id)
    # order items keep a reference for history
    if OrderItem.query.filter_by(product_id=product.id).count():
        raise BusinessRuleError('Product has been ordered; mark it unavailable instead',
                                code='PRODUCT_IN_USE')
    db.session.delete(product)
    db.session.commit()
    record_activity(user_id, 'delete_product', 'product', product_id)


def _apply_category_fields(category, data):
    if 'name' in data:
        if is_blank(data['name']):
            raise ValidationError('name cannot be empty', fields=['name'])
        category.name = clean_str(data['name'])
    if 'description' in data:
        category.description = clean_str(data['description'])
    if 'displayOrder' in data:
        category.display_order = parse_int(data['displayOrder'], 'displayOrder')


def create_category(data, user_id):
    require_fields(data, ['name'])
    category = Category(display_order=0)
    _apply_category_fields(category, data)
    db.session.add(category)
    db.session.commit()
    record_activity(user_id, 'create_category', 'category', category.id)
    return category


def update_category(category_id, data, user_id):
    category = _get_category(category_id)
    _apply_category_fields(category, data)
    db.session.commit()
    record_activity(user_id, 'update_category', 'category', category.id)
    return category


def delete_category(category_id, user_id):
    category = _get_category(category_id)
    if Product.query.filter_by(category_id=category.id).count():
        raise BusinessRuleError('Cannot delete category with associated products',
                                code='CATEGORY_IN_USE')
    db.session.delete(category)
    db.session.commit()
    record_activity(user_id, 'delete_category', 'category', category_id)


@products_bp.route('', methods=['GET'])
def list_products():
    page, limit = pagination_args()
    query = Product.query.options(joinedload(Product.category))

    category_id = request.args.get('category', type=int)
    if category_id:
        query = query.filter(Product.category_id == category_id)

    stock_status = request.args.get('stock_status')
    if stock_status == 'available':
        query = query.filter(Product.is_available.is_(True), Product.stock_quantity > 0)
    elif stock_status:
        query = query.filter(or_(Product.is_available.is_(False), Product.stock_quantity == 0))

    search = request.args.get('search', '').strip()
    if search:
        query = query.filter(Product.name.ilike(f'%{search}%'))

    products, pagination = paginate(query.order_by(Product.name.asc(), Product.id.asc()), page, limit)
    return jsonify(products=[serialize_product(p, category=True) for p in products],
                   pagination=pagination)


@products_bp.route('/<int:product_id>', methods=['GET'])
def get_product(product_id):
    product = Product.query.options(joinedload(Product.category)).filter_by(id=product_id).first()
    if product is None:
        raise NotFound('Product not found', code='PRODUCT_NOT_FOUND')
    return jsonify(serialize_product(product, category=True))


@products_bp.route('', methods=['POST'])
@admin_required
def create_product_view():
    product = create_product(get_json(), g.current_user.id)
    return jsonify(message='Product created successfully', product=serialize_product(product)), 201


@products_bp.route('/<int:product_id>', methods=['PUT'])
@admin_required
def update_product_view(product_id):
    product = update_product(product_id, get_json(), g.current_user.id)
    return jsonify(message='Product updated successfully', product=serialize_product(product))


@products_bp.route('/<int:product_id>', methods=['DELETE'])
@admin_required
def delete_product_view(product_id):
    delete_product(product_id, g.current_user.id)
    return jsonify(message='Product deleted successfully')


@categories_bp.route('', methods=['GET'])
def list_categories():
    categories = Category.query.order_by(Category.display_order.asc(), Category.id.asc()).all()
    return jsonify([serialize_category(c) for c in categories])


@categories_bp.route('/<int:category_id>', methods=['GET'])
def get_category(category_id):
    category = (Category.query.options(selectinload(Category.products))
                .filter_by(id=category_id).first())
    if category is None:
        raise NotFound('Category not found', code='CATEGORY_NOT_FOUND')
    return jsonify(serialize_category(category, products=True))


@categories_bp.route('', methods=['POST'])
@admin_required
def create_category_view():
    category = create_category(get_json(), g.current_user.id)
    return jsonify(message='Category created successfully', category=serialize_category(category)), 201


@categories_bp.route('/<int:category_id>', methods=['PUT'])
@admin_required
def update_category_view(category_id):
    category = update_category(category_id, get_json(), g.current_user.id)
    return jsonify(message='Category updated successfully', category=serialize_category(category))


@categories_bp.route('/<int:category_id>', methods=['DELETE'])
@admin_required
def delete_category_view(category_id):
    delete_category(category_id, g.current_user.id)
    return jsonify(message='Category deleted successfully')

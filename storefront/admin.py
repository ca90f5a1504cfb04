from datetime import datetime, time, timedelta

from flask import Blueprint, g, jsonify, request
from sqlalchemy import desc, func, or_
from sqlalchemy.orm import contains_eager, joinedload

from . import catalog
from .activity import record_activity
from .auth import admin_required
from .errors import BusinessRuleError, NotFound, ValidationError
from .models import ORDER_STATUSES, ROLES, ActivityLog, Order, OrderItem, Product, Profile, User, db
from .orders import order_query
from .serializers import money, serialize_activity, serialize_category, serialize_order, serialize_product, serialize_user
from .users import apply_profile_fields
from .validators import clean_str, get_json, pagination_args, paginate, parse_bool, parse_date, valid_email

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')

TOP_LIMIT = 10


def _date_range_filter():
    start = request.args.get('startDate')
    end = request.args.get('endDate')
    if not (start and end):
        return []
    start_at = datetime.combine(parse_date(start, 'startDate'), time.min)
    end_before = datetime.combine(parse_date(end, 'endDate') + timedelta(days=1), time.min)
    return [Order.created_at >= start_at, Order.created_at < end_before]


def _get_user(user_id, with_profile=False):
    query = User.query
    if with_profile:
        query = query.options(joinedload(User.profile))
    user = query.filter_by(id=user_id).first()
    if user is None:
        raise NotFound('User not found', code='USER_NOT_FOUND')
    return user


@admin_bp.route('/dashboard', methods=['GET'])
@admin_required
def dashboard():
    order_filter = _date_range_filter()
    day = func.date(Order.created_at)

    daily = (db.session.query(day.label('date'), func.sum(Order.total_amount).label('total_amount'))
             .filter(*order_filter)
             .group_by(day)
             .order_by(day)
             .all())

    quantity_sold = func.sum(OrderItem.quantity).label('total_quantity')
    top_products = (db.session.query(OrderItem.product_id, Product.name, Product.price, quantity_sold)
                    .join(Product, OrderItem.product_id == Product.id)
                    .group_by(OrderItem.product_id, Product.name, Product.price)
                    .order_by(desc('total_quantity'))
                    .limit(TOP_LIMIT)
                    .all())

    amount_spent = func.sum(Order.total_amount).label('total_spent')
    top_users = (db.session.query(Order.user_id, User.email, Profile.first_name, Profile.last_name, amount_spent)
                 .join(User, Order.user_id == User.id)
                 .outerjoin(Profile, Profile.user_id == User.id)
                 .filter(*order_filter)
                 .group_by(Order.user_id, User.email, Profile.first_name, Profile.last_name)
                 .order_by(desc('total_spent'))
                 .limit(TOP_LIMIT)
                 .all())

    return jsonify(
        totalUsers=User.query.count(),
        totalProducts=Product.query.count(),
        dailyPurchases=[{'date': str(row.date), 'totalAmount': money(row.total_amount)} for row in daily],
        topProducts=[
            {
                'productId': row.product_id,
                'name': row.name,
                'price': money(row.price),
                'totalQuantity': int(row.total_quantity),
            }
            for row in top_products
        ],
        topUsers=[
            {
                'userId': row.user_id,
                'email': row.email,
                'firstName': row.first_name,
                'lastName': row.last_name,
                'totalSpent': money(row.total_spent),
            }
            for row in top_users
        ],
    )


@admin_bp.route('/users', methods=['GET'])
@admin_required
def list_users():
    query = User.query.outerjoin(User.profile).options(contains_eager(User.profile))
    search = request.args.get('search', '').strip()
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(
            User.email.ilike(pattern),
            Profile.first_name.ilike(pattern),
            Profile.last_name.ilike(pattern),
            Profile.phone.ilike(pattern),
        ))
    users = query.order_by(User.id).all()
    return jsonify([serialize_user(u, profile=True) for u in users])


@admin_bp.route('/users/<int:user_id>', methods=['GET'])
@admin_required
def get_user(user_id):
    return jsonify(serialize_user(_get_user(user_id, with_profile=True), profile=True))


@admin_bp.route('/users/<int:user_id>', methods=['PUT'])
@admin_required
def update_user(user_id):
    user = _get_user(user_id, with_profile=True)
    data = get_json()

    if 'email' in data:
        email = (clean_str(data['email']) or '').lower()
        if not valid_email(email):
            raise ValidationError('Invalid email format', fields=['email'])
        if User.query.filter(User.email == email, User.id != user.id).first():
            raise ValidationError('Email already in use', code='USER_EXISTS')
        user.email = email
    if 'role' in data:
        if data['role'] not in ROLES:
            raise ValidationError('role must be one of: ' + ', '.join(ROLES), fields=['role'])
        user.role = data['role']
    if 'isActive' in data:
        user.is_active = parse_bool(data['isActive'], 'isActive')
    if isinstance(data.get('profile'), dict):
        if user.profile is None:
            user.profile = Profile()
        apply_profile_fields(user.profile, data['profile'])

    db.session.commit()
    record_activity(g.current_user.id, 'update_user', 'user', user.id)
    return jsonify(message='User updated successfully', user=serialize_user(user, profile=True))


@admin_bp.route('/users/<int:user_id>', methods=['DELETE'])
@admin_required
def delete_user(user_id):
    if user_id == g.current_user.id:
        raise BusinessRuleError('You cannot delete your own account', code='CANNOT_DELETE_SELF')
    user = _get_user(user_id)
    if Order.query.filter_by(user_id=user.id).count():
        raise BusinessRuleError('User has orders; deactivate the account instead', code='USER_HAS_ORDERS')

    db.session.delete(user)
    db.session.commit()
    record_activity(g.current_user.id, 'delete_user', 'user', user_id)
    return jsonify(message='User deleted successfully')


@admin_bp.route('/orders', methods=['GET'])
@admin_required
def list_orders():
    page, limit = pagination_args()
    query = Order.query.options(joinedload(Order.user))
    status = request.args.get('status')
    if status:
        query = query.filter(Order.status == status)
    orders, pagination = paginate(query.order_by(Order.created_at.desc(), Order.id.desc()), page, limit)
    return jsonify(orders=[serialize_order(o, items=False, address=False, user=True) for o in orders],
                   pagination=pagination)


@admin_bp.route('/orders/<int:order_id>', methods=['GET'])
@admin_required
def get_order(order_id):
    order = order_query().options(joinedload(Order.user)).filter(Order.id == order_id).first()
    if order is None:
        raise NotFound('Order not found', code='ORDER_NOT_FOUND')
    return jsonify(serialize_order(order, user=True))


@admin_bp.route('/orders/<int:order_id>/status', methods=['PUT'])
@admin_required
def update_order_status(order_id):
    data = get_json()
    status = data.get('status')
    if status not in ORDER_STATUSES:
        raise ValidationError('status must be one of: ' + ', '.join(ORDER_STATUSES), code='INVALID_STATUS')
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound('Order not found', code='ORDER_NOT_FOUND')

    previous = order.status
    order.status = status
    db.session.commit()
    record_activity(g.current_user.id, 'update_order_status', 'order', order.id,
                    {'status': status, 'previousStatus': previous})
    return jsonify(message='Order status updated successfully',
                   order=serialize_order(order, items=False, address=False))


@admin_bp.route('/products', methods=['POST'])
@admin_required
def create_product():
    product = catalog.create_product(get_json(), g.current_user.id)
    return jsonify(message='Product created successfully', product=serialize_product(product)), 201


@admin_bp.route('/products/<int:product_id>', methods=['PUT'])
@admin_required
def update_product(product_id):
    product = catalog.update_product(product_id, get_json(), g.current_user.id)
    return jsonify(message='Product updated successfully', product=serialize_product(product))


@admin_bp.route('/products/<int:product_id>', methods=['DELETE'])
@admin_required
def delete_product(product_id):
    catalog.delete_product(product_id, g.current_user.id)
    return jsonify(message='Product deleted successfully')


@admin_bp.route('/categories', methods=['POST'])
@admin_required
def create_category():
    category = catalog.create_category(get_json(), g.current_user.id)
    return jsonify(message='Category created successfully', category=serialize_category(category)), 201


@admin_bp.route('/categories/<int:category_id>', methods=['PUT'])
@admin_required
def update_category(category_id):
    category = catalog.update_category(category_id, get_json(), g.current_user.id)
    return jsonify(message='Category updated successfully', category=serialize_category(category))


@admin_bp.route('/categories/<int:category_id>', methods=['DELETE'])
@admin_required
def delete_category(category_id):
    catalog.delete_category(category_id, g.current_user.id)
    return jsonify(message='Category deleted successfully')


@admin_bp.route('/activity-logs', methods=['GET'])
@admin_required
def activity_logs():
    page, limit = pagination_args()
    query = ActivityLog.query.options(joinedload(ActivityLog.user))
    user_id = request.args.get('userId', type=int)
    if user_id:
        query = query.filter(ActivityLog.user_id == user_id)
    action = request.args.get('action')
    if action:
        query = query.filter(ActivityLog.action == action)
    logs, pagination = paginate(query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()),
                                page, limit)
    return jsonify(logs=[serialize_activity(entry) for entry in logs], pagination=pagination)

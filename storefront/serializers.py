"""JSON shapes for the API.

Each function only walks the relationships its caller asked for, so a view
must load those relationships in its query before serializing.
"""
from decimal import Decimal

CENT = Decimal('0.01')


def money(value):
    if value is None:
        return None
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return str(value.quantize(CENT))


def timestamp(value):
    return value.isoformat() if value is not None else None


def serialize_profile(profile):
    if profile is None:
        return None
    return {
        'id': profile.id,
        'firstName': profile.first_name,
        'lastName': profile.last_name,
        'phone': profile.phone,
        'avatar': profile.avatar,
        'dateOfBirth': timestamp(profile.date_of_birth),
        'gender': profile.gender,
    }


def serialize_user(user, profile=False, addresses=False):
    data = {
        'id': user.id,
        'username': user.username,
        'email': user.email,
        'role': user.role,
        'isActive': user.is_active,
        'createdAt': timestamp(user.created_at),
    }
    if profile:
        data['profile'] = serialize_profile(user.profile)
    if addresses:
        data['addresses'] = [serialize_address(a) for a in user.addresses]
    return data


def serialize_address(address):
    if address is None:
        return None
    return {
        'id': address.id,
        'userId': address.user_id,
        'name': address.name,
        'addressLine1': address.address_line1,
        'addressLine2': address.address_line2,
        'city': address.city,
        'state': address.state,
        'postalCode': address.postal_code,
        'country': address.country,
        'phone': address.phone,
        'isDefault': address.is_default,
    }


def serialize_category(category, products=False):
    data = {
        'id': category.id,
        'name': category.name,
        'description': category.description,
        'displayOrder': category.display_order,
    }
    if products:
        data['products'] = [serialize_product_summary(p) for p in category.products]
    return data


def serialize_product_summary(product):
    return {
        'id': product.id,
        'name': product.name,
        'price': money(product.price),
        'imageUrl': product.image_url,
        'stockQuantity': product.stock_quantity,
        'isAvailable': product.is_available,
    }


def serialize_product(product, category=False):
    data = serialize_product_summary(product)
    data.update({
        'description': product.description,
        'categoryId': product.category_id,
        'createdAt': timestamp(product.created_at),
        'updatedAt': timestamp(product.updated_at),
    })
    if category:
        data['category'] = (
            {'id': product.category.id, 'name': product.category.name}
            if product.category is not None else None
        )
    return data


def serialize_cart(cart):
    items = [
        {
            'id': item.id,
            'productId': item.product_id,
            'quantity': item.quantity,
            'product': serialize_product_summary(item.product),
        }
        for item in cart.items
    ]
    return {'id': cart.id, 'userId': cart.user_id, 'items': items}


def serialize_cart_item(item):
    return {
        'id': item.id,
        'cartId': item.cart_id,
        'productId': item.product_id,
        'quantity': item.quantity,
    }


def serialize_order_item(item):
    product = item.product
    return {
        'id': item.id,
        'productId': item.product_id,
        'quantity': item.quantity,
        'price': money(item.price),
        'product': {
            'id': product.id,
            'name': product.name,
            'price': money(product.price),
            'imageUrl': product.image_url,
        } if product is not None else None,
    }


def serialize_order(order, items=True, address=True, user=False):
    data = {
        'id': order.id,
        'userId': order.user_id,
        'addressId': order.address_id,
        'totalAmount': money(order.total_amount),
        'status': order.status,
        'paymentMethod': order.payment_method,
        'paymentInfo': order.payment_info,
        'notes': order.notes,
        'createdAt': timestamp(order.created_at),
        'updatedAt': timestamp(order.updated_at),
    }
    if items:
        data['items'] = [serialize_order_item(i) for i in order.items]
    if address:
        data['address'] = serialize_address(order.address)
    if user:
        data['user'] = {
            'id': order.user.id,
            'username': order.user.username,
            'email': order.user.email,
        }
    return data


def serialize_activity(entry):
    return {
        'id': entry.id,
        'userId': entry.user_id,
        'action': entry.action,
        'entityType': entry.entity_type,
        'entityId': entry.entity_id,
        'details': entry.details,
        'ipAddress': entry.ip_address,
        'createdAt': timestamp(entry.created_at),
        'user': {
            'id': entry.user.id,
            'username': entry.user.username,
            'email': entry.user.email,
        } if entry.user is not None else None,
    }

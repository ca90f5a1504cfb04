from flask import Blueprint, g, jsonify

from .activity import record_activity
from .auth import login_required
from .errors import BusinessRuleError, NotFound, ValidationError
from .models import Address, Order, db
from .serializers import serialize_address
from .validators import clean_str, get_json, is_blank, parse_bool, require_fields

# request field -> column
ADDRESS_FIELDS = {
    'name': 'name',
    'addressLine1': 'address_line1',
    'addressLine2': 'address_line2',
    'city': 'city',
    'state': 'state',
    'postalCode': 'postal_code',
    'country': 'country',
    'phone': 'phone',
}
REQUIRED_ADDRESS_FIELDS = [f for f in ADDRESS_FIELDS if f != 'addressLine2']

addresses_bp = Blueprint('addresses', __name__, url_prefix='/api/addresses')


def build_address(user_id, data, is_default=False):
    require_fields(data, REQUIRED_ADDRESS_FIELDS)
    values = {column: clean_str(data.get(field)) for field, column in ADDRESS_FIELDS.items()}
    values['address_line2'] = values['address_line2'] or None
    return Address(user_id=user_id, is_default=is_default, **values)


def _clear_default(user_id, keep_id=None):
    query = Address.query.filter(Address.user_id == user_id, Address.is_default.is_(True))
    if keep_id is not None:
        query = query.filter(Address.id != keep_id)
    query.update({'is_default': False}, synchronize_session='fetch')


def _get_owned_address(address_id):
    address = Address.query.filter_by(id=address_id, user_id=g.current_user.id).first()
    if address is None:
        raise NotFound('Address not found', code='ADDRESS_NOT_FOUND')
    return address


@addresses_bp.route('', methods=['GET'])
@login_required
def list_addresses():
    addresses = (Address.query.filter_by(user_id=g.current_user.id)
                 .order_by(Address.is_default.desc(), Address.id).all())
    return jsonify([serialize_address(a) for a in addresses])


@addresses_bp.route('/<int:address_id>', methods=['GET'])
@login_required
def get_address(address_id):
    return jsonify(serialize_address(_get_owned_address(address_id)))


@addresses_bp.route('', methods=['POST'])
@login_required
def create_address():
    user_id = g.current_user.id
    data = get_json()
    is_default = parse_bool(data.get('isDefault', False), 'isDefault')
    address = build_address(user_id, data, is_default=is_default)

    # first address becomes the default
    if Address.query.filter_by(user_id=user_id).count() == 0:
        address.is_default = True
    if address.is_default:
        _clear_default(user_id)

    db.session.add(address)
    db.session.commit()
    record_activity(user_id, 'create_address', 'address', address.id)
    return jsonify(message='Address created successfully', address=serialize_address(address)), 201


@addresses_bp.route('/<int:address_id>', methods=['PUT'])
@login_required
def update_address(address_id):
    address = _get_owned_address(address_id)
    data = get_json()

    for field, column in ADDRESS_FIELDS.items():
        if field not in data:
            continue
        if field in REQUIRED_ADDRESS_FIELDS and is_blank(data[field]):
            raise ValidationError(f'{field} cannot be empty', fields=[field])
        setattr(address, column, clean_str(data[field]) or None)

    if 'isDefault' in data:
        is_default = parse_bool(data['isDefault'], 'isDefault')
        if is_default:
            _clear_default(address.user_id, keep_id=address.id)
        address.is_default = is_default

    db.session.commit()
    record_activity(address.user_id, 'update_address', 'address', address.id)
    return jsonify(message='Address updated successfully', address=serialize_address(address))


@addresses_bp.route('/<int:address_id>', methods=['DELETE'])
@login_required
def delete_address(address_id):
    address = _get_owned_address(address_id)
    if Order.query.filter_by(address_id=address.id).count():
        raise BusinessRuleError('Address is used by an existing order', code='ADDRESS_IN_USE')

    db.session.delete(address)
    db.session.commit()
    record_activity(g.current_user.id, 'delete_address', 'address', address_id)
    return jsonify(message='Address deleted successfully')

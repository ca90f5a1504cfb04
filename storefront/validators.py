import re
from datetime import date
from decimal import Decimal, InvalidOperation

from flask import request

from .errors import ValidationError

EMAIL_REGEX = re.compile(r"[^@]+@[^@]+\.[^@]+")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def get_json():
    data = request.get_json(silent=True)
    if data is None:
        if request.get_data():
            raise ValidationError('Invalid JSON', code='INVALID_JSON')
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object', code='INVALID_JSON')
    return data


def is_blank(value):
    return value is None or (isinstance(value, str) and not value.strip())


def require_fields(data, fields):
    missing = [field for field in fields if is_blank(data.get(field))]
    if missing:
        raise ValidationError('Missing required fields: ' + ', '.join(missing), fields=missing)


def clean_str(value):
    if value is None:
        return None
    return str(value).strip()


def valid_email(email):
    return bool(email) and EMAIL_REGEX.fullmatch(email) is not None


def parse_int(value, field, minimum=None, code='VALIDATION_ERROR'):
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be an integer', code=code)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer', code=code)
    if isinstance(value, float) and value != number:
        raise ValidationError(f'{field} must be an integer', code=code)
    if minimum is not None and number < minimum:
        raise ValidationError(f'{field} must be at least {minimum}', code=code)
    return number


def parse_decimal(value, field, minimum=Decimal('0')):
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be a number')
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number')
    if not number.is_finite():
        raise ValidationError(f'{field} must be a number')
    if minimum is not None and number < minimum:
        raise ValidationError(f'{field} must be at least {minimum}')
    return number.quantize(Decimal('0.01'))


def parse_bool(value, field):
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ('true', 'false', '1', '0'):
        return value.lower() in ('true', '1')
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValidationError(f'{field} must be a boolean')


def parse_date(value, field):
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f'{field} must be a date (YYYY-MM-DD)')


def pagination_args():
    page = request.args.get('page', 1, type=int) or 1
    limit = request.args.get('limit', DEFAULT_PAGE_SIZE, type=int) or DEFAULT_PAGE_SIZE
    return max(page, 1), min(max(limit, 1), MAX_PAGE_SIZE)


def paginate(query, page, limit):
    result = query.paginate(page=page, per_page=limit, error_out=False)
    meta = {
        'total': result.total,
        'page': page,
        'pages': result.pages,
        'limit': limit,
    }
    return result.items, meta

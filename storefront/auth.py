import logging
from datetime import datetime, timedelta, timezone
from functools import wraps

from flask import Blueprint, current_app, g, jsonify, request
from jose import ExpiredSignatureError, JWTError, jwt
from werkzeug.security import check_password_hash, generate_password_hash

from .activity import record_activity
from .errors import AuthenticationError, NotFound, PermissionDenied, ValidationError
from .models import Profile, User, db
from .serializers import serialize_user
from .validators import clean_str, get_json, require_fields, valid_email

logger = logging.getLogger(__name__)

ALGORITHM = 'HS256'
RESET_TOKEN_LIFETIME = timedelta(hours=1)

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


def create_access_token(user, expires_delta=None):
    lifetime = expires_delta or timedelta(hours=current_app.config['JWT_EXPIRES_HOURS'])
    claims = {
        'id': user.id,
        'email': user.email,
        'role': user.role,
        'exp': datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(claims, current_app.config['JWT_SECRET'], algorithm=ALGORITHM)


def create_reset_token(user):
    claims = {
        'userId': user.id,
        'purpose': 'password_reset',
        'exp': datetime.now(timezone.utc) + RESET_TOKEN_LIFETIME,
    }
    return jwt.encode(claims, current_app.config['JWT_SECRET'], algorithm=ALGORITHM)


def decode_token(token):
    try:
        return jwt.decode(token, current_app.config['JWT_SECRET'], algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise AuthenticationError('Token expired', code='TOKEN_EXPIRED')
    except JWTError:
        raise AuthenticationError('Not authorized, token failed', code='TOKEN_INVALID')


def _bearer_token():
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def authenticate_request():
    token = _bearer_token()
    if token is None:
        raise AuthenticationError('Not authorized, no token', code='NO_TOKEN')
    claims = decode_token(token)
    user = db.session.get(User, claims.get('id')) if isinstance(claims.get('id'), int) else None
    if user is None:
        logger.info('Token refers to unknown user %r', claims.get('id'))
        raise AuthenticationError('Not authorized, user not found', code='USER_NOT_FOUND')
    if not user.is_active:
        raise AuthenticationError('Not authorized, user is inactive', code='USER_INACTIVE')
    return user


def login_required(f):
    @wraps(f)
    def wrapped(*args, **kwargs):
        g.current_user = authenticate_request()
        return f(*args, **kwargs)
    return wrapped


def admin_required(f):
    @wraps(f)
    def wrapped(*args, **kwargs):
        user = authenticate_request()
        if user.role != 'admin':
            logger.warning('User %s denied access to admin endpoint %s', user.id, request.path)
            raise PermissionDenied('Access denied. Admin privileges required.', code='ADMIN_REQUIRED')
        g.current_user = user
        return f(*args, **kwargs)
    return wrapped


@auth_bp.route('/register', methods=['POST'])
def register():
    data = get_json()
    require_fields(data, ['email', 'password'])
    email = clean_str(data['email']).lower()
    username = clean_str(data.get('username')) or None
    password = str(data['password'])
    if not valid_email(email):
        raise ValidationError('Invalid email format')
    if User.query.filter_by(email=email).first():
        raise ValidationError('User already exists', code='USER_EXISTS')

    user = User(username=username, email=email,
                password_hash=generate_password_hash(password), role='user')
    user.profile = Profile(first_name=username or email.split('@')[0], last_name='', phone='')
    db.session.add(user)
    db.session.commit()
    logger.info('Registered user %s', user.id)

    record_activity(user.id, 'register', 'user', user.id)
    return jsonify(
        message='User registered successfully',
        token=create_access_token(user),
        user=serialize_user(user),
    ), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    data = get_json()
    require_fields(data, ['email', 'password'])
    email = clean_str(data['email']).lower()
    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, str(data['password'])):
        logger.info('Failed login for %s', email)
        raise AuthenticationError('Invalid credentials', code='INVALID_CREDENTIALS')
    if not user.is_active:
        raise PermissionDenied('Account is deactivated', code='ACCOUNT_DEACTIVATED')

    token = create_access_token(user)
    record_activity(user.id, 'login', 'user', user.id)
    return jsonify(token=token, user=serialize_user(user))


@auth_bp.route('/reset-password', methods=['POST'])
def reset_password():
    data = get_json()
    require_fields(data, ['email'])
    user = User.query.filter_by(email=clean_str(data['email']).lower()).first()
    if not user:
        raise NotFound('User not found', code='USER_NOT_FOUND')

    token = create_reset_token(user)
    logger.info('Password reset token issued for user %s', user.id)
    # no mail integration yet; the token is only visible in debug logs
    logger.debug('Reset token for user %s: %s', user.id, token)
    return jsonify(message='Password reset instructions sent to email')


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    user = g.current_user
    record_activity(user.id, 'logout', 'user', user.id)
    return jsonify(message='Logged out successfully', code='LOGOUT_SUCCESS')

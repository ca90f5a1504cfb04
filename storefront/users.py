from flask import Blueprint, g, jsonify
from sqlalchemy.orm import joinedload, selectinload
from werkzeug.security import check_password_hash, generate_password_hash

from .activity import record_activity
from .auth import login_required
from .errors import AuthenticationError, NotFound, ValidationError
from .models import GENDERS, Profile, User, db
from .serializers import serialize_profile, serialize_user
from .validators import clean_str, get_json, is_blank, parse_date, require_fields

users_bp = Blueprint('users', __name__, url_prefix='/api/users')

PROFILE_FIELDS = {
    'firstName': 'first_name',
    'lastName': 'last_name',
    'phone': 'phone',
    'avatar': 'avatar',
}


def apply_profile_fields(profile, data):
    for field, column in PROFILE_FIELDS.items():
        if field in data:
            setattr(profile, column, clean_str(data[field]))
    if 'dateOfBirth' in data:
        value = data['dateOfBirth']
        profile.date_of_birth = None if is_blank(value) else parse_date(value, 'dateOfBirth')
    if 'gender' in data:
        gender = data['gender'] or None
        if gender is not None and gender not in GENDERS:
            raise ValidationError('gender must be one of: ' + ', '.join(GENDERS), fields=['gender'])
        profile.gender = gender


@users_bp.route('/me', methods=['GET'])
@login_required
def me():
    user = (User.query.options(joinedload(User.profile))
            .filter_by(id=g.current_user.id).populate_existing().one())
    return jsonify(serialize_user(user, profile=True))


@users_bp.route('/profile', methods=['GET'])
@login_required
def get_profile():
    user = (User.query
            .options(joinedload(User.profile), selectinload(User.addresses))
            .filter_by(id=g.current_user.id)
            .populate_existing()
            .one())
    return jsonify(serialize_user(user, profile=True, addresses=True))


@users_bp.route('/profile', methods=['PUT'])
@login_required
def update_profile():
    user_id = g.current_user.id
    profile = Profile.query.filter_by(user_id=user_id).first()
    if profile is None:
        raise NotFound('Profile not found', code='PROFILE_NOT_FOUND')

    apply_profile_fields(profile, get_json())
    db.session.commit()
    record_activity(user_id, 'update_profile', 'profile', profile.id)
    return jsonify(message='Profile updated successfully', profile=serialize_profile(profile))


@users_bp.route('/change-password', methods=['PUT'])
@login_required
def change_password():
    user = g.current_user
    data = get_json()
    require_fields(data, ['currentPassword', 'newPassword'])
    if not check_password_hash(user.password_hash, str(data['currentPassword'])):
        raise AuthenticationError('Current password is incorrect', code='INVALID_PASSWORD')

    user.password_hash = generate_password_hash(str(data['newPassword']))
    db.session.commit()
    record_activity(user.id, 'change_password', 'user', user.id)
    return jsonify(message='Password changed successfully')

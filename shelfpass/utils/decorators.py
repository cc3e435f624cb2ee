from functools import wraps
from flask import jsonify
from flask_login import current_user

from shelfpass.utils.messages import AUTH_LOGIN_REQUIRED, ERROR_PERMISSION_DENIED


def admin_required(f):
    """Require an authenticated user with the admin flag."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({'error': str(AUTH_LOGIN_REQUIRED)}), 401
        if not current_user.is_admin:
            return jsonify({'error': str(ERROR_PERMISSION_DENIED)}), 403
        return f(*args, **kwargs)
    return decorated_function

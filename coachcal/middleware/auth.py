from functools import wraps
from typing import Optional
from flask import request, jsonify
from coachcal.utils.security import verify_token
from coachcal.utils.logger import get_logger

logger = get_logger(__name__)


def _bearer_payload() -> Optional[dict]:
    auth_header = request.headers.get('Authorization')
    if not auth_header:
        return None
    parts = auth_header.split()
    if len(parts) != 2 or parts[0] != 'Bearer':
        return None
    return verify_token(parts[1])


def require_auth(f):
    """Decorator to require authentication"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get('Authorization')

        if not auth_header:
            return jsonify({'error': 'Authorization header missing'}), 401

        parts = auth_header.split()
        if len(parts) != 2 or parts[0] != 'Bearer':
            return jsonify({'error': 'Invalid authorization header format'}), 401

        payload = verify_token(parts[1])
        if not payload or 'user_id' not in payload:
            return jsonify({'error': 'Invalid or expired token'}), 401

        return f(current_user=payload, *args, **kwargs)

    return decorated_function


def optional_auth(f):
    """Pass the caller's token payload when present, otherwise None"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        return f(current_user=_bearer_payload(), *args, **kwargs)

    return decorated_function


def require_role(allowed_roles):
    """Decorator to require specific roles"""
    def decorator(f):
        @wraps(f)
        def decorated_function(current_user, *args, **kwargs):
            if current_user.get('role') not in allowed_roles:
                return jsonify({'error': 'Insufficient permissions'}), 403
            return f(current_user=current_user, *args, **kwargs)
        return decorated_function
    return decorator


def require_coach(f):
    """Decorator to require coach role"""
    return require_role(['coach', 'admin'])(f)

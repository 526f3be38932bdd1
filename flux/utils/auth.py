"""
Bearer-token authentication against the external identity provider.

The provider signs short-lived JWTs; we only verify them and resolve the
subject to a local ``users`` row carrying the marketplace role.
"""
import logging
from functools import wraps

import jwt
from flask import current_app, request

from flux import db
from flux.errors import AuthenticationRequired, NotAuthorized
from flux.models import User

logger = logging.getLogger(__name__)


def decode_token(token: str) -> dict:
    """Decode and verify JWT token"""
    audience = current_app.config.get('JWT_AUDIENCE')
    try:
        return jwt.decode(
            token,
            current_app.config['JWT_SECRET'],
            algorithms=[current_app.config['JWT_ALGORITHM']],
            audience=audience,
            options={'verify_aud': bool(audience)},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationRequired('Token has expired')
    except jwt.InvalidTokenError:
        raise AuthenticationRequired('Invalid token')


def get_bearer_token(auth_header: str) -> str:
    trimmed = (auth_header or '').strip()
    if trimmed.lower().startswith('bearer '):
        return trimmed[7:].strip()
    return trimmed


def require_auth(f):
    """Decorator to require authentication for routes"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = get_bearer_token(request.headers.get('Authorization', ''))
        if not token:
            raise AuthenticationRequired('Missing authorization header')

        payload = decode_token(token)
        user_id = payload.get('sub') or payload.get('user_id')
        if not user_id:
            raise AuthenticationRequired('Token has no subject')

        user = db.session.get(User, str(user_id))
        if not user:
            raise AuthenticationRequired('Unknown user')
        if user.is_banned:
            logger.info("Rejected request from banned user %s", user.id)
            raise NotAuthorized('Account suspended')

        # Attach user info to request
        request.user_id = user.id
        request.user_role = user.role
        request.current_user = user

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Decorator to require specific role(s) for routes"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(request, 'user_role'):
                raise AuthenticationRequired()

            if request.user_role not in roles:
                raise NotAuthorized('Insufficient permissions')

            return f(*args, **kwargs)

        return decorated_function
    return decorator

"""
Shared Flask extension instances.

Created as a separate module to avoid circular imports when route
blueprints need access to extensions that are initialised in create_app().
"""

import os

from flask import request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_socketio import SocketIO

# Per-endpoint budgets
ACCEPT_LIMIT = "20 per minute"
VALIDATE_CODE_LIMIT = "30 per minute"
CHECKOUT_LIMIT = "10 per minute"
WEBHOOK_LIMIT = "300 per minute"


def user_or_ip_key():
    """Rate-limit authenticated callers per token subject, anyone else per IP"""
    from flux.errors import AuthenticationRequired
    from flux.utils.auth import decode_token, get_bearer_token

    token = get_bearer_token(request.headers.get('Authorization', ''))
    if token:
        try:
            payload = decode_token(token)
            subject = payload.get('sub') or payload.get('user_id')
        except AuthenticationRequired:
            subject = None
        if subject:
            return f"user:{subject}"
    return get_remote_address()


# Use Redis for rate-limit storage when available (production), otherwise
# fall back to in-memory storage (single-process / development).
_storage_uri = os.environ.get("RATELIMIT_STORAGE_URI") or os.environ.get("REDIS_URL") or "memory://"

# Limiter is created without an app; init_app() is called in create_app().
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_storage_uri,
    default_limits=["100 per minute"],
)

# Only bound to the app when REALTIME_FANOUT == "socketio".
socketio = SocketIO()

"""Utility helpers shared by routes and services"""
from .auth import require_auth, require_role, decode_token
from .validators import validate_order, validate_delivery, parse_money, is_allowed_redirect_url

__all__ = [
    'require_auth',
    'require_role',
    'decode_token',
    'validate_order',
    'validate_delivery',
    'parse_money',
    'is_allowed_redirect_url',
]

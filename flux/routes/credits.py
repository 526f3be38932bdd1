"""
Credits blueprint
Read access to subscription expiry
"""
from flask import Blueprint, jsonify, request

from flux.errors import NotAuthorized
from flux.services import credit_ledger
from flux.utils import require_auth

credits_bp = Blueprint('credits', __name__)


@credits_bp.route('/me', methods=['GET'])
@require_auth
def my_credits():
    """Own expiry; roles with unconditional access need no credits row"""
    if request.current_user.has_unconditional_access:
        credits = credit_ledger.get_credits(request.user_id)
        data = credits.to_dict() if credits else {'userId': request.user_id, 'validUntil': None}
    else:
        data = credit_ledger.read_credits(request.user_id)
    data['hasAccess'] = credit_ledger.has_access(request.user_id)
    return jsonify(data), 200


@credits_bp.route('/<user_id>', methods=['GET'])
@require_auth
def user_credits(user_id):
    """Credits for one user; self or admin only"""
    if user_id != request.user_id and request.user_role != 'admin':
        raise NotAuthorized('You can only read your own credits')
    return jsonify(credit_ledger.read_credits(user_id)), 200

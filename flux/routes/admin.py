"""
Admin blueprint
Operator interventions: manual credit grants and code lockout resets
"""
from flask import Blueprint, jsonify, request

from flux.services import credit_ledger, delivery_codes
from flux.utils import require_auth, require_role

admin_bp = Blueprint('admin', __name__)


@admin_bp.route('/credits/<user_id>', methods=['POST'])
@require_auth
@require_role('admin')
def grant_credits(user_id):
    """
    Extend a user's credits by hand

    POST /api/admin/credits/<user_id>
    Body: {"days": 30}
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days') if isinstance(data, dict) else None
    valid_until = credit_ledger.grant(user_id, days, request.user_id)
    return jsonify({'success': True, 'userId': user_id, 'validUntil': valid_until.isoformat()}), 200


@admin_bp.route('/deliveries/<delivery_id>/reset-attempts', methods=['POST'])
@require_auth
@require_role('admin')
def reset_attempts(delivery_id):
    delivery_codes.reset_attempts(delivery_id, request.user_id)
    return jsonify({'success': True, 'delivery_id': delivery_id, 'validation_attempts': 0}), 200

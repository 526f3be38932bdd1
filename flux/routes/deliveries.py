"""
Deliveries blueprint
Driver-side code validation and company-side code forwarding
"""
from flask import Blueprint, jsonify, request

from flux.extensions import VALIDATE_CODE_LIMIT, limiter, user_or_ip_key
from flux.services import delivery_codes
from flux.utils import require_auth, require_role

deliveries_bp = Blueprint('deliveries', __name__)


@deliveries_bp.route('/<delivery_id>/validate', methods=['POST'])
@limiter.limit(VALIDATE_CODE_LIMIT, key_func=user_or_ip_key)
@require_auth
@require_role('driver')
def validate_code(delivery_id):
    """
    Validate the code the customer handed to the driver

    POST /api/deliveries/<delivery_id>/validate
    Body: {"code": "K7M2QX"}
    """
    data = request.get_json(silent=True) or {}
    code = data.get('code') if isinstance(data, dict) else None
    delivery_codes.validate(delivery_id, code, request.user_id)
    return jsonify({'success': True, 'valid': True}), 200


@deliveries_bp.route('/<delivery_id>/code-sent', methods=['POST'])
@require_auth
@require_role('company')
def mark_code_sent(delivery_id):
    sent_at = delivery_codes.mark_code_sent(delivery_id, request.user_id)
    return jsonify({'success': True, 'code_sent_at': sent_at.isoformat()}), 200

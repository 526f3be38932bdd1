"""
Billing blueprints
Checkout sessions, the plan catalog and the Stripe webhook
"""

from flask import Blueprint, jsonify, request

from flux.errors import ValidationError
from flux.extensions import CHECKOUT_LIMIT, WEBHOOK_LIMIT, limiter, user_or_ip_key
from flux.services import billing_events, checkout
from flux.utils import require_auth, require_role

billing_bp = Blueprint('billing', __name__)


@billing_bp.route('/plans', methods=['GET'])
@require_auth
def list_plans():
    plans = checkout.list_active_plans(role=request.user_role)
    return jsonify({'plans': [p.to_dict() for p in plans]}), 200


@billing_bp.route('/checkout', methods=['POST'])
@limiter.limit(CHECKOUT_LIMIT, key_func=user_or_ip_key)
@require_auth
@require_role('company', 'driver', 'admin')
def create_checkout():
    """
    Create a hosted Stripe Checkout session

    POST /api/billing/checkout
    Body: {
        "planKey": "driver_30d",
        "successUrl": "https://app.iflux.space/creditos?checkout=success",
        "cancelUrl": "https://iflux.space/#planos"
    }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    url = checkout.create_checkout_session(
        request.user_id,
        data.get('planKey'),
        success_url=data.get('successUrl'),
        cancel_url=data.get('cancelUrl'),
    )
    return jsonify({'success': True, 'url': url}), 200


# ---------------------------------------------------------------------------
# Stripe Webhook
# ---------------------------------------------------------------------------
webhook_bp = Blueprint('webhooks', __name__)


@webhook_bp.route('/stripe', methods=['POST'])
@limiter.limit(WEBHOOK_LIMIT)
def stripe_webhook():
    """
    Handle Stripe webhook events with signature verification.
    Events: checkout.session.completed, checkout.session.async_payment_succeeded
    """
    # Signature covers the exact bytes; read them before anything parses the body
    payload = request.get_data(cache=True)
    sig_header = request.headers.get('Stripe-Signature', '')

    result = billing_events.process_webhook(payload, sig_header)
    return jsonify({'received': True, **result}), 200

"""
Orders blueprint
Order creation, the acceptance guard, lifecycle transitions and delivery codes
"""
from flask import Blueprint, current_app, jsonify, request

from flux.errors import ValidationError
from flux.extensions import ACCEPT_LIMIT, limiter, user_or_ip_key
from flux.services import delivery_codes, orders, ratings
from flux.utils import require_auth, require_role

orders_bp = Blueprint('orders', __name__)


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _limit():
    max_items = current_app.config.get('MAX_ITEMS_PER_PAGE', 100)
    default = current_app.config.get('ITEMS_PER_PAGE', 20)
    return max(1, min(request.args.get('limit', default, type=int), max_items))


@orders_bp.route('', methods=['POST'])
@require_auth
@require_role('company')
def create_order():
    """
    Create a new order

    POST /api/orders
    Body: {
        "deliveries": [{"pickup_address": "...", "dropoff_address": "...",
                        "package_type": "small_box", "suggested_price": 15.5}],
        "total_value": 15.5,
        "city": "Campinas",
        "state": "SP"
    }
    """
    data = _json_body()
    order = orders.create_order(
        request.user_id,
        data.get('deliveries'),
        data.get('total_value'),
        city=data.get('city'),
        state=data.get('state'),
    )
    return jsonify({'success': True, 'order': order.to_dict()}), 201


@orders_bp.route('', methods=['GET'])
@require_auth
def list_orders():
    """
    List the caller's orders

    GET /api/orders?status=accepted&limit=20
    """
    result = orders.list_orders_for(request.user_id, status=request.args.get('status'), limit=_limit())
    return jsonify({'orders': [o.to_dict() for o in result], 'count': len(result)}), 200


@orders_bp.route('/available', methods=['GET'])
@require_auth
@require_role('driver')
def list_available():
    """
    Pending orders in a city, defaulting to the driver's own

    GET /api/orders/available?city=Campinas&state=SP
    """
    user = request.current_user
    city = request.args.get('city') or user.city
    state = request.args.get('state') or (user.state if not request.args.get('city') else None)
    result = orders.list_available_orders(city, state=state, limit=_limit())
    return jsonify({'orders': [o.to_dict() for o in result], 'count': len(result)}), 200


@orders_bp.route('/<order_id>', methods=['GET'])
@require_auth
def get_order(order_id):
    order = orders.get_order_for(order_id, request.user_id)
    return jsonify({'order': order.to_dict()}), 200


@orders_bp.route('/<order_id>/accept', methods=['POST'])
@limiter.limit(ACCEPT_LIMIT, key_func=user_or_ip_key)
@require_auth
@require_role('driver')
def accept_order(order_id):
    """
    Accept a pending order. Only one driver can win.

    POST /api/orders/<order_id>/accept
    """
    order = orders.accept_order(order_id, request.user_id)
    return jsonify({'success': True, 'order': order.to_dict()}), 200


@orders_bp.route('/<order_id>/transition', methods=['POST'])
@require_auth
def transition_order(order_id):
    """
    Move an order through its lifecycle

    POST /api/orders/<order_id>/transition
    Body: {"status": "driver_completed"}
    """
    status = _json_body().get('status')
    if not status:
        raise ValidationError('status is required', field='status')
    order = orders.transition(order_id, status, request.user_id)
    return jsonify({'success': True, 'order': order.to_dict()}), 200


@orders_bp.route('/<order_id>/cancel', methods=['POST'])
@require_auth
def cancel_order(order_id):
    order = orders.cancel(order_id, request.user_id)
    return jsonify({'success': True, 'order': order.to_dict()}), 200


@orders_bp.route('/<order_id>/codes', methods=['POST'])
@require_auth
@require_role('driver', 'company', 'admin')
def ensure_codes(order_id):
    """Generate any delivery codes that are still missing"""
    summary = orders.ensure_delivery_codes(order_id, request.user_id)
    return jsonify({
        'success': True,
        'generated': summary['generated'],
        'existing': summary['existing'],
        'failed': summary['failed'],
    }), 200


@orders_bp.route('/<order_id>/codes', methods=['GET'])
@require_auth
@require_role('company')
def reveal_codes(order_id):
    """Plaintext codes so the company can forward them to its customers"""
    codes = delivery_codes.reveal_codes(order_id, request.user_id)
    return jsonify({'order_id': order_id, 'codes': codes}), 200


@orders_bp.route('/<order_id>/rating', methods=['POST'])
@require_auth
@require_role('driver', 'company')
def rate_order(order_id):
    """
    Rate the other party of a completed order

    POST /api/orders/<order_id>/rating
    Body: {"stars": 5, "comment": "Pontual e cuidadoso"}
    """
    data = _json_body()
    rating = ratings.rate_order(order_id, request.user_id, data.get('stars'), data.get('comment'))
    return jsonify({'success': True, 'rating': rating.to_dict()}), 201


@orders_bp.route('/<order_id>/rating', methods=['GET'])
@require_auth
def my_order_rating(order_id):
    rating = ratings.get_order_rating(order_id, request.user_id)
    return jsonify({'rating': rating.to_dict() if rating else None}), 200

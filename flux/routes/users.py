"""
Users blueprint
Public reputation: ratings received by a user
"""
from flask import Blueprint, current_app, jsonify, request

from flux.services import ratings
from flux.utils import require_auth

users_bp = Blueprint('users', __name__)


@users_bp.route('/<user_id>/ratings', methods=['GET'])
@require_auth
def user_ratings(user_id):
    """
    Ratings a user received and their average

    GET /api/users/<user_id>/ratings?limit=20
    """
    limit = request.args.get('limit', current_app.config.get('ITEMS_PER_PAGE', 20), type=int)
    limit = max(1, min(limit, current_app.config.get('MAX_ITEMS_PER_PAGE', 100)))
    result = ratings.ratings_for(user_id, limit=limit)
    return jsonify({
        'userId': user_id,
        'average': result['average'],
        'count': result['count'],
        'ratings': [r.to_dict() for r in result['ratings']],
    }), 200

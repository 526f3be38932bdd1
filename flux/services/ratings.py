"""
Post-delivery ratings.

Once an order is completed the company and the assigned driver may each
rate the other once. The unique (order_id, from_user_id) constraint decides
between concurrent submissions.
"""
import logging

from sqlalchemy import func, select

from flux import db
from flux.errors import (
    AlreadyRated, NotAuthorized, OrderNotFound, OrderNotRateable, UserNotFound, ValidationError,
)
from flux.models import Order, Rating, User, generate_uuid
from flux.models.rating import MAX_COMMENT_LENGTH
from flux.services.fanout import RATING_RECEIVED, publish_fact

logger = logging.getLogger(__name__)


def _check_stars(stars):
    if isinstance(stars, bool) or not isinstance(stars, int) or not 1 <= stars <= 5:
        raise ValidationError('stars must be an integer from 1 to 5', field='stars')
    return stars


def _clean_comment(comment):
    if comment is None:
        return None
    if not isinstance(comment, str):
        raise ValidationError('comment must be text', field='comment')
    comment = comment.strip()
    if len(comment) > MAX_COMMENT_LENGTH:
        raise ValidationError(f'comment must be at most {MAX_COMMENT_LENGTH} characters', field='comment')
    return comment or None


def _counterparty(order, user_id):
    if user_id == order.company_user_id:
        return order.driver_user_id
    if order.driver_user_id is not None and user_id == order.driver_user_id:
        return order.company_user_id
    raise NotAuthorized('Only the company and driver of this order can rate it')


def rate_order(order_id, from_user_id, stars, comment=None):
    """
    Rate the other party of a completed order.

    Returns:
        Rating: The stored rating

    Raises:
        ValidationError, OrderNotFound, NotAuthorized, OrderNotRateable, AlreadyRated
    """
    stars = _check_stars(stars)
    comment = _clean_comment(comment)

    order = db.session.get(Order, order_id, populate_existing=True)
    if order is None:
        raise OrderNotFound()
    to_user_id = _counterparty(order, from_user_id)
    if order.status != 'completed':
        raise OrderNotRateable(status=order.status)

    rating_id = generate_uuid()
    inserted = Rating.insert_if_absent(
        ['order_id', 'from_user_id'],
        id=rating_id,
        order_id=order_id,
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        stars=stars,
        comment=comment,
    )
    if not inserted:
        db.session.rollback()
        raise AlreadyRated()
    db.session.commit()

    logger.info("User %s rated %s %d stars on order %s", from_user_id, to_user_id, stars, order_id)
    publish_fact(
        RATING_RECEIVED,
        {'order_id': order_id, 'from_user_id': from_user_id, 'stars': stars},
        user_ids=[to_user_id],
    )
    return db.session.get(Rating, rating_id)


def get_order_rating(order_id, from_user_id):
    """The rating ``from_user_id`` left on an order, or None"""
    return db.session.execute(
        select(Rating).where(Rating.order_id == order_id, Rating.from_user_id == from_user_id)
    ).scalar_one_or_none()


def ratings_for(user_id, limit=None):
    """
    Ratings received by a user, newest first, with their average.

    Returns:
        dict: ``ratings`` (list of Rating), ``average`` (float or None), ``count``
    """
    if db.session.get(User, user_id) is None:
        raise UserNotFound()

    query = select(Rating).where(Rating.to_user_id == user_id).order_by(Rating.created_at.desc())
    if limit:
        query = query.limit(limit)
    ratings = db.session.execute(query).scalars().all()

    count, average = db.session.execute(
        select(func.count(Rating.id), func.avg(Rating.stars)).where(Rating.to_user_id == user_id)
    ).one()
    return {
        'ratings': ratings,
        'average': round(float(average), 2) if average is not None else None,
        'count': count,
    }

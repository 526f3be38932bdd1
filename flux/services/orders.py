"""
Order lifecycle.

    pending -> accepted -> driver_completed -> completed
    pending | accepted -> cancelled

Every status change is a single conditional UPDATE predicated on the prior
status and the acting party, so two requests racing on the same order can
never both succeed. The pending -> accepted edge is the acceptance guard:
the only place a driver gets bound to an order.
"""
import logging

from flask import current_app
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased

from flux import db
from flux.errors import (
    Conflict, DeliveriesNotValidated, DriverBusy, InvalidTransition, NotAssigned,
    NotAuthorized, OrderNotFound, OrderUnavailable, ValidationError,
)
from flux.models import Order, OrderDelivery, User, utcnow
from flux.models.order import ORDER_STATUSES
from flux.services import delivery_codes
from flux.services.credit_ledger import require_access
from flux.services.fanout import (
    ORDER_ACCEPTED, ORDER_CANCELLED, ORDER_CODES_READY, ORDER_COMPLETED,
    ORDER_CREATED, ORDER_DRIVER_COMPLETED, publish_fact,
)
from flux.utils.validators import validate_order

logger = logging.getLogger(__name__)

CANCELLATION_POLICIES = ('either', 'company_only')


def _get_user(user_id):
    user = db.session.get(User, user_id) if user_id else None
    if user is None:
        raise NotAuthorized('Unknown user')
    return user


def _fresh_order(order_id):
    """Load an order bypassing the identity map; conditional updates skip session sync"""
    order = db.session.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if order is None:
        raise OrderNotFound()
    return order


def _region(order):
    return (order.state, order.city) if order.city else None


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------
def create_order(company_id, deliveries, total_value, city=None, state=None):
    """
    Create a pending order with its deliveries.

    Args:
        company_id (str): Acting company user
        deliveries (list): Raw delivery payloads
        total_value: Order total (number or numeric string)
        city (str): Defaults to the company's profile city
        state (str): Defaults to the company's profile state

    Returns:
        Order: The persisted order
    """
    company = _get_user(company_id)
    if company.role != 'company':
        raise NotAuthorized('Only companies can create orders')
    require_access(company_id)

    cleaned, total = validate_order(deliveries, total_value)

    order = Order(
        company_user_id=company_id,
        status='pending',
        total_value=total,
        city=(city or company.city or None),
        state=(state or company.state or None),
    )
    order.deliveries = [OrderDelivery(**d) for d in cleaned]
    db.session.add(order)
    db.session.commit()

    logger.info(
        "Order %s created by company %s with %d deliveries (city=%s)",
        order.id, company_id, len(cleaned), order.city,
    )
    publish_fact(
        ORDER_CREATED,
        {'order_id': order.id, 'city': order.city, 'state': order.state,
         'total_value': float(order.total_value), 'deliveries': len(cleaned)},
        user_ids=[company_id],
        region=_region(order),
    )
    return order


# ---------------------------------------------------------------------------
# Acceptance guard
# ---------------------------------------------------------------------------
def _driver_has_open_order(driver_id):
    open_order = aliased(Order)
    return (
        select(open_order.id)
        .where(open_order.driver_user_id == driver_id, open_order.status == 'accepted')
        .exists()
    )


def _diagnose_lost_acceptance(order_id, driver_id):
    exists_row = db.session.execute(select(Order.id).where(Order.id == order_id)).first()
    if exists_row is None:
        return OrderNotFound()
    if db.session.execute(select(_driver_has_open_order(driver_id))).scalar():
        return DriverBusy()
    return OrderUnavailable()


def accept_order(order_id, driver_id):
    """
    Bind a pending order to a driver. Exactly one concurrent caller wins.

    After the acceptance commits, codes are generated for every delivery on a
    best-effort basis; a generation failure never undoes the acceptance.

    Raises:
        OrderNotFound, DriverBusy, OrderUnavailable, NotAuthorized, AccessExpired
    """
    driver = _get_user(driver_id)
    if driver.role != 'driver':
        raise NotAuthorized('Only drivers can accept orders')
    require_access(driver_id)

    now = utcnow()
    try:
        result = db.session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == 'pending',
                Order.driver_user_id.is_(None),
                ~_driver_has_open_order(driver_id),
            )
            .values(status='accepted', driver_user_id=driver_id, accepted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            error = _diagnose_lost_acceptance(order_id, driver_id)
            db.session.rollback()
            logger.info("Driver %s lost acceptance of order %s: %s", driver_id, order_id, error.code)
            raise error
        db.session.commit()
    except IntegrityError:
        # Partial unique index: another acceptance by this driver committed first
        db.session.rollback()
        logger.info("Driver %s already holds an open order (index), order %s", driver_id, order_id)
        raise DriverBusy()

    order = _fresh_order(order_id)
    logger.info("Order %s accepted by driver %s", order_id, driver_id)
    publish_fact(
        ORDER_ACCEPTED,
        {'order_id': order_id, 'driver_user_id': driver_id, 'accepted_at': now.isoformat()},
        user_ids=[order.company_user_id, driver_id],
        region=_region(order),
    )

    summary = delivery_codes.issue_codes_for_order(order_id)
    if summary['failed']:
        logger.error(
            "Order %s accepted but %d delivery codes could not be generated: %s",
            order_id, summary['failed'], summary['failed_ids'],
        )
    publish_fact(
        ORDER_CODES_READY,
        {'order_id': order_id, 'generated': summary['generated'], 'failed': summary['failed']},
        user_ids=[order.company_user_id, driver_id],
    )
    return _fresh_order(order_id)


def ensure_delivery_codes(order_id, actor_id):
    """Re-run code generation for an accepted order; deliveries that have a code are skipped"""
    actor = _get_user(actor_id)
    order = _fresh_order(order_id)
    if actor.role != 'admin' and actor_id not in (order.company_user_id, order.driver_user_id):
        raise NotAuthorized('Not a party to this order')
    if order.status not in ('accepted', 'driver_completed'):
        raise Conflict('Codes are only generated for accepted orders', status=order.status)

    summary = delivery_codes.issue_codes_for_order(order_id)
    if summary['generated']:
        publish_fact(
            ORDER_CODES_READY,
            {'order_id': order_id, 'generated': summary['generated'], 'failed': summary['failed']},
            user_ids=[order.company_user_id, order.driver_user_id],
        )
    return summary


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------
def _unvalidated_deliveries(order_id):
    return (
        select(OrderDelivery.id)
        .where(OrderDelivery.order_id == order_id, OrderDelivery.validated_at.is_(None))
        .exists()
    )


def _finish_by_driver(order, actor):
    if actor.id != order.driver_user_id:
        raise NotAssigned()
    if order.status != 'accepted':
        raise InvalidTransition(f'Cannot move from {order.status} to driver_completed')
    if db.session.execute(select(_unvalidated_deliveries(order.id))).scalar():
        raise DeliveriesNotValidated()

    now = utcnow()
    result = db.session.execute(
        update(Order)
        .where(
            Order.id == order.id,
            Order.status == 'accepted',
            Order.driver_user_id == actor.id,
            ~_unvalidated_deliveries(order.id),
        )
        .values(status='driver_completed', driver_completed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount, ORDER_DRIVER_COMPLETED


def _confirm_by_company(order, actor):
    if actor.id != order.company_user_id:
        raise NotAuthorized('Only the company that created the order can confirm it')
    if order.status != 'driver_completed':
        raise InvalidTransition(f'Cannot move from {order.status} to completed')

    now = utcnow()
    result = db.session.execute(
        update(Order)
        .where(
            Order.id == order.id,
            Order.status == 'driver_completed',
            Order.company_user_id == actor.id,
        )
        .values(status='completed', completed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount, ORDER_COMPLETED


def transition(order_id, target_status, actor_id):
    """
    Move an order to ``target_status`` on behalf of ``actor_id``.

    Returns:
        Order: The order after the transition

    Raises:
        ValidationError, OrderNotFound, NotAuthorized, InvalidTransition, Conflict
    """
    if target_status not in ORDER_STATUSES:
        raise ValidationError(
            f'status must be one of: {", ".join(ORDER_STATUSES)}', field='status'
        )
    if target_status == 'accepted':
        return accept_order(order_id, actor_id)
    if target_status == 'cancelled':
        return cancel(order_id, actor_id)

    actor = _get_user(actor_id)
    order = _fresh_order(order_id)
    if actor.role != 'admin' and actor_id not in (order.company_user_id, order.driver_user_id):
        raise NotAuthorized('Not a party to this order')

    if target_status == 'driver_completed':
        rowcount, kind = _finish_by_driver(order, actor)
    elif target_status == 'completed':
        rowcount, kind = _confirm_by_company(order, actor)
    else:
        raise InvalidTransition(f'Cannot move from {order.status} to {target_status}')

    if rowcount != 1:
        db.session.rollback()
        raise Conflict('Order changed while updating, reload and try again')
    db.session.commit()

    logger.info("Order %s: %s -> %s by %s", order_id, order.status, target_status, actor_id)
    order = _fresh_order(order_id)
    publish_fact(
        kind,
        {'order_id': order_id, 'status': order.status},
        user_ids=[order.company_user_id, order.driver_user_id],
    )
    return order


def _cancellation_policy():
    policy = current_app.config.get('ACCEPTED_CANCELLATION_POLICY', 'either')
    if policy not in CANCELLATION_POLICIES:
        logger.warning("Unknown ACCEPTED_CANCELLATION_POLICY %r, using 'either'", policy)
        return 'either'
    return policy


def cancel(order_id, actor_id):
    """
    Cancel a pending or accepted order.

    Pending orders can only be cancelled by the owning company. Accepted
    orders follow ACCEPTED_CANCELLATION_POLICY: the company or the assigned
    driver under ``either``, the company alone under ``company_only``.
    Cancelling releases the driver.
    """
    actor = _get_user(actor_id)
    order = _fresh_order(order_id)
    is_company = actor_id == order.company_user_id
    is_driver = order.driver_user_id is not None and actor_id == order.driver_user_id

    if not (is_company or is_driver):
        raise NotAuthorized('Not a party to this order')
    if order.status not in ('pending', 'accepted'):
        raise InvalidTransition(f'Cannot cancel an order that is {order.status}')
    if order.status == 'pending' and not is_company:
        raise NotAuthorized('Only the company can cancel a pending order')
    if order.status == 'accepted' and not is_company and _cancellation_policy() == 'company_only':
        raise NotAuthorized('Only the company can cancel an accepted order')

    prior_status = order.status
    prior_driver = order.driver_user_id
    may_cancel = or_(
        and_(Order.status == 'pending', Order.company_user_id == actor_id),
        and_(
            Order.status == 'accepted',
            or_(Order.company_user_id == actor_id, Order.driver_user_id == actor_id),
        ),
    )
    now = utcnow()
    result = db.session.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.status == prior_status,
            (Order.driver_user_id.is_(None) if prior_driver is None else Order.driver_user_id == prior_driver),
            may_cancel,
        )
        .values(
            status='cancelled', driver_user_id=None,
            cancelled_at=now, cancelled_by=actor_id, updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise Conflict('Order changed while cancelling, reload and try again')
    db.session.commit()

    logger.info("Order %s cancelled by %s (was %s)", order_id, actor_id, prior_status)
    publish_fact(
        ORDER_CANCELLED,
        {'order_id': order_id, 'cancelled_by': actor_id, 'previous_status': prior_status},
        user_ids=[order.company_user_id, prior_driver],
        region=_region(order) if prior_status == 'pending' else None,
    )
    return _fresh_order(order_id)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def get_order_for(order_id, actor_id):
    """An order as seen by one of its parties, an admin, or a driver browsing pending work"""
    actor = _get_user(actor_id)
    order = _fresh_order(order_id)
    if actor.role == 'admin' or actor_id in (order.company_user_id, order.driver_user_id):
        return order
    if actor.role == 'driver' and order.status == 'pending':
        return order
    raise NotAuthorized('Not a party to this order')


def list_orders_for(actor_id, status=None, limit=None):
    """Orders the actor takes part in, newest first; admins see everything"""
    actor = _get_user(actor_id)
    if status is not None and status not in ORDER_STATUSES:
        raise ValidationError(
            f'status must be one of: {", ".join(ORDER_STATUSES)}', field='status'
        )

    query = select(Order)
    if actor.role == 'company':
        query = query.where(Order.company_user_id == actor_id)
    elif actor.role == 'driver':
        query = query.where(Order.driver_user_id == actor_id)
    if status:
        query = query.where(Order.status == status)
    query = query.order_by(Order.created_at.desc())
    if limit:
        query = query.limit(limit)
    return db.session.execute(query).scalars().all()


def list_available_orders(city, state=None, limit=None):
    """Pending orders in a city, oldest first"""
    if not city:
        raise ValidationError('city is required', field='city')

    query = select(Order).where(Order.status == 'pending', Order.city == city)
    if state:
        query = query.where(Order.state == state)
    query = query.order_by(Order.created_at.asc())
    if limit:
        query = query.limit(limit)
    return db.session.execute(query).scalars().all()

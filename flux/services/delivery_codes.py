"""
Delivery-code verification.

Each delivery gets a short one-time code once a driver accepts the order.
The customer hands it to the driver at dropoff and the driver submits it
here. Only the SHA-256 digest is used for verification; the plaintext copy
exists so the owning company can resend it.

Validation is server-authoritative: the attempt counter is bumped by a
single conditional UPDATE that also re-checks assignment, single use and the
lockout, so concurrent submissions for one delivery serialise on the row
lock and the counter only ever grows.
"""
import hashlib
import hmac
import logging
import secrets

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from flux import db
from flux.errors import (
    AlreadyValidated, AttemptsExceeded, CodeNotIssued, Conflict, DeliveryNotFound,
    InvalidCode, NotAssigned, NotAuthorized, OrderNotFound, ValidationError,
)
from flux.models import Order, OrderDelivery, User, utcnow
from flux.models.order import MAX_VALIDATION_ATTEMPTS
from flux.services.fanout import DELIVERY_VALIDATED, publish_fact

logger = logging.getLogger(__name__)

# No 0/O/1/I: codes are read aloud and typed on phones
CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
CODE_LENGTH = 6


def generate_code():
    return ''.join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def normalize_code(code):
    return (code or '').strip().upper()


def hash_code(code):
    """SHA-256 hex digest of the code's UTF-8 bytes (unsalted)"""
    return hashlib.sha256(code.encode('utf-8')).hexdigest()


def _max_attempts():
    return current_app.config.get('DELIVERY_CODE_MAX_ATTEMPTS', MAX_VALIDATION_ATTEMPTS)


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------
def issue_code(delivery_id):
    """
    Give a delivery a code unless it already has one. Does not commit.

    Returns:
        str | None: The new plaintext code, or None if a code already existed
    """
    code = generate_code()
    result = db.session.execute(
        update(OrderDelivery)
        .where(OrderDelivery.id == delivery_id, OrderDelivery.code_hash.is_(None))
        .values(code_hash=hash_code(code), delivery_code=code)
        .execution_options(synchronize_session=False)
    )
    return code if result.rowcount == 1 else None


def issue_codes_for_order(order_id, retries=None):
    """
    Best-effort code generation for every delivery of an order.

    Each delivery is its own transaction and is retried independently; a
    delivery that keeps failing is logged and left for a later call.

    Returns:
        dict: counts of generated, existing and failed deliveries plus the ids that failed
    """
    retries = retries or current_app.config.get('CODE_GENERATION_RETRIES', 3)
    delivery_ids = db.session.execute(
        select(OrderDelivery.id, OrderDelivery.code_hash)
        .where(OrderDelivery.order_id == order_id)
        .order_by(OrderDelivery.position)
    ).all()

    summary = {'generated': 0, 'existing': 0, 'failed': 0, 'failed_ids': []}
    for delivery_id, existing_hash in delivery_ids:
        if existing_hash is not None:
            summary['existing'] += 1
            continue

        for attempt in range(1, retries + 1):
            try:
                issued = issue_code(delivery_id)
                db.session.commit()
            except SQLAlchemyError:
                db.session.rollback()
                logger.exception(
                    "Code generation failed for delivery %s (attempt %d/%d)",
                    delivery_id, attempt, retries,
                )
                continue
            summary['generated' if issued else 'existing'] += 1
            break
        else:
            summary['failed'] += 1
            summary['failed_ids'].append(delivery_id)

    logger.info(
        "Codes for order %s: %d generated, %d existing, %d failed",
        order_id, summary['generated'], summary['existing'], summary['failed'],
    )
    return summary


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def _diagnose_rejection(delivery_id, driver_id, max_attempts):
    """Explain why the conditional attempt increment matched no row"""
    row = db.session.execute(
        select(OrderDelivery, Order.driver_user_id)
        .join(Order, Order.id == OrderDelivery.order_id)
        .where(OrderDelivery.id == delivery_id)
    ).first()
    if row is None:
        return DeliveryNotFound()
    delivery, assigned_driver = row
    if assigned_driver is None or assigned_driver != driver_id:
        return NotAssigned()
    if delivery.validated_at is not None:
        return AlreadyValidated()
    if delivery.validation_attempts >= max_attempts:
        return AttemptsExceeded()
    if delivery.code_hash is None:
        return CodeNotIssued()
    return Conflict('Delivery changed while validating, try again')


def validate(delivery_id, submitted_code, driver_id):
    """
    Check a driver's submitted code for a delivery.

    Order of checks: assignment, single use, lockout, code presence, then the
    attempt is counted and the code compared in constant time.

    Returns:
        bool: True when the code matched and the delivery is now validated

    Raises:
        NotAssigned, AlreadyValidated, AttemptsExceeded, CodeNotIssued, InvalidCode
    """
    code = normalize_code(submitted_code)
    if not code:
        raise ValidationError('code is required', field='code')

    max_attempts = _max_attempts()
    is_assigned = (
        select(Order.id)
        .where(Order.id == OrderDelivery.order_id, Order.driver_user_id == driver_id)
        .exists()
    )
    result = db.session.execute(
        update(OrderDelivery)
        .where(
            OrderDelivery.id == delivery_id,
            is_assigned,
            OrderDelivery.validated_at.is_(None),
            OrderDelivery.validation_attempts < max_attempts,
            OrderDelivery.code_hash.isnot(None),
        )
        .values(validation_attempts=OrderDelivery.validation_attempts + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        error = _diagnose_rejection(delivery_id, driver_id, max_attempts)
        db.session.rollback()
        logger.info("Code validation refused for delivery %s: %s", delivery_id, error.code)
        raise error

    # The increment above holds the row lock until commit
    stored_hash, attempts, order_id = db.session.execute(
        select(OrderDelivery.code_hash, OrderDelivery.validation_attempts, OrderDelivery.order_id)
        .where(OrderDelivery.id == delivery_id)
    ).one()

    if not hmac.compare_digest(hash_code(code), stored_hash):
        db.session.commit()
        remaining = max(0, max_attempts - attempts)
        logger.info("Wrong code for delivery %s (%d attempts left)", delivery_id, remaining)
        raise InvalidCode(attempts_remaining=remaining)

    db.session.execute(
        update(OrderDelivery)
        .where(OrderDelivery.id == delivery_id, OrderDelivery.validated_at.is_(None))
        .values(validated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    logger.info("Delivery %s validated by driver %s", delivery_id, driver_id)

    company_user_id = db.session.execute(
        select(Order.company_user_id).where(Order.id == order_id)
    ).scalar_one()
    publish_fact(
        DELIVERY_VALIDATED,
        {'order_id': order_id, 'delivery_id': delivery_id},
        user_ids=[company_user_id, driver_id],
    )
    return True


# ---------------------------------------------------------------------------
# Company and operator helpers
# ---------------------------------------------------------------------------
def _company_order(order_id, company_id):
    order = db.session.get(Order, order_id, populate_existing=True)
    if order is None:
        raise OrderNotFound()
    if order.company_user_id != company_id:
        raise NotAuthorized('Only the company that created the order can see its codes')
    return order


def reveal_codes(order_id, company_id):
    """Plaintext codes for the owning company to resend to its customers"""
    order = _company_order(order_id, company_id)
    return [
        {
            'delivery_id': d.id,
            'dropoff_address': d.dropoff_address,
            'customer_name': d.customer_name,
            'customer_phone': d.customer_phone,
            'code': d.delivery_code,
            'code_sent_at': d.code_sent_at.isoformat() if d.code_sent_at else None,
            'validated': d.is_validated,
        }
        for d in order.deliveries
    ]


def mark_code_sent(delivery_id, company_id):
    """Record that the company forwarded the code to its customer"""
    owned = (
        select(Order.id)
        .where(Order.id == OrderDelivery.order_id, Order.company_user_id == company_id)
        .exists()
    )
    sent_at = utcnow()
    result = db.session.execute(
        update(OrderDelivery)
        .where(OrderDelivery.id == delivery_id, owned, OrderDelivery.code_hash.isnot(None))
        .values(code_sent_at=sent_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        delivery = db.session.get(OrderDelivery, delivery_id)
        if delivery is None:
            raise DeliveryNotFound()
        if delivery.order.company_user_id != company_id:
            raise NotAuthorized('Only the company that created the order can send its codes')
        raise CodeNotIssued()
    db.session.commit()
    return sent_at


def reset_attempts(delivery_id, admin_id):
    """Operator unlock of a delivery locked out by wrong submissions"""
    admin = db.session.get(User, admin_id)
    if admin is None or admin.role != 'admin':
        raise NotAuthorized('Only admins can reset validation attempts')

    result = db.session.execute(
        update(OrderDelivery)
        .where(OrderDelivery.id == delivery_id, OrderDelivery.validated_at.is_(None))
        .values(validation_attempts=0)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        if db.session.get(OrderDelivery, delivery_id) is None:
            raise DeliveryNotFound()
        raise AlreadyValidated()
    db.session.commit()
    logger.warning("Admin %s reset validation attempts for delivery %s", admin_id, delivery_id)
    return True

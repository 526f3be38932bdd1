"""
Credit ledger: per-user subscription expiry.

A user has access while ``now < valid_until`` or when their role grants
unconditional access. Extension stacks on a future expiry and restarts
from ``now`` on an expired one, so extensions commute and a duplicate
payment can only be harmful if it is applied twice, which the billing
event log prevents.
"""
import logging
from datetime import timedelta

from sqlalchemy import select, update

from flux import db
from flux.errors import AccessExpired, Conflict, CreditsNotFound, NotAuthorized, ValidationError
from flux.models import Credits, User, utcnow
from flux.services.fanout import CREDITS_EXTENDED, publish_fact

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 5
MAX_EXTENSION_DAYS = 3660


def get_credits(user_id):
    """Return the user's Credits row or None"""
    return db.session.execute(
        select(Credits).where(Credits.user_id == user_id)
    ).scalar_one_or_none()


def has_access(user_id, now=None):
    user = db.session.get(User, user_id)
    if user is not None and user.has_unconditional_access:
        return True

    valid_until = db.session.execute(
        select(Credits.valid_until).where(Credits.user_id == user_id)
    ).scalar_one_or_none()
    if valid_until is None:
        return False
    return (now or utcnow()) < valid_until


def require_access(user_id, now=None):
    if not has_access(user_id, now=now):
        raise AccessExpired()


def read_credits(user_id):
    """Credits read interface: ``{"validUntil": ...}`` or CreditsNotFound"""
    credits = get_credits(user_id)
    if credits is None:
        raise CreditsNotFound()
    return credits.to_dict()


def _check_days(days):
    if isinstance(days, bool) or not isinstance(days, int):
        raise ValidationError('days must be an integer', field='days')
    if days <= 0 or days > MAX_EXTENSION_DAYS:
        raise ValidationError(f'days must be between 1 and {MAX_EXTENSION_DAYS}', field='days')


def extend(user_id, days, now=None):
    """
    Extend a user's credits by ``days``.

    Runs inside the caller's transaction and does not commit. The row is
    created with insert-if-absent; an existing row is only written through a
    compare-and-swap on ``version``, retried a bounded number of times.

    Args:
        user_id (str): User to credit
        days (int): Duration to add
        now (datetime): Reference instant (naive UTC), defaults to utcnow()

    Returns:
        datetime: The new valid_until
    """
    _check_days(days)
    now = now or utcnow()
    delta = timedelta(days=days)

    if Credits.insert_if_absent(['user_id'], user_id=user_id, valid_until=now + delta, version=1):
        logger.info("Credits created for user %s until %s", user_id, now + delta)
        return now + delta

    for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
        current = db.session.execute(
            select(Credits.valid_until, Credits.version).where(Credits.user_id == user_id)
        ).one()
        base = current.valid_until if current.valid_until > now else now
        next_valid_until = base + delta

        result = db.session.execute(
            update(Credits)
            .where(Credits.user_id == user_id, Credits.version == current.version)
            .values(valid_until=next_valid_until, version=current.version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.info(
                "Credits extended for user %s by %d days: %s -> %s",
                user_id, days, current.valid_until, next_valid_until,
            )
            return next_valid_until

        logger.debug("Credits CAS lost for user %s (attempt %d)", user_id, attempt)

    raise Conflict('Credits were modified concurrently, retry the operation')


def announce_extension(user_id, valid_until, source):
    """Publish a credits.extended fact; call only after the extension committed"""
    publish_fact(
        CREDITS_EXTENDED,
        {'user_id': user_id, 'valid_until': valid_until.isoformat(), 'source': source},
        user_ids=[user_id],
    )


def grant(user_id, days, admin_id):
    """Manual extension by an operator"""
    admin = db.session.get(User, admin_id)
    if admin is None or admin.role != 'admin':
        raise NotAuthorized('Only admins can grant credits')

    valid_until = extend(user_id, days)
    db.session.commit()
    logger.info("Admin %s granted %d days to user %s", admin_id, days, user_id)
    announce_extension(user_id, valid_until, source='admin')
    return valid_until

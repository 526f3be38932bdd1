"""
Stripe Checkout sessions for credit plans.

The session carries the buyer's user id as ``client_reference_id`` and the
plan in its metadata; the webhook processor relies on both to fulfil.
"""
import logging

from flask import current_app
from sqlalchemy import select

from flux import db
from flux.errors import (
    ExternalDependencyError, ExternalDependencyTimeout, NotAuthorized, PlanNotFound,
    ValidationError,
)
from flux.models import BillingCustomer, BillingPlan, User
from flux.utils.validators import is_allowed_redirect_url

logger = logging.getLogger(__name__)

# Lazy-loaded Stripe module
_stripe = None


def _get_stripe():
    global _stripe
    if _stripe is None:
        import stripe
        _stripe = stripe
    _stripe.api_key = current_app.config.get('STRIPE_SECRET_KEY', '')
    timeout = current_app.config.get('STRIPE_API_TIMEOUT_SECONDS', 35)
    if getattr(_stripe.default_http_client, '_timeout', None) != timeout:
        _stripe.default_http_client = _stripe.RequestsClient(timeout=timeout)
    return _stripe


def _call_stripe(stripe, operation, fn, **params):
    try:
        return fn(**params)
    except stripe.APIConnectionError as e:
        logger.error("Stripe %s timed out or could not connect: %s", operation, e)
        raise ExternalDependencyTimeout()
    except stripe.StripeError as e:
        logger.error("Stripe %s failed: %s", operation, e)
        raise ExternalDependencyError(getattr(e, 'user_message', None) or 'Payment gateway error')


def list_active_plans(role=None):
    query = select(BillingPlan).where(BillingPlan.active.is_(True))
    if role and role != 'admin':
        query = query.where(BillingPlan.role == role)
    return db.session.execute(query.order_by(BillingPlan.role, BillingPlan.duration_days)).scalars().all()


def _check_profile_complete(user):
    missing = [f for f in ('name', 'phone', 'city', 'state') if not getattr(user, f)]
    if missing:
        raise NotAuthorized('Complete your profile before checkout', missing=missing)


def get_or_create_customer(stripe, user):
    """Return the user's Stripe customer id, creating and persisting one on first checkout"""
    existing = db.session.execute(
        select(BillingCustomer.stripe_customer_id).where(BillingCustomer.user_id == user.id)
    ).scalar_one_or_none()
    if existing:
        return existing

    params = {'metadata': {'user_id': user.id}}
    if user.email:
        params['email'] = user.email
    if user.name:
        params['name'] = user.name
    customer = _call_stripe(stripe, 'customer creation', stripe.Customer.create, **params)

    BillingCustomer.insert_if_absent(['user_id'], user_id=user.id, stripe_customer_id=customer.id)
    db.session.commit()

    # A concurrent checkout may have persisted its own customer first
    return db.session.execute(
        select(BillingCustomer.stripe_customer_id).where(BillingCustomer.user_id == user.id)
    ).scalar_one()


def _line_item(plan):
    if plan.stripe_price_id:
        return {'price': plan.stripe_price_id, 'quantity': 1}
    return {
        'price_data': {
            'currency': plan.currency or 'brl',
            'unit_amount': plan.amount_cents,
            'product_data': {'name': plan.display_name},
        },
        'quantity': 1,
    }


def create_checkout_session(user_id, plan_key, success_url=None, cancel_url=None):
    """
    Create a hosted Stripe Checkout session for a plan.

    Args:
        user_id (str): Buyer
        plan_key (str): BillingPlan key
        success_url (str): Redirect after payment, HTTPS on an allowed host
        cancel_url (str): Redirect on abandon, HTTPS on an allowed host

    Returns:
        str: Hosted checkout URL
    """
    if not plan_key:
        raise ValidationError('planKey is required', field='planKey')

    config = current_app.config
    success_url = success_url or config['CHECKOUT_DEFAULT_SUCCESS_URL']
    cancel_url = cancel_url or config['CHECKOUT_DEFAULT_CANCEL_URL']
    allowed_hosts = config['CHECKOUT_ALLOWED_HOSTS']
    if not is_allowed_redirect_url(success_url, allowed_hosts) or not is_allowed_redirect_url(cancel_url, allowed_hosts):
        raise ValidationError('Invalid successUrl/cancelUrl')

    user = db.session.get(User, user_id)
    if user is None:
        raise NotAuthorized('Unknown user')

    plan = db.session.get(BillingPlan, plan_key)
    if plan is None or not plan.active:
        raise PlanNotFound()

    is_admin = user.role == 'admin'
    if not is_admin:
        if plan.role != user.role:
            raise NotAuthorized('Plan does not match your role')
        _check_profile_complete(user)

    stripe = _get_stripe()
    customer_id = get_or_create_customer(stripe, user)

    session = _call_stripe(
        stripe, 'checkout session creation', stripe.checkout.Session.create,
        mode='payment',
        customer=customer_id,
        client_reference_id=user.id,
        success_url=success_url,
        cancel_url=cancel_url,
        line_items=[_line_item(plan)],
        payment_method_types=list(config['STRIPE_PAYMENT_METHOD_TYPES']),
        metadata={
            'user_id': user.id,
            'plan_key': plan.key,
            'role': plan.role,
            'duration_days': str(plan.duration_days),
            'amount_cents': str(plan.amount_cents),
            'currency': plan.currency,
        },
    )
    if not getattr(session, 'url', None):
        raise ExternalDependencyError('Stripe did not return a checkout URL')

    logger.info("Checkout session %s created for user %s (plan %s)", session.id, user.id, plan.key)
    return session.url

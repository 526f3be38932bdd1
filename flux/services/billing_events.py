"""
Stripe webhook processing.

Stripe delivers at-least-once and out of order, so every event id is
recorded in ``billing_events`` with INSERT ... ON CONFLICT DO NOTHING before
anything observable happens. The insert, the credit extension and the
outcome update share one transaction: either the event is fully applied
and logged, or nothing is and Stripe redelivers.
"""
import json
import logging

import stripe
from flask import current_app
from sqlalchemy import update

from flux import db
from flux.errors import (
    InvalidPayload, InvalidSignature, MissingMetadata, UnknownPlan, WebhookError,
    WebhookNotConfigured,
)
from flux.models import BillingEvent, BillingPlan, utcnow
from flux.services.credit_ledger import MAX_EXTENSION_DAYS, announce_extension, extend

logger = logging.getLogger(__name__)

PAID_EVENT_TYPES = (
    'checkout.session.completed',
    'checkout.session.async_payment_succeeded',
)


def verify_signature(raw_body, signature_header):
    """
    Verify the Stripe-Signature header and return the body as text.

    Raises:
        WebhookNotConfigured: No webhook secret configured
        InvalidSignature: Missing or malformed header, no matching v1 signature, stale timestamp
    """
    secret = current_app.config.get('STRIPE_WEBHOOK_SECRET')
    if not secret:
        raise WebhookNotConfigured()

    try:
        payload = raw_body.decode('utf-8') if isinstance(raw_body, bytes) else raw_body
    except UnicodeDecodeError:
        raise InvalidSignature('Body is not valid UTF-8')

    try:
        stripe.WebhookSignature.verify_header(
            payload,
            signature_header or '',
            secret,
            current_app.config.get('STRIPE_WEBHOOK_TOLERANCE_SECONDS', 300),
        )
    except stripe.SignatureVerificationError as e:
        logger.warning("Rejected Stripe webhook: %s", e)
        raise InvalidSignature()
    return payload


def parse_event(payload):
    try:
        event = json.loads(payload)
    except ValueError:
        raise InvalidPayload()
    if not isinstance(event, dict) or not event.get('id'):
        raise InvalidPayload('Event has no id')
    return event


def _record_outcome(event_id, outcome, **fields):
    db.session.execute(
        update(BillingEvent)
        .where(BillingEvent.event_id == event_id)
        .values(outcome=outcome, **fields)
        .execution_options(synchronize_session=False)
    )


def _as_dict(value):
    return value if isinstance(value, dict) else {}


def _as_text(value):
    return value if isinstance(value, str) and value else None


def _resolve_fulfilment(session_object):
    """Return (user_id, plan) for a paid checkout session or raise a WebhookError"""
    metadata = _as_dict(session_object.get('metadata'))
    user_id = _as_text(metadata.get('user_id')) or _as_text(session_object.get('client_reference_id'))
    plan_key = _as_text(metadata.get('plan_key'))
    if not user_id or not plan_key:
        raise MissingMetadata(
            'Checkout session has no user_id or plan_key metadata',
            user_id=user_id, plan_key=plan_key,
        )

    plan = db.session.get(BillingPlan, plan_key)
    if plan is None or not plan.duration_days or not 0 < plan.duration_days <= MAX_EXTENSION_DAYS:
        raise UnknownPlan(f'Unknown plan: {plan_key}', user_id=user_id, plan_key=plan_key)
    return user_id, plan


def process_webhook(raw_body, signature_header):
    """
    Authenticate, deduplicate and apply one Stripe event.

    Returns:
        dict: ``{"event_id", "status"}`` with status ``processed``,
        ``duplicate`` or ``ignored``

    Raises:
        WebhookError subclasses (400) after recording the event as rejected
        where it has an id; any other error after rolling back
    """
    payload = verify_signature(raw_body, signature_header)
    event = parse_event(payload)
    event_id = event['id']
    event_type = event.get('type') or 'unknown'
    session_object = _as_dict(_as_dict(event.get('data')).get('object'))

    try:
        inserted = BillingEvent.insert_if_absent(
            ['event_id'],
            provider='stripe',
            event_id=event_id,
            event_type=event_type,
            outcome='processed',
            raw=event,
            processed_at=utcnow(),
        )
        if not inserted:
            db.session.rollback()
            logger.info("Stripe event %s already processed", event_id)
            return {'event_id': event_id, 'status': 'duplicate'}

        if event_type not in PAID_EVENT_TYPES or session_object.get('payment_status') != 'paid':
            _record_outcome(event_id, 'ignored')
            db.session.commit()
            logger.info(
                "Ignored Stripe event %s (%s, payment_status=%s)",
                event_id, event_type, session_object.get('payment_status'),
            )
            return {'event_id': event_id, 'status': 'ignored'}

        try:
            user_id, plan = _resolve_fulfilment(session_object)
        except WebhookError as e:
            _record_outcome(
                event_id, 'rejected', error=e.message,
                user_id=e.extra.get('user_id'), plan_key=e.extra.get('plan_key'),
            )
            db.session.commit()
            logger.error("Rejected Stripe event %s: %s", event_id, e.message)
            raise

        valid_until = extend(user_id, plan.duration_days)
        _record_outcome(event_id, 'processed', user_id=user_id, plan_key=plan.key)
        db.session.commit()
    except WebhookError:
        raise
    except Exception:
        db.session.rollback()
        logger.exception("Failed to process Stripe event %s", event_id)
        raise

    logger.info(
        "Stripe event %s: user %s extended by %d days (%s) until %s",
        event_id, user_id, plan.duration_days, plan.key, valid_until,
    )
    announce_extension(user_id, valid_until, source='stripe')
    return {'event_id': event_id, 'status': 'processed'}

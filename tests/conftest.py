"""
Pytest configuration and fixtures for Flux backend tests
"""
import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from flux import create_app, db
from flux.models import BillingPlan, Credits, User, utcnow
from flux.services import orders

WEBHOOK_SECRET = 'whsec_test_secret'


class RecordingFanout:
    """Collects published facts instead of delivering them"""

    def __init__(self):
        self.facts = []

    def publish(self, fact):
        self.facts.append(fact)

    def kinds(self):
        return [f.kind for f in self.facts]

    def of_kind(self, kind):
        return [f for f in self.facts if f.kind == kind]


@pytest.fixture
def app(tmp_path):
    """Application on a fresh SQLite file; a file (not :memory:) so threads share it"""
    db_path = tmp_path / 'flux_test.db'
    app = create_app('testing', SQLALCHEMY_DATABASE_URI=f'sqlite:///{db_path}')
    app.extensions['fanout'] = RecordingFanout()

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture
def fanout(app):
    return app.extensions['fanout']


# ---------------------------------------------------------------------------
# Users and credits
# ---------------------------------------------------------------------------
@pytest.fixture
def make_user(app):
    """Factory for users of any role"""
    def _create_user(role='company', **kwargs):
        defaults = {
            'id': str(uuid.uuid4()),
            'email': f'{role}_{uuid.uuid4().hex[:8]}@example.com',
            'name': f'Test {role.title()}',
            'phone': '+5519999990000',
            'role': role,
            'city': 'Campinas',
            'state': 'SP',
        }
        defaults.update(kwargs)
        user = User(**defaults)
        db.session.add(user)
        db.session.commit()
        return user

    return _create_user


@pytest.fixture
def give_credits(app):
    """Set a user's credits to expire ``days`` from now (negative for expired)"""
    def _give(user, days=30):
        credits = Credits(user_id=user.id, valid_until=utcnow() + timedelta(days=days), version=1)
        db.session.add(credits)
        db.session.commit()
        return credits

    return _give


@pytest.fixture
def company(make_user, give_credits):
    user = make_user('company', name='Padaria Central')
    give_credits(user)
    return user


@pytest.fixture
def driver(make_user, give_credits):
    user = make_user('driver', name='Bruno Entregador')
    give_credits(user)
    return user


@pytest.fixture
def other_driver(make_user, give_credits):
    user = make_user('driver', name='Carla Entregadora')
    give_credits(user)
    return user


@pytest.fixture
def admin(make_user):
    return make_user('admin', name='Operador Flux')


@pytest.fixture
def auth_headers(app):
    """Factory: bearer headers for a user, signed like the identity provider would"""
    def _headers(user):
        token = jwt.encode({
            'sub': user.id,
            'exp': datetime.now(timezone.utc) + timedelta(hours=1),
        }, app.config['JWT_SECRET'], algorithm='HS256')
        return {
            'Authorization': f'Bearer {token}',
            'Content-Type': 'application/json',
        }

    return _headers


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
def delivery_payload(**overrides):
    data = {
        'pickup_address': 'Rua das Flores, 120 - Centro',
        'dropoff_address': 'Av. Brasil, 455 - Jardim Guanabara',
        'package_type': 'small_box',
        'suggested_price': 18.5,
        'customer_name': 'Maria Souza',
        'customer_phone': '+5519988887777',
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_order(app):
    """Factory for pending orders created through the order service"""
    def _create_order(company, deliveries=2, total_value=None, **kwargs):
        payloads = [delivery_payload(dropoff_address=f'Av. Brasil, {100 + i} - Centro') for i in range(deliveries)]
        total = total_value if total_value is not None else 18.5 * deliveries
        return orders.create_order(company.id, payloads, total, **kwargs)

    return _create_order


@pytest.fixture
def accepted_order(company, driver, make_order):
    order = make_order(company)
    return orders.accept_order(order.id, driver.id)


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------
@pytest.fixture
def plans(app):
    rows = [
        BillingPlan(key='driver_30d', role='driver', duration_days=30, amount_cents=4990, currency='brl'),
        BillingPlan(key='company_30d', role='company', duration_days=30, amount_cents=9990,
                    currency='brl', stripe_price_id='price_company_30d'),
        BillingPlan(key='driver_7d', role='driver', duration_days=7, amount_cents=1590,
                    currency='brl', active=False),
    ]
    db.session.add_all(rows)
    db.session.commit()
    return {p.key: p for p in rows}


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header for ``payload``"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(
        secret.encode('utf-8'), f'{timestamp}.{payload}'.encode('utf-8'), hashlib.sha256
    ).hexdigest()
    return f't={timestamp},v1={signature}'


def checkout_event(event_id=None, user_id=None, plan_key='driver_30d',
                   event_type='checkout.session.completed', payment_status='paid', metadata=None,
                   client_reference_id=None):
    if metadata is None:
        metadata = {'plan_key': plan_key}
        if user_id:
            metadata['user_id'] = user_id
    return json.dumps({
        'id': event_id or f'evt_{uuid.uuid4().hex[:24]}',
        'object': 'event',
        'type': event_type,
        'data': {
            'object': {
                'id': f'cs_test_{uuid.uuid4().hex[:16]}',
                'object': 'checkout.session',
                'payment_status': payment_status,
                'client_reference_id': client_reference_id,
                'metadata': metadata,
            },
        },
    })


@pytest.fixture
def post_webhook(client):
    """POST a signed (or deliberately mis-signed) payload to the webhook"""
    def _post(payload, signature=None):
        headers = {'Content-Type': 'application/json'}
        header = sign_payload(payload) if signature is None else signature
        if header:
            headers['Stripe-Signature'] = header
        return client.post('/api/webhooks/stripe', data=payload, headers=headers)

    return _post

"""Billing models: plans, the webhook idempotency log and Stripe customers"""
from flux import db
from .base import InsertIfAbsentMixin, generate_uuid, utcnow

BILLING_EVENT_OUTCOMES = ('processed', 'ignored', 'rejected')


class BillingPlan(db.Model):
    """Static catalog entry. Read-only from the application's point of view."""
    __tablename__ = 'billing_plans'

    key = db.Column(db.String(60), primary_key=True)
    role = db.Column(db.String(20), nullable=False)
    duration_days = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='brl')
    stripe_price_id = db.Column(db.String(255), nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        db.CheckConstraint("role IN ('company', 'driver')", name='ck_billing_plans_role'),
        db.CheckConstraint('duration_days > 0', name='ck_billing_plans_duration'),
    )

    def __repr__(self):
        return f'<BillingPlan {self.key}>'

    @property
    def display_name(self):
        role_label = {'company': 'Empresa', 'driver': 'Entregador'}.get(self.role, self.role)
        return f'Plano {role_label} - {self.duration_days} dias'

    def to_dict(self):
        return {
            'key': self.key,
            'role': self.role,
            'duration_days': self.duration_days,
            'amount_cents': self.amount_cents,
            'currency': self.currency,
            'name': self.display_name,
        }


class BillingEvent(InsertIfAbsentMixin, db.Model):
    """
    Append-only log of every Stripe event received.

    The unique constraint on ``event_id`` is what makes webhook replay safe.
    """
    __tablename__ = 'billing_events'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    provider = db.Column(db.String(20), nullable=False, default='stripe')
    event_id = db.Column(db.String(255), nullable=False)
    event_type = db.Column(db.String(120), nullable=False)
    outcome = db.Column(db.String(20), nullable=False, default='processed')
    user_id = db.Column(db.String(36), nullable=True, index=True)
    plan_key = db.Column(db.String(60), nullable=True)
    error = db.Column(db.Text, nullable=True)
    raw = db.Column(db.JSON, nullable=True)
    processed_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('event_id', name='uq_billing_events_event_id'),
        db.CheckConstraint(
            "outcome IN ('processed', 'ignored', 'rejected')",
            name='ck_billing_events_outcome',
        ),
    )

    def __repr__(self):
        return f'<BillingEvent {self.event_id} {self.event_type} ({self.outcome})>'


class BillingCustomer(InsertIfAbsentMixin, db.Model):
    """Maps a user to their Stripe customer"""
    __tablename__ = 'billing_customers'

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    user_id = db.Column(db.String(36), nullable=False, unique=True, index=True)
    stripe_customer_id = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

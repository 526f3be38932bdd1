"""Credits model"""
from flux import db
from .base import InsertIfAbsentMixin, generate_uuid, utcnow


class Credits(InsertIfAbsentMixin, db.Model):
    """
    Subscription expiry for one user.

    ``version`` is bumped on every write; flux.services.credit_ledger only
    updates a row whose version it has just read.
    """
    __tablename__ = 'credits'

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    # No FK: billing can fulfil a payment before the profile row exists
    user_id = db.Column(db.String(36), nullable=False, unique=True, index=True)
    valid_until = db.Column(db.DateTime, nullable=False)
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f'<Credits {self.user_id} until {self.valid_until}>'

    def to_dict(self):
        return {
            'userId': self.user_id,
            'validUntil': self.valid_until.isoformat() if self.valid_until else None,
        }

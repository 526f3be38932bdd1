"""Order and delivery models"""
from flux import db
from .base import BaseModel, generate_uuid, utcnow

ORDER_STATUSES = ('pending', 'accepted', 'driver_completed', 'completed', 'cancelled')

PACKAGE_TYPES = ('envelope', 'bag', 'small_box', 'large_box', 'other')

MAX_VALIDATION_ATTEMPTS = 5


class Order(BaseModel):
    """
    Order model - a company's delivery request made of one or more deliveries.

    Never deleted; cancellation is a terminal status. Status changes go
    through flux.services.orders, which only issues conditional updates.
    """
    __tablename__ = 'orders'

    company_user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False, index=True)
    driver_user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='RESTRICT'), nullable=True, index=True)

    status = db.Column(db.String(30), nullable=False, default='pending')
    total_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Regional fan-out
    city = db.Column(db.String(120), nullable=True)
    state = db.Column(db.String(60), nullable=True)

    accepted_at = db.Column(db.DateTime, nullable=True)
    driver_completed_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by = db.Column(db.String(36), nullable=True)

    deliveries = db.relationship(
        'OrderDelivery', backref='order', lazy='selectin',
        order_by='OrderDelivery.position', cascade='all, delete-orphan',
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending', 'accepted', 'driver_completed', 'completed', 'cancelled')",
            name='ck_orders_status',
        ),
        db.CheckConstraint(
            "(status IN ('pending', 'cancelled') AND driver_user_id IS NULL) OR "
            "(status IN ('accepted', 'driver_completed', 'completed') AND driver_user_id IS NOT NULL)",
            name='ck_orders_driver_binding',
        ),
        db.CheckConstraint('total_value >= 0 AND total_value <= 100000', name='ck_orders_total_value'),
        # One open (accepted) order per driver, enforced by the database
        db.Index(
            'uq_orders_driver_open', 'driver_user_id', unique=True,
            sqlite_where=db.text("status = 'accepted'"),
            postgresql_where=db.text("status = 'accepted'"),
        ),
        db.Index('idx_orders_status_city', 'status', 'city'),
    )

    def __repr__(self):
        return f'<Order {self.id} - {self.status}>'

    def to_dict(self, include_deliveries=True):
        """Convert to dictionary with optional deliveries"""
        data = super().to_dict()
        if include_deliveries:
            data['deliveries'] = [d.to_dict() for d in self.deliveries]
        return data


class OrderDelivery(db.Model):
    """
    One pickup/dropoff leg of an order.

    The verification code is stored as a SHA-256 digest; ``delivery_code``
    keeps the plaintext so the owning company can resend it to its customer.
    """
    __tablename__ = 'order_deliveries'

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    order_id = db.Column(db.String(36), db.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    pickup_address = db.Column(db.String(500), nullable=False)
    dropoff_address = db.Column(db.String(500), nullable=False)
    package_type = db.Column(db.String(20), nullable=False, default='other')
    notes = db.Column(db.String(500), nullable=True)
    customer_name = db.Column(db.String(120), nullable=True)
    customer_phone = db.Column(db.String(30), nullable=True)
    suggested_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    code_hash = db.Column(db.String(64), nullable=True)
    delivery_code = db.Column(db.String(6), nullable=True)
    code_sent_at = db.Column(db.DateTime, nullable=True)
    validation_attempts = db.Column(db.Integer, nullable=False, default=0)
    validated_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint(
            "package_type IN ('envelope', 'bag', 'small_box', 'large_box', 'other')",
            name='ck_deliveries_package_type',
        ),
        db.CheckConstraint('suggested_price >= 0 AND suggested_price <= 10000', name='ck_deliveries_price'),
        db.CheckConstraint('validation_attempts >= 0', name='ck_deliveries_attempts'),
        db.CheckConstraint('length(pickup_address) >= 5', name='ck_deliveries_pickup_len'),
        db.CheckConstraint('length(dropoff_address) >= 5', name='ck_deliveries_dropoff_len'),
    )

    def __repr__(self):
        return f'<OrderDelivery {self.id} of {self.order_id}>'

    @property
    def is_validated(self):
        return self.validated_at is not None

    def to_dict(self, include_code=False):
        data = {
            'id': self.id,
            'order_id': self.order_id,
            'position': self.position,
            'pickup_address': self.pickup_address,
            'dropoff_address': self.dropoff_address,
            'package_type': self.package_type,
            'notes': self.notes,
            'customer_name': self.customer_name,
            'customer_phone': self.customer_phone,
            'suggested_price': float(self.suggested_price) if self.suggested_price is not None else None,
            'has_code': self.code_hash is not None,
            'code_sent_at': self.code_sent_at.isoformat() if self.code_sent_at else None,
            'validation_attempts': self.validation_attempts,
            'validated_at': self.validated_at.isoformat() if self.validated_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
        if include_code:
            data['delivery_code'] = self.delivery_code
        return data

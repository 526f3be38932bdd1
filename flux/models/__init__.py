"""SQLAlchemy models package"""
from .base import BaseModel, InsertIfAbsentMixin, generate_uuid, utcnow
from .user import User
from .order import Order, OrderDelivery
from .credits import Credits
from .billing import BillingPlan, BillingEvent, BillingCustomer
from .rating import Rating

__all__ = [
    'BaseModel',
    'InsertIfAbsentMixin',
    'generate_uuid',
    'utcnow',
    'User',
    'Order',
    'OrderDelivery',
    'Credits',
    'BillingPlan',
    'BillingEvent',
    'BillingCustomer',
    'Rating',
]

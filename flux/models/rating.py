"""Rating model"""
from flux import db
from .base import BaseModel

MAX_COMMENT_LENGTH = 200


class Rating(BaseModel):
    """
    One party's 1-5 star rating of the other after a completed order.

    A company rates its driver and the driver rates the company, each at
    most once per order.
    """
    __tablename__ = 'ratings'

    order_id = db.Column(db.String(36), db.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    from_user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    to_user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    stars = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.String(MAX_COMMENT_LENGTH), nullable=True)

    __table_args__ = (
        db.UniqueConstraint('order_id', 'from_user_id', name='uq_ratings_order_from_user'),
        db.CheckConstraint('stars >= 1 AND stars <= 5', name='ck_ratings_stars'),
        db.CheckConstraint('from_user_id <> to_user_id', name='ck_ratings_not_self'),
    )

    def __repr__(self):
        return f'<Rating {self.stars} stars {self.from_user_id} -> {self.to_user_id}>'

"""User model"""
from flux import db
from .base import BaseModel

ROLES = ('admin', 'company', 'driver')

# Roles that never need credits to act
UNCONDITIONAL_ACCESS_ROLES = ('admin',)


class User(BaseModel):
    """
    Local mirror of an identity-provider account.

    The id is the identity provider's subject, so tokens resolve to rows
    without a lookup table.
    """
    __tablename__ = 'users'

    email = db.Column(db.String(255), unique=True, nullable=True, index=True)
    name = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(30), nullable=True)
    role = db.Column(db.String(20), nullable=False, default='company')
    city = db.Column(db.String(120), nullable=True)
    state = db.Column(db.String(60), nullable=True)
    is_banned = db.Column(db.Boolean, nullable=False, default=False)

    __table_args__ = (
        db.CheckConstraint("role IN ('admin', 'company', 'driver')", name='ck_users_role'),
    )

    def __repr__(self):
        return f'<User {self.id} ({self.role})>'

    @property
    def has_unconditional_access(self):
        return self.role in UNCONDITIONAL_ACCESS_ROLES

"""
Base model with common fields and methods
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from flux import db


def generate_uuid():
    return str(uuid.uuid4())


def utcnow():
    """Current instant as naive UTC; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _dialect_insert():
    dialect = db.session.get_bind().dialect.name
    if dialect == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f'insert_if_absent is not supported on {dialect}')
    return insert


class InsertIfAbsentMixin:
    """Race-safe create for models arbitrated by a unique constraint"""

    @classmethod
    def insert_if_absent(cls, conflict_columns, **values):
        """
        INSERT ... ON CONFLICT DO NOTHING against this model's table.

        Runs inside the current session transaction. Errors other than the
        conflict itself (missing table, permissions, NOT NULL) propagate.

        Args:
            conflict_columns (list): Columns of the unique constraint to arbitrate on
            **values: Column values for the new row

        Returns:
            bool: True if the row was inserted, False if it already existed
        """
        insert = _dialect_insert()
        stmt = insert(cls.__table__).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
        result = db.session.execute(stmt)
        return result.rowcount == 1


class BaseModel(InsertIfAbsentMixin, db.Model):
    """Abstract base model with common fields"""
    __abstract__ = True

    id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self, exclude=None):
        """
        Convert model to dictionary

        Args:
            exclude (list): List of fields to exclude

        Returns:
            dict: Model as dictionary
        """
        exclude = exclude or []
        data = {}

        for column in self.__table__.columns:
            if column.name not in exclude:
                value = getattr(self, column.name)

                # Handle datetime
                if isinstance(value, datetime):
                    value = value.isoformat()
                # Handle money
                elif isinstance(value, Decimal):
                    value = float(value)

                data[column.name] = value

        return data

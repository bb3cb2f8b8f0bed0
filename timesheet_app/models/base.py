# timesheet_app/models/base.py
"""
Shared SQLAlchemy handle and declarative base for all models.
"""

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _utcnow():
    return datetime.now(timezone.utc)


class BaseModel(db.Model):
    """Abstract base adding audit timestamps to every table."""

    __abstract__ = True

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def to_dict(self, *fields):
        """Serialize the named columns (or every column) into a plain dict."""
        names = fields or tuple(column.name for column in self.__table__.columns)
        payload = {}
        for name in names:
            value = getattr(self, name)
            if isinstance(value, datetime):
                value = value.isoformat()
            payload[name] = value
        return payload

"""
TimestampedModel — abstract base for master-data tables.

Adds created_at / updated_at columns and a small ISO helper used by every
``to_dict`` implementation.
"""

from datetime import datetime, timezone

from mealpass.models import db


def utcnow():
    return datetime.now(timezone.utc)


def iso(value):
    """Serialise a date/time/datetime (or None) for JSON responses."""
    return value.isoformat() if value is not None else None


class TimestampedModel(db.Model):
    """Abstract base with audit timestamps."""
    __abstract__ = True

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

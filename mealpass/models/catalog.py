"""
Master data — companies, shifts and meal types.

Shifts and meal types are recurring time windows that may wrap past
midnight (e.g. a night shift 22:00–06:00, or "Ceia" 22:00–02:00).  A window
whose start equals its end is ambiguous and is rejected both by
catalog_service and by a CHECK constraint.

Regular (``is_special=False``) meal types are redeemable with a voucher.
Special meal types are reserved for the extra-meal approval workflow.
"""

from decimal import Decimal

from mealpass.models import db
from mealpass.models.base import TimestampedModel, iso


class Company(TimestampedModel):
    __tablename__ = "companies"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    trade_name = db.Column(db.String(200))
    cnpj = db.Column(db.String(20))
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "trade_name": self.trade_name,
            "cnpj": self.cnpj,
            "is_active": self.is_active,
        }


class Shift(TimestampedModel):
    """A holder's recurring working window, used to gate redemption."""

    __tablename__ = "shifts"
    __table_args__ = (
        db.CheckConstraint("start_time <> end_time", name="ck_shifts_non_empty_window"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    description = db.Column(db.Text)

    @property
    def wraps_midnight(self) -> bool:
        return self.start_time > self.end_time

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "is_active": self.is_active,
            "description": self.description,
        }

    def __repr__(self) -> str:
        return f"<Shift #{self.id} {self.name} {self.start_time}-{self.end_time}>"


class MealType(TimestampedModel):
    """A named, priced redemption window (regular or special)."""

    __tablename__ = "meal_types"
    __table_args__ = (
        db.CheckConstraint("start_time <> end_time", name="ck_meal_types_non_empty_window"),
        db.CheckConstraint("price >= 0", name="ck_meal_types_price_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    is_special = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    description = db.Column(db.Text)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "price": float(self.price or 0),
            "is_special": self.is_special,
            "is_active": self.is_active,
            "description": self.description,
            "created_at": iso(self.created_at),
        }

    def __repr__(self) -> str:
        kind = "special" if self.is_special else "regular"
        return f"<MealType #{self.id} {self.name} ({kind})>"

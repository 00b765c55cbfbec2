"""
MealRecord — immutable redemption fact.

One holder redeemed one meal type at one instant, at a captured price.
The redemption flow only ever INSERTs rows; corrections are an
administrative concern handled elsewhere.

Storage-level guarantees:
    uq_meal_records_used_once   at most one ``used`` record per
                                (holder, local date, meal type).  This is the
                                authoritative duplicate check; the guard chain
                                pre-check only produces a friendlier message.
    idempotency_key (unique)    a retried insert whose acknowledgement was lost
                                resolves to the row written by the first attempt.
"""

from decimal import Decimal

from mealpass.models import db
from mealpass.models.base import iso, utcnow

RECORD_STATUSES = frozenset({"used", "cancelled", "pending"})
VALIDATION_METHODS = frozenset({"voucher", "manual", "admin"})


class MealRecord(db.Model):
    __tablename__ = "meal_records"
    __table_args__ = (
        db.Index(
            "uq_meal_records_used_once",
            "holder_id", "meal_date", "meal_type_id",
            unique=True,
            sqlite_where=db.text("status = 'used'"),
            postgresql_where=db.text("status = 'used'"),
        ),
        db.Index("ix_meal_records_holder_date", "holder_id", "meal_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    holder_id = db.Column(
        db.Integer,
        db.ForeignKey("voucher_holders.id", ondelete="CASCADE"),
        nullable=False,
    )
    meal_type_id = db.Column(
        db.Integer,
        db.ForeignKey("meal_types.id", ondelete="RESTRICT"),
        nullable=False,
    )
    voucher_code = db.Column(db.String(4), nullable=False)
    meal_date = db.Column(db.Date, nullable=False, comment="Local calendar date, not UTC")
    meal_time = db.Column(db.Time, nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    status = db.Column(db.String(20), nullable=False, default="used")
    validation_method = db.Column(db.String(20), nullable=False, default="voucher")
    validated_by = db.Column(db.String(200))
    notes = db.Column(db.Text)
    idempotency_key = db.Column(db.String(64), unique=True, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    holder = db.relationship("VoucherHolder", back_populates="meal_records")
    meal_type = db.relationship("MealType", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "holder_id": self.holder_id,
            "meal_type_id": self.meal_type_id,
            "meal_type": self.meal_type.name if self.meal_type else None,
            "voucher_code": self.voucher_code,
            "meal_date": iso(self.meal_date),
            "meal_time": self.meal_time.strftime("%H:%M:%S") if self.meal_time else None,
            "price": float(self.price or 0),
            "status": self.status,
            "validation_method": self.validation_method,
            "validated_by": self.validated_by,
            "notes": self.notes,
            "idempotency_key": self.idempotency_key,
            "created_at": iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<MealRecord #{self.id} holder={self.holder_id} {self.meal_date} type={self.meal_type_id}>"

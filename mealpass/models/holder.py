"""
VoucherHolder — an employee identity that can redeem meals with a 4-digit code.

Deactivation (``is_active=False``) is the normal retirement path.  A hard
delete is allowed and cascades to the holder's redemption history.

Voucher codes are only required to be unique among *active* holders; the
check lives in catalog_service because a partial unique index on a boolean
is not portable across SQLite and PostgreSQL versions we support.
"""

from mealpass.models import db
from mealpass.models.base import TimestampedModel


class VoucherHolder(TimestampedModel):
    __tablename__ = "voucher_holders"

    id = db.Column(db.Integer, primary_key=True)
    voucher_code = db.Column(db.String(4), nullable=False, index=True)
    full_name = db.Column(db.String(200), nullable=False)
    cpf = db.Column(db.String(14))
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="SET NULL"), nullable=True,
    )
    department = db.Column(db.String(100))
    position = db.Column(db.String(100))
    shift_id = db.Column(
        db.Integer, db.ForeignKey("shifts.id", ondelete="SET NULL"), nullable=True,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    company = db.relationship("Company", lazy="joined")
    shift = db.relationship("Shift", lazy="joined")
    meal_records = db.relationship(
        "MealRecord",
        back_populates="holder",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="dynamic",
    )

    def to_dict(self, include_shift=True):
        d = {
            "id": self.id,
            "voucher_code": self.voucher_code,
            "full_name": self.full_name,
            "company": self.company.name if self.company else None,
            "company_id": self.company_id,
            "department": self.department,
            "position": self.position,
            "shift_id": self.shift_id,
            "is_active": self.is_active,
        }
        if include_shift:
            d["shift"] = self.shift.to_dict() if self.shift else None
        return d

    def __repr__(self) -> str:
        return f"<VoucherHolder #{self.id} {self.voucher_code} {self.full_name}>"

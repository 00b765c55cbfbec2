"""
ExtraMealRequest — a special-meal request awaiting HR approval.

The requester is either an internal VoucherHolder or an unregistered
external visitor.  Storage keeps the two forms as flat column groups with a
CHECK constraint ensuring exactly one is populated; services work with the
``InternalHolder | ExternalVisitor`` union returned by ``requester``.

Lifecycle (EXTRA_MEAL_TRANSITIONS):
    pending → approved   (terminal)
    pending → rejected   (terminal)
"""

from dataclasses import dataclass
from decimal import Decimal

from mealpass.models import db
from mealpass.models.base import TimestampedModel, iso

EXTRA_MEAL_STATUSES = frozenset({"pending", "approved", "rejected"})

EXTRA_MEAL_TRANSITIONS = {
    "pending":  ["approved", "rejected"],
    "approved": [],
    "rejected": [],
}


def validate_extra_meal_transition(old_status, new_status):
    """Return True if ExtraMealRequest status transition is valid."""
    return new_status in EXTRA_MEAL_TRANSITIONS.get(old_status, [])


@dataclass(frozen=True)
class InternalHolder:
    holder_id: int


@dataclass(frozen=True)
class ExternalVisitor:
    name: str
    company: str
    document: str | None = None


class ExtraMealRequest(TimestampedModel):
    __tablename__ = "extra_meal_requests"
    __table_args__ = (
        db.CheckConstraint(
            "(holder_id IS NOT NULL AND external_name IS NULL AND external_company IS NULL)"
            " OR (holder_id IS NULL AND external_name IS NOT NULL AND external_company IS NOT NULL)",
            name="ck_extra_meal_requests_one_requester",
        ),
        db.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_extra_meal_requests_status",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Requester: exactly one form
    holder_id = db.Column(
        db.Integer,
        db.ForeignKey("voucher_holders.id", ondelete="CASCADE"),
        nullable=True,
    )
    external_name = db.Column(db.String(200))
    external_document = db.Column(db.String(50))
    external_company = db.Column(db.String(200))

    meal_type_id = db.Column(
        db.Integer, db.ForeignKey("meal_types.id", ondelete="RESTRICT"), nullable=False,
    )
    meal_date = db.Column(db.Date, nullable=False)
    meal_time = db.Column(db.Time, nullable=False)
    reason = db.Column(db.Text, nullable=False)
    requested_by_name = db.Column(db.String(200), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    # Decision audit
    approved_by_id = db.Column(
        db.Integer, db.ForeignKey("managers.id", ondelete="SET NULL"), nullable=True,
    )
    approved_by_name = db.Column(
        db.String(200),
        comment="Decider full_name captured at decision time",
    )
    approved_at = db.Column(db.DateTime)
    notes = db.Column(db.Text, comment="Optional on approval, mandatory justification on rejection")

    idempotency_key = db.Column(db.String(64), unique=True, nullable=True)

    holder = db.relationship("VoucherHolder", lazy="joined")
    meal_type = db.relationship("MealType", lazy="joined")

    @property
    def requester(self) -> InternalHolder | ExternalVisitor:
        if self.holder_id is not None:
            return InternalHolder(holder_id=self.holder_id)
        return ExternalVisitor(
            name=self.external_name,
            company=self.external_company,
            document=self.external_document,
        )

    @requester.setter
    def requester(self, value: InternalHolder | ExternalVisitor) -> None:
        if isinstance(value, InternalHolder):
            self.holder_id = value.holder_id
            self.external_name = None
            self.external_company = None
            self.external_document = None
        else:
            self.holder_id = None
            self.external_name = value.name
            self.external_company = value.company
            self.external_document = value.document

    @property
    def is_external(self) -> bool:
        return self.holder_id is None

    def to_dict(self):
        if self.is_external:
            display_name = self.external_name
            company = self.external_company
        else:
            display_name = self.holder.full_name if self.holder else None
            company = self.holder.company.name if self.holder and self.holder.company else None
        return {
            "id": self.id,
            "is_external": self.is_external,
            "holder_id": self.holder_id,
            "external_name": self.external_name,
            "external_document": self.external_document,
            "external_company": self.external_company,
            "requester_name": display_name,
            "company": company,
            "meal_type_id": self.meal_type_id,
            "meal_type": self.meal_type.name if self.meal_type else None,
            "meal_date": iso(self.meal_date),
            "meal_time": self.meal_time.strftime("%H:%M") if self.meal_time else None,
            "reason": self.reason,
            "requested_by_name": self.requested_by_name,
            "price": float(self.price or 0),
            "status": self.status,
            "approved_by_id": self.approved_by_id,
            "approved_by_name": self.approved_by_name,
            "approved_at": iso(self.approved_at),
            "notes": self.notes,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<ExtraMealRequest #{self.id} {self.status}>"

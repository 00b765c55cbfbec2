"""
Auth models — managers (the authenticated actors of the admin side).

A manager carries a role and a set of named capability strings.  The
capability names match the admin tabs they unlock (``usuarios``,
``empresas``, ``tipos-refeicao``, ``relatorios``, ``configuracoes``,
``gerentes``, ``turnos``, ``rh-extras``).
"""

from mealpass.models import db
from mealpass.models.base import TimestampedModel, iso

ROLES = frozenset({"super_admin", "admin", "manager"})

KNOWN_PERMISSIONS = frozenset({
    "usuarios",
    "empresas",
    "tipos-refeicao",
    "relatorios",
    "configuracoes",
    "gerentes",
    "turnos",
    "rh-extras",
})


class Manager(TimestampedModel):
    __tablename__ = "managers"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), nullable=False)
    username = db.Column(db.String(100), unique=True, nullable=False)
    password_hash = db.Column(db.String(256))
    role = db.Column(db.String(20), nullable=False, default="manager")
    permissions = db.Column(db.JSON, default=list)
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="SET NULL"), nullable=True,
    )
    department = db.Column(db.String(100))
    position = db.Column(db.String(100))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_login_at = db.Column(db.DateTime)

    def permission_list(self) -> list[str]:
        """Normalise the stored permissions (list, or legacy {name: bool} map)."""
        raw = self.permissions or []
        if isinstance(raw, dict):
            return sorted(k for k, v in raw.items() if v)
        return sorted(str(p) for p in raw)

    def to_dict(self):
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "username": self.username,
            "role": self.role,
            "permissions": self.permission_list(),
            "company_id": self.company_id,
            "department": self.department,
            "position": self.position,
            "is_active": self.is_active,
            "last_login_at": iso(self.last_login_at),
        }

    def __repr__(self) -> str:
        return f"<Manager #{self.id} {self.username} ({self.role})>"

"""initial_mealpass_schema

Master data (companies, shifts, meal types, voucher holders, managers),
the immutable meal_records ledger and extra_meal_requests.

meal_records carries the partial unique index that makes a second ``used``
record for the same (holder, local date, meal type) impossible.

Revision ID: 0a1b2c3d4e01
Revises:
Create Date: 2025-03-01 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0a1b2c3d4e01"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "companies" not in existing_tables:
        op.create_table(
            "companies",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("trade_name", sa.String(length=200), nullable=True),
            sa.Column("cnpj", sa.String(length=20), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )

    if "shifts" not in existing_tables:
        op.create_table(
            "shifts",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("start_time", sa.Time(), nullable=False),
            sa.Column("end_time", sa.Time(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("description", sa.Text(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint("start_time <> end_time", name="ck_shifts_non_empty_window"),
        )

    if "meal_types" not in existing_tables:
        op.create_table(
            "meal_types",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("start_time", sa.Time(), nullable=False),
            sa.Column("end_time", sa.Time(), nullable=False),
            sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
            sa.Column("is_special", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("description", sa.Text(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint("start_time <> end_time", name="ck_meal_types_non_empty_window"),
            sa.CheckConstraint("price >= 0", name="ck_meal_types_price_non_negative"),
        )

    if "voucher_holders" not in existing_tables:
        op.create_table(
            "voucher_holders",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("voucher_code", sa.String(length=4), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=False),
            sa.Column("cpf", sa.String(length=14), nullable=True),
            sa.Column("company_id", sa.Integer(), nullable=True),
            sa.Column("department", sa.String(length=100), nullable=True),
            sa.Column("position", sa.String(length=100), nullable=True),
            sa.Column("shift_id", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_voucher_holders_voucher_code", "voucher_holders", ["voucher_code"])

    if "managers" not in existing_tables:
        op.create_table(
            "managers",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("username", sa.String(length=100), nullable=False),
            sa.Column("password_hash", sa.String(length=256), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="manager"),
            sa.Column("permissions", sa.JSON(), nullable=True),
            sa.Column("company_id", sa.Integer(), nullable=True),
            sa.Column("department", sa.String(length=100), nullable=True),
            sa.Column("position", sa.String(length=100), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("last_login_at", sa.DateTime(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("username"),
        )

    if "meal_records" not in existing_tables:
        op.create_table(
            "meal_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("holder_id", sa.Integer(), nullable=False),
            sa.Column("meal_type_id", sa.Integer(), nullable=False),
            sa.Column("voucher_code", sa.String(length=4), nullable=False),
            sa.Column("meal_date", sa.Date(), nullable=False, comment="Local calendar date, not UTC"),
            sa.Column("meal_time", sa.Time(), nullable=False),
            sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="used"),
            sa.Column("validation_method", sa.String(length=20), nullable=False, server_default="voucher"),
            sa.Column("validated_by", sa.String(length=200), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("idempotency_key", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["holder_id"], ["voucher_holders.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["meal_type_id"], ["meal_types.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("idempotency_key"),
        )
        op.create_index("ix_meal_records_holder_date", "meal_records", ["holder_id", "meal_date"])
        op.create_index(
            "uq_meal_records_used_once",
            "meal_records",
            ["holder_id", "meal_date", "meal_type_id"],
            unique=True,
            postgresql_where=sa.text("status = 'used'"),
            sqlite_where=sa.text("status = 'used'"),
        )

    if "extra_meal_requests" not in existing_tables:
        op.create_table(
            "extra_meal_requests",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("holder_id", sa.Integer(), nullable=True),
            sa.Column("external_name", sa.String(length=200), nullable=True),
            sa.Column("external_document", sa.String(length=50), nullable=True),
            sa.Column("external_company", sa.String(length=200), nullable=True),
            sa.Column("meal_type_id", sa.Integer(), nullable=False),
            sa.Column("meal_date", sa.Date(), nullable=False),
            sa.Column("meal_time", sa.Time(), nullable=False),
            sa.Column("reason", sa.Text(), nullable=False),
            sa.Column("requested_by_name", sa.String(length=200), nullable=False),
            sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("approved_by_id", sa.Integer(), nullable=True),
            sa.Column("approved_by_name", sa.String(length=200), nullable=True),
            sa.Column("approved_at", sa.DateTime(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("idempotency_key", sa.String(length=64), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["holder_id"], ["voucher_holders.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["meal_type_id"], ["meal_types.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["approved_by_id"], ["managers.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("idempotency_key"),
            sa.CheckConstraint(
                "(holder_id IS NOT NULL AND external_name IS NULL AND external_company IS NULL)"
                " OR (holder_id IS NULL AND external_name IS NOT NULL AND external_company IS NOT NULL)",
                name="ck_extra_meal_requests_one_requester",
            ),
            sa.CheckConstraint(
                "status IN ('pending', 'approved', 'rejected')",
                name="ck_extra_meal_requests_status",
            ),
        )
        op.create_index("ix_extra_meal_requests_status", "extra_meal_requests", ["status"])


def downgrade():
    existing_tables = set(sa_inspect(op.get_bind()).get_table_names())

    for table in (
        "extra_meal_requests",
        "meal_records",
        "managers",
        "voucher_holders",
        "meal_types",
        "shifts",
        "companies",
    ):
        if table in existing_tables:
            op.drop_table(table)

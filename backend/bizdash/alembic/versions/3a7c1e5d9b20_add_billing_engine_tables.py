"""add organizations, users and billing engine tables

Revision ID: 3a7c1e5d9b20
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "3a7c1e5d9b20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


PLAN_VALUES = ("free", "starter", "pro")
ROLE_VALUES = ("owner", "admin", "member")


def upgrade() -> None:
    bind = op.get_bind()
    # Types are created once up front; columns reference them with create_type=False.
    postgresql.ENUM(*PLAN_VALUES, name="billing_plan_enum").create(bind, checkfirst=True)
    postgresql.ENUM(*ROLE_VALUES, name="org_role_enum").create(bind, checkfirst=True)
    plan_enum = postgresql.ENUM(*PLAN_VALUES, name="billing_plan_enum", create_type=False)
    role_enum = postgresql.ENUM(*ROLE_VALUES, name="org_role_enum", create_type=False)

    op.create_table(
        "organizations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("contact_email", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_organizations")),
    )
    op.create_index(op.f("ix_organizations_is_active"), "organizations", ["is_active"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("role", role_enum, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["organization_id"],
            ["organizations.id"],
            name=op.f("fk_users_organization_id_organizations"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_users")),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index(op.f("ix_users_organization_id"), "users", ["organization_id"])
    op.create_index(op.f("ix_users_email"), "users", ["email"])
    op.create_index(op.f("ix_users_role"), "users", ["role"])
    op.create_index(op.f("ix_users_is_active"), "users", ["is_active"])

    op.create_table(
        "billing_records",
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("plan", plan_enum, nullable=False),
        sa.Column("plan_status", sa.String(length=32), nullable=False),
        sa.Column("processor_customer_id", sa.String(length=255), nullable=True),
        sa.Column("processor_subscription_id", sa.String(length=255), nullable=True),
        sa.Column("commission_rate", sa.Numeric(precision=5, scale=4), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("commission_rate >= 0", name="ck_billing_records_commission_nonneg"),
        sa.ForeignKeyConstraint(
            ["organization_id"],
            ["organizations.id"],
            name=op.f("fk_billing_records_organization_id_organizations"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("organization_id", name=op.f("pk_billing_records")),
    )
    op.create_index(op.f("ix_billing_records_plan"), "billing_records", ["plan"])
    op.create_index(
        op.f("ix_billing_records_processor_customer_id"),
        "billing_records",
        ["processor_customer_id"],
    )
    op.create_index(
        op.f("ix_billing_records_processor_subscription_id"),
        "billing_records",
        ["processor_subscription_id"],
        unique=True,
    )

    op.create_table(
        "subscription_history",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("plan", plan_enum, nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("processor_subscription_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["organization_id"],
            ["organizations.id"],
            name=op.f("fk_subscription_history_organization_id_organizations"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_subscription_history")),
    )
    op.create_index(
        op.f("ix_subscription_history_organization_id"),
        "subscription_history",
        ["organization_id"],
    )
    op.create_index(
        op.f("ix_subscription_history_processor_subscription_id"),
        "subscription_history",
        ["processor_subscription_id"],
    )
    op.create_index(
        "idx_subscription_history_org_created",
        "subscription_history",
        ["organization_id", "created_at"],
    )

    op.create_table(
        "billing_audit_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_billing_audit_logs")),
    )
    op.create_index(
        op.f("ix_billing_audit_logs_organization_id"),
        "billing_audit_logs",
        ["organization_id"],
    )
    op.create_index(
        op.f("ix_billing_audit_logs_event_type"),
        "billing_audit_logs",
        ["event_type"],
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_billing_audit_logs_event_type"), table_name="billing_audit_logs")
    op.drop_index(op.f("ix_billing_audit_logs_organization_id"), table_name="billing_audit_logs")
    op.drop_table("billing_audit_logs")

    op.drop_index("idx_subscription_history_org_created", table_name="subscription_history")
    op.drop_index(
        op.f("ix_subscription_history_processor_subscription_id"),
        table_name="subscription_history",
    )
    op.drop_index(op.f("ix_subscription_history_organization_id"), table_name="subscription_history")
    op.drop_table("subscription_history")

    op.drop_index(op.f("ix_billing_records_processor_subscription_id"), table_name="billing_records")
    op.drop_index(op.f("ix_billing_records_processor_customer_id"), table_name="billing_records")
    op.drop_index(op.f("ix_billing_records_plan"), table_name="billing_records")
    op.drop_table("billing_records")

    op.drop_index(op.f("ix_users_is_active"), table_name="users")
    op.drop_index(op.f("ix_users_role"), table_name="users")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_index(op.f("ix_users_organization_id"), table_name="users")
    op.drop_table("users")

    op.drop_index(op.f("ix_organizations_is_active"), table_name="organizations")
    op.drop_table("organizations")

    bind = op.get_bind()
    postgresql.ENUM(*PLAN_VALUES, name="billing_plan_enum").drop(bind, checkfirst=True)
    postgresql.ENUM(*ROLE_VALUES, name="org_role_enum").drop(bind, checkfirst=True)

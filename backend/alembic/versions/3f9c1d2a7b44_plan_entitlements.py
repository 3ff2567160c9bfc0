"""plan_entitlements

Revision ID: 3f9c1d2a7b44
Revises: 
Create Date: 2026-10-16 09:12:31.408113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c1d2a7b44'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Plan catalogue with its JSON features document.
    op.create_table(
        "subscription_plans",
        sa.Column("id", sa.String(36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price_monthly_cents", sa.Integer(), nullable=True),
        sa.Column("price_yearly_cents", sa.Integer(), nullable=True),
        sa.Column("monthly_duration_days", sa.Integer(), nullable=True),
        sa.Column("yearly_duration_days", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("is_free", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("features", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_subscription_plans_name", "subscription_plans", ["name"], unique=True)
    op.create_index("ix_subscription_plans_is_active", "subscription_plans", ["is_active"], unique=False)

    op.create_table(
        "user_subscriptions",
        sa.Column("id", sa.String(36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("plan_id", sa.String(36), sa.ForeignKey("subscription_plans.id"), nullable=False),
        sa.Column("status", sa.String(20), server_default="active", nullable=False),
        sa.Column("billing_frequency", sa.String(20), server_default="monthly", nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("renewal_count", sa.Integer(), server_default="0", nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_user_subscriptions_user_id", "user_subscriptions", ["user_id"], unique=False)
    op.create_index("ix_user_subscriptions_plan_id", "user_subscriptions", ["plan_id"], unique=False)
    op.create_index(
        "ix_user_subscriptions_user_status",
        "user_subscriptions",
        ["user_id", "status"],
        unique=False,
    )

    # One override per user, layered over a base plan.
    op.create_table(
        "plan_overrides",
        sa.Column("id", sa.String(36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("plan_id", sa.String(36), sa.ForeignKey("subscription_plans.id"), nullable=False),
        sa.Column("features", sa.Text(), nullable=True),
        sa.Column("limits", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_plan_overrides_user_id", "plan_overrides", ["user_id"], unique=True)
    op.create_index("ix_plan_overrides_plan_id", "plan_overrides", ["plan_id"], unique=False)
    op.create_index("ix_plan_overrides_is_active", "plan_overrides", ["is_active"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_plan_overrides_is_active", table_name="plan_overrides")
    op.drop_index("ix_plan_overrides_plan_id", table_name="plan_overrides")
    op.drop_index("ix_plan_overrides_user_id", table_name="plan_overrides")
    op.drop_table("plan_overrides")

    op.drop_index("ix_user_subscriptions_user_status", table_name="user_subscriptions")
    op.drop_index("ix_user_subscriptions_plan_id", table_name="user_subscriptions")
    op.drop_index("ix_user_subscriptions_user_id", table_name="user_subscriptions")
    op.drop_table("user_subscriptions")

    op.drop_index("ix_subscription_plans_is_active", table_name="subscription_plans")
    op.drop_index("ix_subscription_plans_name", table_name="subscription_plans")
    op.drop_table("subscription_plans")

"""Create billing ledger tables

Revision ID: a1c3e5f70b21
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "a1c3e5f70b21"
down_revision = None
branch_labels = None
depends_on = None


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("modified_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "tenant",
        *_base_columns(),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id"),
    )

    op.create_table(
        "subscription",
        *_base_columns(),
        sa.Column("subscription_id", sa.String(length=255), nullable=False),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("plan_id", sa.String(length=100), nullable=True),
        sa.Column("credit_amount", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("current_period_start", sa.DateTime(), nullable=True),
        sa.Column("current_period_end", sa.DateTime(), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False),
        sa.Column("canceled_at", sa.DateTime(), nullable=True),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_price_id", sa.String(length=255), nullable=True),
        sa.Column("last_event_at", sa.DateTime(), nullable=True),
        sa.Column("last_event_type", sa.String(length=100), nullable=True),
        sa.Column("subscription_metadata", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenant.tenant_id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subscription_id"),
    )
    op.create_index("idx_subscription_tenant", "subscription", ["tenant_id"])

    op.create_table(
        "credit_balance",
        *_base_columns(),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("credits_available", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenant.tenant_id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id"),
    )

    op.create_table(
        "credit_grant",
        *_base_columns(),
        sa.Column("grant_key", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("purchase_reference", sa.String(length=255), nullable=False),
        sa.Column("period_reference", sa.String(length=255), nullable=False),
        sa.Column("source_event_id", sa.String(length=255), nullable=False),
        sa.Column("source_event_type", sa.String(length=100), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenant.tenant_id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("grant_key"),
    )
    op.create_index("idx_credit_grant_tenant", "credit_grant", ["tenant_id"])

    op.create_table(
        "billing_event",
        *_base_columns(),
        sa.Column("stripe_event_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("outcome", sa.String(length=50), nullable=False),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("tenant_id", sa.String(length=255), nullable=True),
        sa.Column("delivery_count", sa.Integer(), nullable=False),
        sa.Column("last_processed_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stripe_event_id"),
    )
    op.create_index("idx_billing_events_tenant", "billing_event", ["tenant_id"])
    op.create_index("idx_billing_events_type", "billing_event", ["event_type"])


def downgrade() -> None:
    op.drop_index("idx_billing_events_type", table_name="billing_event")
    op.drop_index("idx_billing_events_tenant", table_name="billing_event")
    op.drop_table("billing_event")
    op.drop_index("idx_credit_grant_tenant", table_name="credit_grant")
    op.drop_table("credit_grant")
    op.drop_table("credit_balance")
    op.drop_index("idx_subscription_tenant", table_name="subscription")
    op.drop_table("subscription")
    op.drop_table("tenant")

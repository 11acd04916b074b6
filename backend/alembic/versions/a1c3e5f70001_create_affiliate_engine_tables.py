"""create affiliate attribution, commission and closer tables

Revision ID: a1c3e5f70001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "a1c3e5f70001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "affiliates",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("referral_code", sa.String(), nullable=False),
        sa.Column("custom_tracking_link", sa.String(), nullable=True),
        sa.Column("tier", sa.String(), nullable=False, server_default="quiz"),
        sa.Column("commission_rate", sa.Numeric(5, 4), nullable=False, server_default="0.10"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("payout_method", sa.String(), nullable=False, server_default="manual"),
        sa.Column("total_clicks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_leads", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_bookings", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_sales", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_commission", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("referral_code", name="uq_affiliates_referral_code"),
        sa.UniqueConstraint("custom_tracking_link", name="uq_affiliates_custom_tracking_link"),
        sa.CheckConstraint("tier IN ('quiz', 'creator', 'agency')", name="ck_affiliates_tier"),
    )
    op.create_index("ix_affiliates_id", "affiliates", ["id"])
    op.create_index("ix_affiliates_is_active", "affiliates", ["is_active"])

    op.create_table(
        "affiliate_payouts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("amount_due", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_affiliate_payouts_status",
        ),
    )
    op.create_index("ix_affiliate_payouts_id", "affiliate_payouts", ["id"])
    op.create_index(
        "ix_affiliate_payouts_affiliate_status",
        "affiliate_payouts",
        ["affiliate_id", "status"],
    )

    op.create_table(
        "affiliate_clicks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("referral_code", sa.String(), nullable=False),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("utm_source", sa.String(), nullable=True),
        sa.Column("utm_medium", sa.String(), nullable=True),
        sa.Column("utm_campaign", sa.String(), nullable=True),
        sa.Column("source", sa.String(), nullable=False, server_default="redirect"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "source IN ('redirect', 'homepage', 'custom_link')",
            name="ck_affiliate_clicks_source",
        ),
    )
    op.create_index("ix_affiliate_clicks_id", "affiliate_clicks", ["id"])
    op.create_index(
        "ix_affiliate_clicks_fingerprint",
        "affiliate_clicks",
        ["affiliate_id", "user_agent", "created_at"],
    )

    op.create_table(
        "affiliate_conversions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("referral_code", sa.String(), nullable=False),
        sa.Column("quiz_session_id", sa.String(), nullable=True),
        sa.Column("conversion_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="confirmed"),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("sale_value", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("commission_status", sa.String(), nullable=False, server_default="held"),
        sa.Column("hold_until", sa.DateTime(), nullable=False),
        sa.Column("released_at", sa.DateTime(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("forfeited_at", sa.DateTime(), nullable=True),
        sa.Column("forfeit_reason", sa.Text(), nullable=True),
        sa.Column("payout_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["payout_id"], ["affiliate_payouts.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "conversion_type IN ('quiz_completion', 'booking', 'sale')",
            name="ck_affiliate_conversions_type",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')",
            name="ck_affiliate_conversions_status",
        ),
        sa.CheckConstraint(
            "commission_status IN ('held', 'available', 'paid', 'forfeited')",
            name="ck_affiliate_conversions_commission_status",
        ),
    )
    op.create_index("ix_affiliate_conversions_id", "affiliate_conversions", ["id"])
    op.create_index(
        "ix_affiliate_conversions_affiliate_type",
        "affiliate_conversions",
        ["affiliate_id", "conversion_type", "created_at"],
    )
    op.create_index(
        "ix_affiliate_conversions_commission_status",
        "affiliate_conversions",
        ["commission_status", "hold_until"],
    )
    op.create_index("ix_affiliate_conversions_payout", "affiliate_conversions", ["payout_id"])

    op.create_table(
        "affiliate_program_config",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("commission_hold_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("minimum_payout", sa.Numeric(10, 2), nullable=False, server_default="50"),
        sa.Column("payout_schedule", sa.String(), nullable=False, server_default="monthly"),
        sa.Column("tier_rates_json", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_affiliate_program_config_id", "affiliate_program_config", ["id"])

    op.create_table(
        "closers",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_approved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("commission_rate", sa.Numeric(5, 4), nullable=False, server_default="0.10"),
        sa.Column("total_calls", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_conversions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_revenue", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("conversion_rate", sa.Numeric(6, 4), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email", name="uq_closers_email"),
    )
    op.create_index("ix_closers_id", "closers", ["id"])
    op.create_index(
        "ix_closers_eligibility_load",
        "closers",
        ["is_active", "is_approved", "total_calls"],
    )

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("closer_id", sa.Integer(), nullable=True),
        sa.Column("customer_name", sa.String(), nullable=False),
        sa.Column("customer_email", sa.String(), nullable=False),
        sa.Column("customer_phone", sa.String(), nullable=True),
        sa.Column("affiliate_code", sa.String(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="scheduled"),
        sa.Column("outcome", sa.String(), nullable=True),
        sa.Column("sale_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["closer_id"], ["closers.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'completed', 'cancelled', 'no_show', 'rescheduled')",
            name="ck_appointments_status",
        ),
    )
    op.create_index("ix_appointments_id", "appointments", ["id"])
    op.create_index("ix_appointments_closer_status", "appointments", ["closer_id", "status"])
    op.create_index("ix_appointments_scheduled_at", "appointments", ["scheduled_at"])


def downgrade():
    op.drop_index("ix_appointments_scheduled_at", table_name="appointments")
    op.drop_index("ix_appointments_closer_status", table_name="appointments")
    op.drop_index("ix_appointments_id", table_name="appointments")
    op.drop_table("appointments")

    op.drop_index("ix_closers_eligibility_load", table_name="closers")
    op.drop_index("ix_closers_id", table_name="closers")
    op.drop_table("closers")

    op.drop_index("ix_affiliate_program_config_id", table_name="affiliate_program_config")
    op.drop_table("affiliate_program_config")

    op.drop_index("ix_affiliate_conversions_payout", table_name="affiliate_conversions")
    op.drop_index("ix_affiliate_conversions_commission_status", table_name="affiliate_conversions")
    op.drop_index("ix_affiliate_conversions_affiliate_type", table_name="affiliate_conversions")
    op.drop_index("ix_affiliate_conversions_id", table_name="affiliate_conversions")
    op.drop_table("affiliate_conversions")

    op.drop_index("ix_affiliate_clicks_fingerprint", table_name="affiliate_clicks")
    op.drop_index("ix_affiliate_clicks_id", table_name="affiliate_clicks")
    op.drop_table("affiliate_clicks")

    op.drop_index("ix_affiliate_payouts_affiliate_status", table_name="affiliate_payouts")
    op.drop_index("ix_affiliate_payouts_id", table_name="affiliate_payouts")
    op.drop_table("affiliate_payouts")

    op.drop_index("ix_affiliates_is_active", table_name="affiliates")
    op.drop_index("ix_affiliates_id", table_name="affiliates")
    op.drop_table("affiliates")

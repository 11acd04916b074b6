from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB

from app.core.db import Base
from app.core.time import utcnow
from app.models.enums import (
    AffiliateTierEnum,
    ClickSourceEnum,
    CommissionStatusEnum,
    ConversionStatusEnum,
    ConversionTypeEnum,
    PayoutStatusEnum,
    enum_values,
)
from app.models.mixins import TimestampMixin


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


def _in_check(column: str, enum_cls) -> str:
    values = ", ".join(f"'{value}'" for value in enum_values(enum_cls))
    return f"{column} IN ({values})"


class Affiliate(TimestampMixin, Base):
    __tablename__ = "affiliates"
    __table_args__ = (
        UniqueConstraint("referral_code", name="uq_affiliates_referral_code"),
        UniqueConstraint("custom_tracking_link", name="uq_affiliates_custom_tracking_link"),
        CheckConstraint(_in_check("tier", AffiliateTierEnum), name="ck_affiliates_tier"),
        Index("ix_affiliates_is_active", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    referral_code = Column(String, nullable=False)
    # Once set, the referral-code link stops tracking for this affiliate.
    custom_tracking_link = Column(String, nullable=True)
    tier = Column(String, nullable=False, default=AffiliateTierEnum.QUIZ.value)
    commission_rate = Column(Numeric(5, 4), nullable=False, default=0.10)
    is_active = Column(Boolean, nullable=False, default=True)
    payout_method = Column(String, nullable=False, default="manual")

    # Write-through cache of row aggregates, rebuilt by sync_affiliate_totals.
    total_clicks = Column(Integer, nullable=False, default=0)
    total_leads = Column(Integer, nullable=False, default=0)
    total_bookings = Column(Integer, nullable=False, default=0)
    total_sales = Column(Integer, nullable=False, default=0)
    total_commission = Column(Numeric(12, 2), nullable=False, default=0)


class AffiliateClick(Base):
    __tablename__ = "affiliate_clicks"
    __table_args__ = (
        Index("ix_affiliate_clicks_fingerprint", "affiliate_id", "user_agent", "created_at"),
        CheckConstraint(_in_check("source", ClickSourceEnum), name="ck_affiliate_clicks_source"),
    )

    id = Column(Integer, primary_key=True, index=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False)
    referral_code = Column(String, nullable=False)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    utm_source = Column(String, nullable=True)
    utm_medium = Column(String, nullable=True)
    utm_campaign = Column(String, nullable=True)
    source = Column(String, nullable=False, default=ClickSourceEnum.REDIRECT.value)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class AffiliateConversion(TimestampMixin, Base):
    __tablename__ = "affiliate_conversions"
    __table_args__ = (
        Index("ix_affiliate_conversions_affiliate_type", "affiliate_id", "conversion_type", "created_at"),
        Index("ix_affiliate_conversions_commission_status", "commission_status", "hold_until"),
        Index("ix_affiliate_conversions_payout", "payout_id"),
        CheckConstraint(
            _in_check("conversion_type", ConversionTypeEnum),
            name="ck_affiliate_conversions_type",
        ),
        CheckConstraint(
            _in_check("status", ConversionStatusEnum),
            name="ck_affiliate_conversions_status",
        ),
        CheckConstraint(
            _in_check("commission_status", CommissionStatusEnum),
            name="ck_affiliate_conversions_commission_status",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False)
    referral_code = Column(String, nullable=False)
    quiz_session_id = Column(String, nullable=True)
    conversion_type = Column(String, nullable=False)
    status = Column(String, nullable=False, default=ConversionStatusEnum.CONFIRMED.value)
    commission_amount = Column(Numeric(12, 2), nullable=False, default=0)
    sale_value = Column(Numeric(12, 2), nullable=False, default=0)
    commission_status = Column(String, nullable=False, default=CommissionStatusEnum.HELD.value)
    # Set once at creation, never extended.
    hold_until = Column(DateTime, nullable=False)
    released_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    forfeited_at = Column(DateTime, nullable=True)
    forfeit_reason = Column(Text, nullable=True)
    payout_id = Column(Integer, ForeignKey("affiliate_payouts.id", ondelete="RESTRICT"), nullable=True)


class AffiliatePayout(TimestampMixin, Base):
    __tablename__ = "affiliate_payouts"
    __table_args__ = (
        Index("ix_affiliate_payouts_affiliate_status", "affiliate_id", "status"),
        CheckConstraint(_in_check("status", PayoutStatusEnum), name="ck_affiliate_payouts_status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False)
    amount_due = Column(Numeric(12, 2), nullable=False)
    status = Column(String, nullable=False, default=PayoutStatusEnum.PENDING.value)
    notes = Column(Text, nullable=True)
    paid_at = Column(DateTime, nullable=True)


class AffiliateProgramConfig(TimestampMixin, Base):
    __tablename__ = "affiliate_program_config"

    id = Column(Integer, primary_key=True, index=True)
    commission_hold_days = Column(Integer, nullable=False, default=30)
    minimum_payout = Column(Numeric(10, 2), nullable=False, default=50)
    payout_schedule = Column(String, nullable=False, default="monthly")
    tier_rates_json = Column(JSON_TYPE, nullable=False, default=dict)

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class AffiliateCreate(BaseModel):
    name: str = Field(min_length=1)
    email: Optional[str] = None
    referral_code: Optional[str] = None
    custom_tracking_link: Optional[str] = None
    tier: str = "quiz"
    commission_rate: Optional[float] = Field(default=None, ge=0, le=1)
    is_active: bool = True
    payout_method: str = "manual"


class AffiliateUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    custom_tracking_link: Optional[str] = None
    tier: Optional[str] = None
    commission_rate: Optional[float] = Field(default=None, ge=0, le=1)
    is_active: Optional[bool] = None
    payout_method: Optional[str] = None


class AffiliateRead(BaseModel):
    id: int
    name: str
    email: str | None = None
    referral_code: str
    referral_link: str
    custom_tracking_link: str | None = None
    tier: str
    commission_rate: float
    is_active: bool
    payout_method: str
    total_clicks: int
    total_leads: int
    total_bookings: int
    total_sales: int
    total_commission: float
    created_at: datetime
    updated_at: datetime


class ProgramConfigRead(BaseModel):
    commission_hold_days: int
    minimum_payout: float
    payout_schedule: str
    tier_rates: dict[str, float]
    updated_at: datetime | None = None


class ProgramConfigUpdate(BaseModel):
    commission_hold_days: Optional[int] = Field(default=None, ge=0)
    minimum_payout: Optional[float] = Field(default=None, ge=0)
    payout_schedule: Optional[str] = None
    tier_rates: Optional[dict[str, float]] = None


class AffiliateTotalsRead(BaseModel):
    affiliate_id: int
    total_clicks: int
    total_leads: int
    total_bookings: int
    total_sales: int
    total_commission: float
    changed: bool


class AffiliateSyncResponse(BaseModel):
    synced: int
    corrected: int
    affiliates: list[AffiliateTotalsRead]

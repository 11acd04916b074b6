from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class PayoutSummaryRead(BaseModel):
    affiliate_id: int
    affiliate_name: str
    referral_code: str
    total_commission: float
    total_paid: float
    pending_payouts: float
    available_commission: float
    held_commission: float
    minimum_payout: float
    payout_schedule: str
    eligible_for_payout: bool


class PayoutCreate(BaseModel):
    affiliate_id: int
    amount: float = Field(gt=0)
    notes: Optional[str] = None


class PayoutComplete(BaseModel):
    conversion_ids: list[int] = Field(default_factory=list)


class PayoutRead(BaseModel):
    id: int
    affiliate_id: int
    amount_due: float
    status: str
    notes: str | None = None
    paid_at: datetime | None = None
    created_at: datetime

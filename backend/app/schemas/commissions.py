from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class ConversionRead(BaseModel):
    id: int
    affiliate_id: int
    referral_code: str
    quiz_session_id: str | None = None
    conversion_type: str
    status: str
    sale_value: float
    commission_amount: float
    commission_status: str
    hold_until: datetime
    released_at: datetime | None = None
    paid_at: datetime | None = None
    forfeited_at: datetime | None = None
    forfeit_reason: str | None = None
    payout_id: int | None = None
    created_at: datetime


class ReleaseResponse(BaseModel):
    released_count: int
    released_amount: float
    conversion_ids: list[int]
    released_at: datetime | None = None


class MarkPaidRequest(BaseModel):
    conversion_ids: list[int] = Field(min_length=1)
    payout_id: int


class ForfeitRequest(BaseModel):
    reason: str = Field(min_length=1)


class CommissionStatusRead(BaseModel):
    ready_for_release_count: int
    ready_for_release_amount: float
    counts: dict[str, int]
    amounts: dict[str, float]
    as_of: datetime

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class ClickTrackRequest(BaseModel):
    affiliate_code: str = Field(min_length=1)
    source: Literal["redirect", "homepage"] = "redirect"
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None


class CustomLinkClickRequest(BaseModel):
    custom_link: str = Field(min_length=1)
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None


class ConversionTrackRequest(BaseModel):
    affiliate_code: str = Field(min_length=1)
    conversion_type: Literal["quiz_completion", "booking", "sale"]
    quiz_session_id: Optional[str] = None
    sale_value: Optional[float] = Field(default=None, ge=0)


class TrackingResponse(BaseModel):
    success: bool
    outcome: str
    record_id: int | None = None
    affiliate_id: int | None = None

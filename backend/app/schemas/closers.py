from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


AppointmentStatus = Literal["scheduled", "confirmed", "completed", "cancelled", "no_show", "rescheduled"]
AppointmentOutcome = Literal[
    "converted",
    "not_interested",
    "needs_follow_up",
    "wrong_number",
    "no_answer",
    "callback_requested",
    "rescheduled",
]


class CloserCreate(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    commission_rate: float = Field(default=0.10, ge=0, le=1)
    is_approved: bool = False


class CloserRead(BaseModel):
    id: int
    name: str
    email: str
    is_active: bool
    is_approved: bool
    commission_rate: float
    total_calls: int
    total_conversions: int
    total_revenue: float
    conversion_rate: float
    created_at: datetime


class AppointmentCreate(BaseModel):
    customer_name: str = Field(min_length=1)
    customer_email: str = Field(min_length=3)
    customer_phone: Optional[str] = None
    affiliate_code: Optional[str] = None
    scheduled_at: datetime
    # New bookings start unassigned; auto-assign picks them up.
    status: Literal["scheduled", "confirmed"] = "scheduled"
    notes: Optional[str] = None


class AppointmentUpdate(BaseModel):
    status: Optional[AppointmentStatus] = None
    outcome: Optional[AppointmentOutcome] = None
    sale_value: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None


class AppointmentRead(BaseModel):
    id: int
    closer_id: int | None = None
    customer_name: str
    customer_email: str
    customer_phone: str | None = None
    affiliate_code: str | None = None
    scheduled_at: datetime
    status: str
    outcome: str | None = None
    sale_value: float | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

class AssignmentRead(BaseModel):
    appointment_id: int
    closer_id: int


class AutoAssignResponse(BaseModel):
    assigned_count: int
    assignments: list[AssignmentRead]
    skipped_appointment_ids: list[int]
    # closer_id -> total_calls after this run
    loads: dict[int, int]


class CloserTotalsRead(BaseModel):
    closer_id: int
    total_conversions: int
    total_revenue: float
    conversion_rate: float
    changed: bool


class CloserSyncResponse(BaseModel):
    synced: int
    corrected: int
    closers: list[CloserTotalsRead]

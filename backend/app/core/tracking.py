from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class TrackingOutcome(str, Enum):
    RECORDED = "recorded"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    SKIPPED_NOT_FOUND = "skipped_not_found"
    SKIPPED_INACTIVE = "skipped_inactive"
    # Referral-code link turned off because a custom tracking link replaced it.
    SKIPPED_DISABLED = "skipped_disabled"
    FAILED = "failed"


@dataclass
class TrackingResult:
    """Result of a fire-and-forget tracking call.

    Tracking never raises to the caller: duplicates and unknown codes are
    ordinary outcomes, and store failures come back as ``FAILED`` with the
    error message attached.
    """

    outcome: TrackingOutcome
    record_id: int | None = None
    affiliate_id: int | None = None
    error: str | None = None

    @property
    def recorded(self) -> bool:
        return self.outcome == TrackingOutcome.RECORDED

    @property
    def failed(self) -> bool:
        return self.outcome == TrackingOutcome.FAILED

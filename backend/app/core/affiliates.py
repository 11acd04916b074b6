from __future__ import annotations

import secrets
from decimal import Decimal

from sqlalchemy.orm import Session

from app.core.config import settings
from app.crud.program_config import read_program_settings
from app.models.enums import AffiliateTierEnum


ALLOWED_TIERS = {tier.value for tier in AffiliateTierEnum}


def generate_referral_code() -> str:
    token = secrets.token_urlsafe(6).replace("-", "").replace("_", "")
    return f"aff_{token.lower()}"


def build_referral_link(code: str) -> str:
    base = settings.APP_BASE_URL or "http://localhost:3000"
    return f"{base.rstrip('/')}/?ref={code}"


def resolve_commission_rate(db: Session, *, tier: str, explicit_rate: float | None = None) -> Decimal:
    """Explicit rate wins; otherwise the tier default from program config or settings."""
    if tier not in ALLOWED_TIERS:
        raise ValueError(f"Unknown affiliate tier: {tier}")
    if explicit_rate is not None:
        rate = Decimal(str(explicit_rate))
    else:
        tier_rate = read_program_settings(db).rate_for_tier(tier)
        if tier_rate is None:
            raise ValueError(f"No default commission rate configured for tier {tier}")
        rate = Decimal(str(tier_rate))
    if rate < 0 or rate > 1:
        raise ValueError("Commission rate must be between 0 and 1")
    return rate

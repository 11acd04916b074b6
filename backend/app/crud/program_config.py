from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.affiliates import AffiliateProgramConfig


@dataclass(frozen=True)
class ProgramSettings:
    commission_hold_days: int
    minimum_payout: Decimal
    payout_schedule: str
    tier_rates: dict[str, float] = field(default_factory=dict)

    def rate_for_tier(self, tier: str | None) -> float | None:
        if not tier:
            return None
        return self.tier_rates.get(tier)


def default_tier_rates() -> dict[str, float]:
    return dict(settings.AFFILIATE_TIER_COMMISSION_RATES)


def get_program_config(db: Session) -> AffiliateProgramConfig | None:
    return db.query(AffiliateProgramConfig).order_by(AffiliateProgramConfig.id.asc()).first()


def upsert_program_config(db: Session, *, payload: dict) -> AffiliateProgramConfig:
    config = get_program_config(db)
    if not config:
        config = AffiliateProgramConfig(**_defaults())
        db.add(config)
    for key, value in payload.items():
        setattr(config, key, value)
    db.commit()
    db.refresh(config)
    return config


def get_effective_program_config(db: Session) -> AffiliateProgramConfig:
    config = get_program_config(db)
    if not config:
        config = AffiliateProgramConfig(**_defaults())
        db.add(config)
        db.commit()
        db.refresh(config)
    if not config.tier_rates_json:
        config.tier_rates_json = default_tier_rates()
        db.commit()
    return config


def read_program_settings(db: Session) -> ProgramSettings:
    """Read-only view of the program knobs; never writes, safe inside a transaction."""
    config = get_program_config(db)
    if not config:
        return ProgramSettings(
            commission_hold_days=settings.COMMISSION_HOLD_DAYS,
            minimum_payout=Decimal(str(settings.MINIMUM_PAYOUT)),
            payout_schedule=settings.PAYOUT_SCHEDULE,
            tier_rates=default_tier_rates(),
        )
    tier_rates = default_tier_rates()
    tier_rates.update(config.tier_rates_json or {})
    return ProgramSettings(
        commission_hold_days=int(config.commission_hold_days),
        minimum_payout=Decimal(str(config.minimum_payout)),
        payout_schedule=config.payout_schedule,
        tier_rates=tier_rates,
    )


def _defaults() -> dict:
    return {
        "commission_hold_days": settings.COMMISSION_HOLD_DAYS,
        "minimum_payout": settings.MINIMUM_PAYOUT,
        "payout_schedule": settings.PAYOUT_SCHEDULE,
        "tier_rates_json": default_tier_rates(),
    }

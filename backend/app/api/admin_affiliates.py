from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.affiliates import (
    ALLOWED_TIERS,
    build_referral_link,
    generate_referral_code,
    resolve_commission_rate,
)
from app.core.db import get_db
from app.core.payouts import sync_affiliate_totals
from app.crud.affiliates import (
    create_affiliate,
    get_affiliate,
    get_affiliate_by_code,
    get_affiliate_by_custom_link,
    list_affiliates,
    update_affiliate,
)
from app.crud.program_config import (
    default_tier_rates,
    get_effective_program_config,
    upsert_program_config,
)
from app.schemas.affiliates import (
    AffiliateCreate,
    AffiliateRead,
    AffiliateSyncResponse,
    AffiliateTotalsRead,
    AffiliateUpdate,
    ProgramConfigRead,
    ProgramConfigUpdate,
)


router = APIRouter(prefix="/admin", tags=["admin"])


def _affiliate_read(affiliate) -> AffiliateRead:
    return AffiliateRead(
        id=affiliate.id,
        name=affiliate.name,
        email=affiliate.email,
        referral_code=affiliate.referral_code,
        referral_link=build_referral_link(affiliate.referral_code),
        custom_tracking_link=affiliate.custom_tracking_link,
        tier=affiliate.tier,
        commission_rate=float(affiliate.commission_rate or 0),
        is_active=bool(affiliate.is_active),
        payout_method=affiliate.payout_method,
        total_clicks=affiliate.total_clicks or 0,
        total_leads=affiliate.total_leads or 0,
        total_bookings=affiliate.total_bookings or 0,
        total_sales=affiliate.total_sales or 0,
        total_commission=float(affiliate.total_commission or 0),
        created_at=affiliate.created_at,
        updated_at=affiliate.updated_at,
    )


def _config_read(config) -> ProgramConfigRead:
    tier_rates = default_tier_rates()
    tier_rates.update(config.tier_rates_json or {})
    return ProgramConfigRead(
        commission_hold_days=config.commission_hold_days,
        minimum_payout=float(config.minimum_payout or 0),
        payout_schedule=config.payout_schedule,
        tier_rates=tier_rates,
        updated_at=config.updated_at,
    )


@router.get("/affiliates", response_model=list[AffiliateRead])
def list_all_affiliates(db: Session = Depends(get_db)):
    return [_affiliate_read(affiliate) for affiliate in list_affiliates(db)]


@router.post("/affiliates", response_model=AffiliateRead, status_code=status.HTTP_201_CREATED)
def create_program_affiliate(payload: AffiliateCreate, db: Session = Depends(get_db)):
    if payload.tier not in ALLOWED_TIERS:
        raise HTTPException(status_code=422, detail="Invalid tier")
    code = (payload.referral_code or generate_referral_code()).strip()
    if get_affiliate_by_code(db, code=code):
        raise HTTPException(status_code=409, detail="Referral code already in use")
    custom_link = (payload.custom_tracking_link or "").strip() or None
    if custom_link and get_affiliate_by_custom_link(db, custom_link=custom_link):
        raise HTTPException(status_code=409, detail="Custom tracking link already in use")
    try:
        rate = resolve_commission_rate(db, tier=payload.tier, explicit_rate=payload.commission_rate)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    affiliate = create_affiliate(
        db,
        name=payload.name,
        email=payload.email,
        referral_code=code,
        custom_tracking_link=custom_link,
        tier=payload.tier,
        commission_rate=rate,
        is_active=payload.is_active,
        payout_method=payload.payout_method,
    )
    return _affiliate_read(affiliate)


@router.get("/affiliates/{affiliate_id}", response_model=AffiliateRead)
def get_program_affiliate(affiliate_id: int, db: Session = Depends(get_db)):
    affiliate = get_affiliate(db, affiliate_id=affiliate_id)
    if not affiliate:
        raise HTTPException(status_code=404, detail="Affiliate not found")
    return _affiliate_read(affiliate)


@router.patch("/affiliates/{affiliate_id}", response_model=AffiliateRead)
def update_program_affiliate(
    affiliate_id: int,
    payload: AffiliateUpdate,
    db: Session = Depends(get_db),
):
    affiliate = get_affiliate(db, affiliate_id=affiliate_id)
    if not affiliate:
        raise HTTPException(status_code=404, detail="Affiliate not found")
    updates = payload.model_dump(exclude_unset=True)
    if "tier" in updates and updates["tier"] not in ALLOWED_TIERS:
        raise HTTPException(status_code=422, detail="Invalid tier")
    if "custom_tracking_link" in updates:
        link = (updates["custom_tracking_link"] or "").strip() or None
        existing = get_affiliate_by_custom_link(db, custom_link=link) if link else None
        if existing and existing.id != affiliate.id:
            raise HTTPException(status_code=409, detail="Custom tracking link already in use")
        # Switching to a custom link is one-way: it cannot be cleared here.
        if link is None and affiliate.custom_tracking_link:
            raise HTTPException(status_code=422, detail="Custom tracking link cannot be removed")
        updates["custom_tracking_link"] = link
    affiliate = update_affiliate(db, affiliate=affiliate, updates=updates)
    return _affiliate_read(affiliate)


@router.post("/affiliates/sync", response_model=AffiliateSyncResponse)
def sync_affiliates(affiliate_id: int | None = None, db: Session = Depends(get_db)):
    results = sync_affiliate_totals(db, affiliate_id=affiliate_id)
    return AffiliateSyncResponse(
        synced=len(results),
        corrected=sum(1 for item in results if item.changed),
        affiliates=[
            AffiliateTotalsRead(
                affiliate_id=item.affiliate_id,
                total_clicks=item.total_clicks,
                total_leads=item.total_leads,
                total_bookings=item.total_bookings,
                total_sales=item.total_sales,
                total_commission=float(item.total_commission),
                changed=item.changed,
            )
            for item in results
        ],
    )


@router.get("/program-config", response_model=ProgramConfigRead)
def read_program_config(db: Session = Depends(get_db)):
    return _config_read(get_effective_program_config(db))


@router.post("/program-config", response_model=ProgramConfigRead)
def update_program_config(payload: ProgramConfigUpdate, db: Session = Depends(get_db)):
    updates = payload.model_dump(exclude_unset=True)
    tier_rates = updates.pop("tier_rates", None)
    if tier_rates is not None:
        unknown = set(tier_rates) - ALLOWED_TIERS
        if unknown:
            raise HTTPException(status_code=422, detail=f"Unknown tiers: {sorted(unknown)}")
        if any(rate < 0 or rate > 1 for rate in tier_rates.values()):
            raise HTTPException(status_code=422, detail="Tier rates must be between 0 and 1")
        merged = dict(get_effective_program_config(db).tier_rates_json or {})
        merged.update(tier_rates)
        updates["tier_rates_json"] = merged
    config = upsert_program_config(db, payload=updates)
    return _config_read(config)

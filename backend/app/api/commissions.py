from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.commissions import (
    force_release_commission,
    forfeit_commission,
    get_commission_status,
    mark_commissions_paid,
    release_due_commissions,
)
from app.core.db import get_db
from app.crud.affiliates import get_affiliate, list_conversions_for_affiliate
from app.schemas.commissions import (
    CommissionStatusRead,
    ConversionRead,
    ForfeitRequest,
    MarkPaidRequest,
    ReleaseResponse,
)


router = APIRouter(prefix="/admin/commissions", tags=["admin"])


def _conversion_read(conversion) -> ConversionRead:
    return ConversionRead(
        id=conversion.id,
        affiliate_id=conversion.affiliate_id,
        referral_code=conversion.referral_code,
        quiz_session_id=conversion.quiz_session_id,
        conversion_type=conversion.conversion_type,
        status=conversion.status,
        sale_value=float(conversion.sale_value or 0),
        commission_amount=float(conversion.commission_amount or 0),
        commission_status=conversion.commission_status,
        hold_until=conversion.hold_until,
        released_at=conversion.released_at,
        paid_at=conversion.paid_at,
        forfeited_at=conversion.forfeited_at,
        forfeit_reason=conversion.forfeit_reason,
        payout_id=conversion.payout_id,
        created_at=conversion.created_at,
    )


@router.post("/release", response_model=ReleaseResponse)
def release_commissions(db: Session = Depends(get_db)):
    result = release_due_commissions(db)
    return ReleaseResponse(
        released_count=result.released_count,
        released_amount=float(result.released_amount),
        conversion_ids=result.conversion_ids,
        released_at=result.released_at,
    )


@router.post("/{conversion_id}/force-release", response_model=ConversionRead)
def force_release(conversion_id: int, db: Session = Depends(get_db)):
    conversion = force_release_commission(db, conversion_id)
    return _conversion_read(conversion)


@router.post("/mark-paid", response_model=list[ConversionRead])
def mark_paid(payload: MarkPaidRequest, db: Session = Depends(get_db)):
    try:
        conversions = mark_commissions_paid(db, payload.conversion_ids, payload.payout_id)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return [_conversion_read(conversion) for conversion in conversions]


@router.post("/{conversion_id}/forfeit", response_model=ConversionRead)
def forfeit(conversion_id: int, payload: ForfeitRequest, db: Session = Depends(get_db)):
    try:
        conversion = forfeit_commission(db, conversion_id, payload.reason)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _conversion_read(conversion)


@router.get("/status", response_model=CommissionStatusRead)
def commission_status(db: Session = Depends(get_db)):
    summary = get_commission_status(db)
    return CommissionStatusRead(
        ready_for_release_count=summary.ready_for_release_count,
        ready_for_release_amount=float(summary.ready_for_release_amount),
        counts=summary.counts,
        amounts={status: float(amount) for status, amount in summary.amounts.items()},
        as_of=summary.as_of,
    )


@router.get("/affiliates/{affiliate_id}", response_model=list[ConversionRead])
def list_affiliate_conversions(affiliate_id: int, db: Session = Depends(get_db)):
    if not get_affiliate(db, affiliate_id=affiliate_id):
        raise HTTPException(status_code=404, detail="Affiliate not found")
    rows = list_conversions_for_affiliate(db, affiliate_id=affiliate_id)
    return [_conversion_read(row) for row in rows]

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.core.payouts import (
    build_all_payout_summaries,
    build_payout_summary,
    complete_payout,
    create_payout,
)
from app.crud.affiliates import get_affiliate, list_payouts_for_affiliate
from app.schemas.payouts import PayoutComplete, PayoutCreate, PayoutRead, PayoutSummaryRead


router = APIRouter(prefix="/admin/payouts", tags=["admin"])


def _summary_read(summary) -> PayoutSummaryRead:
    return PayoutSummaryRead(
        affiliate_id=summary.affiliate_id,
        affiliate_name=summary.affiliate_name,
        referral_code=summary.referral_code,
        total_commission=float(summary.total_commission),
        total_paid=float(summary.total_paid),
        pending_payouts=float(summary.pending_payouts),
        available_commission=float(summary.available_commission),
        held_commission=float(summary.held_commission),
        minimum_payout=float(summary.minimum_payout),
        payout_schedule=summary.payout_schedule,
        eligible_for_payout=summary.eligible_for_payout,
    )


def _payout_read(payout) -> PayoutRead:
    return PayoutRead(
        id=payout.id,
        affiliate_id=payout.affiliate_id,
        amount_due=float(payout.amount_due or 0),
        status=payout.status,
        notes=payout.notes,
        paid_at=payout.paid_at,
        created_at=payout.created_at,
    )


@router.get("/summary", response_model=list[PayoutSummaryRead])
def payout_summary(
    affiliate_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    if affiliate_id is not None:
        return [_summary_read(build_payout_summary(db, affiliate_id))]
    return [_summary_read(summary) for summary in build_all_payout_summaries(db)]


@router.get("/affiliates/{affiliate_id}", response_model=list[PayoutRead])
def list_affiliate_payouts(affiliate_id: int, db: Session = Depends(get_db)):
    if not get_affiliate(db, affiliate_id=affiliate_id):
        raise HTTPException(status_code=404, detail="Affiliate not found")
    return [_payout_read(payout) for payout in list_payouts_for_affiliate(db, affiliate_id=affiliate_id)]


@router.post("", response_model=PayoutRead, status_code=status.HTTP_201_CREATED)
def request_payout(payload: PayoutCreate, db: Session = Depends(get_db)):
    try:
        payout = create_payout(
            db,
            affiliate_id=payload.affiliate_id,
            amount=payload.amount,
            notes=payload.notes,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _payout_read(payout)


@router.post("/{payout_id}/complete", response_model=PayoutRead)
def finish_payout(payout_id: int, payload: PayoutComplete, db: Session = Depends(get_db)):
    payout = complete_payout(db, payout_id, payload.conversion_ids)
    return _payout_read(payout)

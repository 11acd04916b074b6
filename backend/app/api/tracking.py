from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.core.affiliates import build_referral_link
from app.core.clicks import record_click, record_custom_link_click
from app.core.conversions import record_conversion
from app.core.db import get_db
from app.core.errors import PersistenceFailureError
from app.core.request_meta import extract_client_ip
from app.core.tracking import TrackingResult
from app.models.enums import ClickSourceEnum
from app.schemas.tracking import (
    ClickTrackRequest,
    ConversionTrackRequest,
    CustomLinkClickRequest,
    TrackingResponse,
)


router = APIRouter(prefix="/track", tags=["tracking"])


def _client(request: Request) -> tuple[str | None, str | None]:
    client_ip = getattr(request.state, "client_ip", None) or extract_client_ip(request)
    user_agent = getattr(request.state, "user_agent", None) or request.headers.get("User-Agent")
    return client_ip, user_agent


def _tracking_response(result: TrackingResult) -> TrackingResponse:
    # Misses and duplicates are successful no-ops; only store failures are errors.
    if result.failed:
        raise PersistenceFailureError("Tracking could not be recorded")
    return TrackingResponse(
        success=True,
        outcome=result.outcome.value,
        record_id=result.record_id,
        affiliate_id=result.affiliate_id,
    )


@router.post("/click", response_model=TrackingResponse)
def track_click(
    payload: ClickTrackRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    client_ip, user_agent = _client(request)
    result = record_click(
        db,
        affiliate_code=payload.affiliate_code,
        ip_address=client_ip,
        user_agent=user_agent,
        utm_source=payload.utm_source,
        utm_medium=payload.utm_medium,
        utm_campaign=payload.utm_campaign,
        source=payload.source,
    )
    return _tracking_response(result)


@router.get("/redirect")
def track_redirect(
    request: Request,
    affiliate: str = Query(..., min_length=1),
    utm_source: Optional[str] = None,
    utm_medium: Optional[str] = None,
    utm_campaign: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Record the click, then send the visitor on regardless of the outcome."""
    client_ip, user_agent = _client(request)
    record_click(
        db,
        affiliate_code=affiliate,
        ip_address=client_ip,
        user_agent=user_agent,
        utm_source=utm_source,
        utm_medium=utm_medium,
        utm_campaign=utm_campaign,
        source=ClickSourceEnum.REDIRECT.value,
    )
    return RedirectResponse(url=build_referral_link(affiliate), status_code=302)


@router.post("/custom-link", response_model=TrackingResponse)
def track_custom_link(
    payload: CustomLinkClickRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    client_ip, user_agent = _client(request)
    result = record_custom_link_click(
        db,
        custom_link=payload.custom_link,
        ip_address=client_ip,
        user_agent=user_agent,
        utm_source=payload.utm_source,
        utm_medium=payload.utm_medium,
        utm_campaign=payload.utm_campaign,
    )
    return _tracking_response(result)


@router.post("/conversion", response_model=TrackingResponse)
def track_conversion(
    payload: ConversionTrackRequest,
    db: Session = Depends(get_db),
):
    try:
        result = record_conversion(
            db,
            affiliate_code=payload.affiliate_code,
            conversion_type=payload.conversion_type,
            quiz_session_id=payload.quiz_session_id,
            sale_value=payload.sale_value,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _tracking_response(result)

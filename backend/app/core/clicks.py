from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.metrics import record_click_outcome
from app.core.time import normalize_ts, utcnow
from app.core.tracking import TrackingOutcome, TrackingResult
from app.crud.affiliates import (
    add_click,
    find_recent_click,
    get_affiliate_by_code,
    get_affiliate_by_custom_link,
    increment_affiliate_counters,
    lock_affiliate,
)
from app.models.affiliates import Affiliate
from app.models.enums import ClickSourceEnum


logger = logging.getLogger(__name__)


def click_dedup_window(source: str) -> timedelta:
    if source == ClickSourceEnum.HOMEPAGE.value:
        return timedelta(seconds=settings.HOMEPAGE_CLICK_DEDUP_SECONDS)
    return timedelta(seconds=settings.REDIRECT_CLICK_DEDUP_SECONDS)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _result(source: str, outcome: TrackingOutcome, **kwargs) -> TrackingResult:
    record_click_outcome(source=source, outcome=outcome.value)
    return TrackingResult(outcome=outcome, **kwargs)


def record_click(
    db: Session,
    *,
    affiliate_code: str | None,
    ip_address: str | None,
    user_agent: str | None,
    utm_source: str | None = None,
    utm_medium: str | None = None,
    utm_campaign: str | None = None,
    source: str = ClickSourceEnum.REDIRECT.value,
    now: datetime | None = None,
) -> TrackingResult:
    """Record a referral-link click unless the same visitor clicked recently.

    The visitor fingerprint is (affiliate, user agent); a second click inside
    the source's dedup window is skipped. Affiliates that switched to a custom
    tracking link no longer track through their referral code.
    """
    code = _clean(affiliate_code)
    if code is None:
        return _result(source, TrackingOutcome.SKIPPED_NOT_FOUND)
    try:
        affiliate = get_affiliate_by_code(db, code=code)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("click.lookup_failed", extra={"affiliate_code": code})
        return _result(source, TrackingOutcome.FAILED, error=str(exc))
    if affiliate is None:
        return _result(source, TrackingOutcome.SKIPPED_NOT_FOUND)
    if not affiliate.is_active:
        return _result(source, TrackingOutcome.SKIPPED_INACTIVE, affiliate_id=affiliate.id)
    if affiliate.custom_tracking_link:
        return _result(source, TrackingOutcome.SKIPPED_DISABLED, affiliate_id=affiliate.id)
    return _insert_click(
        db,
        affiliate=affiliate,
        ip_address=ip_address,
        user_agent=user_agent,
        utm_source=utm_source,
        utm_medium=utm_medium,
        utm_campaign=utm_campaign,
        source=source,
        now=normalize_ts(now) or utcnow(),
    )


def record_custom_link_click(
    db: Session,
    *,
    custom_link: str | None,
    ip_address: str | None,
    user_agent: str | None,
    utm_source: str | None = None,
    utm_medium: str | None = None,
    utm_campaign: str | None = None,
    now: datetime | None = None,
) -> TrackingResult:
    source = ClickSourceEnum.CUSTOM_LINK.value
    link = _clean(custom_link)
    if link is None:
        return _result(source, TrackingOutcome.SKIPPED_NOT_FOUND)
    try:
        affiliate = get_affiliate_by_custom_link(db, custom_link=link)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("click.lookup_failed", extra={"custom_link": link})
        return _result(source, TrackingOutcome.FAILED, error=str(exc))
    if affiliate is None:
        return _result(source, TrackingOutcome.SKIPPED_NOT_FOUND)
    if not affiliate.is_active:
        return _result(source, TrackingOutcome.SKIPPED_INACTIVE, affiliate_id=affiliate.id)
    return _insert_click(
        db,
        affiliate=affiliate,
        ip_address=ip_address,
        user_agent=user_agent,
        utm_source=utm_source,
        utm_medium=utm_medium,
        utm_campaign=utm_campaign,
        source=source,
        now=normalize_ts(now) or utcnow(),
    )


def _insert_click(
    db: Session,
    *,
    affiliate: Affiliate,
    ip_address: str | None,
    user_agent: str | None,
    utm_source: str | None,
    utm_medium: str | None,
    utm_campaign: str | None,
    source: str,
    now: datetime,
) -> TrackingResult:
    window = click_dedup_window(source)
    try:
        locked = lock_affiliate(db, affiliate_id=affiliate.id)
        if locked is None:
            db.rollback()
            return _result(source, TrackingOutcome.SKIPPED_NOT_FOUND)
        existing = find_recent_click(
            db,
            affiliate_id=locked.id,
            user_agent=user_agent,
            since=now - window,
        )
        if existing is not None:
            db.rollback()
            return _result(
                source,
                TrackingOutcome.SKIPPED_DUPLICATE,
                record_id=existing.id,
                affiliate_id=locked.id,
            )
        click = add_click(
            db,
            affiliate=locked,
            ip_address=ip_address,
            user_agent=user_agent,
            utm_source=utm_source,
            utm_medium=utm_medium,
            utm_campaign=utm_campaign,
            source=source,
            created_at=now,
        )
        increment_affiliate_counters(db, affiliate_id=locked.id, total_clicks=1)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "click.record_failed",
            extra={"affiliate_id": affiliate.id, "source": source},
        )
        return _result(source, TrackingOutcome.FAILED, affiliate_id=affiliate.id, error=str(exc))

    logger.info(
        "click.recorded",
        extra={"affiliate_id": affiliate.id, "click_id": click.id, "source": source},
    )
    return _result(
        source,
        TrackingOutcome.RECORDED,
        record_id=click.id,
        affiliate_id=affiliate.id,
    )

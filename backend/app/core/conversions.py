from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.metrics import record_conversion_outcome
from app.core.time import normalize_ts, utcnow
from app.core.tracking import TrackingOutcome, TrackingResult
from app.crud.affiliates import (
    add_conversion,
    find_recent_conversion,
    get_affiliate_by_code,
    increment_affiliate_counters,
    lock_affiliate,
)
from app.crud.program_config import read_program_settings
from app.models.enums import CommissionStatusEnum, ConversionStatusEnum, ConversionTypeEnum


logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

COUNTER_BY_TYPE = {
    ConversionTypeEnum.QUIZ_COMPLETION.value: "total_leads",
    ConversionTypeEnum.BOOKING.value: "total_bookings",
    ConversionTypeEnum.SALE.value: "total_sales",
}


def to_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid money amount: {value!r}") from exc
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_commission(conversion_type: str, commission_rate, sale_value) -> Decimal:
    """Commission owed for one conversion, rounded to cents.

    Bookings never earn commission on their own; sales and quiz completions
    earn ``rate * sale_value`` when a value is attached.
    """
    if conversion_type == ConversionTypeEnum.BOOKING.value:
        return Decimal("0.00")
    value = to_money(sale_value)
    if value <= 0:
        return Decimal("0.00")
    rate = Decimal(str(commission_rate or 0))
    return (rate * value).quantize(CENTS, rounding=ROUND_HALF_UP)


def _result(conversion_type: str, outcome: TrackingOutcome, **kwargs) -> TrackingResult:
    record_conversion_outcome(conversion_type=conversion_type, outcome=outcome.value)
    return TrackingResult(outcome=outcome, **kwargs)


def record_conversion(
    db: Session,
    *,
    affiliate_code: str | None,
    conversion_type: str,
    quiz_session_id: str | None = None,
    sale_value=None,
    now: datetime | None = None,
) -> TrackingResult:
    if conversion_type not in COUNTER_BY_TYPE:
        raise ValueError(f"Unsupported conversion type: {conversion_type}")
    value = to_money(sale_value)
    now = normalize_ts(now) or utcnow()
    code = (affiliate_code or "").strip()
    if not code:
        return _result(conversion_type, TrackingOutcome.SKIPPED_NOT_FOUND)

    try:
        affiliate = get_affiliate_by_code(db, code=code)
        if affiliate is None:
            return _result(conversion_type, TrackingOutcome.SKIPPED_NOT_FOUND)
        if not affiliate.is_active:
            return _result(
                conversion_type,
                TrackingOutcome.SKIPPED_INACTIVE,
                affiliate_id=affiliate.id,
            )

        locked = lock_affiliate(db, affiliate_id=affiliate.id)
        if locked is None:
            db.rollback()
            return _result(conversion_type, TrackingOutcome.SKIPPED_NOT_FOUND)
        since = now - timedelta(seconds=settings.CONVERSION_DEDUP_SECONDS)
        existing = find_recent_conversion(
            db,
            affiliate_id=locked.id,
            conversion_type=conversion_type,
            since=since,
        )
        if existing is not None:
            db.rollback()
            return _result(
                conversion_type,
                TrackingOutcome.SKIPPED_DUPLICATE,
                record_id=existing.id,
                affiliate_id=affiliate.id,
            )

        program = read_program_settings(db)
        commission = compute_commission(conversion_type, locked.commission_rate, value)
        conversion = add_conversion(
            db,
            affiliate=locked,
            conversion_type=conversion_type,
            quiz_session_id=quiz_session_id,
            sale_value=value,
            commission_amount=commission,
            commission_status=CommissionStatusEnum.HELD.value,
            hold_until=now + timedelta(days=program.commission_hold_days),
            status=ConversionStatusEnum.CONFIRMED.value,
            created_at=now,
        )
        counters = {COUNTER_BY_TYPE[conversion_type]: 1}
        if commission > 0:
            counters["total_commission"] = commission
        increment_affiliate_counters(db, affiliate_id=locked.id, **counters)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "conversion.record_failed",
            extra={"affiliate_code": code, "conversion_type": conversion_type},
        )
        return _result(conversion_type, TrackingOutcome.FAILED, error=str(exc))

    logger.info(
        "conversion.recorded",
        extra={
            "affiliate_id": affiliate.id,
            "conversion_id": conversion.id,
            "conversion_type": conversion_type,
            "commission_amount": str(commission),
        },
    )
    return _result(
        conversion_type,
        TrackingOutcome.RECORDED,
        record_id=conversion.id,
        affiliate_id=affiliate.id,
    )

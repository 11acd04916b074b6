from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from app.core.commissions import AVAILABLE, PAID, apply_mark_paid
from app.core.conversions import to_money
from app.core.db import atomic
from app.core.errors import InvalidStateError, NotFoundError
from app.core.metrics import record_commission_transition
from app.core.time import normalize_ts, utcnow
from app.crud.affiliates import (
    add_payout,
    count_clicks,
    count_conversions,
    get_affiliate,
    get_payout,
    list_affiliates,
    lock_affiliate,
    non_forfeited_statuses,
    overwrite_affiliate_counters,
    sum_commission,
    sum_payouts,
    update_payout_if_status,
)
from app.crud.closers import closer_outcome_totals, get_closer, list_closers, overwrite_closer_totals
from app.crud.program_config import ProgramSettings, read_program_settings
from app.models.affiliates import Affiliate, AffiliatePayout
from app.models.closers import Closer
from app.models.enums import CommissionStatusEnum, ConversionTypeEnum, PayoutStatusEnum


logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
IN_FLIGHT_PAYOUT_STATUSES = (PayoutStatusEnum.PENDING.value, PayoutStatusEnum.PROCESSING.value)


@dataclass
class PayoutSummary:
    affiliate_id: int
    affiliate_name: str
    referral_code: str
    total_commission: Decimal
    total_paid: Decimal
    pending_payouts: Decimal
    available_commission: Decimal
    held_commission: Decimal
    minimum_payout: Decimal
    payout_schedule: str
    eligible_for_payout: bool


@dataclass
class AffiliateTotals:
    affiliate_id: int
    total_clicks: int
    total_leads: int
    total_bookings: int
    total_sales: int
    total_commission: Decimal
    changed: bool = False


@dataclass
class CloserTotals:
    closer_id: int
    total_conversions: int
    total_revenue: Decimal
    conversion_rate: Decimal
    changed: bool = False


def available_commission(total_commission: Decimal, total_paid: Decimal, pending_payouts: Decimal) -> Decimal:
    # Clamped: a payout can briefly outrun the commissions that back it.
    return max(ZERO, total_commission - total_paid - pending_payouts)


def _summarize(db: Session, affiliate: Affiliate, program: ProgramSettings) -> PayoutSummary:
    total_commission = sum_commission(
        db,
        affiliate_id=affiliate.id,
        commission_statuses=non_forfeited_statuses(),
    )
    total_paid = sum_payouts(
        db,
        affiliate_id=affiliate.id,
        statuses=[PayoutStatusEnum.COMPLETED.value],
    )
    pending = sum_payouts(db, affiliate_id=affiliate.id, statuses=IN_FLIGHT_PAYOUT_STATUSES)
    held = sum_commission(
        db,
        affiliate_id=affiliate.id,
        commission_statuses=[CommissionStatusEnum.HELD.value],
    )
    available = available_commission(total_commission, total_paid, pending)
    return PayoutSummary(
        affiliate_id=affiliate.id,
        affiliate_name=affiliate.name,
        referral_code=affiliate.referral_code,
        total_commission=total_commission,
        total_paid=total_paid,
        pending_payouts=pending,
        available_commission=available,
        held_commission=held,
        minimum_payout=program.minimum_payout,
        payout_schedule=program.payout_schedule,
        eligible_for_payout=available > 0 and available >= program.minimum_payout,
    )


def build_payout_summary(db: Session, affiliate_id: int) -> PayoutSummary:
    affiliate = get_affiliate(db, affiliate_id=affiliate_id)
    if affiliate is None:
        raise NotFoundError("affiliate", affiliate_id)
    return _summarize(db, affiliate, read_program_settings(db))


def build_all_payout_summaries(db: Session) -> list[PayoutSummary]:
    program = read_program_settings(db)
    return [_summarize(db, affiliate, program) for affiliate in list_affiliates(db)]


def create_payout(
    db: Session,
    *,
    affiliate_id: int,
    amount,
    notes: str | None = None,
) -> AffiliatePayout:
    """Record a pending payout request, capped at the affiliate's available balance."""
    amount_due = to_money(amount)
    if amount_due <= 0:
        raise ValueError("Payout amount must be positive")
    with atomic(db, operation="payout.create"):
        # Serializes competing payout requests for the same affiliate.
        affiliate = lock_affiliate(db, affiliate_id=affiliate_id)
        if affiliate is None:
            raise NotFoundError("affiliate", affiliate_id)
        summary = _summarize(db, affiliate, read_program_settings(db))
        if amount_due > summary.available_commission:
            raise InvalidStateError(
                "Payout amount exceeds available commission",
                affiliate_id=affiliate_id,
                requested=str(amount_due),
                available=str(summary.available_commission),
            )
        payout = add_payout(
            db,
            affiliate_id=affiliate_id,
            amount_due=amount_due,
            status=PayoutStatusEnum.PENDING.value,
            notes=notes,
        )
    db.refresh(payout)
    logger.info(
        "payout.created",
        extra={"payout_id": payout.id, "affiliate_id": affiliate_id, "amount_due": str(amount_due)},
    )
    return payout


def complete_payout(
    db: Session,
    payout_id: int,
    conversion_ids: Iterable[int] | None = None,
    now: datetime | None = None,
) -> AffiliatePayout:
    """Mark a payout completed and pay the listed commissions in one transaction."""
    now = normalize_ts(now) or utcnow()
    ids = sorted(set(conversion_ids or []))
    with atomic(db, operation="payout.complete"):
        payout = get_payout(db, payout_id=payout_id)
        if payout is None:
            raise NotFoundError("payout", payout_id)
        completed = update_payout_if_status(
            db,
            payout_id=payout_id,
            expected_statuses=IN_FLIGHT_PAYOUT_STATUSES,
            values={
                "status": PayoutStatusEnum.COMPLETED.value,
                "paid_at": now,
                "updated_at": now,
            },
        )
        if not completed:
            raise InvalidStateError(
                "Only pending or processing payouts can be completed",
                current=payout.status,
                target=PayoutStatusEnum.COMPLETED.value,
                payout_id=payout_id,
            )
        if ids:
            apply_mark_paid(db, conversion_ids=ids, payout_id=payout_id, now=now)

    db.refresh(payout)
    record_commission_transition(
        from_status=AVAILABLE.value,
        to_status=PAID.value,
        trigger="payout",
        count=len(ids),
    )
    logger.info(
        "payout.completed",
        extra={"payout_id": payout_id, "affiliate_id": payout.affiliate_id, "conversion_count": len(ids)},
    )
    return payout


def compute_affiliate_totals(db: Session, affiliate_id: int) -> AffiliateTotals:
    return AffiliateTotals(
        affiliate_id=affiliate_id,
        total_clicks=count_clicks(db, affiliate_id=affiliate_id),
        total_leads=count_conversions(
            db,
            affiliate_id=affiliate_id,
            conversion_type=ConversionTypeEnum.QUIZ_COMPLETION.value,
        ),
        total_bookings=count_conversions(
            db,
            affiliate_id=affiliate_id,
            conversion_type=ConversionTypeEnum.BOOKING.value,
        ),
        total_sales=count_conversions(
            db,
            affiliate_id=affiliate_id,
            conversion_type=ConversionTypeEnum.SALE.value,
        ),
        total_commission=sum_commission(
            db,
            affiliate_id=affiliate_id,
            commission_statuses=non_forfeited_statuses(),
        ),
    )


def _cached_totals(affiliate: Affiliate) -> tuple:
    return (
        int(affiliate.total_clicks or 0),
        int(affiliate.total_leads or 0),
        int(affiliate.total_bookings or 0),
        int(affiliate.total_sales or 0),
        Decimal(str(affiliate.total_commission or 0)),
    )


def sync_affiliate_totals(db: Session, affiliate_id: int | None = None) -> list[AffiliateTotals]:
    """Overwrite cached affiliate counters with values recomputed from rows.

    Pure recomputation, so it is safe to repeat and to run next to live
    tracking traffic.
    """
    if affiliate_id is not None:
        affiliate = get_affiliate(db, affiliate_id=affiliate_id)
        if affiliate is None:
            raise NotFoundError("affiliate", affiliate_id)
        affiliates = [affiliate]
    else:
        affiliates = list_affiliates(db)

    results: list[AffiliateTotals] = []
    for affiliate in affiliates:
        with atomic(db, operation="affiliate.sync"):
            totals = compute_affiliate_totals(db, affiliate.id)
            recomputed = (
                totals.total_clicks,
                totals.total_leads,
                totals.total_bookings,
                totals.total_sales,
                totals.total_commission,
            )
            totals.changed = recomputed != _cached_totals(affiliate)
            overwrite_affiliate_counters(
                db,
                affiliate_id=affiliate.id,
                totals={
                    key: value
                    for key, value in asdict(totals).items()
                    if key not in {"affiliate_id", "changed"}
                },
            )
        results.append(totals)

    logger.info(
        "affiliate.totals_synced",
        extra={
            "affiliates_synced": len(results),
            "affiliates_corrected": sum(1 for item in results if item.changed),
        },
    )
    return results


def compute_closer_totals(db: Session, closer_id: int) -> CloserTotals:
    aggregates = closer_outcome_totals(db, closer_id=closer_id)
    completed = aggregates["completed"]
    converted = aggregates["converted"]
    rate = Decimal("0")
    if completed:
        rate = (Decimal(converted) / Decimal(completed)).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)
    return CloserTotals(
        closer_id=closer_id,
        total_conversions=converted,
        total_revenue=to_money(aggregates["revenue"]),
        conversion_rate=rate,
    )


def sync_closer_totals(db: Session, closer_id: int | None = None) -> list[CloserTotals]:
    if closer_id is not None:
        closer = get_closer(db, closer_id=closer_id)
        if closer is None:
            raise NotFoundError("closer", closer_id)
        closers: list[Closer] = [closer]
    else:
        closers = list_closers(db)

    results: list[CloserTotals] = []
    for closer in closers:
        with atomic(db, operation="closer.sync"):
            totals = compute_closer_totals(db, closer.id)
            totals.changed = (
                int(closer.total_conversions or 0) != totals.total_conversions
                or Decimal(str(closer.total_revenue or 0)) != totals.total_revenue
                or Decimal(str(closer.conversion_rate or 0)) != totals.conversion_rate
            )
            overwrite_closer_totals(
                db,
                closer_id=closer.id,
                totals={
                    "total_conversions": totals.total_conversions,
                    "total_revenue": totals.total_revenue,
                    "conversion_rate": totals.conversion_rate,
                },
            )
        results.append(totals)

    logger.info(
        "closer.totals_synced",
        extra={
            "closers_synced": len(results),
            "closers_corrected": sum(1 for item in results if item.changed),
        },
    )
    return results

"""
Commission lifecycle: held -> available -> paid, with forced release and forfeiture.

Every transition is checked against ALLOWED_TRANSITIONS before touching the
store, then applied as a conditional UPDATE guarded on the expected current
status. A row that changed underneath us makes the update match nothing, and
the whole operation is rolled back instead of applying a partial transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from app.core.db import atomic
from app.core.errors import InvalidStateError, NotFoundError
from app.core.metrics import record_commission_transition
from app.core.time import normalize_ts, utcnow
from app.crud.affiliates import (
    commission_totals_by_status,
    due_for_release_totals,
    get_conversion,
    get_conversions,
    get_payout,
    increment_affiliate_counters,
    list_due_commission_ids,
    list_released_at,
    sum_commission_for_payout,
    update_conversion_if_status,
)
from app.models.affiliates import AffiliateConversion
from app.models.enums import CommissionStatusEnum, ConversionStatusEnum, PayoutStatusEnum


logger = logging.getLogger(__name__)

HELD = CommissionStatusEnum.HELD
AVAILABLE = CommissionStatusEnum.AVAILABLE
PAID = CommissionStatusEnum.PAID
FORFEITED = CommissionStatusEnum.FORFEITED

ALLOWED_TRANSITIONS: dict[CommissionStatusEnum, frozenset[CommissionStatusEnum]] = {
    HELD: frozenset({AVAILABLE, FORFEITED}),
    AVAILABLE: frozenset({PAID, FORFEITED}),
    PAID: frozenset(),
    FORFEITED: frozenset(),
}


def _as_status(value: str | CommissionStatusEnum) -> CommissionStatusEnum:
    if isinstance(value, CommissionStatusEnum):
        return value
    try:
        return CommissionStatusEnum(value)
    except ValueError as exc:
        raise InvalidStateError(f"Unknown commission status: {value}", current=str(value)) from exc


def can_transition(current: str | CommissionStatusEnum, target: str | CommissionStatusEnum) -> bool:
    return _as_status(target) in ALLOWED_TRANSITIONS[_as_status(current)]


def ensure_transition(current: str | CommissionStatusEnum, target: str | CommissionStatusEnum) -> None:
    current_status = _as_status(current)
    target_status = _as_status(target)
    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        if current_status == target_status:
            raise InvalidStateError(
                f"Commission is already {current_status.value}",
                current=current_status.value,
                target=target_status.value,
            )
        raise InvalidStateError(
            f"Commission cannot move from {current_status.value} to {target_status.value}",
            current=current_status.value,
            target=target_status.value,
        )


@dataclass
class ReleaseResult:
    released_count: int
    released_amount: Decimal
    conversion_ids: list[int] = field(default_factory=list)
    released_at: datetime | None = None


@dataclass
class CommissionStatusSummary:
    ready_for_release_count: int
    ready_for_release_amount: Decimal
    counts: dict[str, int]
    amounts: dict[str, Decimal]
    as_of: datetime


def _load_conversion(db: Session, conversion_id: int) -> AffiliateConversion:
    conversion = get_conversion(db, conversion_id=conversion_id)
    if conversion is None:
        raise NotFoundError("conversion", conversion_id)
    return conversion


def _raise_lost_race(db: Session, conversion_id: int, target: CommissionStatusEnum) -> None:
    db.expire_all()
    conversion = _load_conversion(db, conversion_id)
    raise InvalidStateError(
        "Commission status changed concurrently",
        current=conversion.commission_status,
        target=target.value,
        conversion_id=conversion_id,
    )


def release_due_commissions(db: Session, now: datetime | None = None) -> ReleaseResult:
    """Move every held commission whose hold has expired to available.

    Zero-value commissions (bookings) are left held since they are never
    payable. Re-running with the same clock transitions nothing.
    """
    now = normalize_ts(now) or utcnow()
    with atomic(db, operation="commission.release"):
        due_ids = list_due_commission_ids(db, now=now)
        if not due_ids:
            return ReleaseResult(released_count=0, released_amount=Decimal("0.00"), released_at=now)
        update_conversion_if_status(
            db,
            conversion_ids=due_ids,
            expected_statuses=[HELD.value],
            values={
                "commission_status": AVAILABLE.value,
                "released_at": now,
                "updated_at": now,
            },
        )
        released = list_released_at(db, conversion_ids=due_ids, released_at=now)

    amount = sum((Decimal(str(row.commission_amount)) for row in released), Decimal("0.00"))
    record_commission_transition(
        from_status=HELD.value,
        to_status=AVAILABLE.value,
        trigger="scheduled",
        count=len(released),
    )
    logger.info(
        "commission.released",
        extra={"released_count": len(released), "released_amount": str(amount)},
    )
    return ReleaseResult(
        released_count=len(released),
        released_amount=amount,
        conversion_ids=[row.id for row in released],
        released_at=now,
    )


def force_release_commission(
    db: Session,
    conversion_id: int,
    now: datetime | None = None,
) -> AffiliateConversion:
    now = normalize_ts(now) or utcnow()
    with atomic(db, operation="commission.force_release"):
        conversion = _load_conversion(db, conversion_id)
        # Only held commissions can move to available.
        ensure_transition(conversion.commission_status, AVAILABLE)
        changed = update_conversion_if_status(
            db,
            conversion_ids=[conversion_id],
            expected_statuses=[HELD.value],
            values={
                "commission_status": AVAILABLE.value,
                "released_at": now,
                "updated_at": now,
            },
        )
        if changed != 1:
            _raise_lost_race(db, conversion_id, AVAILABLE)

    db.refresh(conversion)
    record_commission_transition(from_status=HELD.value, to_status=AVAILABLE.value, trigger="forced")
    logger.info(
        "commission.force_released",
        extra={"conversion_id": conversion_id, "affiliate_id": conversion.affiliate_id},
    )
    return conversion


def mark_commissions_paid(
    db: Session,
    conversion_ids: Iterable[int],
    payout_id: int,
    now: datetime | None = None,
) -> list[AffiliateConversion]:
    """Mark available commissions paid against one completed payout.

    All-or-nothing: a missing row, a row that is not available, a row owned
    by another affiliate or already linked to a payout aborts the whole call.
    """
    ids = sorted(set(conversion_ids))
    if not ids:
        raise ValueError("At least one conversion id is required")
    now = normalize_ts(now) or utcnow()

    with atomic(db, operation="commission.mark_paid"):
        conversions, batch_total = apply_mark_paid(db, conversion_ids=ids, payout_id=payout_id, now=now)

    for conversion in conversions:
        db.refresh(conversion)
    record_commission_transition(
        from_status=AVAILABLE.value,
        to_status=PAID.value,
        trigger="payout",
        count=len(ids),
    )
    logger.info(
        "commission.marked_paid",
        extra={"payout_id": payout_id, "conversion_count": len(ids), "amount": str(batch_total)},
    )
    return conversions


def apply_mark_paid(
    db: Session,
    *,
    conversion_ids: list[int],
    payout_id: int,
    now: datetime,
) -> tuple[list[AffiliateConversion], Decimal]:
    """Checks and conditional update for mark-paid; the caller owns the transaction."""
    ids = sorted(set(conversion_ids))
    payout = get_payout(db, payout_id=payout_id)
    if payout is None:
        raise NotFoundError("payout", payout_id)
    if payout.status != PayoutStatusEnum.COMPLETED.value:
        raise InvalidStateError(
            "Payout must be completed before commissions are marked paid",
            current=payout.status,
            target=PayoutStatusEnum.COMPLETED.value,
            payout_id=payout_id,
        )

    conversions = get_conversions(db, conversion_ids=ids)
    found = {conversion.id for conversion in conversions}
    missing = [conversion_id for conversion_id in ids if conversion_id not in found]
    if missing:
        raise NotFoundError("conversion", missing[0])

    batch_total = Decimal("0.00")
    for conversion in conversions:
        if conversion.affiliate_id != payout.affiliate_id:
            raise InvalidStateError(
                "Conversion belongs to a different affiliate than the payout",
                conversion_id=conversion.id,
                payout_id=payout_id,
            )
        if conversion.payout_id is not None:
            raise InvalidStateError(
                "Conversion is already linked to a payout",
                current=conversion.commission_status,
                conversion_id=conversion.id,
            )
        ensure_transition(conversion.commission_status, PAID)
        batch_total += Decimal(str(conversion.commission_amount))

    already_linked = sum_commission_for_payout(db, payout_id=payout_id)
    if already_linked + batch_total > Decimal(str(payout.amount_due)):
        raise InvalidStateError(
            "Commissions exceed the payout amount",
            payout_id=payout_id,
            amount_due=str(payout.amount_due),
            requested=str(already_linked + batch_total),
        )

    changed = update_conversion_if_status(
        db,
        conversion_ids=ids,
        expected_statuses=[AVAILABLE.value],
        values={
            "commission_status": PAID.value,
            "paid_at": now,
            "payout_id": payout_id,
            "updated_at": now,
        },
    )
    if changed != len(ids):
        raise InvalidStateError(
            "Commission status changed concurrently",
            target=PAID.value,
            expected=len(ids),
            updated=changed,
        )
    return conversions, batch_total


def forfeit_commission(
    db: Session,
    conversion_id: int,
    reason: str,
    now: datetime | None = None,
) -> AffiliateConversion:
    reason = (reason or "").strip()
    if not reason:
        raise ValueError("A forfeit reason is required")
    now = normalize_ts(now) or utcnow()

    with atomic(db, operation="commission.forfeit"):
        conversion = _load_conversion(db, conversion_id)
        previous = conversion.commission_status
        ensure_transition(previous, FORFEITED)
        changed = update_conversion_if_status(
            db,
            conversion_ids=[conversion_id],
            expected_statuses=[previous],
            values={
                "commission_status": FORFEITED.value,
                "forfeited_at": now,
                "forfeit_reason": reason,
                "updated_at": now,
            },
        )
        if changed != 1:
            _raise_lost_race(db, conversion_id, FORFEITED)
        amount = Decimal(str(conversion.commission_amount or 0))
        # The cached total only ever included confirmed conversions.
        if amount > 0 and conversion.status == ConversionStatusEnum.CONFIRMED.value:
            increment_affiliate_counters(
                db,
                affiliate_id=conversion.affiliate_id,
                total_commission=-amount,
            )

    db.refresh(conversion)
    record_commission_transition(from_status=previous, to_status=FORFEITED.value, trigger="forfeit")
    logger.info(
        "commission.forfeited",
        extra={
            "conversion_id": conversion_id,
            "affiliate_id": conversion.affiliate_id,
            "from_status": previous,
        },
    )
    return conversion


def get_commission_status(db: Session, now: datetime | None = None) -> CommissionStatusSummary:
    now = normalize_ts(now) or utcnow()
    ready_count, ready_amount = due_for_release_totals(db, now=now)
    totals = commission_totals_by_status(db)
    counts = {}
    amounts = {}
    for status in CommissionStatusEnum:
        count, amount = totals.get(status.value, (0, Decimal("0")))
        counts[status.value] = count
        amounts[status.value] = amount
    return CommissionStatusSummary(
        ready_for_release_count=ready_count,
        ready_for_release_amount=ready_amount,
        counts=counts,
        amounts=amounts,
        as_of=now,
    )

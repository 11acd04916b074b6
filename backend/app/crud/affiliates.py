from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.models.affiliates import Affiliate, AffiliateClick, AffiliateConversion, AffiliatePayout
from app.models.enums import CommissionStatusEnum, ConversionStatusEnum


AFFILIATE_COUNTERS = {
    "total_clicks",
    "total_leads",
    "total_bookings",
    "total_sales",
    "total_commission",
}


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


def create_affiliate(
    db: Session,
    *,
    name: str,
    referral_code: str,
    tier: str,
    commission_rate: float | Decimal,
    email: str | None = None,
    custom_tracking_link: str | None = None,
    is_active: bool = True,
    payout_method: str = "manual",
) -> Affiliate:
    affiliate = Affiliate(
        name=name,
        email=email,
        referral_code=referral_code,
        custom_tracking_link=custom_tracking_link,
        tier=tier,
        commission_rate=commission_rate,
        is_active=is_active,
        payout_method=payout_method,
        total_clicks=0,
        total_leads=0,
        total_bookings=0,
        total_sales=0,
        total_commission=0,
    )
    db.add(affiliate)
    db.commit()
    db.refresh(affiliate)
    return affiliate


def list_affiliates(db: Session) -> list[Affiliate]:
    return db.query(Affiliate).order_by(Affiliate.created_at.desc(), Affiliate.id.desc()).all()


def get_affiliate(db: Session, *, affiliate_id: int) -> Affiliate | None:
    return db.query(Affiliate).filter(Affiliate.id == affiliate_id).first()


def get_affiliate_by_code(db: Session, *, code: str) -> Affiliate | None:
    return db.query(Affiliate).filter(Affiliate.referral_code == code).first()


def get_affiliate_by_custom_link(db: Session, *, custom_link: str) -> Affiliate | None:
    return db.query(Affiliate).filter(Affiliate.custom_tracking_link == custom_link).first()


def lock_affiliate(db: Session, *, affiliate_id: int) -> Affiliate | None:
    # Row lock that serializes check-then-insert per affiliate. SQLite has no
    # row locks; there the BEGIN IMMEDIATE set up in app.core.db does the same.
    return (
        db.query(Affiliate)
        .filter(Affiliate.id == affiliate_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def update_affiliate(db: Session, *, affiliate: Affiliate, updates: dict) -> Affiliate:
    for key, value in updates.items():
        setattr(affiliate, key, value)
    db.commit()
    db.refresh(affiliate)
    return affiliate


def increment_affiliate_counters(db: Session, *, affiliate_id: int, **deltas) -> None:
    """Apply counter deltas as a single store-level UPDATE (no read-modify-write)."""
    values = {}
    for name, delta in deltas.items():
        if name not in AFFILIATE_COUNTERS:
            raise ValueError(f"Unknown affiliate counter: {name}")
        if not delta:
            continue
        column = getattr(Affiliate, name)
        values[name] = column + delta
    if not values:
        return
    db.execute(update(Affiliate).where(Affiliate.id == affiliate_id).values(**values))


def overwrite_affiliate_counters(db: Session, *, affiliate_id: int, totals: dict) -> None:
    unknown = set(totals) - AFFILIATE_COUNTERS
    if unknown:
        raise ValueError(f"Unknown affiliate counters: {sorted(unknown)}")
    db.execute(update(Affiliate).where(Affiliate.id == affiliate_id).values(**totals))


def find_recent_click(
    db: Session,
    *,
    affiliate_id: int,
    user_agent: str | None,
    since: datetime,
) -> AffiliateClick | None:
    return (
        db.query(AffiliateClick)
        .filter(
            AffiliateClick.affiliate_id == affiliate_id,
            AffiliateClick.user_agent == user_agent,
            AffiliateClick.created_at >= since,
        )
        .order_by(AffiliateClick.created_at.desc())
        .first()
    )


def add_click(
    db: Session,
    *,
    affiliate: Affiliate,
    ip_address: str | None,
    user_agent: str | None,
    utm_source: str | None,
    utm_medium: str | None,
    utm_campaign: str | None,
    source: str,
    created_at: datetime,
) -> AffiliateClick:
    click = AffiliateClick(
        affiliate_id=affiliate.id,
        referral_code=affiliate.referral_code,
        ip_address=ip_address,
        user_agent=user_agent,
        utm_source=utm_source,
        utm_medium=utm_medium,
        utm_campaign=utm_campaign,
        source=source,
        created_at=created_at,
    )
    db.add(click)
    db.flush()
    return click


def count_clicks(db: Session, *, affiliate_id: int) -> int:
    total = (
        db.query(func.count(AffiliateClick.id))
        .filter(AffiliateClick.affiliate_id == affiliate_id)
        .scalar()
    )
    return int(total or 0)


def find_recent_conversion(
    db: Session,
    *,
    affiliate_id: int,
    conversion_type: str,
    since: datetime,
) -> AffiliateConversion | None:
    return (
        db.query(AffiliateConversion)
        .filter(
            AffiliateConversion.affiliate_id == affiliate_id,
            AffiliateConversion.conversion_type == conversion_type,
            AffiliateConversion.created_at >= since,
        )
        .order_by(AffiliateConversion.created_at.desc())
        .first()
    )


def add_conversion(
    db: Session,
    *,
    affiliate: Affiliate,
    conversion_type: str,
    quiz_session_id: str | None,
    sale_value: Decimal,
    commission_amount: Decimal,
    commission_status: str,
    hold_until: datetime,
    status: str,
    created_at: datetime,
) -> AffiliateConversion:
    conversion = AffiliateConversion(
        affiliate_id=affiliate.id,
        referral_code=affiliate.referral_code,
        quiz_session_id=quiz_session_id,
        conversion_type=conversion_type,
        status=status,
        sale_value=sale_value,
        commission_amount=commission_amount,
        commission_status=commission_status,
        hold_until=hold_until,
        created_at=created_at,
        updated_at=created_at,
    )
    db.add(conversion)
    db.flush()
    return conversion


def get_conversion(db: Session, *, conversion_id: int) -> AffiliateConversion | None:
    return db.query(AffiliateConversion).filter(AffiliateConversion.id == conversion_id).first()


def get_conversions(db: Session, *, conversion_ids: Iterable[int]) -> list[AffiliateConversion]:
    ids = list(conversion_ids)
    if not ids:
        return []
    return (
        db.query(AffiliateConversion)
        .filter(AffiliateConversion.id.in_(ids))
        .order_by(AffiliateConversion.id.asc())
        .all()
    )


def list_conversions_for_affiliate(db: Session, *, affiliate_id: int) -> list[AffiliateConversion]:
    return (
        db.query(AffiliateConversion)
        .filter(AffiliateConversion.affiliate_id == affiliate_id)
        .order_by(AffiliateConversion.created_at.desc(), AffiliateConversion.id.desc())
        .all()
    )


def update_conversion_if_status(
    db: Session,
    *,
    conversion_ids: Iterable[int],
    expected_statuses: Iterable[str],
    values: dict,
) -> int:
    """Conditional update: only rows still in one of ``expected_statuses`` change."""
    ids = list(conversion_ids)
    if not ids:
        return 0
    result = db.execute(
        update(AffiliateConversion)
        .where(
            AffiliateConversion.id.in_(ids),
            AffiliateConversion.commission_status.in_(list(expected_statuses)),
        )
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    return int(result.rowcount or 0)


def count_conversions(
    db: Session,
    *,
    affiliate_id: int,
    conversion_type: str,
    status: str = ConversionStatusEnum.CONFIRMED.value,
) -> int:
    total = (
        db.query(func.count(AffiliateConversion.id))
        .filter(
            AffiliateConversion.affiliate_id == affiliate_id,
            AffiliateConversion.conversion_type == conversion_type,
            AffiliateConversion.status == status,
        )
        .scalar()
    )
    return int(total or 0)


def sum_commission(
    db: Session,
    *,
    affiliate_id: int | None = None,
    commission_statuses: Iterable[str] | None = None,
    confirmed_only: bool = True,
) -> Decimal:
    query = db.query(func.coalesce(func.sum(AffiliateConversion.commission_amount), 0))
    if affiliate_id is not None:
        query = query.filter(AffiliateConversion.affiliate_id == affiliate_id)
    if commission_statuses is not None:
        query = query.filter(AffiliateConversion.commission_status.in_(list(commission_statuses)))
    if confirmed_only:
        query = query.filter(AffiliateConversion.status == ConversionStatusEnum.CONFIRMED.value)
    return _money(query.scalar())


def non_forfeited_statuses() -> list[str]:
    return [
        status.value
        for status in CommissionStatusEnum
        if status != CommissionStatusEnum.FORFEITED
    ]


def add_payout(
    db: Session,
    *,
    affiliate_id: int,
    amount_due: Decimal,
    status: str,
    notes: str | None = None,
) -> AffiliatePayout:
    payout = AffiliatePayout(
        affiliate_id=affiliate_id,
        amount_due=amount_due,
        status=status,
        notes=notes,
    )
    db.add(payout)
    db.flush()
    return payout


def get_payout(db: Session, *, payout_id: int) -> AffiliatePayout | None:
    return db.query(AffiliatePayout).filter(AffiliatePayout.id == payout_id).first()


def list_payouts_for_affiliate(db: Session, *, affiliate_id: int) -> list[AffiliatePayout]:
    return (
        db.query(AffiliatePayout)
        .filter(AffiliatePayout.affiliate_id == affiliate_id)
        .order_by(AffiliatePayout.created_at.desc(), AffiliatePayout.id.desc())
        .all()
    )


def sum_payouts(db: Session, *, affiliate_id: int, statuses: Iterable[str]) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(AffiliatePayout.amount_due), 0))
        .filter(
            AffiliatePayout.affiliate_id == affiliate_id,
            AffiliatePayout.status.in_(list(statuses)),
        )
        .scalar()
    )
    return _money(total)


def list_due_commission_ids(db: Session, *, now: datetime) -> list[int]:
    rows = (
        db.query(AffiliateConversion.id)
        .filter(
            AffiliateConversion.commission_status == CommissionStatusEnum.HELD.value,
            AffiliateConversion.hold_until <= now,
            AffiliateConversion.commission_amount > 0,
        )
        .order_by(AffiliateConversion.id.asc())
        .all()
    )
    return [row[0] for row in rows]


def list_released_at(
    db: Session,
    *,
    conversion_ids: Iterable[int],
    released_at: datetime,
) -> list[AffiliateConversion]:
    ids = list(conversion_ids)
    if not ids:
        return []
    return (
        db.query(AffiliateConversion)
        .filter(
            AffiliateConversion.id.in_(ids),
            AffiliateConversion.commission_status == CommissionStatusEnum.AVAILABLE.value,
            AffiliateConversion.released_at == released_at,
        )
        .order_by(AffiliateConversion.id.asc())
        .all()
    )


def commission_totals_by_status(db: Session) -> dict[str, tuple[int, Decimal]]:
    rows = (
        db.query(
            AffiliateConversion.commission_status,
            func.count(AffiliateConversion.id),
            func.coalesce(func.sum(AffiliateConversion.commission_amount), 0),
        )
        .group_by(AffiliateConversion.commission_status)
        .all()
    )
    return {status: (int(count or 0), _money(total)) for status, count, total in rows}


def due_for_release_totals(db: Session, *, now: datetime) -> tuple[int, Decimal]:
    count, total = (
        db.query(
            func.count(AffiliateConversion.id),
            func.coalesce(func.sum(AffiliateConversion.commission_amount), 0),
        )
        .filter(
            AffiliateConversion.commission_status == CommissionStatusEnum.HELD.value,
            AffiliateConversion.hold_until <= now,
            AffiliateConversion.commission_amount > 0,
        )
        .one()
    )
    return int(count or 0), _money(total)


def sum_commission_for_payout(db: Session, *, payout_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(AffiliateConversion.commission_amount), 0))
        .filter(AffiliateConversion.payout_id == payout_id)
        .scalar()
    )
    return _money(total)


def update_payout_if_status(
    db: Session,
    *,
    payout_id: int,
    expected_statuses: Iterable[str],
    values: dict,
) -> bool:
    result = db.execute(
        update(AffiliatePayout)
        .where(
            AffiliatePayout.id == payout_id,
            AffiliatePayout.status.in_(list(expected_statuses)),
        )
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    return bool(result.rowcount)

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.models.closers import Appointment, Closer
from app.models.enums import AppointmentOutcomeEnum, AppointmentStatusEnum


def create_closer(
    db: Session,
    *,
    name: str,
    email: str,
    is_active: bool = True,
    is_approved: bool = False,
    commission_rate: float | Decimal = 0.10,
) -> Closer:
    closer = Closer(
        name=name,
        email=email,
        is_active=is_active,
        is_approved=is_approved,
        commission_rate=commission_rate,
        total_calls=0,
        total_conversions=0,
        total_revenue=0,
        conversion_rate=0,
    )
    db.add(closer)
    db.commit()
    db.refresh(closer)
    return closer


def get_closer(db: Session, *, closer_id: int) -> Closer | None:
    return db.query(Closer).filter(Closer.id == closer_id).first()


def get_closer_by_email(db: Session, *, email: str) -> Closer | None:
    return db.query(Closer).filter(func.lower(Closer.email) == email.lower()).first()


def list_closers(db: Session) -> list[Closer]:
    return db.query(Closer).order_by(Closer.id.asc()).all()


def update_closer(db: Session, *, closer: Closer, updates: dict) -> Closer:
    for key, value in updates.items():
        setattr(closer, key, value)
    db.commit()
    db.refresh(closer)
    return closer


def list_eligible_closers(db: Session) -> list[Closer]:
    # Least-loaded first; id breaks ties so the order is stable.
    return (
        db.query(Closer)
        .filter(Closer.is_active.is_(True), Closer.is_approved.is_(True))
        .order_by(Closer.total_calls.asc(), Closer.id.asc())
        .all()
    )


def increment_closer_calls(db: Session, *, closer_id: int, by: int = 1) -> None:
    if by <= 0:
        return
    db.execute(
        update(Closer)
        .where(Closer.id == closer_id)
        .values(total_calls=Closer.total_calls + by)
    )


def overwrite_closer_totals(db: Session, *, closer_id: int, totals: dict) -> None:
    db.execute(update(Closer).where(Closer.id == closer_id).values(**totals))


def create_appointment(
    db: Session,
    *,
    customer_name: str,
    customer_email: str,
    scheduled_at: datetime,
    status: str = AppointmentStatusEnum.SCHEDULED.value,
    closer_id: int | None = None,
    customer_phone: str | None = None,
    affiliate_code: str | None = None,
    notes: str | None = None,
) -> Appointment:
    appointment = Appointment(
        customer_name=customer_name,
        customer_email=customer_email,
        customer_phone=customer_phone,
        affiliate_code=affiliate_code,
        scheduled_at=scheduled_at,
        status=status,
        closer_id=closer_id,
        notes=notes,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment


def get_appointment(db: Session, *, appointment_id: int) -> Appointment | None:
    return db.query(Appointment).filter(Appointment.id == appointment_id).first()


def list_appointments(db: Session, *, unassigned_only: bool = False) -> list[Appointment]:
    query = db.query(Appointment)
    if unassigned_only:
        query = query.filter(Appointment.closer_id.is_(None))
    return query.order_by(Appointment.scheduled_at.desc(), Appointment.id.desc()).all()


def update_appointment(db: Session, *, appointment: Appointment, updates: dict) -> Appointment:
    for key, value in updates.items():
        setattr(appointment, key, value)
    db.commit()
    db.refresh(appointment)
    return appointment


def list_unassigned_appointments(db: Session, *, statuses: Iterable[str]) -> list[Appointment]:
    return (
        db.query(Appointment)
        .filter(Appointment.closer_id.is_(None), Appointment.status.in_(list(statuses)))
        .order_by(Appointment.scheduled_at.asc(), Appointment.id.asc())
        .all()
    )


def assign_appointment_if_unassigned(
    db: Session,
    *,
    appointment_id: int,
    closer_id: int,
    status: str,
    now: datetime,
) -> bool:
    """Set closer_id only while it is still null; False when someone got there first."""
    result = db.execute(
        update(Appointment)
        .where(Appointment.id == appointment_id, Appointment.closer_id.is_(None))
        .values(closer_id=closer_id, status=status, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    return bool(result.rowcount)


def closer_outcome_totals(db: Session, *, closer_id: int) -> dict:
    completed = AppointmentStatusEnum.COMPLETED.value
    converted = AppointmentOutcomeEnum.CONVERTED.value
    completed_count = (
        db.query(func.count(Appointment.id))
        .filter(Appointment.closer_id == closer_id, Appointment.status == completed)
        .scalar()
    )
    converted_count, revenue = (
        db.query(func.count(Appointment.id), func.coalesce(func.sum(Appointment.sale_value), 0))
        .filter(
            Appointment.closer_id == closer_id,
            Appointment.status == completed,
            Appointment.outcome == converted,
        )
        .one()
    )
    return {
        "completed": int(completed_count or 0),
        "converted": int(converted_count or 0),
        "revenue": Decimal(str(revenue or 0)),
    }

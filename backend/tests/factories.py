from datetime import datetime
from uuid import uuid4

from sqlalchemy.orm import sessionmaker

from app import models  # noqa: F401
from app.core.db import Base, build_engine
from app.crud.affiliates import create_affiliate
from app.crud.closers import create_appointment, create_closer


def make_session_factory(db_path):
    engine = build_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def make_affiliate(
    db,
    *,
    referral_code: str | None = None,
    commission_rate: float = 0.10,
    tier: str = "quiz",
    is_active: bool = True,
    custom_tracking_link: str | None = None,
    name: str | None = None,
):
    return create_affiliate(
        db,
        name=name or f"Affiliate {uuid4().hex[:6]}",
        email=None,
        referral_code=referral_code or f"aff_{uuid4().hex[:8]}",
        tier=tier,
        commission_rate=commission_rate,
        is_active=is_active,
        custom_tracking_link=custom_tracking_link,
    )


def make_closer(db, *, is_active: bool = True, is_approved: bool = True, name: str | None = None):
    suffix = uuid4().hex[:8]
    return create_closer(
        db,
        name=name or f"Closer {suffix}",
        email=f"closer_{suffix}@example.com",
        is_active=is_active,
        is_approved=is_approved,
    )


def make_appointment(
    db,
    *,
    scheduled_at: datetime,
    status: str = "scheduled",
    closer_id: int | None = None,
):
    suffix = uuid4().hex[:8]
    return create_appointment(
        db,
        customer_name=f"Customer {suffix}",
        customer_email=f"customer_{suffix}@example.com",
        scheduled_at=scheduled_at,
        status=status,
        closer_id=closer_id,
    )

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from app.core.db import Base
from app.models.enums import AppointmentStatusEnum, enum_values
from app.models.mixins import TimestampMixin


_APPOINTMENT_STATUSES = ", ".join(f"'{value}'" for value in enum_values(AppointmentStatusEnum))


class Closer(TimestampMixin, Base):
    __tablename__ = "closers"
    __table_args__ = (
        UniqueConstraint("email", name="uq_closers_email"),
        Index("ix_closers_eligibility_load", "is_active", "is_approved", "total_calls"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    is_approved = Column(Boolean, nullable=False, default=False)
    commission_rate = Column(Numeric(5, 4), nullable=False, default=0.10)

    # Round-robin load counter.
    total_calls = Column(Integer, nullable=False, default=0)
    # Derived from appointments, rebuilt by sync_closer_totals.
    total_conversions = Column(Integer, nullable=False, default=0)
    total_revenue = Column(Numeric(12, 2), nullable=False, default=0)
    conversion_rate = Column(Numeric(6, 4), nullable=False, default=0)


class Appointment(TimestampMixin, Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_closer_status", "closer_id", "status"),
        Index("ix_appointments_scheduled_at", "scheduled_at"),
        CheckConstraint(f"status IN ({_APPOINTMENT_STATUSES})", name="ck_appointments_status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    closer_id = Column(Integer, ForeignKey("closers.id", ondelete="SET NULL"), nullable=True)
    customer_name = Column(String, nullable=False)
    customer_email = Column(String, nullable=False)
    customer_phone = Column(String, nullable=True)
    affiliate_code = Column(String, nullable=True)
    scheduled_at = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatusEnum.SCHEDULED.value)
    outcome = Column(String, nullable=True)
    sale_value = Column(Numeric(12, 2), nullable=True)
    notes = Column(Text, nullable=True)

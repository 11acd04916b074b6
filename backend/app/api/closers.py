from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.closer_assignment import assign_appointment, assign_unassigned_appointments
from app.core.db import get_db
from app.core.payouts import sync_closer_totals
from app.core.time import normalize_ts
from app.crud.closers import (
    create_appointment,
    create_closer,
    get_appointment,
    get_closer,
    get_closer_by_email,
    list_appointments,
    list_closers,
    update_appointment,
    update_closer,
)
from app.schemas.closers import (
    AppointmentCreate,
    AppointmentRead,
    AppointmentUpdate,
    AssignmentRead,
    AutoAssignResponse,
    CloserCreate,
    CloserRead,
    CloserSyncResponse,
    CloserTotalsRead,
)


router = APIRouter(prefix="/admin", tags=["admin"])


def _closer_read(closer) -> CloserRead:
    return CloserRead(
        id=closer.id,
        name=closer.name,
        email=closer.email,
        is_active=bool(closer.is_active),
        is_approved=bool(closer.is_approved),
        commission_rate=float(closer.commission_rate or 0),
        total_calls=closer.total_calls or 0,
        total_conversions=closer.total_conversions or 0,
        total_revenue=float(closer.total_revenue or 0),
        conversion_rate=float(closer.conversion_rate or 0),
        created_at=closer.created_at,
    )


def _appointment_read(appointment) -> AppointmentRead:
    return AppointmentRead(
        id=appointment.id,
        closer_id=appointment.closer_id,
        customer_name=appointment.customer_name,
        customer_email=appointment.customer_email,
        customer_phone=appointment.customer_phone,
        affiliate_code=appointment.affiliate_code,
        scheduled_at=appointment.scheduled_at,
        status=appointment.status,
        outcome=appointment.outcome,
        sale_value=float(appointment.sale_value) if appointment.sale_value is not None else None,
        notes=appointment.notes,
        created_at=appointment.created_at,
        updated_at=appointment.updated_at,
    )


def _require_closer(db: Session, closer_id: int):
    closer = get_closer(db, closer_id=closer_id)
    if not closer:
        raise HTTPException(status_code=404, detail="Closer not found")
    return closer


@router.get("/closers", response_model=list[CloserRead])
def list_all_closers(db: Session = Depends(get_db)):
    return [_closer_read(closer) for closer in list_closers(db)]


@router.post("/closers", response_model=CloserRead, status_code=status.HTTP_201_CREATED)
def create_program_closer(payload: CloserCreate, db: Session = Depends(get_db)):
    email = payload.email.strip().lower()
    if get_closer_by_email(db, email=email):
        raise HTTPException(status_code=409, detail="Closer email already registered")
    closer = create_closer(
        db,
        name=payload.name.strip(),
        email=email,
        is_approved=payload.is_approved,
        commission_rate=payload.commission_rate,
    )
    return _closer_read(closer)


@router.post("/closers/{closer_id}/approve", response_model=CloserRead)
def approve_closer(closer_id: int, db: Session = Depends(get_db)):
    # Approval also reactivates, so an approved closer is always eligible.
    closer = _require_closer(db, closer_id)
    closer = update_closer(db, closer=closer, updates={"is_approved": True, "is_active": True})
    return _closer_read(closer)


@router.post("/closers/{closer_id}/deactivate", response_model=CloserRead)
def deactivate_closer(closer_id: int, db: Session = Depends(get_db)):
    closer = _require_closer(db, closer_id)
    closer = update_closer(db, closer=closer, updates={"is_active": False})
    return _closer_read(closer)


@router.get("/appointments", response_model=list[AppointmentRead])
def list_all_appointments(unassigned: bool = False, db: Session = Depends(get_db)):
    return [
        _appointment_read(appointment)
        for appointment in list_appointments(db, unassigned_only=unassigned)
    ]


@router.post("/appointments", response_model=AppointmentRead, status_code=status.HTTP_201_CREATED)
def create_program_appointment(payload: AppointmentCreate, db: Session = Depends(get_db)):
    appointment = create_appointment(
        db,
        customer_name=payload.customer_name.strip(),
        customer_email=payload.customer_email.strip().lower(),
        customer_phone=payload.customer_phone,
        affiliate_code=(payload.affiliate_code or "").strip() or None,
        scheduled_at=normalize_ts(payload.scheduled_at),
        status=payload.status,
        notes=payload.notes,
    )
    return _appointment_read(appointment)


@router.patch("/appointments/{appointment_id}", response_model=AppointmentRead)
def update_program_appointment(
    appointment_id: int,
    payload: AppointmentUpdate,
    db: Session = Depends(get_db),
):
    appointment = get_appointment(db, appointment_id=appointment_id)
    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")
    updates = payload.model_dump(exclude_unset=True)
    appointment = update_appointment(db, appointment=appointment, updates=updates)
    return _appointment_read(appointment)

@router.post("/appointments/auto-assign", response_model=AutoAssignResponse)
def auto_assign_appointments(db: Session = Depends(get_db)):
    run = assign_unassigned_appointments(db)
    return AutoAssignResponse(
        assigned_count=len(run.assigned),
        assignments=[
            AssignmentRead(appointment_id=item.appointment_id, closer_id=item.closer_id)
            for item in run.assigned
        ],
        skipped_appointment_ids=run.skipped,
        loads=run.loads,
    )


@router.post("/appointments/{appointment_id}/auto-assign", response_model=AssignmentRead)
def auto_assign_appointment(appointment_id: int, db: Session = Depends(get_db)):
    assignment = assign_appointment(db, appointment_id)
    return AssignmentRead(appointment_id=assignment.appointment_id, closer_id=assignment.closer_id)


@router.post("/closers/sync", response_model=CloserSyncResponse)
def sync_closers(db: Session = Depends(get_db)):
    results = sync_closer_totals(db)
    return CloserSyncResponse(
        synced=len(results),
        corrected=sum(1 for item in results if item.changed),
        closers=[
            CloserTotalsRead(
                closer_id=item.closer_id,
                total_conversions=item.total_conversions,
                total_revenue=float(item.total_revenue),
                conversion_rate=float(item.conversion_rate),
                changed=item.changed,
            )
            for item in results
        ],
    )

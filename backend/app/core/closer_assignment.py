"""
Round-robin assignment of unassigned appointments to eligible closers.

plan_assignments is pure: it takes a snapshot of closer loads and returns the
full batch plan plus the loads after the batch. The database functions read
the snapshot, call the planner, then persist the plan with conditional
updates (closer_id still null) and atomic total_calls increments.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.db import atomic
from app.core.errors import InvalidStateError, NoEligibleClosersError, NotFoundError
from app.core.metrics import record_closer_assignments
from app.core.time import normalize_ts, utcnow
from app.crud.closers import (
    assign_appointment_if_unassigned,
    get_appointment,
    increment_closer_calls,
    list_eligible_closers,
    list_unassigned_appointments,
)
from app.models.enums import AppointmentStatusEnum


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CloserLoad:
    closer_id: int
    total_calls: int


@dataclass(frozen=True)
class Assignment:
    appointment_id: int
    closer_id: int


@dataclass
class AssignmentPlan:
    assignments: list[Assignment] = field(default_factory=list)
    loads: dict[int, int] = field(default_factory=dict)


@dataclass
class AssignmentRun:
    assigned: list[Assignment] = field(default_factory=list)
    # Appointments another writer assigned between our read and our update.
    skipped: list[int] = field(default_factory=list)
    loads: dict[int, int] = field(default_factory=dict)


def plan_assignments(
    appointment_ids: Sequence[int],
    closer_loads: Sequence[CloserLoad],
) -> AssignmentPlan:
    """Assign appointment i to closers[i mod n], least-loaded closer first.

    Loads in the returned snapshot include this batch, so a following batch
    keeps balancing against the real call history.
    """
    if not appointment_ids:
        return AssignmentPlan(loads={load.closer_id: load.total_calls for load in closer_loads})
    if not closer_loads:
        raise NoEligibleClosersError(len(appointment_ids))

    ordered = sorted(closer_loads, key=lambda load: (load.total_calls, load.closer_id))
    loads = {load.closer_id: load.total_calls for load in ordered}
    assignments = []
    for index, appointment_id in enumerate(appointment_ids):
        closer_id = ordered[index % len(ordered)].closer_id
        assignments.append(Assignment(appointment_id=appointment_id, closer_id=closer_id))
        loads[closer_id] += 1
    return AssignmentPlan(assignments=assignments, loads=loads)


def _eligible_loads(db: Session) -> list[CloserLoad]:
    return [
        CloserLoad(closer_id=closer.id, total_calls=int(closer.total_calls or 0))
        for closer in list_eligible_closers(db)
    ]


def _persist_plan(db: Session, plan: AssignmentPlan, now: datetime) -> tuple[list[Assignment], list[int]]:
    applied: list[Assignment] = []
    skipped: list[int] = []
    for assignment in plan.assignments:
        if assign_appointment_if_unassigned(
            db,
            appointment_id=assignment.appointment_id,
            closer_id=assignment.closer_id,
            status=AppointmentStatusEnum.CONFIRMED.value,
            now=now,
        ):
            applied.append(assignment)
        else:
            skipped.append(assignment.appointment_id)
    for closer_id, count in Counter(item.closer_id for item in applied).items():
        increment_closer_calls(db, closer_id=closer_id, by=count)
    return applied, skipped


def assign_unassigned_appointments(db: Session, now: datetime | None = None) -> AssignmentRun:
    now = normalize_ts(now) or utcnow()
    with atomic(db, operation="closer.assign_batch"):
        appointments = list_unassigned_appointments(
            db,
            statuses=settings.ASSIGNABLE_APPOINTMENT_STATUSES,
        )
        if not appointments:
            return AssignmentRun()
        loads = _eligible_loads(db)
        plan = plan_assignments([appointment.id for appointment in appointments], loads)
        applied, skipped = _persist_plan(db, plan, now)

    persisted_loads = {load.closer_id: load.total_calls for load in loads}
    for assignment in applied:
        persisted_loads[assignment.closer_id] += 1
    record_closer_assignments(mode="batch", count=len(applied))
    logger.info(
        "closer.assigned_batch",
        extra={"assigned_count": len(applied), "skipped_count": len(skipped)},
    )
    return AssignmentRun(assigned=applied, skipped=skipped, loads=persisted_loads)


def assign_appointment(db: Session, appointment_id: int, now: datetime | None = None) -> Assignment:
    now = normalize_ts(now) or utcnow()
    with atomic(db, operation="closer.assign_one"):
        appointment = get_appointment(db, appointment_id=appointment_id)
        if appointment is None:
            raise NotFoundError("appointment", appointment_id)
        if appointment.closer_id is not None:
            raise InvalidStateError(
                "Appointment already has a closer",
                appointment_id=appointment_id,
                closer_id=appointment.closer_id,
            )
        if appointment.status not in settings.ASSIGNABLE_APPOINTMENT_STATUSES:
            raise InvalidStateError(
                "Appointment status is not assignable",
                current=appointment.status,
                appointment_id=appointment_id,
            )
        plan = plan_assignments([appointment_id], _eligible_loads(db))
        applied, _skipped = _persist_plan(db, plan, now)
        if not applied:
            raise InvalidStateError(
                "Appointment was assigned concurrently",
                appointment_id=appointment_id,
            )

    assignment = applied[0]
    record_closer_assignments(mode="single", count=1)
    logger.info(
        "closer.assigned",
        extra={"appointment_id": appointment_id, "closer_id": assignment.closer_id},
    )
    return assignment

import os
from collections import Counter
from datetime import datetime, timedelta

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from app.core.closer_assignment import (  # noqa: E402
    CloserLoad,
    assign_appointment,
    assign_unassigned_appointments,
    plan_assignments,
)
from app.core.errors import InvalidStateError, NoEligibleClosersError, NotFoundError  # noqa: E402
from app.crud.closers import get_appointment, get_closer  # noqa: E402
from tests.factories import (  # noqa: E402
    make_appointment,
    make_closer,
    make_session_factory,
)


NOW = datetime(2026, 3, 1, 9, 0, 0)


@pytest.fixture()
def db(tmp_path):
    SessionLocal = make_session_factory(tmp_path / "closers.db")
    with SessionLocal() as session:
        yield session


def test_plan_spreads_five_appointments_over_two_closers():
    plan = plan_assignments([1, 2, 3, 4, 5], [CloserLoad(10, 0), CloserLoad(11, 0)])

    assert [item.closer_id for item in plan.assignments] == [10, 11, 10, 11, 10]
    assert Counter(item.closer_id for item in plan.assignments) == {10: 3, 11: 2}
    assert plan.loads == {10: 3, 11: 2}


def test_plan_starts_with_least_loaded_closer():
    plan = plan_assignments([1, 2, 3], [CloserLoad(1, 7), CloserLoad(2, 2), CloserLoad(3, 4)])

    assert [item.closer_id for item in plan.assignments] == [2, 3, 1]
    assert plan.loads == {1: 8, 2: 3, 3: 5}


def test_plan_breaks_load_ties_by_id():
    plan = plan_assignments([1], [CloserLoad(9, 1), CloserLoad(4, 1)])
    assert plan.assignments[0].closer_id == 4


def test_plan_without_appointments_is_empty_even_without_closers():
    plan = plan_assignments([], [])
    assert plan.assignments == []
    assert plan.loads == {}


def test_plan_without_closers_raises():
    with pytest.raises(NoEligibleClosersError) as excinfo:
        plan_assignments([1, 2], [])
    assert excinfo.value.details["unassigned_count"] == 2


def test_batch_assignment_persists_plan_and_loads(db):
    first = make_closer(db)
    second = make_closer(db)
    make_closer(db, is_approved=False)
    make_closer(db, is_active=False)
    appointments = [
        make_appointment(db, scheduled_at=NOW + timedelta(hours=index)) for index in range(5)
    ]

    run = assign_unassigned_appointments(db, now=NOW)

    assert len(run.assigned) == 5
    assert run.skipped == []
    assert run.loads == {first.id: 3, second.id: 2}
    db.expire_all()
    for appointment in appointments:
        stored = get_appointment(db, appointment_id=appointment.id)
        assert stored.closer_id in {first.id, second.id}
        assert stored.status == "confirmed"
    assert get_closer(db, closer_id=first.id).total_calls == 3
    assert get_closer(db, closer_id=second.id).total_calls == 2


def test_batch_assignment_skips_closed_and_assigned_appointments(db):
    closer = make_closer(db)
    make_appointment(db, scheduled_at=NOW, status="cancelled")
    make_appointment(db, scheduled_at=NOW, closer_id=closer.id)
    open_appointment = make_appointment(db, scheduled_at=NOW)

    run = assign_unassigned_appointments(db, now=NOW)

    assert [item.appointment_id for item in run.assigned] == [open_appointment.id]


def test_second_batch_keeps_balancing(db):
    busy = make_closer(db)
    idle = make_closer(db)
    make_appointment(db, scheduled_at=NOW)
    assign_unassigned_appointments(db, now=NOW)

    make_appointment(db, scheduled_at=NOW + timedelta(days=1))
    run = assign_unassigned_appointments(db, now=NOW)

    assert run.assigned[0].closer_id == idle.id
    assert run.loads == {busy.id: 1, idle.id: 1}


def test_batch_with_nothing_to_assign_needs_no_closers(db):
    run = assign_unassigned_appointments(db, now=NOW)
    assert run.assigned == []
    assert run.loads == {}


def test_batch_without_eligible_closers_leaves_appointments_alone(db):
    make_closer(db, is_approved=False)
    appointment = make_appointment(db, scheduled_at=NOW)

    with pytest.raises(NoEligibleClosersError):
        assign_unassigned_appointments(db, now=NOW)

    db.expire_all()
    assert get_appointment(db, appointment_id=appointment.id).closer_id is None


def test_single_assignment(db):
    loaded = make_closer(db)
    fresh = make_closer(db)
    loaded.total_calls = 4
    db.commit()
    appointment = make_appointment(db, scheduled_at=NOW)

    assignment = assign_appointment(db, appointment.id, now=NOW)

    assert assignment.closer_id == fresh.id
    db.expire_all()
    assert get_appointment(db, appointment_id=appointment.id).closer_id == fresh.id
    assert get_closer(db, closer_id=fresh.id).total_calls == 1


def test_single_assignment_rejects_assigned_or_missing(db):
    closer = make_closer(db)
    assigned = make_appointment(db, scheduled_at=NOW, closer_id=closer.id)
    cancelled = make_appointment(db, scheduled_at=NOW, status="cancelled")

    with pytest.raises(InvalidStateError):
        assign_appointment(db, assigned.id)
    with pytest.raises(InvalidStateError):
        assign_appointment(db, cancelled.id)
    with pytest.raises(NotFoundError):
        assign_appointment(db, 777)

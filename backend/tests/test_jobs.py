import os
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from sqlalchemy import update  # noqa: E402

from app.core.conversions import record_conversion  # noqa: E402
from app.crud.affiliates import get_affiliate, get_conversion  # noqa: E402
from app.jobs.closer_assignment import run_closer_assignment  # noqa: E402
from app.jobs.commission_release import run_commission_release  # noqa: E402
from app.jobs.reconcile_totals import run_reconcile_totals  # noqa: E402
from app.models.affiliates import Affiliate  # noqa: E402
from tests.factories import (  # noqa: E402
    make_affiliate,
    make_appointment,
    make_closer,
    make_session_factory,
)


NOW = datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture()
def db(tmp_path):
    SessionLocal = make_session_factory(tmp_path / "jobs.db")
    with SessionLocal() as session:
        yield session


def test_commission_release_job_dry_run_changes_nothing(db):
    affiliate = make_affiliate(db)
    result = record_conversion(
        db,
        affiliate_code=affiliate.referral_code,
        conversion_type="sale",
        sale_value=300,
        now=NOW,
    )
    later = NOW + timedelta(days=30)

    due = run_commission_release(db, now=later, dry_run=True)
    assert due == 1
    assert get_conversion(db, conversion_id=result.record_id).commission_status == "held"

    released = run_commission_release(db, now=later)
    assert released == 1
    db.expire_all()
    assert get_conversion(db, conversion_id=result.record_id).commission_status == "available"
    assert run_commission_release(db, now=later) == 0


def test_reconcile_job_reports_corrections(db):
    affiliate = make_affiliate(db)
    record_conversion(
        db,
        affiliate_code=affiliate.referral_code,
        conversion_type="quiz_completion",
        now=NOW,
    )
    make_closer(db)
    db.execute(update(Affiliate).where(Affiliate.id == affiliate.id).values(total_leads=5))
    db.commit()

    summary = run_reconcile_totals(db)

    assert summary == {
        "affiliates_synced": 1,
        "affiliates_corrected": 1,
        "closers_synced": 1,
        "closers_corrected": 0,
    }
    db.expire_all()
    refreshed = get_affiliate(db, affiliate_id=affiliate.id)
    assert refreshed.total_leads == 1
    assert Decimal(str(refreshed.total_commission)) == Decimal("0.00")


def test_reconcile_job_single_affiliate_skips_closers(db):
    affiliate = make_affiliate(db)
    make_affiliate(db)
    make_closer(db)

    summary = run_reconcile_totals(db, affiliate_id=affiliate.id)

    assert summary["affiliates_synced"] == 1
    assert summary["closers_synced"] == 0


def test_closer_assignment_job(db):
    make_closer(db)
    make_appointment(db, scheduled_at=NOW)
    make_appointment(db, scheduled_at=NOW + timedelta(hours=1))

    assert run_closer_assignment(db) == 2
    assert run_closer_assignment(db) == 0


def test_closer_assignment_job_without_closers_returns_zero(db):
    make_appointment(db, scheduled_at=NOW)

    assert run_closer_assignment(db) == 0

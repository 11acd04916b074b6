import os
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from app.core.commissions import (  # noqa: E402
    can_transition,
    ensure_transition,
    force_release_commission,
    forfeit_commission,
    get_commission_status,
    mark_commissions_paid,
    release_due_commissions,
)
from app.core.conversions import record_conversion  # noqa: E402
from app.core.errors import InvalidStateError, NotFoundError  # noqa: E402
from app.core.payouts import complete_payout, create_payout  # noqa: E402
from app.crud.affiliates import get_affiliate, get_conversion  # noqa: E402
from tests.factories import make_affiliate, make_session_factory  # noqa: E402


NOW = datetime(2026, 3, 1, 12, 0, 0)
AFTER_HOLD = NOW + timedelta(days=31)


@pytest.fixture()
def db(tmp_path):
    SessionLocal = make_session_factory(tmp_path / "commissions.db")
    with SessionLocal() as session:
        yield session


def _sale(db, affiliate, value=1000, now=NOW):
    result = record_conversion(
        db,
        affiliate_code=affiliate.referral_code,
        conversion_type="sale",
        sale_value=value,
        now=now,
    )
    assert result.recorded
    return result.record_id


def _completed_payout(db, affiliate, amount):
    payout = create_payout(db, affiliate_id=affiliate.id, amount=amount)
    return complete_payout(db, payout.id, now=AFTER_HOLD)


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        ("held", "available", True),
        ("held", "forfeited", True),
        ("held", "paid", False),
        ("available", "paid", True),
        ("available", "forfeited", True),
        ("available", "held", False),
        ("paid", "forfeited", False),
        ("paid", "available", False),
        ("forfeited", "available", False),
    ],
)
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_ensure_transition_reports_both_states():
    with pytest.raises(InvalidStateError) as excinfo:
        ensure_transition("paid", "forfeited")
    assert excinfo.value.details == {"current": "paid", "target": "forfeited"}
    assert excinfo.value.status_code == 409


def test_release_moves_only_expired_holds(db):
    affiliate = make_affiliate(db)
    due_id = _sale(db, affiliate, now=NOW)
    fresh_id = _sale(db, affiliate, now=NOW + timedelta(days=10))

    result = release_due_commissions(db, now=AFTER_HOLD)

    assert result.released_count == 1
    assert result.conversion_ids == [due_id]
    assert result.released_amount == Decimal("100.00")
    due = get_conversion(db, conversion_id=due_id)
    assert due.commission_status == "available"
    assert due.released_at == AFTER_HOLD
    assert get_conversion(db, conversion_id=fresh_id).commission_status == "held"


def test_release_is_idempotent(db):
    affiliate = make_affiliate(db)
    _sale(db, affiliate)

    first = release_due_commissions(db, now=AFTER_HOLD)
    second = release_due_commissions(db, now=AFTER_HOLD)

    assert first.released_count == 1
    assert second.released_count == 0
    assert second.released_amount == Decimal("0.00")


def test_release_leaves_zero_value_bookings_held(db):
    affiliate = make_affiliate(db)
    booking = record_conversion(db, affiliate_code=affiliate.referral_code, conversion_type="booking", now=NOW)

    result = release_due_commissions(db, now=AFTER_HOLD)

    assert result.released_count == 0
    assert get_conversion(db, conversion_id=booking.record_id).commission_status == "held"


def test_force_release_ignores_hold_until(db):
    affiliate = make_affiliate(db)
    conversion_id = _sale(db, affiliate)

    conversion = force_release_commission(db, conversion_id, now=NOW + timedelta(days=1))

    assert conversion.commission_status == "available"
    assert conversion.released_at == NOW + timedelta(days=1)


def test_force_release_rejects_non_held(db):
    affiliate = make_affiliate(db)
    conversion_id = _sale(db, affiliate)
    release_due_commissions(db, now=AFTER_HOLD)

    with pytest.raises(InvalidStateError) as excinfo:
        force_release_commission(db, conversion_id)

    assert excinfo.value.details == {"current": "available", "target": "available"}
    assert excinfo.value.message == "Commission is already available"
    assert get_conversion(db, conversion_id=conversion_id).commission_status == "available"


def test_force_release_rejects_paid_through_transition_table(db):
    affiliate = make_affiliate(db)
    conversion_id = _sale(db, affiliate)
    release_due_commissions(db, now=AFTER_HOLD)
    payout = _completed_payout(db, affiliate, 100)
    mark_commissions_paid(db, [conversion_id], payout.id)

    with pytest.raises(InvalidStateError) as excinfo:
        force_release_commission(db, conversion_id)

    assert excinfo.value.message == "Commission cannot move from paid to available"
    assert get_conversion(db, conversion_id=conversion_id).commission_status == "paid"


def test_force_release_unknown_conversion(db):
    with pytest.raises(NotFoundError):
        force_release_commission(db, 9999)


def test_mark_paid_links_conversions_to_payout(db):
    affiliate = make_affiliate(db)
    first = _sale(db, affiliate, value=500)
    second = _sale(db, affiliate, value=500, now=NOW + timedelta(minutes=5))
    release_due_commissions(db, now=AFTER_HOLD)
    payout = _completed_payout(db, affiliate, 100)

    paid = mark_commissions_paid(db, [first, second], payout.id, now=AFTER_HOLD)

    assert {row.id for row in paid} == {first, second}
    for row in paid:
        assert row.commission_status == "paid"
        assert row.payout_id == payout.id
        assert row.paid_at == AFTER_HOLD


def test_mark_paid_is_all_or_nothing(db):
    affiliate = make_affiliate(db)
    released = _sale(db, affiliate, value=500)
    release_due_commissions(db, now=AFTER_HOLD)
    still_held = _sale(db, affiliate, value=500, now=AFTER_HOLD)
    payout = _completed_payout(db, affiliate, 50)

    with pytest.raises(InvalidStateError):
        mark_commissions_paid(db, [released, still_held], payout.id)

    db.expire_all()
    assert get_conversion(db, conversion_id=released).commission_status == "available"
    assert get_conversion(db, conversion_id=still_held).commission_status == "held"


def test_mark_paid_requires_completed_payout(db):
    affiliate = make_affiliate(db)
    conversion_id = _sale(db, affiliate)
    release_due_commissions(db, now=AFTER_HOLD)
    pending = create_payout(db, affiliate_id=affiliate.id, amount=100)

    with pytest.raises(InvalidStateError):
        mark_commissions_paid(db, [conversion_id], pending.id)


def test_mark_paid_rejects_other_affiliates_conversions(db):
    owner = make_affiliate(db)
    other = make_affiliate(db)
    owner_conversion = _sale(db, owner)
    other_conversion = _sale(db, other)
    release_due_commissions(db, now=AFTER_HOLD)
    payout = _completed_payout(db, owner, 100)

    with pytest.raises(InvalidStateError):
        mark_commissions_paid(db, [owner_conversion, other_conversion], payout.id)


def test_mark_paid_cannot_exceed_payout_amount(db):
    affiliate = make_affiliate(db)
    first = _sale(db, affiliate)
    second = _sale(db, affiliate, now=NOW + timedelta(minutes=5))
    release_due_commissions(db, now=AFTER_HOLD)
    payout = _completed_payout(db, affiliate, 100)

    with pytest.raises(InvalidStateError):
        mark_commissions_paid(db, [first, second], payout.id)


def test_mark_paid_validates_inputs(db):
    with pytest.raises(ValueError):
        mark_commissions_paid(db, [], 1)
    with pytest.raises(NotFoundError):
        mark_commissions_paid(db, [1], 4242)


def test_forfeit_held_commission_updates_cached_total(db):
    affiliate = make_affiliate(db)
    conversion_id = _sale(db, affiliate)

    conversion = forfeit_commission(db, conversion_id, "Refunded", now=NOW + timedelta(days=2))

    assert conversion.commission_status == "forfeited"
    assert conversion.forfeit_reason == "Refunded"
    assert conversion.forfeited_at == NOW + timedelta(days=2)
    db.expire_all()
    assert Decimal(str(get_affiliate(db, affiliate_id=affiliate.id).total_commission)) == Decimal("0.00")


def test_forfeit_available_commission(db):
    affiliate = make_affiliate(db)
    conversion_id = _sale(db, affiliate)
    release_due_commissions(db, now=AFTER_HOLD)

    conversion = forfeit_commission(db, conversion_id, "Chargeback")

    assert conversion.commission_status == "forfeited"


def test_paid_and_forfeited_are_terminal(db):
    affiliate = make_affiliate(db)
    paid_id = _sale(db, affiliate)
    forfeited_id = _sale(db, affiliate, now=NOW + timedelta(minutes=5))
    forfeit_commission(db, forfeited_id, "Fraud")
    release_due_commissions(db, now=AFTER_HOLD)
    payout = _completed_payout(db, affiliate, 100)
    mark_commissions_paid(db, [paid_id], payout.id)

    with pytest.raises(InvalidStateError):
        forfeit_commission(db, paid_id, "Too late")
    with pytest.raises(InvalidStateError):
        forfeit_commission(db, forfeited_id, "Again")
    with pytest.raises(InvalidStateError):
        force_release_commission(db, forfeited_id)


def test_forfeit_requires_reason(db):
    affiliate = make_affiliate(db)
    conversion_id = _sale(db, affiliate)
    with pytest.raises(ValueError):
        forfeit_commission(db, conversion_id, "   ")


def test_commission_status_summary(db):
    affiliate = make_affiliate(db)
    _sale(db, affiliate, value=1000)
    _sale(db, affiliate, value=200, now=NOW + timedelta(days=5))
    forfeited = _sale(db, affiliate, value=300, now=NOW + timedelta(days=6))
    forfeit_commission(db, forfeited, "Refunded")

    summary = get_commission_status(db, now=AFTER_HOLD)

    assert summary.ready_for_release_count == 1
    assert summary.ready_for_release_amount == Decimal("100.00")
    assert summary.counts == {"held": 2, "available": 0, "paid": 0, "forfeited": 1}
    assert summary.amounts["held"] == Decimal("120.00")
    assert summary.amounts["forfeited"] == Decimal("30.00")
    assert summary.as_of == AFTER_HOLD

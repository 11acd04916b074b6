import os
import threading
import time
from datetime import datetime, timedelta

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from sqlalchemy.exc import OperationalError  # noqa: E402

import app.core.clicks as clicks_module  # noqa: E402
from app.core.clicks import click_dedup_window, record_click, record_custom_link_click  # noqa: E402
from app.core.tracking import TrackingOutcome  # noqa: E402
from app.crud.affiliates import get_affiliate  # noqa: E402
from app.models.affiliates import AffiliateClick  # noqa: E402
from tests.factories import make_affiliate, make_session_factory  # noqa: E402


NOW = datetime(2026, 3, 1, 12, 0, 0)
UA = "Mozilla/5.0 (Macintosh)"


@pytest.fixture()
def db(tmp_path):
    SessionLocal = make_session_factory(tmp_path / "clicks.db")
    with SessionLocal() as session:
        yield session


def _click(db, code, *, user_agent=UA, source="redirect", now=NOW):
    return record_click(
        db,
        affiliate_code=code,
        ip_address="203.0.113.7",
        user_agent=user_agent,
        utm_source="youtube",
        source=source,
        now=now,
    )


def test_first_click_is_recorded_and_counted(db):
    affiliate = make_affiliate(db)

    result = _click(db, affiliate.referral_code)

    assert result.outcome == TrackingOutcome.RECORDED
    assert result.affiliate_id == affiliate.id
    click = db.query(AffiliateClick).filter(AffiliateClick.id == result.record_id).one()
    assert click.referral_code == affiliate.referral_code
    assert click.utm_source == "youtube"
    assert click.ip_address == "203.0.113.7"
    assert click.source == "redirect"
    db.expire_all()
    assert get_affiliate(db, affiliate_id=affiliate.id).total_clicks == 1


def test_repeat_click_inside_redirect_window_is_skipped(db):
    affiliate = make_affiliate(db)
    first = _click(db, affiliate.referral_code)

    second = _click(db, affiliate.referral_code, now=NOW + timedelta(minutes=59))

    assert second.outcome == TrackingOutcome.SKIPPED_DUPLICATE
    assert second.record_id == first.record_id
    assert db.query(AffiliateClick).filter(AffiliateClick.affiliate_id == affiliate.id).count() == 1
    db.expire_all()
    assert get_affiliate(db, affiliate_id=affiliate.id).total_clicks == 1


def test_click_after_redirect_window_is_recorded(db):
    affiliate = make_affiliate(db)
    _click(db, affiliate.referral_code)

    later = _click(db, affiliate.referral_code, now=NOW + timedelta(minutes=61))

    assert later.outcome == TrackingOutcome.RECORDED
    db.expire_all()
    assert get_affiliate(db, affiliate_id=affiliate.id).total_clicks == 2


def test_different_user_agent_is_a_different_visitor(db):
    affiliate = make_affiliate(db)
    _click(db, affiliate.referral_code)

    other = _click(db, affiliate.referral_code, user_agent="curl/8.0")

    assert other.outcome == TrackingOutcome.RECORDED


def test_homepage_clicks_use_the_short_window(db):
    affiliate = make_affiliate(db)
    _click(db, affiliate.referral_code, source="homepage")

    inside = _click(db, affiliate.referral_code, source="homepage", now=NOW + timedelta(seconds=90))
    outside = _click(db, affiliate.referral_code, source="homepage", now=NOW + timedelta(seconds=150))

    assert inside.outcome == TrackingOutcome.SKIPPED_DUPLICATE
    assert outside.outcome == TrackingOutcome.RECORDED


def test_dedup_windows_follow_settings(monkeypatch):
    monkeypatch.setattr(clicks_module.settings, "REDIRECT_CLICK_DEDUP_SECONDS", 600)
    monkeypatch.setattr(clicks_module.settings, "HOMEPAGE_CLICK_DEDUP_SECONDS", 60)

    assert click_dedup_window("redirect") == timedelta(seconds=600)
    assert click_dedup_window("custom_link") == timedelta(seconds=600)
    assert click_dedup_window("homepage") == timedelta(seconds=60)


def test_unknown_or_blank_code_is_skipped(db):
    assert _click(db, "aff_missing").outcome == TrackingOutcome.SKIPPED_NOT_FOUND
    assert _click(db, "   ").outcome == TrackingOutcome.SKIPPED_NOT_FOUND
    assert _click(db, None).outcome == TrackingOutcome.SKIPPED_NOT_FOUND
    assert db.query(AffiliateClick).count() == 0


def test_inactive_affiliate_is_skipped(db):
    affiliate = make_affiliate(db, is_active=False)

    result = _click(db, affiliate.referral_code)

    assert result.outcome == TrackingOutcome.SKIPPED_INACTIVE
    assert db.query(AffiliateClick).count() == 0


def test_referral_code_stops_tracking_once_custom_link_is_set(db):
    affiliate = make_affiliate(db, custom_tracking_link="creator-jane")

    result = _click(db, affiliate.referral_code)

    assert result.outcome == TrackingOutcome.SKIPPED_DISABLED
    db.expire_all()
    assert get_affiliate(db, affiliate_id=affiliate.id).total_clicks == 0


def test_custom_link_click_is_recorded_and_deduplicated(db):
    affiliate = make_affiliate(db, custom_tracking_link="creator-sam")

    first = record_custom_link_click(
        db,
        custom_link="creator-sam",
        ip_address=None,
        user_agent=UA,
        now=NOW,
    )
    second = record_custom_link_click(
        db,
        custom_link="creator-sam",
        ip_address=None,
        user_agent=UA,
        now=NOW + timedelta(minutes=5),
    )

    assert first.outcome == TrackingOutcome.RECORDED
    assert second.outcome == TrackingOutcome.SKIPPED_DUPLICATE
    click = db.query(AffiliateClick).filter(AffiliateClick.id == first.record_id).one()
    assert click.source == "custom_link"
    db.expire_all()
    assert get_affiliate(db, affiliate_id=affiliate.id).total_clicks == 1


def test_unknown_custom_link_is_skipped(db):
    result = record_custom_link_click(db, custom_link="nobody", ip_address=None, user_agent=UA, now=NOW)
    assert result.outcome == TrackingOutcome.SKIPPED_NOT_FOUND


def test_store_failure_returns_failed_outcome(db, monkeypatch):
    affiliate = make_affiliate(db)

    def _boom(*_args, **_kwargs):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(clicks_module, "add_click", _boom)

    result = _click(db, affiliate.referral_code)

    assert result.outcome == TrackingOutcome.FAILED
    assert result.failed
    assert "disk I/O error" in result.error
    db.expire_all()
    assert get_affiliate(db, affiliate_id=affiliate.id).total_clicks == 0


def test_concurrent_identical_clicks_record_once(tmp_path, monkeypatch):
    SessionLocal = make_session_factory(tmp_path / "clicks_concurrent.db")
    with SessionLocal() as session:
        affiliate = make_affiliate(session)
        affiliate_id, code = affiliate.id, affiliate.referral_code

    lookup = clicks_module.find_recent_click

    def _slow_lookup(*args, **kwargs):
        # Widen the gap between the dedup check and the insert.
        found = lookup(*args, **kwargs)
        time.sleep(0.2)
        return found

    monkeypatch.setattr(clicks_module, "find_recent_click", _slow_lookup)

    start = threading.Barrier(2)
    outcomes = []

    def _worker():
        with SessionLocal() as session:
            start.wait(timeout=5)
            outcomes.append(_click(session, code).outcome)

    threads = [threading.Thread(target=_worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=15)

    assert sorted(outcome.value for outcome in outcomes) == ["recorded", "skipped_duplicate"]
    with SessionLocal() as session:
        assert session.query(AffiliateClick).filter(AffiliateClick.affiliate_id == affiliate_id).count() == 1
        assert get_affiliate(session, affiliate_id=affiliate_id).total_clicks == 1

from datetime import UTC, datetime

from sqlalchemy import select

from app.core.runtime_state import last_scheduled_settlement
from app.models import Payment, SettlementRunStatus
from app import db as app_db
from app.services import cron
from app.services.cron import previous_day_window, settle_previous_day_once


def test_previous_day_window_in_utc():
    start, end = previous_day_window(datetime(2026, 10, 2, 3, 0, tzinfo=UTC), "UTC")

    assert start == datetime(2026, 10, 1, tzinfo=UTC)
    assert end == datetime(2026, 10, 2, tzinfo=UTC)


def test_previous_day_window_follows_local_calendar():
    # 2026-10-01 20:00 UTC is already 2026-10-02 05:00 in Seoul.
    start, end = previous_day_window(datetime(2026, 10, 1, 20, 0, tzinfo=UTC), "Asia/Seoul")

    assert start == datetime(2026, 9, 30, 15, 0, tzinfo=UTC)
    assert end == datetime(2026, 10, 1, 15, 0, tzinfo=UTC)


def test_settle_previous_day_once_settles_yesterday(monkeypatch, db_session, session_factory, make_payment):
    monkeypatch.setattr(app_db, "get_sessionmaker", lambda: session_factory)
    yesterday = make_payment(amount=15000, paid_at=datetime(2026, 10, 1, 12, tzinfo=UTC))
    today = make_payment(amount=5000, paid_at=datetime(2026, 10, 2, 1, tzinfo=UTC))

    report = settle_previous_day_once(now=datetime(2026, 10, 2, 3, 0, tzinfo=UTC))

    assert report is not None
    assert report.status == SettlementRunStatus.SUCCESS
    assert report.total_statements == 1
    db_session.expire_all()
    settled = {p.id: p.is_settled for p in db_session.scalars(select(Payment))}
    assert settled == {yesterday.id: True, today.id: False}
    assert last_scheduled_settlement()["settlement_log_id"] == report.log_id


def test_settle_previous_day_once_never_raises(monkeypatch, session_factory):
    monkeypatch.setattr(app_db, "get_sessionmaker", lambda: session_factory)

    def explode(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(cron, "run_settlement_period", explode)

    assert settle_previous_day_once(now=datetime(2026, 10, 2, 3, 0, tzinfo=UTC)) is None
    summary = last_scheduled_settlement()
    assert summary["status"] == "failed"
    assert summary["error"] == "RuntimeError"

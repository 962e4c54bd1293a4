import importlib.util
import json
from datetime import UTC, datetime
from pathlib import Path

import pytest
from sqlalchemy import select

from app import db as app_db
from app.models import Payment, SettlementStatement

SCRIPT_PATH = Path(__file__).resolve().parents[1] / "scripts" / "run_settlement.py"
PERIOD = ["--start", "2026-10-01T00:00:00Z", "--end", "2026-10-02T00:00:00Z"]


@pytest.fixture
def script(monkeypatch, session_factory):
    spec = importlib.util.spec_from_file_location("run_settlement_script", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    monkeypatch.setattr(app_db, "get_sessionmaker", lambda: session_factory)
    monkeypatch.setattr(module, "setup_logging", lambda *args, **kwargs: None)
    return module


def _report(capsys) -> dict:
    out = capsys.readouterr().out
    first_line, _, body = out.partition("\n")
    assert first_line.startswith("Using database:")
    return json.loads(body)


def test_run_settlement_script_settles_period(script, capsys, db_session, make_payment):
    payment = make_payment(amount=20000, paid_at=datetime(2026, 10, 1, 9, tzinfo=UTC))

    assert script.main(PERIOD) == 0

    report = _report(capsys)
    assert report["status"] == "success"
    assert report["total_statements"] == 1
    db_session.expire_all()
    assert db_session.get(Payment, payment.id).is_settled is True


def test_run_settlement_script_dry_run_leaves_ledger(script, capsys, db_session, make_payment):
    payment = make_payment(amount=20000, paid_at=datetime(2026, 10, 1, 9, tzinfo=UTC))

    assert script.main([*PERIOD, "--dry-run"]) == 0

    report = _report(capsys)
    assert report["total_statements"] == 1
    db_session.expire_all()
    assert db_session.get(Payment, payment.id).is_settled is False
    assert db_session.scalars(select(SettlementStatement)).first() is None


def test_run_settlement_script_rejects_inverted_period(script, capsys):
    code = script.main(["--start", "2026-10-02T00:00:00Z", "--end", "2026-10-01T00:00:00Z"])

    assert code == 2
    assert "Invalid period" in capsys.readouterr().err


def test_run_settlement_script_reports_failures(script, capsys):
    def explode(*args, **kwargs):
        raise RuntimeError("database went away")

    script.run_settlement_period = explode

    assert script.main(PERIOD) == 1
    assert "Settlement failed: database went away" in capsys.readouterr().err

"""Run (or simulate) a settlement batch from the command line.

Usage:
    python scripts/run_settlement.py --start 2026-10-01T00:00:00Z --end 2026-10-02T00:00:00Z [--dry-run]
"""
from __future__ import annotations

import argparse
import sys

from dotenv import load_dotenv

load_dotenv()

from app.config import get_settings
from app.core.logging import setup_logging
from app.db import session_scope
from app.services.settlement import SettlementValidationError, run_settlement_period
from app.utils.time import parse_iso_utc


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--start", required=True, type=parse_iso_utc, help="inclusive ISO-8601 start")
    parser.add_argument("--end", required=True, type=parse_iso_utc, help="exclusive ISO-8601 end")
    parser.add_argument("--dry-run", action="store_true", help="compute without touching the ledger")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, env=settings.app_env)
    print(f"Using database: {settings.database_url}")

    try:
        with session_scope() as session:
            report = run_settlement_period(session, args.start, args.end, args.dry_run)
    except SettlementValidationError as exc:
        print(f"Invalid period: {exc}", file=sys.stderr)
        return 2
    except Exception as exc:  # noqa: BLE001
        print(f"Settlement failed: {exc}", file=sys.stderr)
        return 1

    print(report.model_dump_json(indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())

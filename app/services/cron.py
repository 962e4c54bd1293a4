"""Background cron jobs."""
from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

from app.config import get_settings
from app.core.runtime_state import record_scheduled_settlement
from app.db import session_scope
from app.schemas.settlement import SettlementReport
from app.services.settlement import run_settlement_period
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def previous_day_window(now: datetime, tz_name: str) -> tuple[datetime, datetime]:
    """Return yesterday's ``[00:00, 00:00)`` window in ``tz_name``, expressed in UTC."""

    zone = ZoneInfo(tz_name)
    today = ensure_utc(now).astimezone(zone).date()
    end_local = datetime.combine(today, time.min, tzinfo=zone)
    start_local = datetime.combine(today - timedelta(days=1), time.min, tzinfo=zone)
    return ensure_utc(start_local), ensure_utc(end_local)


def settle_previous_day_once(now: datetime | None = None) -> SettlementReport | None:
    """Settle the previous calendar day; failures are logged, never raised to the scheduler."""

    settings = get_settings()
    start, end = previous_day_window(now or utcnow(), settings.SETTLEMENT_TIMEZONE)
    try:
        with session_scope() as db:
            report = run_settlement_period(db, start, end)
    except Exception as exc:  # noqa: BLE001
        logger.exception(
            "Scheduled settlement failed",
            extra={"period_start": start.isoformat(), "period_end": end.isoformat()},
        )
        record_scheduled_settlement(
            {"status": "failed", "period_start": start.isoformat(), "error": type(exc).__name__}
        )
        return None

    record_scheduled_settlement(
        {"status": report.status.value, "period_start": start.isoformat(), "settlement_log_id": report.log_id}
    )
    logger.info(
        "Scheduled settlement finished",
        extra={
            "settlement_log_id": report.log_id,
            "status": report.status.value,
            "total_statements": report.total_statements,
        },
    )
    return report

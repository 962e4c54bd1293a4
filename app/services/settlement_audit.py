"""Run logs and best-effort error rows for settlement batches."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.settlement import (
    SettlementError,
    SettlementErrorType,
    SettlementLog,
    SettlementRunStatus,
)
from app.utils.errors import truncate_message
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementErrorRecord:
    error_type: str
    message: str
    payment_id: int | None = None
    merchant_id: str | None = None
    statement_id: int | None = None
    raw_data: dict[str, Any] | None = None


class SettlementErrorSink:
    """Collects ``settlement_errors`` rows and writes them outside the batch transaction.

    Records are buffered while the batch holds its locks and written through a
    separate session once the batch transaction has ended, so they survive a
    rollback. Nothing raised while writing them ever reaches the caller; the
    application log is the fallback channel.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory
        self._pending: list[SettlementErrorRecord] = []

    @property
    def pending(self) -> tuple[SettlementErrorRecord, ...]:
        return tuple(self._pending)

    def record(
        self,
        error_type: SettlementErrorType | str,
        *,
        message: str,
        payment_id: int | None = None,
        merchant_id: str | None = None,
        statement_id: int | None = None,
        raw_data: dict[str, Any] | None = None,
    ) -> None:
        kind = error_type.value if isinstance(error_type, SettlementErrorType) else str(error_type)
        logger.warning(
            "Settlement anomaly",
            extra={
                "error_type": kind,
                "payment_id": payment_id,
                "merchant_id": merchant_id,
                "statement_id": statement_id,
                "detail": message,
            },
        )
        self._pending.append(
            SettlementErrorRecord(
                error_type=kind,
                message=truncate_message(message),
                payment_id=payment_id,
                merchant_id=merchant_id,
                statement_id=statement_id,
                raw_data=raw_data,
            )
        )

    def detach_statement(self, statement_id: int) -> None:
        """Unlink buffered records from a statement that was discarded before commit."""

        self._pending = [
            replace(
                record,
                statement_id=None,
                raw_data={**(record.raw_data or {}), "discarded_statement_id": statement_id},
            )
            if record.statement_id == statement_id
            else record
            for record in self._pending
        ]

    def flush(self, settlement_log_id: int | None) -> int:
        """Persist buffered records; return how many rows were written."""

        records, self._pending = self._pending, []
        if not records:
            return 0
        try:
            session = self._session_factory()
            try:
                session.add_all(
                    [
                        SettlementError(
                            settlement_log_id=settlement_log_id,
                            error_type=record.error_type,
                            payment_id=record.payment_id,
                            merchant_id=record.merchant_id,
                            statement_id=record.statement_id,
                            message=record.message,
                            raw_data=record.raw_data,
                        )
                        for record in records
                    ]
                )
                session.commit()
            finally:
                session.close()
        except Exception:  # noqa: BLE001
            logger.exception(
                "Failed to persist settlement errors",
                extra={"settlement_log_id": settlement_log_id, "count": len(records)},
            )
            return 0
        return len(records)


def open_run_log(db: Session, period_start: datetime, period_end: datetime, *, dry_run: bool) -> SettlementLog:
    """Insert and commit the placeholder log row that identifies a run."""

    run_log = SettlementLog(
        started_at=utcnow(),
        period_start=period_start,
        period_end=period_end,
        dry_run=dry_run,
        status=SettlementRunStatus.NOOP,
        message="Settlement started",
    )
    db.add(run_log)
    db.commit()
    return run_log


def finish_run_log(
    run_log: SettlementLog,
    status: SettlementRunStatus,
    message: str,
    *,
    total_payments: int,
    total_statements: int,
    success_payments: int,
    skipped_payments: int,
    total_payout: int,
    total_commission: int,
) -> None:
    """Stamp terminal counters on the run log inside the caller's transaction."""

    run_log.ended_at = utcnow()
    run_log.status = status
    run_log.message = message
    run_log.total_payments = total_payments
    run_log.total_statements = total_statements
    run_log.success_payments = success_payments
    run_log.skipped_payments = skipped_payments
    run_log.total_payout = total_payout
    run_log.total_commission = total_commission


def fail_run_log(db: Session, log_id: int, error: BaseException) -> None:
    """Mark a run as failed after its transaction was rolled back. Never raises."""

    try:
        db.execute(
            update(SettlementLog)
            .where(SettlementLog.id == log_id)
            .values(
                ended_at=utcnow(),
                status=SettlementRunStatus.FAILED,
                message="Settlement failed",
                error_message=truncate_message(str(error) or type(error).__name__),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except Exception:  # noqa: BLE001
        logger.exception("Failed to mark settlement run as failed", extra={"settlement_log_id": log_id})
        db.rollback()


__all__ = [
    "SettlementErrorRecord",
    "SettlementErrorSink",
    "fail_run_log",
    "finish_run_log",
    "open_run_log",
]

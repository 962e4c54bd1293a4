"""Settlement batch engine.

Folds successful, unsettled payments of a half-open period ``[start, end)`` into
one pending statement per merchant and flags the source payments as settled.

The claim query locks every eligible row up front, so overlapping runs queue
behind each other; the loser then finds ``is_settled`` already set. Each payment
is still claimed with a conditional update and a lost claim only skips that
payment. A statement that cannot be written, or an item that cannot be written
after its payment was claimed, aborts the whole run and nothing of it survives
except the run log and its error rows.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from app.config import get_settings
from app.models.payment import Payment, PaymentStatus
from app.models.settlement import (
    SettlementErrorType,
    SettlementItem,
    SettlementLog,
    SettlementRunStatus,
    SettlementStatement,
    SettlementStatementStatus,
)
from app.schemas.settlement import MerchantSettlement, SettlementReport
from app.services.settlement_audit import (
    SettlementErrorSink,
    fail_run_log,
    finish_run_log,
    open_run_log,
)
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class SettlementValidationError(ValueError):
    """Raised for a missing or inverted settlement period, before any I/O."""


class SettlementIntegrityError(RuntimeError):
    """Raised when the ledger could not be written consistently; the run is rolled back."""


class StatementNotFoundError(LookupError):
    pass


class StatementStateError(ValueError):
    pass


@dataclass(frozen=True)
class StatementInsert:
    """Outcome of writing a statement row: either a persisted statement or the error."""

    statement: SettlementStatement | None = None
    error: Exception | None = None

    @property
    def statement_id(self) -> int | None:
        return self.statement.id if self.statement is not None else None

    @property
    def ok(self) -> bool:
        return self.error is None and self.statement_id is not None


@dataclass
class _RunTotals:
    total_payments: int = 0
    success_payments: int = 0
    skipped_payments: int = 0
    total_payout: int = 0
    total_commission: int = 0
    settlements: list[MerchantSettlement] = field(default_factory=list)

    def log_counters(self) -> dict[str, int]:
        return {
            "total_payments": self.total_payments,
            "total_statements": len(self.settlements),
            "success_payments": self.success_payments,
            "skipped_payments": self.skipped_payments,
            "total_payout": self.total_payout,
            "total_commission": self.total_commission,
        }


def split_commission(total_sales: int, rate: Decimal) -> tuple[int, int]:
    """Return ``(commission, payout)``; commission is floored so the two always add up."""

    commission = int((Decimal(total_sales) * rate).to_integral_value(rounding=ROUND_FLOOR))
    return commission, total_sales - commission


def _validate_period(period_start: datetime | None, period_end: datetime | None) -> tuple[datetime, datetime]:
    if period_start is None or period_end is None:
        raise SettlementValidationError("period_start and period_end are required.")
    if not isinstance(period_start, datetime) or not isinstance(period_end, datetime):
        raise SettlementValidationError("period_start and period_end must be datetimes.")
    start, end = ensure_utc(period_start), ensure_utc(period_end)
    if end <= start:
        raise SettlementValidationError("period_end must be after period_start.")
    return start, end


def _claim_payments(db: Session, start: datetime, end: datetime, *, lock: bool) -> list[Payment]:
    stmt = (
        select(Payment)
        .where(
            Payment.status == PaymentStatus.SUCCESS,
            Payment.is_settled.is_(False),
            Payment.paid_at >= start,
            Payment.paid_at < end,
        )
        .order_by(Payment.merchant_id, Payment.paid_at, Payment.id)
    )
    if lock:
        stmt = stmt.with_for_update()
    return list(db.scalars(stmt))


def _group_by_merchant(payments: Sequence[Payment]) -> dict[str, list[Payment]]:
    groups: dict[str, list[Payment]] = {}
    for payment in payments:
        groups.setdefault(payment.merchant_id, []).append(payment)
    return groups


def _payment_snapshot(payment: Payment) -> dict[str, object]:
    return {
        "id": payment.id,
        "merchant_id": payment.merchant_id,
        "amount_total": payment.amount_total,
        "paid_at": payment.paid_at.isoformat() if payment.paid_at else None,
    }


def _insert_statement(
    db: Session,
    *,
    merchant_id: str,
    start: datetime,
    end: datetime,
    total_sales: int,
    rate: Decimal,
    commission: int,
    payout: int,
    payments_count: int,
) -> StatementInsert:
    statement = SettlementStatement(
        merchant_id=merchant_id,
        period_start=start,
        period_end=end,
        total_sales=total_sales,
        commission_rate=rate,
        commission_amount=commission,
        payout_amount=payout,
        status=SettlementStatementStatus.PENDING,
        meta={"note": "automatic settlement", "payments_count": payments_count},
    )
    try:
        db.add(statement)
        db.flush()
    except SQLAlchemyError as exc:
        return StatementInsert(error=exc)
    return StatementInsert(statement=statement)


def _simulate(groups: dict[str, list[Payment]], rate: Decimal, totals: _RunTotals) -> None:
    for merchant_id, group in groups.items():
        total_sales = sum(p.amount_total for p in group)
        if total_sales <= 0:
            totals.skipped_payments += len(group)
            continue
        commission, payout = split_commission(total_sales, rate)
        totals.success_payments += len(group)
        totals.total_commission += commission
        totals.total_payout += payout
        totals.settlements.append(
            MerchantSettlement(
                merchant_id=merchant_id,
                total_sales=total_sales,
                commission_amount=commission,
                payout_amount=payout,
                payments_count=len(group),
            )
        )


def _discard_statement(db: Session, statement: SettlementStatement, claimed: Sequence[Payment]) -> None:
    """Undo a statement whose claimable payments carry no sales, releasing those payments."""

    if claimed:
        db.execute(delete(SettlementItem).where(SettlementItem.statement_id == statement.id))
        db.execute(
            update(Payment)
            .where(Payment.id.in_([p.id for p in claimed]), Payment.settlement_statement_id == statement.id)
            .values(is_settled=False, settlement_statement_id=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
    db.delete(statement)
    db.flush()


def _settle_merchant(
    db: Session,
    merchant_id: str,
    group: list[Payment],
    *,
    start: datetime,
    end: datetime,
    rate: Decimal,
    totals: _RunTotals,
    sink: SettlementErrorSink,
) -> None:
    total_sales = sum(p.amount_total for p in group)
    if total_sales <= 0:
        logger.warning(
            "Skipping merchant with non-positive sales",
            extra={"merchant_id": merchant_id, "total_sales": total_sales, "payments": len(group)},
        )
        totals.skipped_payments += len(group)
        return

    commission, payout = split_commission(total_sales, rate)
    inserted = _insert_statement(
        db,
        merchant_id=merchant_id,
        start=start,
        end=end,
        total_sales=total_sales,
        rate=rate,
        commission=commission,
        payout=payout,
        payments_count=len(group),
    )
    if not inserted.ok:
        error_type = (
            SettlementErrorType.STATEMENT_INSERT_FAIL
            if inserted.error is not None
            else SettlementErrorType.STATEMENT_INSERT_NO_ID
        )
        sink.record(
            error_type,
            message=str(inserted.error) if inserted.error is not None else "Statement insert returned no id",
            merchant_id=merchant_id,
            raw_data={"total_sales": total_sales, "period_start": start.isoformat(), "period_end": end.isoformat()},
        )
        raise SettlementIntegrityError(f"Could not create settlement statement for merchant {merchant_id}")

    statement = inserted.statement
    settled: list[Payment] = []
    for payment in group:
        claimed = db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.is_settled.is_(False))
            .values(is_settled=True, settlement_statement_id=statement.id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            totals.skipped_payments += 1
            sink.record(
                SettlementErrorType.PAYMENT_ALREADY_SETTLED,
                message="Payment already settled by a concurrent run",
                payment_id=payment.id,
                merchant_id=merchant_id,
                statement_id=statement.id,
                raw_data=_payment_snapshot(payment),
            )
            continue

        try:
            db.add(SettlementItem(statement_id=statement.id, payment_id=payment.id, amount=payment.amount_total))
            db.flush()
        except SQLAlchemyError as exc:
            sink.record(
                SettlementErrorType.ITEM_INSERT_FAIL,
                message=str(exc),
                payment_id=payment.id,
                merchant_id=merchant_id,
                statement_id=statement.id,
                raw_data=_payment_snapshot(payment),
            )
            raise SettlementIntegrityError(
                f"Could not record settlement item for payment {payment.id}"
            ) from exc
        totals.success_payments += 1
        settled.append(payment)

    settled_sales = sum(p.amount_total for p in settled)
    if settled_sales <= 0:
        statement_id = statement.id
        _discard_statement(db, statement, settled)
        totals.success_payments -= len(settled)
        totals.skipped_payments += len(settled)
        sink.detach_statement(statement_id)
        logger.warning(
            "Discarded statement with no positive claimable sales",
            extra={
                "merchant_id": merchant_id,
                "statement_id": statement_id,
                "released_payments": len(settled),
            },
        )
        return

    if len(settled) != len(group):
        total_sales = settled_sales
        commission, payout = split_commission(total_sales, rate)
        statement.total_sales = total_sales
        statement.commission_amount = commission
        statement.payout_amount = payout
        statement.meta = {**(statement.meta or {}), "payments_count": len(settled)}
        db.flush()

    totals.total_commission += commission
    totals.total_payout += payout
    totals.settlements.append(
        MerchantSettlement(
            merchant_id=merchant_id,
            statement_id=statement.id,
            total_sales=total_sales,
            commission_amount=commission,
            payout_amount=payout,
            payments_count=len(settled),
        )
    )


def _report(
    status: SettlementRunStatus,
    *,
    log_id: int,
    start: datetime,
    end: datetime,
    dry_run: bool,
    totals: _RunTotals,
) -> SettlementReport:
    return SettlementReport(
        log_id=log_id,
        status=status,
        dry_run=dry_run,
        period_start=start,
        period_end=end,
        total_payments=totals.total_payments,
        total_statements=len(totals.settlements),
        success_payment_count=totals.success_payments,
        skipped_payment_count=totals.skipped_payments,
        total_payout=totals.total_payout,
        total_commission=totals.total_commission,
        settlements=totals.settlements,
    )


def run_settlement_period(
    db: Session,
    period_start: datetime,
    period_end: datetime,
    dry_run: bool = False,
    *,
    error_sink: SettlementErrorSink | None = None,
    commission_rate: Decimal | None = None,
) -> SettlementReport:
    """Settle every eligible payment paid within ``[period_start, period_end)``."""

    start, end = _validate_period(period_start, period_end)
    rate = commission_rate if commission_rate is not None else get_settings().SETTLEMENT_COMMISSION_RATE
    sink = error_sink or SettlementErrorSink(sessionmaker(bind=db.get_bind(), expire_on_commit=False))

    run_log = open_run_log(db, start, end, dry_run=dry_run)
    log_id = run_log.id
    totals = _RunTotals()
    logger.info(
        "Settlement run started",
        extra={"settlement_log_id": log_id, "period_start": start.isoformat(), "period_end": end.isoformat(), "dry_run": dry_run},
    )

    try:
        payments = _claim_payments(db, start, end, lock=not dry_run)
        totals.total_payments = len(payments)

        if not payments:
            finish_run_log(run_log, SettlementRunStatus.NOOP, "No eligible payments", **totals.log_counters())
            db.commit()
            logger.info("Settlement run found nothing to settle", extra={"settlement_log_id": log_id})
            return _report(SettlementRunStatus.NOOP, log_id=log_id, start=start, end=end, dry_run=dry_run, totals=totals)

        groups = _group_by_merchant(payments)
        if dry_run:
            _simulate(groups, rate, totals)
            finish_run_log(run_log, SettlementRunStatus.SUCCESS, "Dry run completed", **totals.log_counters())
            db.commit()
            logger.info("Settlement dry run completed", extra={"settlement_log_id": log_id, **totals.log_counters()})
            return _report(SettlementRunStatus.SUCCESS, log_id=log_id, start=start, end=end, dry_run=True, totals=totals)

        for merchant_id, group in groups.items():
            _settle_merchant(db, merchant_id, group, start=start, end=end, rate=rate, totals=totals, sink=sink)

        finish_run_log(run_log, SettlementRunStatus.SUCCESS, "Settlement completed", **totals.log_counters())
        db.commit()
    except Exception as exc:
        logger.exception("Settlement run failed", extra={"settlement_log_id": log_id})
        db.rollback()
        fail_run_log(db, log_id, exc)
        sink.flush(log_id)
        raise

    sink.flush(log_id)
    logger.info("Settlement run completed", extra={"settlement_log_id": log_id, **totals.log_counters()})
    return _report(SettlementRunStatus.SUCCESS, log_id=log_id, start=start, end=end, dry_run=False, totals=totals)


# --- Read side and payout marker ----------------------------------------------


def get_run_log(db: Session, log_id: int) -> SettlementLog | None:
    stmt = select(SettlementLog).where(SettlementLog.id == log_id).options(selectinload(SettlementLog.errors))
    return db.scalars(stmt).one_or_none()


def list_statements(
    db: Session,
    *,
    merchant_id: str | None = None,
    status: SettlementStatementStatus | None = None,
    limit: int = 100,
) -> list[SettlementStatement]:
    stmt = select(SettlementStatement).options(selectinload(SettlementStatement.items))
    if merchant_id is not None:
        stmt = stmt.where(SettlementStatement.merchant_id == merchant_id)
    if status is not None:
        stmt = stmt.where(SettlementStatement.status == status)
    stmt = stmt.order_by(SettlementStatement.period_start.desc(), SettlementStatement.id.desc()).limit(limit)
    return list(db.scalars(stmt))


def mark_statement_payout(
    db: Session,
    statement_id: int,
    *,
    status: SettlementStatementStatus = SettlementStatementStatus.PAID,
    payout_at: datetime | None = None,
) -> SettlementStatement:
    """Record the payout outcome of a pending statement."""

    if status == SettlementStatementStatus.PENDING:
        raise StatementStateError("Payout outcome must be 'paid' or 'failed'.")

    try:
        statement = db.execute(
            select(SettlementStatement)
            .where(SettlementStatement.id == statement_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if statement is None:
            raise StatementNotFoundError(f"Settlement statement {statement_id} not found")
        if statement.status != SettlementStatementStatus.PENDING:
            raise StatementStateError(f"Settlement statement {statement_id} is already {statement.status.value}")

        statement.status = status
        if status == SettlementStatementStatus.PAID:
            statement.payout_at = ensure_utc(payout_at) if payout_at else utcnow()
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(statement)
    logger.info(
        "Settlement statement payout recorded",
        extra={"statement_id": statement_id, "status": status.value},
    )
    return statement


__all__ = [
    "SettlementIntegrityError",
    "SettlementValidationError",
    "StatementInsert",
    "StatementNotFoundError",
    "StatementStateError",
    "get_run_log",
    "list_statements",
    "mark_statement_payout",
    "run_settlement_period",
    "split_commission",
]

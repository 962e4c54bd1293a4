"""Operator endpoints for settlement runs and statements."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.settlement import SettlementStatementStatus
from app.schemas.settlement import (
    PayoutMark,
    SettlementLogRead,
    SettlementReport,
    SettlementRunRequest,
    SettlementStatementRead,
)
from app.security import require_admin_key
from app.services import settlement as settlement_service
from app.utils.errors import error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settlements", tags=["settlements"], dependencies=[Depends(require_admin_key)])


@router.post("/run", response_model=SettlementReport, status_code=status.HTTP_200_OK)
def run_settlement(payload: SettlementRunRequest, db: Session = Depends(get_db)) -> SettlementReport:
    """Run (or simulate) settlement over ``[period_start, period_end)``."""

    try:
        return settlement_service.run_settlement_period(
            db, payload.period_start, payload.period_end, payload.dry_run
        )
    except settlement_service.SettlementValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("SETTLEMENT_INVALID_PERIOD", str(exc)),
        )
    except Exception as exc:  # noqa: BLE001
        logger.exception("Settlement run request failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error_response("SETTLEMENT_FAILED", str(exc) or "Settlement run failed."),
        )


@router.get("/logs/{log_id}", response_model=SettlementLogRead)
def read_run_log(log_id: int, db: Session = Depends(get_db)):
    run_log = settlement_service.get_run_log(db, log_id)
    if run_log is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("SETTLEMENT_LOG_NOT_FOUND", "Settlement log not found."),
        )
    return run_log


@router.get("/statements", response_model=list[SettlementStatementRead])
def list_statements(
    merchant_id: str | None = None,
    statement_status: SettlementStatementStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return settlement_service.list_statements(db, merchant_id=merchant_id, status=statement_status, limit=limit)


@router.post("/statements/{statement_id}/payout", response_model=SettlementStatementRead)
def mark_payout(statement_id: int, payload: PayoutMark, db: Session = Depends(get_db)):
    """Record the external payout outcome for a pending statement."""

    try:
        return settlement_service.mark_statement_payout(
            db, statement_id, status=payload.status, payout_at=payload.payout_at
        )
    except settlement_service.StatementNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("STATEMENT_NOT_FOUND", "Settlement statement not found."),
        )
    except settlement_service.StatementStateError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=error_response("STATEMENT_NOT_PENDING", str(exc)),
        )


__all__ = ["router"]

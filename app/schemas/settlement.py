"""Schemas for settlement runs, statements and run logs."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.settlement import (
    SettlementRunStatus,
    SettlementStatementStatus,
)


class SettlementRunRequest(BaseModel):
    period_start: datetime
    period_end: datetime
    dry_run: bool = False


class MerchantSettlement(BaseModel):
    """Per-merchant line of a settlement report; ``statement_id`` is empty for dry runs."""

    merchant_id: str
    statement_id: int | None = None
    total_sales: int
    commission_amount: int
    payout_amount: int
    payments_count: int


class SettlementReport(BaseModel):
    log_id: int | None = None
    status: SettlementRunStatus
    dry_run: bool = False
    period_start: datetime
    period_end: datetime
    total_payments: int = 0
    total_statements: int = 0
    success_payment_count: int = 0
    skipped_payment_count: int = 0
    total_payout: int = 0
    total_commission: int = 0
    settlements: list[MerchantSettlement] = Field(default_factory=list)


class SettlementItemRead(BaseModel):
    id: int
    payment_id: int
    amount: int

    model_config = ConfigDict(from_attributes=True)


class SettlementStatementRead(BaseModel):
    id: int
    merchant_id: str
    period_start: datetime
    period_end: datetime
    total_sales: int
    commission_rate: Decimal
    commission_amount: int
    payout_amount: int
    status: SettlementStatementStatus
    payout_at: datetime | None
    meta: dict | None
    items: list[SettlementItemRead] = Field(default_factory=list)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SettlementErrorRead(BaseModel):
    id: int
    error_type: str
    payment_id: int | None
    merchant_id: str | None
    statement_id: int | None
    message: str
    raw_data: dict | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SettlementLogRead(BaseModel):
    id: int
    started_at: datetime
    ended_at: datetime | None
    period_start: datetime
    period_end: datetime
    dry_run: bool
    status: SettlementRunStatus
    message: str | None
    error_message: str | None
    total_payments: int
    total_statements: int
    success_payments: int
    skipped_payments: int
    total_payout: int
    total_commission: int
    errors: list[SettlementErrorRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class PayoutMark(BaseModel):
    status: SettlementStatementStatus = SettlementStatementStatus.PAID
    payout_at: datetime | None = None

    @model_validator(mode="after")
    def _check_terminal(self) -> "PayoutMark":
        if self.status == SettlementStatementStatus.PENDING:
            raise ValueError("status must be 'paid' or 'failed'")
        return self

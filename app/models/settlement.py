"""Settlement ledger models: statements, items, run logs and error rows."""
import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class SettlementStatementStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class SettlementRunStatus(str, enum.Enum):
    NOOP = "noop"
    SUCCESS = "success"
    FAILED = "failed"


class SettlementErrorType(str, enum.Enum):
    STATEMENT_INSERT_FAIL = "STATEMENT_INSERT_FAIL"
    STATEMENT_INSERT_NO_ID = "STATEMENT_INSERT_NO_ID"
    PAYMENT_ALREADY_SETTLED = "PAYMENT_ALREADY_SETTLED"
    ITEM_INSERT_FAIL = "ITEM_INSERT_FAIL"


class SettlementStatement(Base):
    """Per-merchant payout statement produced by one settlement run."""

    __tablename__ = "settlement_statements"
    __table_args__ = (
        CheckConstraint("total_sales > 0", name="ck_settlement_statements_positive_sales"),
        CheckConstraint(
            "commission_amount + payout_amount = total_sales",
            name="ck_settlement_statements_split",
        ),
        Index("ix_settlement_statements_merchant_period", "merchant_id", "period_start", "period_end"),
        Index("ix_settlement_statements_status", "status"),
    )

    merchant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_sales: Mapped[int] = mapped_column(BigInteger, nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    commission_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    payout_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[SettlementStatementStatus] = mapped_column(
        SqlEnum(
            SettlementStatementStatus,
            name="settlement_statement_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=SettlementStatementStatus.PENDING,
    )
    payout_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    items: Mapped[list["SettlementItem"]] = relationship(
        back_populates="statement", order_by="SettlementItem.id"
    )


class SettlementItem(Base):
    """Line linking one settled payment to its statement."""

    __tablename__ = "settlement_items"
    __table_args__ = (
        UniqueConstraint("statement_id", "payment_id", name="uq_settlement_items_statement_payment"),
    )

    statement_id: Mapped[int] = mapped_column(
        ForeignKey("settlement_statements.id", ondelete="CASCADE"), nullable=False, index=True
    )
    payment_id: Mapped[int] = mapped_column(
        ForeignKey("payments.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    statement: Mapped[SettlementStatement] = relationship(back_populates="items")


class SettlementLog(Base):
    """One row per settlement batch invocation."""

    __tablename__ = "settlement_logs"
    __table_args__ = (Index("ix_settlement_logs_period", "period_start", "period_end"),)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dry_run: Mapped[bool] = mapped_column(nullable=False, default=False)
    status: Mapped[SettlementRunStatus] = mapped_column(
        SqlEnum(
            SettlementRunStatus,
            name="settlement_run_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=SettlementRunStatus.NOOP,
    )
    message: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_payments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_statements: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_payments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_payments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_payout: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_commission: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    errors: Mapped[list["SettlementError"]] = relationship(
        back_populates="settlement_log", order_by="SettlementError.id"
    )


class SettlementError(Base):
    """Append-only diagnostic row attached to a settlement run."""

    __tablename__ = "settlement_errors"

    settlement_log_id: Mapped[int | None] = mapped_column(
        ForeignKey("settlement_logs.id", ondelete="SET NULL"), nullable=True, index=True
    )
    error_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    merchant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    statement_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    raw_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    settlement_log: Mapped[SettlementLog | None] = relationship(back_populates="errors")

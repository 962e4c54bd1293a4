"""Payment model definitions."""
import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    false,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class PaymentStatus(str, enum.Enum):
    """Internal payment lifecycle states."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    REFUNDED = "REFUNDED"


class Payment(Base):
    """One customer charge attempt against a merchant (store)."""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount_total >= 0", name="ck_payments_amount_non_negative"),
        Index("ix_payments_merchant_paid", "merchant_id", "paid_at"),
        Index("ix_payments_settle", "is_settled", "merchant_id", "paid_at"),
        Index("ix_payments_reservation", "reservation_id"),
    )

    merchant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    reservation_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount_total: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="KRW")
    gateway_provider: Mapped[str] = mapped_column(String(50), nullable=False, default="toss")
    gateway_payment_key: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)
    gateway_order_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    gateway_method: Mapped[str] = mapped_column(String(30), nullable=False, default="UNKNOWN")
    status: Mapped[PaymentStatus] = mapped_column(
        SqlEnum(PaymentStatus, name="payment_status"), nullable=False, default=PaymentStatus.PENDING
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_settled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    settlement_statement_id: Mapped[int | None] = mapped_column(
        ForeignKey("settlement_statements.id", ondelete="SET NULL"), nullable=True, index=True
    )

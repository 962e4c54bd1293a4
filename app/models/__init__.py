"""ORM models package."""
from .base import Base
from .payment import Payment, PaymentStatus
from .payment_webhook import PaymentWebhook
from .reservation import Reservation
from .scheduler_lock import SchedulerLock
from .settlement import (
    SettlementError,
    SettlementErrorType,
    SettlementItem,
    SettlementLog,
    SettlementRunStatus,
    SettlementStatement,
    SettlementStatementStatus,
)

__all__ = [
    "Base",
    "Payment",
    "PaymentStatus",
    "PaymentWebhook",
    "Reservation",
    "SchedulerLock",
    "SettlementError",
    "SettlementErrorType",
    "SettlementItem",
    "SettlementLog",
    "SettlementRunStatus",
    "SettlementStatement",
    "SettlementStatementStatus",
]

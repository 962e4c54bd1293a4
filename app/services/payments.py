"""Customer-facing payment flow: order preparation, confirmation and cancellation.

The gateway order id issued by :func:`prepare_payment` anchors confirmation: a
confirm call locks the payment by that id, so concurrent or repeated confirms of
the same order serialize and a repeat with the same payment key is a no-op.
"""
from __future__ import annotations

import logging
import secrets
import string
import time
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.payment import Payment, PaymentStatus
from app.models.reservation import Reservation
from app.services.gateway import GatewayClient, GatewayError
from app.services.payment_status import is_valid_transition
from app.services.reservations import ReservationUpdater, default_reservation_updater
from app.services.webhooks import PaymentNotFoundError
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


class PaymentValidationError(ValueError):
    """Raised for requests the payment flow refuses before touching the gateway."""


class ReservationValidationError(ValueError):
    pass


class AmountMismatchError(ValueError):
    """Raised when the confirmed amount differs from the prepared one."""

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(f"Amount mismatch: expected {expected}, received {received}")
        self.expected = expected
        self.received = received


class PaymentStateError(ValueError):
    """Raised when the payment's current status does not allow the operation."""

    def __init__(self, message: str, current_status: PaymentStatus) -> None:
        super().__init__(message)
        self.current_status = current_status


@dataclass(frozen=True)
class ConfirmOutcome:
    payment: Payment
    already_confirmed: bool = False


def generate_order_id() -> str:
    """Return a gateway order id such as ``ORDER_1759300000000_X3K9QZ``."""

    suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(6))
    return f"ORDER_{int(time.time() * 1000)}_{suffix}"


def _check_reservation(db: Session, reservation_id: str) -> None:
    reservation = db.get(Reservation, reservation_id)
    if reservation is None:
        raise ReservationValidationError(f"Reservation {reservation_id} not found")
    if reservation.payment_status == "paid":
        raise ReservationValidationError(f"Reservation {reservation_id} is already paid")


def prepare_payment(
    db: Session,
    *,
    merchant_id: str,
    user_id: str,
    amount: int,
    reservation_id: str | None = None,
    reservations: ReservationUpdater | None = None,
) -> Payment:
    """Create the PENDING payment a checkout window will later confirm."""

    min_amount = get_settings().PAYMENT_MIN_AMOUNT
    if amount < min_amount:
        raise PaymentValidationError(f"Payment amount must be at least {min_amount}")

    updater = reservations or default_reservation_updater
    try:
        if reservation_id:
            _check_reservation(db, reservation_id)

        payment = Payment(
            merchant_id=merchant_id,
            user_id=user_id,
            reservation_id=reservation_id,
            amount_total=amount,
            gateway_order_id=generate_order_id(),
            status=PaymentStatus.PENDING,
        )
        db.add(payment)
        db.flush()
        if reservation_id:
            updater.mark_payment_pending(db, reservation_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Payment prepared",
        extra={"payment_id": payment.id, "order_id": payment.gateway_order_id, "merchant_id": merchant_id},
    )
    return payment


def _lock_payment(db: Session, *criteria) -> Payment | None:
    stmt = select(Payment).where(*criteria).with_for_update().execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()


def confirm_payment(
    db: Session,
    *,
    payment_key: str,
    order_id: str,
    amount: int,
    gateway: GatewayClient,
    reservations: ReservationUpdater | None = None,
) -> ConfirmOutcome:
    """Approve a prepared payment with the gateway and record the outcome.

    A gateway rejection marks the payment FAILED before the error is re-raised;
    an unreachable gateway leaves it PENDING so the confirm can be retried.
    """

    if not payment_key or not order_id:
        raise PaymentValidationError("paymentKey and orderId are required")

    updater = reservations or default_reservation_updater
    try:
        payment = _lock_payment(db, Payment.gateway_order_id == order_id)
        if payment is None:
            raise PaymentNotFoundError(f"No payment for order id {order_id}")
        if payment.amount_total != amount:
            raise AmountMismatchError(payment.amount_total, amount)

        if payment.status == PaymentStatus.SUCCESS:
            if payment.gateway_payment_key == payment_key:
                db.commit()
                logger.info("Payment already confirmed", extra={"order_id": order_id, "payment_id": payment.id})
                return ConfirmOutcome(payment=payment, already_confirmed=True)
            raise PaymentStateError("Payment is already confirmed", payment.status)
        if not is_valid_transition(payment.status, PaymentStatus.SUCCESS):
            raise PaymentStateError(f"Payment cannot be confirmed from {payment.status.value}", payment.status)

        try:
            result = gateway.confirm(payment_key=payment_key, order_id=order_id, amount=amount)
        except GatewayError as exc:
            if exc.responded:
                payment.status = PaymentStatus.FAILED
                if payment.reservation_id:
                    updater.mark_payment_failed(db, payment.reservation_id)
                db.commit()
            logger.warning(
                "Gateway confirmation failed",
                extra={"order_id": order_id, "payment_id": payment.id, "code": exc.code, "responded": exc.responded},
            )
            raise

        payment.status = PaymentStatus.SUCCESS
        payment.gateway_payment_key = result.payment_key
        payment.gateway_method = result.method or "CARD"
        payment.paid_at = ensure_utc(result.approved_at) if result.approved_at else utcnow()
        if payment.reservation_id:
            updater.mark_paid(db, payment.reservation_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Payment confirmed", extra={"order_id": order_id, "payment_id": payment.id})
    return ConfirmOutcome(payment=payment)


def cancel_payment(
    db: Session,
    *,
    payment_key: str,
    reason: str,
    gateway: GatewayClient,
    reservations: ReservationUpdater | None = None,
) -> Payment:
    """Cancel a confirmed payment with the gateway, then mirror it locally."""

    if not reason or not reason.strip():
        raise PaymentValidationError("A cancel reason is required")

    updater = reservations or default_reservation_updater
    try:
        payment = _lock_payment(db, Payment.gateway_payment_key == payment_key)
        if payment is None:
            raise PaymentNotFoundError(f"No payment for payment key {payment_key}")
        if payment.status != PaymentStatus.SUCCESS or not is_valid_transition(
            payment.status, PaymentStatus.CANCELED
        ):
            raise PaymentStateError(f"Payment cannot be canceled from {payment.status.value}", payment.status)

        result = gateway.cancel(payment_key=payment_key, reason=reason.strip())

        payment.status = PaymentStatus.CANCELED
        payment.canceled_at = ensure_utc(result.canceled_at) if result.canceled_at else utcnow()
        if payment.reservation_id:
            updater.mark_canceled(db, payment.reservation_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Payment canceled by request", extra={"payment_id": payment.id, "payment_key": payment_key})
    return payment


def get_payment_by_key(db: Session, payment_key: str) -> Payment | None:
    return db.scalars(select(Payment).where(Payment.gateway_payment_key == payment_key)).one_or_none()


def list_payments(
    db: Session,
    *,
    merchant_id: str | None = None,
    user_id: str | None = None,
    status: PaymentStatus | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Payment], int]:
    """Return one page of payments, newest first, with the unpaginated total."""

    filters = []
    if merchant_id is not None:
        filters.append(Payment.merchant_id == merchant_id)
    if user_id is not None:
        filters.append(Payment.user_id == user_id)
    if status is not None:
        filters.append(Payment.status == status)

    total = db.scalar(select(func.count()).select_from(Payment).where(*filters)) or 0
    stmt = (
        select(Payment)
        .where(*filters)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(db.scalars(stmt)), total


__all__ = [
    "AmountMismatchError",
    "ConfirmOutcome",
    "PaymentStateError",
    "PaymentValidationError",
    "ReservationValidationError",
    "cancel_payment",
    "confirm_payment",
    "generate_order_id",
    "get_payment_by_key",
    "list_payments",
    "prepare_payment",
]

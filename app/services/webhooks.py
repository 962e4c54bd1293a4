"""Reconciliation of payment-gateway webhook callbacks into payment state."""
from __future__ import annotations

import enum
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping
from uuid import uuid4

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.payment import Payment, PaymentStatus
from app.models.payment_webhook import PaymentWebhook
from app.schemas.webhook import GatewayWebhookPayload
from app.services.payment_status import is_valid_transition, map_external_status
from app.services.reservations import ReservationUpdater, default_reservation_updater
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

EVENT_STATUS_CHANGED = "PAYMENT_STATUS_CHANGED"
EVENT_CANCELED = "PAYMENT_CANCELED"

SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"


class WebhookValidationError(ValueError):
    """Raised when a webhook body lacks the fields needed to reconcile it."""


class PaymentNotFoundError(LookupError):
    """Raised when no payment matches the webhook's gateway order id."""


class WebhookSignatureError(ValueError):
    """Raised when a signed webhook fails verification."""


class WebhookResult(str, enum.Enum):
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    INVALID_TRANSITION = "invalid_transition"
    IGNORED = "ignored"


_RESULT_MESSAGES = {
    WebhookResult.PROCESSED: "Webhook processed successfully",
    WebhookResult.ALREADY_PROCESSED: "Already processed (idempotent)",
    WebhookResult.INVALID_TRANSITION: "Invalid status transition",
    WebhookResult.IGNORED: "Webhook recorded without state change",
}


@dataclass(frozen=True)
class WebhookOutcome:
    applied: bool
    reason: WebhookResult
    payment_id: int | None = None
    webhook_id: str | None = None

    @property
    def success(self) -> bool:
        return self.reason is not WebhookResult.INVALID_TRANSITION

    @property
    def message(self) -> str:
        return _RESULT_MESSAGES[self.reason]


def _current_settings():
    return get_settings()


# --- Signature verification ------------------------------------------------


def _get_header(headers: Mapping[str, str], key: str) -> str | None:
    for h_key, value in headers.items():
        if h_key.lower() == key.lower():
            return value
    return None


def compute_webhook_signature(secret: str, body: bytes, timestamp: str) -> str:
    """Compute the HMAC-SHA256 signature expected for ``body``."""

    msg = timestamp.encode("utf-8") + b"." + body
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def verify_webhook_signature(raw_body: bytes, headers: Mapping[str, str]) -> None:
    """Check the webhook signature when a shared secret is configured."""

    settings = _current_settings()
    secret = settings.gateway_webhook_secret
    if not secret:
        return

    provided = _get_header(headers, SIGNATURE_HEADER)
    timestamp = _get_header(headers, TIMESTAMP_HEADER)
    if not provided or not timestamp:
        raise WebhookSignatureError("Signature or timestamp header missing.")

    try:
        ts_seconds = int(float(timestamp))
    except ValueError as exc:
        raise WebhookSignatureError("Invalid timestamp format.") from exc

    age = abs(int(time.time()) - ts_seconds)
    if age > settings.gateway_webhook_max_drift_seconds:
        raise WebhookSignatureError(f"Webhook timestamp outside allowed window ({age}s).")

    expected = compute_webhook_signature(secret, raw_body, timestamp)
    if not hmac.compare_digest(expected, provided):
        raise WebhookSignatureError("Invalid webhook signature.")


# --- Reconciliation ----------------------------------------------------------


def _parse_payload(payload: Mapping[str, Any] | GatewayWebhookPayload) -> tuple[GatewayWebhookPayload, dict]:
    if isinstance(payload, GatewayWebhookPayload):
        event = payload
        raw = payload.model_dump(by_alias=True, mode="json", exclude_none=True)
    else:
        try:
            event = GatewayWebhookPayload.model_validate(payload)
        except ValidationError as exc:
            raise WebhookValidationError(f"Malformed webhook payload: {exc.error_count()} error(s)") from exc
        raw = dict(payload)

    if not event.event_type or not event.data.order_id:
        raise WebhookValidationError("Webhook eventType and data.orderId are required.")
    return event, raw


def _lock_payment(db: Session, order_id: str) -> Payment | None:
    stmt = (
        select(Payment)
        .where(Payment.gateway_order_id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.execute(stmt).scalar_one_or_none()


def _seen_recently(db: Session, order_id: str, event_type: str, status: str | None) -> bool:
    window = timedelta(seconds=_current_settings().WEBHOOK_IDEMPOTENCY_WINDOW_SECONDS)
    status_clause = PaymentWebhook.status.is_(None) if status is None else PaymentWebhook.status == status
    stmt = (
        select(PaymentWebhook.id)
        .where(
            PaymentWebhook.gateway_order_id == order_id,
            PaymentWebhook.event_type == event_type,
            status_clause,
            PaymentWebhook.received_at >= utcnow() - window,
        )
        .limit(1)
    )
    return db.execute(stmt).first() is not None


def _record_webhook(db: Session, payment: Payment, event: GatewayWebhookPayload, raw: dict) -> PaymentWebhook:
    webhook = PaymentWebhook(
        id=f"webhook_{uuid4().hex}",
        payment_id=payment.id,
        gateway_order_id=event.data.order_id,
        gateway_payment_key=event.data.payment_key,
        event_type=event.event_type,
        status=event.data.status,
        payload=raw,
        received_at=utcnow(),
    )
    db.add(webhook)
    db.flush()
    return webhook


def _apply_success(
    db: Session, payment: Payment, event: GatewayWebhookPayload, reservations: ReservationUpdater
) -> None:
    data = event.data
    payment.status = PaymentStatus.SUCCESS
    payment.gateway_payment_key = data.payment_key or payment.gateway_payment_key
    payment.gateway_method = data.method or payment.gateway_method
    payment.amount_total = data.total_amount if data.total_amount is not None else payment.amount_total
    payment.paid_at = ensure_utc(data.approved_at) if data.approved_at else utcnow()
    db.add(payment)
    if payment.reservation_id:
        reservations.mark_paid(db, payment.reservation_id)
    logger.info("Payment marked as succeeded", extra={"payment_id": payment.id, "order_id": payment.gateway_order_id})


def _apply_failure(db: Session, payment: Payment, reservations: ReservationUpdater) -> None:
    payment.status = PaymentStatus.FAILED
    db.add(payment)
    if payment.reservation_id:
        reservations.mark_payment_failed(db, payment.reservation_id)
    logger.info("Payment marked as failed", extra={"payment_id": payment.id, "order_id": payment.gateway_order_id})


def _apply_cancel(db: Session, payment: Payment, reservations: ReservationUpdater) -> None:
    payment.status = PaymentStatus.CANCELED
    payment.canceled_at = utcnow()
    db.add(payment)
    if payment.reservation_id:
        reservations.mark_canceled(db, payment.reservation_id)
    logger.info("Payment canceled", extra={"payment_id": payment.id, "order_id": payment.gateway_order_id})


def process_webhook(
    db: Session,
    payload: Mapping[str, Any] | GatewayWebhookPayload,
    *,
    reservations: ReservationUpdater | None = None,
) -> WebhookOutcome:
    """Apply one gateway callback to its payment, at most once.

    The payment row stays locked for the whole transaction. Every accepted
    delivery is persisted, including ones whose transition is rejected, so later
    duplicates inside the idempotency window short-circuit.
    """

    event, raw = _parse_payload(payload)
    updater = reservations or default_reservation_updater
    order_id = event.data.order_id
    event_type = event.event_type
    reported_status = event.data.status

    try:
        payment = _lock_payment(db, order_id)
        if payment is None:
            raise PaymentNotFoundError(f"No payment for order id {order_id}")

        if _seen_recently(db, order_id, event_type, reported_status):
            db.commit()
            logger.info(
                "Duplicate webhook ignored",
                extra={"order_id": order_id, "event_type": event_type, "status": reported_status},
            )
            return WebhookOutcome(applied=False, reason=WebhookResult.ALREADY_PROCESSED, payment_id=payment.id)

        webhook = _record_webhook(db, payment, event, raw)

        current = payment.status
        proposed = map_external_status(reported_status)
        if not is_valid_transition(current, proposed):
            db.commit()
            logger.warning(
                "Invalid payment status transition",
                extra={
                    "order_id": order_id,
                    "payment_id": payment.id,
                    "current_status": current.value,
                    "proposed_status": proposed.value,
                },
            )
            return WebhookOutcome(
                applied=False,
                reason=WebhookResult.INVALID_TRANSITION,
                payment_id=payment.id,
                webhook_id=webhook.id,
            )

        applied = True
        if event_type == EVENT_STATUS_CHANGED and proposed == PaymentStatus.SUCCESS:
            _apply_success(db, payment, event, updater)
        elif event_type == EVENT_STATUS_CHANGED and proposed == PaymentStatus.FAILED:
            _apply_failure(db, payment, updater)
        elif event_type == EVENT_CANCELED:
            _apply_cancel(db, payment, updater)
        else:
            applied = False
            logger.info(
                "Webhook event not handled",
                extra={"order_id": order_id, "event_type": event_type, "status": reported_status},
            )

        db.commit()
    except Exception:
        db.rollback()
        raise

    return WebhookOutcome(
        applied=applied,
        reason=WebhookResult.PROCESSED if applied else WebhookResult.IGNORED,
        payment_id=payment.id,
        webhook_id=webhook.id,
    )


__all__ = [
    "EVENT_CANCELED",
    "EVENT_STATUS_CHANGED",
    "PaymentNotFoundError",
    "WebhookOutcome",
    "WebhookResult",
    "WebhookSignatureError",
    "WebhookValidationError",
    "compute_webhook_signature",
    "process_webhook",
    "verify_webhook_signature",
]

"""Checkout payment routes: prepare, confirm, lookup and cancel."""
from __future__ import annotations

import logging
from collections.abc import Generator

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db import get_db
from app.models.payment import PaymentStatus
from app.schemas.payment import (
    PaymentCancelRequest,
    PaymentConfirmRequest,
    PaymentConfirmResponse,
    PaymentPage,
    PaymentPrepareRequest,
    PaymentPrepareResponse,
    PaymentRead,
)
from app.security import require_admin_key
from app.services import payments as payments_service
from app.services.gateway import GatewayClient, GatewayError, TossGatewayClient
from app.services.webhooks import PaymentNotFoundError
from app.utils.errors import error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def get_gateway_client() -> Generator[GatewayClient, None, None]:
    try:
        client = TossGatewayClient.from_env()
    except RuntimeError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_response("GATEWAY_NOT_CONFIGURED", str(exc)),
        )
    try:
        yield client
    finally:
        client.close()


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=error_response("PAYMENT_NOT_FOUND", "Payment not found."),
    )


def _gateway_failure(code: str, exc: GatewayError) -> HTTPException:
    status_code = exc.status_code if exc.responded and exc.status_code >= 400 else status.HTTP_502_BAD_GATEWAY
    details = {"gateway_code": exc.code} if exc.code else None
    return HTTPException(status_code=status_code, detail=error_response(code, str(exc), details))


def _invalid_status(exc: payments_service.PaymentStateError, code: str = "INVALID_PAYMENT_STATUS") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=error_response(code, str(exc), {"current_status": exc.current_status.value}),
    )


@router.post("/prepare", response_model=PaymentPrepareResponse, dependencies=[Depends(require_admin_key)])
def prepare_payment(payload: PaymentPrepareRequest, db: Session = Depends(get_db)) -> PaymentPrepareResponse:
    """Issue an order id and store the PENDING payment before checkout opens."""

    try:
        payment = payments_service.prepare_payment(
            db,
            merchant_id=payload.merchant_id,
            user_id=payload.user_id,
            amount=payload.amount,
            reservation_id=payload.reservation_id,
        )
    except payments_service.PaymentValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("VALIDATION_ERROR", str(exc)),
        )
    except payments_service.ReservationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("RESERVATION_VALIDATION_FAILED", str(exc)),
        )

    return PaymentPrepareResponse(
        order_id=payment.gateway_order_id,
        amount=payment.amount_total,
        currency=payment.currency,
        order_name=payload.order_name,
        customer_key=f"USER_{payload.user_id}",
        client_key=get_settings().GATEWAY_CLIENT_KEY,
        customer_email=payload.customer_email,
        customer_name=payload.customer_name,
        reservation_id=payload.reservation_id,
    )


@router.post("/confirm", response_model=PaymentConfirmResponse)
def confirm_payment(
    payload: PaymentConfirmRequest,
    db: Session = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
) -> PaymentConfirmResponse:
    """Called from the checkout success redirect; approves the charge with the gateway."""

    try:
        outcome = payments_service.confirm_payment(
            db,
            payment_key=payload.payment_key,
            order_id=payload.order_id,
            amount=payload.amount,
            gateway=gateway,
        )
    except PaymentNotFoundError:
        raise _not_found()
    except payments_service.AmountMismatchError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response(
                "AMOUNT_MISMATCH", "Payment amount does not match.", {"expected": exc.expected, "received": exc.received}
            ),
        )
    except payments_service.PaymentStateError as exc:
        code = "ALREADY_CONFIRMED" if exc.current_status == PaymentStatus.SUCCESS else "INVALID_PAYMENT_STATUS"
        raise _invalid_status(exc, code)
    except GatewayError as exc:
        raise _gateway_failure("PAYMENT_CONFIRM_FAILED", exc)

    message = "Payment already confirmed" if outcome.already_confirmed else "Payment confirmed"
    return PaymentConfirmResponse(
        message=message,
        already_confirmed=outcome.already_confirmed,
        payment=PaymentRead.model_validate(outcome.payment),
    )


@router.get("", response_model=PaymentPage, dependencies=[Depends(require_admin_key)])
def list_payments(
    merchant_id: str | None = None,
    user_id: str | None = None,
    payment_status: PaymentStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> PaymentPage:
    payments, total = payments_service.list_payments(
        db, merchant_id=merchant_id, user_id=user_id, status=payment_status, limit=limit, offset=offset
    )
    return PaymentPage(
        payments=[PaymentRead.model_validate(p) for p in payments], total=total, limit=limit, offset=offset
    )


@router.get("/{payment_key}", response_model=PaymentRead, dependencies=[Depends(require_admin_key)])
def read_payment(payment_key: str, db: Session = Depends(get_db)):
    payment = payments_service.get_payment_by_key(db, payment_key)
    if payment is None:
        raise _not_found()
    return payment


@router.post("/{payment_key}/cancel", response_model=PaymentRead, dependencies=[Depends(require_admin_key)])
def cancel_payment(
    payment_key: str,
    payload: PaymentCancelRequest,
    db: Session = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
):
    try:
        return payments_service.cancel_payment(
            db, payment_key=payment_key, reason=payload.cancel_reason, gateway=gateway
        )
    except payments_service.PaymentValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("VALIDATION_ERROR", str(exc)),
        )
    except PaymentNotFoundError:
        raise _not_found()
    except payments_service.PaymentStateError as exc:
        raise _invalid_status(exc)
    except GatewayError as exc:
        raise _gateway_failure("PAYMENT_CANCEL_FAILED", exc)


__all__ = ["get_gateway_client", "router"]

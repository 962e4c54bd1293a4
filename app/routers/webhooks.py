"""Routes for payment-gateway webhooks.

The gateway retries anything that is not a 200, so every delivery is
acknowledged with 200 and the outcome travels in the JSON body.
"""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.schemas.webhook import WebhookAck
from app.services import webhooks as webhook_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/gateway", response_model=WebhookAck, status_code=status.HTTP_200_OK)
async def gateway_webhook(request: Request, db: Session = Depends(get_db)) -> WebhookAck:
    raw_body = await request.body()

    try:
        webhook_service.verify_webhook_signature(raw_body, dict(request.headers))
    except webhook_service.WebhookSignatureError as exc:
        logger.warning("Webhook signature rejected", extra={"reason": str(exc)})
        return WebhookAck(success=False, message="Webhook signature rejected", error=str(exc))

    try:
        payload = json.loads(raw_body or b"null")
    except ValueError:
        logger.warning("Webhook body is not valid JSON")
        return WebhookAck(success=False, message="Webhook processing failed", error="Invalid JSON body")
    if not isinstance(payload, dict):
        return WebhookAck(success=False, message="Webhook processing failed", error="JSON object expected")

    data = payload.get("data")
    logger.info(
        "Webhook received",
        extra={
            "event_type": payload.get("eventType"),
            "order_id": data.get("orderId") if isinstance(data, dict) else None,
        },
    )
    try:
        outcome = webhook_service.process_webhook(db, payload)
    except (webhook_service.WebhookValidationError, webhook_service.PaymentNotFoundError) as exc:
        logger.warning("Webhook rejected", extra={"reason": str(exc)})
        return WebhookAck(success=False, message="Webhook processing failed", error=str(exc))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Webhook processing failed")
        return WebhookAck(success=False, message="Webhook processing failed", error=type(exc).__name__)

    return WebhookAck(success=outcome.success, message=outcome.message)


__all__ = ["router"]

"""Schemas for gateway webhook deliveries."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class GatewayWebhookData(BaseModel):
    payment_key: str | None = Field(default=None, alias="paymentKey")
    order_id: str | None = Field(default=None, alias="orderId")
    status: str | None = None
    approved_at: datetime | None = Field(default=None, alias="approvedAt")
    total_amount: int | None = Field(default=None, alias="totalAmount", ge=0)
    method: str | None = None
    cancels: list[dict[str, Any]] | None = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class GatewayWebhookPayload(BaseModel):
    """Body posted by the payment gateway on every payment state change."""

    event_type: str | None = Field(default=None, alias="eventType")
    created_at: str | None = Field(default=None, alias="createdAt")
    data: GatewayWebhookData = Field(default_factory=GatewayWebhookData)

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class WebhookAck(BaseModel):
    success: bool
    message: str
    error: str | None = None

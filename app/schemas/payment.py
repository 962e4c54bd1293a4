"""Schemas for the checkout payment flow."""
from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.models.payment import PaymentStatus


class PaymentPrepareRequest(BaseModel):
    merchant_id: str = Field(validation_alias=AliasChoices("merchant_id", "store_id"), min_length=1)
    user_id: str = Field(min_length=1)
    amount: int
    order_name: str = Field(min_length=1)
    customer_email: str | None = None
    customer_name: str | None = None
    reservation_id: str | None = None


class PaymentPrepareResponse(BaseModel):
    """Parameters the client hands to the gateway checkout window."""

    order_id: str
    amount: int
    currency: str
    order_name: str
    customer_key: str
    client_key: str | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    reservation_id: str | None = None


class PaymentConfirmRequest(BaseModel):
    payment_key: str = Field(alias="paymentKey", min_length=1)
    order_id: str = Field(alias="orderId", min_length=1)
    amount: int

    model_config = ConfigDict(populate_by_name=True)


class PaymentCancelRequest(BaseModel):
    cancel_reason: str = Field(alias="cancelReason", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class PaymentRead(BaseModel):
    id: int
    merchant_id: str
    user_id: str
    reservation_id: str | None
    amount_total: int
    currency: str
    gateway_provider: str
    gateway_payment_key: str | None
    gateway_order_id: str
    gateway_method: str
    status: PaymentStatus
    paid_at: datetime | None
    canceled_at: datetime | None
    is_settled: bool
    settlement_statement_id: int | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentConfirmResponse(BaseModel):
    message: str
    already_confirmed: bool = False
    payment: PaymentRead


class PaymentPage(BaseModel):
    payments: list[PaymentRead]
    total: int
    limit: int
    offset: int

"""Payment gateway client used to confirm and cancel charges."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import httpx

from app.config import Settings, get_settings
from app.utils.time import parse_iso_utc

logger = logging.getLogger(__name__)


class GatewayError(RuntimeError):
    """Raised when the gateway rejects a call or cannot be reached."""

    def __init__(
        self, message: str, *, status_code: int = 502, code: str | None = None, responded: bool = False
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.responded = responded


@dataclass(frozen=True)
class GatewayConfirmation:
    payment_key: str
    order_id: str
    status: str | None = None
    method: str | None = None
    total_amount: int | None = None
    approved_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayCancellation:
    payment_key: str
    canceled_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class GatewayClient(Protocol):
    """Remote payment gateway operations needed by the payment flow."""

    def confirm(self, *, payment_key: str, order_id: str, amount: int) -> GatewayConfirmation: ...

    def cancel(self, *, payment_key: str, reason: str) -> GatewayCancellation: ...


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return parse_iso_utc(str(value))
    except ValueError:
        logger.warning("Unparseable gateway timestamp", extra={"value": str(value)})
        return None


class TossGatewayClient:
    """HTTP client for the Toss Payments REST API."""

    def __init__(self, settings: Settings, *, transport: httpx.BaseTransport | None = None) -> None:
        """Build the client; the secret key is sent as HTTP basic auth user with an empty password."""

        if not settings.GATEWAY_SECRET_KEY:
            raise RuntimeError("Gateway secret key is missing; configure GATEWAY_SECRET_KEY.")
        self._client = httpx.Client(
            base_url=settings.GATEWAY_API_BASE_URL,
            auth=(settings.GATEWAY_SECRET_KEY, ""),
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            transport=transport,
        )

    @classmethod
    def from_env(cls) -> "TossGatewayClient":
        """Instantiate a client using the cached application settings."""

        return cls(get_settings())

    def close(self) -> None:
        self._client.close()

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.post(path, json=body)
        except httpx.HTTPError as exc:
            logger.warning("Gateway unreachable", extra={"path": path, "error": type(exc).__name__})
            raise GatewayError(f"Gateway request failed: {exc}") from exc

        if response.is_error:
            try:
                detail = response.json()
            except ValueError:
                detail = {}
            if not isinstance(detail, dict):
                detail = {}
            logger.warning(
                "Gateway rejected request",
                extra={"path": path, "status_code": response.status_code, "code": detail.get("code")},
            )
            raise GatewayError(
                detail.get("message") or f"Gateway returned HTTP {response.status_code}",
                status_code=response.status_code,
                code=detail.get("code"),
                responded=True,
            )
        return response.json()

    def confirm(self, *, payment_key: str, order_id: str, amount: int) -> GatewayConfirmation:
        data = self._post(
            "/payments/confirm",
            {"paymentKey": payment_key, "orderId": order_id, "amount": amount},
        )
        return GatewayConfirmation(
            payment_key=data.get("paymentKey") or payment_key,
            order_id=data.get("orderId") or order_id,
            status=data.get("status"),
            method=data.get("method"),
            total_amount=data.get("totalAmount"),
            approved_at=_parse_timestamp(data.get("approvedAt")),
            raw=data,
        )

    def cancel(self, *, payment_key: str, reason: str) -> GatewayCancellation:
        data = self._post(f"/payments/{payment_key}/cancel", {"cancelReason": reason})
        cancels = data.get("cancels") or []
        canceled_at = _parse_timestamp(cancels[-1].get("canceledAt")) if cancels else None
        return GatewayCancellation(payment_key=payment_key, canceled_at=canceled_at, raw=data)


__all__ = [
    "GatewayCancellation",
    "GatewayClient",
    "GatewayConfirmation",
    "GatewayError",
    "TossGatewayClient",
]

"""Schema package exports."""
from .payment import (
    PaymentCancelRequest,
    PaymentConfirmRequest,
    PaymentConfirmResponse,
    PaymentPage,
    PaymentPrepareRequest,
    PaymentPrepareResponse,
    PaymentRead,
)
from .settlement import (
    MerchantSettlement,
    PayoutMark,
    SettlementErrorRead,
    SettlementItemRead,
    SettlementLogRead,
    SettlementReport,
    SettlementRunRequest,
    SettlementStatementRead,
)
from .webhook import GatewayWebhookData, GatewayWebhookPayload, WebhookAck

__all__ = [
    "GatewayWebhookData",
    "GatewayWebhookPayload",
    "MerchantSettlement",
    "PaymentCancelRequest",
    "PaymentConfirmRequest",
    "PaymentConfirmResponse",
    "PaymentPage",
    "PaymentPrepareRequest",
    "PaymentPrepareResponse",
    "PaymentRead",
    "PayoutMark",
    "SettlementErrorRead",
    "SettlementItemRead",
    "SettlementLogRead",
    "SettlementReport",
    "SettlementRunRequest",
    "SettlementStatementRead",
    "WebhookAck",
]

"""Gateway status vocabulary and payment state-machine rules."""
from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from app.models.payment import PaymentStatus

GATEWAY_STATUS_MAP: Mapping[str, PaymentStatus] = MappingProxyType(
    {
        "READY": PaymentStatus.PENDING,
        "IN_PROGRESS": PaymentStatus.PENDING,
        "WAITING_FOR_DEPOSIT": PaymentStatus.PENDING,
        "DONE": PaymentStatus.SUCCESS,
        "CANCELED": PaymentStatus.CANCELED,
        "PARTIAL_CANCELED": PaymentStatus.CANCELED,
        "ABORTED": PaymentStatus.FAILED,
        "EXPIRED": PaymentStatus.FAILED,
    }
)

ALLOWED_TRANSITIONS: Mapping[PaymentStatus, frozenset[PaymentStatus]] = MappingProxyType(
    {
        PaymentStatus.PENDING: frozenset(
            {PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.CANCELED}
        ),
        PaymentStatus.SUCCESS: frozenset({PaymentStatus.CANCELED, PaymentStatus.REFUNDED}),
        PaymentStatus.FAILED: frozenset(),
        PaymentStatus.CANCELED: frozenset(),
        PaymentStatus.REFUNDED: frozenset(),
    }
)


def map_external_status(gateway_status: str | None) -> PaymentStatus:
    """Translate a gateway status into the internal vocabulary.

    Unknown or missing values map to ``PENDING`` so an unrecognised state never
    turns into a terminal failure.
    """

    if not gateway_status:
        return PaymentStatus.PENDING
    return GATEWAY_STATUS_MAP.get(gateway_status, PaymentStatus.PENDING)


def is_valid_transition(current: PaymentStatus | str, proposed: PaymentStatus | str) -> bool:
    """Return ``True`` when ``current -> proposed`` is an edge of the payment state machine."""

    try:
        current_status = PaymentStatus(current)
        proposed_status = PaymentStatus(proposed)
    except ValueError:
        return False
    return proposed_status in ALLOWED_TRANSITIONS[current_status]


__all__ = [
    "ALLOWED_TRANSITIONS",
    "GATEWAY_STATUS_MAP",
    "is_valid_transition",
    "map_external_status",
]

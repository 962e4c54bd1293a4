"""Reservation updates triggered by payment state changes."""
from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.reservation import Reservation
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


class ReservationUpdater(Protocol):
    """Cascade target for payment outcomes.

    Implementations write through the session they are given so the reservation
    change commits or rolls back together with the payment update.
    """

    def mark_payment_pending(self, db: Session, reservation_id: str) -> None: ...

    def mark_paid(self, db: Session, reservation_id: str) -> None: ...

    def mark_payment_failed(self, db: Session, reservation_id: str) -> None: ...

    def mark_canceled(self, db: Session, reservation_id: str) -> None: ...


class SqlReservationUpdater:
    """Default updater writing straight to the ``reservations`` table."""

    def _apply(self, db: Session, reservation_id: str, **values: str) -> None:
        result = db.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("Reservation not found for cascade", extra={"reservation_id": reservation_id})
            return
        logger.info("Reservation updated", extra={"reservation_id": reservation_id, **values})

    def mark_payment_pending(self, db: Session, reservation_id: str) -> None:
        self._apply(db, reservation_id, payment_status="pending")

    def mark_paid(self, db: Session, reservation_id: str) -> None:
        self._apply(db, reservation_id, status="confirmed", payment_status="paid")

    def mark_payment_failed(self, db: Session, reservation_id: str) -> None:
        self._apply(db, reservation_id, payment_status="failed")

    def mark_canceled(self, db: Session, reservation_id: str) -> None:
        self._apply(db, reservation_id, status="canceled", payment_status="refunded")


default_reservation_updater = SqlReservationUpdater()

__all__ = ["ReservationUpdater", "SqlReservationUpdater", "default_reservation_updater"]

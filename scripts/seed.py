"""Seed sample payments for local settlement runs."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

from dotenv import load_dotenv

load_dotenv()

from app import models
from app.config import get_settings
from app.db import create_all, session_scope


def main() -> None:
    settings = get_settings()
    print(f"Using database: {settings.database_url}")

    create_all()

    yesterday = datetime.now(tz=UTC).replace(hour=0, minute=0, second=0, microsecond=0) - timedelta(days=1)
    with session_scope() as session:
        reservation = models.Reservation(id=f"res-{uuid4().hex[:8]}", status="pending", payment_status="pending")
        session.add(reservation)
        session.add_all(
            [
                models.Payment(
                    merchant_id="store-seoul-01",
                    user_id="user-alice",
                    reservation_id=reservation.id,
                    amount_total=15000,
                    gateway_order_id=f"ORDER_{uuid4().hex[:12].upper()}",
                    status=models.PaymentStatus.SUCCESS,
                    paid_at=yesterday + timedelta(hours=9),
                ),
                models.Payment(
                    merchant_id="store-seoul-01",
                    user_id="user-bob",
                    amount_total=25000,
                    gateway_order_id=f"ORDER_{uuid4().hex[:12].upper()}",
                    status=models.PaymentStatus.SUCCESS,
                    paid_at=yesterday + timedelta(hours=15),
                ),
                models.Payment(
                    merchant_id="store-busan-02",
                    user_id="user-carol",
                    amount_total=8000,
                    gateway_order_id=f"ORDER_{uuid4().hex[:12].upper()}",
                ),
            ]
        )
        session.commit()
    print("Seed data inserted.")


if __name__ == "__main__":
    main()

import json
import time
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select, update

from app.config import get_settings
from app.models import Payment, PaymentStatus, PaymentWebhook, Reservation
from app.services.webhooks import (
    PaymentNotFoundError,
    WebhookResult,
    WebhookValidationError,
    compute_webhook_signature,
    process_webhook,
)
from app.utils.time import ensure_utc


def _payload(order_id, status="DONE", event_type="PAYMENT_STATUS_CHANGED", **data):
    body = {
        "eventType": event_type,
        "createdAt": "2026-10-01T10:00:00.000000",
        "data": {"orderId": order_id, "status": status, **data},
    }
    return body


def _webhook_count(db_session, order_id=None):
    stmt = select(func.count()).select_from(PaymentWebhook)
    if order_id is not None:
        stmt = stmt.where(PaymentWebhook.gateway_order_id == order_id)
    return db_session.scalar(stmt)


def test_done_webhook_marks_payment_succeeded(db_session, make_payment):
    payment = make_payment(status=PaymentStatus.PENDING, amount=15000)

    outcome = process_webhook(
        db_session,
        _payload(
            payment.gateway_order_id,
            paymentKey="pk_test_1",
            approvedAt="2026-10-01T10:00:00+09:00",
            totalAmount=15000,
            method="CARD",
        ),
    )

    assert outcome.applied is True
    assert outcome.reason is WebhookResult.PROCESSED
    assert outcome.success is True
    assert outcome.message == "Webhook processed successfully"

    db_session.refresh(payment)
    assert payment.status == PaymentStatus.SUCCESS
    assert payment.gateway_payment_key == "pk_test_1"
    assert payment.gateway_method == "CARD"
    assert ensure_utc(payment.paid_at) == datetime(2026, 10, 1, 1, 0, tzinfo=UTC)
    assert _webhook_count(db_session, payment.gateway_order_id) == 1

    stored = db_session.scalars(select(PaymentWebhook)).one()
    assert stored.id.startswith("webhook_")
    assert stored.payment_id == payment.id
    assert stored.event_type == "PAYMENT_STATUS_CHANGED"
    assert stored.status == "DONE"
    assert stored.payload["data"]["orderId"] == payment.gateway_order_id


def test_duplicate_delivery_is_idempotent(db_session, make_payment):
    payment = make_payment(status=PaymentStatus.PENDING)
    body = _payload(payment.gateway_order_id, approvedAt="2026-10-01T10:00:00+09:00")

    first = process_webhook(db_session, body)
    db_session.refresh(payment)
    updated_after_first = payment.updated_at

    second = process_webhook(db_session, body)

    assert first.reason is WebhookResult.PROCESSED
    assert second.reason is WebhookResult.ALREADY_PROCESSED
    assert second.applied is False
    assert second.success is True
    assert second.message == "Already processed (idempotent)"
    assert _webhook_count(db_session) == 1

    db_session.refresh(payment)
    assert payment.status == PaymentStatus.SUCCESS
    assert payment.updated_at == updated_after_first


def test_duplicate_outside_window_is_reprocessed(db_session, make_payment):
    payment = make_payment(status=PaymentStatus.PENDING)
    body = _payload(payment.gateway_order_id)
    process_webhook(db_session, body)

    db_session.execute(
        update(PaymentWebhook).values(received_at=datetime.now(UTC) - timedelta(hours=2))
    )
    db_session.commit()

    outcome = process_webhook(db_session, body)

    # SUCCESS -> SUCCESS is not an edge, but the delivery is recorded again.
    assert outcome.reason is WebhookResult.INVALID_TRANSITION
    assert _webhook_count(db_session) == 2


def test_invalid_transition_is_recorded_without_mutation(db_session, make_payment):
    payment = make_payment(status=PaymentStatus.FAILED)

    outcome = process_webhook(db_session, _payload(payment.gateway_order_id, status="DONE"))

    assert outcome.applied is False
    assert outcome.reason is WebhookResult.INVALID_TRANSITION
    assert outcome.success is False
    assert outcome.message == "Invalid status transition"
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.FAILED
    assert payment.paid_at is None
    assert _webhook_count(db_session) == 1


def test_failure_cascades_to_reservation(db_session, make_payment, make_reservation):
    reservation = make_reservation()
    payment = make_payment(status=PaymentStatus.PENDING, reservation_id=reservation.id)

    outcome = process_webhook(db_session, _payload(payment.gateway_order_id, status="ABORTED"))

    assert outcome.reason is WebhookResult.PROCESSED
    db_session.expire_all()
    assert db_session.get(Payment, payment.id).status == PaymentStatus.FAILED
    stored = db_session.get(Reservation, reservation.id)
    assert stored.payment_status == "failed"
    assert stored.status == "pending"


def test_success_cascades_to_reservation(db_session, make_payment, make_reservation):
    reservation = make_reservation()
    payment = make_payment(status=PaymentStatus.PENDING, reservation_id=reservation.id)

    process_webhook(db_session, _payload(payment.gateway_order_id))

    db_session.expire_all()
    stored = db_session.get(Reservation, reservation.id)
    assert stored.status == "confirmed"
    assert stored.payment_status == "paid"


def test_cancel_event_cancels_paid_payment(db_session, make_payment, make_reservation):
    reservation = make_reservation(status="confirmed", payment_status="paid")
    payment = make_payment(status=PaymentStatus.SUCCESS, reservation_id=reservation.id)

    outcome = process_webhook(
        db_session,
        _payload(payment.gateway_order_id, status="CANCELED", event_type="PAYMENT_CANCELED"),
    )

    assert outcome.reason is WebhookResult.PROCESSED
    db_session.expire_all()
    stored_payment = db_session.get(Payment, payment.id)
    assert stored_payment.status == PaymentStatus.CANCELED
    assert stored_payment.canceled_at is not None
    stored_reservation = db_session.get(Reservation, reservation.id)
    assert stored_reservation.status == "canceled"
    assert stored_reservation.payment_status == "refunded"


def test_status_changed_to_canceled_is_recorded_only(db_session, make_payment):
    payment = make_payment(status=PaymentStatus.SUCCESS)

    outcome = process_webhook(db_session, _payload(payment.gateway_order_id, status="CANCELED"))

    assert outcome.reason is WebhookResult.IGNORED
    assert outcome.applied is False
    assert outcome.success is True
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.SUCCESS
    assert _webhook_count(db_session) == 1


def test_unknown_event_type_is_ignored(db_session, make_payment):
    payment = make_payment(status=PaymentStatus.PENDING)

    outcome = process_webhook(db_session, _payload(payment.gateway_order_id, event_type="DEPOSIT_CALLBACK"))

    assert outcome.reason is WebhookResult.IGNORED
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.PENDING
    assert _webhook_count(db_session) == 1


def test_unknown_order_raises_not_found(db_session):
    with pytest.raises(PaymentNotFoundError):
        process_webhook(db_session, _payload("ORDER_MISSING"))
    assert _webhook_count(db_session) == 0


@pytest.mark.parametrize(
    "body",
    [
        {"data": {"orderId": "ORDER_X", "status": "DONE"}},
        {"eventType": "PAYMENT_STATUS_CHANGED", "data": {"status": "DONE"}},
        {"eventType": "PAYMENT_STATUS_CHANGED", "data": "not-an-object"},
    ],
)
def test_malformed_payload_raises_validation_error(db_session, body):
    with pytest.raises(WebhookValidationError):
        process_webhook(db_session, body)


def test_cascade_failure_rolls_back_everything(db_session, make_payment, make_reservation):
    class ExplodingReservations:
        def mark_paid(self, db, reservation_id):
            raise RuntimeError("reservation service down")

        def mark_payment_failed(self, db, reservation_id):
            raise RuntimeError("reservation service down")

        def mark_canceled(self, db, reservation_id):
            raise RuntimeError("reservation service down")

    reservation = make_reservation()
    payment = make_payment(status=PaymentStatus.PENDING, reservation_id=reservation.id)

    with pytest.raises(RuntimeError):
        process_webhook(db_session, _payload(payment.gateway_order_id), reservations=ExplodingReservations())

    db_session.expire_all()
    assert db_session.get(Payment, payment.id).status == PaymentStatus.PENDING
    assert _webhook_count(db_session) == 0


# --- HTTP surface -------------------------------------------------------------


@pytest.mark.anyio("asyncio")
async def test_gateway_route_acknowledges_success(client, db_session, make_payment):
    payment = make_payment(status=PaymentStatus.PENDING)

    response = await client.post("/webhooks/gateway", json=_payload(payment.gateway_order_id))

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Webhook processed successfully", "error": None}
    db_session.expire_all()
    assert db_session.get(Payment, payment.id).status == PaymentStatus.SUCCESS


@pytest.mark.anyio("asyncio")
async def test_gateway_route_returns_200_for_unknown_order(client):
    response = await client.post("/webhooks/gateway", json=_payload("ORDER_DOES_NOT_EXIST"))

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Webhook processing failed"
    assert "ORDER_DOES_NOT_EXIST" in body["error"]


@pytest.mark.anyio("asyncio")
async def test_gateway_route_reports_invalid_transition(client, make_payment):
    payment = make_payment(status=PaymentStatus.FAILED)

    response = await client.post("/webhooks/gateway", json=_payload(payment.gateway_order_id))

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["message"] == "Invalid status transition"


@pytest.mark.anyio("asyncio")
async def test_gateway_route_rejects_garbage_body_with_200(client):
    response = await client.post(
        "/webhooks/gateway", content=b"{not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["error"] == "Invalid JSON body"


@pytest.mark.anyio("asyncio")
async def test_gateway_route_enforces_signature_when_configured(client, monkeypatch, make_payment):
    monkeypatch.setattr(get_settings(), "gateway_webhook_secret", "whsec_test")
    payment = make_payment(status=PaymentStatus.PENDING)
    raw = json.dumps(_payload(payment.gateway_order_id)).encode()

    unsigned = await client.post("/webhooks/gateway", content=raw, headers={"Content-Type": "application/json"})
    assert unsigned.status_code == 200
    assert unsigned.json()["message"] == "Webhook signature rejected"

    ts = str(int(time.time()))
    bad = await client.post(
        "/webhooks/gateway",
        content=raw,
        headers={"Content-Type": "application/json", "X-Webhook-Signature": "deadbeef", "X-Webhook-Timestamp": ts},
    )
    assert bad.json()["success"] is False

    good = await client.post(
        "/webhooks/gateway",
        content=raw,
        headers={
            "Content-Type": "application/json",
            "X-Webhook-Signature": compute_webhook_signature("whsec_test", raw, ts),
            "X-Webhook-Timestamp": ts,
        },
    )
    assert good.json() == {"success": True, "message": "Webhook processed successfully", "error": None}


@pytest.mark.anyio("asyncio")
async def test_gateway_route_rejects_stale_timestamp(client, monkeypatch, make_payment):
    monkeypatch.setattr(get_settings(), "gateway_webhook_secret", "whsec_test")
    payment = make_payment(status=PaymentStatus.PENDING)
    raw = json.dumps(_payload(payment.gateway_order_id)).encode()
    ts = str(int(time.time()) - 3600)

    response = await client.post(
        "/webhooks/gateway",
        content=raw,
        headers={
            "Content-Type": "application/json",
            "X-Webhook-Signature": compute_webhook_signature("whsec_test", raw, ts),
            "X-Webhook-Timestamp": ts,
        },
    )

    assert response.json()["success"] is False
    assert "outside allowed window" in response.json()["error"]


def test_missing_reservation_does_not_block_payment(db_session, make_payment):
    payment = make_payment(status=PaymentStatus.PENDING, reservation_id="res-gone")

    outcome = process_webhook(db_session, _payload(payment.gateway_order_id))

    assert outcome.reason is WebhookResult.PROCESSED
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.SUCCESS

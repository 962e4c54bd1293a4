from datetime import UTC, datetime

import pytest

from app.config import get_settings

RUN_BODY = {"period_start": "2026-10-01T00:00:00Z", "period_end": "2026-10-02T00:00:00Z"}


@pytest.mark.anyio("asyncio")
async def test_settlement_routes_require_api_key(client):
    response = await client.post("/settlements/run", json=RUN_BODY)

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "NO_API_KEY"


@pytest.mark.anyio("asyncio")
async def test_settlement_routes_reject_wrong_key(client):
    response = await client.get("/settlements/statements", headers={"X-API-Key": "nope"})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "INVALID_API_KEY"


@pytest.mark.anyio("asyncio")
async def test_settlement_routes_unavailable_without_configured_key(client, monkeypatch, admin_headers):
    monkeypatch.setattr(get_settings(), "ADMIN_API_KEY", None)

    response = await client.get("/settlements/statements", headers=admin_headers)

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "ADMIN_KEY_NOT_CONFIGURED"


@pytest.mark.anyio("asyncio")
async def test_run_settlement_over_http(client, admin_headers, make_payment):
    make_payment(amount=15000)
    make_payment(amount=25000)

    response = await client.post("/settlements/run", json=RUN_BODY, headers=admin_headers)

    assert response.status_code == 200
    report = response.json()
    assert report["status"] == "success"
    assert report["total_statements"] == 1
    assert report["total_commission"] == 8000
    assert report["total_payout"] == 32000

    log = await client.get(f"/settlements/logs/{report['log_id']}", headers=admin_headers)
    assert log.status_code == 200
    assert log.json()["status"] == "success"
    assert log.json()["success_payments"] == 2
    assert log.json()["errors"] == []

    statements = await client.get("/settlements/statements", params={"status": "pending"}, headers=admin_headers)
    assert statements.status_code == 200
    (statement,) = statements.json()
    assert statement["merchant_id"] == "store-1"
    assert statement["total_sales"] == 40000
    assert len(statement["items"]) == 2


@pytest.mark.anyio("asyncio")
async def test_dry_run_over_http(client, admin_headers, make_payment):
    make_payment(amount=15000)

    response = await client.post("/settlements/run", json={**RUN_BODY, "dry_run": True}, headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["dry_run"] is True
    assert response.json()["settlements"][0]["statement_id"] is None

    statements = await client.get("/settlements/statements", headers=admin_headers)
    assert statements.json() == []


@pytest.mark.anyio("asyncio")
async def test_inverted_period_is_bad_request(client, admin_headers):
    body = {"period_start": RUN_BODY["period_end"], "period_end": RUN_BODY["period_start"]}

    response = await client.post("/settlements/run", json=body, headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "SETTLEMENT_INVALID_PERIOD"


@pytest.mark.anyio("asyncio")
async def test_missing_period_is_validation_error(client, admin_headers):
    response = await client.post("/settlements/run", json={"dry_run": True}, headers=admin_headers)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.anyio("asyncio")
async def test_unknown_log_is_404(client, admin_headers):
    response = await client.get("/settlements/logs/999999", headers=admin_headers)

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "SETTLEMENT_LOG_NOT_FOUND"


@pytest.mark.anyio("asyncio")
async def test_statement_filters(client, admin_headers, make_payment):
    make_payment(merchant_id="store-a", amount=1000)
    make_payment(merchant_id="store-b", amount=2000)
    await client.post("/settlements/run", json=RUN_BODY, headers=admin_headers)

    response = await client.get("/settlements/statements", params={"merchant_id": "store-b"}, headers=admin_headers)

    assert [s["merchant_id"] for s in response.json()] == ["store-b"]
    paid = await client.get("/settlements/statements", params={"status": "paid"}, headers=admin_headers)
    assert paid.json() == []


@pytest.mark.anyio("asyncio")
async def test_payout_marking_flow(client, admin_headers, make_payment):
    make_payment(amount=15000)
    run = await client.post("/settlements/run", json=RUN_BODY, headers=admin_headers)
    statement_id = run.json()["settlements"][0]["statement_id"]

    paid = await client.post(
        f"/settlements/statements/{statement_id}/payout",
        json={"status": "paid", "payout_at": datetime(2026, 10, 3, tzinfo=UTC).isoformat()},
        headers=admin_headers,
    )
    assert paid.status_code == 200
    assert paid.json()["status"] == "paid"
    assert paid.json()["payout_at"].startswith("2026-10-03T00:00:00")

    again = await client.post(f"/settlements/statements/{statement_id}/payout", json={}, headers=admin_headers)
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "STATEMENT_NOT_PENDING"


@pytest.mark.anyio("asyncio")
async def test_payout_for_unknown_statement(client, admin_headers):
    response = await client.post("/settlements/statements/424242/payout", json={}, headers=admin_headers)

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "STATEMENT_NOT_FOUND"


@pytest.mark.anyio("asyncio")
async def test_payout_cannot_reset_to_pending(client, admin_headers):
    response = await client.post(
        "/settlements/statements/1/payout", json={"status": "pending"}, headers=admin_headers
    )

    assert response.status_code == 422

"""
Integration tests for the REST API endpoints.

Runs the real app against the SQLite file from ``conftest`` with the
dispatcher loop patched out.  Callers identify themselves with the
``X-User-Id`` header.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from ride2school.workers.dispatcher import run_dispatch_cycle

API = "/api/v1"

RIDE_REQUEST = {
    "origin": {"lat": -26.1076, "lng": 28.0567, "address": "12 Rivonia Rd"},
    "destination": {"lat": -26.1030, "lng": 28.0600, "address": "Sandton Primary"},
    "destination_name": "Sandton Primary",
    "estimated_fare": "120.00",
}


def as_(actor) -> dict[str, str]:
    return {"X-User-Id": actor.id}


async def _open(client, parent, **overrides) -> str:
    resp = await client.post(
        f"{API}/ride-requests", json={**RIDE_REQUEST, **overrides}, headers=as_(parent)
    )
    assert resp.status_code == 201
    return resp.json()["id"]


async def _accepted(client, users) -> dict:
    request_id = await _open(client, users.parent)
    resp = await client.post(
        f"{API}/ride-requests/{request_id}/accept", headers=as_(users.driver)
    )
    assert resp.status_code == 200
    return resp.json()


async def _started(client, users) -> str:
    accepted = await _accepted(client, users)
    resp = await client.post(
        f"{API}/rides/{accepted['id']}/verify-otp",
        json={"otp": accepted["otp"]},
        headers=as_(users.driver),
    )
    assert resp.status_code == 200
    return accepted["id"]


# ── Health / auth ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get(f"{API}/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_user_header_is_unauthenticated(client):
    resp = await client.get(f"{API}/rides/active")
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "UNAUTHENTICATED"


@pytest.mark.asyncio
async def test_unknown_user_is_unauthenticated(client):
    resp = await client.get(f"{API}/wallet", headers={"X-User-Id": "nobody"})
    assert resp.status_code == 401


# ── Ride requests ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_ride_request(client, users):
    resp = await client.post(
        f"{API}/ride-requests", json=RIDE_REQUEST, headers=as_(users.parent)
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] == "pending"
    assert data["parent_id"] == users.parent.id
    assert Decimal(data["estimated_fare"]) == Decimal("120.00")


@pytest.mark.asyncio
async def test_create_ride_request_estimates_fare_when_omitted(client, users):
    body = {k: v for k, v in RIDE_REQUEST.items() if k != "estimated_fare"}
    resp = await client.post(f"{API}/ride-requests", json=body, headers=as_(users.parent))
    assert resp.status_code == 201
    assert Decimal(resp.json()["estimated_fare"]) > 0


@pytest.mark.asyncio
async def test_create_ride_request_validation_error(client, users):
    bad = {**RIDE_REQUEST, "origin": {"lat": 999, "lng": 28.0}}
    resp = await client.post(f"{API}/ride-requests", json=bad, headers=as_(users.parent))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_driver_cannot_create_ride_request(client, users):
    resp = await client.post(
        f"{API}/ride-requests", json=RIDE_REQUEST, headers=as_(users.driver)
    )
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_ride_request_above_balance_is_refused(client, users):
    resp = await client.post(
        f"{API}/ride-requests",
        json={**RIDE_REQUEST, "estimated_fare": "900.00"},
        headers=as_(users.parent),
    )
    assert resp.status_code == 402
    assert resp.json()["detail"]["code"] == "INSUFFICIENT_FUNDS"


@pytest.mark.asyncio
async def test_drivers_see_open_requests_parents_see_their_own(client, users):
    await _open(client, users.parent)
    await _open(client, users.other_parent)

    resp = await client.get(f"{API}/ride-requests", headers=as_(users.driver))
    assert len(resp.json()) == 2

    resp = await client.get(f"{API}/ride-requests", headers=as_(users.parent))
    assert [r["parent_id"] for r in resp.json()] == [users.parent.id]


# ── Lifecycle ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_accept_returns_otp_and_keeps_the_id(client, users):
    request_id = await _open(client, users.parent)
    resp = await client.post(
        f"{API}/ride-requests/{request_id}/accept", headers=as_(users.driver)
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["id"] == request_id
    assert len(data["otp"]) == 6 and data["otp"].isdigit()
    assert Decimal(data["fare"]) == Decimal("120.00")


@pytest.mark.asyncio
async def test_accept_twice_is_conflict(client, users):
    accepted = await _accepted(client, users)
    resp = await client.post(
        f"{API}/ride-requests/{accepted['id']}/accept",
        headers=as_(users.other_driver),
    )
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "INVALID_STATUS"
    assert resp.json()["detail"]["current_status"] == "scheduled"


@pytest.mark.asyncio
async def test_active_rides_hide_otp_from_driver(client, users):
    accepted = await _accepted(client, users)

    resp = await client.get(f"{API}/rides/active", headers=as_(users.parent))
    assert [r["otp"] for r in resp.json()] == [accepted["otp"]]

    resp = await client.get(f"{API}/rides/active", headers=as_(users.driver))
    assert [r["otp"] for r in resp.json()] == [None]


@pytest.mark.asyncio
async def test_wrong_otp_is_rejected(client, users):
    accepted = await _accepted(client, users)
    wrong = "000000" if accepted["otp"] != "000000" else "111111"
    resp = await client.post(
        f"{API}/rides/{accepted['id']}/verify-otp",
        json={"otp": wrong},
        headers=as_(users.driver),
    )
    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "INVALID_OTP"


@pytest.mark.asyncio
async def test_malformed_otp_fails_validation(client, users):
    accepted = await _accepted(client, users)
    resp = await client.post(
        f"{API}/rides/{accepted['id']}/verify-otp",
        json={"otp": "12ab"},
        headers=as_(users.driver),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_parent_regenerates_otp(client, users):
    accepted = await _accepted(client, users)
    resp = await client.post(
        f"{API}/rides/{accepted['id']}/otp", headers=as_(users.parent)
    )
    assert resp.status_code == 200
    assert resp.json()["ride_id"] == accepted["id"]

    resp = await client.post(
        f"{API}/rides/{accepted['id']}/otp", headers=as_(users.driver)
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_driver_reports_location(client, users):
    ride_id = await _started(client, users)
    resp = await client.patch(
        f"{API}/rides/{ride_id}/location",
        json={"lat": -26.105, "lng": 28.058},
        headers=as_(users.driver),
    )
    assert resp.status_code == 200
    assert resp.json()["current_location_lat"] == pytest.approx(-26.105)
    assert resp.json()["otp"] is None


@pytest.mark.asyncio
async def test_complete_settles_and_is_idempotent(client, users):
    ride_id = await _started(client, users)

    resp = await client.post(f"{API}/rides/{ride_id}/complete", headers=as_(users.driver))
    assert resp.status_code == 200
    first = resp.json()
    assert first["already_completed"] is False
    assert Decimal(first["platform_fee"]) == Decimal("12.00")
    assert Decimal(first["driver_earnings"]) == Decimal("108.00")

    resp = await client.post(f"{API}/rides/{ride_id}/complete", headers=as_(users.driver))
    assert resp.status_code == 200
    assert resp.json()["already_completed"] is True

    resp = await client.get(f"{API}/rides/{ride_id}", headers=as_(users.parent))
    assert resp.json()["partition"] == "completed"
    assert resp.json()["status"] == "completed"


@pytest.mark.asyncio
async def test_parent_cannot_complete(client, users):
    ride_id = await _started(client, users)
    resp = await client.post(f"{API}/rides/{ride_id}/complete", headers=as_(users.parent))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_non_party_cancel_is_forbidden(client, users):
    accepted = await _accepted(client, users)
    resp = await client.post(
        f"{API}/rides/{accepted['id']}/cancel", headers=as_(users.other_parent)
    )
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_driver_cancel_in_progress_needs_reason(client, users):
    ride_id = await _started(client, users)
    resp = await client.post(f"{API}/rides/{ride_id}/cancel", headers=as_(users.driver))
    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "VALIDATION_ERROR"

    resp = await client.post(
        f"{API}/rides/{ride_id}/cancel",
        json={"reason": "Flat tyre"},
        headers=as_(users.driver),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["cancelled_by_type"] == "driver"
    assert Decimal(data["penalty_applied"]) == Decimal("12.00")
    assert data["penalty_recipient"] == users.parent.id


@pytest.mark.asyncio
async def test_driver_cancel_scheduled_reopens_request(client, users):
    accepted = await _accepted(client, users)
    resp = await client.post(
        f"{API}/rides/{accepted['id']}/cancel", headers=as_(users.driver)
    )
    assert resp.status_code == 200
    assert resp.json()["outcome"] == "reopened"

    resp = await client.get(f"{API}/rides/{accepted['id']}", headers=as_(users.other_driver))
    assert resp.status_code == 200
    assert resp.json()["partition"] == "requests"


@pytest.mark.asyncio
async def test_get_unknown_ride_is_404(client, users):
    resp = await client.get(f"{API}/rides/does-not-exist", headers=as_(users.parent))
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "RIDE_NOT_FOUND"


@pytest.mark.asyncio
async def test_get_ride_forbidden_for_stranger(client, users):
    accepted = await _accepted(client, users)
    resp = await client.get(
        f"{API}/rides/{accepted['id']}", headers=as_(users.other_parent)
    )
    assert resp.status_code == 403


# ── Side effects ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_events_notifications_and_messages(client, users, session_factory, fake_redis):
    accepted = await _accepted(client, users)

    resp = await client.get(
        f"{API}/admin/rides/{accepted['id']}/events", headers=as_(users.parent)
    )
    assert [e["status"] for e in resp.json()] == ["pending", "pending"]

    assert await run_dispatch_cycle(session_factory, fake_redis) == 2

    resp = await client.get(f"{API}/notifications", headers=as_(users.parent))
    notes = resp.json()
    assert [n["type"] for n in notes] == ["ride_accepted"]
    assert notes[0]["is_read"] is False

    resp = await client.post(
        f"{API}/notifications/{notes[0]['id']}/read", headers=as_(users.parent)
    )
    assert resp.status_code == 204
    resp = await client.get(
        f"{API}/notifications", params={"unread_only": True}, headers=as_(users.parent)
    )
    assert resp.json() == []

    resp = await client.get(
        f"{API}/rides/{accepted['id']}/messages", headers=as_(users.parent)
    )
    messages = resp.json()
    assert len(messages) == 1
    assert messages[0]["sender_id"] == users.driver.id
    assert messages[0]["is_read"] is False


@pytest.mark.asyncio
async def test_mark_someone_elses_notification_is_404(client, users, session_factory, fake_redis):
    await _accepted(client, users)
    await run_dispatch_cycle(session_factory, fake_redis)
    notes = (await client.get(f"{API}/notifications", headers=as_(users.parent))).json()

    resp = await client.post(
        f"{API}/notifications/{notes[0]['id']}/read", headers=as_(users.other_parent)
    )
    assert resp.status_code == 404


# ── Wallet ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_wallet_top_up_and_withdraw(client, users):
    resp = await client.post(
        f"{API}/wallet/top-up", json={"amount": "100.00"}, headers=as_(users.parent)
    )
    assert resp.status_code == 201
    assert Decimal(resp.json()["balance"]) == Decimal("600.00")

    resp = await client.post(
        f"{API}/wallet/withdraw", json={"amount": "50.00"}, headers=as_(users.parent)
    )
    assert resp.status_code == 201
    assert Decimal(resp.json()["balance"]) == Decimal("550.00")

    resp = await client.post(
        f"{API}/wallet/withdraw", json={"amount": "5000.00"}, headers=as_(users.parent)
    )
    assert resp.status_code == 402
    assert resp.json()["detail"]["code"] == "INSUFFICIENT_FUNDS"


@pytest.mark.asyncio
async def test_wallet_rejects_non_positive_amount(client, users):
    resp = await client.post(
        f"{API}/wallet/top-up", json={"amount": "0"}, headers=as_(users.parent)
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_wallet_history_and_summary(client, users):
    ride_id = await _started(client, users)
    await client.post(f"{API}/rides/{ride_id}/complete", headers=as_(users.driver))

    resp = await client.get(f"{API}/wallet/transactions", headers=as_(users.driver))
    rows = resp.json()
    assert [r["transaction_type"] for r in rows] == ["ride_earnings"]
    assert Decimal(rows[0]["net_amount"]) == Decimal("108.00")

    resp = await client.get(
        f"{API}/wallet/transactions",
        params={"direction": "debit"},
        headers=as_(users.driver),
    )
    assert resp.json() == []

    resp = await client.get(
        f"{API}/wallet/summary", params={"period": "all"}, headers=as_(users.parent)
    )
    summary = resp.json()
    assert summary["period"] == "all"
    assert Decimal(summary["total_debits"]) == Decimal("120.00")
    assert summary["transaction_count"] == 1

    resp = await client.get(f"{API}/wallet", headers=as_(users.parent))
    assert Decimal(resp.json()["balance"]) == Decimal("380.00")


@pytest.mark.asyncio
async def test_wallet_summary_rejects_unknown_period(client, users):
    resp = await client.get(
        f"{API}/wallet/summary", params={"period": "decade"}, headers=as_(users.parent)
    )
    assert resp.status_code == 422


# ── Drivers ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_driver_goes_offline_and_cannot_accept(client, users):
    resp = await client.patch(
        f"{API}/drivers/me/status", json={"is_online": False}, headers=as_(users.driver)
    )
    assert resp.status_code == 200
    assert resp.json()["is_online"] is False

    request_id = await _open(client, users.parent)
    resp = await client.post(
        f"{API}/ride-requests/{request_id}/accept", headers=as_(users.driver)
    )
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "DRIVER_OFFLINE"


@pytest.mark.asyncio
async def test_parent_has_no_driver_status(client, users):
    resp = await client.patch(
        f"{API}/drivers/me/status", json={"is_online": True}, headers=as_(users.parent)
    )
    assert resp.status_code == 403


# ── Chat, ratings, history, earnings ──────────────────────────────────


@pytest.mark.asyncio
async def test_party_sends_and_reads_ride_chat(client, users):
    accepted = await _accepted(client, users)
    resp = await client.post(
        f"{API}/rides/{accepted['id']}/messages",
        json={"content": "We're at the side gate"},
        headers=as_(users.parent),
    )
    assert resp.status_code == 201
    assert resp.json()["recipient_id"] == users.driver.id

    resp = await client.get(
        f"{API}/rides/{accepted['id']}/messages", headers=as_(users.driver)
    )
    assert [m["content"] for m in resp.json()] == ["We're at the side gate"]

    resp = await client.post(
        f"{API}/rides/{accepted['id']}/messages",
        json={"content": "hello"},
        headers=as_(users.other_parent),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_rate_completed_ride(client, users):
    ride_id = await _started(client, users)

    resp = await client.post(
        f"{API}/rides/{ride_id}/rating", json={"rating": 5}, headers=as_(users.parent)
    )
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "INVALID_STATUS"

    await client.post(f"{API}/rides/{ride_id}/complete", headers=as_(users.driver))
    resp = await client.post(
        f"{API}/rides/{ride_id}/rating",
        json={"rating": 5, "comment": "Lovely driver"},
        headers=as_(users.parent),
    )
    assert resp.status_code == 201
    assert resp.json()["rated_type"] == "driver"
    assert resp.json()["rated_id"] == users.driver.id

    resp = await client.post(
        f"{API}/rides/{ride_id}/rating", json={"rating": 4}, headers=as_(users.parent)
    )
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "ALREADY_RATED"

    resp = await client.post(
        f"{API}/rides/{ride_id}/rating", json={"rating": 0}, headers=as_(users.driver)
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_ride_history_and_earnings(client, users):
    done = await _started(client, users)
    await client.post(f"{API}/rides/{done}/complete", headers=as_(users.driver))
    dropped = await _accepted(client, users)
    await client.post(f"{API}/rides/{dropped['id']}/cancel", headers=as_(users.parent))

    resp = await client.get(f"{API}/rides/history", headers=as_(users.driver))
    assert resp.status_code == 200
    history = resp.json()
    assert [(h["id"], h["partition"]) for h in history] == [
        (dropped["id"], "cancelled"),
        (done, "completed"),
    ]
    assert Decimal(history[1]["driver_earnings"]) == Decimal("108.00")

    resp = await client.get(
        f"{API}/rides/history", params={"limit": 1}, headers=as_(users.parent)
    )
    assert [h["id"] for h in resp.json()] == [dropped["id"]]

    resp = await client.get(f"{API}/drivers/me/earnings", headers=as_(users.driver))
    assert resp.status_code == 200
    earnings = resp.json()
    assert earnings["rides"] == 1
    assert Decimal(earnings["total"]) == Decimal("108.00")
    assert Decimal(earnings["month"]) == Decimal("108.00")

    resp = await client.get(f"{API}/drivers/me/earnings", headers=as_(users.parent))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_reopened_request_reports_count(client, users):
    accepted = await _accepted(client, users)
    await client.post(
        f"{API}/rides/{accepted['id']}/cancel",
        json={"reason": "Car won't start"},
        headers=as_(users.driver),
    )
    resp = await client.get(f"{API}/ride-requests", headers=as_(users.parent))
    (request,) = resp.json()
    assert request["reopened_count"] == 1
    assert request["last_cancellation_reason"] == "Car won't start"


@pytest.mark.asyncio
async def test_ride_events_hidden_from_strangers(client, users):
    accepted = await _accepted(client, users)
    resp = await client.get(
        f"{API}/admin/rides/{accepted['id']}/events", headers=as_(users.other_parent)
    )
    assert resp.status_code == 403

    resp = await client.get(f"{API}/admin/rides/{accepted['id']}/events")
    assert resp.status_code == 401

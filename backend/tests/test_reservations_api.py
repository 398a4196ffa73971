"""Reservation and ledger API integration tests."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest
from httpx import AsyncClient

from storefront.db.session import get_sessionmaker
from storefront.models import OrderType, StoreOrder

pytestmark = pytest.mark.asyncio


def _slot(days: int = 2, hour: int = 12) -> str:
    base = datetime.now(UTC) + timedelta(days=days)
    return base.replace(hour=hour, minute=0, second=0, microsecond=0).isoformat()


def _customer_headers(user_id: uuid.UUID) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}


_STAFF_HEADERS = {"X-User-Id": str(uuid.uuid4()), "X-Actor-Role": "staff"}


async def _create_order(app_context: dict[str, Any]) -> str:
    async with get_sessionmaker()() as session:
        order = StoreOrder(
            store_id=app_context["store_id"],
            order_type=OrderType.STANDARD,
            order_total=Decimal("100.00"),
        )
        session.add(order)
        await session.commit()
        return str(order.id)


async def test_reservation_lifecycle_over_http(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]  # type: ignore[assignment]
    store_id = app_context["store_id"]
    base = f"/api/v1/stores/{store_id}/reservations"
    customer_id = uuid.uuid4()

    create_resp = await client.post(
        base,
        json={
            "facility_id": str(app_context["facility_id"]),
            "rsvp_time": _slot(),
            "num_of_adult": 2,
            "name": "Parker",
        },
        headers=_customer_headers(customer_id),
    )
    assert create_resp.status_code == 201
    reservation = create_resp.json()
    reservation_id = reservation["id"]
    assert reservation["status"] == "pending"
    assert reservation["customer_id"] == str(customer_id)
    assert isinstance(reservation["rsvp_time"], int)

    get_resp = await client.get(
        f"{base}/{reservation_id}", headers=_customer_headers(customer_id)
    )
    assert get_resp.status_code == 200

    other_resp = await client.get(
        f"{base}/{reservation_id}", headers=_customer_headers(uuid.uuid4())
    )
    assert other_resp.status_code == 404

    forbidden = await client.post(
        f"{base}/{reservation_id}/confirm", headers=_customer_headers(customer_id)
    )
    assert forbidden.status_code == 403

    confirm_resp = await client.post(f"{base}/{reservation_id}/confirm", headers=_STAFF_HEADERS)
    assert confirm_resp.status_code == 200
    assert confirm_resp.json()["status"] == "ready"

    check_in_resp = await client.post(
        f"{base}/check-in",
        json={"check_in_code": reservation["check_in_code"]},
        headers=_STAFF_HEADERS,
    )
    assert check_in_resp.status_code == 200
    body = check_in_resp.json()
    assert body["already_checked_in"] is False
    assert body["reservation"]["status"] == "checked_in"

    repeat = await client.post(
        f"{base}/check-in",
        json={"reservation_id": reservation_id},
        headers=_customer_headers(customer_id),
    )
    assert repeat.status_code == 200
    assert repeat.json()["already_checked_in"] is True

    complete_resp = await client.post(
        f"{base}/{reservation_id}/complete", headers=_STAFF_HEADERS
    )
    assert complete_resp.status_code == 200
    assert complete_resp.json()["status"] == "completed"

    cancel_resp = await client.post(
        f"{base}/{reservation_id}/cancel", headers=_STAFF_HEADERS
    )
    assert cancel_resp.status_code == 409

    list_resp = await client.get(base, params={"status": "completed"}, headers=_STAFF_HEADERS)
    assert list_resp.status_code == 200
    assert [item["id"] for item in list_resp.json()] == [reservation_id]

    dispatcher = app_context["dispatcher"]
    assert dispatcher.types == ["created", "status_changed", "status_changed", "completed"]


async def test_conflict_and_validation_errors(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]  # type: ignore[assignment]
    store_id = app_context["store_id"]
    base = f"/api/v1/stores/{store_id}/reservations"
    payload = {"facility_id": str(app_context["facility_id"]), "rsvp_time": _slot()}

    first = await client.post(base, json=payload, headers=_customer_headers(uuid.uuid4()))
    assert first.status_code == 201

    clash = await client.post(base, json=payload, headers=_customer_headers(uuid.uuid4()))
    assert clash.status_code == 409
    assert clash.json()["detail"]["rule"] == "facility"

    anonymous = await client.post(base, json={**payload, "rsvp_time": _slot(days=4)})
    assert anonymous.status_code == 400

    invalid = await client.post(
        base,
        json={**payload, "num_of_adult": 0},
        headers=_customer_headers(uuid.uuid4()),
    )
    assert invalid.status_code == 422

    bad_header = await client.post(base, json=payload, headers={"X-User-Id": "nope"})
    assert bad_header.status_code == 400

    missing = await client.post(
        f"{base}/{uuid.uuid4()}/confirm", headers=_STAFF_HEADERS
    )
    assert missing.status_code == 404

    not_staff = await client.get(base, headers=_customer_headers(uuid.uuid4()))
    assert not_staff.status_code == 403


async def test_edit_and_delete_over_http(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]  # type: ignore[assignment]
    store_id = app_context["store_id"]
    base = f"/api/v1/stores/{store_id}/reservations"
    customer_id = uuid.uuid4()
    headers = _customer_headers(customer_id)

    created = await client.post(
        base,
        json={"facility_id": str(app_context["facility_id"]), "rsvp_time": _slot()},
        headers=headers,
    )
    reservation_id = created.json()["id"]

    patch_resp = await client.patch(
        f"{base}/{reservation_id}", json={"num_of_child": 1}, headers=headers
    )
    assert patch_resp.status_code == 200
    assert patch_resp.json()["num_of_child"] == 1

    staff_delete = await client.delete(f"{base}/{reservation_id}", headers=_STAFF_HEADERS)
    assert staff_delete.status_code == 403

    delete_resp = await client.delete(f"{base}/{reservation_id}", headers=headers)
    assert delete_resp.status_code == 204

    gone = await client.get(f"{base}/{reservation_id}", headers=_STAFF_HEADERS)
    assert gone.status_code == 404


async def test_staff_booking_and_order_payment(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]  # type: ignore[assignment]
    store_id = app_context["store_id"]

    staff_resp = await client.post(
        f"/api/v1/stores/{store_id}/reservations/staff",
        json={
            "facility_id": str(app_context["facility_id"]),
            "rsvp_time": _slot(days=5),
            "status": "ready",
            "name": "Walk-in",
        },
        headers=_STAFF_HEADERS,
    )
    assert staff_resp.status_code == 201
    assert staff_resp.json()["status"] == "ready"
    assert staff_resp.json()["confirmed_by_store"] is True

    order_id = await _create_order(app_context)

    paid = await client.post(
        f"/api/v1/orders/{order_id}/paid",
        json={"payment_method_id": str(app_context["payment_method_id"])},
        headers=_STAFF_HEADERS,
    )
    assert paid.status_code == 200
    body = paid.json()
    assert body["already_processed"] is False
    assert body["ledger_entry"]["sequence"] == 1
    assert float(body["payment_cost"]) == pytest.approx(-4.15)

    replay = await client.post(
        f"/api/v1/orders/{order_id}/paid", headers=_STAFF_HEADERS
    )
    assert replay.status_code == 200
    assert replay.json()["already_processed"] is True

    balance = await client.get(
        f"/api/v1/stores/{store_id}/ledger/balance", headers=_STAFF_HEADERS
    )
    assert balance.status_code == 200
    assert float(balance.json()["balance"]) == pytest.approx(96.0)
    assert balance.json()["entries"] == 1

    entries = await client.get(f"/api/v1/stores/{store_id}/ledger", headers=_STAFF_HEADERS)
    assert entries.status_code == 200
    assert len(entries.json()) == 1

    verify = await client.post(
        f"/api/v1/stores/{store_id}/ledger/verify", headers=_STAFF_HEADERS
    )
    assert verify.status_code == 200

    unknown = await client.post(f"/api/v1/orders/{uuid.uuid4()}/paid", headers=_STAFF_HEADERS)
    assert unknown.status_code == 404



async def test_acknowledge_and_cleanup_over_http(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]  # type: ignore[assignment]
    store_id = app_context["store_id"]
    base = f"/api/v1/stores/{store_id}/reservations"
    customer_id = uuid.uuid4()
    headers = _customer_headers(customer_id)

    created = await client.post(
        base,
        json={"facility_id": str(app_context["facility_id"]), "rsvp_time": _slot()},
        headers=headers,
    )
    reservation_id = created.json()["id"]
    assert created.json()["confirmed_by_customer"] is False

    stranger = await client.post(
        f"{base}/{reservation_id}/acknowledge", headers=_customer_headers(uuid.uuid4())
    )
    assert stranger.status_code == 403

    ack = await client.post(f"{base}/{reservation_id}/acknowledge", headers=headers)
    assert ack.status_code == 200
    assert ack.json()["confirmed_by_customer"] is True
    assert ack.json()["status"] == "pending"

    not_staff = await client.post(f"{base}/cleanup-unpaid", headers=headers)
    assert not_staff.status_code == 403

    cleanup = await client.post(f"{base}/cleanup-unpaid", headers=_STAFF_HEADERS)
    assert cleanup.status_code == 200
    assert cleanup.json() == {"deleted": 0, "deleted_orders": 0}

    invalid = await client.post(
        f"{base}/cleanup-unpaid",
        params={"older_than_minutes": 0},
        headers=_STAFF_HEADERS,
    )
    assert invalid.status_code == 422

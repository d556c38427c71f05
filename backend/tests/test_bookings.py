"""
Tests for booking endpoints.
"""

import pytest
from httpx import AsyncClient

from slotbooking.services.notification_service import drain_notifications


async def create(client: AsyncClient, headers: dict, slot, **extra):
    payload = {"slot_id": slot.id, "booking_date": slot.date.isoformat()}
    payload.update(extra)
    return await client.post("/api/v1/bookings/", json=payload, headers=headers)


@pytest.mark.asyncio
async def test_book_slot(client: AsyncClient, member_headers, test_slot, notifier):
    """Successful booking takes one place from the slot."""
    response = await create(client, member_headers, test_slot, notes="First swim")
    assert response.status_code == 201
    data = response.json()
    assert data["slot_id"] == test_slot.id
    assert data["status"] == "confirmed"
    assert data["booking_type"] == "swimming"
    assert data["is_raising_court"] is False
    assert data["qr_code"]
    assert data["slot"]["start_time"] == "19:00"

    slot_response = await client.get(f"/api/v1/slots/{test_slot.id}")
    assert slot_response.json()["current_bookings"] == 1
    assert slot_response.json()["available_spots"] == 39

    await drain_notifications()
    assert [user_id for user_id, _ in notifier.sent] == [101]


@pytest.mark.asyncio
async def test_book_raising_court(client: AsyncClient, member_headers, test_slot):
    response = await create(client, member_headers, test_slot, is_raising_court=True)
    assert response.status_code == 201
    assert response.json()["booking_type"] == "raising-court"

    slot_data = (await client.get(f"/api/v1/slots/{test_slot.id}")).json()
    assert slot_data["current_bookings"] == 0
    assert slot_data["raising_court_bookings"] == 1
    assert slot_data["raising_court_available_spots"] == 9


@pytest.mark.asyncio
async def test_book_unauthenticated(client: AsyncClient, test_slot):
    response = await client.post(
        "/api/v1/bookings/",
        json={"slot_id": test_slot.id, "booking_date": test_slot.date.isoformat()},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_book_with_bad_token(client: AsyncClient, test_slot):
    response = await create(client, {"Authorization": "Bearer not.a.jwt"}, test_slot)
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_book_full_slot(client: AsyncClient, member_headers, full_slot):
    response = await create(client, member_headers, full_slot)
    assert response.status_code == 409
    assert response.json()["code"] == "slot_full"


@pytest.mark.asyncio
async def test_book_wrong_gender(client: AsyncClient, female_headers, test_slot):
    response = await create(client, female_headers, test_slot)
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_book_unknown_slot(client: AsyncClient, member_headers, test_slot):
    response = await client.post(
        "/api/v1/bookings/",
        json={"slot_id": 99999, "booking_date": test_slot.date.isoformat()},
        headers=member_headers,
    )
    assert response.status_code == 404
    assert response.json()["code"] == "slot_not_found"


@pytest.mark.asyncio
async def test_book_past_date(client: AsyncClient, member_headers, test_slot):
    response = await client.post(
        "/api/v1/bookings/",
        json={"slot_id": test_slot.id, "booking_date": "2020-01-01"},
        headers=member_headers,
    )
    assert response.status_code == 400
    assert "past" in response.json()["detail"]


@pytest.mark.asyncio
async def test_book_invalid_payload(client: AsyncClient, member_headers):
    response = await client.post(
        "/api/v1/bookings/",
        json={"slot_id": 0, "booking_date": "not-a-date"},
        headers=member_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_duplicate_booking(client: AsyncClient, member_headers, test_slot):
    """Same member booking the same slot twice returns 409."""
    assert (await create(client, member_headers, test_slot)).status_code == 201

    response = await create(client, member_headers, test_slot)
    assert response.status_code == 409
    assert response.json()["code"] == "duplicate_booking"


@pytest.mark.asyncio
async def test_cancel_booking(client: AsyncClient, member_headers, test_slot):
    """Cancellation gives the place back to the slot."""
    booking_id = (await create(client, member_headers, test_slot)).json()["id"]

    response = await client.put(
        f"/api/v1/bookings/{booking_id}/cancel",
        json={"reason": "Change of plans"},
        headers=member_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["cancellation_reason"] == "Change of plans"

    slot_response = await client.get(f"/api/v1/slots/{test_slot.id}")
    assert slot_response.json()["current_bookings"] == 0


@pytest.mark.asyncio
async def test_cancel_without_body(client: AsyncClient, member_headers, test_slot):
    booking_id = (await create(client, member_headers, test_slot)).json()["id"]
    response = await client.put(f"/api/v1/bookings/{booking_id}/cancel", headers=member_headers)
    assert response.status_code == 200
    assert response.json()["cancellation_reason"] is None


@pytest.mark.asyncio
async def test_cancel_already_cancelled(client: AsyncClient, member_headers, test_slot):
    booking_id = (await create(client, member_headers, test_slot)).json()["id"]
    await client.put(f"/api/v1/bookings/{booking_id}/cancel", headers=member_headers)

    response = await client.put(f"/api/v1/bookings/{booking_id}/cancel", headers=member_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "cancellation_window_closed"


@pytest.mark.asyncio
async def test_cancel_other_users_booking(client: AsyncClient, member_headers, other_member_headers, test_slot):
    booking_id = (await create(client, member_headers, test_slot)).json()["id"]

    response = await client.put(f"/api/v1/bookings/{booking_id}/cancel", headers=other_member_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_check_in_too_early(client: AsyncClient, member_headers, test_slot):
    """The test slot starts a week from now."""
    booking_id = (await create(client, member_headers, test_slot)).json()["id"]

    response = await client.put(f"/api/v1/bookings/{booking_id}/checkin", headers=member_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "check_in_too_early"


@pytest.mark.asyncio
async def test_check_out_before_check_in(client: AsyncClient, member_headers, test_slot):
    booking_id = (await create(client, member_headers, test_slot)).json()["id"]

    response = await client.put(f"/api/v1/bookings/{booking_id}/checkout", headers=member_headers)
    assert response.status_code == 409
    assert response.json()["code"] == "not_checked_in"


@pytest.mark.asyncio
async def test_get_booking(client: AsyncClient, member_headers, other_member_headers, test_slot):
    booking_id = (await create(client, member_headers, test_slot)).json()["id"]

    response = await client.get(f"/api/v1/bookings/{booking_id}", headers=member_headers)
    assert response.status_code == 200
    assert response.json()["id"] == booking_id

    assert (await client.get(f"/api/v1/bookings/{booking_id}", headers=other_member_headers)).status_code == 403
    assert (await client.get("/api/v1/bookings/424242", headers=member_headers)).status_code == 404


@pytest.mark.asyncio
async def test_list_my_bookings(client: AsyncClient, member_headers, other_member_headers, test_slot):
    await create(client, member_headers, test_slot)
    await create(client, member_headers, test_slot, is_raising_court=True)
    await create(client, other_member_headers, test_slot)

    response = await client.get("/api/v1/bookings/?page_size=1", headers=member_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["pages"] == 2
    assert len(data["bookings"]) == 1
    assert data["bookings"][0]["user_id"] == 101


@pytest.mark.asyncio
async def test_booking_stats_overview(client: AsyncClient, member_headers, other_member_headers, test_slot):
    first = (await create(client, member_headers, test_slot)).json()["id"]
    await create(client, member_headers, test_slot, is_raising_court=True)
    await create(client, other_member_headers, test_slot)
    await client.put(f"/api/v1/bookings/{first}/cancel", headers=member_headers)

    response = await client.get("/api/v1/bookings/stats/overview", headers=member_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total_bookings"] == 2
    assert data["upcoming_bookings"] == 1
    assert data["status_breakdown"] == {"confirmed": 1, "cancelled": 1, "completed": 0, "no-show": 0}


@pytest.mark.asyncio
async def test_list_my_bookings_by_status(client: AsyncClient, member_headers, test_slot):
    first = (await create(client, member_headers, test_slot)).json()["id"]
    await create(client, member_headers, test_slot, is_raising_court=True)
    await client.put(f"/api/v1/bookings/{first}/cancel", headers=member_headers)

    response = await client.get("/api/v1/bookings/?status=cancelled", headers=member_headers)
    data = response.json()
    assert data["total"] == 1
    assert data["bookings"][0]["id"] == first

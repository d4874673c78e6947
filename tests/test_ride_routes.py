import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app


def request_ride(client, headers, payload):
    response = client.post("/api/rides/request", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["ride"]


def test_complete_ride_journey(client, passenger, driver, auth_headers, ride_payload):
    p_headers, d_headers = auth_headers(passenger), auth_headers(driver)

    ride = request_ride(client, p_headers, ride_payload)
    ride_id = ride["id"]
    assert ride["status"] == "pending"
    assert ride["pickupLocation"]["coordinates"] == [-74.0060, 40.7128]
    assert ride["dropoffLocation"]["address"] == "Times Square"
    assert ride["fareBreakdown"]["totalFare"] == ride["fare"]
    assert ride["passenger"]["id"] == str(passenger.id)
    assert ride["driver"] is None

    available = client.get("/api/rides/available", headers=d_headers).json()
    assert [r["id"] for r in available["rides"]] == [ride_id]

    for action, expected in [
        ("accept", "accepted"),
        ("arrive", "arrived"),
        ("start", "in_progress"),
        ("complete", "completed"),
    ]:
        response = client.post(f"/api/rides/{ride_id}/{action}", headers=d_headers)
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["success"] is True
        assert body["ride"]["status"] == expected

    final = client.get(f"/api/rides/{ride_id}", headers=p_headers).json()["ride"]
    assert final["status"] == "completed"
    assert final["driver"]["vehiclePlate"] == "ABC-123"
    assert final["actualDuration"] is not None
    assert final["completedAt"] is not None

    rated = client.post(
        f"/api/rides/{ride_id}/rate", json={"rating": 5, "review": "Smooth"}, headers=p_headers
    )
    assert rated.status_code == 200
    assert rated.json()["ride"]["passengerRating"] == 5

    history = client.get("/api/rides/history", headers=p_headers).json()
    assert history["pagination"]["total"] == 1
    assert history["rides"][0]["id"] == ride_id
    assert client.get("/api/rides/active", headers=p_headers).json()["rides"] == []


def test_request_requires_token(client, ride_payload):
    response = client.post("/api/rides/request", json=ride_payload)

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_request_rejects_bad_token(client, ride_payload):
    response = client.post(
        "/api/rides/request",
        json=ride_payload,
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


def test_request_missing_dropoff_is_400(client, passenger, auth_headers, ride_payload):
    del ride_payload["dropoffLocation"]

    response = client.post(
        "/api/rides/request", json=ride_payload, headers=auth_headers(passenger)
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert any(err["field"] == "dropoffLocation" for err in body["errors"])


def test_request_out_of_range_coordinates_is_400(
    client, passenger, auth_headers, ride_payload
):
    ride_payload["pickupLocation"]["coordinates"] = [-74.0, 123.0]

    response = client.post(
        "/api/rides/request", json=ride_payload, headers=auth_headers(passenger)
    )

    assert response.status_code == 400


def test_driver_cannot_request(client, driver, auth_headers, ride_payload):
    response = client.post(
        "/api/rides/request", json=ride_payload, headers=auth_headers(driver)
    )
    assert response.status_code == 403
    assert response.json()["success"] is False


def test_route_lookup_used_when_distance_missing(
    settings, passenger, auth_headers, ride_payload
):
    settings.google_maps_api_key = "test-key"
    lookup = AsyncMock(
        return_value={"distance_km": 7.5, "duration_minutes": 20, "source": "google_maps"}
    )

    with patch("routes.ride_routes.get_distance_and_eta", lookup):
        with TestClient(create_app(settings, manage_database=False)) as client:
            ride = request_ride(client, auth_headers(passenger), ride_payload)

    lookup.assert_awaited_once()
    assert lookup.await_args.kwargs["api_key"] == "test-key"
    assert ride["distance"] == 7.5
    assert ride["estimatedDuration"] == 20


def test_client_supplied_distance_skips_lookup(
    client, passenger, auth_headers, ride_payload
):
    ride_payload.update({"distance": 3.2, "estimatedDuration": 9})
    lookup = AsyncMock()

    with patch("routes.ride_routes.get_distance_and_eta", lookup):
        ride = request_ride(client, auth_headers(passenger), ride_payload)

    lookup.assert_not_called()
    assert ride["distance"] == 3.2


def test_surge_pricing_applied_when_enabled(settings, passenger, auth_headers, ride_payload):
    settings.surge_pricing_enabled = True

    with patch("routes.ride_routes.time_of_day_bucket", return_value="rush-hour"):
        with TestClient(create_app(settings, manage_database=False)) as client:
            ride = request_ride(client, auth_headers(passenger), ride_payload)

    assert ride["fareBreakdown"]["surgeMultiplier"] == 1.3


def test_surge_disabled_by_default(client, passenger, auth_headers, ride_payload):
    ride = request_ride(client, auth_headers(passenger), ride_payload)
    assert ride["fareBreakdown"]["surgeMultiplier"] == 1.0


def test_unknown_ride_is_404(client, driver, auth_headers):
    response = client.post(
        "/api/rides/65f000000000000000000000/accept", headers=auth_headers(driver)
    )
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Ride not found"}


def test_non_assigned_driver_gets_403(
    client, passenger, driver, other_driver, auth_headers, ride_payload
):
    ride = request_ride(client, auth_headers(passenger), ride_payload)
    client.post(f"/api/rides/{ride['id']}/accept", headers=auth_headers(driver))

    response = client.post(
        f"/api/rides/{ride['id']}/arrive", headers=auth_headers(other_driver)
    )

    assert response.status_code == 403


def test_cancel_with_reason_then_cancel_again(
    client, passenger, auth_headers, ride_payload
):
    headers = auth_headers(passenger)
    ride = request_ride(client, headers, ride_payload)

    response = client.post(
        f"/api/rides/{ride['id']}/cancel", json={"reason": "Plans changed"}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["ride"]["cancellationReason"] == "Plans changed"
    assert response.json()["ride"]["cancelledBy"] == "passenger"

    again = client.post(f"/api/rides/{ride['id']}/cancel", headers=headers)
    assert again.status_code == 409
    assert again.json()["success"] is False


def test_cancel_without_body_uses_default_reason(
    client, passenger, auth_headers, ride_payload
):
    headers = auth_headers(passenger)
    ride = request_ride(client, headers, ride_payload)

    response = client.post(f"/api/rides/{ride['id']}/cancel", headers=headers)

    assert response.status_code == 200
    assert response.json()["ride"]["cancellationReason"] == "No reason provided"


def test_available_is_driver_only(client, passenger, auth_headers):
    response = client.get("/api/rides/available", headers=auth_headers(passenger))
    assert response.status_code == 403


def test_history_rejects_bad_status(client, passenger, auth_headers):
    response = client.get(
        "/api/rides/history", params={"status": "lost"}, headers=auth_headers(passenger)
    )
    assert response.status_code == 400


def test_rating_out_of_range_is_400(client, passenger, auth_headers, ride_payload):
    headers = auth_headers(passenger)
    ride = request_ride(client, headers, ride_payload)

    response = client.post(f"/api/rides/{ride['id']}/rate", json={"rating": 9}, headers=headers)

    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "rating"


@pytest.mark.anyio
async def test_concurrent_accept_has_single_winner(
    app, passenger, driver, other_driver, auth_headers, ride_payload
):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        created = await client.post(
            "/api/rides/request", json=ride_payload, headers=auth_headers(passenger)
        )
        ride_id = created.json()["ride"]["id"]

        responses = await asyncio.gather(
            client.post(f"/api/rides/{ride_id}/accept", headers=auth_headers(driver)),
            client.post(f"/api/rides/{ride_id}/accept", headers=auth_headers(other_driver)),
        )

    assert sorted(r.status_code for r in responses) == [200, 409]
    winner = next(r for r in responses if r.status_code == 200)
    ride = winner.json()["ride"]
    assert ride["status"] == "accepted"
    assert ride["driver"]["id"] in {str(driver.id), str(other_driver.id)}


def test_health_endpoints(client):
    assert client.get("/").json()["success"] is True
    assert client.get("/health").json()["status"] == "healthy"


def test_request_lists_online_drivers_near_pickup(
    client, passenger, driver, other_driver, auth_headers, ride_payload
):
    driver.set_location(40.7150, -74.0050)
    driver.driver_status = "online"
    driver.save()
    # Newark is well outside the 5 km pickup radius
    other_driver.set_location(40.7357, -74.1724)
    other_driver.driver_status = "online"
    other_driver.save()

    response = client.post(
        "/api/rides/request", json=ride_payload, headers=auth_headers(passenger)
    )

    assert response.status_code == 201
    available = response.json()["availableDrivers"]
    assert [d["id"] for d in available] == [str(driver.id)]
    assert available[0]["distanceKm"] < 1
    assert available[0]["currentLocation"]["coordinates"] == [-74.0050, 40.7150]


def test_request_without_nearby_drivers(client, passenger, auth_headers, ride_payload):
    response = client.post(
        "/api/rides/request", json=ride_payload, headers=auth_headers(passenger)
    )

    assert response.json()["availableDrivers"] == []

from unittest.mock import patch

import pytest

from models.user_model import User

# PICKUP in conftest is New York City Hall
NEAR_PICKUP = (40.7150, -74.0050)
NEXT_BLOCK = (40.7130, -74.0065)
NEWARK = (40.7357, -74.1724)


@pytest.fixture
def place_driver():
    def _place(user, position, online=True):
        user.set_location(*position, address="Somewhere")
        user.driver_status = "online" if online else "offline"
        user.save()
        return user

    return _place


class TestProfile:
    def test_update_name_and_phone(self, client, passenger, auth_headers):
        response = client.put(
            "/api/users/profile",
            json={"firstName": "Patricia", "phone": "+15559990000"},
            headers=auth_headers(passenger),
        )

        assert response.status_code == 200, response.text
        user = response.json()["user"]
        assert user["firstName"] == "Patricia"
        assert user["lastName"] == passenger.last_name
        assert user["phone"] == "+15559990000"
        stored = User.objects.get(id=passenger.id)
        assert (stored.first_name, stored.phone) == ("Patricia", "+15559990000")

    def test_short_name_is_400(self, client, passenger, auth_headers):
        response = client.put(
            "/api/users/profile", json={"lastName": "X"}, headers=auth_headers(passenger)
        )

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "lastName"

    def test_phone_taken_by_someone_else(self, client, passenger, driver, auth_headers):
        response = client.put(
            "/api/users/profile", json={"phone": driver.phone}, headers=auth_headers(passenger)
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Phone number already registered"
        assert User.objects.get(id=passenger.id).phone == passenger.phone

    def test_keeping_own_phone_is_allowed(self, client, passenger, auth_headers):
        response = client.put(
            "/api/users/profile", json={"phone": passenger.phone}, headers=auth_headers(passenger)
        )

        assert response.status_code == 200

    def test_phone_race_is_a_validation_error(self, client, passenger, driver, auth_headers):
        with patch("routes.user_routes.reject_taken"):
            response = client.put(
                "/api/users/profile",
                json={"phone": driver.phone},
                headers=auth_headers(passenger),
            )

        assert response.status_code == 400
        assert response.json()["errors"] == [
            {"field": "phone", "message": "Phone number already registered"}
        ]

    def test_vehicle_fields_only_change_for_drivers(
        self, client, passenger, driver, auth_headers
    ):
        client.put(
            "/api/users/profile", json={"vehiclePlate": "NEW-001"}, headers=auth_headers(driver)
        )
        client.put(
            "/api/users/profile",
            json={"vehiclePlate": "NEW-002"},
            headers=auth_headers(passenger),
        )

        assert User.objects.get(id=driver.id).vehicle_plate == "NEW-001"
        assert User.objects.get(id=passenger.id).vehicle_plate is None


class TestPassword:
    def test_change_password(self, client, passenger, auth_headers):
        response = client.put(
            "/api/users/password",
            json={"currentPassword": "secret123", "newPassword": "brand-new-pass"},
            headers=auth_headers(passenger),
        )

        assert response.status_code == 200
        old = client.post(
            "/api/auth/login", json={"email": passenger.email, "password": "secret123"}
        )
        new = client.post(
            "/api/auth/login", json={"email": passenger.email, "password": "brand-new-pass"}
        )
        assert old.status_code == 401
        assert new.status_code == 200

    def test_wrong_current_password(self, client, passenger, auth_headers):
        response = client.put(
            "/api/users/password",
            json={"currentPassword": "guess", "newPassword": "brand-new-pass"},
            headers=auth_headers(passenger),
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Current password is incorrect"
        assert User.objects.get(id=passenger.id).verify_password("secret123")

    def test_new_password_too_short(self, client, passenger, auth_headers):
        response = client.put(
            "/api/users/password",
            json={"currentPassword": "secret123", "newPassword": "123"},
            headers=auth_headers(passenger),
        )

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "newPassword"


class TestLocation:
    def test_driver_reports_position(self, client, driver, auth_headers):
        response = client.put(
            "/api/users/location",
            json={"latitude": 40.7150, "longitude": -74.0050, "address": " Broadway "},
            headers=auth_headers(driver),
        )

        assert response.status_code == 200, response.text
        location = response.json()["location"]
        assert location["coordinates"] == [-74.0050, 40.7150]
        assert location["address"] == "Broadway"
        assert location["lastUpdated"] is not None

        stored = User.objects.get(id=driver.id)
        assert stored.coordinates == (40.7150, -74.0050)
        me = client.get("/api/auth/me", headers=auth_headers(driver)).json()["user"]
        assert me["currentLocation"]["coordinates"] == [-74.0050, 40.7150]

    def test_out_of_range_is_400(self, client, driver, auth_headers):
        response = client.put(
            "/api/users/location",
            json={"latitude": 91, "longitude": -74.0},
            headers=auth_headers(driver),
        )

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "latitude"

    def test_passenger_cannot_report_position(self, client, passenger, auth_headers):
        response = client.put(
            "/api/users/location",
            json={"latitude": 40.7, "longitude": -74.0},
            headers=auth_headers(passenger),
        )

        assert response.status_code == 403

    def test_position_pushed_to_active_ride(
        self, client, passenger, driver, auth_headers, ride_payload
    ):
        ride = client.post(
            "/api/rides/request", json=ride_payload, headers=auth_headers(passenger)
        ).json()["ride"]
        client.post(f"/api/rides/{ride['id']}/accept", headers=auth_headers(driver))

        with patch.object(client.app.state.channel, "emit_to_room_nowait") as emit:
            client.put(
                "/api/users/location",
                json={"latitude": 40.7150, "longitude": -74.0050},
                headers=auth_headers(driver),
            )

        emit.assert_called_once()
        room, message = emit.call_args.args
        assert room == ride["id"]
        assert message["event_type"] == "driver-location-update"
        assert message["driverId"] == str(driver.id)
        assert (message["latitude"], message["longitude"]) == (40.7150, -74.0050)
        assert emit.call_args.kwargs["exclude_user"] == str(driver.id)


class TestNearbyDrivers:
    def test_online_drivers_within_radius_closest_first(
        self, client, passenger, driver, other_driver, make_user, place_driver, auth_headers
    ):
        place_driver(driver, NEAR_PICKUP)
        place_driver(other_driver, NEXT_BLOCK)
        place_driver(make_user("driver"), NEWARK)
        place_driver(make_user("driver"), NEXT_BLOCK, online=False)

        response = client.get(
            "/api/users/nearby-drivers",
            params={"latitude": 40.7128, "longitude": -74.0060},
            headers=auth_headers(passenger),
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["searchRadiusKm"] == 5.0
        assert [d["id"] for d in body["drivers"]] == [str(other_driver.id), str(driver.id)]
        assert body["count"] == 2
        first = body["drivers"][0]
        assert first["distanceKm"] < body["drivers"][1]["distanceKm"]
        assert first["vehiclePlate"] == "XYZ-789"
        assert "email" not in first and "phone" not in first

    def test_wider_radius(
        self, client, passenger, driver, place_driver, auth_headers
    ):
        place_driver(driver, NEWARK)

        response = client.get(
            "/api/users/nearby-drivers",
            params={"latitude": 40.7128, "longitude": -74.0060, "radius_km": 25},
            headers=auth_headers(passenger),
        )

        assert [d["id"] for d in response.json()["drivers"]] == [str(driver.id)]

    def test_deactivated_and_unplaced_drivers_are_skipped(
        self, client, passenger, driver, other_driver, place_driver, auth_headers
    ):
        place_driver(driver, NEAR_PICKUP)
        driver.update(set__is_active=False)
        other_driver.update(set__driver_status="online")

        response = client.get(
            "/api/users/nearby-drivers",
            params={"latitude": 40.7128, "longitude": -74.0060},
            headers=auth_headers(passenger),
        )

        assert response.json()["drivers"] == []

    def test_coordinates_are_required(self, client, passenger, auth_headers):
        response = client.get(
            "/api/users/nearby-drivers",
            params={"latitude": 40.7128},
            headers=auth_headers(passenger),
        )

        assert response.status_code == 400
        assert "longitude" in {err["field"] for err in response.json()["errors"]}

    def test_radius_bounds(self, client, passenger, auth_headers):
        response = client.get(
            "/api/users/nearby-drivers",
            params={"latitude": 40.7128, "longitude": -74.0060, "radius_km": 80},
            headers=auth_headers(passenger),
        )

        assert response.status_code == 400

    def test_requires_token(self, client):
        response = client.get(
            "/api/users/nearby-drivers", params={"latitude": 40.7, "longitude": -74.0}
        )

        assert response.status_code == 401


class TestDeactivate:
    def test_deactivate_account(self, client, driver, auth_headers):
        headers = auth_headers(driver)
        client.put("/api/drivers/status", json={"isOnline": True}, headers=headers)

        response = client.delete("/api/users/account", headers=headers)

        assert response.status_code == 200
        assert response.json()["message"] == "Account deactivated successfully"
        stored = User.objects.get(id=driver.id)
        assert stored.is_active is False
        assert stored.driver_status == "offline"
        assert client.get("/api/auth/me", headers=headers).status_code == 403
        login = client.post(
            "/api/auth/login", json={"email": driver.email, "password": "secret123"}
        )
        assert login.status_code == 403

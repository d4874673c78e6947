from models.user_model import User


def test_new_driver_starts_offline(client, driver, auth_headers):
    response = client.get("/api/drivers/status", headers=auth_headers(driver))

    assert response.status_code == 200
    assert response.json() == {"success": True, "status": "offline", "isOnline": False}


def test_status_toggle_persists(client, driver, auth_headers):
    headers = auth_headers(driver)

    online = client.put("/api/drivers/status", json={"isOnline": True}, headers=headers)
    assert online.status_code == 200, online.text
    assert online.json()["message"] == "Driver status set to online"
    assert online.json()["isOnline"] is True
    assert User.objects.get(id=driver.id).driver_status == "online"
    assert client.get("/api/drivers/status", headers=headers).json()["status"] == "online"

    offline = client.put("/api/drivers/status", json={"isOnline": False}, headers=headers)
    assert offline.json()["status"] == "offline"
    assert User.objects.get(id=driver.id).driver_status == "offline"


def test_status_shows_on_profile(client, driver, auth_headers):
    headers = auth_headers(driver)
    client.put("/api/drivers/status", json={"isOnline": True}, headers=headers)

    me = client.get("/api/auth/me", headers=headers).json()["user"]

    assert me["driverStatus"] == "online"


def test_status_requires_boolean(client, driver, auth_headers):
    headers = auth_headers(driver)

    missing = client.put("/api/drivers/status", json={}, headers=headers)
    not_bool = client.put("/api/drivers/status", json={"isOnline": "sometimes"}, headers=headers)

    for response in (missing, not_bool):
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert [err["field"] for err in body["errors"]] == ["isOnline"]
    assert User.objects.get(id=driver.id).driver_status == "offline"


def test_passenger_cannot_use_driver_status(client, passenger, auth_headers):
    headers = auth_headers(passenger)

    read = client.get("/api/drivers/status", headers=headers)
    write = client.put("/api/drivers/status", json={"isOnline": True}, headers=headers)

    assert read.status_code == 403
    assert write.status_code == 403
    assert write.json()["message"] == "Driver access required"
    assert User.objects.get(id=passenger.id).driver_status == "offline"


def test_status_requires_token(client):
    assert client.get("/api/drivers/status").status_code == 401
    assert client.put("/api/drivers/status", json={"isOnline": True}).status_code == 401

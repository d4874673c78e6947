import itertools
import os

# No outbound Routes API calls during tests
os.environ.pop("GOOGLE_MAPS_API_KEY", None)

import mongomock
import pytest
from fastapi.testclient import TestClient
from mongoengine import connect, disconnect

from config import Settings
from main import create_app
from models.user_model import User
from services.ride_lifecycle import RideLifecycleController
from utils.jwt_utils import create_user_token

TEST_DB = "ridehail_test"

PICKUP = {"coordinates": [-74.0060, 40.7128], "address": "New York City Hall"}
DROPOFF = {"coordinates": [-73.9851, 40.7589], "address": "Times Square"}


@pytest.fixture(autouse=True)
def mongo():
    disconnect(alias="default")
    connection = connect(
        TEST_DB,
        alias="default",
        host="mongodb://localhost",
        mongo_client_class=mongomock.MongoClient,
    )
    yield connection
    connection.drop_database(TEST_DB)
    disconnect(alias="default")


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings():
    return Settings(
        mongo_uri="mongodb://localhost/" + TEST_DB,
        jwt_secret_key="test-secret-key",
        auth_rate_limit_max=1000,
        log_level="WARNING",
    )


@pytest.fixture
def app(settings):
    return create_app(settings, manage_database=False)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user():
    counter = itertools.count(1)

    def _make(role="passenger", **fields):
        n = next(counter)
        user = User(
            first_name=fields.pop("first_name", role.capitalize()),
            last_name=fields.pop("last_name", f"Number{n}"),
            email=f"{role}{n}@example.com",
            phone=f"+1555000{n:04d}",
            role=role,
            **fields,
        )
        user.set_password("secret123")
        user.save()
        return user

    return _make


@pytest.fixture
def passenger(make_user):
    return make_user("passenger", first_name="Pat")


@pytest.fixture
def driver(make_user):
    return make_user(
        "driver", first_name="Dana", vehicle_plate="ABC-123", vehicle_model="Toyota Prius"
    )


@pytest.fixture
def other_driver(make_user):
    return make_user("driver", first_name="Devon", vehicle_plate="XYZ-789")


@pytest.fixture
def auth_headers(settings):
    def _headers(user):
        return {"Authorization": f"Bearer {create_user_token(user, settings)}"}

    return _headers


@pytest.fixture
def events():
    """Records (ride_id, message) pairs published by the lifecycle"""
    return []


@pytest.fixture
def controller(events):
    return RideLifecycleController(
        notifier=lambda ride_id, message: events.append((ride_id, message))
    )


@pytest.fixture
def ride_payload():
    return {"pickupLocation": dict(PICKUP), "dropoffLocation": dict(DROPOFF)}

import itertools
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from keke.database.ride_store import RideStore
from keke.dependencies import get_change_hub, get_geocoder, get_ride_store, get_sessions
from keke.geocoder import MapboxGeocoder
from keke.main import app
from keke.models.user_model import CurrentUser
from keke.realtime import RideChangeHub
from keke.services.ride_service import RideService

PROFILES = [
    {"id": "p-1", "role": "passenger", "name": "Amina Bello", "phone": "08030000001", "email": "amina@example.com"},
    {"id": "p-2", "role": "passenger", "name": "Tunde Okafor", "phone": "08030000002", "email": "tunde@example.com"},
    {"id": "d-1", "role": "driver", "name": "Musa Garba", "phone": "08030000011",
     "vehicle_info": "Yellow Bajaj RE, KN 123 ABC"},
    {"id": "d-2", "role": "driver", "name": "Sani Lawal", "phone": "08030000012",
     "vehicle_info": "Green TVS King, KN 456 DEF"},
]

TOKENS = {
    "tok-p1": CurrentUser(id="p-1", email="amina@example.com"),
    "tok-p2": CurrentUser(id="p-2", email="tunde@example.com"),
    "tok-d1": CurrentUser(id="d-1"),
    "tok-d2": CurrentUser(id="d-2"),
    "tok-ghost": CurrentUser(id="u-ghost", email="ghost@example.com"),
}

LEGACY_RIDE = {
    "id": "legacy-1",
    "passenger_id": "p-1",
    "driver_id": None,
    "pickup_location": {"address": "Kofar Mata", "lat": 0.0, "lng": 0.0},
    "dropoff_location": {"address": "Zoo Road", "lat": 0.0, "lng": 0.0},
    "status": "cancelled",
    "created_at": datetime(2025, 11, 15, 9, 0, tzinfo=timezone.utc),
}


class FakeSessions:
    def __init__(self, users):
        self.users = dict(users)

    async def get_current_user(self, token):
        if not token:
            return None
        return self.users.get(token)

    async def sign_out(self, token):
        return self.users.pop(token, None) is not None


@pytest.fixture
def clock():
    start = datetime(2025, 11, 16, 10, 30, tzinfo=timezone.utc)
    ticks = itertools.count()
    return lambda: start + timedelta(seconds=next(ticks))


@pytest.fixture
def database():
    return AsyncMongoMockClient()["corp_keke_test"]


@pytest.fixture
async def store(database):
    await database["users"].insert_many([dict(profile) for profile in PROFILES])
    return RideStore(database["rides"], database["users"])


@pytest.fixture
async def legacy_ride(store, database):
    await database["rides"].insert_one(dict(LEGACY_RIDE))
    return LEGACY_RIDE["id"]


@pytest.fixture
def hub():
    return RideChangeHub()


@pytest.fixture
def service(store, hub, clock):
    return RideService(store, hub, clock=clock)


@pytest.fixture
def sessions():
    return FakeSessions(TOKENS)


@pytest.fixture
def client(store, hub, sessions):
    app.dependency_overrides[get_ride_store] = lambda: store
    app.dependency_overrides[get_change_hub] = lambda: hub
    app.dependency_overrides[get_sessions] = lambda: sessions
    app.dependency_overrides[get_geocoder] = lambda: MapboxGeocoder(token="")
    yield TestClient(app)
    app.dependency_overrides.clear()


import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import MongoStore
from main import create_app


@pytest.fixture()
def settings():
    return Settings(
        _env_file=None,
        MONGODB_URI="mongodb://localhost:27017",
        DATABASE_NAME="fleet_test",
        ENVIRONMENT="test",
    )


@pytest.fixture()
def store(settings):
    return MongoStore(name=settings.DATABASE_NAME, client=mongomock.MongoClient(tz_aware=True))


@pytest.fixture()
def app(settings, store):
    return create_app(settings, store)


@pytest.fixture()
def client(app):
    with TestClient(app) as client_instance:
        yield client_instance


@pytest.fixture()
def notification_payload():
    return {
        "driver": "Alice",
        "status": "en-route",
        "location": "Dock 3",
        "timestamp": "2024-05-01T08:30:00Z",
        "warehouse": "WH1",
    }


@pytest.fixture()
def inspection_payload():
    return {
        "driver": "Bob Jones",
        "tractorNumber": " t-101 ",
        "trailerNumber": "tr-202",
        "odometerReading": 120345,
        "fuelLevel": "3/4",
        "safetyChecks": ["brakes", "lights", "tires"],
        "equipmentChecks": ["straps"],
    }

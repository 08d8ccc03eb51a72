import pytest
from fastapi.testclient import TestClient

from database import MemoryKeyValueStore
from records import RecordService

API_TOKEN = "test-token"


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def enqueue(self, record):
        self.sent.append(record)
        return True


def make_payload(**overrides):
    payload = {
        "name": "Priya Sharma",
        "email": "priya.sharma@example.com",
        "age": 34,
        "gender": "Female",
        "state": "Karnataka",
        "district": "Bengaluru",
        "latitude": 12.9716,
        "longitude": 77.5946,
        "vaccineType": "Pfizer-BioNTech",
        "dose": "1",
        "dateAdministered": "2026-03-14",
        "administeringOfficer": "Dr. Rao",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(store, notifier):
    return RecordService(store, notifier)


def _app(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("API_TOKEN", API_TOKEN)
    monkeypatch.delenv("RESEND_API_KEY", raising=False)

    from main import app

    return app


@pytest.fixture
def client(monkeypatch):
    with TestClient(_app(monkeypatch), headers={"Authorization": f"Bearer {API_TOKEN}"}) as c:
        yield c


@pytest.fixture
def lenient_client(monkeypatch):
    # Server-side exceptions come back as responses instead of being re-raised in the test
    with TestClient(
        _app(monkeypatch),
        headers={"Authorization": f"Bearer {API_TOKEN}"},
        raise_server_exceptions=False,
    ) as c:
        yield c

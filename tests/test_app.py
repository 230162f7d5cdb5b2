import asyncio
import threading

import pytest
from fastapi.testclient import TestClient

import app as app_module
from config import settings
from fakes import encode, passport_photo, solid
from validation.errors import ValidationCancelled


@pytest.fixture
def client(pipeline):
    app_module.set_pipeline(pipeline)
    yield TestClient(app_module.app)
    app_module.set_pipeline(None)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "kyc-validation"}


def test_unsupported_media_type(client):
    files = {"photo": ("photo.gif", b"GIF89a", "image/gif")}
    response = client.post("/kyc/validate", files=files)

    assert response.status_code == 415
    assert response.json()["code"] == "UNSUPPORTED_MEDIA_TYPE"


def test_missing_files(client):
    response = client.post("/kyc/validate", data={"photo_type": "passport"})
    assert response.status_code == 400
    assert response.json()["code"] == "MISSING_FILE"


def test_too_small_file(client):
    files = {"photo": ("photo.png", encode(solid(300, 300, 255)), "image/png")}
    response = client.post("/kyc/validate", files=files)

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_SIZE"


def test_validate_photo(client, monkeypatch):
    monkeypatch.setattr(settings, "FILE_MIN_SIZE_BYTES", 1)
    files = {"photo": ("photo.png", encode(passport_photo()), "image/png")}
    response = client.post("/kyc/validate", files=files, data={"photo_type": "passport", "customer_id": "5"})

    assert response.status_code == 200
    body = response.json()
    assert body["is_valid"] is True
    assert body["report"]["status"] == "ok"
    assert body["report"]["db_sync"]["customer_id"] == 5


def test_pipeline_crash_is_500(client, monkeypatch):
    monkeypatch.setattr(settings, "FILE_MIN_SIZE_BYTES", 1)

    def boom(*args, **kwargs):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(app_module, "validate_submission", boom)
    files = {"photo": ("photo.png", encode(passport_photo()), "image/png")}
    response = client.post("/kyc/validate", files=files)

    assert response.status_code == 500


def test_cancelled_validation_is_499(client, monkeypatch):
    monkeypatch.setattr(settings, "FILE_MIN_SIZE_BYTES", 1)
    received = []

    def cancelled(pipeline, submission, cancel_event):
        received.append(cancel_event)
        raise ValidationCancelled("validation cancelled by caller")

    monkeypatch.setattr(app_module, "validate_submission", cancelled)
    files = {"photo": ("photo.png", encode(passport_photo()), "image/png")}
    response = client.post("/kyc/validate", files=files)

    assert response.status_code == 499
    assert response.json()["code"] == "CANCELLED"
    assert isinstance(received[0], threading.Event)


class DisconnectingRequest:
    def __init__(self, after):
        self.after = after
        self.checks = 0

    async def is_disconnected(self):
        self.checks += 1
        return self.checks > self.after


def test_disconnect_sets_cancel_event():
    event = threading.Event()
    request = DisconnectingRequest(after=2)
    asyncio.run(app_module.watch_disconnect(request, event, interval=0.01))

    assert event.is_set()
    assert request.checks == 3


def test_connected_client_leaves_event_clear(client, monkeypatch):
    monkeypatch.setattr(settings, "FILE_MIN_SIZE_BYTES", 1)
    received = []

    def passthrough(pipeline, submission, cancel_event):
        received.append(cancel_event)
        return {"is_valid": True}

    monkeypatch.setattr(app_module, "validate_submission", passthrough)
    files = {"photo": ("photo.png", encode(passport_photo()), "image/png")}
    response = client.post("/kyc/validate", files=files)

    assert response.status_code == 200
    assert not received[0].is_set()

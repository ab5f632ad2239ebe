from __future__ import annotations

import json
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from hiretrack.core.config import Settings, get_settings
from hiretrack.core.security import sign
from hiretrack.main import app
from hiretrack.services.models import Company
from hiretrack.services.orchestrator import TrackingOrchestrator, build_orchestrator, get_orchestrator
from hiretrack.services.sources import PUSH_NOTIFICATION_TYPE
from hiretrack.services.store import InMemoryRepository

SECRET = "push-secret"
CONTROL_KEY = "control-key"


@pytest.fixture
def settings() -> Settings:
    return Settings(webhook_secret=SECRET, control_api_key=CONTROL_KEY, inter_company_delay_seconds=0)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository([Company(name="Acme", social_handle="urn:li:organization:1001")])


@pytest.fixture
def orchestrator(settings: Settings, repository: InMemoryRepository) -> TrackingOrchestrator:
    return build_orchestrator(settings, repository)


@pytest.fixture
def client(settings: Settings, orchestrator: TrackingOrchestrator) -> Iterator[TestClient]:
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_root_and_healthz(client: TestClient) -> None:
    assert client.get("/").json() == {"service": "hiring-signal-tracker", "status": "ok"}
    assert client.get("/healthz").json() == {"status": "ok", "tracking": "stopped"}


def test_push_challenge_echoes_signed_code(client: TestClient) -> None:
    response = client.get("/webhooks/push", params={"challengeCode": "abc-123"})

    assert response.status_code == 200
    assert response.json() == {"challengeCode": "abc-123", "challengeResponse": sign(SECRET, "abc-123")}


def test_push_challenge_without_secret_is_unavailable(client: TestClient) -> None:
    app.dependency_overrides[get_settings] = lambda: Settings(webhook_secret=None)
    response = client.get("/webhooks/push", params={"challengeCode": "abc-123"})
    assert response.status_code == 503


def test_push_with_invalid_signature_is_rejected(client: TestClient, repository: InMemoryRepository) -> None:
    body = _push_body()
    response = client.post("/webhooks/push", content=body, headers={"X-LI-Signature": "hmacsha256=deadbeef"})

    assert response.status_code == 401
    assert repository.records == {}


def test_push_with_valid_signature_is_accepted(client: TestClient, repository: InMemoryRepository) -> None:
    body = _push_body()
    response = client.post(
        "/webhooks/push",
        content=body,
        headers={"X-LI-Signature": f"hmacsha256={sign(SECRET, body)}", "Content-Type": "application/json"},
    )

    assert response.status_code == 202
    payload = response.json()
    assert payload["accepted"] == 1
    assert payload["inserted"] == 1
    (record,) = repository.records.values()
    assert record.subject == "Jane Doe"


def test_malformed_push_body_is_bad_request(client: TestClient) -> None:
    body = b"not json"
    response = client.post("/webhooks/push", content=body, headers={"X-LI-Signature": sign(SECRET, body)})
    assert response.status_code == 400


def test_tracking_controls_require_key(client: TestClient) -> None:
    assert client.post("/tracking/start").status_code == 401
    assert client.post("/tracking/start", headers={"X-API-Key": "wrong"}).status_code == 401


def test_tracking_start_status_stop(client: TestClient) -> None:
    headers = {"X-API-Key": CONTROL_KEY}

    started = client.post("/tracking/start", headers=headers)
    assert started.json() == {"changed": True, "status": "running"}
    assert client.post("/tracking/start", headers=headers).json()["changed"] is False

    status = client.get("/tracking/status", headers=headers).json()
    assert status["status"] == "running"
    assert set(status["cadences"]) == {
        "job_cycle",
        "hire_cycle",
        "daily_summary",
        "weekly_summary",
        "monthly_summary",
        "health",
    }
    assert status["cadences"]["job_cycle"]["next_run"] is not None
    assert client.get("/healthz").json()["tracking"] == "running"

    stopped = client.post("/tracking/stop", headers=headers)
    assert stopped.json() == {"changed": True, "status": "stopped"}
    assert client.post("/tracking/stop", headers=headers).json()["changed"] is False


def _push_body() -> bytes:
    return json.dumps(
        {
            "type": PUSH_NOTIFICATION_TYPE,
            "notifications": [
                {
                    "notificationId": "n-1",
                    "action": "SHARE",
                    "organizationalEntity": "urn:li:organization:1001",
                    "decoratedSourcePost": {"text": "We are pleased to announce Jane Doe as our new VP of Engineering"},
                }
            ],
        }
    ).encode()

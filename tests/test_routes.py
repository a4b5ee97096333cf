import pathlib
import sys

import pytest
from fastapi.testclient import TestClient

# Ensure repo root on sys.path for direct module imports when running tests locally.
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fleet_gateway import routes
from fleet_gateway.errors import UpstreamError
from fleet_gateway.main import app
from fleet_gateway.report_service import ReportService

REPORT_BODY = {
    "username": "ops@acme.com",
    "password": "token",
    "deviceIds": [1, 2],
    "from": "2026-03-01T00:00:00Z",
    "to": "2026-03-02T00:00:00Z",
}


class _FailingFetchers:
    def __init__(self, error):
        self.error = error

    async def trips(self, auth, device_id, date_from, date_to):
        raise self.error


class _RecordingRepository:
    def __init__(self):
        self.calls = []

    async def list_alerts(self, company, statuses, **kwargs):
        self.calls.append(("list", company, tuple(statuses), kwargs))
        return [{"alert_id": "a-1", "status": statuses[0]}]

    async def mark_in_progress(self, company, ids, username, type_=None):
        self.calls.append(("in_progress", company, ids, username))
        return len(ids)


@pytest.fixture
def client():
    # No context manager: the lifespan (database, upstream session) stays out of these tests.
    return TestClient(app)


def test_report_without_credentials_is_rejected_with_envelope(client):
    body = dict(REPORT_BODY, password=None)

    response = client.post("/api/reports/average-speed", json=body)

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "missing_credentials"}


def test_report_without_devices_is_rejected(client):
    response = client.post("/api/reports/max-speed", json=dict(REPORT_BODY, deviceIds=[]))

    assert response.status_code == 400
    assert response.json()["error"] == "no_devices"


def test_every_response_carries_noindex_header(client):
    response = client.get("/robots.txt")

    assert response.status_code == 200
    assert response.text == "User-agent: *\nDisallow: /"
    assert response.headers["X-Robots-Tag"] == "noindex, nofollow"


def test_critical_failure_maps_to_endpoint_error_code(client, monkeypatch):
    service = ReportService(_FailingFetchers(RuntimeError("pool exploded")), concurrency=2)
    monkeypatch.setattr(routes, "report_service", service)

    response = client.post("/api/reports/average-speed", json=REPORT_BODY)

    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "avg_speed_failed", "detail": "pool exploded"}


def test_maintenance_report_uses_short_error_code(client, monkeypatch):
    class _Broken:
        async def maintenance_efficiency(self, request):
            raise UpstreamError(502, detail="bad gateway")

    monkeypatch.setattr(routes, "report_service", _Broken())

    response = client.post("/api/reports/maintenance-efficiency", json=REPORT_BODY)

    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "maint_eff_failed", "detail": "bad gateway"}


def test_upstream_auth_failure_keeps_its_status(client, monkeypatch):
    service = ReportService(_FailingFetchers(UpstreamError(401, detail="expired")), concurrency=2)
    monkeypatch.setattr(routes, "report_service", service)

    response = client.post("/api/reports/average-speed", json=REPORT_BODY)

    assert response.status_code == 401
    assert response.json() == {"ok": False, "error": "invalid_credentials", "status": 401}


def test_listing_requires_company(client):
    response = client.get("/api/db/alerts/in-progress")

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "missing_company"}


def test_listing_lowercases_company_and_parses_bounds(client, monkeypatch):
    repository = _RecordingRepository()
    monkeypatch.setattr(routes, "alert_repository", repository)

    response = client.get(
        "/api/db/alerts/done",
        params={"company": "ACME", "q": "truck", "since": "2026-03-01T00:00:00Z", "limit": 10},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["company"] == "acme"
    assert body["count"] == 1
    _, company, statuses, kwargs = repository.calls[0]
    assert company == "acme"
    assert statuses == ("resolved", "done")
    assert kwargs["q"] == "truck"
    assert kwargs["since"].isoformat() == "2026-03-01T00:00:00+00:00"
    assert kwargs["until"] is None
    assert kwargs["limit"] == 10


def test_listing_rejects_unparsable_dates(client, monkeypatch):
    monkeypatch.setattr(routes, "alert_repository", _RecordingRepository())

    response = client.get("/api/db/alerts/done", params={"company": "acme", "until": "yesterday"})

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "invalid_date", "field": "until"}


def test_bulk_status_derives_company_from_username(client, monkeypatch):
    repository = _RecordingRepository()
    monkeypatch.setattr(routes, "alert_repository", repository)

    response = client.post(
        "/api/db/alerts/in-progress", json={"username": "Ops.Team@acme.com", "ids": ["a-1", 7]}
    )

    assert response.status_code == 200
    assert response.json() == {"ok": True, "company": "ops-team", "count": 2, "status": "in_progress"}
    assert repository.calls[0] == ("in_progress", "ops-team", ["a-1", "7"], "Ops.Team@acme.com")


def test_bulk_status_requires_ids(client):
    response = client.post("/api/db/alerts/in-progress", json={"company": "acme", "ids": []})

    assert response.status_code == 400
    assert response.json()["error"] == "no_ids"


def test_relational_patch_requires_company(client):
    response = client.post("/api/db/alerts/state/patch", json={"username": "ops", "patches": []})

    assert response.status_code == 400
    assert response.json()["error"] == "missing_company"


def test_malformed_body_is_a_client_error(client):
    response = client.post("/api/reports/total-distance", json={"deviceIds": {"not": "a list"}})

    assert response.status_code == 400
    body = response.json()
    assert body["ok"] is False
    assert body["error"] == "invalid_request"


def test_health_reports_cache_size(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["status"] == "ok"
    assert body["cachedEntries"] >= 0
    assert body["inFlight"] >= 0


def test_unexpected_login_failure_keeps_envelope(client, monkeypatch):
    class _BrokenFleet:
        async def login(self, request):
            raise RuntimeError("socket closed")

    monkeypatch.setattr(routes, "fleet_service", _BrokenFleet())

    response = client.post("/api/login", json={"username": "ops", "password": "token"})

    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "network_error", "detail": "socket closed"}

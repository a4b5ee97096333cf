import asyncio
import json
import pathlib
import sys

import pytest

# Ensure repo root on sys.path for direct module imports when running tests locally.
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fleet_gateway.alert_state_service import AlertStateService, state_attribute_key
from fleet_gateway.cache import CoalescingCache
from fleet_gateway.errors import ApiError, UpstreamError
from fleet_gateway.fetchers import UpstreamFetchers
from fleet_gateway.fleet_service import FleetService
from fleet_gateway.models import AlertPatch, CredentialsRequest, ReportRequest
from fleet_gateway.report_service import ReportService
from fleet_gateway.utils import company_from_username, parse_id_list

TTLS = {"trips": 60, "events": 45, "maintenance": 120, "meta": 300}


class _StubTelemetryClient:
    """Serves per-device records and tracks how many calls overlap."""

    def __init__(self, trips=None, events=None, maintenance=None, failing_devices=()):
        self.trips = trips or {}
        self.events = events or {}
        self.maintenance = maintenance or {}
        self.failing_devices = set(failing_devices)
        self.calls = []
        self.active = 0
        self.peak = 0

    async def get(self, path, auth, params=None):
        params = params or {}
        self.calls.append((path, params.get("deviceId")))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.001)
            device_id = params.get("deviceId")
            if device_id in self.failing_devices:
                raise UpstreamError(502, detail="device offline")
            if path == "/reports/trips":
                return self.trips.get(device_id)
            if path == "/reports/events":
                return self.events.get(device_id)
            if path == "/maintenance":
                return self.maintenance.get(device_id)
            if path == "/notifications":
                return [{"id": 1, "attributes": {"name": "Idle"}}]
            if path == "/geofences":
                return [{"id": 9, "name": "Yard"}]
            return []
        finally:
            self.active -= 1


def _report_service(client, concurrency=10):
    fetchers = UpstreamFetchers(client, CoalescingCache(), ttl_seconds=TTLS)
    return ReportService(fetchers, concurrency=concurrency)


def _report_request(**overrides):
    body = {"username": "ops@acme.com", "password": "token", "deviceIds": [1, 2], "from": "a", "to": "b"}
    body.update(overrides)
    return ReportRequest.model_validate(body)


# ---------------------------------------------------------------------------
# Report service
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides,error",
    [
        ({"password": None}, "missing_credentials"),
        ({"deviceIds": []}, "no_devices"),
        ({"deviceIds": None}, "no_devices"),
        ({"from": None}, "missing_range"),
        ({"to": ""}, "missing_range"),
    ],
)
async def test_report_validation_happens_before_upstream(overrides, error):
    client = _StubTelemetryClient()
    service = _report_service(client)

    with pytest.raises(ApiError) as exc:
        await service.average_speed(_report_request(**overrides))

    assert exc.value.status_code == 400
    assert exc.value.error == error
    assert client.calls == []


@pytest.mark.asyncio
async def test_average_speed_end_to_end():
    client = _StubTelemetryClient(
        trips={1: [{"averageSpeed": 50}, {"averageSpeed": 70}], 2: {"averageSpeed": 60}}
    )
    service = _report_service(client)

    result = await service.average_speed(_report_request())

    assert result == {"ok": True, "averageSpeed": 60, "tripsCount": 3, "devicesCountUsed": 2}


@pytest.mark.asyncio
async def test_fan_out_respects_configured_concurrency():
    device_ids = list(range(1, 21))
    client = _StubTelemetryClient(trips={i: [{"distance": 1000}] for i in device_ids})
    service = _report_service(client, concurrency=3)

    result = await service.total_distance(_report_request(deviceIds=device_ids))

    assert result["totalKm"] == pytest.approx(20)
    assert len(client.calls) == 20
    assert client.peak <= 3


@pytest.mark.asyncio
async def test_unreachable_device_does_not_fail_fleet_report():
    client = _StubTelemetryClient(trips={1: [{"spentFuel": 8}]}, failing_devices={2})
    service = _report_service(client)

    result = await service.average_fuel(_report_request())

    assert result["totalFuel"] == 8
    assert result["devicesCountUsed"] == 1


@pytest.mark.asyncio
async def test_repeated_reports_reuse_cached_trips():
    client = _StubTelemetryClient(trips={1: [{}], 2: []})
    service = _report_service(client)

    first = await service.active_devices(_report_request())
    second = await service.max_speed(_report_request())

    assert first["activeDeviceIds"] == [1]
    assert second["devicesCountUsed"] == 2
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_maintenance_efficiency_report():
    client = _StubTelemetryClient(
        maintenance={1: [{"attributes": {"due": -10}}], 2: None, 3: [{"attributes": {"due": 50}}]}
    )
    service = _report_service(client)

    result = await service.maintenance_efficiency(_report_request(deviceIds=[1, 2, 3]))

    assert result["efficiency"] == 66.67
    assert result["total"] == 3
    assert result["compliant"] == 2


@pytest.mark.asyncio
async def test_vehicle_alerts_fetch_lookups_once_per_batch():
    client = _StubTelemetryClient(
        events={
            1: [{"type": "ignitionOn", "serverTime": "2026-01-01T08:00:00Z", "geofenceId": 9}],
            2: [],
        }
    )
    service = _report_service(client)

    result = await service.vehicle_alerts(_report_request())

    paths = [path for path, _ in client.calls]
    assert paths.count("/notifications") == 1
    assert paths.count("/geofences") == 1
    assert result["count"] == 2
    assert result["rows"][0]["geofences"] == ["Yard"]
    assert result["rows"][0]["state"] == "in_service"
    assert result["rows"][1]["state"] == "out_of_service"


# ---------------------------------------------------------------------------
# Fleet service
# ---------------------------------------------------------------------------


class _ProbeClient:
    def __init__(self, error=None):
        self.error = error

    async def probe(self, auth):
        if self.error:
            raise self.error


class _StubFetchers:
    def __init__(self, devices=None, error=None):
        self._devices = devices or []
        self.error = error

    async def devices(self, auth):
        if self.error:
            raise self.error
        return self._devices

    async def groups(self, auth):
        return [{"id": 1, "name": "North"}]


@pytest.mark.asyncio
async def test_login_accepts_valid_session():
    service = FleetService(_ProbeClient(), _StubFetchers())

    assert await service.login(CredentialsRequest(username="u", password="p")) == {"ok": True, "status": 200}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "upstream_status,status,error",
    [(401, 401, "invalid_credentials"), (403, 403, "invalid_credentials"), (404, 404, "upstream_error"), (503, 500, "network_error")],
)
async def test_login_maps_upstream_failures(upstream_status, status, error):
    service = FleetService(_ProbeClient(UpstreamError(upstream_status)), _StubFetchers())

    with pytest.raises(ApiError) as exc:
        await service.login(CredentialsRequest(username="u", password="p"))

    assert exc.value.status_code == status
    assert exc.value.error == error


@pytest.mark.asyncio
async def test_login_requires_password():
    service = FleetService(_ProbeClient(), _StubFetchers())

    with pytest.raises(ApiError) as exc:
        await service.login(CredentialsRequest(username="u"))
    assert exc.value.error == "missing_credentials"


@pytest.mark.asyncio
async def test_devices_wraps_list_in_envelope():
    service = FleetService(_ProbeClient(), _StubFetchers(devices=[{"id": 1}]))

    result = await service.devices(CredentialsRequest(username="u", password="p"))

    assert result == {"ok": True, "devices": [{"id": 1}], "count": 1}


@pytest.mark.asyncio
async def test_devices_failure_is_collapsed_to_500():
    service = FleetService(_ProbeClient(), _StubFetchers(error=UpstreamError(502, detail="bad gateway")))

    with pytest.raises(ApiError) as exc:
        await service.devices(CredentialsRequest(username="u", password="p"))

    assert exc.value.status_code == 500
    assert exc.value.to_body() == {"ok": False, "error": "devices_failed", "detail": "bad gateway"}


# ---------------------------------------------------------------------------
# Legacy alert-state store
# ---------------------------------------------------------------------------


class _AttributeStoreClient:
    def __init__(self, attributes=None):
        self.attributes = attributes or []
        self.posted = []
        self.updates = []

    async def get(self, path, auth, params=None):
        return self.attributes

    async def post(self, path, auth, payload):
        self.posted.append(payload)
        return {"id": 77, **payload}

    async def put(self, path, auth, payload):
        self.updates.append((path, json.loads(payload["expression"])))
        return None


def test_company_slug_from_username():
    assert company_from_username("Jean.Dupont@Acme.fr") == "jean-dupont"
    assert company_from_username("") == "default"
    assert company_from_username(None) == "default"


@pytest.mark.asyncio
async def test_legacy_store_requires_admin_credentials():
    service = AlertStateService(_AttributeStoreClient(), admin_username="", admin_password="")

    with pytest.raises(ApiError) as exc:
        await service.get_states("acme", None, [])
    assert exc.value.status_code == 403
    assert exc.value.error == "admin_required"


@pytest.mark.asyncio
async def test_legacy_patch_creates_document_and_stamps_taker():
    client = _AttributeStoreClient()
    service = AlertStateService(client, admin_username="admin", admin_password="secret")

    result = await service.patch_states(
        "acme",
        "alice",
        [
            AlertPatch.model_validate({"id": "a-1", "patch": {"status": "in_progress"}}),
            AlertPatch.model_validate({"id": "  ", "patch": {"status": "resolved"}}),
        ],
    )

    assert result == {"ok": True, "company": "acme", "count": 2}
    assert client.posted[0]["attribute"] == state_attribute_key("acme")
    path, state = client.updates[0]
    assert path == "/attributes/computed/77"
    assert list(state) == ["a-1"]
    assert state["a-1"]["status"] == "in_progress"
    assert state["a-1"]["takenBy"] == "alice"
    assert state["a-1"]["takenAt"] is not None


@pytest.mark.asyncio
async def test_legacy_patch_keeps_first_taker():
    existing = {"a-1": {"status": "in_progress", "takenBy": "alice", "takenAt": "2026-01-01T00:00:00+00:00"}}
    client = _AttributeStoreClient(
        [{"id": 5, "attribute": "fleet.alerts.state.acme", "expression": json.dumps(existing)}]
    )
    service = AlertStateService(client, admin_username="admin", admin_password="secret")

    await service.patch_states(
        "acme", "bob", [AlertPatch.model_validate({"id": "a-1", "patch": {"status": "resolved"}})]
    )

    assert client.posted == []
    path, state = client.updates[0]
    assert path == "/attributes/computed/5"
    assert state["a-1"]["status"] == "resolved"
    assert state["a-1"]["takenBy"] == "alice"
    assert state["a-1"]["takenAt"] == "2026-01-01T00:00:00+00:00"
    assert state["a-1"]["updatedBy"] == "bob"


@pytest.mark.asyncio
async def test_legacy_company_defaults_to_username_slug():
    client = _AttributeStoreClient()
    service = AlertStateService(client, admin_username="admin", admin_password="secret")

    result = await service.patch_states(
        None, "bob@acme.com", [AlertPatch.model_validate({"id": "a-9", "patch": {"type": "warning"}})]
    )

    assert result["company"] == "bob"
    assert client.posted[0]["attribute"] == "fleet.alerts.state.bob"
    assert client.updates[0][1]["a-9"]["takenBy"] is None


@pytest.mark.asyncio
async def test_legacy_get_returns_requested_ids():
    existing = {"a-1": {"status": "resolved"}, "a-2": {"status": "new"}}
    client = _AttributeStoreClient(
        [{"id": 5, "attribute": "fleet.alerts.state.acme", "expression": json.dumps(existing)}]
    )
    service = AlertStateService(client, admin_username="admin", admin_password="secret")

    everything = await service.get_states("acme", None, [])
    selected = await service.get_states("acme", None, ["a-2", "missing"])

    assert everything["states"] == existing
    assert selected["states"] == {"a-2": {"status": "new"}, "missing": None}


def test_id_list_accepts_strings_and_sequences():
    assert parse_id_list("4, 5 6") == [4, 5, 6]
    assert parse_id_list([4, "5", None]) == [4, 5]
    assert parse_id_list((7,)) == [7]
    assert parse_id_list("") == []

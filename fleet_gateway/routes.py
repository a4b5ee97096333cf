"""
FastAPI route handlers for the fleet gateway.

This module defines the HTTP API layer with thin route handlers that
delegate business logic to service classes. Handles HTTP-specific
concerns like status codes, query parsing and error codes per endpoint.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Query
from fastapi.responses import PlainTextResponse

from .alert_repository import RESOLVED_STATUSES
from .cache import CoalescingCache
from .config_loader import config
from .errors import ApiError, client_error, map_upstream_failure
from .models import (
    AlertBulkStatusRequest,
    AlertStateGetRequest,
    AlertStatePatchRequest,
    CredentialsRequest,
    ReportRequest,
)
from .services import (
    AlertRepository,
    AlertStateService,
    Database,
    FleetService,
    ReportService,
    UpstreamClient,
    UpstreamFetchers,
)
from .utils import company_from_username

# Initialize logger for routes
logger = logging.getLogger(__name__)

# Create API router
router = APIRouter()

# Process-wide collaborators. The coalescing cache is shared by every request;
# worker pools are created per report call inside ReportService.
upstream_client = UpstreamClient(logger=logger)
response_cache = CoalescingCache(max_entries=config.cache_max_entries)
fetchers = UpstreamFetchers(upstream_client, response_cache, logger=logger)
fleet_service = FleetService(upstream_client, fetchers, logger=logger)
report_service = ReportService(fetchers, logger=logger)
alert_state_service = AlertStateService(upstream_client, logger=logger)
database = Database()
alert_repository = AlertRepository(database, logger=logger)


async def _guarded(error_code: str, call: Callable[[], Awaitable[dict[str, Any]]]) -> dict[str, Any]:
    """Run a handler body, mapping unexpected failures to ``error_code``."""
    try:
        return await call()
    except Exception as exc:
        mapped = map_upstream_failure(exc, error_code)
        if mapped is exc:
            raise
        if not isinstance(exc, ApiError):
            logger.exception("Unhandled error in %s", error_code)
        raise mapped from exc


def _body_company(company: str | None, username: str | None) -> str:
    return str(company or company_from_username(username)).lower()


def _parse_bound(value: str | None, name: str) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise client_error("invalid_date", field=name)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# =========================================================================
# Auth + basic resources
# =========================================================================


@router.post("/api/login")
async def login(request: CredentialsRequest) -> dict[str, Any]:
    """Check credentials against the telemetry API."""
    try:
        return await fleet_service.login(request)
    except ApiError:
        raise
    except Exception as exc:
        logger.exception("Unhandled error in login")
        raise ApiError(500, "network_error", detail=str(exc)) from exc


@router.post("/api/devices")
async def devices(request: CredentialsRequest) -> dict[str, Any]:
    return await _guarded("devices_failed", lambda: fleet_service.devices(request))


@router.post("/api/groups")
async def groups(request: CredentialsRequest) -> dict[str, Any]:
    return await _guarded("groups_failed", lambda: fleet_service.groups(request))


# =========================================================================
# Reports
# =========================================================================


@router.post("/api/reports/average-speed")
async def average_speed(request: ReportRequest) -> dict[str, Any]:
    """Mean ``averageSpeed`` over every trip of the selected devices."""
    return await _guarded("avg_speed_failed", lambda: report_service.average_speed(request))


@router.post("/api/reports/max-speed")
async def max_speed(request: ReportRequest) -> dict[str, Any]:
    return await _guarded("max_speed_failed", lambda: report_service.max_speed(request))


@router.post("/api/reports/avg-fuel")
async def average_fuel(request: ReportRequest) -> dict[str, Any]:
    return await _guarded("avg_fuel_failed", lambda: report_service.average_fuel(request))


@router.post("/api/reports/active-devices")
async def active_devices(request: ReportRequest) -> dict[str, Any]:
    return await _guarded("active_devices_failed", lambda: report_service.active_devices(request))


@router.post("/api/reports/total-distance")
async def total_distance(request: ReportRequest) -> dict[str, Any]:
    return await _guarded("total_distance_failed", lambda: report_service.total_distance(request))


@router.post("/api/reports/maintenance-efficiency")
async def maintenance_efficiency(request: ReportRequest) -> dict[str, Any]:
    return await _guarded(
        "maint_eff_failed", lambda: report_service.maintenance_efficiency(request)
    )


@router.post("/api/reports/vehicle-alerts")
async def vehicle_alerts(request: ReportRequest) -> dict[str, Any]:
    """
    Per-device alert summary: labels, geofences touched and current state.

    Notification and geofence lookups are fetched once for the whole batch.
    """
    return await _guarded("vehicle_alerts_failed", lambda: report_service.vehicle_alerts(request))


# =========================================================================
# Alert state, legacy computed-attribute store
# =========================================================================


@router.post("/api/alerts/state/get")
async def legacy_alert_state_get(request: AlertStateGetRequest) -> dict[str, Any]:
    return await _guarded(
        "alert_state_failed",
        lambda: alert_state_service.get_states(request.company, request.username, request.ids),
    )


@router.post("/api/alerts/state/patch")
async def legacy_alert_state_patch(request: AlertStatePatchRequest) -> dict[str, Any]:
    return await _guarded(
        "alert_state_failed",
        lambda: alert_state_service.patch_states(
            request.company, request.username, request.patches
        ),
    )


# =========================================================================
# Alert state, relational store
# =========================================================================


@router.post("/api/db/alerts/state/patch")
async def db_alert_state_patch(request: AlertStatePatchRequest) -> dict[str, Any]:
    """Upsert state, action plan and comments for a batch of alerts in one transaction."""
    if not request.company:
        raise client_error("missing_company")

    async def run() -> dict[str, Any]:
        count = await alert_repository.patch_states(
            request.company, request.patches, request.username
        )
        return {"ok": True, "company": request.company, "count": count}

    return await _guarded("alert_state_patch_failed", run)


@router.post("/api/db/alerts/state/get")
async def db_alert_state_get(request: AlertStateGetRequest) -> dict[str, Any]:
    if not request.company:
        raise client_error("missing_company")

    async def run() -> dict[str, Any]:
        states = await alert_repository.get_states(request.company, request.ids)
        return {"ok": True, "states": states, "company": request.company}

    return await _guarded("alert_state_get_failed", run)


@router.post("/api/db/alerts/in-progress")
async def db_mark_in_progress(request: AlertBulkStatusRequest) -> dict[str, Any]:
    company = _body_company(request.company, request.username)
    ids = [str(i) for i in request.ids if str(i)]
    if not ids:
        raise client_error("no_ids")

    async def run() -> dict[str, Any]:
        count = await alert_repository.mark_in_progress(company, ids, request.username, request.type)
        return {"ok": True, "company": company, "count": count, "status": "in_progress"}

    return await _guarded("alert_status_failed", run)


@router.post("/api/db/alerts/done")
async def db_mark_resolved(request: AlertBulkStatusRequest) -> dict[str, Any]:
    company = _body_company(request.company, request.username)
    ids = [str(i) for i in request.ids if str(i)]
    if not ids:
        raise client_error("no_ids")

    async def run() -> dict[str, Any]:
        count = await alert_repository.mark_resolved(company, ids, request.username, request.type)
        return {"ok": True, "company": company, "count": count, "status": "resolved"}

    return await _guarded("alert_status_failed", run)


async def _list_alerts(
    statuses: tuple[str, ...],
    company: str | None,
    q: str | None,
    since: str | None,
    until: str | None,
    limit: int,
    offset: int,
) -> dict[str, Any]:
    if not company:
        raise client_error("missing_company")
    company = company.lower()
    since_dt = _parse_bound(since, "since")
    until_dt = _parse_bound(until, "until")

    async def run() -> dict[str, Any]:
        rows = await alert_repository.list_alerts(
            company,
            statuses,
            q=q,
            since=since_dt,
            until=until_dt,
            limit=limit,
            offset=offset,
        )
        return {"ok": True, "company": company, "rows": rows, "count": len(rows)}

    return await _guarded("alert_list_failed", run)


@router.get("/api/db/alerts/in-progress")
async def db_list_in_progress(
    company: str | None = None,
    q: str | None = None,
    since: str | None = None,
    until: str | None = None,
    limit: int = Query(default=50),
    offset: int = Query(default=0),
) -> dict[str, Any]:
    """Alerts currently being handled, newest update first."""
    return await _list_alerts(("in_progress",), company, q, since, until, limit, offset)


@router.get("/api/db/alerts/done")
async def db_list_resolved(
    company: str | None = None,
    q: str | None = None,
    since: str | None = None,
    until: str | None = None,
    limit: int = Query(default=50),
    offset: int = Query(default=0),
) -> dict[str, Any]:
    """Resolved alerts, newest update first."""
    return await _list_alerts(RESOLVED_STATUSES, company, q, since, until, limit, offset)


# =========================================================================
# Service endpoints
# =========================================================================


@router.get("/health")
async def health() -> dict[str, Any]:
    """
    Health check endpoint.

    Reports the number of cached upstream answers alongside the status so
    operators can see the cache warming up.
    """
    return {
        "ok": True,
        "status": "ok",
        "service": "fleet-gateway",
        "cachedEntries": len(response_cache),
        "inFlight": response_cache.pending_count(),
    }


@router.get("/robots.txt", response_class=PlainTextResponse)
async def robots_txt() -> str:
    """Tell crawlers to skip every path."""
    return "User-agent: *\nDisallow: /"

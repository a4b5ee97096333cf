"""Report aggregation service: validation, per-device fan-out and folding."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from .aggregators import (
    active_devices,
    average_speed,
    fuel,
    maintenance_efficiency,
    max_speed,
    total_distance,
    vehicle_alerts,
)
from .config_loader import config
from .errors import client_error
from .fetchers import UpstreamFetchers
from .models import ReportRequest
from .pool import run_pool
from .service_base import BaseService, UpstreamAuthMixin


class ReportService(BaseService, UpstreamAuthMixin):
    """Answers fleet report queries by fanning out one fetch per device."""

    def __init__(
        self,
        fetchers: UpstreamFetchers,
        concurrency: int | None = None,
        logger: logging.Logger | None = None,
    ):
        super().__init__(logger=logger)
        self.fetchers = fetchers
        self.concurrency = concurrency or config.upstream_concurrency

    def validate(self, request: ReportRequest) -> str:
        """
        Reject incomplete report requests before any upstream call.

        Returns the upstream credential on success.
        """
        auth = self._require_auth(request)
        if not request.device_ids:
            raise client_error("no_devices")
        if not request.date_from or not request.date_to:
            raise client_error("missing_range")
        return auth

    async def _per_device(
        self,
        request: ReportRequest,
        fetch: Callable[[Any], Awaitable[list[Any]]],
    ) -> list[tuple[Any, list[Any]]]:
        device_ids = list(request.device_ids or [])
        start_time = time.time()

        async def worker(device_id: Any, _index: int) -> tuple[Any, list[Any]]:
            return device_id, await fetch(device_id)

        results = await run_pool(device_ids, self.concurrency, worker)
        self.logger.info(
            "Fetched %s devices (concurrency %s) in %.2fs",
            len(device_ids),
            self.concurrency,
            time.time() - start_time,
        )
        return results

    async def _trips_by_device(self, request: ReportRequest) -> list[tuple[Any, list[Any]]]:
        auth = self.validate(request)
        return await self._per_device(
            request,
            lambda device_id: self.fetchers.trips(
                auth, device_id, request.date_from, request.date_to
            ),
        )

    async def average_speed(self, request: ReportRequest) -> dict[str, Any]:
        return average_speed(await self._trips_by_device(request)).to_response()

    async def max_speed(self, request: ReportRequest) -> dict[str, Any]:
        return max_speed(await self._trips_by_device(request)).to_response()

    async def average_fuel(self, request: ReportRequest) -> dict[str, Any]:
        return fuel(await self._trips_by_device(request)).to_response()

    async def active_devices(self, request: ReportRequest) -> dict[str, Any]:
        return active_devices(await self._trips_by_device(request)).to_response()

    async def total_distance(self, request: ReportRequest) -> dict[str, Any]:
        return total_distance(await self._trips_by_device(request)).to_response()

    async def maintenance_efficiency(self, request: ReportRequest) -> dict[str, Any]:
        auth = self.validate(request)
        lists = await self._per_device(
            request, lambda device_id: self.fetchers.maintenance(auth, device_id)
        )
        return maintenance_efficiency(lists).to_response()

    async def vehicle_alerts(self, request: ReportRequest) -> dict[str, Any]:
        auth = self.validate(request)
        notifications, geofences = await asyncio.gather(
            self.fetchers.notifications(auth),
            self.fetchers.geofences(auth),
        )
        lists = await self._per_device(
            request,
            lambda device_id: self.fetchers.events(
                auth, device_id, request.date_from, request.date_to
            ),
        )
        result = vehicle_alerts(lists, notifications, geofences)
        self.logger.info("Vehicle alerts computed for %s devices", result.count)
        return result.to_response()

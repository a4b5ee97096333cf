"""Login and fleet metadata endpoints backed by the telemetry API."""

from __future__ import annotations

import logging
from typing import Any

from .errors import ApiError, UpstreamError, map_upstream_failure
from .fetchers import UpstreamFetchers
from .models import CredentialsRequest
from .service_base import BaseService, UpstreamAuthMixin
from .upstream_client import UpstreamClient


class FleetService(BaseService, UpstreamAuthMixin):
    """Credential checks and the critical device/group listings."""

    def __init__(
        self,
        client: UpstreamClient,
        fetchers: UpstreamFetchers,
        logger: logging.Logger | None = None,
    ):
        super().__init__(logger=logger)
        self.client = client
        self.fetchers = fetchers

    async def login(self, request: CredentialsRequest) -> dict[str, Any]:
        auth = self._require_auth(request)
        try:
            await self.client.probe(auth)
        except UpstreamError as exc:
            if exc.is_auth_failure:
                raise ApiError(exc.upstream_status, "invalid_credentials", status=exc.upstream_status)
            if exc.upstream_status < 500:
                raise ApiError(
                    exc.upstream_status,
                    "upstream_error",
                    status=exc.upstream_status,
                    detail=exc.upstream_detail,
                )
            raise ApiError(500, "network_error", detail=exc.upstream_detail or exc.error)
        self.logger.info("Login accepted for %s", request.username)
        return {"ok": True, "status": 200}

    async def devices(self, request: CredentialsRequest) -> dict[str, Any]:
        auth = self._require_auth(request)
        try:
            devices = await self.fetchers.devices(auth)
        except UpstreamError as exc:
            raise map_upstream_failure(exc, "devices_failed")
        return {"ok": True, "devices": devices, "count": len(devices)}

    async def groups(self, request: CredentialsRequest) -> dict[str, Any]:
        auth = self._require_auth(request)
        try:
            groups = await self.fetchers.groups(auth)
        except UpstreamError as exc:
            raise map_upstream_failure(exc, "groups_failed")
        return {"ok": True, "groups": groups, "count": len(groups)}

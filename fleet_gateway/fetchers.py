"""
Cached accessors for upstream telemetry resources.

Each accessor builds a cache key from the resource name, the forwarded
credential and its filter parameters, then reads through the shared
:class:`~fleet_gateway.cache.CoalescingCache` with the TTL of the
resource's class. The resilience policy of every resource is declared once
in ``RESOURCES``.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any

from .cache import CoalescingCache, cache_key
from .config_loader import config
from .upstream_client import UpstreamClient
from .utils import as_list


class FetchPolicy(enum.Enum):
    """What a fetch failure does to the caller."""

    CRITICAL = "critical"  # error propagates
    BEST_EFFORT = "best_effort"  # error is logged and degrades to []


@dataclass(frozen=True)
class Resource:
    name: str
    path: str
    ttl_class: str
    policy: FetchPolicy


RESOURCES: dict[str, Resource] = {
    "devices": Resource("devices", "/devices", "meta", FetchPolicy.CRITICAL),
    "groups": Resource("groups", "/groups", "meta", FetchPolicy.CRITICAL),
    "notifications": Resource("notifications", "/notifications", "meta", FetchPolicy.BEST_EFFORT),
    "geofences": Resource("geofences", "/geofences", "meta", FetchPolicy.BEST_EFFORT),
    "trips": Resource("trips", "/reports/trips", "trips", FetchPolicy.BEST_EFFORT),
    "events": Resource("events", "/reports/events", "events", FetchPolicy.BEST_EFFORT),
    "maintenance": Resource("maintenance", "/maintenance", "maintenance", FetchPolicy.BEST_EFFORT),
}


class UpstreamFetchers:
    """Typed, cached accessors shared by every request in the process."""

    def __init__(
        self,
        client: UpstreamClient,
        cache: CoalescingCache,
        ttl_seconds: dict[str, float] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.client = client
        self.cache = cache
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.cache_ttl_seconds
        self.logger = logger or logging.getLogger(self.__class__.__module__)

    def ttl_for(self, resource: Resource) -> float:
        return self.ttl_seconds[resource.ttl_class]

    async def fetch(
        self,
        resource_name: str,
        auth: str,
        params: dict[str, Any],
        key_parts: tuple[Any, ...] = (),
    ) -> list[Any]:
        """
        Read one resource through the cache and apply its failure policy.

        Best-effort failures are converted to ``[]`` after the cache has
        dropped the failed entry, so the next caller retries upstream.
        """
        resource = RESOURCES[resource_name]
        key = cache_key(resource.name, auth, *key_parts)

        async def produce() -> list[Any]:
            body = await self.client.get(resource.path, auth, params=params)
            return as_list(body)

        try:
            return await self.cache.memoize(key, self.ttl_for(resource), produce)
        except Exception as exc:
            if resource.policy is FetchPolicy.CRITICAL:
                raise
            self.logger.warning(
                "Best-effort fetch of %s %s failed, using empty result: %s",
                resource.name,
                key_parts,
                exc,
            )
            return []

    async def devices(self, auth: str) -> list[Any]:
        return await self.fetch("devices", auth, {"all": "true"})

    async def groups(self, auth: str) -> list[Any]:
        return await self.fetch("groups", auth, {"all": "true"})

    async def notifications(self, auth: str) -> list[Any]:
        return await self.fetch("notifications", auth, {"all": "true"})

    async def geofences(self, auth: str) -> list[Any]:
        return await self.fetch("geofences", auth, {"all": "true"})

    async def trips(self, auth: str, device_id: Any, date_from: str, date_to: str) -> list[Any]:
        return await self.fetch(
            "trips",
            auth,
            {"deviceId": device_id, "from": date_from, "to": date_to},
            key_parts=(device_id, date_from, date_to),
        )

    async def events(self, auth: str, device_id: Any, date_from: str, date_to: str) -> list[Any]:
        return await self.fetch(
            "events",
            auth,
            {"deviceId": device_id, "from": date_from, "to": date_to},
            key_parts=(device_id, date_from, date_to),
        )

    async def maintenance(self, auth: str, device_id: Any) -> list[Any]:
        return await self.fetch(
            "maintenance",
            auth,
            {"deviceId": device_id},
            key_parts=(device_id,),
        )


__all__ = ["FetchPolicy", "RESOURCES", "Resource", "UpstreamFetchers"]

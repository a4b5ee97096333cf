"""Thin HTTP client for the telemetry API."""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from .config_loader import config
from .errors import UpstreamError


class UpstreamClient:
    """
    Encapsulates telemetry API calls so services stay focused on orchestration.

    One keep-alive session is shared by all calls and closed by the
    application lifespan. The credential is forwarded untouched as a cookie.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        max_connections: int | None = None,
        logger: logging.Logger | None = None,
    ):
        self.base_url = (base_url or config.upstream_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else config.upstream_timeout
        self.max_connections = max_connections or config.upstream_max_connections
        self.logger = logger or logging.getLogger(self.__class__.__module__)
        self._session: aiohttp.ClientSession | None = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        """Lazily open the shared session once an event loop exists."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=self.max_connections),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def get(self, path: str, auth: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request("GET", path, auth, params=params)

    async def post(self, path: str, auth: str, payload: dict[str, Any]) -> Any:
        return await self._request("POST", path, auth, json=payload)

    async def put(self, path: str, auth: str, payload: dict[str, Any]) -> Any:
        return await self._request("PUT", path, auth, json=payload)

    async def probe(self, auth: str) -> None:
        """Hit the configured test path; raises UpstreamError when the credential is refused."""
        await self.get(config.upstream_test_path, auth, params={"all": "true"})

    async def _request(
        self,
        method: str,
        path: str,
        auth: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Execute one request and return the parsed JSON body (None when empty)."""
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {"Cookie": auth, "Accept": "application/json"}
        query = {k: str(v) for k, v in (params or {}).items() if v is not None}

        session = self._ensure_session()
        try:
            async with session.request(
                method, url, params=query, json=json, headers=headers
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    self.logger.error(
                        "Upstream %s %s returned %s: %s",
                        method,
                        path,
                        response.status,
                        error_text[:500],
                    )
                    raise UpstreamError(response.status, detail=error_text[:500] or None)
                body = await response.read()
                if not body.strip():
                    return None
                return await response.json(content_type=None)
        except TimeoutError:
            self.logger.error("Upstream %s %s timed out after %ss", method, path, self.timeout)
            raise UpstreamError(504, "upstream_timeout")
        except aiohttp.ClientError as exc:
            self.logger.error("Upstream connection error on %s %s: %s", method, path, exc)
            raise UpstreamError(503, "upstream_unavailable", detail=str(exc)) from exc
        except ValueError as exc:
            self.logger.error("Upstream %s %s returned a non-JSON body: %s", method, path, exc)
            raise UpstreamError(502, "upstream_invalid_body") from exc

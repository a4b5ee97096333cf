"""Error types shared by services and route handlers.

Every failure that reaches a client is rendered as
``{"ok": false, "error": <code>, ...detail}`` by the handlers registered
in :mod:`fleet_gateway.main`.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException


class ApiError(HTTPException):
    """HTTP error carrying a machine-readable code and extra body fields."""

    def __init__(self, status_code: int, error: str, **extra: Any) -> None:
        super().__init__(status_code=status_code, detail=error)
        self.error = error
        self.extra = extra

    def to_body(self) -> dict[str, Any]:
        return {"ok": False, "error": self.error, **self.extra}


class UpstreamError(ApiError):
    """Raised when the telemetry API answers with an error or cannot be reached."""

    def __init__(
        self,
        status_code: int,
        error: str = "upstream_error",
        detail: Any = None,
    ) -> None:
        extra: dict[str, Any] = {"status": status_code}
        if detail is not None:
            extra["detail"] = detail
        super().__init__(status_code, error, **extra)
        self.upstream_status = status_code
        self.upstream_detail = detail

    @property
    def is_auth_failure(self) -> bool:
        return self.upstream_status in (401, 403)


def client_error(error: str, **extra: Any) -> ApiError:
    """Build a 400 error for input rejected before any upstream call."""
    return ApiError(400, error, **extra)


def map_upstream_failure(exc: Exception, error: str) -> ApiError:
    """
    Collapse a failure into the error returned to the client.

    Upstream auth failures keep their status; everything else becomes a 500
    with ``error`` as the code and the original message as detail.
    """
    if isinstance(exc, UpstreamError) and exc.is_auth_failure:
        return ApiError(exc.upstream_status, "invalid_credentials", status=exc.upstream_status)
    if isinstance(exc, ApiError) and not isinstance(exc, UpstreamError) and exc.status_code < 500:
        return exc
    return ApiError(500, error, detail=_describe(exc))


def _describe(exc: Exception) -> Any:
    if isinstance(exc, UpstreamError):
        if exc.upstream_detail is not None:
            return exc.upstream_detail
        return f"{exc.error} ({exc.upstream_status})"
    if isinstance(exc, ApiError):
        return exc.error
    return str(exc)


__all__ = ["ApiError", "UpstreamError", "client_error", "map_upstream_failure"]
